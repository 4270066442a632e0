"""
Transfer service — moves money between two cards owned by the same user.

Checks run in a fixed order and the first failure wins:

  1. both cards are owned by the principal   -> CardNotFoundError
  2. source and destination differ          -> InvalidOperationError
  3. amount > 0 with at most two decimals    -> InvalidOperationError
  4. both cards ACTIVE (after expiry check)   -> InvalidOperationError
  5. source balance covers the amount        -> InsufficientFundsError

Atomicity:
  The debit and the credit are two compare-and-swap writes inside the same
  SAVEPOINT (card_service.run_with_conflict_retry). If either write conflicts
  or anything else fails, the savepoint rolls back both legs; a rejected
  transfer leaves both balances untouched.

Deadlock prevention:
  Cards are loaded in sorted id order with SELECT ... FOR UPDATE, so two
  opposite transfers between the same pair of cards always lock in the same
  order. FOR UPDATE is a no-op on SQLite; the version check still linearizes
  the writes there.

The transfer itself is not persisted; callers get a TransferRecord describing
what was applied.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession

from bankcards.exceptions import InsufficientFundsError, InvalidOperationError
from bankcards.models.card import Card
from bankcards.models.types import to_money
from bankcards.principal import Principal
from bankcards.services import card_store, ownership_service
from bankcards.services.card_service import refresh_expiry, run_with_conflict_retry, today

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TransferRecord:
    from_card_id: uuid.UUID
    to_card_id: uuid.UUID
    amount: Decimal
    description: str | None
    processed_at: datetime


def _validated_amount(amount) -> Decimal:
    try:
        value = to_money(amount)
    except (ValueError, ArithmeticError) as exc:
        raise InvalidOperationError("Amount must have at most 2 decimal places") from exc
    if value <= 0:
        raise InvalidOperationError("Amount must be greater than zero")
    return value


def _ensure_transferable(card: Card, role: str) -> None:
    if not card.status.is_transferable:
        logger.warning(
            "%s card=%s is not active, status=%s", role.capitalize(), card.id, card.status.value,
            extra={"card_id": card.id, "status": card.status.value},
        )
        raise InvalidOperationError(f"{role.capitalize()} card {card.id} is not active")


async def transfer(
    db: AsyncSession,
    principal: Principal,
    from_card_id: uuid.UUID,
    to_card_id: uuid.UUID,
    amount: Decimal,
    description: str | None = None,
) -> TransferRecord:
    """
    Move `amount` from one of the principal's cards to another.

    Args:
        db: Database session.
        principal: The authenticated card holder.
        from_card_id: Card to debit.
        to_card_id: Card to credit.
        amount: Positive amount with at most two decimal places.
        description: Optional memo, echoed back in the record.

    Returns:
        A TransferRecord for the applied transfer.

    Raises:
        OwnerNotFoundError: If the principal has no account.
        CardNotFoundError: If either card is missing or owned by someone else.
        InvalidOperationError: Same card, bad amount, or a card not ACTIVE.
        InsufficientFundsError: If the source balance is below the amount.
    """
    owner = await ownership_service.resolve_owner_account(db, principal)

    async def attempt() -> tuple[Card, Card]:
        # Lock in a consistent order (sorted by UUID)
        cards: dict[uuid.UUID, Card] = {}
        for card_id in sorted({from_card_id, to_card_id}):
            cards[card_id] = await ownership_service.resolve_owned_card(
                db, principal, card_id, owner=owner, for_update=True
            )

        if from_card_id == to_card_id:
            logger.warning(
                "Transfer to the same card=%s rejected", from_card_id,
                extra={"card_id": from_card_id, "owner": principal.username},
            )
            raise InvalidOperationError("Cannot transfer to the same card")

        value = _validated_amount(amount)

        on = today()
        source = await refresh_expiry(db, cards[from_card_id], on)
        dest = await refresh_expiry(db, cards[to_card_id], on)
        _ensure_transferable(source, "source")
        _ensure_transferable(dest, "destination")

        if source.balance < value:
            logger.warning(
                "Insufficient funds on card=%s: requested %s, available %s",
                source.id, value, source.balance,
                extra={"card_id": source.id, "owner": principal.username},
            )
            raise InsufficientFundsError(source.id, value, source.balance)

        now = card_store.utcnow()
        debited = await card_store.save_card(db, source, now=now, balance=source.balance - value)
        credited = await card_store.save_card(db, dest, now=now, balance=dest.balance + value)
        return debited, credited

    debited, _ = await run_with_conflict_retry(db, attempt)

    value = _validated_amount(amount)
    logger.info(
        "Transfer of %s from card=%s to card=%s completed", value, from_card_id, to_card_id,
        extra={"card_id": from_card_id, "owner": principal.username},
    )
    return TransferRecord(
        from_card_id=from_card_id,
        to_card_id=to_card_id,
        amount=value,
        description=description,
        processed_at=debited.updated_at,
    )
