"""
Card service — the card lifecycle engine.

Administrative operations (the router enforces ROLE_ADMIN):
  issue_card, block_card, activate_card, delete_card, get_card, list_all_cards

Card holder operations (scoped through the ownership resolver):
  list_user_cards, request_block_card, get_balance

Transition rules:

  | Operation      | Allowed from                    | Result           |
  |----------------|---------------------------------|------------------|
  | issue          | (owner exists)                  | NEW, 0.00        |
  | block          | NEW, ACTIVE, BLOCK_REQUESTED    | BLOCKED          |
  | activate       | NEW, BLOCKED, BLOCK_REQUESTED   | ACTIVE           |
  | delete         | NEW, EXPIRED                    | row removed      |
  | request block  | NEW, ACTIVE (owner only)        | BLOCK_REQUESTED  |
  | expiry check   | any except EXPIRED              | EXPIRED          |

EXPIRED is terminal: every mutating operation rejects it. Expiry is evaluated
lazily: every lookup re-checks the expiry date before acting and listings
run a set-based sweep first, so nothing ever operates on a card whose
expiry date has passed.

Card numbers are 16 digits from the `secrets` CSPRNG. They are encrypted
before storage and only ever leave this module masked.

Concurrency:
  All writes are compare-and-swap on the card's version (card_store.save_card).
  Each read-modify-write runs inside its own SAVEPOINT via
  run_with_conflict_retry; a ConflictError rolls the attempt back and the
  cycle is re-run from a fresh read, up to CONFLICT_MAX_RETRIES times.
"""

import logging
import math
import secrets
import string
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import TypeVar

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from bankcards.config import settings
from bankcards.exceptions import (
    ConflictError,
    InvalidOperationError,
    IssuanceFailedError,
    OwnerNotFoundError,
)
from bankcards.models.card import Card, CardStatus, new_card
from bankcards.models.user import User
from bankcards.principal import Principal
from bankcards.security import CARD_NUMBER_LENGTH, get_card_codec
from bankcards.services import card_store, ownership_service

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Plain data records returned to callers
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CardView:
    """A card as callers see it: number masked, never ciphertext."""
    id: uuid.UUID
    masked_number: str
    owner_id: uuid.UUID
    owner_username: str
    expiry_date: date
    status: CardStatus
    balance: Decimal
    version: int
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class CardBalance:
    id: uuid.UUID
    masked_number: str
    balance: Decimal


@dataclass(frozen=True)
class CardPage:
    items: list[CardView]
    total: int
    page: int
    size: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.size) if self.size else 0


def to_view(card: Card) -> CardView:
    """
    Build the masked view of a card.

    Decrypts the number to mask it; a CryptoError propagates so a card is
    never shown with a garbage mask.
    """
    codec = get_card_codec()
    masked = codec.mask(codec.decrypt(card.encrypted_number))
    return CardView(
        id=card.id,
        masked_number=masked,
        owner_id=card.owner_id,
        owner_username=card.owner.username,
        expiry_date=card.expiry_date,
        status=card.status,
        balance=card.balance,
        version=card.version,
        created_at=card.created_at,
        updated_at=card.updated_at,
    )


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------

def today() -> date:
    return card_store.utcnow().date()


def _generate_card_number() -> str:
    """Draw 16 decimal digits from a cryptographically strong source."""
    return "".join(secrets.choice(string.digits) for _ in range(CARD_NUMBER_LENGTH))


def _add_years(start: date, years: int) -> date:
    try:
        return start.replace(year=start.year + years)
    except ValueError:
        # Feb 29 -> Feb 28 in a non-leap target year
        return start.replace(year=start.year + years, day=28)


async def run_with_conflict_retry(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
) -> T:
    """
    Run a read-modify-write cycle, retrying on optimistic-lock conflicts.

    Each attempt runs in a SAVEPOINT; a ConflictError rolls that attempt
    back (so a half-applied multi-row write never survives) and the
    operation starts over from a fresh read. Any other exception propagates
    immediately. After CONFLICT_MAX_RETRIES retries the conflict surfaces.
    """
    attempts = settings.CONFLICT_MAX_RETRIES + 1
    for attempt in range(1, attempts + 1):
        try:
            async with db.begin_nested():
                return await operation()
        except ConflictError as exc:
            logger.warning(
                "Version conflict on card=%s (attempt %d/%d)",
                exc.card_id, attempt, attempts,
                extra={"card_id": exc.card_id, "attempt": attempt},
            )
            if attempt == attempts:
                raise
    raise AssertionError("unreachable")


async def refresh_expiry(db: AsyncSession, card: Card, on: date | None = None) -> Card:
    """Persist EXPIRED if the card's expiry date has been reached."""
    on = on or today()
    if card.status is CardStatus.EXPIRED or not card.is_expired_on(on):
        return card
    expired = await card_store.save_card(db, card, status=CardStatus.EXPIRED)
    logger.info(
        "Card=%s expired", card.id,
        extra={"card_id": card.id, "status": CardStatus.EXPIRED.value},
    )
    return expired


def _ensure_not_expired(card: Card, action: str) -> None:
    if card.status is CardStatus.EXPIRED:
        logger.warning("Card=%s expired, cannot %s", card.id, action, extra={"card_id": card.id})
        raise InvalidOperationError(f"Cannot {action} expired card")


def _ensure_not_already(card: Card, status: CardStatus) -> None:
    if card.status is status:
        logger.warning(
            "Card=%s is already %s", card.id, status.value,
            extra={"card_id": card.id, "status": status.value},
        )
        raise InvalidOperationError(f"Card already {status.value}")


async def _load_admin_card(db: AsyncSession, card_id: uuid.UUID) -> Card:
    card = await card_store.require_card(db, card_id, for_update=True)
    return await refresh_expiry(db, card)


async def _transition(
    db: AsyncSession,
    card_id: uuid.UUID,
    target: CardStatus,
    check: Callable[[Card], None],
) -> CardView:
    async def attempt() -> Card:
        card = await _load_admin_card(db, card_id)
        check(card)
        return await card_store.save_card(db, card, status=target)

    card = await run_with_conflict_retry(db, attempt)
    logger.info(
        "Card with id=%s %s successfully", card_id, target.value.lower(),
        extra={"card_id": card_id, "status": target.value},
    )
    return to_view(card)


# ---------------------------------------------------------------------------
# Administrative operations
# ---------------------------------------------------------------------------

async def issue_card(
    db: AsyncSession,
    owner_id: uuid.UUID,
    expiry_date: date | None = None,
) -> CardView:
    """
    Issue a new card for a user.

    Args:
        db: Database session.
        owner_id: The user that will own the card.
        expiry_date: Optional explicit expiry; defaults to
                     CARD_VALIDITY_YEARS from today. Must be in the future.

    Returns:
        The new card in status NEW with a 0.00 balance.

    Raises:
        OwnerNotFoundError: If the owner doesn't exist.
        InvalidOperationError: If expiry_date is not in the future.
        IssuanceFailedError: If no unique number was found within
                             CARD_NUMBER_MAX_ATTEMPTS draws.
    """
    owner = await db.get(User, owner_id)
    if owner is None:
        logger.warning("OwnerId=%s not found", owner_id, extra={"owner": owner_id})
        raise OwnerNotFoundError(owner_id)

    now = card_store.utcnow()
    if expiry_date is None:
        expiry_date = _add_years(now.date(), settings.CARD_VALIDITY_YEARS)
    elif expiry_date <= now.date():
        raise InvalidOperationError("Expiry date must be in the future")

    codec = get_card_codec()
    max_attempts = settings.CARD_NUMBER_MAX_ATTEMPTS
    for attempt in range(1, max_attempts + 1):
        number = _generate_card_number()
        fingerprint = codec.fingerprint(number)
        if await card_store.fingerprint_exists(db, fingerprint):
            logger.warning("Card number collision (attempt %d/%d)", attempt, max_attempts,
                           extra={"attempt": attempt})
            continue

        card = new_card(
            owner_id=owner.id,
            encrypted_number=codec.encrypt(number),
            number_fingerprint=fingerprint,
            expiry_date=expiry_date,
            now=now,
        )
        try:
            # A concurrent issuer may insert the same number between our
            # check and insert; the UNIQUE constraint catches it.
            async with db.begin_nested():
                await card_store.insert_card(db, card)
        except IntegrityError:
            logger.warning("Card number collision on insert (attempt %d/%d)", attempt, max_attempts,
                           extra={"attempt": attempt})
            continue

        saved = await card_store.require_card(db, card.id)
        logger.info("Card with id=%s created successfully", saved.id,
                    extra={"card_id": saved.id, "owner": owner.username})
        return to_view(saved)

    logger.error("Card issuance failed after %d attempts", max_attempts)
    raise IssuanceFailedError(max_attempts)


async def block_card(db: AsyncSession, card_id: uuid.UUID) -> CardView:
    """
    Block a card.

    Raises:
        CardNotFoundError: If the card doesn't exist.
        InvalidOperationError: If the card is expired or already BLOCKED.
    """
    def check(card: Card) -> None:
        _ensure_not_expired(card, "block")
        _ensure_not_already(card, CardStatus.BLOCKED)

    return await _transition(db, card_id, CardStatus.BLOCKED, check)


async def activate_card(db: AsyncSession, card_id: uuid.UUID) -> CardView:
    """
    Activate a card.

    Raises:
        CardNotFoundError: If the card doesn't exist.
        InvalidOperationError: If the card is expired or already ACTIVE.
    """
    def check(card: Card) -> None:
        _ensure_not_expired(card, "activate")
        _ensure_not_already(card, CardStatus.ACTIVE)

    return await _transition(db, card_id, CardStatus.ACTIVE, check)


async def delete_card(db: AsyncSession, card_id: uuid.UUID) -> None:
    """
    Hard-delete a card that is NEW or EXPIRED.

    Raises:
        CardNotFoundError: If the card doesn't exist.
        InvalidOperationError: For any other status.
    """
    async def attempt() -> None:
        card = await _load_admin_card(db, card_id)
        if not card.status.is_deletable:
            logger.warning(
                "Card=%s cannot be deleted, status=%s", card.id, card.status.value,
                extra={"card_id": card.id, "status": card.status.value},
            )
            raise InvalidOperationError(
                f"Only cards in status EXPIRED or NEW can be deleted (status is {card.status.value})"
            )
        await card_store.delete_card(db, card)

    await run_with_conflict_retry(db, attempt)
    logger.info("Card with id=%s deleted successfully", card_id, extra={"card_id": card_id})


async def get_card(db: AsyncSession, card_id: uuid.UUID) -> CardView:
    """[ADMIN ONLY] Get any card by id, with a fresh expiry check."""
    card = await run_with_conflict_retry(db, lambda: _load_admin_card(db, card_id))
    return to_view(card)


async def list_all_cards(
    db: AsyncSession,
    page: int = 0,
    size: int | None = None,
    status: CardStatus | None = None,
) -> CardPage:
    """[ADMIN ONLY] Page through every card in the system."""
    size = size or settings.DEFAULT_PAGE_SIZE
    await card_store.expire_due_cards(db, today())
    cards, total = await card_store.list_cards(db, status=status, page=page, size=size)
    return CardPage(items=[to_view(c) for c in cards], total=total, page=page, size=size)


# ---------------------------------------------------------------------------
# Card holder operations
# ---------------------------------------------------------------------------

async def list_user_cards(
    db: AsyncSession,
    principal: Principal,
    page: int = 0,
    size: int | None = None,
    status: CardStatus | None = None,
) -> CardPage:
    """Page through the principal's own cards."""
    size = size or settings.DEFAULT_PAGE_SIZE
    owner = await ownership_service.resolve_owner_account(db, principal)
    await card_store.expire_due_cards(db, today(), owner_id=owner.id)
    cards, total = await card_store.list_cards(
        db, owner_id=owner.id, status=status, page=page, size=size
    )
    return CardPage(items=[to_view(c) for c in cards], total=total, page=page, size=size)


async def request_block_card(
    db: AsyncSession,
    principal: Principal,
    card_id: uuid.UUID,
) -> CardView:
    """
    Ask for one of the principal's cards to be blocked.

    A card that already has a pending request is returned unchanged.

    Raises:
        CardNotFoundError: If the card is missing or not owned by the principal.
        InvalidOperationError: If the card is expired or already BLOCKED.
    """
    owner = await ownership_service.resolve_owner_account(db, principal)

    async def attempt() -> Card:
        card = await ownership_service.resolve_owned_card(
            db, principal, card_id, owner=owner, for_update=True
        )
        card = await refresh_expiry(db, card)
        _ensure_not_expired(card, "request block for")
        _ensure_not_already(card, CardStatus.BLOCKED)
        if card.status is CardStatus.BLOCK_REQUESTED:
            return card
        return await card_store.save_card(db, card, status=CardStatus.BLOCK_REQUESTED)

    card = await run_with_conflict_retry(db, attempt)
    logger.info(
        "User=%s requested block for card=%s", principal.username, card_id,
        extra={"card_id": card_id, "owner": principal.username},
    )
    return to_view(card)


async def get_balance(
    db: AsyncSession,
    principal: Principal,
    card_id: uuid.UUID,
) -> CardBalance:
    """
    Masked number and balance of one of the principal's cards.

    Raises:
        CardNotFoundError: If the card is missing or not owned by the principal.
        CryptoError: If the stored number cannot be decrypted.
    """
    owner = await ownership_service.resolve_owner_account(db, principal)

    async def attempt() -> Card:
        card = await ownership_service.resolve_owned_card(db, principal, card_id, owner=owner)
        return await refresh_expiry(db, card)

    card = await run_with_conflict_retry(db, attempt)
    codec = get_card_codec()
    return CardBalance(
        id=card.id,
        masked_number=codec.mask(codec.decrypt(card.encrypted_number)),
        balance=card.balance,
    )
