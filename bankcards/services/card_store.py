"""
Card store — persistence primitives for cards with optimistic concurrency.

Every card write in the system goes through this module:

  load_card / load_card_by_owner_and_id
      Fresh reads. populate_existing=True overwrites any copy already in the
      session's identity map, so a retry after a conflict sees current data.
      for_update=True adds SELECT ... FOR UPDATE (no-op on SQLite).

  save_card(card, **changes)
      Compare-and-swap on the version column:
          UPDATE cards SET ..., version = :v + 1, updated_at = :now
          WHERE id = :id AND version = :v
      Zero rows matched means someone else wrote the card since we read it:
      ConflictError is raised and nothing is written. Never a blind overwrite.

  delete_card(card)
      Same version check, then a hard DELETE.

  insert_card / fingerprint_exists / list_cards
      Issuance and paged listing.

  expire_due_cards
      Set-based expiry sweep run before listing.

The store only reports conflicts; retrying is the calling engine's job
(see card_service.run_with_conflict_retry).
"""

import uuid
from datetime import date, datetime, timezone

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from bankcards.exceptions import CardNotFoundError, ConflictError
from bankcards.models.card import Card, CardStatus

# Columns that never change after issuance
_IMMUTABLE_COLUMNS = frozenset(
    {"id", "encrypted_number", "number_fingerprint", "owner_id", "expiry_date", "created_at", "version"}
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def load_card(
    db: AsyncSession,
    card_id: uuid.UUID,
    for_update: bool = False,
) -> Card | None:
    query = select(Card).where(Card.id == card_id).execution_options(populate_existing=True)
    if for_update:
        query = query.with_for_update(of=Card)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def load_card_by_owner_and_id(
    db: AsyncSession,
    owner_id: uuid.UUID,
    card_id: uuid.UUID,
    for_update: bool = False,
) -> Card | None:
    query = (
        select(Card)
        .where(Card.id == card_id, Card.owner_id == owner_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update(of=Card)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def fingerprint_exists(db: AsyncSession, fingerprint: str) -> bool:
    result = await db.execute(
        select(Card.id).where(Card.number_fingerprint == fingerprint)
    )
    return result.first() is not None


async def insert_card(db: AsyncSession, card: Card) -> Card:
    db.add(card)
    await db.flush()
    return card


async def save_card(
    db: AsyncSession,
    card: Card,
    *,
    now: datetime | None = None,
    **changes,
) -> Card:
    """
    Apply `changes` to `card` if its version is still current.

    Args:
        db: Database session.
        card: The card as last read; card.version is the expected version.
        now: Timestamp for updated_at (defaults to the current UTC time).
        **changes: Mutable columns to set (status, balance).

    Returns:
        The card re-read after the write (version bumped by one).

    Raises:
        ConflictError: If the stored version no longer matches card.version.
        ValueError: If an immutable column is included in changes.
    """
    illegal = _IMMUTABLE_COLUMNS.intersection(changes)
    if illegal:
        raise ValueError(f"Cannot change immutable card columns: {sorted(illegal)}")

    expected_version = card.version
    result = await db.execute(
        update(Card)
        .where(Card.id == card.id, Card.version == expected_version)
        .values(
            version=expected_version + 1,
            updated_at=now or utcnow(),
            **changes,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(card.id, expected_version)

    saved = await load_card(db, card.id)
    if saved is None:
        # Deleted between our UPDATE and re-read: the row we updated is gone
        raise ConflictError(card.id, expected_version)
    return saved


async def delete_card(db: AsyncSession, card: Card) -> None:
    """Hard-delete a card if its version is still current."""
    result = await db.execute(
        delete(Card)
        .where(Card.id == card.id, Card.version == card.version)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(card.id, card.version)
    db.expunge(card)


async def list_cards(
    db: AsyncSession,
    owner_id: uuid.UUID | None = None,
    status: CardStatus | None = None,
    page: int = 0,
    size: int = 20,
) -> tuple[list[Card], int]:
    """
    Return one page of cards plus the total number of matching cards.

    Pages are zero-based and ordered by creation time, then id, so paging is
    stable across requests.
    """
    filters = []
    if owner_id is not None:
        filters.append(Card.owner_id == owner_id)
    if status is not None:
        filters.append(Card.status == status)

    total_result = await db.execute(
        select(func.count()).select_from(Card).where(*filters)
    )
    total = total_result.scalar_one()

    result = await db.execute(
        select(Card)
        .where(*filters)
        .order_by(Card.created_at, Card.id)
        .limit(size)
        .offset(page * size)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all()), total


async def expire_due_cards(
    db: AsyncSession,
    today: date,
    owner_id: uuid.UUID | None = None,
    now: datetime | None = None,
) -> int:
    """
    Mark every card whose expiry date has been reached as EXPIRED.

    Used before listing so a page never shows a stale status. The WHERE
    clause re-checks status, and version is incremented in SQL, so this is
    safe to run alongside single-card compare-and-swap writes.

    Returns:
        The number of cards that were expired.
    """
    query = (
        update(Card)
        .where(Card.expiry_date <= today, Card.status != CardStatus.EXPIRED)
        .values(
            status=CardStatus.EXPIRED,
            version=Card.version + 1,
            updated_at=now or utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if owner_id is not None:
        query = query.where(Card.owner_id == owner_id)
    result = await db.execute(query)
    return result.rowcount


async def require_card(db: AsyncSession, card_id: uuid.UUID, for_update: bool = False) -> Card:
    card = await load_card(db, card_id, for_update=for_update)
    if card is None:
        raise CardNotFoundError(card_id)
    return card
