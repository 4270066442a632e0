"""
Ownership resolver — maps an authenticated principal to its account and cards.

This is the only place that decides whether a card "belongs" to a caller.
Card lookups are filtered by BOTH id and owner in a single query, so a card
that exists but belongs to someone else is indistinguishable from a card
that does not exist: both raise CardNotFoundError with the same message.
That prevents users from probing for other users' card ids.
"""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bankcards.exceptions import CardNotFoundError, OwnerNotFoundError
from bankcards.models.card import Card
from bankcards.models.user import User
from bankcards.principal import Principal
from bankcards.services import card_store

logger = logging.getLogger(__name__)


async def resolve_owner_account(db: AsyncSession, principal: Principal) -> User:
    """
    Map a principal to the User that owns its cards.

    Raises:
        OwnerNotFoundError: If no user exists for the principal's username.
    """
    result = await db.execute(select(User).where(User.username == principal.username))
    owner = result.scalar_one_or_none()
    if owner is None:
        logger.warning("Username=%s not found", principal.username, extra={"owner": principal.username})
        raise OwnerNotFoundError(principal.username)
    return owner


async def resolve_owned_card(
    db: AsyncSession,
    principal: Principal,
    card_id: uuid.UUID,
    owner: User | None = None,
    for_update: bool = False,
) -> Card:
    """
    Load a card only if it is owned by the principal.

    Args:
        db: Database session.
        principal: The authenticated caller.
        card_id: The card to load.
        owner: The principal's User if the caller already resolved it.
        for_update: Lock the row (SELECT ... FOR UPDATE) for a balance change.

    Raises:
        OwnerNotFoundError: If the principal has no account.
        CardNotFoundError: If the card is missing or owned by someone else.
    """
    if owner is None:
        owner = await resolve_owner_account(db, principal)

    card = await card_store.load_card_by_owner_and_id(
        db, owner.id, card_id, for_update=for_update
    )
    if card is None:
        logger.warning(
            "CardId=%s for owner=%s not found", card_id, principal.username,
            extra={"card_id": card_id, "owner": principal.username},
        )
        raise CardNotFoundError(card_id)
    return card
