"""
User service — administrative user management.

Users are the owners of cards. Admins can create users with any role set,
look them up by id or username, update them, page through them and delete
them. A user who still owns cards cannot be deleted: cards are never
orphaned and never removed as a side effect of a user operation.
"""

import logging
import uuid
from collections.abc import Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from bankcards.exceptions import DuplicateUsernameError, InvalidOperationError, UserNotFoundError
from bankcards.models.card import Card
from bankcards.models.user import Role, User, UserRole
from bankcards.security import hash_password

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "username": User.username,
    "created_at": User.created_at,
}


async def _ensure_username_free(db: AsyncSession, username: str) -> None:
    result = await db.execute(select(User.id).where(User.username == username))
    if result.first() is not None:
        logger.warning("Username=%s already taken", username, extra={"owner": username})
        raise DuplicateUsernameError(username)


async def create_user(
    db: AsyncSession,
    username: str,
    password: str,
    roles: Iterable[Role] = (Role.USER,),
    is_active: bool = True,
) -> User:
    """
    Create a user with the given roles.

    Raises:
        DuplicateUsernameError: If the username is already taken.
    """
    await _ensure_username_free(db, username)

    user = User(
        username=username,
        hashed_password=hash_password(password),
        is_active=is_active,
        roles=[UserRole(role=role) for role in set(roles)],
    )
    db.add(user)
    await db.flush()
    await db.refresh(user)

    logger.info("User=%s created with roles %s", username, sorted(user.role_names),
                extra={"owner": username})
    return user


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise UserNotFoundError(user_id)
    return user


async def get_user_by_username(db: AsyncSession, username: str) -> User:
    result = await db.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()
    if user is None:
        raise UserNotFoundError(username)
    return user


async def update_user(
    db: AsyncSession,
    user_id: uuid.UUID,
    username: str | None = None,
    password: str | None = None,
    roles: Iterable[Role] | None = None,
    is_active: bool | None = None,
) -> User:
    """
    Update the given fields of a user; None leaves a field unchanged.

    Raises:
        UserNotFoundError: If the user doesn't exist.
        DuplicateUsernameError: If renaming to a taken username.
    """
    user = await get_user(db, user_id)

    if username is not None and username != user.username:
        await _ensure_username_free(db, username)
        user.username = username
    if password is not None:
        user.hashed_password = hash_password(password)
    if is_active is not None:
        user.is_active = is_active
    if roles is not None:
        wanted = set(roles)
        # Diff instead of replacing the collection: (user_id, role) is unique
        for existing in list(user.roles):
            if existing.role not in wanted:
                user.roles.remove(existing)
        held = {r.role for r in user.roles}
        for role in wanted - held:
            user.roles.append(UserRole(role=role))

    await db.flush()
    await db.refresh(user)
    logger.info("User=%s updated", user.username, extra={"owner": user.username})
    return user


async def delete_user(db: AsyncSession, user_id: uuid.UUID) -> None:
    """
    Delete a user that owns no cards.

    Raises:
        UserNotFoundError: If the user doesn't exist.
        InvalidOperationError: If the user still owns cards.
    """
    user = await get_user(db, user_id)

    result = await db.execute(
        select(func.count()).select_from(Card).where(Card.owner_id == user.id)
    )
    owned = result.scalar_one()
    if owned:
        logger.warning("User=%s still owns %d card(s), not deleted", user.username, owned,
                       extra={"owner": user.username})
        raise InvalidOperationError(f"User {user.username} still owns {owned} card(s)")

    await db.delete(user)
    await db.flush()
    logger.info("User=%s deleted", user.username, extra={"owner": user.username})


async def list_users(
    db: AsyncSession,
    page: int = 0,
    size: int = 20,
    sort: str = "username",
    descending: bool = False,
) -> tuple[list[User], int]:
    """Return one page of users plus the total user count."""
    column = SORTABLE_FIELDS.get(sort)
    if column is None:
        raise InvalidOperationError(f"Cannot sort users by {sort}")
    order = column.desc() if descending else column.asc()

    total_result = await db.execute(select(func.count()).select_from(User))
    total = total_result.scalar_one()

    result = await db.execute(
        select(User)
        .order_by(order, User.id)
        .limit(size)
        .offset(page * size)
    )
    return list(result.scalars().all()), total
