"""
Authentication service — registration and login business logic.

This module contains the core auth logic, separated from HTTP concerns.
The router calls these functions and translates the results into HTTP
responses, so the logic can be tested without spinning up a web server.

Registration flow:
  1. Check the username is free
  2. Hash the password with Argon2id
  3. Create the User with ROLE_USER

Login flow:
  1. Look up the user by username
  2. Verify the password against the stored hash
  3. Return a JWT carrying the username ("sub") and role names ("roles")

Security notes:
  - Login returns the same error for "unknown user", "wrong password" and
    "disabled user" to prevent user enumeration
  - JWT tokens are stateless; roles in the token are re-checked against
    the database by the auth dependency on every request
"""

import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bankcards.exceptions import InvalidCredentialsError
from bankcards.models.user import Role, User
from bankcards.security import create_access_token, verify_password
from bankcards.services import user_service

logger = logging.getLogger(__name__)


async def register(db: AsyncSession, username: str, password: str) -> User:
    """
    Register a new card holder.

    Raises:
        DuplicateUsernameError: If the username is already registered.
    """
    return await user_service.create_user(db, username, password, roles=(Role.USER,))


async def login(db: AsyncSession, username: str, password: str) -> tuple[User, str]:
    """
    Authenticate a user and return a JWT token.

    Returns:
        Tuple of (User instance, JWT token string).

    Raises:
        InvalidCredentialsError: If the user is unknown, disabled, or the
                                 password is wrong.
    """
    result = await db.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()

    # Same error for every case (no user enumeration)
    if user is None or not verify_password(password, user.hashed_password) or not user.is_active:
        logger.warning("Failed login for username=%s", username, extra={"owner": username})
        raise InvalidCredentialsError()

    token = create_access_token(
        data={"sub": user.username, "roles": sorted(user.role_names)}
    )
    logger.info("User=%s logged in", username, extra={"owner": username})
    return user, token


async def ensure_admin_user(db: AsyncSession, username: str, password: str) -> User:
    """
    Make sure an administrator with this username exists.

    Used at startup when BOOTSTRAP_ADMIN_USERNAME / _PASSWORD are set. An
    existing user keeps its password and gains ROLE_ADMIN if it lacks it.
    """
    result = await db.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()

    if user is None:
        user = await user_service.create_user(
            db, username, password, roles=(Role.ADMIN, Role.USER)
        )
        logger.info("Bootstrap admin=%s created", username, extra={"owner": username})
        return user

    if Role.ADMIN.value not in user.role_names:
        roles = {r.role for r in user.roles} | {Role.ADMIN}
        user = await user_service.update_user(db, user.id, roles=roles)
        logger.info("Bootstrap admin=%s promoted", username, extra={"owner": username})
    return user
