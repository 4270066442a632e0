"""
FastAPI dependencies for authentication and authorization.

Dependencies are reusable functions that FastAPI injects into route handlers.
They form a dependency chain that enforces both authentication and
role-based access control:

  get_current_principal (JWT -> Principal)
      ├── require_user   (ROLE_USER)   — /api/cards card holder endpoints
      └── require_admin  (ROLE_ADMIN)  — /api/admin endpoints

The token's "sub" claim names the user. The user is re-loaded on every
request so a disabled account or a changed role set takes effect
immediately; the role set on the Principal always comes from the database,
not from the token.

Every protected endpoint declares one of these as a parameter. If a
dependency fails (invalid token or wrong role), the request is rejected
before the route handler runs: 401 for authentication, 403 for roles.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bankcards.database import get_db
from bankcards.models.user import Role, User
from bankcards.principal import Principal
from bankcards.security import decode_access_token


# Looks for "Authorization: Bearer <token>". tokenUrl is what Swagger UI's
# "Authorize" button points at.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


async def get_current_principal(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """
    Validate the JWT and resolve the caller into a Principal.

    Raises:
        HTTPException 401: If the token is invalid or the user doesn't
                           exist or is disabled.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    try:
        payload = decode_access_token(token)
    except JWTError:
        raise credentials_exception
    username = payload.get("sub")
    if not isinstance(username, str) or not username:
        raise credentials_exception

    result = await db.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()

    if user is None or not user.is_active:
        raise credentials_exception

    return Principal(username=user.username, roles=user.role_names)


def _require_role(role: Role):
    async def dependency(
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        if not principal.has_role(role):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"{role.value} required",
            )
        return principal

    dependency.__name__ = f"require_{role.name.lower()}"
    return dependency


require_admin = _require_role(Role.ADMIN)
require_user = _require_role(Role.USER)
