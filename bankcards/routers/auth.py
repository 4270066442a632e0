"""
Authentication router — register and login endpoints.

These are the only public (unauthenticated) endpoints in the API.
Everything else requires a valid JWT token.

Endpoints:
  POST /api/auth/register  — Register a new card holder (ROLE_USER)
  POST /api/auth/login     — Authenticate and get a token

Security audit notes:
  - Plaintext passwords exist only in memory during request processing;
    they are hashed before any database operation and never logged.
  - JWT tokens appear only in response bodies, which uvicorn does not log.
  - SQLAlchemy's echo mode (DEBUG=True) logs SQL statements, but only
    the Argon2 hash is included in INSERT statements, never the plaintext.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from bankcards.database import get_db
from bankcards.schemas.auth import AuthResponse, LoginRequest, RegisterRequest
from bankcards.schemas.user import UserResponse
from bankcards.services import auth_service

router = APIRouter()


@router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new card holder",
)
async def register(
    request: RegisterRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Register a new card holder with ROLE_USER.

    - **username**: 3-100 characters, must not be taken
    - **password**: at least 8 characters with lower, upper, digit and one of #$@!%&*?
    """
    user = await auth_service.register(db, request.username, request.password)
    return UserResponse.from_user(user)


@router.post(
    "/login",
    response_model=AuthResponse,
    summary="Authenticate and get a token",
)
async def login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db),
):
    """
    Authenticate with username and password.

    Returns a JWT bearer token that must be included in the Authorization
    header for all subsequent requests:

        Authorization: Bearer <token>

    The token expires after ACCESS_TOKEN_EXPIRE_MINUTES (default: 60).
    """
    user, token = await auth_service.login(db, request.username, request.password)
    return AuthResponse(token=token, username=user.username, roles=sorted(user.role_names))
