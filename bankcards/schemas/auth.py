"""
Pydantic schemas for authentication endpoints (register and login).

Pydantic validates incoming data automatically — if a required field is
missing, the wrong type, or the password breaks the policy, FastAPI returns
a 422 error before our code even runs.
"""

from pydantic import BaseModel, Field

from bankcards.schemas.user import Password


class RegisterRequest(BaseModel):
    """Request body for POST /api/auth/register."""
    username: str = Field(min_length=3, max_length=100)
    password: Password


class LoginRequest(BaseModel):
    """Request body for POST /api/auth/login."""
    username: str
    password: str


class AuthResponse(BaseModel):
    """Response body for a successful login — contains the JWT."""
    token: str
    token_type: str = "bearer"
    username: str
    roles: list[str]
