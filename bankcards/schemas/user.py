"""
Pydantic schemas for User-related requests and responses.

hashed_password is NEVER included in any response schema; this is a
critical security boundary.

Password policy (registration and admin create/update): at least 8
characters, with a lowercase letter, an uppercase letter, a digit and one
of #$@!%&*?.
"""

import re
import uuid
from datetime import datetime
from typing import Annotated

from pydantic import AfterValidator, BaseModel, Field

from bankcards.models.user import Role, User

PASSWORD_PATTERN = re.compile(
    r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[#$@!%&*?])[A-Za-z\d#$@!%&*?]{8,}$"
)
PASSWORD_RULES = (
    "Password must be at least 8 characters and contain a lowercase letter, "
    "an uppercase letter, a digit and one of #$@!%&*?"
)


def check_password(value: str) -> str:
    if not PASSWORD_PATTERN.match(value):
        raise ValueError(PASSWORD_RULES)
    return value


Password = Annotated[str, AfterValidator(check_password)]


class UserResponse(BaseModel):
    """Public representation of a User (never includes password hash)."""
    id: uuid.UUID
    username: str
    roles: list[str]
    is_active: bool
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            roles=sorted(user.role_names),
            is_active=user.is_active,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class UserCreateRequest(BaseModel):
    """Request body for POST /api/admin/users."""
    username: str = Field(min_length=3, max_length=100)
    password: Password
    roles: set[Role] = Field(default_factory=lambda: {Role.USER}, min_length=1)
    is_active: bool = True


class UserUpdateRequest(BaseModel):
    """Request body for PATCH /api/admin/users/{user_id}; omitted fields are unchanged."""
    username: str | None = Field(None, min_length=3, max_length=100)
    password: Password | None = None
    roles: set[Role] | None = Field(None, min_length=1)
    is_active: bool | None = None


class UserPageResponse(BaseModel):
    items: list[UserResponse]
    total: int
    page: int
    size: int
    pages: int
