"""
User model — the authentication identity and the owner of cards.

Each User represents a login credential (username + hashed password) and a
set of roles. In the card domain the User is also the "account": every Card
references its owner through owner_id.

Roles:
  - ROLE_USER: bank customer — may list own cards, request blocks, transfer
  - ROLE_ADMIN: operator — issues, blocks, activates, deletes cards and
    manages users

Roles are stored as one row per (user, role) in user_roles and loaded
eagerly, so the auth dependency can resolve a principal's role set with a
single query.

The password is stored as an Argon2id hash, never in plaintext.
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, Enum, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bankcards.database import Base


class Role(str, enum.Enum):
    """
    Defines the roles a user can hold.

    Inherits from str so the value serializes naturally to JSON and into
    the JWT "roles" claim.
    """
    USER = "ROLE_USER"      # Card holder — self-service card operations
    ADMIN = "ROLE_ADMIN"    # Operator — card lifecycle and user management


class User(Base):
    __tablename__ = "users"

    # UUID primary key: globally unique without sequential guessing
    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    # Login identifier, unique and indexed
    username: Mapped[str] = mapped_column(
        String(100),
        unique=True,
        nullable=False,
        index=True,
    )

    # Argon2id hash of the password (never store plaintext!)
    hashed_password: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    # Disabled users can't log in but their cards are preserved
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # --- Relationships ---
    roles: Mapped[list["UserRole"]] = relationship(
        back_populates="user",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def role_names(self) -> frozenset[str]:
        return frozenset(r.role.value for r in self.roles)


class UserRole(Base):
    __tablename__ = "user_roles"

    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    role: Mapped[Role] = mapped_column(
        Enum(Role),
        nullable=False,
    )

    user: Mapped["User"] = relationship(back_populates="roles")
