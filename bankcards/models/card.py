"""
Card model — a payment card owned by a User.

Encryption strategy:
  - encrypted_number: Full 16-digit card number, Fernet-encrypted. Fernet
    uses a random IV, so the same number encrypts differently every time.
  - number_fingerprint: keyed HMAC-SHA256 of the plaintext number. Lets the
    issuer detect a number collision without decrypting every card. Both
    columns carry UNIQUE constraints.

Status lifecycle (see services/card_service.py for the transition rules):

    NEW ──activate──> ACTIVE ──block──> BLOCKED ──activate──> ACTIVE
     │                  │
     │                  └──request block (owner)──> BLOCK_REQUESTED
     │
     └── any non-EXPIRED state ──(expiry date reached)──> EXPIRED  [terminal]

Optimistic concurrency:
  `version` starts at 1 and is bumped by every write. Writes go through
  services/card_store.save_card, which issues
  UPDATE ... WHERE id = :id AND version = :expected and raises ConflictError
  when no row matches. There is no ORM-managed versioning and no
  default/onupdate hook on the timestamps: new_card() stamps created_at /
  updated_at, and save_card() refreshes updated_at.

Balance:
  Exact Decimal with scale 2 (stored as integer cents, see models/types.py).
  A CHECK constraint is the last line of defense against a negative balance;
  the transfer engine checks before every debit.
"""

import enum
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Date, DateTime, Enum, ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bankcards.database import Base
from bankcards.models.types import Money


class CardStatus(str, enum.Enum):
    NEW = "NEW"
    ACTIVE = "ACTIVE"
    BLOCKED = "BLOCKED"
    BLOCK_REQUESTED = "BLOCK_REQUESTED"
    EXPIRED = "EXPIRED"

    @property
    def is_terminal(self) -> bool:
        return self is CardStatus.EXPIRED

    @property
    def is_transferable(self) -> bool:
        return self is CardStatus.ACTIVE

    @property
    def is_deletable(self) -> bool:
        # Only states that never held spendable funds or are finished
        return self in (CardStatus.NEW, CardStatus.EXPIRED)


class Card(Base):
    __tablename__ = "cards"

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_cards_non_negative_balance"),
        CheckConstraint("version >= 1", name="ck_cards_positive_version"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=uuid.uuid4,
    )

    encrypted_number: Mapped[str] = mapped_column(
        String(512),
        unique=True,
        nullable=False,
    )

    number_fingerprint: Mapped[str] = mapped_column(
        String(64),
        unique=True,
        nullable=False,
    )

    owner_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    expiry_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )

    status: Mapped[CardStatus] = mapped_column(
        Enum(CardStatus),
        nullable=False,
        index=True,
    )

    balance: Mapped[Decimal] = mapped_column(
        Money,
        nullable=False,
    )

    version: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    # --- Relationships ---
    # Joined so masked views can show the owner's username without a lazy load
    owner: Mapped["User"] = relationship(lazy="joined")

    def is_expired_on(self, today: date) -> bool:
        return self.expiry_date <= today


def new_card(
    *,
    owner_id: uuid.UUID,
    encrypted_number: str,
    number_fingerprint: str,
    expiry_date: date,
    now: datetime,
) -> Card:
    """Build a freshly issued card: NEW, zero balance, version 1."""
    return Card(
        id=uuid.uuid4(),
        owner_id=owner_id,
        encrypted_number=encrypted_number,
        number_fingerprint=number_fingerprint,
        expiry_date=expiry_date,
        status=CardStatus.NEW,
        balance=Decimal("0.00"),
        version=1,
        created_at=now,
        updated_at=now,
    )
