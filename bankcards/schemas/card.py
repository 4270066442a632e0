"""
Pydantic schemas for Card endpoints.

Card numbers are NEVER returned in full. Responses carry only the masked
form ("**** **** **** 1234"); the ciphertext and fingerprint never leave
the service layer.

Money is a Decimal with two decimal places and serializes as a string
("70.00") so no precision is lost in JSON.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from bankcards.models.card import CardStatus
from bankcards.services.card_service import CardPage


class CardResponse(BaseModel):
    """Public representation of a card (masked number only)."""
    id: uuid.UUID
    masked_number: str
    owner_id: uuid.UUID
    owner_username: str
    expiry_date: date
    status: CardStatus
    balance: Decimal
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class CardPageResponse(BaseModel):
    """One zero-based page of cards."""
    items: list[CardResponse]
    total: int
    page: int
    size: int
    pages: int

    @classmethod
    def from_page(cls, page: CardPage) -> "CardPageResponse":
        return cls(
            items=[CardResponse.model_validate(view) for view in page.items],
            total=page.total,
            page=page.page,
            size=page.size,
            pages=page.pages,
        )


class CardBalanceResponse(BaseModel):
    """Masked number and balance of one card."""
    id: uuid.UUID
    masked_number: str
    balance: Decimal

    model_config = {"from_attributes": True}


class CreateCardRequest(BaseModel):
    """Request body for POST /api/admin/cards."""
    owner_id: uuid.UUID
    expiry_date: date | None = Field(
        None, description="Defaults to CARD_VALIDITY_YEARS from today"
    )

    @field_validator("expiry_date")
    @classmethod
    def expiry_in_future(cls, value: date | None) -> date | None:
        if value is not None and value <= date.today():
            raise ValueError("Expiry date must be in the future")
        return value


class TransferRequest(BaseModel):
    """Request body for POST /api/cards/transfer."""
    from_card_id: uuid.UUID
    to_card_id: uuid.UUID
    amount: Decimal = Field(gt=0, decimal_places=2, description="Amount, at most 2 decimal places")
    description: str | None = Field(None, max_length=255)


class TransferResponse(BaseModel):
    """Response body for a successful transfer."""
    from_card_id: uuid.UUID
    to_card_id: uuid.UUID
    amount: Decimal
    description: str | None
    processed_at: datetime

    model_config = {"from_attributes": True}
