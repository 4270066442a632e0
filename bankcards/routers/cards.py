"""
Cards router — self-service endpoints for card holders.

All endpoints require ROLE_USER and only ever touch the caller's own cards;
a card owned by someone else answers 404 exactly like a missing card.

Endpoints:
  GET  /api/cards/user                  — List own cards (paged, masked)
  POST /api/cards/{card_id}/block-request — Ask for a card to be blocked
  GET  /api/cards/{card_id}/balance     — Masked number and balance
  POST /api/cards/transfer              — Move money between own cards
"""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from bankcards.config import settings
from bankcards.database import get_db
from bankcards.dependencies import require_user
from bankcards.models.card import CardStatus
from bankcards.principal import Principal
from bankcards.schemas.card import (
    CardBalanceResponse,
    CardPageResponse,
    CardResponse,
    TransferRequest,
    TransferResponse,
)
from bankcards.services import card_service, transfer_service

router = APIRouter()


@router.get(
    "/user",
    response_model=CardPageResponse,
    summary="List my cards",
)
async def list_my_cards(
    page: int = Query(0, ge=0),
    size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    status: CardStatus | None = Query(None, description="Only cards in this status"),
    principal: Principal = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """List the caller's cards, oldest first. Expired cards show as EXPIRED."""
    result = await card_service.list_user_cards(db, principal, page=page, size=size, status=status)
    return CardPageResponse.from_page(result)


@router.post(
    "/transfer",
    response_model=TransferResponse,
    summary="Transfer between my cards",
)
async def transfer(
    request: TransferRequest,
    principal: Principal = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Move money between two of the caller's ACTIVE cards.

    Both balances change in one database transaction, or neither does.
    """
    record = await transfer_service.transfer(
        db,
        principal,
        from_card_id=request.from_card_id,
        to_card_id=request.to_card_id,
        amount=request.amount,
        description=request.description,
    )
    return TransferResponse.model_validate(record)


@router.post(
    "/{card_id}/block-request",
    response_model=CardResponse,
    summary="Request a block for my card",
)
async def request_block(
    card_id: uuid.UUID,
    principal: Principal = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    """Move one of the caller's cards to BLOCK_REQUESTED for an admin to act on."""
    view = await card_service.request_block_card(db, principal, card_id)
    return CardResponse.model_validate(view)


@router.get(
    "/{card_id}/balance",
    response_model=CardBalanceResponse,
    summary="Get my card's balance",
)
async def get_balance(
    card_id: uuid.UUID,
    principal: Principal = Depends(require_user),
    db: AsyncSession = Depends(get_db),
):
    balance = await card_service.get_balance(db, principal, card_id)
    return CardBalanceResponse.model_validate(balance)
