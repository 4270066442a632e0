"""
Admin router — card lifecycle and user management.

All endpoints require ROLE_ADMIN.

Card endpoints:
  POST   /api/admin/cards                     — Issue a card for a user
  GET    /api/admin/cards                     — List all cards (paged)
  GET    /api/admin/cards/{card_id}           — Get any card
  PATCH  /api/admin/cards/{card_id}/block     — Block a card
  PATCH  /api/admin/cards/{card_id}/activate  — Activate a card
  DELETE /api/admin/cards/{card_id}           — Delete a NEW or EXPIRED card

User endpoints:
  POST   /api/admin/users                     — Create a user with roles
  GET    /api/admin/users                     — List users (paged, sortable)
  GET    /api/admin/users/by-username/{name}  — Get a user by username
  GET    /api/admin/users/{user_id}           — Get a user by id
  PATCH  /api/admin/users/{user_id}           — Update a user
  DELETE /api/admin/users/{user_id}           — Delete a user with no cards

By consolidating all admin routes in one router, we avoid route-ordering
conflicts that arise when multiple routers share a prefix and have
overlapping parameterized paths.
"""

import math
import uuid
from typing import Literal

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from bankcards.config import settings
from bankcards.database import get_db
from bankcards.dependencies import require_admin
from bankcards.models.card import CardStatus
from bankcards.principal import Principal
from bankcards.schemas.card import CardPageResponse, CardResponse, CreateCardRequest
from bankcards.schemas.user import (
    UserCreateRequest,
    UserPageResponse,
    UserResponse,
    UserUpdateRequest,
)
from bankcards.services import card_service, user_service

router = APIRouter()


# ---------------------------------------------------------------------------
# Card admin endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/cards",
    response_model=CardResponse,
    status_code=status.HTTP_201_CREATED,
    summary="[Admin] Issue a card",
)
async def admin_create_card(
    request: CreateCardRequest,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Issue a new card for a user.

    - The card starts in status NEW with a 0.00 balance
    - The number is random, encrypted at rest and only returned masked
    - Expiry defaults to CARD_VALIDITY_YEARS from today
    """
    view = await card_service.issue_card(db, request.owner_id, request.expiry_date)
    return CardResponse.model_validate(view)


@router.get(
    "/cards",
    response_model=CardPageResponse,
    summary="[Admin] List all cards",
)
async def admin_list_cards(
    page: int = Query(0, ge=0),
    size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    card_status: CardStatus | None = Query(None, alias="status"),
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    result = await card_service.list_all_cards(db, page=page, size=size, status=card_status)
    return CardPageResponse.from_page(result)


@router.get(
    "/cards/{card_id}",
    response_model=CardResponse,
    summary="[Admin] Get any card",
)
async def admin_get_card(
    card_id: uuid.UUID,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return CardResponse.model_validate(await card_service.get_card(db, card_id))


@router.patch(
    "/cards/{card_id}/block",
    response_model=CardResponse,
    summary="[Admin] Block a card",
)
async def admin_block_card(
    card_id: uuid.UUID,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Block a NEW, ACTIVE or BLOCK_REQUESTED card."""
    return CardResponse.model_validate(await card_service.block_card(db, card_id))


@router.patch(
    "/cards/{card_id}/activate",
    response_model=CardResponse,
    summary="[Admin] Activate a card",
)
async def admin_activate_card(
    card_id: uuid.UUID,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Activate a NEW, BLOCKED or BLOCK_REQUESTED card."""
    return CardResponse.model_validate(await card_service.activate_card(db, card_id))


@router.delete(
    "/cards/{card_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="[Admin] Delete a card",
)
async def admin_delete_card(
    card_id: uuid.UUID,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Permanently remove a card. Only NEW and EXPIRED cards can be deleted."""
    await card_service.delete_card(db, card_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# User admin endpoints
# ---------------------------------------------------------------------------

@router.post(
    "/users",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="[Admin] Create a user",
)
async def admin_create_user(
    request: UserCreateRequest,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    user = await user_service.create_user(
        db,
        request.username,
        request.password,
        roles=request.roles,
        is_active=request.is_active,
    )
    return UserResponse.from_user(user)


@router.get(
    "/users",
    response_model=UserPageResponse,
    summary="[Admin] List users",
)
async def admin_list_users(
    page: int = Query(0, ge=0),
    size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=settings.MAX_PAGE_SIZE),
    sort: Literal["username", "created_at"] = Query("username"),
    descending: bool = Query(False),
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    users, total = await user_service.list_users(
        db, page=page, size=size, sort=sort, descending=descending
    )
    return UserPageResponse(
        items=[UserResponse.from_user(u) for u in users],
        total=total,
        page=page,
        size=size,
        pages=math.ceil(total / size),
    )


@router.get(
    "/users/by-username/{username}",
    response_model=UserResponse,
    summary="[Admin] Get a user by username",
)
async def admin_get_user_by_username(
    username: str,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return UserResponse.from_user(await user_service.get_user_by_username(db, username))


@router.get(
    "/users/{user_id}",
    response_model=UserResponse,
    summary="[Admin] Get a user by id",
)
async def admin_get_user(
    user_id: uuid.UUID,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return UserResponse.from_user(await user_service.get_user(db, user_id))


@router.patch(
    "/users/{user_id}",
    response_model=UserResponse,
    summary="[Admin] Update a user",
)
async def admin_update_user(
    user_id: uuid.UUID,
    request: UserUpdateRequest,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Update username, password, roles or enabled flag; omitted fields are unchanged."""
    user = await user_service.update_user(
        db,
        user_id,
        username=request.username,
        password=request.password,
        roles=request.roles,
        is_active=request.is_active,
    )
    return UserResponse.from_user(user)


@router.delete(
    "/users/{user_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="[Admin] Delete a user",
)
async def admin_delete_user(
    user_id: uuid.UUID,
    admin: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Delete a user. Rejected while the user still owns any card."""
    await user_service.delete_user(db, user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
