"""
Custom exception classes and FastAPI exception handlers.

The service layer raises these domain errors without importing HTTP concepts;
the handlers registered here translate them into consistent JSON responses:

    {"detail": "human readable reason", "error_type": "machine_readable_tag"}

Exception hierarchy:
    BankCardsError (base)
    ├── OwnerNotFoundError       — card owner / principal's account is missing
    ├── CardNotFoundError        — card missing OR owned by someone else
    ├── UserNotFoundError        — admin user management lookups
    ├── InvalidOperationError    — state-machine or business-rule violation
    ├── InsufficientFundsError   — debit would drive a balance negative
    ├── ConflictError            — optimistic-lock version mismatch on write
    ├── CryptoError              — card number encryption/decryption failure
    ├── IssuanceFailedError      — no unique card number after bounded retries
    ├── DuplicateUsernameError   — registering a taken username
    └── InvalidCredentialsError  — login failure (never says which part was wrong)

Unclassified exceptions are caught by a catch-all handler that returns a
generic 500 and logs the traceback, so internals never leak to clients.
"""

import logging
import uuid
from decimal import Decimal

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Base exception
# ---------------------------------------------------------------------------

class BankCardsError(Exception):
    """Base exception for all Bank Cards API domain errors."""

    def __init__(self, detail: str = "An error occurred"):
        self.detail = detail
        super().__init__(self.detail)


# ---------------------------------------------------------------------------
# Domain exceptions
# ---------------------------------------------------------------------------

class OwnerNotFoundError(BankCardsError):
    """Raised when the owning account of a card (or of a principal) is absent."""

    def __init__(self, owner: uuid.UUID | str):
        self.owner = owner
        super().__init__(f"Owner {owner} not found")


class CardNotFoundError(BankCardsError):
    """
    Raised when a card does not exist or belongs to a different owner.

    The message is identical in both cases so callers cannot probe for
    the existence of other users' cards.
    """

    def __init__(self, card_id: uuid.UUID):
        self.card_id = card_id
        super().__init__(f"Card {card_id} not found")


class UserNotFoundError(BankCardsError):
    """Raised by admin user management when a user id or username is unknown."""

    def __init__(self, user: uuid.UUID | str):
        self.user = user
        super().__init__(f"User {user} not found")


class InvalidOperationError(BankCardsError):
    """Raised when a card state transition or business rule is violated."""


class InsufficientFundsError(BankCardsError):
    """
    Raised when a transfer would drive the source card balance below zero.

    Attributes:
        card_id: The card that lacks sufficient funds.
        requested: The amount the user tried to move.
        available: The card's balance at the time of the check.
    """

    def __init__(self, card_id: uuid.UUID, requested: Decimal, available: Decimal):
        self.card_id = card_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient funds on card {card_id}: "
            f"requested {requested}, available {available}"
        )


class ConflictError(BankCardsError):
    """Raised when a write carries a stale version (optimistic-lock conflict)."""

    def __init__(self, card_id: uuid.UUID, expected_version: int):
        self.card_id = card_id
        self.expected_version = expected_version
        super().__init__(
            f"Card {card_id} was modified concurrently (expected version {expected_version})"
        )


class CryptoError(BankCardsError):
    """Raised when a card number cannot be encrypted or decrypted."""


class IssuanceFailedError(BankCardsError):
    """Raised when no unique card number could be generated."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not generate a unique card number after {attempts} attempts")


class DuplicateUsernameError(BankCardsError):
    """Raised when attempting to register a username that's already in use."""

    def __init__(self, username: str):
        self.username = username
        super().__init__(f"Username {username} is already registered")


class InvalidCredentialsError(BankCardsError):
    """Raised when login credentials are incorrect."""

    def __init__(self):
        super().__init__("Invalid username or password")


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

def _error_response(status_code: int, detail: str, error_type: str, **extra) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"detail": detail, "error_type": error_type, **extra},
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register custom exception handlers with the FastAPI application.

    Each handler maps a domain exception to an HTTP status code and the
    consistent JSON body described in the module docstring. Called once
    by the application factory in main.py.
    """

    @app.exception_handler(OwnerNotFoundError)
    async def owner_not_found_handler(
        request: Request, exc: OwnerNotFoundError
    ) -> JSONResponse:
        logger.warning("Not found: %s", exc.detail, extra={"path": request.url.path})
        return _error_response(404, exc.detail, "owner_not_found")

    @app.exception_handler(CardNotFoundError)
    async def card_not_found_handler(
        request: Request, exc: CardNotFoundError
    ) -> JSONResponse:
        logger.warning("Not found: %s", exc.detail, extra={"path": request.url.path})
        return _error_response(404, exc.detail, "card_not_found")

    @app.exception_handler(UserNotFoundError)
    async def user_not_found_handler(
        request: Request, exc: UserNotFoundError
    ) -> JSONResponse:
        logger.warning("Not found: %s", exc.detail, extra={"path": request.url.path})
        return _error_response(404, exc.detail, "user_not_found")

    @app.exception_handler(InvalidOperationError)
    async def invalid_operation_handler(
        request: Request, exc: InvalidOperationError
    ) -> JSONResponse:
        logger.warning("Card operation error: %s", exc.detail, extra={"path": request.url.path})
        return _error_response(400, exc.detail, "invalid_operation")

    @app.exception_handler(InsufficientFundsError)
    async def insufficient_funds_handler(
        request: Request, exc: InsufficientFundsError
    ) -> JSONResponse:
        logger.warning("Card operation error: %s", exc.detail, extra={"path": request.url.path})
        return _error_response(
            400,
            exc.detail,
            "insufficient_funds",
            requested=str(exc.requested),
            available=str(exc.available),
        )

    @app.exception_handler(ConflictError)
    async def conflict_handler(
        request: Request, exc: ConflictError
    ) -> JSONResponse:
        logger.warning("Conflict: %s", exc.detail, extra={"path": request.url.path})
        return _error_response(409, exc.detail, "conflict")

    @app.exception_handler(CryptoError)
    async def crypto_error_handler(
        request: Request, exc: CryptoError
    ) -> JSONResponse:
        # The reason stays in the logs; clients get a generic message
        logger.error("Card crypto failure: %s", exc.detail, extra={"path": request.url.path})
        return _error_response(500, "Card data could not be processed", "crypto_error")

    @app.exception_handler(IssuanceFailedError)
    async def issuance_failed_handler(
        request: Request, exc: IssuanceFailedError
    ) -> JSONResponse:
        logger.error("Issuance failed: %s", exc.detail, extra={"path": request.url.path})
        return _error_response(503, exc.detail, "issuance_failed")

    @app.exception_handler(DuplicateUsernameError)
    async def duplicate_username_handler(
        request: Request, exc: DuplicateUsernameError
    ) -> JSONResponse:
        logger.warning("Conflict: %s", exc.detail, extra={"path": request.url.path})
        return _error_response(409, exc.detail, "duplicate_username")

    @app.exception_handler(InvalidCredentialsError)
    async def invalid_credentials_handler(
        request: Request, exc: InvalidCredentialsError
    ) -> JSONResponse:
        return _error_response(401, exc.detail, "invalid_credentials")

    @app.exception_handler(Exception)
    async def unhandled_error_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        logger.error(
            "Unexpected error at %s", request.url.path, exc_info=exc,
            extra={"path": request.url.path},
        )
        return _error_response(500, "Internal server error", "internal_error")
