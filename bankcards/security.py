"""
Security utilities: password hashing, JWT tokens, and the card number codec.

This module centralizes all cryptographic operations so they're easy to
audit and update. Three concerns are handled here:

1. PASSWORD HASHING (Argon2)
   - Passwords are never stored in plaintext
   - passlib's CryptContext with the argon2 scheme (Argon2id variant)

2. JWT TOKENS
   - After login, the user receives a signed JWT with "sub" (username) and
     "roles" (list of role names) claims
   - Signed with SECRET_KEY using HS256, expires after
     ACCESS_TOKEN_EXPIRE_MINUTES

3. CARD NUMBER CODEC (Fernet: AES-128-CBC + HMAC-SHA256)
   - encrypt/decrypt card numbers at rest; a random IV is carried inside
     every Fernet token, and the HMAC rejects tampered ciphertext
   - mask() produces the display form "**** **** **** 1234"
   - fingerprint() gives a keyed, deterministic digest of the number so
     uniqueness can be enforced without decrypting every stored card
   - The key is read once from CARD_ENCRYPTION_KEY (get_card_codec caches
     the codec for the life of the process); key rotation is out of scope

Enterprise note:
  In production the card key would live in an HSM or a secrets manager
  (AWS KMS, HashiCorp Vault). CardNumberCodec only needs the key material,
  so swapping the provider does not touch the card services.
"""

import base64
import binascii
from datetime import datetime, timedelta, timezone
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from jose import jwt
from passlib.context import CryptContext

from bankcards.config import settings
from bankcards.exceptions import CryptoError


# ---------------------------------------------------------------------------
# 1. Password Hashing (Argon2)
# ---------------------------------------------------------------------------

# If we ever migrate from argon2 to a future scheme, passlib verifies old
# hashes with the original scheme and hashes new passwords with the new one.
pwd_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(plain_password: str) -> str:
    """Hash a plaintext password using Argon2id."""
    return pwd_context.hash(plain_password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plaintext password against a stored Argon2 hash (constant time)."""
    return pwd_context.verify(plain_password, hashed_password)


# ---------------------------------------------------------------------------
# 2. JWT Tokens
# ---------------------------------------------------------------------------


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """
    Create a signed JWT access token.

    Args:
        data: Claims to encode (must include "sub"; login adds "roles").
        expires_delta: Optional custom lifetime. Defaults to
                       ACCESS_TOKEN_EXPIRE_MINUTES from settings.

    Returns:
        An encoded JWT string.
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_access_token(token: str) -> dict:
    """
    Decode and verify a JWT access token.

    Raises:
        JWTError: If the token is expired, tampered with, or invalid.
    """
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


# ---------------------------------------------------------------------------
# 3. Card Number Codec
# ---------------------------------------------------------------------------

CARD_NUMBER_LENGTH = 16
MASK_SENTINEL = "****"


def _is_card_number(value) -> bool:
    return (
        isinstance(value, str)
        and len(value) == CARD_NUMBER_LENGTH
        and value.isascii()
        and value.isdigit()
    )


class CardNumberCodec:
    """
    Encrypts, decrypts, masks and fingerprints 16-digit card numbers.

    Pure functions over their input plus the injected key. Every failure
    surfaces as CryptoError; callers must never display a card whose number
    could not be decrypted.
    """

    def __init__(self, key: str | bytes):
        try:
            self._fernet = Fernet(key)
            raw_key = base64.urlsafe_b64decode(key)
        except (ValueError, TypeError, binascii.Error) as exc:
            raise CryptoError("Card encryption key is missing or malformed") from exc

        # Separate key for fingerprints so the digest never reuses Fernet's keys
        self._fingerprint_key = HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=None,
            info=b"bankcards card-number fingerprint",
        ).derive(raw_key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt a 16-digit card number into a URL-safe Fernet token."""
        if not _is_card_number(plaintext):
            raise CryptoError("Card number must be exactly 16 digits")
        return self._fernet.encrypt(plaintext.encode("ascii")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a token produced by encrypt(); tampering raises CryptoError."""
        try:
            plaintext = self._fernet.decrypt(ciphertext.encode("ascii")).decode("ascii")
        except (InvalidToken, UnicodeError, AttributeError, TypeError) as exc:
            raise CryptoError("Card number could not be decrypted") from exc
        if not _is_card_number(plaintext):
            raise CryptoError("Decrypted card number is malformed")
        return plaintext

    def fingerprint(self, plaintext: str) -> str:
        """Keyed HMAC-SHA256 hex digest of a card number (deterministic)."""
        if not _is_card_number(plaintext):
            raise CryptoError("Card number must be exactly 16 digits")
        mac = hmac.HMAC(self._fingerprint_key, hashes.SHA256())
        mac.update(plaintext.encode("ascii"))
        return mac.finalize().hex()

    @staticmethod
    def mask(plaintext: str | None) -> str:
        """Display form showing only the last four digits."""
        if plaintext is None or len(plaintext) < 4:
            return MASK_SENTINEL
        return "**** **** **** " + plaintext[-4:]


@lru_cache
def get_card_codec() -> CardNumberCodec:
    """Process-wide codec built from CARD_ENCRYPTION_KEY on first use."""
    return CardNumberCodec(settings.CARD_ENCRYPTION_KEY)
