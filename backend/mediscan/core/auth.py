"""Authentication helpers: JWT session cookies and password credentials.

Pipeline:
- create_jwt / set_auth_cookie / clear_auth_cookie: session issuance
- validate_password: format rules (sync, no network)
- hash_password / verify_password: bcrypt hash + salt pair
- DUMMY_HASH: timing-safe constant for user enumeration defense
"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import bcrypt
import jwt
from fastapi import Response

from mediscan.core.config import settings
from mediscan.core.errors import ValidationError

logger = logging.getLogger(__name__)

# Default JWT expiration: 1 hour
_DEFAULT_EXPIRATION = timedelta(hours=1)

# bcrypt cost factor for password hashing
_BCRYPT_ROUNDS = 12

# bcrypt ignores input past 72 bytes; newer releases reject it outright
_BCRYPT_MAX_BYTES = 72

_MIN_PASSWORD_LENGTH = 6

JWT_AUDIENCE = "mediscan"

# Pre-computed bcrypt hash for timing-safe comparison on user-not-found.
# Security: prevents user enumeration via response time differences.
DUMMY_HASH = b"$2b$12$ZP2PVB8yI35X.mkRqcUPUuSzJA1CNRt4dZ7X3cyrfJu.2S3w.Qen2"


@dataclass(frozen=True)
class PasswordCredentials:
    """bcrypt hash and the salt it was generated with.

    Always written to the users table together; an account with only one
    of the two is not password-authenticatable.
    """

    password_hash: str
    password_salt: str


def create_jwt(
    *,
    user_id: str,
    secret: str,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a signed JWT with standard claims.

    Args:
        user_id: User UUID string for the sub claim.
        secret: HMAC signing secret.
        expires_delta: Time until expiration. Defaults to 1 hour.

    Returns:
        Encoded JWT string.
    """
    now = datetime.now(UTC)
    payload = {
        "sub": user_id,
        "aud": JWT_AUDIENCE,
        "iss": settings.auth_issuer,
        "exp": now + (expires_delta or _DEFAULT_EXPIRATION),
        "iat": now,
    }
    return jwt.encode(payload, secret, algorithm="HS256")


def set_auth_cookie(response: Response, token: str) -> None:
    """Set httpOnly JWT cookie on response.

    Args:
        response: FastAPI response object.
        token: JWT token string.
    """
    response.set_cookie(
        key=settings.auth_cookie_name,
        value=token,
        httponly=True,
        secure=settings.auth_cookie_secure,
        samesite=settings.auth_cookie_samesite,
        path="/",
        max_age=int(_DEFAULT_EXPIRATION.total_seconds()),
        domain=settings.auth_cookie_domain or None,
    )


def clear_auth_cookie(response: Response) -> None:
    """Delete the JWT cookie. Attributes must match set_auth_cookie()."""
    response.delete_cookie(
        key=settings.auth_cookie_name,
        path="/",
        httponly=True,
        secure=settings.auth_cookie_secure,
        samesite=settings.auth_cookie_samesite,
        domain=settings.auth_cookie_domain or None,
    )


def validate_password(password: str) -> None:
    """Validate password length rules.

    Args:
        password: Plain-text password to validate.

    Raises:
        ValidationError: If the password is too short or too long for bcrypt.
    """
    if len(password) < _MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password too short (min {_MIN_PASSWORD_LENGTH} characters)"
        )
    if len(password.encode()) > _BCRYPT_MAX_BYTES:
        raise ValidationError(f"Password must be at most {_BCRYPT_MAX_BYTES} bytes")


def hash_password(password: str) -> PasswordCredentials:
    """Hash a password with a fresh bcrypt salt.

    Args:
        password: Plain-text password (already validated).

    Returns:
        PasswordCredentials holding both hash and salt.
    """
    salt = bcrypt.gensalt(rounds=_BCRYPT_ROUNDS)
    hashed = bcrypt.hashpw(password.encode(), salt)
    return PasswordCredentials(
        password_hash=hashed.decode(),
        password_salt=salt.decode(),
    )


def verify_password(password: str, password_hash: str | None) -> bool:
    """Check a password against a stored bcrypt hash.

    Runs a comparison against DUMMY_HASH when no hash is stored so the
    response time does not reveal whether the account exists.
    """
    if not password_hash or len(password.encode()) > _BCRYPT_MAX_BYTES:
        bcrypt.checkpw(b"dummy-password", DUMMY_HASH)
        return False
    try:
        return bcrypt.checkpw(password.encode(), password_hash.encode())
    except ValueError:
        logger.warning("Stored password hash is malformed")
        return False
