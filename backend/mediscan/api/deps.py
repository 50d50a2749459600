"""Shared dependencies for API endpoints.

Session auth reads a JWT from the httpOnly cookie set on OTP verification.
The OTP coordinator is assembled per request from the request's database
session and the process-wide volatile store and notification sender.
"""

import uuid
from typing import Annotated

import jwt
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from mediscan.core.auth import JWT_AUDIENCE
from mediscan.core.config import settings
from mediscan.core.database import get_db
from mediscan.core.errors import UnauthorizedError
from mediscan.core.notifications import get_notification_sender
from mediscan.services.otp_coordinator import OtpCoordinator
from mediscan.services.otp_store import SqlOtpStore, get_volatile_store

DbSession = Annotated[AsyncSession, Depends(get_db)]


def get_current_user_id(request: Request) -> uuid.UUID:
    """Get current user ID from the session cookie.

    Validation steps:
    1. Read JWT from cookie
    2. Decode + verify signature (HS256)
    3. Verify exp, aud, iss claims
    4. Extract sub as UUID

    Args:
        request: HTTP request (injected by FastAPI).

    Returns:
        UUID of the current authenticated user.

    Raises:
        UnauthorizedError: 401 for any auth failure.
    """
    token = request.cookies.get(settings.auth_cookie_name)
    if not token:
        raise UnauthorizedError()

    try:
        payload = jwt.decode(
            token,
            settings.auth_secret.get_secret_value(),
            algorithms=["HS256"],
            audience=JWT_AUDIENCE,
            issuer=settings.auth_issuer,
        )
        return uuid.UUID(payload["sub"])
    except (jwt.InvalidTokenError, KeyError, ValueError) as exc:
        # Security: the reason a token failed is not disclosed
        raise UnauthorizedError() from exc


def get_otp_coordinator(db: DbSession) -> OtpCoordinator:
    """Coordinator bound to this request's database session."""
    return OtpCoordinator(
        SqlOtpStore(db),
        get_volatile_store(),
        get_notification_sender(),
    )


# Reusable type aliases for dependency injection
CurrentUserId = Annotated[uuid.UUID, Depends(get_current_user_id)]
Coordinator = Annotated[OtpCoordinator, Depends(get_otp_coordinator)]
