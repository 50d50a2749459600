"""Authentication endpoints for the OTP-gated account flows.

- send-otp: registration / login code issuance (optionally provisions a password)
- verify-otp: code verification, marks the account verified, issues session cookie
- login: password check, then a login code as second factor
- request-password-reset / reset-password: 15-minute reset code, new credentials
- me / profile / logout: session-scoped account endpoints

Security considerations:
- login: constant-time comparison via DUMMY_HASH prevents user enumeration
- Codes are returned in the response body only when delivery failed and
  OTP_EXPOSE_CODE_ON_DELIVERY_FAILURE is enabled (never in production)
"""

from typing import Literal

from fastapi import APIRouter, Request, Response
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy.exc import IntegrityError

from mediscan.api.deps import Coordinator, CurrentUserId, DbSession
from mediscan.core.auth import (
    clear_auth_cookie,
    create_jwt,
    hash_password,
    set_auth_cookie,
    validate_password,
    verify_password,
)
from mediscan.core.config import settings
from mediscan.core.contacts import ContactChannel, infer_channel, normalize_contact
from mediscan.core.errors import (
    APIError,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    UnauthorizedError,
    ValidationError,
)
from mediscan.core.rate_limiting import limiter
from mediscan.core.responses import DataResponse
from mediscan.models.user import User
from mediscan.repositories.user_repository import UserRepository
from mediscan.services.otp_coordinator import (
    IssueResult,
    OtpPurpose,
    VerificationFailure,
    VerificationResult,
    VerificationSource,
)

router = APIRouter()

_MODE_DATABASE = "database"
_MODE_FALLBACK = "memory_fallback"

_FAILURES: dict[VerificationFailure, tuple[str, str]] = {
    VerificationFailure.EXPIRED: ("OTP_EXPIRED", "OTP has expired"),
    VerificationFailure.INVALID_OR_EXPIRED: ("OTP_INVALID", "Invalid or expired OTP"),
    VerificationFailure.INCOMPLETE_REGISTRATION: (
        "REGISTRATION_INCOMPLETE",
        "Registration incomplete. Please register again.",
    ),
}


# ===================================================================
# Request models
# ===================================================================


class SendOtpRequest(BaseModel):
    """Request body for POST /auth/send-otp."""

    model_config = ConfigDict(extra="forbid")

    contact: str = Field(max_length=255)
    channel: ContactChannel | None = None
    purpose: Literal["registration", "login"] = "registration"
    password: str | None = Field(None, max_length=128)


class VerifyOtpRequest(BaseModel):
    """Request body for POST /auth/verify-otp."""

    model_config = ConfigDict(extra="forbid")

    contact: str = Field(max_length=255)
    code: str = Field(max_length=16)


class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    model_config = ConfigDict(extra="forbid")

    contact: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=128)


class PasswordResetRequest(BaseModel):
    """Request body for POST /auth/request-password-reset."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr


class ResetPasswordRequest(BaseModel):
    """Request body for POST /auth/reset-password."""

    model_config = ConfigDict(extra="forbid")

    email: EmailStr
    code: str = Field(max_length=16)
    new_password: str = Field(max_length=128)


class UpdateProfileRequest(BaseModel):
    """Request body for PATCH /auth/profile."""

    model_config = ConfigDict(extra="forbid")

    full_name: str | None = Field(None, max_length=255)
    phone: str | None = Field(None, max_length=32)


# ===================================================================
# Response helpers
# ===================================================================


def _issue_response(result: IssueResult) -> dict:
    """Build the send-otp style payload from an IssueResult."""
    if result.delivered:
        message = f"OTP sent to your {result.channel}"
    else:
        message = "OTP generated but could not be delivered"
    data = {
        "message": message,
        "mode": _MODE_FALLBACK if result.degraded_to_fallback else _MODE_DATABASE,
        "channel": result.channel,
        "expires_at": result.expires_at.isoformat(),
    }
    if settings.otp_expose_code_on_delivery_failure and result.exposable_code:
        data["otp"] = result.exposable_code
    return data


def _raise_for_failure(result: VerificationResult) -> None:
    """Map a failed verification to its API error."""
    if result.success:
        return
    if result.failure == VerificationFailure.MISSING_INPUT or result.failure is None:
        raise ValidationError("Contact and code are required")
    code, message = _FAILURES[result.failure]
    raise APIError(code=code, message=message, status_code=400)


def _mode_for(source: VerificationSource | None) -> str:
    return _MODE_FALLBACK if source == VerificationSource.FALLBACK else _MODE_DATABASE


def _user_to_response(user: User) -> dict:
    """Build standard user response payload for /me and /profile."""
    return {
        "id": str(user.id),
        "email": user.email,
        "phone": user.phone,
        "full_name": user.full_name,
        "is_verified": user.is_verified,
        "has_password": user.has_password,
    }


# ===================================================================
# POST /auth/send-otp
# ===================================================================


@router.post("/send-otp")
@limiter.limit(settings.rate_limit_otp)
async def send_otp(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: SendOtpRequest,
    coordinator: Coordinator,
) -> DataResponse[dict]:
    """Issue a registration or login code to an email address or phone.

    An optional password is hashed and attached to the account when it has
    none yet. Falls back to in-memory issuance when the database is down.
    """
    credentials = None
    if body.password is not None:
        validate_password(body.password)
        credentials = hash_password(body.password)

    result = await coordinator.issue(
        body.contact,
        OtpPurpose(body.purpose),
        channel=body.channel,
        credentials=credentials,
    )
    return DataResponse(data=_issue_response(result))


# ===================================================================
# POST /auth/verify-otp
# ===================================================================


@router.post("/verify-otp")
@limiter.limit(settings.rate_limit_otp)
async def verify_otp(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: VerifyOtpRequest,
    response: Response,
    coordinator: Coordinator,
) -> DataResponse[dict]:
    """Verify a code and start a session.

    A code verified from the in-memory fallback for a contact with no
    account row succeeds without a session cookie (there is no account to
    bind it to).
    """
    result = await coordinator.verify(
        body.contact, body.code, require_credentials=True
    )
    _raise_for_failure(result)

    identity = result.user
    data: dict = {
        "message": "OTP verified successfully",
        "mode": _mode_for(result.source),
        "session": False,
        "user": None,
    }
    if identity is not None:
        data["user"] = {
            "id": str(identity.id) if identity.id else None,
            "email": identity.email,
            "phone": identity.phone,
            "full_name": identity.full_name,
            "is_verified": identity.is_verified,
        }
        if not identity.is_placeholder:
            token = create_jwt(
                user_id=str(identity.id),
                secret=settings.auth_secret.get_secret_value(),
            )
            set_auth_cookie(response, token)
            data["session"] = True
    return DataResponse(data=data)


# ===================================================================
# POST /auth/login
# ===================================================================


@router.post("/login")
@limiter.limit(settings.rate_limit_otp)
async def login(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: LoginRequest,
    db: DbSession,
    coordinator: Coordinator,
) -> DataResponse[dict]:
    """Check email/phone + password, then send a login code.

    The session cookie is only issued by verify-otp, so a password alone
    never signs a user in.
    """
    user = await UserRepository.get_by_contact(db, body.contact)

    # Security: always perform bcrypt comparison to prevent timing attacks.
    password_hash = user.password_hash if user else None
    if not verify_password(body.password, password_hash) or user is None:
        raise UnauthorizedError("Invalid credentials")

    if not user.is_verified:
        raise ForbiddenError(
            "Please verify your account before signing in",
            code="ACCOUNT_NOT_VERIFIED",
        )

    contact = normalize_contact(body.contact)
    result = await coordinator.issue(
        contact, OtpPurpose.LOGIN, channel=infer_channel(contact)
    )
    return DataResponse(data=_issue_response(result))


# ===================================================================
# POST /auth/request-password-reset
# ===================================================================


@router.post("/request-password-reset")
@limiter.limit(settings.rate_limit_otp)
async def request_password_reset(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: PasswordResetRequest,
    db: DbSession,
    coordinator: Coordinator,
) -> DataResponse[dict]:
    """Send a password reset code (valid for 15 minutes by default)."""
    user = await UserRepository.get_by_contact(db, body.email)
    if user is None:
        raise NotFoundError("User")

    result = await coordinator.issue(
        body.email, OtpPurpose.PASSWORD_RESET, channel="email"
    )
    return DataResponse(data=_issue_response(result))


# ===================================================================
# POST /auth/reset-password
# ===================================================================


@router.post("/reset-password")
@limiter.limit(settings.rate_limit_otp)
async def reset_password(
    request: Request,  # noqa: ARG001 - required by @limiter.limit()
    body: ResetPasswordRequest,
    db: DbSession,
    coordinator: Coordinator,
) -> DataResponse[dict]:
    """Verify a reset code and replace the password hash and salt."""
    # Validate before consuming the code so a weak password does not burn it
    validate_password(body.new_password)

    result = await coordinator.verify(body.email, body.code)
    _raise_for_failure(result)

    user = await UserRepository.get_by_contact(db, body.email)
    if user is None:
        raise NotFoundError("User")

    credentials = hash_password(body.new_password)
    await UserRepository.set_credentials(
        db,
        user,
        password_hash=credentials.password_hash,
        password_salt=credentials.password_salt,
    )
    await db.commit()

    return DataResponse(data={"message": "Password reset successfully"})


# ===================================================================
# POST /auth/logout
# ===================================================================


@router.post("/logout")
async def logout(response: Response) -> DataResponse[dict]:
    """Clear auth cookie.

    No auth required. Clears the cookie regardless.
    """
    clear_auth_cookie(response)
    return DataResponse(data={"message": "Signed out"})


# ===================================================================
# GET /auth/me
# ===================================================================


@router.get("/me")
async def get_me(
    user_id: CurrentUserId,
    db: DbSession,
) -> DataResponse[dict]:
    """Return current user info from JWT.

    Returns 401 if no valid JWT or the account no longer exists.
    """
    user = await UserRepository.get_by_id(db, user_id)
    if user is None:
        raise UnauthorizedError()
    return DataResponse(data=_user_to_response(user))


# ===================================================================
# PATCH /auth/profile
# ===================================================================


@router.patch("/profile")
async def update_profile(
    body: UpdateProfileRequest,
    user_id: CurrentUserId,
    db: DbSession,
) -> DataResponse[dict]:
    """Update display name and/or phone number."""
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise ValidationError("Nothing to update")

    if "full_name" in changes and changes["full_name"] is not None:
        changes["full_name"] = changes["full_name"].strip() or None
    if "phone" in changes:
        phone = normalize_contact(changes["phone"] or "")
        if phone and infer_channel(phone) != "phone":
            raise ValidationError("Phone number is not valid")
        changes["phone"] = phone or None

    try:
        user = await UserRepository.update(db, user_id, **changes)
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(
            code="PHONE_ALREADY_EXISTS",
            message="Phone number already registered",
        ) from exc

    if user is None:
        raise UnauthorizedError()
    return DataResponse(data=_user_to_response(user))
