"""OTP coordinator: issue and verify one-time passcodes.

Composes the durable store, the volatile fallback store and a notification
sender. The durable store is always tried first; any StoreUnavailableError
degrades that single operation to the volatile store instead of failing.

Issue:
1. Purge expired durable codes (best-effort)
2. Save the new code durably, or in the volatile store when that fails
3. Send the code; delivery failure never fails issuance

Verify:
1. Durable store: the newest unconsumed record matches, or matched but expired
2. Volatile store: always consulted unless the durable store matched; a
   code valid in either store is accepted. EXPIRED only when neither
   store holds a valid match
3. Link the account (placeholder when a fallback match has none) and
   flip is_verified

Domain failures are returned as VerificationFailure values, never raised.
Codes are never logged; contacts are masked.
"""

import dataclasses
import hashlib
import logging
import secrets
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from mediscan.core.auth import PasswordCredentials
from mediscan.core.config import settings
from mediscan.core.contacts import (
    ContactChannel,
    infer_channel,
    mask_contact,
    normalize_contact,
)
from mediscan.core.errors import ValidationError
from mediscan.core.notifications import NotificationSender
from mediscan.models.user import User
from mediscan.services.otp_store import (
    CheckStatus,
    DurableOtpStore,
    OtpStore,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)

_CODE_MIN = 100000
_CODE_SPAN = 900000


class OtpPurpose(str, Enum):
    """What an issued code authorizes."""

    REGISTRATION = "registration"
    LOGIN = "login"
    PASSWORD_RESET = "password_reset"


class VerificationFailure(str, Enum):
    """Why a verification did not succeed."""

    MISSING_INPUT = "missing_input"
    EXPIRED = "expired"
    INVALID_OR_EXPIRED = "invalid_or_expired"
    INCOMPLETE_REGISTRATION = "incomplete_registration"


class VerificationSource(str, Enum):
    """Which store decided a verification."""

    DURABLE = "durable"
    FALLBACK = "fallback"


class MissingInputError(ValidationError):
    """Contact address was empty on issue."""

    def __init__(self, message: str = "Email or phone number is required") -> None:
        super().__init__(message)


class ChannelMismatchError(ValidationError):
    """Requested delivery channel contradicts the contact address."""

    def __init__(self, message: str = "Channel does not match contact") -> None:
        super().__init__(message)


def generate_code() -> str:
    """Six-digit code, uniform over 100000-999999, from the OS CSPRNG."""
    return str(_CODE_MIN + secrets.randbelow(_CODE_SPAN))


def hash_code(code: str, pepper: str) -> str:
    """SHA-256 hex digest of pepper + code. Only the digest is stored."""
    return hashlib.sha256(f"{pepper}:{code}".encode()).hexdigest()


def _utc_now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class OtpWindows:
    """Validity window per purpose, in minutes."""

    login_minutes: int = 10
    password_reset_minutes: int = 15

    @classmethod
    def from_settings(cls) -> "OtpWindows":
        return cls(
            login_minutes=settings.otp_login_ttl_minutes,
            password_reset_minutes=settings.otp_password_reset_ttl_minutes,
        )

    def minutes_for(self, purpose: OtpPurpose) -> int:
        if purpose == OtpPurpose.PASSWORD_RESET:
            return self.password_reset_minutes
        return self.login_minutes


@dataclass(frozen=True)
class UserIdentity:
    """Account snapshot returned on successful verification.

    A fallback match for a contact with no account row (or while the
    database is down) yields a placeholder identity with id=None.

    Attributes:
        id: User UUID, None for placeholders.
        contact: Normalized contact the code was verified for.
        email: Account email, if any.
        phone: Account phone, if any.
        full_name: Display name, if any.
        is_verified: Verification flag after this verification.
        has_password: Both password hash and salt are stored.
    """

    id: uuid.UUID | None
    contact: str
    email: str | None = None
    phone: str | None = None
    full_name: str | None = None
    is_verified: bool = False
    has_password: bool = False

    @property
    def is_placeholder(self) -> bool:
        return self.id is None

    @classmethod
    def from_user(cls, user: User, contact: str) -> "UserIdentity":
        return cls(
            id=user.id,
            contact=contact,
            email=user.email,
            phone=user.phone,
            full_name=user.full_name,
            is_verified=user.is_verified,
            has_password=user.has_password,
        )

    @classmethod
    def placeholder(cls, contact: str) -> "UserIdentity":
        channel = infer_channel(contact)
        return cls(
            id=None,
            contact=contact,
            email=contact if channel == "email" else None,
            phone=contact if channel == "phone" else None,
            is_verified=True,
        )


@dataclass(frozen=True)
class IssueResult:
    """Outcome of OtpCoordinator.issue().

    Attributes:
        accepted: Always True on return; issuance never fails on delivery.
        code: The plain code that was issued.
        degraded_to_fallback: Stored in the volatile store because the
            durable store was unavailable.
        delivered: The notification provider accepted the message.
        expires_at: End of the validity window (UTC).
        channel: Delivery channel used.
        purpose: What the code authorizes.
    """

    accepted: bool
    code: str
    degraded_to_fallback: bool
    delivered: bool
    expires_at: datetime
    channel: ContactChannel
    purpose: OtpPurpose

    @property
    def exposable_code(self) -> str | None:
        """The code, only when it could not be delivered."""
        return None if self.delivered else self.code


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of OtpCoordinator.verify().

    Attributes:
        success: The code was accepted.
        user: Verified account (or placeholder); None on failure.
        failure: Reason for failure; None on success.
        source: Store that decided the outcome, None when neither did.
    """

    success: bool
    user: UserIdentity | None = None
    failure: VerificationFailure | None = None
    source: VerificationSource | None = None

    @classmethod
    def failed(
        cls,
        failure: VerificationFailure,
        source: VerificationSource | None = None,
    ) -> "VerificationResult":
        return cls(success=False, failure=failure, source=source)


class OtpCoordinator:
    """Issues and verifies codes across the durable and volatile stores.

    Args:
        durable: Primary store (owns user accounts).
        volatile: Fallback store used while the durable store is down.
        sender: Notification sender for email/SMS delivery.
        clock: Returns the current UTC time.
        code_factory: Returns a fresh plain code.
        windows: Validity windows per purpose.
        pepper: Secret mixed into every code hash.
    """

    def __init__(
        self,
        durable: DurableOtpStore,
        volatile: OtpStore,
        sender: NotificationSender,
        *,
        clock: Callable[[], datetime] = _utc_now,
        code_factory: Callable[[], str] = generate_code,
        windows: OtpWindows | None = None,
        pepper: str | None = None,
    ) -> None:
        self._durable = durable
        self._volatile = volatile
        self._sender = sender
        self._clock = clock
        self._code_factory = code_factory
        self._windows = windows or OtpWindows.from_settings()
        self._pepper = (
            pepper if pepper is not None else settings.otp_pepper.get_secret_value()
        )

    async def issue(
        self,
        contact: str,
        purpose: OtpPurpose,
        *,
        channel: ContactChannel | None = None,
        credentials: PasswordCredentials | None = None,
    ) -> IssueResult:
        """Generate, store and send a new code.

        Args:
            contact: Email address or phone number.
            purpose: What the code authorizes.
            channel: Delivery channel; inferred from the contact when None.
            credentials: Password hash+salt to attach to a new or
                password-less account (durable path only).

        Returns:
            IssueResult describing storage and delivery.

        Raises:
            MissingInputError: If contact is empty.
            ChannelMismatchError: If channel disagrees with the contact.
        """
        contact = normalize_contact(contact or "")
        if not contact:
            raise MissingInputError()
        inferred = infer_channel(contact)
        if channel is not None and channel != inferred:
            raise ChannelMismatchError()
        channel = inferred

        code = self._code_factory()
        issued_at = self._clock()
        ttl_minutes = self._windows.minutes_for(purpose)
        expires_at = issued_at + timedelta(minutes=ttl_minutes)
        record = {
            "contact": contact,
            "channel": channel,
            "purpose": purpose.value,
            "code_hash": hash_code(code, self._pepper),
            "issued_at": issued_at,
            "expires_at": expires_at,
        }

        degraded = False
        try:
            await self._purge_expired(issued_at)
            await self._durable.save(**record, credentials=credentials)
        except StoreUnavailableError:
            degraded = True
            logger.warning(
                "Durable store unavailable, issuing %s code for %s from memory",
                purpose.value,
                mask_contact(contact),
            )
            await self._volatile.save(**record)

        delivered = await self._deliver(contact, channel, code, purpose, ttl_minutes)
        logger.info(
            "Issued %s code for %s (fallback=%s, delivered=%s)",
            purpose.value,
            mask_contact(contact),
            degraded,
            delivered,
        )
        return IssueResult(
            accepted=True,
            code=code,
            degraded_to_fallback=degraded,
            delivered=delivered,
            expires_at=expires_at,
            channel=channel,
            purpose=purpose,
        )

    async def _purge_expired(self, now: datetime) -> None:
        try:
            removed = await self._durable.purge_expired(now=now)
        except StoreUnavailableError:
            logger.info("Skipped expired code cleanup, durable store unavailable")
            return
        if removed:
            logger.debug("Purged %d expired codes", removed)

    async def _deliver(
        self,
        contact: str,
        channel: ContactChannel,
        code: str,
        purpose: OtpPurpose,
        ttl_minutes: int,
    ) -> bool:
        try:
            return await self._sender.send_code(
                contact=contact,
                channel=channel,
                code=code,
                purpose=purpose.value,
                ttl_minutes=ttl_minutes,
            )
        except Exception:
            logger.exception("Notification sender raised for %s", mask_contact(contact))
            return False

    async def verify(
        self,
        contact: str,
        code: str,
        *,
        require_credentials: bool = False,
    ) -> VerificationResult:
        """Check a submitted code against both stores.

        Args:
            contact: Email address or phone number.
            code: Code as typed by the user.
            require_credentials: Fail with INCOMPLETE_REGISTRATION when the
                matched account has no password.

        Returns:
            VerificationResult. A successful match is consumed and cannot be
            replayed.
        """
        contact = normalize_contact(contact or "")
        code = (code or "").strip()
        if not contact or not code:
            return VerificationResult.failed(VerificationFailure.MISSING_INPUT)

        now = self._clock()
        code_hash = hash_code(code, self._pepper)

        durable_expired = False
        try:
            durable = await self._durable.check(
                contact=contact, code_hash=code_hash, now=now
            )
        except StoreUnavailableError:
            logger.warning(
                "Durable store unavailable, verifying %s from memory",
                mask_contact(contact),
            )
        else:
            if durable.status == CheckStatus.MATCHED:
                return await self._complete(
                    durable.user,
                    contact,
                    VerificationSource.DURABLE,
                    require_credentials=require_credentials,
                )
            durable_expired = durable.status == CheckStatus.EXPIRED

        # A code valid in either store is accepted
        fallback = await self._volatile.check(
            contact=contact, code_hash=code_hash, now=now
        )
        if fallback.status == CheckStatus.MATCHED:
            user = await self._find_user(contact)
            return await self._complete(
                user,
                contact,
                VerificationSource.FALLBACK,
                require_credentials=require_credentials,
            )
        if durable_expired:
            return VerificationResult.failed(
                VerificationFailure.EXPIRED, VerificationSource.DURABLE
            )
        if fallback.status == CheckStatus.EXPIRED:
            return VerificationResult.failed(
                VerificationFailure.EXPIRED, VerificationSource.FALLBACK
            )

        logger.info("Rejected code for %s", mask_contact(contact))
        return VerificationResult.failed(VerificationFailure.INVALID_OR_EXPIRED)

    async def _find_user(self, contact: str) -> User | None:
        try:
            return await self._durable.find_user(contact)
        except StoreUnavailableError:
            return None

    async def _complete(
        self,
        user: User | None,
        contact: str,
        source: VerificationSource,
        *,
        require_credentials: bool,
    ) -> VerificationResult:
        if user is None:
            logger.info(
                "Verified %s via %s without an account row",
                mask_contact(contact),
                source.value,
            )
            return VerificationResult(
                success=True,
                user=UserIdentity.placeholder(contact),
                source=source,
            )

        if require_credentials and not user.has_password:
            # The code stays consumed; the user must register again
            return VerificationResult.failed(
                VerificationFailure.INCOMPLETE_REGISTRATION, source
            )

        # Snapshot before the write: a failed write rolls back and expires the row
        identity = UserIdentity.from_user(user, contact)
        try:
            await self._durable.mark_verified(user)
        except StoreUnavailableError:
            logger.warning(
                "Could not persist verification flag for %s", mask_contact(contact)
            )
        else:
            identity = dataclasses.replace(identity, is_verified=True)

        logger.info("Verified %s via %s", mask_contact(contact), source.value)
        return VerificationResult(success=True, user=identity, source=source)
