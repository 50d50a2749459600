"""Durable and volatile stores for one-time passcodes.

Two physically separate holders of OTP records for the same contact:

- SqlOtpStore: the primary, persistent store (users + otp_codes tables).
- VolatileOtpStore: a process-local map used only while the database is
  unreachable.

The stores are never synchronized. A record written to one is not mirrored
to the other, and a code counts as valid if either store accepts it. A
process restart or a second instance loses every volatile-only code.
"""

import asyncio
import hmac
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from mediscan.core.auth import PasswordCredentials
from mediscan.core.contacts import ContactChannel, infer_channel
from mediscan.models.user import User
from mediscan.repositories.otp_code_repository import OtpCodeRepository
from mediscan.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


class StoreUnavailableError(Exception):
    """The durable store could not be read or written.

    Raised for any database failure (connection refused, timeout, rejected
    write). Never surfaced to API callers: the coordinator turns it into a
    fallback action.
    """


class CheckStatus(str, Enum):
    """Outcome of looking up a submitted code in one store."""

    MATCHED = "matched"
    EXPIRED = "expired"
    NO_MATCH = "no_match"


@dataclass(frozen=True)
class OtpCheck:
    """Result of OtpStore.check().

    Attributes:
        status: MATCHED, EXPIRED (right code, closed window) or NO_MATCH.
        user: Linked account for durable matches, None otherwise.
    """

    status: CheckStatus
    user: User | None = None


def as_utc(value: datetime) -> datetime:
    """Treat naive timestamps (SQLite round-trips) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class OtpStore(ABC):
    """Contract shared by the durable and volatile stores."""

    @abstractmethod
    async def save(
        self,
        *,
        contact: str,
        channel: ContactChannel,
        purpose: str,
        code_hash: str,
        issued_at: datetime,
        expires_at: datetime,
        credentials: PasswordCredentials | None = None,
    ) -> None:
        """Persist a freshly issued code for a contact."""

    @abstractmethod
    async def check(
        self,
        *,
        contact: str,
        code_hash: str,
        now: datetime,
    ) -> OtpCheck:
        """Look up a submitted code and consume it on a valid match.

        EXPIRED means the code matched a record whose window has closed;
        any other mismatch is NO_MATCH.
        """

    @abstractmethod
    async def purge_expired(self, *, now: datetime) -> int:
        """Drop expired, unconsumed codes. Returns how many were removed."""


class DurableOtpStore(OtpStore):
    """An OtpStore that also owns user accounts."""

    @abstractmethod
    async def find_user(self, contact: str) -> User | None:
        """Account registered under a contact, if any."""

    @abstractmethod
    async def mark_verified(self, user: User) -> None:
        """Flip is_verified to true (no-op when already set)."""


class SqlOtpStore(DurableOtpStore):
    """Durable store backed by the users and otp_codes tables.

    Every operation commits its own work. Any SQLAlchemy or socket error is
    rolled back and re-raised as StoreUnavailableError.
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    @asynccontextmanager
    async def _guard(self, operation: str) -> AsyncIterator[None]:
        try:
            yield
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("Durable OTP store %s failed: %s", operation, exc)
            try:
                await self._db.rollback()
            except (SQLAlchemyError, OSError):
                logger.debug("Rollback after %s failed", operation, exc_info=True)
            raise StoreUnavailableError(operation) from exc

    async def save(
        self,
        *,
        contact: str,
        channel: ContactChannel,
        purpose: str,
        code_hash: str,
        issued_at: datetime,
        expires_at: datetime,
        credentials: PasswordCredentials | None = None,
    ) -> None:
        async with self._guard("save"):
            user = await self._resolve_user(contact, credentials)
            await OtpCodeRepository.create(
                self._db,
                user_id=user.id,
                contact=contact,
                channel=channel,
                purpose=purpose,
                code_hash=code_hash,
                issued_at=issued_at,
                expires_at=expires_at,
            )
            await self._db.commit()

    async def _resolve_user(
        self,
        contact: str,
        credentials: PasswordCredentials | None,
    ) -> User:
        """Find the account for a contact, creating it on first registration.

        The column (email or phone) follows the contact itself, matching the
        lookup in UserRepository.get_by_contact.

        Credentials are only written when the account has none yet; an
        existing password is never overwritten by an OTP request.
        """
        user = await UserRepository.get_by_contact(self._db, contact)
        if user is None:
            column = infer_channel(contact)
            return await UserRepository.create(
                self._db,
                email=contact if column == "email" else None,
                phone=contact if column == "phone" else None,
                password_hash=credentials.password_hash if credentials else None,
                password_salt=credentials.password_salt if credentials else None,
            )
        if credentials is not None and not user.has_password:
            await UserRepository.set_credentials(
                self._db,
                user,
                password_hash=credentials.password_hash,
                password_salt=credentials.password_salt,
            )
        return user

    async def check(
        self,
        *,
        contact: str,
        code_hash: str,
        now: datetime,
    ) -> OtpCheck:
        async with self._guard("check"):
            record = await OtpCodeRepository.get_latest_unconsumed(
                self._db, contact=contact
            )
            if record is None:
                return OtpCheck(CheckStatus.NO_MATCH)
            if not hmac.compare_digest(record.code_hash, code_hash):
                return OtpCheck(CheckStatus.NO_MATCH)
            if as_utc(record.expires_at) <= now:
                return OtpCheck(CheckStatus.EXPIRED)

            await OtpCodeRepository.mark_consumed(self._db, record)
            user = await UserRepository.get_by_id(self._db, record.user_id)
            await self._db.commit()
            return OtpCheck(CheckStatus.MATCHED, user=user)

    async def purge_expired(self, *, now: datetime) -> int:
        async with self._guard("purge_expired"):
            removed = await OtpCodeRepository.delete_expired(self._db, now=now)
            await self._db.commit()
            return removed

    async def find_user(self, contact: str) -> User | None:
        async with self._guard("find_user"):
            return await UserRepository.get_by_contact(self._db, contact)

    async def mark_verified(self, user: User) -> None:
        async with self._guard("mark_verified"):
            await UserRepository.set_verified(self._db, user)
            await self._db.commit()


@dataclass
class VolatileOtpEntry:
    """A fallback code held in process memory.

    Attributes:
        contact: Normalized email or phone.
        code_hash: Peppered SHA-256 of the plain code.
        purpose: What the code authorizes.
        issued_at: Issuance timestamp.
        expires_at: End of the validity window.
    """

    contact: str
    code_hash: str
    purpose: str
    issued_at: datetime
    expires_at: datetime


class VolatileOtpStore(OtpStore):
    """In-memory fallback store, keyed by contact.

    Holds at most one code per contact: saving a new code evicts the
    previous one. All reads and writes hold a single asyncio.Lock so a
    concurrent save and check for the same contact cannot interleave.

    Note: Not shared across processes or instances. Replace only if the
    degraded mode itself needs to survive restarts.
    """

    def __init__(self) -> None:
        self._entries: dict[str, VolatileOtpEntry] = {}
        self._lock = asyncio.Lock()

    async def save(
        self,
        *,
        contact: str,
        channel: ContactChannel,  # noqa: ARG002
        purpose: str,
        code_hash: str,
        issued_at: datetime,
        expires_at: datetime,
        credentials: PasswordCredentials | None = None,  # noqa: ARG002
    ) -> None:
        async with self._lock:
            self._entries.pop(contact, None)
            self._drop_expired(issued_at)
            self._entries[contact] = VolatileOtpEntry(
                contact=contact,
                code_hash=code_hash,
                purpose=purpose,
                issued_at=issued_at,
                expires_at=expires_at,
            )

    async def check(
        self,
        *,
        contact: str,
        code_hash: str,
        now: datetime,
    ) -> OtpCheck:
        async with self._lock:
            entry = self._entries.get(contact)
            if entry is None or not hmac.compare_digest(entry.code_hash, code_hash):
                return OtpCheck(CheckStatus.NO_MATCH)

            # Matching entries are removed whether they are still valid or not
            del self._entries[contact]
            if entry.expires_at <= now:
                return OtpCheck(CheckStatus.EXPIRED)
            return OtpCheck(CheckStatus.MATCHED)

    async def purge_expired(self, *, now: datetime) -> int:
        async with self._lock:
            return self._drop_expired(now)

    def _drop_expired(self, now: datetime) -> int:
        expired = [c for c, e in self._entries.items() if e.expires_at <= now]
        for contact in expired:
            del self._entries[contact]
        return len(expired)

    def __len__(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        """Clear all entries (for testing)."""
        self._entries.clear()


# Singleton instance for the application
_volatile_store: VolatileOtpStore | None = None


def get_volatile_store() -> VolatileOtpStore:
    """Get the process-wide volatile store.

    Returns:
        The VolatileOtpStore singleton.
    """
    global _volatile_store
    if _volatile_store is None:
        _volatile_store = VolatileOtpStore()
    return _volatile_store


def reset_volatile_store() -> None:
    """Reset the volatile store singleton (for testing)."""
    global _volatile_store
    if _volatile_store is not None:
        _volatile_store.clear()
    _volatile_store = None
