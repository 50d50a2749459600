"""Shared fixtures for OTP store and coordinator tests.

Provides a controllable clock, a scripted code factory, a recording
notification sender and a SQL store whose operations can be made to fail
on demand (simulating a database outage).
"""

from collections import deque
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from mediscan.core.notifications import NotificationSender
from mediscan.models.user import User
from mediscan.services.otp_coordinator import OtpCoordinator, generate_code
from mediscan.services.otp_store import (
    OtpCheck,
    SqlOtpStore,
    StoreUnavailableError,
    VolatileOtpStore,
)

T0 = datetime(2030, 1, 15, 9, 0, tzinfo=UTC)
TEST_PEPPER = "test-pepper"  # nosec B105


class MutableClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class CodeSequence:
    """Returns queued codes first, then random ones."""

    def __init__(self) -> None:
        self._queued: deque[str] = deque()

    def queue(self, *codes: str) -> None:
        self._queued.extend(codes)

    def __call__(self) -> str:
        if self._queued:
            return self._queued.popleft()
        return generate_code()


@dataclass
class SentCode:
    contact: str
    channel: str
    code: str
    purpose: str
    ttl_minutes: int


class RecordingSender(NotificationSender):
    """Records every send; can be told to fail or raise."""

    def __init__(self) -> None:
        self.sent: list[SentCode] = []
        self.accept = True
        self.raise_error = False

    async def send_code(
        self,
        *,
        contact: str,
        channel: str,
        code: str,
        purpose: str,
        ttl_minutes: int,
    ) -> bool:
        if self.raise_error:
            raise RuntimeError("provider exploded")
        self.sent.append(SentCode(contact, channel, code, purpose, ttl_minutes))
        return self.accept


class FlakySqlStore(SqlOtpStore):
    """SqlOtpStore whose operations fail while flagged down."""

    def __init__(self, db: AsyncSession) -> None:
        super().__init__(db)
        self.down: set[str] = set()

    def fail(self, *operations: str) -> None:
        self.down.update(
            operations
            or ("save", "check", "purge_expired", "find_user", "mark_verified")
        )

    def recover(self) -> None:
        self.down.clear()

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.down:
            raise StoreUnavailableError(operation)

    async def save(self, **kwargs) -> None:
        self._maybe_fail("save")
        await super().save(**kwargs)

    async def check(self, **kwargs) -> OtpCheck:
        self._maybe_fail("check")
        return await super().check(**kwargs)

    async def purge_expired(self, *, now: datetime) -> int:
        self._maybe_fail("purge_expired")
        return await super().purge_expired(now=now)

    async def find_user(self, contact: str) -> User | None:
        self._maybe_fail("find_user")
        return await super().find_user(contact)

    async def mark_verified(self, user: User) -> None:
        self._maybe_fail("mark_verified")
        await super().mark_verified(user)


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def codes() -> CodeSequence:
    return CodeSequence()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def durable(db_session: AsyncSession) -> FlakySqlStore:
    return FlakySqlStore(db_session)


@pytest.fixture
def volatile() -> VolatileOtpStore:
    return VolatileOtpStore()


@pytest.fixture
def coordinator(
    durable: FlakySqlStore,
    volatile: VolatileOtpStore,
    sender: RecordingSender,
    clock: MutableClock,
    codes: CodeSequence,
) -> OtpCoordinator:
    return OtpCoordinator(
        durable,
        volatile,
        sender,
        clock=clock,
        code_factory=codes,
        pepper=TEST_PEPPER,
    )
