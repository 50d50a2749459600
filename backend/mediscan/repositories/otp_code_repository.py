"""Repository for OtpCode CRUD operations.

Single-use passcodes stored as hashed values with a time-limited expiry.
"""

import uuid
from datetime import datetime

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from mediscan.models.otp_code import OtpCode


class OtpCodeRepository:
    """Stateless repository for OtpCode table operations.

    All methods are static with no instance state.
    """

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        user_id: uuid.UUID,
        contact: str,
        channel: str,
        purpose: str,
        code_hash: str,
        issued_at: datetime,
        expires_at: datetime,
    ) -> OtpCode:
        """Store a new passcode.

        Args:
            db: Async database session.
            user_id: Owning user.
            contact: Normalized email or phone.
            channel: ``"email"`` or ``"phone"``.
            purpose: What the code authorizes.
            code_hash: Peppered SHA-256 of the plain code.
            issued_at: Issuance timestamp.
            expires_at: Expiry timestamp.

        Returns:
            Created OtpCode.
        """
        record = OtpCode(
            user_id=user_id,
            contact=contact,
            channel=channel,
            purpose=purpose,
            code_hash=code_hash,
            issued_at=issued_at,
            expires_at=expires_at,
            consumed=False,
        )
        db.add(record)
        await db.flush()
        return record

    @staticmethod
    async def get_latest_unconsumed(
        db: AsyncSession,
        *,
        contact: str,
    ) -> OtpCode | None:
        """Newest unconsumed passcode for a contact.

        Ties on issued_at are broken by id so racing issues resolve to the
        row inserted last.

        Args:
            db: Async database session.
            contact: Normalized email or phone.

        Returns:
            OtpCode if one exists, None otherwise. Expired rows are returned
            too; the caller decides what expiry means.
        """
        stmt = (
            select(OtpCode)
            .where(
                OtpCode.contact == contact,
                OtpCode.consumed.is_(False),
            )
            .order_by(OtpCode.issued_at.desc(), OtpCode.id.desc())
            .limit(1)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def mark_consumed(db: AsyncSession, record: OtpCode) -> None:
        """Flag a passcode as used.

        Args:
            db: Async database session.
            record: The passcode that was just verified.
        """
        record.consumed = True
        await db.flush()

    @staticmethod
    async def delete_expired(db: AsyncSession, *, now: datetime) -> int:
        """Delete expired, unconsumed passcodes (periodic cleanup).

        Args:
            db: Async database session.
            now: Reference time.

        Returns:
            Number of deleted rows.
        """
        stmt = (
            delete(OtpCode)
            .where(
                OtpCode.consumed.is_(False),
                OtpCode.expires_at < now,
            )
            .execution_options(synchronize_session="fetch")
        )
        result = await db.execute(stmt)
        row_count: int = result.rowcount  # type: ignore[attr-defined]
        return row_count
