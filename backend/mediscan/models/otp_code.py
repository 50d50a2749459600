"""OTP code model - durable one-time passcodes.

Rows are single-use and time-limited. Several unconsumed rows may exist for
one contact; verification only looks at the newest.
"""

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    Uuid,
    false,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mediscan.models.base import Base

if TYPE_CHECKING:
    from mediscan.models.user import User


class OtpCode(Base):
    """Durable one-time passcode record.

    Attributes:
        id: Autoincrement key, secondary ordering after issued_at.
        user_id: Owning user (always set for durable records).
        contact: Email or phone the code was sent to.
        channel: ``"email"`` or ``"phone"``.
        purpose: ``"registration"``, ``"login"`` or ``"password_reset"``.
        code_hash: SHA-256 of pepper + code. The plain code is never stored.
        issued_at: Issuance timestamp (UTC).
        expires_at: End of the validity window (UTC).
        consumed: Set once on successful verification.
    """

    __tablename__ = "otp_codes"
    __table_args__ = (
        CheckConstraint("channel IN ('email', 'phone')", name="ck_otp_codes_channel"),
        CheckConstraint(
            "purpose IN ('registration', 'login', 'password_reset')",
            name="ck_otp_codes_purpose",
        ),
        Index("ix_otp_codes_contact_consumed_issued", "contact", "consumed", "issued_at"),
    )

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    contact: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    channel: Mapped[str] = mapped_column(
        String(10),
        nullable=False,
    )
    purpose: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    code_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )
    issued_at: Mapped[datetime] = mapped_column(
        nullable=False,
    )
    expires_at: Mapped[datetime] = mapped_column(
        nullable=False,
    )
    consumed: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=false(),
        default=False,
    )

    user: Mapped["User"] = relationship(
        "User",
        back_populates="otp_codes",
    )
