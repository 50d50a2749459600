"""User model - account and credential foundation.

Users are reachable by email or phone. Password hash and salt are written
together; is_verified flips once on the first successful OTP verification.
"""

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String, Uuid, false
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mediscan.models.base import Base, TimestampMixin

if TYPE_CHECKING:
    from mediscan.models.otp_code import OtpCode


class User(Base, TimestampMixin):
    """User account for authentication.

    Attributes:
        id: UUID primary key.
        email: Unique email address. NULL for phone-only accounts.
        phone: Unique phone number. NULL for email-only accounts.
        full_name: Display name.
        password_hash: bcrypt hash. NULL until a password is set.
        password_salt: bcrypt salt used for password_hash.
        is_verified: Whether a contact address has been proven by OTP.
        created_at: Account creation timestamp (from TimestampMixin).
        updated_at: Last modification timestamp (from TimestampMixin).
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str | None] = mapped_column(
        String(255),
        unique=True,
        nullable=True,
    )
    phone: Mapped[str | None] = mapped_column(
        String(32),
        unique=True,
        nullable=True,
    )
    full_name: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    password_hash: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
    )
    password_salt: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    is_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=false(),
        default=False,
    )

    otp_codes: Mapped[list["OtpCode"]] = relationship(
        "OtpCode",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    @property
    def has_password(self) -> bool:
        """Both hash and salt are present."""
        return bool(self.password_hash and self.password_salt)

    @property
    def contact(self) -> str | None:
        """Primary contact address (email preferred)."""
        return self.email or self.phone
