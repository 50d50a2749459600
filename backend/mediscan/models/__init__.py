"""SQLAlchemy ORM models for MediScan.

All models are exported from this module for convenient imports:
    from mediscan.models import User, OtpCode

Models:
- user.py: User (accounts, password credentials, verified flag)
- otp_code.py: OtpCode (durable one-time passcodes)
"""

from mediscan.models.base import Base, TimestampMixin
from mediscan.models.otp_code import OtpCode
from mediscan.models.user import User

__all__ = [
    "Base",
    "TimestampMixin",
    "User",
    "OtpCode",
]
