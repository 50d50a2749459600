"""Repository for User CRUD operations.

Provides database access for the users table. Accounts are addressed by
email or phone; both are stored in normalized form.
"""

import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from mediscan.core.contacts import infer_channel, normalize_contact
from mediscan.models.user import User

# Fields that may be updated via UserRepository.update().
# Security: Never add 'id', 'email', 'is_verified', 'created_at' or 'updated_at'.
# - id: primary key, immutable
# - email: unique identity, requires a dedicated flow with re-verification
# - is_verified: only set through set_verified() after OTP verification
# Credentials go through set_credentials() so hash and salt change together.
_UPDATABLE_FIELDS: frozenset[str] = frozenset(
    {
        "full_name",
        "phone",
    }
)


class UserRepository:
    """Stateless repository for User table operations.

    All methods are static with no instance state. Pass an AsyncSession
    for every call so the caller controls transaction boundaries.
    """

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: uuid.UUID) -> User | None:
        """Fetch a user by primary key.

        Args:
            db: Async database session.
            user_id: UUID primary key.

        Returns:
            User if found, None otherwise.
        """
        return await db.get(User, user_id)

    @staticmethod
    async def get_by_contact(db: AsyncSession, contact: str) -> User | None:
        """Fetch a user by email address or phone number.

        Args:
            db: Async database session.
            contact: Email (case-insensitive) or phone number.

        Returns:
            User if found, None otherwise.
        """
        value = normalize_contact(contact)
        column = User.email if infer_channel(value) == "email" else User.phone
        result = await db.execute(select(User).where(column == value))
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        email: str | None = None,
        phone: str | None = None,
        full_name: str | None = None,
        password_hash: str | None = None,
        password_salt: str | None = None,
    ) -> User:
        """Create a new user.

        Email is normalized to lowercase before storage.

        Args:
            db: Async database session.
            email: Email address.
            phone: Phone number.
            full_name: Display name.
            password_hash: bcrypt hash, written together with password_salt.
            password_salt: bcrypt salt.

        Returns:
            Created User with database-generated fields populated.

        Raises:
            ValueError: If neither email nor phone is given, or only one of
                password_hash / password_salt is given.
            sqlalchemy.exc.IntegrityError: If email or phone already exists.
        """
        if not email and not phone:
            msg = "A user needs an email or a phone number"
            raise ValueError(msg)
        if (password_hash is None) != (password_salt is None):
            msg = "password_hash and password_salt must be set together"
            raise ValueError(msg)

        user = User(
            email=normalize_contact(email) if email else None,
            phone=normalize_contact(phone) if phone else None,
            full_name=full_name,
            password_hash=password_hash,
            password_salt=password_salt,
            is_verified=False,
        )
        db.add(user)
        await db.flush()
        await db.refresh(user)
        return user

    @staticmethod
    async def update(
        db: AsyncSession,
        user_id: uuid.UUID,
        **kwargs: str | None,
    ) -> User | None:
        """Update profile fields.

        Only fields in _UPDATABLE_FIELDS are allowed. Unknown field names
        raise ValueError.

        Args:
            db: Async database session.
            user_id: UUID of the user to update.
            **kwargs: Field names and values to update.

        Returns:
            Updated User if found, None if user does not exist.

        Raises:
            ValueError: If an unknown field name is passed.
        """
        unknown = set(kwargs) - _UPDATABLE_FIELDS
        if unknown:
            msg = f"Unknown fields: {', '.join(sorted(unknown))}"
            raise ValueError(msg)

        user = await db.get(User, user_id)
        if user is None:
            return None

        for field, value in kwargs.items():
            setattr(user, field, value)

        await db.flush()
        await db.refresh(user)
        return user

    @staticmethod
    async def set_credentials(
        db: AsyncSession,
        user: User,
        *,
        password_hash: str,
        password_salt: str,
    ) -> User:
        """Replace the password hash and salt in one write.

        Args:
            db: Async database session.
            user: User to update.
            password_hash: New bcrypt hash.
            password_salt: Salt used for password_hash.

        Returns:
            The updated User.
        """
        user.password_hash = password_hash
        user.password_salt = password_salt
        await db.flush()
        return user

    @staticmethod
    async def set_verified(db: AsyncSession, user: User) -> User:
        """Mark the account verified.

        The flag only moves false -> true; calling this on a verified
        account leaves it unchanged and issues no write.

        Args:
            db: Async database session.
            user: User to mark.

        Returns:
            The (possibly unchanged) User.
        """
        if not user.is_verified:
            user.is_verified = True
            await db.flush()
        return user
