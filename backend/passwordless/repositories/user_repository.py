"""Data access for the users table."""

import uuid
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from passwordless.models.user import User, new_security_stamp, normalize_email


class UserRepository:
    """Static queries over User.

    Callers own the session and the transaction; methods flush but never
    commit.
    """

    @staticmethod
    async def get_by_id(db: AsyncSession, user_id: uuid.UUID) -> User | None:
        return await db.get(User, user_id)

    @staticmethod
    async def get_by_email(db: AsyncSession, email: str) -> User | None:
        """Look up a user, ignoring case and surrounding whitespace."""
        result = await db.execute(
            select(User).where(User.email == normalize_email(email))
        )
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        db: AsyncSession,
        *,
        email: str,
        email_verified: datetime | None = None,
        two_factor_enabled: bool = False,
        lockout_end: datetime | None = None,
    ) -> User:
        """Insert a user with a freshly generated security stamp.

        Args:
            db: Session to add the user to.
            email: Stored in normalize_email() form.
            email_verified: When the address was confirmed, if it was.
            two_factor_enabled: Whether sign-in needs a second factor.
            lockout_end: Initial lockout expiry.

        Raises:
            sqlalchemy.exc.IntegrityError: The email is already registered.
        """
        user = User(
            email=normalize_email(email),
            email_verified=email_verified,
            two_factor_enabled=two_factor_enabled,
            lockout_end=lockout_end,
            security_stamp=new_security_stamp(),
        )
        db.add(user)
        await db.flush()
        await db.refresh(user)
        return user

    @staticmethod
    async def rotate_security_stamp(db: AsyncSession, user: User) -> str:
        """Give the user a new stamp, voiding every token bound to the old one."""
        user.security_stamp = new_security_stamp()
        await db.flush()
        return user.security_stamp
