"""Identity store: the user lookups and token capability sign-in relies on.

The issuer and redeemer never touch the database or the token format
directly. They ask an IdentityStore whether an account exists, whether it
may sign in, and to mint, check, or invalidate its tokens.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import UTC, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from passwordless.core.tokens import SecurityStampTokenProvider
from passwordless.models.user import User
from passwordless.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


class IdentityStore(ABC):
    """User lookups, account state, and purpose-bound token lifecycle."""

    @abstractmethod
    async def find_by_id(self, user_id: uuid.UUID) -> User | None: ...

    @abstractmethod
    async def find_by_email(self, email: str) -> User | None: ...

    @abstractmethod
    async def is_email_confirmed(self, user: User) -> bool: ...

    @abstractmethod
    async def is_locked_out(self, user: User) -> bool: ...

    @abstractmethod
    async def is_two_factor_enabled(self, user: User) -> bool: ...

    @abstractmethod
    async def generate_token(self, user: User, purpose: str) -> str:
        """Mint a single-purpose token bound to the user's current stamp."""
        ...

    @abstractmethod
    async def verify_token(self, user: User, purpose: str, token: str) -> bool:
        """Check a raw token for this user and purpose. Never raises."""
        ...

    @abstractmethod
    async def rotate_security_stamp(self, user: User) -> None:
        """Invalidate every outstanding token for the user.

        Must be durable when it returns: callers redirect right after.
        """
        ...


class SqlIdentityStore(IdentityStore):
    """IdentityStore over the users table.

    Args:
        db: Request-scoped async session.
        token_provider: Mints and verifies stamp-bound tokens.
        clock: Returns the current UTC time. Injectable for tests.
    """

    def __init__(
        self,
        db: AsyncSession,
        token_provider: SecurityStampTokenProvider,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = db
        self._tokens = token_provider
        self._clock = clock or (lambda: datetime.now(UTC))

    async def find_by_id(self, user_id: uuid.UUID) -> User | None:
        return await UserRepository.get_by_id(self._db, user_id)

    async def find_by_email(self, email: str) -> User | None:
        return await UserRepository.get_by_email(self._db, email)

    async def is_email_confirmed(self, user: User) -> bool:
        return user.email_verified is not None

    async def is_locked_out(self, user: User) -> bool:
        if not user.lockout_enabled or user.lockout_end is None:
            return False
        return _as_utc(user.lockout_end) > self._clock()

    async def is_two_factor_enabled(self, user: User) -> bool:
        return user.two_factor_enabled

    async def generate_token(self, user: User, purpose: str) -> str:
        return self._tokens.generate(
            user_id=user.id,
            security_stamp=user.security_stamp,
            purpose=purpose,
        )

    async def verify_token(self, user: User, purpose: str, token: str) -> bool:
        return self._tokens.verify(
            token,
            user_id=user.id,
            security_stamp=user.security_stamp,
            purpose=purpose,
        )

    async def rotate_security_stamp(self, user: User) -> None:
        await UserRepository.rotate_security_stamp(self._db, user)
        await self._db.commit()
        logger.info("Rotated security stamp for user %s", user.id)
