"""User model - identity record the sign-in flow reads and rotates."""

import secrets
import uuid
from datetime import datetime

from sqlalchemy import Boolean, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from passwordless.models.base import Base, TimestampMixin


def new_security_stamp() -> str:
    """Return a fresh random security stamp (32 hex characters)."""
    return secrets.token_hex(16)


def normalize_email(email: str) -> str:
    """Canonical form used for storage, lookup, and quota keys."""
    return email.strip().casefold()


class User(Base, TimestampMixin):
    """User account for passwordless sign-in.

    Attributes:
        id: UUID primary key.
        email: Unique email address, stored in normalize_email() form.
        email_verified: Timestamp when email was verified. NULL = unverified.
        security_stamp: Random value every issued token is bound to.
            Rotating it invalidates all outstanding tokens.
        lockout_end: Locked out while this is in the future.
        lockout_enabled: Lockout only applies when True.
        two_factor_enabled: Sign-in must pass a second factor.
        created_at: Account creation timestamp (from TimestampMixin).
        updated_at: Last modification timestamp (from TimestampMixin).
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
    )
    email_verified: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    security_stamp: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        default=new_security_stamp,
    )
    lockout_end: Mapped[datetime | None] = mapped_column(
        nullable=True,
    )
    lockout_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("true"),
        default=True,
    )
    two_factor_enabled: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        server_default=text("false"),
        default=False,
    )
