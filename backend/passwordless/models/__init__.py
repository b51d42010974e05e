"""ORM models.

Import models here so Alembic autogenerate and Base.metadata see them.
"""

from passwordless.models.base import Base, TimestampMixin
from passwordless.models.user import User

__all__ = ["Base", "TimestampMixin", "User"]
