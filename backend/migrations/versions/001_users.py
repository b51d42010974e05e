"""Create users table.

Revision ID: 001_users
Revises:
Create Date: 2026-10-18

Identity record for passwordless sign-in: confirmation timestamp, security
stamp that every sign-in token is bound to, lockout window, and the
two-factor flag.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

revision: str = "001_users"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("email_verified", sa.DateTime(timezone=True), nullable=True),
        sa.Column("security_stamp", sa.String(64), nullable=False),
        sa.Column("lockout_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "lockout_enabled",
            sa.Boolean(),
            server_default=sa.text("true"),
            nullable=False,
        ),
        sa.Column(
            "two_factor_enabled",
            sa.Boolean(),
            server_default=sa.text("false"),
            nullable=False,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.UniqueConstraint("email", name="uq_users_email"),
    )


def downgrade() -> None:
    op.drop_table("users")
