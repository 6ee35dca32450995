"""Create users table with profile picture reference

Revision ID: 001
Revises: None
Create Date: 2026-10-18 00:00:00.000000+00:00

What:  Creates the `users` table, the owner record of a profile picture.
How:   The four profile_picture_* columns are nullable: a user without a
       picture has all four NULL.

Rollback: downgrade() drops the table entirely (destructive, all data lost).
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column(
            "id",
            sa.Uuid(),
            nullable=False,
            comment="Unique identifier (UUID4)",
        ),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False, server_default=sa.text("''")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("CURRENT_TIMESTAMP"),
            nullable=False,
            comment="When this user was created (UTC)",
        ),

        # Profile picture reference: all NULL or all set
        sa.Column(
            "profile_picture_path",
            sa.String(255),
            nullable=True,
            comment="Relative path from storage root to the primary picture",
        ),
        sa.Column("profile_picture_url", sa.String(512), nullable=True),
        sa.Column("profile_picture_filename", sa.String(255), nullable=True),
        sa.Column("profile_picture_uploaded_at", sa.DateTime(timezone=True), nullable=True),

        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    # Orphan reconciliation lists every referenced path
    op.create_index(
        "idx_users_profile_picture_path",
        "users",
        ["profile_picture_path"],
    )


def downgrade() -> None:
    op.drop_index("idx_users_profile_picture_path", table_name="users")
    op.drop_table("users")
