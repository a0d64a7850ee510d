"""create_profiles_table

Revision ID: 4b1d0c7e2a90
Revises:
Create Date: 2026-10-17 09:12:44.318204

"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "4b1d0c7e2a90"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the profiles table keyed by the Supabase auth user id."""
    op.create_table(
        "profiles",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("username", sa.String(length=50), nullable=False),
        sa.Column("full_name", sa.String(length=255), server_default="", nullable=False),
        sa.Column("avatar_url", sa.String(length=500), nullable=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("website", sa.String(length=500), nullable=True),
        sa.Column("location", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["id"], ["auth.users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("username"),
    )

    # Profiles are public; only the owner may write their own row.
    op.execute("ALTER TABLE profiles ENABLE ROW LEVEL SECURITY;")
    op.execute("""
        CREATE POLICY profiles_select ON profiles
            FOR SELECT USING (true);
    """)
    op.execute("""
        CREATE POLICY profiles_insert ON profiles
            FOR INSERT WITH CHECK (id = (SELECT auth.uid()));
    """)
    op.execute("""
        CREATE POLICY profiles_update ON profiles
            FOR UPDATE USING (id = (SELECT auth.uid()));
    """)

    # Avatar objects are named "<user id>-<millis>.<ext>"
    op.execute("""
        INSERT INTO storage.buckets (id, name, public)
        VALUES ('avatars', 'avatars', true)
        ON CONFLICT (id) DO NOTHING;
    """)
    op.execute("""
        CREATE POLICY avatars_insert ON storage.objects
            FOR INSERT WITH CHECK (
                bucket_id = 'avatars'
                AND name LIKE (SELECT auth.uid())::text || '-%'
            );
    """)
    op.execute("""
        CREATE POLICY avatars_delete ON storage.objects
            FOR DELETE USING (
                bucket_id = 'avatars'
                AND name LIKE (SELECT auth.uid())::text || '-%'
            );
    """)


def downgrade() -> None:
    """Drop avatar policies and the profiles table."""
    op.execute("DROP POLICY IF EXISTS avatars_delete ON storage.objects;")
    op.execute("DROP POLICY IF EXISTS avatars_insert ON storage.objects;")
    op.drop_table("profiles")
