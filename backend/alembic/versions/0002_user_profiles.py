"""Add user_profiles for remote preferences

Revision ID: 0002_user_profiles
Revises: 0001_baseline
Create Date: 2026-10-16

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0002_user_profiles'
down_revision: Union[str, None] = '0001_baseline'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create user_profiles with owner-scoped RLS."""

    op.create_table(
        'user_profiles',
        sa.Column('owner_id', sa.String(128), primary_key=True),
        sa.Column('preferences', sa.JSON, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )

    op.execute('ALTER TABLE user_profiles ENABLE ROW LEVEL SECURITY')

    # RLS Policy: Users can only touch their own profile
    op.execute("""
        CREATE POLICY "Users manage own profile"
        ON user_profiles FOR ALL
        TO authenticated
        USING (owner_id = auth.uid()::text)
        WITH CHECK (owner_id = auth.uid()::text)
    """)

    # RLS Policy: Service role manages every profile
    op.execute("""
        CREATE POLICY "Service role manages profiles"
        ON user_profiles FOR ALL
        TO service_role
        USING (true)
        WITH CHECK (true)
    """)


def downgrade() -> None:
    """Drop user_profiles."""

    op.execute('DROP POLICY IF EXISTS "Users manage own profile" ON user_profiles')
    op.execute('DROP POLICY IF EXISTS "Service role manages profiles" ON user_profiles')
    op.drop_table('user_profiles')
