"""Baseline schema for the remote store

Revision ID: 0001_baseline
Revises:
Create Date: 2026-10-16

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_baseline'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create subscriptions, user_documents and processed_webhook_events."""

    op.create_table(
        'subscriptions',
        sa.Column('user_id', sa.String(128), primary_key=True),
        sa.Column('email', sa.String(320)),

        # Stripe IDs
        sa.Column('stripe_customer_id', sa.String(255)),

        # Subscription details
        sa.Column('tier', sa.String(32), server_default='free', nullable=False),
        sa.Column('is_active', sa.Boolean, server_default='false', nullable=False),
        sa.Column('cancel_at_period_end', sa.Boolean, server_default='false', nullable=False),

        # Payment bookkeeping
        sa.Column('consecutive_payment_failures', sa.Integer, server_default='0', nullable=False),
        sa.Column('last_payment_at', sa.DateTime(timezone=True)),
        sa.Column('total_paid', sa.Integer, server_default='0', nullable=False),
        sa.Column('payment_count', sa.Integer, server_default='0', nullable=False),

        # Timestamps (UTC)
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        'ix_subscriptions_stripe_customer_id',
        'subscriptions',
        ['stripe_customer_id'],
    )

    op.create_table(
        'user_documents',
        sa.Column('id', sa.Uuid, primary_key=True),
        sa.Column('owner_id', sa.String(128), nullable=False),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('active', sa.Boolean),
        sa.Column('payload', sa.JSON, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_user_documents_owner_id', 'user_documents', ['owner_id'])
    op.create_index('ix_user_documents_created_at', 'user_documents', ['created_at'])
    # Keyset pagination: (owner, kind) filter + created_at DESC ordering
    op.create_index(
        'ix_user_documents_owner_kind_created',
        'user_documents',
        ['owner_id', 'kind', 'created_at'],
    )

    op.create_table(
        'processed_webhook_events',
        sa.Column('event_id', sa.String(255), primary_key=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column(
            'processed_at',
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    )
    # Index for cleanup queries (delete events older than X days)
    op.create_index(
        'ix_processed_webhook_events_processed_at',
        'processed_webhook_events',
        ['processed_at'],
    )

    # Enable RLS
    op.execute('ALTER TABLE user_documents ENABLE ROW LEVEL SECURITY')
    op.execute('ALTER TABLE subscriptions ENABLE ROW LEVEL SECURITY')

    # RLS Policy: Users can only touch their own documents
    op.execute("""
        CREATE POLICY "Users manage own documents"
        ON user_documents FOR ALL
        TO authenticated
        USING (owner_id = auth.uid()::text)
        WITH CHECK (owner_id = auth.uid()::text)
    """)

    # RLS Policy: Users can only see their own subscription
    op.execute("""
        CREATE POLICY "Users can view own subscription"
        ON subscriptions FOR SELECT
        TO authenticated
        USING (user_id = auth.uid()::text)
    """)

    # RLS Policy: Service role manages everything (backend + webhooks)
    op.execute("""
        CREATE POLICY "Service role manages documents"
        ON user_documents FOR ALL
        TO service_role
        USING (true)
        WITH CHECK (true)
    """)
    op.execute("""
        CREATE POLICY "Service role manages subscriptions"
        ON subscriptions FOR ALL
        TO service_role
        USING (true)
        WITH CHECK (true)
    """)


def downgrade() -> None:
    """Drop the baseline schema."""

    # Drop policies
    op.execute('DROP POLICY IF EXISTS "Users manage own documents" ON user_documents')
    op.execute('DROP POLICY IF EXISTS "Service role manages documents" ON user_documents')
    op.execute('DROP POLICY IF EXISTS "Users can view own subscription" ON subscriptions')
    op.execute('DROP POLICY IF EXISTS "Service role manages subscriptions" ON subscriptions')

    op.drop_index('ix_processed_webhook_events_processed_at')
    op.drop_table('processed_webhook_events')

    op.drop_index('ix_user_documents_owner_kind_created')
    op.drop_index('ix_user_documents_created_at')
    op.drop_index('ix_user_documents_owner_id')
    op.drop_table('user_documents')

    op.drop_index('ix_subscriptions_stripe_customer_id')
    op.drop_table('subscriptions')
