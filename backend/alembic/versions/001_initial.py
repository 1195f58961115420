"""Initial database schema

Revision ID: 001_initial
Revises:
Create Date: 2025-01-06

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001_initial'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Users, mirrored from the registration flow
    op.create_table(
        'users',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('email', sa.String(255), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('plan', sa.String(50), nullable=False, server_default='FREE'),
        sa.Column('subscription_started_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('email'),
    )

    # External identifiers bound to internal users
    op.create_table(
        'identity_links',
        sa.Column('platform', sa.String(20), nullable=False),
        sa.Column('external_id', sa.String(255), nullable=False),
        sa.Column('internal_id', sa.UUID(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('platform', 'external_id'),
        sa.ForeignKeyConstraint(['internal_id'], ['users.id'], ondelete='RESTRICT'),
        sa.UniqueConstraint('internal_id', 'platform', name='uq_identity_links_internal_platform'),
    )
    op.create_index('ix_identity_links_internal_id', 'identity_links', ['internal_id'])

    # Voice assistants and their owners
    op.create_table(
        'assistants',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('voice_assistant_id', sa.String(255), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='RESTRICT'),
        sa.UniqueConstraint('voice_assistant_id'),
    )
    op.create_index('ix_assistants_user_id', 'assistants', ['user_id'])

    # Usage ledger (append-only)
    op.create_table(
        'usage_records',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('call_id', sa.String(255), nullable=False),
        sa.Column('assistant_id', sa.String(255), nullable=True),
        sa.Column('channel', sa.String(20), nullable=False),
        sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('duration_seconds', sa.Float(), nullable=False),
        sa.Column('duration_minutes', sa.Integer(), nullable=False),
        sa.Column('cost', sa.Numeric(12, 4), nullable=False),
        sa.Column('billing_month', sa.String(7), nullable=False),
        sa.Column('metadata', postgresql.JSONB(), nullable=False, server_default='{}'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='RESTRICT'),
        sa.UniqueConstraint('call_id'),
    )
    op.create_index('ix_usage_records_assistant_id', 'usage_records', ['assistant_id'])
    op.create_index('ix_usage_records_user_started_at', 'usage_records', ['user_id', 'started_at'])
    op.create_index('ix_usage_records_user_billing_month', 'usage_records', ['user_id', 'billing_month'])

    # Snapshot cache, one row per user
    op.create_table(
        'user_usage_snapshots',
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('billing_month', sa.String(7), nullable=False),
        sa.Column('monthly_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_calls', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('assistant_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('workflow_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_reset_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('last_activity_date', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('user_id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='CASCADE'),
    )

    # Events waiting for an owner
    op.create_table(
        'unattributed_events',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('event_id', sa.String(255), nullable=False),
        sa.Column('event_type', sa.String(50), nullable=False),
        sa.Column('reason', sa.String(255), nullable=False),
        sa.Column('payload', postgresql.JSONB(), nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('now()')),
        sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('resolved_user_id', sa.UUID(), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('event_id'),
    )
    op.create_index('ix_unattributed_events_resolved_at', 'unattributed_events', ['resolved_at'])

    # Monthly invoices
    op.create_table(
        'invoices',
        sa.Column('id', sa.UUID(), nullable=False),
        sa.Column('invoice_number', sa.String(100), nullable=False),
        sa.Column('user_id', sa.UUID(), nullable=False),
        sa.Column('billing_month', sa.String(7), nullable=False),
        sa.Column('plan', sa.String(50), nullable=False),
        sa.Column('usage', postgresql.JSONB(), nullable=False),
        sa.Column('billing', postgresql.JSONB(), nullable=False),
        sa.Column('limits', postgresql.JSONB(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('daily_breakdown', postgresql.JSONB(), nullable=False),
        sa.Column('assistant_breakdown', postgresql.JSONB(), nullable=False),
        sa.Column('generated_at', sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['user_id'], ['users.id'], ondelete='RESTRICT'),
        sa.UniqueConstraint('invoice_number'),
        sa.UniqueConstraint('user_id', 'billing_month', name='uq_invoices_user_month'),
    )
    op.create_index('ix_invoices_user_id', 'invoices', ['user_id'])
    op.create_index('ix_invoices_billing_month', 'invoices', ['billing_month'])


def downgrade() -> None:
    op.drop_table('invoices')
    op.drop_table('unattributed_events')
    op.drop_table('user_usage_snapshots')
    op.drop_table('usage_records')
    op.drop_table('assistants')
    op.drop_table('identity_links')
    op.drop_table('users')
