"""Accounts, widget sessions and widget analytics

Revision ID: 001
Revises:
Create Date: 2026-03-01 01:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '001'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Accounts
    op.create_table(
        'accounts',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('name', sa.String(255), nullable=True),
        sa.Column('email', sa.String(255), nullable=True, unique=True),
        sa.Column('live_key', sa.String(128), nullable=True, unique=True),
        sa.Column('test_key', sa.String(128), nullable=True, unique=True),
        sa.Column('api_keys', postgresql.JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('allowed_domains', postgresql.JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column('plan', sa.String(20), nullable=False, server_default='free'),
        sa.Column('monthly_quota', sa.Integer, nullable=True),
        sa.Column('total_quota', sa.Integer, nullable=True, server_default='100'),
        sa.Column('quota_used', sa.Integer, nullable=False, server_default='0'),
        sa.Column('studio_quota_used', sa.Integer, nullable=False, server_default='0'),
        sa.Column('widget_quota_used', sa.Integer, nullable=False, server_default='0'),
        sa.Column('quota_reset_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='active'),
        sa.Column('is_verified', sa.Boolean, nullable=False, server_default=sa.text('FALSE')),
        sa.Column('webhook_url', sa.String(2048), nullable=True),
        sa.Column('webhook_secret', sa.String(128), nullable=True),
        sa.Column('settings', postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.CheckConstraint("status IN ('active', 'suspended')", name='check_account_status'),
        sa.CheckConstraint('quota_used >= 0', name='check_quota_used_non_negative'),
    )
    op.create_index('ix_accounts_live_key', 'accounts', ['live_key'])
    op.create_index('ix_accounts_test_key', 'accounts', ['test_key'])
    # Containment lookups of named keys (api_keys @> '[{"key": ...}]')
    op.create_index('idx_accounts_api_keys', 'accounts', ['api_keys'], postgresql_using='gin')

    # Widget sessions
    op.create_table(
        'widget_sessions',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('account_id', sa.String(64), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('api_key_id', sa.String(64), nullable=True),
        sa.Column('product_image', sa.Text, nullable=False),
        sa.Column('product_name', sa.String(500), nullable=True),
        sa.Column('product_id', sa.String(255), nullable=True),
        sa.Column('product_category', sa.String(50), nullable=True),
        sa.Column('product_price', sa.String(50), nullable=True),
        sa.Column('product_currency', sa.String(3), nullable=True),
        sa.Column('product_url', sa.String(2048), nullable=True),
        sa.Column('external_user_id', sa.String(255), nullable=True),
        sa.Column('user_image', sa.Text, nullable=True),
        sa.Column('status', sa.String(20), nullable=False, server_default='pending'),
        sa.Column('origin_domain', sa.String(255), nullable=True),
        sa.Column('user_agent', sa.Text, nullable=True),
        sa.Column('ip_address', sa.String(64), nullable=True),
        sa.Column('result_image', sa.Text, nullable=True),
        sa.Column('result_thumbnail', sa.Text, nullable=True),
        sa.Column('processing_time', sa.Integer, nullable=True),
        sa.Column('error_code', sa.String(64), nullable=True),
        sa.Column('error_message', sa.Text, nullable=True),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('completed_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('expires_at', sa.TIMESTAMP(timezone=True), nullable=True),
        sa.CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed', 'expired')",
            name='check_session_status',
        ),
    )
    op.create_index('ix_widget_sessions_account_id', 'widget_sessions', ['account_id'])
    op.create_index('ix_widget_sessions_status', 'widget_sessions', ['status'])
    op.create_index('ix_widget_sessions_created_at', 'widget_sessions', ['created_at'])

    # Widget analytics
    op.create_table(
        'widget_analytics',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('account_id', sa.String(64), sa.ForeignKey('accounts.id', ondelete='CASCADE'), nullable=False),
        sa.Column('session_id', sa.String(64), sa.ForeignKey('widget_sessions.id'), nullable=True),
        sa.Column('event_type', sa.String(32), nullable=False),
        sa.Column('event_data', postgresql.JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column('created_at', sa.TIMESTAMP(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )
    op.create_index('ix_widget_analytics_account_id', 'widget_analytics', ['account_id'])
    op.create_index('ix_widget_analytics_session_id', 'widget_analytics', ['session_id'])


def downgrade() -> None:
    op.drop_table('widget_analytics')
    op.drop_table('widget_sessions')
    op.drop_table('accounts')
