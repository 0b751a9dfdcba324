"""initial schema: links, clicks, facebook accounts, scheduled stories

Revision ID: a7c1e0d4b9f2
Revises:
Create Date: 2026-10-17 09:12:41.318204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = 'a7c1e0d4b9f2'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # --- Links ---
    op.create_table('links',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('short_code', sa.String(length=32), nullable=False),
        sa.Column('original_url', sa.Text(), nullable=False),
        sa.Column('title', sa.String(length=255), nullable=False, server_default=''),
        sa.Column('is_affiliate', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('redirect_delay', sa.Integer(), nullable=False, server_default='3'),
        sa.Column('total_clicks', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('estimated_revenue', sa.Numeric(precision=12, scale=2), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_by_ip', sa.String(length=45), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    # Short codes are never reused; this index is the allocator's race guard
    op.create_index('ix_links_short_code', 'links', ['short_code'], unique=True)

    # --- Clicks (append-only) ---
    op.create_table('clicks',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('link_id', sa.Uuid(), nullable=False),
        sa.Column('clicked_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('referrer', sa.Text(), nullable=False, server_default=''),
        sa.Column('user_agent', sa.Text(), nullable=False, server_default=''),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('device_type', sa.String(length=10), nullable=False),
        sa.Column('revenue_generated', sa.Numeric(precision=12, scale=2), nullable=False),
        sa.ForeignKeyConstraint(['link_id'], ['links.id']),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_clicks_link_clicked', 'clicks', ['link_id', 'clicked_at'], unique=False)

    # --- Facebook accounts ---
    op.create_table('facebook_accounts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('owner_id', sa.String(length=100), nullable=False),
        sa.Column('facebook_user_id', sa.String(length=100), nullable=False, server_default='me'),
        sa.Column('access_token', sa.Text(), nullable=False),
        sa.Column('page_id', sa.String(length=100), nullable=True),
        sa.Column('page_name', sa.String(length=255), nullable=True),
        sa.Column('token_expires_at', sa.DateTime(timezone=True), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index(op.f('ix_facebook_accounts_owner_id'), 'facebook_accounts', ['owner_id'], unique=False)

    # --- Scheduled stories ---
    op.create_table('scheduled_stories',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('story_type', sa.String(length=10), nullable=False, server_default='image'),
        sa.Column('media_url', sa.Text(), nullable=False),
        sa.Column('caption', sa.Text(), nullable=False, server_default=''),
        sa.Column('scheduled_time', sa.DateTime(timezone=True), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, server_default='pending'),
        sa.Column('posted_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('error_message', sa.Text(), nullable=True),
        sa.Column('retry_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('external_post_id', sa.String(length=255), nullable=True),
        sa.Column('next_attempt_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['account_id'], ['facebook_accounts.id']),
        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('retry_count >= 0', name='ck_scheduled_stories_retry_count'),
        sa.CheckConstraint(
            "(status = 'posted') = (external_post_id IS NOT NULL)",
            name='ck_scheduled_stories_posted_has_id',
        ),
    )
    op.create_index(op.f('ix_scheduled_stories_account_id'), 'scheduled_stories', ['account_id'], unique=False)
    op.create_index('ix_scheduled_stories_due', 'scheduled_stories', ['status', 'scheduled_time'], unique=False)


def downgrade() -> None:
    op.drop_index('ix_scheduled_stories_due', table_name='scheduled_stories')
    op.drop_index(op.f('ix_scheduled_stories_account_id'), table_name='scheduled_stories')
    op.drop_table('scheduled_stories')
    op.drop_index(op.f('ix_facebook_accounts_owner_id'), table_name='facebook_accounts')
    op.drop_table('facebook_accounts')
    op.drop_index('ix_clicks_link_clicked', table_name='clicks')
    op.drop_table('clicks')
    op.drop_index('ix_links_short_code', table_name='links')
    op.drop_table('links')
