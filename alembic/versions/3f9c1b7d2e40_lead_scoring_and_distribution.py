"""Lead scoring and distribution: tenants, pipeline records, scores, webhooks, pools, audit

Revision ID: 3f9c1b7d2e40
Revises:
Create Date: 2026-10-17 12:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '3f9c1b7d2e40'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('organizations',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('timezone', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_table('users',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('organization_id', sa.Text(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_users_organization_id', 'users', ['organization_id'])

    # ── Pipeline records ─────────────────────────────────────────────────────
    op.create_table('funnels',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('organization_id', sa.Text(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_funnels_organization_id', 'funnels', ['organization_id'])
    op.create_table('funnel_stages',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('funnel_id', sa.Text(), sa.ForeignKey('funnels.id'), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_funnel_stages_funnel_id', 'funnel_stages', ['funnel_id'])
    op.create_table('prospects',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('organization_id', sa.Text(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('name', sa.Text(), nullable=True),
        sa.Column('phone', sa.Text(), nullable=True),
        sa.Column('email', sa.Text(), nullable=True),
        sa.Column('company', sa.Text(), nullable=True),
        sa.Column('city', sa.Text(), nullable=True),
        sa.Column('job_title', sa.Text(), nullable=True),
        sa.Column('extra_fields', sa.JSON(), nullable=True),
        sa.Column('source', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_prospects_organization_id', 'prospects', ['organization_id'])
    op.create_table('deals',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('organization_id', sa.Text(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('funnel_id', sa.Text(), sa.ForeignKey('funnels.id'), nullable=True),
        sa.Column('stage_id', sa.Text(), sa.ForeignKey('funnel_stages.id'), nullable=True),
        sa.Column('prospect_id', sa.Text(), sa.ForeignKey('prospects.id'), nullable=True),
        sa.Column('owner_id', sa.Text(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('title', sa.Text(), nullable=True),
        sa.Column('value', sa.Float(), nullable=True),
        sa.Column('probability', sa.Integer(), nullable=True),
        sa.Column('status', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_deals_organization_id', 'deals', ['organization_id'])
    op.create_table('deal_messages',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('organization_id', sa.Text(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('deal_id', sa.Text(), sa.ForeignKey('deals.id'), nullable=False),
        sa.Column('direction', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_deal_messages_deal_id', 'deal_messages', ['deal_id'])

    # ── Lead scoring ─────────────────────────────────────────────────────────
    op.create_table('lead_score_configs',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('organization_id', sa.Text(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('weight_response_time', sa.Float(), nullable=False),
        sa.Column('weight_engagement', sa.Float(), nullable=False),
        sa.Column('weight_profile_completeness', sa.Float(), nullable=False),
        sa.Column('weight_deal_value', sa.Float(), nullable=False),
        sa.Column('weight_funnel_progress', sa.Float(), nullable=False),
        sa.Column('weight_recency', sa.Float(), nullable=False),
        sa.Column('hot_threshold', sa.Integer(), nullable=False),
        sa.Column('warm_threshold', sa.Integer(), nullable=False),
        sa.Column('auto_update_on_message', sa.Boolean(), nullable=True),
        sa.Column('auto_update_on_stage_change', sa.Boolean(), nullable=True),
        sa.Column('recalculate_interval_hours', sa.Integer(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('organization_id'),
    )
    op.create_table('lead_scores',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('deal_id', sa.Text(), sa.ForeignKey('deals.id'), nullable=False),
        sa.Column('organization_id', sa.Text(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('score_label', sa.Text(), nullable=False),
        sa.Column('score_response_time', sa.Integer(), nullable=True),
        sa.Column('score_engagement', sa.Integer(), nullable=True),
        sa.Column('score_profile', sa.Integer(), nullable=True),
        sa.Column('score_value', sa.Integer(), nullable=True),
        sa.Column('score_funnel', sa.Integer(), nullable=True),
        sa.Column('score_recency', sa.Integer(), nullable=True),
        sa.Column('total_messages', sa.Integer(), nullable=True),
        sa.Column('profile_fields_filled', sa.Integer(), nullable=True),
        sa.Column('profile_fields_total', sa.Integer(), nullable=True),
        sa.Column('funnel_stages_completed', sa.Integer(), nullable=True),
        sa.Column('funnel_stages_total', sa.Integer(), nullable=True),
        sa.Column('ai_summary', sa.Text(), nullable=True),
        sa.Column('ai_recommended_action', sa.Text(), nullable=True),
        sa.Column('previous_score', sa.Integer(), nullable=True),
        sa.Column('score_trend', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('deal_id'),
    )
    op.create_index('ix_lead_scores_organization_id', 'lead_scores', ['organization_id'])
    op.create_table('lead_score_history',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('deal_id', sa.Text(), sa.ForeignKey('deals.id'), nullable=False),
        sa.Column('organization_id', sa.Text(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('score', sa.Integer(), nullable=False),
        sa.Column('score_label', sa.Text(), nullable=False),
        sa.Column('factor_scores', sa.JSON(), nullable=True),
        sa.Column('trigger_event', sa.Text(), nullable=False),
        sa.Column('actor', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_lead_score_history_deal_created', 'lead_score_history', ['deal_id', 'created_at'])
    op.create_index('ix_lead_score_history_organization_id', 'lead_score_history', ['organization_id'])

    # ── Lead webhooks + distribution ─────────────────────────────────────────
    op.create_table('lead_webhooks',
        sa.Column('id', sa.Text(), nullable=False),
        sa.Column('organization_id', sa.Text(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('name', sa.Text(), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('webhook_token', sa.Text(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=True),
        sa.Column('funnel_id', sa.Text(), sa.ForeignKey('funnels.id'), nullable=True),
        sa.Column('stage_id', sa.Text(), sa.ForeignKey('funnel_stages.id'), nullable=True),
        sa.Column('owner_id', sa.Text(), sa.ForeignKey('users.id'), nullable=True),
        sa.Column('distribution_enabled', sa.Boolean(), nullable=True),
        sa.Column('field_mapping', sa.JSON(), nullable=True),
        sa.Column('default_value', sa.Float(), nullable=True),
        sa.Column('default_probability', sa.Integer(), nullable=True),
        sa.Column('total_leads', sa.Integer(), nullable=True),
        sa.Column('last_lead_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_by', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('webhook_token'),
    )
    op.create_index('ix_lead_webhooks_organization_id', 'lead_webhooks', ['organization_id'])
    op.create_table('distribution_members',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('webhook_id', sa.Text(), sa.ForeignKey('lead_webhooks.id'), nullable=False),
        sa.Column('user_id', sa.Text(), sa.ForeignKey('users.id'), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('max_leads_per_day', sa.Integer(), nullable=True),
        sa.Column('leads_today', sa.Integer(), nullable=False),
        sa.Column('leads_today_date', sa.Date(), nullable=True),
        sa.Column('last_lead_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('webhook_id', 'user_id', name='uq_distribution_member'),
    )
    op.create_index('ix_distribution_members_webhook_id', 'distribution_members', ['webhook_id'])
    op.create_table('webhook_logs',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('webhook_id', sa.Text(), sa.ForeignKey('lead_webhooks.id'), nullable=False),
        sa.Column('request_body', sa.JSON(), nullable=True),
        sa.Column('response_status', sa.Integer(), nullable=False),
        sa.Column('response_message', sa.Text(), nullable=True),
        sa.Column('deal_id', sa.Text(), nullable=True),
        sa.Column('prospect_id', sa.Text(), nullable=True),
        sa.Column('assigned_to', sa.Text(), nullable=True),
        sa.Column('source_ip', sa.Text(), nullable=True),
        sa.Column('user_agent', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_webhook_logs_webhook_id', 'webhook_logs', ['webhook_id'])
    op.create_table('assignment_events',
        sa.Column('id', sa.Integer(), autoincrement=True, nullable=False),
        sa.Column('organization_id', sa.Text(), sa.ForeignKey('organizations.id'), nullable=False),
        sa.Column('webhook_id', sa.Text(), sa.ForeignKey('lead_webhooks.id'), nullable=False),
        sa.Column('deal_id', sa.Text(), sa.ForeignKey('deals.id'), nullable=False),
        sa.Column('user_id', sa.Text(), nullable=True),
        sa.Column('outcome', sa.Text(), nullable=False),
        sa.Column('reason', sa.Text(), nullable=True),
        sa.Column('actor', sa.Text(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint('id'),
    )
    op.create_index('ix_assignment_events_organization_id', 'assignment_events', ['organization_id'])
    op.create_index('ix_assignment_events_webhook_id', 'assignment_events', ['webhook_id'])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table('assignment_events')
    op.drop_table('webhook_logs')
    op.drop_table('distribution_members')
    op.drop_table('lead_webhooks')
    op.drop_table('lead_score_history')
    op.drop_table('lead_scores')
    op.drop_table('lead_score_configs')
    op.drop_table('deal_messages')
    op.drop_table('deals')
    op.drop_table('prospects')
    op.drop_table('funnel_stages')
    op.drop_table('funnels')
    op.drop_table('users')
    op.drop_table('organizations')
