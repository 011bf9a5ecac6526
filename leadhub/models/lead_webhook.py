"""
Lead capture endpoints and their distribution pools.

LeadWebhook          inbound endpoint identified by an opaque token
DistributionMember   (webhook, user) slot with a daily cap
WebhookLog           immutable record of every inbound call
"""
from sqlalchemy import (
    Column, Integer, Float, Text, Boolean, Date, DateTime, JSON, ForeignKey, UniqueConstraint,
)

from leadhub.database import Base
from leadhub.models.organization import new_id
from leadhub.timeutil import utcnow


class LeadWebhook(Base):
    __tablename__ = 'lead_webhooks'

    id = Column(Text, primary_key=True, default=new_id)
    organization_id = Column(Text, ForeignKey('organizations.id'), nullable=False, index=True)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    webhook_token = Column(Text, nullable=False, unique=True)
    is_active = Column(Boolean, default=True)
    funnel_id = Column(Text, ForeignKey('funnels.id'), nullable=True)
    stage_id = Column(Text, ForeignKey('funnel_stages.id'), nullable=True)
    owner_id = Column(Text, ForeignKey('users.id'), nullable=True)
    distribution_enabled = Column(Boolean, default=False)
    field_mapping = Column(JSON, default=dict)   # payload key → prospect field
    default_value = Column(Float, default=0.0)
    default_probability = Column(Integer, default=10)
    total_leads = Column(Integer, default=0)
    last_lead_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    deleted_at = Column(DateTime(timezone=True), nullable=True)   # retired; row kept for the audit trail


class DistributionMember(Base):
    __tablename__ = 'distribution_members'
    __table_args__ = (
        UniqueConstraint('webhook_id', 'user_id', name='uq_distribution_member'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    webhook_id = Column(Text, ForeignKey('lead_webhooks.id'), nullable=False, index=True)
    user_id = Column(Text, ForeignKey('users.id'), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    max_leads_per_day = Column(Integer, nullable=True)   # NULL = unlimited
    leads_today = Column(Integer, nullable=False, default=0)
    leads_today_date = Column(Date, nullable=True)       # tenant-local day leads_today counts
    last_lead_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class WebhookLog(Base):
    __tablename__ = 'webhook_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    webhook_id = Column(Text, ForeignKey('lead_webhooks.id'), nullable=False, index=True)
    request_body = Column(JSON, default=dict)
    response_status = Column(Integer, nullable=False)
    response_message = Column(Text, default='')
    deal_id = Column(Text, nullable=True)
    prospect_id = Column(Text, nullable=True)
    assigned_to = Column(Text, nullable=True)
    source_ip = Column(Text, default='')
    user_agent = Column(Text, default='')
    created_at = Column(DateTime(timezone=True), default=utcnow)
