"""
Lead scoring tables.

LeadScoreConfig    one row per tenant (weights, thresholds, triggers)
LeadScore          current score per deal, updated in place
LeadScoreHistory   one row per computation, never updated (trend + reporting)
"""
from sqlalchemy import (
    Column, Integer, Float, Text, Boolean, DateTime, JSON, ForeignKey, Index,
)

from leadhub.database import Base
from leadhub.models.organization import new_id
from leadhub.timeutil import utcnow, isoformat


class LeadScoreConfig(Base):
    __tablename__ = 'lead_score_configs'

    id = Column(Text, primary_key=True, default=new_id)
    organization_id = Column(Text, ForeignKey('organizations.id'), nullable=False, unique=True)
    is_active = Column(Boolean, default=True)
    weight_response_time = Column(Float, nullable=False)
    weight_engagement = Column(Float, nullable=False)
    weight_profile_completeness = Column(Float, nullable=False)
    weight_deal_value = Column(Float, nullable=False)
    weight_funnel_progress = Column(Float, nullable=False)
    weight_recency = Column(Float, nullable=False)
    hot_threshold = Column(Integer, nullable=False)
    warm_threshold = Column(Integer, nullable=False)
    auto_update_on_message = Column(Boolean, default=True)
    auto_update_on_stage_change = Column(Boolean, default=True)
    recalculate_interval_hours = Column(Integer, default=24)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class LeadScore(Base):
    __tablename__ = 'lead_scores'

    id = Column(Text, primary_key=True, default=new_id)
    deal_id = Column(Text, ForeignKey('deals.id'), nullable=False, unique=True)
    organization_id = Column(Text, ForeignKey('organizations.id'), nullable=False, index=True)
    score = Column(Integer, nullable=False, default=0)              # 0-100
    score_label = Column(Text, nullable=False, default='cold')      # hot / warm / cold
    score_response_time = Column(Integer, default=0)
    score_engagement = Column(Integer, default=0)
    score_profile = Column(Integer, default=0)
    score_value = Column(Integer, default=0)
    score_funnel = Column(Integer, default=0)
    score_recency = Column(Integer, default=0)
    total_messages = Column(Integer, default=0)
    profile_fields_filled = Column(Integer, default=0)
    profile_fields_total = Column(Integer, default=0)
    funnel_stages_completed = Column(Integer, default=0)
    funnel_stages_total = Column(Integer, default=0)
    ai_summary = Column(Text, nullable=True)
    ai_recommended_action = Column(Text, nullable=True)
    previous_score = Column(Integer, nullable=True)
    score_trend = Column(Text, default='stable')                    # up / down / stable
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'deal_id': self.deal_id,
            'organization_id': self.organization_id,
            'score': self.score,
            'score_label': self.score_label,
            'score_response_time': self.score_response_time,
            'score_engagement': self.score_engagement,
            'score_profile': self.score_profile,
            'score_value': self.score_value,
            'score_funnel': self.score_funnel,
            'score_recency': self.score_recency,
            'total_messages': self.total_messages,
            'profile_fields_filled': self.profile_fields_filled,
            'profile_fields_total': self.profile_fields_total,
            'funnel_stages_completed': self.funnel_stages_completed,
            'funnel_stages_total': self.funnel_stages_total,
            'ai_summary': self.ai_summary,
            'ai_recommended_action': self.ai_recommended_action,
            'previous_score': self.previous_score,
            'score_trend': self.score_trend,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at),
        }


class LeadScoreHistory(Base):
    __tablename__ = 'lead_score_history'
    __table_args__ = (
        Index('ix_lead_score_history_deal_created', 'deal_id', 'created_at'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    deal_id = Column(Text, ForeignKey('deals.id'), nullable=False)
    organization_id = Column(Text, ForeignKey('organizations.id'), nullable=False, index=True)
    score = Column(Integer, nullable=False)
    score_label = Column(Text, nullable=False)
    factor_scores = Column(JSON, default=dict)
    trigger_event = Column(Text, nullable=False, default='manual')
    actor = Column(Text, nullable=False, default='system')
    created_at = Column(DateTime(timezone=True), default=utcnow)
