"""
CRM pipeline records read by the scoring engine and written by lead ingestion.

Funnel → FunnelStage (ordered by position), Prospect (captured contact),
Deal (opportunity), DealMessage (conversation signal rows).
"""
from sqlalchemy import Column, Integer, Float, Text, DateTime, JSON, ForeignKey

from leadhub.database import Base
from leadhub.models.organization import new_id
from leadhub.timeutil import utcnow


class Funnel(Base):
    __tablename__ = 'funnels'

    id = Column(Text, primary_key=True, default=new_id)
    organization_id = Column(Text, ForeignKey('organizations.id'), nullable=False, index=True)
    name = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow)


class FunnelStage(Base):
    __tablename__ = 'funnel_stages'

    id = Column(Text, primary_key=True, default=new_id)
    funnel_id = Column(Text, ForeignKey('funnels.id'), nullable=False, index=True)
    name = Column(Text, nullable=False)
    position = Column(Integer, nullable=False, default=0)


class Prospect(Base):
    __tablename__ = 'prospects'

    id = Column(Text, primary_key=True, default=new_id)
    organization_id = Column(Text, ForeignKey('organizations.id'), nullable=False, index=True)
    name = Column(Text, default='')
    phone = Column(Text, default='')
    email = Column(Text, default='')
    company = Column(Text, default='')
    city = Column(Text, default='')
    job_title = Column(Text, default='')
    extra_fields = Column(JSON, default=dict)
    source = Column(Text, default='')
    created_at = Column(DateTime(timezone=True), default=utcnow)


class Deal(Base):
    __tablename__ = 'deals'

    id = Column(Text, primary_key=True, default=new_id)
    organization_id = Column(Text, ForeignKey('organizations.id'), nullable=False, index=True)
    funnel_id = Column(Text, ForeignKey('funnels.id'), nullable=True)
    stage_id = Column(Text, ForeignKey('funnel_stages.id'), nullable=True)
    prospect_id = Column(Text, ForeignKey('prospects.id'), nullable=True)
    owner_id = Column(Text, ForeignKey('users.id'), nullable=True)
    title = Column(Text, default='')
    value = Column(Float, default=0.0)
    probability = Column(Integer, default=0)
    status = Column(Text, nullable=False, default='open')  # open / won / lost
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)


class DealMessage(Base):
    __tablename__ = 'deal_messages'

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Text, ForeignKey('organizations.id'), nullable=False)
    deal_id = Column(Text, ForeignKey('deals.id'), nullable=False, index=True)
    direction = Column(Text, nullable=False)  # inbound (from lead) / outbound (from team)
    created_at = Column(DateTime(timezone=True), default=utcnow)
