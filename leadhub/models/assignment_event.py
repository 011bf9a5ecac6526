"""
AssignmentEvent model: append-only audit of every lead assignment decision.
"""
from sqlalchemy import Column, Integer, Text, DateTime, ForeignKey

from leadhub.database import Base
from leadhub.timeutil import utcnow


class AssignmentEvent(Base):
    __tablename__ = 'assignment_events'

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(Text, ForeignKey('organizations.id'), nullable=False, index=True)
    webhook_id = Column(Text, ForeignKey('lead_webhooks.id'), nullable=False, index=True)
    deal_id = Column(Text, ForeignKey('deals.id'), nullable=False)
    user_id = Column(Text, nullable=True)
    outcome = Column(Text, nullable=False)     # assigned / unassigned / owner_default
    reason = Column(Text, default='')
    actor = Column(Text, nullable=False, default='webhook')
    created_at = Column(DateTime(timezone=True), default=utcnow)
