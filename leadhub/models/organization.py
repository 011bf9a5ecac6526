"""
Organization (tenant) and User: the isolation unit and the people leads are assigned to.
"""
import uuid

from sqlalchemy import Column, Text, DateTime, ForeignKey

from leadhub.database import Base
from leadhub.timeutil import utcnow


def new_id():
    return str(uuid.uuid4())


class Organization(Base):
    __tablename__ = 'organizations'

    id = Column(Text, primary_key=True, default=new_id)
    name = Column(Text, nullable=False)
    timezone = Column(Text, nullable=True)  # IANA name, e.g. America/Sao_Paulo
    created_at = Column(DateTime(timezone=True), default=utcnow)


class User(Base):
    __tablename__ = 'users'

    id = Column(Text, primary_key=True, default=new_id)
    organization_id = Column(Text, ForeignKey('organizations.id'), nullable=False, index=True)
    name = Column(Text, default='')
    email = Column(Text, default='')
    created_at = Column(DateTime(timezone=True), default=utcnow)
