"""
Database Models
===============
CallCenter / User / Form = routing domain and roster
Lead = current status + assignment
LeadEvent = immutable history (status and assignment changes)
"""

import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import JSON, Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import DeclarativeBase, relationship


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class DistributionMethod(str, Enum):
    MANUAL = "manual"
    ROUND_ROBIN = "round_robin"
    WEIGHTED = "weighted"


class UserRole(str, Enum):
    ADMIN = "admin"
    OWNER = "owner"
    SUPERVISOR = "supervisor"
    AGENT = "agent"


class Base(DeclarativeBase):
    pass


class CallCenter(Base):
    __tablename__ = "call_centers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)

    distribution_method = Column(String(20), nullable=False, default=DistributionMethod.ROUND_ROBIN.value)
    is_active = Column(Boolean, nullable=False, default=True)

    # Index of the last agent picked by round robin; -1 = nobody yet
    round_robin_cursor = Column(Integer, nullable=False, default=-1)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    users = relationship("User", back_populates="call_center", foreign_keys="User.call_center_id")
    forms = relationship("Form", back_populates="call_center")


class User(Base):
    """
    Anyone who logs in. Only active users with role=agent
    ever receive leads.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    email = Column(String(320), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.AGENT.value)

    call_center_id = Column(Integer, ForeignKey("call_centers.id"), nullable=True)
    supervisor_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    call_center = relationship("CallCenter", back_populates="users", foreign_keys=[call_center_id])

    @property
    def is_agent(self) -> bool:
        return self.role == UserRole.AGENT.value


class Form(Base):
    __tablename__ = "forms"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), nullable=False)
    call_center_id = Column(Integer, ForeignKey("call_centers.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)

    call_center = relationship("CallCenter", back_populates="forms")


class Lead(Base):
    """
    The Lead table stores the CURRENT status and owner.
    History lives in lead_events.
    """
    __tablename__ = "leads"
    __table_args__ = (
        Index("idx_leads_distribution", "call_center_id", "status", "assigned_to"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)

    form_id = Column(Integer, ForeignKey("forms.id"), nullable=True)
    call_center_id = Column(Integer, ForeignKey("call_centers.id"), nullable=True)
    assigned_to = Column(Integer, ForeignKey("users.id"), nullable=True)

    # Contact data
    email = Column(String(320), nullable=True)
    phone = Column(String(50), nullable=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    form_payload = Column(JSON, nullable=True)

    # Lifecycle - status is THE SINGLE SOURCE OF TRUTH
    status = Column(String(50), nullable=False, default="pending_email")
    status_entered_at = Column(DateTime(timezone=True), default=utcnow)
    email_confirmed_at = Column(DateTime(timezone=True), nullable=True)
    called_at = Column(DateTime(timezone=True), nullable=True)
    call_comment = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    form = relationship("Form")
    events = relationship("LeadEvent", back_populates="lead", order_by="LeadEvent.occurred_at")


class LeadEvent(Base):
    """
    The Event Log - IMMUTABLE history.
    Every status change or (un)assignment appends a row here.
    Never updated or deleted - append-only.
    """
    __tablename__ = "lead_events"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    lead_id = Column(Integer, ForeignKey("leads.id"), nullable=False, index=True)

    from_status = Column(String(50), nullable=False)
    event = Column(String(100), nullable=False)
    to_status = Column(String(50), nullable=False)

    payload = Column(JSON, nullable=True)

    occurred_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    lead = relationship("Lead", back_populates="events")
