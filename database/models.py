"""
SQLAlchemy ORM models for the lead qualification service.

All persistent entities: conversations, messages, qualification memory,
scoring configs, custom qualification questions, leads and the token usage ledger.
"""

import uuid
from datetime import datetime

from sqlalchemy import (
    Column, String, Integer, Float, Boolean, Date, DateTime, Text, ForeignKey,
    JSON, Index,
)
from sqlalchemy.orm import DeclarativeBase, relationship


def _uuid() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(String(36), primary_key=True, default=_uuid)
    agent_id = Column(String(64), nullable=False, index=True)
    organization_id = Column(String(64), nullable=True, index=True)
    user_id = Column(String(64), nullable=True)
    channel = Column(String(20), default="web")  # web, messenger, sms
    mode = Column(String(20), default="ai", nullable=False)  # ai, human, handoff_requested
    archived = Column(Boolean, default=False, nullable=False)
    started_at = Column(DateTime, default=datetime.utcnow)
    last_active_at = Column(DateTime, default=datetime.utcnow)

    messages = relationship("Message", back_populates="conversation", cascade="all, delete-orphan")
    memory = relationship("QualificationMemoryRow", back_populates="conversation", uselist=False)
    lead = relationship("Lead", back_populates="conversation", uselist=False)

    __table_args__ = (
        Index("ix_conv_agent_active", "agent_id", "last_active_at"),
    )


class Message(Base):
    __tablename__ = "messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    conversation_id = Column(String(36), ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(10), nullable=False)  # user, assistant
    content = Column(Text, nullable=False)
    intent = Column(String(30), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    conversation = relationship("Conversation", back_populates="messages")


class QualificationMemoryRow(Base):
    __tablename__ = "qualification_memory"

    id = Column(String(36), primary_key=True, default=_uuid)
    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=False, unique=True)
    budget_discussed = Column(Boolean, default=False, nullable=False)
    authority_discussed = Column(Boolean, default=False, nullable=False)
    need_discussed = Column(Boolean, default=False, nullable=False)
    timeline_discussed = Column(Boolean, default=False, nullable=False)
    budget = Column(Integer, nullable=True)
    authority = Column(String(30), nullable=True)
    need = Column(String(30), nullable=True)
    timeline = Column(String(30), nullable=True)
    unanswerable = Column(JSON, default=list)
    next_expected_slot = Column(String(20), nullable=True)
    contact_name = Column(String(255), nullable=True)
    contact_phone = Column(String(20), nullable=True)
    contact_email = Column(String(255), nullable=True)
    version = Column(Integer, default=0, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    conversation = relationship("Conversation", back_populates="memory")


class ScoringConfigRow(Base):
    __tablename__ = "scoring_configs"

    id = Column(String(36), primary_key=True, default=_uuid)
    agent_id = Column(String(64), nullable=False, unique=True)
    budget_weight = Column(Integer, nullable=False)
    authority_weight = Column(Integer, nullable=False)
    need_weight = Column(Integer, nullable=False)
    timeline_weight = Column(Integer, nullable=False)
    contact_weight = Column(Integer, nullable=False, default=0)
    budget_criteria = Column(JSON, default=list)
    authority_criteria = Column(JSON, default=list)
    need_criteria = Column(JSON, default=list)
    timeline_criteria = Column(JSON, default=list)
    contact_criteria = Column(JSON, default=list)
    warm_threshold = Column(Integer, nullable=False)
    hot_threshold = Column(Integer, nullable=False)
    priority_threshold = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AgentBantQuestion(Base):
    __tablename__ = "agent_bant_questions"

    id = Column(String(36), primary_key=True, default=_uuid)
    agent_id = Column(String(64), nullable=False, index=True)
    category = Column(String(20), nullable=False)  # budget, authority, need, timeline
    question_text = Column(Text, nullable=False)
    question_order = Column(Integer, default=0)
    is_active = Column(Boolean, default=True)
    placeholder_text = Column(String(255), nullable=True)
    help_text = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        Index("ix_bant_question_agent_category", "agent_id", "category"),
    )


class Lead(Base):
    __tablename__ = "leads"

    id = Column(String(36), primary_key=True, default=_uuid)
    conversation_id = Column(String(36), ForeignKey("conversations.id"), nullable=False, unique=True)
    agent_id = Column(String(64), nullable=False, index=True)
    budget = Column(Integer, nullable=True)
    authority = Column(String(30), nullable=True)
    need = Column(String(30), nullable=True)
    timeline = Column(String(30), nullable=True)
    contact_name = Column(String(255), nullable=True)
    contact_phone = Column(String(20), nullable=True)
    contact_email = Column(String(255), nullable=True)
    score = Column(Integer, default=0)
    tier = Column(String(10), default="cold")  # cold, warm, hot, priority
    status = Column(String(20), default="new")  # new, contacted, qualified, converted, lost
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    conversation = relationship("Conversation", back_populates="lead")
    events = relationship("LeadEvent", back_populates="lead", cascade="all, delete-orphan")

    __table_args__ = (
        Index("ix_lead_agent_tier", "agent_id", "tier"),
    )


class LeadEvent(Base):
    __tablename__ = "lead_events"

    id = Column(String(36), primary_key=True, default=_uuid)
    lead_id = Column(String(36), ForeignKey("leads.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(String(30), nullable=False)  # created, score_updated
    details_json = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)

    lead = relationship("Lead", back_populates="events")


class AITokenUsage(Base):
    """Append-only ledger of model invocations."""
    __tablename__ = "ai_token_usage"

    id = Column(String(36), primary_key=True, default=_uuid)
    organization_id = Column(String(64), nullable=False, default="system")
    agent_id = Column(String(64), nullable=False, default="system")
    conversation_id = Column(String(64), nullable=False, default="system")
    user_id = Column(String(64), nullable=False, default="system")
    model_tier = Column(String(20), nullable=False)
    model = Column(String(100), nullable=False)
    operation_type = Column(String(40), nullable=False)
    prompt_tokens = Column(Integer, default=0, nullable=False)
    completion_tokens = Column(Integer, default=0, nullable=False)
    total_tokens = Column(Integer, default=0, nullable=False)
    cached_tokens = Column(Integer, default=0, nullable=False)
    cost_per_1k_prompt = Column(Float, default=0.0)
    cost_per_1k_completion = Column(Float, default=0.0)
    total_cost = Column(Float, default=0.0)
    response_time_ms = Column(Float, default=0.0)
    success = Column(Boolean, default=True, nullable=False)
    fallback_used = Column(Boolean, default=False, nullable=False)
    attempt = Column(Integer, default=1, nullable=False)
    usage_estimated = Column(Boolean, default=False, nullable=False)
    error_message = Column(Text, nullable=True)
    endpoint = Column(String(100), nullable=True)
    request_metadata = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    date = Column(Date, nullable=False)
    hour = Column(Integer, nullable=False)

    __table_args__ = (
        Index("ix_usage_org_date", "organization_id", "date"),
        Index("ix_usage_agent_date", "agent_id", "date"),
        Index("ix_usage_operation", "operation_type"),
    )
