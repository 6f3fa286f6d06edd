"""
Repository classes for the data access layer.

Each repository encapsulates CRUD operations for a specific model.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    AgentBantQuestion, AITokenUsage, Conversation, Lead, LeadEvent, Message,
    QualificationMemoryRow, ScoringConfigRow,
)

logger = logging.getLogger(__name__)

MEMORY_COLUMNS = (
    "budget_discussed", "authority_discussed", "need_discussed", "timeline_discussed",
    "budget", "authority", "need", "timeline", "unanswerable", "next_expected_slot",
    "contact_name", "contact_phone", "contact_email",
)

SCORING_CONFIG_COLUMNS = (
    "budget_weight", "authority_weight", "need_weight", "timeline_weight", "contact_weight",
    "budget_criteria", "authority_criteria", "need_criteria", "timeline_criteria", "contact_criteria",
    "warm_threshold", "hot_threshold", "priority_threshold",
)


class ConversationRepository:
    """Data access for conversations and messages."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, conversation_id: str, **kwargs) -> Conversation:
        conv = Conversation(id=conversation_id, **kwargs)
        self.session.add(conv)
        await self.session.flush()
        return conv

    async def get_by_id(self, conversation_id: str) -> Optional[Conversation]:
        result = await self.session.execute(
            select(Conversation).where(Conversation.id == conversation_id)
        )
        return result.scalar_one_or_none()

    async def set_mode(self, conversation_id: str, mode: str) -> Optional[Conversation]:
        conv = await self.get_by_id(conversation_id)
        if not conv:
            return None
        conv.mode = mode
        await self.session.flush()
        return conv

    async def archive(self, conversation_id: str) -> bool:
        result = await self.session.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(archived=True)
        )
        return result.rowcount > 0

    async def touch(self, conversation_id: str) -> None:
        await self.session.execute(
            update(Conversation)
            .where(Conversation.id == conversation_id)
            .values(last_active_at=datetime.utcnow())
        )

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        intent: Optional[str] = None,
    ) -> Message:
        msg = Message(
            conversation_id=conversation_id,
            role=role,
            content=content,
            intent=intent,
        )
        self.session.add(msg)
        await self.session.flush()
        return msg

    async def get_messages(
        self, conversation_id: str, limit: int = 50
    ) -> List[Message]:
        """Newest ``limit`` messages, oldest first."""
        result = await self.session.execute(
            select(Message)
            .where(Message.conversation_id == conversation_id)
            .order_by(Message.created_at.desc())
            .limit(limit)
        )
        return list(reversed(result.scalars().all()))


class QualificationMemoryRepository:
    """Data access for per-conversation qualification memory."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, conversation_id: str) -> Optional[QualificationMemoryRow]:
        result = await self.session.execute(
            select(QualificationMemoryRow)
            .where(QualificationMemoryRow.conversation_id == conversation_id)
        )
        return result.scalar_one_or_none()

    async def save(self, conversation_id: str, values: Dict[str, Any]) -> QualificationMemoryRow:
        """Insert or overwrite (last write wins); bumps ``version``."""
        row = await self.get(conversation_id)
        if row is None:
            row = QualificationMemoryRow(conversation_id=conversation_id, version=0)
            self.session.add(row)

        for column in MEMORY_COLUMNS:
            if column in values:
                setattr(row, column, values[column])
        row.version = (row.version or 0) + 1
        row.updated_at = datetime.utcnow()
        await self.session.flush()
        return row


class LeadRepository:
    """Data access for leads and lead events."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_conversation(self, conversation_id: str) -> Optional[Lead]:
        result = await self.session.execute(
            select(Lead).where(Lead.conversation_id == conversation_id)
        )
        return result.scalar_one_or_none()

    async def upsert(self, conversation_id: str, **kwargs) -> Lead:
        """Create the conversation's lead or update it, recording an event either way."""
        lead = await self.get_by_conversation(conversation_id)
        if lead is None:
            lead = Lead(conversation_id=conversation_id, **kwargs)
            self.session.add(lead)
            await self.session.flush()
            event_type = "created"
        else:
            for k, v in kwargs.items():
                if hasattr(lead, k):
                    setattr(lead, k, v)
            lead.updated_at = datetime.utcnow()
            event_type = "score_updated"

        self.session.add(LeadEvent(
            lead_id=lead.id,
            event_type=event_type,
            details_json={"score": kwargs.get("score"), "tier": kwargs.get("tier")},
        ))
        await self.session.flush()
        return lead


class ScoringConfigRepository:
    """Data access for per-agent scoring configs."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, agent_id: str) -> Optional[ScoringConfigRow]:
        result = await self.session.execute(
            select(ScoringConfigRow).where(ScoringConfigRow.agent_id == agent_id)
        )
        return result.scalar_one_or_none()

    async def save(self, agent_id: str, values: Dict[str, Any]) -> ScoringConfigRow:
        row = await self.get(agent_id)
        if row is None:
            row = ScoringConfigRow(agent_id=agent_id)
            self.session.add(row)
        for column in SCORING_CONFIG_COLUMNS:
            if column in values:
                setattr(row, column, values[column])
        row.updated_at = datetime.utcnow()
        await self.session.flush()
        return row

    async def delete(self, agent_id: str) -> bool:
        result = await self.session.execute(
            delete(ScoringConfigRow).where(ScoringConfigRow.agent_id == agent_id)
        )
        return result.rowcount > 0


class BantQuestionRepository:
    """Data access for per-agent custom qualification questions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_for_agent(self, agent_id: str) -> List[AgentBantQuestion]:
        result = await self.session.execute(
            select(AgentBantQuestion)
            .where(AgentBantQuestion.agent_id == agent_id)
            .order_by(AgentBantQuestion.category, AgentBantQuestion.question_order)
        )
        return list(result.scalars().all())

    async def replace(self, agent_id: str, questions: List[Dict[str, Any]]) -> List[AgentBantQuestion]:
        """Swap the agent's whole question set in one transaction."""
        await self.session.execute(
            delete(AgentBantQuestion).where(AgentBantQuestion.agent_id == agent_id)
        )
        rows = [AgentBantQuestion(agent_id=agent_id, **values) for values in questions]
        self.session.add_all(rows)
        await self.session.flush()
        return rows

    async def delete(self, agent_id: str) -> bool:
        result = await self.session.execute(
            delete(AgentBantQuestion).where(AgentBantQuestion.agent_id == agent_id)
        )
        return result.rowcount > 0


class TokenUsageRepository:
    """Append and aggregate ledger rows. There is no update or delete."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add(self, values: Dict[str, Any]) -> AITokenUsage:
        row = AITokenUsage(**values)
        self.session.add(row)
        await self.session.flush()
        return row

    def _filtered(self, q, organization_id=None, agent_id=None, start=None, end=None, operation=None):
        if organization_id:
            q = q.where(AITokenUsage.organization_id == organization_id)
        if agent_id:
            q = q.where(AITokenUsage.agent_id == agent_id)
        if operation:
            q = q.where(AITokenUsage.operation_type == operation)
        if start:
            q = q.where(AITokenUsage.created_at >= start)
        if end:
            q = q.where(AITokenUsage.created_at < end)
        return q

    async def aggregate(self, **filters) -> Dict[str, Any]:
        """Totals over the filtered rows."""
        q = self._filtered(select(
            func.count(AITokenUsage.id),
            func.coalesce(func.sum(case((AITokenUsage.success.is_(False), 1), else_=0)), 0),
            func.coalesce(func.sum(case((AITokenUsage.fallback_used.is_(True), 1), else_=0)), 0),
            func.coalesce(func.sum(AITokenUsage.prompt_tokens), 0),
            func.coalesce(func.sum(AITokenUsage.completion_tokens), 0),
            func.coalesce(func.sum(AITokenUsage.total_tokens), 0),
            func.coalesce(func.sum(AITokenUsage.total_cost), 0.0),
            func.coalesce(func.avg(AITokenUsage.response_time_ms), 0.0),
        ), **filters)
        row = (await self.session.execute(q)).one()
        return {
            "request_count": int(row[0] or 0),
            "error_count": int(row[1] or 0),
            "fallback_count": int(row[2] or 0),
            "prompt_tokens": int(row[3] or 0),
            "completion_tokens": int(row[4] or 0),
            "total_tokens": int(row[5] or 0),
            "total_cost": float(row[6] or 0.0),
            "avg_response_time_ms": float(row[7] or 0.0),
        }

    async def by_operation(self, **filters) -> Dict[str, Dict[str, Any]]:
        q = self._filtered(select(
            AITokenUsage.operation_type,
            func.count(AITokenUsage.id),
            func.coalesce(func.sum(AITokenUsage.total_tokens), 0),
            func.coalesce(func.sum(AITokenUsage.total_cost), 0.0),
        ), **filters).group_by(AITokenUsage.operation_type)
        result = await self.session.execute(q)
        return {
            op: {
                "request_count": int(count),
                "total_tokens": int(tokens or 0),
                "total_cost": round(float(cost or 0.0), 8),
            }
            for op, count, tokens, cost in result.all()
        }

    async def daily(self, **filters) -> List[Dict[str, Any]]:
        """Per-day rollup ordered by date."""
        q = self._filtered(select(
            AITokenUsage.date,
            func.count(AITokenUsage.id),
            func.coalesce(func.sum(case((AITokenUsage.success.is_(False), 1), else_=0)), 0),
            func.coalesce(func.sum(AITokenUsage.total_tokens), 0),
            func.coalesce(func.sum(AITokenUsage.total_cost), 0.0),
            func.coalesce(func.avg(AITokenUsage.response_time_ms), 0.0),
        ), **filters).group_by(AITokenUsage.date).order_by(AITokenUsage.date)
        result = await self.session.execute(q)
        return [
            {
                "date": day,
                "request_count": int(count),
                "error_count": int(errors or 0),
                "total_tokens": int(tokens or 0),
                "total_cost": float(cost or 0.0),
                "avg_response_time_ms": float(latency or 0.0),
            }
            for day, count, errors, tokens, cost, latency in result.all()
        ]
