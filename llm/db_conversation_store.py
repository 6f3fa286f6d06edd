"""
Database-backed conversation, scoring-config and question stores.

Implements the ConversationStore, ScoringConfigStore and BantQuestionStore
protocols using the repository layer. Each call runs in its own transaction.
"""

import logging
import uuid
from typing import Dict, List, Optional

from database.models import AgentBantQuestion, Conversation, Lead, QualificationMemoryRow, ScoringConfigRow
from database.repositories import (
    BantQuestionRepository,
    ConversationRepository,
    LeadRepository,
    QualificationMemoryRepository,
    ScoringConfigRepository,
)
from database.session import session_scope
from lead_scoring.bant_questions import BantQuestion, BantQuestionSet
from lead_scoring.qualification import QualificationMemory
from lead_scoring.scoring_config import ScoringConfig

from .conversation_store import ConversationMode, ConversationState, LeadRecord

logger = logging.getLogger(__name__)


def _to_state(conv: Conversation) -> ConversationState:
    return ConversationState(
        id=conv.id,
        agent_id=conv.agent_id,
        organization_id=conv.organization_id,
        user_id=conv.user_id,
        channel=conv.channel or "web",
        mode=ConversationMode(conv.mode or ConversationMode.AI.value),
        started_at=conv.started_at,
        last_active_at=conv.last_active_at,
        archived=bool(conv.archived),
    )


def _to_memory(row: QualificationMemoryRow) -> QualificationMemory:
    return QualificationMemory(
        budget_discussed=bool(row.budget_discussed),
        authority_discussed=bool(row.authority_discussed),
        need_discussed=bool(row.need_discussed),
        timeline_discussed=bool(row.timeline_discussed),
        budget=row.budget,
        authority=row.authority,
        need=row.need,
        timeline=row.timeline,
        contact_name=row.contact_name,
        contact_phone=row.contact_phone,
        contact_email=row.contact_email,
        unanswerable=list(row.unanswerable or []),
        next_expected_slot=row.next_expected_slot,
        version=row.version or 0,
    )


def _to_lead(row: Lead) -> LeadRecord:
    return LeadRecord(
        id=row.id,
        conversation_id=row.conversation_id,
        agent_id=row.agent_id,
        score=row.score,
        tier=row.tier,
        budget=row.budget,
        authority=row.authority,
        need=row.need,
        timeline=row.timeline,
        contact_name=row.contact_name,
        contact_phone=row.contact_phone,
        contact_email=row.contact_email,
        status=row.status,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class DbConversationStore:
    """Persistent conversation store backed by PostgreSQL or SQLite."""

    async def get_state(self, conversation_id: str) -> Optional[ConversationState]:
        async with session_scope() as session:
            conv = await ConversationRepository(session).get_by_id(conversation_id)
            return _to_state(conv) if conv else None

    async def create_state(
        self,
        agent_id: str,
        organization_id: Optional[str] = None,
        user_id: Optional[str] = None,
        channel: str = "web",
        conversation_id: Optional[str] = None,
    ) -> ConversationState:
        async with session_scope() as session:
            conv = await ConversationRepository(session).create(
                conversation_id=conversation_id or str(uuid.uuid4()),
                agent_id=agent_id,
                organization_id=organization_id,
                user_id=user_id,
                channel=channel,
                mode=ConversationMode.AI.value,
            )
            return _to_state(conv)

    async def touch(self, conversation_id: str) -> None:
        async with session_scope() as session:
            await ConversationRepository(session).touch(conversation_id)

    async def set_mode(self, conversation_id: str, mode: ConversationMode) -> Optional[ConversationState]:
        async with session_scope() as session:
            conv = await ConversationRepository(session).set_mode(conversation_id, mode.value)
            return _to_state(conv) if conv else None

    async def archive(self, conversation_id: str) -> bool:
        async with session_scope() as session:
            return await ConversationRepository(session).archive(conversation_id)

    async def get_history(self, conversation_id: str, limit: int = 50) -> List[Dict[str, str]]:
        """Get message history as list of role/content dicts."""
        async with session_scope() as session:
            messages = await ConversationRepository(session).get_messages(conversation_id, limit=limit)
            return [{"role": msg.role, "content": msg.content} for msg in messages]

    async def save_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        intent: Optional[str] = None,
    ) -> None:
        async with session_scope() as session:
            await ConversationRepository(session).add_message(
                conversation_id=conversation_id,
                role=role,
                content=content,
                intent=intent,
            )

    async def get_memory(self, conversation_id: str) -> Optional[QualificationMemory]:
        async with session_scope() as session:
            row = await QualificationMemoryRepository(session).get(conversation_id)
            return _to_memory(row) if row else None

    async def save_memory(self, conversation_id: str, memory: QualificationMemory) -> QualificationMemory:
        async with session_scope() as session:
            row = await QualificationMemoryRepository(session).save(conversation_id, memory.to_dict())
            return _to_memory(row)

    async def upsert_lead(self, lead: LeadRecord) -> LeadRecord:
        async with session_scope() as session:
            row = await LeadRepository(session).upsert(
                lead.conversation_id,
                agent_id=lead.agent_id,
                score=lead.score,
                tier=lead.tier,
                budget=lead.budget,
                authority=lead.authority,
                need=lead.need,
                timeline=lead.timeline,
                contact_name=lead.contact_name,
                contact_phone=lead.contact_phone,
                contact_email=lead.contact_email,
            )
            logger.debug(f"Lead upserted for conversation {lead.conversation_id}: {lead.score} ({lead.tier})")
            return _to_lead(row)

    async def get_lead(self, conversation_id: str) -> Optional[LeadRecord]:
        async with session_scope() as session:
            row = await LeadRepository(session).get_by_conversation(conversation_id)
            return _to_lead(row) if row else None


class DbScoringConfigStore:
    """Per-agent scoring configs in the scoring_configs table."""

    async def get(self, agent_id: str) -> Optional[ScoringConfig]:
        async with session_scope() as session:
            row = await ScoringConfigRepository(session).get(agent_id)
            return self._to_config(row) if row else None

    async def save(self, agent_id: str, config: ScoringConfig) -> ScoringConfig:
        config.validate_invariants()
        async with session_scope() as session:
            await ScoringConfigRepository(session).save(agent_id, config.model_dump())
        logger.info(f"Scoring config saved for agent {agent_id}")
        return config

    async def delete(self, agent_id: str) -> bool:
        async with session_scope() as session:
            return await ScoringConfigRepository(session).delete(agent_id)

    @staticmethod
    def _to_config(row: ScoringConfigRow) -> ScoringConfig:
        data = {
            column: getattr(row, column)
            for column in ScoringConfig.model_fields
            if getattr(row, column, None) is not None
        }
        return ScoringConfig(**data)


class DbBantQuestionStore:
    """Per-agent custom questions in the agent_bant_questions table."""

    async def get(self, agent_id: str) -> Optional[BantQuestionSet]:
        async with session_scope() as session:
            rows = await BantQuestionRepository(session).list_for_agent(agent_id)
            if not rows:
                return None
            return BantQuestionSet(questions=[self._to_question(row) for row in rows])

    async def save(self, agent_id: str, questions: BantQuestionSet) -> BantQuestionSet:
        questions.validate_invariants()
        async with session_scope() as session:
            await BantQuestionRepository(session).replace(
                agent_id, [q.model_dump() for q in questions.questions]
            )
        logger.info(f"Saved {len(questions.questions)} custom questions for agent {agent_id}")
        return questions

    async def delete(self, agent_id: str) -> bool:
        async with session_scope() as session:
            return await BantQuestionRepository(session).delete(agent_id)

    @staticmethod
    def _to_question(row: AgentBantQuestion) -> BantQuestion:
        return BantQuestion(
            category=row.category,
            question_text=row.question_text,
            question_order=row.question_order or 0,
            is_active=bool(row.is_active),
            placeholder_text=row.placeholder_text,
            help_text=row.help_text,
        )
