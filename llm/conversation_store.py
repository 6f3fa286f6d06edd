"""
Conversation, qualification, scoring-config and question storage.

Protocols let the dispatcher work with either in-memory dicts or a
database backend. Writes are last-write-wins; every memory save bumps
``QualificationMemory.version``.
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from lead_scoring.bant_questions import BantQuestionSet
from lead_scoring.qualification import QualificationMemory
from lead_scoring.scoring_config import ScoringConfig
from lead_scoring.scoring_model import LeadScore


class ConversationMode(Enum):
    """Who is answering the conversation."""
    AI = "ai"
    HUMAN = "human"
    HANDOFF_REQUESTED = "handoff_requested"


@dataclass
class ConversationState:
    """One chat thread. Never deleted, only archived."""
    id: str
    agent_id: str
    organization_id: Optional[str] = None
    user_id: Optional[str] = None
    channel: str = "web"
    mode: ConversationMode = ConversationMode.AI
    started_at: datetime = field(default_factory=datetime.utcnow)
    last_active_at: datetime = field(default_factory=datetime.utcnow)
    archived: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "channel": self.channel,
            "mode": self.mode.value,
            "started_at": self.started_at.isoformat(),
            "last_active_at": self.last_active_at.isoformat(),
            "archived": self.archived,
        }


@dataclass
class LeadRecord:
    """Scored lead, one per conversation."""
    conversation_id: str
    agent_id: str
    score: int
    tier: str
    budget: Optional[int] = None
    authority: Optional[str] = None
    need: Optional[str] = None
    timeline: Optional[str] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    status: str = "new"
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @classmethod
    def build(
        cls,
        conversation_id: str,
        agent_id: str,
        memory: QualificationMemory,
        lead_score: LeadScore,
    ) -> "LeadRecord":
        return cls(
            conversation_id=conversation_id,
            agent_id=agent_id,
            score=lead_score.score,
            tier=lead_score.tier.value,
            budget=memory.budget,
            authority=memory.authority,
            need=memory.need,
            timeline=memory.timeline,
            contact_name=memory.contact_name,
            contact_phone=memory.contact_phone,
            contact_email=memory.contact_email,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "agent_id": self.agent_id,
            "score": self.score,
            "tier": self.tier,
            "budget": self.budget,
            "authority": self.authority,
            "need": self.need,
            "timeline": self.timeline,
            "contact_name": self.contact_name,
            "contact_phone": self.contact_phone,
            "contact_email": self.contact_email,
            "status": self.status,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


@runtime_checkable
class ConversationStore(Protocol):
    """Protocol for conversation persistence."""

    async def get_state(self, conversation_id: str) -> Optional[ConversationState]:
        """Get a conversation, or None if unknown."""
        ...

    async def create_state(
        self,
        agent_id: str,
        organization_id: Optional[str] = None,
        user_id: Optional[str] = None,
        channel: str = "web",
        conversation_id: Optional[str] = None,
    ) -> ConversationState:
        """Start a conversation in ai mode."""
        ...

    async def touch(self, conversation_id: str) -> None:
        """Update last_active_at."""
        ...

    async def set_mode(self, conversation_id: str, mode: ConversationMode) -> Optional[ConversationState]:
        """Change who answers the conversation. None if unknown."""
        ...

    async def archive(self, conversation_id: str) -> bool:
        """Archive a conversation. False if unknown."""
        ...

    async def get_history(self, conversation_id: str, limit: int = 50) -> List[Dict[str, str]]:
        """Get message history, oldest first."""
        ...

    async def save_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        intent: Optional[str] = None,
    ) -> None:
        """Save a message to the conversation."""
        ...

    async def get_memory(self, conversation_id: str) -> Optional[QualificationMemory]:
        """Get qualification memory, or None before qualification started."""
        ...

    async def save_memory(self, conversation_id: str, memory: QualificationMemory) -> QualificationMemory:
        """Persist memory; returns the stored copy with its version bumped."""
        ...

    async def upsert_lead(self, lead: LeadRecord) -> LeadRecord:
        """Create or update the conversation's lead."""
        ...

    async def get_lead(self, conversation_id: str) -> Optional[LeadRecord]:
        """Get the conversation's lead."""
        ...


@runtime_checkable
class ScoringConfigStore(Protocol):
    """Protocol for per-agent scoring rubrics."""

    async def get(self, agent_id: str) -> Optional[ScoringConfig]:
        ...

    async def save(self, agent_id: str, config: ScoringConfig) -> ScoringConfig:
        ...

    async def delete(self, agent_id: str) -> bool:
        ...


@runtime_checkable
class BantQuestionStore(Protocol):
    """Protocol for per-agent custom qualification questions."""

    async def get(self, agent_id: str) -> Optional[BantQuestionSet]:
        ...

    async def save(self, agent_id: str, questions: BantQuestionSet) -> BantQuestionSet:
        ...

    async def delete(self, agent_id: str) -> bool:
        ...


class InMemoryConversationStore:
    """Dict-backed ConversationStore for tests and runs without a database."""

    def __init__(self):
        self._states: Dict[str, ConversationState] = {}
        self._messages: Dict[str, List[Dict[str, Any]]] = {}
        self._memory: Dict[str, QualificationMemory] = {}
        self._leads: Dict[str, LeadRecord] = {}

    async def get_state(self, conversation_id: str) -> Optional[ConversationState]:
        return self._states.get(conversation_id)

    async def create_state(
        self,
        agent_id: str,
        organization_id: Optional[str] = None,
        user_id: Optional[str] = None,
        channel: str = "web",
        conversation_id: Optional[str] = None,
    ) -> ConversationState:
        state = ConversationState(
            id=conversation_id or str(uuid.uuid4()),
            agent_id=agent_id,
            organization_id=organization_id,
            user_id=user_id,
            channel=channel,
        )
        self._states[state.id] = state
        self._messages.setdefault(state.id, [])
        return state

    async def touch(self, conversation_id: str) -> None:
        state = self._states.get(conversation_id)
        if state:
            state.last_active_at = datetime.utcnow()

    async def set_mode(self, conversation_id: str, mode: ConversationMode) -> Optional[ConversationState]:
        state = self._states.get(conversation_id)
        if state:
            state.mode = mode
        return state

    async def archive(self, conversation_id: str) -> bool:
        state = self._states.get(conversation_id)
        if not state:
            return False
        state.archived = True
        return True

    async def get_history(self, conversation_id: str, limit: int = 50) -> List[Dict[str, str]]:
        messages = self._messages.get(conversation_id, [])[-limit:]
        return [{"role": m["role"], "content": m["content"]} for m in messages]

    async def save_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        intent: Optional[str] = None,
    ) -> None:
        self._messages.setdefault(conversation_id, []).append({
            "role": role,
            "content": content,
            "intent": intent,
            "created_at": datetime.utcnow(),
        })

    async def get_memory(self, conversation_id: str) -> Optional[QualificationMemory]:
        memory = self._memory.get(conversation_id)
        return replace(memory, unanswerable=list(memory.unanswerable)) if memory else None

    async def save_memory(self, conversation_id: str, memory: QualificationMemory) -> QualificationMemory:
        current = self._memory.get(conversation_id)
        version = (current.version if current else 0) + 1
        stored = replace(memory, unanswerable=list(memory.unanswerable), version=version)
        self._memory[conversation_id] = stored
        return replace(stored, unanswerable=list(stored.unanswerable))

    async def upsert_lead(self, lead: LeadRecord) -> LeadRecord:
        existing = self._leads.get(lead.conversation_id)
        if existing:
            lead = replace(
                lead,
                id=existing.id,
                status=existing.status,
                created_at=existing.created_at,
                updated_at=datetime.utcnow(),
            )
        self._leads[lead.conversation_id] = lead
        return lead

    async def get_lead(self, conversation_id: str) -> Optional[LeadRecord]:
        return self._leads.get(conversation_id)


class InMemoryScoringConfigStore:
    """Dict-backed ScoringConfigStore."""

    def __init__(self):
        self._configs: Dict[str, ScoringConfig] = {}

    async def get(self, agent_id: str) -> Optional[ScoringConfig]:
        return self._configs.get(agent_id)

    async def save(self, agent_id: str, config: ScoringConfig) -> ScoringConfig:
        config.validate_invariants()
        self._configs[agent_id] = config
        return config

    async def delete(self, agent_id: str) -> bool:
        return self._configs.pop(agent_id, None) is not None


class InMemoryBantQuestionStore:
    """Dict-backed BantQuestionStore. A save replaces the agent's whole set."""

    def __init__(self):
        self._questions: Dict[str, BantQuestionSet] = {}

    async def get(self, agent_id: str) -> Optional[BantQuestionSet]:
        return self._questions.get(agent_id)

    async def save(self, agent_id: str, questions: BantQuestionSet) -> BantQuestionSet:
        questions.validate_invariants()
        self._questions[agent_id] = questions
        return questions

    async def delete(self, agent_id: str) -> bool:
        return self._questions.pop(agent_id, None) is not None
