"""
Conversation Dispatcher.

The per-turn control loop: load the conversation, gate on mode, classify,
run the matching handler, generate the reply and persist what changed.
Nothing the turn produced is persisted until the reply exists.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

from lead_scoring.bant_extractor import BantExtractor
from lead_scoring.intent_classifier import Intent, IntentClassifier, IntentResult
from lead_scoring.qualification import BantSlot, QualificationMemory, QualificationUpdate
from lead_scoring.scoring_model import LeadScore, LeadScorer

from .conversation_store import (
    BantQuestionStore,
    ConversationMode,
    ConversationState,
    ConversationStore,
    LeadRecord,
    ScoringConfigStore,
)
from .model_tiers import CallPreset
from .orchestrator import CompletionFailure, ModelOrchestrator
from .prompt_templates import APOLOGY_REPLY, HANDOFF_REPLY, PromptTemplates, PromptType
from .token_ledger import Attribution, OperationType

logger = logging.getLogger(__name__)

# Modes in which the assistant stays silent
SILENT_MODES = (ConversationMode.HUMAN, ConversationMode.HANDOFF_REQUESTED)


@dataclass
class TurnRequest:
    """One inbound customer message."""
    agent_id: str
    message: str
    conversation_id: Optional[str] = None
    organization_id: Optional[str] = None
    user_id: Optional[str] = None
    source: str = "web"


@dataclass
class TurnResponse:
    """Result of one turn. ``reply`` is None when a human owns the conversation."""
    reply: Optional[str]
    conversation_id: str
    mode: ConversationMode
    intent: Optional[Intent] = None
    intent_source: Optional[str] = None
    lead_score: Optional[int] = None
    lead_tier: Optional[str] = None
    next_expected_slot: Optional[str] = None
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reply": self.reply,
            "conversation_id": self.conversation_id,
            "mode": self.mode.value,
            "intent": self.intent.value if self.intent else None,
            "lead_score": self.lead_score,
            "lead_tier": self.lead_tier,
            "next_expected_slot": self.next_expected_slot,
        }


@dataclass
class _HandlerPlan:
    """What a handler decided before the reply is generated."""
    prompt_type: PromptType
    operation: OperationType = OperationType.CHAT
    preset: CallPreset = CallPreset.BALANCED_CHAT
    memory: Optional[QualificationMemory] = None
    memory_changed: bool = False
    lead_score: Optional[LeadScore] = None
    lead: Optional[LeadRecord] = None
    ask_next_slot: bool = True


class ConversationDispatcher:
    """
    Runs one conversation turn end to end.

    Flow:
    1. Load or create the conversation, save the user message
    2. Mode gate (human / handoff_requested: no reply, no model calls)
    3. Classify intent with qualification memory
    4. Handler: handoff, BANT continuation, greeting, estimation or general
    5. Generate the reply through the orchestrator
    6. Persist memory, lead, assistant message and activity time
    """

    def __init__(
        self,
        orchestrator: ModelOrchestrator,
        classifier: IntentClassifier,
        extractor: BantExtractor,
        scorer: LeadScorer,
        store: ConversationStore,
        config_store: ScoringConfigStore,
        history_turns: int = 5,
        agent_name: str = "the agent",
        question_store: Optional[BantQuestionStore] = None,
    ):
        """
        Args:
            orchestrator: Model call orchestrator
            classifier: Intent classifier
            extractor: BANT extractor
            scorer: Lead scorer (holds the default rubric)
            store: Conversation persistence
            config_store: Per-agent scoring configs
            history_turns: Prior turns given to classification and replies
            agent_name: Who the assistant speaks for
            question_store: Per-agent custom questions; stock questions when None
        """
        self.orchestrator = orchestrator
        self.classifier = classifier
        self.extractor = extractor
        self.scorer = scorer
        self.store = store
        self.config_store = config_store
        self.history_turns = history_turns
        self.agent_name = agent_name
        self.question_store = question_store

    async def handle_turn(self, request: TurnRequest, today: Optional[date] = None) -> TurnResponse:
        """
        Process one customer message.

        Args:
            request: The inbound message
            today: Reference date for timeline normalization

        Returns:
            TurnResponse (never raises for model failures)
        """
        state = await self._load_or_create(request)
        history = await self.store.get_history(state.id, limit=self.history_turns)
        await self.store.save_message(state.id, "user", request.message)

        if state.mode in SILENT_MODES:
            logger.info(f"Conversation {state.id} is in {state.mode.value} mode, no AI reply")
            return TurnResponse(reply=None, conversation_id=state.id, mode=state.mode)

        attribution = Attribution.of(
            organization_id=state.organization_id,
            agent_id=state.agent_id,
            conversation_id=state.id,
            user_id=state.user_id,
        )
        memory = await self.store.get_memory(state.id)
        intent_result = await self.classifier.classify(
            request.message,
            conversation_history=history,
            memory=memory,
            attribution=attribution,
        )
        intent = intent_result.intent

        if intent == Intent.HANDOFF_REQUEST:
            return await self._handle_handoff(state, intent_result, memory)

        if intent == Intent.BANT:
            plan = await self._plan_qualification(state, request.message, history, memory, attribution, today)
        elif intent == Intent.GREETING:
            plan = self._plan_greeting(memory)
        elif intent == Intent.ESTIMATION_REQUEST:
            plan = _HandlerPlan(
                prompt_type=PromptType.ESTIMATION,
                operation=OperationType.ESTIMATION,
                preset=CallPreset.ESTIMATION,
                memory=memory,
                ask_next_slot=False,
            )
        else:
            plan = _HandlerPlan(prompt_type=PromptType.GENERAL, memory=memory)

        next_slot = plan.memory.pending_slot if plan.memory is not None and plan.ask_next_slot else None
        system_prompt = PromptTemplates.get_system_prompt(
            plan.prompt_type,
            agent_name=self.agent_name,
            next_slot=next_slot,
            question=await self._custom_question(state.agent_id, next_slot),
        )
        messages = PromptTemplates.build_messages(system_prompt, history, request.message)

        try:
            response = await self.orchestrator.complete(
                messages,
                plan.operation,
                preset=plan.preset,
                attribution=attribution,
                endpoint="chat",
            )
            reply = response.text.strip()
            if not reply:
                raise CompletionFailure("empty reply")
        except CompletionFailure as e:
            logger.error(f"Reply generation failed for conversation {state.id}: {e}")
            return TurnResponse(
                reply=APOLOGY_REPLY,
                conversation_id=state.id,
                mode=state.mode,
                intent=intent,
                intent_source=intent_result.source.value,
                next_expected_slot=memory.next_expected_slot if memory else None,
                degraded=True,
            )

        stored_memory = plan.memory
        if plan.memory is not None and plan.memory_changed:
            stored_memory = await self.store.save_memory(state.id, plan.memory)
        lead = plan.lead
        if lead is not None:
            lead = await self.store.upsert_lead(lead)
        else:
            lead = await self.store.get_lead(state.id)

        await self.store.save_message(state.id, "assistant", reply, intent=intent.value)
        await self.store.touch(state.id)

        score, tier = (lead.score, lead.tier) if lead else (None, None)
        if plan.lead_score is not None:
            score, tier = plan.lead_score.score, plan.lead_score.tier.value

        return TurnResponse(
            reply=reply,
            conversation_id=state.id,
            mode=state.mode,
            intent=intent,
            intent_source=intent_result.source.value,
            lead_score=score,
            lead_tier=tier,
            next_expected_slot=stored_memory.next_expected_slot if stored_memory else None,
        )

    async def set_mode(self, conversation_id: str, mode: ConversationMode) -> Optional[ConversationState]:
        """Mode change from a collaborator (agent takes over, hands back)."""
        state = await self.store.set_mode(conversation_id, mode)
        if state:
            logger.info(f"Conversation {conversation_id} mode set to {mode.value}")
        return state

    async def archive(self, conversation_id: str) -> bool:
        return await self.store.archive(conversation_id)

    # ── Handlers ─────────────────────────────────────────────────

    async def _handle_handoff(
        self,
        state: ConversationState,
        intent_result: IntentResult,
        memory: Optional[QualificationMemory],
    ) -> TurnResponse:
        await self.store.set_mode(state.id, ConversationMode.HANDOFF_REQUESTED)
        await self.store.save_message(
            state.id, "assistant", HANDOFF_REPLY, intent=Intent.HANDOFF_REQUEST.value
        )
        await self.store.touch(state.id)
        lead = await self.store.get_lead(state.id)
        logger.info(f"Handoff requested for conversation {state.id}")

        return TurnResponse(
            reply=HANDOFF_REPLY,
            conversation_id=state.id,
            mode=ConversationMode.HANDOFF_REQUESTED,
            intent=Intent.HANDOFF_REQUEST,
            intent_source=intent_result.source.value,
            lead_score=lead.score if lead else None,
            lead_tier=lead.tier if lead else None,
            next_expected_slot=memory.next_expected_slot if memory else None,
        )

    async def _plan_qualification(
        self,
        state: ConversationState,
        message: str,
        history: List[Dict[str, str]],
        memory: Optional[QualificationMemory],
        attribution: Attribution,
        today: Optional[date],
    ) -> _HandlerPlan:
        created = memory is None
        current = memory or QualificationMemory()
        transcript = history + [{"role": "user", "content": message}]

        update = QualificationUpdate(contact=self.extractor.extract_contact(message))
        update = update.merge(
            await self.extractor.extract(transcript, memory=current, attribution=attribution, today=today)
        )
        updated = current.apply(update)
        plan = _HandlerPlan(
            prompt_type=PromptType.QUALIFICATION,
            memory=updated,
            memory_changed=created or updated != current,
        )

        if updated.has_new_data(current):
            config = await self.config_store.get(state.agent_id)
            lead_score = self.scorer.score(updated, config)
            plan.lead_score = lead_score
            logger.info(
                f"Conversation {state.id} scored {lead_score.score} ({lead_score.tier.value})"
            )
            if self.scorer.should_capture_lead(lead_score, updated):
                plan.lead = LeadRecord.build(state.id, state.agent_id, updated, lead_score)
        return plan

    def _plan_greeting(self, memory: Optional[QualificationMemory]) -> _HandlerPlan:
        if memory is None:
            return _HandlerPlan(
                prompt_type=PromptType.GREETING,
                memory=QualificationMemory(),
                memory_changed=True,
            )
        return _HandlerPlan(prompt_type=PromptType.GREETING, memory=memory)

    async def _custom_question(self, agent_id: str, slot: Optional[BantSlot]) -> Optional[str]:
        if slot is None or self.question_store is None:
            return None
        questions = await self.question_store.get(agent_id)
        return questions.question_for(slot) if questions else None

    async def _load_or_create(self, request: TurnRequest) -> ConversationState:
        state = None
        if request.conversation_id:
            state = await self.store.get_state(request.conversation_id)
        if state is None:
            state = await self.store.create_state(
                agent_id=request.agent_id,
                organization_id=request.organization_id,
                user_id=request.user_id,
                channel=request.source,
                conversation_id=request.conversation_id,
            )
            logger.info(f"Started conversation {state.id} for agent {request.agent_id}")
        return state
