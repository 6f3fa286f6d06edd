"""Tests for the per-turn conversation dispatcher."""

import asyncio
from datetime import date

import pytest

from lead_scoring.bant_extractor import BantExtractor
from lead_scoring.bant_questions import BantQuestion, BantQuestionSet
from lead_scoring.intent_classifier import Intent, IntentClassifier
from lead_scoring.qualification import BantSlot
from lead_scoring.scoring_config import ScoringConfig
from lead_scoring.scoring_model import LeadScorer
from llm.conversation_store import (
    ConversationMode,
    InMemoryBantQuestionStore,
    InMemoryConversationStore,
    InMemoryScoringConfigStore,
)
from llm.dispatcher import ConversationDispatcher, TurnRequest
from llm.prompt_templates import APOLOGY_REPLY, HANDOFF_REPLY, PromptTemplates
from llm.providers.openai_provider import ProviderError

TODAY = date(2026, 1, 15)
AGENT = "agent-1"


@pytest.fixture
def make_dispatcher(make_orchestrator, scripted_provider):
    def build(responder):
        provider = scripted_provider(responder=responder)
        orchestrator = make_orchestrator(provider)
        dispatcher = ConversationDispatcher(
            orchestrator=orchestrator,
            classifier=IntentClassifier(orchestrator),
            extractor=BantExtractor(orchestrator),
            scorer=LeadScorer(),
            store=InMemoryConversationStore(),
            config_store=InMemoryScoringConfigStore(),
            question_store=InMemoryBantQuestionStore(),
        )
        return dispatcher, provider
    return build


def turn(dispatcher, message, conversation_id=None, **kwargs):
    request = TurnRequest(agent_id=AGENT, message=message, conversation_id=conversation_id, **kwargs)
    return asyncio.run(dispatcher.handle_turn(request, today=TODAY))


def strong_extraction(extraction):
    return extraction(
        budget=("answered", "30M"),
        authority=("answered", "just me"),
        need=("answered", "immediate"),
        timeline=("answered", "within_1_month"),
    )


# ── Qualification flow ────────────────────────────────

class TestQualificationTurns:
    def test_bant_turn_updates_memory_and_creates_lead(self, make_dispatcher, responder, extraction):
        dispatcher, provider = make_dispatcher(responder(intent="BANT", extraction=strong_extraction(extraction)))

        result = turn(dispatcher, "Budget is 30M, just me, need it ASAP within a month")

        assert result.reply == "Happy to help!"
        assert result.intent == Intent.BANT
        assert result.lead_score == 98
        assert result.lead_tier == "priority"
        assert result.next_expected_slot == "contact"
        assert not result.degraded

        store = dispatcher.store
        memory = asyncio.run(store.get_memory(result.conversation_id))
        assert memory.budget == 30_000_000
        assert memory.version == 1
        lead = asyncio.run(store.get_lead(result.conversation_id))
        assert lead.score == 98
        assert lead.agent_id == AGENT

        reply_prompt = provider.calls[-1]["messages"][0]["content"]
        assert PromptTemplates.question_for(BantSlot.CONTACT) in reply_prompt

    def test_history_is_saved(self, make_dispatcher, responder):
        dispatcher, _ = make_dispatcher(responder(intent="GENERAL", reply="Sure."))

        result = turn(dispatcher, "Do you handle condos?")

        history = asyncio.run(dispatcher.store.get_history(result.conversation_id))
        assert history == [
            {"role": "user", "content": "Do you handle condos?"},
            {"role": "assistant", "content": "Sure."},
        ]

    def test_greeting_starts_memory(self, make_dispatcher, responder):
        dispatcher, provider = make_dispatcher(responder(intent="GREETING"))

        result = turn(dispatcher, "hello")

        assert result.intent == Intent.GREETING
        assert result.next_expected_slot == "budget"
        memory = asyncio.run(dispatcher.store.get_memory(result.conversation_id))
        assert memory.version == 1
        reply_prompt = provider.calls[-1]["messages"][0]["content"]
        assert PromptTemplates.question_for(BantSlot.BUDGET) in reply_prompt

    def test_terse_answer_continues_flow(self, make_dispatcher, responder, extraction):
        dispatcher, _ = make_dispatcher(responder(intent="GREETING"))
        first = turn(dispatcher, "hello")

        dispatcher.orchestrator.provider.responder = responder(
            intent="GENERAL",
            extraction=extraction(budget=("answered", "35M")),
        )
        second = turn(dispatcher, "35M", conversation_id=first.conversation_id)

        assert second.intent == Intent.BANT
        assert second.intent_source == "forced_continuation"
        assert second.next_expected_slot == "authority"
        assert second.lead_score == 30
        assert second.lead_tier == "cold"
        # Cold and no contact: no lead yet
        assert asyncio.run(dispatcher.store.get_lead(first.conversation_id)) is None
        memory = asyncio.run(dispatcher.store.get_memory(first.conversation_id))
        assert memory.budget == 35_000_000
        assert memory.version == 2

    def test_contact_in_message_is_captured(self, make_dispatcher, responder, extraction):
        dispatcher, _ = make_dispatcher(responder(intent="BANT", extraction=extraction()))

        result = turn(dispatcher, "You can reach me at ana@example.com")

        memory = asyncio.run(dispatcher.store.get_memory(result.conversation_id))
        assert memory.contact_email == "ana@example.com"
        # Partial contact captures a lead even while cold
        lead = asyncio.run(dispatcher.store.get_lead(result.conversation_id))
        assert lead is not None
        assert lead.tier == "cold"

    def test_lead_upsert_keeps_identity(self, make_dispatcher, responder, extraction):
        dispatcher, provider = make_dispatcher(
            responder(intent="BANT", extraction=strong_extraction(extraction))
        )
        first = turn(dispatcher, "30M, just me, ASAP, within a month")
        lead_id = asyncio.run(dispatcher.store.get_lead(first.conversation_id)).id

        provider.responder = responder(
            intent="BANT", extraction=extraction(contact={"phone": "+63 917 123 4567"})
        )
        second = turn(dispatcher, "+63 917 123 4567", conversation_id=first.conversation_id)

        lead = asyncio.run(dispatcher.store.get_lead(first.conversation_id))
        assert lead.id == lead_id
        assert lead.contact_phone == "+639171234567"
        assert second.next_expected_slot is None

    def test_agent_rubric_is_used(self, make_dispatcher, responder, extraction):
        dispatcher, _ = make_dispatcher(
            responder(intent="BANT", extraction=extraction(budget=("answered", "35M")))
        )
        config = ScoringConfig(
            budget_weight=100, authority_weight=0, need_weight=0, timeline_weight=0,
        )
        asyncio.run(dispatcher.config_store.save(AGENT, config))

        result = turn(dispatcher, "my budget is 35M")

        assert result.lead_score == 100
        assert result.lead_tier == "priority"

    def test_agent_question_is_asked(self, make_dispatcher, responder):
        dispatcher, provider = make_dispatcher(responder(intent="GREETING"))
        custom = BantQuestionSet(questions=[
            BantQuestion(category="budget", question_text="Do you require financing?", question_order=2),
            BantQuestion(category="budget", question_text="What is your investment budget?", question_order=1),
        ])
        asyncio.run(dispatcher.question_store.save(AGENT, custom))

        turn(dispatcher, "hello")

        reply_prompt = provider.calls[-1]["messages"][0]["content"]
        assert "What is your investment budget?" in reply_prompt
        assert PromptTemplates.question_for(BantSlot.BUDGET) not in reply_prompt

    def test_slot_without_agent_question_uses_stock(self, make_dispatcher, responder, extraction):
        dispatcher, provider = make_dispatcher(
            responder(intent="BANT", extraction=extraction(budget=("answered", "35M")))
        )
        custom = BantQuestionSet(questions=[
            BantQuestion(category="budget", question_text="What is your investment budget?"),
        ])
        asyncio.run(dispatcher.question_store.save(AGENT, custom))

        result = turn(dispatcher, "35M")

        assert result.next_expected_slot == "authority"
        reply_prompt = provider.calls[-1]["messages"][0]["content"]
        assert PromptTemplates.question_for(BantSlot.AUTHORITY) in reply_prompt


# ── Other handlers ────────────────────────────────────

class TestHandlers:
    def test_estimation_uses_estimation_operation(self, make_dispatcher, responder, ledger):
        dispatcher, _ = make_dispatcher(responder(intent="ESTIMATION_REQUEST"))

        result = turn(dispatcher, "How much would the monthly payment be?")

        assert result.intent == Intent.ESTIMATION_REQUEST
        operations = [r.operation for r in ledger.backend.records]
        assert operations == ["intent_classification", "estimation"]
        assert all(r.attribution.conversation_id == result.conversation_id for r in ledger.backend.records)

    def test_handoff_sets_mode_and_silences(self, make_dispatcher, responder):
        dispatcher, provider = make_dispatcher(responder(intent="HANDOFF_REQUEST"))

        result = turn(dispatcher, "I want to talk to an agent")

        assert result.reply == HANDOFF_REPLY
        assert result.mode == ConversationMode.HANDOFF_REQUESTED
        calls_before = len(provider.calls)

        followup = turn(dispatcher, "hello?", conversation_id=result.conversation_id)

        assert followup.reply is None
        assert len(provider.calls) == calls_before

    def test_human_mode_gate(self, make_dispatcher, responder):
        dispatcher, provider = make_dispatcher(responder())
        state = asyncio.run(dispatcher.store.create_state(agent_id=AGENT))
        asyncio.run(dispatcher.set_mode(state.id, ConversationMode.HUMAN))

        result = turn(dispatcher, "are you there?", conversation_id=state.id)

        assert result.reply is None
        assert result.mode == ConversationMode.HUMAN
        assert provider.calls == []
        history = asyncio.run(dispatcher.store.get_history(state.id))
        assert history == [{"role": "user", "content": "are you there?"}]

    def test_handoff_during_flow_reaches_human(self, make_dispatcher, responder):
        dispatcher, provider = make_dispatcher(responder(intent="GREETING"))
        first = turn(dispatcher, "hello")
        assert first.next_expected_slot == "budget"

        provider.responder = responder(intent="HANDOFF_REQUEST")
        result = turn(
            dispatcher,
            "Can I talk to a real person about the 2 bedroom unit?",
            conversation_id=first.conversation_id,
        )

        assert result.intent == Intent.HANDOFF_REQUEST
        assert result.intent_source == "model"
        assert result.mode == ConversationMode.HANDOFF_REQUESTED
        assert result.reply == HANDOFF_REPLY

    def test_short_handoff_during_flow_reaches_human(self, make_dispatcher, responder):
        dispatcher, provider = make_dispatcher(responder(intent="GREETING"))
        first = turn(dispatcher, "hello")

        provider.responder = responder(intent="HANDOFF_REQUEST")
        result = turn(dispatcher, "agent please, 30M", conversation_id=first.conversation_id)

        assert result.mode == ConversationMode.HANDOFF_REQUESTED
        memory = asyncio.run(dispatcher.store.get_memory(first.conversation_id))
        assert memory.budget is None

    def test_hand_back_to_ai(self, make_dispatcher, responder):
        dispatcher, _ = make_dispatcher(responder())
        state = asyncio.run(dispatcher.store.create_state(agent_id=AGENT))
        asyncio.run(dispatcher.set_mode(state.id, ConversationMode.HUMAN))
        asyncio.run(dispatcher.set_mode(state.id, ConversationMode.AI))

        result = turn(dispatcher, "hi again", conversation_id=state.id)

        assert result.reply == "Happy to help!"

    def test_unknown_conversation_id_is_created(self, make_dispatcher, responder):
        dispatcher, _ = make_dispatcher(responder())

        result = turn(dispatcher, "hi", conversation_id="external-123", organization_id="org-9")

        assert result.conversation_id == "external-123"
        state = asyncio.run(dispatcher.store.get_state("external-123"))
        assert state.organization_id == "org-9"

    def test_archive(self, make_dispatcher, responder):
        dispatcher, _ = make_dispatcher(responder())
        result = turn(dispatcher, "hi")

        assert asyncio.run(dispatcher.archive(result.conversation_id))
        assert not asyncio.run(dispatcher.archive("missing"))


# ── Degraded turns ────────────────────────────────────

class TestApology:
    def test_reply_failure_persists_nothing_new(self, make_dispatcher, responder, extraction):
        routed = responder(intent="BANT", extraction=strong_extraction(extraction))

        def respond(model, messages, response_format):
            answer = routed(model, messages, response_format)
            if answer == "Happy to help!":
                return ProviderError("reply tier down")
            return answer

        dispatcher, _ = make_dispatcher(respond)

        result = turn(dispatcher, "Budget is 30M, just me")

        assert result.reply == APOLOGY_REPLY
        assert result.degraded
        assert result.lead_score is None
        store = dispatcher.store
        assert asyncio.run(store.get_memory(result.conversation_id)) is None
        assert asyncio.run(store.get_lead(result.conversation_id)) is None
        history = asyncio.run(store.get_history(result.conversation_id))
        assert [m["role"] for m in history] == ["user"]

    def test_unexpected_reply_error_apologizes(self, make_dispatcher, responder, extraction):
        routed = responder(intent="BANT", extraction=strong_extraction(extraction))

        def respond(model, messages, response_format):
            answer = routed(model, messages, response_format)
            if answer == "Happy to help!":
                return RuntimeError("socket closed")
            return answer

        dispatcher, _ = make_dispatcher(respond)

        result = turn(dispatcher, "Budget is 30M, just me")

        assert result.reply == APOLOGY_REPLY
        assert result.degraded
        assert asyncio.run(dispatcher.store.get_memory(result.conversation_id)) is None

    def test_reply_failure_leaves_existing_memory_untouched(self, make_dispatcher, responder, extraction):
        dispatcher, provider = make_dispatcher(
            responder(intent="BANT", extraction=strong_extraction(extraction))
        )
        first = turn(dispatcher, "30M, just me, ASAP, within a month")
        store = dispatcher.store
        memory_before = asyncio.run(store.get_memory(first.conversation_id)).to_dict()
        lead_before = asyncio.run(store.get_lead(first.conversation_id)).to_dict()

        routed = responder(intent="BANT", extraction=extraction(contact={"phone": "+63 917 123 4567"}))

        def respond(model, messages, response_format):
            answer = routed(model, messages, response_format)
            if answer == "Happy to help!":
                return ProviderError(f"{model} down")
            return answer

        provider.responder = respond
        result = turn(dispatcher, "+63 917 123 4567", conversation_id=first.conversation_id)

        assert result.reply == APOLOGY_REPLY
        assert result.degraded
        assert asyncio.run(store.get_memory(first.conversation_id)).to_dict() == memory_before
        assert memory_before["version"] == 1
        assert asyncio.run(store.get_lead(first.conversation_id)).to_dict() == lead_before

    def test_empty_reply_is_apology(self, make_dispatcher, responder):
        dispatcher, _ = make_dispatcher(responder(intent="GENERAL", reply="   "))

        result = turn(dispatcher, "hmm")

        assert result.reply == APOLOGY_REPLY
        assert result.degraded

    def test_to_dict(self, make_dispatcher, responder):
        dispatcher, _ = make_dispatcher(responder(intent="GENERAL"))
        data = turn(dispatcher, "hello there friend, quick question").to_dict()
        assert data["mode"] == "ai"
        assert data["intent"] == "general"
        assert "degraded" not in data
