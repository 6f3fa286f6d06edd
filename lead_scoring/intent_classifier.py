"""
Intent Classification for lead qualification chat.

A keyword pass produces a hint; the model always makes the final call.
When the model is unavailable or keeps returning junk the hint is used.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from llm.model_tiers import CallPreset
from llm.orchestrator import CompletionFailure, MalformedCompletion, ModelOrchestrator
from llm.token_ledger import Attribution, OperationType

from .qualification import QualificationMemory, matches_expected_shape

logger = logging.getLogger(__name__)


class Intent(Enum):
    """Customer intent categories."""
    GREETING = "greeting"                        # Hello / opening message
    BANT = "bant"                                # Answering or discussing qualification
    GENERAL = "general"                          # Anything else
    ESTIMATION_REQUEST = "estimation_request"    # Price / affordability estimate
    KNOWLEDGE_LOOKUP = "knowledge_lookup"        # Question about listings or the agency
    HANDOFF_REQUEST = "handoff_request"          # Wants a human


class IntentSource(Enum):
    """Where the final category came from."""
    MODEL = "model"
    PATTERN_FALLBACK = "pattern_fallback"
    FORCED_CONTINUATION = "forced_continuation"


@dataclass
class IntentResult:
    """Result of intent classification."""
    intent: Intent
    confidence: float = 0.0
    source: IntentSource = IntentSource.MODEL
    hint: Intent = Intent.GENERAL
    hint_confidence: float = 0.0
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent": self.intent.value,
            "confidence": self.confidence,
            "source": self.source.value,
            "hint": self.hint.value,
            "hint_confidence": self.hint_confidence,
        }


# Greetings only count when the message is short; "hi, my budget is 20M" is not a greeting.
GREETING_MAX_WORDS = 4

CLASSIFICATION_SYSTEM_PROMPT = (
    "You are the intent classifier for a real-estate agent's chat assistant. "
    "Reply with exactly one category name and nothing else."
)

INTENT_DEFINITIONS = {
    Intent.GREETING: "Hello, small talk or an opening message",
    Intent.BANT: "Talking about their budget, who decides, what the property is for, "
                 "when they want to buy, or giving contact details",
    Intent.GENERAL: "Anything else",
    Intent.ESTIMATION_REQUEST: "Wants a price, payment or affordability estimate",
    Intent.KNOWLEDGE_LOOKUP: "Asks about specific listings, locations, amenities or the agency",
    Intent.HANDOFF_REQUEST: "Wants to talk to a real person or the agent directly",
}


class IntentClassifier:
    """
    Classifies customer intent from messages.

    The rule-based pass is cheap and always runs, but it is only a hint:
    the model sees it in the prompt and decides. Pending qualification
    slots can override the result (see ``_force_continuation``).
    """

    # Intent keywords for rule-based classification
    INTENT_KEYWORDS = {
        Intent.GREETING: [
            "hi", "hello", "hey", "good morning", "good afternoon",
            "good evening", "greetings", "howdy", "kumusta", "magandang araw",
        ],
        Intent.BANT: [
            "budget", "afford", "price range", "looking to buy", "want to buy",
            "planning to buy", "looking for a", "my wife", "my husband",
            "decide", "decision", "investment", "rental income", "live in",
            "move in", "timeline", "next month", "next year", "this year",
            "my number", "my email", "call me", "million",
        ],
        Intent.ESTIMATION_REQUEST: [
            "how much", "estimate", "monthly amortization", "amortization",
            "monthly payment", "down payment", "loan", "mortgage", "financing",
            "can i afford", "payment terms", "installment", "equity",
        ],
        Intent.KNOWLEDGE_LOOKUP: [
            "listing", "listings", "available units", "floor plan", "amenities",
            "location", "where is", "near", "how many bedrooms", "bedroom",
            "sqm", "square meters", "parking", "pet friendly", "developer",
            "turnover", "condo", "house and lot", "lot only", "tell me about",
        ],
        Intent.HANDOFF_REQUEST: [
            "talk to agent", "talk to an agent", "speak to agent", "speak to an agent",
            "real person", "human agent", "talk to a human", "speak to a human",
            "call the agent", "contact the agent", "not a bot", "live agent",
            "talk to someone",
        ],
    }

    def __init__(self, orchestrator: ModelOrchestrator, attempts: int = 3, history_turns: int = 5):
        """
        Args:
            orchestrator: Model call orchestrator
            attempts: Validated classification attempts before falling back
            history_turns: Prior turns included in the prompt
        """
        self.orchestrator = orchestrator
        self.attempts = attempts
        self.history_turns = history_turns

    async def classify(
        self,
        message: str,
        conversation_history: Optional[List[Dict[str, str]]] = None,
        memory: Optional[QualificationMemory] = None,
        attribution: Optional[Attribution] = None,
    ) -> IntentResult:
        """
        Classify the intent of a customer message.

        Args:
            message: The customer message to classify
            conversation_history: Prior messages, newest last
            memory: Qualification memory, for forced continuation
            attribution: Ledger attribution

        Returns:
            IntentResult with classification details
        """
        hint, hint_confidence = self._rule_based_classify(message.lower())
        prompt = self._build_classification_prompt(message, conversation_history, hint)
        messages = [
            {"role": "system", "content": CLASSIFICATION_SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

        try:
            intent, _ = await self.orchestrator.complete_validated(
                messages,
                OperationType.INTENT_CLASSIFICATION,
                self.parse_category,
                attempts=self.attempts,
                preset=CallPreset.CLASSIFICATION,
                attribution=attribution,
            )
            result = IntentResult(
                intent=intent,
                confidence=1.0,
                source=IntentSource.MODEL,
                hint=hint,
                hint_confidence=hint_confidence,
            )
        except (CompletionFailure, MalformedCompletion) as e:
            logger.warning(f"Intent classification fell back to pattern hint {hint.value}: {e}")
            result = IntentResult(
                intent=hint,
                confidence=hint_confidence,
                source=IntentSource.PATTERN_FALLBACK,
                hint=hint,
                hint_confidence=hint_confidence,
            )

        result = self._force_continuation(result, message, memory)
        logger.debug(f"Classified intent: {result.intent.value} via {result.source.value}")
        return result

    def _force_continuation(
        self,
        result: IntentResult,
        message: str,
        memory: Optional[QualificationMemory],
    ) -> IntentResult:
        """Keep an active BANT flow alive when the message answers the pending slot."""
        # An explicit request for a human always wins over the flow
        if memory is None or result.intent in (Intent.BANT, Intent.HANDOFF_REQUEST):
            return result
        slot = memory.pending_slot
        if slot is None or not matches_expected_shape(slot, message):
            return result

        logger.info(f"Forcing BANT continuation for pending slot {slot.value} (was {result.intent.value})")
        result.intent = Intent.BANT
        result.source = IntentSource.FORCED_CONTINUATION
        return result

    def _rule_based_classify(self, message_lower: str) -> Tuple[Intent, float]:
        """
        Perform rule-based intent classification.

        Returns:
            Tuple of (intent, confidence)
        """
        intent_scores: Dict[Intent, float] = {}
        short_message = len(message_lower.split()) <= GREETING_MAX_WORDS

        for intent, keywords in self.INTENT_KEYWORDS.items():
            if intent == Intent.GREETING and not short_message:
                continue

            score = 0.0
            for keyword in keywords:
                # Short keywords ("hi") only count as whole words
                whole_word = re.search(rf'\b{re.escape(keyword)}\b', message_lower)
                if len(keyword) <= 3 and not whole_word:
                    continue
                if keyword in message_lower:
                    # Longer keywords get higher scores
                    score += len(keyword.split()) * 0.2

                    # Exact phrase match gets bonus
                    if whole_word:
                        score += 0.1

            if score > 0:
                intent_scores[intent] = score

        if not intent_scores:
            return Intent.GENERAL, 0.3

        primary_intent, primary_score = max(intent_scores.items(), key=lambda x: x[1])

        # Normalize confidence (cap at 1.0)
        return primary_intent, min(primary_score / 2.0, 1.0)

    def _build_classification_prompt(
        self,
        message: str,
        conversation_history: Optional[List[Dict[str, str]]],
        hint: Intent,
    ) -> str:
        """Build the prompt for model classification."""
        prompt = "Classify the customer's latest message into one of these categories:\n\n"
        for intent, description in INTENT_DEFINITIONS.items():
            prompt += f"- {intent.name}: {description}\n"

        prompt += f"\nA keyword pre-check suggests: {hint.name} (may be wrong).\n\n"

        if conversation_history:
            prompt += "Conversation context:\n"
            for msg in conversation_history[-self.history_turns:]:
                role = msg.get("role", "user")
                content = msg.get("content", "")
                prompt += f"{role}: {content}\n"

        prompt += f"\nCustomer message: {message}\n\nCategory:"
        return prompt

    @staticmethod
    def parse_category(text: str) -> Optional[Intent]:
        """Map a model answer to an Intent, or None when it isn't one of the names."""
        cleaned = re.sub(r"[^A-Za-z_ ]", "", text or "").strip().upper().replace(" ", "_")
        if cleaned in Intent.__members__:
            return Intent[cleaned]
        for token in re.findall(r"[A-Z_]+", (text or "").upper()):
            if token in Intent.__members__:
                return Intent[token]
        return None
