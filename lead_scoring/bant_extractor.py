"""
BANT Extraction for lead qualification.

Asks the model orchestrator for a schema-constrained BANT answer and
normalizes it into a partial QualificationUpdate. A deterministic regex
pass picks up contact details without a model call.
"""

import json
import logging
import re
from datetime import date
from typing import Any, Dict, List, Optional

from llm.model_tiers import CallPreset
from llm.orchestrator import CompletionFailure, ModelOrchestrator
from llm.token_ledger import Attribution, OperationType

from .normalizer import normalize_email, normalize_name, normalize_phone, normalize_slot
from .qualification import BANT_SLOTS, BantSlot, QualificationMemory, QualificationUpdate

logger = logging.getLogger(__name__)

SLOT_STATUSES = ["answered", "unanswerable", "not_mentioned"]


class MalformedExtraction(Exception):
    """Structured extraction output failed validation."""


def _slot_schema() -> Dict[str, Any]:
    return {
        "type": "object",
        "additionalProperties": False,
        "required": ["status", "value"],
        "properties": {
            "status": {"type": "string", "enum": SLOT_STATUSES},
            "value": {"type": ["string", "null"]},
        },
    }


EXTRACTION_RESPONSE_FORMAT: Dict[str, Any] = {
    "type": "json_schema",
    "json_schema": {
        "name": "bant_extraction",
        "strict": True,
        "schema": {
            "type": "object",
            "additionalProperties": False,
            "required": [s.value for s in BANT_SLOTS] + ["contact"],
            "properties": {
                **{s.value: _slot_schema() for s in BANT_SLOTS},
                "contact": {
                    "type": "object",
                    "additionalProperties": False,
                    "required": ["name", "phone", "email"],
                    "properties": {
                        "name": {"type": ["string", "null"]},
                        "phone": {"type": ["string", "null"]},
                        "email": {"type": ["string", "null"]},
                    },
                },
            },
        },
    },
}

EXTRACTION_SYSTEM_PROMPT = """You extract real-estate lead qualification data from a chat transcript.

For each of budget, authority, need and timeline return:
- status "answered" with the customer's own words as value, when they gave an answer
- status "unanswerable" with value null, when they said they don't know or won't say
- status "not_mentioned" with value null, otherwise

Definitions:
- budget: how much they can spend on the property
- authority: whether they make the purchase decision alone or with others (who)
- need: what the property is for (live in, investment, rental, resale...)
- timeline: when they plan to buy

Also return any contact name, phone and email the customer gave (null when absent).
Only use what the CUSTOMER said. Never guess."""


class BantExtractor:
    """
    Extracts BANT slots and contact details from a conversation.

    The model answer must satisfy EXTRACTION_RESPONSE_FORMAT; anything else
    is treated as "nothing found" so the same slot is asked again next turn.
    """

    def __init__(self, orchestrator: ModelOrchestrator, history_turns: int = 6):
        """
        Args:
            orchestrator: Model call orchestrator
            history_turns: Transcript turns sent with each extraction
        """
        self.orchestrator = orchestrator
        self.history_turns = history_turns
        self._build_patterns()

    def _build_patterns(self):
        """Build regex patterns for contact extraction."""
        # International or local numbers, 10-13 digits with optional separators
        self.phone_pattern = re.compile(
            r'(?<![\d+])(\+?\d{1,3}[\s-]?)?(?:\(?\d{3,4}\)?[\s-]?)\d{3,4}[\s-]?\d{3,4}(?!\d)'
        )
        self.email_pattern = re.compile(
            r'\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b'
        )
        self.name_pattern = re.compile(
            r"\b(?i:my name is|i am|i'm|this is)\s+([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)"
        )

    def extract_contact(self, message: str) -> Dict[str, str]:
        """Regex pass for phone, email and a self-introduced name."""
        contact: Dict[str, str] = {}

        email = self.email_pattern.search(message)
        if email:
            contact["email"] = normalize_email(email.group(0))

        for match in self.phone_pattern.finditer(message):
            phone = normalize_phone(match.group(0))
            if phone:
                contact["phone"] = phone
                break

        name = self.name_pattern.search(message)
        if name:
            normalized = normalize_name(name.group(1))
            if normalized:
                contact["name"] = normalized

        return {k: v for k, v in contact.items() if v}

    async def extract(
        self,
        transcript: List[Dict[str, str]],
        memory: Optional[QualificationMemory] = None,
        attribution: Optional[Attribution] = None,
        today: Optional[date] = None,
    ) -> QualificationUpdate:
        """
        Extract a partial qualification update.

        Args:
            transcript: Role-tagged turns, newest last
            memory: Current memory, used to tell the model what is pending
            attribution: Ledger attribution
            today: Reference date for timeline phrases

        Returns:
            QualificationUpdate (empty when nothing usable came back)
        """
        messages = self._build_messages(transcript, memory)

        try:
            response = await self.orchestrator.complete(
                messages,
                OperationType.BANT_EXTRACTION,
                preset=CallPreset.FAST_EXTRACTION,
                attribution=attribution,
                response_format=EXTRACTION_RESPONSE_FORMAT,
            )
            data = self.parse(response.text)
        except CompletionFailure as e:
            logger.warning(f"BANT extraction unavailable, treating as no new data: {e}")
            return QualificationUpdate()
        except MalformedExtraction as e:
            logger.warning(f"Malformed BANT extraction, treating as no new data: {e}")
            return QualificationUpdate()

        update = self.to_update(data, today=today)
        logger.debug(
            f"BANT extraction: slots={[s.value for s in update.values]}, contact={list(update.contact)}"
        )
        return update

    def parse(self, text: str) -> Dict[str, Any]:
        """
        Validate the structured answer.

        Raises:
            MalformedExtraction: not JSON or not the expected shape
        """
        try:
            data = json.loads(text)
        except (TypeError, json.JSONDecodeError) as e:
            raise MalformedExtraction(f"not JSON: {e}") from e

        if not isinstance(data, dict):
            raise MalformedExtraction("top level is not an object")

        for slot in BANT_SLOTS:
            entry = data.get(slot.value)
            if not isinstance(entry, dict):
                raise MalformedExtraction(f"missing slot {slot.value}")
            if entry.get("status") not in SLOT_STATUSES:
                raise MalformedExtraction(f"bad status for {slot.value}: {entry.get('status')!r}")
            value = entry.get("value")
            if value is not None and not isinstance(value, str):
                raise MalformedExtraction(f"bad value type for {slot.value}")

        contact = data.get("contact")
        if contact is not None and not isinstance(contact, dict):
            raise MalformedExtraction("contact is not an object")

        return data

    def to_update(self, data: Dict[str, Any], today: Optional[date] = None) -> QualificationUpdate:
        """Normalize validated model output into a QualificationUpdate."""
        update = QualificationUpdate()

        for slot in BANT_SLOTS:
            entry = data[slot.value]
            status = entry["status"]
            if status == "unanswerable":
                update.values[slot] = None
            elif status == "answered":
                canonical = normalize_slot(slot.value, entry.get("value"), today=today)
                if canonical is None:
                    logger.debug(f"Could not normalize {slot.value}: {entry.get('value')!r}")
                    continue
                update.values[slot] = canonical

        contact = data.get("contact") or {}
        normalized = {
            "name": normalize_name(contact.get("name")),
            "phone": normalize_phone(contact.get("phone")),
            "email": normalize_email(contact.get("email")),
        }
        update.contact = {k: v for k, v in normalized.items() if v}
        return update

    def _build_messages(
        self,
        transcript: List[Dict[str, str]],
        memory: Optional[QualificationMemory],
    ) -> List[Dict[str, str]]:
        lines = []
        for msg in transcript[-self.history_turns:]:
            role = "Customer" if msg.get("role") == "user" else "Assistant"
            lines.append(f"{role}: {msg.get('content', '')}")

        context = ""
        if memory is not None:
            known = {
                s.value: memory.value_of(s) for s in BANT_SLOTS if memory.value_of(s) is not None
            }
            context = f"Already known: {json.dumps(known)}\n"
            if memory.pending_slot is not None:
                context += f"The assistant last asked about: {memory.pending_slot.value}\n"

        return [
            {"role": "system", "content": EXTRACTION_SYSTEM_PROMPT},
            {"role": "user", "content": f"{context}\nTranscript:\n" + "\n".join(lines)},
        ]
