"""
Qualification memory for the BANT flow.

Holds what has been collected per conversation plus an explicit
``next_expected_slot`` pointer, and recognizes whether a message looks like
an answer to the slot currently being asked.
"""

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional


class BantSlot(Enum):
    """Qualification slots, in asking order."""
    BUDGET = "budget"
    AUTHORITY = "authority"
    NEED = "need"
    TIMELINE = "timeline"
    CONTACT = "contact"


BANT_SLOTS = [BantSlot.BUDGET, BantSlot.AUTHORITY, BantSlot.NEED, BantSlot.TIMELINE]
SLOT_ORDER = BANT_SLOTS + [BantSlot.CONTACT]


# Expected answer shapes per slot, used to keep a flow alive when the user
# answers tersely ("35M", "yes", "next month"). Longer messages are left to
# the classifier.
ANSWER_MAX_WORDS = 6

ANSWER_SHAPES: Dict[BantSlot, List[re.Pattern]] = {
    BantSlot.BUDGET: [
        re.compile(r"\d[\d,.]*\s*(k|m|mn|mil|million|b|bn|billion|thousand|lakh|lakhs|crore|crores)\b", re.I),
        re.compile(r"^\s*[\d,.]+\s*$"),
        re.compile(r"(₱|\$|€|\bphp\b|\busd\b|\bpesos?\b|\bdollars?\b)", re.I),
        re.compile(r"\b(around|about|approximately|between|max|maximum|min|minimum|up to|under|below)\b.*\d", re.I),
    ],
    BantSlot.AUTHORITY: [
        re.compile(r"^\s*(yes|yep|yeah|yup|no|nope|nah|correct|absolutely|definitely|of course)\b", re.I),
        re.compile(r"\b(sole|decision|decide|spouse|wife|husband|partner|family|together|alone|approve|board|committee|myself|just me)\b", re.I),
    ],
    BantSlot.NEED: [
        re.compile(r"\b(living|live in|residence|residential|home|house|investment|invest|rental|rent out|income|business|roi|commercial|flip|resell|both)\b", re.I),
    ],
    BantSlot.TIMELINE: [
        re.compile(r"\b(month|months|year|years|quarter|week|weeks|asap|immediately|urgent|urgently|flexible|rush|soon|now|later)\b", re.I),
        re.compile(r"\b(jan|feb|mar|apr|may|jun|jul|aug|sep|sept|oct|nov|dec)[a-z]*\b", re.I),
        re.compile(r"\bq[1-4]\b(\s*\d{4})?", re.I),
        re.compile(r"\b\d+\s*(day|days|week|weeks|month|months|year|years)\b", re.I),
    ],
    BantSlot.CONTACT: [
        re.compile(r"(\+?\d[\d\s-]{8,15}\d)"),
        re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"),
        re.compile(r"^\s*(my name is|call me)\b", re.I),
    ],
}


def matches_expected_shape(slot: BantSlot, message: str) -> bool:
    """True if the message looks like an answer for the slot."""
    text = message.strip()
    if not text or len(text.split()) > ANSWER_MAX_WORDS:
        return False
    return any(p.search(text) for p in ANSWER_SHAPES.get(slot, []))


@dataclass
class QualificationUpdate:
    """
    Partial update produced by one extraction.

    ``values`` holds only slots the model resolved: a canonical value, or
    None when the slot was explicitly unanswerable. Slots not mentioned
    are absent.
    """
    values: Dict[BantSlot, Any] = field(default_factory=dict)
    contact: Dict[str, str] = field(default_factory=dict)

    def is_empty(self) -> bool:
        return not self.values and not self.contact

    def merge(self, other: "QualificationUpdate") -> "QualificationUpdate":
        """Later (other) values win."""
        values = dict(self.values)
        values.update(other.values)
        contact = dict(self.contact)
        contact.update({k: v for k, v in other.contact.items() if v})
        return QualificationUpdate(values=values, contact=contact)


@dataclass
class QualificationMemory:
    """Per-conversation BANT state. Treated as a value: apply() returns a copy."""
    budget_discussed: bool = False
    authority_discussed: bool = False
    need_discussed: bool = False
    timeline_discussed: bool = False
    budget: Optional[int] = None
    authority: Optional[str] = None
    need: Optional[str] = None
    timeline: Optional[str] = None
    contact_name: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    unanswerable: List[str] = field(default_factory=list)
    next_expected_slot: Optional[str] = BantSlot.BUDGET.value
    version: int = 0

    @property
    def pending_slot(self) -> Optional[BantSlot]:
        if self.next_expected_slot is None:
            return None
        return BantSlot(self.next_expected_slot)

    def value_of(self, slot: BantSlot) -> Any:
        if slot == BantSlot.CONTACT:
            return self.contact_phone or self.contact_email
        return getattr(self, slot.value)

    def is_discussed(self, slot: BantSlot) -> bool:
        if slot == BantSlot.CONTACT:
            return self.value_of(slot) is not None or slot.value in self.unanswerable
        return getattr(self, f"{slot.value}_discussed")

    def is_resolved(self, slot: BantSlot) -> bool:
        return self.value_of(slot) is not None or slot.value in self.unanswerable

    def compute_next_slot(self) -> Optional[str]:
        for slot in SLOT_ORDER:
            if not self.is_resolved(slot):
                return slot.value
        return None

    @property
    def is_complete(self) -> bool:
        return self.compute_next_slot() is None

    def contact_completeness(self) -> str:
        """full = name+phone+email, partial = some reachable channel, then name_only or none."""
        if self.contact_name and self.contact_phone and self.contact_email:
            return "full"
        if self.contact_phone or self.contact_email:
            return "partial"
        if self.contact_name:
            return "name_only"
        return "none"

    def apply(self, update: QualificationUpdate) -> "QualificationMemory":
        """
        Return a new memory with the update applied.

        An explicit null never erases a value already captured; it only
        marks a still-empty slot as unanswerable so the flow moves on.
        """
        changes: Dict[str, Any] = {}
        unanswerable = list(self.unanswerable)

        for slot, value in update.values.items():
            if slot == BantSlot.CONTACT:
                if value is None and not self.is_resolved(slot) and slot.value not in unanswerable:
                    unanswerable.append(slot.value)
                continue

            if value is None:
                if getattr(self, slot.value) is None and slot.value not in unanswerable:
                    unanswerable.append(slot.value)
                changes[f"{slot.value}_discussed"] = True
                continue

            changes[slot.value] = value
            changes[f"{slot.value}_discussed"] = True
            if slot.value in unanswerable:
                unanswerable.remove(slot.value)

        for key in ("name", "phone", "email"):
            if update.contact.get(key):
                changes[f"contact_{key}"] = update.contact[key]
        if changes.get("contact_phone") or changes.get("contact_email"):
            if BantSlot.CONTACT.value in unanswerable:
                unanswerable.remove(BantSlot.CONTACT.value)

        updated = replace(self, unanswerable=unanswerable, **changes)
        updated.next_expected_slot = updated.compute_next_slot()
        return updated

    def has_new_data(self, previous: "QualificationMemory") -> bool:
        """True if any slot value or contact field differs from previous."""
        fields = ("budget", "authority", "need", "timeline", "contact_name", "contact_phone", "contact_email")
        return any(getattr(self, f) != getattr(previous, f) for f in fields)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "budget_discussed": self.budget_discussed,
            "authority_discussed": self.authority_discussed,
            "need_discussed": self.need_discussed,
            "timeline_discussed": self.timeline_discussed,
            "budget": self.budget,
            "authority": self.authority,
            "need": self.need,
            "timeline": self.timeline,
            "contact_name": self.contact_name,
            "contact_phone": self.contact_phone,
            "contact_email": self.contact_email,
            "unanswerable": list(self.unanswerable),
            "next_expected_slot": self.next_expected_slot,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QualificationMemory":
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        known["unanswerable"] = list(known.get("unanswerable") or [])
        return cls(**known)
