"""
Per-agent qualification questions.

An agent can replace the stock wording of the budget, authority, need and
timeline questions with their own, several per category in asking order.
The flow asks the first active question of the pending slot; slots without
one keep the stock question.
"""

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .qualification import BANT_SLOTS, BantSlot

QUESTION_CATEGORIES = [slot.value for slot in BANT_SLOTS]
MAX_QUESTIONS_PER_CATEGORY = 5


class InvalidBantQuestions(ValueError):
    """A question set write broke the per-category rules."""


class BantQuestion(BaseModel):
    """One custom question for a BANT category."""
    category: str = Field(..., pattern=r"^(budget|authority|need|timeline)$")
    question_text: str = Field(..., min_length=1, max_length=500)
    question_order: int = Field(default=0, ge=0)
    is_active: bool = True
    placeholder_text: Optional[str] = Field(default=None, max_length=255)
    help_text: Optional[str] = Field(default=None, max_length=500)


class BantQuestionSet(BaseModel):
    """All custom questions of one agent."""
    questions: List[BantQuestion] = Field(default_factory=list)

    def validate_invariants(self) -> "BantQuestionSet":
        """
        Raises:
            InvalidBantQuestions: blank text, too many questions in a
                category, or a repeated order inside a category
        """
        for category, questions in self.by_category().items():
            if len(questions) > MAX_QUESTIONS_PER_CATEGORY:
                raise InvalidBantQuestions(
                    f"at most {MAX_QUESTIONS_PER_CATEGORY} questions per category ({category} has {len(questions)})"
                )
            orders = [q.question_order for q in questions]
            if len(set(orders)) != len(orders):
                raise InvalidBantQuestions(f"question_order repeats within {category}")
            for q in questions:
                if not q.question_text.strip():
                    raise InvalidBantQuestions(f"blank question in {category}")
        return self

    def by_category(self) -> Dict[str, List[BantQuestion]]:
        grouped: Dict[str, List[BantQuestion]] = {}
        for q in self.questions:
            grouped.setdefault(q.category, []).append(q)
        for questions in grouped.values():
            questions.sort(key=lambda q: q.question_order)
        return grouped

    def question_for(self, slot: BantSlot) -> Optional[str]:
        """First active question for the slot, or None to keep the stock one."""
        for q in self.by_category().get(slot.value, []):
            if q.is_active:
                return q.question_text.strip()
        return None
