"""Tests for per-agent custom qualification questions."""

import pytest
from pydantic import ValidationError

from lead_scoring.bant_questions import (
    BantQuestion,
    BantQuestionSet,
    InvalidBantQuestions,
    MAX_QUESTIONS_PER_CATEGORY,
)
from lead_scoring.qualification import BantSlot


def question(category="budget", text="What is your investment budget?", order=0, **extra):
    return BantQuestion(category=category, question_text=text, question_order=order, **extra)


# ── Question selection ────────────────────────────────

class TestQuestionFor:
    def test_lowest_order_first(self):
        questions = BantQuestionSet(questions=[
            question(text="Do you require financing?", order=2),
            question(text="What is your investment budget?", order=1),
        ])
        assert questions.question_for(BantSlot.BUDGET) == "What is your investment budget?"

    def test_inactive_questions_are_skipped(self):
        questions = BantQuestionSet(questions=[
            question(text="Old wording", order=1, is_active=False),
            question(text="New wording", order=2),
        ])
        assert questions.question_for(BantSlot.BUDGET) == "New wording"

    def test_missing_category_keeps_stock(self):
        questions = BantQuestionSet(questions=[question()])
        assert questions.question_for(BantSlot.TIMELINE) is None
        assert questions.question_for(BantSlot.CONTACT) is None

    def test_grouping(self):
        questions = BantQuestionSet(questions=[
            question("need", "What type of property?", 1),
            question("timeline", "When do you plan to purchase?", 1),
            question("need", "Must-have features?", 0),
        ])
        grouped = questions.by_category()
        assert [q.question_text for q in grouped["need"]] == ["Must-have features?", "What type of property?"]
        assert set(grouped) == {"need", "timeline"}


# ── Write rules ───────────────────────────────────────

class TestInvariants:
    def test_valid_set(self):
        questions = BantQuestionSet(questions=[question(order=1), question("authority", "Who decides?", 1)])
        assert questions.validate_invariants() is questions

    def test_repeated_order_rejected(self):
        questions = BantQuestionSet(questions=[question(order=1), question(text="Financing?", order=1)])
        with pytest.raises(InvalidBantQuestions, match="repeats"):
            questions.validate_invariants()

    def test_too_many_rejected(self):
        questions = BantQuestionSet(questions=[
            question(text=f"Question {i}", order=i) for i in range(MAX_QUESTIONS_PER_CATEGORY + 1)
        ])
        with pytest.raises(InvalidBantQuestions, match="at most"):
            questions.validate_invariants()

    def test_blank_text_rejected(self):
        with pytest.raises(InvalidBantQuestions, match="blank"):
            BantQuestionSet(questions=[question(text="   ")]).validate_invariants()

    @pytest.mark.parametrize("values", [
        {"category": "contact", "question_text": "Phone?"},
        {"category": "budget", "question_text": ""},
        {"category": "budget", "question_text": "Budget?", "question_order": -1},
    ])
    def test_shape_errors(self, values):
        with pytest.raises(ValidationError):
            BantQuestion(**values)
