"""Tests for BANT extraction and qualification memory."""

import asyncio
from datetime import date

import pytest

from lead_scoring.bant_extractor import (
    EXTRACTION_RESPONSE_FORMAT,
    BantExtractor,
    MalformedExtraction,
)
from lead_scoring.qualification import (
    BantSlot,
    QualificationMemory,
    QualificationUpdate,
    matches_expected_shape,
)

TODAY = date(2026, 1, 15)
TRANSCRIPT = [
    {"role": "assistant", "content": "What budget range are you considering?"},
    {"role": "user", "content": "Around 35M, and it's just me deciding."},
]


@pytest.fixture
def make_extractor(make_orchestrator, scripted_provider):
    def build(**provider_kwargs):
        provider = scripted_provider(**provider_kwargs)
        return BantExtractor(make_orchestrator(provider)), provider
    return build


# ── Contact regex ─────────────────────────────────────

class TestContactExtraction:
    @pytest.fixture
    def extractor(self, make_extractor):
        return make_extractor()[0]

    def test_phone_and_email(self, extractor):
        contact = extractor.extract_contact("Reach me at +63 917 123 4567 or Ana.Cruz@Example.com")
        assert contact == {"phone": "+639171234567", "email": "ana.cruz@example.com"}

    def test_local_phone(self, extractor):
        assert extractor.extract_contact("call 0917 123 4567 anytime")["phone"] == "09171234567"

    def test_self_introduced_name(self, extractor):
        assert extractor.extract_contact("Hi, I'm Maria Santos")["name"] == "Maria Santos"
        assert extractor.extract_contact("my name is Jose")["name"] == "Jose"

    def test_lowercase_words_are_not_names(self, extractor):
        assert "name" not in extractor.extract_contact("i am looking for a condo")

    def test_nothing_found(self, extractor):
        assert extractor.extract_contact("What amenities does it have?") == {}


# ── Structured extraction ─────────────────────────────

class TestExtract:
    def test_answered_and_unanswerable(self, make_extractor, extraction, ledger):
        extractor, provider = make_extractor(script=[extraction(
            budget=("answered", "35M"),
            authority=("unanswerable", None),
            timeline=("answered", "next month"),
        )])

        update = asyncio.run(extractor.extract(TRANSCRIPT, today=TODAY))

        assert update.values == {
            BantSlot.BUDGET: 35_000_000,
            BantSlot.AUTHORITY: None,
            BantSlot.TIMELINE: "1_3_months",
        }
        assert BantSlot.NEED not in update.values
        assert provider.calls[0]["response_format"] == EXTRACTION_RESPONSE_FORMAT
        assert ledger.backend.records[0].operation == "bant_extraction"

    def test_contact_is_normalized(self, make_extractor, extraction):
        extractor, _ = make_extractor(script=[extraction(
            contact={"name": "maria santos", "phone": "0917-123-4567", "email": "bad"},
        )])

        update = asyncio.run(extractor.extract(TRANSCRIPT))

        assert update.contact == {"name": "Maria Santos", "phone": "09171234567"}

    def test_malformed_answer_is_empty_but_ledgered(self, make_extractor, ledger):
        extractor, _ = make_extractor(script=["Sure! The budget is 35M."])

        update = asyncio.run(extractor.extract(TRANSCRIPT))

        assert update.is_empty()
        records = ledger.backend.records
        assert len(records) == 1
        assert records[0].operation == "bant_extraction"
        assert records[0].success

    def test_provider_outage_is_empty(self, make_extractor, ledger):
        extractor, _ = make_extractor(failing_models={"gpt-5-mini", "gpt-4o-mini"})

        update = asyncio.run(extractor.extract(TRANSCRIPT))

        assert update.is_empty()
        assert [r.success for r in ledger.backend.records] == [False, False]

    def test_unnormalizable_answer_is_skipped(self, make_extractor, extraction):
        extractor, _ = make_extractor(script=[extraction(budget=("answered", "quite a lot"))])

        update = asyncio.run(extractor.extract(TRANSCRIPT))

        assert BantSlot.BUDGET not in update.values

    def test_prompt_mentions_pending_slot(self, make_extractor, extraction):
        extractor, provider = make_extractor(script=[extraction()])
        mem = QualificationMemory(budget=35_000_000, next_expected_slot="authority")

        asyncio.run(extractor.extract(TRANSCRIPT, memory=mem))

        prompt = provider.calls[0]["messages"][1]["content"]
        assert "last asked about: authority" in prompt
        assert "35000000" in prompt
        assert "Customer: Around 35M" in prompt


class TestParse:
    @pytest.fixture
    def extractor(self, make_extractor):
        return make_extractor()[0]

    @pytest.mark.parametrize("text", [
        "not json",
        "[1, 2]",
        '{"budget": {"status": "answered", "value": "35M"}}',
        '{"budget": {"status": "maybe", "value": null}, "authority": {}, "need": {}, "timeline": {}}',
    ])
    def test_rejects_bad_shapes(self, extractor, text):
        with pytest.raises(MalformedExtraction):
            extractor.parse(text)

    def test_rejects_non_string_value(self, extractor, extraction):
        text = extraction().replace('"budget": {"status": "not_mentioned", "value": null}',
                                    '"budget": {"status": "answered", "value": 35}')
        with pytest.raises(MalformedExtraction, match="bad value type"):
            extractor.parse(text)

    def test_accepts_valid(self, extractor, extraction):
        data = extractor.parse(extraction(need=("answered", "investment")))
        assert data["need"]["value"] == "investment"


# ── Qualification memory ──────────────────────────────

class TestQualificationMemory:
    def test_apply_returns_copy(self):
        mem = QualificationMemory()
        updated = mem.apply(QualificationUpdate(values={BantSlot.BUDGET: 35_000_000}))

        assert mem.budget is None
        assert updated.budget == 35_000_000
        assert updated.budget_discussed
        assert updated.next_expected_slot == "authority"

    def test_null_never_erases(self):
        mem = QualificationMemory(budget=35_000_000, budget_discussed=True, next_expected_slot="authority")
        updated = mem.apply(QualificationUpdate(values={BantSlot.BUDGET: None}))

        assert updated.budget == 35_000_000
        assert "budget" not in updated.unanswerable

    def test_null_marks_unanswerable_and_moves_on(self):
        updated = QualificationMemory().apply(QualificationUpdate(values={BantSlot.BUDGET: None}))

        assert updated.unanswerable == ["budget"]
        assert updated.budget_discussed
        assert updated.next_expected_slot == "authority"

    def test_later_value_clears_unanswerable(self):
        mem = QualificationMemory(unanswerable=["budget"], next_expected_slot="authority")
        updated = mem.apply(QualificationUpdate(values={BantSlot.BUDGET: 20_000_000}))

        assert updated.unanswerable == []
        assert updated.budget == 20_000_000
        assert updated.next_expected_slot == "authority"

    def test_contact_closes_flow(self):
        mem = QualificationMemory(
            budget=35_000_000, authority="sole_owner", need="residence", timeline="immediate",
            next_expected_slot="contact",
        )
        updated = mem.apply(QualificationUpdate(contact={"phone": "09171234567"}))

        assert updated.next_expected_slot is None
        assert updated.is_complete
        assert updated.contact_completeness() == "partial"

    def test_declined_contact(self):
        mem = QualificationMemory(
            budget=1, authority="shared", need="other", timeline="over_1_year", next_expected_slot="contact",
        )
        updated = mem.apply(QualificationUpdate(values={BantSlot.CONTACT: None}))
        assert "contact" in updated.unanswerable
        assert updated.next_expected_slot is None

    def test_has_new_data(self):
        mem = QualificationMemory()
        same = mem.apply(QualificationUpdate(values={BantSlot.BUDGET: None}))
        changed = mem.apply(QualificationUpdate(contact={"email": "a@b.co"}))
        assert not same.has_new_data(mem)
        assert changed.has_new_data(mem)

    def test_merge_prefers_later(self):
        first = QualificationUpdate(values={BantSlot.NEED: "other"}, contact={"phone": "09171234567"})
        second = QualificationUpdate(values={BantSlot.NEED: "investment"}, contact={"phone": ""})
        merged = first.merge(second)
        assert merged.values[BantSlot.NEED] == "investment"
        assert merged.contact == {"phone": "09171234567"}

    def test_dict_round_trip_ignores_unknown(self):
        mem = QualificationMemory(budget=5_000_000, unanswerable=["need"], version=3)
        data = {**mem.to_dict(), "legacy_field": True}
        assert QualificationMemory.from_dict(data) == mem

    @pytest.mark.parametrize("slot,message,expected", [
        (BantSlot.BUDGET, "35M", True),
        (BantSlot.BUDGET, "20", True),
        (BantSlot.BUDGET, "hello there", False),
        (BantSlot.AUTHORITY, "yes", True),
        (BantSlot.NEED, "rental income", True),
        (BantSlot.TIMELINE, "next month", True),
        (BantSlot.TIMELINE, "Q3", True),
        (BantSlot.CONTACT, "ana@example.com", True),
        (BantSlot.CONTACT, "   ", False),
        (BantSlot.CONTACT, "my name is Ana Cruz", True),
        (BantSlot.CONTACT, "I'm interested in the condo", False),
        (BantSlot.BUDGET, "Can I talk to a real person about the 2 bedroom unit?", False),
        (BantSlot.TIMELINE, "is it ready for move in later this year or not", False),
    ])
    def test_expected_shape(self, slot, message, expected):
        assert matches_expected_shape(slot, message) is expected
