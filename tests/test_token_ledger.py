"""Tests for the token accounting ledger."""

import asyncio
from datetime import datetime, timedelta

import pytest

from llm.token_ledger import (
    Attribution,
    InMemoryLedgerBackend,
    LedgerFilter,
    LedgerWriteFailure,
    ModelInvocationRecord,
    ModelRate,
    TokenLedger,
    UNKNOWN_MODEL_RATE,
    compute_cost,
    rate_for,
)


def make_record(**overrides) -> ModelInvocationRecord:
    values = {
        "model_tier": "standard",
        "model": "gpt-5-mini",
        "operation": "chat",
        "prompt_tokens": 1000,
        "completion_tokens": 500,
        "response_time_ms": 100.0,
    }
    values.update(overrides)
    return ModelInvocationRecord(**values)


class FailingBackend(InMemoryLedgerBackend):
    def __init__(self, error: Exception):
        super().__init__()
        self.error = error

    async def append(self, record):
        raise self.error


# ── Pricing ───────────────────────────────────────────

class TestPricing:
    def test_compute_cost(self):
        # 1000 * 0.00025/1k + 500 * 0.002/1k
        assert compute_cost("gpt-5-mini", 1000, 500) == pytest.approx(0.00125)

    def test_cached_tokens_use_discounted_rate(self):
        full = compute_cost("gpt-5-mini", 1000, 0)
        cached = compute_cost("gpt-5-mini", 1000, 0, cached_tokens=1000)
        assert cached < full
        assert cached == pytest.approx(0.000025)

    def test_cached_without_discount_bills_prompt_rate(self):
        assert compute_cost("gpt-4-turbo", 1000, 0, cached_tokens=500) == compute_cost("gpt-4-turbo", 1000, 0)

    def test_dated_snapshot_matches_base(self):
        assert rate_for("gpt-5-mini-2025-08-07") == rate_for("gpt-5-mini")
        assert rate_for("gpt-5-2025-08-07").prompt == 0.00125

    def test_unknown_model_rate(self):
        assert rate_for("mystery-model") == UNKNOWN_MODEL_RATE

    def test_negative_tokens_rejected(self):
        with pytest.raises(ValueError):
            compute_cost("gpt-5-mini", -1, 0)

    def test_custom_rate_table(self):
        ledger = TokenLedger(rates={"house-model": ModelRate(1.0, 2.0)})
        priced = ledger.price(make_record(model="house-model", prompt_tokens=1000, completion_tokens=1000))
        assert priced.total_cost == pytest.approx(3.0)
        assert priced.cost_per_1k_prompt == 1.0


# ── Recording ─────────────────────────────────────────

class TestRecording:
    def test_record_prices_and_appends(self, ledger):
        asyncio.run(ledger.record(make_record()))

        stored = ledger.backend.records[0]
        assert stored.total_cost == pytest.approx(0.00125)
        assert stored.cost_per_1k_completion == 0.002

    def test_sentinel_attribution(self):
        record = make_record()
        row = record.to_dict()
        assert row["organization_id"] == "system"
        assert row["conversation_id"] == "system"
        assert row["total_tokens"] == 1500
        assert row["date"] == record.created_at.date()

    def test_attribution_of_fills_missing(self):
        attr = Attribution.of(organization_id="org-1", conversation_id="")
        assert attr.organization_id == "org-1"
        assert attr.conversation_id == "system"

    @pytest.mark.parametrize("error", [LedgerWriteFailure("disk full"), RuntimeError("boom")])
    def test_write_failure_never_raises(self, error):
        ledger = TokenLedger(backend=FailingBackend(error))
        asyncio.run(ledger.record(make_record()))


# ── Aggregation ───────────────────────────────────────

class TestAggregation:
    def _seed(self, ledger):
        now = datetime.utcnow()
        records = [
            make_record(attribution=Attribution.of("org-1", "agent-1")),
            make_record(
                operation="intent_classification",
                prompt_tokens=100,
                completion_tokens=2,
                attribution=Attribution.of("org-1", "agent-2"),
            ),
            make_record(success=False, completion_tokens=0, attribution=Attribution.of("org-2", "agent-3")),
            make_record(
                fallback_used=True,
                attempt=2,
                created_at=now - timedelta(days=3),
                attribution=Attribution.of("org-1", "agent-1"),
            ),
        ]
        for rec in records:
            asyncio.run(ledger.record(rec))

    def test_totals(self, ledger):
        self._seed(ledger)
        totals = asyncio.run(ledger.aggregate())

        assert totals.request_count == 4
        assert totals.error_count == 1
        assert totals.fallback_count == 1
        assert totals.total_tokens == 1500 + 102 + 1000 + 1500
        assert set(totals.by_operation) == {"chat", "intent_classification"}
        assert totals.by_operation["chat"]["request_count"] == 3

    def test_filter_by_org_and_operation(self, ledger):
        self._seed(ledger)
        totals = asyncio.run(ledger.aggregate(LedgerFilter(organization_id="org-1", operation="chat")))
        assert totals.request_count == 2

    def test_filter_by_agent(self, ledger):
        self._seed(ledger)
        totals = asyncio.run(ledger.aggregate(LedgerFilter(agent_id="agent-2")))
        assert totals.request_count == 1
        assert totals.total_tokens == 102

    def test_window_is_half_open(self, ledger):
        self._seed(ledger)
        cutoff = datetime.utcnow() - timedelta(days=1)
        recent = asyncio.run(ledger.aggregate(LedgerFilter(start=cutoff)))
        older = asyncio.run(ledger.aggregate(LedgerFilter(end=cutoff)))
        assert recent.request_count == 3
        assert older.request_count == 1

    def test_daily_rollup(self, ledger):
        self._seed(ledger)
        days = asyncio.run(ledger.daily())

        assert len(days) == 2
        assert days[0].day < days[1].day
        assert days[0].request_count == 1
        assert days[1].request_count == 3
        assert days[1].to_dict()["date"] == days[1].day.isoformat()

    def test_empty_ledger(self, ledger):
        totals = asyncio.run(ledger.aggregate())
        assert totals.request_count == 0
        assert totals.avg_response_time_ms == 0.0


# ── Listeners ─────────────────────────────────────────

class TestListeners:
    def test_listener_sees_priced_record(self):
        seen = []
        ledger = TokenLedger(listeners=[seen.append])

        asyncio.run(ledger.record(make_record()))

        assert seen[0].total_cost == pytest.approx(0.00125)

    def test_listener_runs_when_write_fails(self):
        seen = []
        ledger = TokenLedger(backend=FailingBackend(LedgerWriteFailure("disk full")), listeners=[seen.append])

        asyncio.run(ledger.record(make_record()))

        assert len(seen) == 1

    def test_listener_failure_is_contained(self):
        def broken(record):
            raise RuntimeError("metrics down")

        ledger = TokenLedger(listeners=[broken])
        asyncio.run(ledger.record(make_record()))

        assert len(ledger.backend.records) == 1

    def test_bad_record_is_not_stored(self):
        seen = []
        ledger = TokenLedger(listeners=[seen.append])

        asyncio.run(ledger.record(make_record(prompt_tokens=-1)))

        assert ledger.backend.records == []
        assert seen == []
