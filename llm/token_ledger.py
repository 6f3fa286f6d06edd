"""
Token Accounting Ledger.

Append-only log of every model invocation attempt with token counts and
computed cost. Writes never raise to the caller: an accounting failure is
logged and the conversation turn carries on.
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

SYSTEM_ATTRIBUTION = "system"


class OperationType(Enum):
    """Ledger operation categories."""
    INTENT_CLASSIFICATION = "intent_classification"
    BANT_EXTRACTION = "bant_extraction"
    BANT_SCORING = "bant_scoring"
    CHAT = "chat"
    EMBEDDING = "embedding"
    ESTIMATION = "estimation"


class LedgerWriteFailure(Exception):
    """An accounting row could not be persisted."""


@dataclass(frozen=True)
class Attribution:
    """Who a model invocation is billed to."""
    organization_id: str = SYSTEM_ATTRIBUTION
    agent_id: str = SYSTEM_ATTRIBUTION
    conversation_id: str = SYSTEM_ATTRIBUTION
    user_id: str = SYSTEM_ATTRIBUTION

    @classmethod
    def of(
        cls,
        organization_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        conversation_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> "Attribution":
        """Build an attribution, substituting the sentinel for missing ids."""
        return cls(
            organization_id=organization_id or SYSTEM_ATTRIBUTION,
            agent_id=agent_id or SYSTEM_ATTRIBUTION,
            conversation_id=conversation_id or SYSTEM_ATTRIBUTION,
            user_id=user_id or SYSTEM_ATTRIBUTION,
        )


@dataclass(frozen=True)
class ModelRate:
    """Per-1K-token prices for one model."""
    prompt: float
    completion: float
    cached_prompt: Optional[float] = None


RATE_TABLE: Dict[str, ModelRate] = {
    "gpt-5": ModelRate(0.00125, 0.01, 0.000125),
    "gpt-5-mini": ModelRate(0.00025, 0.002, 0.000025),
    "gpt-5-nano": ModelRate(0.00005, 0.0004, 0.000005),
    "gpt-4o-mini": ModelRate(0.00015, 0.0006, 0.000075),
    "gpt-4-turbo": ModelRate(0.01, 0.03),
    "text-embedding-3-small": ModelRate(0.00002, 0.0),
    "text-embedding-ada-002": ModelRate(0.0001, 0.0),
}

UNKNOWN_MODEL_RATE = ModelRate(0.01, 0.03)


def rate_for(model: str, rates: Optional[Dict[str, ModelRate]] = None) -> ModelRate:
    """Look up a model's rate; dated snapshots (gpt-5-mini-2025-08-07) match their base name."""
    table = rates if rates is not None else RATE_TABLE
    if model in table:
        return table[model]
    for name in sorted(table, key=len, reverse=True):
        if model.startswith(name + "-"):
            return table[name]
    return UNKNOWN_MODEL_RATE


def compute_cost(
    model: str,
    prompt_tokens: int,
    completion_tokens: int,
    cached_tokens: int = 0,
    rates: Optional[Dict[str, ModelRate]] = None,
) -> float:
    """
    Compute the USD cost of one invocation.

    Cached prompt tokens are billed at the discounted rate when the model
    has one, otherwise at the normal prompt rate.

    Raises:
        ValueError: on negative token counts
    """
    if prompt_tokens < 0 or completion_tokens < 0 or cached_tokens < 0:
        raise ValueError("token counts must be non-negative")

    rate = rate_for(model, rates)
    cached = min(cached_tokens, prompt_tokens)
    uncached = prompt_tokens - cached
    cached_rate = rate.cached_prompt if rate.cached_prompt is not None else rate.prompt

    cost = (uncached * rate.prompt + cached * cached_rate + completion_tokens * rate.completion) / 1000
    return round(cost, 8)


@dataclass(frozen=True)
class ModelInvocationRecord:
    """One model call attempt. Immutable once written."""
    model_tier: str
    model: str
    operation: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    cached_tokens: int = 0
    response_time_ms: float = 0.0
    success: bool = True
    fallback_used: bool = False
    attempt: int = 1
    usage_estimated: bool = False
    error_message: Optional[str] = None
    attribution: Attribution = field(default_factory=Attribution)
    endpoint: Optional[str] = None
    request_metadata: Dict[str, Any] = field(default_factory=dict)
    cost_per_1k_prompt: float = 0.0
    cost_per_1k_completion: float = 0.0
    total_cost: float = 0.0
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=datetime.utcnow)

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the persisted row shape."""
        return {
            "id": self.id,
            "organization_id": self.attribution.organization_id,
            "agent_id": self.attribution.agent_id,
            "conversation_id": self.attribution.conversation_id,
            "user_id": self.attribution.user_id,
            "model_tier": self.model_tier,
            "model": self.model,
            "operation_type": self.operation,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "cached_tokens": self.cached_tokens,
            "cost_per_1k_prompt": self.cost_per_1k_prompt,
            "cost_per_1k_completion": self.cost_per_1k_completion,
            "total_cost": self.total_cost,
            "response_time_ms": self.response_time_ms,
            "success": self.success,
            "fallback_used": self.fallback_used,
            "attempt": self.attempt,
            "usage_estimated": self.usage_estimated,
            "error_message": self.error_message,
            "endpoint": self.endpoint,
            "request_metadata": self.request_metadata,
            "created_at": self.created_at,
            "date": self.created_at.date(),
            "hour": self.created_at.hour,
        }


@dataclass
class LedgerFilter:
    """Aggregation filter. Unset fields do not constrain."""
    organization_id: Optional[str] = None
    agent_id: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    operation: Optional[str] = None

    def matches(self, record: ModelInvocationRecord) -> bool:
        attr = record.attribution
        if self.organization_id and attr.organization_id != self.organization_id:
            return False
        if self.agent_id and attr.agent_id != self.agent_id:
            return False
        if self.operation and record.operation != self.operation:
            return False
        if self.start and record.created_at < self.start:
            return False
        if self.end and record.created_at >= self.end:
            return False
        return True


@dataclass
class LedgerTotals:
    """Aggregated token/cost totals."""
    request_count: int = 0
    error_count: int = 0
    fallback_count: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    avg_response_time_ms: float = 0.0
    by_operation: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "request_count": self.request_count,
            "error_count": self.error_count,
            "fallback_count": self.fallback_count,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
            "total_cost": round(self.total_cost, 6),
            "avg_response_time_ms": round(self.avg_response_time_ms, 2),
            "by_operation": self.by_operation,
        }


@dataclass
class DailyUsage:
    """One day of ledger activity."""
    day: date
    request_count: int = 0
    error_count: int = 0
    total_tokens: int = 0
    total_cost: float = 0.0
    avg_response_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "request_count": self.request_count,
            "error_count": self.error_count,
            "total_tokens": self.total_tokens,
            "total_cost": round(self.total_cost, 6),
            "avg_response_time_ms": round(self.avg_response_time_ms, 2),
        }


@runtime_checkable
class LedgerBackend(Protocol):
    """Storage for ledger rows."""

    async def append(self, record: ModelInvocationRecord) -> None:
        ...

    async def aggregate(self, flt: LedgerFilter) -> LedgerTotals:
        ...

    async def daily(self, flt: LedgerFilter) -> List[DailyUsage]:
        ...


def summarize(records: List[ModelInvocationRecord]) -> LedgerTotals:
    """Fold records into totals."""
    totals = LedgerTotals()
    latency_sum = 0.0
    ops: Dict[str, Dict[str, Any]] = defaultdict(
        lambda: {"request_count": 0, "total_tokens": 0, "total_cost": 0.0}
    )

    for rec in records:
        totals.request_count += 1
        totals.error_count += 0 if rec.success else 1
        totals.fallback_count += 1 if rec.fallback_used else 0
        totals.prompt_tokens += rec.prompt_tokens
        totals.completion_tokens += rec.completion_tokens
        totals.total_tokens += rec.total_tokens
        totals.total_cost += rec.total_cost
        latency_sum += rec.response_time_ms

        op = ops[rec.operation]
        op["request_count"] += 1
        op["total_tokens"] += rec.total_tokens
        op["total_cost"] = round(op["total_cost"] + rec.total_cost, 8)

    if totals.request_count:
        totals.avg_response_time_ms = latency_sum / totals.request_count
    totals.by_operation = dict(ops)
    return totals


class InMemoryLedgerBackend:
    """List-backed ledger, used in tests and when no database is configured."""

    def __init__(self):
        self._records: List[ModelInvocationRecord] = []

    @property
    def records(self) -> List[ModelInvocationRecord]:
        return list(self._records)

    async def append(self, record: ModelInvocationRecord) -> None:
        self._records.append(record)

    async def aggregate(self, flt: LedgerFilter) -> LedgerTotals:
        return summarize([r for r in self._records if flt.matches(r)])

    async def daily(self, flt: LedgerFilter) -> List[DailyUsage]:
        buckets: Dict[date, List[ModelInvocationRecord]] = defaultdict(list)
        for rec in self._records:
            if flt.matches(rec):
                buckets[rec.created_at.date()].append(rec)

        days = []
        for day in sorted(buckets):
            totals = summarize(buckets[day])
            days.append(DailyUsage(
                day=day,
                request_count=totals.request_count,
                error_count=totals.error_count,
                total_tokens=totals.total_tokens,
                total_cost=totals.total_cost,
                avg_response_time_ms=totals.avg_response_time_ms,
            ))
        return days


class TokenLedger:
    """
    Prices and appends ModelInvocationRecords.

    Only ``record``, ``aggregate`` and ``daily`` are exposed; there is no
    update or delete path.
    """

    def __init__(
        self,
        backend: Optional[LedgerBackend] = None,
        rates: Optional[Dict[str, ModelRate]] = None,
        listeners: Optional[List[Callable[[ModelInvocationRecord], None]]] = None,
    ):
        """
        Args:
            backend: Row storage (in-memory when None)
            rates: Model -> per-1K prices
            listeners: Called with every priced record, e.g. metrics counters
        """
        self.backend = backend or InMemoryLedgerBackend()
        self.rates = rates if rates is not None else RATE_TABLE
        self.listeners = list(listeners or [])

    def price(self, record: ModelInvocationRecord) -> ModelInvocationRecord:
        """Return a copy of the record with cost fields filled from the rate table."""
        rate = rate_for(record.model, self.rates)
        return replace(
            record,
            cost_per_1k_prompt=rate.prompt,
            cost_per_1k_completion=rate.completion,
            total_cost=compute_cost(
                record.model,
                record.prompt_tokens,
                record.completion_tokens,
                record.cached_tokens,
                self.rates,
            ),
        )

    async def record(self, record: ModelInvocationRecord) -> None:
        """Price and persist one invocation. Never raises."""
        try:
            priced = self.price(record)
            await self.backend.append(priced)
        except LedgerWriteFailure as e:
            logger.error(f"Ledger write failed for {record.operation} ({record.model}): {e}")
        except Exception as e:
            logger.error(f"Unexpected ledger error for {record.operation} ({record.model}): {e}", exc_info=True)
            return

        for listener in self.listeners:
            try:
                listener(priced)
            except Exception as e:
                logger.warning(f"Ledger listener {getattr(listener, '__name__', listener)} failed: {e}")

    async def aggregate(self, flt: Optional[LedgerFilter] = None) -> LedgerTotals:
        """Aggregate totals for analytics collaborators."""
        return await self.backend.aggregate(flt or LedgerFilter())

    async def daily(self, flt: Optional[LedgerFilter] = None) -> List[DailyUsage]:
        """Per-day rollup."""
        return await self.backend.daily(flt or LedgerFilter())
