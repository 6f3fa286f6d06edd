"""
Prometheus metrics middleware for the lead qualification API.

Exposes /metrics endpoint with request counters, latency histograms,
and business metrics for intents, lead scores and degraded turns.
"""

import logging
import time

from fastapi import Request, Response
from prometheus_client import (
    Counter, Histogram, Gauge,
    generate_latest, CONTENT_TYPE_LATEST,
)
from starlette.middleware.base import BaseHTTPMiddleware

from llm.token_ledger import ModelInvocationRecord

logger = logging.getLogger(__name__)

# Request metrics
REQUEST_COUNT = Counter(
    "leadqual_http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)
REQUEST_LATENCY = Histogram(
    "leadqual_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)
ACTIVE_REQUESTS = Gauge(
    "leadqual_http_active_requests",
    "Currently active HTTP requests",
)

# Business metrics
INTENT_COUNT = Counter(
    "leadqual_intent_classification_total",
    "Intent classifications",
    ["intent", "source"],
)
LEAD_SCORE_HIST = Histogram(
    "leadqual_lead_score",
    "Lead score distribution",
    buckets=[10, 20, 30, 40, 50, 60, 70, 80, 90, 100],
)
LEAD_TIER_COUNT = Counter(
    "leadqual_lead_tier_total",
    "Scored turns per lead tier",
    ["tier"],
)
APOLOGY_REPLIES = Counter(
    "leadqual_apology_replies_total",
    "Turns answered with the generic apology because reply generation failed",
)
HANDOFFS = Counter(
    "leadqual_handoff_requests_total",
    "Conversations handed to a human",
)

# Model metrics, fed from the token ledger
MODEL_CALLS = Counter(
    "leadqual_model_calls_total",
    "Model invocation attempts",
    ["operation", "tier", "success"],
)
MODEL_FALLBACKS = Counter(
    "leadqual_model_fallbacks_total",
    "Calls answered by the fallback tier",
    ["operation"],
)
MODEL_TOKENS = Counter(
    "leadqual_model_tokens_total",
    "Prompt plus completion tokens",
    ["operation"],
)


def record_intent(intent: str, source: str = "model"):
    """Record an intent classification event."""
    INTENT_COUNT.labels(intent=intent, source=source).inc()


def record_lead_score(score: float, tier: str):
    """Record a lead score."""
    LEAD_SCORE_HIST.observe(score)
    LEAD_TIER_COUNT.labels(tier=tier).inc()


def record_apology():
    """Record a turn that fell back to the apology reply."""
    APOLOGY_REPLIES.inc()


def record_handoff():
    HANDOFFS.inc()


def record_model_call(record: ModelInvocationRecord):
    """Ledger listener: count one model invocation attempt."""
    MODEL_CALLS.labels(
        operation=record.operation,
        tier=record.model_tier,
        success=str(record.success).lower(),
    ).inc()
    MODEL_TOKENS.labels(operation=record.operation).inc(record.total_tokens)
    if record.fallback_used and record.success:
        MODEL_FALLBACKS.labels(operation=record.operation).inc()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware that records HTTP request metrics."""

    async def dispatch(self, request: Request, call_next):
        ACTIVE_REQUESTS.inc()
        start = time.time()

        try:
            response = await call_next(request)
        except Exception:
            ACTIVE_REQUESTS.dec()
            raise

        duration = time.time() - start
        # Route template keeps label cardinality bounded
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)

        REQUEST_COUNT.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
        ).inc()
        REQUEST_LATENCY.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)
        ACTIVE_REQUESTS.dec()

        return response


async def metrics_endpoint(request: Request) -> Response:
    """Prometheus metrics endpoint."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
