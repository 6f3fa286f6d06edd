"""
Token usage analytics API routes.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, HTTPException, Query

from llm.token_ledger import LedgerFilter, OperationType

from ..services import get_services

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/analytics", tags=["Analytics"])


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Ledger timestamps are naive UTC
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _ledger_filter(
    organization_id: Optional[str],
    agent_id: Optional[str],
    start: Optional[datetime],
    end: Optional[datetime],
    operation: Optional[OperationType],
    days: Optional[int],
) -> LedgerFilter:
    start, end = _naive_utc(start), _naive_utc(end)
    if start is None and days:
        start = datetime.utcnow() - timedelta(days=days)
    if start and end and end <= start:
        raise HTTPException(status_code=400, detail="end must be after start")
    return LedgerFilter(
        organization_id=organization_id,
        agent_id=agent_id,
        start=start,
        end=end,
        operation=operation.value if operation else None,
    )


@router.get("/token-usage")
async def token_usage(
    organization_id: Optional[str] = None,
    agent_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    operation: Optional[OperationType] = None,
    days: Optional[int] = Query(None, ge=1, le=365),
):
    """Token and cost totals, with a per-operation breakdown."""
    ledger = get_services().ledger
    if ledger is None:
        raise HTTPException(status_code=503, detail="Ledger unavailable")

    flt = _ledger_filter(organization_id, agent_id, start, end, operation, days)
    totals = await ledger.aggregate(flt)
    return {
        "filters": {
            "organization_id": flt.organization_id,
            "agent_id": flt.agent_id,
            "start": flt.start.isoformat() if flt.start else None,
            "end": flt.end.isoformat() if flt.end else None,
            "operation": flt.operation,
        },
        **totals.to_dict(),
    }


@router.get("/token-usage/daily")
async def token_usage_daily(
    organization_id: Optional[str] = None,
    agent_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    operation: Optional[OperationType] = None,
    days: Optional[int] = Query(30, ge=1, le=365),
):
    """Per-day rollup of ledger activity (last 30 days unless a range is given)."""
    ledger = get_services().ledger
    if ledger is None:
        raise HTTPException(status_code=503, detail="Ledger unavailable")

    flt = _ledger_filter(organization_id, agent_id, start, end, operation, days)
    days_rows = await ledger.daily(flt)
    return {"days": [d.to_dict() for d in days_rows]}
