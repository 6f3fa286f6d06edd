"""
Database-backed ledger storage.

Appends ModelInvocationRecords to ``ai_token_usage`` and aggregates with
SQL. Each append runs in its own transaction so a rolled-back request
never loses its accounting.
"""

import logging
from typing import List

from sqlalchemy.exc import SQLAlchemyError

from database.repositories import TokenUsageRepository
from database.session import session_scope

from .token_ledger import (
    DailyUsage,
    LedgerFilter,
    LedgerTotals,
    LedgerWriteFailure,
    ModelInvocationRecord,
)

logger = logging.getLogger(__name__)


def _filters(flt: LedgerFilter) -> dict:
    return {
        "organization_id": flt.organization_id,
        "agent_id": flt.agent_id,
        "start": flt.start,
        "end": flt.end,
        "operation": flt.operation,
    }


class DbLedgerBackend:
    """LedgerBackend over the ai_token_usage table."""

    async def append(self, record: ModelInvocationRecord) -> None:
        try:
            async with session_scope() as session:
                await TokenUsageRepository(session).add(record.to_dict())
        except SQLAlchemyError as e:
            raise LedgerWriteFailure(str(e)) from e

    async def aggregate(self, flt: LedgerFilter) -> LedgerTotals:
        async with session_scope() as session:
            repo = TokenUsageRepository(session)
            totals = await repo.aggregate(**_filters(flt))
            by_operation = await repo.by_operation(**_filters(flt))
        return LedgerTotals(by_operation=by_operation, **totals)

    async def daily(self, flt: LedgerFilter) -> List[DailyUsage]:
        async with session_scope() as session:
            rows = await TokenUsageRepository(session).daily(**_filters(flt))
        return [
            DailyUsage(
                day=row["date"],
                request_count=row["request_count"],
                error_count=row["error_count"],
                total_tokens=row["total_tokens"],
                total_cost=row["total_cost"],
                avg_response_time_ms=row["avg_response_time_ms"],
            )
            for row in rows
        ]
