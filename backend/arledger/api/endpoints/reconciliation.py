"""Voided payment reconciliation endpoints."""

import logging
from datetime import date, datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Query
from pydantic import BaseModel

from arledger.api.deps import (
    SERVICE_ERRORS,
    LedgerSource,
    PassRunner,
    translate_service_error,
)
from arledger.api.endpoints.auth import CurrentUser
from arledger.core.errors import ErrorCode, ValidationError
from arledger.services.date_index import TimezoneDateIndexer, TimezoneName
from arledger.services.passes import (
    DateSearchResult,
    build_date_search_snapshot,
    build_voided_snapshot,
    run_date_search,
)
from arledger.services.reconciliation import (
    BalanceFilter,
    ReconciliationEngine,
    ReconciliationFilter,
    ReconciliationPair,
    ReconciliationSummary,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class VoidedAnalysisResponse(BaseModel):
    """Dual-entry pairs after review filters, plus headline counts."""
    pairs: List[ReconciliationPair]
    summary: ReconciliationSummary
    total_unfiltered: int


@router.get(
    "/voided",
    response_model=VoidedAnalysisResponse,
    summary="Voided payment analysis",
    description="Pair every voided payment with its original and check they net to zero.",
)
async def voided_analysis(
    current_user: CurrentUser,
    source: LedgerSource,
    runner: PassRunner,
    search: Optional[str] = Query(default=None, max_length=100),
    date_filter: str = Query(default="all"),
    balance: BalanceFilter = Query(default=BalanceFilter.ALL),
) -> VoidedAnalysisResponse:
    try:
        review = ReconciliationFilter(search=search, date_filter=date_filter, balance=balance)
    except ValueError as e:
        raise ValidationError(ErrorCode.VALIDATION_ERROR, message=str(e), details={"field": "date_filter"})

    async def run_pass() -> VoidedAnalysisResponse:
        snapshot = await build_voided_snapshot(source)
        engine = ReconciliationEngine()
        pairs = engine.reconcile(snapshot.entries)
        filtered = review.apply(pairs, as_of=datetime.now(timezone.utc))
        return VoidedAnalysisResponse(
            pairs=filtered,
            summary=engine.summarize(filtered),
            total_unfiltered=len(pairs),
        )

    try:
        return await runner.run((current_user.id, "voided"), run_pass)
    except SERVICE_ERRORS as e:
        raise translate_service_error(e)


@router.get(
    "/voided/by-date",
    response_model=DateSearchResult,
    summary="Voided payments by date",
    description="Voided entries on a calendar day under UTC or Eastern time.",
)
async def voided_by_date(
    current_user: CurrentUser,
    source: LedgerSource,
    runner: PassRunner,
    target_date: date = Query(alias="date"),
    tz: TimezoneName = Query(default=TimezoneName.ET, alias="timezone"),
) -> DateSearchResult:
    indexer = TimezoneDateIndexer()

    async def run_pass() -> DateSearchResult:
        snapshot = await build_date_search_snapshot(source, indexer, target_date)
        return run_date_search(snapshot, target_date, tz, indexer=indexer)

    try:
        return await runner.run((current_user.id, "voided_by_date"), run_pass)
    except SERVICE_ERRORS as e:
        raise translate_service_error(e)
