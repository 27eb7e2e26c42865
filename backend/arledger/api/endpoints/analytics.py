"""Customer analytics endpoints."""

import logging
from datetime import date
from typing import Any, Dict, List

from fastapi import APIRouter, Body
from fastapi.responses import Response
from pydantic import BaseModel

from arledger.api.deps import (
    SERVICE_ERRORS,
    Directory,
    LedgerSource,
    PassRunner,
    SavedFilters,
    translate_service_error,
)
from arledger.api.endpoints.auth import CurrentUser
from arledger.services.aggregation import (
    AggregationPipeline,
    AggregationResult,
    AnalyticsStats,
    CustomerAggregate,
)
from arledger.services.export import export_filename, render_csv
from arledger.services.filter_config import PRESET_FILTERS, FilterConfig
from arledger.services.passes import build_analytics_snapshot, business_today

logger = logging.getLogger(__name__)

router = APIRouter()


class AnalyticsResponse(BaseModel):
    """One analytics pass, capped for display."""
    customers: List[CustomerAggregate]
    total_matching: int
    displayed: int
    stats: AnalyticsStats
    as_of: date
    filter: Dict[str, Any]


class PresetResponse(BaseModel):
    key: str
    label: str
    filter: Dict[str, Any]


async def _run_analytics(
    user_id: str,
    screen: str,
    config: FilterConfig,
    source: LedgerSource,
    directory: Directory,
    runner: PassRunner,
) -> AggregationResult:
    # Validate before any fetch so a bad filter costs nothing
    config.ensure_valid()
    as_of = business_today()

    async def run_pass() -> AggregationResult:
        snapshot = await build_analytics_snapshot(source, directory)
        return AggregationPipeline().run(snapshot, config, as_of)

    return await runner.run((user_id, screen), run_pass)


def _to_response(result: AggregationResult, config: FilterConfig) -> AnalyticsResponse:
    return AnalyticsResponse(
        customers=list(result.rows),
        total_matching=result.total_matching,
        displayed=len(result.rows),
        stats=result.stats,
        as_of=result.as_of,
        filter=config.to_wire(),
    )


@router.post(
    "/customers",
    response_model=AnalyticsResponse,
    summary="Run customer analytics",
    description="Filter open invoices, roll them up per customer, filter and sort the customers.",
)
async def customer_analytics(
    current_user: CurrentUser,
    source: LedgerSource,
    directory: Directory,
    runner: PassRunner,
    payload: Dict[str, Any] = Body(default={}),
) -> AnalyticsResponse:
    try:
        config = FilterConfig.parse(payload)
        result = await _run_analytics(current_user.id, "analytics", config, source, directory, runner)
    except SERVICE_ERRORS as e:
        raise translate_service_error(e)
    return _to_response(result, config)


@router.post(
    "/customers/export",
    summary="Export customer analytics",
    description="Same as running analytics, returned as CSV without the display cap.",
    response_class=Response,
)
async def export_customer_analytics(
    current_user: CurrentUser,
    source: LedgerSource,
    directory: Directory,
    runner: PassRunner,
    payload: Dict[str, Any] = Body(default={}),
) -> Response:
    try:
        config = FilterConfig.parse(payload)
        result = await _run_analytics(current_user.id, "analytics_export", config, source, directory, runner)
    except SERVICE_ERRORS as e:
        raise translate_service_error(e)

    logger.info(f"Exporting {len(result.all_rows)} customers for user {current_user.id}")
    return Response(
        content=render_csv(result.all_rows),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{export_filename(result.as_of)}"'},
    )


@router.get(
    "/presets",
    response_model=List[PresetResponse],
    summary="Preset filters",
)
async def list_presets(current_user: CurrentUser) -> List[PresetResponse]:
    return [
        PresetResponse(key=preset.key, label=preset.label, filter=preset.config.to_wire())
        for preset in PRESET_FILTERS
    ]


@router.post(
    "/customers/saved/{filter_id}",
    response_model=AnalyticsResponse,
    summary="Run a saved filter",
)
async def run_saved_filter(
    filter_id: str,
    current_user: CurrentUser,
    source: LedgerSource,
    directory: Directory,
    runner: PassRunner,
    saved_filters: SavedFilters,
) -> AnalyticsResponse:
    try:
        config = await saved_filters.load_config(filter_id, current_user.id)
        result = await _run_analytics(current_user.id, "analytics", config, source, directory, runner)
    except SERVICE_ERRORS as e:
        raise translate_service_error(e)
    return _to_response(result, config)
