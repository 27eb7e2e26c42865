"""Health check endpoint with dependency status.

Reports the database that holds saved filters and the ledger store that
every pass reads from.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import APIRouter
from pydantic import BaseModel
from sqlalchemy import text

from arledger import __version__
from arledger.api.deps import DBSession, LedgerSource

logger = logging.getLogger(__name__)

router = APIRouter()


class ServiceStatus(BaseModel):
    """Status of an individual service."""
    available: bool
    message: Optional[str] = None
    latency_ms: Optional[float] = None


class HealthResponse(BaseModel):
    """Health check response with all service statuses."""
    status: str  # "healthy", "degraded", "unhealthy"
    timestamp: str
    version: str
    services: Dict[str, ServiceStatus]


async def check_database(db: DBSession) -> ServiceStatus:
    """Check database connectivity."""
    try:
        start = datetime.now()
        await db.execute(text("SELECT 1"))
        latency = (datetime.now() - start).total_seconds() * 1000
        return ServiceStatus(available=True, latency_ms=latency)
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return ServiceStatus(available=False, message=str(e))


async def check_ledger_source(source: LedgerSource) -> ServiceStatus:
    """Check ledger store connectivity."""
    start = datetime.now()
    available = await source.health_check()
    latency = (datetime.now() - start).total_seconds() * 1000
    if available:
        return ServiceStatus(available=True, latency_ms=latency)
    return ServiceStatus(
        available=False,
        message=f"Ledger store not responding at {source.base_url}",
    )


@router.get("/health", response_model=HealthResponse)
async def health_check(db: DBSession, source: LedgerSource) -> HealthResponse:
    """Health check endpoint.

    Status values:
    - "healthy": Database and ledger store available
    - "degraded": Ledger store unavailable; saved filters still work
    - "unhealthy": Database unavailable
    """
    services: Dict[str, ServiceStatus] = {
        "database": await check_database(db),
        "ledger_source": await check_ledger_source(source),
    }

    if not services["database"].available:
        status = "unhealthy"
    elif not services["ledger_source"].available:
        status = "degraded"
    else:
        status = "healthy"

    return HealthResponse(
        status=status,
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        services=services,
    )
