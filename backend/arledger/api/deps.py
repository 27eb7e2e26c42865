"""Common dependencies for API endpoints."""

from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from arledger.core.config import settings
from arledger.core.database import get_db
from arledger.core.errors import (
    AppException,
    ConflictError,
    ErrorCode,
    NotFoundError,
    UpstreamError,
    ValidationError,
)
from arledger.services.customer_directory import CustomerDirectory
from arledger.services.filter_config import FilterConfigError
from arledger.services.ledger_source import (
    LedgerSourceAuthenticationError,
    LedgerSourceClient,
    LedgerSourceConnectionError,
    LedgerSourceError,
    LedgerSourceRateLimitError,
    LedgerSourceServerError,
)
from arledger.services.passes import (
    LatestPassRunner,
    PassSupersededError,
    SnapshotFetchError,
    pass_runner,
)
from arledger.services.saved_filters import (
    SavedFilterNameTakenError,
    SavedFilterNotFoundError,
    SavedFilterService,
    SavedFilterValidationError,
)
from arledger.services.snapshot import TimestampError

# Type alias for database session dependency
DBSession = Annotated[AsyncSession, Depends(get_db)]

_redis: Optional[Redis] = None


def get_redis() -> Optional[Redis]:
    """Shared Redis client, or None when caching is disabled."""
    global _redis
    if not settings.cache_enabled:
        return None
    if _redis is None:
        _redis = Redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


async def get_ledger_source() -> AsyncGenerator[LedgerSourceClient, None]:
    """Per-request ledger store client, closed after the response."""
    client = LedgerSourceClient()
    try:
        yield client
    finally:
        await client.close()


LedgerSource = Annotated[LedgerSourceClient, Depends(get_ledger_source)]


async def get_customer_directory(
    source: LedgerSource,
    cache: Optional[Redis] = Depends(get_redis),
) -> CustomerDirectory:
    return CustomerDirectory(source, cache=cache)


Directory = Annotated[CustomerDirectory, Depends(get_customer_directory)]


def get_pass_runner() -> LatestPassRunner:
    return pass_runner


PassRunner = Annotated[LatestPassRunner, Depends(get_pass_runner)]


async def get_saved_filter_service(db: DBSession) -> SavedFilterService:
    return SavedFilterService(db)


SavedFilters = Annotated[SavedFilterService, Depends(get_saved_filter_service)]


# =============================================================================
# Error translation
# =============================================================================


def _ledger_source_error(e: LedgerSourceError) -> AppException:
    if isinstance(e, LedgerSourceConnectionError):
        return UpstreamError(ErrorCode.LEDGER_SOURCE_CONNECTION_ERROR, str(e))
    if isinstance(e, LedgerSourceAuthenticationError):
        return UpstreamError(ErrorCode.LEDGER_SOURCE_AUTH_ERROR, str(e))
    if isinstance(e, LedgerSourceRateLimitError):
        return UpstreamError(ErrorCode.LEDGER_SOURCE_RATE_LIMITED, str(e), retry_after=e.retry_after)
    if isinstance(e, LedgerSourceServerError):
        return UpstreamError(ErrorCode.LEDGER_SOURCE_SERVER_ERROR, str(e))
    return UpstreamError(ErrorCode.LEDGER_SOURCE_ERROR, str(e))


def translate_service_error(e: Exception) -> AppException:
    """Map a service-layer exception onto the API error scheme.

    Intended for the exceptions in ``SERVICE_ERRORS``.
    """
    if isinstance(e, FilterConfigError):
        return ValidationError(
            ErrorCode.FILTER_CONFIG_INVALID,
            message=str(e),
            details={"field": e.field},
        )
    if isinstance(e, TimestampError):
        return ValidationError(ErrorCode.TIMESTAMP_INVALID, message=str(e))
    if isinstance(e, SnapshotFetchError):
        if isinstance(e.cause, LedgerSourceError):
            return _ledger_source_error(e.cause)
        return UpstreamError(ErrorCode.LEDGER_SOURCE_ERROR, str(e))
    if isinstance(e, LedgerSourceError):
        return _ledger_source_error(e)
    if isinstance(e, PassSupersededError):
        return ConflictError(ErrorCode.PASS_SUPERSEDED, str(e))
    if isinstance(e, SavedFilterNotFoundError):
        return NotFoundError(ErrorCode.SAVED_FILTER_NOT_FOUND, str(e))
    if isinstance(e, SavedFilterNameTakenError):
        return ConflictError(ErrorCode.SAVED_FILTER_NAME_TAKEN, str(e))
    if isinstance(e, SavedFilterValidationError):
        return ValidationError(ErrorCode.VALIDATION_ERROR, str(e))
    return AppException(ErrorCode.INTERNAL_ERROR, status_code=500, message=str(e))


SERVICE_ERRORS = (
    FilterConfigError,
    TimestampError,
    SnapshotFetchError,
    LedgerSourceError,
    PassSupersededError,
    SavedFilterNotFoundError,
    SavedFilterNameTakenError,
    SavedFilterValidationError,
)
