"""Snapshot fetching and pass orchestration.

A pass is one request's worth of work: fetch a fresh snapshot, run the
reconciliation engine or the aggregation pipeline over it, return the
result, drop the snapshot. Any fetch failure aborts the pass; a
partially fetched snapshot is never handed to the engines.

Passes for the same user and screen follow "last config wins": starting
a new pass cancels the one still in flight, whose caller gets
``PassSupersededError``.
"""

import asyncio
import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, computed_field

from arledger.core.config import settings
from arledger.core.logging import bind
from arledger.services.customer_directory import CustomerDirectory
from arledger.services.date_index import (
    IndexedEntry,
    TimezoneDateIndexer,
    TimezoneName,
)
from arledger.services.ledger_source import LedgerSourceClient, LedgerSourceError
from arledger.services.reconciliation import ReconciliationEngine, ReconciliationPair
from arledger.services.snapshot import Invoice, LedgerEntry, LedgerSnapshot

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Exceptions
# =============================================================================


class SnapshotFetchError(Exception):
    """Raised when a snapshot could not be fetched completely.

    Attributes:
        cause: The underlying ledger source or row conversion error
    """

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause


class PassSupersededError(Exception):
    """Raised in a pass that was cancelled by a newer pass for the same key."""
    pass


def business_today() -> date:
    """Today's date in the business timezone."""
    return datetime.now(ZoneInfo(settings.local_timezone)).date()


# =============================================================================
# Snapshot builders
# =============================================================================


async def _guarded(description: str, fetch: Callable[[], Awaitable[T]]) -> T:
    try:
        return await fetch()
    except LedgerSourceError as e:
        logger.error(f"Aborting pass, {description} failed: {e}")
        raise SnapshotFetchError(f"{description} failed: {e}", cause=e) from e
    except (ValueError, KeyError) as e:
        # Includes pydantic validation and timestamp errors
        logger.error(f"Aborting pass, {description} returned an unusable row: {e}")
        raise SnapshotFetchError(f"{description} returned an unusable row: {e}", cause=e) from e


async def build_voided_snapshot(source: LedgerSourceClient) -> LedgerSnapshot:
    """Every entry sharing a reference number with a Voided Payment row."""

    async def fetch() -> LedgerSnapshot:
        refs = await source.get_voided_reference_numbers()
        rows = await source.get_entries_for_references(refs) if refs else []
        return LedgerSnapshot(entries=tuple(LedgerEntry.from_row(row) for row in rows))

    return await _guarded("voided payment fetch", fetch)


async def build_date_search_snapshot(
    source: LedgerSourceClient,
    indexer: TimezoneDateIndexer,
    target_date: date,
) -> LedgerSnapshot:
    """Voided candidates around ``target_date``.

    The store query is widened by a day on each side; the exact
    per-timezone match happens in :func:`run_date_search`.
    """
    start, end = indexer.search_window(target_date)

    async def fetch() -> LedgerSnapshot:
        rows = await source.get_voided_entries_between(
            start - timedelta(days=1), end + timedelta(days=1)
        )
        return LedgerSnapshot(entries=tuple(LedgerEntry.from_row(row) for row in rows))

    return await _guarded("date search fetch", fetch)


async def build_analytics_snapshot(
    source: LedgerSourceClient,
    directory: CustomerDirectory,
) -> LedgerSnapshot:
    """Open invoices plus directory info for every customer they mention."""

    async def fetch() -> LedgerSnapshot:
        rows = await source.get_open_invoices()
        invoices = tuple(Invoice.from_row(row) for row in rows)
        customers = await directory.lookup(inv.customer_id for inv in invoices)
        return LedgerSnapshot(invoices=invoices, customers=customers)

    return await _guarded("open invoice fetch", fetch)


# =============================================================================
# Date search
# =============================================================================


class DatedPair(BaseModel):
    """A pair found by date search, with its day-boundary flags."""

    model_config = ConfigDict(frozen=True)

    pair: ReconciliationPair
    straddles_utc: bool
    straddles_et: bool

    @computed_field
    @property
    def boundary_sensitive(self) -> bool:
        """Same day under one timezone, different days under the other."""
        return self.straddles_utc != self.straddles_et


class DateSearchSummary(BaseModel):
    total_entries: int
    pair_count: int
    total_original_amount: Decimal
    total_reversal_amount: Decimal
    unbalanced: int
    crossing_midnight: int


class DateSearchResult(BaseModel):
    target_date: date
    timezone: TimezoneName
    entries: List[IndexedEntry]
    pairs: List[DatedPair]
    summary: DateSearchSummary


def run_date_search(
    snapshot: LedgerSnapshot,
    target_date: date,
    tz: TimezoneName,
    indexer: Optional[TimezoneDateIndexer] = None,
    engine: Optional[ReconciliationEngine] = None,
) -> DateSearchResult:
    """Entries voided on ``target_date`` under ``tz``, paired by reference.

    Raises:
        TimestampError: If a candidate entry has no usable timestamp
    """
    indexer = indexer or TimezoneDateIndexer()
    engine = engine or ReconciliationEngine()

    matches = indexer.search(snapshot.entries, target_date, tz)
    pairs = engine.pair_all(item.entry for item in matches)

    dated = []
    for pair in pairs:
        straddles = indexer.straddles_day_boundary(pair.entries)
        dated.append(
            DatedPair(
                pair=pair,
                straddles_utc=straddles[TimezoneName.UTC],
                straddles_et=straddles[TimezoneName.ET],
            )
        )

    summary = DateSearchSummary(
        total_entries=len(matches),
        pair_count=len(pairs),
        total_original_amount=sum((abs(p.original_amount) for p in pairs), Decimal("0")),
        total_reversal_amount=sum((abs(p.reversal_amount) for p in pairs), Decimal("0")),
        unbalanced=sum(1 for p in pairs if not p.is_balanced),
        crossing_midnight=sum(1 for item in matches if item.bucket.crosses_midnight),
    )
    return DateSearchResult(
        target_date=target_date,
        timezone=tz,
        entries=matches,
        pairs=dated,
        summary=summary,
    )


# =============================================================================
# Last config wins
# =============================================================================


class LatestPassRunner:
    """Runs at most one pass per key, newest first.

    Keys are ``(user_id, screen)``. Starting a pass cancels the previous
    in-flight pass for the same key; the cancelled caller receives
    ``PassSupersededError``. Passes never share state, so a cancelled
    pass leaves nothing behind.
    """

    def __init__(self) -> None:
        self._inflight: Dict[Tuple[str, str], asyncio.Task] = {}

    def in_flight(self, key: Tuple[str, str]) -> bool:
        task = self._inflight.get(key)
        return task is not None and not task.done()

    async def run(
        self,
        key: Tuple[str, str],
        pass_factory: Callable[[], Awaitable[T]],
    ) -> T:
        """Run ``pass_factory()`` as the current pass for ``key``.

        Raises:
            PassSupersededError: If a newer pass for ``key`` started first
        """
        pass_logger = bind(__name__, user_id=key[0], screen=key[1])

        previous = self._inflight.get(key)
        if previous is not None and not previous.done():
            pass_logger.info("Superseding in-flight pass")
            previous.cancel()

        task: asyncio.Task = asyncio.ensure_future(pass_factory())
        self._inflight[key] = task
        try:
            return await task
        except asyncio.CancelledError:
            if self._inflight.get(key) is not task:
                pass_logger.info("Pass superseded by a newer request")
                raise PassSupersededError(f"Pass for {key[1]} superseded") from None
            raise
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]


pass_runner = LatestPassRunner()
