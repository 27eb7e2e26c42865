"""Customer analytics pipeline over open invoice line items.

Every run recomputes from the snapshot in this fixed order:

1. line-item filter (date window, invoice amount range)
2. aggregation by customer_id
3. exclusion of customers flagged in the customer directory
4. entity-level predicates combined with AND/OR
5. sort, ties broken by customer_id ascending
6. display cap

Stage 4 only ever sees aggregates built from the stage 1 survivors, so a
balance range applies to the filtered balance and never to the
customer's overall total. Nothing is cached between runs.
"""

import logging
from collections import OrderedDict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict

from arledger.core.config import settings
from arledger.services.filter_config import FilterConfig, SortField, SortOrder
from arledger.services.snapshot import Invoice, LedgerSnapshot

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


# =============================================================================
# Models
# =============================================================================


class CustomerAggregate(BaseModel):
    """Per-customer rollup of the line items that survived stage 1."""

    model_config = ConfigDict(frozen=True)

    customer_id: str
    customer_name: str
    balance: Decimal
    invoice_count: int
    oldest_date: Optional[date] = None
    newest_date: Optional[date] = None
    overdue_count: int = 0
    max_days_overdue: int = 0
    color_statuses: FrozenSet[str] = frozenset()
    has_collector_assigned: bool = False
    has_active_tickets: bool = False


class AnalyticsStats(BaseModel):
    """Headline numbers over all non-excluded customers (stage 3 output)."""

    total_customers: int = 0
    high_balance_customers: int = 0
    total_balance: Decimal = Decimal("0")
    average_balance: Decimal = Decimal("0")


class AggregationResult(BaseModel):
    """Output of one pipeline run.

    Attributes:
        rows: Sorted aggregates truncated to the display cap
        all_rows: The full sorted sequence, for export
        total_matching: Number of aggregates that passed stage 4
        stats: Headline numbers before entity-level filtering
        as_of: Reference date used for relative windows and overdue math
    """

    model_config = ConfigDict(frozen=True)

    rows: Tuple[CustomerAggregate, ...]
    all_rows: Tuple[CustomerAggregate, ...]
    total_matching: int
    stats: AnalyticsStats
    as_of: date

    @property
    def truncated(self) -> bool:
        return len(self.rows) < self.total_matching


# =============================================================================
# Pipeline
# =============================================================================


class AggregationPipeline:
    """Filter, aggregate, filter, sort and cap invoice line items.

    Args:
        display_cap: Maximum rows returned for display. Defaults to
            ``settings.display_cap``.
        high_balance_threshold: Balance above which a customer counts as
            high balance in the stats.
    """

    def __init__(
        self,
        display_cap: Optional[int] = None,
        high_balance_threshold: Optional[Decimal] = None,
    ):
        self.display_cap = display_cap if display_cap is not None else settings.display_cap
        self.high_balance_threshold = (
            high_balance_threshold
            if high_balance_threshold is not None
            else Decimal(settings.high_balance_threshold)
        )

    def run(
        self,
        snapshot: LedgerSnapshot,
        config: FilterConfig,
        as_of: date,
    ) -> AggregationResult:
        """Run all stages against one snapshot.

        Args:
            snapshot: Invoices and directory data for this pass
            config: Filter to apply
            as_of: Today's date in the business timezone

        Returns:
            AggregationResult with capped and uncapped rows

        Raises:
            FilterConfigError: If the config is invalid; no stage runs
        """
        config.ensure_valid()

        line_items = self.filter_line_items(snapshot.invoices, config, as_of)
        aggregates = self.aggregate(line_items, snapshot, as_of)
        included = self.exclude(aggregates, snapshot)
        stats = self.compute_stats(included)

        tree = config.to_predicate_tree()
        matching = [agg for agg in included if tree.evaluate(agg)]
        ordered = self.sort(matching, config.sort_by, config.sort_order)

        logger.debug(
            f"Aggregation pass: {len(snapshot.invoices)} invoices -> "
            f"{len(line_items)} line items -> {len(aggregates)} customers -> "
            f"{len(included)} after exclusion -> {len(matching)} matching"
        )

        return AggregationResult(
            rows=tuple(ordered[: self.display_cap]),
            all_rows=tuple(ordered),
            total_matching=len(ordered),
            stats=stats,
            as_of=as_of,
        )

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    @staticmethod
    def filter_line_items(
        invoices: Tuple[Invoice, ...],
        config: FilterConfig,
        as_of: date,
    ) -> List[Invoice]:
        """Stage 1. Undated invoices fail any bounded date window."""
        date_from, date_to = config.line_item_window(as_of)
        amount = config.invoice_amount

        kept = []
        for invoice in invoices:
            if date_from is not None or date_to is not None:
                if invoice.date is None:
                    continue
                if date_from is not None and invoice.date < date_from:
                    continue
                if date_to is not None and invoice.date > date_to:
                    continue
            if not amount.contains(invoice.balance):
                continue
            kept.append(invoice)
        return kept

    @staticmethod
    def aggregate(
        line_items: List[Invoice],
        snapshot: LedgerSnapshot,
        as_of: date,
    ) -> List[CustomerAggregate]:
        """Stage 2."""
        groups: Dict[str, List[Invoice]] = OrderedDict()
        for invoice in line_items:
            groups.setdefault(invoice.customer_id, []).append(invoice)

        aggregates = []
        for customer_id, items in groups.items():
            info = snapshot.customers.get(customer_id)
            if info is not None:
                name = info.customer_name
            else:
                name = next((i.customer_name for i in items if i.customer_name), "Unknown")

            dates = [i.date for i in items if i.date is not None]
            days_overdue = [max((as_of - i.date).days, 0) for i in items if i.date is not None]

            aggregates.append(
                CustomerAggregate(
                    customer_id=customer_id,
                    customer_name=name,
                    balance=sum((i.balance for i in items), Decimal("0")),
                    invoice_count=len(items),
                    oldest_date=min(dates) if dates else None,
                    newest_date=max(dates) if dates else None,
                    overdue_count=sum(
                        1 for i in items if i.due_date is not None and i.due_date < as_of
                    ),
                    max_days_overdue=max(days_overdue) if days_overdue else 0,
                    color_statuses=frozenset(i.color_status for i in items if i.color_status),
                    has_collector_assigned=bool(info and info.has_collector_assigned),
                    has_active_tickets=bool(info and info.has_active_tickets),
                )
            )
        return aggregates

    @staticmethod
    def exclude(
        aggregates: List[CustomerAggregate],
        snapshot: LedgerSnapshot,
    ) -> List[CustomerAggregate]:
        """Stage 3."""
        return [agg for agg in aggregates if not snapshot.customer(agg.customer_id).excluded]

    @staticmethod
    def sort(
        aggregates: List[CustomerAggregate],
        sort_by: SortField,
        sort_order: SortOrder,
    ) -> List[CustomerAggregate]:
        """Stage 5. Always a total order."""
        if sort_by is SortField.INVOICE_COUNT:
            key = lambda agg: agg.invoice_count  # noqa: E731
        elif sort_by is SortField.CUSTOMER_NAME:
            key = lambda agg: agg.customer_name.casefold()  # noqa: E731
        else:
            key = lambda agg: agg.balance  # noqa: E731

        # customer_id stays ascending on ties in both directions
        ordered = sorted(aggregates, key=lambda agg: agg.customer_id)
        ordered.sort(key=key, reverse=sort_order is SortOrder.DESC)
        return ordered

    def compute_stats(self, aggregates: List[CustomerAggregate]) -> AnalyticsStats:
        total = sum((agg.balance for agg in aggregates), Decimal("0"))
        count = len(aggregates)
        average = (total / count).quantize(CENTS, rounding=ROUND_HALF_UP) if count else Decimal("0")
        return AnalyticsStats(
            total_customers=count,
            high_balance_customers=sum(
                1 for agg in aggregates if agg.balance > self.high_balance_threshold
            ),
            total_balance=total,
            average_balance=average,
        )
