"""CSV export of customer analytics results."""

import csv
import io
from datetime import date
from typing import Iterable, List

from arledger.services.aggregation import CustomerAggregate

EXPORT_COLUMNS = [
    "Rank",
    "Customer ID",
    "Customer Name",
    "Open Invoices",
    "Outstanding Balance",
    "Oldest Invoice Date",
    "Newest Invoice Date",
]


def export_filename(as_of: date) -> str:
    return f"customer_analytics_{as_of.isoformat()}.csv"


def export_rows(aggregates: Iterable[CustomerAggregate]) -> List[List[str]]:
    """One row per aggregate, ranked in the order given."""
    rows = []
    for rank, agg in enumerate(aggregates, start=1):
        rows.append([
            str(rank),
            agg.customer_id,
            agg.customer_name,
            str(agg.invoice_count),
            f"{agg.balance:.2f}",
            agg.oldest_date.isoformat() if agg.oldest_date else "N/A",
            agg.newest_date.isoformat() if agg.newest_date else "N/A",
        ])
    return rows


def render_csv(aggregates: Iterable[CustomerAggregate]) -> str:
    """Render the full ordered sequence, header first."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_COLUMNS)
    writer.writerows(export_rows(aggregates))
    return buffer.getvalue()
