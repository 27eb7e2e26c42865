"""Pairing of original and reversal ledger entries.

When a payment is voided the ERP keeps the original ``Payment`` row and
adds a ``Voided Payment`` row under the same reference number with the
opposite sign. Reviewers need to see, per reference number, whether those
rows really cancel out.

Rules:
- entries are grouped by reference number;
- the net amount is the exact Decimal sum of every entry in the group,
  not just the first two (partial voids produce more than one reversal);
- a group is balanced when ``|net| < 0.01``;
- ``has_original`` and ``has_reversal`` are recorded independently, a
  missing counterpart is a data state and never an error;
- ``reconcile`` reports only groups with more than one distinct type,
  single-type groups are left out rather than zeroed.

Groups with three or more distinct types (e.g. Payment, Voided Payment
and Credit Memo) are summed like any other group and flagged with
``is_ambiguous``; no three-way pairing is attempted.
"""

import logging
from collections import OrderedDict
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, field_validator

from arledger.core.config import settings
from arledger.services.snapshot import EntryType, LedgerEntry

logger = logging.getLogger(__name__)

BALANCE_EPSILON = Decimal(settings.balance_epsilon)

_OLDEST = datetime.min.replace(tzinfo=timezone.utc)


def _business_year(moment: datetime) -> int:
    return moment.astimezone(ZoneInfo(settings.local_timezone)).year


def is_zero(amount: Decimal, epsilon: Decimal = BALANCE_EPSILON) -> bool:
    """Money "is zero" check. Exact equality is never used for amounts."""
    return abs(amount) < epsilon


# =============================================================================
# Models
# =============================================================================


class ReconciliationPair(BaseModel):
    """All ledger entries sharing one reference number, classified."""

    model_config = ConfigDict(frozen=True)

    reference_number: str
    entries: Tuple[LedgerEntry, ...]
    net_amount: Decimal
    is_balanced: bool
    has_original: bool
    has_reversal: bool
    customer_name: str = "Unknown"
    application_date: Optional[datetime] = None
    original_amount: Decimal = Decimal("0")
    reversal_amount: Decimal = Decimal("0")
    distinct_types: Tuple[EntryType, ...] = ()

    @property
    def is_dual_entry(self) -> bool:
        return len(self.distinct_types) > 1

    @property
    def is_ambiguous(self) -> bool:
        """Three or more distinct types; summed but not paired."""
        return len(self.distinct_types) > 2


class BalanceFilter(str, Enum):
    ALL = "all"
    BALANCED = "balanced"
    UNBALANCED = "unbalanced"


class ReconciliationFilter(BaseModel):
    """Review filter applied after classification.

    Attributes:
        search: Case-insensitive substring of reference number or customer
        date_filter: ``all``, ``30days``, ``60days`` or a four-digit year
        balance: Keep all, only balanced or only unbalanced pairs
    """

    model_config = ConfigDict(frozen=True)

    search: Optional[str] = None
    date_filter: str = "all"
    balance: BalanceFilter = BalanceFilter.ALL

    @field_validator("date_filter")
    @classmethod
    def known_date_filter(cls, v: str) -> str:
        v = (v or "all").strip().lower()
        if v in ("all", "30days", "60days"):
            return v
        if len(v) == 4 and v.isdigit():
            return v
        raise ValueError("date_filter must be 'all', '30days', '60days' or a year")

    def matches(self, pair: ReconciliationPair, as_of: datetime) -> bool:
        if self.search:
            needle = self.search.strip().lower()
            if (
                needle not in pair.reference_number.lower()
                and needle not in pair.customer_name.lower()
            ):
                return False

        if self.date_filter != "all":
            if pair.application_date is None:
                return False
            if self.date_filter in ("30days", "60days"):
                days = 30 if self.date_filter == "30days" else 60
                if pair.application_date < as_of - timedelta(days=days):
                    return False
            elif _business_year(pair.application_date) != int(self.date_filter):
                return False

        if self.balance is BalanceFilter.BALANCED and not pair.is_balanced:
            return False
        if self.balance is BalanceFilter.UNBALANCED and pair.is_balanced:
            return False
        return True

    def apply(
        self,
        pairs: Iterable[ReconciliationPair],
        as_of: datetime,
    ) -> List[ReconciliationPair]:
        return [pair for pair in pairs if self.matches(pair, as_of)]


class ReconciliationSummary(BaseModel):
    """Headline counts for a set of pairs."""

    total: int
    balanced: int
    unbalanced: int
    missing_original: int
    missing_reversal: int
    total_reversed_amount: Decimal


# =============================================================================
# Engine
# =============================================================================


class ReconciliationEngine:
    """Groups ledger entries by reference number and classifies each group.

    Args:
        epsilon: Tolerance for the balanced check. Defaults to 0.01.
    """

    def __init__(self, epsilon: Optional[Decimal] = None):
        self.epsilon = epsilon if epsilon is not None else BALANCE_EPSILON

    @staticmethod
    def group(entries: Iterable[LedgerEntry]) -> Dict[str, List[LedgerEntry]]:
        """Group entries by reference number in first-seen order."""
        groups: Dict[str, List[LedgerEntry]] = OrderedDict()
        for entry in entries:
            groups.setdefault(entry.reference_number, []).append(entry)
        return groups

    def classify(
        self,
        reference_number: str,
        entries: Iterable[LedgerEntry],
    ) -> ReconciliationPair:
        """Build the pair for one reference number.

        Entries are ordered by application instant, then type, then row id,
        so the original normally precedes its reversal.
        """
        ordered = sorted(
            entries,
            key=lambda e: (e.application_date or _OLDEST, e.type.value, e.id),
        )

        original_amount = sum(
            (e.amount for e in ordered if not e.type.is_reversal), Decimal("0")
        )
        reversal_amount = sum(
            (e.amount for e in ordered if e.type.is_reversal), Decimal("0")
        )
        net_amount = sum((e.amount for e in ordered), Decimal("0"))

        distinct_types: List[EntryType] = []
        for e in ordered:
            if e.type not in distinct_types:
                distinct_types.append(e.type)

        originals = [e for e in ordered if not e.type.is_reversal]
        anchor = originals[0] if originals else (ordered[0] if ordered else None)
        customer_name = next(
            (e.customer_name for e in ordered if e.customer_name), "Unknown"
        )

        return ReconciliationPair(
            reference_number=reference_number,
            entries=tuple(ordered),
            net_amount=net_amount,
            is_balanced=is_zero(net_amount, self.epsilon),
            has_original=bool(originals),
            has_reversal=any(e.type.is_reversal for e in ordered),
            customer_name=customer_name,
            application_date=anchor.application_date if anchor else None,
            original_amount=original_amount,
            reversal_amount=reversal_amount,
            distinct_types=tuple(distinct_types),
        )

    def pair_all(self, entries: Iterable[LedgerEntry]) -> List[ReconciliationPair]:
        """Classify every reference number, including single-type groups."""
        pairs = [
            self.classify(reference_number, group)
            for reference_number, group in self.group(entries).items()
        ]
        return self._ordered(pairs)

    def reconcile(self, entries: Iterable[LedgerEntry]) -> List[ReconciliationPair]:
        """Classify dual-entry groups only.

        Args:
            entries: Entries restricted to reference numbers that have at
                least one reversal-type row

        Returns:
            Pairs for groups with more than one distinct type, most recent
            first
        """
        entries = list(entries)
        pairs = [pair for pair in self.pair_all(entries) if pair.is_dual_entry]

        ambiguous = sum(1 for pair in pairs if pair.is_ambiguous)
        if ambiguous:
            logger.info(
                f"{ambiguous} reference numbers carry three or more entry types; "
                f"summed without pairing"
            )
        logger.debug(f"Reconciled {len(entries)} entries into {len(pairs)} dual-entry pairs")
        return pairs

    @staticmethod
    def summarize(pairs: Iterable[ReconciliationPair]) -> ReconciliationSummary:
        pairs = list(pairs)
        balanced = sum(1 for p in pairs if p.is_balanced)
        return ReconciliationSummary(
            total=len(pairs),
            balanced=balanced,
            unbalanced=len(pairs) - balanced,
            missing_original=sum(1 for p in pairs if not p.has_original),
            missing_reversal=sum(1 for p in pairs if not p.has_reversal),
            total_reversed_amount=sum(
                (abs(p.original_amount) for p in pairs), Decimal("0")
            ),
        )

    @staticmethod
    def _ordered(pairs: List[ReconciliationPair]) -> List[ReconciliationPair]:
        # Most recent first; reverse sorts stay stable so reference order holds on ties
        pairs.sort(key=lambda p: p.reference_number)
        pairs.sort(key=lambda p: p.application_date or _OLDEST, reverse=True)
        return pairs
