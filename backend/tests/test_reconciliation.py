"""Tests for the reconciliation engine and review filters."""

from datetime import datetime, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError

from arledger.services.reconciliation import (
    BalanceFilter,
    ReconciliationEngine,
    ReconciliationFilter,
    is_zero,
)
from arledger.services.snapshot import EntryStatus, EntryType, LedgerEntry


def _entry(
    ref: str,
    type: EntryType,
    amount: str,
    when: str = "2025-06-01T15:00:00+00:00",
    status: EntryStatus = EntryStatus.CLOSED,
    customer_name: str = "Acme Corp",
    id: str = "",
) -> LedgerEntry:
    return LedgerEntry(
        id=id or f"{ref}-{type.value}-{amount}",
        reference_number=ref,
        type=type,
        status=status,
        amount=Decimal(amount),
        customer_name=customer_name,
        application_date=datetime.fromisoformat(when),
    )


@pytest.fixture
def engine() -> ReconciliationEngine:
    return ReconciliationEngine()


class TestIsZero:
    def test_sub_cent_is_zero(self):
        assert is_zero(Decimal("0.009"))
        assert is_zero(Decimal("-0.009"))

    def test_one_cent_is_not_zero(self):
        assert not is_zero(Decimal("0.01"))
        assert not is_zero(Decimal("-0.01"))


class TestClassify:
    def test_voided_payment_balances(self, engine):
        """A payment and its full reversal net to zero."""
        pair = engine.classify(
            "PMT100",
            [
                _entry("PMT100", EntryType.PAYMENT, "500.00", status=EntryStatus.VOIDED),
                _entry("PMT100", EntryType.VOIDED_PAYMENT, "-500.00", when="2025-06-02T15:00:00+00:00"),
            ],
        )
        assert pair.net_amount == Decimal("0.00")
        assert pair.is_balanced
        assert pair.has_original
        assert pair.has_reversal
        assert pair.original_amount == Decimal("500.00")
        assert pair.reversal_amount == Decimal("-500.00")

    def test_missing_reversal(self, engine):
        pair = engine.classify(
            "PMT101",
            [_entry("PMT101", EntryType.PAYMENT, "250.00", status=EntryStatus.VOIDED)],
        )
        assert pair.net_amount == Decimal("250.00")
        assert not pair.is_balanced
        assert pair.has_original
        assert not pair.has_reversal

    def test_missing_original(self, engine):
        pair = engine.classify("PMT102", [_entry("PMT102", EntryType.VOIDED_PAYMENT, "-75.00")])
        assert not pair.has_original
        assert pair.has_reversal
        assert pair.application_date == datetime(2025, 6, 1, 15, tzinfo=timezone.utc)

    def test_partial_voids_sum_every_entry(self, engine):
        pair = engine.classify(
            "PMT103",
            [
                _entry("PMT103", EntryType.PAYMENT, "300.00"),
                _entry("PMT103", EntryType.VOIDED_PAYMENT, "-100.00", id="v1"),
                _entry("PMT103", EntryType.VOIDED_PAYMENT, "-200.00", id="v2"),
            ],
        )
        assert pair.net_amount == Decimal("0.00")
        assert pair.is_balanced
        assert len(pair.entries) == 3

    def test_one_cent_difference_is_unbalanced(self, engine):
        pair = engine.classify(
            "PMT104",
            [
                _entry("PMT104", EntryType.PAYMENT, "100.00"),
                _entry("PMT104", EntryType.VOIDED_PAYMENT, "-99.99"),
            ],
        )
        assert pair.net_amount == Decimal("0.01")
        assert not pair.is_balanced

    def test_float_drift_does_not_unbalance(self, engine):
        pair = engine.classify(
            "PMT105",
            [
                _entry("PMT105", EntryType.PAYMENT, "0.1", id="a"),
                _entry("PMT105", EntryType.PAYMENT, "0.2", id="b"),
                _entry("PMT105", EntryType.VOIDED_PAYMENT, "-0.3"),
            ],
        )
        assert pair.net_amount == Decimal("0.0")
        assert pair.is_balanced

    def test_three_types_are_summed_and_flagged(self, engine):
        pair = engine.classify(
            "PMT106",
            [
                _entry("PMT106", EntryType.PAYMENT, "100.00"),
                _entry("PMT106", EntryType.VOIDED_PAYMENT, "-100.00"),
                _entry("PMT106", EntryType.CREDIT_MEMO, "-20.00"),
            ],
        )
        assert pair.net_amount == Decimal("-20.00")
        assert pair.is_dual_entry
        assert pair.is_ambiguous

    def test_anchor_is_earliest_original(self, engine):
        pair = engine.classify(
            "PMT107",
            [
                _entry("PMT107", EntryType.VOIDED_PAYMENT, "-10", when="2025-06-01T10:00:00+00:00"),
                _entry("PMT107", EntryType.PAYMENT, "10", when="2025-06-02T10:00:00+00:00"),
            ],
        )
        assert pair.application_date == datetime(2025, 6, 2, 10, tzinfo=timezone.utc)
        assert [e.type for e in pair.entries] == [EntryType.VOIDED_PAYMENT, EntryType.PAYMENT]

    def test_customer_name_defaults_to_unknown(self, engine):
        pair = engine.classify("PMT108", [_entry("PMT108", EntryType.PAYMENT, "1", customer_name="")])
        assert pair.customer_name == "Unknown"


class TestReconcile:
    def test_single_type_groups_are_excluded(self, engine):
        entries = [
            _entry("PMT100", EntryType.PAYMENT, "500.00"),
            _entry("PMT100", EntryType.VOIDED_PAYMENT, "-500.00"),
            _entry("PMT101", EntryType.PAYMENT, "250.00"),
        ]
        pairs = engine.reconcile(entries)
        assert [p.reference_number for p in pairs] == ["PMT100"]

    def test_pair_all_keeps_single_type_groups(self, engine):
        entries = [
            _entry("PMT100", EntryType.PAYMENT, "500.00"),
            _entry("PMT101", EntryType.VOIDED_PAYMENT, "-250.00"),
        ]
        assert {p.reference_number for p in engine.pair_all(entries)} == {"PMT100", "PMT101"}

    def test_most_recent_first_then_reference(self, engine):
        entries = []
        for ref, when in [
            ("B", "2025-06-01T10:00:00+00:00"),
            ("A", "2025-06-01T10:00:00+00:00"),
            ("C", "2025-07-01T10:00:00+00:00"),
        ]:
            entries.append(_entry(ref, EntryType.PAYMENT, "5", when=when))
            entries.append(_entry(ref, EntryType.VOIDED_PAYMENT, "-5", when=when))

        assert [p.reference_number for p in engine.reconcile(entries)] == ["C", "A", "B"]

    def test_empty_input(self, engine):
        assert engine.reconcile([]) == []


class TestSummarize:
    def test_counts(self, engine):
        pairs = engine.pair_all(
            [
                _entry("PMT100", EntryType.PAYMENT, "500.00"),
                _entry("PMT100", EntryType.VOIDED_PAYMENT, "-500.00"),
                _entry("PMT101", EntryType.PAYMENT, "250.00"),
                _entry("PMT102", EntryType.VOIDED_PAYMENT, "-75.00"),
            ]
        )
        summary = engine.summarize(pairs)
        assert summary.total == 3
        assert summary.balanced == 1
        assert summary.unbalanced == 2
        assert summary.missing_original == 1
        assert summary.missing_reversal == 1
        assert summary.total_reversed_amount == Decimal("750.00")


class TestReconciliationFilter:
    @pytest.fixture
    def pairs(self, engine):
        return engine.reconcile(
            [
                _entry("PMT100", EntryType.PAYMENT, "500.00", when="2025-06-01T10:00:00+00:00", customer_name="Acme Corp"),
                _entry("PMT100", EntryType.VOIDED_PAYMENT, "-500.00", when="2025-06-01T11:00:00+00:00"),
                _entry("PMT200", EntryType.PAYMENT, "90.00", when="2024-02-01T10:00:00+00:00", customer_name="Globex"),
                _entry("PMT200", EntryType.VOIDED_PAYMENT, "-80.00", when="2024-02-01T11:00:00+00:00"),
            ]
        )

    def test_search_matches_reference_or_customer(self, pairs):
        as_of = datetime(2025, 6, 15, tzinfo=timezone.utc)
        by_ref = ReconciliationFilter(search="pmt2").apply(pairs, as_of)
        by_name = ReconciliationFilter(search="ACME").apply(pairs, as_of)
        assert [p.reference_number for p in by_ref] == ["PMT200"]
        assert [p.reference_number for p in by_name] == ["PMT100"]

    def test_relative_window(self, pairs):
        as_of = datetime(2025, 6, 15, tzinfo=timezone.utc)
        recent = ReconciliationFilter(date_filter="30days").apply(pairs, as_of)
        assert [p.reference_number for p in recent] == ["PMT100"]

    def test_year(self, pairs):
        as_of = datetime(2025, 6, 15, tzinfo=timezone.utc)
        result = ReconciliationFilter(date_filter="2024").apply(pairs, as_of)
        assert [p.reference_number for p in result] == ["PMT200"]

    def test_year_uses_eastern_business_day(self, engine):
        # 02:00 UTC on New Year's Day is still 2024-12-31 in New York
        pairs = engine.reconcile(
            [
                _entry("PMT300", EntryType.PAYMENT, "40.00", when="2025-01-01T02:00:00+00:00"),
                _entry("PMT300", EntryType.VOIDED_PAYMENT, "-40.00", when="2025-01-01T02:30:00+00:00"),
            ]
        )
        as_of = datetime(2025, 6, 15, tzinfo=timezone.utc)
        assert len(ReconciliationFilter(date_filter="2024").apply(pairs, as_of)) == 1
        assert ReconciliationFilter(date_filter="2025").apply(pairs, as_of) == []

    def test_balance(self, pairs):
        as_of = datetime(2025, 6, 15, tzinfo=timezone.utc)
        unbalanced = ReconciliationFilter(balance=BalanceFilter.UNBALANCED).apply(pairs, as_of)
        balanced = ReconciliationFilter(balance=BalanceFilter.BALANCED).apply(pairs, as_of)
        assert [p.reference_number for p in unbalanced] == ["PMT200"]
        assert [p.reference_number for p in balanced] == ["PMT100"]

    def test_unknown_date_filter_rejected(self):
        with pytest.raises(ValidationError):
            ReconciliationFilter(date_filter="last week")
