"""Customer analytics filter definitions.

A ``FilterConfig`` is the immutable description of one analytics query:
line-item window, per-customer numeric ranges, tags, flags, the AND/OR
combinator and the sort. The same validation runs when a filter is
saved, updated or executed, and a failure always names the offending
field. Out-of-range values and unknown keys are rejected, never clamped
or dropped. Infinity only opens the side it points to.

Saved filters written by the previous dashboard used camelCase keys,
either nested (``dateRange.relativeDays``) or flat (``minBalance``,
``dateFrom``, ``logicOperator``). Both shapes are accepted.
"""

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, StrictInt, ValidationError, model_validator

logger = logging.getLogger(__name__)


# =============================================================================
# Enums
# =============================================================================


class Combinator(str, Enum):
    AND = "AND"
    OR = "OR"


class SortField(str, Enum):
    BALANCE = "balance"
    INVOICE_COUNT = "invoice_count"
    CUSTOMER_NAME = "customer_name"


class SortOrder(str, Enum):
    ASC = "asc"
    DESC = "desc"


class DateRangeType(str, Enum):
    NONE = "none"
    RELATIVE = "relative"
    ABSOLUTE = "absolute"


# =============================================================================
# Exceptions
# =============================================================================


class FilterConfigError(ValueError):
    """Raised when a filter definition is invalid.

    Attributes:
        field: Dotted path of the offending predicate, e.g. ``balance``
            or ``date_range.relative_days``
        message: What is wrong with it
    """

    def __init__(self, field: str, message: str):
        self.field = field
        self.message = message
        super().__init__(f"{field}: {message}")


# =============================================================================
# Config models
# =============================================================================


_POSITIVE_INFINITY = {"infinity", "inf", "+infinity", "+inf"}
_NEGATIVE_INFINITY = {"-infinity", "-inf"}


def _infinity_sign(value: Any) -> Optional[int]:
    """1 or -1 for an infinite bound, 0 for a blank one, None otherwise."""
    if isinstance(value, float) and value in (float("inf"), float("-inf")):
        return 1 if value > 0 else -1
    if isinstance(value, str):
        text = value.strip().lower()
        if not text:
            return 0
        if text in _POSITIVE_INFINITY:
            return 1
        if text in _NEGATIVE_INFINITY:
            return -1
    return None


class NumericRange(BaseModel):
    """Inclusive ``[min, max]`` range; a missing bound is open."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    min: Optional[Decimal] = None
    max: Optional[Decimal] = None

    @model_validator(mode="before")
    @classmethod
    def _open_bounds(cls, data: Any) -> Any:
        # The old dashboard stored "no upper bound" as Infinity
        if isinstance(data, dict):
            data = dict(data)
            for key, open_side in (("min", -1), ("max", 1)):
                sign = _infinity_sign(data.get(key))
                if sign is None:
                    continue
                if sign and sign != open_side:
                    raise ValueError(f"{key} cannot be {data[key]!r}")
                data[key] = None
        return data

    @property
    def is_active(self) -> bool:
        return self.min is not None or self.max is not None

    def contains(self, value: Union[int, Decimal]) -> bool:
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value > self.max:
            return False
        return True


class DateRange(BaseModel):
    """Line-item date window."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    type: DateRangeType = DateRangeType.NONE
    relative_days: Optional[StrictInt] = Field(default=None, alias="relativeDays")
    from_date: Optional[date] = Field(default=None, alias="fromDate")
    to_date: Optional[date] = Field(default=None, alias="toDate")


class FilterConfig(BaseModel):
    """Immutable analytics filter.

    Use :meth:`parse` for untrusted input; it converts type errors and
    rule violations alike into :class:`FilterConfigError`.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    # Stage 1: line items
    date_range: DateRange = Field(default_factory=DateRange, alias="dateRange")
    invoice_amount: NumericRange = Field(default_factory=NumericRange, alias="invoiceAmount")

    # Stage 4: customer aggregates
    balance: NumericRange = Field(default_factory=NumericRange)
    invoice_count: NumericRange = Field(default_factory=NumericRange, alias="invoiceCount")
    overdue_count: NumericRange = Field(default_factory=NumericRange, alias="overdueCount")
    days_overdue: NumericRange = Field(default_factory=NumericRange, alias="daysOverdue")
    color_statuses: FrozenSet[str] = Field(default_factory=frozenset, alias="colorStatus")
    has_collector_assigned: Optional[bool] = Field(default=None, alias="hasCollectorAssigned")
    has_active_tickets: Optional[bool] = Field(default=None, alias="hasActiveTickets")
    combinator: Combinator = Field(default=Combinator.AND, alias="logicOperator")

    # Stage 5
    sort_by: SortField = Field(default=SortField.BALANCE, alias="sortBy")
    sort_order: SortOrder = Field(default=SortOrder.DESC, alias="sortOrder")

    @model_validator(mode="before")
    @classmethod
    def _lift_flat_keys(cls, data: Any) -> Any:
        """Fold the flat camelCase keys of older saved filters into ranges."""
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for target, low, high in _FLAT_RANGE_KEYS:
            if low in data or high in data:
                nested = dict(data.get(target) or {})
                if low in data:
                    nested["min"] = data.pop(low)
                if high in data:
                    nested["max"] = data.pop(high)
                data[target] = nested

        if "dateFrom" in data or "dateTo" in data:
            date_from = data.pop("dateFrom", None) or None
            date_to = data.pop("dateTo", None) or None
            if date_from or date_to:
                data["dateRange"] = {
                    "type": DateRangeType.ABSOLUTE.value,
                    "fromDate": date_from,
                    "toDate": date_to,
                }

        if "combinator" not in data and "logic" in data:
            data["combinator"] = data.pop("logic")
        if isinstance(data.get("colorStatus"), str):
            data["colorStatus"] = [data["colorStatus"]]
        return data

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    @classmethod
    def parse(cls, data: Dict[str, Any]) -> "FilterConfig":
        """Build and validate a config from JSON-like input.

        Raises:
            FilterConfigError: On the first invalid field
        """
        try:
            config = cls.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            raise FilterConfigError(_field_path(first.get("loc", ())), first.get("msg", "invalid")) from e
        config.ensure_valid()
        return config

    def ensure_valid(self) -> "FilterConfig":
        """Check the cross-field rules.

        Raises:
            FilterConfigError: Naming the offending predicate
        """
        window = self.date_range
        if window.type is DateRangeType.RELATIVE:
            if window.relative_days is None or window.relative_days <= 0:
                raise FilterConfigError(
                    "date_range.relative_days",
                    "relative date range requires a positive number of days",
                )
        elif window.type is DateRangeType.ABSOLUTE:
            if window.from_date and window.to_date and window.from_date > window.to_date:
                raise FilterConfigError(
                    "date_range",
                    f"from_date {window.from_date} is after to_date {window.to_date}",
                )

        for name in _RANGE_FIELDS:
            rng: NumericRange = getattr(self, name)
            if rng.min is not None and rng.max is not None and rng.min > rng.max:
                raise FilterConfigError(name, f"min {rng.min} is greater than max {rng.max}")

        return self

    # -------------------------------------------------------------------------
    # Translation
    # -------------------------------------------------------------------------

    def line_item_window(self, as_of: date) -> Tuple[Optional[date], Optional[date]]:
        """Resolve the stage-1 date window.

        Relative windows cover the last ``relative_days`` days up to and
        including ``as_of``.
        """
        window = self.date_range
        if window.type is DateRangeType.RELATIVE:
            return as_of - timedelta(days=window.relative_days), as_of
        if window.type is DateRangeType.ABSOLUTE:
            return window.from_date, window.to_date
        return None, None

    def to_predicate_tree(self) -> "PredicateGroup":
        """Translate the entity-level part into one predicate group.

        Only constrained fields produce predicates, always in the same
        order. An empty group accepts every aggregate.
        """
        predicates: List[Predicate] = []
        for name, attribute in _AGGREGATE_RANGES:
            rng: NumericRange = getattr(self, name)
            if rng.is_active:
                predicates.append(RangePredicate(attribute, rng.min, rng.max))
        if self.color_statuses:
            predicates.append(
                TagPredicate("color_statuses", frozenset(t.lower() for t in self.color_statuses))
            )
        if self.has_collector_assigned is not None:
            predicates.append(FlagPredicate("has_collector_assigned", self.has_collector_assigned))
        if self.has_active_tickets is not None:
            predicates.append(FlagPredicate("has_active_tickets", self.has_active_tickets))
        return PredicateGroup(self.combinator, tuple(predicates))

    def to_wire(self) -> Dict[str, Any]:
        """JSON form with camelCase keys, as stored and returned by the API."""
        return self.model_dump(mode="json", by_alias=True)


_FLAT_RANGE_KEYS = (
    ("balance", "minBalance", "maxBalance"),
    ("invoiceCount", "minInvoiceCount", "maxInvoiceCount"),
    ("invoiceCount", "minCount", "maxCount"),
    ("invoiceCount", "minInvoices", "maxInvoices"),
    ("invoiceAmount", "minInvoiceAmount", "maxInvoiceAmount"),
    ("overdueCount", "minOverdueCount", "maxOverdueCount"),
    ("daysOverdue", "minDaysOverdue", "maxDaysOverdue"),
)

_RANGE_FIELDS = ("invoice_amount", "balance", "invoice_count", "overdue_count", "days_overdue")

# (config field, CustomerAggregate attribute)
_AGGREGATE_RANGES = (
    ("balance", "balance"),
    ("invoice_count", "invoice_count"),
    ("overdue_count", "overdue_count"),
    ("days_overdue", "max_days_overdue"),
)


def _alias_map() -> Dict[str, str]:
    mapping: Dict[str, str] = {}
    for model in (FilterConfig, DateRange, NumericRange):
        for name, info in model.model_fields.items():
            if info.alias:
                mapping[info.alias] = name
    return mapping


_ALIASES = _alias_map()


def _field_path(loc: Tuple[Any, ...]) -> str:
    parts = [_ALIASES.get(part, part) for part in loc if isinstance(part, str)]
    return ".".join(parts) or "filter"


# =============================================================================
# Predicate tree
# =============================================================================


@dataclass(frozen=True)
class RangePredicate:
    """Numeric attribute within an inclusive range."""

    attribute: str
    min: Optional[Decimal] = None
    max: Optional[Decimal] = None

    def evaluate(self, aggregate: Any) -> bool:
        value = getattr(aggregate, self.attribute)
        if self.min is not None and value < self.min:
            return False
        if self.max is not None and value > self.max:
            return False
        return True


@dataclass(frozen=True)
class TagPredicate:
    """At least one of ``tags`` present on the aggregate."""

    attribute: str
    tags: FrozenSet[str]

    def evaluate(self, aggregate: Any) -> bool:
        return bool(set(getattr(aggregate, self.attribute)) & self.tags)


@dataclass(frozen=True)
class FlagPredicate:
    attribute: str
    expected: bool

    def evaluate(self, aggregate: Any) -> bool:
        return bool(getattr(aggregate, self.attribute)) is self.expected


Predicate = Union[RangePredicate, TagPredicate, FlagPredicate]


@dataclass(frozen=True)
class PredicateGroup:
    """Predicates joined by one combinator."""

    combinator: Combinator
    predicates: Tuple[Predicate, ...] = ()

    def evaluate(self, aggregate: Any) -> bool:
        if not self.predicates:
            return True
        results = (p.evaluate(aggregate) for p in self.predicates)
        if self.combinator is Combinator.OR:
            return any(results)
        return all(results)


# =============================================================================
# Presets
# =============================================================================


class PresetFilter(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    label: str
    config: FilterConfig


PRESET_FILTERS: Tuple[PresetFilter, ...] = (
    PresetFilter(
        key="high_balance",
        label="High Balance (>$10k)",
        config=FilterConfig(balance=NumericRange(min=Decimal("10000"))),
    ),
    PresetFilter(
        key="medium_balance",
        label="Medium Balance ($5k-$10k)",
        config=FilterConfig(balance=NumericRange(min=Decimal("5000"), max=Decimal("10000"))),
    ),
    PresetFilter(
        key="balance_and_invoices",
        label="Balance >$500 & >10 Invoices",
        config=FilterConfig(
            balance=NumericRange(min=Decimal("500")),
            invoice_count=NumericRange(min=Decimal("10")),
        ),
    ),
    PresetFilter(
        key="many_invoices",
        label="Many Open Invoices (>20)",
        config=FilterConfig(invoice_count=NumericRange(min=Decimal("20"))),
    ),
    PresetFilter(
        key="critical",
        label="Critical: >$20k OR >30 Invoices",
        config=FilterConfig(
            balance=NumericRange(min=Decimal("20000")),
            invoice_count=NumericRange(min=Decimal("30")),
            combinator=Combinator.OR,
        ),
    ),
)


def get_preset(key: str) -> Optional[PresetFilter]:
    return next((p for p in PRESET_FILTERS if p.key == key), None)
