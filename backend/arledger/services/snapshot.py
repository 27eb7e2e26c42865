"""Immutable ledger and invoice snapshot models.

A snapshot is fetched once per pass from the ledger source and handed to
the reconciliation engine or the aggregation pipeline. Nothing in this
module talks to the network; rows arrive as plain dicts from
``LedgerSourceClient`` and are converted here.
"""

from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

# Invoice has a field called "date"; annotate through an alias
DateType = date


# =============================================================================
# Enums
# =============================================================================


class EntryType(str, Enum):
    """Ledger entry document type."""

    PAYMENT = "Payment"
    VOIDED_PAYMENT = "Voided Payment"
    CREDIT_MEMO = "Credit Memo"
    OTHER = "Other"

    @classmethod
    def from_raw(cls, value: Optional[str]) -> "EntryType":
        """Map the ERP's free-text type onto the enum."""
        normalized = (value or "").replace(" ", "").lower()
        return _ENTRY_TYPE_ALIASES.get(normalized, cls.OTHER)

    @property
    def is_reversal(self) -> bool:
        return self is EntryType.VOIDED_PAYMENT


_ENTRY_TYPE_ALIASES = {
    "payment": EntryType.PAYMENT,
    "voidedpayment": EntryType.VOIDED_PAYMENT,
    "voidpayment": EntryType.VOIDED_PAYMENT,
    "creditmemo": EntryType.CREDIT_MEMO,
}


class EntryStatus(str, Enum):
    """Ledger entry document status."""

    OPEN = "Open"
    CLOSED = "Closed"
    VOIDED = "Voided"
    BALANCED = "Balanced"
    ON_HOLD = "On Hold"
    OTHER = "Other"

    @classmethod
    def from_raw(cls, value: Optional[str]) -> "EntryStatus":
        normalized = (value or "").replace(" ", "").lower()
        for member in cls:
            if member.value.replace(" ", "").lower() == normalized:
                return member
        return cls.OTHER


# =============================================================================
# Helpers
# =============================================================================


def to_decimal(value: Any) -> Decimal:
    """Convert a JSON number or numeric string to an exact Decimal.

    Floats go through ``str`` so 0.1 stays 0.1 rather than its binary
    expansion. Missing values count as zero.
    """
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"Not a monetary amount: {value!r}") from e


class TimestampError(ValueError):
    """Raised when a timestamp has no resolvable UTC offset."""
    pass


def parse_timestamp(value: Any) -> datetime:
    """Parse an offset-carrying timestamp.

    Accepts aware ``datetime`` objects and ISO 8601 strings ending in
    ``Z`` or ``+HH:MM``. Anything without an offset is rejected rather
    than silently treated as UTC.

    Raises:
        TimestampError: If the value is empty, malformed or naive
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as e:
            raise TimestampError(f"Malformed timestamp: {value!r}") from e
    else:
        raise TimestampError(f"Missing timestamp: {value!r}")

    if parsed.utcoffset() is None:
        raise TimestampError(f"Timestamp has no UTC offset: {value!r}")
    return parsed


def _to_date(value: Any) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


# =============================================================================
# Models
# =============================================================================


class LedgerEntry(BaseModel):
    """One payment-related ledger row (payment, reversal, credit memo)."""

    model_config = ConfigDict(frozen=True)

    id: str = ""
    reference_number: str
    type: EntryType
    status: EntryStatus = EntryStatus.OTHER
    amount: Decimal
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    application_date: Optional[datetime] = None

    @field_validator("application_date")
    @classmethod
    def must_carry_offset(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.utcoffset() is None:
            raise ValueError("application_date must include a UTC offset")
        return v

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "LedgerEntry":
        """Build an entry from an ``acumatica_payments`` row."""
        raw_date = row.get("application_date")
        return cls(
            id=str(row.get("id") or ""),
            reference_number=str(row.get("reference_number") or ""),
            type=EntryType.from_raw(row.get("type")),
            status=EntryStatus.from_raw(row.get("status")),
            amount=to_decimal(row.get("payment_amount", row.get("amount"))),
            customer_id=row.get("customer_id"),
            customer_name=row.get("customer_name"),
            application_date=parse_timestamp(raw_date) if raw_date else None,
        )


class Invoice(BaseModel):
    """One open invoice line item."""

    model_config = ConfigDict(frozen=True)

    customer_id: str
    reference_number: str
    balance: Decimal = Field(ge=0)
    date: Optional[DateType] = None
    due_date: Optional[DateType] = None
    status: Optional[str] = None
    customer_name: Optional[str] = None
    color_status: Optional[str] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Invoice":
        """Build an invoice from an ``acumatica_invoices`` row."""
        color = row.get("color_status")
        return cls(
            customer_id=str(row.get("customer") or row.get("customer_id") or ""),
            reference_number=str(row.get("reference_number") or ""),
            balance=to_decimal(row.get("balance")),
            date=_to_date(row.get("date")),
            due_date=_to_date(row.get("due_date")),
            status=row.get("status"),
            customer_name=row.get("customer_name"),
            color_status=color.lower() if isinstance(color, str) else None,
        )


class CustomerInfo(BaseModel):
    """Directory attributes for one customer."""

    model_config = ConfigDict(frozen=True)

    customer_id: str
    customer_name: str = "Unknown"
    excluded: bool = False
    has_collector_assigned: bool = False
    has_active_tickets: bool = False


class LedgerSnapshot(BaseModel):
    """Point-in-time ledger data for a single pass.

    Built once per pass by ``arledger.services.passes``
    and discarded after the derived results are produced.
    """

    model_config = ConfigDict(frozen=True)

    entries: Tuple[LedgerEntry, ...] = ()
    invoices: Tuple[Invoice, ...] = ()
    customers: Dict[str, CustomerInfo] = Field(default_factory=dict)
    fetched_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    def customer(self, customer_id: str) -> CustomerInfo:
        """Directory info for a customer, defaulting to an unknown entry."""
        return self.customers.get(customer_id) or CustomerInfo(customer_id=customer_id)
