"""Read-only client for the synced ERP ledger store.

The ERP sync jobs write invoices, payments and customers into a hosted
Postgres exposed through a PostgREST-style REST interface. This module
provides the LedgerSourceClient class for reading it:
- HTTP client with ``apikey`` / bearer authentication
- Offset pagination that keeps requesting until a short page
- Batched ``in.(...)`` lookups for id lists
- Error handling with exponential backoff retry logic

Ledger rows are never cached; every pass reads fresh data.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

import httpx

from arledger.core.config import settings

logger = logging.getLogger(__name__)

PAYMENTS_TABLE = "acumatica_payments"
INVOICES_TABLE = "acumatica_invoices"
CUSTOMERS_TABLE = "acumatica_customers"
ASSIGNMENTS_TABLE = "customer_assignments"
TICKETS_TABLE = "collection_tickets"

VOIDED_PAYMENT_TYPE = "Voided Payment"
VOIDED_STATUS = "Voided"


# =============================================================================
# Exceptions
# =============================================================================


class LedgerSourceError(Exception):
    """Base exception for ledger store errors."""
    pass


class LedgerSourceConnectionError(LedgerSourceError):
    """Raised when the ledger store cannot be reached or times out."""
    pass


class LedgerSourceAuthenticationError(LedgerSourceError):
    """Raised when the service key is rejected (401/403)."""
    pass


class LedgerSourceQueryError(LedgerSourceError):
    """Raised when the store rejects a query (400/404/422)."""
    pass


class LedgerSourceRateLimitError(LedgerSourceError):
    """Raised when rate limited (429)."""

    def __init__(self, message: str, retry_after: Optional[int] = None):
        super().__init__(message)
        self.retry_after = retry_after


class LedgerSourceServerError(LedgerSourceError):
    """Raised when the store returns a 5xx error."""
    pass


# =============================================================================
# Query helpers
# =============================================================================


def _quote(value: Any) -> str:
    text = str(value)
    if any(ch in text for ch in ',()"\\ '):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def in_filter(values: Iterable[Any]) -> str:
    """PostgREST ``in`` operator value, e.g. ``in.(a,"b c")``."""
    return "in.(" + ",".join(_quote(v) for v in values) + ")"


def _isoformat(value: datetime) -> str:
    return value.isoformat()


# =============================================================================
# Client
# =============================================================================


class LedgerSourceClient:
    """Client for the ledger store REST interface.

    Example:
        ```python
        async with LedgerSourceClient() as source:
            refs = await source.get_voided_reference_numbers()
            rows = await source.get_entries_for_references(refs)
        ```
    """

    MAX_RETRIES = 3
    INITIAL_RETRY_DELAY = 1.0  # seconds
    MAX_RETRY_DELAY = 30.0  # seconds

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        page_size: Optional[int] = None,
        batch_size: Optional[int] = None,
        timeout: Optional[float] = None,
    ):
        """Initialize LedgerSourceClient.

        Args:
            base_url: REST root, e.g. ``https://project.example.co/rest/v1``
            api_key: Service key sent as ``apikey`` and bearer token
            page_size: Rows per page. The store caps pages at 1000.
            batch_size: Ids per ``in.(...)`` lookup. Defaults to 100.
            timeout: Request timeout in seconds
        """
        self.base_url = (base_url or settings.ledger_source_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.ledger_source_key
        self.page_size = page_size or settings.ledger_page_size
        self.batch_size = batch_size or settings.lookup_batch_size
        self.timeout = timeout or settings.ledger_source_timeout

        # HTTP client will be created lazily
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.timeout),
                headers={
                    "apikey": self.api_key,
                    "Authorization": f"Bearer {self.api_key}",
                    "Accept": "application/json",
                },
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release resources."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "LedgerSourceClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # =========================================================================
    # HTTP Request Methods
    # =========================================================================

    def _handle_response_error(self, response: httpx.Response) -> None:
        """Map an error response onto the exception hierarchy.

        Raises:
            LedgerSourceAuthenticationError: For 401/403 responses
            LedgerSourceQueryError: For 400/404/422 responses
            LedgerSourceRateLimitError: For 429 responses
            LedgerSourceServerError: For 5xx responses
            LedgerSourceError: For other error responses
        """
        if response.is_success:
            return

        status = response.status_code

        try:
            error_detail = response.json()
            message = error_detail.get("message") or error_detail.get("detail") or response.text
        except Exception:
            message = response.text or f"HTTP {status}"

        if status in (401, 403):
            raise LedgerSourceAuthenticationError(
                f"Authentication failed: {message}. Check the service key."
            )
        elif status in (400, 404, 422):
            raise LedgerSourceQueryError(f"Query rejected ({status}): {message}")
        elif status == 429:
            retry_after = response.headers.get("Retry-After")
            retry_seconds = int(retry_after) if retry_after and retry_after.isdigit() else None
            raise LedgerSourceRateLimitError(
                f"Rate limited: {message}",
                retry_after=retry_seconds,
            )
        elif status >= 500:
            raise LedgerSourceServerError(f"Server error ({status}): {message}")
        else:
            raise LedgerSourceError(f"API error ({status}): {message}")

    def _backoff(self, attempt: int) -> float:
        return min(self.INITIAL_RETRY_DELAY * (2 ** attempt), self.MAX_RETRY_DELAY)

    async def _request_with_retry(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        max_retries: Optional[int] = None,
    ) -> httpx.Response:
        """Make an HTTP request with exponential backoff retry.

        Client errors are raised immediately. Connection failures,
        timeouts, 5xx responses and rate limits are retried.

        Raises:
            LedgerSourceError: If all retries fail
        """
        max_retries = max_retries if max_retries is not None else self.MAX_RETRIES
        url = f"{self.base_url}/{endpoint.lstrip('/')}"

        client = await self._get_client()
        last_exception: Optional[Exception] = None

        for attempt in range(max_retries + 1):
            try:
                response = await client.request(method=method, url=url, params=params)
                self._handle_response_error(response)
                return response

            except (LedgerSourceAuthenticationError, LedgerSourceQueryError):
                # Don't retry client errors
                raise
            except LedgerSourceRateLimitError as e:
                last_exception = e
                if attempt < max_retries:
                    delay = min(e.retry_after, self.MAX_RETRY_DELAY) if e.retry_after else self._backoff(attempt)
                    logger.warning(
                        f"Rate limited, waiting {delay}s before retry "
                        f"(attempt {attempt + 1}/{max_retries + 1})"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise
            except httpx.TimeoutException as e:
                last_exception = LedgerSourceConnectionError(
                    f"Request to ledger store timed out: {e}"
                )
                if attempt < max_retries:
                    delay = self._backoff(attempt)
                    logger.warning(
                        f"Request timed out, retrying in {delay}s "
                        f"(attempt {attempt + 1}/{max_retries + 1})"
                    )
                    await asyncio.sleep(delay)
                    continue
            except httpx.TransportError as e:
                last_exception = LedgerSourceConnectionError(
                    f"Cannot connect to ledger store at {self.base_url}: {e}"
                )
                if attempt < max_retries:
                    delay = self._backoff(attempt)
                    logger.warning(
                        f"Connection failed, retrying in {delay}s "
                        f"(attempt {attempt + 1}/{max_retries + 1}): {e}"
                    )
                    await asyncio.sleep(delay)
                    continue
            except LedgerSourceServerError as e:
                last_exception = e
                if attempt < max_retries:
                    delay = self._backoff(attempt)
                    logger.warning(
                        f"Server error, retrying in {delay}s "
                        f"(attempt {attempt + 1}/{max_retries + 1}): {e}"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise

        # All retries exhausted
        if last_exception:
            raise last_exception
        raise LedgerSourceError("Request failed after all retries")

    async def _get(self, table: str, params: Optional[dict] = None) -> List[dict]:
        response = await self._request_with_retry("GET", table, params=params)
        data = response.json()
        if not isinstance(data, list):
            raise LedgerSourceError(f"Unexpected response shape from {table}: {type(data).__name__}")
        return data

    # =========================================================================
    # Pagination Helpers
    # =========================================================================

    async def fetch_all_paginated(
        self,
        table: str,
        params: Optional[Dict[str, str]] = None,
        order: str = "id.asc",
    ) -> List[dict]:
        """Fetch every row matching ``params`` from a table.

        Requests pages of ``page_size`` rows with a stable ``order`` and
        stops at the first short page. Any page failing after retries
        raises, and the rows gathered so far are discarded.

        Args:
            table: Table name
            params: PostgREST filters, e.g. ``{"balance": "gt.0"}``
            order: Ordering clause; must end in a unique column

        Returns:
            All matching rows in order
        """
        all_rows: List[dict] = []
        offset = 0

        while True:
            page_params = dict(params or {})
            page_params.update({"order": order, "offset": str(offset), "limit": str(self.page_size)})

            rows = await self._get(table, page_params)
            all_rows.extend(rows)

            if len(rows) < self.page_size:
                break
            offset += self.page_size

        logger.debug(f"Fetched {len(all_rows)} rows from {table} in {offset // self.page_size + 1} pages")
        return all_rows

    async def fetch_in_batches(
        self,
        table: str,
        column: str,
        values: Iterable[Any],
        params: Optional[Dict[str, str]] = None,
        order: Optional[str] = None,
    ) -> List[dict]:
        """Fetch rows whose ``column`` is in ``values``, ``batch_size`` ids at a time.

        Each batch is itself paginated, so a batch matching more than one
        page of rows is still read in full.
        """
        unique = list(dict.fromkeys(v for v in values if v is not None and v != ""))
        rows: List[dict] = []
        for start in range(0, len(unique), self.batch_size):
            batch = unique[start:start + self.batch_size]
            batch_params = dict(params or {})
            batch_params[column] = in_filter(batch)
            rows.extend(
                await self.fetch_all_paginated(table, batch_params, order=order or f"{column}.asc,id.asc")
            )
        return rows

    # =========================================================================
    # Payments
    # =========================================================================

    async def get_voided_reference_numbers(self) -> List[str]:
        """Distinct reference numbers that have a Voided Payment row."""
        rows = await self.fetch_all_paginated(
            PAYMENTS_TABLE,
            {"select": "id,reference_number", "type": f"eq.{VOIDED_PAYMENT_TYPE}"},
        )
        return list(dict.fromkeys(row["reference_number"] for row in rows if row.get("reference_number")))

    async def get_entries_for_references(self, reference_numbers: Iterable[str]) -> List[dict]:
        """Every payment row sharing one of ``reference_numbers``."""
        return await self.fetch_in_batches(
            PAYMENTS_TABLE,
            "reference_number",
            reference_numbers,
            params={"select": "*"},
            order="reference_number.asc,id.asc",
        )

    async def get_voided_entries_between(self, start: datetime, end: datetime) -> List[dict]:
        """Voided or reversal rows with ``start <= application_date < end``."""
        return await self.fetch_all_paginated(
            PAYMENTS_TABLE,
            {
                "select": "*",
                "or": f"(status.eq.{VOIDED_STATUS},type.eq.\"{VOIDED_PAYMENT_TYPE}\")",
                "and": (
                    f"(application_date.gte.{_isoformat(start)},"
                    f"application_date.lt.{_isoformat(end)})"
                ),
            },
            order="application_date.asc,reference_number.asc,id.asc",
        )

    # =========================================================================
    # Invoices and customers
    # =========================================================================

    async def get_open_invoices(self) -> List[dict]:
        """Every invoice line item with a positive balance."""
        return await self.fetch_all_paginated(
            INVOICES_TABLE,
            {
                "select": "id,customer,customer_name,reference_number,balance,date,due_date,status,color_status",
                "balance": "gt.0",
            },
        )

    async def get_customers(self, customer_ids: Iterable[str]) -> List[dict]:
        return await self.fetch_in_batches(
            CUSTOMERS_TABLE,
            "customer_id",
            customer_ids,
            params={"select": "id,customer_id,customer_name,exclude_from_customer_analytics"},
        )

    async def get_assigned_customer_ids(self, customer_ids: Iterable[str]) -> List[str]:
        """Customers with a collector assignment."""
        rows = await self.fetch_in_batches(
            ASSIGNMENTS_TABLE, "customer_id", customer_ids, params={"select": "id,customer_id"}
        )
        return [row["customer_id"] for row in rows]

    async def get_customer_ids_with_active_tickets(self, customer_ids: Iterable[str]) -> List[str]:
        """Customers with a collection ticket that is not closed."""
        rows = await self.fetch_in_batches(
            TICKETS_TABLE,
            "customer_id",
            customer_ids,
            params={"select": "id,customer_id", "status": "neq.closed"},
        )
        return [row["customer_id"] for row in rows]

    async def health_check(self) -> bool:
        """Cheap reachability probe used by the health endpoint."""
        try:
            await self._request_with_retry(
                "GET", PAYMENTS_TABLE, params={"select": "id", "limit": "1"}, max_retries=0
            )
            return True
        except LedgerSourceError as e:
            logger.warning(f"Ledger store health check failed: {e}")
            return False
