"""Pytest configuration and fixtures for tests.

Provides an in-memory SQLite database for the saved filter store, an
in-process stand-in for the ledger store, and bearer tokens signed the
way the external auth provider signs them.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, AsyncGenerator, Callable, Dict, Iterable, List, Optional

# Set test environment variables BEFORE any app imports
os.environ["JWT_SECRET"] = "test-secret-key-for-testing-only"
os.environ["CACHE_ENABLED"] = "false"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///" + os.path.join(
    tempfile.gettempdir(), "arledger_test.db"
)
os.environ["LEDGER_SOURCE_URL"] = "http://ledger.test/rest/v1"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from arledger.core.config import settings
from arledger.models import BaseModel, SavedFilter  # noqa: F401
from arledger.services.customer_directory import CustomerDirectory
from arledger.services.passes import LatestPassRunner
from arledger.services.snapshot import parse_timestamp


# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Create a test database engine with in-memory SQLite."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(BaseModel.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(BaseModel.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(test_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Database session with a clean schema for each test."""
    async_session_factory = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )

    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# =============================================================================
# Ledger store stand-in
# =============================================================================


class FakeLedgerSource:
    """In-memory implementation of the LedgerSourceClient read methods.

    Rows use the same shapes the REST interface returns. Set ``fail_on``
    to a method name and ``error`` to an exception to simulate a store
    failure part way through a pass.
    """

    base_url = "http://ledger.test/rest/v1"

    def __init__(
        self,
        payments: Optional[List[Dict[str, Any]]] = None,
        invoices: Optional[List[Dict[str, Any]]] = None,
        customers: Optional[List[Dict[str, Any]]] = None,
        assigned: Iterable[str] = (),
        ticketed: Iterable[str] = (),
    ):
        self.payments = payments or []
        self.invoices = invoices or []
        self.customers = customers or []
        self.assigned = set(assigned)
        self.ticketed = set(ticketed)
        self.fail_on: Optional[str] = None
        self.error: Optional[Exception] = None
        self.calls: List[str] = []

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_on == name and self.error is not None:
            raise self.error

    async def get_voided_reference_numbers(self) -> List[str]:
        self._record("get_voided_reference_numbers")
        refs = [p["reference_number"] for p in self.payments if p.get("type") == "Voided Payment"]
        return list(dict.fromkeys(refs))

    async def get_entries_for_references(self, refs: Iterable[str]) -> List[Dict[str, Any]]:
        self._record("get_entries_for_references")
        wanted = set(refs)
        return [p for p in self.payments if p["reference_number"] in wanted]

    async def get_voided_entries_between(self, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        self._record("get_voided_entries_between")
        return [
            p for p in self.payments
            if (p.get("status") == "Voided" or p.get("type") == "Voided Payment")
            and start <= parse_timestamp(p["application_date"]) < end
        ]

    async def get_open_invoices(self) -> List[Dict[str, Any]]:
        self._record("get_open_invoices")
        return [i for i in self.invoices if Decimal(str(i["balance"])) > 0]

    async def get_customers(self, ids: Iterable[str]) -> List[Dict[str, Any]]:
        self._record("get_customers")
        wanted = set(ids)
        return [c for c in self.customers if c["customer_id"] in wanted]

    async def get_assigned_customer_ids(self, ids: Iterable[str]) -> List[str]:
        self._record("get_assigned_customer_ids")
        return [cid for cid in ids if cid in self.assigned]

    async def get_customer_ids_with_active_tickets(self, ids: Iterable[str]) -> List[str]:
        self._record("get_customer_ids_with_active_tickets")
        return [cid for cid in ids if cid in self.ticketed]

    async def health_check(self) -> bool:
        return self.fail_on != "health_check"

    async def close(self) -> None:
        pass


def payment_row(
    reference_number: str,
    type: str,
    amount: str,
    application_date: str = "2025-06-01T15:00:00+00:00",
    status: str = "Closed",
    customer_id: str = "C1",
    customer_name: str = "Acme Corp",
    id: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "id": id or f"{reference_number}-{type}-{application_date}",
        "reference_number": reference_number,
        "type": type,
        "status": status,
        "payment_amount": amount,
        "customer_id": customer_id,
        "customer_name": customer_name,
        "application_date": application_date,
    }


def invoice_row(
    customer: str,
    reference_number: str,
    balance: Any,
    date: str = "2025-06-01",
    due_date: Optional[str] = None,
    color_status: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "customer": customer,
        "reference_number": reference_number,
        "balance": balance,
        "date": date,
        "due_date": due_date,
        "status": "Open",
        "color_status": color_status,
    }


@pytest.fixture
def fake_source() -> FakeLedgerSource:
    return FakeLedgerSource()


@pytest.fixture
def make_payment() -> Callable[..., Dict[str, Any]]:
    return payment_row


@pytest.fixture
def make_invoice() -> Callable[..., Dict[str, Any]]:
    return invoice_row


# =============================================================================
# Auth
# =============================================================================


def make_token(
    user_id: str = "user-1",
    expires_in: timedelta = timedelta(hours=1),
    secret: Optional[str] = None,
    audience: str = "authenticated",
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "aud": audience,
        "email": f"{user_id}@example.com",
        "role": "authenticated",
        "iat": int(now.timestamp()),
        "exp": int((now + expires_in).timestamp()),
    }
    return jwt.encode(payload, secret or settings.jwt_secret, algorithm=settings.jwt_algorithm)


@pytest.fixture
def token_factory() -> Callable[..., str]:
    return make_token


@pytest.fixture
def auth_headers() -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token()}"}


# =============================================================================
# API client
# =============================================================================


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    fake_source: FakeLedgerSource,
) -> AsyncGenerator[AsyncClient, None]:
    """Async test client with the database and ledger store overridden."""
    from arledger.api.deps import (
        get_customer_directory,
        get_ledger_source,
        get_pass_runner,
    )
    from arledger.core.database import get_db
    from arledger.main import app

    async def override_db():
        yield db_session

    async def override_source():
        yield fake_source

    runner = LatestPassRunner()

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_ledger_source] = override_source
    app.dependency_overrides[get_customer_directory] = lambda: CustomerDirectory(fake_source)
    app.dependency_overrides[get_pass_runner] = lambda: runner

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
