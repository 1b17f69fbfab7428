"""Test fixtures for expense-compass tests."""

import asyncio
from datetime import date, timedelta
from typing import Callable

import httpx
import pytest

from expense_compass.database import Database
from expense_compass.handlers import HandlerTransport, RecordStoreHandlers
from expense_compass.identity import Identity, StaticIdentityProvider
from expense_compass.remote import RecordStoreClient
from expense_compass.reports import LocalReportStorage
from expense_compass.schemas import Category, Expense, User
from expense_compass.sync_engine import SyncEngine
from expense_compass.tasks import BackgroundTasks


STORE_URL = "http://record-store.test"
USER_ID = "user-1"
EMAIL = "student@example.com"

# A Wednesday; weekday-sensitive tests derive their days from it.
TODAY = date(2026, 10, 14)


class GatedTransport(HandlerTransport):
    """Record store transport that holds every request until ``release()``."""

    def __init__(self, handlers: RecordStoreHandlers):
        super().__init__(handlers)
        self.gate = asyncio.Event()
        self.requests: list[tuple[str, str]] = []

    def release(self) -> None:
        self.gate.set()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append((request.method, request.url.path))
        await self.gate.wait()
        return await super().handle_async_request(request)


@pytest.fixture
def db() -> Database:
    """Local cache: in-memory database with schema."""
    database = Database(":memory:")
    database.init_schema()
    return database


@pytest.fixture
def store_db() -> Database:
    """Record store table: separate in-memory database."""
    database = Database(":memory:")
    database.init_schema()
    return database


@pytest.fixture
def report_storage(tmp_path) -> LocalReportStorage:
    return LocalReportStorage(tmp_path / "reports", ttl_secs=3600)


@pytest.fixture
def handlers(store_db: Database, report_storage: LocalReportStorage) -> RecordStoreHandlers:
    return RecordStoreHandlers(store_db, report_storage)


@pytest.fixture
def store_transport(handlers: RecordStoreHandlers) -> HandlerTransport:
    """In-process transport routing client requests to the handlers."""
    return HandlerTransport(handlers)


@pytest.fixture
def failing_transport() -> httpx.MockTransport:
    """Transport whose every request fails at the network level."""

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return httpx.MockTransport(handler)


@pytest.fixture
def gated_transport(handlers: RecordStoreHandlers) -> GatedTransport:
    return GatedTransport(handlers)


@pytest.fixture
def remote(store_transport: HandlerTransport) -> RecordStoreClient:
    return RecordStoreClient(STORE_URL, transport=store_transport, timeout=5.0)


@pytest.fixture
def identity() -> StaticIdentityProvider:
    return StaticIdentityProvider(Identity(USER_ID, EMAIL))


@pytest.fixture
def engine(db: Database, remote: RecordStoreClient, identity: StaticIdentityProvider) -> SyncEngine:
    """Sync engine wired to the in-process record store."""
    return SyncEngine(db, remote, identity, BackgroundTasks(timeout=5.0))


@pytest.fixture
def make_engine(db: Database, identity: StaticIdentityProvider) -> Callable[..., SyncEngine]:
    """Build a sync engine over a specific transport."""

    def factory(transport: httpx.AsyncBaseTransport, timeout: float = 5.0) -> SyncEngine:
        client = RecordStoreClient(STORE_URL, transport=transport, timeout=timeout)
        return SyncEngine(db, client, identity, BackgroundTasks(timeout=timeout))

    return factory


@pytest.fixture
def make_user() -> Callable[..., User]:
    def factory(user_id: str = USER_ID, email: str = EMAIL, monthly_budget: float = 0) -> User:
        return User(
            user_id=user_id,
            email=email,
            monthly_budget=monthly_budget,
            created_at="2026-09-01T08:00:00+00:00",
        )

    return factory


_counter = iter(range(1, 1_000_000))


def expense(
    amount: float,
    category: Category | str = Category.food,
    day: date | int = TODAY,
    description: str = "",
    user_id: str = USER_ID,
    expense_id: str | None = None,
) -> Expense:
    """Build an expense; an int ``day`` means that many days before TODAY."""
    if isinstance(day, int):
        day = TODAY - timedelta(days=day)
    return Expense(
        expense_id=expense_id or f"exp-{next(_counter)}",
        user_id=user_id,
        amount=amount,
        category=category,
        date=day,
        description=description,
    )


@pytest.fixture
def make_expense() -> Callable[..., Expense]:
    return expense


@pytest.fixture
def seeded_store(store_db: Database, make_user) -> Database:
    """Record store holding the test user and three expenses."""
    store_db.put_user(make_user(monthly_budget=5000))
    store_db.replace_expenses(USER_ID, [
        expense(120, Category.food, 0, "Canteen lunch", expense_id="r-1"),
        expense(450, Category.travel, 2, "Bus pass", expense_id="r-2"),
        expense(80, Category.stationery, 5, "Notebooks", expense_id="r-3"),
    ])
    return store_db
