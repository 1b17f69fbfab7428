"""Integration tests against a running record store.

These tests require the EXPENSE_COMPASS_API_URL environment variable.
Run with: EXPENSE_COMPASS_API_URL=http://localhost:8000 pytest tests/test_integration.py -v
"""

import os
import uuid

import pytest

from expense_compass.database import Database
from expense_compass.identity import Identity, StaticIdentityProvider
from expense_compass.remote import RecordStoreClient
from expense_compass.sync_engine import SyncEngine


# Skip all tests in this module if EXPENSE_COMPASS_API_URL is not set
pytestmark = pytest.mark.skipif(
    os.environ.get("EXPENSE_COMPASS_API_URL") is None,
    reason="EXPENSE_COMPASS_API_URL environment variable not set",
)


@pytest.fixture
def integration_engine() -> SyncEngine:
    """Sync engine for a throwaway user on the real record store."""
    db = Database(":memory:")
    db.init_schema()
    remote = RecordStoreClient(
        os.environ["EXPENSE_COMPASS_API_URL"],
        token=os.environ.get("EXPENSE_COMPASS_TOKEN"),
    )
    user_id = f"it-{uuid.uuid4().hex[:12]}"
    identity = StaticIdentityProvider(Identity(user_id, f"{user_id}@example.com"))
    return SyncEngine(db, remote, identity)


class TestIntegrationSync:
    """Round trips through the real record store."""

    @pytest.mark.asyncio
    async def test_profile_and_budget(self, integration_engine: SyncEngine):
        """Profile creation and budget updates reach the store."""
        user = await integration_engine.load_profile()
        await integration_engine.update_budget(2500)
        await integration_engine.tasks.wait_idle()

        stored = await integration_engine.remote.get_user(user.user_id)
        assert stored.monthly_budget == 2500
        assert integration_engine.tasks.failures == 0

    @pytest.mark.asyncio
    async def test_expense_lifecycle(self, integration_engine: SyncEngine):
        """Add, update and delete are reconciled in the background."""
        await integration_engine.load_profile()
        await integration_engine.tasks.wait_idle()

        created = await integration_engine.add_expense(
            {"amount": 42, "category": "Food", "date": "2026-10-01", "description": "Integration"}
        )
        await integration_engine.tasks.wait_idle()
        assert (await integration_engine.remote.get_expense(created.expense_id)).amount == 42

        await integration_engine.update_expense(created.expense_id, {"amount": 43})
        await integration_engine.tasks.wait_idle()
        assert (await integration_engine.remote.get_expense(created.expense_id)).amount == 43

        url = await integration_engine.remote.generate_report(created.user_id)
        assert url

        await integration_engine.delete_expense(created.expense_id)
        await integration_engine.tasks.wait_idle()
        remaining = await integration_engine.remote.list_expenses(created.user_id)
        assert all(e.expense_id != created.expense_id for e in remaining)
        assert integration_engine.tasks.failures == 0
