"""Tests for MCP tools and resources."""

import json

import pytest

from expense_compass import server
from expense_compass.config import get_settings
from expense_compass.sync_engine import SyncEngine

from conftest import EMAIL, USER_ID


def payload(result) -> dict:
    assert len(result) == 1
    return json.loads(result[0].text)


@pytest.fixture
def tool_engine(engine: SyncEngine, monkeypatch) -> SyncEngine:
    """Sync engine installed as the server's engine for one test."""
    monkeypatch.setattr(server, "_sync_engine", None)
    server.init_for_testing(engine)
    return engine


class TestTools:
    """Test tool dispatch."""

    @pytest.mark.asyncio
    async def test_list_tools(self):
        """All tools are advertised."""
        tools = await server.list_tools()

        assert {tool.name for tool in tools} == {
            "get_profile",
            "set_monthly_budget",
            "add_expense",
            "update_expense",
            "delete_expense",
            "list_expenses",
            "get_dashboard",
            "get_insights",
            "generate_report",
            "sign_out",
        }

    @pytest.mark.asyncio
    async def test_get_profile_creates_profile(self, tool_engine: SyncEngine):
        """First profile request creates the user with no budget."""
        profile = payload(await server.call_tool("get_profile", {}))
        await tool_engine.tasks.wait_idle()

        assert profile["user_id"] == USER_ID
        assert profile["email"] == EMAIL
        assert profile["monthly_budget"] == 0

    @pytest.mark.asyncio
    async def test_set_budget(self, tool_engine: SyncEngine):
        result = payload(await server.call_tool("set_monthly_budget", {"monthly_budget": 6000}))
        await tool_engine.tasks.wait_idle()

        assert result["monthly_budget"] == 6000

    @pytest.mark.asyncio
    async def test_negative_budget_is_reported(self, tool_engine: SyncEngine):
        """Domain errors come back as a JSON payload."""
        result = payload(await server.call_tool("set_monthly_budget", {"monthly_budget": -5}))

        assert result == {"error": "Monthly budget must not be negative", "kind": "validation"}

    @pytest.mark.asyncio
    async def test_add_and_list(self, tool_engine: SyncEngine):
        await server.call_tool("get_profile", {})
        await server.call_tool(
            "add_expense",
            {"amount": 120, "category": "Food", "date": "2026-10-12", "description": "Canteen lunch"},
        )
        await server.call_tool(
            "add_expense",
            {"amount": 450, "category": "Travel", "date": "2026-10-13", "description": "Bus pass"},
        )
        await tool_engine.tasks.wait_idle()

        listed = payload(await server.call_tool("list_expenses", {"category": "Food"}))
        await tool_engine.tasks.wait_idle()

        assert listed["count"] == 1
        assert listed["expenses"][0]["description"] == "Canteen lunch"
        assert listed["expenses"][0]["date"] == "2026-10-12"

    @pytest.mark.asyncio
    async def test_add_invalid_category(self, tool_engine: SyncEngine):
        result = payload(await server.call_tool(
            "add_expense", {"amount": 10, "category": "Crypto", "date": "2026-10-12"}
        ))

        assert result["kind"] == "validation"

    @pytest.mark.asyncio
    async def test_update_and_delete(self, tool_engine: SyncEngine):
        await server.call_tool("get_profile", {})
        created = payload(await server.call_tool(
            "add_expense", {"amount": 80, "category": "Stationery", "date": "2026-10-09"}
        ))
        await tool_engine.tasks.wait_idle()

        updated = payload(await server.call_tool(
            "update_expense", {"expense_id": created["expense_id"], "amount": 95}
        ))
        assert updated["amount"] == 95
        assert updated["category"] == "Stationery"

        deleted = payload(await server.call_tool("delete_expense", {"expense_id": created["expense_id"]}))
        await tool_engine.tasks.wait_idle()

        assert deleted == {"deleted": created["expense_id"]}
        assert tool_engine.db.get_expense(created["expense_id"]) is None

    @pytest.mark.asyncio
    async def test_update_requires_id(self, tool_engine: SyncEngine):
        result = payload(await server.call_tool("update_expense", {"amount": 95}))

        assert result["kind"] == "validation"

    @pytest.mark.asyncio
    async def test_delete_unknown(self, tool_engine: SyncEngine):
        result = payload(await server.call_tool("delete_expense", {"expense_id": "missing"}))

        assert result == {"error": "Expense not found", "kind": "not_found"}

    @pytest.mark.asyncio
    async def test_dashboard(self, tool_engine: SyncEngine):
        await server.call_tool("set_monthly_budget", {"monthly_budget": 1000})
        await tool_engine.tasks.wait_idle()
        await server.call_tool("add_expense", {"amount": 300, "category": "Food", "date": "2026-10-12"})
        await tool_engine.tasks.wait_idle()

        dashboard = payload(await server.call_tool("get_dashboard", {"window_days": 7}))
        await tool_engine.tasks.wait_idle()

        assert len(dashboard["daily"]) == 7
        assert dashboard["budget"]["monthly_budget"] == 1000
        assert dashboard["stats"]["count"] == 1
        assert dashboard["insights"][0]["rule"] == "budget_usage"

    @pytest.mark.asyncio
    async def test_dashboard_rejects_other_windows(self, tool_engine: SyncEngine):
        result = payload(await server.call_tool("get_dashboard", {"window_days": 14}))

        assert result["kind"] == "validation"

    @pytest.mark.asyncio
    async def test_dashboard_accepts_integral_float_window(self, tool_engine: SyncEngine):
        dashboard = payload(await server.call_tool("get_dashboard", {"window_days": 7.0}))
        await tool_engine.tasks.wait_idle()

        assert len(dashboard["daily"]) == 7

    @pytest.mark.asyncio
    @pytest.mark.parametrize("window_days", ["7", 7.5, True])
    async def test_dashboard_rejects_non_integer_window(self, tool_engine: SyncEngine, window_days):
        result = payload(await server.call_tool("get_dashboard", {"window_days": window_days}))

        assert result["kind"] == "validation"

    @pytest.mark.asyncio
    async def test_insights_without_expenses(self, tool_engine: SyncEngine):
        """A user with no expenses only gets the welcome insight."""
        result = payload(await server.call_tool("get_insights", {}))

        assert [i["rule"] for i in result["insights"]] == ["welcome"]

    @pytest.mark.asyncio
    async def test_report_with_nothing_to_export(self, tool_engine: SyncEngine):
        await server.call_tool("get_profile", {})
        await tool_engine.tasks.wait_idle()

        result = payload(await server.call_tool("generate_report", {}))

        assert result["kind"] == "not_found"

    @pytest.mark.asyncio
    async def test_report_from_cache(self, tool_engine: SyncEngine):
        await server.call_tool("get_profile", {})
        await server.call_tool(
            "add_expense", {"amount": 120, "category": "Food", "date": "2026-10-12", "description": "Lunch"}
        )
        await tool_engine.tasks.wait_idle()

        report = payload(await server.call_tool("generate_report", {}))
        await tool_engine.tasks.wait_idle()

        assert report["source"] == "local"
        assert '10/12/2026,120,Food,"Lunch"' in report["content"]

    @pytest.mark.asyncio
    async def test_sign_out(self, tool_engine: SyncEngine):
        """Sign-out clears the cache and the identity."""
        await server.call_tool("get_profile", {})

        assert payload(await server.call_tool("sign_out", {})) == {"signed_out": True}
        assert tool_engine.db.count_table("users") == 0

        result = payload(await server.call_tool("get_profile", {}))
        assert result["kind"] == "unauthenticated"

    @pytest.mark.asyncio
    async def test_unknown_tool(self, tool_engine: SyncEngine):
        with pytest.raises(ValueError, match="Unknown tool"):
            await server.call_tool("transfer_money", {})


class TestResources:
    """Test MCP resources."""

    @pytest.mark.asyncio
    async def test_list_resources(self):
        resources = await server.list_resources()

        assert {r.name for r in resources} == {"Categories", "Sync Status"}

    @pytest.mark.asyncio
    async def test_categories(self, tool_engine: SyncEngine):
        result = json.loads(await server.read_resource("expense-compass://categories"))

        assert result["categories"][0] == "Food"
        assert len(result["categories"]) == 10

    @pytest.mark.asyncio
    async def test_sync_status(self, tool_engine: SyncEngine):
        await server.call_tool("get_profile", {})
        await tool_engine.tasks.wait_idle()

        status = json.loads(await server.read_resource("expense-compass://sync-status"))

        assert status["pending_background_tasks"] == 0
        assert status["background_failures"] == 0
        assert status["cached_users"] == 1

    @pytest.mark.asyncio
    async def test_unknown_resource(self, tool_engine: SyncEngine):
        with pytest.raises(ValueError, match="Unknown resource"):
            await server.read_resource("expense-compass://budgets")


class TestLifecycle:
    """Test engine construction from settings and shutdown."""

    @pytest.fixture(autouse=True)
    def env(self, tmp_path, monkeypatch):
        monkeypatch.setenv("EXPENSE_COMPASS_DATA_DIR", str(tmp_path))
        monkeypatch.setenv("EXPENSE_COMPASS_API_URL", "http://store.example:9000/")
        monkeypatch.setenv("EXPENSE_COMPASS_REMOTE_TIMEOUT_SECS", "3")
        monkeypatch.setenv("EXPENSE_COMPASS_USER_ID", USER_ID)
        monkeypatch.setattr(server, "_sync_engine", None)
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()

    @pytest.mark.asyncio
    async def test_engine_from_settings(self, tmp_path):
        engine = server.get_sync_engine()

        assert server.get_sync_engine() is engine
        assert engine.remote.base_url == "http://store.example:9000"
        assert engine.tasks.timeout == 3
        assert (tmp_path / "cache.db").exists()
        assert (await engine.current_identity()).user_id == USER_ID

        await server.shutdown()
        assert server._sync_engine is None

    @pytest.mark.asyncio
    async def test_embedded_store(self, tmp_path, monkeypatch):
        """With the embedded store, writes reach a record store file in the data dir."""
        monkeypatch.setenv("EXPENSE_COMPASS_EMBEDDED_STORE", "1")
        get_settings.cache_clear()
        engine = server.get_sync_engine()

        await engine.update_budget(1500)
        await engine.tasks.wait_idle()
        await server.shutdown()

        assert engine.tasks.failures == 0
        assert (tmp_path / "record_store.db").exists()
