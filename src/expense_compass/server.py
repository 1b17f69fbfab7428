"""MCP server exposing expense tracking and spending analytics."""

import json
import logging
from typing import Any

from mcp.server import Server
from mcp.types import Resource, TextContent, Tool

from .analytics import DAILY_WINDOWS, build_dashboard, filter_expenses, generate_insights
from .config import get_settings
from .database import Database
from .errors import ExpenseCompassError, ValidationError
from .handlers import HandlerTransport, build_handlers
from .identity import identity_from_settings
from .logger import setup_logger
from .remote import RecordStoreClient
from .schemas import Category
from .sync_engine import LAST_REFRESH_KEY, SyncEngine
from .tasks import BackgroundTasks


logger = logging.getLogger(__name__)

# Initialize MCP server
server = Server("expense-compass")

# Built on first use (or injected by init_for_testing), dropped by shutdown()
_sync_engine: SyncEngine | None = None


def get_sync_engine() -> SyncEngine:
    """Get or create the sync engine with its cache, client and identity."""
    global _sync_engine
    if _sync_engine is None:
        settings = get_settings()
        db = Database(settings.db_path)
        db.init_schema()
        transport = None
        if settings.embedded_store:
            transport = HandlerTransport(build_handlers(settings))
        remote = RecordStoreClient(
            settings.api_url,
            token=settings.api_token,
            timeout=settings.remote_timeout_secs,
            transport=transport,
        )
        _sync_engine = SyncEngine(
            db,
            remote,
            identity_from_settings(settings),
            BackgroundTasks(timeout=settings.remote_timeout_secs),
        )
        logger.info(
            "sync engine ready (cache=%s, store=%s)",
            settings.db_path,
            "embedded" if settings.embedded_store else settings.api_url,
        )
    return _sync_engine


def init_for_testing(engine: SyncEngine) -> None:
    """Use an explicitly constructed sync engine."""
    global _sync_engine
    _sync_engine = engine


async def shutdown() -> None:
    """Let background reconciliation finish and close the cache."""
    global _sync_engine
    if _sync_engine is not None:
        await _sync_engine.tasks.wait_idle()
        _sync_engine.db.close()
        _sync_engine = None


def _dump(value: Any) -> Any:
    if hasattr(value, "model_dump"):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_dump(item) for item in value]
    if isinstance(value, dict):
        return {key: _dump(item) for key, item in value.items()}
    return value


def _text(result: Any) -> list[TextContent]:
    return [TextContent(type="text", text=json.dumps(_dump(result), ensure_ascii=False, indent=2))]


# ============================================================================
# Tools
# ============================================================================

EXPENSE_PROPERTIES = {
    "amount": {"type": "number", "description": "Amount spent (positive)"},
    "category": {
        "type": "string",
        "enum": [c.value for c in Category],
        "description": "Expense category",
    },
    "date": {"type": "string", "description": "Calendar date 'YYYY-MM-DD'"},
    "description": {"type": "string", "description": "Optional note"},
}


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available tools."""
    return [
        Tool(
            name="get_profile",
            description="Get the signed-in user's profile (creates it on first use).",
            inputSchema={
                "type": "object",
                "properties": {
                    "email": {"type": "string", "description": "Email for a new profile"},
                },
            },
        ),
        Tool(
            name="set_monthly_budget",
            description="Set the monthly budget.",
            inputSchema={
                "type": "object",
                "properties": {
                    "monthly_budget": {"type": "number", "description": "Budget, 0 or more"},
                },
                "required": ["monthly_budget"],
            },
        ),
        Tool(
            name="add_expense",
            description="Record an expense.",
            inputSchema={
                "type": "object",
                "properties": EXPENSE_PROPERTIES,
                "required": ["amount", "category", "date"],
            },
        ),
        Tool(
            name="update_expense",
            description="Change amount, category, date or description of an expense.",
            inputSchema={
                "type": "object",
                "properties": {
                    "expense_id": {"type": "string", "description": "Expense ID"},
                    **EXPENSE_PROPERTIES,
                },
                "required": ["expense_id"],
            },
        ),
        Tool(
            name="delete_expense",
            description="Delete an expense.",
            inputSchema={
                "type": "object",
                "properties": {
                    "expense_id": {"type": "string", "description": "Expense ID"},
                },
                "required": ["expense_id"],
            },
        ),
        Tool(
            name="list_expenses",
            description="List expenses, newest first, optionally filtered.",
            inputSchema={
                "type": "object",
                "properties": {
                    "search": {"type": "string", "description": "Text to find in descriptions"},
                    "category": {
                        "type": "string",
                        "enum": ["all", *[c.value for c in Category]],
                        "default": "all",
                    },
                },
            },
        ),
        Tool(
            name="get_dashboard",
            description="Budget status, category breakdown, spending series, weekly trend and insights.",
            inputSchema={
                "type": "object",
                "properties": {
                    "window_days": {
                        "type": "integer",
                        "enum": list(DAILY_WINDOWS),
                        "description": "Length of the daily spending series",
                        "default": 30,
                    },
                },
            },
        ),
        Tool(
            name="get_insights",
            description="Rule-based observations about spending habits.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="generate_report",
            description="Export all expenses as a CSV report.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="sign_out",
            description="Clear locally cached data for the signed-in user.",
            inputSchema={"type": "object", "properties": {}},
        ),
    ]


async def _budget(engine: SyncEngine) -> float:
    user = await engine.get_user_details()
    return user.monthly_budget if user else 0


@server.call_tool()
async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
    """Handle tool calls; domain errors come back as ``{"error", "kind"}``."""
    engine = get_sync_engine()
    try:
        return await _call(engine, name, arguments or {})
    except ExpenseCompassError as e:
        return _text({"error": e.message, "kind": e.kind})


async def _call(engine: SyncEngine, name: str, arguments: dict[str, Any]) -> list[TextContent]:
    if name == "get_profile":
        result = await engine.load_profile(arguments.get("email"))
        return _text(result)

    elif name == "set_monthly_budget":
        result = await engine.update_budget(arguments.get("monthly_budget"))
        return _text(result)

    elif name == "add_expense":
        result = await engine.add_expense(
            {k: v for k, v in arguments.items() if k in EXPENSE_PROPERTIES}
        )
        return _text(result)

    elif name == "update_expense":
        expense_id = arguments.get("expense_id")
        if not expense_id:
            raise ValidationError("expense_id is required")
        result = await engine.update_expense(
            expense_id,
            {k: v for k, v in arguments.items() if k in EXPENSE_PROPERTIES},
        )
        return _text(result)

    elif name == "delete_expense":
        expense_id = arguments.get("expense_id")
        if not expense_id:
            raise ValidationError("expense_id is required")
        await engine.delete_expense(expense_id)
        return _text({"deleted": expense_id})

    elif name == "list_expenses":
        expenses = await engine.get_expenses()
        result = filter_expenses(
            expenses,
            search=arguments.get("search"),
            category=arguments.get("category"),
        )
        return _text({"count": len(result), "expenses": result})

    elif name == "get_dashboard":
        window_days = arguments.get("window_days", 30)
        if isinstance(window_days, float) and window_days.is_integer():
            window_days = int(window_days)
        if isinstance(window_days, bool) or window_days not in DAILY_WINDOWS:
            raise ValidationError(f"window_days must be one of {list(DAILY_WINDOWS)}")
        expenses = await engine.get_expenses()
        result = build_dashboard(expenses, await _budget(engine), window_days=window_days)
        return _text(result)

    elif name == "get_insights":
        expenses = await engine.get_expenses()
        result = generate_insights(expenses, await _budget(engine))
        return _text({"insights": result})

    elif name == "generate_report":
        result = await engine.generate_report()
        return _text(result)

    elif name == "sign_out":
        await engine.sign_out()
        sign_out = getattr(engine.identity, "sign_out", None)
        if sign_out is not None:
            sign_out()
        return _text({"signed_out": True})

    else:
        raise ValueError(f"Unknown tool: {name}")


# ============================================================================
# Resources
# ============================================================================

@server.list_resources()
async def list_resources() -> list[Resource]:
    """List available resources."""
    return [
        Resource(
            uri="expense-compass://categories",
            name="Categories",
            description="Expense categories",
            mimeType="application/json",
        ),
        Resource(
            uri="expense-compass://sync-status",
            name="Sync Status",
            description="Background reconciliation state and cache statistics",
            mimeType="application/json",
        ),
    ]


@server.read_resource()
async def read_resource(uri: str) -> str:
    """Read resource content."""
    uri = str(uri)
    engine = get_sync_engine()

    if uri == "expense-compass://categories":
        result: dict[str, Any] = {"categories": [c.value for c in Category]}
    elif uri == "expense-compass://sync-status":
        result = {
            "pending_background_tasks": engine.tasks.pending,
            "background_failures": engine.tasks.failures,
            "cached_users": engine.db.count_table("users"),
            "cached_expenses": engine.db.count_table("expenses"),
            "last_refresh": engine.db.get_meta(LAST_REFRESH_KEY),
            "record_store": engine.remote.base_url,
        }
    else:
        raise ValueError(f"Unknown resource: {uri}")

    return json.dumps(result, ensure_ascii=False, indent=2)


# ============================================================================
# Main
# ============================================================================

def main() -> None:
    """Run the MCP server."""
    import asyncio

    from mcp.server.stdio import stdio_server

    setup_logger("expense_compass", get_settings().log_level)

    async def run():
        try:
            async with stdio_server() as (read_stream, write_stream):
                await server.run(read_stream, write_stream, server.create_initialization_options())
        finally:
            await shutdown()

    asyncio.run(run())


if __name__ == "__main__":
    main()
