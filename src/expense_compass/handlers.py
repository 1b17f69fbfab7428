"""Record store request handlers.

Implements the ``/users``, ``/expenses`` and ``/reports`` resources over a
:class:`Database` table. Bodies are validated against the request schemas
before storage is touched; every error becomes a JSON ``{"message": ...}``
response and unexpected exceptions become a logged 500.
"""

import datetime as dt
import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import unquote

import httpx

from .config import Settings, get_settings
from .database import Database
from .errors import Conflict, ExpenseCompassError, NotFound, OwnershipError, ValidationError
from .reports import LocalReportStorage, ReportStorage, build_csv, report_file_name
from .schemas import ExpenseCreate, ExpenseUpdate, User, UserCreate, UserUpdate, parse_model


logger = logging.getLogger(__name__)


@dataclass
class Response:
    status_code: int
    body: Any = None

    def json_body(self) -> bytes:
        if self.body is None:
            return b""
        return json.dumps(self.body, ensure_ascii=False).encode("utf-8")


class MethodNotAllowed(ExpenseCompassError):
    status_code = 405
    kind = "method_not_allowed"


class RecordStoreHandlers:
    """Request dispatcher for the record store resources."""

    def __init__(self, db: Database, reports: ReportStorage):
        self.db = db
        self.reports = reports

    def handle(self, method: str, path: str, body: Any = None) -> Response:
        """Dispatch one request.

        Args:
            method: HTTP method.
            path: Request path, e.g. ``/expenses/user/u-1``.
            body: Raw JSON (str/bytes), an already decoded dict, or None.
        """
        method = method.upper()
        try:
            return self._dispatch(method, _segments(path), body)
        except ExpenseCompassError as e:
            logger.info("%s %s -> %s: %s", method, path, e.status_code, e.message)
            return Response(e.status_code, {"message": e.message})
        except Exception:
            logger.exception("Unhandled error for %s %s", method, path)
            return Response(500, {"message": "Internal server error"})

    def _dispatch(self, method: str, parts: list[str], body: Any) -> Response:
        if parts == ["users"]:
            _allow(method, "POST")
            return self.create_user(_decode(body))

        elif len(parts) == 2 and parts[0] == "users":
            _allow(method, "GET", "PUT")
            if method == "GET":
                return self.get_user(parts[1])
            return self.update_user(parts[1], _decode(body))

        elif parts == ["expenses"]:
            _allow(method, "POST")
            return self.create_expense(_decode(body))

        elif len(parts) == 3 and parts[:2] == ["expenses", "user"]:
            _allow(method, "GET")
            return self.list_expenses(parts[2])

        elif len(parts) == 2 and parts[0] == "expenses":
            _allow(method, "GET", "PUT", "DELETE")
            if method == "GET":
                return self.get_expense(parts[1])
            if method == "PUT":
                return self.update_expense(parts[1], _decode(body))
            return self.delete_expense(parts[1])

        elif len(parts) == 2 and parts[0] == "reports":
            _allow(method, "GET")
            return self.generate_report(parts[1])

        raise NotFound("Route not found")

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    def get_user(self, user_id: str) -> Response:
        user = self.db.get_user(user_id)
        if user is None:
            raise NotFound("User not found")
        return Response(200, user.to_wire())

    def create_user(self, data: Any) -> Response:
        request = parse_model(UserCreate, data)
        if self.db.get_user(request.user_id) is not None:
            raise Conflict("User already exists")

        user = User(
            user_id=request.user_id,
            email=request.email,
            monthly_budget=request.monthly_budget,
            created_at=request.created_at or dt.datetime.now(dt.timezone.utc),
        )
        self.db.put_user(user)
        return Response(201, user.to_wire())

    def update_user(self, user_id: str, data: Any) -> Response:
        request = parse_model(UserUpdate, data)
        user = self.db.get_user(user_id)
        if user is None:
            raise NotFound("User not found")

        if request.monthly_budget is not None:
            user = user.model_copy(update={"monthly_budget": request.monthly_budget})
            self.db.put_user(user)
        return Response(200, user.to_wire())

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    def get_expense(self, expense_id: str) -> Response:
        expense = self.db.get_expense(expense_id)
        if expense is None:
            raise NotFound("Expense not found")
        return Response(200, expense.to_wire())

    def list_expenses(self, user_id: str) -> Response:
        expenses = self.db.get_expenses(user_id) or []
        return Response(200, [e.to_wire() for e in expenses])

    def create_expense(self, data: Any) -> Response:
        expense = parse_model(ExpenseCreate, data)
        if self.db.get_user(expense.user_id) is None:
            raise ValidationError("Expense owner does not exist")
        if self.db.get_expense(expense.expense_id) is not None:
            raise Conflict("Expense id already used")

        self.db.put_expense(expense)
        self.db.mark_expense_list(expense.user_id)
        return Response(201, expense.to_wire())

    def update_expense(self, expense_id: str, data: Any) -> Response:
        request = parse_model(ExpenseUpdate, data)
        existing = self.db.get_expense(expense_id)
        if existing is None:
            raise NotFound("Expense not found")
        if request.user_id and request.user_id != existing.user_id:
            raise OwnershipError("Not authorized to update this expense")

        updated = existing.model_copy(update=request.changes())
        self.db.put_expense(updated)
        return Response(200, updated.to_wire())

    def delete_expense(self, expense_id: str) -> Response:
        if self.db.get_expense(expense_id) is None:
            raise NotFound("Expense not found")
        self.db.delete_expense(expense_id)
        return Response(204)

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------

    def generate_report(self, user_id: str) -> Response:
        expenses = self.db.get_expenses(user_id)
        if not expenses:
            raise NotFound("No expenses found for this user")

        file_name = report_file_name(user_id)
        url = self.reports.save(file_name, build_csv(expenses))
        logger.info("report %s stored for %s (%d rows)", file_name, user_id, len(expenses))
        return Response(200, {"url": url})


def _segments(path: str) -> list[str]:
    path = path.split("?", 1)[0]
    return [unquote(part) for part in path.strip("/").split("/") if part]


def _allow(method: str, *allowed: str) -> None:
    if method not in allowed:
        raise MethodNotAllowed("Method not allowed")


def _decode(body: Any) -> Any:
    if body is None or body == b"" or body == "":
        raise ValidationError("Missing request body")
    if isinstance(body, (bytes, str)):
        try:
            return json.loads(body)
        except ValueError as e:
            raise ValidationError("Request body must be valid JSON") from e
    return body


class HandlerTransport(httpx.AsyncBaseTransport):
    """httpx transport that serves requests in-process with the handlers."""

    def __init__(self, handlers: RecordStoreHandlers):
        self.handlers = handlers

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        body = await request.aread()
        response = self.handlers.handle(
            request.method,
            request.url.raw_path.decode("ascii"),
            body or None,
        )
        return httpx.Response(
            response.status_code,
            content=response.json_body(),
            headers={"Content-Type": "application/json"},
        )


def build_handlers(settings: Settings | None = None) -> RecordStoreHandlers:
    """Handlers over a file-backed record store table in the data directory."""
    settings = settings or get_settings()
    db = Database(settings.store_db_path)
    db.init_schema()
    reports = LocalReportStorage(settings.reports_dir, ttl_secs=settings.report_url_ttl_secs)
    return RecordStoreHandlers(db, reports)
