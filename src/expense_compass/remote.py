"""Async client for the record store REST API."""

from typing import Any
from urllib.parse import quote

import httpx
from pydantic import ValidationError as PydanticValidationError

from .config import DEFAULT_REMOTE_TIMEOUT_SECS
from .errors import Conflict, RemoteUnavailable, error_for_status
from .schemas import Expense, ExpenseUpdate, User, WireModel


class RecordStoreClient:
    """Resource-oriented client for ``/users``, ``/expenses`` and ``/reports``."""

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float = DEFAULT_REMOTE_TIMEOUT_SECS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the client.

        Args:
            base_url: Record store root URL.
            token: Optional bearer token.
            timeout: Per-request timeout in seconds.
            transport: Custom httpx transport (in-process stores, tests).
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.transport = transport

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def get_user(self, user_id: str) -> User:
        data = await self._request("GET", f"/users/{_segment(user_id)}")
        return _parse(User, data)

    async def create_user(self, user: User) -> User:
        """Create the user, or return the stored record if it already exists."""
        try:
            data = await self._request("POST", "/users", user.to_wire())
        except Conflict:
            return await self.get_user(user.user_id)
        return _parse(User, data)

    async def update_user(self, user_id: str, monthly_budget: float) -> User:
        data = await self._request(
            "PUT",
            f"/users/{_segment(user_id)}",
            {"monthlyBudget": monthly_budget},
        )
        return _parse(User, data)

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def get_expense(self, expense_id: str) -> Expense:
        data = await self._request("GET", f"/expenses/{_segment(expense_id)}")
        return _parse(Expense, data)

    async def list_expenses(self, user_id: str) -> list[Expense]:
        data = await self._request("GET", f"/expenses/user/{_segment(user_id)}")
        if not isinstance(data, list):
            raise RemoteUnavailable("Expected a list of expenses from the record store")
        return [_parse(Expense, item) for item in data]

    async def create_expense(self, expense: Expense) -> Expense:
        data = await self._request("POST", "/expenses", expense.to_wire())
        return _parse(Expense, data)

    async def update_expense(self, expense_id: str, update: ExpenseUpdate) -> Expense:
        body = update.model_dump(mode="json", by_alias=True, exclude_unset=True)
        data = await self._request("PUT", f"/expenses/{_segment(expense_id)}", body)
        return _parse(Expense, data)

    async def delete_expense(self, expense_id: str) -> None:
        await self._request("DELETE", f"/expenses/{_segment(expense_id)}")

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------

    async def generate_report(self, user_id: str) -> str:
        """Ask the store to build and keep a CSV report; returns its download URL."""
        data = await self._request("GET", f"/reports/{_segment(user_id)}")
        if not isinstance(data, dict) or not data.get("url"):
            raise RemoteUnavailable("Report response did not contain a URL")
        return data["url"]

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        body: dict[str, Any] | None = None,
    ) -> Any:
        """Perform one request and map failures onto the error taxonomy.

        Raises:
            RemoteUnavailable: Network error, timeout, 5xx or malformed body.
            ValidationError, OwnershipError, NotFound, Conflict: Mapped 4xx.
        """
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        async with httpx.AsyncClient(
            base_url=self.base_url,
            transport=self.transport,
            timeout=self.timeout,
        ) as client:
            try:
                response = await client.request(method, path, json=body, headers=headers)
            except httpx.HTTPError as e:
                raise RemoteUnavailable(f"HTTP error during {method} {path}: {e}") from e

        if response.status_code == 204:
            return None

        try:
            data = response.json()
        except ValueError as e:
            if response.status_code >= 400:
                raise error_for_status(response.status_code, response.text) from e
            raise RemoteUnavailable(f"Invalid JSON response: {e}") from e

        if response.status_code >= 400:
            message = data.get("message") if isinstance(data, dict) else None
            raise error_for_status(
                response.status_code,
                message or f"Record store returned status {response.status_code}",
            )

        return data


def _segment(value: str) -> str:
    return quote(value, safe="")


def _parse(model_cls: type[WireModel], data: Any) -> Any:
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        raise RemoteUnavailable(f"Malformed {model_cls.__name__} from record store: {e}") from e
