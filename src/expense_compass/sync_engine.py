"""Local-first sync layer between the on-device cache and the record store.

Writes land in the local cache and return immediately; the matching remote
call runs as a detached background task whose failure is only logged.
Reads are served from the cache when it holds the data (refreshing it in
the background), otherwise fetched from the record store synchronously.
"""

import datetime as dt
import logging
import uuid
from typing import Any

from .database import Database
from .errors import ExpenseCompassError, NotFound, OwnershipError, Unauthenticated, ValidationError
from .identity import Identity, IdentityProvider
from .remote import RecordStoreClient
from .reports import build_csv, report_file_name
from .schemas import (
    Expense,
    ExpenseIn,
    ExpenseUpdate,
    ReportResult,
    User,
    parse_model,
)
from .tasks import BackgroundTasks


logger = logging.getLogger(__name__)

LAST_REFRESH_KEY = "last_refresh"


class SyncEngine:
    """Cache-first CRUD over users and expenses for the signed-in identity."""

    def __init__(
        self,
        db: Database,
        remote: RecordStoreClient,
        identity: IdentityProvider,
        tasks: BackgroundTasks | None = None,
    ):
        """Initialize sync engine.

        Args:
            db: Local cache, schema already initialized.
            remote: Record store client.
            identity: Source of the calling user's identity.
            tasks: Registry for background reconciliation; defaults to one
                bounded by the remote client's timeout.
        """
        self.db = db
        self.remote = remote
        self.identity = identity
        self.tasks = tasks or BackgroundTasks(timeout=remote.timeout)

    async def current_identity(self) -> Identity:
        """Resolve the caller; every operation starts here.

        Raises:
            Unauthenticated: No signed-in identity.
        """
        identity = await self.identity.current_identity()
        if identity is None:
            raise Unauthenticated("User not authenticated")
        return identity

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    async def get_user_details(self) -> User | None:
        """Return the caller's profile, or None when neither tier has it."""
        identity = await self.current_identity()
        user_id = identity.user_id

        cached = self.db.get_user(user_id)
        if cached is not None:
            self.tasks.spawn(f"refresh user {user_id}", self._refresh_user(user_id))
            return cached

        logger.debug("user %s not cached, fetching from record store", user_id)
        try:
            user = await self.remote.get_user(user_id)
        except ExpenseCompassError as e:
            logger.info("user %s unavailable from record store: %s", user_id, e.message)
            return None

        self.db.put_user(user)
        return user

    async def create_user(self, email: str | None = None) -> User:
        """Create the caller's profile; returns the existing one if present."""
        identity = await self.current_identity()

        existing = self.db.get_user(identity.user_id)
        if existing is not None:
            return existing

        user = User(
            user_id=identity.user_id,
            email=email or identity.display_email,
            monthly_budget=0,
            created_at=dt.datetime.now(dt.timezone.utc),
        )
        self.db.put_user(user)
        self.tasks.spawn(f"create user {user.user_id}", self._push_user(user))
        return user

    async def load_profile(self, email: str | None = None) -> User:
        """Profile for a fresh session: cached, remote, or newly created."""
        user = await self.get_user_details()
        if user is not None:
            return user
        return await self.create_user(email)

    async def update_budget(self, monthly_budget: float) -> User:
        """Set the caller's monthly budget.

        Raises:
            ValidationError: Negative or non-numeric budget.
            RemoteUnavailable: Profile neither cached nor reachable remotely.
        """
        identity = await self.current_identity()
        if isinstance(monthly_budget, bool) or not isinstance(monthly_budget, (int, float)):
            raise ValidationError("Monthly budget must be a number")
        if monthly_budget < 0:
            raise ValidationError("Monthly budget must not be negative")

        user = self.db.get_user(identity.user_id)

        if user is None:
            try:
                user = await self.remote.get_user(identity.user_id)
            except NotFound:
                user = User(
                    user_id=identity.user_id,
                    email=identity.display_email,
                    monthly_budget=0,
                    created_at=dt.datetime.now(dt.timezone.utc),
                )

        user = user.model_copy(update={"monthly_budget": float(monthly_budget)})
        self.db.put_user(user)
        self.tasks.spawn(f"update budget {user.user_id}", self._push_budget(user))
        return user

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    async def get_expenses(self) -> list[Expense]:
        """The caller's expenses; empty when neither tier can provide them."""
        identity = await self.current_identity()
        user_id = identity.user_id

        cached = self.db.get_expenses(user_id)
        if cached is not None:
            self.tasks.spawn(f"refresh expenses {user_id}", self._refresh_expenses(user_id))
            return cached

        logger.debug("expenses of %s not cached, fetching from record store", user_id)
        try:
            expenses = await self.remote.list_expenses(user_id)
        except ExpenseCompassError as e:
            logger.info("expenses of %s unavailable from record store: %s", user_id, e.message)
            return []

        self.db.replace_expenses(user_id, expenses)
        return self.db.get_expenses(user_id) or []

    async def get_expense(self, expense_id: str) -> Expense | None:
        """One of the caller's expenses, or None."""
        identity = await self.current_identity()

        cached = self.db.get_expense(expense_id)
        if cached is not None:
            if cached.user_id != identity.user_id:
                return None
            self.tasks.spawn(f"refresh expense {expense_id}", self._refresh_expense(expense_id))
            return cached

        try:
            expense = await self.remote.get_expense(expense_id)
        except ExpenseCompassError as e:
            logger.info("expense %s unavailable from record store: %s", expense_id, e.message)
            return None

        if expense.user_id != identity.user_id:
            return None
        self.db.put_expense(expense)
        return expense

    async def add_expense(self, data: ExpenseIn | dict[str, Any]) -> Expense:
        """Record a new expense for the caller under a freshly generated id.

        Raises:
            ValidationError: Missing field, non-positive amount, unknown category.
        """
        identity = await self.current_identity()
        if not isinstance(data, ExpenseIn):
            data = parse_model(ExpenseIn, data)

        expense = Expense(
            expense_id=uuid.uuid4().hex,
            user_id=identity.user_id,
            amount=data.amount,
            category=data.category,
            date=data.date,
            description=data.description,
        )
        self.db.put_expense(expense)
        self.db.mark_expense_list(identity.user_id)
        self.tasks.spawn(
            f"create expense {expense.expense_id}",
            self.remote.create_expense(expense),
        )
        return expense

    async def update_expense(
        self,
        expense_id: str,
        data: ExpenseUpdate | dict[str, Any],
    ) -> Expense:
        """Change amount/category/date/description of one of the caller's expenses.

        Raises:
            ValidationError: Invalid field values.
            NotFound: No such expense in the cache.
            OwnershipError: Expense belongs to another user.
        """
        identity = await self.current_identity()
        if not isinstance(data, ExpenseUpdate):
            data = parse_model(ExpenseUpdate, data)

        existing = self.db.get_expense(expense_id)
        if existing is None:
            raise NotFound("Expense not found")
        if existing.user_id != identity.user_id or (
            data.user_id is not None and data.user_id != identity.user_id
        ):
            raise OwnershipError("Not authorized to update this expense")

        changes = data.changes()
        updated = existing.model_copy(update=changes)
        self.db.put_expense(updated)

        remote_update = ExpenseUpdate(user_id=identity.user_id, **changes)
        self.tasks.spawn(
            f"update expense {expense_id}",
            self.remote.update_expense(expense_id, remote_update),
        )
        return updated

    async def delete_expense(self, expense_id: str) -> None:
        """Remove one of the caller's expenses.

        Raises:
            NotFound: No such expense in the cache.
            OwnershipError: Expense belongs to another user.
        """
        identity = await self.current_identity()

        existing = self.db.get_expense(expense_id)
        if existing is None:
            raise NotFound("Expense not found")
        if existing.user_id != identity.user_id:
            raise OwnershipError("Not authorized to delete this expense")

        self.db.delete_expense(expense_id)
        self.tasks.spawn(
            f"delete expense {expense_id}",
            self.remote.delete_expense(expense_id),
        )

    # -------------------------------------------------------------------------
    # Reports
    # -------------------------------------------------------------------------

    async def generate_report(self) -> ReportResult:
        """CSV report of the caller's expenses.

        Built locally when expenses are cached (the stored remote copy is
        requested in the background); otherwise the record store builds it.

        Raises:
            NotFound: The caller has no expenses.
            RemoteUnavailable: Nothing cached and the record store failed.
        """
        identity = await self.current_identity()
        user_id = identity.user_id
        file_name = report_file_name(user_id)

        cached = self.db.get_expenses(user_id)
        if cached:
            self.tasks.spawn(f"store report {user_id}", self.remote.generate_report(user_id))
            return ReportResult(file_name=file_name, source="local", content=build_csv(cached))

        url = await self.remote.generate_report(user_id)
        return ReportResult(file_name=file_name, source="remote", url=url)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def sign_out(self) -> None:
        """Let background reconciliation settle, then drop the local cache."""
        await self.tasks.wait_idle()
        self.db.clear()

    # -------------------------------------------------------------------------
    # Background reconciliation
    # -------------------------------------------------------------------------

    async def _refresh_user(self, user_id: str) -> None:
        user = await self.remote.get_user(user_id)
        self.db.put_user(user)
        self._mark_refreshed()
        logger.debug("user %s refreshed from record store", user_id)

    async def _refresh_expenses(self, user_id: str) -> None:
        expenses = await self.remote.list_expenses(user_id)
        count = self.db.replace_expenses(user_id, expenses)
        self._mark_refreshed()
        logger.debug("expenses of %s refreshed from record store (%d)", user_id, count)

    async def _refresh_expense(self, expense_id: str) -> None:
        expense = await self.remote.get_expense(expense_id)
        self.db.put_expense(expense)

    def _mark_refreshed(self) -> None:
        self.db.set_meta(LAST_REFRESH_KEY, dt.datetime.now(dt.timezone.utc).isoformat())

    async def _push_user(self, user: User) -> None:
        # An existing remote profile wins over the locally created one.
        stored = await self.remote.create_user(user)
        self.db.put_user(stored)

    async def _push_budget(self, user: User) -> None:
        try:
            await self.remote.update_user(user.user_id, user.monthly_budget)
        except NotFound:
            await self.remote.create_user(user)
