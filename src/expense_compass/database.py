"""SQLite key-value tables for users and expenses.

Used on-device as the local cache (the read-of-record for the UI) and, by
the reference handlers, as the record store table.
"""

import sqlite3
import time
from pathlib import Path
from typing import Any

from .schemas import Expense, User


SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    user_id        TEXT PRIMARY KEY,
    email          TEXT NOT NULL,
    monthly_budget REAL NOT NULL DEFAULT 0,
    created_at     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS expenses (
    expense_id  TEXT PRIMARY KEY,
    user_id     TEXT NOT NULL,
    amount      REAL NOT NULL,
    category    TEXT NOT NULL,
    date        TEXT NOT NULL,   -- 'YYYY-MM-DD'
    description TEXT NOT NULL DEFAULT ''
);

-- Owners whose expense list is present in this table (cache hit marker)
CREATE TABLE IF NOT EXISTS expense_lists (
    user_id      TEXT PRIMARY KEY,
    refreshed_at INTEGER
);

CREATE TABLE IF NOT EXISTS sync_meta (
    key   TEXT PRIMARY KEY,
    value TEXT
);
"""

INDEXES = """
CREATE INDEX IF NOT EXISTS idx_expenses_user ON expenses(user_id);
"""

TABLES = ("users", "expenses", "expense_lists", "sync_meta")


class Database:
    """SQLite wrapper holding user and expense records."""

    def __init__(self, db_path: str | Path | None = None):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite file, or None/":memory:" for in-memory DB.
        """
        if db_path is None:
            db_path = ":memory:"
        self.db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            if self.db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    def close(self) -> None:
        """Close database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def init_schema(self) -> None:
        """Create all tables and indexes."""
        conn = self.connect()
        conn.executescript(SCHEMA)
        conn.executescript(INDEXES)
        conn.commit()

    def clear(self) -> None:
        """Drop every cached record (sign-out)."""
        conn = self.connect()
        for table in TABLES:
            conn.execute(f"DELETE FROM {table}")  # noqa: S608
        conn.commit()

    # -------------------------------------------------------------------------
    # Sync metadata
    # -------------------------------------------------------------------------

    def get_meta(self, key: str) -> str | None:
        """Get metadata value by key."""
        conn = self.connect()
        row = conn.execute(
            "SELECT value FROM sync_meta WHERE key = ?", (key,)
        ).fetchone()
        return row["value"] if row else None

    def set_meta(self, key: str, value: str) -> None:
        """Set metadata value."""
        conn = self.connect()
        conn.execute(
            "INSERT OR REPLACE INTO sync_meta (key, value) VALUES (?, ?)",
            (key, value),
        )
        conn.commit()

    # -------------------------------------------------------------------------
    # Users
    # -------------------------------------------------------------------------

    def get_user(self, user_id: str) -> User | None:
        conn = self.connect()
        row = conn.execute(
            "SELECT * FROM users WHERE user_id = ?", (user_id,)
        ).fetchone()
        return _row_to_user(row) if row else None

    def put_user(self, user: User) -> None:
        conn = self.connect()
        conn.execute(
            """
            INSERT OR REPLACE INTO users (user_id, email, monthly_budget, created_at)
            VALUES (?, ?, ?, ?)
            """,
            (
                user.user_id,
                user.email,
                user.monthly_budget,
                user.created_at.isoformat(),
            ),
        )
        conn.commit()

    # -------------------------------------------------------------------------
    # Expenses
    # -------------------------------------------------------------------------

    def has_expense_list(self, user_id: str) -> bool:
        """Whether the owner's expense list is held here (possibly empty)."""
        conn = self.connect()
        row = conn.execute(
            "SELECT 1 FROM expense_lists WHERE user_id = ?", (user_id,)
        ).fetchone()
        return row is not None

    def get_expenses(self, user_id: str) -> list[Expense] | None:
        """Expenses of one owner in insertion order, or None when not held."""
        if not self.has_expense_list(user_id):
            return None
        conn = self.connect()
        rows = conn.execute(
            "SELECT * FROM expenses WHERE user_id = ? ORDER BY rowid", (user_id,)
        ).fetchall()
        return [_row_to_expense(row) for row in rows]

    def get_expense(self, expense_id: str) -> Expense | None:
        conn = self.connect()
        row = conn.execute(
            "SELECT * FROM expenses WHERE expense_id = ?", (expense_id,)
        ).fetchone()
        return _row_to_expense(row) if row else None

    def put_expense(self, expense: Expense) -> None:
        """Insert or update one expense, keeping its position on update.

        Does not mark the owner's list as held: a single record is not the list.
        """
        conn = self.connect()
        conn.execute(
            """
            INSERT INTO expenses (expense_id, user_id, amount, category, date, description)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(expense_id) DO UPDATE SET
                amount = excluded.amount,
                category = excluded.category,
                date = excluded.date,
                description = excluded.description
            """,
            _expense_params(expense),
        )
        conn.commit()

    def mark_expense_list(self, user_id: str) -> None:
        """Record that the owner's expense list is held here."""
        conn = self.connect()
        self._mark_list(conn, user_id)
        conn.commit()

    def replace_expenses(self, user_id: str, expenses: list[Expense]) -> int:
        """Replace the owner's whole expense list (cache refresh)."""
        owned = [e for e in expenses if e.user_id == user_id]
        conn = self.connect()
        with conn:
            conn.execute("DELETE FROM expenses WHERE user_id = ?", (user_id,))
            conn.executemany(
                """
                INSERT OR REPLACE INTO expenses
                (expense_id, user_id, amount, category, date, description)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [_expense_params(e) for e in owned],
            )
            self._mark_list(conn, user_id)
        return len(owned)

    def delete_expense(self, expense_id: str) -> int:
        conn = self.connect()
        cursor = conn.execute(
            "DELETE FROM expenses WHERE expense_id = ?", (expense_id,)
        )
        conn.commit()
        return cursor.rowcount

    # -------------------------------------------------------------------------
    # Query helpers
    # -------------------------------------------------------------------------

    def count_table(self, table: str) -> int:
        """Count rows in a table."""
        conn = self.connect()
        row = conn.execute(f"SELECT COUNT(*) as cnt FROM {table}").fetchone()  # noqa: S608
        return row["cnt"]

    @staticmethod
    def _mark_list(conn: sqlite3.Connection, user_id: str) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO expense_lists (user_id, refreshed_at) VALUES (?, ?)",
            (user_id, int(time.time())),
        )


def _expense_params(expense: Expense) -> tuple[Any, ...]:
    return (
        expense.expense_id,
        expense.user_id,
        expense.amount,
        expense.category.value,
        expense.date.isoformat(),
        expense.description,
    )


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        user_id=row["user_id"],
        email=row["email"],
        monthly_budget=row["monthly_budget"],
        created_at=row["created_at"],
    )


def _row_to_expense(row: sqlite3.Row) -> Expense:
    return Expense(
        expense_id=row["expense_id"],
        user_id=row["user_id"],
        amount=row["amount"],
        category=row["category"],
        date=row["date"],
        description=row["description"],
    )
