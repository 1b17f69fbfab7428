"""CSV expense reports and their storage."""

import datetime as dt
import re
import time
from collections.abc import Sequence
from pathlib import Path
from typing import Protocol

from .schemas import Expense


CSV_BOM = "\ufeff"
CSV_HEADER = "Date,Amount,Category,Description"
FORMULA_TRIGGERS = ("=", "+", "-", "@", "\t", "\r")


def sanitize_csv_value(value: str) -> str:
    """
    Prefix values that spreadsheets would evaluate as formulas with a tab.

    Any other value, surrounding whitespace included, is written unchanged.
    """
    if value.startswith(FORMULA_TRIGGERS):
        return "\t" + value
    return value


def format_amount(amount: float) -> str:
    if float(amount).is_integer():
        return str(int(amount))
    return format(amount, "f").rstrip("0").rstrip(".")


def format_report_date(value: dt.date) -> str:
    # MM/DD/YYYY is what spreadsheet apps pick up as a date without quoting.
    return value.strftime("%m/%d/%Y")


def build_csv(expenses: Sequence[Expense]) -> str:
    """Render expenses as a UTF-8 (BOM-prefixed) CSV document.

    One row per expense: date as MM/DD/YYYY, raw amount, category name and
    the description always double-quoted.
    """
    rows = [CSV_HEADER]
    for expense in expenses:
        description = sanitize_csv_value(expense.description).replace('"', '""')
        rows.append(
            f"{format_report_date(expense.date)},"
            f"{format_amount(expense.amount)},"
            f"{expense.category.value},"
            f'"{description}"'
        )
    return CSV_BOM + "\n".join(rows)


def report_file_name(user_id: str, today: dt.date | None = None) -> str:
    today = today or dt.date.today()
    safe_user = re.sub(r"[^A-Za-z0-9_.@-]", "_", user_id)
    return f"expense-report-{safe_user}-{today.isoformat()}.csv"


class ReportStorage(Protocol):
    def save(self, file_name: str, content: str) -> str:
        """Store a report and return a time-limited download URL."""
        ...


class LocalReportStorage:
    """Reports kept as files; URLs carry an ``expires`` epoch."""

    def __init__(self, directory: str | Path, ttl_secs: int = 3600):
        self.directory = Path(directory)
        self.ttl_secs = ttl_secs

    def save(self, file_name: str, content: str) -> str:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.directory / file_name
        path.write_text(content, encoding="utf-8")
        expires = int(time.time()) + self.ttl_secs
        return f"{path.resolve().as_uri()}?expires={expires}"
