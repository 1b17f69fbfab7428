"""Record, request and response types.

Wire format is camelCase JSON (``userId``, ``monthlyBudget``); Python code
uses the snake_case field names.
"""

import datetime as dt
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import ValidationError


class Category(str, Enum):
    food = "Food"
    travel = "Travel"
    rent = "Rent"
    stationery = "Stationery"
    utilities = "Utilities"
    entertainment = "Entertainment"
    clothing = "Clothing"
    health = "Health"
    education = "Education"
    other = "Other"


def _date_only(value: Any) -> Any:
    # Calendar day only: "2026-10-18T09:30:00Z" -> "2026-10-18"
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, str) and "T" in value:
        return value.split("T", 1)[0]
    return value


class WireModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class User(WireModel):
    user_id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    monthly_budget: float = Field(default=0, ge=0)
    created_at: dt.datetime


class Expense(WireModel):
    expense_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    amount: float = Field(..., gt=0)
    category: Category
    date: dt.date
    description: str = ""

    @field_validator("date", mode="before")
    @classmethod
    def _strip_time(cls, value: Any) -> Any:
        return _date_only(value)

    @field_validator("description", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value


# ---------------------------------------------------------------------------
# Requests
# ---------------------------------------------------------------------------


class UserCreate(WireModel):
    model_config = ConfigDict(extra="forbid")

    user_id: str = Field(..., min_length=1)
    email: str = Field(..., min_length=1)
    monthly_budget: float = Field(default=0, ge=0)
    created_at: Optional[dt.datetime] = None


class UserUpdate(WireModel):
    model_config = ConfigDict(extra="forbid")

    monthly_budget: Optional[float] = Field(default=None, ge=0)


class ExpenseCreate(Expense):
    """Full expense record as posted to the record store."""

    model_config = ConfigDict(extra="forbid")


class ExpenseIn(WireModel):
    """User input for a new expense; id and owner are assigned by the sync layer."""

    model_config = ConfigDict(extra="forbid")

    amount: float = Field(..., gt=0)
    category: Category
    date: dt.date
    description: str = Field(default="", max_length=500)

    @field_validator("date", mode="before")
    @classmethod
    def _strip_time(cls, value: Any) -> Any:
        return _date_only(value)

    @field_validator("description", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value


class ExpenseUpdate(WireModel):
    model_config = ConfigDict(extra="forbid")

    user_id: Optional[str] = None
    amount: Optional[float] = Field(default=None, gt=0)
    category: Optional[Category] = None
    date: Optional[dt.date] = None
    description: Optional[str] = Field(default=None, max_length=500)

    @field_validator("date", mode="before")
    @classmethod
    def _strip_time(cls, value: Any) -> Any:
        return _date_only(value)

    def changes(self) -> dict[str, Any]:
        """Mutable fields explicitly set by the caller (owner excluded)."""
        return self.model_dump(
            exclude_unset=True,
            exclude_none=True,
            exclude={"user_id"},
        )


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


class ReportResult(WireModel):
    file_name: str
    source: Literal["local", "remote"]
    url: Optional[str] = None
    content: Optional[str] = None


def parse_model(model_cls: type[WireModel], data: Any) -> Any:
    """Validate ``data`` into ``model_cls``, raising the domain ValidationError."""
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"Invalid {model_cls.__name__}: {problems}") from e
