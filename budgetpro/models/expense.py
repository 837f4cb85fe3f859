from __future__ import annotations
from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Dict, List
from datetime import date, datetime
from .constants import CATEGORIES, NAME_MAX_LENGTH
from budgetpro.services.money import round2


class ExpenseIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=NAME_MAX_LENGTH)
    amount: float = Field(..., gt=0)
    category: str
    expense_date: date
    expense_hour: int = Field(..., ge=0, le=23)
    expense_minute: int = Field(..., ge=0, le=59)

    @field_validator("name", mode="before")
    @classmethod
    def strip_name(cls, v):  # type: ignore[override]
        if isinstance(v, str):
            v = v.strip()
        return v

    @field_validator("amount")
    @classmethod
    def two_decimals(cls, v: float) -> float:
        rounded = round2(v)
        if rounded <= 0:
            raise ValueError("amount must be at least 0.01")
        return rounded

    @field_validator("category")
    @classmethod
    def valid_category(cls, v: str) -> str:
        if v not in CATEGORIES:
            raise ValueError("unsupported category")
        return v

    @field_validator("expense_date")
    @classmethod
    def date_not_future(cls, v: date) -> date:
        if v > date.today():
            raise ValueError("date cannot be in the future")
        return v

    @property
    def expense_time(self) -> str:
        return f"{self.expense_hour:02d}:{self.expense_minute:02d}:00"


class ExpenseOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    amount: float
    category: str
    expense_date: date
    expense_hour: int
    expense_minute: int
    created_at: datetime


class ExpenseCreated(BaseModel):
    id: int
    message: str = "Expense saved"


class ExpenseDeleted(BaseModel):
    message: str = "Expense deleted"


class ExpenseListOut(BaseModel):
    """List payload plus the aggregates the dashboard renders next to it."""

    expenses: List[ExpenseOut]
    total: float
    by_category: Dict[str, float]
    by_date: Dict[str, float]
    count: int


class SyncBatchIn(BaseModel):
    # Items are validated one by one in the route so a bad record does not
    # reject the whole batch.
    expenses: List[dict] = Field(default_factory=list)


class SyncBatchOut(BaseModel):
    synced: int
    failed: int
    ids: List[int] = Field(default_factory=list)
    message: str
