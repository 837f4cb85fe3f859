import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import ValidationError

from budgetpro.db.dal import Database
from budgetpro.models.constants import ALL_CATEGORIES, CATEGORIES, PERIODS
from budgetpro.models.expense import (
    ExpenseCreated,
    ExpenseDeleted,
    ExpenseIn,
    ExpenseListOut,
    ExpenseOut,
    SyncBatchIn,
    SyncBatchOut,
)
from budgetpro.routers.deps import get_db, require_user
from budgetpro.services.stats import period_bounds, summarize_expenses

router = APIRouter(prefix="/api/expenses", tags=["expenses"])
logger = logging.getLogger("budgetpro.expenses")


# Helpers ----------------------------------------------------------


def _row_to_expense_out(row: dict) -> ExpenseOut:
    hour, minute, _ = row["expense_time"].split(":")
    return ExpenseOut(
        id=row["id"],
        name=row["name"],
        amount=row["amount"],
        category=row["category"],
        expense_date=datetime.strptime(row["expense_date"], "%Y-%m-%d").date(),
        expense_hour=int(hour),
        expense_minute=int(minute),
        created_at=datetime.fromisoformat(row["created_at"].replace("Z", "")),
    )


# Routes -----------------------------------------------------------
@router.get(
    "", response_model=ExpenseListOut, summary="List expenses with optional filters"
)
async def list_expenses_endpoint(
    period: str = Query("all", description="all | week | month | year"),
    category: str = Query(ALL_CATEGORIES, description="Category name or 'all'"),
    year: Optional[int] = Query(None, ge=1970, le=9999),
    month: Optional[int] = Query(None, ge=1, le=12),
    user: Dict[str, Any] = Depends(require_user),
    db: Database = Depends(get_db),
):
    # 1. Filter validation
    if period not in PERIODS:
        raise HTTPException(status_code=400, detail=f"unsupported period '{period}'")
    if category != ALL_CATEGORIES and category not in CATEGORIES:
        raise HTTPException(
            status_code=400, detail=f"unsupported category '{category}'"
        )
    # 2. Fetch
    rng = period_bounds(period, year=year, month=month)
    rows = db.list_expenses(
        user["user_id"],
        start_date=rng.start,
        end_date=rng.end,
        category=None if category == ALL_CATEGORIES else category,
    )
    # 3. Aggregate for the summary widgets
    total, by_category, by_date = summarize_expenses(rows)
    return ExpenseListOut(
        expenses=[_row_to_expense_out(r) for r in rows],
        total=total,
        by_category=by_category,
        by_date=by_date,
        count=len(rows),
    )


@router.post(
    "", response_model=ExpenseCreated, status_code=201, summary="Create an expense"
)
async def create_expense(
    payload: ExpenseIn,
    user: Dict[str, Any] = Depends(require_user),
    db: Database = Depends(get_db),
):
    try:
        expense_id = db.insert_expense(user["user_id"], payload)
    except Exception as e:  # pragma: no cover - generic safety
        raise HTTPException(status_code=500, detail="failed to persist expense") from e
    return ExpenseCreated(id=expense_id)


@router.post(
    "/sync",
    response_model=SyncBatchOut,
    summary="Insert a batch of expenses recorded offline",
)
async def sync_expenses(
    payload: SyncBatchIn,
    user: Dict[str, Any] = Depends(require_user),
    db: Database = Depends(get_db),
):
    """Validate each queued record on its own; invalid ones are counted, not fatal."""
    valid: List[ExpenseIn] = []
    failed = 0
    for item in payload.expenses:
        try:
            valid.append(ExpenseIn.model_validate(item))
        except ValidationError as e:
            failed += 1
            logger.warning("rejected synced expense: %s", e.errors()[0].get("msg"))
    ids = db.insert_expenses(user["user_id"], valid) if valid else []
    return SyncBatchOut(
        synced=len(ids),
        failed=failed,
        ids=ids,
        message=f"{len(ids)} expense(s) synchronized",
    )


@router.delete(
    "/{expense_id}", response_model=ExpenseDeleted, summary="Delete an expense"
)
async def delete_expense(
    expense_id: int,
    user: Dict[str, Any] = Depends(require_user),
    db: Database = Depends(get_db),
):
    try:
        db.delete_expense(user["user_id"], expense_id)
    except ValueError:
        raise HTTPException(
            status_code=404, detail="expense not found or not owned by user"
        )
    return ExpenseDeleted()
