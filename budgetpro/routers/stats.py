from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, Query

from budgetpro.db.dal import Database
from budgetpro.models.constants import PERIODS, STATS_KINDS
from budgetpro.models.stats import StatsOut
from budgetpro.routers.deps import get_db, require_user
from budgetpro.services.stats import compute_stats

router = APIRouter(prefix="/api/stats", tags=["stats"])


@router.get("", response_model=StatsOut, summary="Chart aggregates for the user")
async def stats_endpoint(
    type: str = Query("by_category", description="by_category | by_day | by_month | by_week"),
    period: str = Query("month", description="all | week | month | year"),
    user: Dict[str, Any] = Depends(require_user),
    db: Database = Depends(get_db),
):
    """Return labels/data series for one chart.

    ``period`` narrows by_category and by_day; by_month and by_week always
    cover their rolling windows (12 months, 8 weeks).
    """
    if type not in STATS_KINDS:
        raise HTTPException(status_code=400, detail=f"unknown stats type '{type}'")
    if period not in PERIODS:
        raise HTTPException(status_code=400, detail=f"unsupported period '{period}'")
    return compute_stats(db, user["user_id"], type, period)
