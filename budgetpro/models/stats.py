from __future__ import annotations
from pydantic import BaseModel
from typing import List, Optional


class WeeklyDataset(BaseModel):
    label: str
    data: List[float]


class StatsOut(BaseModel):
    """Chart-ready series: one label per bucket, one value per label."""

    type: str
    period: str
    labels: List[str]
    data: List[float]
    counts: Optional[List[int]] = None
    datasets: Optional[List[WeeklyDataset]] = None
