"""Pydantic domain models for the Budget Pro API."""

from .constants import (
    CATEGORIES,
    PERIODS,
    STATS_KINDS,
)  # re-export
from .expense import ExpenseIn, ExpenseOut, ExpenseListOut
from .stats import StatsOut
from .auth import Credentials, SessionOut

__all__ = [
    "CATEGORIES",
    "PERIODS",
    "STATS_KINDS",
    "ExpenseIn",
    "ExpenseOut",
    "ExpenseListOut",
    "StatsOut",
    "Credentials",
    "SessionOut",
]
