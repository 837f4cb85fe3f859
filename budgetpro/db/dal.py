"""Data Access Layer utilities with per-user scoping.

Responsibilities
----------------
- Provide CRUD helpers for users and login sessions.
- Scope every expense read and write to the owning user.
- Offer aggregation helpers (totals, grouped sums) that routers and the stats
  service turn into chart series.
"""

from __future__ import annotations

from pathlib import Path
import sqlite3
from typing import Any, Dict, List, Optional
from datetime import date, datetime

from budgetpro.models import ExpenseIn

UTC_NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%fZ','now')"


def to_utc_iso(value: datetime) -> str:
    """Format a UTC datetime the way UTC_NOW_SQL does, so strings compare."""
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


class Database:
    def __init__(self, db_path: Path):
        self.db_path = db_path

    # ------------------------------------------------------------------
    # Connection helpers
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    # ------------------------------------------------------------------
    # Users
    def create_user(self, username: str, password_hash: str) -> int:
        with self._connect() as conn:
            cur = conn.cursor()
            try:
                cur.execute(
                    "INSERT INTO users (username, password_hash) VALUES (?, ?)",
                    (username, password_hash),
                )
            except sqlite3.IntegrityError as e:
                raise ValueError(f"username '{username}' is already taken") from e
            conn.commit()
            return int(cur.lastrowid)

    def get_user_by_username(self, username: str) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("SELECT * FROM users WHERE username = ?", (username,))
            row = cur.fetchone()
            return dict(row) if row else None

    # ------------------------------------------------------------------
    # Sessions
    def create_session(self, token: str, user_id: int, expires_at: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                f"""
                INSERT INTO sessions (token, user_id, expires_at, last_seen_at)
                VALUES (?, ?, ?, ({UTC_NOW_SQL}))
                """,
                (token, user_id, to_utc_iso(expires_at)),
            )
            conn.commit()

    def get_session_user(self, token: str) -> Optional[Dict[str, Any]]:
        """Return {user_id, username} for a live session and mark it as seen."""
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                SELECT s.user_id AS user_id, u.username AS username
                FROM sessions s JOIN users u ON u.id = s.user_id
                WHERE s.token = ? AND s.expires_at > ({UTC_NOW_SQL})
                """,
                (token,),
            )
            row = cur.fetchone()
            if not row:
                return None
            cur.execute(
                f"UPDATE sessions SET last_seen_at = ({UTC_NOW_SQL}) WHERE token = ?",
                (token,),
            )
            conn.commit()
            return dict(row)

    def delete_session(self, token: str) -> bool:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute("DELETE FROM sessions WHERE token = ?", (token,))
            conn.commit()
            return cur.rowcount > 0

    def purge_expired_sessions(self) -> int:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(f"DELETE FROM sessions WHERE expires_at <= ({UTC_NOW_SQL})")
            conn.commit()
            return cur.rowcount

    # ------------------------------------------------------------------
    # Expenses
    def insert_expense(self, user_id: int, expense: ExpenseIn) -> int:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                INSERT INTO expenses (user_id, name, amount, category, expense_date, expense_time)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    user_id,
                    expense.name,
                    expense.amount,
                    expense.category,
                    expense.expense_date.isoformat(),
                    expense.expense_time,
                ),
            )
            conn.commit()
            return int(cur.lastrowid)

    def insert_expenses(self, user_id: int, expenses: List[ExpenseIn]) -> List[int]:
        """Insert several expenses in a single transaction (batch sync)."""
        ids: List[int] = []
        with self._connect() as conn:
            cur = conn.cursor()
            for expense in expenses:
                cur.execute(
                    """
                    INSERT INTO expenses (user_id, name, amount, category, expense_date, expense_time)
                    VALUES (?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user_id,
                        expense.name,
                        expense.amount,
                        expense.category,
                        expense.expense_date.isoformat(),
                        expense.expense_time,
                    ),
                )
                ids.append(int(cur.lastrowid))
            conn.commit()
        return ids

    def list_expenses(
        self,
        user_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        category: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        clauses = ["user_id = ?"]
        params: List[Any] = [user_id]
        if start_date:
            clauses.append("expense_date >= ?")
            params.append(start_date.isoformat())
        if end_date:
            clauses.append("expense_date <= ?")
            params.append(end_date.isoformat())
        if category:
            clauses.append("category = ?")
            params.append(category)
        where = " WHERE " + " AND ".join(clauses)
        sql = (
            f"SELECT * FROM expenses{where} "
            "ORDER BY expense_date DESC, expense_time DESC, id DESC"
        )
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(sql, params)
            return [dict(r) for r in cur.fetchall()]

    def delete_expense(self, user_id: int, expense_id: int) -> None:
        """Delete an expense owned by user_id; ValueError when absent or foreign."""
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                "DELETE FROM expenses WHERE id = ? AND user_id = ?",
                (expense_id, user_id),
            )
            if cur.rowcount == 0:
                raise ValueError("expense not found")
            conn.commit()

    # ------------------------------------------------------------------
    # Aggregations (user scoped)
    def _range_clause(
        self, start_date: Optional[date], end_date: Optional[date]
    ) -> tuple[str, List[Any]]:
        clause = ""
        params: List[Any] = []
        if start_date:
            clause += " AND expense_date >= ?"
            params.append(start_date.isoformat())
        if end_date:
            clause += " AND expense_date <= ?"
            params.append(end_date.isoformat())
        return clause, params

    def totals_by_category(
        self,
        user_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        rng, params = self._range_clause(start_date, end_date)
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                SELECT category, SUM(amount) AS total, COUNT(*) AS count
                FROM expenses
                WHERE user_id = ?{rng}
                GROUP BY category
                ORDER BY total DESC, category ASC
                """,
                [user_id, *params],
            )
            return [dict(r) for r in cur.fetchall()]

    def totals_by_day(
        self,
        user_id: int,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        rng, params = self._range_clause(start_date, end_date)
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                f"""
                SELECT expense_date AS day, SUM(amount) AS total
                FROM expenses
                WHERE user_id = ?{rng}
                GROUP BY expense_date
                ORDER BY expense_date ASC
                """,
                [user_id, *params],
            )
            return [dict(r) for r in cur.fetchall()]

    def totals_by_month(self, user_id: int, since: date) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT substr(expense_date, 1, 7) AS month_key, SUM(amount) AS total
                FROM expenses
                WHERE user_id = ? AND expense_date >= ?
                GROUP BY month_key
                ORDER BY month_key ASC
                """,
                (user_id, since.isoformat()),
            )
            return [dict(r) for r in cur.fetchall()]

    def totals_by_day_and_category(
        self, user_id: int, since: date
    ) -> List[Dict[str, Any]]:
        """Daily per-category sums; callers bucket them into ISO weeks."""
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                SELECT expense_date AS day, category, SUM(amount) AS total
                FROM expenses
                WHERE user_id = ? AND expense_date >= ?
                GROUP BY expense_date, category
                ORDER BY expense_date ASC
                """,
                (user_id, since.isoformat()),
            )
            return [dict(r) for r in cur.fetchall()]
