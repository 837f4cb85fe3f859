"""Client-side durable storage.

One sqlite file holds two things:
  - ``kv``: small JSON documents (the pending write queue, last known user)
  - ``responses``: cached HTTP responses keyed by (namespace, signature)

Every write is a single transaction, so a reader never observes a half-written
queue. sqlite failures surface as PersistenceError.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Optional

from budgetpro.db.dal import UTC_NOW_SQL
from .errors import PersistenceError

logger = logging.getLogger("budgetpro.offline.storage")

KV_DDL = f"""
CREATE TABLE IF NOT EXISTS kv (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL,
    updated_at TEXT NOT NULL DEFAULT ({UTC_NOW_SQL})
);
"""

RESPONSES_DDL = f"""
CREATE TABLE IF NOT EXISTS responses (
    namespace TEXT NOT NULL,
    signature TEXT NOT NULL,
    status_code INTEGER NOT NULL,
    media_type TEXT,
    body BLOB NOT NULL,
    stored_at TEXT NOT NULL DEFAULT ({UTC_NOW_SQL}),
    PRIMARY KEY (namespace, signature)
);
"""


@dataclass(frozen=True)
class StoredResponse:
    signature: str
    status_code: int
    media_type: Optional[str]
    body: bytes
    stored_at: str = ""


class LocalStore:
    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._execute_ddl()

    # ------------------------------------------------------------------
    # Connection helpers
    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def _execute_ddl(self) -> None:
        try:
            with self._connect() as conn:
                conn.execute(KV_DDL)
                conn.execute(RESPONSES_DDL)
                conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot initialize local store {self.path}: {e}") from e

    # ------------------------------------------------------------------
    # Key/value documents
    def get_json(self, key: str, default: Any = None) -> Any:
        try:
            with self._connect() as conn:
                cur = conn.cursor()
                cur.execute("SELECT value FROM kv WHERE key = ?", (key,))
                row = cur.fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot read '{key}': {e}") from e
        if row is None:
            return default
        try:
            return json.loads(row["value"])
        except ValueError as e:
            raise PersistenceError(f"stored value for '{key}' is corrupt") from e

    def set_json(self, key: str, value: Any) -> None:
        try:
            payload = json.dumps(value, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            logger.error("cannot encode value for '%s'", key)
            raise PersistenceError(f"cannot encode '{key}': {e}") from e
        try:
            with self._connect() as conn:
                conn.execute(
                    f"""
                    INSERT INTO kv (key, value) VALUES (?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = ({UTC_NOW_SQL})
                    """,
                    (key, payload),
                )
                conn.commit()
        except sqlite3.Error as e:
            logger.error("local store write failed for '%s'", key)
            raise PersistenceError(f"cannot write '{key}': {e}") from e

    def delete(self, key: str) -> None:
        try:
            with self._connect() as conn:
                conn.execute("DELETE FROM kv WHERE key = ?", (key,))
                conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot delete '{key}': {e}") from e

    # ------------------------------------------------------------------
    # Cached responses
    def get_response(self, namespace: str, signature: str) -> Optional[StoredResponse]:
        try:
            with self._connect() as conn:
                cur = conn.cursor()
                cur.execute(
                    """
                    SELECT signature, status_code, media_type, body, stored_at
                    FROM responses WHERE namespace = ? AND signature = ?
                    """,
                    (namespace, signature),
                )
                row = cur.fetchone()
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot read cached response: {e}") from e
        if row is None:
            return None
        return StoredResponse(
            signature=row["signature"],
            status_code=int(row["status_code"]),
            media_type=row["media_type"],
            body=bytes(row["body"]),
            stored_at=row["stored_at"],
        )

    def put_response(self, namespace: str, response: StoredResponse) -> None:
        """Store a response, replacing whatever was kept for that signature."""
        try:
            with self._connect() as conn:
                conn.execute(
                    f"""
                    INSERT INTO responses (namespace, signature, status_code, media_type, body)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(namespace, signature) DO UPDATE SET
                        status_code = excluded.status_code,
                        media_type = excluded.media_type,
                        body = excluded.body,
                        stored_at = ({UTC_NOW_SQL})
                    """,
                    (
                        namespace,
                        response.signature,
                        response.status_code,
                        response.media_type,
                        sqlite3.Binary(response.body),
                    ),
                )
                conn.commit()
        except sqlite3.Error as e:
            logger.error("local store write failed for cached %s", response.signature)
            raise PersistenceError(f"cannot cache response: {e}") from e

    def list_namespaces(self) -> List[str]:
        try:
            with self._connect() as conn:
                cur = conn.cursor()
                cur.execute("SELECT DISTINCT namespace FROM responses ORDER BY namespace")
                return [r[0] for r in cur.fetchall()]
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot list cache namespaces: {e}") from e

    def drop_namespaces(self, namespaces: Iterable[str]) -> int:
        names = list(namespaces)
        if not names:
            return 0
        marks = ", ".join("?" for _ in names)
        try:
            with self._connect() as conn:
                cur = conn.cursor()
                cur.execute(f"DELETE FROM responses WHERE namespace IN ({marks})", names)
                conn.commit()
                return cur.rowcount
        except sqlite3.Error as e:
            raise PersistenceError(f"cannot drop cache namespaces: {e}") from e
