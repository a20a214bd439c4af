"""SQLite key-value store with per-key TTL (forecast cache, positions, balance, stats)."""

from __future__ import annotations

import asyncio
import json
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence

from src.infrastructure.utils.timeutils import utc_now


@dataclass(frozen=True)
class KVOp:
    key: str
    value: Any = None
    ttl_sec: Optional[int] = None
    is_delete: bool = False

    @classmethod
    def set(cls, key: str, value: Any, ttl_sec: Optional[int] = None) -> "KVOp":
        return cls(key=key, value=value, ttl_sec=ttl_sec)

    @classmethod
    def remove(cls, key: str) -> "KVOp":
        return cls(key=key, is_delete=True)


class SQLiteKVStore:
    """JSON values keyed by string; expired keys are invisible and purged lazily.

    Methods are coroutines so callers can scatter/gather writes; the sqlite work
    runs in a worker thread behind one lock.
    """

    def __init__(self, db_path: Path, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._path = db_path
        if self._path.as_posix() != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._path.as_posix(), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._clock = clock
        self._init_schema()

    def _init_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS kv (
              key TEXT PRIMARY KEY,
              value_json TEXT NOT NULL,
              expires_at REAL
            );
            """
        )
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()

    def _now(self) -> float:
        return self._clock().timestamp()

    def _expiry(self, ttl_sec: Optional[int]) -> Optional[float]:
        if ttl_sec is None:
            return None
        return (self._clock() + timedelta(seconds=int(ttl_sec))).timestamp()

    # ---- sync primitives (run under the lock) ----
    def _get(self, key: str) -> Optional[Any]:
        with self._lock:
            row = self._conn.execute(
                "SELECT value_json, expires_at FROM kv WHERE key = ?", (key,)
            ).fetchone()
            if row is None:
                return None
            if row["expires_at"] is not None and row["expires_at"] <= self._now():
                self._conn.execute("DELETE FROM kv WHERE key = ?", (key,))
                self._conn.commit()
                return None
            return json.loads(row["value_json"])

    def _apply(self, ops: Sequence[KVOp]) -> None:
        with self._lock:
            try:
                for op in ops:
                    if op.is_delete:
                        self._conn.execute("DELETE FROM kv WHERE key = ?", (op.key,))
                    else:
                        self._conn.execute(
                            """
                            INSERT INTO kv(key, value_json, expires_at) VALUES(?,?,?)
                            ON CONFLICT(key) DO UPDATE SET
                              value_json = excluded.value_json, expires_at = excluded.expires_at
                            """,
                            (op.key, json.dumps(op.value), self._expiry(op.ttl_sec)),
                        )
                self._conn.commit()
            except Exception:
                self._conn.rollback()
                raise

    def _list(self, prefix: str) -> List[str]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT key FROM kv
                WHERE substr(key, 1, ?) = ? AND (expires_at IS NULL OR expires_at > ?)
                ORDER BY key
                """,
                (len(prefix), prefix, self._now()),
            ).fetchall()
            return [r["key"] for r in rows]

    # ---- async contract ----
    async def get(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self._get, key)

    async def put(self, key: str, value: Any, ttl_sec: Optional[int] = None) -> None:
        await asyncio.to_thread(self._apply, [KVOp.set(key, value, ttl_sec)])

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._apply, [KVOp.remove(key)])

    async def list(self, prefix: str) -> List[str]:
        return await asyncio.to_thread(self._list, prefix)

    async def apply(self, ops: Sequence[KVOp]) -> None:
        """Write every op in one transaction (all-or-nothing)."""
        await asyncio.to_thread(self._apply, list(ops))
