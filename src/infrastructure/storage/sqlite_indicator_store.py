"""SQLite time-series table for per-indicator snapshots."""

from __future__ import annotations

import json
import sqlite3
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from src.infrastructure.utils.timeutils import from_epoch_ms, to_epoch_ms, utc_now
from src.models.market_models import IndicatorKind, IndicatorSnapshot

JsonDict = Dict[str, Any]


@dataclass(frozen=True)
class DatapointRow:
    symbol: str
    indicator: str
    timestamp: datetime
    data: JsonDict


class SQLiteIndicatorStore:
    def __init__(self, db_path: Path) -> None:
        self._path = db_path
        if self._path.as_posix() != ":memory:":
            self._path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self._path.as_posix(), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        # the engine writes from the event loop while API routes read from a threadpool
        self._lock = threading.Lock()
        self._init_schema()

    def _init_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS datapoints (
              id INTEGER PRIMARY KEY AUTOINCREMENT,
              symbol TEXT NOT NULL,
              indicator TEXT NOT NULL,
              timestamp INTEGER NOT NULL,
              data TEXT NOT NULL,
              created_at TEXT NOT NULL,
              UNIQUE(symbol, indicator, timestamp)
            );
            """
        )
        cur.execute(
            "CREATE INDEX IF NOT EXISTS idx_datapoints_symbol_ts ON datapoints(symbol, timestamp)"
        )
        self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def _fetch(self, query: str, params: Any) -> List[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(query, params).fetchall()

    def upsert(self, snapshot: IndicatorSnapshot) -> None:
        """Insert or replace the (symbol, indicator, timestamp) row; last writer wins."""
        with self._lock:
            self._conn.execute(
                """
                INSERT INTO datapoints(symbol, indicator, timestamp, data, created_at) VALUES(?,?,?,?,?)
                ON CONFLICT(symbol, indicator, timestamp)
                DO UPDATE SET data = excluded.data, created_at = excluded.created_at
                """,
                (
                    snapshot.symbol,
                    snapshot.kind.value,
                    to_epoch_ms(snapshot.timestamp),
                    json.dumps(snapshot.stored_data()),
                    utc_now().isoformat(),
                ),
            )
            self._conn.commit()

    def window(self, symbol: str, up_to: datetime, limit: int) -> List[DatapointRow]:
        """All rows sharing the `limit` most recent candle timestamps at or before `up_to`, oldest first."""
        rows = self._fetch(
            """
            WITH timestamps AS (
              SELECT DISTINCT timestamp
              FROM datapoints
              WHERE symbol = ?
              AND indicator = ?
              AND timestamp <= ?
              ORDER BY timestamp DESC
              LIMIT ?
            )
            SELECT d.symbol, d.indicator, d.timestamp, d.data
            FROM datapoints d
            INNER JOIN timestamps t ON d.timestamp = t.timestamp
            WHERE d.symbol = ?
            ORDER BY d.timestamp ASC, d.indicator
            """,
            (symbol, IndicatorKind.CANDLE.value, to_epoch_ms(up_to), int(limit), symbol),
        )
        return [self._to_row(r) for r in rows]

    def history(
        self,
        symbol: str,
        indicator: str,
        *,
        limit: int = 100,
        from_ts: Optional[datetime] = None,
        to_ts: Optional[datetime] = None,
    ) -> List[DatapointRow]:
        query = "SELECT symbol, indicator, timestamp, data FROM datapoints WHERE symbol = ? AND indicator = ?"
        params: List[Any] = [symbol, indicator]
        if from_ts is not None:
            query += " AND timestamp >= ?"
            params.append(to_epoch_ms(from_ts))
        if to_ts is not None:
            query += " AND timestamp <= ?"
            params.append(to_epoch_ms(to_ts))
        query += " ORDER BY timestamp DESC LIMIT ?"
        params.append(int(limit))
        return [self._to_row(r) for r in self._fetch(query, params)]

    def history_all(
        self,
        symbol: str,
        *,
        limit: int = 100,
        from_ts: Optional[datetime] = None,
        to_ts: Optional[datetime] = None,
    ) -> "OrderedDict[datetime, Dict[str, JsonDict]]":
        """Indicators grouped by timestamp for the `limit` most recent timestamps, newest first."""
        filters = ""
        params: List[Any] = [symbol]
        if from_ts is not None:
            filters += " AND timestamp >= ?"
            params.append(to_epoch_ms(from_ts))
        if to_ts is not None:
            filters += " AND timestamp <= ?"
            params.append(to_epoch_ms(to_ts))
        params.extend([int(limit), symbol])
        rows = self._fetch(
            f"""
            WITH timestamps AS (
              SELECT DISTINCT timestamp
              FROM datapoints
              WHERE symbol = ?{filters}
              ORDER BY timestamp DESC
              LIMIT ?
            )
            SELECT d.symbol, d.indicator, d.timestamp, d.data
            FROM datapoints d
            INNER JOIN timestamps t ON d.timestamp = t.timestamp
            WHERE d.symbol = ?
            ORDER BY d.timestamp DESC, d.indicator
            """,
            params,
        )
        grouped: "OrderedDict[datetime, Dict[str, JsonDict]]" = OrderedDict()
        for r in rows:
            row = self._to_row(r)
            grouped.setdefault(row.timestamp, {})[row.indicator] = row.data
        return grouped

    def at(self, symbol: str, ts: datetime) -> Dict[str, JsonDict]:
        rows = self._fetch(
            "SELECT symbol, indicator, timestamp, data FROM datapoints WHERE symbol = ? AND timestamp = ?",
            (symbol, to_epoch_ms(ts)),
        )
        return {r["indicator"]: json.loads(r["data"]) for r in rows}

    @staticmethod
    def _to_row(r: sqlite3.Row) -> DatapointRow:
        return DatapointRow(
            symbol=r["symbol"],
            indicator=r["indicator"],
            timestamp=from_epoch_ms(r["timestamp"]),
            data=json.loads(r["data"]),
        )
