"""Time-aligned forecast cache.

Per call:
1. Dataset not caught up with the current slot -> last-known-good forecast (or NoRecentForecast).
2. Current-slot cache hit -> cached record, no provider call.
3. Otherwise ask the provider (no retry here), then persist current / last-known-good /
   per-horizon entries concurrently before reporting success.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, List, Optional

from src.infrastructure.logging.logging import get_logger
from src.infrastructure.utils.timeutils import (
    GRID,
    SERIES_FORMAT,
    SLOT_KEY_FORMAT,
    current_slot,
    parse_series_ts,
    slot_end,
    ttl_until,
    utc_now,
)
from src.models.errors import DataIncomplete, ForecastPersistenceError, ForecastServiceError, NoRecentForecast
from src.models.forecast_models import ForecastRecord
from src.models.market_models import AlignedDataset
from src.services.contracts import ForecastProvider, KeyValueStore
from src.services.market.dataset_builder import HistoricalDatasetBuilder

log = get_logger("forecast_cache")

LAST_KNOWN_GOOD_TTL_SEC = 24 * 60 * 60


def current_key(symbol: str) -> str:
    return f"forecast:{symbol}"


def last_forecast_key(symbol: str) -> str:
    return f"last_forecast:{symbol}"


def horizon_prefix(symbol: str, ts: datetime) -> str:
    return f"forecast:{symbol}:{ts.strftime(SLOT_KEY_FORMAT)}#"


def horizon_key(symbol: str, ts: datetime, periods_ahead: int) -> str:
    return f"{horizon_prefix(symbol, ts)}{periods_ahead}"


@dataclass(frozen=True)
class ForecastResult:
    record: ForecastRecord
    source: str        # "fresh" | "cache" | "last_known_good"


class ForecastCache:
    def __init__(
        self,
        kv: KeyValueStore,
        provider: ForecastProvider,
        builder: HistoricalDatasetBuilder,
        *,
        window_size: int = 288,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._kv = kv
        self._provider = provider
        self._builder = builder
        self._window_size = window_size
        self._clock = clock

    async def get_forecast(
        self, symbol: str, horizon: int, dataset: Optional[AlignedDataset] = None
    ) -> ForecastRecord:
        return (await self.resolve(symbol, horizon, dataset)).record

    async def resolve(
        self, symbol: str, horizon: int, dataset: Optional[AlignedDataset] = None
    ) -> ForecastResult:
        slot = current_slot(self._clock())

        if dataset is None:
            try:
                dataset = self._builder.build(symbol, self._window_size)
            except DataIncomplete as e:
                log.warning("dataset_unavailable", symbol=symbol, error=str(e))
                return await self._last_known_good(symbol, cause=e)

        if not dataset.is_current(slot):
            log.info(
                "data_fetch_pending",
                symbol=symbol,
                last=dataset.last_timestamp.isoformat(),
                slot=slot.isoformat(),
            )
            return await self._last_known_good(symbol)

        cached = await self._kv.get(current_key(symbol))
        if cached:
            log.info("cache_hit", symbol=symbol, key=current_key(symbol))
            return ForecastResult(ForecastRecord.from_dict(cached), "cache")

        log.info("cache_miss", symbol=symbol, horizon=horizon, rows=len(dataset))
        answer = await self._provider.forecast(dataset.series_y(), dataset.series_x(), horizon)
        if len(answer.values) < horizon:
            raise ForecastServiceError(
                f"forecast provider returned {len(answer.values)} values, expected {horizon}"
            )

        values = [float(v) for v in answer.values[:horizon]]
        if len(answer.timestamps) >= horizon:
            predicted = [parse_series_ts(t) for t in answer.timestamps[:horizon]]
        else:
            predicted = [dataset.last_timestamp + GRID * h for h in range(1, horizon + 1)]

        record = ForecastRecord(
            symbol=symbol,
            horizon=horizon,
            generated_at=slot.isoformat(),
            timestamps=[ts.strftime(SERIES_FORMAT) for ts in predicted],
            values=values,
            metadata=dict(answer.metadata),
        )
        await self._persist(record, slot, predicted)
        log.info("forecast_stored", symbol=symbol, horizon=horizon, first=values[0], last=values[-1])
        return ForecastResult(record, "fresh")

    async def peek(self, symbol: str) -> Optional[ForecastResult]:
        """Current-slot entry, else last-known-good; never calls the provider."""
        cached = await self._kv.get(current_key(symbol))
        if cached:
            return ForecastResult(ForecastRecord.from_dict(cached), "cache")
        last = await self._kv.get(last_forecast_key(symbol))
        if last:
            return ForecastResult(ForecastRecord.from_dict(last), "last_known_good")
        return None

    async def _last_known_good(self, symbol: str, cause: Optional[Exception] = None) -> ForecastResult:
        last = await self._kv.get(last_forecast_key(symbol))
        if last:
            log.info("using_last_forecast", symbol=symbol)
            return ForecastResult(ForecastRecord.from_dict(last), "last_known_good")
        if cause is not None:
            raise cause
        raise NoRecentForecast(symbol)

    async def _persist(self, record: ForecastRecord, slot: datetime, predicted: List[datetime]) -> None:
        now = self._clock()
        payload = record.to_dict()
        writes: List[Awaitable[Any]] = [
            self._kv.put(current_key(record.symbol), payload, ttl_until(slot_end(slot), now)),
            self._kv.put(last_forecast_key(record.symbol), payload, LAST_KNOWN_GOOD_TTL_SEC),
        ]
        for h, (ts, value) in enumerate(zip(predicted, record.values), start=1):
            # keep each step until 5 minutes past its predicted slot
            writes.append(self._kv.put(horizon_key(record.symbol, ts, h), value, ttl_until(ts + GRID, now)))

        try:
            await asyncio.gather(*writes)
        except Exception as e:
            log.error("forecast_persist_failed", symbol=record.symbol, writes=len(writes), error=str(e))
            raise ForecastPersistenceError(f"forecast cache write failed for {record.symbol}: {e}") from e
