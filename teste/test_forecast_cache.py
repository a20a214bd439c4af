import asyncio

import pytest

from conftest import SYMBOL, FakeForecaster, seed_history
from src.infrastructure.utils.timeutils import GRID, slot_end
from src.models.errors import ForecastPersistenceError, ForecastServiceError, NoHistoricalData, NoRecentForecast
from src.services.forecast.forecast_cache import (
    ForecastCache,
    current_key,
    horizon_key,
    last_forecast_key,
)
from src.services.market.dataset_builder import HistoricalDatasetBuilder


def _cache(kv, store, clock, forecaster):
    builder = HistoricalDatasetBuilder(store, clock=clock)
    return ForecastCache(kv, forecaster, builder, window_size=288, clock=clock)


class FailingHorizonKV:
    """Delegates to a real store but refuses per-horizon writes."""

    def __init__(self, inner):
        self.inner = inner

    async def get(self, key):
        return await self.inner.get(key)

    async def put(self, key, value, ttl_sec=None):
        if "#" in key:
            raise OSError("disk full")
        await self.inner.put(key, value, ttl_sec)

    async def delete(self, key):
        await self.inner.delete(key)

    async def list(self, prefix):
        return await self.inner.list(prefix)

    async def apply(self, ops):
        await self.inner.apply(ops)


def test_one_provider_call_per_slot(kv, store, clock, slot):
    seed_history(store, slot, 30)
    forecaster = FakeForecaster()
    cache = _cache(kv, store, clock, forecaster)

    first = asyncio.run(cache.resolve(SYMBOL, 24))
    clock.advance(seconds=90)
    second = asyncio.run(cache.resolve(SYMBOL, 24))

    assert len(forecaster.calls) == 1
    assert first.source == "fresh"
    assert second.source == "cache"
    assert first.record == second.record
    assert forecaster.calls[0]["horizon"] == 24
    assert len(forecaster.calls[0]["y"]) == 30


def test_fresh_forecast_writes_every_entry(kv, store, clock, slot):
    seed_history(store, slot, 30)
    forecaster = FakeForecaster()
    record = asyncio.run(_cache(kv, store, clock, forecaster).get_forecast(SYMBOL, 24))

    assert record.values == pytest.approx(forecaster.values)
    assert record.timestamps[0] == (slot + GRID).strftime("%Y-%m-%d %H:%M:%S")
    assert asyncio.run(kv.get(current_key(SYMBOL)))["values"] == record.values
    assert asyncio.run(kv.get(last_forecast_key(SYMBOL)))["values"] == record.values

    keys = asyncio.run(kv.list(f"forecast:{SYMBOL}:"))
    assert len(keys) == 24
    assert asyncio.run(kv.get(horizon_key(SYMBOL, slot + GRID, 1))) == pytest.approx(forecaster.values[0])
    assert asyncio.run(kv.get(horizon_key(SYMBOL, slot + GRID * 24, 24))) == pytest.approx(forecaster.values[23])


def test_ttls_follow_the_grid(kv, store, clock, slot):
    seed_history(store, slot, 30)
    asyncio.run(_cache(kv, store, clock, FakeForecaster()).resolve(SYMBOL, 24))

    # current entry lives until the end of the slot
    clock.now = slot_end(slot) + GRID / 10
    assert asyncio.run(kv.get(current_key(SYMBOL))) is None
    assert asyncio.run(kv.get(last_forecast_key(SYMBOL))) is not None

    # step 1 predicts slot+5min and is kept for 5 minutes after that
    assert asyncio.run(kv.get(horizon_key(SYMBOL, slot + GRID, 1))) is not None
    clock.now = slot + GRID * 2 + GRID / 10
    assert asyncio.run(kv.get(horizon_key(SYMBOL, slot + GRID, 1))) is None
    assert asyncio.run(kv.get(horizon_key(SYMBOL, slot + GRID * 2, 2))) is not None


def test_stale_dataset_uses_last_known_good(kv, store, clock, slot):
    seed_history(store, slot - GRID, 30)
    forecaster = FakeForecaster()
    stored = {
        "symbol": SYMBOL,
        "horizon": 2,
        "generated_at": (slot - GRID).isoformat(),
        "timestamps": ["2025-01-15 12:05:00", "2025-01-15 12:10:00"],
        "values": [101.0, 102.0],
        "metadata": {},
    }
    asyncio.run(kv.put(last_forecast_key(SYMBOL), stored, 86400))

    result = asyncio.run(_cache(kv, store, clock, forecaster).resolve(SYMBOL, 24))

    assert result.source == "last_known_good"
    assert result.record.values == [101.0, 102.0]
    assert forecaster.calls == []


def test_stale_dataset_without_fallback_raises(kv, store, clock, slot):
    seed_history(store, slot - GRID, 30)
    forecaster = FakeForecaster()
    with pytest.raises(NoRecentForecast):
        asyncio.run(_cache(kv, store, clock, forecaster).resolve(SYMBOL, 24))
    assert forecaster.calls == []


def test_missing_history_reraises_without_fallback(kv, store, clock):
    with pytest.raises(NoHistoricalData):
        asyncio.run(_cache(kv, store, clock, FakeForecaster()).resolve(SYMBOL, 24))


def test_provider_failure_propagates_and_stores_nothing(kv, store, clock, slot):
    seed_history(store, slot, 30)
    forecaster = FakeForecaster(error=ForecastServiceError("Nixtla API error: 500", status=500))

    with pytest.raises(ForecastServiceError):
        asyncio.run(_cache(kv, store, clock, forecaster).resolve(SYMBOL, 24))

    assert asyncio.run(kv.get(current_key(SYMBOL))) is None
    assert asyncio.run(kv.list(f"forecast:{SYMBOL}:")) == []


def test_short_answer_is_a_service_error(kv, store, clock, slot):
    seed_history(store, slot, 30)
    with pytest.raises(ForecastServiceError):
        asyncio.run(_cache(kv, store, clock, FakeForecaster(values=[100.0] * 5)).resolve(SYMBOL, 24))


def test_persistence_failure_is_surfaced(kv, store, clock, slot):
    seed_history(store, slot, 30)
    cache = _cache(FailingHorizonKV(kv), store, clock, FakeForecaster())

    with pytest.raises(ForecastPersistenceError):
        asyncio.run(cache.resolve(SYMBOL, 24))


def test_peek_never_calls_provider(kv, store, clock, slot):
    seed_history(store, slot, 30)
    forecaster = FakeForecaster()
    cache = _cache(kv, store, clock, forecaster)

    assert asyncio.run(cache.peek(SYMBOL)) is None
    asyncio.run(cache.resolve(SYMBOL, 24))
    assert asyncio.run(cache.peek(SYMBOL)).source == "cache"

    clock.now = slot_end(slot) + GRID / 10
    assert asyncio.run(cache.peek(SYMBOL)).source == "last_known_good"
    assert len(forecaster.calls) == 1
