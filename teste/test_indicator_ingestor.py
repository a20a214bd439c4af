import asyncio

from conftest import SYMBOL, FakeIndicatorProvider, FakeMarketProvider
from src.models.errors import IndicatorProviderError
from src.models.market_models import IndicatorKind
from src.services.forecast.accuracy_tracker import ForecastAccuracyTracker
from src.services.forecast.forecast_cache import horizon_key
from src.services.market.indicator_ingestor import IndicatorIngestor


class RecordingTracker(ForecastAccuracyTracker):
    def __init__(self, kv):
        super().__init__(kv)
        self.checked = []

    async def check_accuracy(self, symbol, actual_close, timestamp):
        self.checked.append((symbol, actual_close, timestamp))
        return await super().check_accuracy(symbol, actual_close, timestamp)


def test_all_sources_are_stored_at_the_slot(store, kv, clock, slot):
    ingestor = IndicatorIngestor(store, FakeIndicatorProvider(), FakeMarketProvider(), clock=clock)

    stored = asyncio.run(ingestor.ingest(SYMBOL))

    assert set(stored) == set(IndicatorKind)
    assert set(store.at(SYMBOL, slot)) == {k.value for k in IndicatorKind}


def test_one_failing_source_does_not_block_the_others(store, clock, slot):
    market = FakeMarketProvider(depth_error=IndicatorProviderError("proxy down"))
    ingestor = IndicatorIngestor(store, FakeIndicatorProvider(), market, clock=clock)

    stored = asyncio.run(ingestor.ingest(SYMBOL, slot))

    assert IndicatorKind.DEPTH not in stored
    assert IndicatorKind.LIQ_ZONES in stored
    assert IndicatorKind.CANDLE in stored


def test_bulk_failure_keeps_market_structure(store, clock, slot):
    ingestor = IndicatorIngestor(
        store,
        FakeIndicatorProvider(error=IndicatorProviderError("taapi 500")),
        FakeMarketProvider(),
        clock=clock,
    )
    stored = asyncio.run(ingestor.ingest(SYMBOL, slot))
    assert set(stored) == {IndicatorKind.DEPTH, IndicatorKind.LIQ_ZONES}


def test_unknown_and_malformed_items_are_skipped(store, clock, slot):
    provider = FakeIndicatorProvider(data={"candle": {"close": 1.0}, "macd": {"value": 1.0}, "rsi": [1, 2]})
    ingestor = IndicatorIngestor(store, provider, None, clock=clock)

    stored = asyncio.run(ingestor.ingest(SYMBOL, slot))

    assert stored == [IndicatorKind.CANDLE]


def test_fresh_candle_triggers_accuracy_check(store, kv, clock, slot):
    asyncio.run(kv.put(horizon_key(SYMBOL, slot, 1), 101.0, 600))
    tracker = RecordingTracker(kv)
    ingestor = IndicatorIngestor(store, FakeIndicatorProvider(), None, tracker, clock=clock)

    asyncio.run(ingestor.ingest(SYMBOL, slot))

    assert tracker.checked == [(SYMBOL, 100.0, slot)]


def test_no_candle_no_accuracy_check(store, kv, clock, slot):
    tracker = RecordingTracker(kv)
    provider = FakeIndicatorProvider(data={"rsi": {"value": 40.0}})
    ingestor = IndicatorIngestor(store, provider, None, tracker, clock=clock)

    asyncio.run(ingestor.ingest(SYMBOL, slot))

    assert tracker.checked == []
