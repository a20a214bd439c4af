import asyncio

import pytest

from conftest import (
    SYMBOL,
    FakeForecaster,
    FakeIndicatorProvider,
    FakeMarketProvider,
    seed_history,
)
from src.app.engine import TradingEngine
from src.infrastructure.utils.config import EngineConfig
from src.infrastructure.utils.timeutils import GRID
from src.models.errors import ForecastServiceError


def _engine(store, kv, oracle, clock, forecaster=None, **config):
    return TradingEngine(
        EngineConfig(**config),
        store=store,
        kv=kv,
        indicators=FakeIndicatorProvider(),
        market=FakeMarketProvider(),
        forecaster=forecaster or FakeForecaster(),
        oracle=oracle,
        clock=clock,
    )


def test_rising_forecast_opens_a_position(store, kv, oracle, clock, slot):
    seed_history(store, slot - GRID, 299)
    forecaster = FakeForecaster()
    engine = _engine(store, kv, oracle, clock, forecaster)

    report = asyncio.run(engine.run_tick(SYMBOL))

    assert report.dataset_rows == 288
    assert report.forecast_source == "fresh"
    assert report.current_price == 100.0
    assert report.score["alpha"] == 0.92
    assert report.score["total_score"] > 1.0
    assert report.action == "open"
    assert report.position["size"] == pytest.approx(10.0)
    assert report.position["entry_price"] == pytest.approx(100.0)
    assert report.balance == 0.0
    assert len(forecaster.calls) == 1


def test_stop_loss_closes_before_forecasting(store, kv, oracle, clock, slot):
    seed_history(store, slot - GRID, 299)
    forecaster = FakeForecaster()
    engine = _engine(store, kv, oracle, clock, forecaster)
    asyncio.run(engine.run_tick(SYMBOL))

    oracle.price = oracle.price * 97 / 100
    clock.advance(seconds=60)
    report = asyncio.run(engine.run_tick(SYMBOL))

    assert report.forecast_source is None
    assert report.action == "close"
    assert report.reason == "stop_loss"
    assert report.current_price == pytest.approx(97.0)
    assert report.score is None
    assert report.trade["pnl"] == pytest.approx(-30.0)
    assert report.balance == pytest.approx(970.0)
    assert asyncio.run(engine.ledger.get_position(SYMBOL)) is None
    assert len(forecaster.calls) == 1


def test_positioned_tick_holds_with_conservative_alpha(store, kv, oracle, clock, slot):
    seed_history(store, slot - GRID, 299)
    engine = _engine(store, kv, oracle, clock)
    asyncio.run(engine.run_tick(SYMBOL))

    report = asyncio.run(engine.run_tick(SYMBOL))

    assert report.action == "hold"
    assert report.score["alpha"] == 0.85
    assert report.position["size"] == pytest.approx(10.0)


def test_flat_forecast_does_nothing(store, kv, oracle, clock, slot):
    seed_history(store, slot - GRID, 50)
    engine = _engine(store, kv, oracle, clock, FakeForecaster(values=[100.0] * 24))

    report = asyncio.run(engine.run_tick(SYMBOL))

    assert report.action == "none"
    assert report.score["total_score"] == pytest.approx(0.0)
    assert oracle.calls == 0


def test_forecast_failure_fails_the_tick(store, kv, oracle, clock, slot):
    seed_history(store, slot - GRID, 50)
    engine = _engine(store, kv, oracle, clock, FakeForecaster(error=ForecastServiceError("boom")))

    with pytest.raises(ForecastServiceError):
        asyncio.run(engine.run_tick(SYMBOL))

    assert asyncio.run(engine.ledger.get_position(SYMBOL)) is None


def test_scheduler_waits_for_boundary_and_survives_failed_ticks(store, kv, oracle, clock, monkeypatch):
    engine = _engine(store, kv, oracle, clock, FakeForecaster(error=ForecastServiceError("boom")))
    delays = []

    async def fake_sleep(delay):
        delays.append(delay)
        if len(delays) == 2:
            raise asyncio.CancelledError

    monkeypatch.setattr("src.app.engine.asyncio.sleep", fake_sleep)

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(engine.run_forever())

    # 12:07:30 -> boundary 12:10:00 plus the 10 s settle delay
    assert delays[0] == pytest.approx(160.0)
    assert len(delays) == 2


def test_stop_loss_still_fires_while_forecasts_fail(store, kv, oracle, clock, slot):
    seed_history(store, slot - GRID, 50)
    engine = _engine(store, kv, oracle, clock)
    asyncio.run(engine.run_tick(SYMBOL))
    assert asyncio.run(engine.ledger.get_position(SYMBOL)) is not None

    engine.forecasts._provider = FakeForecaster(error=ForecastServiceError("nixtla 503"))
    oracle.price = oracle.price * 90 / 100
    clock.advance(minutes=5)
    report = asyncio.run(engine.run_tick(SYMBOL))

    assert report.action == "close"
    assert report.reason == "stop_loss"
    assert report.balance == pytest.approx(900.0)
    assert asyncio.run(engine.ledger.get_position(SYMBOL)) is None

    # flat again: the next failing forecast surfaces as before
    with pytest.raises(ForecastServiceError):
        asyncio.run(engine.run_tick(SYMBOL))
