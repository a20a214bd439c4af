import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# Make `src.` importable when running pytest from any folder
ROOT = Path(__file__).resolve().parents[1]
root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)

from src.infrastructure.storage.sqlite_indicator_store import SQLiteIndicatorStore  # noqa: E402
from src.infrastructure.storage.sqlite_kv_store import SQLiteKVStore  # noqa: E402
from src.infrastructure.utils.fixed_number import FixedNumber  # noqa: E402
from src.infrastructure.utils.timeutils import GRID, current_slot  # noqa: E402
from src.models.errors import SwapOracleError  # noqa: E402
from src.models.forecast_models import ProviderForecast  # noqa: E402
from src.models.market_models import IndicatorKind, IndicatorSnapshot  # noqa: E402

SYMBOL = "NEAR/USDT"
USDC = "17208628f84f5d6ad33f0da3bbbeb27ffcb398eac501a31bd6ad2011e36133a1"
WNEAR = "wrap.near"

# 12:07:30 UTC -> current slot 12:05
NOW = datetime(2025, 1, 15, 12, 7, 30, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now = self.now + timedelta(**kwargs)


def raw_indicators(close: float = 100.0, **overrides: Any) -> Dict[str, Dict[str, Any]]:
    """One complete set of wire payloads for a timestamp; overrides replace whole payloads."""
    raw: Dict[str, Dict[str, Any]] = {
        "candle": {"open": close, "high": close + 1, "low": close - 1, "close": close, "volume": 5000.0},
        "vwap": {"value": close},
        "atr": {"value": 0.8},
        "bbands": {"valueUpperBand": close + 2, "valueMiddleBand": close, "valueLowerBand": close - 2},
        "rsi": {"value": 50.0},
        "obv": {"value": 12345.0},
        "depth": {"bid_size": 900.0, "ask_size": 1100.0, "bid_levels": 50.0, "ask_levels": 48.0},
        "liq_zones": {
            "long_size": 1.5e6,
            "short_size": 1.2e6,
            "long_accounts": 320.0,
            "short_accounts": 280.0,
            "avg_long_price": close * 0.97,
            "avg_short_price": close * 1.03,
        },
    }
    for name, payload in overrides.items():
        if payload is None:
            raw.pop(name, None)
        else:
            raw[name] = payload
    return raw


def seed(store: SQLiteIndicatorStore, ts: datetime, symbol: str = SYMBOL, close: float = 100.0, **overrides: Any) -> None:
    for name, payload in raw_indicators(close, **overrides).items():
        store.upsert(IndicatorSnapshot.create(symbol, IndicatorKind(name), ts, payload))


def seed_history(store: SQLiteIndicatorStore, last: datetime, count: int, close: float = 100.0) -> List[datetime]:
    """`count` complete consecutive slots ending at `last` (inclusive)."""
    stamps = [last - GRID * i for i in range(count - 1, -1, -1)]
    for ts in stamps:
        seed(store, ts, close=close)
    return stamps


class FakeIndicatorProvider:
    def __init__(self, data: Optional[Dict[str, Dict[str, Any]]] = None, error: Optional[Exception] = None) -> None:
        self.data = data if data is not None else {
            k: v for k, v in raw_indicators().items() if k not in ("depth", "liq_zones")
        }
        self.error = error
        self.calls = 0

    async def fetch_bulk_indicators(self, symbol: str) -> Dict[str, Dict[str, Any]]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return dict(self.data)


class FakeMarketProvider:
    def __init__(self, depth_error: Optional[Exception] = None, liq_error: Optional[Exception] = None) -> None:
        raw = raw_indicators()
        self.depth = raw["depth"]
        self.liq_zones = raw["liq_zones"]
        self.depth_error = depth_error
        self.liq_error = liq_error

    async def fetch_depth(self, symbol: str) -> Dict[str, Any]:
        if self.depth_error is not None:
            raise self.depth_error
        return dict(self.depth)

    async def fetch_liquidation_zones(self, symbol: str) -> Dict[str, Any]:
        if self.liq_error is not None:
            raise self.liq_error
        return dict(self.liq_zones)


class FakeForecaster:
    def __init__(self, values: Optional[List[float]] = None, error: Optional[Exception] = None) -> None:
        self.values = values if values is not None else [100.0 * 1.01 ** h for h in range(1, 25)]
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    async def forecast(self, y: Dict[str, float], x: Dict[str, List[float]], horizon: int) -> ProviderForecast:
        self.calls.append({"y": y, "x": x, "horizon": horizon})
        if self.error is not None:
            raise self.error
        return ProviderForecast(values=list(self.values), metadata={"request_id": f"req-{len(self.calls)}"})


class FakeOracle:
    """Constant-price swap: `price` USDC per base token, no fees."""

    def __init__(self, price: float = 100.0, quote_token: str = USDC) -> None:
        self.price = Decimal(str(price))
        self.quote_token = quote_token
        self.error: Optional[Exception] = None
        self.calls = 0
        self.amounts_in: List[FixedNumber] = []

    async def quote(self, token_in: str, amount_in: FixedNumber, token_out: str, decimals_out: int) -> FixedNumber:
        self.calls += 1
        self.amounts_in.append(amount_in)
        if self.error is not None:
            raise self.error
        if token_out == self.quote_token:
            out = amount_in.to_decimal() * self.price
        else:
            out = amount_in.to_decimal() / self.price
        return FixedNumber.from_display(out, decimals_out)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def slot(clock: FakeClock) -> datetime:
    return current_slot(clock())


@pytest.fixture
def store(tmp_path: Path) -> SQLiteIndicatorStore:
    s = SQLiteIndicatorStore(tmp_path / "datapoints.db")
    yield s
    s.close()


@pytest.fixture
def kv(tmp_path: Path, clock: FakeClock) -> SQLiteKVStore:
    s = SQLiteKVStore(tmp_path / "kv.db", clock=clock)
    yield s
    s.close()


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def oracle_error() -> SwapOracleError:
    return SwapOracleError("rpc down")
