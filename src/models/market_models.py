"""Market domain models: indicator kinds, typed payloads and the aligned dataset."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Type, Union

from src.infrastructure.utils.timeutils import SERIES_FORMAT, floor_to_grid
from src.models.errors import DataIntegrityError


class IndicatorKind(str, Enum):
    CANDLE = "candle"
    VWAP = "vwap"
    ATR = "atr"
    BBANDS = "bbands"
    RSI = "rsi"
    OBV = "obv"
    DEPTH = "depth"
    LIQ_ZONES = "liq_zones"


def _number(raw: Any) -> Optional[float]:
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    try:
        return float(str(raw))
    except ValueError:
        return None


def is_valid_number(value: Optional[float]) -> bool:
    return value is not None and not math.isnan(value) and math.isfinite(value)


class _Payload:
    # wire key -> attribute name
    WIRE: ClassVar[Dict[str, str]] = {}

    @classmethod
    def from_wire(cls, raw: Any) -> "_Payload":
        if not isinstance(raw, dict):
            raise ValueError(f"{cls.__name__} payload must be an object, got {type(raw).__name__}")
        return cls(**{attr: _number(raw.get(key)) for key, attr in cls.WIRE.items()})

    def to_wire(self) -> Dict[str, Optional[float]]:
        return {key: getattr(self, attr) for key, attr in self.WIRE.items()}

    def value_of(self, key: str) -> Optional[float]:
        return getattr(self, self.WIRE[key])


@dataclass(frozen=True)
class CandlePayload(_Payload):
    open: Optional[float]
    high: Optional[float]
    low: Optional[float]
    close: Optional[float]
    volume: Optional[float]

    WIRE: ClassVar[Dict[str, str]] = {
        "open": "open",
        "high": "high",
        "low": "low",
        "close": "close",
        "volume": "volume",
    }


@dataclass(frozen=True)
class ValuePayload(_Payload):
    """Single-value indicators (VWAP, ATR, RSI, OBV)."""

    value: Optional[float]

    WIRE: ClassVar[Dict[str, str]] = {"value": "value"}


@dataclass(frozen=True)
class BBandsPayload(_Payload):
    upper: Optional[float]
    middle: Optional[float]
    lower: Optional[float]

    WIRE: ClassVar[Dict[str, str]] = {
        "valueUpperBand": "upper",
        "valueMiddleBand": "middle",
        "valueLowerBand": "lower",
    }


@dataclass(frozen=True)
class DepthPayload(_Payload):
    bid_size: Optional[float]
    ask_size: Optional[float]
    bid_levels: Optional[float]
    ask_levels: Optional[float]

    WIRE: ClassVar[Dict[str, str]] = {
        "bid_size": "bid_size",
        "ask_size": "ask_size",
        "bid_levels": "bid_levels",
        "ask_levels": "ask_levels",
    }


@dataclass(frozen=True)
class LiqZonesPayload(_Payload):
    long_size: Optional[float]
    short_size: Optional[float]
    long_accounts: Optional[float]
    short_accounts: Optional[float]
    avg_long_price: Optional[float]
    avg_short_price: Optional[float]

    WIRE: ClassVar[Dict[str, str]] = {
        "long_size": "long_size",
        "short_size": "short_size",
        "long_accounts": "long_accounts",
        "short_accounts": "short_accounts",
        "avg_long_price": "avg_long_price",
        "avg_short_price": "avg_short_price",
    }


IndicatorPayload = Union[CandlePayload, ValuePayload, BBandsPayload, DepthPayload, LiqZonesPayload]

PAYLOAD_TYPES: Dict[IndicatorKind, Type[_Payload]] = {
    IndicatorKind.CANDLE: CandlePayload,
    IndicatorKind.VWAP: ValuePayload,
    IndicatorKind.ATR: ValuePayload,
    IndicatorKind.BBANDS: BBandsPayload,
    IndicatorKind.RSI: ValuePayload,
    IndicatorKind.OBV: ValuePayload,
    IndicatorKind.DEPTH: DepthPayload,
    IndicatorKind.LIQ_ZONES: LiqZonesPayload,
}

if set(PAYLOAD_TYPES) != set(IndicatorKind):
    raise DataIntegrityError("every IndicatorKind needs a payload type")


def parse_kind(name: str) -> IndicatorKind:
    try:
        return IndicatorKind(name)
    except ValueError:
        raise ValueError(f"Unknown indicator: {name}") from None


def parse_payload(kind: IndicatorKind, raw: Any) -> IndicatorPayload:
    payload_type = PAYLOAD_TYPES.get(kind)
    if payload_type is None:
        raise ValueError(f"Unknown indicator: {kind}")
    return payload_type.from_wire(raw)  # type: ignore[return-value]


@dataclass(frozen=True)
class IndicatorSnapshot:
    symbol: str
    kind: IndicatorKind
    timestamp: datetime
    payload: IndicatorPayload
    # provider result as received; stored so history keeps upstream fields the payload does not model
    raw: Optional[Dict[str, Any]] = field(default=None, compare=False)

    @classmethod
    def create(cls, symbol: str, kind: IndicatorKind, timestamp: datetime, raw: Any) -> "IndicatorSnapshot":
        payload = parse_payload(kind, raw)
        return cls(symbol=symbol, kind=kind, timestamp=floor_to_grid(timestamp), payload=payload, raw=dict(raw))

    def stored_data(self) -> Dict[str, Any]:
        return self.raw if self.raw is not None else self.payload.to_wire()


@dataclass
class AlignedDataset:
    """Gap-free multivariate series for one symbol.

    `columns` holds every validated field ("kind.wire_key" -> values) so the
    signal layer can read VWAP/Bollinger/RSI/OBV without re-querying the store.
    """

    symbol: str
    schema_version: str
    feature_names: Tuple[str, ...]
    timestamps: List[datetime]
    target: List[float]
    features: List[List[float]]
    columns: Dict[str, List[float]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        n = len(self.timestamps)
        if len(self.target) != n or len(self.features) != n:
            raise DataIntegrityError(
                f"length mismatch for {self.symbol}: timestamps={n} "
                f"target={len(self.target)} features={len(self.features)}"
            )
        width = len(self.feature_names)
        for i, row in enumerate(self.features):
            if len(row) != width:
                raise DataIntegrityError(f"feature row {i} has {len(row)} values, schema has {width}")
        for name, values in self.columns.items():
            if len(values) != n:
                raise DataIntegrityError(f"column {name} has {len(values)} values, expected {n}")

    def __len__(self) -> int:
        return len(self.timestamps)

    @property
    def last_timestamp(self) -> datetime:
        return self.timestamps[-1]

    def is_current(self, slot: datetime) -> bool:
        return bool(self.timestamps) and self.last_timestamp == floor_to_grid(slot)

    def column(self, name: str) -> List[float]:
        try:
            return self.columns[name]
        except KeyError:
            raise DataIntegrityError(f"column {name} not present in dataset {self.schema_version}") from None

    def latest(self, name: str) -> float:
        return self.column(name)[-1]

    def series_y(self) -> Dict[str, float]:
        return {ts.strftime(SERIES_FORMAT): y for ts, y in zip(self.timestamps, self.target)}

    def series_x(self) -> Dict[str, List[float]]:
        return {ts.strftime(SERIES_FORMAT): list(x) for ts, x in zip(self.timestamps, self.features)}
