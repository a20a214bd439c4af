"""Historical dataset builder: raw indicator rows -> aligned target + exogenous matrix."""

from __future__ import annotations

from collections import OrderedDict
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

from src.infrastructure.logging.logging import get_logger
from src.infrastructure.utils.timeutils import current_slot, utc_now
from src.models.errors import NoCompleteData, NoHistoricalData
from src.models.market_models import (
    AlignedDataset,
    IndicatorKind,
    IndicatorPayload,
    is_valid_number,
    parse_kind,
    parse_payload,
)
from src.services.contracts import IndicatorTable

log = get_logger("dataset_builder")

K = IndicatorKind

# Exogenous feature schemas. Order is part of the contract with any model trained on them:
# never reorder or extend a published schema, add a new version instead.
FEATURE_SCHEMAS: Dict[str, Tuple[Tuple[IndicatorKind, str], ...]] = {
    "v1": (
        (K.CANDLE, "open"),
        (K.CANDLE, "high"),
        (K.CANDLE, "low"),
        (K.CANDLE, "volume"),
        (K.VWAP, "value"),
        (K.ATR, "value"),
        (K.BBANDS, "valueUpperBand"),
        (K.BBANDS, "valueMiddleBand"),
        (K.BBANDS, "valueLowerBand"),
        (K.RSI, "value"),
        (K.OBV, "value"),
        (K.DEPTH, "bid_size"),
        (K.DEPTH, "ask_size"),
        (K.DEPTH, "bid_levels"),
        (K.DEPTH, "ask_levels"),
        (K.LIQ_ZONES, "long_size"),
        (K.LIQ_ZONES, "short_size"),
        (K.LIQ_ZONES, "long_accounts"),
        (K.LIQ_ZONES, "short_accounts"),
        (K.LIQ_ZONES, "avg_long_price"),
        (K.LIQ_ZONES, "avg_short_price"),
    ),
    "v1-core": (
        (K.CANDLE, "open"),
        (K.CANDLE, "high"),
        (K.CANDLE, "low"),
        (K.CANDLE, "volume"),
        (K.VWAP, "value"),
        (K.ATR, "value"),
        (K.BBANDS, "valueUpperBand"),
        (K.BBANDS, "valueMiddleBand"),
        (K.BBANDS, "valueLowerBand"),
        (K.RSI, "value"),
        (K.OBV, "value"),
    ),
}

TARGET_FIELD = (K.CANDLE, "close")


def field_name(kind: IndicatorKind, key: str) -> str:
    return f"{kind.value}.{key}"


class HistoricalDatasetBuilder:
    def __init__(
        self,
        store: IndicatorTable,
        *,
        schema_version: str = "v1",
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if schema_version not in FEATURE_SCHEMAS:
            raise ValueError(f"unknown feature schema: {schema_version}")
        self._store = store
        self._clock = clock
        self.schema_version = schema_version
        self.schema = FEATURE_SCHEMAS[schema_version]
        self.feature_names = tuple(field_name(k, f) for k, f in self.schema)
        # every field checked for validity: target + features
        self._fields: Tuple[Tuple[IndicatorKind, str], ...] = (TARGET_FIELD,) + self.schema
        self.required = tuple(OrderedDict.fromkeys(k for k, _ in self._fields))

    def build(self, symbol: str, window_size: int) -> AlignedDataset:
        slot = current_slot(self._clock())
        rows = self._store.window(symbol, slot, window_size)
        if not any(r.indicator == K.CANDLE.value for r in rows):
            raise NoHistoricalData(symbol)

        grouped: Dict[datetime, Dict[IndicatorKind, IndicatorPayload]] = {}
        for row in rows:
            bucket = grouped.setdefault(row.timestamp, {})
            try:
                kind = parse_kind(row.indicator)
                bucket[kind] = parse_payload(kind, row.data)
            except ValueError as e:
                log.debug("row_skipped", symbol=symbol, indicator=row.indicator, error=str(e))

        timestamps: List[datetime] = []
        values_by_ts: List[Dict[str, float]] = []
        dropped = 0
        for ts in sorted(grouped):
            values = self._complete_values(grouped[ts])
            if values is None:
                dropped += 1
                continue
            timestamps.append(ts)
            values_by_ts.append(values)

        if not timestamps:
            log.warning("no_complete_data", symbol=symbol, timestamps=len(grouped))
            raise NoCompleteData(symbol)

        names = [field_name(k, f) for k, f in self._fields]
        columns = {name: [v[name] for v in values_by_ts] for name in names}
        dataset = AlignedDataset(
            symbol=symbol,
            schema_version=self.schema_version,
            feature_names=self.feature_names,
            timestamps=timestamps,
            target=columns[field_name(*TARGET_FIELD)],
            features=[[v[name] for name in self.feature_names] for v in values_by_ts],
            columns=columns,
        )
        log.info(
            "dataset_built",
            symbol=symbol,
            rows=len(dataset),
            dropped=dropped,
            last=dataset.last_timestamp.isoformat(),
            current=dataset.is_current(slot),
        )
        return dataset

    def _complete_values(self, bucket: Dict[IndicatorKind, IndicatorPayload]) -> Optional[Dict[str, float]]:
        """Field values for one timestamp, or None if any indicator or value is missing/invalid."""
        if any(kind not in bucket for kind in self.required):
            return None
        out: Dict[str, float] = {}
        for kind, key in self._fields:
            value = bucket[kind].value_of(key)
            if not is_valid_number(value):
                return None
            out[field_name(kind, key)] = float(value)  # type: ignore[arg-type]
        return out
