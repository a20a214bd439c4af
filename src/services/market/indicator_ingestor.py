"""Per-tick indicator acquisition: fetch, validate, upsert at the current slot."""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from src.infrastructure.logging.logging import get_logger
from src.infrastructure.utils.timeutils import current_slot, utc_now
from src.models.market_models import CandlePayload, IndicatorKind, IndicatorSnapshot, is_valid_number, parse_kind
from src.services.contracts import IndicatorProvider, IndicatorTable, MarketStructureProvider
from src.services.forecast.accuracy_tracker import ForecastAccuracyTracker

log = get_logger("ingestor")

JsonDict = Dict[str, Any]


class IndicatorIngestor:
    """Depth, liquidation zones and the TAAPI bulk call run concurrently.

    Each fetch is isolated: a failure is logged and the indicator is simply
    absent for this slot, which the dataset builder then treats as incomplete.
    """

    def __init__(
        self,
        store: IndicatorTable,
        indicators: IndicatorProvider,
        market: Optional[MarketStructureProvider],
        tracker: Optional[ForecastAccuracyTracker] = None,
        *,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._indicators = indicators
        self._market = market
        self._tracker = tracker
        self._clock = clock

    async def _guard(self, source: str, symbol: str, call: Callable[[], Awaitable[Any]]) -> Optional[Any]:
        try:
            return await call()
        except Exception as e:
            log.error("fetch_failed", source=source, symbol=symbol, error=str(e))
            return None

    async def ingest(self, symbol: str, slot: Optional[datetime] = None) -> List[IndicatorKind]:
        """Store whatever arrived for `slot`; return the kinds that were written."""
        slot = slot or current_slot(self._clock())

        fetches: Dict[str, Callable[[], Awaitable[Any]]] = {
            "taapi": lambda: self._indicators.fetch_bulk_indicators(symbol),
        }
        if self._market is not None:
            market = self._market
            fetches[IndicatorKind.DEPTH.value] = lambda: market.fetch_depth(symbol)
            fetches[IndicatorKind.LIQ_ZONES.value] = lambda: market.fetch_liquidation_zones(symbol)

        results = await asyncio.gather(*(self._guard(name, symbol, call) for name, call in fetches.items()))
        by_source = dict(zip(fetches, results))

        raw: Dict[str, JsonDict] = {}
        bulk = by_source.pop("taapi", None)
        if bulk:
            raw.update(bulk)
        raw.update({name: data for name, data in by_source.items() if data is not None})

        stored: List[IndicatorKind] = []
        candle: Optional[CandlePayload] = None
        for name, data in raw.items():
            try:
                snapshot = IndicatorSnapshot.create(symbol, parse_kind(name), slot, data)
            except ValueError as e:
                log.warning("invalid_payload", symbol=symbol, indicator=name, error=str(e))
                continue
            self._store.upsert(snapshot)
            stored.append(snapshot.kind)
            if isinstance(snapshot.payload, CandlePayload):
                candle = snapshot.payload

        log.info("ingested", symbol=symbol, slot=slot.isoformat(), indicators=[k.value for k in stored])

        if self._tracker is not None and candle is not None and is_valid_number(candle.close):
            await self._tracker.check_accuracy(symbol, candle.close, slot)
        return stored
