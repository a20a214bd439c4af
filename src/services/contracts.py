"""Collaborator contracts the decision engine depends on."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Protocol, Sequence

from src.infrastructure.storage.sqlite_indicator_store import DatapointRow
from src.infrastructure.storage.sqlite_kv_store import KVOp
from src.infrastructure.utils.fixed_number import FixedNumber
from src.models.forecast_models import ProviderForecast
from src.models.market_models import IndicatorSnapshot

JsonDict = Dict[str, Any]


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[Any]: ...

    async def put(self, key: str, value: Any, ttl_sec: Optional[int] = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def list(self, prefix: str) -> List[str]: ...

    async def apply(self, ops: Sequence[KVOp]) -> None: ...


class IndicatorTable(Protocol):
    def upsert(self, snapshot: IndicatorSnapshot) -> None: ...

    def window(self, symbol: str, up_to: datetime, limit: int) -> List[DatapointRow]: ...


class IndicatorProvider(Protocol):
    async def fetch_bulk_indicators(self, symbol: str) -> Dict[str, JsonDict]: ...


class MarketStructureProvider(Protocol):
    async def fetch_depth(self, symbol: str) -> JsonDict: ...

    async def fetch_liquidation_zones(self, symbol: str) -> JsonDict: ...


class ForecastProvider(Protocol):
    async def forecast(
        self,
        y: Dict[str, float],
        x: Dict[str, List[float]],
        horizon: int,
    ) -> ProviderForecast: ...


class SwapOracle(Protocol):
    async def quote(self, token_in: str, amount_in: FixedNumber, token_out: str, decimals_out: int) -> FixedNumber: ...
