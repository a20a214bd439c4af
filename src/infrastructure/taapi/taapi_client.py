"""TAAPI.io bulk indicator client (candle, VWAP, ATR, Bollinger Bands, RSI, OBV)."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import requests

from src.infrastructure.logging.logging import get_logger
from src.models.errors import IndicatorProviderError
from src.models.market_models import IndicatorKind

JsonDict = Dict[str, Any]

BULK_INDICATORS: List[IndicatorKind] = [
    IndicatorKind.CANDLE,
    IndicatorKind.VWAP,
    IndicatorKind.ATR,
    IndicatorKind.BBANDS,
    IndicatorKind.RSI,
    IndicatorKind.OBV,
]


class TaapiClient:
    def __init__(
        self,
        *,
        secret: str,
        base_url: str = "https://api.taapi.io",
        exchange: str = "binance",
        interval: str = "5m",
        timeout_sec: float = 20.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._logger = get_logger("taapi")
        self._secret = secret
        self._url = f"{base_url.rstrip('/')}/bulk"
        self._exchange = exchange
        self._interval = interval
        self._timeout = timeout_sec
        self._session = session or requests.Session()

    def _payload(self, symbol: str) -> JsonDict:
        return {
            "secret": self._secret,
            "construct": {
                "exchange": self._exchange,
                "symbol": symbol,
                "interval": self._interval,
                "indicators": [{"id": k.value, "indicator": k.value} for k in BULK_INDICATORS],
            },
        }

    def _post(self, symbol: str) -> JsonDict:
        try:
            resp = self._session.post(self._url, json=self._payload(symbol), timeout=self._timeout)
        except requests.RequestException as e:
            raise IndicatorProviderError(f"taapi bulk request failed: {e}") from e
        if not resp.ok:
            raise IndicatorProviderError(f"taapi bulk HTTP error: [{resp.status_code}] {resp.text[:300]}")
        try:
            return resp.json()
        except ValueError as e:
            raise IndicatorProviderError(f"taapi bulk returned invalid JSON: {e}") from e

    async def fetch_bulk_indicators(self, symbol: str) -> Dict[str, JsonDict]:
        """Map indicator id -> result for every item that came back without errors."""
        body = await asyncio.to_thread(self._post, symbol)
        out: Dict[str, JsonDict] = {}
        for item in body.get("data") or []:
            item_id = str(item.get("id", ""))
            errors = item.get("errors") or []
            if errors:
                self._logger.warning("bulk_item_error", symbol=symbol, indicator=item_id, errors=errors)
                continue
            result = item.get("result")
            if isinstance(result, dict):
                out[item_id] = result
        self._logger.info("bulk_fetched", symbol=symbol, indicators=sorted(out))
        return out
