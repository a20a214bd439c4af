"""Client for the Binance proxy (order-book depth and liquidation-zone estimates)."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests

from src.infrastructure.logging.logging import get_logger
from src.infrastructure.utils.retry import RetryPolicy
from src.models.errors import IndicatorProviderError

JsonDict = Dict[str, Any]


class BinanceProxyClient:
    def __init__(
        self,
        *,
        base_url: str,
        retry: RetryPolicy,
        timeout_sec: float = 15.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._logger = get_logger("binance_proxy")
        self._base_url = base_url.rstrip("/")
        self._retry = retry
        self._timeout = timeout_sec
        self._session = session or requests.Session()

    def _get(self, path: str) -> JsonDict:
        url = f"{self._base_url}{path}"
        try:
            resp = self._session.get(url, timeout=self._timeout)
        except requests.RequestException as e:
            raise IndicatorProviderError(f"GET {url} failed: {e}") from e
        if not resp.ok:
            raise IndicatorProviderError(f"HTTP error: [{resp.status_code}] {resp.text[:300]}")
        try:
            data = resp.json()
        except ValueError as e:
            raise IndicatorProviderError(f"GET {url} returned invalid JSON: {e}") from e
        if not isinstance(data, dict):
            raise IndicatorProviderError(f"GET {url} returned {type(data).__name__}, expected object")
        return data

    async def _fetch(self, op: str, path: str) -> JsonDict:
        return await self._retry.run(lambda: asyncio.to_thread(self._get, path), op=op)

    async def fetch_depth(self, symbol: str) -> JsonDict:
        data = await self._fetch("depth", f"/depth/{quote(symbol, safe='')}")
        self._logger.info("depth_fetched", symbol=symbol, data=data)
        return data

    async def fetch_liquidation_zones(self, symbol: str) -> JsonDict:
        data = await self._fetch("liq_zones", f"/liquidation-zones/{quote(symbol, safe='')}")
        self._logger.info("liq_zones_fetched", symbol=symbol, data=data)
        return data
