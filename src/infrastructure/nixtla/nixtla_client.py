"""Nixtla TimeGPT forecast client."""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import requests

from src.infrastructure.logging.logging import get_logger
from src.models.errors import ForecastServiceError
from src.models.forecast_models import ProviderForecast

JsonDict = Dict[str, Any]

_USAGE_FIELDS = ("input_tokens", "output_tokens", "finetune_tokens", "request_id")


class NixtlaClient:
    """POST /forecast with the target series y and the exogenous feature rows x.

    No retry here: a failed request surfaces as ForecastServiceError and the
    forecast cache decides whether an older forecast can stand in.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://api.nixtla.io",
        model: str = "timegpt-1",
        freq: str = "5min",
        clean_ex_first: bool = True,
        finetune_steps: int = 20,
        finetune_loss: str = "mae",
        timeout_sec: float = 60.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._logger = get_logger("nixtla")
        self._api_key = api_key
        self._url = f"{base_url.rstrip('/')}/forecast"
        self._model = model
        self._freq = freq
        self._clean_ex_first = clean_ex_first
        self._finetune_steps = finetune_steps
        self._finetune_loss = finetune_loss
        self._timeout = timeout_sec
        self._session = session or requests.Session()

    def _payload(self, y: Dict[str, float], x: Dict[str, List[float]], horizon: int) -> JsonDict:
        return {
            "model": self._model,
            "freq": self._freq,
            "fh": horizon,
            "y": y,
            "x": x,
            "clean_ex_first": self._clean_ex_first,
            "finetune_steps": self._finetune_steps,
            "finetune_loss": self._finetune_loss,
        }

    def _post(self, payload: JsonDict) -> JsonDict:
        headers = {
            "accept": "application/json",
            "content-type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }
        try:
            resp = self._session.post(self._url, json=payload, headers=headers, timeout=self._timeout)
        except requests.RequestException as e:
            raise ForecastServiceError(f"Nixtla request failed: {e}") from e
        if not resp.ok:
            self._logger.error("nixtla_http_error", status=resp.status_code, body=resp.text[:500])
            raise ForecastServiceError(f"Nixtla API error: {resp.status_code}", status=resp.status_code)
        try:
            return resp.json()
        except ValueError as e:
            raise ForecastServiceError(f"Nixtla returned invalid JSON: {e}") from e

    async def forecast(
        self,
        y: Dict[str, float],
        x: Dict[str, List[float]],
        horizon: int,
    ) -> ProviderForecast:
        if not y:
            raise ForecastServiceError("empty target series")
        body = await asyncio.to_thread(self._post, self._payload(y, x, horizon))

        values = body.get("value")
        if not isinstance(values, list):
            raise ForecastServiceError("Nixtla response has no 'value' list")
        try:
            floats = [float(v) for v in values]
        except (TypeError, ValueError) as e:
            raise ForecastServiceError(f"Nixtla returned non-numeric values: {e}") from e

        metadata = {k: body[k] for k in _USAGE_FIELDS if k in body}
        self._logger.info("forecast_received", points=len(floats), horizon=horizon, **metadata)
        return ProviderForecast(
            values=floats,
            timestamps=[str(t) for t in body.get("timestamp") or []],
            metadata=metadata,
        )
