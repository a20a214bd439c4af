"""Forecast accuracy tracking against observed closes (diagnostic only, never raises)."""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional, Tuple

from src.infrastructure.logging.logging import get_logger
from src.infrastructure.utils.timeutils import SLOT_KEY_FORMAT, floor_to_grid
from src.models.forecast_models import AccuracyReport, HorizonError
from src.services.contracts import KeyValueStore
from src.services.forecast.forecast_cache import horizon_prefix

log = get_logger("accuracy")


def compute_metrics(actual: float, predictions: List[float]) -> Tuple[float, float, Optional[float]]:
    """MAE, MAPE and the tracker's R².

    R² uses the actual close as the reference mean: 1 - sum(err^2) / sum((pred - actual)^2).
    Kept as-is so logged metrics stay comparable over time. Returns None for R² when the
    denominator is zero (every prediction equals the actual).
    """
    errors = [p - actual for p in predictions]
    mae = sum(abs(e) for e in errors) / len(errors)
    mape = sum(abs(e / actual * 100.0) for e in errors) / len(errors)
    ss_res = sum(e * e for e in errors)
    ss_tot = sum((p - actual) ** 2 for p in predictions)
    r_squared = None if ss_tot == 0 else 1.0 - ss_res / ss_tot
    return mae, mape, r_squared


class ForecastAccuracyTracker:
    def __init__(self, kv: KeyValueStore) -> None:
        self._kv = kv

    async def check_accuracy(self, symbol: str, actual_close: float, timestamp: datetime) -> Optional[AccuracyReport]:
        try:
            return await self._check(symbol, float(actual_close), floor_to_grid(timestamp))
        except Exception as e:
            log.error("accuracy_check_failed", symbol=symbol, error=str(e))
            return None

    async def _check(self, symbol: str, actual: float, ts: datetime) -> Optional[AccuracyReport]:
        label = ts.strftime(SLOT_KEY_FORMAT)
        keys = await self._kv.list(horizon_prefix(symbol, ts))
        if not keys:
            log.info("no_forecasts", symbol=symbol, timestamp=label)
            return None

        log.info("checking_forecasts", symbol=symbol, timestamp=label, count=len(keys), actual_close=actual)

        steps: List[HorizonError] = []
        for periods_ahead, key in sorted((int(k.rsplit("#", 1)[1]), k) for k in keys):
            predicted = await self._kv.get(key)
            if predicted is None:
                continue
            predicted = float(predicted)
            error = predicted - actual
            pct_error = error / actual * 100.0
            steps.append(
                HorizonError(
                    periods_ahead=periods_ahead,
                    predicted=predicted,
                    error=error,
                    abs_error=abs(error),
                    pct_error=abs(pct_error),
                )
            )
            log.info(
                "horizon_error",
                symbol=symbol,
                periods_ahead=periods_ahead,
                predicted=predicted,
                error_pct=round(pct_error, 4),
            )

        if not steps:
            return None

        mae, mape, r_squared = compute_metrics(actual, [s.predicted for s in steps])
        log.info(
            "aggregate_metrics",
            symbol=symbol,
            timestamp=label,
            mae=round(mae, 4),
            mape=round(mape, 4),
            r_squared=None if r_squared is None else round(r_squared, 4),
            r_squared_defined=r_squared is not None,
        )
        return AccuracyReport(
            symbol=symbol,
            timestamp=label,
            actual=actual,
            steps=steps,
            mae=mae,
            mape=mape,
            r_squared=r_squared,
        )
