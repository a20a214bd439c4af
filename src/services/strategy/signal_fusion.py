"""Signal fusion: AI forecast signal + technical-analysis signal -> one decision score."""

from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Sequence

from src.infrastructure.logging.logging import get_logger
from src.infrastructure.utils.config import ScoringConfig

log = get_logger("signal_fusion")


@dataclass(frozen=True)
class SignalScore:
    ai_score: float
    ta_score: float
    total_score: float
    decayed_avg: float
    diff_pct: float
    alpha: float
    vwap_score: float
    bbands_score: float
    rsi_score: float
    obv_score: float
    profit_taking_score: float
    scoring_version: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def time_decayed_average(values: Sequence[float], alpha: float) -> float:
    """Weighted mean with weight alpha**i for the i-th step (i from 0)."""
    if not values:
        raise ValueError("time_decayed_average needs at least one value")
    weighted_sum = 0.0
    weight_total = 0.0
    for i, v in enumerate(values):
        w = alpha ** i
        weighted_sum += float(v) * w
        weight_total += w
    return weighted_sum / weight_total


def vwap_score(price: float, vwap: float, *, neutral_band_pct: float, step_pct: float, step_score: float) -> float:
    """0 inside the band; +/- step_score per started step_pct beyond it. VWAP above price is bullish."""
    deviation = (vwap - price) / price * 100.0
    magnitude = abs(deviation)
    if magnitude <= neutral_band_pct:
        return 0.0
    steps = math.floor((magnitude - neutral_band_pct) / step_pct) + 1
    return math.copysign(step_score * steps, deviation)


def bbands_score(price: float, upper: float, lower: float, *, multiplier: float) -> float:
    half_range = (upper - lower) / 2.0
    if half_range <= 0:
        return 0.0
    middle = (upper + lower) / 2.0
    return -((price - middle) / half_range) * multiplier


def rsi_score(rsi: float, *, multiplier: float) -> float:
    """Negative contribution of RSI: overbought lowers the score, oversold raises it."""
    normalized = (rsi - 50.0) / 50.0
    shaped = math.copysign(normalized * normalized, normalized)
    return -shaped * multiplier


def linear_slope(values: Sequence[float]) -> float:
    """Least-squares slope against x = 0..n-1."""
    n = len(values)
    if n < 2:
        return 0.0
    mean_x = (n - 1) / 2.0
    mean_y = sum(values) / n
    num = sum((i - mean_x) * (v - mean_y) for i, v in enumerate(values))
    den = sum((i - mean_x) ** 2 for i in range(n))
    return num / den if den else 0.0


def _normalized_slope(values: Sequence[float]) -> float:
    scale = max(abs(v) for v in values)
    if scale == 0:
        return 0.0
    return linear_slope(values) / scale * 1000.0


def obv_divergence_score(
    prices: Sequence[float],
    obvs: Sequence[float],
    *,
    window: int,
    threshold: float,
    weight: float,
) -> float:
    prices = list(prices)[-window:]
    obvs = list(obvs)[-window:]
    if len(prices) < 2 or len(obvs) < 2:
        return 0.0

    price_slope = _normalized_slope(prices)
    obv_slope = _normalized_slope(obvs)
    abs_price = abs(price_slope)
    if abs_price < threshold:
        return 0.0
    denom = max(abs_price, abs(obv_slope))
    if denom == 0:
        return 0.0

    strength = (price_slope * -obv_slope) / denom
    # fade in from the threshold: 0 at threshold, full strength at twice the threshold
    fade = min(1.0, (abs_price - threshold) / threshold) if threshold > 0 else 1.0
    return strength * fade * weight


def profit_taking_score(price: float, entry_price: Optional[float], *, multiplier: float) -> float:
    if entry_price is None or entry_price <= 0:
        return 0.0
    gain_pct = (price - entry_price) / entry_price * 100.0
    if gain_pct <= 0:
        return 0.0
    return -gain_pct * multiplier


class SignalFusionEngine:
    """Pure scoring; the only side effect is the score breakdown log event."""

    def __init__(self, config: Optional[ScoringConfig] = None) -> None:
        self.config = config or ScoringConfig()

    def ai_signal(self, current_price: float, forecast: Sequence[float], positioned: bool) -> Dict[str, float]:
        cfg = self.config
        points = list(forecast)[: cfg.forecast_points]
        alpha = cfg.decay_alpha_positioned if positioned else cfg.decay_alpha_flat
        multiplier = cfg.ai_multiplier_positioned if positioned else cfg.ai_multiplier_flat
        decayed = time_decayed_average(points, alpha)
        diff_pct = (decayed - current_price) / current_price
        return {"decayed_avg": decayed, "diff_pct": diff_pct, "alpha": alpha, "ai_score": diff_pct * multiplier}

    def score(
        self,
        symbol: str,
        current_price: float,
        forecast: Sequence[float],
        vwap: float,
        bbands_upper: float,
        bbands_lower: float,
        rsi: float,
        price_series: Sequence[float],
        obv_series: Sequence[float],
        entry_price: Optional[float] = None,
    ) -> SignalScore:
        cfg = self.config
        if current_price <= 0:
            raise ValueError(f"current_price must be positive, got {current_price}")

        ai = self.ai_signal(current_price, forecast, positioned=entry_price is not None)

        vwap_part = vwap_score(
            current_price,
            vwap,
            neutral_band_pct=cfg.vwap_neutral_band_pct,
            step_pct=cfg.vwap_step_pct,
            step_score=cfg.vwap_step_score,
        )
        bb_part = bbands_score(current_price, bbands_upper, bbands_lower, multiplier=cfg.bbands_multiplier)
        rsi_part = rsi_score(rsi, multiplier=cfg.rsi_multiplier)
        obv_part = obv_divergence_score(
            price_series,
            obv_series,
            window=cfg.obv_window,
            threshold=cfg.obv_price_slope_threshold,
            weight=cfg.obv_weight,
        )
        pt_part = profit_taking_score(current_price, entry_price, multiplier=cfg.profit_taking_multiplier)

        ta = vwap_part + bb_part + rsi_part + obv_part + pt_part
        result = SignalScore(
            ai_score=ai["ai_score"],
            ta_score=ta,
            total_score=ai["ai_score"] + ta,
            decayed_avg=ai["decayed_avg"],
            diff_pct=ai["diff_pct"],
            alpha=ai["alpha"],
            vwap_score=vwap_part,
            bbands_score=bb_part,
            rsi_score=rsi_part,
            obv_score=obv_part,
            profit_taking_score=pt_part,
            scoring_version=cfg.version,
        )
        log.info("score", symbol=symbol, current_price=current_price, **result.to_dict())
        return result
