"""Forecast domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class ForecastRecord:
    symbol: str
    horizon: int
    generated_at: str                 # grid slot the forecast was made in (ISO, UTC)
    timestamps: List[str]             # predicted slot per step, "YYYY-MM-DD HH:MM:SS"
    values: List[float]               # values[h - 1] is the h-step-ahead prediction
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ForecastRecord":
        return cls(
            symbol=str(data["symbol"]),
            horizon=int(data["horizon"]),
            generated_at=str(data["generated_at"]),
            timestamps=[str(t) for t in data.get("timestamps", [])],
            values=[float(v) for v in data.get("values", [])],
            metadata=dict(data.get("metadata") or {}),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "symbol": self.symbol,
            "horizon": self.horizon,
            "generated_at": self.generated_at,
            "timestamps": list(self.timestamps),
            "values": list(self.values),
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class ProviderForecast:
    """Raw forecast provider answer (values plus usage metadata)."""

    values: List[float]
    timestamps: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class HorizonError:
    periods_ahead: int
    predicted: float
    error: float
    abs_error: float
    pct_error: float


@dataclass(frozen=True)
class AccuracyReport:
    symbol: str
    timestamp: str
    actual: float
    steps: List[HorizonError]
    mae: float
    mape: float
    r_squared: Optional[float]        # None when the total sum of squares is zero
