"""Per-tick report for the console log and the API."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class TickReport:
    symbol: str
    slot: str
    ingested: List[str] = field(default_factory=list)
    dataset_rows: int = 0
    forecast_source: Optional[str] = None      # "fresh" | "cache" | "last_known_good"
    current_price: Optional[float] = None
    score: Optional[Dict[str, Any]] = None
    action: str = "none"                       # "open" | "hold" | "close" | "none"
    reason: str = ""
    position: Optional[Dict[str, Any]] = None
    trade: Optional[Dict[str, Any]] = None
    balance: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
