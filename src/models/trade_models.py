from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional


@dataclass
class TradeStats:
    cumulative_pnl: float = 0.0
    successful_trades: int = 0
    total_trades: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TradeStats":
        if not data:
            return cls()
        return cls(
            cumulative_pnl=float(data.get("cumulative_pnl", 0.0)),
            successful_trades=int(data.get("successful_trades", 0)),
            total_trades=int(data.get("total_trades", 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Position:
    symbol: str
    size: float             # base-asset units
    entry_price: float      # oracle-implied USDC per base unit
    opened_at: str
    last_update_time: str
    unrealized_pnl: float = 0.0
    cumulative_pnl: float = 0.0
    successful_trades: int = 0
    total_trades: int = 0
    size_units: Optional[str] = None   # exact base units bought (u128 string); `size` is for display

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Position":
        return cls(
            symbol=str(data["symbol"]),
            size=float(data["size"]),
            entry_price=float(data["entry_price"]),
            opened_at=str(data["opened_at"]),
            last_update_time=str(data["last_update_time"]),
            unrealized_pnl=float(data.get("unrealized_pnl", 0.0)),
            cumulative_pnl=float(data.get("cumulative_pnl", 0.0)),
            successful_trades=int(data.get("successful_trades", 0)),
            total_trades=int(data.get("total_trades", 0)),
            size_units=str(data["size_units"]) if data.get("size_units") is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def unrealized_at(self, price: float) -> float:
        return self.size * (float(price) - self.entry_price)


@dataclass(frozen=True)
class ClosedTrade:
    symbol: str
    size: float
    entry_price: float
    exit_price: float
    proceeds: float
    pnl: float
    reason: str             # "signal" | "stop_loss" | "take_profit"
    balance_after: float
    stats: TradeStats
