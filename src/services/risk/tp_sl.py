"""Stop-loss / take-profit checks for an open long position."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class ExitCheck:
    reason: Optional[str]   # "stop_loss" | "take_profit" | None
    change_pct: float       # fractional move from entry, e.g. -0.021


def check_risk_exit(
    entry_price: float,
    current_price: float,
    stop_loss_threshold: float,
    take_profit_threshold: float,
) -> ExitCheck:
    """Compare the move since entry against the thresholds (fractions, stop-loss negative).

    Stop-loss fires at change <= stop_loss_threshold, take-profit at change >= take_profit_threshold.
    """
    entry = float(entry_price)
    if entry <= 0:
        raise ValueError(f"entry_price must be positive, got {entry_price}")
    change = (float(current_price) - entry) / entry
    if change <= stop_loss_threshold:
        return ExitCheck("stop_loss", change)
    if change >= take_profit_threshold:
        return ExitCheck("take_profit", change)
    return ExitCheck(None, change)
