"""UTC time helpers and the 5-minute grid used as the universal time key."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Optional

GRID_MINUTES = 5
GRID = timedelta(minutes=GRID_MINUTES)

# Key formats shared with the forecast cache and the accuracy tracker
SLOT_KEY_FORMAT = "%Y-%m-%d %H:%M"
SERIES_FORMAT = "%Y-%m-%d %H:%M:%S"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def floor_to_grid(ts: datetime) -> datetime:
    """Truncate a timestamp to the start of its 5-minute slot (UTC)."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    ts = ts.astimezone(timezone.utc)
    minute = (ts.minute // GRID_MINUTES) * GRID_MINUTES
    return ts.replace(minute=minute, second=0, microsecond=0)


def current_slot(now: Optional[datetime] = None) -> datetime:
    return floor_to_grid(now or utc_now())


def slot_end(slot: datetime) -> datetime:
    return floor_to_grid(slot) + GRID


def to_epoch_ms(ts: datetime) -> int:
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return int(ts.timestamp() * 1000)


def from_epoch_ms(ms: int) -> datetime:
    return datetime.fromtimestamp(int(ms) / 1000.0, tz=timezone.utc)


def ttl_until(deadline: datetime, now: datetime) -> int:
    """Seconds from now until deadline, rounded up and never below 1."""
    remaining = (deadline - now).total_seconds()
    return max(1, int(math.ceil(remaining)))


def parse_series_ts(value: str) -> datetime:
    """Parse a provider timestamp ('YYYY-MM-DD HH:MM:SS' or ISO) as UTC."""
    ts = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)
