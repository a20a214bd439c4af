"""Bounded retry policy for flaky upstream calls."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from src.infrastructure.logging.logging import get_logger

T = TypeVar("T")

log = get_logger("retry")


@dataclass(frozen=True)
class RetryPolicy:
    """max_attempts tries; the wait after attempt n (1-based) is n * base_delay_sec."""

    max_attempts: int = 3
    base_delay_sec: float = 1.0

    def backoff(self, attempt: int) -> float:
        return attempt * self.base_delay_sec

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        op: str,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> T:
        sleeper = sleep or asyncio.sleep
        last_error: Optional[Exception] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await fn()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                last_error = e
                log.warning("attempt_failed", op=op, attempt=attempt, max_attempts=self.max_attempts, error=str(e))
                if attempt < self.max_attempts:
                    delay = self.backoff(attempt)
                    log.info("retry_scheduled", op=op, delay_sec=delay)
                    await sleeper(delay)
        assert last_error is not None
        raise last_error


