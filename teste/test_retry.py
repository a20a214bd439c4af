import asyncio

import pytest

from src.infrastructure.utils.retry import RetryPolicy


class Flaky:
    def __init__(self, failures: int) -> None:
        self.failures = failures
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise ConnectionError(f"attempt {self.calls} failed")
        return "ok"


def _recorder():
    delays = []

    async def sleep(delay):
        delays.append(delay)

    return delays, sleep


def test_linear_backoff():
    policy = RetryPolicy(max_attempts=3, base_delay_sec=1.0)
    assert [policy.backoff(n) for n in (1, 2, 3)] == [1.0, 2.0, 3.0]


def test_succeeds_after_transient_failures():
    delays, sleep = _recorder()
    fn = Flaky(failures=2)

    result = asyncio.run(RetryPolicy(3, 0.5).run(fn, op="depth", sleep=sleep))

    assert result == "ok"
    assert fn.calls == 3
    assert delays == [0.5, 1.0]


def test_gives_up_after_max_attempts_with_last_error():
    delays, sleep = _recorder()
    fn = Flaky(failures=10)

    with pytest.raises(ConnectionError, match="attempt 3"):
        asyncio.run(RetryPolicy(3, 1.0).run(fn, op="liq_zones", sleep=sleep))

    assert fn.calls == 3
    assert delays == [1.0, 2.0]
