"""Engine error taxonomy.

DataIncomplete      -> recoverable, caller falls back or no-ops.
UpstreamUnavailable -> provider/store call failed; the sub-step is skipped or the tick fails.
DataIntegrityError  -> internal invariant violated; abort the tick.
InsufficientFunds   -> nothing to deploy; logged no-op.
StateTransitionAborted -> ledger transition aborted, stored state unchanged.
"""

from __future__ import annotations

from typing import Optional


class EngineError(RuntimeError):
    pass


class DataIncomplete(EngineError):
    pass


class NoHistoricalData(DataIncomplete):
    def __init__(self, symbol: str) -> None:
        super().__init__(f"No historical data found for {symbol}")
        self.symbol = symbol


class NoCompleteData(DataIncomplete):
    def __init__(self, symbol: str) -> None:
        super().__init__(f"No complete data found for any timestamp of {symbol}")
        self.symbol = symbol


class NoRecentForecast(DataIncomplete):
    def __init__(self, symbol: str) -> None:
        super().__init__(f"No recent forecast available for {symbol}")
        self.symbol = symbol


class UpstreamUnavailable(EngineError):
    pass


class IndicatorProviderError(UpstreamUnavailable):
    pass


class ForecastServiceError(UpstreamUnavailable):
    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class SwapOracleError(UpstreamUnavailable):
    pass


class ForecastPersistenceError(UpstreamUnavailable):
    pass


class DataIntegrityError(EngineError):
    pass


class InsufficientFunds(EngineError):
    def __init__(self, balance: float) -> None:
        super().__init__(f"Insufficient balance: {balance} USDC")
        self.balance = balance


class StateTransitionAborted(EngineError):
    def __init__(self, symbol: str, transition: str, cause: BaseException) -> None:
        super().__init__(f"{transition} aborted for {symbol}: {cause}")
        self.symbol = symbol
        self.transition = transition
        self.cause = cause
