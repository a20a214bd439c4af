"""Paper-trading position ledger (per symbol: Flat <-> Long).

Every transition writes its records (position, balance, stats) in one KV batch,
so the stored state is either fully before or fully after the transition.
Entry and exit prices come from swap-oracle quotes, not from the indicator feed.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Tuple

from src.infrastructure.logging.logging import get_logger
from src.infrastructure.storage.sqlite_kv_store import KVOp
from src.infrastructure.utils.config import TokenConfig, TradingConfig
from src.infrastructure.utils.fixed_number import FixedNumber
from src.infrastructure.utils.timeutils import utc_now
from src.models.errors import InsufficientFunds, StateTransitionAborted, SwapOracleError
from src.models.trade_models import ClosedTrade, Position, TradeStats
from src.services.contracts import KeyValueStore, SwapOracle
from src.services.risk.tp_sl import ExitCheck, check_risk_exit

log = get_logger("ledger")


def position_key(symbol: str) -> str:
    return f"position:{symbol}"


def stats_key(symbol: str) -> str:
    return f"stats:{symbol}"


@dataclass(frozen=True)
class LedgerOutcome:
    action: str                          # "open" | "hold" | "close" | "none"
    reason: str
    position: Optional[Position] = None
    trade: Optional[ClosedTrade] = None


class PositionLedger:
    def __init__(
        self,
        kv: KeyValueStore,
        oracle: SwapOracle,
        *,
        trading: TradingConfig,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._kv = kv
        self._oracle = oracle
        self._trading = trading
        self._clock = clock
        self.balance_key = f"balance:{trading.quote_symbol}"

    # ---- reads ----
    async def get_balance(self) -> float:
        value = await self._kv.get(self.balance_key)
        return float(value) if value is not None else float(self._trading.initial_balance)

    async def get_position(self, symbol: str) -> Optional[Position]:
        data = await self._kv.get(position_key(symbol))
        return Position.from_dict(data) if data else None

    async def get_stats(self, symbol: str) -> TradeStats:
        return TradeStats.from_dict(await self._kv.get(stats_key(symbol)))

    def _tokens(self, symbol: str) -> Tuple[TokenConfig, TokenConfig]:
        base = self._trading.tokens.get(symbol)
        if base is None:
            raise KeyError(f"no token configured for {symbol}")
        return base, self._trading.quote_token

    @staticmethod
    def held_amount(position: Position, base: TokenConfig) -> FixedNumber:
        """Base units actually bought; positions stored without `size_units` fall back to the floored display size."""
        if position.size_units is not None:
            return FixedNumber.from_units(position.size_units, base.decimals)
        return FixedNumber.from_display(position.size, base.decimals)

    # ---- pricing ----
    async def quote_exit(self, position: Position) -> FixedNumber:
        """USDC proceeds of selling the whole position, per the oracle."""
        base, quote = self._tokens(position.symbol)
        amount_in = self.held_amount(position, base)
        return await self._oracle.quote(base.token_id, amount_in, quote.token_id, quote.decimals)

    async def mark_price(self, position: Position) -> Tuple[float, FixedNumber]:
        """Realized-equivalent exit price (proceeds / size) and the proceeds quote behind it."""
        proceeds = await self.quote_exit(position)
        if position.size <= 0:
            raise SwapOracleError(f"cannot mark an empty position for {position.symbol}")
        return proceeds.to_float() / position.size, proceeds

    def check_risk_exit(self, position: Position, price: float) -> ExitCheck:
        return check_risk_exit(
            position.entry_price,
            price,
            self._trading.stop_loss_threshold,
            self._trading.take_profit_threshold,
        )

    # ---- transitions ----
    async def open_position(self, symbol: str) -> Position:
        """Flat -> Long with the entire balance."""
        existing = await self.get_position(symbol)
        if existing is not None:
            log.warning("already_long", symbol=symbol, size=existing.size)
            return existing

        balance = await self.get_balance()
        if balance <= 0:
            raise InsufficientFunds(balance)

        base, quote = self._tokens(symbol)
        amount_in = FixedNumber.from_display(balance, quote.decimals)
        if amount_in.is_zero():
            raise InsufficientFunds(balance)

        try:
            base_out = await self._oracle.quote(quote.token_id, amount_in, base.token_id, base.decimals)
        except Exception as e:
            log.error("open_aborted", symbol=symbol, error=str(e))
            raise StateTransitionAborted(symbol, "open", e) from e
        if base_out.is_zero():
            raise StateTransitionAborted(symbol, "open", SwapOracleError("oracle quoted zero output"))

        stats = await self.get_stats(symbol)
        now = self._clock().isoformat()
        position = Position(
            symbol=symbol,
            size=base_out.to_float(),
            entry_price=float(amount_in.ratio(base_out)),
            opened_at=now,
            last_update_time=now,
            unrealized_pnl=0.0,
            cumulative_pnl=stats.cumulative_pnl,
            successful_trades=stats.successful_trades,
            total_trades=stats.total_trades,
            size_units=base_out.to_u128(),
        )
        await self._kv.apply(
            [
                KVOp.set(position_key(symbol), position.to_dict()),
                KVOp.set(self.balance_key, 0.0),
            ]
        )
        log.info(
            "position_opened",
            symbol=symbol,
            size=position.size,
            entry_price=position.entry_price,
            deployed=amount_in.to_float(),
            balance=0.0,
        )
        return position

    async def hold_position(self, symbol: str, position: Position, price: float) -> Position:
        position.last_update_time = self._clock().isoformat()
        position.unrealized_pnl = position.unrealized_at(price)
        await self._kv.put(position_key(symbol), position.to_dict())
        log.info("position_held", symbol=symbol, price=price, unrealized_pnl=position.unrealized_pnl)
        return position

    async def close_position(
        self,
        symbol: str,
        reason: str,
        proceeds: Optional[FixedNumber] = None,
    ) -> Optional[ClosedTrade]:
        """Long -> Flat; realized PnL folds into the persisted stats and the balance."""
        position = await self.get_position(symbol)
        if position is None:
            log.info("no_position_to_close", symbol=symbol, reason=reason)
            return None

        if proceeds is None:
            try:
                proceeds = await self.quote_exit(position)
            except Exception as e:
                log.error("close_aborted", symbol=symbol, reason=reason, error=str(e))
                raise StateTransitionAborted(symbol, "close", e) from e

        received = proceeds.to_float()
        pnl = received - position.size * position.entry_price
        stats = TradeStats(
            cumulative_pnl=position.cumulative_pnl + pnl,
            successful_trades=position.successful_trades + (1 if pnl > 0 else 0),
            total_trades=position.total_trades + 1,
        )
        balance_after = await self.get_balance() + received

        await self._kv.apply(
            [
                KVOp.set(stats_key(symbol), stats.to_dict()),
                KVOp.set(self.balance_key, balance_after),
                KVOp.remove(position_key(symbol)),
            ]
        )
        trade = ClosedTrade(
            symbol=symbol,
            size=position.size,
            entry_price=position.entry_price,
            exit_price=received / position.size if position.size else 0.0,
            proceeds=received,
            pnl=pnl,
            reason=reason,
            balance_after=balance_after,
            stats=stats,
        )
        log.info(
            "position_closed",
            symbol=symbol,
            reason=reason,
            pnl=pnl,
            proceeds=received,
            balance=balance_after,
            total_trades=stats.total_trades,
            successful_trades=stats.successful_trades,
        )
        return trade

    async def apply_score(self, symbol: str, total_score: float, price: float) -> LedgerOutcome:
        """Drive the state machine from the fused score (risk exits are checked by the caller first)."""
        position = await self.get_position(symbol)
        buy, sell = self._trading.buy_threshold, self._trading.sell_threshold

        if position is None:
            if total_score > buy:
                try:
                    opened = await self.open_position(symbol)
                except InsufficientFunds as e:
                    log.warning("insufficient_balance", symbol=symbol, balance=e.balance)
                    return LedgerOutcome("none", "insufficient_funds")
                return LedgerOutcome("open", "signal", position=opened)
            log.info("no_position_to_act_on", symbol=symbol, score=total_score)
            return LedgerOutcome("none", "flat")

        if total_score < sell:
            trade = await self.close_position(symbol, "signal")
            return LedgerOutcome("close", "signal", trade=trade)

        held = await self.hold_position(symbol, position, price)
        return LedgerOutcome("hold", "signal", position=held)
