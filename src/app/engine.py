"""Decision engine: one tick per symbol on every 5-minute boundary."""

from __future__ import annotations

import asyncio
from dataclasses import asdict
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from src.infrastructure.binance.binance_proxy_client import BinanceProxyClient
from src.infrastructure.logging.logging import bind_tick_context, clear_tick_context, configure_logging, get_logger
from src.infrastructure.nixtla.nixtla_client import NixtlaClient
from src.infrastructure.ref.ref_swap_oracle import RefSwapOracle, pair_key
from src.infrastructure.storage.sqlite_indicator_store import SQLiteIndicatorStore
from src.infrastructure.storage.sqlite_kv_store import SQLiteKVStore
from src.infrastructure.taapi.taapi_client import TaapiClient
from src.infrastructure.utils.config import EngineConfig, load_config
from src.infrastructure.utils.retry import RetryPolicy
from src.infrastructure.utils.timeutils import current_slot, slot_end, utc_now
from src.models.market_models import IndicatorKind
from src.services.contracts import (
    ForecastProvider,
    IndicatorProvider,
    IndicatorTable,
    KeyValueStore,
    MarketStructureProvider,
    SwapOracle,
)
from src.services.execution.position_ledger import PositionLedger
from src.services.forecast.accuracy_tracker import ForecastAccuracyTracker
from src.services.forecast.forecast_cache import ForecastCache
from src.services.market.dataset_builder import HistoricalDatasetBuilder, field_name
from src.services.market.indicator_ingestor import IndicatorIngestor
from src.services.monitoring.metrics import TickReport
from src.services.strategy.signal_fusion import SignalFusionEngine

log = get_logger("engine")

K = IndicatorKind
CLOSE = field_name(K.CANDLE, "close")
VWAP = field_name(K.VWAP, "value")
BB_UPPER = field_name(K.BBANDS, "valueUpperBand")
BB_LOWER = field_name(K.BBANDS, "valueLowerBand")
RSI = field_name(K.RSI, "value")
OBV = field_name(K.OBV, "value")


class TradingEngine:
    def __init__(
        self,
        config: EngineConfig,
        *,
        store: IndicatorTable,
        kv: KeyValueStore,
        indicators: IndicatorProvider,
        market: Optional[MarketStructureProvider],
        forecaster: ForecastProvider,
        oracle: SwapOracle,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config
        self.store = store
        self.kv = kv
        self._clock = clock
        self.builder = HistoricalDatasetBuilder(store, schema_version=config.dataset.feature_schema, clock=clock)
        self.tracker = ForecastAccuracyTracker(kv)
        self.ingestor = IndicatorIngestor(store, indicators, market, self.tracker, clock=clock)
        self.forecasts = ForecastCache(
            kv, forecaster, self.builder, window_size=config.dataset.window_size, clock=clock
        )
        self.fusion = SignalFusionEngine(config.scoring)
        self.ledger = PositionLedger(kv, oracle, trading=config.trading, clock=clock)

    async def run_tick(self, symbol: str) -> TickReport:
        """ingest -> risk exit -> dataset -> forecast -> fusion -> ledger transition.

        The stop-loss / take-profit check needs only the position and an oracle quote,
        so it runs before the dataset and forecast steps that may fail.
        """
        slot = current_slot(self._clock())
        bind_tick_context(symbol=symbol, slot=slot.isoformat())
        report = TickReport(symbol=symbol, slot=slot.isoformat())
        try:
            ingested = await self.ingestor.ingest(symbol, slot)
            report.ingested = [k.value for k in ingested]

            position = await self.ledger.get_position(symbol)
            if position is not None:
                mark, proceeds = await self.ledger.mark_price(position)
                exit_check = self.ledger.check_risk_exit(position, mark)
                if exit_check.reason is not None:
                    log.warning(
                        "risk_exit",
                        reason=exit_check.reason,
                        entry_price=position.entry_price,
                        mark_price=mark,
                        change_pct=round(exit_check.change_pct * 100.0, 4),
                    )
                    trade = await self.ledger.close_position(symbol, exit_check.reason, proceeds)
                    report.current_price = mark
                    report.action = "close"
                    report.reason = exit_check.reason
                    report.trade = asdict(trade) if trade is not None else None
                    report.balance = await self.ledger.get_balance()
                    log.info("tick_done", **report.to_dict())
                    return report

            dataset = self.builder.build(symbol, self.config.dataset.window_size)
            report.dataset_rows = len(dataset)

            result = await self.forecasts.resolve(symbol, self.config.trading.forecast_horizon, dataset)
            report.forecast_source = result.source

            price = dataset.latest(CLOSE)
            report.current_price = price

            score = self.fusion.score(
                symbol,
                price,
                result.record.values,
                vwap=dataset.latest(VWAP),
                bbands_upper=dataset.latest(BB_UPPER),
                bbands_lower=dataset.latest(BB_LOWER),
                rsi=dataset.latest(RSI),
                price_series=dataset.column(CLOSE),
                obv_series=dataset.column(OBV),
                entry_price=position.entry_price if position is not None else None,
            )
            report.score = score.to_dict()

            outcome = await self.ledger.apply_score(symbol, score.total_score, price)
            report.action = outcome.action
            report.reason = outcome.reason
            if outcome.position is not None:
                report.position = outcome.position.to_dict()
            if outcome.trade is not None:
                report.trade = asdict(outcome.trade)
            report.balance = await self.ledger.get_balance()
            log.info("tick_done", **report.to_dict())
            return report
        finally:
            clear_tick_context()

    async def run_forever(self, symbols: Optional[List[str]] = None) -> None:
        symbols = symbols or list(self.config.trading.symbols)
        settle = self.config.scheduler.settle_delay_sec
        log.info("engine_started", symbols=symbols, settle_delay_sec=settle)
        while True:
            now = self._clock()
            wake_at = slot_end(current_slot(now))
            delay = (wake_at - now).total_seconds() + settle
            log.debug("sleeping_until_boundary", wake_at=wake_at.isoformat(), delay_sec=round(delay, 3))
            await asyncio.sleep(max(0.0, delay))

            for symbol in symbols:
                try:
                    await self.run_tick(symbol)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    log.error("tick_failed", symbol=symbol, error=str(e), error_type=type(e).__name__)


def build_engine(config: EngineConfig) -> TradingEngine:
    """Wire the SQLite stores and the HTTP provider clients from configuration."""
    store = SQLiteIndicatorStore(Path(config.database.indicators_path))
    kv = SQLiteKVStore(Path(config.database.kv_path))

    indicators = TaapiClient(
        secret=config.taapi.secret,
        base_url=config.taapi.base_url,
        exchange=config.taapi.exchange,
        interval=config.taapi.interval,
        timeout_sec=config.taapi.timeout_sec,
    )

    market: Optional[BinanceProxyClient] = None
    if config.binance_proxy.enabled:
        market = BinanceProxyClient(
            base_url=config.binance_proxy.base_url,
            retry=RetryPolicy(
                max_attempts=config.binance_proxy.retry.max_attempts,
                base_delay_sec=config.binance_proxy.retry.base_delay_sec,
            ),
            timeout_sec=config.binance_proxy.timeout_sec,
        )

    nx = config.nixtla
    forecaster = NixtlaClient(
        api_key=nx.api_key,
        base_url=nx.base_url,
        model=nx.model,
        freq=nx.freq,
        clean_ex_first=nx.clean_ex_first,
        finetune_steps=nx.finetune_steps,
        finetune_loss=nx.finetune_loss,
        timeout_sec=nx.timeout_sec,
    )

    quote_id = config.trading.quote_token.token_id
    pools = {
        pair_key(config.trading.tokens[symbol].token_id, quote_id): pool_id
        for symbol, pool_id in config.ref.pool_ids.items()
        if symbol in config.trading.tokens
    }
    oracle = RefSwapOracle(
        rpc_url=config.ref.rpc_url,
        contract_id=config.ref.contract_id,
        pools=pools,
        smart_router_url=config.ref.smart_router_url,
        path_depth=config.ref.path_depth,
        slippage=config.ref.slippage,
        timeout_sec=config.ref.timeout_sec,
    )

    return TradingEngine(
        config,
        store=store,
        kv=kv,
        indicators=indicators,
        market=market,
        forecaster=forecaster,
        oracle=oracle,
    )


def _startup(config_path: Optional[Path]) -> EngineConfig:
    config = load_config(config_path)
    configure_logging(config.log_level, config.log_format)
    log.info(
        "config_loaded",
        symbols=config.trading.symbols,
        schema=config.dataset.feature_schema,
        scoring_version=config.scoring.version,
        has_secrets=config.has_secrets,
    )
    if not config.has_secrets:
        log.warning("secrets_missing", hint="set TAAPI__SECRET and NIXTLA__API_KEY in .env")
    return config


async def run_engine(config_path: Optional[Path] = None) -> None:
    config = _startup(config_path)
    engine = build_engine(config)
    try:
        await engine.run_forever()
    finally:
        log.info("engine_stopped")


async def run_single_tick(symbol: Optional[str] = None, config_path: Optional[Path] = None) -> List[TickReport]:
    config = _startup(config_path)
    engine = build_engine(config)
    symbols = [symbol.upper()] if symbol else list(config.trading.symbols)
    return [await engine.run_tick(s) for s in symbols]
