from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from src.api.state import AppState, get_state, has_state, set_state
from src.app.engine import build_engine
from src.infrastructure.logging.logging import configure_logging, get_logger
from src.infrastructure.utils.config import EngineConfig, load_config
from src.infrastructure.utils.timeutils import current_slot, to_epoch_ms
from src.models.errors import DataIncomplete, EngineError
from src.models.market_models import parse_kind

JsonDict = Dict[str, Any]

log = get_logger("api")


# --------- Helpers ---------
def _symbol(raw: str) -> str:
    """Path symbols use '-' (NEAR-USDT); the engine keys use '/' (NEAR/USDT)."""
    symbol = raw.replace("-", "/").upper()
    if symbol not in get_state().config.trading.symbols:
        raise HTTPException(status_code=400, detail=f"Invalid symbol: {raw}")
    return symbol


def _utc(ts: Optional[datetime]) -> Optional[datetime]:
    if ts is None or ts.tzinfo is not None:
        return ts
    return ts.replace(tzinfo=timezone.utc)


def _range(from_ts: Optional[datetime], to_ts: Optional[datetime]) -> Tuple[Optional[datetime], Optional[datetime]]:
    from_ts, to_ts = _utc(from_ts), _utc(to_ts)
    if from_ts is not None and to_ts is not None and from_ts > to_ts:
        raise HTTPException(status_code=400, detail="'from' must not be after 'to'")
    return from_ts, to_ts


async def _data_incomplete_handler(request: Request, exc: DataIncomplete) -> JSONResponse:
    return JSONResponse(status_code=404, content={"ok": False, "error": str(exc)})


async def _engine_error_handler(request: Request, exc: EngineError) -> JSONResponse:
    log.error("request_failed", path=request.url.path, error=str(exc), error_type=type(exc).__name__)
    return JSONResponse(status_code=502, content={"ok": False, "error": str(exc)})


# --------- App ---------
def create_app(state: Optional[AppState] = None, config: Optional[EngineConfig] = None) -> FastAPI:
    """Build the API. Without an explicit state the engine is wired from configuration at startup."""
    if state is not None:
        set_state(state)
        config = state.config
    config = config or load_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if not has_state():
            configure_logging(config.log_level, config.log_format)
            set_state(AppState.from_engine(build_engine(config)))
            log.info("api_started", symbols=config.trading.symbols)
        yield

    app = FastAPI(title="AI Trader Decision Engine API", version="0.1.0", lifespan=lifespan)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.api.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(DataIncomplete, _data_incomplete_handler)
    app.add_exception_handler(EngineError, _engine_error_handler)

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    @app.get("/health")
    def health() -> JsonDict:
        s = get_state()
        return {
            "ok": True,
            "symbols": s.config.trading.symbols,
            "feature_schema": s.config.dataset.feature_schema,
            "scoring_version": s.config.scoring.version,
        }

    @app.get("/history/{symbol}/{indicator}")
    def history(
        symbol: str,
        indicator: str,
        limit: int = Query(100, ge=1, le=1000),
        from_ts: Optional[datetime] = Query(None, alias="from"),
        to_ts: Optional[datetime] = Query(None, alias="to"),
    ) -> JsonDict:
        sym = _symbol(symbol)
        try:
            kind = parse_kind(indicator)
        except ValueError as e:
            raise HTTPException(status_code=400, detail=str(e))
        from_ts, to_ts = _range(from_ts, to_ts)
        rows = get_state().store.history(sym, kind.value, limit=limit, from_ts=from_ts, to_ts=to_ts)
        return {
            "symbol": sym,
            "indicator": kind.value,
            "data": [{"timestamp": to_epoch_ms(r.timestamp), "data": r.data} for r in rows],
        }

    @app.get("/history/{symbol}")
    def history_all(
        symbol: str,
        limit: int = Query(100, ge=1, le=1000),
        from_ts: Optional[datetime] = Query(None, alias="from"),
        to_ts: Optional[datetime] = Query(None, alias="to"),
    ) -> JsonDict:
        sym = _symbol(symbol)
        from_ts, to_ts = _range(from_ts, to_ts)
        grouped = get_state().store.history_all(sym, limit=limit, from_ts=from_ts, to_ts=to_ts)
        if not grouped:
            raise HTTPException(status_code=404, detail="No data found")
        data: List[JsonDict] = [
            {"timestamp": to_epoch_ms(ts), "indicators": indicators} for ts, indicators in grouped.items()
        ]
        return {"symbol": sym, "data": data}

    @app.get("/latest/{symbol}")
    def latest(symbol: str) -> JsonDict:
        sym = _symbol(symbol)
        slot = current_slot()
        indicators = get_state().store.at(sym, slot)
        if not indicators:
            raise HTTPException(status_code=404, detail="No data found")
        return {"symbol": sym, "timestamp": to_epoch_ms(slot), "indicators": indicators}

    @app.get("/forecast/{symbol}")
    async def forecast(symbol: str) -> JsonDict:
        sym = _symbol(symbol)
        result = await get_state().engine.forecasts.peek(sym)
        if result is None:
            raise HTTPException(status_code=404, detail="No forecast data available yet")
        return {"ok": True, "source": result.source, "forecast": result.record.to_dict()}

    @app.get("/position/{symbol}")
    async def position(symbol: str) -> JsonDict:
        sym = _symbol(symbol)
        pos = await get_state().engine.ledger.get_position(sym)
        return {"ok": True, "symbol": sym, "position": pos.to_dict() if pos is not None else None}

    @app.get("/stats/{symbol}")
    async def stats(symbol: str) -> JsonDict:
        sym = _symbol(symbol)
        st = await get_state().engine.ledger.get_stats(sym)
        return {"ok": True, "symbol": sym, "stats": st.to_dict()}

    @app.get("/balance")
    async def balance() -> JsonDict:
        s = get_state()
        return {
            "ok": True,
            "symbol": s.config.trading.quote_symbol,
            "balance": await s.engine.ledger.get_balance(),
        }

    @app.post("/tick/{symbol}")
    async def tick(symbol: str) -> JsonDict:
        sym = _symbol(symbol)
        report = await get_state().engine.run_tick(sym)
        return {"ok": True, "report": asdict(report)}
