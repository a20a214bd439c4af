# src/api/state.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from src.app.engine import TradingEngine
from src.infrastructure.storage.sqlite_indicator_store import SQLiteIndicatorStore
from src.infrastructure.utils.config import EngineConfig


@dataclass
class AppState:
    config: EngineConfig
    engine: TradingEngine
    store: SQLiteIndicatorStore

    @classmethod
    def from_engine(cls, engine: TradingEngine) -> "AppState":
        if not isinstance(engine.store, SQLiteIndicatorStore):
            raise TypeError("API history queries need the SQLite indicator store")
        return cls(config=engine.config, engine=engine, store=engine.store)


_state: Optional[AppState] = None


def set_state(state: Optional[AppState]) -> None:
    global _state
    _state = state


def has_state() -> bool:
    return _state is not None


def get_state() -> AppState:
    if _state is None:
        raise RuntimeError("API state not initialized. Start the API through create_app().")
    return _state
