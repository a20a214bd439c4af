from pathlib import Path

import pytest
from pydantic import ValidationError

from src.infrastructure.utils.config import EngineConfig, ScoringConfig, TradingConfig, load_config

CONFIG = Path(__file__).resolve().parents[1] / "config" / "default.yaml"


def test_default_yaml_loads(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.delenv("TAAPI__SECRET", raising=False)
    monkeypatch.delenv("NIXTLA__API_KEY", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)

    cfg = EngineConfig.from_yaml(CONFIG)

    assert cfg.trading.symbols == ["NEAR/USDT"]
    assert cfg.trading.quote_token.decimals == 6
    assert cfg.trading.tokens["NEAR/USDT"].decimals == 24
    assert cfg.scoring.decay_alpha_flat == 0.92
    assert cfg.scoring.decay_alpha_positioned == 0.85
    assert cfg.dataset.feature_schema == "v1"
    assert cfg.binance_proxy.retry.max_attempts == 3
    assert cfg.ref.pool_ids == {"NEAR/USDT": 5515}
    assert not cfg.has_secrets


def test_env_overrides_secrets(monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("TAAPI__SECRET", "taapi-secret")
    monkeypatch.setenv("NIXTLA__API_KEY", "nixtla-key")
    monkeypatch.setenv("LOG_LEVEL", "debug")

    cfg = load_config(CONFIG)

    assert cfg.taapi.secret == "taapi-secret"
    assert cfg.nixtla.api_key == "nixtla-key"
    assert cfg.log_level == "DEBUG"
    assert cfg.has_secrets


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        EngineConfig.from_yaml(tmp_path / "nope.yaml")


def test_invalid_values_are_reported(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("trading:\n  buy_threshold: -2.0\n  sell_threshold: -1.0\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Configuration validation error"):
        EngineConfig.from_yaml(path)


def test_positioned_scoring_cannot_be_more_aggressive():
    with pytest.raises(ValidationError):
        ScoringConfig(decay_alpha_positioned=0.95, decay_alpha_flat=0.92)
    with pytest.raises(ValidationError):
        ScoringConfig(ai_multiplier_positioned=400.0)


def test_symbols_need_tokens():
    with pytest.raises(ValidationError):
        TradingConfig(symbols=["BTC/USDT"])
    assert TradingConfig(symbols=["near/usdt"]).symbols == ["NEAR/USDT"]


def test_full_schema_needs_proxy():
    with pytest.raises(ValidationError):
        EngineConfig(binance_proxy={"enabled": False})
    cfg = EngineConfig(binance_proxy={"enabled": False}, dataset={"feature_schema": "v1-core"})
    assert cfg.dataset.feature_schema == "v1-core"


def test_log_format_is_validated():
    assert EngineConfig(log_format="Console").log_format == "console"
    with pytest.raises(ValidationError):
        EngineConfig(log_format="xml")
