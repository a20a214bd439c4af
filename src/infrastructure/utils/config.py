"""Configuration management for the decision engine.

Rules:
- YAML provides defaults for non-secret config.
- Secrets (TAAPI secret, Nixtla API key) come from .env / environment variables and override YAML.
- Scoring constants live in one versioned structure (ScoringConfig); change `version` when defaults move.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, List, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.infrastructure.logging.logging import LOG_FORMATS

PLACEHOLDER_SECRETS = {"DUMMY", "PLACEHOLDER", "CHANGEME", ""}


class TaapiConfig(BaseModel):
    """TAAPI.io bulk indicator endpoint."""

    secret: str = Field(default="CHANGEME", description="TAAPI secret (env TAAPI__SECRET)")
    base_url: str = Field(default="https://api.taapi.io")
    exchange: str = Field(default="binance")
    interval: str = Field(default="5m")
    timeout_sec: float = Field(default=20.0, gt=0)


class RetryConfig(BaseModel):
    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay_sec: float = Field(default=1.0, ge=0.0, le=60.0)


class BinanceProxyConfig(BaseModel):
    """Depth / liquidation-zone proxy in front of Binance."""

    enabled: bool = Field(default=True)
    base_url: str = Field(default="http://localhost:3001")
    timeout_sec: float = Field(default=15.0, gt=0)
    retry: RetryConfig = Field(default_factory=RetryConfig)


class NixtlaConfig(BaseModel):
    """TimeGPT forecast endpoint."""

    api_key: str = Field(default="CHANGEME", description="Nixtla API key (env NIXTLA__API_KEY)")
    base_url: str = Field(default="https://api.nixtla.io")
    model: str = Field(default="timegpt-1")
    freq: str = Field(default="5min")
    clean_ex_first: bool = Field(default=True)
    finetune_steps: int = Field(default=20, ge=0, le=500)
    finetune_loss: str = Field(default="mae")
    timeout_sec: float = Field(default=60.0, gt=0)

    @field_validator("finetune_loss")
    @classmethod
    def validate_finetune_loss(cls, v: str) -> str:
        if str(v).lower() not in {"default", "mae", "mse", "rmse", "mape", "smape"}:
            raise ValueError("finetune_loss must be one of default/mae/mse/rmse/mape/smape")
        return str(v).lower()


class TokenConfig(BaseModel):
    token_id: str
    decimals: int = Field(ge=0, le=36)


class RefConfig(BaseModel):
    """Ref Finance swap quotes (NEAR)."""

    rpc_url: str = Field(default="https://rpc.mainnet.near.org")
    contract_id: str = Field(default="v2.ref-finance.near")
    smart_router_url: Optional[str] = Field(default="https://smartrouter.ref.finance/findPath")
    path_depth: int = Field(default=3, ge=1, le=5)
    slippage: float = Field(default=0.005, ge=0.0, le=0.1)
    timeout_sec: float = Field(default=15.0, gt=0)
    pool_ids: Dict[str, int] = Field(default_factory=dict, description="Single-pool fallback per symbol")


class ScoringConfig(BaseModel):
    """Signal fusion constants (one canonical, versioned set)."""

    version: str = Field(default="2025.1")

    forecast_points: int = Field(default=12, ge=1, le=288)
    decay_alpha_flat: float = Field(default=0.92, gt=0.0, le=1.0)
    decay_alpha_positioned: float = Field(default=0.85, gt=0.0, le=1.0)
    ai_multiplier_flat: float = Field(default=300.0, gt=0.0)
    ai_multiplier_positioned: float = Field(default=200.0, gt=0.0)

    vwap_neutral_band_pct: float = Field(default=0.5, ge=0.0)
    vwap_step_pct: float = Field(default=1.0, gt=0.0)
    vwap_step_score: float = Field(default=0.5, ge=0.0)

    bbands_multiplier: float = Field(default=0.5, ge=0.0)
    rsi_multiplier: float = Field(default=1.0, ge=0.0)

    obv_window: int = Field(default=12, ge=2, le=288)
    obv_price_slope_threshold: float = Field(default=0.05, ge=0.0)
    obv_weight: float = Field(default=0.5)

    profit_taking_multiplier: float = Field(default=0.5, ge=0.0)

    @model_validator(mode="after")
    def validate_asymmetry(self) -> "ScoringConfig":
        if self.decay_alpha_positioned > self.decay_alpha_flat:
            raise ValueError("decay_alpha_positioned must not exceed decay_alpha_flat")
        if self.ai_multiplier_positioned > self.ai_multiplier_flat:
            raise ValueError("ai_multiplier_positioned must not exceed ai_multiplier_flat")
        return self


class TradingConfig(BaseModel):
    symbols: List[str] = Field(default_factory=lambda: ["NEAR/USDT"])
    quote_symbol: str = Field(default="USDC")
    quote_token: TokenConfig = Field(
        default_factory=lambda: TokenConfig(
            token_id="17208628f84f5d6ad33f0da3bbbeb27ffcb398eac501a31bd6ad2011e36133a1",
            decimals=6,
        )
    )
    tokens: Dict[str, TokenConfig] = Field(
        default_factory=lambda: {"NEAR/USDT": TokenConfig(token_id="wrap.near", decimals=24)}
    )
    initial_balance: float = Field(default=1000.0, ge=0.0)
    buy_threshold: float = Field(default=1.0)
    sell_threshold: float = Field(default=-1.0)
    stop_loss_threshold: float = Field(default=-0.02, lt=0.0, ge=-1.0)
    take_profit_threshold: float = Field(default=0.05, gt=0.0, le=10.0)
    forecast_horizon: int = Field(default=24, ge=1, le=288)

    @field_validator("symbols")
    @classmethod
    def validate_symbols(cls, v: List[str]) -> List[str]:
        out = [str(x).strip().upper() for x in v if x and str(x).strip()]
        if not out:
            raise ValueError("at least one symbol is required")
        for s in out:
            if "/" not in s:
                raise ValueError(f"symbol must look like BASE/QUOTE, got {s}")
        return out

    @model_validator(mode="after")
    def validate_thresholds(self) -> "TradingConfig":
        if self.sell_threshold >= self.buy_threshold:
            raise ValueError("sell_threshold must be lower than buy_threshold")
        missing = [s for s in self.symbols if s not in self.tokens]
        if missing:
            raise ValueError(f"no token configured for symbols: {missing}")
        return self


class DatasetConfig(BaseModel):
    feature_schema: str = Field(default="v1")
    window_size: int = Field(default=288, ge=2, le=5000)

    @field_validator("feature_schema")
    @classmethod
    def validate_feature_schema(cls, v: str) -> str:
        if str(v) not in {"v1", "v1-core"}:
            raise ValueError("feature_schema must be 'v1' or 'v1-core'")
        return str(v)


class DatabaseConfig(BaseModel):
    indicators_path: str = Field(default="data/datapoints.db")
    kv_path: str = Field(default="data/kv.db")


class APIConfig(BaseModel):
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1024, le=65535)
    cors_origins: List[str] = Field(default=["http://localhost:3000", "http://localhost:5173"])


class SchedulerConfig(BaseModel):
    settle_delay_sec: float = Field(default=10.0, ge=0.0, le=240.0)


class EngineConfig(BaseSettings):
    """Main configuration class for the engine.

    YAML is parsed as base config, then env overrides are re-applied for secrets.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json | console")

    taapi: TaapiConfig = Field(default_factory=TaapiConfig)
    binance_proxy: BinanceProxyConfig = Field(default_factory=BinanceProxyConfig)
    nixtla: NixtlaConfig = Field(default_factory=NixtlaConfig)
    ref: RefConfig = Field(default_factory=RefConfig)
    trading: TradingConfig = Field(default_factory=TradingConfig)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    dataset: DatasetConfig = Field(default_factory=DatasetConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if str(v).upper() not in valid:
            raise ValueError(f"Log level must be one of: {sorted(valid)}")
        return str(v).upper()

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if str(v).lower() not in LOG_FORMATS:
            raise ValueError(f"log_format must be one of: {list(LOG_FORMATS)}")
        return str(v).lower()

    @model_validator(mode="after")
    def validate_dataset_vs_proxy(self) -> "EngineConfig":
        if self.dataset.feature_schema == "v1" and not self.binance_proxy.enabled:
            raise ValueError("feature_schema 'v1' needs depth/liq_zones; enable binance_proxy or use 'v1-core'")
        return self

    @property
    def has_secrets(self) -> bool:
        return (
            self.taapi.secret.upper() not in PLACEHOLDER_SECRETS
            and self.nixtla.api_key.upper() not in PLACEHOLDER_SECRETS
        )

    @classmethod
    def from_yaml(cls, yaml_path: Path) -> "EngineConfig":
        """Load configuration from YAML, then apply env overrides (TAAPI__SECRET, NIXTLA__API_KEY, LOG_LEVEL, LOG_FORMAT)."""
        if not yaml_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

        try:
            with open(yaml_path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid YAML in configuration file: {e}")

        try:
            base = cls.model_validate(data)
        except ValidationError as e:
            raise ValueError(f"Configuration validation error: {e}")

        if os.getenv("TAAPI__SECRET"):
            base.taapi.secret = os.getenv("TAAPI__SECRET", base.taapi.secret)

        if os.getenv("NIXTLA__API_KEY"):
            base.nixtla.api_key = os.getenv("NIXTLA__API_KEY", base.nixtla.api_key)

        if os.getenv("LOG_LEVEL"):
            base.log_level = os.getenv("LOG_LEVEL", base.log_level).upper()

        if os.getenv("LOG_FORMAT"):
            base.log_format = os.getenv("LOG_FORMAT", base.log_format).lower()

        return base


def load_config(config_path: Optional[Path] = None) -> EngineConfig:
    """Load configuration from YAML + .env (env wins for secrets)."""

    load_dotenv(dotenv_path=Path(".env"))

    if config_path is None:
        possible_paths = [Path("config/default.yaml"), Path("config/config.yaml"), Path("config.yaml")]
        for path in possible_paths:
            if path.exists():
                config_path = path
                break
        else:
            raise FileNotFoundError("No configuration file found. Create config/default.yaml or specify config path.")

    return EngineConfig.from_yaml(config_path)

