"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      - committed static defaults
  2. ``config/local.toml``        - optional local overrides (gitignored)
  3. ``.env``                     - local secrets and env overrides (gitignored)
  4. Environment variables        - ``ETF_ROTATOR_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

The engine, the reconciler, pipeline stages and CLI commands all receive an
``AppConfig`` (or one of its frozen sections), not raw dicts or scattered
env var lookups. Invalid values are rejected here with ``InvalidConfiguration``
and never reach the engine.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from etf_rotator.errors import InvalidConfiguration
from etf_rotator.models.market import Instrument

# ── Sub-config models ─────────────────────────────────────────────────────────


class UniverseConfig(BaseModel):
    """Candidate pool and the defensive fallback instrument."""

    model_config = ConfigDict(frozen=True)

    pool: list[Instrument] = [
        Instrument(code="518880.SH", name="黄金ETF"),
        Instrument(code="159985.SZ", name="豆粕ETF"),
        Instrument(code="501018.SH", name="南方原油"),
        Instrument(code="161226.SZ", name="白银LOF"),
        Instrument(code="513100.SH", name="纳指ETF"),
        Instrument(code="159915.SZ", name="创业板ETF"),
        Instrument(code="511220.SH", name="城投债ETF"),
    ]
    defensive: Instrument = Instrument(code="511880.SH", name="银华日利")

    @field_validator("pool")
    @classmethod
    def validate_pool(cls, v: list[Instrument]) -> list[Instrument]:
        if not v:
            raise ValueError("Candidate pool must contain at least one instrument.")
        codes = [i.code for i in v]
        if len(set(codes)) != len(codes):
            raise ValueError(f"Candidate pool contains duplicate codes: {codes}.")
        return v


class StrategyParams(BaseModel):
    """Signal engine thresholds. Every filter reads its knobs from here."""

    model_config = ConfigDict(frozen=True)

    lookback_days: int = 25
    holdings_num: int = 1
    min_score_threshold: float = 0.0
    max_score_threshold: float = 500.0
    stop_loss_ratio: float = 0.97
    stop_loss_days: int = 3

    use_rsi_filter: bool = True
    rsi_period: int = 6
    rsi_lookback_days: int = 1
    rsi_threshold: float = 98.0

    use_short_momentum_filter: bool = True
    short_lookback_days: int = 10
    short_momentum_threshold: float = 0.0

    enable_volume_check: bool = True
    volume_lookback: int = 5
    volume_threshold: float = 2.0
    volume_return_limit: float = 1.0

    cache_window_days: int = 50
    request_delay_seconds: float = 0.1

    @field_validator(
        "lookback_days", "holdings_num", "stop_loss_days", "rsi_period",
        "rsi_lookback_days", "short_lookback_days", "volume_lookback",
        "cache_window_days",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"Period and count parameters must be >= 1, got {v}.")
        return v

    @field_validator("rsi_threshold", "volume_threshold", "request_delay_seconds")
    @classmethod
    def validate_non_negative(cls, v: float) -> float:
        if v < 0:
            raise ValueError(f"Thresholds must be non-negative, got {v}.")
        return v

    @field_validator("stop_loss_ratio")
    @classmethod
    def validate_stop_loss(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError(f"stop_loss_ratio must be in (0.0, 1.0], got {v}.")
        return v

    @model_validator(mode="after")
    def validate_consistency(self) -> "StrategyParams":
        if self.min_score_threshold >= self.max_score_threshold:
            raise ValueError(
                f"min_score_threshold ({self.min_score_threshold}) must be below "
                f"max_score_threshold ({self.max_score_threshold})."
            )
        if self.cache_window_days < self.lookback_days + 1:
            raise ValueError(
                f"cache_window_days ({self.cache_window_days}) must hold at least "
                f"lookback_days + 1 ({self.lookback_days + 1}) bars."
            )
        return self


class DataSourceConfig(BaseModel):
    """Tushare-compatible daily bar endpoint."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "http://api.tushare.pro"
    api_name: str = "fund_daily"
    token: Optional[str] = None
    timeout_seconds: float = 15.0


class RemoteSignalConfig(BaseModel):
    """Precomputed signal endpoint (first tier of the fallback chain)."""

    model_config = ConfigDict(frozen=True)

    enabled: bool = True
    base_url: str = "https://seven-star-worker.example.workers.dev"
    api_key: Optional[str] = None
    timeout_seconds: float = 15.0


class StorageConfig(BaseModel):
    """Filesystem locations for durable state."""

    model_config = ConfigDict(frozen=True)

    data_dir: str = "data"
    bar_cache_file: str = "bar_cache.json"
    portfolio_file: str = "portfolio.json"
    mirror_dir: Optional[str] = None
    db_file: str = "etf_rotator.db"

    @property
    def bar_cache_path(self) -> Path:
        return Path(self.data_dir) / self.bar_cache_file

    @property
    def portfolio_path(self) -> Path:
        return Path(self.data_dir) / self.portfolio_file

    @property
    def mirror_path(self) -> Optional[Path]:
        if not self.mirror_dir:
            return None
        return Path(self.mirror_dir) / self.portfolio_file

    @property
    def db_path(self) -> str:
        return str(Path(self.data_dir) / self.db_file)


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: Optional[str] = None
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class AppConfig(BaseModel):
    """Complete application configuration."""

    model_config = ConfigDict(frozen=True)

    universe: UniverseConfig = UniverseConfig()
    strategy: StrategyParams = StrategyParams()
    data_source: DataSourceConfig = DataSourceConfig()
    remote_signal: RemoteSignalConfig = RemoteSignalConfig()
    storage: StorageConfig = StorageConfig()
    logging: LoggingConfig = LoggingConfig()
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        InvalidConfiguration: If merged config values fail validation.
    """
    root = _find_project_root()

    load_dotenv(dotenv_path=root / ".env", override=False)

    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    raw = _apply_env_overrides(raw)

    try:
        return _build_app_config(raw)
    except ValidationError as exc:
        raise InvalidConfiguration(f"Invalid configuration in {config_path}:\n{exc}") from exc


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply ETF_ROTATOR_* env vars to the raw config dict.

    Supported overrides:
      ETF_ROTATOR_DATA_DIR        → raw["storage"]["data_dir"]
      ETF_ROTATOR_LOG_LEVEL       → raw["logging"]["level"]
      ETF_ROTATOR_TUSHARE_TOKEN   → raw["data_source"]["token"]
      ETF_ROTATOR_SIGNAL_API_KEY  → raw["remote_signal"]["api_key"]
      ETF_ROTATOR_DEBUG           → raw["debug"]
    """
    if data_dir := os.environ.get("ETF_ROTATOR_DATA_DIR"):
        raw.setdefault("storage", {})["data_dir"] = data_dir

    if log_level := os.environ.get("ETF_ROTATOR_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if token := os.environ.get("ETF_ROTATOR_TUSHARE_TOKEN"):
        raw.setdefault("data_source", {})["token"] = token

    if api_key := os.environ.get("ETF_ROTATOR_SIGNAL_API_KEY"):
        raw.setdefault("remote_signal", {})["api_key"] = api_key

    if debug := os.environ.get("ETF_ROTATOR_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    project = raw.pop("project", {})

    return AppConfig(
        universe=UniverseConfig(**raw.get("universe", {})),
        strategy=StrategyParams(**raw.get("strategy", {})),
        data_source=DataSourceConfig(**raw.get("data_source", {})),
        remote_signal=RemoteSignalConfig(**raw.get("remote_signal", {})),
        storage=StorageConfig(**raw.get("storage", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        debug=raw.get("debug", project.get("debug", False)),
    )
