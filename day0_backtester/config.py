from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Any, Dict

def _env_float(key: str, default: float) -> float:
    v = os.getenv(key)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default

def _env_int(key: str, default: int) -> int:
    v = os.getenv(key)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        return default

def _env_str(key: str, default: str) -> str:
    v = os.getenv(key)
    return v if v not in (None, "") else default

def _env_bool(key: str, default: bool = True) -> bool:
    v = os.getenv(key)
    if v is None or v == "":
        return default
    return v.strip().lower() not in ("0", "false", "no", "off")

# IST is UTC+05:30
IST_OFFSET_MINUTES = 330

@dataclass(frozen=True)
class StrategyConfig:
    # Day 0 alert
    price_spike_pct: float = 6.0
    volume_multiplier: float = 2.0
    volume_sma_period: int = 20

    # Staged entry: day k limit = prior reference * (1 + premium)
    entry_premium_pct: float = 1.0
    max_entry_days: int = 4

    # Stop = max(previous day low, entry * (1 - stop_loss_pct))
    stop_loss_pct: float = 2.0

    # Candle dates are truncated to calendar days after adding this offset
    tz_offset_minutes: int = IST_OFFSET_MINUTES

    # A zero trailing-volume window disqualifies the day unless this is set,
    # in which case any positive volume passes with ratio = +inf.
    allow_zero_volume_sma: bool = False

    @classmethod
    def from_env(cls, **overrides: Any) -> "StrategyConfig":
        base = cls(
            price_spike_pct=_env_float("PRICE_SPIKE_PERCENT", 6.0),
            volume_multiplier=_env_float("VOLUME_MULTIPLIER", 2.0),
            volume_sma_period=_env_int("VOLUME_SMA_PERIOD", 20),
            entry_premium_pct=_env_float("ENTRY_PREMIUM_PERCENT", 1.0),
            max_entry_days=_env_int("MAX_ENTRY_DAYS", 4),
            stop_loss_pct=_env_float("STOP_LOSS_PERCENT", 2.0),
            tz_offset_minutes=_env_int("TZ_OFFSET_MINUTES", IST_OFFSET_MINUTES),
            allow_zero_volume_sma=_env_bool("ALLOW_ZERO_VOLUME_SMA", False),
        )
        return base.replace(**overrides)

    def replace(self, **overrides: Any) -> "StrategyConfig":
        known = {f.name for f in fields(self)}
        values: Dict[str, Any] = {f.name: getattr(self, f.name) for f in fields(self)}
        for key, value in overrides.items():
            if key not in known:
                raise TypeError(f"unknown StrategyConfig field: {key}")
            if value is not None:
                values[key] = value
        cfg = StrategyConfig(**values)
        cfg.validate()
        return cfg

    def validate(self) -> None:
        if self.volume_sma_period <= 0:
            raise ValueError(f"volume_sma_period must be positive, got {self.volume_sma_period}")
        if self.max_entry_days <= 0:
            raise ValueError(f"max_entry_days must be positive, got {self.max_entry_days}")
        if self.volume_multiplier < 0:
            raise ValueError(f"volume_multiplier must be >= 0, got {self.volume_multiplier}")
        if self.entry_premium_pct < 0:
            raise ValueError(f"entry_premium_pct must be >= 0, got {self.entry_premium_pct}")
        if not 0 <= self.stop_loss_pct < 100:
            raise ValueError(f"stop_loss_pct must be in [0, 100), got {self.stop_loss_pct}")

@dataclass(frozen=True)
class KiteSettings:
    api_key: str = ""
    api_secret: str = ""
    access_token: str = ""
    base_url: str = "https://api.kite.trade"
    login_base_url: str = "https://kite.zerodha.com/connect/login"

    # ~1.6 requests/sec is safe for the historical endpoint
    min_delay_ms: int = 600
    rate_limit_wait_sec: float = 10.0
    max_retries: int = 3
    timeout_sec: float = 15.0

    # Run settings
    start_date: str = "2024-01-01"
    end_date: str = "2024-09-28"
    exchange: str = "NSE"
    instruments_csv: str = "data/instruments.csv"
    results_dir: str = "data/results"

    @classmethod
    def from_env(cls) -> "KiteSettings":
        token = _env_str("KITE_ACCESS_TOKEN", "")
        if token == "your_access_token_here":
            token = ""
        return cls(
            api_key=_env_str("KITE_API_KEY", ""),
            api_secret=_env_str("KITE_API_SECRET", ""),
            access_token=token,
            base_url=_env_str("KITE_BASE_URL", "https://api.kite.trade"),
            min_delay_ms=_env_int("KITE_MIN_DELAY_MS", 600),
            max_retries=_env_int("KITE_MAX_RETRIES", 3),
            start_date=_env_str("START_DATE", "2024-01-01"),
            end_date=_env_str("END_DATE", "2024-09-28"),
            exchange=_env_str("EXCHANGE", "NSE"),
            instruments_csv=_env_str("INSTRUMENTS_CSV", "data/instruments.csv"),
            results_dir=_env_str("RESULTS_DIR", "data/results"),
        )
