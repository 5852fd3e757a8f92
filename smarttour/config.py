import json
import os
from dataclasses import dataclass, field
from typing import Dict, Optional

from dotenv import load_dotenv

# Load environment variables from project root .env explicitly
_project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
_env_path = os.path.join(_project_root, ".env")

DEFAULT_FALLBACK_USD_RATES = {"USD": 1.0, "TZS": 2500.0, "USDT": 1.0, "USDC": 1.0}


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    return float(raw) if raw not in (None, "") else default


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    return int(raw) if raw not in (None, "") else default


@dataclass(frozen=True)
class Settings:
    """
    Runtime configuration for the booking engine.

    Every value can be overridden through the environment (or a project .env file).
    Rates in fallback_usd_rates are units per 1 USD.
    """
    database_url: str = "sqlite:///smarttour.db"
    local_currency: str = "TZS"
    ledger_unit: str = "USDT"
    exchange_rate_url: str = "https://api.exchangerate-api.com/v4/latest/USD"
    rate_timeout_seconds: float = 5.0
    rate_cache_seconds: int = 300
    fallback_usd_rates: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_FALLBACK_USD_RATES))
    deposit_window_seconds: int = 600
    deposit_tolerance: float = 0.01
    vault_mirror_ttl_seconds: int = 60
    vault_gateway_url: Optional[str] = None
    vault_authority_secret: Optional[str] = None
    ledger_timeout_seconds: float = 15.0
    max_trip_days: int = 30
    max_savings_deposit: float = 10_000_000.0
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def from_env(cls) -> "Settings":
        load_dotenv(dotenv_path=_env_path, override=False)
        fallback = dict(DEFAULT_FALLBACK_USD_RATES)
        raw_fallback = os.getenv("FALLBACK_USD_RATES")
        if raw_fallback:
            fallback.update({k.upper(): float(v) for k, v in json.loads(raw_fallback).items()})
        return cls(
            database_url=os.getenv("DATABASE_URL", "sqlite:///smarttour.db"),
            local_currency=os.getenv("LOCAL_CURRENCY", "TZS").upper(),
            ledger_unit=os.getenv("LEDGER_UNIT", "USDT").upper(),
            exchange_rate_url=os.getenv("EXCHANGE_RATE_URL", "https://api.exchangerate-api.com/v4/latest/USD"),
            rate_timeout_seconds=_float_env("RATE_TIMEOUT_SECONDS", 5.0),
            rate_cache_seconds=_int_env("RATE_CACHE_SECONDS", 300),
            fallback_usd_rates=fallback,
            deposit_window_seconds=_int_env("DEPOSIT_WINDOW_SECONDS", 600),
            deposit_tolerance=_float_env("DEPOSIT_TOLERANCE", 0.01),
            vault_mirror_ttl_seconds=_int_env("VAULT_MIRROR_TTL_SECONDS", 60),
            vault_gateway_url=os.getenv("VAULT_GATEWAY_URL") or None,
            vault_authority_secret=os.getenv("VAULT_AUTHORITY_SECRET") or None,
            ledger_timeout_seconds=_float_env("LEDGER_TIMEOUT_SECONDS", 15.0),
            max_trip_days=_int_env("MAX_TRIP_DAYS", 30),
            max_savings_deposit=_float_env("MAX_SAVINGS_DEPOSIT", 10_000_000.0),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_file=os.getenv("LOG_FILE") or None,
        )
