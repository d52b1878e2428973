"""
Application settings and environment configuration.

Responsibilities:
- Load configuration from environment variables and .env files.
- Validate settings and provide defaults for optional ones.
- Expose typed settings (RPC URL, token contract, database URL, dividend
  parameters, API host/port) for the services and the API server.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation

from backend_tokensale.config.env import get_database_url, get_env, get_rpc_url


@dataclass(frozen=True)
class Settings:
    """Typed view of the environment. Build with get_settings() or directly in tests."""

    database_url: str = "sqlite:///tokensale.db"
    rpc_url: str = "https://polygon-rpc.com"
    token_address: str = ""
    token_decimals: int = 18
    oracle_timeout_sec: float = 10.0
    oracle_log_block_range: int = 1_200_000
    min_holding_days: int = 30
    distribution_rate: Decimal = field(default_factory=lambda: Decimal("0.6"))
    average_token_price: Decimal = field(default_factory=lambda: Decimal("0.05"))
    default_total_supply: Decimal = field(default_factory=lambda: Decimal("21000000"))
    default_monthly_profit: Decimal = field(default_factory=lambda: Decimal("100000"))
    affiliate_commission_rate: Decimal = field(default_factory=lambda: Decimal("0.05"))
    admin_api_key: str = ""
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "info"


def _int_env(name: str, default: int) -> int:
    raw = get_env(name)
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from e


def _float_env(name: str, default: float) -> float:
    raw = get_env(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError as e:
        raise ValueError(f"{name} must be a number, got {raw!r}") from e


def _decimal_env(name: str, default: str) -> Decimal:
    raw = get_env(name, default)
    try:
        return Decimal(raw)
    except InvalidOperation as e:
        raise ValueError(f"{name} must be a decimal, got {raw!r}") from e


def get_settings() -> Settings:
    """
    Return the current application settings read from the environment.

    Raises ValueError when a numeric variable cannot be parsed.
    """
    return Settings(
        database_url=get_database_url(),
        rpc_url=get_rpc_url(),
        token_address=get_env("TOKEN_ADDRESS").lower(),
        token_decimals=_int_env("TOKEN_DECIMALS", 18),
        oracle_timeout_sec=_float_env("ORACLE_TIMEOUT_SEC", 10.0),
        oracle_log_block_range=_int_env("ORACLE_LOG_BLOCK_RANGE", 1_200_000),
        min_holding_days=_int_env("MIN_HOLDING_DAYS", 30),
        distribution_rate=_decimal_env("DISTRIBUTION_RATE", "0.6"),
        average_token_price=_decimal_env("AVERAGE_TOKEN_PRICE", "0.05"),
        default_total_supply=_decimal_env("DEFAULT_TOTAL_SUPPLY", "21000000"),
        default_monthly_profit=_decimal_env("DEFAULT_MONTHLY_PROFIT", "100000"),
        affiliate_commission_rate=_decimal_env("AFFILIATE_COMMISSION_RATE", "0.05"),
        admin_api_key=get_env("ADMIN_API_KEY"),
        api_host=get_env("API_HOST", "0.0.0.0"),
        api_port=_int_env("API_PORT", 8000),
        log_level=get_env("LOG_LEVEL", "info").lower(),
    )
