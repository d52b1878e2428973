"""
Environment variable loading for Backend Token Sale.

- NETWORK: polygon | amoy (default: polygon)
- RPC_URL: JSON-RPC endpoint (read from .env)
- ALCHEMY_API_KEY: fallback for RPC URL when RPC_URL is unset
- TOKEN_ADDRESS: deployed ERC-20 token contract
- DATABASE_URL: SQLAlchemy URL (default: sqlite:///tokensale.db)
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Project root: config is backend_tokensale/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_BACKEND_DIR = _CONFIG_DIR.parent
_ROOT = _BACKEND_DIR.parent
_ENV_PATH = _ROOT / ".env"

POLYGON_RPC_URL = "https://polygon-rpc.com"
AMOY_RPC_URL = "https://rpc-amoy.polygon.technology"
ALCHEMY_POLYGON_URL_TEMPLATE = "https://polygon-mainnet.g.alchemy.com/v2/{key}"
ALCHEMY_AMOY_URL_TEMPLATE = "https://polygon-amoy.g.alchemy.com/v2/{key}"

DEFAULT_DATABASE_URL = "sqlite:///tokensale.db"


def load_tokensale_env() -> None:
    """Load .env from project root. Existing environment variables win; safe to call multiple times."""
    load_dotenv(_ENV_PATH, override=False)


def get_env(name: str, default: str = "") -> str:
    """Return a stripped environment value, or default when unset or blank."""
    load_tokensale_env()
    return (os.getenv(name) or "").strip() or default


def get_network() -> str:
    """
    Return NETWORK from env: polygon | amoy.
    Default: polygon.
    """
    raw = get_env("NETWORK", "polygon").lower()
    if raw in ("amoy", "testnet", "polygon-amoy"):
        return "amoy"
    return "polygon"


def get_rpc_url() -> str:
    """
    Resolve the JSON-RPC URL.
    Order: RPC_URL > ALCHEMY_API_KEY (network-specific) > public network default.
    """
    url = get_env("RPC_URL")
    if url:
        return url
    key = get_env("ALCHEMY_API_KEY")
    network = get_network()
    if key:
        template = ALCHEMY_AMOY_URL_TEMPLATE if network == "amoy" else ALCHEMY_POLYGON_URL_TEMPLATE
        return template.format(key=key)
    return AMOY_RPC_URL if network == "amoy" else POLYGON_RPC_URL


def get_database_url() -> str:
    """Return DATABASE_URL, or a SQLite file from DATABASE_PATH, or the default SQLite URL."""
    url = get_env("DATABASE_URL")
    if url:
        return url
    path = get_env("DATABASE_PATH")
    if path:
        return f"sqlite:///{path}"
    return DEFAULT_DATABASE_URL


def mask_rpc_url(url: str) -> str:
    """Hide API keys embedded in RPC URLs before logging them."""
    if "/v2/" in url:
        return url.split("/v2/")[0] + "/v2/***"
    if "api-key=" in url:
        return url.split("api-key=")[0] + "api-key=***"
    return url
