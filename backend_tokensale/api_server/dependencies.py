"""
FastAPI dependencies: services from app.state and the admin key guard.
"""

from __future__ import annotations

import secrets

from fastapi import Header, HTTPException, Request

from backend_tokensale.dividends.service import DividendService
from backend_tokensale.ico.service import IcoService
from backend_tokensale.logging import get_logger
from backend_tokensale.wallet.service import WalletService

logger = get_logger(__name__)

ADMIN_KEY_HEADER = "X-Admin-Key"


def get_dividend_service(request: Request) -> DividendService:
    return request.app.state.dividend_service


def get_ico_service(request: Request) -> IcoService:
    return request.app.state.ico_service


def get_wallet_service(request: Request) -> WalletService:
    return request.app.state.wallet_service


def require_admin(
    request: Request,
    x_admin_key: str | None = Header(None, alias=ADMIN_KEY_HEADER),
) -> None:
    """403 unless X-Admin-Key matches ADMIN_API_KEY. An unset ADMIN_API_KEY disables admin routes."""
    expected = request.app.state.settings.admin_api_key
    if not expected:
        logger.warning("admin_api_disabled", path=request.url.path)
        raise HTTPException(status_code=403, detail="admin API disabled")
    if not x_admin_key or not secrets.compare_digest(x_admin_key, expected):
        logger.warning("admin_key_rejected", path=request.url.path)
        raise HTTPException(status_code=403, detail="invalid admin key")
