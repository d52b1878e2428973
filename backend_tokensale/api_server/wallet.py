"""
FastAPI router: one wallet's ledger history and activity summary.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query

from backend_tokensale.api_server.dependencies import get_wallet_service
from backend_tokensale.wallet.service import DEFAULT_HISTORY_LIMIT, WalletService

router = APIRouter(prefix="/wallet", tags=["wallet"])


@router.get("/transactions/{address}")
def transactions(
    address: str,
    page: int = Query(1),
    limit: int = Query(DEFAULT_HISTORY_LIMIT),
    tx_type: str | None = Query(None, alias="type", description="ico_purchase | dividend_payment | affiliate_payment"),
    service: WalletService = Depends(get_wallet_service),
) -> dict[str, Any]:
    return {"success": True, **service.list_transactions(address, page, limit, tx_type)}


@router.get("/stats/{address}")
async def stats(address: str, service: WalletService = Depends(get_wallet_service)) -> dict[str, Any]:
    return {"success": True, "stats": await service.get_wallet_stats(address)}
