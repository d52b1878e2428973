"""
FastAPI router: dividend info, claims, projections, distribution history and admin operations.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from backend_tokensale.api_server.dependencies import get_dividend_service, require_admin
from backend_tokensale.dividends.service import DividendService
from backend_tokensale.logging import get_logger, short_address

logger = get_logger(__name__)

router = APIRouter(prefix="/dividends", tags=["dividends"])


class ClaimRequest(BaseModel):
    """POST /dividends/claim body."""

    wallet_address: str = Field(..., description="Claiming wallet (0x + 40 hex)")
    distribution_ids: list[str] = Field(..., min_length=1, description="Distributions to claim from")


class CreateDistributionRequest(BaseModel):
    """POST /dividends/admin/create-distribution body."""

    total_amount: Decimal = Field(..., description="Profit pool to distribute (USDT)")
    notes: str | None = Field(None, max_length=1000)


class SimulateDistributionRequest(BaseModel):
    total_amount: Decimal = Field(..., description="Profit pool to simulate (USDT)")


class StatusUpdateRequest(BaseModel):
    status: str = Field(..., description="processing | completed | failed")


@router.get("/info/{address}")
async def dividend_info(address: str, service: DividendService = Depends(get_dividend_service)) -> dict[str, Any]:
    """Received and available dividends for a wallet plus its on-chain holding period."""
    info = await service.get_dividend_info(address)
    return {"success": True, "dividend_info": info.to_dict()}


@router.post("/claim")
def claim(body: ClaimRequest, service: DividendService = Depends(get_dividend_service)) -> dict[str, Any]:
    logger.info("dividend_claim_requested", wallet=short_address(body.wallet_address), ids=len(body.distribution_ids))
    result = service.claim_dividends(body.wallet_address, body.distribution_ids)
    return {"success": True, "claim": result.to_dict()}


@router.get("/projection/{address}")
async def projection(
    address: str,
    monthly_profit: Decimal | None = Query(None, description="Assumed monthly profit; server default when omitted"),
    service: DividendService = Depends(get_dividend_service),
) -> dict[str, Any]:
    result = await service.project_dividends(address, monthly_profit)
    return {"success": True, "projection": result.to_dict()}


@router.get("/distributions")
def distributions(
    page: int = Query(1),
    limit: int = Query(10),
    service: DividendService = Depends(get_dividend_service),
) -> dict[str, Any]:
    """Paginated distribution summaries, newest first; holder snapshots and entries are omitted."""
    return {"success": True, **service.list_distributions(page, limit)}


@router.get("/stats")
def stats(service: DividendService = Depends(get_dividend_service)) -> dict[str, Any]:
    return {"success": True, "stats": service.get_dividend_stats()}


# -----------------------------------------------------------------------------
# Admin
# -----------------------------------------------------------------------------


@router.post("/admin/create-distribution", dependencies=[Depends(require_admin)])
async def create_distribution(
    body: CreateDistributionRequest,
    service: DividendService = Depends(get_dividend_service),
) -> dict[str, Any]:
    distribution = await service.create_distribution(body.total_amount, body.notes)
    return {
        "success": True,
        "distribution": distribution.to_dict(),
        "message": f"distribution created for {distribution.eligible_holders} holders",
    }


@router.get("/admin/eligible-holders", dependencies=[Depends(require_admin)])
async def eligible_holders(service: DividendService = Depends(get_dividend_service)) -> dict[str, Any]:
    snapshot = await service.build_eligibility_snapshot()
    return {"success": True, "snapshot": snapshot.to_dict()}


@router.get("/admin/chain-holders", dependencies=[Depends(require_admin)])
async def chain_holders(service: DividendService = Depends(get_dividend_service)) -> dict[str, Any]:
    """Holders discovered from on-chain Transfer events, with balance and holding period."""
    holders = await service.discover_chain_holders()
    return {"success": True, "count": len(holders), "holders": [h.to_dict() for h in holders]}


@router.get("/admin/distribution/{distribution_id}", dependencies=[Depends(require_admin)])
def distribution_detail(
    distribution_id: str,
    service: DividendService = Depends(get_dividend_service),
) -> dict[str, Any]:
    return {"success": True, "distribution": service.get_distribution(distribution_id).to_dict()}


@router.post("/admin/simulate-distribution", dependencies=[Depends(require_admin)])
async def simulate_distribution(
    body: SimulateDistributionRequest,
    service: DividendService = Depends(get_dividend_service),
) -> dict[str, Any]:
    return {"success": True, "simulation": await service.simulate_distribution(body.total_amount)}


@router.put("/admin/distribution/{distribution_id}/status", dependencies=[Depends(require_admin)])
def update_distribution_status(
    distribution_id: str,
    body: StatusUpdateRequest,
    service: DividendService = Depends(get_dividend_service),
) -> dict[str, Any]:
    distribution = service.update_distribution_status(distribution_id, body.status)
    return {"success": True, "distribution": distribution.summary()}
