"""
FastAPI router: ICO status, purchases, statistics and admin phase management.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from backend_tokensale.api_server.dependencies import get_ico_service, require_admin
from backend_tokensale.ico.service import IcoService

router = APIRouter(prefix="/ico", tags=["ico"])


class PurchaseRequest(BaseModel):
    """POST /ico/purchase body: a confirmed on-chain payment for phase tokens."""

    wallet_address: str = Field(..., description="Buyer wallet (0x + 40 hex)")
    amount_paid: Decimal = Field(..., description="Amount paid in MATIC")
    phase: int = Field(..., description="Sale phase (1-3)")
    tx_hash: str = Field(..., min_length=1, max_length=128)
    affiliate_address: str | None = Field(None, description="Referring wallet, if any")


class PhaseUpdateRequest(BaseModel):
    """PUT /ico/admin/phase/{phase} body. Omitted fields are left unchanged."""

    name: str | None = Field(None, max_length=128)
    description: str | None = Field(None, max_length=512)
    token_price: Decimal | None = None
    total_tokens: Decimal | None = None
    bonus_percentage: Decimal | None = None
    min_purchase: Decimal | None = None
    max_purchase: Decimal | None = None
    start_date: int | None = Field(None, description="Unix seconds")
    end_date: int | None = Field(None, description="Unix seconds")


@router.get("/status")
def status(service: IcoService = Depends(get_ico_service)) -> dict[str, Any]:
    return {"success": True, "ico": service.get_status()}


@router.get("/is-active")
def is_active(service: IcoService = Depends(get_ico_service)) -> dict[str, Any]:
    return {"success": True, **service.is_active()}


@router.post("/purchase")
def purchase(body: PurchaseRequest, service: IcoService = Depends(get_ico_service)) -> dict[str, Any]:
    result = service.process_purchase(
        body.wallet_address,
        body.amount_paid,
        body.phase,
        body.tx_hash,
        body.affiliate_address,
    )
    return {"success": True, "message": "purchase processed", **result}


@router.get("/purchases/{address}")
def purchases(
    address: str,
    page: int = Query(1),
    limit: int = Query(10),
    service: IcoService = Depends(get_ico_service),
) -> dict[str, Any]:
    return {"success": True, **service.list_purchases(address, page, limit)}


@router.get("/stats")
def stats(service: IcoService = Depends(get_ico_service)) -> dict[str, Any]:
    return {"success": True, "stats": service.get_stats()}


@router.post("/admin/initialize", dependencies=[Depends(require_admin)])
def initialize(service: IcoService = Depends(get_ico_service)) -> dict[str, Any]:
    return {"success": True, **service.initialize_phases()}


@router.post("/admin/activate-next-phase", dependencies=[Depends(require_admin)])
def activate_next_phase(service: IcoService = Depends(get_ico_service)) -> dict[str, Any]:
    return {"success": True, **service.activate_next_phase()}


@router.put("/admin/phase/{phase}", dependencies=[Depends(require_admin)])
def update_phase(
    phase: int,
    body: PhaseUpdateRequest,
    service: IcoService = Depends(get_ico_service),
) -> dict[str, Any]:
    return {"success": True, **service.update_phase(phase, body.model_dump(exclude_none=True))}


@router.get("/admin/detailed-stats", dependencies=[Depends(require_admin)])
def detailed_stats(service: IcoService = Depends(get_ico_service)) -> dict[str, Any]:
    return {"success": True, **service.get_detailed_stats()}
