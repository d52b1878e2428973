"""
Data models for the dividend engine.

Responsibilities:
- Holding records and eligibility snapshots (derived, never persisted alone).
- Calculated shares, distributions and their per-holder entries.
- Read models returned by the service: dividend info, claim results.

Decimal amounts serialize as strings and timestamps as ISO 8601 in to_dict().
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any

from backend_tokensale.chain.models import HoldingPeriod
from backend_tokensale.core.timeutils import iso


class Provenance(str, Enum):
    LEDGER_DERIVED = "ledger_derived"
    BLOCKCHAIN_VERIFIED = "blockchain_verified"


class DistributionStatus(str, Enum):
    PENDING = "pending"
    CALCULATED = "calculated"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# Distributions whose entries are reported and can be claimed
CLAIMABLE_STATUSES = frozenset({DistributionStatus.CALCULATED, DistributionStatus.COMPLETED})

STATUS_TRANSITIONS: dict[DistributionStatus, frozenset[DistributionStatus]] = {
    DistributionStatus.CALCULATED: frozenset(
        {DistributionStatus.PROCESSING, DistributionStatus.COMPLETED, DistributionStatus.FAILED}
    ),
    DistributionStatus.PROCESSING: frozenset({DistributionStatus.COMPLETED, DistributionStatus.FAILED}),
}


@dataclass(frozen=True)
class HoldingRecord:
    """One wallet's position folded from its confirmed purchases, optionally overridden by the chain."""

    address: str
    balance: Decimal
    total_invested: Decimal
    purchase_count: int
    first_purchase_at: int
    holding_period_days: int
    eligible: bool
    provenance: Provenance = Provenance.LEDGER_DERIVED

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "balance": str(self.balance),
            "total_invested": str(self.total_invested),
            "purchase_count": self.purchase_count,
            "first_purchase_at": iso(self.first_purchase_at),
            "holding_period_days": self.holding_period_days,
            "eligible": self.eligible,
            "provenance": self.provenance.value,
        }

    def to_snapshot_json(self) -> dict[str, Any]:
        """Stored form inside distributions.holders_snapshot (timestamps stay ints)."""
        out = self.to_dict()
        out["first_purchase_at"] = self.first_purchase_at
        return out

    @classmethod
    def from_snapshot_json(cls, data: dict[str, Any]) -> "HoldingRecord":
        return cls(
            address=data["address"],
            balance=Decimal(data["balance"]),
            total_invested=Decimal(data["total_invested"]),
            purchase_count=int(data["purchase_count"]),
            first_purchase_at=int(data["first_purchase_at"]),
            holding_period_days=int(data["holding_period_days"]),
            eligible=bool(data["eligible"]),
            provenance=Provenance(data["provenance"]),
        )


@dataclass(frozen=True)
class EligibilitySnapshot:
    """Immutable eligible set built fresh for each distribution, simulation or admin listing."""

    holders: tuple[HoldingRecord, ...]
    total_tokens_eligible: Decimal
    total_holders: int
    taken_at: int

    @property
    def eligible_count(self) -> int:
        return len(self.holders)

    @property
    def is_empty(self) -> bool:
        return not self.holders

    def to_dict(self) -> dict[str, Any]:
        return {
            "eligible_count": self.eligible_count,
            "total_holders": self.total_holders,
            "total_tokens_eligible": str(self.total_tokens_eligible),
            "taken_at": iso(self.taken_at),
            "holders": [h.to_dict() for h in self.holders],
        }


@dataclass(frozen=True)
class DividendShare:
    """Calculator output for one holder."""

    address: str
    balance: Decimal
    share_percentage: Decimal
    dividend_amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "balance": str(self.balance),
            "share_percentage": str(self.share_percentage),
            "dividend_amount": str(self.dividend_amount),
        }


@dataclass(frozen=True)
class DividendEntry:
    """Persisted per-holder share with its claim state."""

    address: str
    balance: Decimal
    share_percentage: Decimal
    dividend_amount: Decimal
    claimed: bool = False
    claim_tx_ref: str | None = None
    claimed_at: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "balance": str(self.balance),
            "share_percentage": str(self.share_percentage),
            "dividend_amount": str(self.dividend_amount),
            "claimed": self.claimed,
            "claim_tx_ref": self.claim_tx_ref,
            "claimed_at": iso(self.claimed_at),
        }


@dataclass(frozen=True)
class Distribution:
    id: str
    created_at: int
    distribution_date: int
    total_amount: Decimal
    currency: str
    status: DistributionStatus
    notes: str | None
    eligible_holders: int
    total_tokens_eligible: Decimal
    amount_per_token: Decimal
    holders_snapshot: tuple[HoldingRecord, ...] = ()
    entries: tuple[DividendEntry, ...] = ()
    updated_at: int | None = None

    @property
    def total_claimed(self) -> Decimal:
        return sum((e.dividend_amount for e in self.entries if e.claimed), Decimal("0"))

    def summary(self) -> dict[str, Any]:
        """List view: everything except the holder snapshot and per-holder entries."""
        return {
            "id": self.id,
            "created_at": iso(self.created_at),
            "distribution_date": iso(self.distribution_date),
            "total_amount": str(self.total_amount),
            "currency": self.currency,
            "status": self.status.value,
            "notes": self.notes,
            "eligible_holders": self.eligible_holders,
            "total_tokens_eligible": str(self.total_tokens_eligible),
            "amount_per_token": str(self.amount_per_token),
            "updated_at": iso(self.updated_at),
        }

    def to_dict(self) -> dict[str, Any]:
        out = self.summary()
        out["holders_snapshot"] = [h.to_dict() for h in self.holders_snapshot]
        out["entries"] = [e.to_dict() for e in self.entries]
        out["claimed_count"] = sum(1 for e in self.entries if e.claimed)
        out["total_claimed"] = str(self.total_claimed)
        return out


@dataclass(frozen=True)
class DividendHistoryItem:
    """One distribution as seen by a single wallet."""

    distribution_id: str
    distribution_date: int
    status: DistributionStatus
    balance: Decimal
    share_percentage: Decimal
    dividend_amount: Decimal
    claimed: bool
    claimed_at: int | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "distribution_id": self.distribution_id,
            "distribution_date": iso(self.distribution_date),
            "status": self.status.value,
            "balance": str(self.balance),
            "share_percentage": str(self.share_percentage),
            "dividend_amount": str(self.dividend_amount),
            "claimed": self.claimed,
            "claimed_at": iso(self.claimed_at),
        }


@dataclass(frozen=True)
class DividendInfo:
    address: str
    total_received: Decimal
    available: Decimal
    history: tuple[DividendHistoryItem, ...]
    holding: HoldingPeriod

    @property
    def claimable_ids(self) -> list[str]:
        return [h.distribution_id for h in self.history if not h.claimed]

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "total_received": str(self.total_received),
            "available_dividends": str(self.available),
            "claimable_distribution_ids": self.claimable_ids,
            "history": [h.to_dict() for h in self.history],
            **self.holding.to_dict(),
        }


@dataclass(frozen=True)
class ClaimedItem:
    distribution_id: str
    amount: Decimal
    tx_ref: str


@dataclass(frozen=True)
class ClaimResult:
    address: str
    total_claimed: Decimal
    claimed: tuple[ClaimedItem, ...] = ()
    skipped: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "total_claimed": str(self.total_claimed),
            "claimed": [
                {"distribution_id": c.distribution_id, "amount": str(c.amount), "tx_ref": c.tx_ref}
                for c in self.claimed
            ],
            "skipped": list(self.skipped),
        }
