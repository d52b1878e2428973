"""
Data models for token oracle output.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from backend_tokensale.core.timeutils import iso, whole_days_between


@dataclass(frozen=True)
class TransferLog:
    """
    One ERC-20 Transfer event from eth_getLogs.

    from/to come from topics[1]/topics[2] (last 20 bytes); value from data.
    """

    block_number: int
    tx_hash: str
    from_address: str
    to_address: str
    raw_value: int

    @classmethod
    def from_rpc_item(cls, item: dict[str, Any]) -> "TransferLog":
        topics = item["topics"]
        data = item.get("data") or "0x0"
        return cls(
            block_number=int(item["blockNumber"], 16),
            tx_hash=item.get("transactionHash") or "",
            from_address=topic_to_address(topics[1]),
            to_address=topic_to_address(topics[2]),
            raw_value=int(data, 16) if data not in ("0x", "") else 0,
        )


@dataclass(frozen=True)
class HoldingPeriod:
    """On-chain holding period of one wallet: first incoming transfer and whole days since."""

    first_transfer_at: int | None
    holding_period_days: int
    eligible: bool

    @classmethod
    def from_first_transfer(cls, first_transfer_at: int | None, now: int, min_days: int) -> "HoldingPeriod":
        if first_transfer_at is None:
            return cls(first_transfer_at=None, holding_period_days=0, eligible=False)
        days = whole_days_between(first_transfer_at, now)
        return cls(first_transfer_at=first_transfer_at, holding_period_days=days, eligible=days >= min_days)

    @classmethod
    def unknown(cls) -> "HoldingPeriod":
        return cls(first_transfer_at=None, holding_period_days=0, eligible=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "first_transfer_at": iso(self.first_transfer_at),
            "holding_period_days": self.holding_period_days,
            "eligible": self.eligible,
        }


@dataclass(frozen=True)
class ChainHolder:
    """Address seen receiving tokens on-chain, with its current balance and holding period."""

    address: str
    balance: Decimal
    holding: HoldingPeriod

    def to_dict(self) -> dict[str, Any]:
        return {"address": self.address, "balance": str(self.balance), **self.holding.to_dict()}


def topic_to_address(topic: str) -> str:
    """Indexed address topic (32 bytes, left-padded) -> lowercase 0x address."""
    return "0x" + topic[-40:].lower()


def address_to_topic(address: str) -> str:
    return "0x" + "0" * 24 + address[2:].lower()
