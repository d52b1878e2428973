"""
Eligibility snapshot builder.

Folds confirmed purchases (oldest first) into one holding record per wallet,
keeps wallets whose holding period qualifies, then asks the oracle for each
candidate's current balance. A positive on-chain balance replaces the
ledger-derived one (provenance blockchain_verified); a zero balance, an oracle
error or a timeout drops the wallet from this snapshot.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable

from backend_tokensale.chain.oracle import BalanceOracle
from backend_tokensale.core.exceptions import CollaboratorFailure
from backend_tokensale.core.timeutils import Clock, now_ts, whole_days_between
from backend_tokensale.core.validation import trim_decimal
from backend_tokensale.dividends.models import EligibilitySnapshot, HoldingRecord, Provenance
from backend_tokensale.ledger.models import Purchase
from backend_tokensale.ledger.purchase_ledger import PurchaseLedger
from backend_tokensale.logging import get_logger, short_address

logger = get_logger(__name__)

MIN_HOLDING_DAYS = 30


@dataclass
class _Accumulator:
    address: str
    balance: Decimal
    total_invested: Decimal
    purchase_count: int
    first_purchase_at: int
    eligible: bool


def fold_purchases(
    purchases: Iterable[Purchase],
    now: int,
    min_holding_days: int = MIN_HOLDING_DAYS,
) -> list[HoldingRecord]:
    """
    One HoldingRecord per wallet, in order of first purchase.

    A wallet is eligible as soon as any one of its purchases is at least
    min_holding_days old; later purchases never revoke that.
    """
    acc: dict[str, _Accumulator] = {}
    for p in sorted(purchases, key=lambda p: (p.created_at, p.id or 0)):
        aged = whole_days_between(p.created_at, now) >= min_holding_days
        cur = acc.get(p.wallet_address)
        if cur is None:
            acc[p.wallet_address] = _Accumulator(
                address=p.wallet_address,
                balance=p.tokens_received,
                total_invested=p.amount,
                purchase_count=1,
                first_purchase_at=p.created_at,
                eligible=aged,
            )
            continue
        cur.balance += p.tokens_received
        cur.total_invested += p.amount
        cur.purchase_count += 1
        cur.first_purchase_at = min(cur.first_purchase_at, p.created_at)
        cur.eligible = cur.eligible or aged

    return [
        HoldingRecord(
            address=a.address,
            balance=a.balance,
            total_invested=a.total_invested,
            purchase_count=a.purchase_count,
            first_purchase_at=a.first_purchase_at,
            holding_period_days=whole_days_between(a.first_purchase_at, now),
            eligible=a.eligible and a.balance > 0,
        )
        for a in acc.values()
    ]


class SnapshotBuilder:
    """Builds a fresh EligibilitySnapshot from the ledger and the oracle."""

    def __init__(
        self,
        ledger: PurchaseLedger,
        oracle: BalanceOracle,
        *,
        min_holding_days: int = MIN_HOLDING_DAYS,
        lookup_timeout_sec: float = 10.0,
        clock: Clock = now_ts,
    ) -> None:
        if min_holding_days < 0:
            raise ValueError("min_holding_days must be >= 0")
        if lookup_timeout_sec <= 0:
            raise ValueError("lookup_timeout_sec must be positive")
        self._ledger = ledger
        self._oracle = oracle
        self._min_days = min_holding_days
        self._timeout = lookup_timeout_sec
        self._clock = clock

    async def build(self) -> EligibilitySnapshot:
        """
        Raises CollaboratorFailure when the ledger cannot be read. Oracle failures
        only exclude the affected wallet. An empty result is valid.
        """
        now = self._clock()
        purchases = await asyncio.to_thread(self._ledger.list_confirmed_purchases)
        records = fold_purchases(purchases, now, self._min_days)

        eligible: list[HoldingRecord] = []
        for record in records:
            if not record.eligible:
                continue
            balance = await self._verified_balance(record.address)
            if balance is None:
                continue
            if balance <= 0:
                logger.info("snapshot_zero_balance_excluded", wallet=short_address(record.address))
                continue
            eligible.append(
                replace(record, balance=trim_decimal(balance), provenance=Provenance.BLOCKCHAIN_VERIFIED)
            )

        total = sum((h.balance for h in eligible), Decimal("0"))
        snapshot = EligibilitySnapshot(
            holders=tuple(eligible),
            total_tokens_eligible=total,
            total_holders=len(records),
            taken_at=now,
        )
        logger.info(
            "snapshot_built",
            purchases=len(purchases),
            total_holders=snapshot.total_holders,
            eligible_count=snapshot.eligible_count,
            total_tokens_eligible=str(total),
        )
        return snapshot

    async def _verified_balance(self, address: str) -> Decimal | None:
        try:
            return await asyncio.wait_for(self._oracle.get_balance(address), timeout=self._timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "snapshot_oracle_timeout_excluded",
                wallet=short_address(address),
                timeout_sec=self._timeout,
            )
        except CollaboratorFailure as e:
            logger.warning(
                "snapshot_oracle_failure_excluded",
                wallet=short_address(address),
                code=e.code,
                error=e.message,
            )
        return None
