"""
Dividend service: orchestrates snapshot, calculator and tracker.

The only component with write authority over distribution state. All
collaborators (tracker, ledger, oracle, clock) are injected; the service keeps
no mutable state of its own between calls.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any, Iterable

from backend_tokensale.chain.models import ChainHolder, HoldingPeriod
from backend_tokensale.chain.oracle import BalanceOracle
from backend_tokensale.config.settings import Settings
from backend_tokensale.core.exceptions import (
    CollaboratorFailure,
    DomainError,
    NotFoundError,
    ValidationError,
)
from backend_tokensale.core.timeutils import Clock, now_ts
from backend_tokensale.core.validation import (
    normalize_address,
    pagination_block,
    require_positive,
    trim_decimal,
    validate_pagination,
)
from backend_tokensale.dividends import calculator
from backend_tokensale.dividends.models import (
    ClaimedItem,
    ClaimResult,
    Distribution,
    DistributionStatus,
    DividendInfo,
    EligibilitySnapshot,
)
from backend_tokensale.dividends.projection import DividendProjection, project_dividends
from backend_tokensale.dividends.snapshot import SnapshotBuilder
from backend_tokensale.dividends.tracker import DistributionTracker
from backend_tokensale.ledger.purchase_ledger import PurchaseLedger
from backend_tokensale.logging import get_logger, short_address

logger = get_logger(__name__)


class DividendService:
    """
    Dividend operations exposed to the API layer.

        service = DividendService(tracker, ledger, oracle, settings=settings)
        distribution = await service.create_distribution(Decimal("10000"), "Q1")
        result = service.claim_dividends(wallet, [distribution.id])
    """

    def __init__(
        self,
        tracker: DistributionTracker,
        ledger: PurchaseLedger,
        oracle: BalanceOracle,
        *,
        settings: Settings | None = None,
        snapshot_builder: SnapshotBuilder | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._tracker = tracker
        self._ledger = ledger
        self._oracle = oracle
        self._clock = clock or now_ts
        self._timeout = self._settings.oracle_timeout_sec
        self._snapshots = snapshot_builder or SnapshotBuilder(
            ledger,
            oracle,
            min_holding_days=self._settings.min_holding_days,
            lookup_timeout_sec=self._timeout,
            clock=self._clock,
        )

    # ------------------------------------------------------------------
    # Snapshot and distribution creation
    # ------------------------------------------------------------------

    async def build_eligibility_snapshot(self) -> EligibilitySnapshot:
        return await self._snapshots.build()

    async def create_distribution(self, total_amount: Any, notes: str | None = None) -> Distribution:
        """
        Snapshot, calculate and persist a new distribution.

        Raises ValidationError for a non-positive amount, DomainError when no
        holder is eligible (nothing is persisted), CollaboratorFailure when the
        ledger is unreachable and InternalError when persistence fails.
        """
        total_amount = require_positive(total_amount, "total_amount")
        notes = (notes or "").strip() or None
        snapshot = await self._snapshots.build()
        if snapshot.is_empty:
            logger.info("distribution_no_eligible_holders", total_holders=snapshot.total_holders)
            raise DomainError("no eligible holders found", code="no_eligible_holders")
        shares = calculator.calculate_dividends(total_amount, snapshot.holders)
        return await asyncio.to_thread(
            self._tracker.record,
            snapshot,
            shares,
            trim_decimal(total_amount),
            notes=notes,
            now=self._clock(),
        )

    async def simulate_distribution(self, total_amount: Any) -> dict[str, Any]:
        """Snapshot + calculator without persisting anything."""
        total_amount = require_positive(total_amount, "total_amount")
        snapshot = await self._snapshots.build()
        if snapshot.is_empty:
            raise DomainError("no eligible holders found", code="no_eligible_holders")
        shares = calculator.calculate_dividends(total_amount, snapshot.holders)
        return {
            "total_amount": str(trim_decimal(total_amount)),
            "eligible_holders": snapshot.eligible_count,
            "total_tokens_eligible": str(snapshot.total_tokens_eligible),
            "amount_per_token": str(calculator.amount_per_token(total_amount, snapshot.total_tokens_eligible)),
            "distributions": [s.to_dict() for s in shares],
        }

    # ------------------------------------------------------------------
    # Wallet views
    # ------------------------------------------------------------------

    async def get_dividend_info(self, address: str) -> DividendInfo:
        """
        Received and available dividends for a wallet plus its on-chain holding period.

        The holding period is best effort: an oracle failure or timeout reports
        not eligible with 0 days instead of failing the call.
        """
        address = normalize_address(address)
        history = await asyncio.to_thread(self._tracker.history_for_wallet, address)
        received = sum((h.dividend_amount for h in history if h.claimed), Decimal("0"))
        available = sum((h.dividend_amount for h in history if not h.claimed), Decimal("0"))
        holding = await self._holding_period(address)
        return DividendInfo(
            address=address,
            total_received=received,
            available=available,
            history=tuple(history),
            holding=holding,
        )

    async def _holding_period(self, address: str) -> HoldingPeriod:
        try:
            first = await asyncio.wait_for(
                self._oracle.get_first_transfer_timestamp(address), timeout=self._timeout
            )
        except (CollaboratorFailure, asyncio.TimeoutError) as e:
            logger.warning("dividend_info_holding_unknown", wallet=short_address(address), error=str(e) or "timeout")
            return HoldingPeriod.unknown()
        return HoldingPeriod.from_first_transfer(first, self._clock(), self._settings.min_holding_days)

    def claim_dividends(self, address: str, distribution_ids: Iterable[str]) -> ClaimResult:
        """
        Claim the wallet's unclaimed entries in the given distributions, each id at most once.

        Unknown ids, distributions without an entry for the wallet and already
        claimed entries are skipped. Raises DomainError when nothing was claimed.
        """
        address = normalize_address(address)
        if isinstance(distribution_ids, str):
            raise ValidationError("distribution_ids must be a list", code="invalid_distribution_ids")
        ids: list[str] = []
        for raw in distribution_ids:
            if not isinstance(raw, str) or not raw.strip():
                raise ValidationError("distribution ids must be non-empty strings", code="invalid_distribution_ids")
            if raw.strip() not in ids:
                ids.append(raw.strip())
        if not ids:
            raise ValidationError("at least one distribution id is required", code="invalid_distribution_ids")

        claimed: list[ClaimedItem] = []
        skipped: list[str] = []
        for distribution_id in ids:
            item = self._tracker.claim(distribution_id, address, now=self._clock())
            if item is None:
                skipped.append(distribution_id)
            else:
                claimed.append(item)

        total = sum((c.amount for c in claimed), Decimal("0"))
        if total == 0:
            logger.info("dividend_nothing_to_claim", wallet=short_address(address), requested=len(ids))
            raise DomainError("nothing to claim", code="nothing_to_claim")
        logger.info(
            "dividend_claim_completed",
            wallet=short_address(address),
            claimed=len(claimed),
            skipped=len(skipped),
            total_claimed=str(total),
        )
        return ClaimResult(address=address, total_claimed=total, claimed=tuple(claimed), skipped=tuple(skipped))

    async def project_dividends(self, address: str, monthly_profit: Any = None) -> DividendProjection:
        """
        Raises CollaboratorFailure when the balance cannot be read and DomainError for a zero balance.
        Total supply falls back to the configured default when the oracle cannot provide it.
        """
        address = normalize_address(address)
        profit = self._settings.default_monthly_profit if monthly_profit is None else monthly_profit
        profit = require_positive(profit, "monthly_profit")
        try:
            balance = await asyncio.wait_for(self._oracle.get_balance(address), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise CollaboratorFailure("oracle timed out reading balance", code="oracle_timeout") from e
        if balance <= 0:
            raise DomainError("wallet holds no tokens", code="zero_balance")
        try:
            supply = await asyncio.wait_for(self._oracle.get_total_supply(), timeout=self._timeout)
        except (CollaboratorFailure, asyncio.TimeoutError) as e:
            logger.warning("projection_supply_fallback", error=str(e) or "timeout")
            supply = self._settings.default_total_supply
        if supply <= 0:
            supply = self._settings.default_total_supply
        return project_dividends(
            balance,
            supply,
            profit,
            distribution_rate=self._settings.distribution_rate,
            average_token_price=self._settings.average_token_price,
        )

    # ------------------------------------------------------------------
    # Listing and admin
    # ------------------------------------------------------------------

    def list_distributions(self, page: Any = 1, limit: Any = 10) -> dict[str, Any]:
        page, limit = validate_pagination(page, limit)
        items, total = self._tracker.list_summaries(page=page, limit=limit)
        return {
            "distributions": [d.summary() for d in items],
            "pagination": pagination_block(page, limit, total),
        }

    def get_distribution(self, distribution_id: str) -> Distribution:
        distribution = self._tracker.get(distribution_id)
        if distribution is None:
            raise NotFoundError(f"distribution not found: {distribution_id}")
        return distribution

    def update_distribution_status(self, distribution_id: str, status: Any) -> Distribution:
        try:
            target = DistributionStatus(status)
        except ValueError as e:
            raise ValidationError(f"unknown status: {status}", code="invalid_status") from e
        return self._tracker.update_status(distribution_id, target, now=self._clock())

    def get_dividend_stats(self) -> dict[str, Any]:
        count, distributed, last = self._tracker.totals()
        claimed, recipients = self._ledger.sum_dividend_payments()
        average = calculator.amount_per_token(distributed, Decimal(count))
        return {
            "total_distributions": count,
            "total_distributed": str(trim_decimal(distributed)),
            "total_claimed": str(trim_decimal(claimed)),
            "average_distribution": str(average),
            "unique_recipients": recipients,
            "last_distribution": last.summary() if last is not None else None,
        }

    async def discover_chain_holders(self) -> list[ChainHolder]:
        """
        Every address that received tokens on-chain, with its current balance and
        holding period. Addresses with a zero balance are left out; per-address
        oracle failures skip that address.
        """
        try:
            addresses = await asyncio.wait_for(self._oracle.list_holder_addresses(), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise CollaboratorFailure("oracle timed out listing holders", code="oracle_timeout") from e
        now = self._clock()
        holders: list[ChainHolder] = []
        for address in addresses:
            try:
                balance = await asyncio.wait_for(self._oracle.get_balance(address), timeout=self._timeout)
                if balance <= 0:
                    continue
                first = await asyncio.wait_for(
                    self._oracle.get_first_transfer_timestamp(address), timeout=self._timeout
                )
            except (CollaboratorFailure, asyncio.TimeoutError) as e:
                logger.warning("chain_holder_skipped", wallet=short_address(address), error=str(e) or "timeout")
                continue
            holders.append(
                ChainHolder(
                    address=address,
                    balance=trim_decimal(balance),
                    holding=HoldingPeriod.from_first_transfer(first, now, self._settings.min_holding_days),
                )
            )
        logger.info("chain_holders_discovered", addresses=len(addresses), holders=len(holders))
        return holders
