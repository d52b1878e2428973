"""
Wallet service: one wallet's ledger history and a summary of its activity.

Ledger reads fail the call (CollaboratorFailure); the on-chain balance and
holding period are best effort and come back empty when the oracle is down.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Any

from backend_tokensale.chain.models import HoldingPeriod
from backend_tokensale.chain.oracle import BalanceOracle
from backend_tokensale.config.settings import Settings
from backend_tokensale.core.exceptions import CollaboratorFailure, ValidationError
from backend_tokensale.core.timeutils import Clock, now_ts
from backend_tokensale.core.validation import normalize_address, pagination_block, validate_pagination
from backend_tokensale.ledger.models import TransactionType, entry_to_dict
from backend_tokensale.ledger.purchase_ledger import PurchaseLedger
from backend_tokensale.logging import get_logger, short_address

logger = get_logger(__name__)

DEFAULT_HISTORY_LIMIT = 20


def parse_transaction_type(value: Any) -> TransactionType | None:
    if value is None or value == "":
        return None
    try:
        return TransactionType(value)
    except ValueError:
        allowed = ", ".join(t.value for t in TransactionType)
        raise ValidationError(f"type must be one of: {allowed}", code="invalid_transaction_type") from None


class WalletService:
    def __init__(
        self,
        ledger: PurchaseLedger,
        oracle: BalanceOracle,
        *,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings or Settings()
        self._ledger = ledger
        self._oracle = oracle
        self._clock = clock or now_ts
        self._timeout = self._settings.oracle_timeout_sec

    def list_transactions(
        self,
        address: str,
        page: Any = 1,
        limit: Any = DEFAULT_HISTORY_LIMIT,
        tx_type: Any = None,
    ) -> dict[str, Any]:
        """Every ledger entry of the wallet, newest first, optionally filtered by type."""
        wallet = normalize_address(address)
        page, limit = validate_pagination(page, limit)
        entries, total = self._ledger.list_by_wallet(
            wallet, tx_type=parse_transaction_type(tx_type), page=page, limit=limit
        )
        return {
            "transactions": [entry_to_dict(e) for e in entries],
            "pagination": pagination_block(page, limit, total),
        }

    async def get_wallet_stats(self, address: str) -> dict[str, Any]:
        wallet = normalize_address(address)
        totals = await asyncio.to_thread(self._ledger.wallet_totals, wallet)
        by_type = {t.type: t.total_amount for t in totals}
        balance, holding = await asyncio.gather(self._balance(wallet), self._holding_period(wallet))
        zero = Decimal("0")
        return {
            "wallet_address": wallet,
            "total_transactions": sum(t.count for t in totals),
            "total_purchased": str(by_type.get(TransactionType.PURCHASE, zero)),
            "total_dividends_received": str(by_type.get(TransactionType.DIVIDEND_PAYMENT, zero)),
            "total_affiliate_earnings": str(by_type.get(TransactionType.AFFILIATE_PAYMENT, zero)),
            "token_balance": str(balance) if balance is not None else None,
            "eligible_for_dividends": holding.eligible,
            "holding_period_days": holding.holding_period_days,
            "transactions_by_type": [t.to_dict() for t in totals],
        }

    async def _balance(self, wallet: str) -> Decimal | None:
        try:
            return await asyncio.wait_for(self._oracle.get_balance(wallet), timeout=self._timeout)
        except (CollaboratorFailure, asyncio.TimeoutError) as e:
            logger.warning("wallet_balance_unknown", wallet=short_address(wallet), error=str(e) or "timeout")
            return None

    async def _holding_period(self, wallet: str) -> HoldingPeriod:
        try:
            first = await asyncio.wait_for(
                self._oracle.get_first_transfer_timestamp(wallet), timeout=self._timeout
            )
        except (CollaboratorFailure, asyncio.TimeoutError) as e:
            logger.warning("wallet_holding_unknown", wallet=short_address(wallet), error=str(e) or "timeout")
            return HoldingPeriod.unknown()
        return HoldingPeriod.from_first_transfer(first, self._clock(), self._settings.min_holding_days)
