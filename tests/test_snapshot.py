"""
Pytest tests for purchase folding and the eligibility snapshot builder.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from backend_tokensale.core.exceptions import CollaboratorFailure
from backend_tokensale.dividends.models import Provenance
from backend_tokensale.dividends.snapshot import SnapshotBuilder, fold_purchases
from backend_tokensale.ledger.models import Purchase

from tests.conftest import NOW, WALLET_A, WALLET_B, WALLET_C, days_ago


def _purchase(wallet: str, tokens: str, created_at: int, tx: str) -> Purchase:
    return Purchase(
        wallet_address=wallet,
        amount=Decimal("1"),
        tx_hash=tx,
        ico_phase=1,
        token_price=Decimal("0.01"),
        tokens_received=Decimal(tokens),
        created_at=created_at,
    )


def _builder(ledger, oracle, clock, timeout: float = 0.2) -> SnapshotBuilder:
    return SnapshotBuilder(ledger, oracle, min_holding_days=30, lookup_timeout_sec=timeout, clock=clock)


def test_fold_purchases_aggregates_per_wallet():
    records = fold_purchases(
        [
            _purchase(WALLET_A, "100", days_ago(40), "t1"),
            _purchase(WALLET_B, "50", days_ago(35), "t2"),
            _purchase(WALLET_A, "25", days_ago(5), "t3"),
        ],
        NOW,
    )
    assert [r.address for r in records] == [WALLET_A, WALLET_B]
    a = records[0]
    assert a.balance == Decimal("125")
    assert a.purchase_count == 2
    assert a.total_invested == Decimal("2")
    assert a.first_purchase_at == days_ago(40)
    assert a.holding_period_days == 40
    assert a.eligible is True


def test_any_old_purchase_makes_wallet_eligible():
    """A recent purchase after an aged one does not revoke eligibility."""
    records = fold_purchases(
        [_purchase(WALLET_A, "1", days_ago(31), "t1"), _purchase(WALLET_A, "1", days_ago(1), "t2")],
        NOW,
    )
    assert records[0].eligible is True


def test_holding_period_boundary_is_whole_days():
    records = fold_purchases(
        [
            _purchase(WALLET_A, "1", days_ago(30), "t1"),
            _purchase(WALLET_B, "1", days_ago(29.99), "t2"),
        ],
        NOW,
    )
    by_addr = {r.address: r for r in records}
    assert by_addr[WALLET_A].eligible is True
    assert by_addr[WALLET_B].holding_period_days == 29
    assert by_addr[WALLET_B].eligible is False


def test_single_aged_purchase_is_eligible(ledger, oracle, clock, add_purchase):
    add_purchase(WALLET_A, "1000", days_ago(31))
    oracle.balances[WALLET_A] = Decimal("1000")

    snapshot = asyncio.run(_builder(ledger, oracle, clock).build())

    assert snapshot.eligible_count == 1
    assert snapshot.total_tokens_eligible == Decimal("1000")
    assert snapshot.total_holders == 1
    assert snapshot.taken_at == NOW
    assert snapshot.holders[0].provenance is Provenance.BLOCKCHAIN_VERIFIED


def test_recent_holders_never_eligible(ledger, oracle, clock, add_purchase):
    add_purchase(WALLET_A, "1000", days_ago(10))
    add_purchase(WALLET_A, "500", days_ago(29))
    oracle.balances[WALLET_A] = Decimal("1500")

    snapshot = asyncio.run(_builder(ledger, oracle, clock).build())

    assert snapshot.is_empty
    assert snapshot.total_holders == 1
    assert oracle.balance_calls == []


def test_onchain_balance_overrides_ledger(ledger, oracle, clock, add_purchase):
    add_purchase(WALLET_A, "1000", days_ago(60))
    oracle.balances[WALLET_A] = Decimal("400.5")

    snapshot = asyncio.run(_builder(ledger, oracle, clock).build())

    assert snapshot.holders[0].balance == Decimal("400.5")
    assert snapshot.total_tokens_eligible == Decimal("400.5")


def test_zero_onchain_balance_excluded(ledger, oracle, clock, add_purchase):
    add_purchase(WALLET_A, "1000", days_ago(60))
    add_purchase(WALLET_B, "1000", days_ago(60))
    oracle.balances[WALLET_B] = Decimal("1000")

    snapshot = asyncio.run(_builder(ledger, oracle, clock).build())

    assert [h.address for h in snapshot.holders] == [WALLET_B]


def test_oracle_failure_excludes_only_that_wallet(ledger, oracle, clock, add_purchase):
    add_purchase(WALLET_A, "1000", days_ago(60))
    add_purchase(WALLET_B, "2000", days_ago(60))
    oracle.balances.update({WALLET_A: Decimal("1000"), WALLET_B: Decimal("2000")})
    oracle.failures.add(WALLET_A)

    snapshot = asyncio.run(_builder(ledger, oracle, clock).build())

    assert [h.address for h in snapshot.holders] == [WALLET_B]
    assert snapshot.total_tokens_eligible == Decimal("2000")


def test_oracle_timeout_excludes_wallet(ledger, oracle, clock, add_purchase):
    add_purchase(WALLET_A, "1000", days_ago(60))
    add_purchase(WALLET_C, "300", days_ago(60))
    oracle.balances.update({WALLET_A: Decimal("1000"), WALLET_C: Decimal("300")})
    oracle.slow.add(WALLET_A)
    oracle.delay = 1.0

    snapshot = asyncio.run(_builder(ledger, oracle, clock, timeout=0.05).build())

    assert [h.address for h in snapshot.holders] == [WALLET_C]


def test_ledger_failure_raises_collaborator_failure(oracle, clock):
    class BrokenLedger:
        def list_confirmed_purchases(self):
            raise CollaboratorFailure("ledger unavailable", code="ledger_unavailable")

    with pytest.raises(CollaboratorFailure):
        asyncio.run(_builder(BrokenLedger(), oracle, clock).build())


def test_empty_ledger_gives_empty_snapshot(ledger, oracle, clock):
    snapshot = asyncio.run(_builder(ledger, oracle, clock).build())
    assert snapshot.is_empty
    assert snapshot.total_tokens_eligible == Decimal("0")


def test_builder_rejects_bad_config(ledger, oracle):
    with pytest.raises(ValueError):
        SnapshotBuilder(ledger, oracle, min_holding_days=-1)
    with pytest.raises(ValueError):
        SnapshotBuilder(ledger, oracle, lookup_timeout_sec=0)
