"""
Pytest tests for ledger entry validation and the SQLAlchemy purchase ledger.
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from backend_tokensale.core.exceptions import CollaboratorFailure, DomainError, ValidationError
from backend_tokensale.ledger.models import (
    AffiliatePayment,
    DividendPayment,
    Purchase,
    TransactionType,
    dividend_claim_ref,
    entry_to_dict,
)

from tests.conftest import NOW, WALLET_A, WALLET_B, days_ago


def _purchase(**overrides) -> Purchase:
    values = dict(
        wallet_address=WALLET_A,
        amount=Decimal("10"),
        tx_hash="0xabc",
        ico_phase=1,
        token_price=Decimal("0.01"),
        tokens_received=Decimal("1200"),
        created_at=NOW,
    )
    values.update(overrides)
    return Purchase(**values)


def test_purchase_normalizes_address():
    p = _purchase(wallet_address=WALLET_A.upper().replace("0X", "0x"))
    assert p.wallet_address == WALLET_A
    assert p.type is TransactionType.PURCHASE


@pytest.mark.parametrize(
    "overrides",
    [
        {"wallet_address": "0x123"},
        {"amount": Decimal("0")},
        {"tx_hash": "  "},
        {"ico_phase": 4},
        {"tokens_received": Decimal("-1")},
        {"affiliate_commission": Decimal("-1")},
    ],
)
def test_purchase_rejects_invalid_fields(overrides):
    with pytest.raises(ValidationError):
        _purchase(**overrides)


def test_affiliate_cannot_refer_itself():
    with pytest.raises(ValidationError) as exc:
        AffiliatePayment(
            wallet_address=WALLET_A,
            amount=Decimal("1"),
            referred_wallet=WALLET_A,
            source_tx_hash="0x1",
            tx_hash="affiliate:0x1",
            created_at=NOW,
        )
    assert exc.value.code == "self_referral"


def test_entry_to_dict_uses_strings():
    payload = entry_to_dict(_purchase())
    assert payload["type"] == "ico_purchase"
    assert payload["amount"] == "10"
    assert payload["status"] == "confirmed"


def test_append_assigns_id(ledger):
    stored = ledger.append(_purchase())
    assert stored.id is not None
    assert ledger.exists(TransactionType.PURCHASE, "0xabc")
    assert not ledger.exists(TransactionType.DIVIDEND_PAYMENT, "0xabc")


def test_append_duplicate_tx_hash_rejected(ledger):
    ledger.append(_purchase())
    with pytest.raises(DomainError) as exc:
        ledger.append(_purchase(amount=Decimal("99")))
    assert exc.value.code == "duplicate_transaction"


def test_same_tx_hash_allowed_across_types(ledger):
    ledger.append(_purchase(tx_hash="shared"))
    ledger.append(
        DividendPayment(
            wallet_address=WALLET_A,
            amount=Decimal("5"),
            distribution_id="d1",
            tx_hash="shared",
            created_at=NOW,
        )
    )
    assert ledger.exists(TransactionType.DIVIDEND_PAYMENT, "shared")


def test_list_confirmed_purchases_oldest_first(ledger):
    ledger.append(_purchase(tx_hash="new", created_at=days_ago(1)))
    ledger.append(_purchase(tx_hash="old", created_at=days_ago(50), wallet_address=WALLET_B))
    ledger.append(
        DividendPayment(
            wallet_address=WALLET_A,
            amount=Decimal("5"),
            distribution_id="d1",
            tx_hash=dividend_claim_ref("d1", WALLET_A),
            created_at=NOW,
        )
    )

    purchases = ledger.list_confirmed_purchases()

    assert [p.tx_hash for p in purchases] == ["old", "new"]
    assert all(isinstance(p, Purchase) for p in purchases)
    assert purchases[0].tokens_received == Decimal("1200")


def test_list_by_wallet_paginates_newest_first(ledger):
    for i in range(3):
        ledger.append(_purchase(tx_hash=f"t{i}", created_at=days_ago(10 - i)))

    entries, total = ledger.list_by_wallet(WALLET_A, tx_type=TransactionType.PURCHASE, page=1, limit=2)

    assert total == 3
    assert [e.tx_hash for e in entries] == ["t2", "t1"]


def test_sum_dividend_payments(ledger):
    for wallet, amount, dist in ((WALLET_A, "1.5", "d1"), (WALLET_A, "2", "d2"), (WALLET_B, "3", "d1")):
        ledger.append(
            DividendPayment(
                wallet_address=wallet,
                amount=Decimal(amount),
                distribution_id=dist,
                tx_hash=dividend_claim_ref(dist, wallet),
                created_at=NOW,
            )
        )
    assert ledger.sum_dividend_payments() == (Decimal("6.5"), 2)


def test_read_failure_is_collaborator_failure(ledger, monkeypatch):
    def broken_scope():
        raise OperationalError("SELECT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(ledger.database, "session_scope", broken_scope)
    with pytest.raises(CollaboratorFailure) as exc:
        ledger.list_confirmed_purchases()
    assert exc.value.code == "ledger_unavailable"


def test_wallet_totals_by_type(ledger):
    ledger.append(_purchase(tx_hash="p1", amount=Decimal("10")))
    ledger.append(_purchase(tx_hash="p2", amount=Decimal("2.5")))
    ledger.append(
        DividendPayment(
            wallet_address=WALLET_A,
            amount=Decimal("4"),
            distribution_id="d1",
            tx_hash=dividend_claim_ref("d1", WALLET_A),
            created_at=NOW,
        )
    )
    ledger.append(_purchase(tx_hash="p3", wallet_address=WALLET_B))

    totals = ledger.wallet_totals(WALLET_A)

    assert [(t.type, t.count, t.total_amount) for t in totals] == [
        (TransactionType.PURCHASE, 2, Decimal("12.5")),
        (TransactionType.DIVIDEND_PAYMENT, 1, Decimal("4")),
    ]
    assert ledger.wallet_totals("0x" + "e" * 40) == []


def test_recent_purchases_newest_first(ledger):
    for i in range(4):
        ledger.append(_purchase(tx_hash=f"r{i}", created_at=days_ago(10 - i)))

    recent = ledger.recent_purchases(limit=2)

    assert [p.tx_hash for p in recent] == ["r3", "r2"]


def test_top_buyers_ranked_by_amount_spent(ledger):
    ledger.append(_purchase(tx_hash="a1", amount=Decimal("10"), tokens_received=Decimal("1000")))
    ledger.append(_purchase(tx_hash="a2", amount=Decimal("5"), tokens_received=Decimal("500")))
    ledger.append(_purchase(tx_hash="b1", wallet_address=WALLET_B, amount=Decimal("20")))

    buyers = ledger.top_buyers()

    assert [b.wallet_address for b in buyers] == [WALLET_B, WALLET_A]
    assert buyers[1].total_spent == Decimal("15")
    assert buyers[1].total_tokens == Decimal("1500")
    assert buyers[1].purchase_count == 2
    assert buyers[1].to_dict()["total_spent"] == "15"
    assert len(ledger.top_buyers(limit=1)) == 1
