"""
Pytest tests for ICO phases, pricing and the purchase flow.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from decimal import Decimal

import pytest

from backend_tokensale.core.exceptions import CollaboratorFailure, DomainError, NotFoundError, ValidationError
from backend_tokensale.database import LedgerTransactionRow
from backend_tokensale.ico.phases import DEFAULT_PHASES, quote_purchase
from backend_tokensale.ledger.models import TransactionType

from tests.conftest import NOW, WALLET_A, WALLET_B


@pytest.fixture
def ico(ico_service):
    ico_service.initialize_phases()
    return ico_service


def test_quote_applies_bonus():
    quote = quote_purchase(DEFAULT_PHASES[0], Decimal("10"))
    assert quote.base_tokens == Decimal("1000")
    assert quote.bonus_tokens == Decimal("200")
    assert quote.total_tokens == Decimal("1200")


def test_quote_truncates_to_18_decimals():
    quote = quote_purchase(replace(DEFAULT_PHASES[2], token_price=Decimal("3")), Decimal("1"))
    assert quote.base_tokens == Decimal("0.333333333333333333")


def test_initialize_is_idempotent(ico_service):
    assert ico_service.initialize_phases()["created"] == [1, 2, 3]
    assert ico_service.initialize_phases()["created"] == []


def test_status_reports_active_phase(ico):
    status = ico.get_status()
    assert status["current_phase"]["phase"] == 1
    assert len(status["phases"]) == 3
    assert status["overall"]["total_tokens_for_sale"] == "7980000"
    assert ico.is_active()["is_active"] is True


def test_status_without_phases(ico_service):
    with pytest.raises(DomainError) as exc:
        ico_service.get_status()
    assert exc.value.code == "no_active_phase"
    assert ico_service.is_active() == {"is_active": False, "active_phase": None}


def test_purchase_records_ledger_entry(ico, ledger):
    result = ico.process_purchase(WALLET_A, Decimal("10"), 1, "0xtx1")

    assert result["purchase"]["total_tokens"] == "1200"
    assert result["phase_completed"] is False
    purchases = ledger.list_confirmed_purchases()
    assert len(purchases) == 1
    assert purchases[0].wallet_address == WALLET_A
    assert purchases[0].tokens_received == Decimal("1200")
    assert purchases[0].created_at == NOW

    phase = ico.get_status()["current_phase"]
    assert phase["tokens_sold"] == "1200"
    assert phase["total_raised"] == "10"


def test_purchase_with_affiliate_pays_commission(ico, ledger):
    result = ico.process_purchase(WALLET_A, "100", 1, "0xtx2", affiliate_address=WALLET_B)

    assert result["purchase"]["affiliate_commission"] == "5"
    assert ledger.exists(TransactionType.AFFILIATE_PAYMENT, "affiliate:0xtx2")
    entries, total = ledger.list_by_wallet(WALLET_B, tx_type=TransactionType.AFFILIATE_PAYMENT)
    assert total == 1
    assert entries[0].amount == Decimal("5")
    assert entries[0].referred_wallet == WALLET_A


def test_purchase_duplicate_tx_hash(ico):
    ico.process_purchase(WALLET_A, "10", 1, "0xdup")
    with pytest.raises(DomainError) as exc:
        ico.process_purchase(WALLET_B, "10", 1, "0xdup")
    assert exc.value.code == "duplicate_transaction"


@pytest.mark.parametrize(
    "amount,code",
    [("0.001", "below_minimum"), ("1000.01", "above_maximum")],
)
def test_purchase_outside_limits(ico, amount, code):
    with pytest.raises(ValidationError) as exc:
        ico.process_purchase(WALLET_A, amount, 1, "0xlim")
    assert exc.value.code == code


def test_purchase_inactive_phase(ico):
    with pytest.raises(DomainError) as exc:
        ico.process_purchase(WALLET_A, "10", 2, "0xp2")
    assert exc.value.code == "phase_inactive"


def test_purchase_self_referral_rejected(ico):
    with pytest.raises(ValidationError):
        ico.process_purchase(WALLET_A, "10", 1, "0xself", affiliate_address=WALLET_A)


def test_purchase_insufficient_tokens(ico):
    ico.update_phase(1, {"total_tokens": "1000"})
    with pytest.raises(DomainError) as exc:
        ico.process_purchase(WALLET_A, "10", 1, "0xbig")
    assert exc.value.code == "insufficient_tokens"


def test_selling_out_activates_next_phase(ico):
    ico.update_phase(1, {"total_tokens": "1200"})

    result = ico.process_purchase(WALLET_A, "10", 1, "0xlast")

    assert result["phase_completed"] is True
    status = ico.get_status()
    assert status["current_phase"]["phase"] == 2
    assert status["phases"][0]["is_completed"] is True
    assert status["phases"][0]["progress"] == "100.00"


def test_concurrent_purchases_never_oversell(ico, db):
    # Room for exactly five 1200-token purchases
    ico.update_phase(1, {"total_tokens": "6000"})

    def buy(i: int) -> bool:
        try:
            ico.process_purchase(WALLET_A, "10", 1, f"0xc{i}")
            return True
        except (DomainError, CollaboratorFailure):
            return False

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(buy, range(8)))

    with db.session_scope() as session:
        recorded = session.query(LedgerTransactionRow).filter_by(type=TransactionType.PURCHASE.value).count()
    assert sum(results) == recorded
    assert recorded <= 5


def test_list_purchases(ico):
    for i in range(3):
        ico.process_purchase(WALLET_A, "1", 1, f"0xl{i}")
    page = ico.list_purchases(WALLET_A, page=1, limit=2)
    assert len(page["purchases"]) == 2
    assert page["pagination"]["total_items"] == 3


def test_activate_next_phase(ico):
    result = ico.activate_next_phase()
    assert result["active_phase"]["phase"] == 2
    ico.activate_next_phase()
    with pytest.raises(DomainError) as exc:
        ico.activate_next_phase()
    assert exc.value.code == "no_next_phase"
    # Failed activation leaves phase 3 active
    assert ico.get_status()["current_phase"]["phase"] == 3


def test_update_phase_validation(ico):
    with pytest.raises(ValidationError):
        ico.update_phase(1, {"tokens_sold": "5"})
    with pytest.raises(ValidationError) as exc:
        ico.update_phase(1, {"min_purchase": "5000"})
    assert exc.value.code == "invalid_limits"
    with pytest.raises(NotFoundError):
        ico.update_phase(9, {"name": "x"})


def test_stats(ico):
    ico.process_purchase(WALLET_A, "10", 1, "0xs1")
    stats = ico.get_stats()
    assert stats["total_phases"] == 3
    assert stats["completed_phases"] == 0
    assert stats["active_phase"]["phase"] == 1
    assert stats["total_tokens_sold"] == "1200"
    assert stats["total_raised"] == "10"


def test_detailed_stats(ico):
    ico.process_purchase(WALLET_A, "10", 1, "0xd1")
    ico.process_purchase(WALLET_B, "30", 1, "0xd2")
    ico.process_purchase(WALLET_A, "5", 1, "0xd3")

    result = ico.get_detailed_stats(limit=2)

    assert result["stats"]["total_raised"] == "45"
    assert [p["tx_hash"] for p in result["recent_purchases"]] == ["0xd3", "0xd2"]
    assert [b["wallet_address"] for b in result["top_buyers"]] == [WALLET_B, WALLET_A]
    assert result["top_buyers"][1]["total_spent"] == "15"
    assert result["top_buyers"][1]["purchase_count"] == 2
