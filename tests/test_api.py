"""
Pytest tests for the FastAPI endpoints (dividends, ICO, admin guard, error envelope).

Uses TestClient with injected temporary SQLite DB and FakeOracle via conftest fixtures.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from backend_tokensale.api_server import create_app

from tests.conftest import ADMIN_KEY, WALLET_A, WALLET_B, days_ago

ADMIN = {"X-Admin-Key": ADMIN_KEY}


@pytest.fixture
def eligible_holder(add_purchase, oracle):
    add_purchase(WALLET_A, "1000", days_ago(31))
    oracle.balances[WALLET_A] = Decimal("1000")
    oracle.first_transfers[WALLET_A] = days_ago(31)


def _create_distribution(client, amount="10000", notes="Q1") -> dict:
    r = client.post(
        "/api/dividends/admin/create-distribution",
        json={"total_amount": amount, "notes": notes},
        headers=ADMIN,
    )
    assert r.status_code == 200, r.text
    return r.json()["distribution"]


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_distribution_create_and_claim_flow(client, eligible_holder):
    distribution = _create_distribution(client)
    assert distribution["status"] == "calculated"
    assert distribution["entries"][0]["dividend_amount"] == "10000"
    assert distribution["entries"][0]["share_percentage"] == "100"

    info = client.get(f"/api/dividends/info/{WALLET_A}").json()["dividend_info"]
    assert info["available_dividends"] == "10000"
    assert info["claimable_distribution_ids"] == [distribution["id"]]
    assert info["eligible"] is True

    r = client.post(
        "/api/dividends/claim",
        json={"wallet_address": WALLET_A, "distribution_ids": [distribution["id"]]},
    )
    assert r.status_code == 200
    assert r.json()["claim"]["total_claimed"] == "10000"

    r = client.post(
        "/api/dividends/claim",
        json={"wallet_address": WALLET_A, "distribution_ids": [distribution["id"]]},
    )
    assert r.status_code == 422
    assert r.json() == {"success": False, "error": "nothing to claim", "code": "nothing_to_claim"}


def test_create_distribution_without_holders_is_422(client):
    r = client.post(
        "/api/dividends/admin/create-distribution",
        json={"total_amount": "100"},
        headers=ADMIN,
    )
    assert r.status_code == 422
    assert r.json()["code"] == "no_eligible_holders"


def test_create_distribution_bad_amount_is_400(client, eligible_holder):
    r = client.post(
        "/api/dividends/admin/create-distribution",
        json={"total_amount": "-5"},
        headers=ADMIN,
    )
    assert r.status_code == 400
    assert r.json()["success"] is False


def test_request_body_validation_is_400(client):
    r = client.post("/api/dividends/claim", json={"wallet_address": WALLET_A})
    assert r.status_code == 400
    body = r.json()
    assert body["success"] is False
    assert body["code"] == "validation_error"


def test_invalid_address_is_400(client):
    r = client.get("/api/dividends/info/not-an-address")
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_address"


@pytest.mark.parametrize(
    "method,path",
    [
        ("post", "/api/dividends/admin/create-distribution"),
        ("get", "/api/dividends/admin/eligible-holders"),
        ("get", "/api/dividends/admin/chain-holders"),
        ("get", "/api/dividends/admin/distribution/x"),
        ("post", "/api/dividends/admin/simulate-distribution"),
        ("put", "/api/dividends/admin/distribution/x/status"),
        ("post", "/api/ico/admin/initialize"),
        ("post", "/api/ico/admin/activate-next-phase"),
        ("put", "/api/ico/admin/phase/1"),
        ("get", "/api/ico/admin/detailed-stats"),
    ],
)
def test_admin_routes_require_key(client, method, path):
    r = getattr(client, method)(path, headers={"X-Admin-Key": "wrong"})
    assert r.status_code == 403
    assert r.json() == {"success": False, "error": "invalid admin key", "code": "forbidden"}


def test_admin_routes_disabled_without_configured_key(settings, db, oracle, clock):
    app = create_app(replace(settings, admin_api_key=""), database=db, oracle=oracle, clock=clock)
    with TestClient(app) as unconfigured:
        r = unconfigured.get("/api/dividends/admin/eligible-holders", headers=ADMIN)
    assert r.status_code == 403
    assert r.json()["code"] == "forbidden"


def test_eligible_holders_and_simulation(client, eligible_holder):
    snapshot = client.get("/api/dividends/admin/eligible-holders", headers=ADMIN).json()["snapshot"]
    assert snapshot["eligible_count"] == 1
    assert snapshot["holders"][0]["provenance"] == "blockchain_verified"

    sim = client.post(
        "/api/dividends/admin/simulate-distribution",
        json={"total_amount": "50"},
        headers=ADMIN,
    ).json()["simulation"]
    assert sim["distributions"][0]["dividend_amount"] == "50"


def test_distribution_listing_detail_and_status(client, eligible_holder):
    created = _create_distribution(client, "300", None)

    listing = client.get("/api/dividends/distributions?page=1&limit=10").json()
    assert listing["pagination"]["total_items"] == 1
    assert listing["distributions"][0]["id"] == created["id"]

    detail = client.get(f"/api/dividends/admin/distribution/{created['id']}", headers=ADMIN).json()
    assert detail["distribution"]["entries"][0]["address"] == WALLET_A

    r = client.put(
        f"/api/dividends/admin/distribution/{created['id']}/status",
        json={"status": "completed"},
        headers=ADMIN,
    )
    assert r.status_code == 200
    assert r.json()["distribution"]["status"] == "completed"

    missing = client.get("/api/dividends/admin/distribution/missing", headers=ADMIN)
    assert missing.status_code == 404


def test_bad_pagination_is_400(client):
    assert client.get("/api/dividends/distributions?limit=500").status_code == 400


def test_stats_and_projection(client, eligible_holder, oracle):
    _create_distribution(client, "100")
    stats = client.get("/api/dividends/stats").json()["stats"]
    assert stats["total_distributions"] == 1
    assert stats["total_distributed"] == "100"

    projection = client.get(f"/api/dividends/projection/{WALLET_A}?monthly_profit=21000").json()["projection"]
    assert projection["projected_monthly_dividend"] == "0.6"

    assert client.get(f"/api/dividends/projection/{WALLET_B}").status_code == 422


def test_projection_oracle_down_is_503(client, oracle):
    oracle.failures.add(WALLET_A)
    r = client.get(f"/api/dividends/projection/{WALLET_A}")
    assert r.status_code == 503
    assert r.json()["code"] == "oracle_unavailable"


def test_chain_holders(client, oracle):
    oracle.balances[WALLET_B] = Decimal("12")
    oracle.first_transfers[WALLET_B] = days_ago(3)
    body = client.get("/api/dividends/admin/chain-holders", headers=ADMIN).json()
    assert body["count"] == 1
    assert body["holders"][0]["address"] == WALLET_B
    assert body["holders"][0]["eligible"] is False


def test_ico_flow(client):
    assert client.get("/api/ico/is-active").json()["is_active"] is False
    assert client.get("/api/ico/status").status_code == 422

    r = client.post("/api/ico/admin/initialize", headers=ADMIN)
    assert r.json()["created"] == [1, 2, 3]

    r = client.post(
        "/api/ico/purchase",
        json={
            "wallet_address": WALLET_A,
            "amount_paid": "10",
            "phase": 1,
            "tx_hash": "0xapi1",
            "affiliate_address": WALLET_B,
        },
    )
    assert r.status_code == 200, r.text
    purchase = r.json()["purchase"]
    assert purchase["total_tokens"] == "1200"
    assert purchase["affiliate_commission"] == "0.5"

    history = client.get(f"/api/ico/purchases/{WALLET_A}").json()
    assert history["pagination"]["total_items"] == 1
    assert history["purchases"][0]["tx_hash"] == "0xapi1"

    status = client.get("/api/ico/status").json()["ico"]
    assert status["current_phase"]["tokens_sold"] == "1200"

    stats = client.get("/api/ico/stats").json()["stats"]
    assert stats["total_raised"] == "10"


def test_ico_admin_phase_management(client):
    client.post("/api/ico/admin/initialize", headers=ADMIN)

    r = client.put("/api/ico/admin/phase/1", json={"max_purchase": "50"}, headers=ADMIN)
    assert r.status_code == 200
    assert r.json()["phase"]["max_purchase"] == "50"

    r = client.post(
        "/api/ico/purchase",
        json={"wallet_address": WALLET_A, "amount_paid": "60", "phase": 1, "tx_hash": "0xbig"},
    )
    assert r.status_code == 400
    assert r.json()["code"] == "above_maximum"

    r = client.post("/api/ico/admin/activate-next-phase", headers=ADMIN)
    assert r.json()["active_phase"]["phase"] == 2


def test_ico_detailed_stats(client):
    client.post("/api/ico/admin/initialize", headers=ADMIN)
    client.post(
        "/api/ico/purchase",
        json={"wallet_address": WALLET_A, "amount_paid": "10", "phase": 1, "tx_hash": "0xds1"},
    )

    body = client.get("/api/ico/admin/detailed-stats", headers=ADMIN).json()

    assert body["success"] is True
    assert body["stats"]["total_raised"] == "10"
    assert body["recent_purchases"][0]["tx_hash"] == "0xds1"
    assert body["top_buyers"][0]["wallet_address"] == WALLET_A


def test_wallet_transactions_and_stats(client, oracle):
    client.post("/api/ico/admin/initialize", headers=ADMIN)
    client.post(
        "/api/ico/purchase",
        json={
            "wallet_address": WALLET_A,
            "amount_paid": "20",
            "phase": 1,
            "tx_hash": "0xw1",
            "affiliate_address": WALLET_B,
        },
    )
    oracle.balances[WALLET_B] = Decimal("3")

    history = client.get(f"/api/wallet/transactions/{WALLET_B}?type=affiliate_payment").json()
    assert history["pagination"]["total_items"] == 1
    assert history["transactions"][0]["amount"] == "1"

    stats = client.get(f"/api/wallet/stats/{WALLET_B}").json()["stats"]
    assert stats["total_affiliate_earnings"] == "1"
    assert stats["token_balance"] == "3"

    r = client.get(f"/api/wallet/transactions/{WALLET_A}?type=bogus")
    assert r.status_code == 400
    assert r.json()["code"] == "invalid_transaction_type"


def test_unknown_route_uses_error_envelope(client):
    r = client.get("/api/nope")
    assert r.status_code == 404
    assert r.json() == {"success": False, "error": "Not Found", "code": "not_found"}
