"""
Pytest fixtures for token sale tests. Uses a temporary SQLite DB and an in-memory oracle.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from backend_tokensale.config.settings import Settings
from backend_tokensale.core.exceptions import CollaboratorFailure
from backend_tokensale.core.timeutils import SECONDS_PER_DAY
from backend_tokensale.database import Database
from backend_tokensale.dividends.service import DividendService
from backend_tokensale.dividends.tracker import DistributionTracker
from backend_tokensale.ico.service import IcoService
from backend_tokensale.ledger.models import Purchase
from backend_tokensale.ledger.purchase_ledger import PurchaseLedger
from backend_tokensale.wallet.service import WalletService

# 2025-01-01T00:00:00Z
NOW = 1_735_689_600

ADMIN_KEY = "test-admin-key"

WALLET_A = "0x" + "a" * 40
WALLET_B = "0x" + "b" * 40
WALLET_C = "0x" + "c" * 40
WALLET_D = "0x" + "d" * 40


def days_ago(days: float) -> int:
    return int(NOW - days * SECONDS_PER_DAY)


class FakeOracle:
    """
    In-memory BalanceOracle.

    balances: address -> Decimal; unknown addresses have 0.
    failures: addresses whose lookups raise CollaboratorFailure.
    slow: addresses whose balance lookup sleeps for `delay` seconds.
    """

    def __init__(self) -> None:
        self.balances: dict[str, Decimal] = {}
        self.first_transfers: dict[str, int] = {}
        self.failures: set[str] = set()
        self.slow: set[str] = set()
        self.delay = 1.0
        self.total_supply: Decimal | None = Decimal("21000000")
        self.balance_calls: list[str] = []

    async def get_balance(self, address: str) -> Decimal:
        self.balance_calls.append(address)
        if address in self.failures:
            raise CollaboratorFailure("rpc down", code="oracle_unavailable")
        if address in self.slow:
            await asyncio.sleep(self.delay)
        return self.balances.get(address, Decimal("0"))

    async def get_first_transfer_timestamp(self, address: str) -> int | None:
        if address in self.failures:
            raise CollaboratorFailure("rpc down", code="oracle_unavailable")
        return self.first_transfers.get(address)

    async def list_holder_addresses(self) -> list[str]:
        return list(self.balances)

    async def get_total_supply(self) -> Decimal:
        if self.total_supply is None:
            raise CollaboratorFailure("rpc down", code="oracle_unavailable")
        return self.total_supply


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url="sqlite://",
        token_address="0x" + "1" * 40,
        oracle_timeout_sec=0.2,
        admin_api_key=ADMIN_KEY,
    )


@pytest.fixture
def db(tmp_path) -> Database:
    """Fresh SQLite database file per test."""
    database = Database(f"sqlite:///{tmp_path / 'tokensale.db'}")
    database.ensure_schema()
    yield database
    database.dispose()


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def ledger(db) -> PurchaseLedger:
    return PurchaseLedger(db)


@pytest.fixture
def tracker(db) -> DistributionTracker:
    return DistributionTracker(db)


@pytest.fixture
def dividend_service(tracker, ledger, oracle, settings, clock) -> DividendService:
    return DividendService(tracker, ledger, oracle, settings=settings, clock=clock)


@pytest.fixture
def ico_service(db, ledger, settings, clock) -> IcoService:
    return IcoService(db, ledger, settings=settings, clock=clock)


@pytest.fixture
def wallet_service(ledger, oracle, settings, clock) -> WalletService:
    return WalletService(ledger, oracle, settings=settings, clock=clock)


@pytest.fixture
def add_purchase(ledger):
    """Append a confirmed purchase: add_purchase(wallet, tokens, created_at)."""
    counter = {"n": 0}

    def _add(wallet: str, tokens, created_at: int, amount="10") -> Purchase:
        counter["n"] += 1
        return ledger.append(
            Purchase(
                wallet_address=wallet,
                amount=Decimal(str(amount)),
                tx_hash=f"0xtx{counter['n']:04d}",
                ico_phase=1,
                token_price=Decimal("0.01"),
                tokens_received=Decimal(str(tokens)),
                created_at=created_at,
            )
        )

    return _add


@pytest.fixture
def client(settings, db, oracle, clock):
    """FastAPI TestClient with injected database and oracle; lifespan runs inside the with block."""
    from fastapi.testclient import TestClient

    from backend_tokensale.api_server.server import create_app

    app = create_app(settings, database=db, oracle=oracle, clock=clock)
    with TestClient(app) as c:
        yield c
