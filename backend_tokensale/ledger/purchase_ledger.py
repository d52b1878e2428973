"""
Purchase ledger: append-only store of ledger entries over SQLAlchemy.

Reads feed the eligibility snapshot (confirmed purchases, oldest first) and
the per-wallet history endpoints. Writes come from the ICO purchase flow and
from dividend claims; claims add their payment row inside the tracker's own
transaction through entry_to_row().
"""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend_tokensale.core.exceptions import (
    CollaboratorFailure,
    DomainError,
    InternalError,
)
from backend_tokensale.core.validation import normalize_address
from backend_tokensale.database import Database, LedgerTransactionRow
from backend_tokensale.ledger.models import (
    AffiliatePayment,
    BuyerTotal,
    DividendPayment,
    LedgerEntry,
    Purchase,
    TransactionStatus,
    TransactionType,
    TypeTotal,
)
from backend_tokensale.logging import get_logger, short_address

logger = get_logger(__name__)


def entry_to_row(entry: LedgerEntry) -> LedgerTransactionRow:
    """Map a ledger entry onto a new (unsaved) row."""
    row = LedgerTransactionRow(
        type=entry.type.value,
        wallet_address=entry.wallet_address,
        amount=str(entry.amount),
        currency=entry.currency,
        tx_hash=entry.tx_hash,
        status=entry.status.value,
        created_at=entry.created_at,
    )
    if isinstance(entry, Purchase):
        row.ico_phase = entry.ico_phase
        row.token_price = str(entry.token_price)
        row.tokens_received = str(entry.tokens_received)
        row.affiliate_address = entry.affiliate_address
        row.affiliate_commission = str(entry.affiliate_commission)
    elif isinstance(entry, DividendPayment):
        row.distribution_id = entry.distribution_id
        row.share_percentage = str(entry.share_percentage)
        row.balance = str(entry.balance)
    elif isinstance(entry, AffiliatePayment):
        row.referred_wallet = entry.referred_wallet
        row.source_tx_hash = entry.source_tx_hash
    return row


def row_to_entry(row: LedgerTransactionRow) -> LedgerEntry:
    """Rebuild the typed entry for a stored row. Unknown types raise ValueError."""
    common = {
        "wallet_address": row.wallet_address,
        "amount": Decimal(row.amount),
        "tx_hash": row.tx_hash,
        "created_at": row.created_at,
        "currency": row.currency,
        "status": TransactionStatus(row.status),
        "id": row.id,
    }
    if row.type == TransactionType.PURCHASE.value:
        return Purchase(
            ico_phase=row.ico_phase,
            token_price=Decimal(row.token_price),
            tokens_received=Decimal(row.tokens_received),
            affiliate_address=row.affiliate_address,
            affiliate_commission=Decimal(row.affiliate_commission or "0"),
            **common,
        )
    if row.type == TransactionType.DIVIDEND_PAYMENT.value:
        return DividendPayment(
            distribution_id=row.distribution_id,
            share_percentage=Decimal(row.share_percentage or "0"),
            balance=Decimal(row.balance or "0"),
            **common,
        )
    if row.type == TransactionType.AFFILIATE_PAYMENT.value:
        return AffiliatePayment(
            referred_wallet=row.referred_wallet,
            source_tx_hash=row.source_tx_hash,
            **common,
        )
    raise ValueError(f"unknown ledger entry type: {row.type}")


def _with_id(entry: LedgerEntry, row_id: int) -> LedgerEntry:
    values = {name: getattr(entry, name) for name in entry.__dataclass_fields__}
    values["id"] = row_id
    return type(entry)(**values)


class PurchaseLedger:
    """Append-only ledger of purchases, dividend payments and affiliate payments."""

    def __init__(self, db: Database) -> None:
        self._db = db

    @property
    def database(self) -> Database:
        return self._db

    def list_confirmed_purchases(self) -> list[Purchase]:
        """
        Every confirmed ico_purchase entry ordered by created_at ascending (id breaks ties).

        Raises CollaboratorFailure when the store cannot be read.
        """
        try:
            with self._db.session_scope() as session:
                rows = (
                    session.query(LedgerTransactionRow)
                    .filter(
                        LedgerTransactionRow.type == TransactionType.PURCHASE.value,
                        LedgerTransactionRow.status == TransactionStatus.CONFIRMED.value,
                    )
                    .order_by(LedgerTransactionRow.created_at.asc(), LedgerTransactionRow.id.asc())
                    .all()
                )
                return [row_to_entry(r) for r in rows]
        except SQLAlchemyError as e:
            logger.exception("ledger_read_failed", error=str(e))
            raise CollaboratorFailure("ledger unavailable", code="ledger_unavailable") from e

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """
        Persist one entry and return it with its id set.

        Raises DomainError when (type, tx_hash) already exists and InternalError
        on any other persistence failure.
        """
        try:
            with self._db.session_scope() as session:
                row_id = self.add(session, entry)
        except IntegrityError as e:
            logger.info(
                "ledger_duplicate_tx",
                type=entry.type.value,
                tx_hash=entry.tx_hash[:16],
                wallet=short_address(entry.wallet_address),
            )
            raise DomainError("transaction already processed", code="duplicate_transaction") from e
        except SQLAlchemyError as e:
            logger.exception("ledger_append_failed", type=entry.type.value, error=str(e))
            raise InternalError() from e
        logger.info(
            "ledger_entry_appended",
            id=row_id,
            type=entry.type.value,
            wallet=short_address(entry.wallet_address),
            amount=str(entry.amount),
        )
        return _with_id(entry, row_id)

    @staticmethod
    def add(session: Session, entry: LedgerEntry) -> int:
        """Add an entry inside a caller-owned transaction; returns the new row id after flush."""
        row = entry_to_row(entry)
        session.add(row)
        session.flush()
        return row.id

    def exists(self, tx_type: TransactionType, tx_hash: str) -> bool:
        try:
            with self._db.session_scope() as session:
                found = (
                    session.query(LedgerTransactionRow.id)
                    .filter(
                        LedgerTransactionRow.type == tx_type.value,
                        LedgerTransactionRow.tx_hash == tx_hash,
                    )
                    .first()
                )
                return found is not None
        except SQLAlchemyError as e:
            logger.exception("ledger_read_failed", error=str(e))
            raise CollaboratorFailure("ledger unavailable", code="ledger_unavailable") from e

    def list_by_wallet(
        self,
        address: str,
        *,
        tx_type: TransactionType | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[LedgerEntry], int]:
        """Entries for one wallet, newest first, plus the total count for pagination."""
        address = normalize_address(address)
        try:
            with self._db.session_scope() as session:
                query = session.query(LedgerTransactionRow).filter(
                    LedgerTransactionRow.wallet_address == address
                )
                if tx_type is not None:
                    query = query.filter(LedgerTransactionRow.type == tx_type.value)
                total = query.count()
                rows = (
                    query.order_by(LedgerTransactionRow.created_at.desc(), LedgerTransactionRow.id.desc())
                    .offset((page - 1) * limit)
                    .limit(limit)
                    .all()
                )
                return [row_to_entry(r) for r in rows], total
        except SQLAlchemyError as e:
            logger.exception("ledger_read_failed", wallet=short_address(address), error=str(e))
            raise CollaboratorFailure("ledger unavailable", code="ledger_unavailable") from e

    def wallet_totals(self, address: str) -> list[TypeTotal]:
        """Per-type entry count and amount sum for one wallet, in TransactionType order. Types with no entries are left out."""
        address = normalize_address(address)
        try:
            with self._db.session_scope() as session:
                rows = (
                    session.query(LedgerTransactionRow.type, LedgerTransactionRow.amount)
                    .filter(LedgerTransactionRow.wallet_address == address)
                    .all()
                )
        except SQLAlchemyError as e:
            logger.exception("ledger_read_failed", wallet=short_address(address), error=str(e))
            raise CollaboratorFailure("ledger unavailable", code="ledger_unavailable") from e
        counts: dict[str, int] = {}
        amounts: dict[str, Decimal] = {}
        for tx_type, amount in rows:
            counts[tx_type] = counts.get(tx_type, 0) + 1
            amounts[tx_type] = amounts.get(tx_type, Decimal("0")) + Decimal(amount)
        return [
            TypeTotal(type=t, count=counts[t.value], total_amount=amounts[t.value])
            for t in TransactionType
            if t.value in counts
        ]

    def recent_purchases(self, limit: int = 10) -> list[Purchase]:
        """The newest confirmed purchases across all wallets."""
        try:
            with self._db.session_scope() as session:
                rows = (
                    session.query(LedgerTransactionRow)
                    .filter(
                        LedgerTransactionRow.type == TransactionType.PURCHASE.value,
                        LedgerTransactionRow.status == TransactionStatus.CONFIRMED.value,
                    )
                    .order_by(LedgerTransactionRow.created_at.desc(), LedgerTransactionRow.id.desc())
                    .limit(limit)
                    .all()
                )
                return [row_to_entry(r) for r in rows]
        except SQLAlchemyError as e:
            logger.exception("ledger_read_failed", error=str(e))
            raise CollaboratorFailure("ledger unavailable", code="ledger_unavailable") from e

    def top_buyers(self, limit: int = 10) -> list[BuyerTotal]:
        """Wallets by total confirmed purchase amount, largest first; address breaks ties."""
        buyers: dict[str, BuyerTotal] = {}
        for p in self.list_confirmed_purchases():
            prev = buyers.get(p.wallet_address)
            if prev is None:
                buyers[p.wallet_address] = BuyerTotal(p.wallet_address, p.amount, p.tokens_received, 1)
            else:
                buyers[p.wallet_address] = BuyerTotal(
                    p.wallet_address,
                    prev.total_spent + p.amount,
                    prev.total_tokens + p.tokens_received,
                    prev.purchase_count + 1,
                )
        ranked = sorted(buyers.values(), key=lambda b: (-b.total_spent, b.wallet_address))
        return ranked[:limit]

    def sum_dividend_payments(self) -> tuple[Decimal, int]:
        """(total amount paid in confirmed dividend payments, distinct recipient wallets)."""
        try:
            with self._db.session_scope() as session:
                base = session.query(LedgerTransactionRow).filter(
                    LedgerTransactionRow.type == TransactionType.DIVIDEND_PAYMENT.value,
                    LedgerTransactionRow.status == TransactionStatus.CONFIRMED.value,
                )
                amounts = [r.amount for r in base.with_entities(LedgerTransactionRow.amount)]
                recipients = base.with_entities(
                    func.count(func.distinct(LedgerTransactionRow.wallet_address))
                ).scalar()
        except SQLAlchemyError as e:
            logger.exception("ledger_read_failed", error=str(e))
            raise CollaboratorFailure("ledger unavailable", code="ledger_unavailable") from e
        total = sum((Decimal(a) for a in amounts), Decimal("0"))
        return total, int(recipients or 0)
