"""
Distribution record and claim tracker over SQLAlchemy.

Responsibilities:
- Persist a calculated distribution with its holder snapshot and entries in
  one transaction (pending -> calculated before commit).
- Read distributions, paginated summaries and one wallet's entries.
- Claim an entry exactly once: a conditional UPDATE ... WHERE claimed = 0
  decides the winner, and the DividendPayment ledger row is written in the
  same transaction.
- Forward-only status transitions for external settlement.
"""

from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Iterable, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from backend_tokensale.core.exceptions import (
    CollaboratorFailure,
    DomainError,
    InternalError,
    NotFoundError,
)
from backend_tokensale.database import Database, DistributionRow, DividendEntryRow
from backend_tokensale.dividends.calculator import amount_per_token
from backend_tokensale.dividends.models import (
    CLAIMABLE_STATUSES,
    STATUS_TRANSITIONS,
    ClaimedItem,
    Distribution,
    DistributionStatus,
    DividendEntry,
    DividendHistoryItem,
    DividendShare,
    EligibilitySnapshot,
    HoldingRecord,
)
from backend_tokensale.ledger.models import DividendPayment, dividend_claim_ref
from backend_tokensale.ledger.purchase_ledger import PurchaseLedger
from backend_tokensale.logging import get_logger, short_address

logger = get_logger(__name__)

DEFAULT_CURRENCY = "USDT"


def new_distribution_id() -> str:
    return uuid.uuid4().hex


def _entry_from_row(row: DividendEntryRow) -> DividendEntry:
    return DividendEntry(
        address=row.wallet_address,
        balance=Decimal(row.balance),
        share_percentage=Decimal(row.share_percentage),
        dividend_amount=Decimal(row.dividend_amount),
        claimed=bool(row.claimed),
        claim_tx_ref=row.claim_tx_ref,
        claimed_at=row.claimed_at,
    )


def _distribution_from_row(row: DistributionRow, *, with_entries: bool = True) -> Distribution:
    return Distribution(
        id=row.id,
        created_at=row.created_at,
        distribution_date=row.distribution_date,
        total_amount=Decimal(row.total_amount),
        currency=row.currency,
        status=DistributionStatus(row.status),
        notes=row.notes,
        eligible_holders=row.eligible_holders,
        total_tokens_eligible=Decimal(row.total_tokens_eligible),
        amount_per_token=Decimal(row.amount_per_token),
        holders_snapshot=tuple(HoldingRecord.from_snapshot_json(h) for h in (row.holders_snapshot or []))
        if with_entries
        else (),
        entries=tuple(_entry_from_row(e) for e in row.entries) if with_entries else (),
        updated_at=row.updated_at,
    )


class DistributionTracker:
    """Sole writer of distributions and dividend entries."""

    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def record(
        self,
        snapshot: EligibilitySnapshot,
        shares: Sequence[DividendShare],
        total_amount: Decimal,
        *,
        notes: str | None,
        now: int,
        distribution_id: str | None = None,
        currency: str = DEFAULT_CURRENCY,
    ) -> Distribution:
        """
        Persist a distribution and its entries atomically.

        The row is inserted as pending and flipped to calculated inside the same
        transaction, so readers only ever see calculated distributions. Any
        persistence failure rolls everything back and raises InternalError.
        """
        distribution_id = distribution_id or new_distribution_id()
        try:
            with self._db.session_scope() as session:
                row = DistributionRow(
                    id=distribution_id,
                    created_at=now,
                    distribution_date=now,
                    total_amount=str(total_amount),
                    currency=currency,
                    status=DistributionStatus.PENDING.value,
                    notes=notes,
                    eligible_holders=snapshot.eligible_count,
                    total_tokens_eligible=str(snapshot.total_tokens_eligible),
                    amount_per_token=str(amount_per_token(total_amount, snapshot.total_tokens_eligible)),
                    holders_snapshot=[h.to_snapshot_json() for h in snapshot.holders],
                )
                session.add(row)
                for position, share in enumerate(shares):
                    session.add(
                        DividendEntryRow(
                            distribution_id=distribution_id,
                            wallet_address=share.address,
                            position=position,
                            balance=str(share.balance),
                            share_percentage=str(share.share_percentage),
                            dividend_amount=str(share.dividend_amount),
                            claimed=False,
                        )
                    )
                session.flush()
                row.status = DistributionStatus.CALCULATED.value
                row.updated_at = now
                session.flush()
                session.refresh(row)
                distribution = _distribution_from_row(row)
        except SQLAlchemyError as e:
            logger.exception(
                "distribution_persist_failed",
                distribution_id=distribution_id,
                eligible_holders=snapshot.eligible_count,
                error=str(e),
            )
            raise InternalError("failed to persist distribution") from e
        logger.info(
            "distribution_created",
            distribution_id=distribution_id,
            eligible_holders=snapshot.eligible_count,
            total_amount=str(total_amount),
            total_tokens_eligible=str(snapshot.total_tokens_eligible),
        )
        return distribution

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, distribution_id: str) -> Distribution | None:
        try:
            with self._db.session_scope() as session:
                row = (
                    session.query(DistributionRow)
                    .options(selectinload(DistributionRow.entries))
                    .filter(DistributionRow.id == distribution_id)
                    .first()
                )
                return _distribution_from_row(row) if row is not None else None
        except SQLAlchemyError as e:
            logger.exception("distribution_read_failed", distribution_id=distribution_id, error=str(e))
            raise CollaboratorFailure("distribution store unavailable", code="store_unavailable") from e

    def list_summaries(self, *, page: int, limit: int) -> tuple[list[Distribution], int]:
        """Newest first, without holder snapshots or entries."""
        try:
            with self._db.session_scope() as session:
                query = session.query(DistributionRow)
                total = query.count()
                rows = (
                    query.order_by(DistributionRow.distribution_date.desc(), DistributionRow.created_at.desc())
                    .offset((page - 1) * limit)
                    .limit(limit)
                    .all()
                )
                return [_distribution_from_row(r, with_entries=False) for r in rows], total
        except SQLAlchemyError as e:
            logger.exception("distribution_list_failed", error=str(e))
            raise CollaboratorFailure("distribution store unavailable", code="store_unavailable") from e

    def history_for_wallet(
        self,
        address: str,
        statuses: Iterable[DistributionStatus] = CLAIMABLE_STATUSES,
    ) -> list[DividendHistoryItem]:
        """The wallet's entries across distributions in the given statuses, newest distribution first."""
        status_values = [s.value for s in statuses]
        try:
            with self._db.session_scope() as session:
                rows = (
                    session.query(DistributionRow, DividendEntryRow)
                    .join(DividendEntryRow, DividendEntryRow.distribution_id == DistributionRow.id)
                    .filter(
                        DividendEntryRow.wallet_address == address,
                        DistributionRow.status.in_(status_values),
                    )
                    .order_by(DistributionRow.distribution_date.desc(), DistributionRow.created_at.desc())
                    .all()
                )
                return [
                    DividendHistoryItem(
                        distribution_id=dist.id,
                        distribution_date=dist.distribution_date,
                        status=DistributionStatus(dist.status),
                        balance=Decimal(entry.balance),
                        share_percentage=Decimal(entry.share_percentage),
                        dividend_amount=Decimal(entry.dividend_amount),
                        claimed=bool(entry.claimed),
                        claimed_at=entry.claimed_at,
                    )
                    for dist, entry in rows
                ]
        except SQLAlchemyError as e:
            logger.exception("distribution_history_failed", wallet=short_address(address), error=str(e))
            raise CollaboratorFailure("distribution store unavailable", code="store_unavailable") from e

    def totals(self) -> tuple[int, Decimal, Distribution | None]:
        """(distribution count, sum of total_amount, latest distribution summary)."""
        try:
            with self._db.session_scope() as session:
                count = session.query(func.count(DistributionRow.id)).scalar() or 0
                amounts = [r.total_amount for r in session.query(DistributionRow.total_amount)]
                latest = (
                    session.query(DistributionRow)
                    .order_by(DistributionRow.distribution_date.desc(), DistributionRow.created_at.desc())
                    .first()
                )
                last = _distribution_from_row(latest, with_entries=False) if latest is not None else None
        except SQLAlchemyError as e:
            logger.exception("distribution_totals_failed", error=str(e))
            raise CollaboratorFailure("distribution store unavailable", code="store_unavailable") from e
        return int(count), sum((Decimal(a) for a in amounts), Decimal("0")), last

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    def claim(self, distribution_id: str, address: str, *, now: int) -> ClaimedItem | None:
        """
        Claim one (distribution, wallet) entry.

        Returns None when there is nothing to claim: unknown distribution, a status
        that does not allow claims, no entry for the wallet, or already claimed
        (including losing a concurrent race).
        """
        entry = self._claimable_entry(distribution_id, address)
        if entry is None:
            return None

        tx_ref = dividend_claim_ref(distribution_id, address)
        payment = DividendPayment(
            wallet_address=address,
            amount=entry.dividend_amount,
            distribution_id=distribution_id,
            tx_hash=tx_ref,
            created_at=now,
            share_percentage=entry.share_percentage,
            balance=entry.balance,
        )
        try:
            with self._db.session_scope() as session:
                if not self._mark_claimed(session, distribution_id, address, tx_ref, now):
                    logger.info(
                        "dividend_claim_lost_race",
                        distribution_id=distribution_id,
                        wallet=short_address(address),
                    )
                    return None
                PurchaseLedger.add(session, payment)
        except IntegrityError:
            # Payment row for this pair already exists; the transaction rolled back
            logger.warning(
                "dividend_claim_duplicate_payment",
                distribution_id=distribution_id,
                wallet=short_address(address),
            )
            return None
        except SQLAlchemyError as e:
            logger.exception(
                "dividend_claim_failed",
                distribution_id=distribution_id,
                wallet=short_address(address),
                error=str(e),
            )
            raise InternalError("failed to record dividend claim") from e

        logger.info(
            "dividend_claimed",
            distribution_id=distribution_id,
            wallet=short_address(address),
            amount=str(entry.dividend_amount),
        )
        return ClaimedItem(distribution_id=distribution_id, amount=entry.dividend_amount, tx_ref=tx_ref)

    def _claimable_entry(self, distribution_id: str, address: str) -> DividendEntry | None:
        try:
            with self._db.session_scope() as session:
                row = (
                    session.query(DistributionRow.status, DividendEntryRow)
                    .join(DividendEntryRow, DividendEntryRow.distribution_id == DistributionRow.id)
                    .filter(
                        DistributionRow.id == distribution_id,
                        DividendEntryRow.wallet_address == address,
                    )
                    .first()
                )
                if row is None:
                    return None
                status, entry_row = row
                entry = _entry_from_row(entry_row)
        except SQLAlchemyError as e:
            logger.exception("dividend_claim_read_failed", distribution_id=distribution_id, error=str(e))
            raise CollaboratorFailure("distribution store unavailable", code="store_unavailable") from e
        if DistributionStatus(status) not in CLAIMABLE_STATUSES:
            return None
        if entry.claimed or entry.dividend_amount <= 0:
            return None
        return entry

    @staticmethod
    def _mark_claimed(session: Session, distribution_id: str, address: str, tx_ref: str, now: int) -> bool:
        """
        Compare-and-set claimed 0 -> 1. True only for the caller whose UPDATE changed
        the row while the distribution was still in a claimable status.
        """
        claimable = (
            select(DistributionRow.id)
            .where(
                DistributionRow.id == distribution_id,
                DistributionRow.status.in_([s.value for s in CLAIMABLE_STATUSES]),
            )
            .scalar_subquery()
        )
        result = session.execute(
            update(DividendEntryRow)
            .where(
                DividendEntryRow.distribution_id == claimable,
                DividendEntryRow.wallet_address == address,
                DividendEntryRow.claimed.is_(False),
            )
            .values(claimed=True, claimed_at=now, claim_tx_ref=tx_ref)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def update_status(self, distribution_id: str, status: DistributionStatus, *, now: int) -> Distribution:
        """Move a distribution forward (calculated -> processing/completed/failed, processing -> completed/failed)."""
        try:
            with self._db.session_scope() as session:
                row = (
                    session.query(DistributionRow)
                    .options(selectinload(DistributionRow.entries))
                    .filter(DistributionRow.id == distribution_id)
                    .first()
                )
                if row is None:
                    raise NotFoundError(f"distribution not found: {distribution_id}")
                current = DistributionStatus(row.status)
                if status not in STATUS_TRANSITIONS.get(current, frozenset()):
                    raise DomainError(
                        f"cannot move distribution from {current.value} to {status.value}",
                        code="invalid_status_transition",
                    )
                row.status = status.value
                row.updated_at = now
                session.flush()
                distribution = _distribution_from_row(row)
        except SQLAlchemyError as e:
            logger.exception("distribution_status_failed", distribution_id=distribution_id, error=str(e))
            raise InternalError("failed to update distribution status") from e
        logger.info(
            "distribution_status_updated",
            distribution_id=distribution_id,
            from_status=current.value,
            to_status=status.value,
        )
        return distribution
