"""
ICO phase bookkeeping and the purchase flow that feeds the ledger.

Responsibilities:
- Seed the default phases (idempotent) and report sale status/statistics.
- Process a purchase: validate against the active phase, price it, update the
  phase counters and append the Purchase (and AffiliatePayment) ledger entries
  in one transaction. Phase counters are updated with a compare-and-set on
  tokens_sold so concurrent purchases never oversell a phase.
- Admin phase management: activate the next phase, edit phase settings.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend_tokensale.config.settings import Settings
from backend_tokensale.core.exceptions import (
    CollaboratorFailure,
    DomainError,
    InternalError,
    NotFoundError,
    ValidationError,
)
from backend_tokensale.core.timeutils import Clock, now_ts
from backend_tokensale.core.validation import (
    normalize_address,
    pagination_block,
    require_non_negative,
    require_positive,
    trim_decimal,
    validate_pagination,
)
from backend_tokensale.database import Database, IcoPhaseRow
from backend_tokensale.ico.phases import DEFAULT_PHASES, PROGRESS_QUANTUM, IcoPhase, quote_purchase
from backend_tokensale.ledger.models import (
    AffiliatePayment,
    Purchase,
    TransactionType,
    entry_to_dict,
)
from backend_tokensale.ledger.purchase_ledger import PurchaseLedger
from backend_tokensale.logging import get_logger, short_address

logger = get_logger(__name__)

# Retries when another purchase updated the same phase between read and write
MAX_PURCHASE_ATTEMPTS = 3

# Rows in each list of the admin detailed stats
DETAILED_STATS_LIMIT = 10

EDITABLE_PHASE_FIELDS = (
    "name",
    "description",
    "token_price",
    "total_tokens",
    "bonus_percentage",
    "min_purchase",
    "max_purchase",
    "start_date",
    "end_date",
)


class _PhaseChanged(Exception):
    pass


def _overall(phases: list[IcoPhase]) -> dict[str, Any]:
    sold = sum((p.tokens_sold for p in phases), Decimal("0"))
    raised = sum((p.total_raised for p in phases), Decimal("0"))
    for_sale = sum((p.total_tokens for p in phases), Decimal("0"))
    progress = Decimal("0")
    if for_sale > 0:
        progress = (sold / for_sale * 100).quantize(PROGRESS_QUANTUM, rounding=ROUND_HALF_UP)
    return {
        "total_tokens_sold": str(trim_decimal(sold)),
        "total_raised": str(trim_decimal(raised)),
        "total_tokens_for_sale": str(trim_decimal(for_sale)),
        "overall_progress": str(progress),
    }


class IcoService:
    """Phased token sale. Writes Purchase and AffiliatePayment entries into the ledger."""

    def __init__(
        self,
        db: Database,
        ledger: PurchaseLedger,
        *,
        settings: Settings | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._db = db
        self._ledger = ledger
        self._settings = settings or Settings()
        self._clock = clock or now_ts

    # ------------------------------------------------------------------
    # Phase reads
    # ------------------------------------------------------------------

    def _load_phases(self) -> list[IcoPhase]:
        try:
            with self._db.session_scope() as session:
                rows = session.query(IcoPhaseRow).order_by(IcoPhaseRow.phase.asc()).all()
                return [IcoPhase.from_row(r) for r in rows]
        except SQLAlchemyError as e:
            logger.exception("ico_phases_read_failed", error=str(e))
            raise CollaboratorFailure("phase store unavailable", code="store_unavailable") from e

    def initialize_phases(self) -> dict[str, Any]:
        """Insert any default phase that does not exist yet. Existing phases are left untouched."""
        created: list[int] = []
        try:
            with self._db.session_scope() as session:
                existing = {p for (p,) in session.query(IcoPhaseRow.phase)}
                for phase in DEFAULT_PHASES:
                    if phase.phase in existing:
                        continue
                    session.add(phase.to_row())
                    created.append(phase.phase)
        except SQLAlchemyError as e:
            logger.exception("ico_initialize_failed", error=str(e))
            raise InternalError("failed to initialize phases") from e
        logger.info("ico_phases_initialized", created=created)
        return {"created": created, "message": "phases initialized"}

    def get_status(self) -> dict[str, Any]:
        """Current phase with progress, every phase, overall totals. DomainError when no phase is open."""
        phases = self._load_phases()
        current = next((p for p in phases if p.is_open), None)
        if current is None:
            raise DomainError("no active phase found", code="no_active_phase")
        return {
            "current_phase": current.to_dict(),
            "phases": [p.to_dict() for p in phases],
            "overall": _overall(phases),
        }

    def is_active(self) -> dict[str, Any]:
        phases = self._load_phases()
        current = next((p for p in phases if p.is_open), None)
        return {"is_active": current is not None, "active_phase": current.to_dict() if current else None}

    def get_stats(self) -> dict[str, Any]:
        phases = self._load_phases()
        active = next((p for p in phases if p.is_active), None)
        return {
            "total_phases": len(phases),
            "completed_phases": sum(1 for p in phases if p.is_completed),
            "active_phase": active.to_dict() if active else None,
            **_overall(phases),
            "phases": [p.to_dict() for p in phases],
        }

    def get_detailed_stats(self, limit: int = DETAILED_STATS_LIMIT) -> dict[str, Any]:
        """Sale statistics plus the newest purchases and the largest buyers."""
        return {
            "stats": self.get_stats(),
            "recent_purchases": [entry_to_dict(p) for p in self._ledger.recent_purchases(limit)],
            "top_buyers": [b.to_dict() for b in self._ledger.top_buyers(limit)],
        }

    # ------------------------------------------------------------------
    # Purchase
    # ------------------------------------------------------------------

    def process_purchase(
        self,
        wallet_address: str,
        amount_paid: Any,
        phase: int,
        tx_hash: str,
        affiliate_address: str | None = None,
    ) -> dict[str, Any]:
        """
        Record a confirmed purchase of phase tokens.

        Raises ValidationError for bad input or an amount outside the phase limits,
        DomainError for a duplicate tx hash, an inactive phase or insufficient
        remaining tokens.
        """
        wallet = normalize_address(wallet_address)
        amount = require_positive(amount_paid, "amount_paid")
        if isinstance(phase, bool) or not isinstance(phase, int):
            raise ValidationError("phase must be an integer", code="invalid_phase")
        tx_hash = (tx_hash or "").strip()
        if not tx_hash:
            raise ValidationError("tx_hash is required", code="missing_field")
        affiliate = normalize_address(affiliate_address, "affiliate_address") if affiliate_address else None
        if affiliate == wallet:
            raise ValidationError("a wallet cannot be its own affiliate", code="self_referral")

        if self._ledger.exists(TransactionType.PURCHASE, tx_hash):
            raise DomainError("transaction already processed", code="duplicate_transaction")

        for attempt in range(MAX_PURCHASE_ATTEMPTS):
            try:
                return self._purchase_once(wallet, amount, phase, tx_hash, affiliate)
            except _PhaseChanged:
                logger.info("ico_purchase_phase_changed_retry", phase=phase, attempt=attempt + 1)
        raise CollaboratorFailure("phase is busy, retry the purchase", code="phase_busy")

    def _purchase_once(
        self,
        wallet: str,
        amount: Decimal,
        phase_number: int,
        tx_hash: str,
        affiliate: str | None,
    ) -> dict[str, Any]:
        now = self._clock()
        try:
            with self._db.session_scope() as session:
                row = session.query(IcoPhaseRow).filter(IcoPhaseRow.phase == phase_number).first()
                if row is None or not row.is_active or row.is_completed:
                    raise DomainError("phase not found or not active", code="phase_inactive")
                phase = IcoPhase.from_row(row)
                if amount < phase.min_purchase:
                    raise ValidationError(f"minimum purchase: {phase.min_purchase}", code="below_minimum")
                if amount > phase.max_purchase:
                    raise ValidationError(f"maximum purchase: {phase.max_purchase}", code="above_maximum")

                quote = quote_purchase(phase, amount)
                if quote.total_tokens > phase.remaining_tokens:
                    raise DomainError("insufficient tokens left in this phase", code="insufficient_tokens")

                sold = trim_decimal(phase.tokens_sold + quote.total_tokens)
                raised = trim_decimal(phase.total_raised + amount)
                completed = sold >= phase.total_tokens
                self._update_phase_counters(session, row, sold, raised, completed)
                if completed:
                    self._activate(session, phase_number + 1)

                commission = Decimal("0")
                if affiliate is not None:
                    commission = trim_decimal(amount * self._settings.affiliate_commission_rate)
                purchase = Purchase(
                    wallet_address=wallet,
                    amount=amount,
                    tx_hash=tx_hash,
                    ico_phase=phase_number,
                    token_price=phase.token_price,
                    tokens_received=quote.total_tokens,
                    created_at=now,
                    affiliate_address=affiliate,
                    affiliate_commission=commission,
                )
                purchase_id = PurchaseLedger.add(session, purchase)
                if affiliate is not None and commission > 0:
                    PurchaseLedger.add(
                        session,
                        AffiliatePayment(
                            wallet_address=affiliate,
                            amount=commission,
                            referred_wallet=wallet,
                            source_tx_hash=tx_hash,
                            tx_hash=f"affiliate:{tx_hash}",
                            created_at=now,
                        ),
                    )
        except IntegrityError as e:
            raise DomainError("transaction already processed", code="duplicate_transaction") from e
        except SQLAlchemyError as e:
            logger.exception("ico_purchase_failed", wallet=short_address(wallet), tx_hash=tx_hash[:16], error=str(e))
            raise InternalError("failed to record purchase") from e

        logger.info(
            "ico_purchase_processed",
            wallet=short_address(wallet),
            phase=phase_number,
            amount=str(amount),
            tokens=str(quote.total_tokens),
            phase_completed=completed,
            affiliate=short_address(affiliate) if affiliate else None,
        )
        return {
            "purchase": {
                "id": purchase_id,
                "wallet_address": wallet,
                "phase": phase_number,
                "tx_hash": tx_hash,
                "affiliate_address": affiliate,
                "affiliate_commission": str(commission),
                **quote.to_dict(),
            },
            "phase_completed": completed,
        }

    @staticmethod
    def _update_phase_counters(
        session: Session,
        row: IcoPhaseRow,
        sold: Decimal,
        raised: Decimal,
        completed: bool,
    ) -> None:
        values: dict[str, Any] = {"tokens_sold": str(sold), "total_raised": str(raised)}
        if completed:
            values.update(is_completed=True, is_active=False)
        result = session.execute(
            update(IcoPhaseRow)
            .where(
                IcoPhaseRow.phase == row.phase,
                IcoPhaseRow.tokens_sold == row.tokens_sold,
                IcoPhaseRow.is_active.is_(True),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise _PhaseChanged()

    @staticmethod
    def _activate(session: Session, phase_number: int) -> bool:
        result = session.execute(
            update(IcoPhaseRow)
            .where(IcoPhaseRow.phase == phase_number, IcoPhaseRow.is_completed.is_(False))
            .values(is_active=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def list_purchases(self, wallet_address: str, page: Any = 1, limit: Any = 10) -> dict[str, Any]:
        wallet = normalize_address(wallet_address)
        page, limit = validate_pagination(page, limit)
        entries, total = self._ledger.list_by_wallet(wallet, tx_type=TransactionType.PURCHASE, page=page, limit=limit)
        return {
            "purchases": [entry_to_dict(e) for e in entries],
            "pagination": pagination_block(page, limit, total),
        }

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    def activate_next_phase(self) -> dict[str, Any]:
        """
        Complete the active phase and activate the following one (phase 1 when none is active).

        Raises DomainError when there is no next phase; nothing changes in that case.
        """
        try:
            with self._db.session_scope() as session:
                current = session.query(IcoPhaseRow).filter(IcoPhaseRow.is_active.is_(True)).first()
                next_number = current.phase + 1 if current is not None else 1
                nxt = (
                    session.query(IcoPhaseRow)
                    .filter(IcoPhaseRow.phase == next_number, IcoPhaseRow.is_completed.is_(False))
                    .first()
                )
                if nxt is None:
                    raise DomainError("no next phase available", code="no_next_phase")
                if current is not None:
                    current.is_active = False
                    current.is_completed = True
                nxt.is_active = True
                session.flush()
                activated = IcoPhase.from_row(nxt)
        except SQLAlchemyError as e:
            logger.exception("ico_activate_next_failed", error=str(e))
            raise InternalError("failed to activate next phase") from e
        logger.info("ico_phase_activated", phase=activated.phase)
        return {"message": f"phase {activated.phase} activated", "active_phase": activated.to_dict()}

    def update_phase(self, phase_number: int, updates: dict[str, Any]) -> dict[str, Any]:
        """Edit phase settings. Only EDITABLE_PHASE_FIELDS are applied; unknown keys raise ValidationError."""
        unknown = sorted(set(updates) - set(EDITABLE_PHASE_FIELDS))
        if unknown:
            raise ValidationError(f"fields cannot be updated: {', '.join(unknown)}", code="invalid_field")
        values = self._validated_phase_values(updates)
        try:
            with self._db.session_scope() as session:
                row = session.query(IcoPhaseRow).filter(IcoPhaseRow.phase == phase_number).first()
                if row is None:
                    raise NotFoundError(f"phase not found: {phase_number}")
                for name, value in values.items():
                    setattr(row, name, value)
                if Decimal(row.min_purchase) > Decimal(row.max_purchase):
                    raise ValidationError("min_purchase exceeds max_purchase", code="invalid_limits")
                if row.start_date > row.end_date:
                    raise ValidationError("start_date is after end_date", code="invalid_schedule")
                session.flush()
                phase = IcoPhase.from_row(row)
        except SQLAlchemyError as e:
            logger.exception("ico_update_phase_failed", phase=phase_number, error=str(e))
            raise InternalError("failed to update phase") from e
        logger.info("ico_phase_updated", phase=phase_number, fields=sorted(values))
        return {"message": "phase updated", "phase": phase.to_dict()}

    @staticmethod
    def _validated_phase_values(updates: dict[str, Any]) -> dict[str, Any]:
        values: dict[str, Any] = {}
        for name, raw in updates.items():
            if raw is None:
                continue
            if name in ("name", "description"):
                text = str(raw).strip()
                if name == "name" and not text:
                    raise ValidationError("name must be non-empty", code="missing_field")
                values[name] = text
            elif name in ("start_date", "end_date"):
                if isinstance(raw, bool) or not isinstance(raw, int) or raw < 0:
                    raise ValidationError(f"{name} must be a unix timestamp", code="invalid_date")
                values[name] = raw
            elif name == "bonus_percentage":
                values[name] = str(trim_decimal(require_non_negative(raw, name)))
            else:
                values[name] = str(trim_decimal(require_positive(raw, name)))
        return values
