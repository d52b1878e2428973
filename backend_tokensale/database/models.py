"""
SQLAlchemy models for the ledger, dividend distributions and ICO phases.

Monetary and token quantities are stored as strings so Decimal values
round-trip without precision loss. Timestamps are Unix seconds.
"""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class LedgerTransactionRow(Base):
    """
    Append-only ledger entry. `type` discriminates the variant (ico_purchase,
    dividend_payment, affiliate_payment); variant-specific columns are null
    for the other variants. Required fields are enforced by backend_tokensale.ledger.models.
    """

    __tablename__ = "ledger_transactions"
    __table_args__ = (UniqueConstraint("type", "tx_hash", name="uq_ledger_type_tx_hash"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(32), nullable=False, index=True)
    wallet_address = Column(String(42), nullable=False, index=True)
    amount = Column(String(80), nullable=False)
    currency = Column(String(8), nullable=False)
    tx_hash = Column(String(128), nullable=False)
    status = Column(String(16), nullable=False, default="confirmed", index=True)
    created_at = Column(Integer, nullable=False, index=True)

    # ico_purchase
    ico_phase = Column(Integer, nullable=True)
    token_price = Column(String(80), nullable=True)
    tokens_received = Column(String(80), nullable=True)
    affiliate_address = Column(String(42), nullable=True)
    affiliate_commission = Column(String(80), nullable=True)

    # dividend_payment
    distribution_id = Column(String(32), nullable=True, index=True)
    share_percentage = Column(String(80), nullable=True)
    balance = Column(String(80), nullable=True)

    # affiliate_payment
    referred_wallet = Column(String(42), nullable=True)
    source_tx_hash = Column(String(128), nullable=True)


class DistributionRow(Base):
    """One payout event. holders_snapshot is the frozen list of holding records at creation time."""

    __tablename__ = "distributions"

    id = Column(String(32), primary_key=True)
    created_at = Column(Integer, nullable=False)
    distribution_date = Column(Integer, nullable=False, index=True)
    total_amount = Column(String(80), nullable=False)
    currency = Column(String(8), nullable=False, default="USDT")
    status = Column(String(16), nullable=False, index=True)
    notes = Column(Text, nullable=True)
    eligible_holders = Column(Integer, nullable=False)
    total_tokens_eligible = Column(String(80), nullable=False)
    amount_per_token = Column(String(80), nullable=False)
    holders_snapshot = Column(JSON, nullable=False, default=list)
    updated_at = Column(Integer, nullable=True)

    entries = relationship(
        "DividendEntryRow",
        back_populates="distribution",
        cascade="all, delete-orphan",
        order_by="DividendEntryRow.position",
    )


class DividendEntryRow(Base):
    """Per-holder computed share. claimed flips 0 -> 1 once, via conditional UPDATE."""

    __tablename__ = "dividend_entries"
    __table_args__ = (
        UniqueConstraint("distribution_id", "wallet_address", name="uq_entry_distribution_wallet"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    distribution_id = Column(String(32), ForeignKey("distributions.id"), nullable=False, index=True)
    wallet_address = Column(String(42), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    balance = Column(String(80), nullable=False)
    share_percentage = Column(String(80), nullable=False)
    dividend_amount = Column(String(80), nullable=False)
    claimed = Column(Boolean, nullable=False, default=False)
    claim_tx_ref = Column(String(128), nullable=True)
    claimed_at = Column(Integer, nullable=True)

    distribution = relationship("DistributionRow", back_populates="entries")


class IcoPhaseRow(Base):
    """Sale phase bookkeeping: price, supply, progress, limits, schedule."""

    __tablename__ = "ico_phases"

    phase = Column(Integer, primary_key=True)
    name = Column(String(128), nullable=False)
    description = Column(String(512), nullable=False, default="")
    token_price = Column(String(80), nullable=False)
    total_tokens = Column(String(80), nullable=False)
    tokens_sold = Column(String(80), nullable=False, default="0")
    total_raised = Column(String(80), nullable=False, default="0")
    bonus_percentage = Column(String(80), nullable=False, default="0")
    min_purchase = Column(String(80), nullable=False)
    max_purchase = Column(String(80), nullable=False)
    start_date = Column(Integer, nullable=False)
    end_date = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=False)
    is_completed = Column(Boolean, nullable=False, default=False)
