"""
Ledger transaction variants.

A closed set of tagged entries (Purchase, DividendPayment and AffiliatePayment),
each validating its own required fields on construction. Entries are frozen;
the ledger only appends.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Union

from backend_tokensale.core.exceptions import ValidationError
from backend_tokensale.core.validation import (
    normalize_address,
    require_non_negative,
    require_positive,
)


class TransactionType(str, Enum):
    PURCHASE = "ico_purchase"
    DIVIDEND_PAYMENT = "dividend_payment"
    AFFILIATE_PAYMENT = "affiliate_payment"


class TransactionStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"


def _require_text(value: Any, field_name: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field_name} is required", code="missing_field")
    return value.strip()


@dataclass(frozen=True)
class Purchase:
    """Confirmed token purchase from the ICO flow; the snapshot builder folds these."""

    type: ClassVar[TransactionType] = TransactionType.PURCHASE

    wallet_address: str
    amount: Decimal
    tx_hash: str
    ico_phase: int
    token_price: Decimal
    tokens_received: Decimal
    created_at: int
    currency: str = "MATIC"
    affiliate_address: str | None = None
    affiliate_commission: Decimal = Decimal("0")
    status: TransactionStatus = TransactionStatus.CONFIRMED
    id: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "wallet_address", normalize_address(self.wallet_address))
        object.__setattr__(self, "amount", require_positive(self.amount, "amount"))
        object.__setattr__(self, "tx_hash", _require_text(self.tx_hash, "tx_hash"))
        if not isinstance(self.ico_phase, int) or not (1 <= self.ico_phase <= 3):
            raise ValidationError("ico_phase must be 1, 2 or 3", code="invalid_phase")
        object.__setattr__(self, "token_price", require_positive(self.token_price, "token_price"))
        object.__setattr__(self, "tokens_received", require_positive(self.tokens_received, "tokens_received"))
        if self.affiliate_address is not None:
            object.__setattr__(
                self, "affiliate_address", normalize_address(self.affiliate_address, "affiliate_address")
            )
        object.__setattr__(
            self, "affiliate_commission", require_non_negative(self.affiliate_commission, "affiliate_commission")
        )


@dataclass(frozen=True)
class DividendPayment:
    """Payment record written once per successful dividend claim."""

    type: ClassVar[TransactionType] = TransactionType.DIVIDEND_PAYMENT

    wallet_address: str
    amount: Decimal
    distribution_id: str
    tx_hash: str
    created_at: int
    share_percentage: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    currency: str = "USDT"
    status: TransactionStatus = TransactionStatus.CONFIRMED
    id: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "wallet_address", normalize_address(self.wallet_address))
        object.__setattr__(self, "amount", require_positive(self.amount, "amount"))
        object.__setattr__(self, "distribution_id", _require_text(self.distribution_id, "distribution_id"))
        object.__setattr__(self, "tx_hash", _require_text(self.tx_hash, "tx_hash"))
        object.__setattr__(self, "share_percentage", require_non_negative(self.share_percentage, "share_percentage"))
        object.__setattr__(self, "balance", require_non_negative(self.balance, "balance"))


@dataclass(frozen=True)
class AffiliatePayment:
    """Commission owed to the affiliate that referred a purchase."""

    type: ClassVar[TransactionType] = TransactionType.AFFILIATE_PAYMENT

    wallet_address: str
    amount: Decimal
    referred_wallet: str
    source_tx_hash: str
    tx_hash: str
    created_at: int
    currency: str = "MATIC"
    status: TransactionStatus = TransactionStatus.CONFIRMED
    id: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "wallet_address", normalize_address(self.wallet_address, "affiliate_address"))
        object.__setattr__(self, "amount", require_positive(self.amount, "amount"))
        object.__setattr__(self, "referred_wallet", normalize_address(self.referred_wallet, "referred_wallet"))
        if self.referred_wallet == self.wallet_address:
            raise ValidationError("a wallet cannot be its own affiliate", code="self_referral")
        object.__setattr__(self, "source_tx_hash", _require_text(self.source_tx_hash, "source_tx_hash"))
        object.__setattr__(self, "tx_hash", _require_text(self.tx_hash, "tx_hash"))


LedgerEntry = Union[Purchase, DividendPayment, AffiliatePayment]


def entry_to_dict(entry: LedgerEntry) -> dict[str, Any]:
    """JSON-friendly view: Decimals as strings, enums as values."""
    out: dict[str, Any] = {"type": entry.type.value}
    for name in entry.__dataclass_fields__:
        value = getattr(entry, name)
        if isinstance(value, Decimal):
            value = str(value)
        elif isinstance(value, Enum):
            value = value.value
        out[name] = value
    return out


def dividend_claim_ref(distribution_id: str, wallet_address: str) -> str:
    """Deterministic reference for a claim; unique per (distribution, wallet)."""
    return f"dividend:{distribution_id}:{wallet_address}"


__all__ = [
    "AffiliatePayment",
    "DividendPayment",
    "LedgerEntry",
    "Purchase",
    "TransactionStatus",
    "TransactionType",
    "dividend_claim_ref",
    "entry_to_dict",
]



@dataclass(frozen=True)
class TypeTotal:
    """Entry count and summed amount for one transaction type."""

    type: TransactionType
    count: int
    total_amount: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "count": self.count, "total_amount": str(self.total_amount)}


@dataclass(frozen=True)
class BuyerTotal:
    """One wallet's confirmed ICO purchases, aggregated."""

    wallet_address: str
    total_spent: Decimal
    total_tokens: Decimal
    purchase_count: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "wallet_address": self.wallet_address,
            "total_spent": str(self.total_spent),
            "total_tokens": str(self.total_tokens),
            "purchase_count": self.purchase_count,
        }
