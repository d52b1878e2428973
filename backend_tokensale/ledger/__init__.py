"""
Ledger: tagged transaction entries and the append-only store behind them.
"""

from backend_tokensale.ledger.models import (
    AffiliatePayment,
    BuyerTotal,
    DividendPayment,
    LedgerEntry,
    Purchase,
    TransactionStatus,
    TransactionType,
    TypeTotal,
    dividend_claim_ref,
    entry_to_dict,
)
from backend_tokensale.ledger.purchase_ledger import PurchaseLedger, entry_to_row, row_to_entry

__all__ = [
    "AffiliatePayment",
    "BuyerTotal",
    "DividendPayment",
    "LedgerEntry",
    "Purchase",
    "PurchaseLedger",
    "TransactionStatus",
    "TransactionType",
    "TypeTotal",
    "dividend_claim_ref",
    "entry_to_dict",
    "entry_to_row",
    "row_to_entry",
]
