"""
Wallet views: ledger history and per-wallet statistics.
"""

from backend_tokensale.wallet.service import WalletService

__all__ = ["WalletService"]
