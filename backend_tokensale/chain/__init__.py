"""
Chain access: read-only ERC-20 token oracle (balances, supply, transfer history).
"""

from backend_tokensale.chain.models import ChainHolder, HoldingPeriod, TransferLog
from backend_tokensale.chain.oracle import BalanceOracle, TokenOracle, build_oracle

__all__ = [
    "BalanceOracle",
    "ChainHolder",
    "HoldingPeriod",
    "TokenOracle",
    "TransferLog",
    "build_oracle",
]
