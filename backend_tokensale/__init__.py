"""
Backend Token Sale: ICO bookkeeping and dividend distribution for token holders.

Reads confirmed purchases from the ledger, verifies holder balances on-chain,
splits profit pools pro-rata across eligible holders and tracks claims.
"""

__version__ = "0.1.0"
