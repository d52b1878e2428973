"""
Database layer: ledger transactions, dividend distributions and ICO phases.

SQLite by default via get_database(); any SQLAlchemy URL works (e.g. PostgreSQL).
"""

from backend_tokensale.database.database import Database, get_database
from backend_tokensale.database.models import (
    Base,
    DistributionRow,
    DividendEntryRow,
    IcoPhaseRow,
    LedgerTransactionRow,
)

__all__ = [
    "Base",
    "Database",
    "DistributionRow",
    "DividendEntryRow",
    "IcoPhaseRow",
    "LedgerTransactionRow",
    "get_database",
]
