"""
Core utilities: error taxonomy, input validation and timestamps.

Shared by the ledger, dividend engine, ICO bookkeeping and API server.
"""

from backend_tokensale.core.exceptions import (
    CollaboratorFailure,
    DomainError,
    InternalError,
    NotFoundError,
    TokenSaleError,
    ValidationError,
)

__all__ = [
    "CollaboratorFailure",
    "DomainError",
    "InternalError",
    "NotFoundError",
    "TokenSaleError",
    "ValidationError",
]
