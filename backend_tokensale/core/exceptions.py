"""
Application-level exceptions.

Four families, each with a stable error code and the HTTP status the API maps it to:
- ValidationError: malformed or missing input; never retried.
- DomainError: valid input with no satisfiable outcome (empty eligible set,
  nothing to claim, unknown distribution).
- CollaboratorFailure: oracle or ledger unreachable; retryable by the caller.
- InternalError: persistence failure; message is opaque, cause is logged.
"""

from __future__ import annotations


class TokenSaleError(Exception):
    """Base class for every error the services raise on purpose."""

    code = "error"
    status_code = 500
    retryable = False

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, object]:
        return {"success": False, "error": self.message, "code": self.code}


class ValidationError(TokenSaleError):
    code = "validation_error"
    status_code = 400


class DomainError(TokenSaleError):
    code = "domain_error"
    status_code = 422


class NotFoundError(DomainError):
    code = "not_found"
    status_code = 404


class CollaboratorFailure(TokenSaleError):
    code = "collaborator_unavailable"
    status_code = 503
    retryable = True


class InternalError(TokenSaleError):
    code = "internal_error"
    status_code = 500

    def __init__(self, message: str = "Internal error", *, code: str | None = None) -> None:
        super().__init__(message, code=code)
