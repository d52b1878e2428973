"""
Input validation at component boundaries.

Addresses are 20-byte hex identities normalized to lowercase; amounts are
parsed into Decimal. Every helper raises ValidationError with the field name.
"""

from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation, localcontext
from typing import Any

from backend_tokensale.core.exceptions import ValidationError

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")

MAX_PAGE_LIMIT = 100


def normalize_address(address: Any, field: str = "wallet_address") -> str:
    """Return the lowercase form of a 0x-prefixed 40-hex-digit address."""
    if not isinstance(address, str) or not address.strip():
        raise ValidationError(f"{field} is required", code="missing_address")
    address = address.strip()
    if not _ADDRESS_RE.match(address):
        raise ValidationError(f"{field} is not a valid address: {address[:16]}", code="invalid_address")
    return address.lower()


def to_decimal(value: Any, field: str) -> Decimal:
    """Parse int, str, float or Decimal into a finite Decimal. Floats go through str() to keep their printed value."""
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required", code="invalid_amount")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation as e:
            raise ValidationError(f"{field} must be a number", code="invalid_amount") from e
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        raise ValidationError(f"{field} must be a number", code="invalid_amount")
    if not result.is_finite():
        raise ValidationError(f"{field} must be finite", code="invalid_amount")
    return result


def require_positive(value: Any, field: str) -> Decimal:
    amount = to_decimal(value, field)
    if amount <= 0:
        raise ValidationError(f"{field} must be greater than zero", code="non_positive_amount")
    return amount


def require_non_negative(value: Any, field: str) -> Decimal:
    amount = to_decimal(value, field)
    if amount < 0:
        raise ValidationError(f"{field} must not be negative", code="negative_amount")
    return amount


def validate_pagination(page: Any, limit: Any, *, max_limit: int = MAX_PAGE_LIMIT) -> tuple[int, int]:
    """Return (page, limit) as ints; page >= 1 and 1 <= limit <= max_limit."""
    try:
        page_i = int(page)
        limit_i = int(limit)
    except (TypeError, ValueError) as e:
        raise ValidationError("page and limit must be integers", code="invalid_pagination") from e
    if page_i < 1:
        raise ValidationError("page must be >= 1", code="invalid_pagination")
    if not (1 <= limit_i <= max_limit):
        raise ValidationError(f"limit must be between 1 and {max_limit}", code="invalid_pagination")
    return page_i, limit_i


def pagination_block(page: int, limit: int, total: int) -> dict[str, Any]:
    total_pages = (total + limit - 1) // limit
    return {
        "current_page": page,
        "total_pages": total_pages,
        "total_items": total,
        "has_next": page < total_pages,
        "has_prev": page > 1,
    }


def trim_decimal(value: Decimal) -> Decimal:
    """Drop trailing fractional zeros without switching to exponent notation (10000, not 1E+4)."""
    with localcontext() as ctx:
        ctx.prec = 80
        normalized = value.normalize()
        if normalized.as_tuple().exponent > 0:
            return normalized.quantize(Decimal(1))
        return normalized
