"""
Pro-rata dividend calculator.

share_percentage = balance / total_tokens * 100
dividend_amount  = total_amount * balance / total_tokens

Amounts are truncated to 18 fractional digits; the truncation residual goes
to the first holder in presentation order (already the largest amount, so the
order holds) and the entries sum to total_amount exactly. Presentation order
is dividend_amount descending, address ascending.
"""

from __future__ import annotations

from decimal import ROUND_DOWN, ROUND_HALF_EVEN, Decimal, localcontext
from typing import Protocol, Sequence

from backend_tokensale.core.exceptions import DomainError, ValidationError
from backend_tokensale.core.validation import require_positive, trim_decimal
from backend_tokensale.dividends.models import DividendShare

AMOUNT_QUANTUM = Decimal(1).scaleb(-18)
SHARE_QUANTUM = Decimal(1).scaleb(-10)

# Wide enough that total_amount * balance never rounds before quantize
_WORK_PRECISION = 80


class _Holder(Protocol):
    address: str
    balance: Decimal


def calculate_dividends(total_amount: Decimal | int | str, holders: Sequence[_Holder]) -> list[DividendShare]:
    """
    Split total_amount across holders in proportion to balance.

    Raises ValidationError for a non-positive amount, a non-positive balance or
    a repeated address; DomainError when holders is empty.
    """
    total_amount = require_positive(total_amount, "total_amount")
    if not holders:
        raise DomainError("no eligible holders", code="no_eligible_holders")

    seen: set[str] = set()
    for h in holders:
        if h.balance <= 0:
            raise ValidationError(f"holder balance must be positive: {h.address}", code="non_positive_balance")
        if h.address in seen:
            raise ValidationError(f"duplicate holder address: {h.address}", code="duplicate_holder")
        seen.add(h.address)

    ordered = sorted(holders, key=lambda h: (-h.balance, h.address))

    with localcontext() as ctx:
        ctx.prec = _WORK_PRECISION
        total_tokens = sum((h.balance for h in ordered), Decimal("0"))
        amounts = [
            (total_amount * h.balance / total_tokens).quantize(AMOUNT_QUANTUM, rounding=ROUND_DOWN)
            for h in ordered
        ]
        amounts[0] += total_amount - sum(amounts, Decimal("0"))
        shares = [
            (h.balance / total_tokens * 100).quantize(SHARE_QUANTUM, rounding=ROUND_HALF_EVEN)
            for h in ordered
        ]
        return [
            DividendShare(
                address=h.address,
                balance=h.balance,
                share_percentage=trim_decimal(share),
                dividend_amount=trim_decimal(amount),
            )
            for h, share, amount in zip(ordered, shares, amounts)
        ]


def amount_per_token(total_amount: Decimal, total_tokens: Decimal) -> Decimal:
    if total_tokens <= 0:
        return Decimal("0")
    with localcontext() as ctx:
        ctx.prec = _WORK_PRECISION
        return trim_decimal((total_amount / total_tokens).quantize(AMOUNT_QUANTUM, rounding=ROUND_DOWN))
