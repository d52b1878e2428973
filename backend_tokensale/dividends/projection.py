"""Dividend projection from a wallet balance and an assumed monthly profit."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal, localcontext
from typing import Any

from backend_tokensale.core.exceptions import DomainError, ValidationError
from backend_tokensale.core.validation import require_positive, to_decimal, trim_decimal

DISTRIBUTION_RATE = Decimal("0.6")
AVERAGE_TOKEN_PRICE = Decimal("0.05")
MONTHS_PER_YEAR = 12

_QUANTUM = Decimal(1).scaleb(-18)


@dataclass(frozen=True)
class DividendProjection:
    balance: Decimal
    total_supply: Decimal
    user_share_percentage: Decimal
    monthly_profit: Decimal
    monthly_distribution: Decimal
    projected_monthly_dividend: Decimal
    projected_yearly_dividend: Decimal
    estimated_investment: Decimal
    annual_yield_percentage: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {name: str(getattr(self, name)) for name in self.__dataclass_fields__}


def _q(value: Decimal) -> Decimal:
    return trim_decimal(value.quantize(_QUANTUM, rounding=ROUND_HALF_EVEN))


def project_dividends(
    balance: Decimal,
    total_supply: Decimal,
    monthly_profit: Decimal,
    *,
    distribution_rate: Decimal = DISTRIBUTION_RATE,
    average_token_price: Decimal = AVERAGE_TOKEN_PRICE,
) -> DividendProjection:
    """
    Pure projection: monthly = monthly_profit * rate * balance / total_supply, yearly = monthly * 12,
    annual yield = yearly / (balance * average_token_price) * 100 (0 when that investment is 0).
    """
    monthly_profit = require_positive(monthly_profit, "monthly_profit")
    balance = to_decimal(balance, "balance")
    if balance <= 0:
        raise DomainError("wallet holds no tokens", code="zero_balance")
    total_supply = to_decimal(total_supply, "total_supply")
    if total_supply <= 0:
        raise ValidationError("total_supply must be greater than zero", code="non_positive_amount")

    with localcontext() as ctx:
        ctx.prec = 80
        user_share = balance / total_supply
        monthly_distribution = monthly_profit * distribution_rate
        monthly = monthly_distribution * user_share
        yearly = monthly * MONTHS_PER_YEAR
        investment = balance * average_token_price
        annual_yield = yearly / investment * 100 if investment > 0 else Decimal("0")
        return DividendProjection(
            balance=trim_decimal(balance),
            total_supply=trim_decimal(total_supply),
            user_share_percentage=_q(user_share * 100),
            monthly_profit=trim_decimal(monthly_profit),
            monthly_distribution=_q(monthly_distribution),
            projected_monthly_dividend=_q(monthly),
            projected_yearly_dividend=_q(yearly),
            estimated_investment=_q(investment),
            annual_yield_percentage=_q(annual_yield),
        )
