"""
ICO phase definitions and purchase pricing.

base  = amount_paid / token_price
bonus = base * bonus_percentage / 100
total = base + bonus
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from decimal import ROUND_DOWN, ROUND_HALF_UP, Decimal, localcontext
from typing import Any

from backend_tokensale.core.timeutils import iso
from backend_tokensale.core.validation import trim_decimal
from backend_tokensale.database import IcoPhaseRow

TOKEN_QUANTUM = Decimal(1).scaleb(-18)
PROGRESS_QUANTUM = Decimal("0.01")


def _utc(year: int, month: int, day: int) -> int:
    return calendar.timegm((year, month, day, 0, 0, 0))


@dataclass(frozen=True)
class IcoPhase:
    phase: int
    name: str
    description: str
    token_price: Decimal
    total_tokens: Decimal
    bonus_percentage: Decimal
    min_purchase: Decimal
    max_purchase: Decimal
    start_date: int
    end_date: int
    tokens_sold: Decimal = Decimal("0")
    total_raised: Decimal = Decimal("0")
    is_active: bool = False
    is_completed: bool = False

    @property
    def remaining_tokens(self) -> Decimal:
        return max(self.total_tokens - self.tokens_sold, Decimal("0"))

    @property
    def progress(self) -> Decimal:
        """Percent of the phase supply sold, rounded to 2 decimals."""
        if self.total_tokens <= 0:
            return Decimal("0")
        return (self.tokens_sold / self.total_tokens * 100).quantize(PROGRESS_QUANTUM, rounding=ROUND_HALF_UP)

    @property
    def is_open(self) -> bool:
        return self.is_active and not self.is_completed

    @classmethod
    def from_row(cls, row: IcoPhaseRow) -> "IcoPhase":
        return cls(
            phase=row.phase,
            name=row.name,
            description=row.description or "",
            token_price=Decimal(row.token_price),
            total_tokens=Decimal(row.total_tokens),
            bonus_percentage=Decimal(row.bonus_percentage),
            min_purchase=Decimal(row.min_purchase),
            max_purchase=Decimal(row.max_purchase),
            start_date=row.start_date,
            end_date=row.end_date,
            tokens_sold=Decimal(row.tokens_sold),
            total_raised=Decimal(row.total_raised),
            is_active=bool(row.is_active),
            is_completed=bool(row.is_completed),
        )

    def to_row(self) -> IcoPhaseRow:
        return IcoPhaseRow(
            phase=self.phase,
            name=self.name,
            description=self.description,
            token_price=str(self.token_price),
            total_tokens=str(self.total_tokens),
            tokens_sold=str(self.tokens_sold),
            total_raised=str(self.total_raised),
            bonus_percentage=str(self.bonus_percentage),
            min_purchase=str(self.min_purchase),
            max_purchase=str(self.max_purchase),
            start_date=self.start_date,
            end_date=self.end_date,
            is_active=self.is_active,
            is_completed=self.is_completed,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase,
            "name": self.name,
            "description": self.description,
            "token_price": str(self.token_price),
            "total_tokens": str(self.total_tokens),
            "tokens_sold": str(self.tokens_sold),
            "total_raised": str(self.total_raised),
            "remaining_tokens": str(self.remaining_tokens),
            "bonus_percentage": str(self.bonus_percentage),
            "min_purchase": str(self.min_purchase),
            "max_purchase": str(self.max_purchase),
            "start_date": iso(self.start_date),
            "end_date": iso(self.end_date),
            "is_active": self.is_active,
            "is_completed": self.is_completed,
            "progress": str(self.progress),
        }


# 8 %, 20 % and 10 % of the 21M supply
DEFAULT_PHASES: tuple[IcoPhase, ...] = (
    IcoPhase(
        phase=1,
        name="Phase 1 - Early Bird",
        description="First sale phase with the largest discount",
        token_price=Decimal("0.01"),
        total_tokens=Decimal("1680000"),
        bonus_percentage=Decimal("20"),
        min_purchase=Decimal("0.01"),
        max_purchase=Decimal("1000"),
        start_date=_utc(2024, 1, 1),
        end_date=_utc(2024, 6, 30),
        is_active=True,
    ),
    IcoPhase(
        phase=2,
        name="Phase 2 - Public Sale",
        description="Second phase open to the general public",
        token_price=Decimal("0.05"),
        total_tokens=Decimal("4200000"),
        bonus_percentage=Decimal("10"),
        min_purchase=Decimal("0.01"),
        max_purchase=Decimal("500"),
        start_date=_utc(2024, 7, 1),
        end_date=_utc(2024, 12, 31),
    ),
    IcoPhase(
        phase=3,
        name="Phase 3 - Final Sale",
        description="Final phase after launch",
        token_price=Decimal("1.00"),
        total_tokens=Decimal("2100000"),
        bonus_percentage=Decimal("0"),
        min_purchase=Decimal("0.01"),
        max_purchase=Decimal("100"),
        start_date=_utc(2025, 1, 1),
        end_date=_utc(2025, 6, 30),
    ),
)


@dataclass(frozen=True)
class PurchaseQuote:
    amount_paid: Decimal
    token_price: Decimal
    base_tokens: Decimal
    bonus_tokens: Decimal
    total_tokens: Decimal
    bonus_percentage: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {name: str(getattr(self, name)) for name in self.__dataclass_fields__}


def quote_purchase(phase: IcoPhase, amount_paid: Decimal) -> PurchaseQuote:
    """Token amounts for amount_paid at the phase price and bonus. Amounts truncate to 18 decimals."""
    with localcontext() as ctx:
        ctx.prec = 80
        base = (amount_paid / phase.token_price).quantize(TOKEN_QUANTUM, rounding=ROUND_DOWN)
        bonus = (base * phase.bonus_percentage / 100).quantize(TOKEN_QUANTUM, rounding=ROUND_DOWN)
        return PurchaseQuote(
            amount_paid=trim_decimal(amount_paid),
            token_price=phase.token_price,
            base_tokens=trim_decimal(base),
            bonus_tokens=trim_decimal(bonus),
            total_tokens=trim_decimal(base + bonus),
            bonus_percentage=phase.bonus_percentage,
        )
