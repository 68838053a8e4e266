"""Per-booking ledger totals shown on the validation queue."""
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from tour_finance.models.enums import Direction
from tour_finance.models.orm_models import BookingFinanceItem

ZERO = Decimal("0")


@dataclass(frozen=True)
class FinanceSummary:
    """
    expense / income     non-commission items by direction
    commission_in / out  commission items by direction
    net                  expense + commission_out - income - commission_in
    """
    expense: Decimal = ZERO
    income: Decimal = ZERO
    commission_in: Decimal = ZERO
    commission_out: Decimal = ZERO

    @property
    def net(self) -> Decimal:
        return self.expense + self.commission_out - self.income - self.commission_in

    def as_dict(self) -> dict:
        return {
            "expense": self.expense,
            "income": self.income,
            "commission_in": self.commission_in,
            "commission_out": self.commission_out,
            "net": self.net,
        }


def summarize_items(items: Iterable[BookingFinanceItem]) -> FinanceSummary:
    expense = income = commission_in = commission_out = ZERO
    for item in items:
        amount = Decimal(item.amount or 0)
        is_income = Direction(item.direction) is Direction.INCOME
        if item.is_commission:
            if is_income:
                commission_in += amount
            else:
                commission_out += amount
        elif is_income:
            income += amount
        else:
            expense += amount
    return FinanceSummary(expense, income, commission_in, commission_out)
