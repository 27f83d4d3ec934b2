from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable

from aggregation import ZERO, aggregate, by_year_month_type
from models import Transaction, TransactionType

MONTH_NAMES = (
    "Jan",
    "Feb",
    "Mar",
    "Apr",
    "May",
    "Jun",
    "Jul",
    "Aug",
    "Sep",
    "Oct",
    "Nov",
    "Dec",
)

DEFAULT_TREND_MONTHS = 6
MIN_TREND_MONTHS = 1
MAX_TREND_MONTHS = 24


def validate_months(months: int) -> int:
    if not MIN_TREND_MONTHS <= months <= MAX_TREND_MONTHS:
        raise ValueError(
            f"Months must be between {MIN_TREND_MONTHS} and {MAX_TREND_MONTHS}"
        )
    return months


@dataclass(frozen=True)
class MonthlyTrend:
    year: int
    month: int
    income: Decimal = ZERO
    expense: Decimal = ZERO
    income_count: int = 0
    expense_count: int = 0

    @property
    def month_name(self) -> str:
        return MONTH_NAMES[self.month - 1]

    @property
    def net(self) -> Decimal:
        return self.income - self.expense

    @property
    def total_transactions(self) -> int:
        return self.income_count + self.expense_count

    def to_dict(self) -> dict[str, object]:
        return {
            "year": self.year,
            "month": self.month,
            "month_name": self.month_name,
            "income": self.income,
            "expense": self.expense,
            "income_count": self.income_count,
            "expense_count": self.expense_count,
            "net": self.net,
            "total_transactions": self.total_transactions,
        }


def build_monthly_trends(transactions: Iterable[Transaction]) -> list[MonthlyTrend]:
    """Per-month income/expense series, ascending by (year, month).

    Only months with at least one transaction appear; gaps are not filled.
    """
    months: dict[tuple[int, int], MonthlyTrend] = {}
    for bucket in aggregate(transactions, by_year_month_type):
        year, month, txn_type = bucket.key
        current = months.get((year, month), MonthlyTrend(year=year, month=month))
        if txn_type == TransactionType.income:
            current = replace(
                current, income=bucket.total_amount, income_count=bucket.count
            )
        else:
            current = replace(
                current, expense=bucket.total_amount, expense_count=bucket.count
            )
        months[(year, month)] = current
    return [months[key] for key in sorted(months)]
