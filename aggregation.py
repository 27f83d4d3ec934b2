from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Hashable, Iterable, Sequence

from models import Transaction, TransactionType

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0")


def round2(value: Decimal) -> Decimal:
    return Decimal(value).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class AggregateBucket:
    key: Hashable
    total_amount: Decimal
    count: int
    average_amount: Decimal


def by_type(txn: Transaction) -> TransactionType:
    return txn.type


def by_category(txn: Transaction) -> str:
    return txn.category


def by_year_month_type(txn: Transaction) -> tuple[int, int, TransactionType]:
    return (txn.date.year, txn.date.month, txn.type)


def aggregate(
    transactions: Iterable[Transaction], key: Callable[[Transaction], Hashable]
) -> list[AggregateBucket]:
    """Group ``transactions`` by ``key`` and sum/count each group.

    Buckets come back in order of each key's first occurrence.
    """
    totals: dict[Hashable, Decimal] = {}
    counts: dict[Hashable, int] = {}
    for txn in transactions:
        k = key(txn)
        totals[k] = totals.get(k, ZERO) + txn.amount
        counts[k] = counts.get(k, 0) + 1
    return [
        AggregateBucket(
            key=k,
            total_amount=total,
            count=counts[k],
            average_amount=round2(total / counts[k]),
        )
        for k, total in totals.items()
    ]


def sort_by_total(buckets: Iterable[AggregateBucket]) -> list[AggregateBucket]:
    return sorted(buckets, key=lambda b: b.total_amount, reverse=True)


def grand_total(buckets: Iterable[AggregateBucket]) -> Decimal:
    return sum((b.total_amount for b in buckets), ZERO)


def percentage_of_total(amount: Decimal, total: Decimal) -> Decimal:
    if not total:
        return round2(ZERO)
    return round2(Decimal(amount) / Decimal(total) * 100)


def totals_by_type(transactions: Iterable[Transaction]) -> dict[TransactionType, Decimal]:
    totals = {TransactionType.income: ZERO, TransactionType.expense: ZERO}
    for bucket in aggregate(transactions, by_type):
        totals[bucket.key] = bucket.total_amount
    return totals


@dataclass(frozen=True)
class BreakdownItem:
    category: str
    total_amount: Decimal
    transaction_count: int
    average_amount: Decimal
    percentage: Decimal

    def to_dict(self) -> dict[str, object]:
        return {
            "category": self.category,
            "total_amount": self.total_amount,
            "transaction_count": self.transaction_count,
            "average_amount": self.average_amount,
            "percentage": self.percentage,
        }


def category_breakdown(transactions: Sequence[Transaction]) -> list[BreakdownItem]:
    expenses = [t for t in transactions if t.type == TransactionType.expense]
    buckets = sort_by_total(aggregate(expenses, by_category))
    total = grand_total(buckets)
    return [
        BreakdownItem(
            category=b.key,
            total_amount=b.total_amount,
            transaction_count=b.count,
            average_amount=b.average_amount,
            percentage=percentage_of_total(b.total_amount, total),
        )
        for b in buckets
    ]
