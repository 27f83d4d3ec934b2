"""Heuristic advisories derived from current vs. previous month figures.

Rules are plain data: an ordered tuple of :class:`InsightRule` groups. Each
group holds alternative :class:`InsightTemplate` entries and emits at most
one insight, the first whose predicate matches. Groups are evaluated in
order and every group that matches contributes to the result, so the output
order is the rule order.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Callable, Optional, Sequence

from aggregation import ZERO

ONE_PLACE = Decimal("0.1")


class InsightKind(str, Enum):
    info = "info"
    caution = "caution"
    warning = "warning"
    success = "success"


class InsightPriority(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


@dataclass(frozen=True)
class Insight:
    kind: InsightKind
    title: str
    message: str
    priority: InsightPriority

    def to_dict(self) -> dict[str, str]:
        return {
            "kind": self.kind.value,
            "title": self.title,
            "message": self.message,
            "priority": self.priority.value,
        }


@dataclass(frozen=True)
class TopCategory:
    category: str
    total: Decimal


@dataclass(frozen=True)
class InsightInput:
    current_income: Decimal
    current_expenses: Decimal
    previous_income: Decimal
    previous_expenses: Decimal
    monthly_budget: Decimal
    top_category: Optional[TopCategory] = None


def percent_change(current: Decimal, previous: Decimal) -> Decimal:
    if previous <= 0:
        return ZERO
    return (Decimal(current) - Decimal(previous)) / Decimal(previous) * 100


def budget_usage(expenses: Decimal, budget: Decimal) -> Decimal:
    if budget <= 0:
        return ZERO
    return Decimal(expenses) / Decimal(budget) * 100


def format_percent(value: Decimal) -> str:
    return str(Decimal(value).quantize(ONE_PLACE, rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class InsightMetrics:
    budget_usage: Optional[Decimal]
    expense_change: Decimal
    income_change: Decimal
    top_category: Optional[str]
    top_category_share: Optional[Decimal]

    @classmethod
    def from_input(cls, data: InsightInput) -> "InsightMetrics":
        usage = None
        if data.monthly_budget > 0:
            usage = budget_usage(data.current_expenses, data.monthly_budget)
        share = None
        category = None
        if data.top_category is not None and data.current_expenses > 0:
            category = data.top_category.category
            share = Decimal(data.top_category.total) / data.current_expenses * 100
        return cls(
            budget_usage=usage,
            expense_change=percent_change(
                data.current_expenses, data.previous_expenses
            ),
            income_change=percent_change(data.current_income, data.previous_income),
            top_category=category,
            top_category_share=share,
        )

    def message_values(self) -> dict[str, str]:
        values = {
            "expense_change": format_percent(self.expense_change),
            "expense_change_abs": format_percent(abs(self.expense_change)),
            "income_change": format_percent(self.income_change),
        }
        if self.budget_usage is not None:
            values["budget_usage"] = format_percent(self.budget_usage)
        if self.top_category_share is not None:
            values["category"] = self.top_category or ""
            values["category_share"] = format_percent(self.top_category_share)
        return values


@dataclass(frozen=True)
class InsightTemplate:
    when: Callable[[InsightMetrics], bool]
    kind: InsightKind
    priority: InsightPriority
    title: str
    message: str

    def render(self, metrics: InsightMetrics) -> Insight:
        return Insight(
            kind=self.kind,
            title=self.title,
            message=self.message.format(**metrics.message_values()),
            priority=self.priority,
        )


@dataclass(frozen=True)
class InsightRule:
    name: str
    templates: tuple[InsightTemplate, ...]

    def evaluate(self, metrics: InsightMetrics) -> Optional[Insight]:
        for template in self.templates:
            if template.when(metrics):
                return template.render(metrics)
        return None


def _usage_above(threshold: int) -> Callable[[InsightMetrics], bool]:
    return lambda m: m.budget_usage is not None and m.budget_usage > threshold


DEFAULT_RULES: tuple[InsightRule, ...] = (
    InsightRule(
        "budget",
        (
            InsightTemplate(
                when=_usage_above(90),
                kind=InsightKind.warning,
                priority=InsightPriority.high,
                title="Budget Alert",
                message=(
                    "You've used {budget_usage}% of your monthly budget. "
                    "Consider reducing expenses."
                ),
            ),
            InsightTemplate(
                when=_usage_above(75),
                kind=InsightKind.caution,
                priority=InsightPriority.medium,
                title="Budget Watch",
                message=(
                    "You've used {budget_usage}% of your monthly budget. "
                    "Monitor your spending."
                ),
            ),
        ),
    ),
    InsightRule(
        "expense_change",
        (
            InsightTemplate(
                when=lambda m: m.expense_change > 20,
                kind=InsightKind.warning,
                priority=InsightPriority.medium,
                title="Spending Increase",
                message=(
                    "Your expenses increased by {expense_change}% "
                    "compared to last month."
                ),
            ),
            InsightTemplate(
                when=lambda m: m.expense_change < -10,
                kind=InsightKind.success,
                priority=InsightPriority.low,
                title="Great Savings",
                message=(
                    "You reduced expenses by {expense_change_abs}% "
                    "compared to last month!"
                ),
            ),
        ),
    ),
    InsightRule(
        "income_change",
        (
            InsightTemplate(
                when=lambda m: m.income_change > 15,
                kind=InsightKind.success,
                priority=InsightPriority.low,
                title="Income Growth",
                message=(
                    "Your income increased by {income_change}% "
                    "compared to last month!"
                ),
            ),
        ),
    ),
    InsightRule(
        "top_category",
        (
            InsightTemplate(
                when=lambda m: m.top_category_share is not None,
                kind=InsightKind.info,
                priority=InsightPriority.low,
                title="Top Expense Category",
                message=(
                    "{category} accounts for {category_share}% "
                    "of your expenses this month."
                ),
            ),
        ),
    ),
)


class InsightGenerator:
    def __init__(self, rules: Sequence[InsightRule] = DEFAULT_RULES) -> None:
        self.rules = tuple(rules)

    def generate(self, data: InsightInput) -> list[Insight]:
        metrics = InsightMetrics.from_input(data)
        insights: list[Insight] = []
        for rule in self.rules:
            insight = rule.evaluate(metrics)
            if insight is not None:
                insights.append(insight)
        return insights
