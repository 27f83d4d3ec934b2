from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from aggregation import ZERO, category_breakdown, round2, totals_by_type
from auth import hash_password, verify_password
from insights import (
    InsightGenerator,
    InsightInput,
    TopCategory,
    budget_usage,
    percent_change,
)
from models import (
    ExpenseCategory,
    IncomeCategory,
    PaymentMethod,
    RecurringFrequency,
    Transaction,
    TransactionType,
    User,
    amount_to_cents,
    cents_to_amount,
    parse_category,
)
from periods import (
    PERIOD_SLUGS,
    Period,
    current_month_range,
    local_now,
    previous_month_range,
    resolve_period,
    trend_window,
)
from schemas import PasswordChangeIn, ProfileUpdateIn, TransactionIn, UserRegisterIn
from trends import DEFAULT_TREND_MONTHS, build_monthly_trends, validate_months

logger = logging.getLogger(__name__)


class NotFoundError(ValueError):
    pass


class ValidationFailure(ValueError):
    pass


class UnauthorizedError(PermissionError):
    pass


class InvalidCredentials(UnauthorizedError):
    pass


@dataclass
class TransactionFilters:
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    payment_method: Optional[PaymentMethod] = None
    tag: Optional[str] = None
    query: Optional[str] = None

    @classmethod
    def for_period(cls, period: Period, **kwargs) -> "TransactionFilters":
        return cls(start=period.start, end=period.end, **kwargs)


class TransactionStore:
    """SQL-backed transaction queries, always scoped to a single user."""

    def __init__(self, session: Session) -> None:
        self.session = session

    @staticmethod
    def _apply_filters(stmt, user_id: int, filters: Optional[TransactionFilters]):
        stmt = stmt.where(Transaction.user_id == user_id)
        if filters is None:
            return stmt
        if filters.type:
            stmt = stmt.where(Transaction.type == filters.type)
        if filters.category:
            stmt = stmt.where(Transaction.category == filters.category)
        if filters.start is not None:
            stmt = stmt.where(Transaction.date >= filters.start)
        if filters.end is not None:
            stmt = stmt.where(Transaction.date <= filters.end)
        if filters.payment_method:
            stmt = stmt.where(Transaction.payment_method == filters.payment_method)
        if filters.tag:
            stmt = stmt.where(
                Transaction.tags_json.contains(json.dumps(filters.tag), autoescape=True)
            )
        if filters.query:
            stmt = stmt.where(
                func.lower(Transaction.description).contains(
                    filters.query.lower(), autoescape=True
                )
            )
        return stmt

    def query(
        self,
        user_id: int,
        filters: Optional[TransactionFilters] = None,
        *,
        order_by: str = "date",
        descending: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> list[Transaction]:
        column = Transaction.amount_cents if order_by == "amount" else Transaction.date
        if descending:
            ordering = (column.desc(), Transaction.id.desc())
        else:
            ordering = (column.asc(), Transaction.id.asc())
        stmt = self._apply_filters(select(Transaction), user_id, filters)
        stmt = stmt.order_by(*ordering).offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.scalars(stmt).all())

    def count(self, user_id: int, filters: Optional[TransactionFilters] = None) -> int:
        stmt = self._apply_filters(select(func.count(Transaction.id)), user_id, filters)
        return int(self.session.execute(stmt).scalar_one() or 0)

    def sum_amount(
        self, user_id: int, filters: Optional[TransactionFilters] = None
    ) -> Decimal:
        stmt = self._apply_filters(
            select(func.coalesce(func.sum(Transaction.amount_cents), 0)),
            user_id,
            filters,
        )
        return cents_to_amount(int(self.session.execute(stmt).scalar_one() or 0))

    def get(self, user_id: int, transaction_id: int) -> Transaction:
        txn = self.session.get(Transaction, transaction_id)
        if txn is None:
            raise NotFoundError("Transaction not found")
        if txn.user_id != user_id:
            raise UnauthorizedError("Not authorized to access this transaction")
        return txn


class UserService:
    def __init__(self, session: Session) -> None:
        self.session = session

    def get_by_id(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def get_by_email(self, email: str) -> Optional[User]:
        stmt = select(User).where(func.lower(User.email) == email.strip().lower())
        return self.session.scalar(stmt)

    def register(self, data: UserRegisterIn) -> User:
        if self.get_by_email(data.email):
            raise ValidationFailure("User already exists with this email")
        user = User(
            name=data.name,
            email=data.email.strip().lower(),
            password_hash=hash_password(data.password),
            student_id=data.student_id,
            university=data.university,
            monthly_budget_cents=amount_to_cents(data.monthly_budget),
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise ValidationFailure("User already exists with this email") from exc
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def authenticate(self, email: str, password: str) -> User:
        user = self.get_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            raise InvalidCredentials("Invalid email or password")
        if not user.is_active:
            raise InvalidCredentials("Account is deactivated")
        user.last_login = datetime.utcnow()
        self.session.commit()
        return user

    def update_profile(self, user_id: int, data: ProfileUpdateIn) -> User:
        user = self.get_by_id(user_id)
        if data.name:
            user.name = data.name.strip()
        if data.student_id:
            user.student_id = data.student_id.strip()
        if data.university:
            user.university = data.university.strip()
        if data.monthly_budget is not None:
            user.monthly_budget_cents = amount_to_cents(data.monthly_budget)
        self.session.commit()
        self.session.refresh(user)
        return user

    def change_password(self, user_id: int, data: PasswordChangeIn) -> None:
        user = self.get_by_id(user_id)
        if not verify_password(data.current_password, user.password_hash):
            raise ValidationFailure("Current password is incorrect")
        user.password_hash = hash_password(data.new_password)
        self.session.commit()
        logger.info(f"password_changed: user_id={user_id}")


@dataclass
class TransactionPage:
    items: list[Transaction]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.total else 0

    def pagination(self) -> dict[str, object]:
        return {
            "current_page": self.page,
            "total_pages": self.total_pages,
            "total_items": self.total,
            "items_per_page": self.limit,
            "has_next": self.page < self.total_pages,
            "has_prev": self.page > 1,
        }


class TransactionService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id
        self.store = TransactionStore(session)

    @staticmethod
    def _check(data: TransactionIn) -> str:
        if data.amount <= 0:
            raise ValidationFailure("Amount must be greater than 0")
        try:
            category = parse_category(data.type, data.category)
        except ValueError as exc:
            raise ValidationFailure(str(exc)) from exc
        if data.is_recurring != (data.recurring_frequency is not None):
            raise ValidationFailure(
                "Recurring frequency is required for recurring transactions only"
            )
        return category.value

    def _apply(self, txn: Transaction, data: TransactionIn) -> None:
        txn.category = self._check(data)
        txn.type = data.type
        txn.amount_cents = amount_to_cents(data.amount)
        txn.description = data.description
        if data.date is not None:
            txn.date = data.date
        txn.payment_method = data.payment_method
        txn.tags = data.tags
        txn.is_recurring = data.is_recurring
        txn.recurring_frequency = data.recurring_frequency

    def create(self, data: TransactionIn) -> Transaction:
        txn = Transaction(user_id=self.user_id, date=data.date or local_now())
        self._apply(txn, data)
        self.session.add(txn)
        self.session.commit()
        self.session.refresh(txn)
        logger.info(
            f"transaction_created: user_id={self.user_id} id={txn.id} type={txn.type.value}"
        )
        return txn

    def get(self, transaction_id: int) -> Transaction:
        return self.store.get(self.user_id, transaction_id)

    def update(self, transaction_id: int, data: TransactionIn) -> Transaction:
        txn = self.store.get(self.user_id, transaction_id)
        self._apply(txn, data)
        self.session.commit()
        self.session.refresh(txn)
        return txn

    def delete(self, transaction_id: int) -> None:
        txn = self.store.get(self.user_id, transaction_id)
        self.session.delete(txn)
        self.session.commit()
        logger.info(f"transaction_deleted: user_id={self.user_id} id={transaction_id}")

    def bulk_delete(self, transaction_ids: Sequence[int]) -> int:
        result = self.session.execute(
            delete(Transaction).where(
                Transaction.user_id == self.user_id,
                Transaction.id.in_(list(transaction_ids)),
            )
        )
        self.session.commit()
        deleted = int(result.rowcount or 0)
        logger.info(
            f"transactions_bulk_deleted: user_id={self.user_id} requested={len(transaction_ids)} deleted={deleted}"
        )
        return deleted

    def list(
        self,
        filters: Optional[TransactionFilters] = None,
        *,
        page: int = 1,
        limit: int = 10,
        sort_by: str = "date",
        sort_order: str = "desc",
    ) -> TransactionPage:
        page = max(page, 1)
        limit = min(max(limit, 1), 100)
        items = self.store.query(
            self.user_id,
            filters,
            order_by=sort_by,
            descending=sort_order != "asc",
            limit=limit,
            offset=(page - 1) * limit,
        )
        total = self.store.count(self.user_id, filters)
        return TransactionPage(items=items, page=page, limit=limit, total=total)

    @staticmethod
    def categories() -> dict[str, list[str]]:
        return {
            "income": [c.value for c in IncomeCategory],
            "expense": [c.value for c in ExpenseCategory],
            "payment_methods": [m.value for m in PaymentMethod],
            "recurring_frequencies": [f.value for f in RecurringFrequency],
        }


def budget_status(expenses: Decimal, budget: Decimal) -> dict[str, Decimal]:
    return {
        "budget": budget,
        "used": expenses,
        "remaining": max(ZERO, budget - expenses),
        "percentage": round2(budget_usage(expenses, budget)),
    }


class DashboardService:
    RECENT_LIMIT = 10
    TOP_CATEGORY_LIMIT = 5

    def __init__(
        self,
        session: Session,
        user_id: int,
        *,
        now: Optional[datetime] = None,
        insight_generator: Optional[InsightGenerator] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.now = now or local_now()
        self.store = TransactionStore(session)
        self.users = UserService(session)
        self.insight_generator = insight_generator or InsightGenerator()

    def _month_transactions(self, period: Period) -> list[Transaction]:
        return self.store.query(self.user_id, TransactionFilters.for_period(period))

    def overview(self) -> dict[str, object]:
        user = self.users.get_by_id(self.user_id)
        month = current_month_range(self.now)

        total_income = self.store.sum_amount(
            self.user_id, TransactionFilters(type=TransactionType.income)
        )
        total_expenses = self.store.sum_amount(
            self.user_id, TransactionFilters(type=TransactionType.expense)
        )
        monthly = totals_by_type(self._month_transactions(month))
        monthly_income = monthly[TransactionType.income]
        monthly_expenses = monthly[TransactionType.expense]
        transaction_count = self.store.count(self.user_id)
        recent = self.store.query(
            self.user_id, descending=True, limit=self.RECENT_LIMIT
        )
        budget = budget_status(monthly_expenses, user.monthly_budget)

        logger.info(
            f"dashboard_overview: user_id={self.user_id} transactions={transaction_count}"
        )
        return {
            "overview": {
                "total_income": total_income,
                "total_expenses": total_expenses,
                "total_balance": total_income - total_expenses,
                "monthly_income": monthly_income,
                "monthly_expenses": monthly_expenses,
                "monthly_balance": monthly_income - monthly_expenses,
                "transaction_count": transaction_count,
                "budget_used": budget["percentage"],
                "budget_remaining": budget["remaining"],
                "monthly_budget": user.monthly_budget,
            },
            "recent_transactions": [t.to_dict() for t in recent],
            "user": user.to_dict(),
            "period": {
                "month": self.now.month,
                "year": self.now.year,
                "start": month.start.isoformat(),
                "end": month.end.isoformat(),
            },
        }

    def expense_breakdown(self, period: str = "month") -> dict[str, object]:
        window = resolve_period(period, now=self.now)
        expenses = self.store.query(
            self.user_id,
            TransactionFilters.for_period(window, type=TransactionType.expense),
        )
        breakdown = category_breakdown(expenses)
        total = sum((item.total_amount for item in breakdown), ZERO)
        return {
            "breakdown": [item.to_dict() for item in breakdown],
            "total_expenses": total,
            "period": period if period in PERIOD_SLUGS else "all",
        }

    def monthly_trends(self, months: int = DEFAULT_TREND_MONTHS) -> dict[str, object]:
        months = validate_months(months)
        window = trend_window(months, self.now)
        trends = build_monthly_trends(
            self.store.query(self.user_id, TransactionFilters.for_period(window))
        )
        return {
            "trends": [t.to_dict() for t in trends],
            "period": f"{months} months",
        }

    def insights(self) -> dict[str, object]:
        user = self.users.get_by_id(self.user_id)
        current_txns = self._month_transactions(current_month_range(self.now))
        previous_txns = self._month_transactions(previous_month_range(self.now))

        current = totals_by_type(current_txns)
        previous = totals_by_type(previous_txns)
        current_income = current[TransactionType.income]
        current_expenses = current[TransactionType.expense]
        previous_income = previous[TransactionType.income]
        previous_expenses = previous[TransactionType.expense]

        top = category_breakdown(current_txns)[: self.TOP_CATEGORY_LIMIT]
        top_category = TopCategory(top[0].category, top[0].total_amount) if top else None

        insights = self.insight_generator.generate(
            InsightInput(
                current_income=current_income,
                current_expenses=current_expenses,
                previous_income=previous_income,
                previous_expenses=previous_expenses,
                monthly_budget=user.monthly_budget,
                top_category=top_category,
            )
        )
        return {
            "current_month": {
                "income": current_income,
                "expenses": current_expenses,
                "balance": current_income - current_expenses,
            },
            "previous_month": {
                "income": previous_income,
                "expenses": previous_expenses,
                "balance": previous_income - previous_expenses,
            },
            "changes": {
                "income": round2(percent_change(current_income, previous_income)),
                "expenses": round2(percent_change(current_expenses, previous_expenses)),
            },
            "top_expense_categories": [
                {
                    "category": item.category,
                    "total": item.total_amount,
                    "count": item.transaction_count,
                }
                for item in top
            ],
            "insights": [insight.to_dict() for insight in insights],
            "budget_status": (
                budget_status(current_expenses, user.monthly_budget)
                if user.monthly_budget > 0
                else None
            ),
        }
