import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class TransactionType(str, Enum):
    income = "income"
    expense = "expense"


class IncomeCategory(str, Enum):
    salary = "salary"
    freelance = "freelance"
    allowance = "allowance"
    scholarship = "scholarship"
    part_time = "part-time"
    gift = "gift"
    other_income = "other-income"


class ExpenseCategory(str, Enum):
    food = "food"
    transportation = "transportation"
    education = "education"
    entertainment = "entertainment"
    healthcare = "healthcare"
    shopping = "shopping"
    utilities = "utilities"
    rent = "rent"
    books = "books"
    technology = "technology"
    clothing = "clothing"
    other_expense = "other-expense"


Category = Union[IncomeCategory, ExpenseCategory]

CATEGORIES_BY_TYPE: dict[TransactionType, type[Enum]] = {
    TransactionType.income: IncomeCategory,
    TransactionType.expense: ExpenseCategory,
}


def parse_category(txn_type: TransactionType, value: Union[str, Enum]) -> Category:
    """Build the category variant that belongs to ``txn_type``.

    Raises ``ValueError`` when ``value`` is not a member of that type's
    category set, e.g. ``salary`` on an expense.
    """
    enum_cls = CATEGORIES_BY_TYPE[TransactionType(txn_type)]
    raw = value.value if isinstance(value, Enum) else str(value).strip().lower()
    try:
        return enum_cls(raw)
    except ValueError as exc:
        raise ValueError(
            f"Category '{raw}' is not a valid {TransactionType(txn_type).value} category"
        ) from exc


class PaymentMethod(str, Enum):
    cash = "cash"
    card = "card"
    bank_transfer = "bank-transfer"
    mobile_payment = "mobile-payment"
    other = "other"


class RecurringFrequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


CENTS = Decimal("0.01")


def cents_to_amount(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENTS)


def amount_to_cents(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1")))


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    student_id: Mapped[Optional[str]] = mapped_column(String(20))
    university: Mapped[Optional[str]] = mapped_column(String(100))
    monthly_budget_cents: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_login: Mapped[Optional[datetime]] = mapped_column(DateTime)

    transactions: Mapped[list["Transaction"]] = relationship(
        "Transaction", back_populates="user", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint(
            "monthly_budget_cents >= 0", name="ck_users_monthly_budget_positive"
        ),
    )

    @property
    def monthly_budget(self) -> Decimal:
        return cents_to_amount(self.monthly_budget_cents or 0)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "student_id": self.student_id,
            "university": self.university,
            "monthly_budget": self.monthly_budget,
            "is_active": self.is_active,
            "last_login": self.last_login.isoformat() if self.last_login else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class Transaction(Base, TimestampMixin):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    type: Mapped[TransactionType] = mapped_column(
        SAEnum(TransactionType), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    category: Mapped[str] = mapped_column(String(30), nullable=False)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    date: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    payment_method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(PaymentMethod), default=PaymentMethod.cash, nullable=False
    )
    tags_json: Mapped[Optional[str]] = mapped_column(Text)
    is_recurring: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    recurring_frequency: Mapped[Optional[RecurringFrequency]] = mapped_column(
        SAEnum(RecurringFrequency)
    )

    user: Mapped["User"] = relationship("User", back_populates="transactions")

    __table_args__ = (
        Index("ix_transactions_user_date", "user_id", "date"),
        Index("ix_transactions_user_type", "user_id", "type"),
        Index("ix_transactions_user_category", "user_id", "category"),
        CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
        CheckConstraint(
            "(NOT is_recurring AND recurring_frequency IS NULL)"
            " OR (is_recurring AND recurring_frequency IS NOT NULL)",
            name="ck_transactions_recurring_frequency",
        ),
    )

    @property
    def amount(self) -> Decimal:
        return cents_to_amount(self.amount_cents)

    @property
    def tags(self) -> list[str]:
        if not self.tags_json:
            return []
        return json.loads(self.tags_json)

    @tags.setter
    def tags(self, values: list[str]) -> None:
        self.tags_json = json.dumps(values) if values else None

    @property
    def category_variant(self) -> Category:
        return parse_category(self.type, self.category)

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "type": self.type.value,
            "amount": self.amount,
            "category": self.category,
            "description": self.description,
            "date": self.date.isoformat(),
            "payment_method": self.payment_method.value,
            "tags": self.tags,
            "is_recurring": self.is_recurring,
            "recurring_frequency": (
                self.recurring_frequency.value if self.recurring_frequency else None
            ),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
