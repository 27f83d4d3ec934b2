from datetime import datetime
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import (
    ExpenseCategory,
    IncomeCategory,
    PaymentMethod,
    RecurringFrequency,
    TransactionType,
    User,
    parse_category,
)
from schemas import TransactionIn
from services import (
    NotFoundError,
    TransactionFilters,
    TransactionService,
    TransactionStore,
    UnauthorizedError,
    ValidationFailure,
)


def _add_user(session: Session, email: str = "ana@example.com") -> User:
    user = User(name="Ana", email=email, password_hash="x")
    session.add(user)
    session.commit()
    return user


def _expense(amount: str, category: str = "food", day: int = 5, **kwargs) -> TransactionIn:
    return TransactionIn(
        type=TransactionType.expense,
        amount=Decimal(amount),
        category=category,
        description=kwargs.pop("description", "Lunch"),
        date=datetime(2025, 3, day, 12, 0),
        **kwargs,
    )


def test_parse_category_picks_variant_by_type() -> None:
    assert parse_category(TransactionType.income, "salary") is IncomeCategory.salary
    assert parse_category(TransactionType.expense, " Food ") is ExpenseCategory.food
    with pytest.raises(ValueError):
        parse_category(TransactionType.expense, "salary")


def test_income_category_on_expense_is_rejected() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _add_user(session)

        with pytest.raises(ValidationFailure):
            TransactionService(session, user.id).create(_expense("10.00", category="salary"))
        assert TransactionStore(session).count(user.id) == 0


def test_recurring_requires_frequency_and_only_then() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _add_user(session)
        service = TransactionService(session, user.id)

        with pytest.raises(ValidationFailure):
            service.create(_expense("10.00", is_recurring=True))
        with pytest.raises(ValidationFailure):
            service.create(_expense("10.00", recurring_frequency=RecurringFrequency.monthly))

        txn = service.create(
            _expense(
                "10.00", is_recurring=True, recurring_frequency=RecurringFrequency.monthly
            )
        )
        assert txn.recurring_frequency == RecurringFrequency.monthly


def test_amount_must_be_positive_with_two_decimals() -> None:
    with pytest.raises(ValidationError):
        _expense("0")
    with pytest.raises(ValidationError):
        _expense("1.005")


def test_tags_are_trimmed_deduplicated_and_length_checked() -> None:
    data = _expense("5.00", tags=["Dining", "dining", " DINING ", "", "work"])
    assert data.tags == ["Dining", "work"]

    with pytest.raises(ValidationError):
        _expense("5.00", tags=["x" * 21])


def test_create_stores_cents_and_normalized_category() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _add_user(session)
        txn = TransactionService(session, user.id).create(
            _expense("12.50", category="Food", tags=["Dining"])
        )

        assert txn.amount_cents == 1250
        assert txn.amount == Decimal("12.50")
        assert txn.category == "food"
        assert txn.category_variant is ExpenseCategory.food
        assert txn.tags == ["Dining"]
        assert txn.payment_method == PaymentMethod.cash
        assert txn.to_dict()["date"] == "2025-03-05T12:00:00"


def test_oversized_amounts_are_rejected_before_storage() -> None:
    with pytest.raises(ValidationError):
        _expense("100000000000000000000")
    with pytest.raises(ValidationError):
        _expense("10000000000.00")

    data = _expense("9999999999.99")
    assert data.amount == Decimal("9999999999.99")


def test_other_users_transaction_is_unauthorized() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        owner = _add_user(session)
        intruder = _add_user(session, email="bob@example.com")
        txn = TransactionService(session, owner.id).create(_expense("9.99"))

        service = TransactionService(session, intruder.id)
        with pytest.raises(UnauthorizedError):
            service.get(txn.id)
        with pytest.raises(UnauthorizedError):
            service.delete(txn.id)
        with pytest.raises(NotFoundError):
            service.get(txn.id + 100)


def test_update_and_delete() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _add_user(session)
        service = TransactionService(session, user.id)
        txn = service.create(_expense("9.99"))

        updated = service.update(
            txn.id,
            _expense("20.00", category="books", description="Textbook"),
        )
        assert updated.amount == Decimal("20.00")
        assert updated.category == "books"
        assert updated.description == "Textbook"

        service.delete(txn.id)
        with pytest.raises(NotFoundError):
            service.get(txn.id)


def test_bulk_delete_only_removes_own_transactions() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        ana = _add_user(session)
        bob = _add_user(session, email="bob@example.com")
        mine = [TransactionService(session, ana.id).create(_expense("1.00")) for _ in range(3)]
        theirs = TransactionService(session, bob.id).create(_expense("2.00"))

        deleted = TransactionService(session, ana.id).bulk_delete(
            [mine[0].id, mine[1].id, theirs.id]
        )

        assert deleted == 2
        store = TransactionStore(session)
        assert store.count(ana.id) == 1
        assert store.count(bob.id) == 1


def test_list_paginates_and_sorts() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _add_user(session)
        service = TransactionService(session, user.id)
        for day, amount in enumerate(["5.00", "1.00", "3.00", "4.00", "2.00"], start=1):
            service.create(_expense(amount, day=day))

        first = service.list(page=1, limit=2)
        assert [t.date.day for t in first.items] == [5, 4]
        assert first.pagination() == {
            "current_page": 1,
            "total_pages": 3,
            "total_items": 5,
            "items_per_page": 2,
            "has_next": True,
            "has_prev": False,
        }

        last = service.list(page=3, limit=2)
        assert len(last.items) == 1
        assert last.pagination()["has_next"] is False

        by_amount = service.list(sort_by="amount", sort_order="asc")
        assert [t.amount for t in by_amount.items][:2] == [Decimal("1.00"), Decimal("2.00")]

        assert service.list(limit=500).limit == 100
        assert service.list(limit=0).limit == 1


def test_store_filters() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _add_user(session)
        service = TransactionService(session, user.id)
        service.create(_expense("10.00", day=1, tags=["campus"], description="Cafeteria lunch"))
        service.create(
            _expense(
                "25.00",
                category="transportation",
                day=10,
                description="Bus pass",
                payment_method=PaymentMethod.card,
            )
        )
        service.create(
            TransactionIn(
                type=TransactionType.income,
                amount=Decimal("300.00"),
                category="allowance",
                description="Monthly allowance",
                date=datetime(2025, 3, 2),
            )
        )
        store = TransactionStore(session)

        expenses = TransactionFilters(type=TransactionType.expense)
        assert store.count(user.id, expenses) == 2
        assert store.sum_amount(user.id, expenses) == Decimal("35.00")
        assert store.sum_amount(user.id, TransactionFilters(category="rent")) == Decimal("0.00")

        assert store.count(user.id, TransactionFilters(tag="campus")) == 1
        assert store.count(user.id, TransactionFilters(query="LUNCH")) == 1
        assert store.count(user.id, TransactionFilters(payment_method=PaymentMethod.card)) == 1
        ranged = TransactionFilters(start=datetime(2025, 3, 2), end=datetime(2025, 3, 9))
        assert [t.category for t in store.query(user.id, ranged)] == ["allowance"]


def test_categories_lists_every_choice() -> None:
    categories = TransactionService.categories()

    assert "salary" in categories["income"]
    assert "other-expense" in categories["expense"]
    assert "salary" not in categories["expense"]
    assert categories["payment_methods"][2] == "bank-transfer"
    assert categories["recurring_frequencies"] == ["daily", "weekly", "monthly", "yearly"]


def test_tag_and_search_filters_treat_wildcards_literally() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        user = _add_user(session)
        service = TransactionService(session, user.id)
        service.create(_expense("3.00", tags=["axb"], description="500 stickers"))
        service.create(_expense("4.00", tags=["a_b"], description="50% off sale"))
        service.create(_expense("5.00", tags=["back\\slash"], description="path a\\b"))
        store = TransactionStore(session)

        def descriptions(filters: TransactionFilters) -> list[str]:
            return [t.description for t in store.query(user.id, filters)]

        assert descriptions(TransactionFilters(tag="a_b")) == ["50% off sale"]
        assert descriptions(TransactionFilters(tag="%")) == []
        assert descriptions(TransactionFilters(tag="back\\slash")) == ["path a\\b"]
        assert descriptions(TransactionFilters(query="50%")) == ["50% off sale"]
        assert descriptions(TransactionFilters(query="_")) == []
        assert descriptions(TransactionFilters(query="a\\b")) == ["path a\\b"]
