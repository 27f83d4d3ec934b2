from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

import auth
from database import Base
from schemas import PasswordChangeIn, ProfileUpdateIn, UserRegisterIn
from services import InvalidCredentials, NotFoundError, UserService, ValidationFailure


def _register_payload(**overrides) -> UserRegisterIn:
    data = {
        "name": "  Ana Silva ",
        "email": "Ana@Example.com",
        "password": "Secret123",
        "university": "State University",
        "monthly_budget": Decimal("800.00"),
    }
    data.update(overrides)
    return UserRegisterIn(**data)


def test_password_hash_round_trip() -> None:
    hashed = auth.hash_password("Secret123")

    assert hashed != "Secret123"
    assert auth.verify_password("Secret123", hashed)
    assert not auth.verify_password("secret123", hashed)


def test_access_token_carries_user_id() -> None:
    token = auth.issue_access_token(42)

    assert auth.read_access_token(token) == 42
    assert auth.read_access_token(token + "x") is None
    assert auth.read_access_token("garbage") is None


def test_expired_token_is_rejected(monkeypatch) -> None:
    token = auth.issue_access_token(7)
    monkeypatch.setattr(auth, "token_max_age_seconds", lambda: -1)

    assert auth.read_access_token(token) is None


def test_token_without_integer_user_is_rejected() -> None:
    token = auth._serializer().dumps({"u": "7"})

    assert auth.read_access_token(token) is None


def test_weak_passwords_are_rejected() -> None:
    with pytest.raises(ValidationError):
        _register_payload(password="short")
    with pytest.raises(ValidationError):
        _register_payload(password="alllowercase1")
    with pytest.raises(ValidationError):
        PasswordChangeIn(current_password="Secret123", new_password="NoDigitsHere")


def test_blank_names_are_stripped_before_length_checks() -> None:
    with pytest.raises(ValidationError):
        _register_payload(name="   ")
    with pytest.raises(ValidationError):
        _register_payload(name=" A ")
    with pytest.raises(ValidationError):
        ProfileUpdateIn(name="   ")

    assert ProfileUpdateIn(name="  Bo  ").name == "Bo"


def test_register_normalizes_email_and_rejects_duplicates() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = UserService(session)
        user = service.register(_register_payload())

        assert user.name == "Ana Silva"
        assert user.email == "ana@example.com"
        assert user.monthly_budget == Decimal("800.00")
        assert user.password_hash != "Secret123"

        with pytest.raises(ValidationFailure):
            service.register(_register_payload(email="ANA@example.com"))


def test_authenticate_checks_password_and_active_flag() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = UserService(session)
        user = service.register(_register_payload())
        assert user.last_login is None

        logged_in = service.authenticate("ana@example.com", "Secret123")
        assert logged_in.id == user.id
        assert logged_in.last_login is not None

        with pytest.raises(InvalidCredentials):
            service.authenticate("ana@example.com", "Wrong123")
        with pytest.raises(InvalidCredentials):
            service.authenticate("nobody@example.com", "Secret123")

        user.is_active = False
        session.commit()
        with pytest.raises(InvalidCredentials):
            service.authenticate("ana@example.com", "Secret123")


def test_update_profile_and_change_password() -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = UserService(session)
        user = service.register(_register_payload())

        updated = service.update_profile(
            user.id, ProfileUpdateIn(student_id="S-1001", monthly_budget=Decimal("0"))
        )
        assert updated.student_id == "S-1001"
        assert updated.monthly_budget == Decimal("0.00")
        assert updated.university == "State University"

        with pytest.raises(ValidationFailure):
            service.change_password(
                user.id,
                PasswordChangeIn(current_password="Wrong123", new_password="Fresh456"),
            )

        service.change_password(
            user.id,
            PasswordChangeIn(current_password="Secret123", new_password="Fresh456"),
        )
        assert service.authenticate("ana@example.com", "Fresh456").id == user.id

        with pytest.raises(NotFoundError):
            service.get_by_id(user.id + 1)


def test_register_reports_duplicate_email_raced_past_lookup(monkeypatch) -> None:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    with Session(engine) as session:
        service = UserService(session)
        first = service.register(_register_payload())
        monkeypatch.setattr(service, "get_by_email", lambda email: None)

        with pytest.raises(ValidationFailure):
            service.register(_register_payload(name="Ana Again"))

        assert service.get_by_id(first.id).name == "Ana Silva"
