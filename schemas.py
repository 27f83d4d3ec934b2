import re
from datetime import datetime
from decimal import Decimal
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from config import get_settings
from models import PaymentMethod, RecurringFrequency, TransactionType

PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")
# Keeps cent values and their sums inside a signed 64-bit INTEGER column.
MAX_AMOUNT = Decimal("9999999999.99")


def _check_password_strength(value: str) -> str:
    if not PASSWORD_PATTERN.match(value):
        raise ValueError(
            "Password must contain at least one uppercase letter, "
            "one lowercase letter, and one number"
        )
    return value


class UserRegisterIn(BaseModel):
    name: str = Field(..., min_length=2, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=72)
    student_id: Optional[str] = Field(default=None, max_length=20)
    university: Optional[str] = Field(default=None, max_length=100)
    monthly_budget: Decimal = Field(
        default=Decimal("0"), ge=0, le=MAX_AMOUNT, decimal_places=2
    )

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("password")
    @classmethod
    def _password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1, max_length=72)


class ProfileUpdateIn(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=50)
    student_id: Optional[str] = Field(default=None, max_length=20)
    university: Optional[str] = Field(default=None, max_length=100)
    monthly_budget: Optional[Decimal] = Field(
        default=None, ge=0, le=MAX_AMOUNT, decimal_places=2
    )

    @field_validator("name", mode="before")
    @classmethod
    def _strip_name(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value


class PasswordChangeIn(BaseModel):
    current_password: str = Field(..., min_length=1, max_length=72)
    new_password: str = Field(..., min_length=6, max_length=72)

    @field_validator("new_password")
    @classmethod
    def _password_strength(cls, value: str) -> str:
        return _check_password_strength(value)


class TransactionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: TransactionType
    amount: Decimal = Field(..., gt=0, le=MAX_AMOUNT, decimal_places=2)
    category: str = Field(..., min_length=1, max_length=30)
    description: str = Field(..., min_length=1, max_length=200)
    date: Optional[datetime] = None
    payment_method: PaymentMethod = PaymentMethod.cash
    tags: list[str] = Field(default_factory=list)
    is_recurring: bool = False
    recurring_frequency: Optional[RecurringFrequency] = None

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("Please provide a description")
        return value

    @field_validator("date")
    @classmethod
    def _naive_local_date(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None or value.tzinfo is None:
            return value
        tz = ZoneInfo(get_settings().timezone)
        return value.astimezone(tz).replace(tzinfo=None)

    @field_validator("tags")
    @classmethod
    def _clean_tags(cls, values: list[str]) -> list[str]:
        seen: set[str] = set()
        cleaned: list[str] = []
        for raw in values:
            tag = raw.strip()
            if not tag:
                continue
            if len(tag) > 20:
                raise ValueError("Tag cannot exceed 20 characters")
            if tag.lower() in seen:
                continue
            seen.add(tag.lower())
            cleaned.append(tag)
        return cleaned


class BulkDeleteIn(BaseModel):
    transaction_ids: list[int] = Field(..., min_length=1)
