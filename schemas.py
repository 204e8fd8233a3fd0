from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from models import (
    BudgetPeriod,
    ExpenseType,
    Frequency,
    PaymentMethodType,
    TransferDirection,
)


class ExpenseIn(BaseModel):
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., gt=0)
    type: ExpenseType = ExpenseType.expense
    date: datetime
    tag_ids: list[int] = Field(default_factory=list)
    payment_method_id: Optional[int] = None

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("description cannot be empty")
        return value


class MoneyAccountIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)


class TransferIn(BaseModel):
    account_id: int
    amount_cents: int = Field(..., gt=0)
    direction: TransferDirection
    note: Optional[str] = Field(default=None, max_length=200)


class _RecurrenceWindow(BaseModel):
    frequency: Frequency
    start_date: datetime
    end_date: Optional[datetime] = None

    @model_validator(mode="after")
    def _check_window(self):
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end date must not be before start date")
        return self


class RecurringExpenseIn(_RecurrenceWindow):
    description: str = Field(..., min_length=1, max_length=200)
    amount_cents: int = Field(..., gt=0)
    type: ExpenseType = ExpenseType.expense
    payment_method_id: Optional[int] = None
    tag_ids: list[int] = Field(default_factory=list)

    @field_validator("description")
    @classmethod
    def _strip_description(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("description cannot be empty")
        return value


class RecurringDepositIn(_RecurrenceWindow):
    account_id: int
    amount_cents: int = Field(..., gt=0)
    title: Optional[str] = Field(default=None, max_length=200)


class BudgetIn(BaseModel):
    tag_ids: list[int] = Field(..., min_length=1)
    amount_cents: int = Field(..., gt=0)
    period: BudgetPeriod
    start_date: date
    end_date: Optional[date] = None

    @model_validator(mode="after")
    def _check_window(self):
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end date must not be before start date")
        return self


class PaymentMethodIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: PaymentMethodType
    last_four: str = Field(..., pattern=r"^\d{4}$")

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("payment method name cannot be empty")
        return value
