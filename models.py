from datetime import date, datetime
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class ExpenseType(str, Enum):
    expense = "expense"
    topup = "topup"


class TransferDirection(str, Enum):
    deposit = "deposit"
    withdrawal = "withdrawal"


class Frequency(str, Enum):
    daily = "daily"
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"
    yearly = "yearly"


class BudgetPeriod(str, Enum):
    weekly = "weekly"
    monthly = "monthly"
    yearly = "yearly"


class BudgetStatus(str, Enum):
    on_track = "on_track"
    warning = "warning"
    over = "over"


class PaymentMethodType(str, Enum):
    credit = "credit"
    debit = "debit"


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Space(Base, TimestampMixin):
    __tablename__ = "spaces"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)

    accounts: Mapped[list["MoneyAccount"]] = relationship(
        "MoneyAccount", back_populates="space"
    )


class Tag(Base, TimestampMixin):
    __tablename__ = "tags"
    __table_args__ = (UniqueConstraint("space_id", "name", name="uq_tag_space_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    space_id: Mapped[int] = mapped_column(ForeignKey("spaces.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    color: Mapped[Optional[str]] = mapped_column(String(9))

    expenses: Mapped[list["Expense"]] = relationship(
        "Expense", secondary="expense_tags", back_populates="tags"
    )


class PaymentMethod(Base, TimestampMixin):
    __tablename__ = "payment_methods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    space_id: Mapped[int] = mapped_column(ForeignKey("spaces.id"), nullable=False)
    created_by: Mapped[Optional[int]] = mapped_column(Integer)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[PaymentMethodType] = mapped_column(
        SAEnum(PaymentMethodType), nullable=False
    )
    last_four: Mapped[Optional[str]] = mapped_column(String(4))


expense_tags = Table(
    "expense_tags",
    Base.metadata,
    Column("expense_id", Integer, ForeignKey("expenses.id"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id"), primary_key=True),
)

recurring_expense_tags = Table(
    "recurring_expense_tags",
    Base.metadata,
    Column(
        "recurring_expense_id",
        Integer,
        ForeignKey("recurring_expenses.id"),
        primary_key=True,
    ),
    Column("tag_id", Integer, ForeignKey("tags.id"), primary_key=True),
)

budget_tags = Table(
    "budget_tags",
    Base.metadata,
    Column("budget_id", Integer, ForeignKey("budgets.id"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id"), primary_key=True),
)


class Expense(Base, TimestampMixin):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    space_id: Mapped[int] = mapped_column(ForeignKey("spaces.id"), nullable=False)
    created_by: Mapped[Optional[int]] = mapped_column(Integer)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[ExpenseType] = mapped_column(SAEnum(ExpenseType), nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    payment_method_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("payment_methods.id")
    )
    recurring_expense_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_expenses.id", ondelete="SET NULL")
    )
    occurrence_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    payment_method: Mapped[Optional["PaymentMethod"]] = relationship("PaymentMethod")
    recurring_expense: Mapped[Optional["RecurringExpense"]] = relationship(
        "RecurringExpense", back_populates="expenses"
    )
    tags: Mapped[list["Tag"]] = relationship(
        "Tag", secondary="expense_tags", back_populates="expenses"
    )

    __table_args__ = (
        UniqueConstraint(
            "recurring_expense_id",
            "occurrence_at",
            name="uq_expense_recurring_occurrence",
        ),
        Index("ix_expenses_space_date", "space_id", "date"),
        Index("ix_expenses_space_type", "space_id", "type"),
        CheckConstraint("amount_cents > 0", name="ck_expenses_amount_positive"),
    )


class MoneyAccount(Base, TimestampMixin):
    __tablename__ = "money_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    space_id: Mapped[int] = mapped_column(ForeignKey("spaces.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    created_by: Mapped[Optional[int]] = mapped_column(Integer)

    space: Mapped["Space"] = relationship("Space", back_populates="accounts")
    transfers: Mapped[list["AccountTransfer"]] = relationship(
        "AccountTransfer", back_populates="account", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("ix_money_accounts_space", "space_id"),)


class AccountTransfer(Base):
    __tablename__ = "account_transfers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("money_accounts.id"), nullable=False
    )
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    direction: Mapped[TransferDirection] = mapped_column(
        SAEnum(TransferDirection), nullable=False
    )
    note: Mapped[Optional[str]] = mapped_column(Text)
    recurring_deposit_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("recurring_deposits.id", ondelete="SET NULL")
    )
    occurrence_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_by: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    account: Mapped["MoneyAccount"] = relationship(
        "MoneyAccount", back_populates="transfers"
    )

    __table_args__ = (
        UniqueConstraint(
            "recurring_deposit_id",
            "occurrence_at",
            name="uq_transfer_recurring_occurrence",
        ),
        Index("ix_account_transfers_account_direction", "account_id", "direction"),
        CheckConstraint("amount_cents > 0", name="ck_transfers_amount_positive"),
    )


class RecurringExpense(Base, TimestampMixin):
    __tablename__ = "recurring_expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    space_id: Mapped[int] = mapped_column(ForeignKey("spaces.id"), nullable=False)
    created_by: Mapped[Optional[int]] = mapped_column(Integer)
    description: Mapped[str] = mapped_column(String(200), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[ExpenseType] = mapped_column(SAEnum(ExpenseType), nullable=False)
    payment_method_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("payment_methods.id")
    )
    frequency: Mapped[Frequency] = mapped_column(SAEnum(Frequency), nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    next_occurrence: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    anchor_day: Mapped[Optional[int]] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    payment_method: Mapped[Optional["PaymentMethod"]] = relationship("PaymentMethod")
    tags: Mapped[list["Tag"]] = relationship("Tag", secondary="recurring_expense_tags")
    expenses: Mapped[list["Expense"]] = relationship(
        "Expense", back_populates="recurring_expense"
    )

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_recurring_expense_amount_positive"),
        Index("ix_recurring_expenses_due", "is_active", "next_occurrence"),
        Index(
            "ix_recurring_expenses_space_due",
            "space_id",
            "is_active",
            "next_occurrence",
        ),
    )


class RecurringDeposit(Base, TimestampMixin):
    __tablename__ = "recurring_deposits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    space_id: Mapped[int] = mapped_column(ForeignKey("spaces.id"), nullable=False)
    account_id: Mapped[int] = mapped_column(
        ForeignKey("money_accounts.id"), nullable=False
    )
    created_by: Mapped[Optional[int]] = mapped_column(Integer)
    title: Mapped[Optional[str]] = mapped_column(String(200))
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    frequency: Mapped[Frequency] = mapped_column(SAEnum(Frequency), nullable=False)
    start_date: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    next_occurrence: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    anchor_day: Mapped[Optional[int]] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    account: Mapped["MoneyAccount"] = relationship("MoneyAccount")

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_recurring_deposit_amount_positive"),
        Index("ix_recurring_deposits_due", "is_active", "next_occurrence"),
        Index(
            "ix_recurring_deposits_space_due",
            "space_id",
            "is_active",
            "next_occurrence",
        ),
    )


class SkippedDeposit(Base):
    """An occurrence of a recurring deposit that found too little available money."""

    __tablename__ = "skipped_deposits"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    recurring_deposit_id: Mapped[int] = mapped_column(
        ForeignKey("recurring_deposits.id", ondelete="CASCADE"), nullable=False
    )
    occurrence_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    needed_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    available_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "recurring_deposit_id",
            "occurrence_at",
            name="uq_skipped_deposit_occurrence",
        ),
    )


class Budget(Base, TimestampMixin):
    __tablename__ = "budgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    space_id: Mapped[int] = mapped_column(ForeignKey("spaces.id"), nullable=False)
    created_by: Mapped[Optional[int]] = mapped_column(Integer)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    period: Mapped[BudgetPeriod] = mapped_column(SAEnum(BudgetPeriod), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    tags: Mapped[list["Tag"]] = relationship("Tag", secondary="budget_tags")

    __table_args__ = (
        CheckConstraint("amount_cents > 0", name="ck_budget_amount_positive"),
        Index("ix_budgets_space_active", "space_id", "is_active"),
    )
