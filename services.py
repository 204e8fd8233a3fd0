from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.orm import Session, joinedload, selectinload

from models import (
    AccountTransfer,
    Budget,
    BudgetStatus,
    Expense,
    ExpenseType,
    MoneyAccount,
    PaymentMethod,
    RecurringDeposit,
    RecurringExpense,
    SkippedDeposit,
    Tag,
    TransferDirection,
    budget_tags,
    expense_tags,
    recurring_expense_tags,
)
from periods import Period, period_bounds
from recurrence import (
    DepositMaterializer,
    ExpenseMaterializer,
    RecurringEngine,
    local_now,
)
from schemas import (
    BudgetIn,
    ExpenseIn,
    MoneyAccountIn,
    PaymentMethodIn,
    RecurringDepositIn,
    RecurringExpenseIn,
    TransferIn,
)

BUDGET_WARNING_PERCENT = 75.0


class NotFoundError(ValueError):
    pass


def _signed_sum(column, positive_condition):
    return func.coalesce(
        func.sum(case((positive_condition, column), else_=-column)),
        0,
    )


def _resolve_tags(session: Session, space_id: int, tag_ids: list[int]) -> list[Tag]:
    wanted = set(tag_ids)
    if not wanted:
        return []
    tags = session.scalars(
        select(Tag).where(Tag.space_id == space_id, Tag.id.in_(wanted))
    ).all()
    if len(tags) != len(wanted):
        raise ValueError("Tag not found")
    return sorted(tags, key=lambda t: t.id)


def _check_payment_method(
    session: Session, space_id: int, payment_method_id: Optional[int]
) -> None:
    if payment_method_id is None:
        return
    method = session.get(PaymentMethod, payment_method_id)
    if not method or method.space_id != space_id:
        raise ValueError("Payment method not found")


class TagService:
    def __init__(self, session: Session, space_id: int) -> None:
        self.session = session
        self.space_id = space_id

    def list_all(self) -> list[Tag]:
        stmt = select(Tag).where(Tag.space_id == self.space_id).order_by(Tag.name)
        return self.session.scalars(stmt).all()

    def get_or_create(self, name: str, color: Optional[str] = None) -> Tag:
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("Tag name cannot be empty")

        stmt = select(Tag).where(
            Tag.space_id == self.space_id, func.lower(Tag.name) == clean_name.lower()
        )
        existing = self.session.scalar(stmt)
        if existing:
            return existing

        tag = Tag(space_id=self.space_id, name=clean_name, color=color)
        self.session.add(tag)
        self.session.flush()
        return tag

    def get(self, tag_id: int) -> Tag:
        tag = self.session.get(Tag, tag_id)
        if not tag or tag.space_id != self.space_id:
            raise NotFoundError("Tag not found")
        return tag

    def update(self, tag_id: int, name: str, color: Optional[str] = None) -> Tag:
        tag = self.get(tag_id)
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("Tag name cannot be empty")

        clash = self.session.scalar(
            select(Tag.id).where(
                Tag.space_id == self.space_id,
                func.lower(Tag.name) == clean_name.lower(),
                Tag.id != tag.id,
            )
        )
        if clash:
            raise ValueError("Tag already exists")

        tag.name = clean_name
        tag.color = color
        self.session.commit()
        self.session.refresh(tag)
        return tag

    def delete(self, tag_id: int) -> None:
        tag = self.get(tag_id)

        self.session.execute(delete(expense_tags).where(expense_tags.c.tag_id == tag.id))
        self.session.execute(
            delete(recurring_expense_tags).where(
                recurring_expense_tags.c.tag_id == tag.id
            )
        )
        self.session.execute(delete(budget_tags).where(budget_tags.c.tag_id == tag.id))
        self.session.delete(tag)
        self.session.commit()


class ExpenseService:
    def __init__(self, session: Session, space_id: int) -> None:
        self.session = session
        self.space_id = space_id

    def create(self, data: ExpenseIn, created_by: Optional[int] = None) -> Expense:
        _check_payment_method(self.session, self.space_id, data.payment_method_id)
        expense = Expense(
            space_id=self.space_id,
            created_by=created_by,
            description=data.description,
            amount_cents=data.amount_cents,
            type=data.type,
            date=data.date,
            payment_method_id=data.payment_method_id,
            tags=_resolve_tags(self.session, self.space_id, data.tag_ids),
        )
        self.session.add(expense)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def get(self, expense_id: int) -> Expense:
        stmt = (
            select(Expense)
            .options(selectinload(Expense.tags), joinedload(Expense.payment_method))
            .where(Expense.space_id == self.space_id, Expense.id == expense_id)
        )
        expense = self.session.scalar(stmt)
        if not expense:
            raise NotFoundError("Expense not found")
        return expense

    def update(self, expense_id: int, data: ExpenseIn) -> Expense:
        expense = self.get(expense_id)
        _check_payment_method(self.session, self.space_id, data.payment_method_id)
        expense.description = data.description
        expense.amount_cents = data.amount_cents
        expense.type = data.type
        expense.date = data.date
        expense.payment_method_id = data.payment_method_id
        expense.tags = _resolve_tags(self.session, self.space_id, data.tag_ids)
        self.session.commit()
        self.session.refresh(expense)
        return expense

    def delete(self, expense_id: int) -> None:
        expense = self.get(expense_id)
        self.session.delete(expense)
        self.session.commit()

    def list(self) -> list[Expense]:
        stmt = (
            select(Expense)
            .options(selectinload(Expense.tags))
            .where(Expense.space_id == self.space_id)
            .order_by(Expense.date.desc(), Expense.id.desc())
        )
        return self.session.scalars(stmt).all()

    def balance(self) -> int:
        stmt = select(
            _signed_sum(Expense.amount_cents, Expense.type == ExpenseType.topup)
        ).where(Expense.space_id == self.space_id)
        return int(self.session.execute(stmt).scalar_one() or 0)

    def spent_for_tags(
        self, tag_ids: list[int], start: datetime, end: datetime
    ) -> int:
        """Sum expenses in [start, end] carrying any of ``tag_ids``.

        An expense tagged with several of the tags is counted once.
        """
        if not tag_ids:
            return 0
        stmt = select(func.coalesce(func.sum(Expense.amount_cents), 0)).where(
            Expense.space_id == self.space_id,
            Expense.type == ExpenseType.expense,
            Expense.date.between(start, end),
            Expense.tags.any(Tag.id.in_(tag_ids)),
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def spending_by_tag(self, start: datetime, end: datetime) -> list[TagSpending]:
        """Per-tag expense totals in [start, end], largest first.

        An expense with several tags counts toward each of them.
        """
        total = func.sum(Expense.amount_cents).label("total")
        stmt = (
            select(Tag, total)
            .join(expense_tags, expense_tags.c.tag_id == Tag.id)
            .join(Expense, Expense.id == expense_tags.c.expense_id)
            .where(
                Expense.space_id == self.space_id,
                Expense.type == ExpenseType.expense,
                Expense.date.between(start, end),
            )
            .group_by(Tag.id)
            .order_by(total.desc(), Tag.name)
        )
        return [
            TagSpending(tag=row[0], total_cents=int(row.total))
            for row in self.session.execute(stmt)
        ]


@dataclass(frozen=True)
class TagSpending:
    tag: Tag
    total_cents: int


@dataclass(frozen=True)
class SpendingReport:
    period: Period
    by_tag: list[TagSpending]
    top_expenses: list[Expense]
    total_income_cents: int
    total_expense_cents: int

    @property
    def net_cents(self) -> int:
        return self.total_income_cents - self.total_expense_cents


class ReportService:
    def __init__(self, session: Session, space_id: int) -> None:
        self.session = session
        self.space_id = space_id

    def spending_report(self, period: Period, top: int = 10) -> SpendingReport:
        totals_stmt = (
            select(Expense.type, func.coalesce(func.sum(Expense.amount_cents), 0))
            .where(
                Expense.space_id == self.space_id,
                Expense.date.between(period.start, period.end),
            )
            .group_by(Expense.type)
        )
        totals = {row[0]: int(row[1]) for row in self.session.execute(totals_stmt)}

        top_stmt = (
            select(Expense)
            .options(selectinload(Expense.tags), joinedload(Expense.payment_method))
            .where(
                Expense.space_id == self.space_id,
                Expense.type == ExpenseType.expense,
                Expense.date.between(period.start, period.end),
            )
            .order_by(Expense.amount_cents.desc(), Expense.date.desc(), Expense.id)
            .limit(top)
        )
        return SpendingReport(
            period=period,
            by_tag=ExpenseService(self.session, self.space_id).spending_by_tag(
                period.start, period.end
            ),
            top_expenses=self.session.scalars(top_stmt).all(),
            total_income_cents=totals.get(ExpenseType.topup, 0),
            total_expense_cents=totals.get(ExpenseType.expense, 0),
        )


class PaymentMethodService:
    def __init__(self, session: Session, space_id: int) -> None:
        self.session = session
        self.space_id = space_id

    def create(
        self, data: PaymentMethodIn, created_by: Optional[int] = None
    ) -> PaymentMethod:
        method = PaymentMethod(
            space_id=self.space_id,
            created_by=created_by,
            name=data.name,
            type=data.type,
            last_four=data.last_four,
        )
        self.session.add(method)
        self.session.commit()
        self.session.refresh(method)
        return method

    def get(self, method_id: int) -> PaymentMethod:
        method = self.session.get(PaymentMethod, method_id)
        if not method or method.space_id != self.space_id:
            raise NotFoundError("Payment method not found")
        return method

    def list(self) -> list[PaymentMethod]:
        stmt = (
            select(PaymentMethod)
            .where(PaymentMethod.space_id == self.space_id)
            .order_by(PaymentMethod.name, PaymentMethod.id)
        )
        return self.session.scalars(stmt).all()

    def update(self, method_id: int, data: PaymentMethodIn) -> PaymentMethod:
        method = self.get(method_id)
        method.name = data.name
        method.type = data.type
        method.last_four = data.last_four
        self.session.commit()
        self.session.refresh(method)
        return method

    def delete(self, method_id: int) -> None:
        method = self.get(method_id)
        for model in (Expense, RecurringExpense):
            self.session.execute(
                update(model)
                .where(model.payment_method_id == method.id)
                .values(payment_method_id=None)
            )
        self.session.delete(method)
        self.session.commit()


@dataclass(frozen=True)
class AccountWithBalance:
    account: MoneyAccount
    balance_cents: int


class MoneyAccountService:
    def __init__(self, session: Session, space_id: int) -> None:
        self.session = session
        self.space_id = space_id

    def create_account(
        self, data: MoneyAccountIn, created_by: Optional[int] = None
    ) -> MoneyAccount:
        name = data.name.strip()
        if not name:
            raise ValueError("Account name cannot be empty")
        account = MoneyAccount(space_id=self.space_id, name=name, created_by=created_by)
        self.session.add(account)
        self.session.commit()
        self.session.refresh(account)
        return account

    def get_account(self, account_id: int) -> MoneyAccount:
        account = self.session.get(MoneyAccount, account_id)
        if not account or account.space_id != self.space_id:
            raise NotFoundError("Account not found")
        return account

    def list_with_balances(self) -> list[AccountWithBalance]:
        balance = _signed_sum(
            AccountTransfer.amount_cents,
            AccountTransfer.direction == TransferDirection.deposit,
        )
        stmt = (
            select(MoneyAccount, balance.label("balance"))
            .outerjoin(AccountTransfer, AccountTransfer.account_id == MoneyAccount.id)
            .where(MoneyAccount.space_id == self.space_id)
            .group_by(MoneyAccount.id)
            .order_by(MoneyAccount.name, MoneyAccount.id)
        )
        return [
            AccountWithBalance(account=row[0], balance_cents=int(row.balance or 0))
            for row in self.session.execute(stmt)
        ]

    def update_account(self, account_id: int, data: MoneyAccountIn) -> MoneyAccount:
        account = self.get_account(account_id)
        name = data.name.strip()
        if not name:
            raise ValueError("Account name cannot be empty")
        account.name = name
        self.session.commit()
        self.session.refresh(account)
        return account

    def delete_account(self, account_id: int) -> None:
        account = self.get_account(account_id)
        in_use = self.session.scalar(
            select(func.count(RecurringDeposit.id)).where(
                RecurringDeposit.account_id == account.id
            )
        )
        if in_use:
            raise ValueError("Account is used by recurring deposits")
        self.session.delete(account)
        self.session.commit()

    def account_balance(self, account_id: int) -> int:
        account = self.get_account(account_id)
        stmt = select(
            _signed_sum(
                AccountTransfer.amount_cents,
                AccountTransfer.direction == TransferDirection.deposit,
            )
        ).where(AccountTransfer.account_id == account.id)
        return int(self.session.execute(stmt).scalar_one() or 0)

    def total_allocated(self) -> int:
        stmt = (
            select(
                _signed_sum(
                    AccountTransfer.amount_cents,
                    AccountTransfer.direction == TransferDirection.deposit,
                )
            )
            .join(MoneyAccount, AccountTransfer.account_id == MoneyAccount.id)
            .where(MoneyAccount.space_id == self.space_id)
        )
        return int(self.session.execute(stmt).scalar_one() or 0)

    def available_balance(self) -> int:
        space_balance = ExpenseService(self.session, self.space_id).balance()
        return space_balance - self.total_allocated()

    def create_transfer(
        self, data: TransferIn, created_by: Optional[int] = None
    ) -> AccountTransfer:
        account = self.get_account(data.account_id)
        if data.direction == TransferDirection.deposit:
            if data.amount_cents > self.available_balance():
                raise ValueError("Insufficient available balance")
        elif data.amount_cents > self.account_balance(account.id):
            raise ValueError("Insufficient account balance")

        transfer = AccountTransfer(
            account_id=account.id,
            amount_cents=data.amount_cents,
            direction=data.direction,
            note=data.note.strip() if data.note else None,
            created_by=created_by,
        )
        self.session.add(transfer)
        self.session.commit()
        self.session.refresh(transfer)
        return transfer

    def transfers_for_account(self, account_id: int) -> list[AccountTransfer]:
        account = self.get_account(account_id)
        stmt = (
            select(AccountTransfer)
            .where(AccountTransfer.account_id == account.id)
            .order_by(AccountTransfer.created_at.desc(), AccountTransfer.id.desc())
        )
        return self.session.scalars(stmt).all()

    def delete_transfer(self, transfer_id: int) -> None:
        transfer = self.session.get(AccountTransfer, transfer_id)
        if not transfer or transfer.account.space_id != self.space_id:
            raise NotFoundError("Transfer not found")
        self.session.delete(transfer)
        self.session.commit()


class _RecurringRuleStore:
    model: type = None
    materializer: type = None
    label = "Recurring rule"

    def __init__(self, session: Session, space_id: int) -> None:
        self.session = session
        self.space_id = space_id

    def get(self, rule_id: int):
        rule = self.session.get(self.model, rule_id)
        if not rule or rule.space_id != self.space_id:
            raise NotFoundError(f"{self.label} not found")
        return rule

    def list(self) -> list:
        stmt = (
            select(self.model)
            .where(self.model.space_id == self.space_id)
            .order_by(self.model.next_occurrence, self.model.id)
        )
        return self.session.scalars(stmt).all()

    def due(self, now: datetime) -> list:
        return self.materializer(self.session).due_rules(now, self.space_id)

    def set_active(self, rule_id: int, active: bool) -> None:
        rule = self.get(rule_id)
        rule.is_active = active
        self.session.commit()

    def toggle(self, rule_id: int):
        rule = self.get(rule_id)
        rule.is_active = not rule.is_active
        self.session.commit()
        return rule

    def set_next_occurrence(self, rule_id: int, next_occurrence: datetime) -> None:
        rule = self.get(rule_id)
        rule.next_occurrence = next_occurrence
        rule.anchor_day = next_occurrence.day
        self.session.commit()

    def process_due(self, now: Optional[datetime] = None) -> int:
        return RecurringEngine(self.session).process_due(now, space_id=self.space_id)

    @staticmethod
    def _pull_forward(rule, start_date: datetime) -> None:
        if rule.next_occurrence < start_date:
            rule.next_occurrence = start_date
            rule.anchor_day = start_date.day


class RecurringExpenseService(_RecurringRuleStore):
    model = RecurringExpense
    label = "Recurring expense"
    materializer = ExpenseMaterializer

    def create(
        self, data: RecurringExpenseIn, created_by: Optional[int] = None
    ) -> RecurringExpense:
        _check_payment_method(self.session, self.space_id, data.payment_method_id)
        rule = RecurringExpense(
            space_id=self.space_id,
            created_by=created_by,
            description=data.description,
            amount_cents=data.amount_cents,
            type=data.type,
            payment_method_id=data.payment_method_id,
            frequency=data.frequency,
            start_date=data.start_date,
            end_date=data.end_date,
            next_occurrence=data.start_date,
            anchor_day=data.start_date.day,
            is_active=True,
            tags=_resolve_tags(self.session, self.space_id, data.tag_ids),
        )
        self.session.add(rule)
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def update(self, rule_id: int, data: RecurringExpenseIn) -> RecurringExpense:
        rule = self.get(rule_id)
        _check_payment_method(self.session, self.space_id, data.payment_method_id)
        rule.description = data.description
        rule.amount_cents = data.amount_cents
        rule.type = data.type
        rule.payment_method_id = data.payment_method_id
        rule.frequency = data.frequency
        rule.start_date = data.start_date
        rule.end_date = data.end_date
        rule.tags = _resolve_tags(self.session, self.space_id, data.tag_ids)
        self._pull_forward(rule, data.start_date)
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def delete(self, rule_id: int) -> None:
        rule = self.get(rule_id)
        self.session.execute(
            update(Expense)
            .where(Expense.recurring_expense_id == rule.id)
            .values(recurring_expense_id=None)
        )
        self.session.delete(rule)
        self.session.commit()


class RecurringDepositService(_RecurringRuleStore):
    model = RecurringDeposit
    label = "Recurring deposit"
    materializer = DepositMaterializer

    def create(
        self, data: RecurringDepositIn, created_by: Optional[int] = None
    ) -> RecurringDeposit:
        MoneyAccountService(self.session, self.space_id).get_account(data.account_id)
        rule = RecurringDeposit(
            space_id=self.space_id,
            account_id=data.account_id,
            created_by=created_by,
            title=data.title.strip() if data.title else None,
            amount_cents=data.amount_cents,
            frequency=data.frequency,
            start_date=data.start_date,
            end_date=data.end_date,
            next_occurrence=data.start_date,
            anchor_day=data.start_date.day,
            is_active=True,
        )
        self.session.add(rule)
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def update(self, rule_id: int, data: RecurringDepositIn) -> RecurringDeposit:
        rule = self.get(rule_id)
        MoneyAccountService(self.session, self.space_id).get_account(data.account_id)
        rule.account_id = data.account_id
        rule.title = data.title.strip() if data.title else None
        rule.amount_cents = data.amount_cents
        rule.frequency = data.frequency
        rule.start_date = data.start_date
        rule.end_date = data.end_date
        self._pull_forward(rule, data.start_date)
        self.session.commit()
        self.session.refresh(rule)
        return rule

    def delete(self, rule_id: int) -> None:
        rule = self.get(rule_id)
        self.session.execute(
            update(AccountTransfer)
            .where(AccountTransfer.recurring_deposit_id == rule.id)
            .values(recurring_deposit_id=None)
        )
        self.session.execute(
            delete(SkippedDeposit).where(SkippedDeposit.recurring_deposit_id == rule.id)
        )
        self.session.delete(rule)
        self.session.commit()

    def skipped_occurrences(self, rule_id: int) -> list[SkippedDeposit]:
        rule = self.get(rule_id)
        stmt = (
            select(SkippedDeposit)
            .where(SkippedDeposit.recurring_deposit_id == rule.id)
            .order_by(SkippedDeposit.occurrence_at)
        )
        return self.session.scalars(stmt).all()


def classify_budget(percentage: float) -> BudgetStatus:
    if percentage > 100:
        return BudgetStatus.over
    if percentage >= BUDGET_WARNING_PERCENT:
        return BudgetStatus.warning
    return BudgetStatus.on_track


@dataclass(frozen=True)
class BudgetWithSpent:
    budget: Budget
    period: Period
    spent_cents: int
    percentage: float
    status: BudgetStatus

    @property
    def remaining_cents(self) -> int:
        return self.budget.amount_cents - self.spent_cents


class BudgetService:
    def __init__(self, session: Session, space_id: int) -> None:
        self.session = session
        self.space_id = space_id

    def create(self, data: BudgetIn, created_by: Optional[int] = None) -> Budget:
        budget = Budget(
            space_id=self.space_id,
            created_by=created_by,
            amount_cents=data.amount_cents,
            period=data.period,
            start_date=data.start_date,
            end_date=data.end_date,
            is_active=True,
            tags=_resolve_tags(self.session, self.space_id, data.tag_ids),
        )
        self.session.add(budget)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def get(self, budget_id: int) -> Budget:
        budget = self.session.get(Budget, budget_id)
        if not budget or budget.space_id != self.space_id:
            raise NotFoundError("Budget not found")
        return budget

    def list(self) -> list[Budget]:
        stmt = (
            select(Budget)
            .options(selectinload(Budget.tags))
            .where(Budget.space_id == self.space_id)
            .order_by(Budget.created_at.desc(), Budget.id.desc())
        )
        return self.session.scalars(stmt).all()

    def update(self, budget_id: int, data: BudgetIn) -> Budget:
        budget = self.get(budget_id)
        budget.amount_cents = data.amount_cents
        budget.period = data.period
        budget.start_date = data.start_date
        budget.end_date = data.end_date
        budget.tags = _resolve_tags(self.session, self.space_id, data.tag_ids)
        self.session.commit()
        self.session.refresh(budget)
        return budget

    def set_active(self, budget_id: int, active: bool) -> None:
        budget = self.get(budget_id)
        budget.is_active = active
        self.session.commit()

    def delete(self, budget_id: int) -> None:
        budget = self.get(budget_id)
        self.session.delete(budget)
        self.session.commit()

    def budgets_with_spent(self, now: Optional[datetime] = None) -> list[BudgetWithSpent]:
        """Evaluate every active budget against its period containing ``now``.

        Spend is recomputed from expense rows on each call.
        """
        now = now or local_now()
        today = now.date()
        expenses = ExpenseService(self.session, self.space_id)
        result: list[BudgetWithSpent] = []
        for budget in self.list():
            if not budget.is_active or budget.start_date > today:
                continue
            if budget.end_date is not None and budget.end_date < today:
                continue
            period = period_bounds(budget.period, now)
            spent = expenses.spent_for_tags(
                [tag.id for tag in budget.tags], period.start, period.end
            )
            percentage = spent / budget.amount_cents * 100
            result.append(
                BudgetWithSpent(
                    budget=budget,
                    period=period,
                    spent_cents=spent,
                    percentage=percentage,
                    status=classify_budget(percentage),
                )
            )
        return result
