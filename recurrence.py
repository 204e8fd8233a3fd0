import logging
from datetime import datetime, timedelta
from typing import Callable, Optional, Union
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from config import get_settings
from models import (
    AccountTransfer,
    Expense,
    Frequency,
    RecurringDeposit,
    RecurringExpense,
    SkippedDeposit,
    TransferDirection,
)

logger = logging.getLogger(__name__)


class CatchUpLimitExceeded(RuntimeError):
    pass


def local_now() -> datetime:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).replace(tzinfo=None, microsecond=0)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = datetime(year + 1, 1, 1)
    else:
        next_month = datetime(year, month + 1, 1)
    return (next_month - datetime(year, month, 1)).days


def _add_months(base: datetime, months: int, *, desired_day: int) -> datetime:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    day = min(desired_day, days_in_month(year, month))
    return base.replace(year=year, month=month, day=day)


def advance_occurrence(
    occurrence: datetime,
    frequency: Union[Frequency, str],
    *,
    anchor_day: Optional[int] = None,
) -> datetime:
    """Step one occurrence forward.

    Monthly and yearly steps keep ``anchor_day`` (defaulting to the
    occurrence's own day) and clamp to the last day of shorter months, so a
    rule anchored on the 31st lands on Feb 29 and returns to Mar 31.
    """
    try:
        freq = Frequency(frequency)
    except ValueError:
        logger.warning(f"advance_occurrence: unknown frequency={frequency!r}, using monthly")
        freq = Frequency.monthly

    if freq == Frequency.daily:
        return occurrence + timedelta(days=1)
    if freq == Frequency.weekly:
        return occurrence + timedelta(days=7)
    if freq == Frequency.biweekly:
        return occurrence + timedelta(days=14)

    desired_day = anchor_day or occurrence.day
    if freq == Frequency.yearly:
        return _add_months(occurrence, 12, desired_day=desired_day)
    return _add_months(occurrence, 1, desired_day=desired_day)


class RecurrenceMaterializer:
    """Shared catch-up loop for one kind of recurring rule.

    Subclasses set ``model`` and implement ``materialize_one``. Nothing here
    commits; the caller owns the transaction so that every effect of one
    replay and the rule's final state land together.
    """

    model: type = None
    kind: str = "recurring"

    def __init__(self, session: Session, *, max_iterations: Optional[int] = None) -> None:
        self.session = session
        if max_iterations is None:
            max_iterations = get_settings().max_catchup_iterations
        self.max_iterations = max_iterations

    def due_rules(self, now: datetime, space_id: Optional[int] = None) -> list:
        stmt = (
            select(self.model)
            .where(
                self.model.is_active.is_(True),
                self.model.next_occurrence <= now,
            )
            .order_by(self.model.next_occurrence, self.model.id)
        )
        if space_id is not None:
            stmt = stmt.where(self.model.space_id == space_id)
        return self.session.scalars(stmt).all()

    def process(self, rule, now: datetime) -> int:
        """Replay every occurrence of ``rule`` up to ``now``.

        Returns the number of occurrences that produced a ledger effect.
        """
        if not rule.is_active:
            return 0

        if rule.anchor_day is None:
            rule.anchor_day = rule.next_occurrence.day
        anchor_day = rule.anchor_day
        iterations = 0
        applied = 0
        while rule.next_occurrence <= now:
            if rule.end_date is not None and rule.next_occurrence > rule.end_date:
                break
            if iterations >= self.max_iterations:
                raise CatchUpLimitExceeded(
                    f"{self.kind} rule {rule.id} still due after "
                    f"{self.max_iterations} occurrences "
                    f"(next_occurrence={rule.next_occurrence.isoformat()})"
                )
            occurrence = rule.next_occurrence
            if self.materialize_one(rule, occurrence):
                applied += 1
            rule.next_occurrence = advance_occurrence(
                occurrence, rule.frequency, anchor_day=anchor_day
            )
            iterations += 1

        if rule.end_date is not None and rule.next_occurrence > rule.end_date:
            rule.is_active = False
            logger.info(
                f"{self.kind}_deactivated: rule_id={rule.id} end_date={rule.end_date.isoformat()}"
            )
        self.session.flush()
        return applied

    def materialize_one(self, rule, occurrence: datetime) -> bool:
        raise NotImplementedError


class ExpenseMaterializer(RecurrenceMaterializer):
    model = RecurringExpense
    kind = "recurring_expense"

    def materialize_one(self, rule: RecurringExpense, occurrence: datetime) -> bool:
        exists_stmt = (
            select(Expense.id)
            .where(
                Expense.recurring_expense_id == rule.id,
                Expense.occurrence_at == occurrence,
            )
            .limit(1)
        )
        if self.session.execute(exists_stmt).scalar_one_or_none():
            return True

        expense = Expense(
            space_id=rule.space_id,
            created_by=rule.created_by,
            description=rule.description,
            amount_cents=rule.amount_cents,
            type=rule.type,
            date=occurrence,
            payment_method_id=rule.payment_method_id,
            recurring_expense_id=rule.id,
            occurrence_at=occurrence,
            tags=list(rule.tags),
        )
        self.session.add(expense)
        self.session.flush()
        return True


class DepositMaterializer(RecurrenceMaterializer):
    model = RecurringDeposit
    kind = "recurring_deposit"

    def materialize_one(self, rule: RecurringDeposit, occurrence: datetime) -> bool:
        from services import MoneyAccountService

        exists_stmt = (
            select(AccountTransfer.id)
            .where(
                AccountTransfer.recurring_deposit_id == rule.id,
                AccountTransfer.occurrence_at == occurrence,
            )
            .limit(1)
        )
        if self.session.execute(exists_stmt).scalar_one_or_none():
            return True

        skipped_stmt = (
            select(SkippedDeposit.id)
            .where(
                SkippedDeposit.recurring_deposit_id == rule.id,
                SkippedDeposit.occurrence_at == occurrence,
            )
            .limit(1)
        )
        if self.session.execute(skipped_stmt).scalar_one_or_none():
            return False

        accounts = MoneyAccountService(self.session, rule.space_id)
        account = accounts.get_account(rule.account_id)
        available = accounts.available_balance()
        if available < rule.amount_cents:
            logger.warning(
                f"recurring_deposit_skipped: rule_id={rule.id} space_id={rule.space_id} "
                f"occurrence={occurrence.isoformat()} needed={rule.amount_cents} "
                f"available={available} shortfall={rule.amount_cents - available}"
            )
            self.session.add(
                SkippedDeposit(
                    recurring_deposit_id=rule.id,
                    occurrence_at=occurrence,
                    needed_cents=rule.amount_cents,
                    available_cents=available,
                )
            )
            self.session.flush()
            return False

        transfer = AccountTransfer(
            account_id=account.id,
            amount_cents=rule.amount_cents,
            direction=TransferDirection.deposit,
            note=rule.title,
            recurring_deposit_id=rule.id,
            occurrence_at=occurrence,
            created_by=rule.created_by,
        )
        self.session.add(transfer)
        self.session.flush()
        return True


class RecurringEngine:
    def __init__(
        self,
        session: Session,
        *,
        max_iterations: Optional[int] = None,
        should_stop: Optional[Callable[[], bool]] = None,
    ) -> None:
        self.session = session
        self.should_stop = should_stop or (lambda: False)
        self.materializers: list[RecurrenceMaterializer] = [
            ExpenseMaterializer(session, max_iterations=max_iterations),
            DepositMaterializer(session, max_iterations=max_iterations),
        ]

    def process_due(
        self, now: Optional[datetime] = None, *, space_id: Optional[int] = None
    ) -> int:
        """Process every due rule, expenses before deposits.

        Each rule is committed on its own; a failing rule is rolled back and
        logged without stopping the rest. Returns the number of rules that
        were processed successfully.
        """
        now = now or local_now()
        count = 0
        for materializer in self.materializers:
            if self.should_stop():
                break
            count += self._process_kind(materializer, now, space_id)
        return count

    def _process_kind(
        self,
        materializer: RecurrenceMaterializer,
        now: datetime,
        space_id: Optional[int],
    ) -> int:
        rule_ids = [rule.id for rule in materializer.due_rules(now, space_id)]
        count = 0
        for rule_id in rule_ids:
            if self.should_stop():
                logger.info(
                    f"recurring_process_interrupted: kind={materializer.kind} "
                    f"remaining_from={rule_id}"
                )
                break
            try:
                rule = self.session.get(materializer.model, rule_id)
                if rule is None:
                    logger.warning(
                        f"recurring_process_missing: kind={materializer.kind} rule_id={rule_id}"
                    )
                    continue
                applied = materializer.process(rule, now)
                self.session.commit()
            except CatchUpLimitExceeded as exc:
                self.session.rollback()
                logger.error(
                    f"recurring_catch_up_limit: kind={materializer.kind} "
                    f"rule_id={rule_id} error={exc}"
                )
                continue
            except Exception:
                self.session.rollback()
                logger.exception(
                    f"recurring_process_failed: kind={materializer.kind} rule_id={rule_id}"
                )
                continue
            count += 1
            logger.info(
                f"recurring_processed: kind={materializer.kind} rule_id={rule_id} "
                f"effects={applied}"
            )
        return count


def process_space_now(
    session: Session, space_id: int, now: Optional[datetime] = None
) -> int:
    return RecurringEngine(session).process_due(now, space_id=space_id)
