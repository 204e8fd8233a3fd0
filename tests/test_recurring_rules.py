from datetime import datetime

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session

from database import Base
from models import (
    AccountTransfer,
    Expense,
    ExpenseType,
    Frequency,
    PaymentMethod,
    PaymentMethodType,
    Space,
)
from schemas import (
    ExpenseIn,
    MoneyAccountIn,
    RecurringDepositIn,
    RecurringExpenseIn,
)
from services import (
    ExpenseService,
    MoneyAccountService,
    NotFoundError,
    RecurringDepositService,
    RecurringExpenseService,
    TagService,
)


def make_session() -> Session:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return Session(engine)


def _space(session: Session, name: str = "Household") -> Space:
    space = Space(name=name)
    session.add(space)
    session.commit()
    return space


def _payload(**overrides) -> RecurringExpenseIn:
    data = {
        "description": "Internet",
        "amount_cents": 5_999,
        "type": ExpenseType.expense,
        "frequency": Frequency.monthly,
        "start_date": datetime(2024, 1, 15, 9, 0),
    }
    data.update(overrides)
    return RecurringExpenseIn(**data)


def test_recurring_expense_input_validation():
    with pytest.raises(ValidationError):
        _payload(amount_cents=0)
    with pytest.raises(ValidationError):
        _payload(amount_cents=-100)
    with pytest.raises(ValidationError):
        _payload(description="   ")
    with pytest.raises(ValidationError):
        _payload(end_date=datetime(2024, 1, 1))
    with pytest.raises(ValidationError):
        RecurringDepositIn(
            account_id=1,
            amount_cents=0,
            frequency=Frequency.weekly,
            start_date=datetime(2024, 1, 1),
        )


def test_create_sets_next_occurrence_to_start_date():
    session = make_session()
    space = _space(session)
    tag = TagService(session, space.id).get_or_create("Utilities")
    method = PaymentMethod(
        space_id=space.id, name="Visa", type=PaymentMethodType.credit, last_four="4242"
    )
    session.add(method)
    session.commit()

    rule = RecurringExpenseService(session, space.id).create(
        _payload(tag_ids=[tag.id], payment_method_id=method.id), created_by=7
    )

    assert rule.next_occurrence == datetime(2024, 1, 15, 9, 0)
    assert rule.is_active
    assert rule.created_by == 7
    assert [t.name for t in rule.tags] == ["Utilities"]
    assert rule.payment_method_id == method.id


def test_create_rejects_foreign_tag_and_payment_method():
    session = make_session()
    home = _space(session, "Home")
    work = _space(session, "Work")
    foreign_tag = TagService(session, work.id).get_or_create("Office")
    foreign_method = PaymentMethod(
        space_id=work.id, name="Corporate", type=PaymentMethodType.debit
    )
    session.add(foreign_method)
    session.commit()

    service = RecurringExpenseService(session, home.id)
    with pytest.raises(ValueError, match="Tag not found"):
        service.create(_payload(tag_ids=[foreign_tag.id]))
    with pytest.raises(ValueError, match="Payment method not found"):
        service.create(_payload(payment_method_id=foreign_method.id))


def test_update_pulls_next_occurrence_forward_only():
    session = make_session()
    space = _space(session)
    service = RecurringExpenseService(session, space.id)
    rule = service.create(_payload())

    rule = service.update(rule.id, _payload(start_date=datetime(2024, 3, 1)))
    assert rule.next_occurrence == datetime(2024, 3, 1)

    rule = service.update(
        rule.id, _payload(start_date=datetime(2023, 6, 1), amount_cents=4_000)
    )
    assert rule.next_occurrence == datetime(2024, 3, 1)
    assert rule.amount_cents == 4_000


def test_toggle_and_due_queries():
    session = make_session()
    space = _space(session)
    service = RecurringExpenseService(session, space.id)
    rule = service.create(_payload())

    assert [r.id for r in service.due(datetime(2024, 1, 15, 9, 0))] == [rule.id]
    assert service.due(datetime(2024, 1, 15, 8, 59)) == []

    assert service.toggle(rule.id).is_active is False
    assert service.due(datetime(2024, 2, 1)) == []
    assert service.process_due(datetime(2024, 2, 1)) == 0

    service.set_active(rule.id, True)
    assert service.process_due(datetime(2024, 2, 1)) == 1
    assert service.get(rule.id).next_occurrence == datetime(2024, 2, 15, 9, 0)

    service.set_next_occurrence(rule.id, datetime(2025, 1, 1))
    assert service.due(datetime(2024, 12, 31)) == []


def test_delete_rule_keeps_generated_expenses():
    session = make_session()
    space = _space(session)
    service = RecurringExpenseService(session, space.id)
    rule = service.create(_payload())
    service.process_due(datetime(2024, 3, 20))

    service.delete(rule.id)

    expenses = session.scalars(select(Expense)).all()
    assert len(expenses) == 3
    assert all(e.recurring_expense_id is None for e in expenses)
    assert ExpenseService(session, space.id).balance() == -3 * 5_999
    with pytest.raises(NotFoundError):
        service.get(rule.id)


def test_rule_from_other_space_is_not_found():
    session = make_session()
    home = _space(session, "Home")
    work = _space(session, "Work")
    rule = RecurringExpenseService(session, work.id).create(_payload())

    with pytest.raises(NotFoundError):
        RecurringExpenseService(session, home.id).get(rule.id)


def test_recurring_deposit_lifecycle():
    session = make_session()
    space = _space(session)
    ExpenseService(session, space.id).create(
        ExpenseIn(
            description="Paycheck",
            amount_cents=50_000,
            type=ExpenseType.topup,
            date=datetime(2024, 1, 1),
        )
    )
    accounts = MoneyAccountService(session, space.id)
    savings = accounts.create_account(MoneyAccountIn(name="Savings"))
    service = RecurringDepositService(session, space.id)

    rule = service.create(
        RecurringDepositIn(
            account_id=savings.id,
            amount_cents=10_000,
            frequency=Frequency.biweekly,
            start_date=datetime(2024, 1, 1),
            end_date=datetime(2024, 1, 31),
            title="  Rainy day  ",
        )
    )
    assert rule.title == "Rainy day"
    assert rule.next_occurrence == datetime(2024, 1, 1)

    assert service.process_due(datetime(2024, 2, 10)) == 1
    rule = service.get(rule.id)
    # Jan 1, Jan 15 and Jan 29 fall inside the window.
    assert accounts.account_balance(savings.id) == 30_000
    assert rule.next_occurrence == datetime(2024, 2, 12)
    assert not rule.is_active

    with pytest.raises(ValueError, match="recurring deposits"):
        accounts.delete_account(savings.id)

    service.delete(rule.id)
    transfers = session.scalars(select(AccountTransfer)).all()
    assert len(transfers) == 3
    assert all(t.recurring_deposit_id is None for t in transfers)


def test_recurring_deposit_rejects_foreign_account():
    session = make_session()
    home = _space(session, "Home")
    work = _space(session, "Work")
    foreign = MoneyAccountService(session, work.id).create_account(
        MoneyAccountIn(name="Petty cash")
    )

    with pytest.raises(NotFoundError):
        RecurringDepositService(session, home.id).create(
            RecurringDepositIn(
                account_id=foreign.id,
                amount_cents=100,
                frequency=Frequency.weekly,
                start_date=datetime(2024, 1, 1),
            )
        )


def test_set_next_occurrence_moves_monthly_schedule_to_that_day():
    session = make_session()
    space = _space(session)
    service = RecurringExpenseService(session, space.id)
    rule = service.create(_payload(start_date=datetime(2024, 1, 31)))

    service.set_next_occurrence(rule.id, datetime(2024, 3, 10))
    service.process_due(datetime(2024, 3, 15))

    rule = service.get(rule.id)
    assert rule.next_occurrence == datetime(2024, 4, 10)
    dates = [e.date for e in session.scalars(select(Expense)).all()]
    assert dates == [datetime(2024, 3, 10)]


def test_update_without_pull_forward_keeps_month_end_schedule():
    session = make_session()
    space = _space(session)
    service = RecurringExpenseService(session, space.id)
    rule = service.create(_payload(start_date=datetime(2024, 1, 31)))
    service.process_due(datetime(2024, 2, 1))
    assert service.get(rule.id).next_occurrence == datetime(2024, 2, 29)

    service.update(rule.id, _payload(start_date=datetime(2024, 1, 10)))
    service.process_due(datetime(2024, 3, 1))

    assert service.get(rule.id).next_occurrence == datetime(2024, 3, 31)


def test_update_pulling_forward_adopts_new_start_day():
    session = make_session()
    space = _space(session)
    service = RecurringExpenseService(session, space.id)
    rule = service.create(_payload(start_date=datetime(2024, 1, 31)))

    service.update(rule.id, _payload(start_date=datetime(2024, 2, 10)))
    service.process_due(datetime(2024, 2, 15))

    assert service.get(rule.id).next_occurrence == datetime(2024, 3, 10)


def test_due_is_scoped_to_the_service_space():
    session = make_session()
    home = _space(session, "Home")
    work = _space(session, "Work")
    home_rule = RecurringExpenseService(session, home.id).create(_payload())
    RecurringExpenseService(session, work.id).create(_payload())

    due = RecurringExpenseService(session, home.id).due(datetime(2024, 2, 1))

    assert [r.id for r in due] == [home_rule.id]
