from datetime import datetime

import pytest
from pydantic import ValidationError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from database import Base
from models import ExpenseType, Frequency, PaymentMethodType, Space
from schemas import ExpenseIn, MoneyAccountIn, PaymentMethodIn, RecurringExpenseIn
from services import (
    ExpenseService,
    MoneyAccountService,
    NotFoundError,
    PaymentMethodService,
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


def test_payment_method_input_validation():
    with pytest.raises(ValidationError):
        PaymentMethodIn(name="Visa", type=PaymentMethodType.credit, last_four="424")
    with pytest.raises(ValidationError):
        PaymentMethodIn(name="Visa", type=PaymentMethodType.credit, last_four="42a2")
    with pytest.raises(ValidationError):
        PaymentMethodIn(name="   ", type=PaymentMethodType.debit, last_four="4242")
    with pytest.raises(ValidationError):
        PaymentMethodIn(name="Visa", type="cash", last_four="4242")

    data = PaymentMethodIn(name="  Visa  ", type="credit", last_four="4242")
    assert data.name == "Visa"
    assert data.type == PaymentMethodType.credit


def test_payment_method_crud_is_space_scoped():
    session = make_session()
    home = _space(session, "Home")
    work = _space(session, "Work")
    methods = PaymentMethodService(session, home.id)

    visa = methods.create(
        PaymentMethodIn(name="Visa", type=PaymentMethodType.credit, last_four="4242"),
        created_by=3,
    )
    methods.create(
        PaymentMethodIn(name="Amex", type=PaymentMethodType.credit, last_four="1005")
    )
    PaymentMethodService(session, work.id).create(
        PaymentMethodIn(name="Corporate", type=PaymentMethodType.debit, last_four="9999")
    )

    assert visa.created_by == 3
    assert [m.name for m in methods.list()] == ["Amex", "Visa"]

    updated = methods.update(
        visa.id,
        PaymentMethodIn(name="Visa Debit", type=PaymentMethodType.debit, last_four="1111"),
    )
    assert updated.name == "Visa Debit"
    assert updated.type == PaymentMethodType.debit
    assert updated.last_four == "1111"

    with pytest.raises(NotFoundError):
        PaymentMethodService(session, work.id).get(visa.id)


def test_deleting_payment_method_detaches_expenses_and_rules():
    session = make_session()
    space = _space(session)
    methods = PaymentMethodService(session, space.id)
    visa = methods.create(
        PaymentMethodIn(name="Visa", type=PaymentMethodType.credit, last_four="4242")
    )
    expense = ExpenseService(session, space.id).create(
        ExpenseIn(
            description="Groceries",
            amount_cents=3_200,
            date=datetime(2024, 1, 5),
            payment_method_id=visa.id,
        )
    )
    rule = RecurringExpenseService(session, space.id).create(
        RecurringExpenseIn(
            description="Streaming",
            amount_cents=1_299,
            type=ExpenseType.expense,
            frequency=Frequency.monthly,
            start_date=datetime(2024, 1, 1),
            payment_method_id=visa.id,
        )
    )

    methods.delete(visa.id)

    session.expire_all()
    assert ExpenseService(session, space.id).get(expense.id).payment_method_id is None
    assert RecurringExpenseService(session, space.id).get(rule.id).payment_method_id is None
    assert methods.list() == []
    with pytest.raises(NotFoundError):
        methods.delete(visa.id)


def test_tag_update_renames_and_rejects_duplicates():
    session = make_session()
    space = _space(session)
    tags = TagService(session, space.id)
    food = tags.get_or_create("Food")
    tags.get_or_create("Travel")
    session.commit()

    renamed = tags.update(food.id, "  Groceries ", color="#22aa55")
    assert renamed.name == "Groceries"
    assert renamed.color == "#22aa55"

    with pytest.raises(ValueError, match="already exists"):
        tags.update(food.id, "travel")
    with pytest.raises(ValueError, match="cannot be empty"):
        tags.update(food.id, "  ")
    # Changing only the case of its own name is allowed.
    assert tags.update(food.id, "GROCERIES").name == "GROCERIES"


def test_account_rename():
    session = make_session()
    home = _space(session, "Home")
    work = _space(session, "Work")
    accounts = MoneyAccountService(session, home.id)
    account = accounts.create_account(MoneyAccountIn(name="Savings"))

    renamed = accounts.update_account(account.id, MoneyAccountIn(name="  Rainy day "))

    assert renamed.name == "Rainy day"
    with pytest.raises(ValueError, match="cannot be empty"):
        accounts.update_account(account.id, MoneyAccountIn(name="   "))
    with pytest.raises(NotFoundError):
        MoneyAccountService(session, work.id).update_account(
            account.id, MoneyAccountIn(name="Mine now")
        )
