from contextlib import contextmanager
from datetime import datetime

from sqlalchemy import create_engine, func, select
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from database import Base
from models import Expense, ExpenseType, Frequency, RecurringExpense, Space
from scheduler import SchedulerManager


def make_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


def _factory(engine):
    @contextmanager
    def session_scope():
        session = Session(engine)
        try:
            yield session
            session.commit()
        finally:
            session.close()

    return session_scope


def _seed(engine) -> int:
    with Session(engine) as session:
        space = Space(name="Household")
        session.add(space)
        session.flush()
        rule = RecurringExpense(
            space_id=space.id,
            description="Gym",
            amount_cents=2_500,
            type=ExpenseType.expense,
            frequency=Frequency.weekly,
            start_date=datetime(2024, 1, 1, 6, 0),
            next_occurrence=datetime(2024, 1, 1, 6, 0),
            is_active=True,
        )
        session.add(rule)
        session.commit()
        return rule.id


def _expense_count(engine) -> int:
    with Session(engine) as session:
        return session.scalar(select(func.count(Expense.id)))


def test_run_tick_processes_due_rules_with_injected_clock():
    engine = make_engine()
    rule_id = _seed(engine)
    manager = SchedulerManager(
        interval_secs=3600,
        clock=lambda: datetime(2024, 1, 20),
        session_factory=_factory(engine),
    )

    assert manager.run_tick() == 1
    assert _expense_count(engine) == 3

    # Same clock again: nothing new is due.
    assert manager.run_tick() == 0
    assert _expense_count(engine) == 3
    with Session(engine) as session:
        rule = session.get(RecurringExpense, rule_id)
        assert rule.next_occurrence == datetime(2024, 1, 22, 6, 0)


def test_run_tick_is_noop_once_stopping():
    engine = make_engine()
    _seed(engine)
    manager = SchedulerManager(
        interval_secs=3600,
        clock=lambda: datetime(2024, 1, 20),
        session_factory=_factory(engine),
    )

    manager.stop()

    assert manager.run_tick() == 0
    assert _expense_count(engine) == 0


def test_start_runs_startup_tick_and_stop_shuts_down():
    engine = make_engine()
    _seed(engine)
    manager = SchedulerManager(
        interval_secs=86_400,
        clock=lambda: datetime(2024, 1, 1, 6, 0),
        session_factory=_factory(engine),
    )

    manager.start()
    try:
        assert manager.running
        assert _expense_count(engine) == 1
        job = manager.scheduler.get_job("recurring_interval")
        assert job is not None
        assert job.max_instances == 1
    finally:
        manager.stop()

    assert not manager.running


def test_failed_tick_is_logged_not_raised(caplog):
    @contextmanager
    def broken_scope():
        raise RuntimeError("database unavailable")
        yield

    manager = SchedulerManager(
        interval_secs=3600,
        clock=lambda: datetime(2024, 1, 1),
        session_factory=broken_scope,
    )

    manager._run_job("interval")

    assert "scheduler_run_failed" in caplog.text
