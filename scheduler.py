import logging
import threading
from contextlib import AbstractContextManager
from datetime import datetime
from typing import Callable, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.orm import Session

from config import get_settings
from database import session_scope
from recurrence import RecurringEngine, local_now


logger = logging.getLogger(__name__)


class SchedulerManager:
    """Runs the recurring-rule tick once at startup and then on an interval.

    APScheduler keeps at most one tick in flight; a tick that overruns the
    interval makes the next one get skipped rather than overlap.
    """

    def __init__(
        self,
        *,
        interval_secs: Optional[int] = None,
        clock: Callable[[], datetime] = local_now,
        session_factory: Callable[[], AbstractContextManager[Session]] = session_scope,
    ) -> None:
        settings = get_settings()
        self.interval_secs = interval_secs or settings.scheduler_interval_secs
        self.clock = clock
        self.session_factory = session_factory
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)
        self._stopping = threading.Event()

    def run_tick(self, source: str = "manual") -> int:
        if self._stopping.is_set():
            logger.info(f"scheduler_run: source={source} skipped=stopping")
            return 0
        now = self.clock()
        logger.info(f"scheduler_run: source={source} now={now.isoformat()}")
        with self.session_factory() as session:
            engine = RecurringEngine(session, should_stop=self._stopping.is_set)
            count = engine.process_due(now)
        logger.info(f"scheduler_run: source={source} rules_processed={count}")
        return count

    def _run_job(self, source: str) -> None:
        try:
            self.run_tick(source)
        except Exception:
            logger.exception(f"scheduler_run_failed: source={source}")

    def start(self) -> None:
        self._stopping.clear()
        self._run_job("startup")

        trigger = IntervalTrigger(seconds=self.interval_secs)
        self.scheduler.add_job(
            self._run_job,
            trigger,
            args=["interval"],
            id="recurring_interval",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started with interval={self.interval_secs}s")

    def stop(self) -> None:
        self._stopping.set()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")

    @property
    def running(self) -> bool:
        return self.scheduler.running
