import logging
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import get_settings
from database import session_scope
from notifications import NotificationDispatcher
from recurrence import (
    CardBillingProcessor,
    RecurringIncomeScheduler,
    RecurringTransactionScheduler,
)


logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def run_recurring_income() -> int:
    with session_scope() as session:
        return RecurringIncomeScheduler(session).process_due().processed


def run_recurring_transactions() -> int:
    with session_scope() as session:
        return RecurringTransactionScheduler(session).process_due().processed


def run_card_billing() -> int:
    with session_scope() as session:
        return CardBillingProcessor(session).process_billing()["processed"]


def run_event_dispatch() -> int:
    with session_scope() as session:
        return NotificationDispatcher(session).dispatch_pending()


class SchedulerManager:
    jobs = (
        ("recurring_income", run_recurring_income),
        ("recurring_transactions", run_recurring_transactions),
        ("card_billing", run_card_billing),
        ("event_dispatch", run_event_dispatch),
    )

    def __init__(self) -> None:
        settings = get_settings()
        self.scheduler = BackgroundScheduler(timezone=settings.timezone)

    def _run_daily(self, source: str = "manual") -> None:
        logger.info(f"scheduler_run: source={source}")
        for name, job in self.jobs:
            try:
                count = job()
            except Exception:
                logger.exception(f"scheduler_job_failed: source={source} job={name}")
                continue
            logger.info(f"scheduler_run: source={source} job={name} processed={count}")

    def _run_dispatch(self) -> None:
        try:
            run_event_dispatch()
        except Exception:
            logger.exception("scheduler_job_failed: job=event_dispatch")

    def start(self) -> None:
        trigger = CronTrigger(hour=3, minute=15)
        self.scheduler.add_job(
            self._run_daily,
            trigger,
            args=["daily_03:15"],
            id="ledger_daily",
            replace_existing=True,
            misfire_grace_time=3600,
        )

        trigger = IntervalTrigger(hours=1)
        self.scheduler.add_job(
            self._run_dispatch,
            trigger,
            id="event_dispatch_hourly",
            replace_existing=True,
            misfire_grace_time=300,
        )

        self.scheduler.start()
        logger.info("Scheduler started with daily 03:15 run and hourly event dispatch")

    def stop(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
