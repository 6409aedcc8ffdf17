"""Background scheduler for periodic transaction sync and connection checks.

Jobs run on an APScheduler ``BackgroundScheduler`` with cron triggers, so they
fire on wall-clock boundaries: the transaction sync at minute 0 of every
``SYNC_INTERVAL_HOURS``-th hour, the connection check daily at midnight.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Callable

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.base import BaseTrigger
from apscheduler.triggers.cron import CronTrigger

from config import settings
from database import get_session_local
from services.institution_service import InstitutionService
from services.sync_service import run_sync_job

logger = logging.getLogger(__name__)

TRANSACTION_SYNC_JOB = "transaction-sync"
HEALTH_CHECK_JOB = "health-check"


@dataclass
class JobDefinition:
    func: Callable[[], None]
    trigger: BaseTrigger


def transaction_sync_trigger(interval_hours: int, timezone=None) -> CronTrigger:
    """Cron ``0 */N * * *``. Intervals of 24 hours or more fire at midnight."""
    hour = "0" if interval_hours >= 24 else f"*/{interval_hours}"
    return CronTrigger(minute=0, hour=hour, timezone=timezone)


def health_check_trigger(timezone=None) -> CronTrigger:
    """Cron ``0 0 * * *``."""
    return CronTrigger(minute=0, hour=0, timezone=timezone)


def sync_transactions_job() -> None:
    logger.info("Scheduled transaction sync starting")
    run_sync_job(days=settings.SYNC_DEFAULT_DAYS)


def health_check_job() -> None:
    SessionLocal = get_session_local()
    db = SessionLocal()
    try:
        report = InstitutionService().check_connections(db)
        if report["unhealthy"]:
            logger.warning(
                "Connection check: %d healthy, %d unhealthy (%s)",
                len(report["healthy"]),
                len(report["unhealthy"]),
                ", ".join(item["name"] for item in report["unhealthy"]),
            )
        else:
            logger.info("Connection check: all %d institutions healthy", len(report["healthy"]))
    finally:
        db.close()


def default_jobs() -> dict[str, JobDefinition]:
    tz = settings.SCHEDULER_TIMEZONE or None
    return {
        TRANSACTION_SYNC_JOB: JobDefinition(
            func=sync_transactions_job,
            trigger=transaction_sync_trigger(settings.SYNC_INTERVAL_HOURS, timezone=tz),
        ),
        HEALTH_CHECK_JOB: JobDefinition(
            func=health_check_job, trigger=health_check_trigger(timezone=tz)
        ),
    }


class SchedulerService:
    """Owns the named cron jobs and the scheduler they run on.

    A job is "running" while it sits in the scheduler's job store and the
    scheduler itself is started. Overlapping runs of one job are not
    allowed (``max_instances=1``) and missed runs are coalesced into one.
    """

    def __init__(
        self,
        jobs: dict[str, JobDefinition] | None = None,
        scheduler: BaseScheduler | None = None,
    ):
        self._definitions = jobs if jobs is not None else default_jobs()
        self._scheduler = scheduler or BackgroundScheduler(
            timezone=settings.SCHEDULER_TIMEZONE or None,
            job_defaults={"coalesce": True, "max_instances": 1},
        )
        self._lock = threading.Lock()

    def _run(self, name: str) -> None:
        try:
            self._definitions[name].func()
        except Exception:
            logger.error("Scheduled job %s failed", name, exc_info=True)

    def start_job(self, name: str) -> bool:
        """Add one job to the scheduler. Returns False if unknown or already scheduled."""
        definition = self._definitions.get(name)
        if definition is None:
            return False
        with self._lock:
            if self._scheduler.get_job(name) is not None:
                return False
            if not self._scheduler.running:
                self._scheduler.start()
            job = self._scheduler.add_job(
                self._run, definition.trigger, args=[name], id=name, name=name
            )
        logger.info("Scheduled job %s started, next run at %s", name, job.next_run_time)
        return True

    def start_all(self) -> None:
        for name in self._definitions:
            self.start_job(name)

    def stop_job(self, name: str) -> bool:
        """Remove a job from the scheduler. Returns False if the name is unknown."""
        if name not in self._definitions:
            return False
        with self._lock:
            if self._scheduler.get_job(name) is not None:
                self._scheduler.remove_job(name)
                logger.info("Scheduled job %s stopped", name)
        return True

    def stop_all(self) -> None:
        for name in list(self._definitions):
            self.stop_job(name)

    def shutdown(self) -> None:
        """Remove every job and stop the scheduler thread. Not restartable."""
        self.stop_all()
        with self._lock:
            if self._scheduler.running:
                self._scheduler.shutdown(wait=False)

    def job_status(self) -> dict[str, bool]:
        """Map of job name to whether it is currently scheduled."""
        with self._lock:
            running = self._scheduler.running
            return {
                name: running and self._scheduler.get_job(name) is not None
                for name in self._definitions
            }

    def next_run_times(self) -> dict[str, str | None]:
        """ISO timestamp of each scheduled job's next run (None when stopped)."""
        with self._lock:
            times = {}
            for name in self._definitions:
                job = self._scheduler.get_job(name) if self._scheduler.running else None
                next_run = job.next_run_time if job is not None else None
                times[name] = next_run.isoformat() if next_run else None
            return times

    def trigger_transaction_sync(self) -> None:
        """Run the transaction sync job now, on the calling thread."""
        logger.info("Manual transaction sync triggered")
        self._run(TRANSACTION_SYNC_JOB)


_scheduler: SchedulerService | None = None


def get_scheduler() -> SchedulerService:
    """Return the process-wide scheduler, creating it on first use."""
    global _scheduler
    if _scheduler is None:
        _scheduler = SchedulerService()
    return _scheduler
