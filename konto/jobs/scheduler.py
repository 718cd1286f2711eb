"""
Recurring triggers for the run-once jobs.

The jobs themselves (``run_daily_snapshots``, ``RefreshOrchestrator.run_once``)
know nothing about recurrence. This module decides when they are due, runs
them, and reports each outcome to the JobMonitor.
"""
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.orm import Session, sessionmaker

from konto.config import Settings
from konto.jobs.monitor import JobMonitor
from konto.services.currency import CurrencyNormalizer
from konto.services.provider import PowensClient
from konto.services.refresh import JOB_NAME as REFRESH_JOB, RefreshOrchestrator
from konto.services.snapshot_engine import run_daily_snapshots
from konto.logging_config import get_logger

logger = get_logger(__name__)

SNAPSHOT_JOB = "daily-snapshots"

# A job receives the stop check and returns a one-line summary
JobFunc = Callable[[Callable[[], bool]], str]


@dataclass
class ScheduledJob:
    """
    Either a daily job (``hour`` set, runs once a day at hour:minute) or an
    interval job (``interval`` set, runs every interval starting at the next
    aligned slot).
    """
    name: str
    func: JobFunc
    interval: Optional[timedelta] = None
    hour: Optional[int] = None
    minute: int = 0
    next_run: Optional[datetime] = None

    @property
    def schedule(self) -> str:
        if self.hour is not None:
            return f"daily at {self.hour:02d}:{self.minute:02d}"
        return f"every {self.interval}"

    def calculate_next_run(self, from_time: datetime) -> datetime:
        if self.hour is not None:
            next_run = from_time.replace(hour=self.hour, minute=self.minute, second=0, microsecond=0)
            if next_run <= from_time:
                next_run += timedelta(days=1)
            return next_run

        # Align interval jobs on midnight, like "0 */6 * * *"
        midnight = from_time.replace(hour=0, minute=0, second=0, microsecond=0)
        elapsed = from_time - midnight
        slots = int(elapsed / self.interval) + 1
        return midnight + self.interval * slots


class JobScheduler:
    def __init__(self, monitor: Optional[JobMonitor] = None, tick_seconds: float = 30.0):
        self.monitor = monitor or JobMonitor()
        self.tick_seconds = tick_seconds
        self.jobs: List[ScheduledJob] = []
        self._stop_event = threading.Event()

    def add_job(self, job: ScheduledJob, now: Optional[datetime] = None) -> ScheduledJob:
        if job.hour is None and job.interval is None:
            raise ValueError(f"Job {job.name} needs either an hour or an interval")
        job.next_run = job.calculate_next_run(now or datetime.now())
        self.jobs.append(job)
        self.monitor.register(job.name, job.schedule)
        return job

    def should_stop(self) -> bool:
        return self._stop_event.is_set()

    def run_job(self, job: ScheduledJob, now: Optional[datetime] = None) -> None:
        """Run one job immediately. A failure is recorded, never raised."""
        self.monitor.start_run(job.name)
        try:
            details = job.func(self.should_stop)
        except Exception as e:
            logger.exception(f"Job {job.name} failed")
            self.monitor.record_error(job.name, e)
        else:
            self.monitor.record_success(job.name, details)
        finally:
            job.next_run = job.calculate_next_run(now or datetime.now())

    def get_pending_jobs(self, now: datetime) -> List[ScheduledJob]:
        pending = [job for job in self.jobs if job.next_run and job.next_run <= now]
        return sorted(pending, key=lambda job: job.next_run)

    def run_pending(self, now: Optional[datetime] = None) -> List[str]:
        """Run every due job once. Returns the names of the jobs that ran."""
        now = now or datetime.now()
        ran = []
        for job in self.get_pending_jobs(now):
            if self.should_stop():
                break
            self.run_job(job, now)
            ran.append(job.name)
        return ran

    def run_forever(self, stop_event: Optional[threading.Event] = None) -> None:
        if stop_event is not None:
            self._stop_event = stop_event
        logger.info(f"Scheduler started with {len(self.jobs)} job(s)")
        while not self._stop_event.is_set():
            self.run_pending()
            self._stop_event.wait(self.tick_seconds)
        logger.info("Scheduler stopped")

    def stop(self) -> None:
        self._stop_event.set()


# ===== JOB FACTORIES =====

def make_snapshot_job(session_factory: sessionmaker, settings: Settings) -> JobFunc:
    def snapshot_job(should_stop: Callable[[], bool]) -> str:
        db: Session = session_factory()
        try:
            normalizer = CurrencyNormalizer.from_db(db, default_currency=settings.base_currency)
            result = run_daily_snapshots(db, normalizer=normalizer, should_stop=should_stop)
            return result.summary()
        finally:
            db.close()
    return snapshot_job


def make_refresh_job(session_factory: sessionmaker, settings: Settings, provider=None) -> JobFunc:
    provider = provider or PowensClient.from_settings(settings)

    def refresh_job(should_stop: Callable[[], bool]) -> str:
        db: Session = session_factory()
        try:
            summary = RefreshOrchestrator(db, provider, settings).run_once(should_stop=should_stop)
            return summary.summary()
        finally:
            db.close()
    return refresh_job


def build_scheduler(
    session_factory: sessionmaker,
    settings: Settings,
    monitor: Optional[JobMonitor] = None,
    provider=None,
    now: Optional[datetime] = None
) -> JobScheduler:
    """Scheduler with the daily snapshot and the periodic stale-account refresh"""
    scheduler = JobScheduler(monitor=monitor)
    scheduler.add_job(
        ScheduledJob(name=SNAPSHOT_JOB, func=make_snapshot_job(session_factory, settings), hour=settings.snapshot_hour),
        now=now
    )
    scheduler.add_job(
        ScheduledJob(
            name=REFRESH_JOB,
            func=make_refresh_job(session_factory, settings, provider),
            interval=timedelta(hours=settings.refresh_interval_hours)
        ),
        now=now
    )
    return scheduler
