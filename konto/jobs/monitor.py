"""
Job status tracking for the scheduled jobs.

A JobMonitor is created by the process that runs the schedules and handed
to whatever reports on or reads job state (scheduler, orchestrator, the
/health routes). There is no module-level instance.
"""
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from konto.logging_config import get_logger

logger = get_logger(__name__)

STALE_RUN_THRESHOLD = timedelta(hours=25)


class RunStatus(str, Enum):
    NEVER_RUN = "never_run"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class JobStatus:
    name: str
    schedule: str
    last_run: Optional[datetime] = None
    last_status: RunStatus = RunStatus.NEVER_RUN
    last_error: Optional[str] = None
    last_details: Optional[str] = None
    run_count: int = 0
    error_count: int = 0

    @property
    def healthy(self) -> bool:
        return self.last_status in (RunStatus.SUCCESS, RunStatus.NEVER_RUN, RunStatus.RUNNING)


class JobMonitor:
    def __init__(self, stale_after: timedelta = STALE_RUN_THRESHOLD):
        self.stale_after = stale_after
        self._jobs: Dict[str, JobStatus] = {}
        self._lock = threading.Lock()

    def register(self, name: str, schedule: str) -> JobStatus:
        with self._lock:
            status = JobStatus(name=name, schedule=schedule)
            self._jobs[name] = status
        logger.info(f"Registered job: {name} ({schedule})")
        return status

    def start_run(self, name: str) -> None:
        with self._lock:
            job = self._jobs.get(name)
            if job is None:
                return
            job.last_status = RunStatus.RUNNING
        logger.info(f"Starting job: {name}")

    def record_success(self, name: str, details: Optional[str] = None, now: Optional[datetime] = None) -> None:
        with self._lock:
            job = self._jobs.get(name)
            if job is None:
                return
            job.last_run = now or datetime.utcnow()
            job.last_status = RunStatus.SUCCESS
            job.last_error = None
            job.last_details = details
            job.run_count += 1
        logger.info(f"Job completed: {name}" + (f" - {details}" if details else ""))

    def record_error(self, name: str, error: Union[BaseException, str], now: Optional[datetime] = None) -> None:
        with self._lock:
            job = self._jobs.get(name)
            if job is None:
                return
            job.last_run = now or datetime.utcnow()
            job.last_status = RunStatus.ERROR
            job.last_error = str(error)
            job.error_count += 1
        logger.error(f"Job failed: {name} - {error}")

    def status(self, name: str) -> Optional[JobStatus]:
        return self._jobs.get(name)

    def all_jobs(self, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        """Plain-dict view of every job, with seconds since last run"""
        now = now or datetime.utcnow()
        with self._lock:
            jobs = list(self._jobs.values())
        return [
            {
                "name": job.name,
                "schedule": job.schedule,
                "last_run": job.last_run.isoformat() if job.last_run else None,
                "last_status": job.last_status.value,
                "last_error": job.last_error,
                "last_details": job.last_details,
                "run_count": job.run_count,
                "error_count": job.error_count,
                "uptime": (now - job.last_run).total_seconds() if job.last_run else None,
                "healthy": job.healthy,
            }
            for job in jobs
        ]

    def is_healthy(self, now: Optional[datetime] = None) -> bool:
        """False once any job last failed or has not completed within the threshold"""
        now = now or datetime.utcnow()
        with self._lock:
            jobs = list(self._jobs.values())
        for job in jobs:
            if job.last_run is None:
                continue
            if job.last_status == RunStatus.ERROR:
                return False
            if now - job.last_run > self.stale_after:
                return False
        return True
