"""Sync job coordination for n8n-rag-sync.

Serialises ingestion triggers inside one process and schedules periodic
syncs with APScheduler.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Any, Callable, Awaitable
from dataclasses import dataclass, asdict, field

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.triggers.cron import CronTrigger
from apscheduler.events import EVENT_JOB_EXECUTED, EVENT_JOB_ERROR

from observability.logging import sync_run_context
from pipelines.errors import IngestionError

logger = logging.getLogger(__name__)

SYNC_JOB_ID = "scheduled_sync"


class SyncInProgressError(IngestionError):
    """Raised when a trigger arrives while a sync is already running."""


class JobStatus(str, Enum):
    """Job status enumeration."""
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass
class JobRecord:
    """Record of one triggered sync."""
    id: str
    trigger: str
    status: JobStatus
    started_at: datetime
    completed_at: Optional[datetime] = None
    logs: List[str] = field(default_factory=list)
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    def add_log(self, message: str):
        """Add a log message with timestamp."""
        timestamp = datetime.now().isoformat()
        self.logs.append(f"[{timestamp}] {message}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data = asdict(self)
        for name in ['started_at', 'completed_at']:
            if data[name]:
                data[name] = data[name].isoformat()
        data['status'] = self.status.value
        return data


class SyncCoordinator:
    """Runs at most one ingestion at a time in this process."""

    def __init__(self, runner: Callable[[], Awaitable[Any]]):
        """
        Args:
            runner: Coroutine factory performing one ingestion and returning a SyncResult
        """
        self.runner = runner
        self._lock = asyncio.Lock()
        self.last_job: Optional[JobRecord] = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    async def trigger(self, trigger: str) -> JobRecord:
        """Run one sync.

        Raises:
            SyncInProgressError: When a sync is already running
        """
        if self._lock.locked():
            raise SyncInProgressError("Sync already in progress")

        async with self._lock:
            job = JobRecord(
                id=str(uuid.uuid4()),
                trigger=trigger,
                status=JobStatus.RUNNING,
                started_at=datetime.now(),
            )
            self.last_job = job
            job.add_log(f"Sync started by {trigger}")
            logger.info(f"Sync {job.id} started by {trigger}")

            try:
                with sync_run_context(job.id, trigger):
                    result = await self.runner()
            except Exception as e:
                job.status = JobStatus.FAILED
                job.completed_at = datetime.now()
                job.error = str(e)
                job.add_log(f"Sync failed: {e}")
                logger.error(f"Sync {job.id} failed: {e}")
                raise

            job.result = result.to_dict()
            job.status = JobStatus.DONE if result.success else JobStatus.FAILED
            job.completed_at = datetime.now()
            job.add_log(f"Sync finished with {len(result.errors)} errors")
            return job


class SyncScheduler:
    """Periodic sync driven by a crontab expression."""

    def __init__(self, coordinator: SyncCoordinator, cron: Optional[str] = None):
        self.coordinator = coordinator
        self.cron = cron
        self.scheduler: Optional[AsyncIOScheduler] = None

    def start(self) -> bool:
        """Start the scheduler. Returns False when no cron expression is configured."""
        if not self.cron:
            logger.info("SYNC_CRON not set, scheduled sync disabled")
            return False

        trigger = CronTrigger.from_crontab(self.cron)

        self.scheduler = AsyncIOScheduler(
            executors={'default': AsyncIOExecutor()},
            job_defaults={'coalesce': True, 'max_instances': 1}
        )
        self.scheduler.add_listener(self._job_executed, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._job_error, EVENT_JOB_ERROR)
        self.scheduler.add_job(
            self.run_scheduled_sync,
            trigger,
            id=SYNC_JOB_ID,
            max_instances=1,
            replace_existing=True
        )
        self.scheduler.start()
        logger.info(f"Scheduled sync with cron: {self.cron}")
        return True

    def shutdown(self):
        if self.scheduler:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
            logger.info("Sync scheduler shutdown complete")

    async def run_scheduled_sync(self) -> Optional[JobRecord]:
        try:
            return await self.coordinator.trigger("schedule")
        except SyncInProgressError:
            logger.warning("Scheduled sync skipped, a sync is already running")
            return None

    def _job_executed(self, event):
        logger.info(f"Job {event.job_id} executed successfully")

    def _job_error(self, event):
        logger.error(f"Job {event.job_id} failed: {event.exception}")
