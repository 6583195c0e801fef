"""Unit tests for sync coordination and scheduling.

Tests cover:
- One sync at a time per process
- Job records for finished and failed runs
- Cron scheduling with APScheduler
"""

import asyncio
import pytest
from unittest.mock import AsyncMock

from pipelines.ingest import SyncResult
from server.jobs import (
    JobStatus,
    SyncCoordinator,
    SyncInProgressError,
    SyncScheduler,
    SYNC_JOB_ID,
)


class TestSyncCoordinator:
    """Test suite for SyncCoordinator."""

    @pytest.mark.asyncio
    async def test_trigger_records_job(self):
        """Test a finished run is recorded with its result."""
        runner = AsyncMock(return_value=SyncResult(success=True, chunks_created=3))
        coordinator = SyncCoordinator(runner)

        job = await coordinator.trigger("manual")

        assert job.status == JobStatus.DONE
        assert job.trigger == "manual"
        assert job.result["chunks_created"] == 3
        assert job.completed_at is not None
        assert coordinator.last_job is job
        assert coordinator.running is False

    @pytest.mark.asyncio
    async def test_unsuccessful_run_marked_failed(self):
        """Test a run with errors is recorded as failed."""
        coordinator = SyncCoordinator(AsyncMock(return_value=SyncResult(success=False, errors=["x"])))

        job = await coordinator.trigger("cron")

        assert job.status == JobStatus.FAILED
        assert job.to_dict()["status"] == "failed"

    @pytest.mark.asyncio
    async def test_concurrent_trigger_refused(self):
        """Test a second trigger during a run is refused."""
        release = asyncio.Event()

        async def slow_run():
            await release.wait()
            return SyncResult(success=True)

        coordinator = SyncCoordinator(slow_run)
        first = asyncio.ensure_future(coordinator.trigger("manual"))
        await asyncio.sleep(0)

        assert coordinator.running is True
        with pytest.raises(SyncInProgressError):
            await coordinator.trigger("cron")

        release.set()
        job = await first
        assert job.status == JobStatus.DONE
        assert coordinator.running is False

    @pytest.mark.asyncio
    async def test_runner_exception(self):
        """Test a raising runner marks the job failed and propagates."""
        coordinator = SyncCoordinator(AsyncMock(side_effect=RuntimeError("boom")))

        with pytest.raises(RuntimeError):
            await coordinator.trigger("manual")

        assert coordinator.last_job.status == JobStatus.FAILED
        assert coordinator.last_job.error == "boom"
        assert coordinator.running is False


class TestSyncScheduler:
    """Test suite for SyncScheduler."""

    def test_disabled_without_cron(self):
        """Test no scheduler starts without a cron expression."""
        scheduler = SyncScheduler(SyncCoordinator(AsyncMock()))

        assert scheduler.start() is False
        assert scheduler.scheduler is None

    @pytest.mark.asyncio
    async def test_cron_job_registered(self):
        """Test the sync job is registered from the crontab expression."""
        scheduler = SyncScheduler(SyncCoordinator(AsyncMock()), cron="0 3 * * *")

        assert scheduler.start() is True
        try:
            job = scheduler.scheduler.get_job(SYNC_JOB_ID)
            assert job is not None
            assert job.next_run_time.hour == 3
        finally:
            scheduler.shutdown()

        assert scheduler.scheduler is None

    @pytest.mark.asyncio
    async def test_scheduled_run_skips_when_busy(self):
        """Test an overlapping scheduled run is skipped quietly."""
        coordinator = AsyncMock()
        coordinator.trigger.side_effect = SyncInProgressError("Sync already in progress")

        assert await SyncScheduler(coordinator, cron="* * * * *").run_scheduled_sync() is None
        coordinator.trigger.assert_awaited_once_with("schedule")
