"""Tests for the work queue, queue worker and maintenance jobs."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import redis

from server.job_handlers import (
    BACKFILL_EMBEDDINGS_JOB, RECONCILE_PENDING_JOB, RETRY_FAILED_JOB, MaintenanceJobs, schedule_maintenance,
)
from server.jobs import JobManager, JobStatus, QueueWorker, WorkQueue
from services.capture import CaptureMessage, RetryReport


def make_message(capture_id="c1"):
    return CaptureMessage(capture_id=capture_id, url="https://example.com/", source_type="web",
                          user_id="alice", trace_id="t1")


class TestWorkQueue:
    """Test suite for WorkQueue."""

    @pytest.mark.asyncio
    async def test_memory_fifo(self):
        """Test in-process publish and consume order."""
        queue = WorkQueue()
        assert not queue.uses_redis
        assert await queue.publish(make_message("c1"))
        assert await queue.publish(make_message("c2"))
        assert await queue.size() == 2

        assert (await queue.consume(timeout=0)).capture_id == "c1"
        assert (await queue.consume(timeout=0)).capture_id == "c2"
        assert await queue.consume(timeout=0) is None
        assert await queue.ping()

    @pytest.mark.asyncio
    async def test_redis_publish(self):
        """Test LPUSH of the JSON payload."""
        client = MagicMock()
        queue = WorkQueue(client=client, queue_name="captures")

        assert await queue.publish(make_message())

        client.lpush.assert_called_once_with("captures", make_message().to_json())

    @pytest.mark.asyncio
    async def test_redis_publish_failure(self):
        """Test that Redis errors become a False acknowledgement."""
        client = MagicMock()
        client.lpush.side_effect = redis.ConnectionError("connection refused")
        assert await WorkQueue(client=client).publish(make_message()) is False

    @pytest.mark.asyncio
    async def test_redis_consume(self):
        """Test BRPOP decoding and malformed payload handling."""
        client = MagicMock()
        client.brpop.side_effect = [("captures", make_message().to_json()), ("captures", "{bad"), None]
        queue = WorkQueue(client=client, queue_name="captures")

        assert (await queue.consume(timeout=1)).capture_id == "c1"
        assert await queue.consume(timeout=1) is None
        assert await queue.consume(timeout=1) is None
        client.brpop.assert_called_with("captures", timeout=1)

    @pytest.mark.asyncio
    async def test_redis_ping_failure(self):
        """Test health check against an unreachable Redis."""
        client = MagicMock()
        client.ping.side_effect = redis.ConnectionError("down")
        queue = WorkQueue(client=client)

        assert await queue.ping() is False
        await queue.close()
        client.close.assert_called_once()


class TestQueueWorker:
    """Test suite for QueueWorker."""

    @pytest.mark.asyncio
    async def test_handler_error_does_not_stop_worker(self):
        """Test that a failing message is logged and the next one still runs."""
        queue = WorkQueue()
        await queue.publish(make_message("c1"))
        await queue.publish(make_message("c2"))
        handler = AsyncMock(side_effect=[RuntimeError("boom"), "complete"])
        worker = QueueWorker(queue, handler, consume_timeout=0)

        assert await worker.run_once()
        assert await worker.run_once()
        assert not await worker.run_once()
        assert [call.args[0].capture_id for call in handler.await_args_list] == ["c1", "c2"]


class TestJobManager:
    """Test suite for JobManager."""

    @pytest.fixture
    def manager(self):
        manager = JobManager(scheduler=MagicMock())
        manager.start()
        return manager

    @pytest.mark.asyncio
    async def test_run_job_success(self, manager):
        """Test a recorded successful run."""
        manager.register_handler("echo", AsyncMock(return_value={"ok": True}))

        job = await manager.run_job("echo", {"x": 1})

        assert job.status == JobStatus.DONE
        assert job.result == {"ok": True}
        assert manager.get_job(job.id) is job
        assert job.to_dict()["status"] == "done"

    @pytest.mark.asyncio
    async def test_run_job_failure_recorded(self, manager):
        """Test that handler errors are captured on the record."""
        manager.register_handler("broken", AsyncMock(side_effect=ValueError("bad input")))

        job = await manager.run_job("broken", {})

        assert job.status == JobStatus.FAILED
        assert job.error == "bad input"
        assert manager.list_jobs(status=JobStatus.FAILED) == [job]

    @pytest.mark.asyncio
    async def test_unknown_job_type(self, manager):
        """Test running a type with no handler."""
        job = await manager.run_job("missing", {})
        assert job.status == JobStatus.FAILED

    def test_schedule_periodic_job(self, manager):
        """Test cron parsing into scheduler fields."""
        manager.register_handler("echo", AsyncMock())

        job_id = manager.schedule_periodic_job("echo", "*/15 2 * * mon")

        assert job_id == "periodic_echo"
        kwargs = manager.scheduler.add_job.call_args.kwargs
        assert (kwargs["minute"], kwargs["hour"], kwargs["day_of_week"]) == ("*/15", "2", "mon")
        assert kwargs["replace_existing"] is True

    @pytest.mark.parametrize("cron", ["* * *", "0 0 * * * *"])
    def test_invalid_cron(self, manager, cron):
        """Test that cron expressions need five fields."""
        manager.register_handler("echo", AsyncMock())
        with pytest.raises(ValueError):
            manager.schedule_periodic_job("echo", cron)

    def test_requires_start(self):
        """Test that scheduling before start fails."""
        manager = JobManager(scheduler=MagicMock())
        manager.register_handler("echo", AsyncMock())
        with pytest.raises(RuntimeError):
            manager.enqueue_job("echo")

    @pytest.mark.asyncio
    async def test_history_is_bounded(self):
        """Test that old job records are evicted."""
        manager = JobManager(scheduler=MagicMock(), history_size=2)
        manager.register_handler("echo", AsyncMock(return_value=None))
        first = await manager.run_job("echo", {})
        await manager.run_job("echo", {})
        await manager.run_job("echo", {})
        assert manager.get_job(first.id) is None
        assert len(manager.list_jobs()) == 2


class TestMaintenanceJobs:
    """Test suite for the maintenance job handlers."""

    @pytest.fixture
    def jobs(self):
        retry_service = MagicMock()
        retry_service.requeue_failed = AsyncMock(return_value=RetryReport(requeued=3, batches=1))
        retry_service.requeue_stale_pending = AsyncMock(return_value=RetryReport(requeued=1, batches=1))
        embedder = MagicMock()
        embedder.backfill = AsyncMock(return_value={"processed": 2, "failed": 0})
        return MaintenanceJobs(retry_service, embedder)

    @pytest.mark.asyncio
    async def test_retry_failed_job(self, jobs):
        """Test that job parameters reach the retry service."""
        result = await jobs.retry_failed_job("job-1", {"batch_size": 2, "source_type": "pdf"})

        assert result == {"requeued": 3, "batches": 1, "errors": []}
        jobs.retry_service.requeue_failed.assert_awaited_once_with(
            batch_size=2, delay_seconds=None, source_type="pdf", limit=None)

    @pytest.mark.asyncio
    async def test_reconcile_pending_job(self, jobs):
        """Test that the pending sweep passes its age and limit through."""
        result = await jobs.reconcile_pending_job("job-3", {"older_than_seconds": 60})

        assert result == {"requeued": 1, "batches": 1, "errors": []}
        jobs.retry_service.requeue_stale_pending.assert_awaited_once_with(older_than_seconds=60, limit=None)

    @pytest.mark.asyncio
    async def test_backfill_job(self, jobs):
        """Test the backfill handler."""
        assert await jobs.backfill_embeddings_job("job-2", {"limit": 10}) == {"processed": 2, "failed": 0}
        jobs.embedder.backfill.assert_awaited_once_with(limit=10)

    def test_schedule_maintenance(self, jobs):
        """Test that every sweep is registered and scheduled."""
        manager = JobManager(scheduler=MagicMock())
        manager.start()

        schedule_maintenance(manager, jobs, "0 * * * *", "30 3 * * *")

        assert set(manager.job_handlers) == {RETRY_FAILED_JOB, BACKFILL_EMBEDDINGS_JOB, RECONCILE_PENDING_JOB}
        calls = manager.scheduler.add_job.call_args_list
        assert [call.kwargs["id"] for call in calls] == [
            "periodic_retry_failed", "periodic_backfill_embeddings", "periodic_reconcile_pending"]
        assert calls[2].kwargs["minute"] == "*/15"
