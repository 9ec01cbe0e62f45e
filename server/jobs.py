"""Background work for LinkVault.

Captures travel over a Redis list (``LPUSH`` on submit, ``BRPOP`` on the
worker). Periodic maintenance (failed-capture sweeps, embedding backfill)
runs on APScheduler.
"""

import asyncio
import json
import logging
import time
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

import redis
from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.executors.asyncio import AsyncIOExecutor
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from services.capture import CaptureMessage
from services.shared.errors import ValidationError

logger = logging.getLogger(__name__)

MEMORY_POLL_INTERVAL = 0.1


class WorkQueue:
    """Capture work queue.

    Backed by a Redis list when ``redis_url`` is set, otherwise by an
    in-process deque (development and tests).
    """

    def __init__(self, redis_url: Optional[str] = None, queue_name: str = "linkvault:captures",
                 client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.queue_name = queue_name
        self._client = client
        self._memory: Deque[str] = deque()

    @property
    def uses_redis(self) -> bool:
        return self._client is not None or bool(self.redis_url)

    def _redis(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.from_url(self.redis_url, decode_responses=True)
        return self._client

    async def _run(self, func, *args):
        return await asyncio.get_running_loop().run_in_executor(None, func, *args)

    async def publish(self, message: CaptureMessage) -> bool:
        """Push a message. Returns False instead of raising on failure."""
        payload = message.to_json()
        if not self.uses_redis:
            self._memory.appendleft(payload)
            return True
        try:
            await self._run(self._redis().lpush, self.queue_name, payload)
        except redis.RedisError as e:
            logger.error(f"Failed to publish capture {message.capture_id}: {e}")
            return False
        return True

    async def consume(self, timeout: int = 5) -> Optional[CaptureMessage]:
        """Pop the oldest message, waiting up to ``timeout`` seconds.

        Malformed payloads are logged and dropped.
        """
        if self.uses_redis:
            item = await self._run(lambda: self._redis().brpop(self.queue_name, timeout=timeout))
            payload = item[1] if item else None
        else:
            payload = await self._pop_memory(timeout)

        if payload is None:
            return None
        try:
            return CaptureMessage.from_json(payload)
        except ValidationError as e:
            logger.error(f"Dropping malformed queue payload: {e}")
            return None

    async def _pop_memory(self, timeout: float) -> Optional[str]:
        deadline = time.monotonic() + timeout
        while True:
            if self._memory:
                return self._memory.pop()
            if time.monotonic() >= deadline:
                return None
            await asyncio.sleep(MEMORY_POLL_INTERVAL)

    async def size(self) -> int:
        if not self.uses_redis:
            return len(self._memory)
        return await self._run(self._redis().llen, self.queue_name)

    async def ping(self) -> bool:
        if not self.uses_redis:
            return True
        try:
            return bool(await self._run(self._redis().ping))
        except redis.RedisError as e:
            logger.warning(f"Redis not available: {e}")
            return False

    async def close(self):
        if self._client is not None:
            await self._run(self._client.close)
            self._client = None


class QueueWorker:
    """Consumes capture messages and hands them to a handler."""

    def __init__(self, queue: WorkQueue, handler: Callable[[CaptureMessage], Awaitable[Any]],
                 consume_timeout: int = 5):
        self.queue = queue
        self.handler = handler
        self.consume_timeout = consume_timeout
        self._running = False

    async def run_once(self) -> bool:
        """Handle at most one message. Returns True if one was consumed."""
        message = await self.queue.consume(timeout=self.consume_timeout)
        if message is None:
            return False
        try:
            await self.handler(message)
        except Exception as e:
            logger.error(f"Handler failed for capture {message.capture_id}: {e}",
                         extra={"trace_id": message.trace_id, "capture_id": message.capture_id,
                                "user_id": message.user_id},
                         exc_info=True)
        return True

    async def run_forever(self):
        self._running = True
        logger.info(f"Queue worker started on {self.queue.queue_name}")
        while self._running:
            await self.run_once()
        logger.info("Queue worker stopped")

    def stop(self):
        self._running = False


class JobStatus(str, Enum):
    """Job status enumeration."""
    QUEUED = "queued"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass
class JobRecord:
    """Tracks one run of a maintenance job."""
    id: str
    type: str
    status: JobStatus
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    parameters: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ('created_at', 'started_at', 'completed_at'):
            if data[key]:
                data[key] = data[key].isoformat()
        return data


JobHandler = Callable[[str, Dict[str, Any]], Awaitable[Optional[Dict[str, Any]]]]


class JobManager:
    """Runs registered maintenance jobs on demand or on a cron schedule."""

    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None, history_size: int = 100):
        self.scheduler = scheduler
        self.job_handlers: Dict[str, JobHandler] = {}
        self.history_size = history_size
        self._jobs: Dict[str, JobRecord] = {}
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    def start(self):
        """Start the scheduler. Must be called from a running event loop."""
        if self.scheduler is None:
            self.scheduler = AsyncIOScheduler(
                executors={'default': AsyncIOExecutor()},
                job_defaults={'coalesce': True, 'max_instances': 1},
            )
        self.scheduler.add_listener(self._job_executed, EVENT_JOB_EXECUTED)
        self.scheduler.add_listener(self._job_error, EVENT_JOB_ERROR)
        self.scheduler.start()
        self._running = True
        logger.info("Job scheduler started")

    def shutdown(self):
        self._running = False
        if self.scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        logger.info("Job manager shutdown complete")

    def register_handler(self, job_type: str, handler: JobHandler):
        self.job_handlers[job_type] = handler
        logger.info(f"Registered handler for job type: {job_type}")

    def _require_running(self):
        if not self._running:
            raise RuntimeError("Job manager not started")

    def enqueue_job(self, job_type: str, parameters: Optional[Dict[str, Any]] = None) -> str:
        """Schedule one run of ``job_type`` as soon as possible."""
        self._require_running()
        if job_type not in self.job_handlers:
            raise ValueError(f"No handler registered for job type: {job_type}")

        job_id = str(uuid.uuid4())
        self.scheduler.add_job(
            self.run_job, 'date',
            run_date=datetime.now() + timedelta(seconds=1),
            args=[job_type, parameters or {}, job_id],
            id=job_id,
        )
        logger.info(f"Enqueued job {job_id} of type {job_type}")
        return job_id

    def schedule_periodic_job(self, job_type: str, cron_expression: str,
                              parameters: Optional[Dict[str, Any]] = None,
                              job_id: Optional[str] = None) -> str:
        """Schedule ``job_type`` with a 5-field cron expression."""
        self._require_running()
        if job_type not in self.job_handlers:
            raise ValueError(f"No handler registered for job type: {job_type}")

        cron_parts = cron_expression.split()
        if len(cron_parts) != 5:
            raise ValueError("Cron expression must have 5 parts: minute hour day month day_of_week")
        minute, hour, day, month, day_of_week = cron_parts

        job_id = job_id or f"periodic_{job_type}"
        self.scheduler.add_job(
            self.run_job, 'cron',
            minute=minute, hour=hour, day=day, month=month, day_of_week=day_of_week,
            args=[job_type, parameters or {}],
            id=job_id,
            replace_existing=True,
        )
        logger.info(f"Scheduled periodic job {job_id} with cron: {cron_expression}")
        return job_id

    async def run_job(self, job_type: str, parameters: Dict[str, Any],
                      job_id: Optional[str] = None) -> JobRecord:
        """Run a handler now and record the outcome. Handler errors are recorded, not raised."""
        job = JobRecord(
            id=job_id or str(uuid.uuid4()),
            type=job_type,
            status=JobStatus.QUEUED,
            created_at=datetime.now(),
            parameters=parameters,
        )
        self._remember(job)

        handler = self.job_handlers.get(job_type)
        if handler is None:
            job.status = JobStatus.FAILED
            job.error = f"No handler registered for job type: {job_type}"
            logger.error(job.error)
            return job

        job.status = JobStatus.RUNNING
        job.started_at = datetime.now()
        try:
            job.result = await handler(job.id, parameters)
            job.status = JobStatus.DONE
        except Exception as e:
            job.status = JobStatus.FAILED
            job.error = str(e)
            logger.error(f"Job {job.id} ({job_type}) failed: {e}", exc_info=True)
        job.completed_at = datetime.now()
        return job

    def _remember(self, job: JobRecord):
        self._jobs[job.id] = job
        while len(self._jobs) > self.history_size:
            self._jobs.pop(next(iter(self._jobs)))

    def get_job(self, job_id: str) -> Optional[JobRecord]:
        return self._jobs.get(job_id)

    def list_jobs(self, status: Optional[JobStatus] = None, limit: int = 100) -> List[JobRecord]:
        jobs = [job for job in self._jobs.values() if status is None or job.status == status]
        jobs.sort(key=lambda job: job.created_at, reverse=True)
        return jobs[:limit]

    def _job_executed(self, event):
        logger.debug(f"Scheduler job {event.job_id} executed")

    def _job_error(self, event):
        logger.error(f"Scheduler job {event.job_id} failed: {event.exception}")
