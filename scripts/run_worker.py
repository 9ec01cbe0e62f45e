#!/usr/bin/env python3
"""Capture worker process.

Consumes the capture queue and runs the periodic maintenance jobs
(failed-capture sweep, embedding backfill) on the same event loop.
"""

import argparse
import asyncio
import logging
import signal

from config.settings import Settings
from observability.logging import setup_logging
from server.container import AppContainer
from server.job_handlers import MaintenanceJobs, schedule_maintenance
from server.jobs import JobManager, QueueWorker

logger = logging.getLogger(__name__)


async def main():
    parser = argparse.ArgumentParser(description="Run the LinkVault capture worker")
    parser.add_argument("--no-scheduler", action="store_true", help="Only consume the queue")
    args = parser.parse_args()

    settings = Settings.from_env()
    setup_logging(level=settings.logging.level, use_json=settings.logging.use_json,
                  log_file=settings.logging.log_file)

    container = AppContainer(settings)
    job_manager = JobManager()
    if not args.no_scheduler:
        job_manager.start()
        schedule_maintenance(job_manager, MaintenanceJobs(container.retry_service, container.embedder),
                             retry_cron=settings.retry.schedule_cron,
                             backfill_cron=settings.retry.backfill_cron,
                             reconcile_cron=settings.retry.reconcile_cron)

    worker = QueueWorker(container.queue, container.worker.process,
                         consume_timeout=settings.queue.consume_timeout)
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.run_forever()
    finally:
        job_manager.shutdown()
        await container.close()
        logger.info("Worker process exited")


if __name__ == "__main__":
    asyncio.run(main())
