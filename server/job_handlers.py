"""Job handlers for periodic maintenance tasks."""

import logging
from typing import Any, Dict

from indexer.embeddings import EmbeddingGenerator
from services.capture import RetryService

from .jobs import JobManager

logger = logging.getLogger(__name__)

RETRY_FAILED_JOB = "retry_failed"
BACKFILL_EMBEDDINGS_JOB = "backfill_embeddings"
RECONCILE_PENDING_JOB = "reconcile_pending"


class MaintenanceJobs:
    """Job handlers bound to the services they drive."""

    def __init__(self, retry_service: RetryService, embedder: EmbeddingGenerator):
        self.retry_service = retry_service
        self.embedder = embedder

    async def retry_failed_job(self, job_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """
        Requeue failed captures in paced batches.

        Args:
            job_id: Unique job identifier
            params: Job parameters, all optional:
                - batch_size: Captures per batch
                - delay_seconds: Pause between batches
                - source_type: Only retry this source type
                - limit: Maximum captures to retry

        Returns:
            Dict with the retry report
        """
        logger.info(f"Starting retry job {job_id}")
        report = await self.retry_service.requeue_failed(
            batch_size=params.get("batch_size"),
            delay_seconds=params.get("delay_seconds"),
            source_type=params.get("source_type"),
            limit=params.get("limit"),
        )
        logger.info(f"Retry job {job_id} requeued {report.requeued} captures")
        return report.to_dict()

    async def reconcile_pending_job(self, job_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Republish pending captures whose queue handoff failed at submission."""
        logger.info(f"Starting pending reconciliation job {job_id}")
        report = await self.retry_service.requeue_stale_pending(
            older_than_seconds=params.get("older_than_seconds"),
            limit=params.get("limit"),
        )
        return report.to_dict()

    async def backfill_embeddings_job(self, job_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
        """Generate embeddings for complete captures that have none."""
        logger.info(f"Starting embedding backfill job {job_id}")
        return await self.embedder.backfill(limit=params.get("limit"))

    def register(self, job_manager: JobManager):
        job_manager.register_handler(RETRY_FAILED_JOB, self.retry_failed_job)
        job_manager.register_handler(BACKFILL_EMBEDDINGS_JOB, self.backfill_embeddings_job)
        job_manager.register_handler(RECONCILE_PENDING_JOB, self.reconcile_pending_job)


def schedule_maintenance(job_manager: JobManager, jobs: MaintenanceJobs,
                         retry_cron: str, backfill_cron: str, reconcile_cron: str = "*/15 * * * *") -> None:
    """Register the handlers and put every sweep on its cron schedule."""
    jobs.register(job_manager)
    job_manager.schedule_periodic_job(RETRY_FAILED_JOB, retry_cron)
    job_manager.schedule_periodic_job(BACKFILL_EMBEDDINGS_JOB, backfill_cron)
    job_manager.schedule_periodic_job(RECONCILE_PENDING_JOB, reconcile_cron)
    logger.info("Maintenance jobs scheduled")
