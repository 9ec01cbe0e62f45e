"""Capture submission, processing and batch retry.

Submission is synchronous up to persistence and queue acknowledgement.
Scraping and embedding run later on a worker that consumes
:class:`CaptureMessage` payloads.
"""

import json
import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any, Dict, FrozenSet, List, Optional, Protocol, Tuple

from indexer.embeddings import EmbeddingGenerator
from observability.logging import StructuredLogger, get_structured_logger
from observability.metrics import record_capture, record_processed, record_queue_publish
from pipelines.dispatcher import ScraperDispatcher
from pipelines.pacing import Pacer
from pipelines.scrapers import ScrapeOptions
from pipelines.urls import classify, normalize
from services.shared.errors import (
    DuplicateError, EmbeddingError, QueueHandoffError, ScrapeError, ValidationError,
)
from services.shared.models import CaptureStatus, utcnow
from services.shared.store import ContentStore

logger = logging.getLogger(__name__)

CAPTURE_SCOPE = "capture"
SEARCH_SCOPE = "search"


@dataclass(frozen=True)
class Principal:
    """Authenticated caller, resolved by the auth layer."""
    user_id: str
    scopes: FrozenSet[str] = frozenset({CAPTURE_SCOPE, SEARCH_SCOPE})

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes


@dataclass
class CaptureReceipt:
    id: str
    status: str
    source_type: str

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "status": self.status, "sourceType": self.source_type}


@dataclass
class CaptureMessage:
    """Queue payload handed from submission to the worker."""
    capture_id: str
    url: str
    source_type: str
    user_id: str
    trace_id: str
    notes: Optional[str] = None

    _KEYS = {
        "capture_id": "captureId",
        "url": "url",
        "source_type": "sourceType",
        "user_id": "userId",
        "trace_id": "traceId",
        "notes": "notes",
    }

    def to_dict(self) -> Dict[str, Any]:
        return {self._KEYS[key]: value for key, value in asdict(self).items()}

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CaptureMessage':
        reverse = {wire: attr for attr, wire in cls._KEYS.items()}
        try:
            return cls(**{reverse[key]: value for key, value in data.items() if key in reverse})
        except TypeError as e:
            raise ValidationError(f"Malformed capture message: {e}") from e

    @classmethod
    def from_json(cls, payload: str) -> 'CaptureMessage':
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise ValidationError(f"Capture message is not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ValidationError("Capture message must be a JSON object")
        return cls.from_dict(data)


class MessagePublisher(Protocol):
    async def publish(self, message: CaptureMessage) -> bool:
        ...


def new_trace_id() -> str:
    return uuid.uuid4().hex


def _capture_logger(trace_id: str, capture_id: str, user_id: str) -> StructuredLogger:
    return get_structured_logger(__name__, trace_id=trace_id, capture_id=capture_id, user_id=user_id)


class CaptureOrchestrator:
    """Accepts URL submissions and hands them to the work queue."""

    def __init__(self, store: ContentStore, queue: MessagePublisher):
        self.store = store
        self.queue = queue

    async def submit(self, url: str, notes: Optional[str], principal: Principal) -> CaptureReceipt:
        """Persist a pending capture and enqueue it for processing.

        Raises:
            ValidationError: If the URL is not an absolute HTTP(S) URL
            DuplicateError: If the user already captured the normalized URL
            QueueHandoffError: If the queue did not accept the message;
                the pending record is kept
        """
        normalized = normalize(url)
        source_type = classify(normalized).value

        existing = self.store.find_by_url(normalized, principal.user_id)
        if existing is not None:
            record_capture(source_type, "duplicate")
            raise DuplicateError(normalized, principal.user_id, existing_id=existing.id)

        try:
            record = self.store.create(
                user_id=principal.user_id,
                source_url=normalized,
                source_type=source_type,
                platform_data={"user_notes": notes} if notes else {},
            )
        except DuplicateError:
            record_capture(source_type, "duplicate")
            raise

        trace_id = new_trace_id()
        log = _capture_logger(trace_id, record.id, principal.user_id)
        message = CaptureMessage(
            capture_id=record.id,
            url=normalized,
            source_type=source_type,
            user_id=principal.user_id,
            trace_id=trace_id,
            notes=notes,
        )

        try:
            published = await self.queue.publish(message)
        except Exception as e:
            log.error(f"Queue publish raised for capture {record.id}: {e}", exc_info=True)
            published = False

        record_queue_publish("success" if published else "failure")
        if not published:
            record_capture(source_type, "queue_failure")
            raise QueueHandoffError(record.id)

        record_capture(source_type, "accepted")
        log.info(f"Capture accepted: {normalized} ({source_type})")
        return CaptureReceipt(id=record.id, status=CaptureStatus.PENDING.value, source_type=source_type)


class CaptureWorker:
    """Processes queued captures: scrape, persist, embed."""

    def __init__(self, store: ContentStore, dispatcher: ScraperDispatcher,
                 embedder: Optional[EmbeddingGenerator] = None,
                 options: Optional[ScrapeOptions] = None):
        self.store = store
        self.dispatcher = dispatcher
        self.embedder = embedder
        self.options = options or ScrapeOptions()

    async def process(self, message: CaptureMessage) -> Optional[str]:
        """Process one message.

        Returns:
            Final status of the record, or None when the message was skipped
        """
        log = _capture_logger(message.trace_id, message.capture_id, message.user_id)
        record = self.store.get(message.capture_id)
        if record is None:
            log.warning(f"Capture {message.capture_id} not found, dropping message")
            return None
        if record.status != CaptureStatus.PENDING.value:
            log.info(f"Capture {record.id} is {record.status}, skipping redelivery")
            return None

        record = self.store.start_attempt(record.id)
        log.info(f"Processing capture {record.id} (attempt {record.processing_attempts})")

        try:
            content = await self.dispatcher.scrape(record.source_url, self.options)
            fields = content.to_record_fields()
            user_notes = (record.platform_data or {}).get("user_notes")
            if user_notes:
                fields["platform_data"]["user_notes"] = user_notes
            self.store.mark_complete(record.id, fields)
        except ScrapeError as e:
            self.store.mark_failed(record.id, str(e))
            record_processed(record.source_type, CaptureStatus.FAILED.value)
            log.warning(f"Capture {record.id} failed: {e}")
            return CaptureStatus.FAILED.value
        except Exception as e:
            # Attempted records never stay pending
            self.store.mark_failed(record.id, f"Unexpected error: {e}")
            record_processed(record.source_type, CaptureStatus.FAILED.value)
            log.error(f"Capture {record.id} failed unexpectedly: {e}", exc_info=True)
            return CaptureStatus.FAILED.value

        record_processed(record.source_type, CaptureStatus.COMPLETE.value)
        log.info(f"Capture {record.id} complete: {content.title!r}")

        if self.embedder is not None:
            try:
                await self.embedder.embed_record(record.id)
            except EmbeddingError as e:
                log.warning(f"Embedding failed for capture {record.id}: {e}")

        return CaptureStatus.COMPLETE.value


@dataclass
class RetryReport:
    requeued: int = 0
    batches: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"requeued": self.requeued, "batches": self.batches, "errors": list(self.errors)}


class RetryService:
    """Moves failed and stranded captures back onto the queue in paced batches."""

    def __init__(self, store: ContentStore, queue: MessagePublisher,
                 batch_size: int = 5, delay_seconds: float = 30.0,
                 stale_after_seconds: float = 900.0,
                 pacer: Optional[Pacer] = None):
        if batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.store = store
        self.queue = queue
        self.batch_size = batch_size
        self.delay_seconds = delay_seconds
        self.stale_after_seconds = stale_after_seconds
        self.pacer = pacer

    async def requeue_failed(self, batch_size: Optional[int] = None, delay_seconds: Optional[float] = None,
                             source_type: Optional[str] = None, limit: Optional[int] = None) -> RetryReport:
        """Requeue failed captures, oldest first.

        A pacer waits ``delay_seconds`` between batches, never after the last.
        """
        failed = self.store.list_failed(source_type=source_type, limit=limit)
        if not failed:
            logger.info("No failed captures to retry")
            return RetryReport()

        logger.info(f"Requeueing {len(failed)} failed captures")
        report = await self._sweep(failed, self._requeue_one, batch_size, delay_seconds)
        logger.info(f"Retry sweep complete: {report.requeued} requeued, {len(report.errors)} errors "
                    f"in {report.batches} batches")
        return report

    async def requeue_stale_pending(self, older_than_seconds: Optional[float] = None,
                                    batch_size: Optional[int] = None, delay_seconds: Optional[float] = None,
                                    limit: Optional[int] = None) -> RetryReport:
        """Republish pending captures that no worker ever picked up.

        A capture whose queue handoff failed at submission stays pending
        with zero attempts. Once older than ``older_than_seconds`` it is
        published again; a record that still cannot be queued stays pending
        for the next sweep.
        """
        max_age = self.stale_after_seconds if older_than_seconds is None else older_than_seconds
        cutoff = utcnow() - timedelta(seconds=max_age)
        stale = self.store.list_stale_pending(cutoff, limit=limit)
        if not stale:
            logger.info("No stranded pending captures")
            return RetryReport()

        logger.info(f"Republishing {len(stale)} pending captures older than {max_age:.0f}s")
        report = await self._sweep(stale, self._republish_one, batch_size, delay_seconds)
        logger.info(f"Pending sweep complete: {report.requeued} republished, {len(report.errors)} errors")
        return report

    async def _sweep(self, records, handle, batch_size: Optional[int],
                     delay_seconds: Optional[float]) -> RetryReport:
        batch_size = batch_size or self.batch_size
        delay = self.delay_seconds if delay_seconds is None else delay_seconds
        pacer = self.pacer or Pacer(delay, name="retry")
        pacer.reset()

        report = RetryReport()
        for start in range(0, len(records), batch_size):
            await pacer.wait()
            report.batches += 1
            for record in records[start:start + batch_size]:
                await handle(record, report)
        return report

    async def _publish(self, record) -> Tuple[bool, StructuredLogger]:
        trace_id = new_trace_id()
        log = _capture_logger(trace_id, record.id, record.user_id)
        message = CaptureMessage(
            capture_id=record.id,
            url=record.source_url,
            source_type=record.source_type,
            user_id=record.user_id,
            trace_id=trace_id,
            notes=(record.platform_data or {}).get("user_notes"),
        )
        try:
            published = await self.queue.publish(message)
        except Exception as e:
            log.error(f"Queue publish raised for capture {record.id}: {e}", exc_info=True)
            published = False

        record_queue_publish("success" if published else "failure")
        return published, log

    async def _requeue_one(self, record, report: RetryReport) -> None:
        self.store.requeue(record.id)
        published, log = await self._publish(record)
        if published:
            report.requeued += 1
            log.info(f"Requeued capture {record.id}")
            return

        error = QueueHandoffError(record.id, "Retry could not be queued")
        self.store.mark_failed(record.id, str(error))
        report.errors.append({"id": record.id, "error": str(error)})

    async def _republish_one(self, record, report: RetryReport) -> None:
        published, log = await self._publish(record)
        if published:
            report.requeued += 1
            log.info(f"Republished pending capture {record.id}")
            return

        error = QueueHandoffError(record.id)
        report.errors.append({"id": record.id, "error": str(error)})
