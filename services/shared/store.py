"""Content record persistence.

Every public method opens its own short session. Returned records are
detached; the session factory must be built with ``expire_on_commit=False``.
"""

import base64
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import String, and_, cast, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .errors import DuplicateError, RecordNotFoundError, ValidationError
from .models import CaptureStatus, ContentRecord, utcnow

logger = logging.getLogger(__name__)


@dataclass
class RecordFilters:
    """Filters for paged listing.

    Equality: ``source_type``, ``status``. Range: ``captured_after`` /
    ``captured_before``. Contains: ``topic``.
    """
    source_type: Optional[str] = None
    status: Optional[str] = None
    captured_after: Optional[datetime] = None
    captured_before: Optional[datetime] = None
    topic: Optional[str] = None


def encode_cursor(record: ContentRecord) -> str:
    raw = f"{record.created_at.isoformat()}|{record.id}"
    return base64.urlsafe_b64encode(raw.encode()).decode()


def decode_cursor(cursor: str) -> Tuple[datetime, str]:
    try:
        raw = base64.urlsafe_b64decode(cursor.encode()).decode()
        created_at, record_id = raw.split('|', 1)
        return datetime.fromisoformat(created_at), record_id
    except (ValueError, UnicodeDecodeError) as e:
        raise ValidationError(f"Invalid cursor: {cursor!r}") from e


class ContentStore:
    """Repository for :class:`ContentRecord` rows."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def _session(self) -> Session:
        return self.session_factory()

    def find_by_url(self, source_url: str, user_id: str) -> Optional[ContentRecord]:
        with self._session() as session:
            return session.query(ContentRecord).filter_by(source_url=source_url, user_id=user_id).first()

    def get(self, record_id: str) -> Optional[ContentRecord]:
        with self._session() as session:
            return session.get(ContentRecord, record_id)

    def require(self, record_id: str) -> ContentRecord:
        record = self.get(record_id)
        if record is None:
            raise RecordNotFoundError(record_id)
        return record

    def create(self, user_id: str, source_url: str, source_type: str,
               platform_data: Optional[Dict[str, Any]] = None) -> ContentRecord:
        """Insert a pending record.

        Raises:
            DuplicateError: If the user already captured ``source_url``
        """
        record = ContentRecord(
            user_id=user_id,
            source_url=source_url,
            source_type=source_type,
            status=CaptureStatus.PENDING.value,
            platform_data=platform_data or {},
            images=[],
            videos=[],
            topics=[],
            captured_at=utcnow(),
        )
        with self._session() as session:
            session.add(record)
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                logger.info(f"Duplicate capture rejected on insert: {source_url} for user {user_id}")
                raise DuplicateError(source_url, user_id) from e
        return record

    def _mutate(self, record_id: str, mutate) -> ContentRecord:
        with self._session() as session:
            record = session.get(ContentRecord, record_id)
            if record is None:
                raise RecordNotFoundError(record_id)
            mutate(record)
            session.commit()
            return record

    def start_attempt(self, record_id: str) -> ContentRecord:
        """Count a processing attempt before any scraping starts."""
        def mutate(record: ContentRecord):
            record.processing_attempts = (record.processing_attempts or 0) + 1
        return self._mutate(record_id, mutate)

    def mark_complete(self, record_id: str, fields: Dict[str, Any]) -> ContentRecord:
        def mutate(record: ContentRecord):
            record.transition(CaptureStatus.COMPLETE)
            record.apply_fields(fields)
            record.error_message = None
            record.processed_at = utcnow()
        return self._mutate(record_id, mutate)

    def mark_failed(self, record_id: str, message: str) -> ContentRecord:
        def mutate(record: ContentRecord):
            record.transition(CaptureStatus.FAILED)
            record.error_message = message
            record.processed_at = utcnow()
        return self._mutate(record_id, mutate)

    def requeue(self, record_id: str) -> ContentRecord:
        """Move a failed record back to pending and clear its error."""
        def mutate(record: ContentRecord):
            record.transition(CaptureStatus.PENDING, requeue=True)
            record.error_message = None
        return self._mutate(record_id, mutate)

    def set_embedding(self, record_id: str, vector: List[float], model: str) -> ContentRecord:
        def mutate(record: ContentRecord):
            record.embedding = list(vector)
            record.embedding_model = model
            record.embedding_generated_at = utcnow()
        return self._mutate(record_id, mutate)

    def update_fields(self, record_id: str, **fields) -> ContentRecord:
        return self._mutate(record_id, lambda record: record.apply_fields(fields))

    def list_failed(self, source_type: Optional[str] = None, limit: Optional[int] = None) -> List[ContentRecord]:
        """Failed records, oldest first."""
        with self._session() as session:
            query = session.query(ContentRecord).filter(ContentRecord.status == CaptureStatus.FAILED.value)
            if source_type:
                query = query.filter(ContentRecord.source_type == source_type)
            query = query.order_by(ContentRecord.created_at.asc(), ContentRecord.id.asc())
            if limit:
                query = query.limit(limit)
            return query.all()

    def list_stale_pending(self, older_than: datetime, limit: Optional[int] = None) -> List[ContentRecord]:
        """Pending records never picked up by a worker and created before ``older_than``, oldest first.

        These are captures whose queue handoff failed at submission.
        """
        with self._session() as session:
            query = session.query(ContentRecord).filter(
                ContentRecord.status == CaptureStatus.PENDING.value,
                ContentRecord.processing_attempts == 0,
                ContentRecord.created_at < older_than,
            ).order_by(ContentRecord.created_at.asc(), ContentRecord.id.asc())
            if limit:
                query = query.limit(limit)
            return query.all()

    def list_searchable(self, user_id: str, topic: Optional[str] = None) -> List[ContentRecord]:
        """Complete records with an embedding in the user's scope."""
        with self._session() as session:
            query = session.query(ContentRecord).filter(
                ContentRecord.user_id == user_id,
                ContentRecord.status == CaptureStatus.COMPLETE.value,
                ContentRecord.embedding.isnot(None),
            )
            if topic:
                query = query.filter(self._topic_clause(topic))
            return [record for record in query.all() if record.embedding]

    def list_missing_embeddings(self, limit: Optional[int] = None) -> List[ContentRecord]:
        with self._session() as session:
            query = session.query(ContentRecord).filter(
                ContentRecord.status == CaptureStatus.COMPLETE.value,
                ContentRecord.embedding.is_(None),
            ).order_by(ContentRecord.created_at.asc())
            if limit:
                query = query.limit(limit)
            return query.all()

    @staticmethod
    def _topic_clause(topic: str):
        return cast(ContentRecord.topics, String).like(f'%"{topic}"%')

    def list_page(self, user_id: str, filters: Optional[RecordFilters] = None,
                  cursor: Optional[str] = None, limit: int = 20) -> Tuple[List[ContentRecord], Optional[str]]:
        """Page through a user's records, newest first.

        Returns:
            Tuple of (records, next_cursor); next_cursor is None on the last page
        """
        filters = filters or RecordFilters()
        with self._session() as session:
            query = session.query(ContentRecord).filter(ContentRecord.user_id == user_id)
            if filters.source_type:
                query = query.filter(ContentRecord.source_type == filters.source_type)
            if filters.status:
                query = query.filter(ContentRecord.status == filters.status)
            if filters.captured_after:
                query = query.filter(ContentRecord.captured_at >= filters.captured_after)
            if filters.captured_before:
                query = query.filter(ContentRecord.captured_at < filters.captured_before)
            if filters.topic:
                query = query.filter(self._topic_clause(filters.topic))

            if cursor:
                created_at, record_id = decode_cursor(cursor)
                query = query.filter(or_(
                    ContentRecord.created_at < created_at,
                    and_(ContentRecord.created_at == created_at, ContentRecord.id < record_id),
                ))

            rows = query.order_by(ContentRecord.created_at.desc(), ContentRecord.id.desc()).limit(limit + 1).all()

        next_cursor = encode_cursor(rows[limit - 1]) if len(rows) > limit else None
        return rows[:limit], next_cursor
