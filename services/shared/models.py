"""Persistent capture model and status lifecycle."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Union

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

from .errors import InvalidTransitionError

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), 'postgresql')


def utcnow() -> datetime:
    """Naive UTC timestamp, comparable across SQLite and PostgreSQL rows."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_record_id() -> str:
    return str(uuid.uuid4())


class CaptureStatus(str, Enum):
    """Capture processing status."""
    PENDING = "pending"
    COMPLETE = "complete"
    FAILED = "failed"


# Requeue is the only way back from failed
_TRANSITIONS = {
    (CaptureStatus.PENDING, CaptureStatus.COMPLETE),
    (CaptureStatus.PENDING, CaptureStatus.FAILED),
}
_REQUEUE_TRANSITION = (CaptureStatus.FAILED, CaptureStatus.PENDING)


def validate_transition(current: Union[str, CaptureStatus], target: Union[str, CaptureStatus],
                        requeue: bool = False) -> None:
    """Check a status change.

    Args:
        current: Status the record has now
        target: Status it should move to
        requeue: True only for the explicit failed-capture requeue operation

    Raises:
        InvalidTransitionError: If the change is not allowed
    """
    current = CaptureStatus(current)
    target = CaptureStatus(target)
    if (current, target) in _TRANSITIONS:
        return
    if requeue and (current, target) == _REQUEUE_TRANSITION:
        return
    raise InvalidTransitionError(current.value, target.value)


class ContentRecord(Base):
    """A captured URL for one user, with extracted content and embedding."""
    __tablename__ = 'content_records'

    id = Column(String(36), primary_key=True, default=new_record_id)
    user_id = Column(String(255), nullable=False)
    source_url = Column(String(2048), nullable=False)
    source_type = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default=CaptureStatus.PENDING.value)

    # Extracted content
    title = Column(Text, nullable=True)
    description = Column(Text, nullable=True)
    body_text = Column(Text, nullable=True)
    author_name = Column(String(512), nullable=True)
    author_handle = Column(String(255), nullable=True)
    published_at = Column(String(64), nullable=True)
    images = Column(JSONType, nullable=False, default=list)
    videos = Column(JSONType, nullable=False, default=list)
    platform_data = Column(JSONType, nullable=False, default=dict)

    # Written by the external analyzer
    summary = Column(Text, nullable=True)
    topics = Column(JSONType, nullable=False, default=list)

    # Embedding lineage
    embedding = Column(JSONType, nullable=True)
    embedding_model = Column(String(100), nullable=True)
    embedding_generated_at = Column(DateTime, nullable=True)

    # Processing tracking
    error_message = Column(Text, nullable=True)
    processing_attempts = Column(Integer, nullable=False, default=0)
    captured_at = Column(DateTime, nullable=False, default=utcnow)
    processed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        UniqueConstraint('source_url', 'user_id', name='uq_content_records_url_user'),
        Index('idx_content_records_user_status', 'user_id', 'status'),
        Index('idx_content_records_created', 'created_at', 'id'),
        Index('idx_content_records_status_created', 'status', 'created_at'),
    )

    def transition(self, target: CaptureStatus, requeue: bool = False) -> None:
        """Move to ``target`` after validating the change."""
        validate_transition(self.status, target, requeue=requeue)
        self.status = CaptureStatus(target).value

    def apply_fields(self, fields: Dict[str, Any]) -> None:
        """Overwrite extracted fields wholesale (redelivery safe)."""
        for key, value in fields.items():
            setattr(self, key, value)

    def has_embedding(self) -> bool:
        return bool(self.embedding)

    def to_dict(self, include_body: bool = False) -> Dict[str, Any]:
        data = {
            'id': self.id,
            'user_id': self.user_id,
            'source_url': self.source_url,
            'source_type': self.source_type,
            'status': self.status,
            'title': self.title,
            'description': self.description,
            'author_name': self.author_name,
            'author_handle': self.author_handle,
            'published_at': self.published_at,
            'images': self.images or [],
            'videos': self.videos or [],
            'summary': self.summary,
            'topics': self.topics or [],
            'has_embedding': self.has_embedding(),
            'error_message': self.error_message,
            'processing_attempts': self.processing_attempts,
            'captured_at': _iso(self.captured_at),
            'processed_at': _iso(self.processed_at),
        }
        if include_body:
            data['body_text'] = self.body_text
            data['platform_data'] = self.platform_data or {}
        return data


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() + 'Z' if value else None
