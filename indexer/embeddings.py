# LinkVault Embeddings Module
# Builds embedding text for captured records and stores the resulting vectors

import logging
import time
from typing import Any, Dict, List, Optional, Union

from observability.metrics import record_embedding
from services.providers import EmbeddingProvider
from services.shared.errors import EmbeddingError
from services.shared.models import ContentRecord
from services.shared.store import ContentStore

logger = logging.getLogger(__name__)

MAX_INPUT_TOKENS = 8191
CHARS_PER_TOKEN = 4
MAX_INPUT_CHARS = MAX_INPUT_TOKENS * CHARS_PER_TOKEN
BODY_TEXT_LIMIT = 10000


def _field(source: Union[ContentRecord, Dict[str, Any]], name: str) -> Any:
    if isinstance(source, dict):
        return source.get(name)
    return getattr(source, name, None)


def prepare_text(source: Union[ContentRecord, Dict[str, Any]], body_limit: int = BODY_TEXT_LIMIT) -> str:
    """Build the text that represents a record in embedding space.

    Sections appear in a fixed order and empty ones are skipped. The
    description is left out when it repeats the summary.
    """
    parts: List[str] = []

    title = _field(source, 'title')
    summary = _field(source, 'summary')
    description = _field(source, 'description')
    author = _field(source, 'author_name')
    topics = _field(source, 'topics') or []
    body = _field(source, 'body_text')

    if title:
        parts.append(f"Title: {title}")
    if summary:
        parts.append(f"Summary: {summary}")
    if description and description != summary:
        parts.append(f"Description: {description}")
    if author:
        parts.append(f"Author: {author}")
    if topics:
        parts.append(f"Topics: {', '.join(topics)}")
    if body:
        parts.append(f"Content: {body[:body_limit]}")

    return "\n\n".join(parts)


class EmbeddingGenerator:
    """Generates and stores record embeddings"""

    def __init__(self, provider: EmbeddingProvider, store: Optional[ContentStore] = None,
                 max_input_chars: int = MAX_INPUT_CHARS, body_limit: int = BODY_TEXT_LIMIT):
        """
        Initialize embedding generator

        Args:
            provider: Embedding provider client
            store: Content store, needed for record-level operations
            max_input_chars: Inputs longer than this are truncated before embedding
            body_limit: Characters of body text included by prepare_text
        """
        self.provider = provider
        self.store = store
        self.max_input_chars = max_input_chars
        self.body_limit = body_limit

    @property
    def model(self) -> str:
        return self.provider.model

    async def embed(self, text: str) -> List[float]:
        """Embed a single text, truncating oversized input"""
        text = (text or "").strip()
        if not text:
            raise EmbeddingError("Cannot embed empty text")
        if len(text) > self.max_input_chars:
            logger.debug(f"Truncating embedding input from {len(text)} to {self.max_input_chars} chars")
            text = text[:self.max_input_chars]

        start_time = time.time()
        try:
            vector = await self.provider.embed(text)
        except EmbeddingError as e:
            record_embedding(self.model, time.time() - start_time, error=str(e))
            raise

        expected = self.provider.dimensions
        if len(vector) != expected:
            record_embedding(self.model, time.time() - start_time, error="dimension mismatch")
            raise EmbeddingError(f"Expected {expected} dimensions, got {len(vector)}")

        record_embedding(self.model, time.time() - start_time)
        return vector

    def _require_store(self) -> ContentStore:
        if self.store is None:
            raise RuntimeError("EmbeddingGenerator needs a store for record operations")
        return self.store

    async def embed_record(self, record_id: str) -> List[float]:
        """Regenerate the embedding of a stored record, overwriting any previous one"""
        store = self._require_store()
        record = store.require(record_id)
        vector = await self.embed(prepare_text(record, self.body_limit))
        store.set_embedding(record_id, vector, self.model)
        logger.info(f"Stored {len(vector)}-dim embedding for record {record_id}")
        return vector

    async def backfill(self, limit: Optional[int] = None) -> Dict[str, int]:
        """Generate embeddings for complete records that have none"""
        store = self._require_store()
        records = store.list_missing_embeddings(limit=limit)
        if not records:
            logger.info("No records need embeddings")
            return {"processed": 0, "failed": 0}

        logger.info(f"Generating embeddings for {len(records)} records")
        processed = failed = 0
        for record in records:
            try:
                await self.embed_record(record.id)
                processed += 1
            except EmbeddingError as e:
                failed += 1
                logger.warning(f"Embedding failed for record {record.id}: {e}")

        logger.info(f"Backfill complete: {processed} embedded, {failed} failed")
        return {"processed": processed, "failed": failed}
