"""Semantic retrieval over captured records."""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

import numpy as np

from observability.metrics import record_search_metrics
from services.shared.models import ContentRecord
from services.shared.store import ContentStore
from .embeddings import EmbeddingGenerator

logger = logging.getLogger(__name__)


class RetrievalMode(str, Enum):
    STANDARD = "standard"
    DEEP = "deep"


@dataclass(frozen=True)
class ModePreset:
    top_k: int
    threshold: float


MODE_PRESETS = {
    RetrievalMode.STANDARD: ModePreset(top_k=10, threshold=0.3),
    RetrievalMode.DEEP: ModePreset(top_k=20, threshold=0.25),
}


@dataclass
class SearchScope:
    """Which records a search may see."""
    user_id: str
    topic: Optional[str] = None


@dataclass
class ScoredRecord:
    record: ContentRecord
    similarity: float


def cosine_similarity(query: np.ndarray, candidates: np.ndarray) -> np.ndarray:
    """Cosine similarity of one vector against each row; zero vectors score 0."""
    query_norm = np.linalg.norm(query)
    candidate_norms = np.linalg.norm(candidates, axis=1)
    denominators = candidate_norms * query_norm
    dots = candidates @ query
    with np.errstate(divide='ignore', invalid='ignore'):
        scores = np.where(denominators > 0, dots / denominators, 0.0)
    return scores


class SemanticRetriever:
    """Ranks a user's complete, embedded records against a query vector."""

    def __init__(self, store: ContentStore, embedder: Optional[EmbeddingGenerator] = None):
        self.store = store
        self.embedder = embedder

    def search(self, query_vector: List[float], threshold: float, top_k: int,
               scope: SearchScope) -> List[ScoredRecord]:
        """Return at most ``top_k`` records with similarity >= ``threshold``.

        Ordered by similarity descending, ties broken by most recent capture.
        """
        if top_k <= 0:
            return []

        candidates = self.store.list_searchable(scope.user_id, topic=scope.topic)
        query = np.asarray(query_vector, dtype=np.float64)
        usable = [record for record in candidates if len(record.embedding) == len(query)]
        if len(usable) != len(candidates):
            logger.warning(f"Skipped {len(candidates) - len(usable)} records with mismatched embedding size")
        if not usable:
            return []

        matrix = np.asarray([record.embedding for record in usable], dtype=np.float64)
        scores = cosine_similarity(query, matrix)

        scored = [
            ScoredRecord(record=record, similarity=float(score))
            for record, score in zip(usable, scores)
            if score >= threshold
        ]
        # Two stable sorts: recency first, then similarity
        scored.sort(key=lambda item: item.record.captured_at, reverse=True)
        scored.sort(key=lambda item: item.similarity, reverse=True)
        return scored[:top_k]

    async def search_text(self, query: str, scope: SearchScope,
                          mode: RetrievalMode = RetrievalMode.STANDARD,
                          top_k: Optional[int] = None,
                          threshold: Optional[float] = None) -> List[ScoredRecord]:
        """Embed ``query`` and search with the mode's presets.

        Raises:
            EmbeddingError: If the query cannot be embedded
        """
        if self.embedder is None:
            raise RuntimeError("SemanticRetriever needs an embedder for text queries")
        preset = MODE_PRESETS[RetrievalMode(mode)]
        mode_name = RetrievalMode(mode).value
        start_time = time.time()
        try:
            vector = await self.embedder.embed(query)
            results = self.search(
                vector,
                threshold=preset.threshold if threshold is None else threshold,
                top_k=top_k or preset.top_k,
                scope=scope,
            )
        except Exception as e:
            record_search_metrics(mode_name, time.time() - start_time, 0, error=type(e).__name__)
            raise
        record_search_metrics(mode_name, time.time() - start_time, len(results))
        logger.info(f"Semantic search ({mode_name}) for user {scope.user_id}: {len(results)} results")
        return results
