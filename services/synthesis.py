"""Retrieval-augmented answers over a user's archive."""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from indexer.retrieval import RetrievalMode, ScoredRecord, SearchScope, SemanticRetriever
from observability.metrics import record_rag_answer
from services.providers import GenerationProvider
from services.shared.errors import GenerationError
from services.shared.models import ContentRecord

logger = logging.getLogger(__name__)

CONTEXT_SEPARATOR = "\n\n---\n\n"

RAG_SYSTEM_PROMPT = """You help the user make use of their personal knowledge archive: papers, articles, posts and pages they chose to save.

Do more than retrieve. When you answer:

1. Synthesize across sources. Look for patterns, connections and recurring themes rather than summarizing items one by one.
2. Pull out actionable insights: the key takeaways and what the user could do with them.
3. Extend the user's thinking. Connect ideas, point out gaps and suggest what to explore next.
4. Be specific. Cite items by title or author and quote short passages where they help.
5. Analyze papers properly: methods, findings and implications, not just a list of what exists.
6. Say where sources agree, disagree or complement each other.

The archive was curated on purpose; help the user understand it deeply and put it to use."""

DEEP_RESEARCH_PROMPT = """You are running an in-depth research pass over the user's knowledge archive.

Your job:
1. Read all of the provided material carefully.
2. Synthesize the most important insights across sources.
3. Derive concrete actions the user can take.
4. Identify the themes and patterns that connect the items.
5. Note gaps and what would strengthen the archive.
6. Organize the result into clear sections for insights, actions and themes.

Be comprehensive but focused on helping the user understand and act on what they saved."""


@dataclass(frozen=True)
class SynthesisPreset:
    max_tokens: int
    content_limit: int


SYNTHESIS_PRESETS = {
    RetrievalMode.STANDARD: SynthesisPreset(max_tokens=2048, content_limit=800),
    RetrievalMode.DEEP: SynthesisPreset(max_tokens=4096, content_limit=2000),
}


def _excerpt(record: ContentRecord, mode: RetrievalMode, limit: int) -> str:
    body = record.body_text or ""
    if mode == RetrievalMode.DEEP:
        candidates = [body, record.summary, record.description]
    else:
        candidates = [record.summary, record.description, body]
    text = next((candidate for candidate in candidates if candidate), "")
    if len(text) > limit:
        return text[:limit] + "..."
    return text


def build_context(records: Sequence[ContentRecord], mode: RetrievalMode) -> str:
    """Format one numbered block per record."""
    limit = SYNTHESIS_PRESETS[mode].content_limit
    blocks = []
    for index, record in enumerate(records, start=1):
        author = record.author_name or record.author_handle or "Unknown"
        topics = ", ".join(record.topics) if record.topics else "N/A"
        blocks.append(
            f'[{index}] "{record.title or "Untitled"}" by {author}\n'
            f"Source: {record.source_url}\n"
            f"Topics: {topics}\n"
            f"\n"
            f"{_excerpt(record, mode, limit)}"
        )
    return CONTEXT_SEPARATOR.join(blocks)


def build_prompt(query: str, context: str, count: int, mode: RetrievalMode) -> str:
    if mode == RetrievalMode.DEEP:
        return (
            f"I want you to conduct deep research on the following question using my knowledge base.\n\n"
            f"Here is the relevant content from my archive ({count} items):\n\n"
            f"{context}\n\n---\n\n"
            f"Research request: {query}\n\n"
            f"Please provide a comprehensive analysis with:\n"
            f"- Key insights and learnings\n"
            f"- Actionable takeaways\n"
            f"- Patterns and themes across sources\n"
            f"- Any gaps or areas for further exploration"
        )
    return (
        f"Here is relevant context from my knowledge base ({count} items):\n\n"
        f"{context}\n\n---\n\n"
        f"My question: {query}"
    )


class AnswerSynthesizer:
    """Turns retrieved records into a grounded answer."""

    def __init__(self, provider: GenerationProvider):
        self.provider = provider

    async def answer(self, query: str, records: Sequence[ContentRecord],
                     mode: RetrievalMode = RetrievalMode.STANDARD) -> Optional[str]:
        """Generate an answer, or None when there is nothing to ground it on.

        Raises:
            GenerationError: If the provider fails
        """
        mode = RetrievalMode(mode)
        if not records:
            record_rag_answer(mode.value, "no_context")
            return None

        context = build_context(records, mode)
        system = DEEP_RESEARCH_PROMPT if mode == RetrievalMode.DEEP else RAG_SYSTEM_PROMPT
        prompt = build_prompt(query, context, len(records), mode)
        try:
            answer = await self.provider.generate(prompt, system=system,
                                                  max_tokens=SYNTHESIS_PRESETS[mode].max_tokens)
        except GenerationError:
            record_rag_answer(mode.value, "error")
            raise
        record_rag_answer(mode.value, "success")
        return answer


def source_summary(item: ScoredRecord) -> Dict[str, Any]:
    record = item.record
    return {
        "id": record.id,
        "title": record.title,
        "sourceUrl": record.source_url,
        "sourceType": record.source_type,
        "authorName": record.author_name or record.author_handle,
        "similarity": round(item.similarity, 4),
    }


class KnowledgeQueryService:
    """Search then answer, in one call."""

    def __init__(self, retriever: SemanticRetriever, synthesizer: AnswerSynthesizer):
        self.retriever = retriever
        self.synthesizer = synthesizer

    async def query(self, query: str, user_id: str, mode: RetrievalMode = RetrievalMode.STANDARD,
                    generate: bool = True, topic: Optional[str] = None) -> Dict[str, Any]:
        mode = RetrievalMode(mode)
        results: List[ScoredRecord] = await self.retriever.search_text(
            query, SearchScope(user_id=user_id, topic=topic), mode=mode)
        answer = None
        if generate:
            answer = await self.synthesizer.answer(query, [item.record for item in results], mode)
        logger.info(f"Query answered for user {user_id}: {len(results)} sources, mode={mode.value}")
        return {
            "answer": answer,
            "sources": [source_summary(item) for item in results],
            "mode": mode.value,
        }
