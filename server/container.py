"""Component wiring for the API process and the worker process."""

import logging
from functools import cached_property
from typing import Optional

from sqlalchemy.orm import sessionmaker

from config.database import DatabaseType, db_factory
from config.settings import Settings
from indexer.embeddings import EmbeddingGenerator
from indexer.retrieval import SemanticRetriever
from pipelines.dispatcher import ScraperDispatcher, build_dispatcher
from pipelines.fetch import HttpFetcher
from pipelines.scrapers import ScrapeOptions
from services.capture import CaptureOrchestrator, CaptureWorker, RetryService
from services.providers import ProviderRegistry
from services.shared.store import ContentStore
from services.synthesis import AnswerSynthesizer, KnowledgeQueryService

from .jobs import WorkQueue

logger = logging.getLogger(__name__)


class AppContainer:
    """Builds components on first use.

    Provider-backed components (embedding, generation) are only built when
    a code path needs them, so the API starts without provider credentials.
    """

    def __init__(self, settings: Settings, session_factory: Optional[sessionmaker] = None,
                 registry: Optional[ProviderRegistry] = None,
                 queue: Optional[WorkQueue] = None,
                 fetcher: Optional[HttpFetcher] = None,
                 dispatcher: Optional[ScraperDispatcher] = None):
        self.settings = settings
        self._session_factory = session_factory
        self._owns_database = False
        self.registry = registry or ProviderRegistry(settings)
        self._queue = queue
        self._fetcher = fetcher
        self._dispatcher = dispatcher

    @cached_property
    def store(self) -> ContentStore:
        if self._session_factory is None:
            database = self.settings.database
            # Schema comes from alembic on PostgreSQL
            db_factory.initialize(database, create_tables=database.type == DatabaseType.SQLITE)
            self._owns_database = True
            self._session_factory = db_factory.get_session_factory()
        return ContentStore(self._session_factory)

    @cached_property
    def queue(self) -> WorkQueue:
        return self._queue or WorkQueue(self.settings.queue.redis_url, self.settings.queue.queue_name)

    @cached_property
    def fetcher(self) -> HttpFetcher:
        scraper = self.settings.scraper
        return self._fetcher or HttpFetcher(default_timeout=scraper.timeout, max_retries=scraper.max_retries,
                                            ssrf_guard=scraper.ssrf_guard)

    @cached_property
    def dispatcher(self) -> ScraperDispatcher:
        if self._dispatcher is not None:
            return self._dispatcher
        thread = self.settings.thread
        return build_dispatcher(
            self.fetcher,
            max_body_chars=self.settings.scraper.max_body_chars,
            mirror_api_url=thread.mirror_api_url,
            unroll_base_url=thread.unroll_base_url,
            max_thread_hops=thread.max_hops,
            thread_hop_interval=thread.hop_interval,
            max_linked_pages=thread.max_linked_pages,
            linked_page_interval=thread.linked_page_interval,
        )

    @cached_property
    def embedder(self) -> EmbeddingGenerator:
        return EmbeddingGenerator(self.registry.embedding(), self.store,
                                  max_input_chars=self.settings.embedding.max_input_chars)

    @cached_property
    def orchestrator(self) -> CaptureOrchestrator:
        return CaptureOrchestrator(self.store, self.queue)

    @cached_property
    def worker(self) -> CaptureWorker:
        options = ScrapeOptions(timeout=self.settings.scraper.timeout, max_images=self.settings.scraper.max_images)
        return CaptureWorker(self.store, self.dispatcher, self.embedder, options)

    @cached_property
    def retry_service(self) -> RetryService:
        return RetryService(self.store, self.queue, batch_size=self.settings.retry.batch_size,
                            delay_seconds=self.settings.retry.delay_seconds,
                            stale_after_seconds=self.settings.retry.stale_pending_seconds)

    @cached_property
    def retriever(self) -> SemanticRetriever:
        return SemanticRetriever(self.store, self.embedder)

    @cached_property
    def query_service(self) -> KnowledgeQueryService:
        return KnowledgeQueryService(self.retriever, AnswerSynthesizer(self.registry.generation()))

    async def close(self):
        if 'fetcher' in self.__dict__:
            await self.fetcher.close()
        if 'queue' in self.__dict__:
            await self.queue.close()
        if self._owns_database:
            db_factory.close()
        logger.info("Container resources released")
