"""Shared fixtures: in-memory database, fake network, fake providers, fake time."""

from typing import Callable, Dict, List, Optional, Union

import pytest
from sqlalchemy.orm import sessionmaker

from config.database import DatabaseConfig, build_engine
from pipelines.fetch import FetchResponse
from services.providers import EmbeddingProvider, GenerationProvider
from services.shared.errors import EmbeddingError, GenerationError, ScrapeError, ScrapeErrorKind
from services.shared.models import Base
from services.shared.store import ContentStore


def html_response(url: str, html: str, status: int = 200, content_type: str = "text/html; charset=utf-8"):
    return FetchResponse(url=url, status=status, content_type=content_type, body=html.encode("utf-8"),
                         final_url=url)


def json_response(url: str, payload: str):
    return FetchResponse(url=url, status=200, content_type="application/json", body=payload.encode("utf-8"),
                         final_url=url)


def pdf_response(url: str, data: bytes = b"%PDF-1.4 fake"):
    return FetchResponse(url=url, status=200, content_type="application/pdf", body=data, final_url=url)


class FakeFetcher:
    """Serves canned responses by URL; unknown URLs fail with a network error."""

    def __init__(self, routes: Optional[Dict[str, Union[FetchResponse, Exception]]] = None):
        self.routes = dict(routes or {})
        self.calls: List[str] = []

    def add(self, url: str, response: Union[FetchResponse, Exception]):
        self.routes[url] = response

    async def fetch(self, url, accept=None, timeout=None, headers=None):
        self.calls.append(url)
        response = self.routes.get(url)
        if response is None:
            raise ScrapeError(ScrapeErrorKind.NETWORK, f"HTTP 404 from {url}", url=url)
        if isinstance(response, Exception):
            raise response
        return response

    async def close(self):
        pass


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds

    async def sleep(self, seconds: float):
        self.sleeps.append(seconds)
        self.now += seconds


class FakeEmbeddingProvider(EmbeddingProvider):
    """Deterministic embeddings; texts containing a keyword map to its vector."""

    def __init__(self, dimensions: int = 3, vectors: Optional[Dict[str, List[float]]] = None,
                 default: Optional[List[float]] = None, fail: bool = False):
        self.model = "fake-embedding"
        self.dimensions = dimensions
        self.vectors = vectors or {}
        self.default = default or [1.0] + [0.0] * (dimensions - 1)
        self.fail = fail
        self.inputs: List[str] = []

    async def embed(self, text: str) -> List[float]:
        self.inputs.append(text)
        if self.fail:
            raise EmbeddingError("provider unavailable")
        for keyword, vector in self.vectors.items():
            if keyword in text:
                return list(vector)
        return list(self.default)


class FakeGenerationProvider(GenerationProvider):
    def __init__(self, answer: str = "Synthesized answer", fail: bool = False):
        self.model = "fake-generation"
        self.answer = answer
        self.fail = fail
        self.calls: List[dict] = []

    async def generate(self, prompt: str, system: str, max_tokens: int) -> str:
        self.calls.append({"prompt": prompt, "system": system, "max_tokens": max_tokens})
        if self.fail:
            raise GenerationError("model overloaded")
        return self.answer


class FakeQueue:
    """Records published messages; ``result`` may be a bool or an exception."""

    def __init__(self, result: Union[bool, Exception, Callable] = True):
        self.result = result
        self.published = []

    async def publish(self, message) -> bool:
        if isinstance(self.result, Exception):
            raise self.result
        if callable(self.result):
            ok = self.result(message)
        else:
            ok = self.result
        if ok:
            self.published.append(message)
        return ok


@pytest.fixture
def session_factory():
    """In-memory SQLite database with the schema created."""
    engine = build_engine(DatabaseConfig(url="sqlite://"))
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return ContentStore(session_factory)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fetcher():
    return FakeFetcher()


@pytest.fixture
def embedding_provider():
    return FakeEmbeddingProvider()


@pytest.fixture
def generation_provider():
    return FakeGenerationProvider()


@pytest.fixture
def queue():
    return FakeQueue()
