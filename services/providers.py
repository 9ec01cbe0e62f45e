"""Embedding and generation provider clients.

Providers are opaque oracles: an embedding provider maps text to a fixed
size vector, a generation provider maps a prompt to text. Clients are built
lazily by :class:`ProviderRegistry` and injected into the components that
use them.
"""

import asyncio
import logging
import threading
from abc import ABC, abstractmethod
from typing import List, Optional

from anthropic import AsyncAnthropic, AnthropicError
from openai import AsyncOpenAI, OpenAIError

from config.settings import EmbeddingConfig, GenerationConfig, Settings
from services.shared.errors import EmbeddingError, GenerationError

logger = logging.getLogger(__name__)


class EmbeddingProvider(ABC):
    """Maps text to a vector of ``dimensions`` floats."""

    model: str
    dimensions: int

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Embed one text.

        Raises:
            EmbeddingError: If the provider call fails
        """


class GenerationProvider(ABC):
    """Produces text from a system instruction and a prompt."""

    model: str

    @abstractmethod
    async def generate(self, prompt: str, system: str, max_tokens: int) -> str:
        """Generate a completion.

        Raises:
            GenerationError: If the provider call fails
        """


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings API (``text-embedding-3-small`` by default)."""

    def __init__(self, api_key: Optional[str] = None, model: str = "text-embedding-3-small",
                 dimensions: int = 1536, client: Optional[AsyncOpenAI] = None):
        self.model = model
        self.dimensions = dimensions
        self.client = client or AsyncOpenAI(api_key=api_key)

    async def embed(self, text: str) -> List[float]:
        try:
            response = await self.client.embeddings.create(model=self.model, input=text)
        except OpenAIError as e:
            raise EmbeddingError(f"OpenAI embedding request failed: {e}") from e
        if not response.data:
            raise EmbeddingError("OpenAI returned no embedding data")
        return list(response.data[0].embedding)


class SentenceTransformerEmbeddingProvider(EmbeddingProvider):
    """Local sentence-transformers model, loaded on first use.

    Needs the ``local`` extra (``sentence-transformers``).
    """

    def __init__(self, model: str = "all-MiniLM-L6-v2", dimensions: Optional[int] = None):
        self.model = model
        self._dimensions = dimensions
        self._model = None
        self._lock = threading.Lock()

    def _load_model(self):
        with self._lock:
            if self._model is None:
                from sentence_transformers import SentenceTransformer
                logger.info(f"Loading embedding model: {self.model}")
                self._model = SentenceTransformer(self.model)
                logger.info(f"Model loaded. Embedding dimension: "
                            f"{self._model.get_sentence_embedding_dimension()}")
        return self._model

    @property
    def dimensions(self) -> int:
        if self._dimensions is None:
            self._dimensions = self._load_model().get_sentence_embedding_dimension()
        return self._dimensions

    async def embed(self, text: str) -> List[float]:
        loop = asyncio.get_running_loop()
        try:
            model = await loop.run_in_executor(None, self._load_model)
            vector = await loop.run_in_executor(None, lambda: model.encode(text, convert_to_numpy=True))
        except (OSError, RuntimeError, ValueError) as e:
            raise EmbeddingError(f"Local embedding failed: {e}") from e
        return [float(x) for x in vector]


class AnthropicGenerationProvider(GenerationProvider):
    """Claude messages API."""

    def __init__(self, api_key: Optional[str] = None, model: str = "claude-sonnet-4-20250514",
                 timeout: float = 120.0, client: Optional[AsyncAnthropic] = None):
        self.model = model
        self.client = client or AsyncAnthropic(api_key=api_key, timeout=timeout)

    async def generate(self, prompt: str, system: str, max_tokens: int) -> str:
        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=max_tokens,
                system=system,
                messages=[{"role": "user", "content": prompt}],
            )
        except AnthropicError as e:
            raise GenerationError(f"Anthropic request failed: {e}") from e

        text = "".join(block.text for block in response.content if getattr(block, "type", None) == "text")
        if not text:
            raise GenerationError("Anthropic returned no text content")
        return text


def build_embedding_provider(config: EmbeddingConfig) -> EmbeddingProvider:
    if config.provider in ("sentence-transformers", "local"):
        return SentenceTransformerEmbeddingProvider(model=config.model)
    if config.provider != "openai":
        raise ValueError(f"Unknown embedding provider: {config.provider}")
    return OpenAIEmbeddingProvider(api_key=config.api_key, model=config.model, dimensions=config.dimensions)


def build_generation_provider(config: GenerationConfig) -> GenerationProvider:
    return AnthropicGenerationProvider(api_key=config.api_key, model=config.model, timeout=config.timeout)


class ProviderRegistry:
    """Builds provider clients on first use and keeps them for the process."""

    def __init__(self, settings: Settings,
                 embedding: Optional[EmbeddingProvider] = None,
                 generation: Optional[GenerationProvider] = None):
        self.settings = settings
        self._embedding = embedding
        self._generation = generation
        self._lock = threading.Lock()

    def embedding(self) -> EmbeddingProvider:
        with self._lock:
            if self._embedding is None:
                self._embedding = build_embedding_provider(self.settings.embedding)
                logger.info(f"Embedding provider ready: {self._embedding.model}")
            return self._embedding

    def generation(self) -> GenerationProvider:
        with self._lock:
            if self._generation is None:
                self._generation = build_generation_provider(self.settings.generation)
                logger.info(f"Generation provider ready: {self._generation.model}")
            return self._generation
