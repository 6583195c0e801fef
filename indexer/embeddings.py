# n8n-rag-sync Embeddings Module
# Generates fixed-dimension vectors for chunks, templates and queries

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import List, Optional

import numpy as np
from openai import AsyncOpenAI

from observability.prometheus_metrics import record_embedding_batch
from pipelines.errors import EmbeddingError, ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_OPENAI_MODEL = "text-embedding-3-small"
DEFAULT_DIMENSIONS = 1536
DEFAULT_BATCH_SIZE = 512
MAX_PROVIDER_BATCH = 2048


class EmbeddingProvider(ABC):
    """Interface for embedding backends."""

    model_name: str
    dimensions: int

    @abstractmethod
    async def embed(self, texts: List[str]) -> List[List[float]]:
        """Return one vector per input text, in input order."""


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI embeddings via ``AsyncOpenAI`` (text-embedding-3-small, 1536 dims)."""

    def __init__(self, api_key: Optional[str] = None,
                 model_name: str = DEFAULT_OPENAI_MODEL,
                 dimensions: int = DEFAULT_DIMENSIONS,
                 client=None):
        if client is None:
            if not api_key:
                raise ConfigurationError("OPENAI_API_KEY is not set")
            client = AsyncOpenAI(api_key=api_key)
        self.client = client
        self.model_name = model_name
        self.dimensions = dimensions
        logger.info(f"Initialized OpenAI embedding provider with model: {model_name}")

    async def embed(self, texts: List[str]) -> List[List[float]]:
        kwargs = {"model": self.model_name, "input": texts}
        if self.model_name.startswith("text-embedding-3"):
            kwargs["dimensions"] = self.dimensions
        response = await self.client.embeddings.create(**kwargs)
        data = sorted(response.data, key=lambda item: item.index)
        return [list(item.embedding) for item in data]


class SentenceTransformerProvider(EmbeddingProvider):
    """Local sentence-transformers model, for development without an API key."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        self.model_name = model_name
        self.model = None
        self._load_model()
        self.dimensions = self.model.get_sentence_embedding_dimension()

    def _load_model(self):
        """Load the sentence transformer model"""
        from sentence_transformers import SentenceTransformer
        logger.info(f"Loading embedding model: {self.model_name}")
        self.model = SentenceTransformer(self.model_name)
        logger.info(f"Model loaded successfully. Embedding dimension: "
                    f"{self.model.get_sentence_embedding_dimension()}")

    async def embed(self, texts: List[str]) -> List[List[float]]:
        loop = asyncio.get_running_loop()
        vectors = await loop.run_in_executor(
            None, lambda: self.model.encode(texts, convert_to_numpy=True)
        )
        return [np.asarray(v, dtype=np.float32).tolist() for v in vectors]


class EmbeddingGenerator:
    """Batches texts through an embedding provider.

    Output order always matches input order. A failing batch aborts the whole
    call; partial results are never returned.
    """

    def __init__(self, provider: EmbeddingProvider, batch_size: int = DEFAULT_BATCH_SIZE):
        """
        Initialize embedding generator

        Args:
            provider: Backend that turns texts into vectors
            batch_size: Texts per provider call (at most 2048)
        """
        if batch_size <= 0 or batch_size > MAX_PROVIDER_BATCH:
            raise ConfigurationError(f"Embedding batch size must be between 1 and {MAX_PROVIDER_BATCH}")
        self.provider = provider
        self.batch_size = batch_size

    @property
    def dimensions(self) -> int:
        return self.provider.dimensions

    async def generate_embeddings(self, texts: List[str]) -> List[List[float]]:
        """Generate embeddings for multiple texts.

        Raises:
            EmbeddingError: When any batch fails or returns the wrong number of vectors
        """
        if not texts:
            return []

        total = (len(texts) + self.batch_size - 1) // self.batch_size
        embeddings: List[List[float]] = []

        for index, start in enumerate(range(0, len(texts), self.batch_size), start=1):
            batch = texts[start:start + self.batch_size]
            started = time.time()
            try:
                vectors = await self.provider.embed(batch)
            except Exception as e:
                raise EmbeddingError(f"batch {index}/{total} failed: {e}") from e

            if len(vectors) != len(batch):
                raise EmbeddingError(
                    f"batch {index}/{total} returned {len(vectors)} vectors for {len(batch)} texts"
                )

            record_embedding_batch(self.provider.model_name, time.time() - started)
            embeddings.extend(vectors)
            logger.debug(f"Embedded batch {index}/{total} ({len(batch)} texts)")

        return embeddings

    async def generate_embedding(self, text: str) -> List[float]:
        """Generate a single query vector."""
        vectors = await self.generate_embeddings([text])
        return vectors[0]


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    """Calculate cosine similarity between two vectors"""
    norm = np.linalg.norm(a) * np.linalg.norm(b)
    if norm == 0:
        return 0.0
    return float(np.dot(a, b) / norm)


def create_provider(provider: str = "openai", model_name: Optional[str] = None,
                    api_key: Optional[str] = None,
                    dimensions: int = DEFAULT_DIMENSIONS) -> EmbeddingProvider:
    """Build the configured embedding provider."""
    if provider == "openai":
        return OpenAIEmbeddingProvider(api_key=api_key,
                                       model_name=model_name or DEFAULT_OPENAI_MODEL,
                                       dimensions=dimensions)
    if provider == "sentence-transformers":
        return SentenceTransformerProvider(model_name=model_name or "all-MiniLM-L6-v2")
    raise ConfigurationError(f"Unsupported embedding provider: {provider}")
