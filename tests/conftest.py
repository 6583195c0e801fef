"""Shared fixtures for the n8n-rag-sync test suite.

HTTP is faked at the aiohttp session boundary and embeddings come from a
deterministic keyword provider, so no test touches the network.
"""

import json
from typing import Any, Callable, Dict, List, Optional, Union
from unittest.mock import AsyncMock, patch

import pytest
import pytest_asyncio

from indexer.embeddings import EmbeddingProvider, EmbeddingGenerator
from indexer.sqlite_adapter import SQLiteAdapter


class FakeResponse:
    """Minimal stand-in for ``aiohttp.ClientResponse`` used as an async context manager."""

    def __init__(self, status: int = 200, payload: Any = None, text: Optional[str] = None):
        self.status = status
        self._payload = payload
        self._text = text

    async def text(self) -> str:
        if self._text is not None:
            return self._text
        return json.dumps(self._payload)

    async def json(self, content_type=None) -> Any:
        if self._payload is not None:
            return self._payload
        return json.loads(self._text) if self._text else None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False


Route = Union[FakeResponse, List[FakeResponse], Callable[[str], FakeResponse]]


class FakeSession:
    """Routes GET requests by exact URL; unknown URLs answer 404.

    A list route is consumed in order and its last response repeats.
    """

    def __init__(self, routes: Optional[Dict[str, Route]] = None):
        self.routes: Dict[str, Route] = dict(routes or {})
        self.calls: List[str] = []
        self.headers: List[Dict[str, str]] = []
        self.closed = False

    def get(self, url: str, headers: Optional[Dict[str, str]] = None):
        self.calls.append(url)
        self.headers.append(headers or {})
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(404, text="Not Found")
        if callable(route):
            return route(url)
        if isinstance(route, list):
            return route.pop(0) if len(route) > 1 else route[0]
        return route

    def count(self, url: str) -> int:
        return self.calls.count(url)

    async def close(self):
        self.closed = True


VOCABULARY = ["slack", "message", "email", "webhook", "sheet", "agent", "schedule", "http"]


class KeywordEmbeddingProvider(EmbeddingProvider):
    """Deterministic provider: one dimension per vocabulary word."""

    model_name = "keyword-test"
    dimensions = len(VOCABULARY) + 1

    def __init__(self):
        self.calls: List[List[str]] = []

    async def embed(self, texts: List[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        return [self.vector(text) for text in texts]

    @staticmethod
    def vector(text: str) -> List[float]:
        lower = text.lower()
        values = [float(lower.count(word)) for word in VOCABULARY]
        # Constant component keeps every vector non-zero
        values.append(0.1)
        return values


@pytest.fixture
def fake_session_factory():
    return FakeSession


@pytest.fixture
def fake_response_factory():
    return FakeResponse


@pytest.fixture
def embedding_provider():
    return KeywordEmbeddingProvider()


@pytest.fixture
def embeddings(embedding_provider):
    return EmbeddingGenerator(embedding_provider, batch_size=4)


@pytest_asyncio.fixture
async def store(tmp_path):
    """SQLite store on a temporary file."""
    adapter = SQLiteAdapter(str(tmp_path / "rag.db"))
    await adapter.initialize()
    yield adapter
    await adapter.close()


@pytest.fixture
def no_sleep():
    """Make batch delays and retry backoff instantaneous."""
    with patch("asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        yield mock_sleep
