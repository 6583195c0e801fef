"""Error types for the ingestion pipelines.

Every per-unit failure is converted into a short diagnostic string at its
unit boundary; only configuration and embedding failures cross stage
boundaries as exceptions.
"""

from typing import Optional

MAX_BODY_LENGTH = 300


def truncate_message(message: str, limit: int, suffix: str = "…") -> str:
    """Shorten a diagnostic so the result, suffix included, fits in ``limit``."""
    if len(message) <= limit:
        return message
    return message[:max(limit - len(suffix), 0)] + suffix


class IngestionError(Exception):
    """Base class for ingestion failures."""


class FetchError(IngestionError):
    """An upstream HTTP request returned a non-2xx status or gave up retrying."""

    def __init__(self, message: str, status: Optional[int] = None,
                 url: Optional[str] = None, body: Optional[str] = None):
        self.status = status
        self.url = url
        self.body = truncate_message(body, MAX_BODY_LENGTH) if body else None
        if self.body:
            message = f"{message}: {self.body}"
        super().__init__(message)


class EmbeddingError(IngestionError):
    """The embedding provider failed; the sub-run that asked for vectors aborts."""


class ConfigurationError(IngestionError):
    """Required configuration is missing or the store is unreachable."""
