"""Shared write-stage helpers for the ingestion pipelines."""

import asyncio
import logging
import time
from typing import List, Callable, Awaitable, Sequence, Tuple, TypeVar, Optional

from observability.prometheus_metrics import record_upsert
from .errors import truncate_message

logger = logging.getLogger(__name__)

T = TypeVar("T")

UPSERT_BATCH = 50
UPSERT_CONCURRENCY = 5
MAX_UPSERT_ERROR_LENGTH = 200


async def upsert_records(items: Sequence[Tuple[T, List[float]]],
                         upsert: Callable[[T, List[float]], Awaitable[None]],
                         describe: Callable[[T], str],
                         errors: List[str],
                         table: str = "node_docs",
                         batch_size: int = UPSERT_BATCH,
                         concurrency: int = UPSERT_CONCURRENCY) -> int:
    """Write records with their embeddings, isolating per-record failures.

    Args:
        items: ``(record, embedding)`` pairs
        upsert: Store method that replaces the row for one record
        describe: Renders the record's natural key for diagnostics
        errors: Run error list; one entry is appended per failed record
        table: Table label for metrics
        batch_size: Records per batch
        concurrency: Concurrent writes within a batch

    Returns:
        Number of records written.
    """
    semaphore = asyncio.Semaphore(concurrency)
    written = 0

    async def write(record: T, embedding: List[float]) -> bool:
        async with semaphore:
            try:
                await upsert(record, embedding)
            except Exception as e:
                short = truncate_message(str(e) or type(e).__name__, MAX_UPSERT_ERROR_LENGTH)
                errors.append(f"Upsert failed for {describe(record)}: {short}")
                logger.error(f"Failed {describe(record)}: {short}")
                record_upsert(table, False)
                return False
            record_upsert(table, True)
            return True

    for start in range(0, len(items), batch_size):
        batch = items[start:start + batch_size]
        results = await asyncio.gather(*(write(record, embedding) for record, embedding in batch))
        written += sum(1 for ok in results if ok)

    return written


class RunBudget:
    """Wall-clock budget checked at stage boundaries."""

    def __init__(self, seconds: Optional[float] = None, clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self.clock = clock
        self.started = clock()
        self.exhausted_before: Optional[str] = None

    def remaining(self) -> Optional[float]:
        if self.seconds is None:
            return None
        return self.seconds - (self.clock() - self.started)

    def allows(self, stage: str, errors: List[str]) -> bool:
        """Return False and record the stage once the budget has run out."""
        if self.exhausted_before is not None:
            return False
        remaining = self.remaining()
        if remaining is not None and remaining <= 0:
            self.exhausted_before = stage
            errors.append(f"Time budget exhausted before {stage}")
            logger.warning(f"Time budget exhausted before {stage}")
            return False
        return True
