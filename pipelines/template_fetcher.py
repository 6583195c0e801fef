"""Workflow template API client for n8n-rag-sync.

Pages through the public template search endpoint and downloads template
details with bounded concurrency and 429 backoff.
"""

import asyncio
import logging
from typing import List, Dict, Any, Optional

import aiohttp
from pydantic import ValidationError

from observability.prometheus_metrics import record_template_fetch_failure
from sources.loader import SourceLoader, TemplateSourceConfig
from .errors import FetchError
from .templates import (
    TemplateSummary,
    TemplateSearchResponse,
    TemplateDetailEnvelope,
    TemplateDetail,
    flatten_template_detail,
)

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "n8n-workflow-builder-rag"
MAX_ERROR_DETAIL = 150


class TemplateApiClient:
    """Asynchronous client for the workflow template API."""

    def __init__(self,
                 source: Optional[TemplateSourceConfig] = None,
                 api_base: Optional[str] = None,
                 user_agent: str = DEFAULT_USER_AGENT,
                 request_timeout: int = 30,
                 session: Optional[aiohttp.ClientSession] = None):
        """Initialize client.

        Args:
            source: Template origin configuration (defaults to sources/n8n-templates.yaml)
            api_base: Override for the API base URL
            user_agent: User agent string sent with every request
            request_timeout: Request timeout in seconds
            session: Existing session to use instead of creating one
        """
        self.source = source or SourceLoader().load_template_source()
        self.api_base = (api_base or self.source.api_base).rstrip("/")
        self.user_agent = user_agent
        self.request_timeout = request_timeout
        self.session = session
        self._owns_session = session is None

    async def __aenter__(self):
        """Async context manager entry."""
        if self.session is None:
            timeout = aiohttp.ClientTimeout(total=self.request_timeout)
            self.session = aiohttp.ClientSession(timeout=timeout)
            self._owns_session = True
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def close(self):
        if self.session and self._owns_session:
            await self.session.close()
            self.session = None

    def _retry_delay(self, attempt: int) -> float:
        """Exponential backoff: 1s, 2s, 4s."""
        return float(2 ** attempt)

    async def fetch_with_retry(self, url: str) -> Any:
        """GET a JSON document, retrying on HTTP 429.

        Raises:
            FetchError: On any other non-2xx status or when retries are exhausted
        """
        if self.session is None:
            await self.__aenter__()

        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
        max_retries = self.source.max_retries

        for attempt in range(max_retries + 1):
            async with self.session.get(url, headers=headers) as response:
                if response.status == 429 and attempt < max_retries:
                    delay = self._retry_delay(attempt)
                    logger.warning(f"429 rate limited on {url}, retrying in {delay:.0f}s "
                                   f"(attempt {attempt + 1}/{max_retries})")
                    await asyncio.sleep(delay)
                    continue

                if response.status < 200 or response.status >= 300:
                    body = await response.text()
                    raise FetchError(f"HTTP {response.status} fetching {url}",
                                     status=response.status, url=url, body=body)

                return await response.json(content_type=None)

        raise FetchError(f"Exhausted retries for {url}", status=429, url=url)

    async def _fetch_phase(self, label: str, pages: int, category: Optional[str],
                           seen: Dict[int, TemplateSummary]):
        rows = self.source.rows_per_page
        for page in range(1, pages + 1):
            url = f"{self.api_base}/templates/search?page={page}&rows={rows}"
            if category:
                url += f"&category={category}"

            try:
                data = TemplateSearchResponse.model_validate(await self.fetch_with_retry(url) or {})
            except Exception as e:
                logger.warning(f"Failed {label} page {page}: {e}")
                break

            if not data.workflows:
                break

            for raw in data.workflows:
                try:
                    summary = TemplateSummary.model_validate(raw)
                except ValidationError as e:
                    logger.warning(f"Skipping malformed template summary on {label} page {page}: {e}")
                    continue
                if summary.id not in seen:
                    seen[summary.id] = summary

            logger.info(f"{label} page {page}: {len(data.workflows)} templates")

    async def fetch_template_list(self) -> List[TemplateSummary]:
        """Collect template summaries, priority category first, deduplicated by id."""
        seen: Dict[int, TemplateSummary] = {}
        await self._fetch_phase("Priority", self.source.priority_pages,
                                self.source.priority_category, seen)
        await self._fetch_phase("General", self.source.general_pages, None, seen)

        logger.info(f"Total unique templates collected: {len(seen)}")
        return list(seen.values())

    async def fetch_template_detail(self, template_id: int) -> Optional[TemplateDetail]:
        """Fetch one template's workflow.

        Returns:
            The flattened detail, or None when the payload has no workflow
            nodes. HTTP failures propagate.
        """
        data = await self.fetch_with_retry(f"{self.api_base}/templates/workflows/{template_id}")
        try:
            envelope = TemplateDetailEnvelope.model_validate(data or {})
        except ValidationError as e:
            logger.warning(f"Malformed detail for template {template_id}: {e}")
            return None
        return flatten_template_detail(envelope, template_id)

    async def fetch_all_template_details(self, summaries: List[TemplateSummary],
                                         errors: List[str]) -> List[TemplateDetail]:
        """Fetch details in concurrent batches; failures are recorded in ``errors``."""
        details: List[TemplateDetail] = []
        size = self.source.concurrency

        for start in range(0, len(summaries), size):
            batch = summaries[start:start + size]
            results = await asyncio.gather(
                *(self.fetch_template_detail(s.id) for s in batch),
                return_exceptions=True
            )

            for summary, result in zip(batch, results):
                if isinstance(result, Exception):
                    record_template_fetch_failure()
                    errors.append(f"Template {summary.id} fetch failed: {str(result)[:MAX_ERROR_DETAIL]}")
                    logger.warning(f"Failed to fetch template {summary.id}: {result}")
                elif result is not None:
                    details.append(result)

            if start + size < len(summaries):
                await asyncio.sleep(self.source.batch_delay)

        return details
