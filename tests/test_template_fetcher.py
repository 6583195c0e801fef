"""Unit tests for the workflow template API client.

Tests cover:
- Two-phase pagination with cross-phase deduplication
- 429 backoff and retry exhaustion
- Per-template failure isolation
"""

import pytest

from pipelines.errors import FetchError
from pipelines.template_fetcher import TemplateApiClient
from sources.loader import TemplateSourceConfig

API = "https://api.test/api"


def search_url(page, category=None, rows=2):
    url = f"{API}/templates/search?page={page}&rows={rows}"
    if category:
        url += f"&category={category}"
    return url


def detail_url(template_id):
    return f"{API}/templates/workflows/{template_id}"


def detail_payload(template_id, name=None):
    return {
        "workflow": {
            "id": template_id,
            "name": name or f"Template {template_id}",
            "workflow": {
                "nodes": [{"name": "Webhook", "type": "n8n-nodes-base.webhook"}],
                "connections": {},
            },
        }
    }


@pytest.fixture
def source():
    return TemplateSourceConfig(
        name="test-templates",
        api_base=API + "/",
        priority_category="ai",
        priority_pages=2,
        general_pages=1,
        rows_per_page=2,
        concurrency=2,
        batch_delay=0.0,
        max_retries=3,
    )


class TestTemplateList:
    """Test suite for template summary collection."""

    @pytest.mark.asyncio
    async def test_cross_phase_dedup(self, source, fake_session_factory, fake_response_factory, no_sleep):
        """Test a template in both phases is collected and fetched once."""
        R = fake_response_factory
        session = fake_session_factory({
            search_url(1, "ai"): R(payload={"workflows": [{"id": 1, "name": "One"}, {"id": 2, "name": "Two"}]}),
            search_url(2, "ai"): R(payload={"workflows": []}),
            search_url(1): R(payload={"workflows": [{"id": 2, "name": "Two again"}, {"id": 3, "name": "Three"}]}),
            detail_url(1): R(payload=detail_payload(1)),
            detail_url(2): R(payload=detail_payload(2)),
            detail_url(3): R(payload=detail_payload(3)),
        })
        client = TemplateApiClient(source=source, session=session)

        summaries = await client.fetch_template_list()
        assert [s.id for s in summaries] == [1, 2, 3]
        # First occurrence wins
        assert summaries[1].name == "Two"

        errors = []
        details = await client.fetch_all_template_details(summaries, errors)
        assert [d.id for d in details] == [1, 2, 3]
        assert errors == []
        assert session.count(detail_url(2)) == 1

    @pytest.mark.asyncio
    async def test_failed_page_ends_phase_only(self, source, fake_session_factory, fake_response_factory, no_sleep):
        """Test a failing priority page stops that phase but not the general one."""
        R = fake_response_factory
        session = fake_session_factory({
            search_url(1, "ai"): R(500, text="boom"),
            search_url(1): R(payload={"workflows": [{"id": 9, "name": "Nine"}]}),
        })
        client = TemplateApiClient(source=source, session=session)

        summaries = await client.fetch_template_list()

        assert [s.id for s in summaries] == [9]
        assert session.count(search_url(2, "ai")) == 0

    @pytest.mark.asyncio
    async def test_non_json_page_ends_phase_only(self, source, fake_session_factory, fake_response_factory, no_sleep):
        """Test a 200 page with an HTML body stops that phase but not the general one."""
        R = fake_response_factory
        session = fake_session_factory({
            search_url(1, "ai"): R(text="<html>gateway</html>"),
            search_url(1): R(payload={"workflows": [{"id": 9, "name": "Nine"}]}),
        })
        client = TemplateApiClient(source=source, session=session)

        summaries = await client.fetch_template_list()

        assert [s.id for s in summaries] == [9]
        assert session.count(search_url(2, "ai")) == 0

    @pytest.mark.asyncio
    async def test_malformed_summary_skipped(self, source, fake_session_factory, fake_response_factory, no_sleep):
        """Test summaries without an id are skipped."""
        R = fake_response_factory
        session = fake_session_factory({
            search_url(1, "ai"): R(payload={"workflows": [{"name": "No id"}, {"id": 5, "name": "Five"}]}),
        })
        client = TemplateApiClient(source=source, session=session)

        summaries = await client.fetch_template_list()
        assert [s.id for s in summaries] == [5]

    @pytest.mark.asyncio
    async def test_user_agent_header(self, source, fake_session_factory, fake_response_factory, no_sleep):
        """Test requests carry the configured user agent."""
        session = fake_session_factory({search_url(1, "ai"): fake_response_factory(payload={"workflows": []})})
        client = TemplateApiClient(source=source, session=session, user_agent="agent-x")

        await client.fetch_template_list()
        assert session.headers[0]["User-Agent"] == "agent-x"


class TestRetry:
    """Test suite for 429 handling."""

    @pytest.mark.asyncio
    async def test_retry_after_429(self, source, fake_session_factory, fake_response_factory, no_sleep):
        """Test 429 responses are retried with exponential backoff."""
        R = fake_response_factory
        session = fake_session_factory({
            detail_url(7): [R(429, text="slow down"), R(429, text="slow down"), R(payload=detail_payload(7))],
        })
        client = TemplateApiClient(source=source, session=session)

        detail = await client.fetch_template_detail(7)

        assert detail.id == 7
        assert session.count(detail_url(7)) == 3
        assert [c.args[0] for c in no_sleep.await_args_list] == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_retries_exhausted(self, source, fake_session_factory, fake_response_factory, no_sleep):
        """Test a persistent 429 gives up after the retry limit."""
        session = fake_session_factory({detail_url(7): fake_response_factory(429, text="slow down")})
        client = TemplateApiClient(source=source, session=session)

        with pytest.raises(FetchError) as exc_info:
            await client.fetch_template_detail(7)

        assert exc_info.value.status == 429
        assert session.count(detail_url(7)) == source.max_retries + 1

    @pytest.mark.asyncio
    async def test_other_errors_not_retried(self, source, fake_session_factory, fake_response_factory, no_sleep):
        """Test non-429 failures raise immediately."""
        session = fake_session_factory({detail_url(7): fake_response_factory(503, text="down")})
        client = TemplateApiClient(source=source, session=session)

        with pytest.raises(FetchError) as exc_info:
            await client.fetch_template_detail(7)

        assert exc_info.value.status == 503
        assert session.count(detail_url(7)) == 1


class TestTemplateDetails:
    """Test suite for detail fetching."""

    @pytest.mark.asyncio
    async def test_single_failure_isolated(self, source, fake_session_factory, fake_response_factory, no_sleep):
        """Test one failing template does not affect the others."""
        R = fake_response_factory
        session = fake_session_factory({
            detail_url(1): R(payload=detail_payload(1)),
            detail_url(2): R(500, text="Internal Server Error"),
            detail_url(3): R(payload=detail_payload(3)),
        })
        client = TemplateApiClient(source=source, session=session)
        summaries = [type("S", (), {"id": i})() for i in (1, 2, 3)]

        errors = []
        details = await client.fetch_all_template_details(summaries, errors)

        assert [d.id for d in details] == [1, 3]
        assert len(errors) == 1
        assert errors[0].startswith("Template 2 fetch failed: HTTP 500")

    @pytest.mark.asyncio
    async def test_detail_without_nodes_skipped(self, source, fake_session_factory, fake_response_factory, no_sleep):
        """Test a detail without workflow nodes is dropped without an error."""
        session = fake_session_factory({
            detail_url(4): fake_response_factory(payload={"workflow": {"id": 4, "workflow": {"nodes": []}}}),
        })
        client = TemplateApiClient(source=source, session=session)

        errors = []
        details = await client.fetch_all_template_details([type("S", (), {"id": 4})()], errors)

        assert details == []
        assert errors == []

    @pytest.mark.asyncio
    async def test_batches_pause_between(self, source, fake_session_factory, fake_response_factory, no_sleep):
        """Test a pause is taken between detail batches only."""
        R = fake_response_factory
        session = fake_session_factory({detail_url(i): R(payload=detail_payload(i)) for i in range(1, 6)})
        client = TemplateApiClient(source=source, session=session)

        errors = []
        details = await client.fetch_all_template_details(
            [type("S", (), {"id": i})() for i in range(1, 6)], errors
        )

        assert len(details) == 5
        # 5 templates in batches of 2: three batches, two pauses
        assert no_sleep.await_count == 2
