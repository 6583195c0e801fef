"""Unit tests for workflow template records.

Tests cover:
- Detail payload flattening
- Flow description (trigger start, cycles, AI sub-nodes)
- Record building precedence, deduplication and bounds
"""

import pytest

from pipelines.templates import (
    TemplateDetail,
    TemplateDetailEnvelope,
    TemplateSummary,
    build_flow_description,
    build_template_record,
    flatten_template_detail,
    MAX_TEMPLATE_CONTENT_LENGTH,
)
from pipelines.chunker import TRUNCATION_MARKER


def main_link(*targets):
    return {"main": [[{"node": t, "type": "main", "index": 0} for t in targets]]}


AGENT_NODES = [
    {"name": "Chat Trigger", "type": "@n8n/n8n-nodes-langchain.chatTrigger"},
    {"name": "AI Agent", "type": "@n8n/n8n-nodes-langchain.agent"},
    {"name": "OpenAI Chat Model", "type": "@n8n/n8n-nodes-langchain.lmChatOpenAi"},
    {"name": "Memory", "type": "@n8n/n8n-nodes-langchain.memoryBufferWindow"},
    {"name": "Reply", "type": "n8n-nodes-base.slack"},
    {"name": "Note", "type": "n8n-nodes-base.stickyNote"},
]

AGENT_CONNECTIONS = {
    "Chat Trigger": main_link("AI Agent"),
    "AI Agent": main_link("Reply"),
    "OpenAI Chat Model": {"ai_languageModel": [[{"node": "AI Agent", "type": "ai_languageModel", "index": 0}]]},
    "Memory": {"ai_memory": [[{"node": "AI Agent", "type": "ai_memory", "index": 0}]]},
}


class TestFlattenDetail:
    """Test suite for flatten_template_detail."""

    def test_flatten_nested_payload(self):
        """Test the twice-nested workflow is collapsed."""
        envelope = TemplateDetailEnvelope.model_validate({
            "workflow": {
                "id": 42,
                "name": "Slack bot",
                "totalViews": 900,
                "categories": [{"name": "AI"}, {"name": "Support"}],
                "workflow": {"nodes": AGENT_NODES, "connections": AGENT_CONNECTIONS},
            }
        })
        detail = flatten_template_detail(envelope, 42)

        assert detail.id == 42
        assert detail.name == "Slack bot"
        assert detail.total_views == 900
        assert detail.categories == ["AI", "Support"]
        assert detail.nodes == AGENT_NODES

    @pytest.mark.parametrize("payload", [
        {},
        {"workflow": {"id": 1}},
        {"workflow": {"id": 1, "workflow": {"nodes": [], "connections": {}}}},
    ])
    def test_flatten_without_nodes(self, payload):
        """Test payloads without workflow nodes flatten to None."""
        envelope = TemplateDetailEnvelope.model_validate(payload)
        assert flatten_template_detail(envelope, 1) is None


class TestFlowDescription:
    """Test suite for build_flow_description."""

    def test_linear_flow(self):
        """Test a simple trigger-first chain."""
        nodes = [
            {"name": "Set", "type": "n8n-nodes-base.set"},
            {"name": "Webhook", "type": "n8n-nodes-base.webhook"},
            {"name": "HTTP", "type": "n8n-nodes-base.httpRequest"},
        ]
        connections = {"Webhook": main_link("HTTP"), "HTTP": main_link("Set")}

        assert build_flow_description(nodes, connections) == "Webhook -> HTTP -> Set"

    def test_sub_nodes_annotate_their_own_node(self):
        """Test AI sub-nodes are listed on the node they attach to."""
        flow = build_flow_description(AGENT_NODES, AGENT_CONNECTIONS)

        assert flow == "Chat Trigger -> AI Agent (sub-nodes: OpenAI Chat Model, Memory) -> Reply"

    def test_forward_ai_outputs(self):
        """Test AI outputs declared on the visited node are collected too."""
        nodes = [
            {"name": "Trigger", "type": "n8n-nodes-base.manualTrigger"},
            {"name": "Store", "type": "vectorStore"},
        ]
        connections = {
            "Trigger": main_link("Store"),
            "Store": {"ai_embedding": [[{"node": "Embeddings", "type": "ai_embedding", "index": 0}]]},
        }

        assert build_flow_description(nodes, connections) == \
            "Trigger -> Store (sub-nodes: Embeddings)"

    def test_cycle_terminates(self):
        """Test a cyclic graph visits each node once."""
        nodes = [
            {"name": "A", "type": "n8n-nodes-base.scheduleTrigger"},
            {"name": "B", "type": "n8n-nodes-base.set"},
            {"name": "C", "type": "n8n-nodes-base.if"},
        ]
        connections = {"A": main_link("B"), "B": main_link("C"), "C": main_link("A", "B")}

        assert build_flow_description(nodes, connections) == "A -> B -> C"

    def test_depth_cap(self):
        """Test the walk stops after the depth cap."""
        nodes = [{"name": "N0", "type": "n8n-nodes-base.manualTrigger"}]
        nodes += [{"name": f"N{i}", "type": "n8n-nodes-base.set"} for i in range(1, 20)]
        connections = {f"N{i}": main_link(f"N{i + 1}") for i in range(19)}

        flow = build_flow_description(nodes, connections)
        assert flow.split(" -> ") == [f"N{i}" for i in range(11)]

    def test_no_trigger(self):
        """Test workflows without a trigger have no flow."""
        nodes = [{"name": "Set", "type": "n8n-nodes-base.set"},
                 {"name": "Code", "type": "n8n-nodes-base.code"}]
        assert build_flow_description(nodes, {"Set": main_link("Code")}) is None

    def test_single_node(self):
        """Test a lone trigger has no flow."""
        nodes = [{"name": "Webhook", "type": "n8n-nodes-base.webhook"}]
        assert build_flow_description(nodes, {}) is None


class TestBuildTemplateRecord:
    """Test suite for build_template_record."""

    @pytest.fixture
    def detail(self):
        return TemplateDetail(
            id=42,
            name="Slack support bot",
            description=None,
            total_views=None,
            categories=[],
            nodes=AGENT_NODES + [{"name": "Reply 2", "type": "n8n-nodes-base.slack"}],
            connections=AGENT_CONNECTIONS,
        )

    @pytest.fixture
    def summary(self):
        return TemplateSummary.model_validate({
            "id": 42,
            "name": "Summary name",
            "description": "Answers questions in Slack",
            "totalViews": 1234,
            "categories": [{"name": "AI"}],
        })

    def test_record_fields(self, detail, summary):
        """Test detail-then-summary precedence and node type deduplication."""
        record = build_template_record(detail, summary)

        assert record.template_id == 42
        assert record.name == "Slack support bot"
        assert record.description == "Answers questions in Slack"
        assert record.category == "AI"
        assert record.total_views == 1234
        assert record.node_types == [
            "@n8n/n8n-nodes-langchain.chatTrigger",
            "@n8n/n8n-nodes-langchain.agent",
            "@n8n/n8n-nodes-langchain.lmChatOpenAi",
            "@n8n/n8n-nodes-langchain.memoryBufferWindow",
            "n8n-nodes-base.slack",
        ]
        assert record.key == "template 42"

    def test_record_content(self, detail, summary):
        """Test the embeddable summary lists nodes, types and flow."""
        content = build_template_record(detail, summary).content

        assert content.startswith("Template: Slack support bot\nCategory: AI\n")
        assert "Description: Answers questions in Slack" in content
        assert "Nodes used: Chat Trigger, AI Agent" in content
        assert "Note" not in content
        assert "Flow: Chat Trigger -> AI Agent (sub-nodes: OpenAI Chat Model, Memory)" in content

    def test_workflow_passed_through(self, detail):
        """Test the stored workflow is the fetched payload."""
        record = build_template_record(detail)

        assert record.workflow_json["nodes"] is detail.nodes
        assert record.workflow_json["connections"] is detail.connections
        assert record.total_views == 0
        assert record.category is None

    def test_detail_values_win(self, detail, summary):
        """Test detail values take precedence over the summary."""
        detail.description = "Detail description"
        detail.categories = ["Support"]
        detail.total_views = 7

        record = build_template_record(detail, summary)
        assert record.description == "Detail description"
        assert record.category == "Support"
        assert record.total_views == 7

    def test_content_bounded(self, detail):
        """Test oversized content is capped with the marker."""
        detail.description = "d" * (MAX_TEMPLATE_CONTENT_LENGTH * 2)
        content = build_template_record(detail).content

        assert len(content) == MAX_TEMPLATE_CONTENT_LENGTH
        assert content.endswith(TRUNCATION_MARKER)

    def test_no_nodes(self, detail):
        """Test a detail without nodes builds no record."""
        detail.nodes = []
        assert build_template_record(detail) is None
