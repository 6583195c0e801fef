"""Workflow template records for n8n-rag-sync.

Typed models for the template search and detail payloads, plus the builder
that turns a fetched template into a storable, embeddable record.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Set

from pydantic import BaseModel, ConfigDict, Field

from .chunker import truncate_content, TRUNCATION_MARKER

logger = logging.getLogger(__name__)

MAX_TEMPLATE_CONTENT_LENGTH = 3000
MAX_FLOW_DEPTH = 10
STICKY_NOTE = "stickyNote"
AI_CONNECTION_TYPES = [
    "ai_languageModel",
    "ai_tool",
    "ai_memory",
    "ai_outputParser",
    "ai_vectorStore",
    "ai_embedding",
]


class _ApiModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class TemplateCategory(_ApiModel):
    name: str


class TemplateSummary(_ApiModel):
    """One row of the template search response."""
    id: int
    name: str = ""
    description: Optional[str] = None
    total_views: Optional[int] = Field(default=None, alias="totalViews")
    category: Optional[TemplateCategory] = None
    categories: Optional[List[TemplateCategory]] = None


class TemplateSearchResponse(_ApiModel):
    workflows: List[Dict[str, Any]] = Field(default_factory=list)
    total_workflows: Optional[int] = Field(default=None, alias="totalWorkflows")


class WorkflowPayload(_ApiModel):
    """The importable workflow: nodes and their connection map."""
    nodes: List[Dict[str, Any]] = Field(default_factory=list)
    connections: Dict[str, Any] = Field(default_factory=dict)


class TemplateOuter(_ApiModel):
    """Template metadata wrapping the workflow payload."""
    id: Optional[int] = None
    name: Optional[str] = None
    description: Optional[str] = None
    total_views: Optional[int] = Field(default=None, alias="totalViews")
    categories: Optional[List[TemplateCategory]] = None
    workflow: Optional[WorkflowPayload] = None


class TemplateDetailEnvelope(_ApiModel):
    """Top-level detail response; the workflow is nested twice."""
    workflow: Optional[TemplateOuter] = None


@dataclass
class TemplateDetail:
    """Flattened template detail."""
    id: int
    name: str
    description: Optional[str] = None
    total_views: Optional[int] = None
    categories: List[str] = field(default_factory=list)
    nodes: List[Dict[str, Any]] = field(default_factory=list)
    connections: Dict[str, Any] = field(default_factory=dict)


@dataclass
class TemplateRecord:
    """A template as stored in the knowledge base."""
    template_id: int
    name: str
    description: Optional[str]
    category: Optional[str]
    total_views: int
    node_types: List[str]
    workflow_json: Dict[str, Any]
    content: str

    @property
    def key(self) -> str:
        return f"template {self.template_id}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "template_id": self.template_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "total_views": self.total_views,
            "node_types": self.node_types,
            "workflow_json": self.workflow_json,
            "content": self.content,
        }


def flatten_template_detail(envelope: TemplateDetailEnvelope,
                            template_id: int) -> Optional[TemplateDetail]:
    """Collapse the nested detail response.

    Returns:
        TemplateDetail, or None when the outer layer is missing or the inner
        workflow has no nodes.
    """
    outer = envelope.workflow
    if outer is None:
        return None

    inner = outer.workflow
    if inner is None or not inner.nodes:
        return None

    return TemplateDetail(
        id=outer.id if outer.id is not None else template_id,
        name=outer.name or f"Template {template_id}",
        description=outer.description,
        total_views=outer.total_views,
        categories=[c.name for c in outer.categories or []],
        nodes=inner.nodes,
        connections=inner.connections,
    )


def _is_sticky_note(node: Dict[str, Any]) -> bool:
    return STICKY_NOTE in str(node.get("type") or "")


def _connection_targets(outputs: Any) -> List[str]:
    """Collect target node names from a connection output list."""
    targets = []
    if not isinstance(outputs, list):
        return targets
    for output in outputs:
        if not isinstance(output, list):
            continue
        for target in output:
            if isinstance(target, dict) and isinstance(target.get("node"), str):
                targets.append(target["node"])
    return targets


def _sub_nodes(node_name: str, connections: Dict[str, Any]) -> List[str]:
    """Auxiliary nodes attached to ``node_name`` through AI connection types.

    Covers both directions: AI outputs declared on the node itself and other
    nodes whose AI outputs point at it.
    """
    found: List[str] = []
    own = connections.get(node_name)
    if isinstance(own, dict):
        for ai_type in AI_CONNECTION_TYPES:
            outputs = own.get(ai_type)
            if isinstance(outputs, list) and outputs:
                found.extend(_connection_targets(outputs[:1]))

    for source, conn in connections.items():
        if source == node_name or not isinstance(conn, dict):
            continue
        for ai_type in AI_CONNECTION_TYPES:
            if node_name in _connection_targets(conn.get(ai_type)):
                found.append(source)
                break

    unique = []
    for name in found:
        if name not in unique:
            unique.append(name)
    return unique


def build_flow_description(nodes: List[Dict[str, Any]],
                           connections: Dict[str, Any]) -> Optional[str]:
    """Describe the main path of a workflow starting from its trigger.

    E.g. ``Chat Trigger -> AI Agent (sub-nodes: OpenAI Chat Model, Memory)``.

    Args:
        nodes: Workflow nodes
        connections: Connection map keyed by source node name

    Returns:
        Arrow-joined node labels, or None when there is no trigger node or
        fewer than two nodes are reachable.
    """
    if not nodes or not isinstance(connections, dict):
        return None

    trigger = None
    for node in nodes:
        node_type = str(node.get("type") or "").lower()
        if "trigger" in node_type or "webhook" in node_type:
            trigger = node
            break

    if trigger is None or not trigger.get("name"):
        return None

    visited: Set[str] = set()
    labels: List[str] = []

    def walk(name: str, depth: int):
        if name in visited or depth > MAX_FLOW_DEPTH:
            return
        visited.add(name)
        position = len(labels)
        labels.append(name)

        sub_nodes = _sub_nodes(name, connections)
        if sub_nodes:
            labels[position] = f"{name} (sub-nodes: {', '.join(sub_nodes)})"

        conn = connections.get(name)
        if isinstance(conn, dict):
            for target in _connection_targets(conn.get("main")):
                walk(target, depth + 1)

    walk(trigger["name"], 0)

    if len(labels) < 2:
        return None
    return " -> ".join(labels)


def build_template_record(detail: TemplateDetail,
                          summary: Optional[TemplateSummary] = None) -> Optional[TemplateRecord]:
    """Build the stored record for a template.

    Detail fields take precedence over the search summary. The workflow
    payload is stored exactly as fetched.

    Returns:
        TemplateRecord, or None when the detail has no nodes.
    """
    if not detail.nodes:
        return None

    name = detail.name or f"Template {detail.id}"
    description = detail.description or (summary.description if summary else None) or None

    category = None
    if detail.categories:
        category = detail.categories[0]
    elif summary and summary.category and summary.category.name:
        category = summary.category.name
    elif summary and summary.categories:
        category = summary.categories[0].name

    total_views = detail.total_views or (summary.total_views if summary else None) or 0

    node_types: List[str] = []
    display_names: List[str] = []
    for node in detail.nodes:
        if _is_sticky_note(node):
            continue
        node_type = node.get("type")
        if node_type and node_type not in node_types:
            node_types.append(node_type)
        if node.get("name"):
            display_names.append(node["name"])

    flow = build_flow_description(detail.nodes, detail.connections)

    parts = [f"Template: {name}"]
    if category:
        parts.append(f"Category: {category}")
    if description:
        parts.append(f"Description: {description}")
    parts.append(f"Nodes used: {', '.join(display_names)}")
    parts.append(f"Node types: {', '.join(node_types)}")
    if flow:
        parts.append(f"Flow: {flow}")

    content = truncate_content("\n".join(parts), MAX_TEMPLATE_CONTENT_LENGTH, TRUNCATION_MARKER)

    return TemplateRecord(
        template_id=detail.id,
        name=name,
        description=description,
        category=category,
        total_views=int(total_views),
        node_types=node_types,
        workflow_json={"nodes": detail.nodes, "connections": detail.connections},
        content=content,
    )
