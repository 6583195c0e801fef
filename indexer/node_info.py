"""Node display-info resolution for n8n-rag-sync.

Resolves the label, category, icon and colour for any node type in four
stages: curated registry, in-memory cache, stored overview chunk, and a
fallback derived from the type name.
"""

import logging
import re
from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional

from sources.loader import SourceLoader

logger = logging.getLogger(__name__)

CATEGORY_COLORS = {
    "trigger": "#6366f1",
    "action": "#f59e0b",
    "logic": "#10b981",
    "output": "#e11d48",
}
DEFAULT_COLOR = "#6b7280"
DEFAULT_ICON = "Box"
MAX_SHORT_DESCRIPTION = 100

# Checked in order against the last segment of the node type
ICON_RULES = [
    (("webhook",), "Webhook"),
    (("schedule", "cron"), "Clock"),
    (("http", "request"), "Globe"),
    (("email", "mail"), "Mail"),
    (("slack",), "MessageSquare"),
    (("telegram",), "Send"),
    (("discord",), "MessageCircle"),
    (("database", "postgres", "mysql", "mongo"), "Database"),
]
LATE_ICON_RULES = [
    (("if", "switch", "filter"), "GitBranch"),
    (("code",), "Code"),
    (("set", "edit"), "PenLine"),
    (("merge",), "Merge"),
    (("wait", "delay"), "Timer"),
    (("ai", "openai", "llm"), "Bot"),
]
CATEGORY_ICONS = {
    "trigger": "Zap",
    "logic": "GitBranch",
    "output": "ArrowRight",
}


@dataclass
class NodeTypeInfo:
    """Display information for a node type."""
    label: str
    category: str
    icon: str
    color: str
    description: str

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def map_category(raw: Optional[str]) -> str:
    """Fold a stored category into trigger, action, logic or output."""
    if not raw:
        return "action"
    lower = raw.lower()
    if "trigger" in lower or lower == "schedule":
        return "trigger"
    if "logic" in lower or lower == "transform":
        return "logic"
    if "output" in lower:
        return "output"
    return "action"


def infer_icon(node_type: str, category: str) -> str:
    """Guess an icon from the node type name, then from the category."""
    name = node_type.split(".")[-1].lower()

    for needles, icon in ICON_RULES:
        if any(n in name for n in needles):
            return icon
    if "google" in name and "sheet" in name:
        return "Sheet"
    if "google" in name and "drive" in name:
        return "HardDrive"
    for needles, icon in LATE_ICON_RULES:
        if any(n in name for n in needles):
            return icon

    return CATEGORY_ICONS.get(category, DEFAULT_ICON)


def extract_short_description(content: str) -> str:
    """Pull the ``Description:`` line from overview content, else the first substantial line."""
    match = re.search(r"Description:\s*(.+)", content)
    if match:
        return match.group(1)[:MAX_SHORT_DESCRIPTION]

    for line in content.split("\n"):
        if len(line.strip()) > 10:
            return line[:MAX_SHORT_DESCRIPTION]
    return content[:MAX_SHORT_DESCRIPTION]


def format_node_name(node_type: str) -> str:
    """``n8n-nodes-base.googleSheets`` -> ``Google Sheets``."""
    raw = node_type.split(".")[-1] or "Unknown"
    spaced = re.sub(r"([A-Z])", r" \1", raw)
    return (spaced[:1].upper() + spaced[1:]).strip()


def info_from_overview(node_type: str, row: Dict[str, Any]) -> NodeTypeInfo:
    """Build display info from a stored overview row."""
    category = map_category((row.get("metadata") or {}).get("category"))
    return NodeTypeInfo(
        label=row.get("display_name") or format_node_name(node_type),
        category=category,
        icon=infer_icon(node_type, category),
        color=CATEGORY_COLORS.get(category, DEFAULT_COLOR),
        description=extract_short_description(row.get("content") or ""),
    )


def load_static_registry(loader: Optional[SourceLoader] = None) -> Dict[str, NodeTypeInfo]:
    data = (loader or SourceLoader()).load_node_registry()
    return {node_type: NodeTypeInfo(**entry) for node_type, entry in data.items()}


STATIC_REGISTRY = load_static_registry()


class NodeInfoCache:
    """Per-process cache of resolved display info."""

    def __init__(self, registry: Optional[Dict[str, NodeTypeInfo]] = None):
        self.registry = STATIC_REGISTRY if registry is None else registry
        self._entries: Dict[str, NodeTypeInfo] = {}

    def get(self, node_type: str) -> Optional[NodeTypeInfo]:
        return self._entries.get(node_type)

    def set(self, node_type: str, info: NodeTypeInfo):
        self._entries[node_type] = info

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    async def warm(self, store) -> int:
        """Load display info for every stored overview chunk.

        Args:
            store: Database adapter exposing ``list_overviews``

        Returns:
            Number of entries added. Node types already in the registry or
            the cache are skipped. Store failures are logged and yield 0.
        """
        try:
            rows = await store.list_overviews()
        except Exception as e:
            logger.warning(f"Failed to warm node info cache: {e}")
            return 0

        count = 0
        for row in rows:
            node_type = row["node_type"]
            if node_type in self.registry or node_type in self._entries:
                continue
            self._entries[node_type] = info_from_overview(node_type, row)
            count += 1

        logger.info(f"Warmed node info cache with {count} entries")
        return count


def from_static_registry(node_type: str,
                         registry: Optional[Dict[str, NodeTypeInfo]] = None) -> Optional[NodeTypeInfo]:
    return (STATIC_REGISTRY if registry is None else registry).get(node_type)


async def from_store(node_type: str, store, cache: Optional[NodeInfoCache] = None) -> Optional[NodeTypeInfo]:
    """Resolve from the stored overview chunk, caching a hit."""
    try:
        row = await store.get_overview(node_type)
    except Exception as e:
        logger.warning(f"Overview lookup failed for {node_type}: {e}")
        return None

    if not row:
        return None

    info = info_from_overview(node_type, row)
    if cache is not None:
        cache.set(node_type, info)
    return info


def derive_default(node_type: str) -> NodeTypeInfo:
    return NodeTypeInfo(
        label=format_node_name(node_type),
        category="action",
        icon=DEFAULT_ICON,
        color=DEFAULT_COLOR,
        description=node_type,
    )


async def resolve_node_info(node_type: str, cache: NodeInfoCache, store=None) -> NodeTypeInfo:
    """Resolve display info: registry, cache, stored overview, then derived default."""
    info = from_static_registry(node_type, cache.registry)
    if info:
        return info

    info = cache.get(node_type)
    if info:
        return info

    if store is not None:
        info = await from_store(node_type, store, cache)
        if info:
            return info

    info = derive_default(node_type)
    cache.set(node_type, info)
    return info
