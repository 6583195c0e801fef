"""Markdown and node-source parsing for n8n-rag-sync.

Pure extraction helpers used by the chunk builder. None of these functions
raise on malformed input; they return ``None`` or fall back to defaults.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import List, Optional

logger = logging.getLogger(__name__)

PARAMETER_HEADINGS = ["Parameters", "Node parameters", "Options", "Fields", "Operations"]
CREDENTIAL_HEADINGS = ["Credentials", "Authentication", "Prerequisites"]
EXAMPLE_HEADINGS = ["Examples", "Example", "Templates", "Common operations", "Usage"]

MAX_PARAMETER_SECTION = 2000
MAX_PARAMETER_TABLE = 1500
MAX_CREDENTIAL_SECTION = 1000
MAX_EXAMPLES_SECTION = 1500
MAX_SOURCE_PROPERTIES = 30
MAX_OPERATIONS = 20

DEFAULT_NODE_PREFIX = "n8n-nodes-base."

FRONTMATTER_RE = re.compile(r"^---[\s\S]*?---\n?")
TABLE_RE = re.compile(r"\|.*\|.*\|[\s\S]*?\n(?:\|.*\|.*\|\n)+")
CODE_BLOCK_RE = re.compile(r"```[\s\S]*?```")
BULLET_RE = re.compile(r"^\s*[-*+]\s+(.+?)\s*$", re.MULTILINE)

DISPLAY_NAME_RE = re.compile(r"displayName\s*[:=]\s*['\"`]([^'\"`]+)['\"`]")
DEFAULT_VERSION_RE = re.compile(r"defaultVersion\s*[:=]\s*(\d+(?:\.\d+)?)")
VERSION_RE = re.compile(r"version\s*[:=]\s*(\[[\d,\s.]+\]|\d+(?:\.\d+)?)")
DESCRIPTION_RE = re.compile(r"description\s*[:=]\s*['\"`]([^'\"`]+)['\"`]")
GROUP_RE = re.compile(r"group\s*[:=]\s*\[['\"`]([^'\"`]*)['\"`]")
CREDENTIAL_RE = re.compile(r"name\s*[:=]\s*['\"`]([\w]+(?:OAuth2)?Api)['\"`]")
PROPERTY_RE = re.compile(
    r"{\s*displayName\s*[:=]\s*['\"`]([^'\"`]+)['\"`],\s*"
    r"name\s*[:=]\s*['\"`]([^'\"`]+)['\"`],\s*"
    r"type\s*[:=]\s*['\"`]([^'\"`]+)['\"`]"
)
NODE_TYPE_RE = re.compile(r"name\s*[:=]\s*['\"`](n8n-nodes-base\.\w+)['\"`]")


@dataclass
class NodeSourceInfo:
    """Metadata mined from a node definition source file."""
    node_type: str
    display_name: str
    default_version: float = 1.0
    description: str = ""
    category: str = "action"
    credentials: List[str] = field(default_factory=list)
    properties: str = ""


def strip_frontmatter(md: str) -> str:
    """Remove a leading YAML frontmatter block."""
    return FRONTMATTER_RE.sub("", md, count=1)


def extract_markdown_section(md: str, start: int, max_length: int) -> str:
    """Slice the document body, preferring to end on a complete sentence.

    The slice is cut back to its last period when that period lies past half
    of ``max_length``; otherwise the slice is returned trimmed.
    """
    section = strip_frontmatter(md)[start:start + max_length]
    last_period = section.rfind(".")
    if last_period > max_length * 0.5:
        return section[:last_period + 1]
    return section.strip()


def _find_heading_section(md: str, headings: List[str]) -> Optional[str]:
    """Return the first section whose heading matches, ``##`` before ``###``.

    Synonyms are tried in list order at each level. A section runs until the
    next heading of the same or a higher level, a ``---`` rule, or the end.
    """
    for level in (2, 3):
        marker = "#" * level
        end = rf"(?=\n#{{1,{level}}} |\n---|\Z)"
        for heading in headings:
            pattern = rf"^{marker} {re.escape(heading)}\b[\s\S]*?{end}"
            match = re.search(pattern, md, re.IGNORECASE | re.MULTILINE)
            if match:
                return match.group(0)
    return None


def extract_parameter_section(md: str) -> Optional[str]:
    """Find the documented parameters, falling back to the first table."""
    section = _find_heading_section(md, PARAMETER_HEADINGS)
    if section:
        return section[:MAX_PARAMETER_SECTION]

    table = TABLE_RE.search(md)
    if table:
        return table.group(0)[:MAX_PARAMETER_TABLE]

    return None


def extract_credential_section(md: str) -> Optional[str]:
    section = _find_heading_section(md, CREDENTIAL_HEADINGS)
    if section:
        return section[:MAX_CREDENTIAL_SECTION]
    return None


def extract_examples_section(md: str) -> Optional[str]:
    """Find the examples section, falling back to the first fenced code blocks."""
    section = _find_heading_section(md, EXAMPLE_HEADINGS)
    if section:
        return section[:MAX_EXAMPLES_SECTION]

    blocks = CODE_BLOCK_RE.findall(md)
    if blocks:
        return "\n\n".join(blocks[:3])[:MAX_EXAMPLES_SECTION]

    return None


def extract_operations(md: str) -> List[str]:
    """List the bullet items documented under an ``Operations`` heading."""
    section = _find_heading_section(md, ["Operations"])
    if not section:
        return []

    operations = []
    for item in BULLET_RE.findall(section):
        item = item.strip()
        if item and item not in operations:
            operations.append(item)
        if len(operations) >= MAX_OPERATIONS:
            break
    return operations


def _parse_version(raw: str) -> float:
    default_version = DEFAULT_VERSION_RE.search(raw)
    if default_version:
        return float(default_version.group(1))

    version = VERSION_RE.search(raw)
    if not version:
        return 1.0

    value = version.group(1)
    if value.startswith("["):
        versions = []
        for part in value.strip("[]").split(","):
            try:
                versions.append(float(part.strip()))
            except ValueError:
                continue
        return max(versions + [1.0])

    try:
        return float(value) or 1.0
    except ValueError:
        return 1.0


def parse_node_source(raw: str, node_type: str) -> NodeSourceInfo:
    """Mine display metadata from a ``*.node.ts`` definition.

    Args:
        raw: Source text of the node definition
        node_type: Node type the source was resolved to

    Returns:
        NodeSourceInfo with every field that could be matched; unmatched
        fields keep their defaults.
    """
    display_name = DISPLAY_NAME_RE.search(raw)
    description = DESCRIPTION_RE.search(raw)
    group = GROUP_RE.search(raw)

    credentials: List[str] = []
    for name in CREDENTIAL_RE.findall(raw):
        if (name.endswith("Api") or "OAuth" in name) and name not in credentials:
            credentials.append(name)

    properties = "\n".join(
        f"- {label} ({name}): type={prop_type}"
        for label, name, prop_type in PROPERTY_RE.findall(raw)[:MAX_SOURCE_PROPERTIES]
    )

    return NodeSourceInfo(
        node_type=node_type,
        display_name=display_name.group(1) if display_name else node_type.split(".")[-1],
        default_version=_parse_version(raw),
        description=description.group(1) if description else "",
        category=(group.group(1) if group and group.group(1) else "action"),
        credentials=credentials,
        properties=properties,
    )


def node_type_from_source(raw: str, path: str, prefix: str = DEFAULT_NODE_PREFIX) -> str:
    """Resolve the node type for a source file.

    Uses the first fully-qualified ``name`` literal in the source, otherwise
    derives it from the file name (``Slack.node.ts`` -> ``n8n-nodes-base.slack``).
    """
    match = NODE_TYPE_RE.search(raw)
    if match:
        return match.group(1)

    base = path.rsplit("/", 1)[-1].replace(".node.ts", "")
    return f"{prefix}{base[:1].lower()}{base[1:]}"


def node_type_from_doc_path(path: str, prefixes: List[str]) -> Optional[str]:
    """Derive the node type from a ``.../<node-type>/index.md`` path."""
    parts = path.split("/")
    if len(parts) < 2:
        return None
    folder = parts[-2]
    if any(folder.startswith(prefix) for prefix in prefixes):
        return folder
    return None
