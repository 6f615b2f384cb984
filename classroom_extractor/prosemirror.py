"""Convert lesson bodies stored as ProseMirror-style JSON documents into Markdown.

Lesson descriptions come in two flavours: plain text (or HTML), and a versioned
structured document, ``[v2]`` followed by a JSON array of block nodes::

    [v2][{"type": "heading", "attrs": {"level": 2}, "content": [{"type": "text", "text": "Hi"}]}]

Only the second form is converted. Unknown block types fall back to rendering their
children, so documents using node types added later still produce their text.
"""

import json
import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

logger = logging.getLogger(__name__)

VERSION_MARKER = "[v2]"


class NodeType(str, Enum):
    PARAGRAPH = "paragraph"
    HEADING = "heading"
    BULLET_LIST = "bulletList"
    ORDERED_LIST = "orderedList"
    LIST_ITEM = "listItem"
    BLOCKQUOTE = "blockquote"
    CODE_BLOCK = "codeBlock"
    HORIZONTAL_RULE = "horizontalRule"
    IMAGE = "image"
    EMBED = "embed"
    TEXT = "text"
    HARD_BREAK = "hardBreak"


def _only_valid(model, items: Any) -> list:
    if isinstance(items, dict):
        items = [items]
    if not isinstance(items, list):
        return []
    nodes = []
    for item in items:
        try:
            nodes.append(model.model_validate(item))
        except ValidationError:
            logger.debug(f"Skipping malformed {model.__name__}: {item!r:.80}")
    return nodes


class Mark(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = ""
    attrs: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("attrs", mode="before")
    @classmethod
    def _attrs(cls, v):
        return v if isinstance(v, dict) else {}


class DocNode(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: str = ""
    attrs: Dict[str, Any] = Field(default_factory=dict)
    content: List["DocNode"] = Field(default_factory=list)
    text: Optional[str] = None
    marks: List[Mark] = Field(default_factory=list)

    @field_validator("type", mode="before")
    @classmethod
    def _type(cls, v):
        return v if isinstance(v, str) else ""

    @field_validator("attrs", mode="before")
    @classmethod
    def _attrs(cls, v):
        return v if isinstance(v, dict) else {}

    @field_validator("content", mode="before")
    @classmethod
    def _content(cls, v):
        return _only_valid(DocNode, v)

    @field_validator("text", mode="before")
    @classmethod
    def _text(cls, v):
        return v if isinstance(v, str) else None

    @field_validator("marks", mode="before")
    @classmethod
    def _marks(cls, v):
        return _only_valid(Mark, v)

    @property
    def node_type(self) -> Optional[NodeType]:
        try:
            return NodeType(self.type)
        except ValueError:
            return None

    def attr(self, name: str) -> str:
        value = self.attrs.get(name)
        return "" if value is None else str(value)


DocNode.model_rebuild()


def parse_nodes(raw: Any) -> List[DocNode]:
    return _only_valid(DocNode, raw)


# -- inline content ---------------------------------------------------------

_MARK_WRAPPERS = {
    "bold": "**{}**",
    "italic": "*{}*",
    "code": "`{}`",
}


def apply_marks(text: str, marks: List[Mark]) -> str:
    """Wrap ``text`` once per mark, in list order; later marks end up outermost."""
    for mark in marks:
        if mark.type == "link":
            href = mark.attrs.get("href") or ""
            text = f"[{text}]({href})"
        elif mark.type in _MARK_WRAPPERS:
            text = _MARK_WRAPPERS[mark.type].format(text)
    return text


def _image(node: DocNode) -> str:
    return f"![{node.attr('alt')}]({node.attr('src')})"


def inline_markdown(nodes: List[DocNode]) -> str:
    return "".join(_inline_node(node) for node in nodes)


def _inline_node(node: DocNode) -> str:
    kind = node.node_type
    if kind is NodeType.TEXT:
        return apply_marks(node.text or "", node.marks)
    if kind is NodeType.HARD_BREAK:
        return "\n"
    if kind is NodeType.IMAGE:
        return _image(node)
    if node.content:
        return inline_markdown(node.content)
    return ""


# -- block content ----------------------------------------------------------

def _heading_level(node: DocNode) -> int:
    try:
        level = int(node.attrs.get("level") or 1)
    except (TypeError, ValueError):
        return 1
    return min(max(level, 1), 6)


def _list(node: DocNode, ordered: bool) -> str:
    lines = []
    for i, item in enumerate(node.content, 1):
        prefix = f"{i}. " if ordered else "- "
        lines.append(prefix + inline_markdown(item.content))
    return "\n".join(lines) + "\n"


def _blockquote(node: DocNode) -> str:
    inner = blocks_markdown(node.content)
    return "\n".join(f"> {line}" for line in inner.split("\n")) + "\n\n"


def _embed(node: DocNode) -> str:
    src = node.attr("src")
    return f"[Embed]({src})\n\n" if src else ""


_BLOCK_RENDERERS: Dict[NodeType, Callable[[DocNode], str]] = {
    NodeType.PARAGRAPH: lambda n: inline_markdown(n.content) + "\n\n",
    NodeType.HEADING: lambda n: "#" * _heading_level(n) + " " + inline_markdown(n.content) + "\n\n",
    NodeType.BULLET_LIST: lambda n: _list(n, ordered=False),
    NodeType.ORDERED_LIST: lambda n: _list(n, ordered=True),
    NodeType.LIST_ITEM: lambda n: inline_markdown(n.content),
    NodeType.BLOCKQUOTE: _blockquote,
    NodeType.CODE_BLOCK: lambda n: "```\n" + inline_markdown(n.content) + "\n```\n\n",
    NodeType.HORIZONTAL_RULE: lambda n: "---\n\n",
    NodeType.IMAGE: lambda n: _image(n) + "\n\n",
    NodeType.EMBED: _embed,
}


def _block(node: DocNode) -> str:
    render = _BLOCK_RENDERERS.get(node.node_type)
    if render is None:
        # unknown or inline-only node at block level
        return blocks_markdown(node.content)
    try:
        return render(node)
    except (TypeError, ValueError, RecursionError) as e:
        logger.debug(f"Could not render {node.type} node: {e}")
        return ""


def blocks_markdown(nodes: List[DocNode]) -> str:
    return "".join(_block(node) for node in nodes)


def to_markdown(document: Any) -> str:
    """Render a node array (raw JSON values or parsed nodes) as Markdown."""
    if isinstance(document, list) and all(isinstance(n, DocNode) for n in document):
        return blocks_markdown(document)
    return blocks_markdown(parse_nodes(document))


def body_to_markdown(body: Any) -> str:
    """Decode a lesson description field.

    Plain text passes through untouched. A ``[v2]`` body is converted when the rest
    parses as a JSON array; otherwise the rest is returned as-is without the marker.
    Never raises, even for documents nested deeper than the interpreter can walk.
    """
    if not isinstance(body, str) or not body:
        return ""
    if not body.startswith(VERSION_MARKER):
        return body
    remainder = body[len(VERSION_MARKER):]
    try:
        nodes = json.loads(remainder)
    except (ValueError, RecursionError):
        logger.debug("Structured body is not valid JSON, keeping raw text")
        return remainder
    if not isinstance(nodes, list):
        return remainder
    try:
        return to_markdown(nodes)
    except RecursionError:
        logger.debug("Structured body is nested too deeply, keeping raw text")
        return remainder
