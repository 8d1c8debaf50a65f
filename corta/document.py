"""
Structured document helpers.

Pages store content as a TipTap-style JSON tree::

    {"type": "doc", "content": [
        {"type": "paragraph", "content": [{"type": "text", "text": "hi"}]}
    ]}

These functions project that tree to plain text (for diffing and
eligibility checks) and to Markdown (for the semantic index).
"""

from typing import Any, Optional

_INLINE_TYPES = frozenset({"text", "hardBreak", "mention"})


def is_document(value: Any) -> bool:
    """True if value looks like a structured document root."""
    return (
        isinstance(value, dict)
        and isinstance(value.get("type"), str)
        and isinstance(value.get("content", []), list)
    )


def paragraph_doc(text: str) -> dict:
    """Wrap plain text as a single-paragraph document."""
    return {
        "type": "doc",
        "content": [
            {"type": "paragraph", "content": [{"type": "text", "text": text}]}
        ],
    }


def _node_text(node: dict) -> str:
    node_type = node.get("type")
    if node_type == "text":
        return node.get("text") or ""
    if node_type == "hardBreak":
        return "\n"
    if node_type == "mention":
        return (node.get("attrs") or {}).get("label") or ""

    children = [c for c in node.get("content") or [] if isinstance(c, dict)]
    if not children:
        return ""
    if any(c.get("type") in _INLINE_TYPES for c in children):
        return "".join(_node_text(c) for c in children)
    blocks = (_node_text(c) for c in children)
    return "\n".join(b for b in blocks if b)


def extract_plain_text(content: Optional[dict]) -> str:
    """
    Flatten a document to plain text.

    Inline text is concatenated, block nodes are separated by newlines and
    empty blocks are skipped. The result is stripped.
    """
    if not content or not isinstance(content, dict) or not content.get("content"):
        return ""
    return _node_text(content).strip()


# -----------------------------------------------------------------------------
# Markdown
# -----------------------------------------------------------------------------

def _inline_markdown(node: dict) -> str:
    node_type = node.get("type")
    if node_type == "hardBreak":
        return "\n"
    if node_type != "text":
        return _node_text(node)

    text = node.get("text") or ""
    for mark in node.get("marks") or []:
        mark_type = mark.get("type")
        if mark_type == "bold":
            text = f"**{text}**"
        elif mark_type == "italic":
            text = f"*{text}*"
        elif mark_type == "code":
            text = f"`{text}`"
        elif mark_type == "strike":
            text = f"~~{text}~~"
        elif mark_type == "link":
            href = (mark.get("attrs") or {}).get("href", "")
            text = f"[{text}]({href})"
    return text


def _inline_children(node: dict) -> str:
    return "".join(_inline_markdown(c) for c in node.get("content") or [])


def _list_item_text(item: dict) -> str:
    parts = []
    for child in item.get("content") or []:
        if child.get("type") == "paragraph":
            parts.append(_inline_children(child))
        else:
            parts.append(_block_markdown(child).rstrip("\n"))
    return "".join(parts)


def _block_markdown(node: dict) -> str:
    node_type = node.get("type")
    attrs = node.get("attrs") or {}

    if node_type == "paragraph":
        text = _inline_children(node)
        return text + "\n\n" if text.strip() else "\n"

    if node_type == "heading":
        level = "#" * int(attrs.get("level") or 1)
        return f"{level} {_inline_children(node)}\n\n"

    if node_type == "bulletList":
        items = [
            f"- {_list_item_text(item)}\n"
            for item in node.get("content") or []
            if item.get("type") == "listItem"
        ]
        return "".join(items) + "\n"

    if node_type == "orderedList":
        start = int(attrs.get("start") or 1)
        items = [
            f"{start + i}. {_list_item_text(item)}\n"
            for i, item in enumerate(
                c for c in node.get("content") or [] if c.get("type") == "listItem"
            )
        ]
        return "".join(items) + "\n"

    if node_type == "blockquote":
        inner = "".join(_block_markdown(c) for c in node.get("content") or [])
        lines = [f"> {line}" for line in inner.split("\n") if line]
        return "\n".join(lines) + "\n\n"

    if node_type == "codeBlock":
        code = "".join(c.get("text") or "" for c in node.get("content") or [])
        return f"```{attrs.get('language') or ''}\n{code}\n```\n\n"

    if node_type == "horizontalRule":
        return "---\n\n"

    if node_type == "hardBreak":
        return "\n"

    if node_type == "text":
        return _inline_markdown(node)

    # Unknown block types: render children
    return "".join(_block_markdown(c) for c in node.get("content") or [])


def to_markdown(content: Optional[dict]) -> str:
    """Render a document as Markdown."""
    if not content or not isinstance(content, dict) or not content.get("content"):
        return ""
    return "".join(_block_markdown(n) for n in content["content"]).strip()
