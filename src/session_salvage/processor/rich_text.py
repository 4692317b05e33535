"""Flattening of rich-text document trees into plain text.

Documents are JSON trees of typed nodes. The usual shape is
``{"root": {"children": [...]}}`` but older or partial records hold a bare
``children`` list, a single node, or a top-level array of nodes.
"""

import json
import logging
from typing import Any

from session_salvage.logging import get_logger
from session_salvage.models import get_list, get_str
from session_salvage.processor.reasoning import decode_reasoning

logger = get_logger("rich_text")

LABELED_TYPES = frozenset({"thinking", "tool", "tool_call", "function_call"})
REDACTED_TYPES = frozenset({"redacted_reasoning", "redacted-reasoning"})

# Sibling block nodes are separated by a blank line
BLOCK_TYPES = frozenset({"paragraph", "heading", "quote", "list", "listitem"})


class RichTextError(ValueError):
    """The value does not match any known rich-text shape."""


def format_code_block(code: str, language: str = "") -> str:
    return f"```{language}\n{code}\n```"


def format_redacted_reasoning(payload: str, log: logging.Logger | None = None) -> str:
    """Render a redacted-reasoning payload, decoding it when possible."""
    result = decode_reasoning(payload, log)
    if result.decoded:
        return f"\n```\n[Redacted Reasoning - Decoded]\n{result.text}\n```\n"
    return f"\n```\n[Redacted Reasoning]\n{payload}\n```\n"


class _Flattener:
    def __init__(self, log: logging.Logger) -> None:
        self.log = log

    def children(self, children: list) -> str:
        out = ""
        prev_block = False
        for child in children:
            if not isinstance(child, dict):
                continue
            part = self.node(child)
            if not part:
                continue
            block = get_str(child, "type") in BLOCK_TYPES
            if out and (block or prev_block):
                out = out.rstrip("\n") + "\n\n" + part.lstrip("\n")
            else:
                out += part
            prev_block = block
        return out

    def node(self, node: dict) -> str:
        node_type = get_str(node, "type")
        children = get_list(node, "children")

        if node_type == "text":
            return get_str(node, "text")

        if node_type == "linebreak":
            return "\n"

        if node_type == "code":
            code = self.children(children) or get_str(node, "text")
            if not code:
                return ""
            return "\n" + format_code_block(code, get_str(node, "language")) + "\n"

        if node_type in LABELED_TYPES:
            inner = self.children(children) or get_str(node, "text") or get_str(node, "content")
            if not inner:
                return ""
            return f"\n[{node_type}]\n{inner}\n"

        if node_type in REDACTED_TYPES:
            payload = (
                self.children(children)
                or get_str(node, "content")
                or get_str(node, "value")
                or get_str(node, "data")
            )
            if not payload:
                return ""
            return format_redacted_reasoning(payload, self.log)

        out = "\n".join(
            value
            for value in (get_str(node, "text"), get_str(node, "content"), get_str(node, "value"))
            if value
        )
        if children:
            nested = self.children(children)
            if nested:
                if out and not out.endswith("\n"):
                    out += "\n"
                out += nested
        return out


def extract_rich_text(document: Any, log: logging.Logger | None = None) -> str:
    """Flatten a rich-text document into plain text.

    Shapes are tried in order: ``root.children``, a top-level ``children``
    list, the ``root`` node itself, a bare node, and a top-level array of
    nodes. The first shape yielding text wins.

    Args:
        document: A JSON string or an already-parsed tree
        log: Logger handle (defaults to the module logger)

    Returns:
        Flattened text ("" for an empty document)

    Raises:
        RichTextError: If the document is not JSON or no shape yields text
    """
    log = log or logger
    if document is None or document == "":
        return ""

    if isinstance(document, str):
        try:
            document = json.loads(document)
        except (ValueError, RecursionError) as e:
            raise RichTextError(f"richText is not JSON: {e}") from e

    flattener = _Flattener(log)
    try:
        text = _flatten_any(flattener, document)
    except RecursionError as e:
        raise RichTextError("richText is nested too deeply") from e

    if not text:
        raise RichTextError("failed to parse richText in any known format")
    return text.strip()


def _flatten_any(flattener: _Flattener, document: Any) -> str:
    if isinstance(document, list):
        return flattener.children(document)
    if not isinstance(document, dict):
        return ""

    root = document.get("root")
    if isinstance(root, dict):
        text = flattener.children(get_list(root, "children"))
        if text:
            return text

    text = flattener.children(get_list(document, "children"))
    if text:
        return text

    if isinstance(root, dict):
        text = flattener.node(root)
        if text:
            return text

    return flattener.node(document)
