"""
Plain-text helpers for post content: slugs, reading time and excerpts.
"""

from __future__ import annotations

import json
import math
import re
from typing import Any

WORDS_PER_MINUTE = 200


def slugify(value: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (value or "").lower().strip())
    return slug.strip("-") or "post"


def _node_text(node: Any) -> str:
    if isinstance(node, str):
        return node
    if not isinstance(node, dict):
        return ""
    text = ""
    if "text" in node:
        text += str(node.get("text") or "")
        if node.get("emoji"):
            text += str(node["emoji"])
    children = node.get("children")
    if isinstance(children, list):
        text += " " + " ".join(_node_text(child) for child in children)
    return text.strip()


def _content_nodes(content: Any) -> list | None:
    if isinstance(content, list):
        return content
    if isinstance(content, dict) and content.get("type") == "slate":
        nodes = content.get("content")
        if isinstance(nodes, list):
            return nodes
    return None


def extract_text(content: Any) -> str:
    """
    Flatten rich-text content to a single whitespace-normalized string.

    Accepts a raw string, a list of editor nodes, or a ``{"type": "slate",
    "content": [...]}`` wrapper. Anything else is serialized as JSON.
    """
    if not content:
        return ""
    if isinstance(content, str):
        text = content
    else:
        nodes = _content_nodes(content)
        if nodes is None:
            text = json.dumps(content)
        else:
            text = " ".join(_node_text(node) for node in nodes)
    return re.sub(r"\s+", " ", text).strip()


def calculate_reading_time(content: Any) -> int:
    """Estimated reading time in whole minutes, never less than one."""
    text = extract_text(content)
    if not text:
        return 1
    words = len(text.split(" "))
    return max(1, math.ceil(words / WORDS_PER_MINUTE))


def plain_text(content: Any, max_length: int = 160) -> str:
    text = extract_text(content)
    if len(text) > max_length:
        return text[: max_length - 1].strip() + "…"
    return text
