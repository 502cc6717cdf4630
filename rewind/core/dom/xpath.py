"""
Positional XPath generation and evaluation over snapshot trees.

Paths are relative to the element's own root (document or shadow root). A
segment carries a 1-based index only when it is not the first element of that
tag among its siblings. ``svg`` elements are transparent: they never appear as
segments and their children count as children of the svg's parent.
"""

from __future__ import annotations

import re
from typing import Optional

from rewind.core.dom.nodes import DomNode

_SEGMENT = re.compile(r"^([a-zA-Z][a-zA-Z0-9_\-.:]*)(?:\[(\d+)\])?$")
TRANSPARENT_TAGS = frozenset({"svg"})


def _flat_children(parent: DomNode) -> list[DomNode]:
    result: list[DomNode] = []
    for child in parent.children:
        if not child.is_element:
            continue
        if child.tag in TRANSPARENT_TAGS:
            result.extend(_flat_children(child))
        else:
            result.append(child)
    return result


def _path_parent(node: DomNode) -> Optional[DomNode]:
    parent = node.parent
    while parent is not None and parent.is_element and parent.tag in TRANSPARENT_TAGS:
        parent = parent.parent
    return parent


def generate_xpath(node: DomNode) -> str:
    """
    Build the positional path of an element inside its own root.

    Args:
        node: Element to describe

    Returns:
        Path such as ``/html/body/div[2]/input``; empty for non-elements
    """
    if not node.is_element:
        return ""

    current: Optional[DomNode] = node
    if current.tag in TRANSPARENT_TAGS:
        current = _path_parent(current)

    segments: list[str] = []
    while current is not None and current.is_element:
        parent = _path_parent(current)
        position = 1
        if parent is not None:
            for sibling in _flat_children(parent):
                if sibling is current:
                    break
                if sibling.tag == current.tag:
                    position += 1
        segments.append(current.tag if position == 1 else f"{current.tag}[{position}]")
        current = parent

    if not segments:
        return ""
    return "/" + "/".join(reversed(segments))


def evaluate_xpath(root: DomNode, path: str) -> Optional[DomNode]:
    """
    Resolve a path produced by generate_xpath against a document or shadow root.

    Shadow roots of hosts met along the way are not entered. Returns None for a
    malformed path or when any segment has no match.
    """
    if not path or not path.startswith("/") or path.startswith("//"):
        return None

    context: Optional[DomNode] = root
    for raw in path[1:].split("/"):
        match = _SEGMENT.match(raw)
        if match is None or context is None:
            return None
        tag = match.group(1).lower()
        position = int(match.group(2) or 1)
        if position < 1:
            return None
        candidates = [child for child in _flat_children(context) if child.tag == tag]
        if len(candidates) < position:
            return None
        context = candidates[position - 1]
    return context if context is not root else None


def common_prefix_length(first: str, second: str) -> int:
    """Number of leading path segments two XPaths share."""
    count = 0
    for a, b in zip(first.strip("/").split("/"), second.strip("/").split("/")):
        if a != b:
            break
        count += 1
    return count
