"""Scoring helpers shared by the resolver strategies."""

from __future__ import annotations

from typing import Optional, Sequence

from rewind.core.dom.nodes import DomNode, normalize_space
from rewind.core.dom.xpath import common_prefix_length, generate_xpath
from rewind.core.models import Bundle

VALUE_TAGS = frozenset({"input", "textarea"})


def id_score(node: DomNode, bundle: Bundle, rect_tolerance_px: float = 5.0) -> int:
    """
    Count the secondary attributes of an id match that agree with the bundle.

    One point each for name, class membership, aria, any data-* pair and a
    bounding rect within ``rect_tolerance_px`` of the recorded one.
    """
    score = 0
    if bundle.name and node.get("name") == bundle.name:
        score += 1
    if bundle.classes and all(cls in node.classes for cls in bundle.classes):
        score += 1
    if bundle.aria and (node.get("aria-labelledby") == bundle.aria or node.get("aria-label") == bundle.aria):
        score += 1
    if bundle.data_attrs and any(node.get(key) == value for key, value in bundle.data_attrs):
        score += 1
    if bundle.bounding_rect and node.rect and node.rect.distance_to(bundle.bounding_rect) < rect_tolerance_px:
        score += 1
    return score


def text_similarity(first: Optional[str], second: Optional[str]) -> float:
    """Token overlap: shared whitespace tokens over the larger token set."""
    if not first or not second:
        return 0.0
    a = first.strip().lower()
    b = second.strip().lower()
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    tokens_a = set(a.split())
    tokens_b = set(b.split())
    return len(tokens_a & tokens_b) / max(len(tokens_a), len(tokens_b))


def candidate_text(node: DomNode) -> str:
    if node.tag in VALUE_TAGS:
        return node.value or ""
    return node.inner_text()


def normalize_option_label(value: Optional[str]) -> str:
    return normalize_space(value or "").lower()


def break_tie(candidates: Sequence[DomNode], recorded_xpath: str) -> DomNode:
    """
    Pick one of several equally good candidates.

    Longest common XPath prefix with the recorded path wins; document order
    (the candidate sequence order) settles what remains.
    """
    best = candidates[0]
    best_prefix = common_prefix_length(generate_xpath(best), recorded_xpath)
    for candidate in candidates[1:]:
        prefix = common_prefix_length(generate_xpath(candidate), recorded_xpath)
        if prefix > best_prefix:
            best, best_prefix = candidate, prefix
    return best
