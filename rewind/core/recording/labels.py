"""
Human-readable labels for recorded fields.

LabelResolver runs an ordered list of strategies and keeps the first non-empty
answer. LabelCounter turns base labels into unique step labels for one
recording session (``search``, ``search_1``, ``search_2``).
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional
from urllib.parse import urlparse

from rewind.core.dom.nodes import DomNode, normalize_space

logger = logging.getLogger("rewind.labels")

DEFAULT_LABEL = "field"
SUBMIT_LABEL = "submit"
EDITOR_INPUT_LABEL = "prompt_input"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")

GENERIC_LABEL_CLASSES = ("form_label", "field-label", "label", "question", "question-text")
CONTAINER_TAGS = frozenset({"div", "td", "th", "span", "p", "section"})
FORM_CONTROL_TAGS = frozenset({"input", "select", "textarea"})


@dataclass(frozen=True)
class LabelContext:
    page_url: str = ""


LabelStrategy = Callable[[DomNode, LabelContext], Optional[str]]


def clean_label(text: Optional[str]) -> Optional[str]:
    """Strip required-field asterisks and whitespace; empty becomes None."""
    if not text:
        return None
    cleaned = normalize_space(text.replace("*", ""))
    return cleaned or None


def normalize_label(label: Optional[str]) -> str:
    base = _NON_ALNUM.sub("_", (label or "").strip().lower()).strip("_")
    return base or DEFAULT_LABEL


class LabelCounter:
    """Occurrence counter for normalized base labels, one per recording session."""

    def __init__(self) -> None:
        self._counts: dict[str, int] = {}

    def reset(self) -> None:
        self._counts.clear()

    def next(self, label: Optional[str]) -> str:
        key = normalize_label(label)
        count = self._counts.get(key, 0)
        self._counts[key] = count + 1
        return key if count == 0 else f"{key}_{count}"

    def snapshot(self) -> dict[str, int]:
        return dict(self._counts)


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

def _tag(*names: str) -> Callable[[DomNode], bool]:
    return lambda node: node.tag in names


def _col_md(node: DomNode) -> bool:
    return any(cls.startswith("col-md-") for cls in node.classes)


def original_select(node: DomNode) -> Optional[DomNode]:
    """The <select> behind a Select2 widget or an option, if any."""
    if node.tag == "select":
        return node
    if node.has_class("select2-selection__rendered") and node.id:
        select_id = node.id.replace("select2-", "").replace("-container", "")
        document = node.owner_document()
        if document is not None:
            target = document.get_element_by_id(select_id)
            if target is not None:
                return target
    return node.closest(_tag("select"))


def _by_id(node: DomNode, element_id: str) -> Optional[DomNode]:
    return node.root_node().query(lambda n: n.id == element_id)


# ----------------------------------------------------------------------
# Strategies, in resolution order
# ----------------------------------------------------------------------

def form_question_heading(node: DomNode, context: LabelContext) -> Optional[str]:
    parsed = urlparse(context.page_url or "")
    if parsed.hostname != "docs.google.com" or not parsed.path.startswith("/forms"):
        return None

    item = None
    role_target = node.closest(lambda n: n.role in ("radio", "checkbox", "listitem"))
    if role_target is not None:
        if role_target.role == "checkbox":
            group = role_target.closest(lambda n: n.role == "list")
            if group is not None:
                item = group.closest(lambda n: n.role == "listitem")
        else:
            item = role_target.closest(lambda n: n.role == "listitem")
    if item is None:
        item = node.closest(lambda n: n.role == "listitem")
    if item is None:
        return None

    heading = item.query(lambda n: n.role == "heading" or n.has_class("M7eMe"))
    return clean_label(heading.text_content()) if heading is not None else None


def enclosing_label(node: DomNode, context: LabelContext) -> Optional[str]:
    label = node.closest(_tag("label"))
    return clean_label(label.inner_text()) if label is not None else None


def label_for(node: DomNode, context: LabelContext) -> Optional[str]:
    if not node.id:
        return None
    label = node.root_node().query(lambda n: n.tag == "label" and n.get("for") == node.id)
    return clean_label(label.text_content()) if label is not None else None


def aria_labelledby(node: DomNode, context: LabelContext) -> Optional[str]:
    references = (node.get("aria-labelledby") or "").split()
    texts = []
    for reference in references:
        target = _by_id(node, reference)
        if target is not None:
            texts.append(target.text_content())
    return clean_label(" ".join(texts))


def aria_label(node: DomNode, context: LabelContext) -> Optional[str]:
    return clean_label(node.get("aria-label"))


def framework_label(node: DomNode, context: LabelContext) -> Optional[str]:
    entity = node.closest(lambda n: n.has_class("form_entity"))
    if entity is not None:
        label = entity.query(lambda n: n.has_class("form_label"))
        if label is not None and clean_label(label.text_content()):
            return clean_label(label.text_content())

    info_row = node.closest(lambda n: n.has_class("row") and n.get("data-role") == "add-property-info")
    if info_row is not None:
        label = info_row.query(lambda n: n.has_class("col-md-2"))
        if label is not None:
            return clean_label(label.text_content())
    return None


def grid_header(node: DomNode, context: LabelContext) -> Optional[str]:
    row = node.closest(lambda n: n.has_class("row"))
    if row is None:
        return None

    # Modal forms keep their column headers in the first row of the body.
    modal = row.closest(lambda n: n.has_class("modal-body"))
    if modal is not None:
        header = modal.query(
            lambda n: n.has_class("row") and n.parent is not None and n.parent.element_children[0] is n
        )
        current = node.closest(lambda n: n.has_class("col-md-3"))
        if header is not None and current is not None:
            current_cols = row.query_all(lambda n: n.has_class("col-md-3"))
            header_cols = header.query_all(lambda n: n.has_class("col-md-3"))
            index = next((i for i, col in enumerate(current_cols) if col is current), -1)
            if 0 <= index < len(header_cols):
                text = clean_label(header_cols[index].text_content())
                if text:
                    return text

    cols = [child for child in row.element_children if _col_md(child)]
    for i, col in enumerate(cols):
        if i > 0 and col.contains(node) and cols[i - 1].has_class("col-md-2", "col-md-3"):
            text = clean_label(cols[i - 1].text_content())
            if text:
                return text

    current_col = node.closest(_col_md)
    if current_col is not None:
        col_row = current_col.closest(lambda n: n.has_class("row"))
        previous = col_row.previous_element_sibling if col_row is not None else None
        if col_row is not None and previous is not None and previous.has_class("row"):
            row_cols = [child for child in col_row.element_children if _col_md(child)]
            header_cols = [child for child in previous.element_children if _col_md(child)]
            index = next((i for i, col in enumerate(row_cols) if col is current_col), -1)
            if 0 <= index < len(header_cols):
                return clean_label(header_cols[index].text_content())
    return None


def container_label(node: DomNode, context: LabelContext) -> Optional[str]:
    container = node.closest(lambda n: n.tag in CONTAINER_TAGS)
    if container is None:
        return None
    special = container.query(lambda n: n.has_class(*GENERIC_LABEL_CLASSES) or n.role == "heading")
    if special is not None and clean_label(special.text_content()):
        return clean_label(special.text_content())
    labels = container.query_all(_tag("label"))
    if labels:
        return clean_label(labels[-1].text_content())
    return None


def preceding_text(node: DomNode, context: LabelContext, max_levels: int = 3) -> Optional[str]:
    current: Optional[DomNode] = node
    for _ in range(max_levels):
        if current is None or not current.is_element:
            return None
        for sibling in current.previous_siblings():
            text = clean_label(sibling.text_content())
            if text:
                return text
        current = current.parent
    return None


def previous_cell(node: DomNode, context: LabelContext) -> Optional[str]:
    row = node.closest(_tag("tr"))
    cell = node.closest(_tag("td"))
    if row is None or cell is None:
        return None
    cells = row.query_all(_tag("td"))
    index = next((i for i, item in enumerate(cells) if item is cell), -1)
    if index > 0:
        return clean_label(cells[index - 1].text_content())
    return None


def own_attributes(node: DomNode, context: LabelContext) -> Optional[str]:
    if node.tag in FORM_CONTROL_TAGS:
        for candidate in (node.get("name"), node.get("data-role"), node.value):
            if candidate:
                return clean_label(candidate)
    if node.tag in ("button", "a"):
        return clean_label(node.inner_text())
    return None


DEFAULT_STRATEGIES: tuple[LabelStrategy, ...] = (
    form_question_heading,
    enclosing_label,
    label_for,
    aria_labelledby,
    aria_label,
    framework_label,
    grid_header,
    container_label,
    preceding_text,
    previous_cell,
    own_attributes,
)


class LabelResolver:
    """First non-empty answer from an ordered list of label strategies."""

    def __init__(self, strategies: Optional[tuple[LabelStrategy, ...]] = None) -> None:
        self.strategies = strategies or DEFAULT_STRATEGIES

    def resolve(self, node: DomNode, page_url: str = "") -> Optional[str]:
        """
        Find the best human-readable label for an element.

        Args:
            node: Interacted element
            page_url: URL of the page the element lives on

        Returns:
            Cleaned label text, or None when no strategy matched
        """
        target = original_select(node) or node
        context = LabelContext(page_url=page_url)
        for strategy in self.strategies:
            label = strategy(target, context)
            if label:
                logger.debug(f"[Labels] {strategy.__name__} -> {label!r}")
                return label
        return None
