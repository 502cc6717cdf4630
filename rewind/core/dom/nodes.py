"""
In-memory DOM snapshot model.

A snapshot mirrors the parts of a live document the engine reasons about:
elements and text nodes, attributes, form values, bounding rects, visibility,
open and closed shadow roots, and the documents of nested frames. Every element
captured from a live page keeps its registry index (``ref``) so the live element
can be re-acquired right before an action is dispatched.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, Optional, Protocol

from rewind.core.models import Rect

TEXT_TAG = "#text"
DOCUMENT_TAG = "#document"
SHADOW_ROOT_TAG = "#shadow-root"

_WHITESPACE = re.compile(r"\s+")

NodePredicate = Callable[["DomNode"], bool]


@dataclass(eq=False)
class DomNode:
    """One element or text node of a snapshot."""
    tag: str
    attributes: dict[str, str] = field(default_factory=dict)
    text: str = ""
    value: Optional[str] = None
    rect: Optional[Rect] = None
    visible: bool = True
    disabled: bool = False
    checked: Optional[bool] = None
    selected: bool = False
    ref: Optional[int] = None
    parent: Optional["DomNode"] = field(default=None, repr=False)
    children: list["DomNode"] = field(default_factory=list, repr=False)
    shadow_root: Optional["ShadowRoot"] = field(default=None, repr=False)
    content_document: Optional["Document"] = field(default=None, repr=False)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    def append(self, child: "DomNode") -> "DomNode":
        child.parent = self
        self.children.append(child)
        return child

    def extend(self, children: list["DomNode"]) -> "DomNode":
        for child in children:
            self.append(child)
        return self

    def attach_shadow(self, mode: str = "open") -> "ShadowRoot":
        root = ShadowRoot(host=self, mode=mode)
        self.shadow_root = root
        return root

    def attach_document(self, document: "Document") -> "Document":
        document.frame_element = self
        self.content_document = document
        return document

    # ------------------------------------------------------------------
    # Kind and attributes
    # ------------------------------------------------------------------

    @property
    def is_element(self) -> bool:
        return not self.tag.startswith("#")

    @property
    def is_text(self) -> bool:
        return self.tag == TEXT_TAG

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.attributes.get(name, default)

    @property
    def id(self) -> Optional[str]:
        return self.attributes.get("id") or None

    @property
    def classes(self) -> tuple[str, ...]:
        return tuple(self.attributes.get("class", "").split())

    def has_class(self, *names: str) -> bool:
        classes = self.classes
        return any(name in classes for name in names)

    def class_contains(self, fragment: str) -> bool:
        return fragment in self.attributes.get("class", "")

    @property
    def role(self) -> Optional[str]:
        return self.attributes.get("role") or None

    @property
    def input_type(self) -> str:
        return (self.attributes.get("type") or "text").lower()

    @property
    def is_content_editable(self) -> bool:
        node: Optional[DomNode] = self
        while node is not None and node.is_element:
            flag = node.attributes.get("contenteditable")
            if flag is not None:
                return flag.lower() in ("", "true", "plaintext-only")
            node = node.parent
        return False

    @property
    def open_shadow_root(self) -> Optional["ShadowRoot"]:
        if self.shadow_root is not None and self.shadow_root.mode == "open":
            return self.shadow_root
        return None

    # ------------------------------------------------------------------
    # Tree navigation
    # ------------------------------------------------------------------

    @property
    def element_children(self) -> list["DomNode"]:
        return [child for child in self.children if child.is_element]

    def previous_siblings(self) -> Iterator["DomNode"]:
        """Yield preceding siblings, nearest first (text nodes included)."""
        if self.parent is None:
            return
        siblings = self.parent.children
        index = next(i for i, node in enumerate(siblings) if node is self)
        for sibling in reversed(siblings[:index]):
            yield sibling

    @property
    def previous_element_sibling(self) -> Optional["DomNode"]:
        for sibling in self.previous_siblings():
            if sibling.is_element:
                return sibling
        return None

    def ancestors(self) -> Iterator["DomNode"]:
        node = self.parent
        while node is not None and node.is_element:
            yield node
            node = node.parent

    def closest(self, predicate: NodePredicate) -> Optional["DomNode"]:
        """Element.closest(): self or nearest ancestor inside the same root."""
        if self.is_element and predicate(self):
            return self
        for ancestor in self.ancestors():
            if predicate(ancestor):
                return ancestor
        return None

    def root_node(self) -> "DomNode":
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    def owner_document(self) -> Optional["Document"]:
        root = self.root_node()
        if isinstance(root, Document):
            return root
        if isinstance(root, ShadowRoot):
            return root.host.owner_document()
        return None

    def contains(self, other: "DomNode") -> bool:
        node: Optional[DomNode] = other
        while node is not None:
            if node is self:
                return True
            node = node.parent
        return False

    def iter_descendants(self) -> Iterator["DomNode"]:
        """Document-order walk; does not enter shadow roots or frames."""
        stack = list(reversed(self.children))
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def query_all(self, predicate: NodePredicate) -> list["DomNode"]:
        return [node for node in self.iter_descendants() if node.is_element and predicate(node)]

    def query(self, predicate: NodePredicate) -> Optional["DomNode"]:
        for node in self.iter_descendants():
            if node.is_element and predicate(node):
                return node
        return None

    # ------------------------------------------------------------------
    # Text
    # ------------------------------------------------------------------

    def text_content(self) -> str:
        if self.is_text:
            return self.text
        return "".join(node.text for node in self.iter_descendants() if node.is_text)

    def inner_text(self) -> str:
        """Rendered text approximation: visible text only, whitespace collapsed."""
        if self.is_text:
            return _WHITESPACE.sub(" ", self.text).strip()
        if not self.visible:
            return ""
        parts = []
        for child in self.children:
            if child.is_text:
                parts.append(child.text)
            elif child.visible and child.tag not in ("script", "style", "noscript"):
                parts.append(" " + child.inner_text() + " ")
        return _WHITESPACE.sub(" ", "".join(parts)).strip()

    def to_debug_string(self) -> str:
        if self.is_text:
            return f"#text({self.text[:20]!r})"
        parts = [self.tag]
        if self.id:
            parts.append(f"#{self.id}")
        if self.classes:
            parts.append("." + ".".join(self.classes[:3]))
        return "".join(parts)


@dataclass(eq=False)
class ShadowRoot(DomNode):
    tag: str = SHADOW_ROOT_TAG
    host: Optional[DomNode] = field(default=None, repr=False)
    mode: str = "open"

    @property
    def is_element(self) -> bool:
        return False


@dataclass(eq=False)
class Document(DomNode):
    tag: str = DOCUMENT_TAG
    url: str = ""
    frame: Any = field(default=None, repr=False)
    frame_element: Optional[DomNode] = field(default=None, repr=False)
    generation: int = 0
    by_ref: dict[int, DomNode] = field(default_factory=dict, repr=False)

    @property
    def is_element(self) -> bool:
        return False

    @property
    def is_top_level(self) -> bool:
        return self.frame_element is None

    @property
    def document_element(self) -> Optional[DomNode]:
        for child in self.children:
            if child.is_element:
                return child
        return None

    def get_element_by_id(self, element_id: str) -> Optional[DomNode]:
        return self.query(lambda node: node.id == element_id)

    def index_refs(self) -> None:
        """Rebuild the ref -> node table, including open and closed shadow trees."""
        self.by_ref.clear()
        for node in iter_composed(self):
            if node.ref is not None:
                self.by_ref[node.ref] = node


class ShadowRootLookup(Protocol):
    """Narrow lookup interface onto the page-level shadow-root interception layer."""

    def get_real_shadow_root(self, host: DomNode) -> Optional[ShadowRoot]:
        ...


class NullShadowRootLookup:
    """Used when no interception layer is installed: closed roots stay closed."""

    def get_real_shadow_root(self, host: DomNode) -> Optional[ShadowRoot]:
        return None


class InterceptedShadowRootLookup:
    """Closed roots that the interception init script exposed during snapshotting."""

    def get_real_shadow_root(self, host: DomNode) -> Optional[ShadowRoot]:
        return host.shadow_root


def iter_composed(root: DomNode) -> Iterator[DomNode]:
    """Walk a tree including every attached shadow tree (not frames)."""
    stack = [root]
    while stack:
        node = stack.pop()
        if node is not root:
            yield node
        if node.shadow_root is not None:
            yield node.shadow_root
            stack.extend(reversed(node.shadow_root.children))
        stack.extend(reversed(node.children))


def element(
    tag: str,
    attributes: Optional[dict[str, str]] = None,
    children: Optional[list[DomNode]] = None,
    **props: Any,
) -> DomNode:
    """Build an element node with children attached."""
    node = DomNode(tag=tag.lower(), attributes=dict(attributes or {}), **props)
    for child in children or ():
        node.append(child)
    return node


def text(data: str) -> DomNode:
    return DomNode(tag=TEXT_TAG, text=data)


def normalize_space(value: str) -> str:
    return _WHITESPACE.sub(" ", value or "").strip()
