"""
Frame and shadow-root boundary chains.

At recording time trace_boundaries() describes how to get from the top-level
document down to an element: the iframes to enter (outermost first) and the
shadow hosts to pierce inside the element's own document. At replay time
descend() walks the same chain on a fresh snapshot.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from rewind.core.dom.nodes import Document, DomNode, ShadowRoot, ShadowRootLookup, iter_composed
from rewind.core.dom.xpath import evaluate_xpath, generate_xpath
from rewind.core.models import FrameDescriptor

logger = logging.getLogger("rewind.boundary")

BOUNDARY_UNREACHABLE = "BoundaryUnreachable"


@dataclass(frozen=True)
class BoundaryChain:
    iframe_chain: tuple[FrameDescriptor, ...] = ()
    shadow_hosts: tuple[str, ...] = ()
    is_closed_shadow: bool = False


@dataclass
class BoundaryContext:
    """Where a replay-time descent ended up."""
    root: DomNode
    document: Document
    warnings: list[str] = field(default_factory=list)
    blocked_host: Optional[DomNode] = None
    frames_reached: bool = True
    hosts_reached: bool = True

    @property
    def complete(self) -> bool:
        return self.frames_reached and self.hosts_reached


def iframes_of(document: DomNode) -> list[DomNode]:
    """All iframe elements of a document, shadow trees included, in document order."""
    return [node for node in iter_composed(document) if node.is_element and node.tag == "iframe"]


def frame_chain(node: DomNode) -> tuple[FrameDescriptor, ...]:
    chain: list[FrameDescriptor] = []
    document = node.owner_document()
    while document is not None and document.frame_element is not None:
        iframe = document.frame_element
        outer = iframe.owner_document()
        index = None
        if outer is not None:
            index = next((i for i, item in enumerate(iframes_of(outer)) if item is iframe), None)
        chain.append(FrameDescriptor(id=iframe.id, name=iframe.get("name") or None, index=index))
        document = outer
    chain.reverse()
    return tuple(chain)


def shadow_chain(node: DomNode) -> tuple[tuple[str, ...], bool]:
    hosts: list[str] = []
    closed = False
    root = node.root_node()
    while isinstance(root, ShadowRoot) and root.host is not None:
        hosts.append(generate_xpath(root.host))
        closed = closed or root.mode == "closed"
        root = root.host.root_node()
    hosts.reverse()
    return tuple(hosts), closed


def trace_boundaries(node: DomNode) -> BoundaryChain:
    """
    Describe the frame and shadow boundaries between the top document and node.

    Args:
        node: Element captured at recording time

    Returns:
        BoundaryChain with both chains ordered outermost first
    """
    hosts, closed = shadow_chain(node)
    return BoundaryChain(iframe_chain=frame_chain(node), shadow_hosts=hosts, is_closed_shadow=closed)


def _find_iframe(document: Document, descriptor: FrameDescriptor) -> Optional[DomNode]:
    iframes = iframes_of(document)
    if descriptor.id:
        for iframe in iframes:
            if iframe.id == descriptor.id:
                return iframe
    if descriptor.name:
        for iframe in iframes:
            if iframe.get("name") == descriptor.name:
                return iframe
    if descriptor.index is not None and 0 <= descriptor.index < len(iframes):
        return iframes[descriptor.index]
    return None


def descend(
    document: Document,
    iframe_chain: tuple[FrameDescriptor, ...],
    shadow_hosts: tuple[str, ...],
    lookup: ShadowRootLookup,
) -> BoundaryContext:
    """
    Walk a recorded boundary chain on a snapshot.

    Frames are matched by id, then name, then index. Closed shadow roots are
    only entered through ``lookup``. When a boundary cannot be crossed the
    context stays at the last reached root and a warning is recorded.
    """
    context = BoundaryContext(root=document, document=document)

    for descriptor in iframe_chain:
        iframe = _find_iframe(context.document, descriptor)
        if iframe is None or iframe.content_document is None:
            message = f"{BOUNDARY_UNREACHABLE}: frame {descriptor.to_dict()}"
            logger.warning(f"[Boundary] {message}")
            context.warnings.append(message)
            context.frames_reached = False
            return context
        context.document = iframe.content_document
        context.root = iframe.content_document

    for host_path in shadow_hosts:
        host = evaluate_xpath(context.root, host_path)
        if host is None:
            message = f"{BOUNDARY_UNREACHABLE}: shadow host {host_path}"
            logger.warning(f"[Boundary] {message}")
            context.warnings.append(message)
            context.hosts_reached = False
            return context
        shadow = host.open_shadow_root or lookup.get_real_shadow_root(host)
        if shadow is None:
            message = f"{BOUNDARY_UNREACHABLE}: closed shadow root on {host_path}"
            logger.info(f"[Boundary] {message}")
            context.warnings.append(message)
            context.blocked_host = host
            context.hosts_reached = False
            return context
        context.root = shadow

    return context
