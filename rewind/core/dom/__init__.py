"""DOM snapshot model, live capture and positional XPaths."""

from rewind.core.dom.nodes import (
    Document,
    DomNode,
    InterceptedShadowRootLookup,
    NullShadowRootLookup,
    ShadowRoot,
    ShadowRootLookup,
)
from rewind.core.dom.snapshot import SnapshotBounds, SnapshotCapturer, element_handle
from rewind.core.dom.xpath import evaluate_xpath, generate_xpath

__all__ = [
    "Document",
    "DomNode",
    "InterceptedShadowRootLookup",
    "NullShadowRootLookup",
    "ShadowRoot",
    "ShadowRootLookup",
    "SnapshotBounds",
    "SnapshotCapturer",
    "element_handle",
    "evaluate_xpath",
    "generate_xpath",
]
