"""
Live snapshot capture.

Walks every Playwright frame of a page with an in-page script and rebuilds the
result as a tree of DomNode / Document / ShadowRoot objects. Each element is
pushed into ``window.__rewindRegistry`` so that a node can be turned back into a
live ElementHandle with element_handle().
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from playwright.async_api import ElementHandle, Error as PlaywrightError, Frame, Page

from rewind.core.dom.nodes import Document, DomNode, ShadowRoot, TEXT_TAG, iter_composed
from rewind.core.models import Rect

logger = logging.getLogger("rewind.snapshot")


# Init script. Keeps closed shadow roots reachable for the snapshot walker and
# honours the legacy __realShadowRoot back-reference if a page already set one.
SHADOW_INTERCEPT_JS = """
(() => {
    if (window.__rewindGetRealShadowRoot) return;
    const roots = new WeakMap();
    const original = Element.prototype.attachShadow;
    Element.prototype.attachShadow = function (init) {
        const root = original.call(this, init);
        if (init && init.mode === 'closed') roots.set(this, root);
        return root;
    };
    Object.defineProperty(window, '__rewindGetRealShadowRoot', {
        value: (host) => roots.get(host) || host.__realShadowRoot || null,
        configurable: false,
    });
})();
"""

SNAPSHOT_JS = """
(opts) => {
    const registry = [];
    window.__rewindRegistry = registry;
    window.__rewindGeneration = opts.generation;
    const lookup = window.__rewindGetRealShadowRoot;
    const SKIP_CHILDREN = new Set(['script', 'style', 'noscript', 'template']);
    let count = 0;

    const isVisible = (el) => {
        const s = window.getComputedStyle(el);
        return s.display !== 'none' && s.visibility !== 'hidden' && s.opacity !== '0';
    };

    const walkChildren = (parent, out) => {
        for (const child of parent.childNodes) {
            const item = walk(child);
            if (item) out.push(item);
        }
    };

    const walk = (node) => {
        if (count >= opts.maxNodes) return null;
        if (node.nodeType === Node.TEXT_NODE) {
            const data = node.textContent || '';
            if (!data.trim()) return null;
            count++;
            return { t: '#text', x: data.slice(0, opts.maxText) };
        }
        if (node.nodeType !== Node.ELEMENT_NODE) return null;
        count++;

        const el = node;
        const tag = el.tagName.toLowerCase();
        const attrs = {};
        for (const a of el.attributes) attrs[a.name] = a.value;
        const r = el.getBoundingClientRect();
        const out = {
            t: tag,
            r: registry.push(el) - 1,
            a: attrs,
            b: [r.x, r.y, r.width, r.height],
            v: isVisible(el),
            d: !!el.disabled,
            c: [],
        };
        if (tag === 'input' || tag === 'textarea' || tag === 'select' || tag === 'option') {
            out.val = String(el.value ?? '');
        }
        if (tag === 'input' && (el.type === 'checkbox' || el.type === 'radio')) out.chk = !!el.checked;
        if (tag === 'option') out.sel = !!el.selected;
        if (SKIP_CHILDREN.has(tag)) return out;

        let root = el.shadowRoot;
        if (!root && typeof lookup === 'function') {
            try { root = lookup(el); } catch (e) { root = null; }
        }
        if (root) {
            out.s = { m: root.mode || 'closed', c: [] };
            walkChildren(root, out.s.c);
        }
        walkChildren(el, out.c);
        return out;
    };

    const docEl = document.documentElement;
    return {
        url: location.href,
        root: docEl ? walk(docEl) : null,
        truncated: count >= opts.maxNodes,
    };
}
"""

REGISTRY_LOOKUP_JS = """
({ ref, generation }) => {
    if (window.__rewindGeneration !== generation) return null;
    return (window.__rewindRegistry || [])[ref] || null;
}
"""

REGISTRY_INDEX_JS = """
(el) => (window.__rewindRegistry || []).indexOf(el)
"""


@dataclass(frozen=True)
class SnapshotBounds:
    """Limits applied while walking a live document."""
    max_nodes: int = 20000
    max_text: int = 500


class SnapshotCapturer:
    """
    Builds a DOM snapshot of a page and all its frames.

    The registry generation is bumped on every capture; handles can only be
    re-acquired for nodes of the latest snapshot.
    """

    _generations = itertools.count(1)

    def __init__(self, bounds: Optional[SnapshotBounds] = None) -> None:
        self.bounds = bounds or SnapshotBounds()

    async def capture(self, page: Page) -> Document:
        """
        Capture the page's main frame and every reachable child frame.

        Args:
            page: Playwright page

        Returns:
            Top-level Document with frame documents linked to their iframes
        """
        generation = next(self._generations)
        document = await self.capture_frame(page.main_frame, generation)
        await self._link_child_frames(page.main_frame, document, generation)
        return document

    async def capture_frame(self, frame: Frame, generation: int) -> Document:
        payload = await frame.evaluate(
            SNAPSHOT_JS,
            {
                "generation": generation,
                "maxNodes": self.bounds.max_nodes,
                "maxText": self.bounds.max_text,
            },
        )
        document = build_document(payload, frame=frame, generation=generation)
        if payload.get("truncated"):
            logger.warning(f"[Snapshot] Truncated at {self.bounds.max_nodes} nodes: {document.url}")
        return document

    async def _link_child_frames(self, frame: Frame, document: Document, generation: int) -> None:
        for child in frame.child_frames:
            if child.is_detached():
                continue
            try:
                owner = await child.frame_element()
                ref = await owner.evaluate(REGISTRY_INDEX_JS)
                iframe_node = document.by_ref.get(ref) if ref is not None and ref >= 0 else None
                if iframe_node is None:
                    logger.debug(f"[Snapshot] No iframe node for frame {child.url}")
                    continue
                child_document = await self.capture_frame(child, generation)
            except PlaywrightError as e:
                # Cross-process or navigating frames are reported as unreachable later.
                logger.warning(f"[Snapshot] Frame unreachable ({child.url}): {e}")
                continue
            iframe_node.attach_document(child_document)
            await self._link_child_frames(child, child_document, generation)


def build_document(payload: dict[str, Any], frame: Any = None, generation: int = 0) -> Document:
    """Rebuild a Document from the SNAPSHOT_JS payload."""
    document = Document(url=payload.get("url") or "", frame=frame, generation=generation)
    root = payload.get("root")
    if root:
        document.append(_build_node(root))
    document.index_refs()
    return document


def _build_node(item: dict[str, Any]) -> DomNode:
    if item.get("t") == TEXT_TAG:
        return DomNode(tag=TEXT_TAG, text=item.get("x") or "")

    box = item.get("b") or [0, 0, 0, 0]
    node = DomNode(
        tag=item["t"],
        attributes=dict(item.get("a") or {}),
        value=item.get("val"),
        rect=Rect(x=float(box[0]), y=float(box[1]), width=float(box[2]), height=float(box[3])),
        visible=bool(item.get("v", True)),
        disabled=bool(item.get("d", False)),
        checked=item.get("chk"),
        selected=bool(item.get("sel", False)),
        ref=item.get("r"),
    )
    shadow = item.get("s")
    if shadow is not None:
        root: ShadowRoot = node.attach_shadow(shadow.get("m") or "open")
        for child in shadow.get("c") or ():
            root.append(_build_node(child))
    for child in item.get("c") or ():
        node.append(_build_node(child))
    return node


def iter_documents(document: Document) -> Iterator[Document]:
    """Yield a document and every linked frame document below it."""
    yield document
    for node in iter_composed(document):
        if node.content_document is not None:
            yield from iter_documents(node.content_document)


def document_for_frame(document: Document, frame: Any) -> Optional[Document]:
    for candidate in iter_documents(document):
        if candidate.frame is frame:
            return candidate
    return None


async def node_for_handle(document: Document, handle: ElementHandle) -> Optional[DomNode]:
    """Map a live element of one of the snapshot's frames back to its node."""
    frame = await handle.owner_frame()
    frame_document = document_for_frame(document, frame) if frame is not None else None
    if frame_document is None:
        return None
    ref = await handle.evaluate(REGISTRY_INDEX_JS)
    if ref is None or ref < 0:
        return None
    return frame_document.by_ref.get(ref)


async def element_handle(node: DomNode) -> Optional[ElementHandle]:
    """
    Re-acquire the live element behind a snapshot node.

    Returns None when the node has no registry entry, its document has no frame,
    or a newer snapshot has replaced the registry.
    """
    document = node.owner_document()
    if node.ref is None or document is None or document.frame is None:
        return None
    try:
        handle = await document.frame.evaluate_handle(
            REGISTRY_LOOKUP_JS, {"ref": node.ref, "generation": document.generation}
        )
    except PlaywrightError as e:
        logger.warning(f"[Snapshot] Could not re-acquire {node.to_debug_string()}: {e}")
        return None
    element = handle.as_element()
    if element is None:
        await handle.dispose()
    return element
