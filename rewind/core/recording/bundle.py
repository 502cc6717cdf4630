"""Bundle construction for interacted elements."""

from __future__ import annotations

import logging
from typing import Optional

from rewind.core.dom.nodes import Document, DomNode, normalize_space
from rewind.core.dom.xpath import generate_xpath
from rewind.core.models import Bundle
from rewind.core.recording.boundary import trace_boundaries
from rewind.core.recording.labels import original_select
from rewind.core.replay.editors import context_hints

logger = logging.getLogger("rewind.bundle")

VALUE_TAGS = frozenset({"input", "textarea", "select"})


def retarget(node: DomNode) -> DomNode:
    """
    Move a raw event target to the element a replay should act on.

    Select2 renderings map to their original <select>; anything inside an ARIA
    radio or checkbox maps to the role element.
    """
    target = node
    select = original_select(node)
    if select is not None:
        target = select
    role_target = target.closest(lambda n: n.role in ("radio", "checkbox"))
    return role_target if role_target is not None else target


def click_value(node: DomNode) -> Optional[str]:
    """
    Value a click on ``node`` should replay with.

    ARIA radios and checkboxes store their option text; selects (and Select2
    renderings) store the text of the selected option. Other clicks have none.
    """
    role_target = node.closest(lambda n: n.role in ("radio", "checkbox"))
    if role_target is not None:
        # Google Forms keeps the option text in .aDTYNe.
        label = role_target.query(lambda n: n.has_class("aDTYNe"))
        return (
            normalize_space(role_target.get("aria-label") or "")
            or (normalize_space(label.text_content()) if label is not None else "")
            or normalize_space(role_target.text_content())
            or None
        )

    select = original_select(node)
    if select is None or select.tag != "select":
        return None
    options = select.query_all(lambda n: n.tag == "option")
    chosen = next((o for o in options if o.selected), None)
    if chosen is None and select.value:
        chosen = next((o for o in options if (o.get("value") or o.text_content().strip()) == select.value), None)
    if chosen is not None:
        return normalize_space(chosen.text_content()) or None
    return select.get("placeholder") or (normalize_space(options[0].text_content()) if options else None) or None


def top_document(node: DomNode) -> Optional[Document]:
    document = node.owner_document()
    while document is not None and document.frame_element is not None:
        document = document.frame_element.owner_document()
    return document


def visible_text(node: DomNode) -> Optional[str]:
    if node.tag in VALUE_TAGS:
        return node.value
    return node.inner_text() or None


def capture_interaction(target: DomNode, page_url: Optional[str] = None, recorded_via: str = "dom") -> Bundle:
    """
    Fingerprint an interacted element.

    Args:
        target: Raw event target from a snapshot
        page_url: URL to store; defaults to the top-level document URL
        recorded_via: How the interaction was observed (dom or keyboard)

    Returns:
        Immutable Bundle
    """
    element = retarget(target)
    chain = trace_boundaries(element)
    if page_url is None:
        top = top_document(element)
        page_url = top.url if top is not None else None

    data_attrs = {name: value for name, value in element.attributes.items() if name.startswith("data-")}
    rect = element.rect
    bundle = Bundle(
        tag=element.tag,
        xpath=generate_xpath(element),
        id=element.id,
        name=element.get("name") or None,
        class_name=element.get("class") or None,
        data_attrs=data_attrs,
        aria=element.get("aria-labelledby") or element.get("aria-label") or None,
        placeholder=element.get("placeholder") or None,
        role=element.role,
        bounding_rect=rect,
        iframe_chain=chain.iframe_chain,
        shadow_hosts=chain.shadow_hosts,
        is_closed_shadow=chain.is_closed_shadow,
        visible_text=visible_text(element),
        coordinates=rect.center() if rect is not None else None,
        page_url=page_url or None,
        context_hints=context_hints(element),
        recorded_via=recorded_via,
    )
    logger.debug(f"[Bundle] Captured {element.to_debug_string()} at {bundle.xpath}")
    return bundle
