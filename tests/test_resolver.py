"""
Tests for the ElementResolver cascade.
"""

import pytest
from unittest.mock import AsyncMock

from playwright.async_api import Error as PlaywrightError

from rewind.core.dom.nodes import Document, DomNode, InterceptedShadowRootLookup, element, text
from rewind.core.models import Bundle, ContextHints, FrameDescriptor, Rect
from rewind.core.recording.bundle import capture_interaction
from rewind.core.replay.resolver import ElementResolver, ResolverConfig


def page(*children: DomNode) -> Document:
    document = Document(url="https://example.com/")
    document.append(element("html", {}, [element("head"), element("body", {}, list(children))]))
    return document


class TestResolve:
    """Tests for single-snapshot resolution."""

    def setup_method(self):
        self.resolver = ElementResolver()

    def test_resolution_is_idempotent(self):
        target = element("input", {"id": "q", "name": "query"})
        document = page(element("input", {"name": "other"}), target)
        bundle = capture_interaction(target)

        first = self.resolver.resolve(bundle, document)
        second = self.resolver.resolve(bundle, document)

        assert first.node is second.node is target
        assert first.strategy == second.strategy == "xpath"

    def test_xpath_used_when_id_removed(self):
        first = element("input")
        second = element("input")
        document = page(element("form", {}, [first, second]))
        bundle = Bundle(tag="input", xpath="/html/body/form/input[2]", id="email")

        resolution = self.resolver.resolve(bundle, document)

        assert resolution.node is second
        assert resolution.strategy == "xpath"

    def test_hidden_xpath_match_is_skipped(self):
        hidden = element("button", {"id": "go", "class": "btn primary", "name": "go"}, visible=False)
        moved = element("button", {"id": "go", "class": "btn primary", "name": "go"})
        document = page(hidden, element("div", {}, [moved]))
        bundle = Bundle(tag="button", xpath="/html/body/button", id="go", name="go", class_name="btn primary")

        resolution = self.resolver.resolve(bundle, document)

        assert resolution.node is moved
        assert resolution.strategy == "id"
        assert resolution.score == 2.0

    def test_id_beats_fuzzy_text(self):
        by_id = element("button", {"id": "submit", "name": "send", "class": "btn"}, [text("Go")])
        by_text = element("button", {}, [text("Send message now")])
        document = page(by_text, by_id)
        bundle = Bundle(
            tag="button",
            id="submit",
            name="send",
            class_name="btn",
            visible_text="Send message now",
        )

        resolution = self.resolver.resolve(bundle, document)

        assert resolution.node is by_id
        assert resolution.strategy == "id"

    def test_low_score_id_is_a_fallback(self):
        renamed = element("input", {"id": "amount", "name": "total"})
        document = page(renamed)
        bundle = Bundle(tag="input", id="amount", name="amount", class_name="money")

        resolution = self.resolver.resolve(bundle, document)

        assert resolution.node is renamed
        assert resolution.strategy == "id"
        assert resolution.low_confidence is True

    def test_attribute_ambiguity_is_reported(self):
        first = element("input", {"name": "q"})
        second = element("input", {"name": "q"})
        document = page(element("div", {}, [first]), element("form", {}, [second]))
        bundle = Bundle(tag="input", xpath="/html/body/form/input[3]", name="q")

        resolution = self.resolver.resolve(bundle, document)

        assert resolution.strategy == "name"
        assert resolution.node is second
        assert resolution.low_confidence is True
        assert resolution.warnings[0].startswith("AmbiguousMatch")

    def test_placeholder(self):
        field = element("input", {"placeholder": "Your email"})
        document = page(field)

        resolution = self.resolver.resolve(Bundle(tag="input", placeholder="Your email"), document)

        assert resolution.node is field
        assert resolution.strategy == "placeholder"

    def test_fuzzy_text(self):
        button = element("button", {}, [text("Save changes")])
        document = page(element("button", {}, [text("Cancel")]), button)

        resolution = self.resolver.resolve(Bundle(tag="button", visible_text="Save changes now"), document)

        assert resolution.node is button
        assert resolution.strategy == "fuzzy"

    def test_fuzzy_below_threshold_falls_through(self):
        document = page(element("button", {}, [text("Save")]))

        assert self.resolver.resolve(Bundle(tag="button", visible_text="Save all open documents"), document) is None

    def test_bounding_rect_prefers_same_tag(self):
        near_span = element("span", rect=Rect(101, 100, 10, 10))
        card = element("div", rect=Rect(150, 100, 50, 50))
        document = page(near_span, card)

        resolution = self.resolver.resolve(Bundle(tag="div", bounding_rect=Rect(100, 100, 50, 50)), document)

        assert resolution.node is card
        assert resolution.strategy == "bounding_rect"

    def test_bounding_rect_too_far(self):
        document = page(element("div", rect=Rect(900, 900, 10, 10)))

        assert self.resolver.resolve(Bundle(tag="div", bounding_rect=Rect(0, 0, 10, 10)), document) is None

    def test_terminal_helper(self):
        helper = element("textarea", {"class": "xterm-helper-textarea"}, visible=False)
        document = page(element("div", {"class": "xterm"}, [helper]))
        bundle = Bundle(tag="textarea", xpath="/html/body/div[4]/textarea", context_hints=ContextHints(is_terminal=True))

        resolution = self.resolver.resolve(bundle, document)

        assert resolution.node is helper
        assert resolution.strategy == "terminal"

    def test_code_editor_input(self):
        area = element("textarea", {"class": "inputarea"})
        document = page(element("div", {"class": "monaco-editor"}, [area]))
        bundle = Bundle(tag="div", context_hints=ContextHints(is_code_editor=True))

        resolution = self.resolver.resolve(bundle, document)

        assert resolution.node is area
        assert resolution.strategy == "code_editor"

    def test_coordinates_pick_deepest_hit(self):
        button = element("button", rect=Rect(40, 40, 20, 20))
        panel = element("div", {}, [button], rect=Rect(0, 0, 500, 500))
        document = page(panel)

        resolution = self.resolver.resolve(Bundle(tag="a", coordinates=(50.0, 50.0)), document)

        assert resolution.node is button
        assert resolution.strategy == "coordinates"
        assert resolution.low_confidence is True

    def test_coordinates_ignored_inside_frames(self):
        frame_doc = Document()
        frame_doc.append(element("html", {}, [element("body", {}, [element("button", rect=Rect(0, 0, 100, 100))])]))
        iframe = element("iframe", {"id": "f"})
        document = page(iframe)
        iframe.attach_document(frame_doc)
        bundle = Bundle(tag="a", coordinates=(50.0, 50.0), iframe_chain=(FrameDescriptor(id="f", index=0),))

        assert self.resolver.resolve(bundle, document) is None

    def test_data_attributes(self):
        tile = element("section", {"data-testid": "tile-3"})
        document = page(tile)

        resolution = self.resolver.resolve(Bundle(tag="article", data_attrs={"data-testid": "tile-3"}), document)

        assert resolution.node is tile
        assert resolution.strategy == "data_attributes"

    def test_nothing_matches(self):
        assert self.resolver.resolve(Bundle(tag="input", id="missing"), page(element("div"))) is None


class TestClosedShadowRoots:
    """Tests for elements recorded inside closed shadow roots."""

    def make_document(self) -> tuple[Document, DomNode, DomNode]:
        host = element("secure-input")
        inner = host.attach_shadow("closed").append(element("input", {"name": "card"}))
        return page(host), host, inner

    def test_host_returned_without_interception(self):
        document, host, inner = self.make_document()
        bundle = capture_interaction(inner)

        resolution = ElementResolver().resolve(bundle, document)

        assert resolution.node is host
        assert resolution.strategy == "closed_shadow_host"
        assert resolution.low_confidence is True
        assert any(w.startswith("BoundaryUnreachable") for w in resolution.warnings)

    def test_inner_element_with_interception(self):
        document, _, inner = self.make_document()
        bundle = capture_interaction(inner)

        resolution = ElementResolver(lookup=InterceptedShadowRootLookup()).resolve(bundle, document)

        assert resolution.node is inner
        assert resolution.strategy == "xpath"


class TestFindElement:
    """Tests for the retrying resolver."""

    @pytest.mark.asyncio
    async def test_retries_until_element_appears(self, fake_time):
        late = element("button", {"id": "late", "name": "late"})
        source = AsyncMock(side_effect=[page(element("div")), page(late)])
        resolver = ElementResolver(clock=fake_time.clock, sleep=fake_time.sleep)

        resolution = await resolver.find_element(Bundle(tag="button", id="late", name="late"), source)

        assert resolution.node is late
        assert source.await_count == 2
        assert fake_time.sleeps == [0.15]

    @pytest.mark.asyncio
    async def test_gives_up_after_budget(self, fake_time):
        source = AsyncMock(side_effect=lambda: page(element("div")))
        resolver = ElementResolver(
            config=ResolverConfig(timeout_ms=500, retry_interval_ms=200),
            clock=fake_time.clock,
            sleep=fake_time.sleep,
        )

        resolution = await resolver.find_element(Bundle(tag="input", id="never"), source)

        assert resolution is None
        assert source.await_count == 4
        assert fake_time.now >= 0.5

    @pytest.mark.asyncio
    async def test_snapshot_errors_are_retried(self, fake_time):
        button = element("button", {"id": "next"})
        source = AsyncMock(side_effect=[PlaywrightError("Execution context was destroyed"), page(button)])
        resolver = ElementResolver(clock=fake_time.clock, sleep=fake_time.sleep)

        resolution = await resolver.find_element(Bundle(tag="button", id="next"), source)

        assert resolution.node is button
        assert source.await_count == 2

    @pytest.mark.asyncio
    async def test_snapshot_errors_until_budget_end_in_not_found(self, fake_time):
        source = AsyncMock(side_effect=PlaywrightError("Target page, context or browser has been closed"))
        resolver = ElementResolver(
            config=ResolverConfig(timeout_ms=300, retry_interval_ms=100),
            clock=fake_time.clock,
            sleep=fake_time.sleep,
        )

        assert await resolver.find_element(Bundle(tag="button", id="next"), source) is None
        assert source.await_count == 4


def framed_shadow_page() -> tuple[Document, DomNode]:
    """Top page > iframe#checkout > pay-form (open) > card-field (open) > input#card."""
    card = element("input", {"id": "card", "name": "card"})
    field_host = element("card-field")
    field_host.attach_shadow("open").append(element("label", {}, [text("Card"), card]))
    form_host = element("pay-form")
    form_host.attach_shadow("open").append(element("div", {"class": "row"}, [field_host]))

    inner = Document(url="https://pay.example.com/frame")
    inner.append(element("html", {}, [element("body", {}, [form_host])]))
    iframe = element("iframe", {"id": "checkout"})
    top = page(element("iframe", {"name": "ads"}), iframe)
    iframe.attach_document(inner)
    return top, card


class TestBoundaryRoundTrip:
    """Tests for resolving bundles recorded behind frames and shadow roots."""

    def test_unchanged_page_resolves_to_same_element(self):
        recorded_page, recorded = framed_shadow_page()
        bundle = capture_interaction(recorded)
        replay_page, expected = framed_shadow_page()

        resolution = ElementResolver().resolve(bundle, replay_page)

        assert len(bundle.iframe_chain) == 1
        assert len(bundle.shadow_hosts) == 2
        assert resolution.node is expected
        assert resolution.node is not recorded
        assert resolution.strategy == "xpath"
        assert resolution.warnings == []
        assert resolution.low_confidence is False
