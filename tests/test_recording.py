"""
Tests for labels, boundary chains, bundles and recording sessions.
"""

import pytest

from rewind.core.dom.nodes import Document, DomNode, element, text
from rewind.core.models import ConditionalConfig, FrameDescriptor, Rect, StepEvent
from rewind.core.recording.boundary import descend, iframes_of, trace_boundaries
from rewind.core.recording.bundle import capture_interaction, retarget
from rewind.core.recording.labels import LabelCounter, LabelResolver, clean_label, normalize_label
from rewind.core.recording.session import RecordingSession
from rewind.core.dom.nodes import InterceptedShadowRootLookup, NullShadowRootLookup
from rewind.core.dom.xpath import evaluate_xpath


def page(*children: DomNode, url: str = "https://example.com/form") -> Document:
    document = Document(url=url)
    document.append(element("html", {}, [element("head"), element("body", {}, list(children))]))
    return document


class TestLabelCounter:
    """Tests for per-session unique labels."""

    def test_repeated_labels_get_suffixes(self):
        counter = LabelCounter()

        assert [counter.next("Search") for _ in range(3)] == ["search", "search_1", "search_2"]

    def test_missing_label_falls_back_to_field(self):
        counter = LabelCounter()

        assert counter.next(None) == "field"
        assert counter.next("") == "field_1"
        assert counter.next("  ") == "field_2"

    def test_reset(self):
        counter = LabelCounter()
        counter.next("Email")
        counter.reset()

        assert counter.next("Email") == "email"

    def test_normalize_label(self):
        assert normalize_label("First Name:") == "first_name"
        assert normalize_label("***") == "field"

    def test_clean_label_strips_asterisks(self):
        assert clean_label(" Email * ") == "Email"
        assert clean_label("*") is None


class TestLabelResolver:
    """Tests for the label strategy order."""

    def setup_method(self):
        self.resolver = LabelResolver()

    def test_enclosing_label(self):
        field = element("input")
        page(element("label", {}, [text("Email *"), field]))

        assert self.resolver.resolve(field) == "Email"

    def test_label_for(self):
        field = element("input", {"id": "email"})
        page(element("label", {"for": "email"}, [text("E-mail address")]), field)

        assert self.resolver.resolve(field) == "E-mail address"

    def test_aria_labelledby(self):
        field = element("input", {"aria-labelledby": "phone-label"})
        page(element("span", {"id": "phone-label"}, [text("Phone")]), field)

        assert self.resolver.resolve(field) == "Phone"

    def test_aria_label(self):
        field = element("input", {"aria-label": "Search"})
        page(field)

        assert self.resolver.resolve(field) == "Search"

    def test_form_entity_label(self):
        field = element("input")
        page(element("div", {"class": "form_entity"}, [
            element("div", {"class": "form_label"}, [text("Company")]),
            element("div", {}, [field]),
        ]))

        assert self.resolver.resolve(field) == "Company"

    def test_grid_column_to_the_left(self):
        field = element("input")
        page(element("div", {"class": "row"}, [
            element("div", {"class": "col-md-2"}, [text("Budget")]),
            element("div", {"class": "col-md-4"}, [field]),
        ]))

        assert self.resolver.resolve(field) == "Budget"

    def test_preceding_text(self):
        field = element("input")
        page(element("div", {}, [text("Username"), field]))

        assert self.resolver.resolve(field) == "Username"

    def test_table_previous_cell(self):
        field = element("input")
        page(element("table", {}, [element("tr", {}, [
            element("td", {}, [text("Quantity")]),
            element("td", {}, [field]),
        ])]))

        assert self.resolver.resolve(field) == "Quantity"

    def test_own_name_attribute(self):
        field = element("input", {"name": "zip_code"})
        page(field)

        assert self.resolver.resolve(field) == "zip_code"

    def test_button_text(self):
        button = element("button", {}, [text("Sign in")])
        page(button)

        assert self.resolver.resolve(button) == "Sign in"

    def test_google_forms_question_heading(self):
        field = element("input", {"aria-label": "Your answer"})
        page(
            element("div", {"role": "listitem"}, [
                element("div", {"role": "heading"}, [text("Your name *")]),
                field,
            ]),
            url="https://docs.google.com/forms/d/abc/viewform",
        )

        assert self.resolver.resolve(field, "https://docs.google.com/forms/d/abc/viewform") == "Your name"
        assert self.resolver.resolve(field, "https://example.com/") == "Your answer"

    def test_select2_uses_original_select(self):
        select = element("select", {"id": "color", "aria-label": "Colour"})
        rendered = element("span", {"class": "select2-selection__rendered", "id": "select2-color-container"})
        page(select, element("span", {"class": "select2"}, [rendered]))

        assert self.resolver.resolve(rendered) == "Colour"

    def test_no_label(self):
        node = element("div")
        page(node)

        assert self.resolver.resolve(node) is None


def nested_frame_page() -> tuple[Document, DomNode, DomNode]:
    """Top page > iframe#editor-frame > host-a (open) > host-b (open) > input#deep."""
    deep = element("input", {"id": "deep"})
    host_b = element("host-b")
    host_b.attach_shadow("open").append(deep)
    host_a = element("host-a")
    host_a.attach_shadow("open").append(element("div", {}, [host_b]))

    inner = Document(url="https://example.com/frame")
    inner.append(element("html", {}, [element("body", {}, [host_a])]))

    iframe = element("iframe", {"id": "editor-frame", "name": "editor"})
    top = page(element("iframe", {"name": "ads"}), iframe)
    iframe.attach_document(inner)
    return top, iframe, deep


class TestBoundaryChains:
    """Tests for recording and walking frame and shadow boundaries."""

    def test_trace_nested_frame_and_shadow_roots(self):
        _, _, deep = nested_frame_page()

        chain = trace_boundaries(deep)

        assert chain.iframe_chain == (FrameDescriptor(id="editor-frame", name="editor", index=1),)
        assert chain.shadow_hosts == ("/html/body/host-a", "/div/host-b")
        assert chain.is_closed_shadow is False

    def test_descend_reaches_innermost_root(self):
        top, _, deep = nested_frame_page()
        chain = trace_boundaries(deep)

        context = descend(top, chain.iframe_chain, chain.shadow_hosts, NullShadowRootLookup())

        assert context.complete
        assert evaluate_xpath(context.root, "/input") is deep

    def test_frame_matched_by_index_when_id_and_name_change(self):
        top, iframe, _ = nested_frame_page()
        iframe.attributes.clear()

        context = descend(top, (FrameDescriptor(id="editor-frame", name="editor", index=1),), (), NullShadowRootLookup())

        assert context.document is iframe.content_document

    def test_missing_frame_is_unreachable(self):
        top, _, _ = nested_frame_page()

        context = descend(top, (FrameDescriptor(id="gone"),), (), NullShadowRootLookup())

        assert not context.frames_reached
        assert context.root is top
        assert context.warnings[0].startswith("BoundaryUnreachable")

    def test_closed_root_blocked_without_interception(self):
        host = element("secure-field")
        secret = host.attach_shadow("closed").append(element("input"))
        top = page(host)
        chain = trace_boundaries(secret)

        assert chain.is_closed_shadow is True

        blocked = descend(top, chain.iframe_chain, chain.shadow_hosts, NullShadowRootLookup())
        assert blocked.blocked_host is host
        assert not blocked.complete

        opened = descend(top, chain.iframe_chain, chain.shadow_hosts, InterceptedShadowRootLookup())
        assert opened.complete
        assert opened.root is host.shadow_root

    def test_iframe_index_counts_iframes_inside_shadow_trees(self):
        host = element("x-frame-host")
        host.attach_shadow("open").append(element("iframe", {"name": "first"}))
        last = element("iframe", {"name": "second"})
        top = page(host, last)

        assert iframes_of(top)[1] is last


class TestBundleCapture:
    """Tests for capture_interaction."""

    def test_fingerprint_fields(self):
        field = element(
            "input",
            {"id": "q", "name": "query", "class": "search big", "placeholder": "Search...", "data-test": "search"},
            value="shoes",
            rect=Rect(10, 20, 100, 40),
        )
        page(field, url="https://shop.example.com/")

        bundle = capture_interaction(field)

        assert bundle.tag == "input"
        assert bundle.xpath == "/html/body/input"
        assert bundle.id == "q"
        assert bundle.name == "query"
        assert bundle.classes == ("search", "big")
        assert dict(bundle.data_attrs) == {"data-test": "search"}
        assert bundle.placeholder == "Search..."
        assert bundle.visible_text == "shoes"
        assert bundle.coordinates == (60.0, 40.0)
        assert bundle.page_url == "https://shop.example.com/"
        assert bundle.recorded_via == "dom"

    def test_page_url_comes_from_top_document(self):
        _, _, deep = nested_frame_page()

        bundle = capture_interaction(deep)

        assert bundle.page_url == "https://example.com/form"
        assert bundle.iframe_chain[0].id == "editor-frame"
        assert bundle.xpath == "/input"

    def test_retarget_aria_checkbox(self):
        inner = element("span", {}, [text("Remember me")])
        box = element("div", {"role": "checkbox"}, [inner])
        page(box)

        assert retarget(inner) is box

    def test_terminal_hints(self):
        helper = element("textarea", {"class": "xterm-helper-textarea"})
        page(element("div", {"class": "xterm"}, [helper]))

        bundle = capture_interaction(helper)

        assert bundle.context_hints.is_terminal is True
        assert bundle.context_hints.is_code_editor is False


class TestRecordingSession:
    """Tests for turning interactions into steps."""

    def test_start_emits_open_step(self):
        session = RecordingSession(clock=lambda: 100.0)

        step = session.start("https://example.com/")

        assert step.event == StepEvent.OPEN
        assert step.value == "https://example.com/"
        assert session.is_recording

    def test_repeated_labels_within_session(self):
        fields = [element("input", {"aria-label": "Search"}) for _ in range(3)]
        page(*fields)
        session = RecordingSession()
        session.start("https://example.com/")

        labels = [session.record_input(field, "x").label for field in fields]

        assert labels == ["search", "search_1", "search_2"]

    def test_unlabelled_fields(self):
        fields = [element("div") for _ in range(3)]
        page(*fields)
        session = RecordingSession()
        session.start("https://example.com/")

        assert [session.record_click(field).label for field in fields] == ["field", "field_1", "field_2"]

    def test_start_resets_labels(self):
        field = element("input", {"aria-label": "Search"})
        page(field)
        session = RecordingSession()
        session.start("https://example.com/")
        session.record_input(field, "a")
        session.start("https://example.com/")

        assert session.record_input(field, "b").label == "search"
        assert len(session.steps) == 2

    def test_editor_input_recorded_as_prompt_input(self):
        surface = element("div", {"contenteditable": "true", "class": "ProseMirror"})
        page(element("div", {"aria-label": "Message"}, [surface]))
        session = RecordingSession()
        session.start("https://chat.example.com/")

        step = session.record_input(surface, "hello")

        assert step.label == "prompt_input"
        assert step.bundle.recorded_via == "keyboard"
        assert step.value == "hello"

    def test_enter_uses_submit_label(self):
        field = element("input", {"aria-label": "Search"})
        page(field)
        session = RecordingSession()
        session.start("https://example.com/")

        assert session.record_enter(field).label == "submit"
        assert session.record_enter(field).label == "submit_1"

    def test_conditional_step(self):
        session = RecordingSession()
        session.start("https://example.com/")

        step = session.record_conditional(ConditionalConfig(search_terms=("Allow",)))

        assert step.event == StepEvent.CONDITIONAL
        assert step.label == "conditional_click"
        assert step.conditional.search_terms == ("Allow",)

    def test_stop_returns_copy(self):
        session = RecordingSession()
        session.start("https://example.com/")

        steps = session.stop()
        steps.clear()

        assert not session.is_recording
        assert len(session.steps) == 1
        assert session.to_dict()["page"] == "https://example.com/"

    def test_select_click_records_selected_option(self):
        select = element(
            "select",
            {"id": "size"},
            [element("option", {"value": "s"}, [text("Small")]), element("option", {"value": "l"}, [text("Large")], selected=True)],
            value="l",
        )
        page(select)
        session = RecordingSession()
        session.start("https://example.com/")

        step = session.record_click(select)

        assert step.value == "Large"
        assert step.bundle.tag == "select"

    def test_select2_click_records_original_select_option(self):
        select = element(
            "select",
            {"id": "country"},
            [element("option", {"value": "fr"}, [text("France")]), element("option", {"value": "de"}, [text("Germany")])],
            value="de",
        )
        rendered = element("span", {"id": "select2-country-container", "class": "select2-selection__rendered"})
        page(select, element("span", {"class": "select2"}, [rendered]))
        session = RecordingSession()
        session.start("https://example.com/")

        step = session.record_click(rendered)

        assert step.value == "Germany"
        assert step.bundle.id == "country"

    def test_aria_radio_click_records_option_text(self):
        labelled = element("div", {"role": "radio", "aria-label": "Yes"})
        forms = element("div", {"role": "radio"}, [element("span", {"class": "aDTYNe"}, [text(" Maybe ")])])
        inner = element("span", {}, [text("No")])
        plain = element("div", {"role": "checkbox"}, [inner])
        page(labelled, forms, plain)
        session = RecordingSession()
        session.start("https://example.com/")

        values = [session.record_click(node).value for node in (labelled, forms, inner)]

        assert values == ["Yes", "Maybe", "No"]

    def test_plain_click_has_no_value(self):
        button = element("button", {}, [text("Go")])
        page(button)
        session = RecordingSession()
        session.start("https://example.com/")

        assert session.record_click(button).value is None
