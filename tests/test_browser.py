"""
Tests for RewindBrowser, step notifications and the MCP server surface.
"""

import json

import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from rewind.core.browser import BrowserConfig, RewindBrowser
from rewind.core.dom.nodes import InterceptedShadowRootLookup, NullShadowRootLookup
from rewind.core.dom.snapshot import SHADOW_INTERCEPT_JS
from rewind.core.notifications import (
    CallbackStepEventSink,
    JsonlStepEventSink,
    notify,
    step_event,
)


def mock_playwright():
    page = MagicMock()
    page.url = "about:blank"
    page.frames = [MagicMock()]
    page.viewport_size = {"width": 1920, "height": 1080}
    page.title = AsyncMock(return_value="Blank")
    page.goto = AsyncMock()
    context = MagicMock()
    context.add_init_script = AsyncMock()
    context.new_page = AsyncMock(return_value=page)
    context.close = AsyncMock()
    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()
    playwright = MagicMock()
    playwright.chromium.launch = AsyncMock(return_value=browser)
    playwright.stop = AsyncMock()
    starter = MagicMock()
    starter.start = AsyncMock(return_value=playwright)
    return starter, playwright, browser, context, page


class TestBrowserConfig:
    """Tests for BrowserConfig."""

    def test_default_config(self):
        config = BrowserConfig()

        assert config.headless is True
        assert config.viewport_width == 1920
        assert config.viewport_height == 1080
        assert config.intercept_closed_shadow is True


class TestRewindBrowser:
    """Tests for the browser session lifecycle."""

    def test_not_initialized(self):
        browser = RewindBrowser()

        assert browser.page is None
        assert browser.recording is None
        with pytest.raises(RuntimeError):
            browser.engine

    @pytest.mark.asyncio
    async def test_navigate_requires_initialize(self):
        with pytest.raises(RuntimeError):
            await RewindBrowser().navigate("https://example.com")

    @pytest.mark.asyncio
    async def test_page_info_without_page(self):
        assert await RewindBrowser().get_page_info() == {"error": "No page loaded"}

    @pytest.mark.asyncio
    async def test_session_lifecycle(self):
        starter, playwright, browser, context, page = mock_playwright()

        with patch("rewind.core.browser.async_playwright", return_value=starter):
            async with RewindBrowser(BrowserConfig(default_timeout=5000)).session() as rewind:
                context.add_init_script.assert_awaited_once_with(SHADOW_INTERCEPT_JS)
                page.set_default_timeout.assert_called_once_with(5000)
                assert isinstance(rewind.engine.resolver.lookup, InterceptedShadowRootLookup)
                info = await rewind.get_page_info()
                assert info["title"] == "Blank"
                assert info["recording"] is False

        context.close.assert_awaited_once()
        browser.close.assert_awaited_once()
        playwright.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_without_interception(self):
        starter, _, _, context, _ = mock_playwright()

        with patch("rewind.core.browser.async_playwright", return_value=starter):
            rewind = RewindBrowser(BrowserConfig(intercept_closed_shadow=False))
            await rewind.initialize()

        context.add_init_script.assert_not_awaited()
        assert isinstance(rewind.engine.resolver.lookup, NullShadowRootLookup)

    @pytest.mark.asyncio
    async def test_navigate(self):
        starter, _, _, _, page = mock_playwright()

        with patch("rewind.core.browser.async_playwright", return_value=starter):
            rewind = RewindBrowser()
            await rewind.initialize()
            assert await rewind.navigate("https://example.com") is True

        page.goto.assert_awaited_once_with("https://example.com", wait_until="domcontentloaded")


class TestNotifications:
    """Tests for step event sinks."""

    def test_step_event_drops_empty_extras(self):
        event = step_event("success", 2, "search", "input", strategy="id", technique=None)

        assert event["status"] == "success"
        assert event["step"] == 2
        assert event["strategy"] == "id"
        assert "technique" not in event

    @pytest.mark.asyncio
    async def test_jsonl_sink(self, tmp_path):
        sink = JsonlStepEventSink(str(tmp_path))

        await sink.emit(step_event("loading", 0, "open", "open"))
        await sink.emit(step_event("success", 0, "open", "open"))

        lines = sink.path.read_text(encoding="utf-8").splitlines()
        assert [json.loads(line)["status"] for line in lines] == ["loading", "success"]

    @pytest.mark.asyncio
    async def test_callback_sink_awaits_coroutines(self):
        received = []

        async def callback(event):
            received.append(event)

        await CallbackStepEventSink(callback).emit({"status": "loading"})

        assert received == [{"status": "loading"}]

    @pytest.mark.asyncio
    async def test_notify_swallows_sink_errors(self):
        sink = CallbackStepEventSink(MagicMock(side_effect=RuntimeError("boom")))

        await notify(sink, {"status": "error"})


class TestServer:
    """Tests for the MCP tool surface."""

    def test_browser_config_from_env(self, monkeypatch):
        from rewind.server import get_browser_config, get_engine_config

        monkeypatch.setenv("REWIND_HEADLESS", "false")
        monkeypatch.setenv("REWIND_VIEWPORT_WIDTH", "1280")
        monkeypatch.setenv("REWIND_INTERCEPT_CLOSED_SHADOW", "false")
        monkeypatch.setenv("REWIND_SEED", "42")

        config = get_browser_config()
        engine_config = get_engine_config()

        assert config.headless is False
        assert config.viewport_width == 1280
        assert config.intercept_closed_shadow is False
        assert engine_config.seed == 42

    @pytest.mark.asyncio
    async def test_list_tools(self):
        from rewind.server import list_tools

        names = {tool.name for tool in await list_tools()}

        assert {"navigate", "start_recording", "stop_recording", "run_step", "replay",
                "find_element", "poll_and_click", "stop", "page_info"} <= names

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        from rewind import server

        with patch.object(server, "get_browser", AsyncMock(return_value=MagicMock())):
            content = await server.call_tool("teleport", {})

        assert json.loads(content[0].text) == {"error": "Unknown tool: teleport"}

    @pytest.mark.asyncio
    async def test_stop_tool(self):
        from rewind import server

        browser = MagicMock()
        with patch.object(server, "get_browser", AsyncMock(return_value=browser)):
            content = await server.call_tool("stop", {})

        browser.engine.stop.assert_called_once()
        assert json.loads(content[0].text) == {"stopped": True}
