"""
RewindBrowser - Browser session for recording and replay.

Owns the Playwright lifecycle (playwright -> browser -> context -> page) and
wires the recorder and the replay engine onto the page. The closed shadow root
interception script is registered on the context before any page loads, so
closed roots created by page scripts stay reachable to snapshots.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncGenerator, Optional

from playwright.async_api import (
    async_playwright,
    Browser,
    BrowserContext,
    Page,
    Playwright,
    TimeoutError as PlaywrightTimeout,
    Error as PlaywrightError,
)

from rewind.core.dom.nodes import InterceptedShadowRootLookup, NullShadowRootLookup
from rewind.core.dom.snapshot import SHADOW_INTERCEPT_JS, SnapshotBounds, SnapshotCapturer
from rewind.core.engine import EngineConfig, ReplayEngine, VisionFallback
from rewind.core.models import Step
from rewind.core.notifications import NullStepEventSink, StepEventSink
from rewind.core.recording.recorder import PageRecorder
from rewind.core.recording.session import RecordingSession
from rewind.core.replay.executor import ActionExecutor, ExecutorConfig
from rewind.core.replay.resolver import ElementResolver, ResolverConfig

logger = logging.getLogger("rewind")


@dataclass
class BrowserConfig:
    """Configuration for RewindBrowser."""
    headless: bool = True
    browser_type: str = "chromium"
    viewport_width: int = 1920
    viewport_height: int = 1080
    user_agent: Optional[str] = None
    locale: str = "en-US"
    timezone_id: str = "America/New_York"
    default_timeout: int = 30000
    proxy: Optional[dict[str, str]] = None

    # Page-level interception of closed shadow roots
    intercept_closed_shadow: bool = True


class RewindBrowser:
    """
    Recording and replay on one browser page.

    Usage:
        async with RewindBrowser().session() as browser:
            await browser.navigate("https://example.com")
            await browser.start_recording()
            ...
            steps = await browser.stop_recording()
            results = await browser.engine.replay(steps)
    """

    def __init__(
        self,
        config: Optional[BrowserConfig] = None,
        engine_config: Optional[EngineConfig] = None,
        resolver_config: Optional[ResolverConfig] = None,
        executor_config: Optional[ExecutorConfig] = None,
        snapshot_bounds: Optional[SnapshotBounds] = None,
        sink: Optional[StepEventSink] = None,
        vision: Optional[VisionFallback] = None,
    ) -> None:
        self.config = config or BrowserConfig()
        self._engine_config = engine_config or EngineConfig()
        self._resolver_config = resolver_config or ResolverConfig()
        self._executor_config = executor_config or ExecutorConfig()
        self._capturer = SnapshotCapturer(snapshot_bounds)
        self._sink = sink or NullStepEventSink()
        self._vision = vision

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._context: Optional[BrowserContext] = None
        self._page: Optional[Page] = None

        self._engine: Optional[ReplayEngine] = None
        self._recorder: Optional[PageRecorder] = None
        self._initialized = False

        logger.info("[Rewind] Browser instance created")

    async def initialize(self) -> None:
        """Launch the browser and open the working page."""
        if self._initialized:
            logger.warning("[Rewind] Already initialized")
            return

        logger.info("[Rewind] Initializing browser...")
        self._playwright = await async_playwright().start()

        launch_options: dict[str, Any] = {"headless": self.config.headless}
        if self.config.proxy:
            launch_options["proxy"] = self.config.proxy

        launcher = getattr(self._playwright, self.config.browser_type)
        self._browser = await launcher.launch(**launch_options)

        context_options: dict[str, Any] = {
            "viewport": {
                "width": self.config.viewport_width,
                "height": self.config.viewport_height,
            },
            "locale": self.config.locale,
            "timezone_id": self.config.timezone_id,
        }
        if self.config.user_agent:
            context_options["user_agent"] = self.config.user_agent

        self._context = await self._browser.new_context(**context_options)
        if self.config.intercept_closed_shadow:
            await self._context.add_init_script(SHADOW_INTERCEPT_JS)

        self._page = await self._context.new_page()
        self._page.set_default_timeout(self.config.default_timeout)

        self._attach(self._page)
        self._initialized = True
        logger.info("[Rewind] ✓ Browser initialized successfully")

    def _attach(self, page: Page) -> None:
        lookup = InterceptedShadowRootLookup() if self.config.intercept_closed_shadow else NullShadowRootLookup()
        self._engine = ReplayEngine(
            page,
            resolver=ElementResolver(lookup=lookup, config=self._resolver_config),
            executor=ActionExecutor(config=self._executor_config),
            sink=self._sink,
            config=self._engine_config,
            capturer=self._capturer,
            vision=self._vision,
        )
        self._recorder = PageRecorder(page, RecordingSession(), capturer=self._capturer)

    async def close(self) -> None:
        """Close the browser and release Playwright resources."""
        logger.info("[Rewind] Closing browser...")

        if self._recorder and self._recorder.is_recording:
            await self._recorder.stop()
        if self._engine:
            self._engine.stop()

        if self._context:
            await self._context.close()
        if self._browser:
            await self._browser.close()
        if self._playwright:
            await self._playwright.stop()

        self._initialized = False
        logger.info("[Rewind] ✓ Browser closed")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator["RewindBrowser", None]:
        """Context manager for browser session."""
        await self.initialize()
        try:
            yield self
        finally:
            await self.close()

    async def navigate(self, url: str, wait_until: str = "domcontentloaded") -> bool:
        """
        Navigate to a URL.

        Args:
            url: URL to navigate to
            wait_until: Wait condition (load, domcontentloaded, networkidle)

        Returns:
            True if navigation succeeded
        """
        if not self._page:
            raise RuntimeError("Browser not initialized")

        logger.info(f"[Rewind] Navigating to: {url}")
        try:
            await self._page.goto(url, wait_until=wait_until)
            logger.info(f"[Rewind] ✓ Navigation complete: {self._page.url}")
            return True
        except PlaywrightTimeout as e:
            logger.error(f"[Rewind] Navigation timeout: {e}")
            return False
        except PlaywrightError as e:
            logger.error(f"[Rewind] Navigation error: {e}")
            return False

    async def start_recording(self) -> Step:
        if not self._recorder:
            raise RuntimeError("Browser not initialized")
        return await self._recorder.start()

    async def stop_recording(self) -> list[Step]:
        if not self._recorder:
            raise RuntimeError("Browser not initialized")
        return await self._recorder.stop()

    async def get_page_info(self) -> dict[str, Any]:
        """Get current page information."""
        if not self._page:
            return {"error": "No page loaded"}

        return {
            "url": self._page.url,
            "title": await self._page.title(),
            "viewport": self._page.viewport_size,
            "frames": len(self._page.frames),
            "recording": bool(self._recorder and self._recorder.is_recording),
        }

    @property
    def page(self) -> Optional[Page]:
        """Direct access to the Playwright page for advanced usage."""
        return self._page

    @property
    def engine(self) -> ReplayEngine:
        if not self._engine:
            raise RuntimeError("Browser not initialized")
        return self._engine

    @property
    def recorder(self) -> PageRecorder:
        if not self._recorder:
            raise RuntimeError("Browser not initialized")
        return self._recorder

    @property
    def recording(self) -> Optional[RecordingSession]:
        return self._recorder.session if self._recorder else None
