"""
Conditional Poller.

Repeatedly scans the page for clickable elements whose text contains one of
the search terms and clicks them. Every successful click resets the idle timer;
the poller finishes when no click happened for ``idle_timeout_s`` or when it is
stopped from outside.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from playwright.async_api import Error as PlaywrightError, Page

from rewind.core.models import ConditionalConfig, PollResult

logger = logging.getLogger("rewind.poller")

POLL_SCAN_JS = """
async (terms) => {
    const wanted = terms.map((t) => String(t).toLowerCase()).filter(Boolean);
    const selector = 'button, [role="button"], a, input[type="submit"], input[type="button"], '
        + '[class*="btn"], [class*="button"]';
    for (const el of document.querySelectorAll(selector)) {
        if (el.offsetParent === null || el.disabled) continue;
        const text = (el.textContent || el.value || el.getAttribute('aria-label') || '').toLowerCase();
        const term = wanted.find((t) => text.includes(t));
        if (!term) continue;
        el.scrollIntoView({ block: 'center' });
        await new Promise((r) => setTimeout(r, 100));
        if (el.focus) el.focus();
        el.click();
        return term;
    }
    return null;
}
"""

Scanner = Callable[[tuple[str, ...]], Awaitable[Optional[str]]]


@dataclass(frozen=True)
class PollerConfig:
    search_terms: tuple[str, ...] = ("Allow", "Keep")
    idle_timeout_s: float = 120.0
    poll_interval_ms: int = 1000

    @classmethod
    def from_conditional(cls, config: ConditionalConfig) -> "PollerConfig":
        return cls(
            search_terms=config.search_terms,
            idle_timeout_s=config.idle_timeout_s,
            poll_interval_ms=config.poll_interval_ms,
        )


def page_scanner(page: Page) -> Scanner:
    """Scanner that runs POLL_SCAN_JS in every frame and stops at the first click."""

    async def scan(terms: tuple[str, ...]) -> Optional[str]:
        for frame in page.frames:
            try:
                matched = await frame.evaluate(POLL_SCAN_JS, list(terms))
            except PlaywrightError as e:
                logger.debug(f"[Poller] Scan skipped frame {frame.url}: {e}")
                continue
            if matched:
                return matched
        return None

    return scan


class ConditionalPoller:
    """
    Appear-then-click loop with an idle timeout.

    Clock and sleep are injectable so the timing contract can be tested
    without real waiting.
    """

    def __init__(
        self,
        scanner: Scanner,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._scan = scanner
        self._clock = clock
        self._sleep = sleep
        self._stop = asyncio.Event()

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    async def poll_and_click(
        self,
        search_terms: Optional[tuple[str, ...]] = None,
        idle_timeout_s: Optional[float] = None,
        poll_interval_ms: Optional[int] = None,
        stop_event: Optional[asyncio.Event] = None,
    ) -> PollResult:
        """
        Click matching elements until idle for ``idle_timeout_s`` or stopped.

        Args:
            search_terms: Case-insensitive substrings to look for
            idle_timeout_s: Seconds without a click before giving up
            poll_interval_ms: Pause between scans
            stop_event: Optional external done signal

        Returns:
            PollResult; ``timed_out`` is False only when stopped from outside
        """
        defaults = PollerConfig()
        terms = tuple(search_terms) if search_terms else defaults.search_terms
        timeout_s = defaults.idle_timeout_s if idle_timeout_s is None else idle_timeout_s
        interval_s = (defaults.poll_interval_ms if poll_interval_ms is None else poll_interval_ms) / 1000

        self._stop.clear()
        started = last_click = self._clock()
        clicks = polls = 0
        logger.info(f"[Poller] Watching for {list(terms)} (idle timeout {timeout_s}s)")

        while True:
            now = self._clock()
            if self._stop.is_set() or (stop_event is not None and stop_event.is_set()):
                logger.info(f"[Poller] Stopped after {clicks} clicks")
                return PollResult(clicks=clicks, timed_out=False, polls=polls, elapsed_s=now - started)
            if now - last_click >= timeout_s:
                logger.info(f"[Poller] Idle timeout after {clicks} clicks")
                return PollResult(clicks=clicks, timed_out=True, polls=polls, elapsed_s=now - started)

            polls += 1
            matched = await self._scan(terms)
            if matched:
                clicks += 1
                last_click = self._clock()
                logger.info(f"[Poller] ✓ Clicked element matching {matched!r} ({clicks} total)")
            await self._sleep(interval_s)
