"""
Replay driver.

ReplayEngine runs recorded steps one at a time against a live page:
notify ``loading``, wait a short settle delay, then navigate, poll or
resolve-and-execute, and notify ``success`` or ``error``. Every failure is
reported as a StepResult; nothing is raised to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Protocol, Union

from playwright.async_api import Error as PlaywrightError, Page

from rewind.core.dom.nodes import Document, DomNode
from rewind.core.dom.snapshot import SnapshotCapturer
from rewind.core.models import (
    Action,
    ActionOutcome,
    Bundle,
    FailureCode,
    PollResult,
    Rect,
    Resolution,
    Step,
    StepEvent,
    StepResult,
)
from rewind.core.notifications import ERROR, LOADING, SUCCESS, NullStepEventSink, StepEventSink, notify, step_event
from rewind.core.replay.executor import ActionExecutor
from rewind.core.replay.poller import ConditionalPoller, PollerConfig, Scanner, page_scanner
from rewind.core.replay.resolver import ElementResolver

logger = logging.getLogger("rewind.engine")

StepRequest = Union[Step, dict[str, Any]]


class VisionFallback(Protocol):
    """OCR collaborator: reads the text rendered inside a screen region."""

    async def locate_text(self, bounds: Rect) -> Optional[str]:
        ...


@dataclass(frozen=True)
class EngineConfig:
    settle_delay_ms: int = 500
    settle_jitter_ms: int = 500
    seed: Optional[int] = None
    find_timeout_ms: int = 2000
    navigation_timeout_ms: int = 30000
    continue_on_error: bool = False


class ReplayEngine:
    """
    Coordinator-facing replay driver for one page.

    Steps run strictly in order on the calling task; stop() is cooperative and
    is honoured at the top of the next step and inside the conditional poller.
    """

    def __init__(
        self,
        page: Page,
        resolver: Optional[ElementResolver] = None,
        executor: Optional[ActionExecutor] = None,
        sink: Optional[StepEventSink] = None,
        config: Optional[EngineConfig] = None,
        capturer: Optional[SnapshotCapturer] = None,
        vision: Optional[VisionFallback] = None,
        scanner: Optional[Scanner] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.page = page
        self.resolver = resolver or ElementResolver()
        self.executor = executor or ActionExecutor()
        self.sink = sink or NullStepEventSink()
        self.config = config or EngineConfig()
        self.capturer = capturer or SnapshotCapturer()
        self.vision = vision
        self._scanner = scanner
        self._clock = clock
        self._sleep = sleep
        self._rng = random.Random(self.config.seed)
        self._stop = asyncio.Event()
        self._active_poller: Optional[ConditionalPoller] = None

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    def stop(self) -> None:
        """Request a cooperative stop of the running replay."""
        self._stop.set()
        if self._active_poller is not None:
            self._active_poller.stop()
        logger.info("[Engine] Stop requested")

    def reset(self) -> None:
        self._stop.clear()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    # ------------------------------------------------------------------
    # Building blocks
    # ------------------------------------------------------------------

    async def snapshot(self) -> Document:
        return await self.capturer.capture(self.page)

    async def find_element(self, bundle: Bundle, timeout_ms: Optional[int] = None) -> Optional[Resolution]:
        timeout = self.config.find_timeout_ms if timeout_ms is None else timeout_ms
        return await self.resolver.find_element(bundle, self.snapshot, timeout)

    async def execute_action(self, node: DomNode, action: Action, bundle: Optional[Bundle] = None) -> ActionOutcome:
        return await self.executor.execute_action(node, action, bundle)

    async def poll_and_click(
        self,
        search_terms: Optional[tuple[str, ...]] = None,
        idle_timeout_s: Optional[float] = None,
        poll_interval_ms: Optional[int] = None,
    ) -> PollResult:
        poller = ConditionalPoller(self._scanner or page_scanner(self.page), clock=self._clock, sleep=self._sleep)
        self._active_poller = poller
        try:
            return await poller.poll_and_click(
                search_terms, idle_timeout_s, poll_interval_ms, stop_event=self._stop
            )
        finally:
            self._active_poller = None

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    async def run_step(self, request: StepRequest, index: Optional[int] = None) -> StepResult:
        """
        Run one recorded step.

        Args:
            request: Step or its dict form (``event``, ``bundle``, ``value``, ``label``)
            index: Position in the recording, echoed in notifications

        Returns:
            StepResult; failures carry a FailureCode
        """
        started = self._clock()
        try:
            step = request if isinstance(request, Step) else Step.from_dict(request)
        except ValueError as e:
            logger.warning(f"[Engine] Invalid step: {e}")
            result = StepResult(success=False, failure_code=FailureCode.INVALID_STEP, metadata={"error": str(e)})
            await notify(self.sink, step_event(ERROR, index, None, "unknown", error=str(e)))
            return result

        if self._stop.is_set():
            return StepResult(success=False, failure_code=FailureCode.STOPPED, label=step.label)

        await notify(self.sink, step_event(LOADING, index, step.label, step.event.value))
        await self._settle()

        try:
            result = await self._dispatch(step)
        except PlaywrightError as e:
            logger.error(f"[Engine] Step {step.label or step.event.value} failed: {e}")
            result = StepResult(success=False, failure_code=FailureCode.ACTION_FAILED, metadata={"error": str(e)})

        result.label = step.label
        result.elapsed_ms = (self._clock() - started) * 1000
        status = SUCCESS if result.success else ERROR
        await notify(
            self.sink,
            step_event(
                status,
                index,
                step.label,
                step.event.value,
                failure_code=result.failure_code.value if result.failure_code else None,
                strategy=result.strategy,
                technique=result.technique,
            ),
        )
        return result

    async def replay(self, steps: list[StepRequest], continue_on_error: Optional[bool] = None) -> list[StepResult]:
        """
        Run steps strictly in order.

        Stops at the first failure unless ``continue_on_error``; a stop request
        ends the run before the next step starts.
        """
        keep_going = self.config.continue_on_error if continue_on_error is None else continue_on_error
        self.reset()
        results: list[StepResult] = []
        for index, step in enumerate(steps):
            if self._stop.is_set():
                logger.info(f"[Engine] Replay stopped before step {index}")
                break
            result = await self.run_step(step, index)
            results.append(result)
            if not result.success and not keep_going:
                logger.warning(f"[Engine] Aborting replay at step {index}: {result.failure_code}")
                break
        return results

    async def _settle(self) -> None:
        delay_ms = self.config.settle_delay_ms + self._rng.uniform(0, self.config.settle_jitter_ms)
        if delay_ms > 0:
            await self._sleep(delay_ms / 1000)

    async def _dispatch(self, step: Step) -> StepResult:
        if step.event == StepEvent.OPEN:
            return await self._open(step)
        if step.event == StepEvent.CONDITIONAL:
            return await self._conditional(step)
        return await self._act(step)

    async def _open(self, step: Step) -> StepResult:
        url = step.value or step.page_url
        if not url:
            return StepResult(success=False, failure_code=FailureCode.INVALID_STEP, metadata={"error": "open step has no URL"})
        await self.page.goto(url, wait_until="domcontentloaded", timeout=self.config.navigation_timeout_ms)
        logger.info(f"[Engine] Opened {url}")
        return StepResult(success=True, technique="navigate", metadata={"url": url})

    async def _conditional(self, step: Step) -> StepResult:
        config = PollerConfig.from_conditional(step.conditional) if step.conditional else PollerConfig()
        poll = await self.poll_and_click(config.search_terms, config.idle_timeout_s, config.poll_interval_ms)
        if not poll.timed_out and self._stop.is_set():
            return StepResult(success=False, failure_code=FailureCode.STOPPED, metadata=poll.to_dict())
        return StepResult(success=True, technique="conditional_click", metadata=poll.to_dict())

    async def _act(self, step: Step) -> StepResult:
        if step.bundle is None:
            return StepResult(
                success=False,
                failure_code=FailureCode.INVALID_STEP,
                metadata={"error": f"{step.event.value} step has no bundle"},
            )

        action = Action.from_step(step)
        resolution = await self.find_element(step.bundle)
        if resolution is None:
            metadata: dict[str, Any] = {}
            if self.vision is not None and step.bundle.bounding_rect is not None:
                metadata["vision_text"] = await self.vision.locate_text(step.bundle.bounding_rect)
            return StepResult(success=False, failure_code=FailureCode.NOT_FOUND, metadata=metadata)

        outcome = await self.executor.execute_action(resolution.node, action, step.bundle)
        return StepResult(
            success=outcome.success,
            failure_code=outcome.failure_code,
            strategy=resolution.strategy,
            technique=outcome.technique,
            metadata={
                "score": resolution.score,
                "low_confidence": resolution.low_confidence,
                "warnings": list(resolution.warnings),
                "attempts": list(outcome.attempts),
            },
        )
