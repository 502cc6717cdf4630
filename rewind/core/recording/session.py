"""Recording session: turns observed interactions into ordered Steps."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Optional

from rewind.core.dom.nodes import DomNode
from rewind.core.models import Bundle, ConditionalConfig, Step, StepEvent
from rewind.core.recording.bundle import capture_interaction, click_value, retarget
from rewind.core.recording.labels import (
    EDITOR_INPUT_LABEL,
    SUBMIT_LABEL,
    LabelCounter,
    LabelResolver,
)
from rewind.core.replay.editors import is_complex_editor

logger = logging.getLogger("rewind.recording")


class RecordingSession:
    """
    One recording: the ordered step list and its label counter.

    The counter is reset by start(), so labels are deterministic and
    monotonic within a session.
    """

    def __init__(
        self,
        label_resolver: Optional[LabelResolver] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._resolver = label_resolver or LabelResolver()
        self._clock = clock
        self.labels = LabelCounter()
        self.steps: list[Step] = []
        self.page_url: Optional[str] = None
        self._active = False

    @property
    def is_recording(self) -> bool:
        return self._active

    def start(self, page_url: str) -> Step:
        """Reset labels and steps and emit the initial ``open`` step."""
        self.labels.reset()
        self.steps = []
        self.page_url = page_url
        self._active = True
        logger.info(f"[Recording] Started on {page_url}")
        return self._append(Step(event=StepEvent.OPEN, value=page_url, page_url=page_url, timestamp=self._clock()))

    def stop(self) -> list[Step]:
        self._active = False
        logger.info(f"[Recording] Stopped with {len(self.steps)} steps")
        return list(self.steps)

    def resolve_label(self, target: DomNode, page_url: Optional[str] = None) -> Optional[str]:
        return self._resolver.resolve(retarget(target), page_url or self.page_url or "")

    def record_click(self, target: DomNode, page_url: Optional[str] = None) -> Step:
        bundle = capture_interaction(target, page_url=page_url)
        label = self.labels.next(self.resolve_label(target, bundle.page_url))
        return self._append(self._step(StepEvent.CLICK, bundle, label, click_value(target)))

    def record_input(self, target: DomNode, value: str, page_url: Optional[str] = None) -> Step:
        editor = is_complex_editor(target)
        bundle = capture_interaction(target, page_url=page_url, recorded_via="keyboard" if editor else "dom")
        base = EDITOR_INPUT_LABEL if editor else self.resolve_label(target, bundle.page_url)
        return self._append(self._step(StepEvent.INPUT, bundle, self.labels.next(base), value))

    def record_enter(self, target: DomNode, value: Optional[str] = None, page_url: Optional[str] = None) -> Step:
        bundle = capture_interaction(target, page_url=page_url)
        return self._append(self._step(StepEvent.ENTER, bundle, self.labels.next(SUBMIT_LABEL), value))

    def record_conditional(self, config: Optional[ConditionalConfig] = None) -> Step:
        config = config or ConditionalConfig()
        step = Step(
            event=StepEvent.CONDITIONAL,
            label=self.labels.next("conditional_click"),
            page_url=self.page_url,
            timestamp=self._clock(),
            conditional=config,
        )
        return self._append(step)

    def to_dict(self) -> dict[str, Any]:
        return {
            "page": self.page_url,
            "steps": [step.to_dict() for step in self.steps],
        }

    def _step(self, event: StepEvent, bundle: Bundle, label: str, value: Optional[str]) -> Step:
        x, y = bundle.coordinates if bundle.coordinates else (None, None)
        return Step(
            event=event,
            xpath=bundle.xpath,
            value=value,
            label=label,
            bundle=bundle,
            x=x,
            y=y,
            timestamp=self._clock(),
            page_url=bundle.page_url,
        )

    def _append(self, step: Step) -> Step:
        self.steps.append(step)
        logger.debug(f"[Recording] {step.event.value} label={step.label!r}")
        return step
