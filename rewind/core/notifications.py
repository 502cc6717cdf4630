from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Optional

logger = logging.getLogger("rewind.notifications")

LOADING = "loading"
SUCCESS = "success"
ERROR = "error"


class StepEventSink:
    async def emit(self, event: dict[str, Any]) -> None:
        raise NotImplementedError


class NullStepEventSink(StepEventSink):
    async def emit(self, event: dict[str, Any]) -> None:
        return None


class JsonlStepEventSink(StepEventSink):
    def __init__(self, root_dir: str = "/tmp/rewind-events") -> None:
        self._root = Path(root_dir)
        self._root.mkdir(parents=True, exist_ok=True)
        self._file = self._root / "steps.jsonl"

    @property
    def path(self) -> Path:
        return self._file

    async def emit(self, event: dict[str, Any]) -> None:
        payload = json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=True, default=str)
        with self._file.open("a", encoding="utf-8") as file_handle:
            file_handle.write(payload + "\n")


class CallbackStepEventSink(StepEventSink):
    """Forwards events to a plain callable (UI bridges, tests)."""

    def __init__(self, callback: Callable[[dict[str, Any]], Any]) -> None:
        self._callback = callback

    async def emit(self, event: dict[str, Any]) -> None:
        result = self._callback(event)
        if hasattr(result, "__await__"):
            await result


def step_event(
    status: str,
    step_index: Optional[int],
    label: Optional[str],
    event: str,
    **extra: Any,
) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "status": status,
        "step": step_index,
        "label": label,
        "event": event,
        "ts": time.time(),
    }
    payload.update({key: value for key, value in extra.items() if value is not None})
    return payload


async def notify(sink: StepEventSink, event: dict[str, Any]) -> None:
    """Fire-and-forget delivery: sink failures are logged, never raised."""
    try:
        await sink.emit(event)
    except Exception as e:
        logger.warning(f"[Notifications] Sink {type(sink).__name__} failed: {e}")
