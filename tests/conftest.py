"""
Shared fixtures: a virtual clock and scripted element handles.
"""

from typing import Any, Callable, Optional
from unittest.mock import AsyncMock

import pytest

from rewind.core.replay.strategies import READ_SURFACE_TEXT_JS


class FakeTime:
    """Monotonic clock whose sleep advances time instantly."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: list[float] = []

    def clock(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class ScriptedHandle:
    """
    Stand-in for an ElementHandle.

    ``evaluate`` looks the script up in ``results``; a value is returned, an
    exception is raised, a callable is applied to the argument. Unknown scripts
    return True. READ_SURFACE_TEXT_JS returns ``surface``.
    """

    def __init__(self, results: Optional[dict[str, Any]] = None, surface: str = ""):
        self.results = dict(results or {})
        self.surface = surface
        self.scripts: list[str] = []
        self.args: list[Any] = []
        self.click = AsyncMock()
        self.dispose = AsyncMock()

    async def evaluate(self, script: str, arg: Any = None) -> Any:
        self.scripts.append(script)
        self.args.append(arg)
        if script == READ_SURFACE_TEXT_JS:
            return self.surface
        outcome = self.results.get(script, True)
        if isinstance(outcome, Exception):
            raise outcome
        if callable(outcome):
            return outcome(arg)
        return outcome


@pytest.fixture
def fake_time() -> FakeTime:
    return FakeTime()


@pytest.fixture
def make_handle() -> Callable[..., ScriptedHandle]:
    return ScriptedHandle
