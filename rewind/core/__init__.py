"""Core module containing the recording and replay engines."""

from rewind.core.browser import BrowserConfig, RewindBrowser
from rewind.core.engine import EngineConfig, ReplayEngine

__all__ = ["BrowserConfig", "EngineConfig", "ReplayEngine", "RewindBrowser"]
