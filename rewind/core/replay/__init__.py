"""Replay side: element resolution, action execution and conditional polling."""

from rewind.core.replay.executor import ActionExecutor, ExecutorConfig, InputCategory, input_category
from rewind.core.replay.poller import ConditionalPoller, PollerConfig, page_scanner
from rewind.core.replay.resolver import ElementResolver, ResolverConfig

__all__ = [
    "ActionExecutor",
    "ConditionalPoller",
    "ElementResolver",
    "ExecutorConfig",
    "InputCategory",
    "PollerConfig",
    "ResolverConfig",
    "input_category",
    "page_scanner",
]
