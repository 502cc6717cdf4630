from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from rewind.core.dom.nodes import DomNode


class StepEvent(str, Enum):
    CLICK = "click"
    INPUT = "input"
    ENTER = "enter"
    OPEN = "open"
    CONDITIONAL = "conditional"


class ActionType(str, Enum):
    CLICK = "click"
    INPUT = "input"
    ENTER = "enter"


class FailureCode(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    ACTION_FAILED = "ACTION_FAILED"
    BOUNDARY_UNREACHABLE = "BOUNDARY_UNREACHABLE"
    STOPPED = "STOPPED"
    INVALID_STEP = "INVALID_STEP"


def parse_event(raw: str) -> StepEvent:
    # Recordings store "Enter" with a capital letter.
    try:
        return StepEvent(str(raw).strip().lower())
    except ValueError:
        raise ValueError(f"Unsupported step event: {raw!r}") from None


def _object(payload: Any, what: str) -> dict[str, Any]:
    if not isinstance(payload, dict):
        raise ValueError(f"{what} must be an object, got {type(payload).__name__}")
    return payload


def _sequence(payload: Any, what: str) -> list[Any]:
    if not isinstance(payload, (list, tuple)):
        raise ValueError(f"{what} must be a list, got {type(payload).__name__}")
    return list(payload)


def _number(value: Any, what: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{what} must be a number, got {value!r}") from None


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float = 0.0
    height: float = 0.0

    def center(self) -> tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    def distance_to(self, other: "Rect") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def contains(self, x: float, y: float) -> bool:
        return self.x <= x <= self.x + self.width and self.y <= y <= self.y + self.height

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> Optional["Rect"]:
        if not payload:
            return None
        payload = _object(payload, "boundingRect")
        # Older recordings use the DOMRect-style left/top keys.
        x = payload.get("x", payload.get("left", 0.0))
        y = payload.get("y", payload.get("top", 0.0))
        return cls(
            x=_number(x or 0.0, "boundingRect.x"),
            y=_number(y or 0.0, "boundingRect.y"),
            width=_number(payload.get("width") or 0.0, "boundingRect.width"),
            height=_number(payload.get("height") or 0.0, "boundingRect.height"),
        )


@dataclass(frozen=True)
class FrameDescriptor:
    id: str | None = None
    name: str | None = None
    index: int | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {}
        if self.id:
            payload["id"] = self.id
        if self.name:
            payload["name"] = self.name
        if self.index is not None:
            payload["index"] = self.index
        return payload

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "FrameDescriptor":
        payload = _object(payload, "iframeChain entry")
        index = payload.get("index")
        return cls(
            id=payload.get("id") or None,
            name=payload.get("name") or None,
            index=int(_number(index, "iframeChain index")) if index is not None else None,
        )


@dataclass(frozen=True)
class ContextHints:
    is_terminal: bool = False
    is_code_editor: bool = False
    is_rich_text: bool = False

    def to_dict(self) -> dict[str, bool]:
        return {
            "isTerminal": self.is_terminal,
            "isCodeEditor": self.is_code_editor,
            "isRichText": self.is_rich_text,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "ContextHints":
        payload = _object(payload or {}, "contextHints")
        return cls(
            is_terminal=bool(payload.get("isTerminal", False)),
            is_code_editor=bool(payload.get("isCodeEditor", payload.get("isMonacoEditor", False))),
            is_rich_text=bool(payload.get("isRichText", False)),
        )


@dataclass(frozen=True)
class Bundle:
    """Recorded fingerprint of one interacted element."""

    tag: str = ""
    xpath: str = ""
    id: str | None = None
    name: str | None = None
    class_name: str | None = None
    # Sorted (name, value) pairs; a dict passed in is converted.
    data_attrs: tuple[tuple[str, str], ...] = ()
    aria: str | None = None
    placeholder: str | None = None
    role: str | None = None
    bounding_rect: Rect | None = None
    iframe_chain: tuple[FrameDescriptor, ...] = ()
    shadow_hosts: tuple[str, ...] = ()
    is_closed_shadow: bool = False
    visible_text: str | None = None
    coordinates: tuple[float, float] | None = None
    page_url: str | None = None
    context_hints: ContextHints = field(default_factory=ContextHints)
    recorded_via: str = "dom"

    def __post_init__(self) -> None:
        pairs = self.data_attrs.items() if isinstance(self.data_attrs, dict) else self.data_attrs
        object.__setattr__(self, "data_attrs", tuple(sorted((str(k), str(v)) for k, v in pairs)))

    @property
    def classes(self) -> tuple[str, ...]:
        return tuple((self.class_name or "").split())

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "tag": self.tag,
            "xpath": self.xpath,
            "id": self.id,
            "name": self.name,
            "className": self.class_name,
            "dataAttrs": dict(self.data_attrs),
            "aria": self.aria,
            "placeholder": self.placeholder,
            "role": self.role,
            "boundingRect": self.bounding_rect.to_dict() if self.bounding_rect else None,
            "iframeChain": [frame.to_dict() for frame in self.iframe_chain],
            "shadowHosts": list(self.shadow_hosts),
            "isClosedShadow": self.is_closed_shadow,
            "visibleText": self.visible_text,
            "coordinates": (
                {"x": self.coordinates[0], "y": self.coordinates[1]} if self.coordinates else None
            ),
            "pageUrl": self.page_url,
            "contextHints": self.context_hints.to_dict(),
            "recordedVia": self.recorded_via,
        }
        return {key: value for key, value in payload.items() if value is not None}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Bundle":
        if not isinstance(payload, dict):
            raise ValueError("Bundle payload must be an object")

        coords = payload.get("coordinates")
        coordinates = None
        if coords:
            coords = _object(coords, "coordinates")
            coordinates = (
                _number(coords.get("x", 0.0), "coordinates.x"),
                _number(coords.get("y", 0.0), "coordinates.y"),
            )
        frames = _sequence(payload.get("iframeChain") or [], "iframeChain")
        hosts = _sequence(payload.get("shadowHosts") or [], "shadowHosts")
        data_attrs = _object(payload.get("dataAttrs") or {}, "dataAttrs")

        return cls(
            tag=(payload.get("tag") or "").lower(),
            xpath=payload.get("xpath") or "",
            id=payload.get("id") or None,
            name=payload.get("name") or None,
            class_name=payload.get("className") or None,
            data_attrs=data_attrs,
            aria=payload.get("aria") or None,
            placeholder=payload.get("placeholder") or None,
            role=payload.get("role") or None,
            bounding_rect=Rect.from_dict(payload.get("boundingRect") or payload.get("bounding")),
            iframe_chain=tuple(FrameDescriptor.from_dict(item) for item in frames),
            shadow_hosts=tuple(str(host) for host in hosts),
            is_closed_shadow=bool(payload.get("isClosedShadow", False)),
            visible_text=payload.get("visibleText"),
            coordinates=coordinates,
            page_url=payload.get("pageUrl"),
            context_hints=ContextHints.from_dict(payload.get("contextHints")),
            recorded_via=payload.get("recordedVia") or ("vision" if payload.get("visionCapture") else "dom"),
        )


@dataclass(frozen=True)
class ConditionalConfig:
    search_terms: tuple[str, ...] = ("Allow", "Keep")
    idle_timeout_s: float = 120.0
    poll_interval_ms: int = 1000

    def to_dict(self) -> dict[str, Any]:
        return {
            "searchTerms": list(self.search_terms),
            "timeoutSeconds": self.idle_timeout_s,
            "pollIntervalMs": self.poll_interval_ms,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any] | None) -> "ConditionalConfig":
        payload = _object(payload or {}, "conditional")
        defaults = cls()
        terms = _sequence(payload.get("searchTerms") or defaults.search_terms, "searchTerms")
        return cls(
            search_terms=tuple(str(term) for term in terms),
            idle_timeout_s=_number(payload.get("timeoutSeconds", defaults.idle_timeout_s), "timeoutSeconds"),
            poll_interval_ms=int(_number(payload.get("pollIntervalMs", defaults.poll_interval_ms), "pollIntervalMs")),
        )


@dataclass(frozen=True)
class Step:
    event: StepEvent
    xpath: str = ""
    value: str | None = None
    label: str | None = None
    bundle: Bundle | None = None
    x: float | None = None
    y: float | None = None
    timestamp: float = field(default_factory=time.time)
    page_url: str | None = None
    conditional: ConditionalConfig | None = None

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "event": self.event.value,
            "xpath": self.xpath,
            "value": self.value,
            "label": self.label,
            "bundle": self.bundle.to_dict() if self.bundle else None,
            "x": self.x,
            "y": self.y,
            "timestamp": self.timestamp,
            "page": self.page_url,
            "conditional": self.conditional.to_dict() if self.conditional else None,
        }
        return {key: value for key, value in payload.items() if value is not None}

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "Step":
        if not isinstance(payload, dict):
            raise ValueError("Step payload must be an object")
        event = parse_event(payload.get("event") or payload.get("eventType") or "")
        bundle_payload = payload.get("bundle")
        conditional_payload = payload.get("conditional") or payload.get("config")
        x, y = payload.get("x"), payload.get("y")
        value = payload.get("value")
        return cls(
            event=event,
            xpath=payload.get("xpath") or "",
            value=str(value) if value is not None else None,
            label=payload.get("label"),
            bundle=Bundle.from_dict(bundle_payload) if bundle_payload else None,
            x=_number(x, "x") if x is not None else None,
            y=_number(y, "y") if y is not None else None,
            timestamp=_number(payload.get("timestamp") or time.time(), "timestamp"),
            page_url=payload.get("page") or payload.get("pageUrl"),
            conditional=(
                ConditionalConfig.from_dict(conditional_payload)
                if event == StepEvent.CONDITIONAL
                else None
            ),
        )


@dataclass(frozen=True)
class Action:
    type: ActionType
    value: str | None = None

    @classmethod
    def from_step(cls, step: Step) -> "Action":
        if step.event not in (StepEvent.CLICK, StepEvent.INPUT, StepEvent.ENTER):
            raise ValueError(f"Step event {step.event.value!r} has no element action")
        return cls(type=ActionType(step.event.value), value=step.value)


@dataclass
class Resolution:
    node: "DomNode"
    strategy: str
    score: float = 1.0
    low_confidence: bool = False
    warnings: list[str] = field(default_factory=list)


@dataclass
class ActionOutcome:
    success: bool
    technique: str | None = None
    attempts: list[str] = field(default_factory=list)
    failure_code: FailureCode | None = None


@dataclass
class PollResult:
    clicks: int
    timed_out: bool
    polls: int = 0
    elapsed_s: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "clicks": self.clicks,
            "timedOut": self.timed_out,
            "polls": self.polls,
            "elapsedSeconds": round(self.elapsed_s, 3),
        }


@dataclass
class StepResult:
    success: bool
    failure_code: FailureCode | None = None
    label: str | None = None
    strategy: str | None = None
    technique: str | None = None
    elapsed_ms: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "failure_code": self.failure_code.value if self.failure_code else None,
            "label": self.label,
            "strategy": self.strategy,
            "technique": self.technique,
            "elapsed_ms": round(self.elapsed_ms, 1),
            "metadata": self.metadata,
        }
