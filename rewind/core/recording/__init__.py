"""Recording side: boundary chains, labels, bundles and sessions."""

from rewind.core.recording.boundary import BoundaryChain, descend, trace_boundaries
from rewind.core.recording.bundle import capture_interaction
from rewind.core.recording.labels import LabelCounter, LabelResolver, normalize_label
from rewind.core.recording.recorder import PageRecorder
from rewind.core.recording.session import RecordingSession

__all__ = [
    "BoundaryChain",
    "LabelCounter",
    "LabelResolver",
    "PageRecorder",
    "RecordingSession",
    "capture_interaction",
    "descend",
    "normalize_label",
    "trace_boundaries",
]
