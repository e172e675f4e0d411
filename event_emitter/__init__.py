"""In-process publish/subscribe emitter."""

from event_emitter.config import EmitterConfig
from event_emitter.diagnostics import CancelledWaiter, DiagnosticsLog
from event_emitter.emitter import WILDCARD, EventEmitter

__all__ = [
    "EmitterConfig",
    "CancelledWaiter",
    "DiagnosticsLog",
    "EventEmitter",
    "WILDCARD",
]
