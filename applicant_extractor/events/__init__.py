"""Event emission, payload standardization and forwarding for extraction runs."""

from .emitter import EVENT_NAMES, TERMINAL_EVENTS, ProgressEventEmitter
from .forwarding import EventForwarder

__all__ = [
    "EVENT_NAMES",
    "TERMINAL_EVENTS",
    "EventForwarder",
    "ProgressEventEmitter",
]
