"""
Progress event emitter for extraction runs.

A single producer (the orchestrator) publishes a closed vocabulary of events to
any number of subscribers. Each subscriber sees events in the exact order they
were produced. The listener list is copied at emit time, so subscribing or
unsubscribing from inside a handler never skips or repeats another listener
for the dispatch in progress.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable

from orchestration.errors import ValidationError

logger = logging.getLogger(__name__)

EVENT_NAMES: tuple[str, ...] = (
    "started",
    "progress",
    "batch-started",
    "batch-completed",
    "paused",
    "resumed",
    "completed",
    "error",
    "cancelled",
    "cv-download-started",
    "cv-download-progress",
    "cv-download-completed",
    "cv-download-error",
)

TERMINAL_EVENTS = frozenset({"completed", "error", "cancelled"})

EventHandler = Callable[[dict[str, Any]], None]
WildcardHandler = Callable[[str, dict[str, Any]], None]


class _Subscription:
    __slots__ = ("event_name", "handler")

    def __init__(self, event_name: str | None, handler: Callable[..., None]) -> None:
        self.event_name = event_name
        self.handler = handler


class ProgressEventEmitter:
    """Publish ordered lifecycle events to subscribers."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[_Subscription]] = {name: [] for name in EVENT_NAMES}
        self._wildcard: list[_Subscription] = []
        self._registry_lock = threading.Lock()
        # Held for a whole dispatch so concurrent emits cannot interleave.
        self._dispatch_lock = threading.RLock()

    @staticmethod
    def validate_event_name(event_name: str) -> str:
        if event_name not in EVENT_NAMES:
            raise ValidationError(
                f"Unknown event '{event_name}'. Expected one of: {', '.join(EVENT_NAMES)}"
            )
        return event_name

    def subscribe(self, event_name: str, handler: EventHandler) -> Callable[[], None]:
        """
        Register a handler for one event.

        Args:
            event_name: One of EVENT_NAMES
            handler: Called with the event payload dict

        Returns:
            A function that removes this subscription (safe to call twice)
        """
        self.validate_event_name(event_name)
        if not callable(handler):
            raise ValidationError("Event handler must be callable")

        subscription = _Subscription(event_name, handler)
        with self._registry_lock:
            self._listeners[event_name].append(subscription)
        return lambda: self._remove(subscription)

    def subscribe_all(self, handler: WildcardHandler) -> Callable[[], None]:
        """Register a handler called as handler(event_name, payload) for every event."""
        if not callable(handler):
            raise ValidationError("Event handler must be callable")

        subscription = _Subscription(None, handler)
        with self._registry_lock:
            self._wildcard.append(subscription)
        return lambda: self._remove(subscription)

    def _remove(self, subscription: _Subscription) -> None:
        with self._registry_lock:
            bucket = (
                self._wildcard
                if subscription.event_name is None
                else self._listeners[subscription.event_name]
            )
            if subscription in bucket:
                bucket.remove(subscription)

    def listener_count(self, event_name: str | None = None) -> int:
        with self._registry_lock:
            if event_name is None:
                return sum(len(subs) for subs in self._listeners.values()) + len(self._wildcard)
            self.validate_event_name(event_name)
            return len(self._listeners[event_name])

    def emit(self, event_name: str, payload: dict[str, Any]) -> None:
        """Deliver one event to every listener registered when the call starts."""
        self.validate_event_name(event_name)
        with self._dispatch_lock:
            with self._registry_lock:
                targeted = list(self._listeners[event_name])
                wildcard = list(self._wildcard)

            for subscription in targeted:
                self._invoke(subscription, event_name, (payload,))
            for subscription in wildcard:
                self._invoke(subscription, event_name, (event_name, payload))

    def _invoke(self, subscription: _Subscription, event_name: str, args: tuple) -> None:
        # A listener removed earlier in this same dispatch was still registered when
        # the dispatch began; it is delivered exactly once, like everyone else.
        try:
            subscription.handler(*args)
        except Exception:
            logger.exception("Listener for '%s' raised; continuing dispatch", event_name)

    def clear(self) -> None:
        with self._registry_lock:
            for subscriptions in self._listeners.values():
                subscriptions.clear()
            self._wildcard.clear()
