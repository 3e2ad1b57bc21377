"""Forward extraction events to a transport such as an IPC bridge."""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from events.emitter import ProgressEventEmitter

logger = logging.getLogger(__name__)

Transport = Callable[[str, dict[str, Any]], None]


class EventForwarder:
    """
    Relay every event to ``send(channel, payload)``.

    Channels are the event name with a prefix, e.g. ``linkedin:progress``.
    """

    def __init__(
        self,
        emitter: ProgressEventEmitter,
        send: Transport,
        channel_prefix: str = "linkedin:",
    ) -> None:
        self.emitter = emitter
        self.send = send
        self.channel_prefix = channel_prefix
        self._unsubscribe: Callable[[], None] | None = None

    def attach(self) -> "EventForwarder":
        """Start forwarding. Attaching twice keeps a single subscription."""
        if self._unsubscribe is None:
            self._unsubscribe = self.emitter.subscribe_all(self._forward)
        return self

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    def _forward(self, event_name: str, payload: dict[str, Any]) -> None:
        channel = f"{self.channel_prefix}{event_name}"
        if event_name == "progress":
            logger.debug(
                "Event %s: %s/%s (%s%%)",
                event_name,
                payload.get("current"),
                payload.get("total"),
                payload.get("percentage"),
            )
        else:
            logger.debug("Event %s: %s", event_name, json.dumps(payload, default=str)[:500])
        self.send(channel, payload)
