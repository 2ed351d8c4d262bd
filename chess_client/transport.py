"""
Transport seam between the room client and whatever carries its events.

The client only needs "emit event" and "register a handler for event"; any
object with emit/on/off works. EventChannel is the JSON-over-websocket flavour:
each frame is one object {"type": <event>, ...payload}, sent through a plain
`send(text)` callable and fed back in with dispatch_text().
"""
from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Callable, Optional, Protocol

log = logging.getLogger("transport")

Handler = Callable[[dict], Any]


class Transport(Protocol):
    def emit(self, event: str, payload: Optional[dict] = None) -> None: ...

    def on(self, event: str, handler: Handler) -> None: ...

    def off(self, event: str) -> None: ...


class EventChannel:
    def __init__(self, send: Callable[[str], Any]) -> None:
        self._send = send
        self._handlers: dict[str, Handler] = {}

    def emit(self, event: str, payload: Optional[dict] = None) -> None:
        self._send(json.dumps({"type": event, **(payload or {})}))

    def on(self, event: str, handler: Handler) -> None:
        self._handlers[event] = handler

    def off(self, event: str) -> None:
        self._handlers.pop(event, None)

    def dispatch(self, frame: Mapping) -> bool:
        """Route one decoded frame to its handler; False if nobody listens."""
        event = frame.get("type")
        handler = self._handlers.get(event)
        if handler is None:
            log.debug("No handler for %r frame", event)
            return False
        handler({k: v for k, v in frame.items() if k != "type"})
        return True

    def dispatch_text(self, text: str) -> bool:
        try:
            frame = json.loads(text)
        except ValueError:
            log.debug("Dropping undecodable frame: %.80s", text)
            return False
        if not isinstance(frame, dict):
            log.debug("Dropping non-object frame: %.80s", text)
            return False
        return self.dispatch(frame)
