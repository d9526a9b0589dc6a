from __future__ import annotations

import logging
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, is_dataclass
from typing import Any

from .utils import utc_now_iso

logger = logging.getLogger(__name__)

EVENT_NAMES = ("progress", "output", "status", "done", "error", "log", "cancelled")

Listener = Callable[[Any], None]


class EventEmitter:
    """Typed publish/subscribe channel; listeners run synchronously in emit order."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[Listener]] = {}

    def on(self, event: str, listener: Listener) -> Callable[[], None]:
        if event not in EVENT_NAMES:
            raise ValueError(f"Unknown event: {event}")
        self._listeners.setdefault(event, []).append(listener)
        return lambda: self.off(event, listener)

    def off(self, event: str, listener: Listener) -> None:
        listeners = self._listeners.get(event)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def remove_all_listeners(self) -> None:
        self._listeners.clear()

    def emit(self, event: str, payload: Any) -> None:
        for listener in list(self._listeners.get(event, ())):
            try:
                listener(payload)
            except Exception:
                logger.exception("Event listener failed event=%s", event)


class EventJournal:
    """Bounded in-memory record of runner events, read by the SSE stream."""

    def __init__(self, max_events: int = 2000):
        self._lock = threading.Lock()
        self._events: deque[dict[str, Any]] = deque(maxlen=max(1, max_events))
        self._next_id = 1

    def attach(self, runner_name: str, emitter: EventEmitter) -> list[Callable[[], None]]:
        unsubscribers: list[Callable[[], None]] = []
        for event in EVENT_NAMES:
            unsubscribers.append(
                emitter.on(event, lambda payload, _event=event: self.record(runner_name, _event, payload))
            )
        return unsubscribers

    def record(self, runner_name: str, event: str, payload: Any) -> dict[str, Any]:
        data = asdict(payload) if is_dataclass(payload) else payload
        with self._lock:
            entry = {
                "id": self._next_id,
                "type": event,
                "runner": runner_name,
                "created_at": utc_now_iso(),
                "data": data,
            }
            self._next_id += 1
            self._events.append(entry)
        return entry

    def list_events(self, *, after_id: int = 0, limit: int = 200) -> list[dict[str, Any]]:
        with self._lock:
            items = [entry for entry in self._events if entry["id"] > after_id]
        return items[:limit]

    @property
    def last_id(self) -> int:
        with self._lock:
            return self._next_id - 1
