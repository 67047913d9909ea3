"""In-process event bus with bounded event history.

Usage:
    history = EventHistory()
    bus = EventBus(history)
    bus.on("max_finger_peak_detected", lambda e: print(e.data["finger"]))
    bus.on("*", log_everything)
    bus.emit(Event(type="max_finger_peak_detected", data={...}, timestamp=now))

    if history.was_emitted_recently("max_finger_peak_detected", 500):
        ...
"""

from __future__ import annotations

import logging
import time
from collections import deque
from typing import Callable, Optional

from tap_engine.types import Event

logger = logging.getLogger("tap_engine.events")

WILDCARD = "*"

EventCallback = Callable[[Event], None]


def monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class EventHistory:
    """Bounded record of emitted events, oldest evicted first.

    Time-window queries compare event timestamps (ms) against ``now``, which
    defaults to the history's clock.
    """

    def __init__(self, max_size: int = 100, clock: Callable[[], float] = monotonic_ms):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self._clock = clock
        self._events: deque[Event] = deque(maxlen=max_size)

    def add(self, event: Event):
        self._events.append(event)

    def was_emitted_recently(
        self,
        event_type: str,
        window_ms: float,
        hand: Optional[str] = None,
        now: Optional[float] = None,
    ) -> bool:
        """True if an event of this type (and hand, if given) is within the window."""
        now = self._clock() if now is None else now
        for event in reversed(self._events):
            if event.type != event_type or now - event.timestamp > window_ms:
                continue
            if hand is not None and event.hand != hand:
                continue
            return True
        return False

    def get_recent_events(self, window_ms: float, now: Optional[float] = None) -> list[Event]:
        now = self._clock() if now is None else now
        return [e for e in self._events if now - e.timestamp <= window_ms]

    def get_events_by_type(
        self,
        event_type: str,
        window_ms: Optional[float] = None,
        now: Optional[float] = None,
    ) -> list[Event]:
        events = [e for e in self._events if e.type == event_type]
        if window_ms is None:
            return events
        now = self._clock() if now is None else now
        return [e for e in events if now - e.timestamp <= window_ms]

    def get_last_event(self, event_type: Optional[str] = None) -> Optional[Event]:
        for event in reversed(self._events):
            if event_type is None or event.type == event_type:
                return event
        return None

    def clear(self):
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self):
        return iter(list(self._events))


class EventBus:
    """Synchronous publish/subscribe bus.

    ``emit`` records the event in the history, then calls the listeners
    registered for its type, then the wildcard ``"*"`` listeners. Each
    listener list is snapshotted before iteration, so listeners may register,
    unregister or emit further events from inside a callback. A listener that
    raises is logged and skipped.
    """

    def __init__(self, history: Optional[EventHistory] = None):
        self.history = history if history is not None else EventHistory()
        self._listeners: dict[str, list[EventCallback]] = {}

    def emit(self, event: Event):
        self.history.add(event)
        self._dispatch(event.type, event)
        self._dispatch(WILDCARD, event)

    def on(self, event_type: str, callback: EventCallback):
        self._listeners.setdefault(event_type, []).append(callback)

    def off(self, event_type: str, callback: EventCallback):
        """Remove a listener. Accepts the original callback of a ``once``."""
        callbacks = self._listeners.get(event_type)
        if not callbacks:
            return
        for i, registered in enumerate(callbacks):
            if registered == callback or getattr(registered, "__wrapped__", None) == callback:
                del callbacks[i]
                return

    def once(self, event_type: str, callback: EventCallback):
        """Register a listener that fires for the next event only."""
        def wrapper(event: Event):
            self.off(event_type, wrapper)
            callback(event)

        wrapper.__wrapped__ = callback  # type: ignore[attr-defined]
        self.on(event_type, wrapper)

    def remove_all_listeners(self, event_type: Optional[str] = None):
        if event_type is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event_type, None)

    def listener_count(self, event_type: str) -> int:
        return len(self._listeners.get(event_type, []))

    def _dispatch(self, key: str, event: Event):
        for callback in list(self._listeners.get(key, ())):
            try:
                callback(event)
            except Exception:
                logger.exception("EventBus listener error on %s", event.type)
