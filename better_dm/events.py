"""Event notifications for campaign state changes.

The orchestrator emits events; UI collaborators subscribe. Delivery is
fire-and-forget: handlers are called synchronously on emit() and a failing
handler is logged, never propagated.

Usage:
    bus = EventBus()
    bus.on(EventType.SCENE_COMPLETE, handler)
    bus.emit(EventType.SCENE_COMPLETE, chapter=0, scene=1)
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from better_dm.models import now_ms

logger = logging.getLogger(__name__)


class EventType(Enum):
    CAMPAIGN_STARTED = "campaign_started"
    SCENE_COMPLETE = "scene_complete"
    CHAPTER_ADVANCE = "chapter_advance"
    CAMPAIGN_COMPLETE = "campaign_complete"
    EMERGENCY_MODE = "emergency_mode"


@dataclass
class GameEvent:
    type: EventType
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: int = field(default_factory=now_ms)

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type.value, "data": self.data, "timestamp": self.timestamp}


EventHandler = Callable[[GameEvent], None]


class EventBus:
    """Synchronous publish/subscribe with a bounded history."""

    def __init__(self, history_limit: int = 100) -> None:
        self._listeners: dict[EventType, list[EventHandler]] = {}
        self._any: list[EventHandler] = []
        self._history: list[GameEvent] = []
        self._history_limit = history_limit

    def on(self, event_type: EventType | None, handler: EventHandler) -> None:
        """Subscribe to one event type, or to every event when type is None."""
        handlers = self._any if event_type is None else self._listeners.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)

    def off(self, event_type: EventType | None, handler: EventHandler) -> None:
        handlers = self._any if event_type is None else self._listeners.get(event_type, [])
        if handler in handlers:
            handlers.remove(handler)

    def emit(self, event_type: EventType, **data: Any) -> GameEvent:
        event = GameEvent(type=event_type, data=data)

        self._history.append(event)
        if len(self._history) > self._history_limit:
            self._history = self._history[-self._history_limit:]

        for handler in [*self._listeners.get(event_type, []), *self._any]:
            try:
                handler(event)
            except Exception:
                logger.exception("Event handler failed for %s", event_type.value)
        return event

    def history(self, event_type: EventType | None = None) -> list[GameEvent]:
        if event_type is None:
            return list(self._history)
        return [e for e in self._history if e.type == event_type]

    def clear(self) -> None:
        self._listeners.clear()
        self._any.clear()
