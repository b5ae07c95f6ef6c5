"""
Grid event channel.

All broadcast-style notifications (destruction, blackout, cascade, stability)
travel through one ``EventBus``.  Subscribers are invoked synchronously in
subscription order.  Events published while a dispatch is already running are
queued and delivered after the current event has reached every subscriber, so
propagation order is strictly FIFO regardless of re-entrancy.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Any, Callable, Deque, Dict, List, Optional, Set, Tuple

logger = logging.getLogger("powergrid_engine.core.events")


@unique
class GridEventType(Enum):
    """Every notification the grid core can emit."""

    GENERATOR_CREATED = "generator_created"
    GENERATOR_DESTROYED = "generator_destroyed"
    GENERATOR_RESTORED = "generator_restored"
    GENERATOR_REMOVED = "generator_removed"
    LINE_CREATED = "line_created"
    LINE_DESTROYED = "line_destroyed"
    LINE_RESTORED = "line_restored"
    LINE_REMOVED = "line_removed"
    DISTRICT_CREATED = "district_created"
    DISTRICT_REMOVED = "district_removed"
    DISTRICT_BLACKOUT = "district_blackout"
    DISTRICT_RESTORED = "district_restored"
    DISTRICT_CAPTURED = "district_captured"
    CASCADE_STARTED = "cascade_started"
    CASCADE_UPDATED = "cascade_updated"
    CASCADE_RESOLVED = "cascade_resolved"
    STABILITY_CHANGED = "stability_changed"
    STABILITY_ALERT = "stability_alert"
    NETWORK_RECALCULATED = "network_recalculated"
    CONSUMER_PAUSED = "consumer_paused"
    CONSUMER_RESUMED = "consumer_resumed"
    CONSTRUCTION_REJECTED = "construction_rejected"


# Event kinds the reactive layer records in its diagnostic ring buffer.
INFRASTRUCTURE_EVENTS: Set[GridEventType] = {
    GridEventType.GENERATOR_DESTROYED,
    GridEventType.GENERATOR_RESTORED,
    GridEventType.LINE_DESTROYED,
    GridEventType.LINE_RESTORED,
    GridEventType.DISTRICT_BLACKOUT,
    GridEventType.DISTRICT_RESTORED,
    GridEventType.DISTRICT_CAPTURED,
    GridEventType.CASCADE_STARTED,
    GridEventType.CASCADE_RESOLVED,
}


@dataclass(frozen=True)
class GridEvent:
    """One notification on the grid channel.

    Attributes:
        type:      What happened.
        time:      Simulation time (seconds) at publication.
        entity_id: Id of the generator/line/district concerned (-1 if none).
        faction:   Owning faction of the entity (-1 if not applicable).
        data:      Free-form payload (affected districts, old/new values, …).
    """

    type: GridEventType
    time: float = 0.0
    entity_id: int = -1
    faction: int = -1
    data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "time": self.time,
            "entity_id": self.entity_id,
            "faction": self.faction,
            "data": dict(self.data),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Optional["GridEvent"]:
        try:
            event_type = GridEventType(data.get("type"))
        except ValueError:
            return None
        return cls(
            type=event_type,
            time=float(data.get("time", 0.0)),
            entity_id=int(data.get("entity_id", -1)),
            faction=int(data.get("faction", -1)),
            data=dict(data.get("data", {})),
        )


EventHandler = Callable[[GridEvent], None]


class EventBus:
    """Single ordered notification channel.

    Handlers may subscribe to specific event types or to everything
    (``types=None``).  Dispatch order is: events in publication order, and for
    each event, handlers in subscription order.
    """

    def __init__(self) -> None:
        self._handlers: List[Tuple[Optional[Set[GridEventType]], EventHandler]] = []
        self._queue: Deque[GridEvent] = deque()
        self._dispatching = False
        self._published = 0

    def subscribe(
        self,
        handler: EventHandler,
        types: Optional[Set[GridEventType]] = None,
    ) -> None:
        """Register ``handler`` for ``types`` (all event types if None)."""
        self._handlers.append((set(types) if types is not None else None, handler))

    def unsubscribe(self, handler: EventHandler) -> bool:
        before = len(self._handlers)
        self._handlers = [(t, h) for (t, h) in self._handlers if h is not handler]
        return len(self._handlers) != before

    def publish(self, event: GridEvent) -> None:
        """Queue ``event`` and drain the queue unless already draining."""
        self._queue.append(event)
        self._published += 1
        if self._dispatching:
            return
        self._dispatching = True
        try:
            while self._queue:
                current = self._queue.popleft()
                for types, handler in list(self._handlers):
                    if types is None or current.type in types:
                        handler(current)
        finally:
            # A raising handler abandons whatever was still queued
            self._queue.clear()
            self._dispatching = False

    @property
    def published_count(self) -> int:
        """Total events published since construction."""
        return self._published

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)
