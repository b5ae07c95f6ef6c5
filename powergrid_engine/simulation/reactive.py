"""
Reactive glue between the grid and the production side of the simulation.

InfrastructureResponder listens on the grid event channel:

  GENERATOR/LINE_DESTROYED  bring the grid current, record affected districts
  DISTRICT_BLACKOUT         income multiplier → 0.5, factory consumers paused
  DISTRICT_RESTORED         income multiplier → 1.0, factory consumers resumed

Every infrastructure event is appended to a bounded ring buffer (100 entries
by default) for diagnostics.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Set

from ..core.events import INFRASTRUCTURE_EVENTS, GridEvent, GridEventType
from ..core.ids import ConsumerId, DistrictId
from ..systems.consumption import ConsumerKind, ConsumerManager
from .grid_manager import PowerGridManager

logger = logging.getLogger("powergrid_engine.simulation.reactive")

# production_callback(district_id, faction, income_multiplier)
ProductionCallback = Callable[[int, int, float], None]

_BLACKOUT_INCOME = 0.5


class InfrastructureResponder:
    """Income multipliers, paused consumers and the infrastructure event log."""

    def __init__(
        self,
        grid: PowerGridManager,
        consumers: ConsumerManager,
        production_callback: Optional[ProductionCallback] = None,
        log_size: Optional[int] = None,
    ) -> None:
        self.grid = grid
        self.consumers = consumers
        self.production_callback: Optional[ProductionCallback] = production_callback
        self._income: Dict[DistrictId, float] = {}
        self._paused: Set[ConsumerId] = set()
        self._log: Deque[GridEvent] = deque(maxlen=log_size or grid.params.event_log_size)
        self._handlers: Dict[GridEventType, Callable[[GridEvent], None]] = {
            GridEventType.GENERATOR_DESTROYED: self._on_destroyed,
            GridEventType.LINE_DESTROYED: self._on_destroyed,
            GridEventType.DISTRICT_BLACKOUT: self._on_blackout,
            GridEventType.DISTRICT_RESTORED: self._on_restored,
            GridEventType.DISTRICT_REMOVED: self._on_removed,
        }
        grid.bus.subscribe(self.handle)

    # ------------------------------------------------------------------ #
    # Dispatch                                                             #
    # ------------------------------------------------------------------ #

    def handle(self, event: GridEvent) -> None:
        if event.type in INFRASTRUCTURE_EVENTS:
            self._log.append(event)
        handler = self._handlers.get(event.type)
        if handler is not None:
            handler(event)

    def _on_destroyed(self, event: GridEvent) -> None:
        self.grid.ensure_current()
        affected = event.data.get("affected_districts", [])
        dark = [d for d in affected if self.grid.is_district_in_blackout(d)]
        logger.info(
            f"{event.type.value}: entity {event.entity_id} "
            f"affected {len(affected)} district(s), {len(dark)} dark"
        )

    def _on_blackout(self, event: GridEvent) -> None:
        did = DistrictId(event.entity_id)
        self._income[did] = _BLACKOUT_INCOME
        for consumer in self.consumers.in_district(did):
            if consumer.kind is ConsumerKind.FACTORY and not consumer.paused:
                consumer.paused = True
                self._paused.add(consumer.id)
                self.grid.bus.publish(GridEvent(
                    type=GridEventType.CONSUMER_PAUSED,
                    time=event.time,
                    entity_id=int(consumer.id),
                    faction=consumer.faction,
                    data={"district_id": int(did)},
                ))
        self._notify_production(did, event.faction, _BLACKOUT_INCOME)

    def _on_restored(self, event: GridEvent) -> None:
        did = DistrictId(event.entity_id)
        self._income[did] = 1.0
        self._resume_district(did, event.time)
        self._notify_production(did, event.faction, 1.0)

    def _on_removed(self, event: GridEvent) -> None:
        did = DistrictId(event.entity_id)
        self._resume_district(did, event.time)
        self._income.pop(did, None)
        self.consumers.detach_district(did)

    def _resume_district(self, district_id: DistrictId, time: float) -> None:
        for consumer in self.consumers.in_district(district_id):
            if consumer.paused:
                consumer.paused = False
                self._paused.discard(consumer.id)
                self.grid.bus.publish(GridEvent(
                    type=GridEventType.CONSUMER_RESUMED,
                    time=time,
                    entity_id=int(consumer.id),
                    faction=consumer.faction,
                    data={"district_id": int(district_id)},
                ))

    def _notify_production(self, district_id: DistrictId, faction: int, multiplier: float) -> None:
        if self.production_callback is not None:
            self.production_callback(int(district_id), faction, multiplier)

    # ------------------------------------------------------------------ #
    # Queries                                                              #
    # ------------------------------------------------------------------ #

    def income_multiplier(self, district_id: int) -> float:
        return self._income.get(district_id, 1.0)

    def paused_consumers(self) -> List[ConsumerId]:
        return sorted(self._paused)

    def is_paused(self, consumer_id: int) -> bool:
        return consumer_id in self._paused

    def recent_events(self, limit: Optional[int] = None) -> List[GridEvent]:
        events = list(self._log)
        return events if limit is None else events[-limit:]

    def clear_log(self) -> None:
        self._log.clear()

    # ------------------------------------------------------------------ #
    # Persistence                                                          #
    # ------------------------------------------------------------------ #

    def to_dict(self) -> Dict[str, Any]:
        return {
            "income": {str(int(k)): v for k, v in self._income.items()},
            "paused": [int(c) for c in sorted(self._paused)],
            "events": [e.to_dict() for e in self._log],
        }

    def load_dict(self, data: Dict[str, Any]) -> None:
        self._income = {}
        for key, value in (data.get("income") or {}).items():
            try:
                self._income[DistrictId(int(key))] = float(value)
            except (TypeError, ValueError):
                continue
        self._paused = set()
        for cid in data.get("paused") or []:
            consumer = self.consumers.get(int(cid))
            if consumer is not None:
                consumer.paused = True
                self._paused.add(consumer.id)
        self._log.clear()
        for ed in data.get("events") or []:
            event = GridEvent.from_dict(ed)
            if event is not None:
                self._log.append(event)
