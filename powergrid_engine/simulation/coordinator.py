"""
GridCoordinator — fixed-interval tick over the whole power subsystem.

Composes the PowerGridManager facade with the consumption throttle, the
brownout model, the stability analyzer and the reactive glue.  Callers feed
elapsed time through ``update(dt)``; a tick runs once the accumulated time
reaches the tick interval (100 ms by default, never below 16 ms), so the BFS
cost is bounded independently of the caller's frame rate.

Per-tick protocol (strict order):
  1. Advance time-decayed state (cascade durations, blackout timers).
  2. Topology rebuild → flow distribution → cascade re-evaluation.
  3. Consumer throttle and brownout tiers / emergency reserves.
  4. Stability refresh for every faction.
  5. Post-tick hooks.

Integration hooks:
  resource_callback(faction, cost_map) -> bool   veto construction
  production_callback(district, faction, mult)   blackout / restore transitions
  on_district_captured(district, new_faction)    territory system notification
  set_daylight_multiplier(value)                 day/night system
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core.events import EventBus
from ..core.grid_params import GridParams
from ..core.ids import INVALID_ID
from ..systems.brownout import BrownoutModel, BrownoutState, DistrictPriority, RedundancyReport, assess_redundancy
from ..systems.consumption import ConsumerKind, ConsumerManager
from ..systems.stability import StabilityAnalyzer, StabilitySnapshot
from .grid_manager import PowerGridManager, ResourceCallback
from .reactive import InfrastructureResponder, ProductionCallback

logger = logging.getLogger("powergrid_engine.simulation.coordinator")

# Hook signature: hook(coordinator) -> None, called after every tick
TickHook = Callable[["GridCoordinator"], None]


class GridCoordinator:
    """Owns every power subsystem and drives them at a fixed interval.

    Attributes:
        params:     Grid parameters.
        grid:       Facade over topology, flow and cascades.
        consumers:  Generic consumer registry.
        brownout:   Four-tier brownout model.
        stability:  Per-faction stability analyzer.
        responder:  Reactive glue (income multipliers, paused consumers, event log).
        tick_count: Ticks executed so far.
    """

    def __init__(
        self,
        params: Optional[GridParams] = None,
        tick_interval_ms: Optional[float] = None,
        resource_callback: Optional[ResourceCallback] = None,
        production_callback: Optional[ProductionCallback] = None,
    ) -> None:
        self.params: GridParams = params or GridParams()
        self.bus = EventBus()
        self.grid = PowerGridManager(self.params, self.bus, resource_callback)
        self.consumers = ConsumerManager(self.params)
        self.brownout = BrownoutModel(self.params)
        self.stability = StabilityAnalyzer(self.params, self.bus)
        self.responder = InfrastructureResponder(self.grid, self.consumers, production_callback)

        self._tick_interval = self.params.tick_interval_seconds
        if tick_interval_ms is not None:
            self.set_tick_interval(tick_interval_ms)
        self._accumulator = 0.0
        self.tick_count = 0
        self._post_tick_hooks: List[TickHook] = []

    # ------------------------------------------------------------------ #
    # Scheduling                                                           #
    # ------------------------------------------------------------------ #

    @property
    def tick_interval(self) -> float:
        """Tick interval in seconds."""
        return self._tick_interval

    def set_tick_interval(self, interval_ms: float) -> float:
        """Set the interval (floored at the minimum).  Returns the effective ms."""
        effective = max(float(interval_ms), self.params.min_tick_interval_ms)
        self._tick_interval = effective / 1000.0
        return effective

    def register_post_tick_hook(self, hook: TickHook) -> None:
        self._post_tick_hooks.append(hook)

    def update(self, dt: float) -> bool:
        """Accumulate ``dt`` seconds; run at most one tick.  Returns True if it ran."""
        if dt > 0.0:
            self._accumulator += dt
        if self._accumulator < self._tick_interval:
            return False
        elapsed = self._accumulator
        self._accumulator = 0.0
        self.tick(elapsed)
        return True

    def tick(self, dt: Optional[float] = None) -> None:
        """Run one full tick covering ``dt`` seconds (default: one interval)."""
        dt = self._tick_interval if dt is None else max(0.0, float(dt))
        self.grid.advance(dt)
        self.stability.time = self.grid.time
        self.grid.recalculate()

        changed = self.consumers.update(self.grid)
        if changed:
            logger.debug(f"Tick {self.tick_count}: {len(changed)} consumer(s) changed multiplier")
        self.brownout.update(self.grid.topology, dt)

        for faction in self.grid.factions():
            self.stability.refresh(self.grid.get_faction_status(faction))

        self.tick_count += 1
        for hook in self._post_tick_hooks:
            hook(self)

    # ------------------------------------------------------------------ #
    # Integration hooks                                                    #
    # ------------------------------------------------------------------ #

    def set_resource_callback(self, callback: Optional[ResourceCallback]) -> None:
        self.grid.resource_callback = callback

    def set_production_callback(self, callback: Optional[ProductionCallback]) -> None:
        self.responder.production_callback = callback

    def on_district_captured(self, district_id: int, new_faction: int) -> bool:
        """Territory system notification: reassign district and its consumers."""
        if not self.grid.capture_district(district_id, new_faction):
            return False
        moved = self.consumers.reassign_district(district_id, new_faction)
        if moved:
            logger.info(f"{len(moved)} consumer(s) in district {district_id} now serve faction {new_faction}")
        return True

    def set_daylight_multiplier(self, multiplier: float) -> bool:
        return self.grid.set_daylight_multiplier(multiplier)

    # ------------------------------------------------------------------ #
    # Construction passthrough                                             #
    # ------------------------------------------------------------------ #

    def create_solar_plant(self, faction: int, position: Tuple[float, float] = (0.0, 0.0)) -> int:
        return self.grid.create_solar_plant(faction, position)

    def create_fusion_plant(self, faction: int, position: Tuple[float, float] = (0.0, 0.0)) -> int:
        return self.grid.create_fusion_plant(faction, position)

    def create_power_line(self, generator_id: int, district_id: int, capacity: Optional[float] = None) -> int:
        return self.grid.create_power_line(generator_id, district_id, capacity)

    def create_district(
        self,
        faction: int,
        demand: float,
        position: Tuple[float, float] = (0.0, 0.0),
        priority: DistrictPriority = DistrictPriority.NORMAL,
    ) -> int:
        did = self.grid.create_district(faction, demand, position)
        if did != INVALID_ID:
            self.brownout.set_priority(did, priority)
        return did

    def add_consumer(
        self,
        faction: int,
        kind: ConsumerKind,
        district_id: Optional[int] = None,
        power_requirement: Optional[float] = None,
    ) -> int:
        if district_id is not None and self.grid.topology.get_district(district_id) is None:
            logger.warning(f"Consumer not added: unknown district {district_id}")
            return INVALID_ID
        return self.consumers.add(faction, kind, district_id, power_requirement)

    # ------------------------------------------------------------------ #
    # Queries                                                              #
    # ------------------------------------------------------------------ #

    def get_stability(self, faction: int) -> StabilitySnapshot:
        """Current snapshot (refreshed on demand if the faction was never scored)."""
        snapshot = self.stability.snapshot(faction)
        if snapshot is None or self.grid.stale:
            snapshot = self.stability.refresh(self.grid.get_faction_status(faction))
        return snapshot

    def get_redundancy(self, faction: int) -> RedundancyReport:
        return assess_redundancy(self.grid.get_faction_status(faction), self.params)

    def get_brownout_state(self, district_id: int) -> Optional[BrownoutState]:
        return self.brownout.state(district_id)

    def balance_load(self, faction: int) -> Dict[int, float]:
        return self.brownout.balance_faction(self.grid.topology, self.grid.get_faction_status(faction))

    def income_multiplier(self, district_id: int) -> float:
        return self.responder.income_multiplier(district_id)

    def faction_report(self, faction: int) -> Dict[str, Any]:
        """Flat per-faction summary used by the recorder and the CLI."""
        status = self.grid.get_faction_status(faction)
        snapshot = self.get_stability(faction)
        report = status.to_dict()
        report.update({
            "stability": snapshot.score,
            "risk": snapshot.risk.name,
            "vulnerabilities": [v.kind for v in snapshot.vulnerabilities],
            "recommendations": list(snapshot.recommendations),
            "redundancy": self.get_redundancy(faction).to_dict(),
            "tiers": self.brownout.tier_counts(self.grid.topology, faction),
            "cascades": self.grid.cascades.active_count(faction),
            "production_multiplier": self.consumers.faction_multiplier(faction),
        })
        return report

    # ------------------------------------------------------------------ #
    # Persistence                                                          #
    # ------------------------------------------------------------------ #

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tick_count": self.tick_count,
            "tick_interval_ms": self._tick_interval * 1000.0,
            "grid": self.grid.to_dict(),
            "consumers": self.consumers.to_dict(),
            "brownout": self.brownout.to_dict(),
            "stability": self.stability.to_dict(),
            "responder": self.responder.to_dict(),
        }

    def load_dict(self, data: Dict[str, Any]) -> None:
        self.tick_count = int(data.get("tick_count", 0))
        self.set_tick_interval(float(data.get("tick_interval_ms", self.params.tick_interval_ms)))
        self._accumulator = 0.0
        self.grid.load_dict(data.get("grid") or {})
        self.consumers.load_dict(data.get("consumers") or {})
        self.brownout.load_dict(data.get("brownout") or {})
        self.stability.load_dict(data.get("stability") or {})
        self.responder.load_dict(data.get("responder") or {})

    @classmethod
    def from_dict(cls, data: Dict[str, Any], params: Optional[GridParams] = None) -> "GridCoordinator":
        coordinator = cls(params)
        coordinator.load_dict(data)
        return coordinator
