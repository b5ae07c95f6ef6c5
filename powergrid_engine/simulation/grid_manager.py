"""
PowerGridManager — id-based facade over topology, flow and cascades.

The manager owns one TopologyBuilder and one CascadeTracker and is the only
object that mutates them.  Every mutating call bumps a version counter; the
per-faction status cache stores the version each entry was computed at and
recomputes only on mismatch, so nothing is ever recalculated speculatively.

Intra-recalculation order is fixed:

    topology rebuild → flow distribution → cascade re-evaluation → notifications

Destruction and repair recalculate immediately because they carry cascade side
effects.  Construction, demand changes, capture and daylight changes only mark
the grid stale; the next query (or scheduled tick) brings it up to date.

Unknown ids are tolerated everywhere: constructors return ``INVALID_ID``,
boolean actions return False and lookups return None.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core.district import BlackoutTransition
from ..core.events import EventBus, GridEvent, GridEventType
from ..core.flow import recalculate_all
from ..core.generator import GeneratorKind
from ..core.grid_params import GridParams
from ..core.ids import INVALID_ID, DistrictId, GeneratorId, LineId
from ..core.status import FactionPowerStatus, compute_faction_status
from ..core.topology import Network, TopologyBuilder
from ..systems.cascade import CascadeSeverity, CascadeTracker

logger = logging.getLogger("powergrid_engine.simulation.grid_manager")

# resource_callback(faction, cost_map) -> True to allow construction
ResourceCallback = Callable[[int, Dict[str, float]], bool]


class PowerGridManager:
    """Facade + cache for one simulation's power grid.

    Attributes:
        params:   Grid parameters.
        bus:      Event channel shared with downstream systems.
        topology: Registries and networks (owned).
        cascades: Cascade records (owned).
        time:     Accumulated simulation seconds.
    """

    def __init__(
        self,
        params: Optional[GridParams] = None,
        bus: Optional[EventBus] = None,
        resource_callback: Optional[ResourceCallback] = None,
    ) -> None:
        self.params: GridParams = params or GridParams()
        self.bus: EventBus = bus if bus is not None else EventBus()
        self.topology = TopologyBuilder(self.params)
        self.cascades = CascadeTracker(self.params, self.bus)
        self.resource_callback: Optional[ResourceCallback] = resource_callback
        self.time: float = 0.0
        self.daylight: float = self.params.default_daylight

        self._version = 0
        self._stale = True
        self._status_cache: Dict[int, Tuple[int, FactionPowerStatus]] = {}
        self.status_computations = 0
        self.recalculations = 0

    # ------------------------------------------------------------------ #
    # Versioning                                                           #
    # ------------------------------------------------------------------ #

    @property
    def version(self) -> int:
        return self._version

    @property
    def stale(self) -> bool:
        return self._stale or self.topology.dirty

    def _touch(self, topology_changed: bool = False) -> None:
        if topology_changed:
            self.topology.mark_dirty()
        self._stale = True
        self._version += 1

    def ensure_current(self) -> bool:
        """Recalculate if anything changed since the last pass."""
        if self.stale:
            self.recalculate()
            return True
        return False

    def _publish(
        self,
        event_type: GridEventType,
        entity_id: int = -1,
        faction: int = -1,
        **data: Any,
    ) -> None:
        self.bus.publish(
            GridEvent(type=event_type, time=self.time, entity_id=int(entity_id), faction=faction, data=data)
        )

    # ------------------------------------------------------------------ #
    # Recalculation                                                        #
    # ------------------------------------------------------------------ #

    def recalculate(self) -> List[Network]:
        """Rebuild networks, distribute power and re-evaluate cascades."""
        transitions = recalculate_all(self.topology, self.params)
        self.cascades.update_cascades(self.topology)
        self._stale = False
        self._version += 1
        self.recalculations += 1

        for did, transition in transitions:
            district = self.topology.districts[did]
            if transition is BlackoutTransition.STARTED:
                logger.info(
                    f"District {did} blacked out "
                    f"({district.current_power:.1f}/{district.demand:.1f})"
                )
                self._publish(
                    GridEventType.DISTRICT_BLACKOUT, did, district.owning_faction,
                    power=district.current_power, demand=district.demand,
                )
            elif transition is BlackoutTransition.ENDED:
                logger.info(f"District {did} power restored")
                self._publish(
                    GridEventType.DISTRICT_RESTORED, did, district.owning_faction,
                    power=district.current_power, demand=district.demand,
                )

        networks = self.topology.networks
        self._publish(GridEventType.NETWORK_RECALCULATED, networks=len(networks))
        return networks

    # ------------------------------------------------------------------ #
    # Construction                                                         #
    # ------------------------------------------------------------------ #

    def _authorize(self, faction: int, kind: str) -> bool:
        if self.resource_callback is None:
            return True
        cost = self.params.construction_cost(kind)
        if self.resource_callback(faction, cost):
            return True
        logger.warning(f"Construction of {kind} rejected for faction {faction}: insufficient resources")
        self._publish(GridEventType.CONSTRUCTION_REJECTED, faction=faction, kind=kind, cost=cost)
        return False

    def _create_plant(self, faction: int, kind: GeneratorKind, position: Tuple[float, float]) -> int:
        if not self._authorize(faction, kind.value):
            return INVALID_ID
        generator = self.topology.add_generator(faction, kind, position)
        if kind is GeneratorKind.SOLAR:
            generator.set_daylight(self.daylight)
        self._touch(topology_changed=True)
        logger.info(f"{kind.value.capitalize()} plant {generator.id} built for faction {faction}")
        self._publish(GridEventType.GENERATOR_CREATED, generator.id, faction, kind=kind.value)
        return int(generator.id)

    def create_solar_plant(self, faction: int, position: Tuple[float, float] = (0.0, 0.0)) -> int:
        return self._create_plant(faction, GeneratorKind.SOLAR, position)

    def create_fusion_plant(self, faction: int, position: Tuple[float, float] = (0.0, 0.0)) -> int:
        return self._create_plant(faction, GeneratorKind.FUSION, position)

    def create_power_line(
        self,
        generator_id: int,
        district_id: int,
        capacity: Optional[float] = None,
    ) -> int:
        generator = self.topology.get_generator(generator_id)
        if generator is None or self.topology.get_district(district_id) is None:
            logger.warning(f"Cannot build line {generator_id} -> {district_id}: unknown endpoint")
            return INVALID_ID
        if not self._authorize(generator.faction, "line"):
            return INVALID_ID
        line = self.topology.add_line(GeneratorId(generator_id), DistrictId(district_id), capacity)
        if line is None:
            return INVALID_ID
        self._touch(topology_changed=True)
        self._publish(
            GridEventType.LINE_CREATED, line.id, generator.faction,
            generator_id=int(generator_id), district_id=int(district_id), capacity=line.capacity,
        )
        return int(line.id)

    def create_district(
        self,
        faction: int,
        demand: float,
        position: Tuple[float, float] = (0.0, 0.0),
    ) -> int:
        if not self._authorize(faction, "district"):
            return INVALID_ID
        district = self.topology.add_district(faction, demand, position)
        self._touch(topology_changed=True)
        self._publish(GridEventType.DISTRICT_CREATED, district.id, faction, demand=district.demand)
        return int(district.id)

    # ------------------------------------------------------------------ #
    # Demolition                                                           #
    # ------------------------------------------------------------------ #

    def remove_generator(self, generator_id: int) -> bool:
        generator = self.topology.get_generator(generator_id)
        if generator is None or not self.topology.remove_generator(GeneratorId(generator_id)):
            return False
        self._touch(topology_changed=True)
        self._publish(GridEventType.GENERATOR_REMOVED, generator_id, generator.faction)
        return True

    def remove_line(self, line_id: int) -> bool:
        if not self.topology.remove_line(LineId(line_id)):
            return False
        self._touch(topology_changed=True)
        self._publish(GridEventType.LINE_REMOVED, line_id)
        return True

    def remove_district(self, district_id: int) -> bool:
        district = self.topology.get_district(district_id)
        if district is None or not self.topology.remove_district(DistrictId(district_id)):
            return False
        self._touch(topology_changed=True)
        self._publish(GridEventType.DISTRICT_REMOVED, district_id, district.owning_faction)
        return True

    # ------------------------------------------------------------------ #
    # Damage / repair                                                      #
    # ------------------------------------------------------------------ #

    def damage_generator(self, generator_id: int, amount: float) -> bool:
        """Apply damage.  Returns False only for unknown ids."""
        generator = self.topology.get_generator(generator_id)
        if generator is None:
            logger.debug(f"damage_generator: unknown generator {generator_id}")
            return False
        self.ensure_current()
        affected = self.topology.districts_fed_by_generator(generator_id)
        if generator.apply_damage(amount):
            self._touch(topology_changed=True)
            self._after_destruction("generator", generator_id, generator.faction, affected)
        return True

    def damage_line(self, line_id: int, amount: float) -> bool:
        line = self.topology.get_line(line_id)
        if line is None:
            logger.debug(f"damage_line: unknown line {line_id}")
            return False
        self.ensure_current()
        affected = self.topology.districts_fed_by_line(line_id)
        if line.apply_damage(amount):
            self._touch(topology_changed=True)
            self._after_destruction("line", line_id, self._line_faction(line_id), affected)
        return True

    def repair_generator(self, generator_id: int, amount: float) -> bool:
        generator = self.topology.get_generator(generator_id)
        if generator is None:
            return False
        if generator.apply_repair(amount):
            self._touch(topology_changed=True)
            self._after_restoration("generator", generator_id, generator.faction)
        return True

    def repair_line(self, line_id: int, amount: float) -> bool:
        line = self.topology.get_line(line_id)
        if line is None:
            return False
        if line.apply_repair(amount):
            self._touch(topology_changed=True)
            self._after_restoration("line", line_id, self._line_faction(line_id))
        return True

    def full_repair_generator(self, generator_id: int) -> bool:
        generator = self.topology.get_generator(generator_id)
        if generator is None:
            return False
        return self.repair_generator(generator_id, generator.max_health - generator.health)

    def full_repair_line(self, line_id: int) -> bool:
        line = self.topology.get_line(line_id)
        if line is None:
            return False
        return self.repair_line(line_id, line.max_health - line.health)

    def _line_faction(self, line_id: int) -> int:
        line = self.topology.get_line(line_id)
        if line is None:
            return -1
        generator = self.topology.get_generator(line.source_generator_id)
        return -1 if generator is None else generator.faction

    def _after_destruction(self, kind: str, entity_id: int, faction: int, affected: List[DistrictId]) -> None:
        self.recalculate()
        opened = self.cascades.on_destruction(affected, self.topology, origin_id=entity_id, origin_kind=kind)
        logger.info(
            f"{kind.capitalize()} {entity_id} destroyed: "
            f"{len(affected)} district(s) affected, {len(opened)} cascade(s) opened"
        )
        event_type = GridEventType.GENERATOR_DESTROYED if kind == "generator" else GridEventType.LINE_DESTROYED
        self._publish(
            event_type, entity_id, faction,
            affected_districts=[int(d) for d in affected],
            cascades=[int(r.district_id) for r in opened],
        )

    def _after_restoration(self, kind: str, entity_id: int, faction: int) -> None:
        self.recalculate()
        network = (
            self.topology.network_of_generator(entity_id) if kind == "generator"
            else self.topology.network_of_line(entity_id)
        )
        logger.info(f"{kind.capitalize()} {entity_id} back on line")
        event_type = GridEventType.GENERATOR_RESTORED if kind == "generator" else GridEventType.LINE_RESTORED
        self._publish(
            event_type, entity_id, faction,
            affected_districts=[] if network is None else [int(d) for d in network.district_ids],
        )

    # ------------------------------------------------------------------ #
    # Runtime adjustments                                                  #
    # ------------------------------------------------------------------ #

    def set_daylight_multiplier(self, multiplier: float) -> bool:
        """Scale every Solar plant's output.  Returns True if any output changed."""
        self.daylight = min(max(float(multiplier), 0.0), 1.0)
        changed = False
        for generator in self.topology.generators.values():
            if generator.set_daylight(self.daylight):
                changed = True
        if changed:
            self._touch()
        return changed

    def set_district_demand(self, district_id: int, demand: float) -> bool:
        district = self.topology.get_district(district_id)
        if district is None:
            return False
        district.set_demand(demand)
        self._touch()
        return True

    def capture_district(self, district_id: int, new_faction: int) -> bool:
        """Hand a district to another faction.  Its lines stay in place."""
        district = self.topology.get_district(district_id)
        if district is None:
            return False
        previous = district.owning_faction
        if previous == new_faction:
            return True
        district.owning_faction = new_faction
        record = self.cascades.record(district_id)
        if record is not None:
            record.faction = new_faction
        self._touch(topology_changed=True)
        logger.info(f"District {district_id} captured: faction {previous} -> {new_faction}")
        self._publish(
            GridEventType.DISTRICT_CAPTURED, district_id, new_faction,
            previous_faction=previous, new_faction=new_faction,
        )
        return True

    def advance(self, dt: float) -> None:
        """Accumulate simulation time on every time-decayed record."""
        if dt <= 0.0:
            return
        self.time += dt
        self.cascades.advance(dt)
        for district in self.topology.districts.values():
            district.accumulate(dt)

    # ------------------------------------------------------------------ #
    # Queries                                                              #
    # ------------------------------------------------------------------ #

    def factions(self) -> List[int]:
        return self.topology.factions()

    def get_faction_status(self, faction: int) -> FactionPowerStatus:
        self.ensure_current()
        cached = self._status_cache.get(faction)
        if cached is not None and cached[0] == self._version:
            return cached[1]
        status = compute_faction_status(self.topology, faction)
        self._status_cache[faction] = (self._version, status)
        self.status_computations += 1
        return status

    def has_surplus(self, faction: int) -> bool:
        return self.get_faction_status(faction).has_surplus

    def has_deficit(self, faction: int) -> bool:
        return self.get_faction_status(faction).has_deficit

    def get_district_info(self, district_id: int) -> Optional[Dict[str, Any]]:
        self.ensure_current()
        district = self.topology.get_district(district_id)
        if district is None:
            return None
        info = district.info()
        info["severity"] = self.cascades.severity(district_id).name
        info["production_multiplier"] = self.cascades.production_multiplier(district_id)
        return info

    def get_generator_info(self, generator_id: int) -> Optional[Dict[str, Any]]:
        self.ensure_current()
        generator = self.topology.get_generator(generator_id)
        if generator is None:
            return None
        info = generator.to_dict()
        info.update({
            "current_output": generator.current_output,
            "destroyed": generator.destroyed,
            "network_id": generator.network_id,
        })
        return info

    def get_line_info(self, line_id: int) -> Optional[Dict[str, Any]]:
        self.ensure_current()
        line = self.topology.get_line(line_id)
        if line is None:
            return None
        info = line.to_dict()
        info.update({
            "current_flow": line.current_flow,
            "destroyed": line.destroyed,
            "overloaded": line.overloaded,
            "length": line.length,
            "network_id": line.network_id,
        })
        return info

    def is_district_in_blackout(self, district_id: int) -> bool:
        self.ensure_current()
        district = self.topology.get_district(district_id)
        return district is not None and district.blackout

    def get_district_power(self, district_id: int) -> float:
        self.ensure_current()
        district = self.topology.get_district(district_id)
        return 0.0 if district is None else district.current_power

    def get_district_production_multiplier(self, district_id: int) -> float:
        """1 − cascade penalty.  Unknown districts report 0 (nothing to produce)."""
        self.ensure_current()
        if self.topology.get_district(district_id) is None:
            return 0.0
        return self.cascades.production_multiplier(district_id)

    def get_cascade_severity(self, district_id: int) -> CascadeSeverity:
        self.ensure_current()
        return self.cascades.severity(district_id)

    def get_networks(self) -> List[Network]:
        self.ensure_current()
        return self.topology.networks

    def get_network_of(self, district_id: int) -> Optional[Network]:
        self.ensure_current()
        return self.topology.network_of_district(district_id)

    # ------------------------------------------------------------------ #
    # Persistence                                                          #
    # ------------------------------------------------------------------ #

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "daylight": self.daylight,
            "topology": self.topology.to_dict(),
            "cascades": self.cascades.to_dict(),
        }

    def load_dict(self, data: Dict[str, Any]) -> None:
        """Replace all grid state with a snapshot (missing fields default)."""
        self.time = float(data.get("time", 0.0))
        self.daylight = min(max(float(data.get("daylight", self.params.default_daylight)), 0.0), 1.0)
        self.topology = TopologyBuilder.from_dict(data.get("topology") or {}, self.params)
        self.cascades = CascadeTracker(self.params, self.bus)
        self.cascades.load_dict(data.get("cascades") or {})
        self._status_cache = {}
        self._touch(topology_changed=True)

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        params: Optional[GridParams] = None,
        bus: Optional[EventBus] = None,
    ) -> "PowerGridManager":
        manager = cls(params, bus)
        manager.load_dict(data)
        return manager
