"""
Generic power consumers.

Factories, infrastructure, defenses and research buildings draw a fixed
requirement (type default, overridable per instance).  Each tick:

  district-linked consumer
      blackout  = grid.is_district_in_blackout(district)
      available = grid.get_district_power(district)
      powered   = available ≥ 0.5 · requirement
      multiplier = 0.5 if blackout else (1.0 if powered else 0.0)

  consumer with no district
      falls back to the owning faction's deficit flag:
      deficit → not powered, multiplier 0.5; otherwise powered, 1.0

Consumers only mutate their own records; grid state is read through the
``GridReader`` protocol.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum, unique
from typing import Any, Dict, List, Optional, Protocol

from ..core.grid_params import GridParams
from ..core.ids import INVALID_ID, ConsumerId, DistrictId, IdAllocator

logger = logging.getLogger("powergrid_engine.systems.consumption")


@unique
class ConsumerKind(Enum):
    FACTORY = "factory"
    INFRASTRUCTURE = "infrastructure"
    DEFENSE = "defense"
    RESEARCH = "research"

    @classmethod
    def parse(cls, value: Any) -> Optional["ConsumerKind"]:
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for kind in cls:
            if kind.value == text:
                return kind
        return None


class GridReader(Protocol):
    """Read-only grid accessors the throttle depends on."""

    def is_district_in_blackout(self, district_id: int) -> bool: ...

    def get_district_power(self, district_id: int) -> float: ...

    def has_deficit(self, faction: int) -> bool: ...


@dataclass
class Consumer:
    """One power-drawing building.

    Attributes:
        id:                    Consumer id.
        faction:               Owning faction.
        kind:                  Building category.
        power_requirement:     Power needed to run at full rate.
        district_id:           Feeding district, or None.
        is_powered:            Available power ≥ powered fraction · requirement.
        is_in_blackout:        Feeding district (or faction) is blacked out.
        production_multiplier: Output scaling applied by the production system.
        paused:                Set by the reactive layer while its district is dark.
    """

    id: ConsumerId
    faction: int
    kind: ConsumerKind
    power_requirement: float
    district_id: Optional[DistrictId] = None
    is_powered: bool = True
    is_in_blackout: bool = False
    production_multiplier: float = 1.0
    paused: bool = False

    def update(self, blackout: bool, available: float, params: GridParams) -> bool:
        """Apply the district rule.  Returns True if the multiplier changed."""
        before = self.production_multiplier
        self.is_in_blackout = blackout
        self.is_powered = available >= params.consumer_powered_fraction * self.power_requirement
        if blackout:
            self.production_multiplier = 1.0 - params.consumer_blackout_penalty
        elif not self.is_powered:
            self.production_multiplier = 0.0
        else:
            self.production_multiplier = 1.0
        return self.production_multiplier != before

    def update_from_faction(self, deficit: bool, params: GridParams) -> bool:
        """Apply the faction-level fallback rule."""
        before = self.production_multiplier
        self.is_in_blackout = deficit
        self.is_powered = not deficit
        self.production_multiplier = (1.0 - params.consumer_blackout_penalty) if deficit else 1.0
        return self.production_multiplier != before

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": int(self.id),
            "faction": self.faction,
            "kind": self.kind.value,
            "power_requirement": self.power_requirement,
            "district_id": None if self.district_id is None else int(self.district_id),
            "is_powered": self.is_powered,
            "is_in_blackout": self.is_in_blackout,
            "production_multiplier": self.production_multiplier,
            "paused": self.paused,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], params: Optional[GridParams] = None) -> "Consumer":
        params = params or GridParams()
        kind = ConsumerKind.parse(data.get("kind", "factory")) or ConsumerKind.FACTORY
        district = data.get("district_id")
        return cls(
            id=ConsumerId(int(data.get("id", 0))),
            faction=int(data.get("faction", 0)),
            kind=kind,
            power_requirement=float(
                data.get("power_requirement", params.consumer_requirement(kind.value))
            ),
            district_id=None if district is None else DistrictId(int(district)),
            is_powered=bool(data.get("is_powered", True)),
            is_in_blackout=bool(data.get("is_in_blackout", False)),
            production_multiplier=float(data.get("production_multiplier", 1.0)),
            paused=bool(data.get("paused", False)),
        )


class ConsumerManager:
    """Registry and per-tick throttle for generic consumers."""

    def __init__(self, params: Optional[GridParams] = None) -> None:
        self.params: GridParams = params or GridParams()
        self.consumers: Dict[ConsumerId, Consumer] = {}
        self._ids = IdAllocator()

    # ------------------------------------------------------------------ #
    # Registry                                                             #
    # ------------------------------------------------------------------ #

    def add(
        self,
        faction: int,
        kind: ConsumerKind,
        district_id: Optional[int] = None,
        power_requirement: Optional[float] = None,
    ) -> int:
        """Register a consumer.  Returns its id."""
        requirement = (
            self.params.consumer_requirement(kind.value)
            if power_requirement is None else max(0.0, float(power_requirement))
        )
        cid = ConsumerId(self._ids.allocate())
        self.consumers[cid] = Consumer(
            id=cid,
            faction=faction,
            kind=kind,
            power_requirement=requirement,
            district_id=None if district_id is None else DistrictId(int(district_id)),
        )
        return cid

    def remove(self, consumer_id: int) -> bool:
        return self.consumers.pop(consumer_id, None) is not None

    def get(self, consumer_id: int) -> Optional[Consumer]:
        return self.consumers.get(consumer_id)

    def set_requirement(self, consumer_id: int, requirement: float) -> bool:
        consumer = self.consumers.get(consumer_id)
        if consumer is None:
            return False
        consumer.power_requirement = max(0.0, float(requirement))
        return True

    def in_district(self, district_id: int) -> List[Consumer]:
        return [c for c in self.consumers.values() if c.district_id == district_id]

    def of_faction(self, faction: int) -> List[Consumer]:
        return [c for c in self.consumers.values() if c.faction == faction]

    def reassign_district(self, district_id: int, new_faction: int) -> List[ConsumerId]:
        """Hand every consumer in a captured district to its new owner."""
        moved: List[ConsumerId] = []
        for consumer in self.in_district(district_id):
            if consumer.faction != new_faction:
                consumer.faction = new_faction
                moved.append(consumer.id)
        return moved

    def detach_district(self, district_id: int) -> None:
        """Unlink consumers from a demolished district (they fall back to faction rules)."""
        for consumer in self.in_district(district_id):
            consumer.district_id = None

    # ------------------------------------------------------------------ #
    # Tick                                                                  #
    # ------------------------------------------------------------------ #

    def update(self, grid: GridReader) -> List[ConsumerId]:
        """Refresh every consumer.  Returns ids whose multiplier changed."""
        changed: List[ConsumerId] = []
        for consumer in self.consumers.values():
            if consumer.district_id is not None:
                flipped = consumer.update(
                    grid.is_district_in_blackout(consumer.district_id),
                    grid.get_district_power(consumer.district_id),
                    self.params,
                )
            else:
                flipped = consumer.update_from_faction(grid.has_deficit(consumer.faction), self.params)
            if flipped:
                changed.append(consumer.id)
        if changed:
            logger.debug(f"{len(changed)} consumer multiplier(s) changed")
        return changed

    def total_requirement(self, faction: int) -> float:
        return float(sum(c.power_requirement for c in self.of_faction(faction)))

    def faction_multiplier(self, faction: int) -> float:
        """Requirement-weighted mean production multiplier (1.0 with no consumers)."""
        consumers = self.of_faction(faction)
        weight = sum(c.power_requirement for c in consumers)
        if weight <= 0.0:
            return 1.0
        return float(sum(c.production_multiplier * c.power_requirement for c in consumers) / weight)

    # ------------------------------------------------------------------ #
    # Persistence                                                          #
    # ------------------------------------------------------------------ #

    def to_dict(self) -> Dict[str, Any]:
        return {
            "consumers": [c.to_dict() for c in self.consumers.values()],
            "next_consumer_id": self._ids.next_id,
        }

    def load_dict(self, data: Dict[str, Any]) -> None:
        self.consumers = {}
        self._ids = IdAllocator()
        for cd in data.get("consumers", []):
            consumer = Consumer.from_dict(cd, self.params)
            if consumer.id == INVALID_ID:
                continue
            self.consumers[consumer.id] = consumer
            self._ids.ensure_above(int(consumer.id))
        if "next_consumer_id" in data:
            self._ids.next_id = max(self._ids.next_id, int(data["next_consumer_id"]))
