"""
Faction-level power status.

A pure aggregation over the topology registries.  The facade caches the
result per faction and recomputes only after a mutation.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict

from .topology import TopologyBuilder


def reserve_ratio(generation: float, demand: float) -> float:
    """generation / demand; 1.0 with no demand but some generation, else 0."""
    if demand > 0.0:
        return generation / demand
    return 1.0 if generation > 0.0 else 0.0


@dataclass(frozen=True)
class PlantCounts:
    total: int = 0
    operational: int = 0
    destroyed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"total": self.total, "operational": self.operational, "destroyed": self.destroyed}


@dataclass(frozen=True)
class DistrictCounts:
    total: int = 0
    powered: int = 0
    blackout: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"total": self.total, "powered": self.powered, "blackout": self.blackout}


@dataclass(frozen=True)
class FactionPowerStatus:
    """Snapshot of one faction's grid.

    Attributes:
        faction:     Faction id.
        generation:  Σ current output of the faction's operational plants.
        demand:      Σ demand of the faction's districts.
        balance:     generation − demand.
        ratio:       reserve ratio (see ``reserve_ratio``).
        plants:      Plant counts.
        districts:   District counts (powered = not blacked out).
        largest_output: Output of the faction's single largest operational plant.
    """

    faction: int
    generation: float = 0.0
    demand: float = 0.0
    balance: float = 0.0
    ratio: float = 0.0
    plants: PlantCounts = PlantCounts()
    districts: DistrictCounts = DistrictCounts()
    largest_output: float = 0.0

    @property
    def has_surplus(self) -> bool:
        return self.balance > 0.0

    @property
    def has_deficit(self) -> bool:
        return self.balance < 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "faction": self.faction,
            "generation": self.generation,
            "demand": self.demand,
            "balance": self.balance,
            "ratio": self.ratio,
            "plants": self.plants.to_dict(),
            "districts": self.districts.to_dict(),
            "largest_output": self.largest_output,
        }


def compute_faction_status(topology: TopologyBuilder, faction: int) -> FactionPowerStatus:
    generators = topology.generators_of(faction)
    districts = topology.districts_of(faction)

    outputs = [g.current_output for g in generators if g.operational]
    generation = float(sum(outputs))
    demand = float(sum(d.demand for d in districts))
    destroyed = sum(1 for g in generators if g.destroyed)
    blackout = sum(1 for d in districts if d.blackout)

    return FactionPowerStatus(
        faction=faction,
        generation=generation,
        demand=demand,
        balance=generation - demand,
        ratio=reserve_ratio(generation, demand),
        plants=PlantCounts(
            total=len(generators),
            operational=len(generators) - destroyed,
            destroyed=destroyed,
        ),
        districts=DistrictCounts(
            total=len(districts),
            powered=len(districts) - blackout,
            blackout=blackout,
        ),
        largest_output=max(outputs) if outputs else 0.0,
    )
