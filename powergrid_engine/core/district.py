"""
Consumption districts.

A district draws ``demand`` from whichever network feeds it and receives
``current_power`` from the flow engine.  Blackout is derived at each
distribution, never set directly:

    blackout  ⇔  demand > 0  ∧  current_power < threshold · demand

with threshold = 0.5 by default.  Exactly half of demand is NOT a blackout.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import IntEnum, unique
from typing import Any, Dict, List, Tuple

from .ids import DistrictId, LineId


@unique
class BlackoutTransition(IntEnum):
    NONE = 0
    STARTED = 1
    ENDED = 2


def is_blackout(demand: float, power: float, threshold: float = 0.5) -> bool:
    return demand > 0.0 and power < threshold * demand


@dataclass
class District:
    """Mutable district record owned by the topology builder.

    Attributes:
        id:                 District id.
        owning_faction:     Current owner (changes on capture).
        demand:             Requested power.
        current_power:      Power allocated at the last distribution.
        blackout:           Blackout flag as of the last set_power (the last distribution).
        connected_line_ids: Lines targeting this district.
        time_in_blackout:   Accumulated seconds spent blacked out.
        blackout_events:    Number of transitions into blackout.
        position:           Map position (line endpoint).
        network_id:         Network index from the last recalculation (-1 = none).
    """

    id: DistrictId
    owning_faction: int
    demand: float = 0.0
    current_power: float = 0.0
    blackout: bool = False
    connected_line_ids: List[LineId] = field(default_factory=list)
    time_in_blackout: float = 0.0
    blackout_events: int = 0
    position: Tuple[float, float] = (0.0, 0.0)
    network_id: int = -1
    blackout_threshold: float = 0.5

    def __post_init__(self) -> None:
        self.demand = max(0.0, float(self.demand))
        self.current_power = max(0.0, float(self.current_power))
        self.blackout = is_blackout(self.demand, self.current_power, self.blackout_threshold)

    @property
    def power_ratio(self) -> float:
        """current_power / demand; 1.0 when there is no demand."""
        if self.demand <= 0.0:
            return 1.0
        return self.current_power / self.demand

    @property
    def shortfall(self) -> float:
        return max(0.0, self.demand - self.current_power)

    def _refresh_blackout(self) -> BlackoutTransition:
        was = self.blackout
        self.blackout = is_blackout(self.demand, self.current_power, self.blackout_threshold)
        if self.blackout and not was:
            self.blackout_events += 1
            return BlackoutTransition.STARTED
        if was and not self.blackout:
            return BlackoutTransition.ENDED
        return BlackoutTransition.NONE

    def set_power(self, power: float) -> BlackoutTransition:
        self.current_power = max(0.0, float(power))
        return self._refresh_blackout()

    def set_demand(self, demand: float) -> None:
        """Change demand.  The blackout flag moves at the next ``set_power``."""
        self.demand = max(0.0, float(demand))

    def accumulate(self, dt: float) -> None:
        """Advance the blackout-duration accumulator by ``dt`` seconds."""
        if self.blackout and dt > 0.0:
            self.time_in_blackout += dt

    def attach_line(self, line_id: LineId) -> None:
        if line_id not in self.connected_line_ids:
            self.connected_line_ids.append(line_id)

    def detach_line(self, line_id: LineId) -> None:
        if line_id in self.connected_line_ids:
            self.connected_line_ids.remove(line_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": int(self.id),
            "owning_faction": self.owning_faction,
            "demand": self.demand,
            "current_power": self.current_power,
            "connected_line_ids": [int(i) for i in self.connected_line_ids],
            "time_in_blackout": self.time_in_blackout,
            "blackout_events": self.blackout_events,
            "position": [self.position[0], self.position[1]],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], blackout_threshold: float = 0.5) -> "District":
        position = data.get("position") or (0.0, 0.0)
        return cls(
            id=DistrictId(int(data.get("id", 0))),
            owning_faction=int(data.get("owning_faction", 0)),
            demand=float(data.get("demand", 0.0)),
            current_power=float(data.get("current_power", 0.0)),
            connected_line_ids=[LineId(int(i)) for i in data.get("connected_line_ids", [])],
            time_in_blackout=float(data.get("time_in_blackout", 0.0)),
            blackout_events=int(data.get("blackout_events", 0)),
            position=(float(position[0]), float(position[1])),
            blackout_threshold=blackout_threshold,
        )

    def info(self) -> Dict[str, Any]:
        """Read-only summary for external queries."""
        return {
            "id": int(self.id),
            "faction": self.owning_faction,
            "demand": self.demand,
            "current_power": self.current_power,
            "ratio": self.power_ratio,
            "blackout": self.blackout,
            "network_id": self.network_id,
            "line_count": len(self.connected_line_ids),
            "time_in_blackout": self.time_in_blackout,
            "blackout_events": self.blackout_events,
        }
