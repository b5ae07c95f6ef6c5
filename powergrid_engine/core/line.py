"""
Transmission lines.

A line carries power from exactly one generator to exactly one district.
Destroying a line severs that connection independently of the health of its
endpoints; a destroyed line always carries zero flow.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from .grid_params import GridParams
from .ids import DistrictId, GeneratorId, LineId


@dataclass
class TransmissionLine:
    """Mutable line record owned by the topology builder.

    Attributes:
        id:                  Line id.
        source_generator_id: Feeding plant.
        target_district_id:  Fed district.
        capacity:            Declared throughput (see GridParams.enforce_line_capacity).
        current_flow:        Bookkeeping share of the target's allocation.
        health / max_health: Hit points.
        start / end:         Endpoint positions, used for length.
        network_id:          Network index from the last recalculation (-1 = none).
    """

    id: LineId
    source_generator_id: GeneratorId
    target_district_id: DistrictId
    capacity: float = 100.0
    current_flow: float = 0.0
    health: float = 50.0
    max_health: float = 50.0
    start: Tuple[float, float] = (0.0, 0.0)
    end: Tuple[float, float] = (0.0, 0.0)
    network_id: int = -1

    def __post_init__(self) -> None:
        self.capacity = max(0.0, float(self.capacity))
        self.health = min(max(self.health, 0.0), self.max_health)
        if self.destroyed:
            self.current_flow = 0.0

    @classmethod
    def create(
        cls,
        line_id: LineId,
        generator_id: GeneratorId,
        district_id: DistrictId,
        capacity: float,
        params: GridParams,
        start: Tuple[float, float] = (0.0, 0.0),
        end: Tuple[float, float] = (0.0, 0.0),
    ) -> "TransmissionLine":
        return cls(
            id=line_id,
            source_generator_id=generator_id,
            target_district_id=district_id,
            capacity=capacity,
            health=params.line_max_health,
            max_health=params.line_max_health,
            start=(float(start[0]), float(start[1])),
            end=(float(end[0]), float(end[1])),
        )

    @property
    def destroyed(self) -> bool:
        return self.health <= 0.0

    @property
    def active(self) -> bool:
        return not self.destroyed

    @property
    def length(self) -> float:
        return math.hypot(self.end[0] - self.start[0], self.end[1] - self.start[1])

    @property
    def utilization(self) -> float:
        """Flow as a fraction of capacity (may exceed 1 when unclamped)."""
        if self.capacity <= 0.0:
            return 0.0
        return self.current_flow / self.capacity

    @property
    def overloaded(self) -> bool:
        return self.current_flow > self.capacity + 1e-9

    def set_flow(self, flow: float) -> None:
        self.current_flow = 0.0 if self.destroyed else max(0.0, float(flow))

    def apply_damage(self, amount: float) -> bool:
        """Reduce health.  Returns True if this call destroyed the line."""
        if amount <= 0.0 or self.destroyed:
            return False
        self.health = max(0.0, self.health - amount)
        if self.destroyed:
            self.current_flow = 0.0
        return self.destroyed

    def apply_repair(self, amount: float) -> bool:
        """Restore health.  Returns True if this call reconnected the line."""
        if amount <= 0.0:
            return False
        was_destroyed = self.destroyed
        self.health = min(self.max_health, self.health + amount)
        return was_destroyed and not self.destroyed

    def full_repair(self) -> bool:
        return self.apply_repair(self.max_health - self.health)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": int(self.id),
            "source_generator_id": int(self.source_generator_id),
            "target_district_id": int(self.target_district_id),
            "capacity": self.capacity,
            "health": self.health,
            "max_health": self.max_health,
            "start": [self.start[0], self.start[1]],
            "end": [self.end[0], self.end[1]],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], params: Optional[GridParams] = None) -> "TransmissionLine":
        params = params or GridParams()
        start = data.get("start") or (0.0, 0.0)
        end = data.get("end") or (0.0, 0.0)
        max_health = float(data.get("max_health", params.line_max_health))
        return cls(
            id=LineId(int(data.get("id", 0))),
            source_generator_id=GeneratorId(int(data.get("source_generator_id", -1))),
            target_district_id=DistrictId(int(data.get("target_district_id", -1))),
            capacity=float(data.get("capacity", params.line_default_capacity)),
            health=float(data.get("health", max_health)),
            max_health=max_health,
            start=(float(start[0]), float(start[1])),
            end=(float(end[0]), float(end[1])),
        )
