"""
Power plants.

Two kinds share one mutable record:

  SOLAR   — output = max_output · daylight_multiplier
  FUSION  — output = max_output

A plant is destroyed exactly when its health reaches 0; while destroyed its
output is forced to 0 regardless of kind.  Repairing above 0 health brings it
back on line at the next topology recalculation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, unique
from typing import Any, Dict, List, Optional, Tuple

from .grid_params import GridParams
from .ids import GeneratorId, LineId


@unique
class GeneratorKind(Enum):
    SOLAR = "solar"
    FUSION = "fusion"

    @classmethod
    def parse(cls, value: Any, default: Optional["GeneratorKind"] = None) -> "GeneratorKind":
        """Lenient lookup by value or name ("Solar", "FUSION", …)."""
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower()
        for kind in cls:
            if kind.value == text:
                return kind
        if default is not None:
            return default
        raise ValueError(f"Unknown generator kind: {value!r}")


@dataclass
class Generator:
    """Mutable plant record owned by the topology builder.

    Attributes:
        id:                  Generator id.
        faction:             Owning faction.
        kind:                SOLAR or FUSION.
        position:            (x, y) map position.
        max_output:          Nameplate output.
        current_output:      Output after daylight and destruction.
        health:              Current hit points.
        max_health:          Hit point ceiling.
        daylight_multiplier: Solar scaling ∈ [0, 1]; ignored for FUSION.
        connected_line_ids:  Lines whose source is this plant.
        network_id:          Network index from the last recalculation (-1 = none).
    """

    id: GeneratorId
    faction: int
    kind: GeneratorKind
    position: Tuple[float, float] = (0.0, 0.0)
    max_output: float = 0.0
    current_output: float = 0.0
    health: float = 100.0
    max_health: float = 100.0
    daylight_multiplier: float = 1.0
    connected_line_ids: List[LineId] = field(default_factory=list)
    network_id: int = -1

    def __post_init__(self) -> None:
        self.health = min(max(self.health, 0.0), self.max_health)
        self.refresh_output()

    # ------------------------------------------------------------------ #
    # Factories                                                             #
    # ------------------------------------------------------------------ #

    @classmethod
    def create(
        cls,
        generator_id: GeneratorId,
        faction: int,
        kind: GeneratorKind,
        position: Tuple[float, float],
        params: GridParams,
    ) -> "Generator":
        if kind is GeneratorKind.SOLAR:
            max_output, max_health = params.solar_max_output, params.solar_max_health
        else:
            max_output, max_health = params.fusion_max_output, params.fusion_max_health
        return cls(
            id=generator_id,
            faction=faction,
            kind=kind,
            position=(float(position[0]), float(position[1])),
            max_output=max_output,
            health=max_health,
            max_health=max_health,
            daylight_multiplier=params.default_daylight,
        )

    # ------------------------------------------------------------------ #
    # State                                                                 #
    # ------------------------------------------------------------------ #

    @property
    def destroyed(self) -> bool:
        return self.health <= 0.0

    @property
    def operational(self) -> bool:
        return not self.destroyed

    @property
    def health_fraction(self) -> float:
        if self.max_health <= 0.0:
            return 0.0
        return self.health / self.max_health

    def potential_output(self) -> float:
        """Output this plant would deliver if operational."""
        if self.kind is GeneratorKind.SOLAR:
            return self.max_output * self.daylight_multiplier
        return self.max_output

    def refresh_output(self) -> float:
        self.current_output = 0.0 if self.destroyed else self.potential_output()
        return self.current_output

    def set_daylight(self, multiplier: float) -> bool:
        """Set daylight scaling.  Returns True if output changed."""
        if self.kind is not GeneratorKind.SOLAR:
            return False
        before = self.current_output
        self.daylight_multiplier = min(max(float(multiplier), 0.0), 1.0)
        return self.refresh_output() != before

    def apply_damage(self, amount: float) -> bool:
        """Reduce health.  Returns True if this call destroyed the plant."""
        if amount <= 0.0 or self.destroyed:
            return False
        self.health = max(0.0, self.health - amount)
        self.refresh_output()
        return self.destroyed

    def apply_repair(self, amount: float) -> bool:
        """Restore health.  Returns True if this call brought the plant back."""
        if amount <= 0.0:
            return False
        was_destroyed = self.destroyed
        self.health = min(self.max_health, self.health + amount)
        self.refresh_output()
        return was_destroyed and not self.destroyed

    def full_repair(self) -> bool:
        return self.apply_repair(self.max_health - self.health)

    def attach_line(self, line_id: LineId) -> None:
        if line_id not in self.connected_line_ids:
            self.connected_line_ids.append(line_id)

    def detach_line(self, line_id: LineId) -> None:
        if line_id in self.connected_line_ids:
            self.connected_line_ids.remove(line_id)

    # ------------------------------------------------------------------ #
    # Persistence                                                          #
    # ------------------------------------------------------------------ #

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": int(self.id),
            "faction": self.faction,
            "kind": self.kind.value,
            "position": [self.position[0], self.position[1]],
            "max_output": self.max_output,
            "health": self.health,
            "max_health": self.max_health,
            "daylight_multiplier": self.daylight_multiplier,
            "connected_line_ids": [int(i) for i in self.connected_line_ids],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], params: Optional[GridParams] = None) -> "Generator":
        """Restore from a snapshot; every missing field falls back independently."""
        params = params or GridParams()
        kind = GeneratorKind.parse(data.get("kind", "fusion"), default=GeneratorKind.FUSION)
        if kind is GeneratorKind.SOLAR:
            default_output, default_health = params.solar_max_output, params.solar_max_health
        else:
            default_output, default_health = params.fusion_max_output, params.fusion_max_health
        position = data.get("position") or (0.0, 0.0)
        max_health = float(data.get("max_health", default_health))
        return cls(
            id=GeneratorId(int(data.get("id", 0))),
            faction=int(data.get("faction", 0)),
            kind=kind,
            position=(float(position[0]), float(position[1])),
            max_output=float(data.get("max_output", default_output)),
            health=float(data.get("health", max_health)),
            max_health=max_health,
            daylight_multiplier=float(data.get("daylight_multiplier", params.default_daylight)),
            connected_line_ids=[LineId(int(i)) for i in data.get("connected_line_ids", [])],
        )
