"""
GridParams — Immutable tuning pack for the faction power grid.

Every gameplay constant the grid core consults lives here.  Changing one
number changes how the network behaves under damage; nothing else in the
package hard-codes a threshold.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, Dict, Tuple


def _default_costs() -> Dict[str, Dict[str, float]]:
    return {
        "solar":    {"credits": 150.0, "alloy": 20.0},
        "fusion":   {"credits": 600.0, "alloy": 80.0},
        "line":     {"credits": 40.0},
        "district": {"credits": 100.0},
    }


def _default_consumer_requirements() -> Dict[str, float]:
    return {
        "factory":        20.0,
        "infrastructure": 10.0,
        "defense":        15.0,
        "research":       12.0,
    }


@dataclass(frozen=True)
class GridParams:
    """
    Complete parameter specification for the power grid.

    Organized by subsystem:
      - Plants and lines
      - District blackout threshold
      - Cascade severity bands
      - Stability scoring
      - Consumption throttle (generic + 4-tier brownout model)
      - Emergency reserves
      - Scheduling and diagnostics
      - Construction costs
    """

    # ── Plants ─────────────────────────────────────────────────────────── #
    solar_max_output: float = 50.0
    solar_max_health: float = 100.0
    fusion_max_output: float = 200.0
    fusion_max_health: float = 300.0
    default_daylight: float = 1.0
    """Initial daylight multiplier applied to Solar output."""

    # ── Lines ──────────────────────────────────────────────────────────── #
    line_default_capacity: float = 100.0
    line_max_health: float = 50.0
    enforce_line_capacity: bool = False
    """Clamp each line's flow to its capacity and redistribute the excess.
    Off by default: allocation is proportional to demand only."""

    # ── Districts ──────────────────────────────────────────────────────── #
    blackout_threshold: float = 0.5
    """District is blacked out when power < threshold · demand."""

    # ── Cascade bands (ratio lower bounds) and penalties ──────────────── #
    cascade_partial_below: float = 0.75
    cascade_full_below: float = 0.50
    cascade_critical_below: float = 0.25
    penalty_partial: float = 0.25
    penalty_full: float = 0.75
    penalty_critical: float = 1.0

    # ── Stability ──────────────────────────────────────────────────────── #
    w_reserve: float = 0.4
    w_plant_health: float = 0.3
    w_coverage: float = 0.3
    reserve_ratio_cap: float = 2.0
    risk_stable: float = 0.75
    risk_warning: float = 0.50
    risk_critical: float = 0.25
    low_reserve_ratio: float = 1.1
    stability_hysteresis: float = 0.05

    # ── Consumption throttle ──────────────────────────────────────────── #
    consumer_requirements: Dict[str, float] = field(default_factory=_default_consumer_requirements)
    consumer_powered_fraction: float = 0.5
    """Consumer counts as powered when available ≥ fraction · requirement."""
    consumer_blackout_penalty: float = 0.5

    # ── 4-tier brownout model ─────────────────────────────────────────── #
    tier_full: float = 0.75
    tier_brownout: float = 0.50
    tier_blackout: float = 0.25
    brownout_min_multiplier: float = 0.5
    blackout_multiplier: float = 0.25

    # ── Emergency reserves ────────────────────────────────────────────── #
    reserve_capacity: float = 500.0
    reserve_drain_rate: float = 25.0
    """Power units supplied per second while a reserve is active."""
    reserve_recharge_rate: float = 10.0
    auto_activate_reserves: bool = True

    # ── Redundancy ────────────────────────────────────────────────────── #
    redundancy_generator_cap: int = 3
    w_redundancy_excess: float = 0.5
    w_redundancy_generators: float = 0.5

    # ── Scheduling / diagnostics ──────────────────────────────────────── #
    tick_interval_ms: float = 100.0
    min_tick_interval_ms: float = 16.0
    event_log_size: int = 100

    # ── Construction costs ────────────────────────────────────────────── #
    construction_costs: Dict[str, Dict[str, float]] = field(default_factory=_default_costs)

    def __post_init__(self) -> None:
        """Reject inconsistent parameter packs at construction time."""
        for name in ("solar_max_output", "fusion_max_output", "solar_max_health",
                     "fusion_max_health", "line_default_capacity", "line_max_health"):
            if getattr(self, name) <= 0.0:
                raise ValueError(f"GridParams.{name} must be > 0, got {getattr(self, name)}")

        if not 0.0 <= self.default_daylight <= 1.0:
            raise ValueError(
                f"GridParams.default_daylight must be in [0, 1], got {self.default_daylight}"
            )
        if not 0.0 < self.blackout_threshold < 1.0:
            raise ValueError(
                f"GridParams.blackout_threshold must be in (0, 1), got {self.blackout_threshold}"
            )

        bands = (self.cascade_partial_below, self.cascade_full_below, self.cascade_critical_below)
        if not (1.0 >= bands[0] > bands[1] > bands[2] > 0.0):
            raise ValueError(f"Cascade bands must strictly decrease within (0, 1], got {bands}")
        penalties = (self.penalty_partial, self.penalty_full, self.penalty_critical)
        if not (0.0 <= penalties[0] <= penalties[1] <= penalties[2] <= 1.0):
            raise ValueError(f"Cascade penalties must be non-decreasing in [0, 1], got {penalties}")

        tiers = (self.tier_full, self.tier_brownout, self.tier_blackout)
        if not (1.0 >= tiers[0] > tiers[1] > tiers[2] > 0.0):
            raise ValueError(f"Brownout tiers must strictly decrease within (0, 1], got {tiers}")

        risks = (self.risk_stable, self.risk_warning, self.risk_critical)
        if not (1.0 >= risks[0] > risks[1] > risks[2] > 0.0):
            raise ValueError(f"Risk bands must strictly decrease within (0, 1], got {risks}")

        weights = self.w_reserve + self.w_plant_health + self.w_coverage
        if abs(weights - 1.0) > 1e-6:
            raise ValueError(f"Stability weights must sum to 1, got {weights:.4f}")

        if self.min_tick_interval_ms <= 0.0:
            raise ValueError(
                f"GridParams.min_tick_interval_ms must be > 0, got {self.min_tick_interval_ms}"
            )
        if self.event_log_size <= 0:
            raise ValueError(f"GridParams.event_log_size must be > 0, got {self.event_log_size}")
        if self.redundancy_generator_cap < 1:
            raise ValueError(
                f"GridParams.redundancy_generator_cap must be >= 1, got {self.redundancy_generator_cap}"
            )
        for name in ("reserve_capacity", "reserve_drain_rate", "reserve_recharge_rate"):
            if getattr(self, name) < 0.0:
                raise ValueError(f"GridParams.{name} must be >= 0, got {getattr(self, name)}")

    # ------------------------------------------------------------------ #
    # Derived helpers                                                       #
    # ------------------------------------------------------------------ #

    @property
    def tick_interval_seconds(self) -> float:
        """Effective tick interval in seconds, floored at the minimum."""
        return max(self.tick_interval_ms, self.min_tick_interval_ms) / 1000.0

    @property
    def cascade_bands(self) -> Tuple[float, float, float]:
        return (self.cascade_partial_below, self.cascade_full_below, self.cascade_critical_below)

    def consumer_requirement(self, kind: str) -> float:
        """Type-default power requirement for a consumer kind (0 if unknown)."""
        return float(self.consumer_requirements.get(kind.lower(), 0.0))

    def construction_cost(self, kind: str) -> Dict[str, float]:
        """Cost map for building one entity of ``kind`` (copy; empty if free)."""
        return dict(self.construction_costs.get(kind, {}))

    def replace(self, **overrides: Any) -> "GridParams":
        """Return a copy with selected fields overridden."""
        current = {f.name: getattr(self, f.name) for f in fields(self)}
        current.update(overrides)
        return GridParams(**current)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
