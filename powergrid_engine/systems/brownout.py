"""
Four-tier brownout model.

A finer-grained companion to the generic consumer throttle.  Each district's
power ratio (current_power / demand) is mapped to a tier and a graduated
production multiplier:

  ratio ≥ 0.75          FULL       1.0
  0.50 ≤ ratio < 0.75   BROWNOUT   linear 0.5 → 1.0 across the band
  0.25 ≤ ratio < 0.50   BLACKOUT   0.25
  ratio < 0.25          CRITICAL   0.0

Emergency reserves
------------------
Every district owns one reserve of fixed capacity.  While active it supplies
``reserve_drain_rate`` power units and drains the same amount per second; it
switches itself off when empty.  It recharges only while the district sits at
FULL on grid power alone and the reserve is inactive.

Load balancing
--------------
``balance_load`` partitions districts into four priority tiers and satisfies
higher tiers completely before lower ones.  The first tier whose aggregate
demand exceeds the remaining power is served proportionally to demand; every
tier below it receives nothing.

Redundancy
----------
``assess_redundancy`` blends excess capacity above demand with a plant-count
factor that saturates at ``redundancy_generator_cap`` plants, and answers
whether the faction keeps every district above the blackout threshold after
losing its single largest plant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum, unique
from typing import Any, Dict, Iterable, List, Optional, Tuple

import numpy as np

from ..core.grid_params import GridParams
from ..core.ids import DistrictId
from ..core.status import FactionPowerStatus
from ..core.topology import TopologyBuilder

logger = logging.getLogger("powergrid_engine.systems.brownout")


@unique
class PowerTier(IntEnum):
    """Ordered supply tier (higher integer = worse supply)."""

    FULL = 0
    BROWNOUT = 1
    BLACKOUT = 2
    CRITICAL = 3


@unique
class DistrictPriority(IntEnum):
    """Load-shedding priority (lower integer = served first)."""

    CRITICAL = 0
    HIGH = 1
    NORMAL = 2
    LOW = 3

    @classmethod
    def parse(cls, value: Any, default: Optional["DistrictPriority"] = None) -> "DistrictPriority":
        if isinstance(value, cls):
            return value
        text = str(value).strip().upper()
        if text in cls.__members__:
            return cls[text]
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            pass
        return default if default is not None else cls.NORMAL


# --------------------------------------------------------------------------- #
# Pure tier math                                                               #
# --------------------------------------------------------------------------- #


def classify_tier(ratio: float, params: GridParams) -> PowerTier:
    if ratio >= params.tier_full:
        return PowerTier.FULL
    if ratio >= params.tier_brownout:
        return PowerTier.BROWNOUT
    if ratio >= params.tier_blackout:
        return PowerTier.BLACKOUT
    return PowerTier.CRITICAL


def tier_multiplier(ratio: float, params: GridParams) -> float:
    """Graduated production multiplier for a power ratio."""
    tier = classify_tier(ratio, params)
    if tier is PowerTier.FULL:
        return 1.0
    if tier is PowerTier.BROWNOUT:
        span = params.tier_full - params.tier_brownout
        t = (ratio - params.tier_brownout) / span
        low = params.brownout_min_multiplier
        return float(low + (1.0 - low) * np.clip(t, 0.0, 1.0))
    if tier is PowerTier.BLACKOUT:
        return params.blackout_multiplier
    return 0.0


# --------------------------------------------------------------------------- #
# Emergency reserve                                                            #
# --------------------------------------------------------------------------- #


@dataclass
class EmergencyReserve:
    """Stored backup energy for one district.

    Attributes:
        capacity: Maximum stored energy.
        stored:   Current stored energy.
        active:   Whether the reserve is currently feeding the district.
    """

    capacity: float
    stored: float
    active: bool = False

    @property
    def fraction(self) -> float:
        return self.stored / self.capacity if self.capacity > 0.0 else 0.0

    @property
    def depleted(self) -> bool:
        return self.stored <= 0.0

    def activate(self) -> bool:
        if self.depleted:
            return False
        self.active = True
        return True

    def deactivate(self) -> None:
        self.active = False

    def supply(self, params: GridParams) -> float:
        """Power the reserve adds while active."""
        return params.reserve_drain_rate if self.active and not self.depleted else 0.0

    def drain(self, dt: float, params: GridParams) -> float:
        """Spend ``dt`` seconds of supply.  Returns energy drawn."""
        if not self.active or dt <= 0.0:
            return 0.0
        drawn = min(self.stored, params.reserve_drain_rate * dt)
        self.stored -= drawn
        if self.stored <= 0.0:
            self.stored = 0.0
            self.active = False
        return drawn

    def recharge(self, dt: float, params: GridParams) -> float:
        if self.active or dt <= 0.0:
            return 0.0
        gained = min(self.capacity - self.stored, params.reserve_recharge_rate * dt)
        self.stored += gained
        return gained

    def to_dict(self) -> Dict[str, Any]:
        return {"capacity": self.capacity, "stored": self.stored, "active": self.active}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], params: GridParams) -> "EmergencyReserve":
        capacity = float(data.get("capacity", params.reserve_capacity))
        stored = float(data.get("stored", capacity))
        return cls(
            capacity=capacity,
            stored=min(max(stored, 0.0), capacity),
            active=bool(data.get("active", False)),
        )


@dataclass
class BrownoutState:
    """Per-district result of the last brownout update."""

    district_id: DistrictId
    tier: PowerTier = PowerTier.FULL
    grid_ratio: float = 1.0
    effective_ratio: float = 1.0
    multiplier: float = 1.0
    priority: DistrictPriority = DistrictPriority.NORMAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "district_id": int(self.district_id),
            "tier": self.tier.name,
            "grid_ratio": self.grid_ratio,
            "effective_ratio": self.effective_ratio,
            "multiplier": self.multiplier,
            "priority": self.priority.name,
        }


# --------------------------------------------------------------------------- #
# Load balancing and redundancy (pure)                                         #
# --------------------------------------------------------------------------- #


def balance_load(
    demands: Iterable[Tuple[int, DistrictPriority, float]],
    available: float,
) -> Dict[int, float]:
    """Priority-ordered allocation of ``available`` power.

    Args:
        demands:   (district_id, priority, demand) triples.
        available: Power to hand out.

    Returns:
        district_id → allocated power.  Σ allocations ≤ available.
    """
    tiers: Dict[DistrictPriority, List[Tuple[int, float]]] = {p: [] for p in DistrictPriority}
    for district_id, priority, demand in demands:
        tiers[priority].append((district_id, max(0.0, float(demand))))

    remaining = max(0.0, float(available))
    allocations: Dict[int, float] = {}
    for priority in sorted(DistrictPriority):
        members = tiers[priority]
        tier_demand = sum(d for _, d in members)
        if tier_demand <= remaining:
            for district_id, demand in members:
                allocations[district_id] = demand
            remaining -= tier_demand
            continue
        # First tier that cannot be fully served: share what is left, starve the rest
        for district_id, demand in members:
            allocations[district_id] = remaining * demand / tier_demand if tier_demand > 0.0 else 0.0
        remaining = 0.0
    return allocations


@dataclass(frozen=True)
class RedundancyReport:
    faction: int
    score: float
    excess_factor: float
    generator_factor: float
    operational_generators: int
    survives_largest_loss: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "faction": self.faction,
            "score": self.score,
            "excess_factor": self.excess_factor,
            "generator_factor": self.generator_factor,
            "operational_generators": self.operational_generators,
            "survives_largest_loss": self.survives_largest_loss,
        }


def assess_redundancy(status: FactionPowerStatus, params: GridParams) -> RedundancyReport:
    generation, demand = status.generation, status.demand
    if demand > 0.0:
        excess = float(np.clip((generation - demand) / demand, 0.0, 1.0))
    else:
        excess = 1.0 if generation > 0.0 else 0.0

    count = status.plants.operational
    cap = params.redundancy_generator_cap
    generator_factor = min(count, cap) / cap

    score = params.w_redundancy_excess * excess + params.w_redundancy_generators * generator_factor
    survives = (generation - status.largest_output) >= params.blackout_threshold * demand

    return RedundancyReport(
        faction=status.faction,
        score=float(np.clip(score, 0.0, 1.0)),
        excess_factor=excess,
        generator_factor=generator_factor,
        operational_generators=count,
        survives_largest_loss=bool(survives),
    )


# --------------------------------------------------------------------------- #
# Model                                                                        #
# --------------------------------------------------------------------------- #


class BrownoutModel:
    """Tracks tiers, reserves and priorities for every district."""

    def __init__(self, params: Optional[GridParams] = None) -> None:
        self.params: GridParams = params or GridParams()
        self._reserves: Dict[DistrictId, EmergencyReserve] = {}
        self._priorities: Dict[DistrictId, DistrictPriority] = {}
        self._states: Dict[DistrictId, BrownoutState] = {}

    def _reserve(self, district_id: DistrictId) -> EmergencyReserve:
        reserve = self._reserves.get(district_id)
        if reserve is None:
            cap = self.params.reserve_capacity
            reserve = EmergencyReserve(capacity=cap, stored=cap)
            self._reserves[district_id] = reserve
        return reserve

    # ------------------------------------------------------------------ #
    # Configuration                                                        #
    # ------------------------------------------------------------------ #

    def set_priority(self, district_id: int, priority: DistrictPriority) -> None:
        self._priorities[DistrictId(district_id)] = priority

    def priority(self, district_id: int) -> DistrictPriority:
        return self._priorities.get(district_id, DistrictPriority.NORMAL)

    def activate_reserve(self, district_id: int) -> bool:
        return self._reserve(DistrictId(district_id)).activate()

    def deactivate_reserve(self, district_id: int) -> bool:
        reserve = self._reserves.get(district_id)
        if reserve is None:
            return False
        reserve.deactivate()
        return True

    def reserve(self, district_id: int) -> Optional[EmergencyReserve]:
        return self._reserves.get(district_id)

    # ------------------------------------------------------------------ #
    # Tick                                                                  #
    # ------------------------------------------------------------------ #

    def update(self, topology: TopologyBuilder, dt: float) -> Dict[DistrictId, BrownoutState]:
        """Classify every district, then drain or recharge its reserve."""
        params = self.params
        states: Dict[DistrictId, BrownoutState] = {}
        for did, district in topology.districts.items():
            reserve = self._reserve(did)
            grid_ratio = district.power_ratio
            grid_tier = classify_tier(grid_ratio, params)

            if params.auto_activate_reserves and grid_tier >= PowerTier.BLACKOUT and not reserve.active:
                if reserve.activate():
                    logger.info(f"Emergency reserve engaged for district {did} ({grid_tier.name})")

            if district.demand > 0.0:
                effective_ratio = (district.current_power + reserve.supply(params)) / district.demand
            else:
                effective_ratio = 1.0
            tier = classify_tier(effective_ratio, params)

            if reserve.active:
                reserve.drain(dt, params)
                if not reserve.active:
                    logger.info(f"Emergency reserve depleted for district {did}")
            elif grid_tier is PowerTier.FULL:
                reserve.recharge(dt, params)

            states[did] = BrownoutState(
                district_id=did,
                tier=tier,
                grid_ratio=grid_ratio,
                effective_ratio=effective_ratio,
                multiplier=tier_multiplier(effective_ratio, params),
                priority=self.priority(did),
            )

        for did in [d for d in self._reserves if d not in topology.districts]:
            del self._reserves[did]
            self._priorities.pop(did, None)

        self._states = states
        return dict(states)

    def state(self, district_id: int) -> Optional[BrownoutState]:
        return self._states.get(district_id)

    def multiplier(self, district_id: int) -> float:
        state = self._states.get(district_id)
        return 1.0 if state is None else state.multiplier

    def balance_faction(self, topology: TopologyBuilder, status: FactionPowerStatus) -> Dict[int, float]:
        """Priority allocation of a faction's generation over its districts."""
        demands = [
            (int(d.id), self.priority(d.id), d.demand)
            for d in topology.districts_of(status.faction)
        ]
        return balance_load(demands, status.generation)

    def tier_counts(self, topology: TopologyBuilder, faction: int) -> Dict[str, int]:
        counts = {tier.name: 0 for tier in PowerTier}
        for district in topology.districts_of(faction):
            state = self._states.get(district.id)
            tier = state.tier if state is not None else classify_tier(district.power_ratio, self.params)
            counts[tier.name] += 1
        return counts

    # ------------------------------------------------------------------ #
    # Persistence                                                          #
    # ------------------------------------------------------------------ #

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reserves": {str(int(k)): r.to_dict() for k, r in self._reserves.items()},
            "priorities": {str(int(k)): p.name for k, p in self._priorities.items()},
        }

    def load_dict(self, data: Dict[str, Any]) -> None:
        self._reserves = {}
        self._priorities = {}
        self._states = {}
        for key, rd in (data.get("reserves") or {}).items():
            try:
                did = DistrictId(int(key))
            except (TypeError, ValueError):
                continue
            self._reserves[did] = EmergencyReserve.from_dict(rd or {}, self.params)
        for key, name in (data.get("priorities") or {}).items():
            try:
                did = DistrictId(int(key))
            except (TypeError, ValueError):
                continue
            self._priorities[did] = DistrictPriority.parse(name)
