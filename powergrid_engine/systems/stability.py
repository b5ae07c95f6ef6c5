"""
Stability analyzer.

Per-faction composite health score ∈ [0, 1]:

  score = w_r · clip(reserve_ratio, 0, 2) / 2
        + w_p · operational_plants / total_plants
        + w_c · powered_districts  / total_districts

with (w_r, w_p, w_c) = (0.4, 0.3, 0.3).  Empty denominators contribute 0.

Risk ladder (highest matching band wins):

  score ≥ 0.75   STABLE
  score ≥ 0.50   WARNING
  score ≥ 0.25   CRITICAL
  otherwise      FAILING

Vulnerabilities are rule-based and each maps to one recommendation.  Change
notifications are hysteresis-gated: STABILITY_CHANGED fires only when the
score has moved by more than ``stability_hysteresis`` since the last
notification.  STABILITY_ALERT fires on every refresh at CRITICAL or worse.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import IntEnum, unique
from typing import Any, Dict, List, Optional, Tuple

import numpy as np

from ..core.events import EventBus, GridEvent, GridEventType
from ..core.grid_params import GridParams
from ..core.status import FactionPowerStatus

logger = logging.getLogger("powergrid_engine.systems.stability")


@unique
class RiskLevel(IntEnum):
    """Ordered risk levels (higher integer = more severe)."""

    STABLE = 0
    WARNING = 1
    CRITICAL = 2
    FAILING = 3


@dataclass(frozen=True)
class Vulnerability:
    kind: str
    severity: str
    description: str

    def to_dict(self) -> Dict[str, str]:
        return {"kind": self.kind, "severity": self.severity, "description": self.description}


RECOMMENDATIONS: Dict[str, str] = {
    "single_point_of_failure": "Build an additional power plant to remove the single point of failure.",
    "low_reserve_margin": "Increase generation capacity; reserve margin is below 10%.",
    "damaged_infrastructure": "Repair destroyed power plants to restore lost capacity.",
    "active_blackouts": "Reconnect or reprioritise blacked-out districts.",
}


@dataclass(frozen=True)
class StabilitySnapshot:
    """Cached per-faction assessment."""

    faction: int
    score: float
    risk: RiskLevel
    reserve_ratio: float = 0.0
    plant_factor: float = 0.0
    coverage_factor: float = 0.0
    vulnerabilities: Tuple[Vulnerability, ...] = field(default_factory=tuple)
    recommendations: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "faction": self.faction,
            "score": self.score,
            "risk": self.risk.name,
            "reserve_ratio": self.reserve_ratio,
            "plant_factor": self.plant_factor,
            "coverage_factor": self.coverage_factor,
            "vulnerabilities": [v.to_dict() for v in self.vulnerabilities],
            "recommendations": list(self.recommendations),
        }


# --------------------------------------------------------------------------- #
# Pure scoring                                                                 #
# --------------------------------------------------------------------------- #


def compute_score(
    reserve_ratio: float,
    plant_factor: float,
    coverage_factor: float,
    params: GridParams,
) -> float:
    """Weighted composite score, clipped to [0, 1].

    Monotonically non-decreasing in each argument.
    """
    cap = params.reserve_ratio_cap
    reserve_term = float(np.clip(reserve_ratio, 0.0, cap)) / cap
    score = (
        params.w_reserve * reserve_term
        + params.w_plant_health * float(np.clip(plant_factor, 0.0, 1.0))
        + params.w_coverage * float(np.clip(coverage_factor, 0.0, 1.0))
    )
    return float(np.clip(score, 0.0, 1.0))


def classify_risk(score: float, params: GridParams) -> RiskLevel:
    if score >= params.risk_stable:
        return RiskLevel.STABLE
    if score >= params.risk_warning:
        return RiskLevel.WARNING
    if score >= params.risk_critical:
        return RiskLevel.CRITICAL
    return RiskLevel.FAILING


def find_vulnerabilities(status: FactionPowerStatus, params: GridParams) -> List[Vulnerability]:
    found: List[Vulnerability] = []
    if status.plants.operational == 1:
        found.append(Vulnerability(
            "single_point_of_failure", "high",
            "Only one operational power plant supplies the faction.",
        ))
    if 0.0 < status.ratio < params.low_reserve_ratio:
        found.append(Vulnerability(
            "low_reserve_margin", "medium",
            f"Generation covers demand with ratio {status.ratio:.2f}.",
        ))
    if status.plants.destroyed > 0:
        found.append(Vulnerability(
            "damaged_infrastructure", "medium",
            f"{status.plants.destroyed} power plant(s) destroyed.",
        ))
    if status.districts.blackout > 0:
        found.append(Vulnerability(
            "active_blackouts", "high",
            f"{status.districts.blackout} district(s) in blackout.",
        ))
    return found


def assess(status: FactionPowerStatus, params: GridParams) -> StabilitySnapshot:
    """Score one faction status.  Pure function."""
    plant_factor = (
        status.plants.operational / status.plants.total if status.plants.total > 0 else 0.0
    )
    coverage_factor = (
        status.districts.powered / status.districts.total if status.districts.total > 0 else 0.0
    )
    score = compute_score(status.ratio, plant_factor, coverage_factor, params)
    vulnerabilities = find_vulnerabilities(status, params)
    return StabilitySnapshot(
        faction=status.faction,
        score=score,
        risk=classify_risk(score, params),
        reserve_ratio=status.ratio,
        plant_factor=plant_factor,
        coverage_factor=coverage_factor,
        vulnerabilities=tuple(vulnerabilities),
        recommendations=tuple(RECOMMENDATIONS[v.kind] for v in vulnerabilities),
    )


# --------------------------------------------------------------------------- #
# Analyzer with hysteresis                                                     #
# --------------------------------------------------------------------------- #


class StabilityAnalyzer:
    """Caches per-faction snapshots and emits gated notifications."""

    def __init__(self, params: Optional[GridParams] = None, bus: Optional[EventBus] = None) -> None:
        self.params: GridParams = params or GridParams()
        self.bus: Optional[EventBus] = bus
        self._snapshots: Dict[int, StabilitySnapshot] = {}
        self._last_notified: Dict[int, float] = {}
        self.time: float = 0.0

    def refresh(self, status: FactionPowerStatus) -> StabilitySnapshot:
        snapshot = assess(status, self.params)
        faction = status.faction
        self._snapshots[faction] = snapshot

        baseline = self._last_notified.get(faction)
        if baseline is None:
            self._last_notified[faction] = snapshot.score
        elif abs(snapshot.score - baseline) > self.params.stability_hysteresis:
            self._last_notified[faction] = snapshot.score
            logger.info(
                f"Faction {faction} stability {baseline:.2f} -> {snapshot.score:.2f} ({snapshot.risk.name})"
            )
            self._publish(GridEventType.STABILITY_CHANGED, snapshot, {"previous": baseline})

        if snapshot.risk >= RiskLevel.CRITICAL:
            logger.warning(f"Faction {faction} grid risk {snapshot.risk.name} (score={snapshot.score:.2f})")
            self._publish(GridEventType.STABILITY_ALERT, snapshot, {})
        return snapshot

    def refresh_all(self, statuses: List[FactionPowerStatus]) -> List[StabilitySnapshot]:
        return [self.refresh(s) for s in statuses]

    def _publish(self, event_type: GridEventType, snapshot: StabilitySnapshot, extra: Dict[str, Any]) -> None:
        if self.bus is None:
            return
        data = {"score": snapshot.score, "risk": snapshot.risk.name}
        data.update(extra)
        self.bus.publish(GridEvent(type=event_type, time=self.time, faction=snapshot.faction, data=data))

    def snapshot(self, faction: int) -> Optional[StabilitySnapshot]:
        return self._snapshots.get(faction)

    def snapshots(self) -> Dict[int, StabilitySnapshot]:
        return dict(self._snapshots)

    def to_dict(self) -> Dict[str, Any]:
        return {"last_notified": {str(k): v for k, v in self._last_notified.items()}}

    def load_dict(self, data: Dict[str, Any]) -> None:
        self._snapshots = {}
        self._last_notified = {}
        for key, value in data.get("last_notified", {}).items():
            try:
                self._last_notified[int(key)] = float(value)
            except (TypeError, ValueError):
                continue
