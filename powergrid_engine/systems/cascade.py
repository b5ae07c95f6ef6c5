"""
Cascade tracker.

Classifies each affected district's power ratio (current_power / demand) into
a severity band and derives a production penalty:

  ratio ≥ 0.75          NONE      penalty 0.00
  0.50 ≤ ratio < 0.75   PARTIAL   penalty 0.25
  0.25 ≤ ratio < 0.50   FULL      penalty 0.75
  ratio < 0.25          CRITICAL  penalty 1.00   (production halted)

Records are created only when a destruction event reaches a district whose
ratio is below the top band, and are removed as soon as the district recovers
to NONE.  ``update_cascades`` re-evaluates every open record after each
recalculation and notifies on start, severity change and resolution.

Time advances only through ``advance(dt)``; no wall clock is read.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum, unique
from typing import Any, Dict, Iterable, List, Optional

from ..core.events import EventBus, GridEvent, GridEventType
from ..core.grid_params import GridParams
from ..core.ids import DistrictId
from ..core.topology import TopologyBuilder

logger = logging.getLogger("powergrid_engine.systems.cascade")


@unique
class CascadeSeverity(IntEnum):
    """Ordered cascade severity (higher integer = more severe)."""

    NONE = 0
    PARTIAL = 1
    FULL = 2
    CRITICAL = 3


def classify_ratio(ratio: float, params: GridParams) -> CascadeSeverity:
    """Map a power ratio to its severity band."""
    if ratio >= params.cascade_partial_below:
        return CascadeSeverity.NONE
    if ratio >= params.cascade_full_below:
        return CascadeSeverity.PARTIAL
    if ratio >= params.cascade_critical_below:
        return CascadeSeverity.FULL
    return CascadeSeverity.CRITICAL


def severity_penalty(severity: CascadeSeverity, params: GridParams) -> float:
    return {
        CascadeSeverity.NONE: 0.0,
        CascadeSeverity.PARTIAL: params.penalty_partial,
        CascadeSeverity.FULL: params.penalty_full,
        CascadeSeverity.CRITICAL: params.penalty_critical,
    }[severity]


@dataclass
class CascadeRecord:
    """Open cascade on one district."""

    district_id: DistrictId
    faction: int
    severity: CascadeSeverity
    production_penalty: float
    start_time: float
    origin_id: int = -1
    origin_kind: str = ""

    def duration(self, now: float) -> float:
        return max(0.0, now - self.start_time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "district_id": int(self.district_id),
            "faction": self.faction,
            "severity": int(self.severity),
            "production_penalty": self.production_penalty,
            "start_time": self.start_time,
            "origin_id": self.origin_id,
            "origin_kind": self.origin_kind,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], params: GridParams) -> "CascadeRecord":
        try:
            severity = CascadeSeverity(int(data.get("severity", CascadeSeverity.PARTIAL)))
        except ValueError:
            severity = CascadeSeverity.PARTIAL
        return cls(
            district_id=DistrictId(int(data.get("district_id", -1))),
            faction=int(data.get("faction", -1)),
            severity=severity,
            production_penalty=float(data.get("production_penalty", severity_penalty(severity, params))),
            start_time=float(data.get("start_time", 0.0)),
            origin_id=int(data.get("origin_id", -1)),
            origin_kind=str(data.get("origin_kind", "")),
        )


class CascadeTracker:
    """Open cascade records keyed by district.

    Attributes:
        params: Grid parameters (bands and penalties).
        time:   Accumulated simulation seconds.
    """

    def __init__(self, params: Optional[GridParams] = None, bus: Optional[EventBus] = None) -> None:
        self.params: GridParams = params or GridParams()
        self.bus: Optional[EventBus] = bus
        self.time: float = 0.0
        self._records: Dict[DistrictId, CascadeRecord] = {}
        self.total_started = 0
        self.total_resolved = 0

    # ------------------------------------------------------------------ #
    # Time                                                                  #
    # ------------------------------------------------------------------ #

    def advance(self, dt: float) -> None:
        if dt > 0.0:
            self.time += dt

    # ------------------------------------------------------------------ #
    # Propagation                                                          #
    # ------------------------------------------------------------------ #

    def on_destruction(
        self,
        district_ids: Iterable[int],
        topology: TopologyBuilder,
        origin_id: int = -1,
        origin_kind: str = "",
    ) -> List[CascadeRecord]:
        """Evaluate every district fed by a destroyed component.

        Must run after the post-destruction recalculation so the ratios are
        current.  Returns records that were newly opened.
        """
        opened: List[CascadeRecord] = []
        for did in district_ids:
            district = topology.get_district(did)
            if district is None:
                continue
            severity = classify_ratio(district.power_ratio, self.params)
            existing = self._records.get(district.id)
            if existing is not None:
                self._update_record(existing, severity, district.owning_faction)
                continue
            if severity is CascadeSeverity.NONE:
                continue
            record = CascadeRecord(
                district_id=district.id,
                faction=district.owning_faction,
                severity=severity,
                production_penalty=severity_penalty(severity, self.params),
                start_time=self.time,
                origin_id=origin_id,
                origin_kind=origin_kind,
            )
            self._records[district.id] = record
            self.total_started += 1
            opened.append(record)
            logger.info(
                f"Cascade started on district {district.id} "
                f"({severity.name}, ratio={district.power_ratio:.2f}) from {origin_kind} {origin_id}"
            )
            self._notify(GridEventType.CASCADE_STARTED, record, {"ratio": district.power_ratio})
        return opened

    def update_cascades(self, topology: TopologyBuilder) -> None:
        """Re-evaluate all open records; resolve those back at NONE."""
        for did in list(self._records):
            record = self._records[did]
            district = topology.get_district(did)
            if district is None:
                del self._records[did]
                self.total_resolved += 1
                self._notify(GridEventType.CASCADE_RESOLVED, record, {"reason": "removed"})
                continue
            severity = classify_ratio(district.power_ratio, self.params)
            self._update_record(record, severity, district.owning_faction)

    def _update_record(self, record: CascadeRecord, severity: CascadeSeverity, faction: int) -> None:
        record.faction = faction
        if severity is CascadeSeverity.NONE:
            del self._records[record.district_id]
            self.total_resolved += 1
            logger.info(
                f"Cascade resolved on district {record.district_id} "
                f"after {record.duration(self.time):.1f}s"
            )
            self._notify(
                GridEventType.CASCADE_RESOLVED, record, {"duration": record.duration(self.time)}
            )
            return
        if severity is not record.severity:
            previous = record.severity
            record.severity = severity
            record.production_penalty = severity_penalty(severity, self.params)
            self._notify(
                GridEventType.CASCADE_UPDATED,
                record,
                {"previous": previous.name, "severity": severity.name},
            )

    def _notify(self, event_type: GridEventType, record: CascadeRecord, data: Dict[str, Any]) -> None:
        if self.bus is None:
            return
        payload = {"severity": record.severity.name, "penalty": record.production_penalty}
        payload.update(data)
        self.bus.publish(
            GridEvent(
                type=event_type,
                time=self.time,
                entity_id=int(record.district_id),
                faction=record.faction,
                data=payload,
            )
        )

    # ------------------------------------------------------------------ #
    # Queries                                                              #
    # ------------------------------------------------------------------ #

    def record(self, district_id: int) -> Optional[CascadeRecord]:
        return self._records.get(district_id)

    def records(self) -> List[CascadeRecord]:
        return list(self._records.values())

    def severity(self, district_id: int) -> CascadeSeverity:
        record = self._records.get(district_id)
        return CascadeSeverity.NONE if record is None else record.severity

    def production_multiplier(self, district_id: int) -> float:
        """1 − penalty of the open record (1.0 when there is none)."""
        record = self._records.get(district_id)
        if record is None:
            return 1.0
        return 1.0 - record.production_penalty

    def active_count(self, faction: Optional[int] = None) -> int:
        if faction is None:
            return len(self._records)
        return sum(1 for r in self._records.values() if r.faction == faction)

    def clear(self) -> None:
        self._records = {}

    # ------------------------------------------------------------------ #
    # Persistence                                                          #
    # ------------------------------------------------------------------ #

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": self.time,
            "records": [r.to_dict() for r in self._records.values()],
            "total_started": self.total_started,
            "total_resolved": self.total_resolved,
        }

    def load_dict(self, data: Dict[str, Any]) -> None:
        self.time = float(data.get("time", 0.0))
        self.total_started = int(data.get("total_started", 0))
        self.total_resolved = int(data.get("total_resolved", 0))
        self._records = {}
        for rd in data.get("records", []):
            record = CascadeRecord.from_dict(rd, self.params)
            if record.district_id >= 0:
                self._records[record.district_id] = record
