"""
Grid run recorder.

Provides GridRecorder — a lightweight observer that captures one flat record
per coordinator tick (faction reports plus grid-wide counters).  Supports
serialisation to list-of-dicts for downstream persistence.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..simulation.coordinator import GridCoordinator


class GridRecorder:
    """Records per-tick grid snapshots produced during a run.

    Intended for use as a post-tick hook on the coordinator:

        recorder = GridRecorder()
        coordinator.register_post_tick_hook(recorder.record)

    Attributes:
        max_records: Maximum number of records to retain (None = unlimited).
    """

    def __init__(self, max_records: Optional[int] = None) -> None:
        """Initialise an empty recorder.

        Args:
            max_records: If set, older records are discarded when the buffer
                         exceeds this limit (FIFO).
        """
        if max_records is not None and max_records <= 0:
            raise ValueError(
                f"max_records must be > 0 or None, got {max_records}"
            )
        self.max_records: Optional[int] = max_records
        self._records: List[Dict[str, Any]] = []

    def record(self, coordinator: GridCoordinator) -> Dict[str, Any]:
        """Capture the coordinator's current state.

        Args:
            coordinator: Coordinator that has just finished a tick.

        Returns:
            The stored record.
        """
        grid = coordinator.grid
        entry = {
            "tick": coordinator.tick_count,
            "time": grid.time,
            "networks": len(grid.topology.networks),
            "cascades": grid.cascades.active_count(),
            "cascades_started": grid.cascades.total_started,
            "factions": {f: coordinator.faction_report(f) for f in grid.factions()},
        }
        self._records.append(entry)
        if self.max_records is not None and len(self._records) > self.max_records:
            self._records.pop(0)  # FIFO eviction
        return entry

    def records(self) -> List[Dict[str, Any]]:
        """Return all records in chronological order (copy of the list)."""
        return list(self._records)

    def clear(self) -> None:
        self._records = []

    def __len__(self) -> int:
        return len(self._records)

    def to_dicts(self) -> List[Dict[str, Any]]:
        """Serialise records with string faction keys (JSON-safe)."""
        out = []
        for entry in self._records:
            flat = dict(entry)
            flat["factions"] = {str(k): v for k, v in entry["factions"].items()}
            out.append(flat)
        return out

    def faction_series(self, faction: int) -> Dict[str, List[float]]:
        """Return time-series of the headline metrics for one faction.

        Ticks where the faction owned nothing are skipped.

        Args:
            faction: Faction id.

        Returns:
            Dictionary mapping metric name to list of values.
        """
        series: Dict[str, List[float]] = {
            "time": [],
            "generation": [],
            "demand": [],
            "ratio": [],
            "stability": [],
            "blackout_districts": [],
            "production_multiplier": [],
        }
        for entry in self._records:
            report = entry["factions"].get(faction)
            if report is None:
                continue
            series["time"].append(entry["time"])
            series["generation"].append(report["generation"])
            series["demand"].append(report["demand"])
            series["ratio"].append(report["ratio"])
            series["stability"].append(report["stability"])
            series["blackout_districts"].append(float(report["districts"]["blackout"]))
            series["production_multiplier"].append(report["production_multiplier"])
        return series
