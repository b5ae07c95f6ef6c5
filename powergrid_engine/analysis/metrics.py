"""
Grid run metrics.

Computes summary statistics over the records captured by GridRecorder.  All
metric functions accept a list of records and return scalar or dict values.
No side effects.
"""

from __future__ import annotations

from typing import Any, Dict, List

import numpy as np

from ..systems.stability import RiskLevel

Record = Dict[str, Any]


def _reports(records: List[Record], faction: int) -> List[Dict[str, Any]]:
    return [r["factions"][faction] for r in records if faction in r["factions"]]


def blackout_share(records: List[Record], faction: int) -> float:
    """Mean fraction of the faction's districts in blackout.

    Args:
        records: Ordered tick records.
        faction: Faction id.

    Returns:
        Share ∈ [0, 1].
    """
    shares = [
        rep["districts"]["blackout"] / rep["districts"]["total"]
        for rep in _reports(records, faction)
        if rep["districts"]["total"] > 0
    ]
    if not shares:
        return 0.0
    return float(np.mean(shares))


def mean_stability(records: List[Record], faction: int) -> float:
    """Mean stability score over the run."""
    scores = [rep["stability"] for rep in _reports(records, faction)]
    if not scores:
        return 0.0
    return float(np.mean(scores))


def min_stability(records: List[Record], faction: int) -> float:
    scores = [rep["stability"] for rep in _reports(records, faction)]
    if not scores:
        return 0.0
    return float(np.min(scores))


def worst_risk(records: List[Record], faction: int) -> RiskLevel:
    """Most severe risk level reached (STABLE if never recorded)."""
    levels = [RiskLevel[rep["risk"]] for rep in _reports(records, faction)]
    if not levels:
        return RiskLevel.STABLE
    return max(levels)


def risk_fraction(records: List[Record], faction: int, level: RiskLevel) -> float:
    """Fraction of ticks at or above a given risk level.

    Args:
        records: Ordered tick records.
        faction: Faction id.
        level:   Minimum risk level to count.

    Returns:
        Fraction ∈ [0, 1].
    """
    reports = _reports(records, faction)
    if not reports:
        return 0.0
    count = sum(1 for rep in reports if RiskLevel[rep["risk"]] >= level)
    return count / len(reports)


def peak_cascades(records: List[Record]) -> int:
    if not records:
        return 0
    return int(max(r["cascades"] for r in records))


def summary_statistics(records: List[Record]) -> Dict[str, Any]:
    """Compute a per-faction summary over a run.

    Args:
        records: Ordered tick records.

    Returns:
        Dictionary with run-level counters and one sub-dict per faction.
    """
    factions = sorted({f for r in records for f in r["factions"]})
    per_faction: Dict[str, Dict[str, Any]] = {}
    for faction in factions:
        reports = _reports(records, faction)
        final = reports[-1] if reports else {}
        per_faction[str(faction)] = {
            "mean_stability": mean_stability(records, faction),
            "min_stability": min_stability(records, faction),
            "worst_risk": worst_risk(records, faction).name,
            "critical_fraction": risk_fraction(records, faction, RiskLevel.CRITICAL),
            "blackout_share": blackout_share(records, faction),
            "final_generation": final.get("generation", 0.0),
            "final_demand": final.get("demand", 0.0),
            "final_ratio": final.get("ratio", 0.0),
        }
    return {
        "n_ticks": len(records),
        "final_time": records[-1]["time"] if records else 0.0,
        "peak_cascades": peak_cascades(records),
        "cascades_started": records[-1]["cascades_started"] if records else 0,
        "factions": per_faction,
    }
