"""
Tests for cascade classification/tracking and the stability analyzer.
"""

import itertools

import numpy as np

from powergrid_engine.core.events import EventBus, GridEventType
from powergrid_engine.core.grid_params import GridParams
from powergrid_engine.core.status import DistrictCounts, FactionPowerStatus, PlantCounts
from powergrid_engine.simulation.grid_manager import PowerGridManager
from powergrid_engine.systems.cascade import CascadeSeverity, classify_ratio, severity_penalty
from powergrid_engine.systems.stability import (
    RiskLevel,
    StabilityAnalyzer,
    assess,
    classify_risk,
    compute_score,
)


def _status(faction=0, generation=200.0, demand=150.0, plants=(1, 1, 0), districts=(1, 1, 0)):
    ratio = generation / demand if demand > 0 else (1.0 if generation > 0 else 0.0)
    return FactionPowerStatus(
        faction=faction,
        generation=generation,
        demand=demand,
        balance=generation - demand,
        ratio=ratio,
        plants=PlantCounts(*plants),
        districts=DistrictCounts(*districts),
        largest_output=generation,
    )


def _recorder(bus):
    seen = []
    bus.subscribe(seen.append)
    return seen


# --------------------------------------------------------------------------- #
# Cascade bands                                                                #
# --------------------------------------------------------------------------- #


def test_severity_bands():
    params = GridParams()
    assert classify_ratio(1.0, params) is CascadeSeverity.NONE
    assert classify_ratio(0.75, params) is CascadeSeverity.NONE
    assert classify_ratio(0.7499, params) is CascadeSeverity.PARTIAL
    assert classify_ratio(0.5, params) is CascadeSeverity.PARTIAL
    assert classify_ratio(0.4999, params) is CascadeSeverity.FULL
    assert classify_ratio(0.25, params) is CascadeSeverity.FULL
    assert classify_ratio(0.2499, params) is CascadeSeverity.CRITICAL
    assert classify_ratio(0.0, params) is CascadeSeverity.CRITICAL


def test_severity_increases_as_ratio_falls():
    params = GridParams()
    ratios = np.linspace(1.0, 0.0, 101)
    severities = [classify_ratio(r, params) for r in ratios]
    assert all(a <= b for a, b in zip(severities, severities[1:]))


def test_penalties():
    params = GridParams()
    assert severity_penalty(CascadeSeverity.NONE, params) == 0.0
    assert severity_penalty(CascadeSeverity.PARTIAL, params) == 0.25
    assert severity_penalty(CascadeSeverity.FULL, params) == 0.75
    assert severity_penalty(CascadeSeverity.CRITICAL, params) == 1.0


# --------------------------------------------------------------------------- #
# Cascade tracking through the facade                                          #
# --------------------------------------------------------------------------- #


def test_destroying_sole_generator_is_critical():
    grid = PowerGridManager()
    g = grid.create_fusion_plant(0)
    d = grid.create_district(0, 150.0)
    grid.create_power_line(g, d, 100.0)
    grid.recalculate()
    assert grid.get_district_production_multiplier(d) == 1.0

    grid.damage_generator(g, 10_000.0)
    info = grid.get_district_info(d)
    assert info["current_power"] == 0.0
    assert info["ratio"] == 0.0
    assert info["blackout"] is True
    assert info["severity"] == "CRITICAL"
    assert grid.get_cascade_severity(d) is CascadeSeverity.CRITICAL
    assert grid.get_district_production_multiplier(d) == 0.0


def test_partial_cascade_resolves_on_repair():
    grid = PowerGridManager()
    seen = _recorder(grid.bus)
    g1 = grid.create_fusion_plant(0)
    g2 = grid.create_fusion_plant(0)
    d = grid.create_district(0, 300.0)
    grid.create_power_line(g1, d)
    grid.create_power_line(g2, d)
    grid.recalculate()

    grid.damage_generator(g2, 10_000.0)
    record = grid.cascades.record(d)
    assert record is not None
    assert record.severity is CascadeSeverity.PARTIAL
    assert record.origin_kind == "generator"
    assert record.origin_id == g2
    assert np.isclose(grid.get_district_production_multiplier(d), 0.75)
    assert not grid.is_district_in_blackout(d)

    grid.advance(4.0)
    grid.full_repair_generator(g2)
    assert grid.cascades.record(d) is None
    assert grid.get_district_production_multiplier(d) == 1.0

    types = [e.type for e in seen]
    assert GridEventType.CASCADE_STARTED in types
    resolved = [e for e in seen if e.type is GridEventType.CASCADE_RESOLVED]
    assert len(resolved) == 1
    assert resolved[0].data["duration"] == 4.0


def test_cascade_severity_updates_with_demand():
    grid = PowerGridManager()
    seen = _recorder(grid.bus)
    g1 = grid.create_fusion_plant(0)
    g2 = grid.create_fusion_plant(0)
    d = grid.create_district(0, 300.0)
    grid.create_power_line(g1, d)
    grid.create_power_line(g2, d)
    grid.damage_generator(g2, 10_000.0)
    assert grid.get_cascade_severity(d) is CascadeSeverity.PARTIAL

    grid.set_district_demand(d, 600.0)  # 200 / 600 ≈ 0.33
    assert grid.get_cascade_severity(d) is CascadeSeverity.FULL
    updates = [e for e in seen if e.type is GridEventType.CASCADE_UPDATED]
    assert updates[-1].data["previous"] == "PARTIAL"
    assert updates[-1].data["severity"] == "FULL"


def test_line_destruction_cascades_to_target():
    grid = PowerGridManager()
    g = grid.create_fusion_plant(0)
    d = grid.create_district(0, 100.0)
    line = grid.create_power_line(g, d)
    grid.damage_line(line, grid.params.line_max_health)
    assert grid.is_district_in_blackout(d)
    assert grid.get_cascade_severity(d) is CascadeSeverity.CRITICAL
    assert grid.cascades.record(d).origin_kind == "line"


def test_destruction_leaves_other_networks_untouched():
    grid = PowerGridManager()
    g1 = grid.create_fusion_plant(0)
    g2 = grid.create_fusion_plant(0)
    d1 = grid.create_district(0, 100.0)
    d2 = grid.create_district(0, 100.0)
    grid.create_power_line(g1, d1)
    grid.create_power_line(g2, d2)
    grid.damage_generator(g1, 10_000.0)
    assert grid.get_cascade_severity(d1) is CascadeSeverity.CRITICAL
    assert grid.get_cascade_severity(d2) is CascadeSeverity.NONE
    assert grid.cascades.active_count() == 1


# --------------------------------------------------------------------------- #
# Stability                                                                    #
# --------------------------------------------------------------------------- #


def test_score_formula():
    params = GridParams()
    assert np.isclose(compute_score(1.0, 1.0, 1.0, params), 0.8)
    assert np.isclose(compute_score(2.0, 1.0, 1.0, params), 1.0)
    assert np.isclose(compute_score(5.0, 1.0, 1.0, params), 1.0)
    assert compute_score(0.0, 0.0, 0.0, params) == 0.0


def test_score_monotone_in_each_factor():
    params = GridParams()
    grid = np.linspace(0.0, 1.0, 6)
    reserves = np.linspace(0.0, 2.5, 6)
    for r, p, c in itertools.product(reserves, grid, grid):
        base = compute_score(r, p, c, params)
        assert compute_score(r + 0.3, p, c, params) >= base
        assert compute_score(r, min(p + 0.2, 1.0), c, params) >= base
        assert compute_score(r, p, min(c + 0.2, 1.0), params) >= base


def test_risk_bands():
    params = GridParams()
    assert classify_risk(0.75, params) is RiskLevel.STABLE
    assert classify_risk(0.74, params) is RiskLevel.WARNING
    assert classify_risk(0.50, params) is RiskLevel.WARNING
    assert classify_risk(0.25, params) is RiskLevel.CRITICAL
    assert classify_risk(0.24, params) is RiskLevel.FAILING


def test_single_plant_faction_is_single_point_of_failure():
    snapshot = assess(_status(), GridParams())
    kinds = [v.kind for v in snapshot.vulnerabilities]
    assert kinds == ["single_point_of_failure"]
    assert snapshot.vulnerabilities[0].severity == "high"
    assert len(snapshot.recommendations) == 1
    assert snapshot.risk is RiskLevel.STABLE


def test_failing_faction_vulnerabilities():
    status = _status(generation=0.0, plants=(2, 0, 2), districts=(3, 0, 3))
    snapshot = assess(status, GridParams())
    kinds = {v.kind for v in snapshot.vulnerabilities}
    assert kinds == {"damaged_infrastructure", "active_blackouts"}
    assert snapshot.score == 0.0
    assert snapshot.risk is RiskLevel.FAILING


def test_low_reserve_margin():
    status = _status(generation=105.0, demand=100.0, plants=(2, 2, 0))
    kinds = [v.kind for v in assess(status, GridParams()).vulnerabilities]
    assert kinds == ["low_reserve_margin"]


def test_hysteresis_gates_change_notifications():
    bus = EventBus()
    seen = _recorder(bus)
    analyzer = StabilityAnalyzer(GridParams(), bus)
    analyzer.refresh(_status(generation=200.0, plants=(2, 2, 0)))
    analyzer.refresh(_status(generation=210.0, plants=(2, 2, 0)))
    assert not [e for e in seen if e.type is GridEventType.STABILITY_CHANGED]

    analyzer.refresh(_status(generation=200.0, plants=(2, 1, 1)))
    changed = [e for e in seen if e.type is GridEventType.STABILITY_CHANGED]
    assert len(changed) == 1
    assert changed[0].data["score"] < changed[0].data["previous"]


def test_alert_fires_at_critical_or_worse():
    bus = EventBus()
    seen = _recorder(bus)
    analyzer = StabilityAnalyzer(GridParams(), bus)
    analyzer.refresh(_status(generation=0.0, plants=(1, 0, 1), districts=(1, 0, 1)))
    analyzer.refresh(_status(generation=0.0, plants=(1, 0, 1), districts=(1, 0, 1)))
    alerts = [e for e in seen if e.type is GridEventType.STABILITY_ALERT]
    assert len(alerts) == 2
    assert alerts[0].data["risk"] == "FAILING"
    assert analyzer.snapshot(0).risk is RiskLevel.FAILING
