"""
Tests for the fixed-interval coordinator, the reactive responder and the
run recorder / metrics built on top of them.
"""

import numpy as np
import pytest

from powergrid_engine.analysis.metrics import (
    blackout_share,
    mean_stability,
    peak_cascades,
    risk_fraction,
    summary_statistics,
    worst_risk,
)
from powergrid_engine.analysis.recorder import GridRecorder
from powergrid_engine.analysis.validation import validate_grid
from powergrid_engine.core.events import GridEvent, GridEventType
from powergrid_engine.core.ids import INVALID_ID
from powergrid_engine.simulation.coordinator import GridCoordinator
from powergrid_engine.systems.brownout import DistrictPriority, PowerTier
from powergrid_engine.systems.consumption import ConsumerKind
from powergrid_engine.systems.stability import RiskLevel


def _outpost(coordinator=None):
    """One fusion plant feeding one 150-demand district with two consumers."""
    c = coordinator or GridCoordinator()
    g = c.create_fusion_plant(0)
    d = c.create_district(0, 150.0, priority=DistrictPriority.HIGH)
    c.create_power_line(g, d, 100.0)
    factory = c.add_consumer(0, ConsumerKind.FACTORY, d)
    turret = c.add_consumer(0, ConsumerKind.DEFENSE, d)
    return c, g, d, factory, turret


# --------------------------------------------------------------------------- #
# Scheduling                                                                   #
# --------------------------------------------------------------------------- #


def test_tick_interval_defaults_and_floor():
    assert GridCoordinator().tick_interval == pytest.approx(0.1)
    c = GridCoordinator(tick_interval_ms=5.0)
    assert c.tick_interval == pytest.approx(0.016)
    assert c.set_tick_interval(250.0) == 250.0
    assert c.tick_interval == pytest.approx(0.25)


def test_update_runs_at_most_one_tick():
    c = GridCoordinator()
    assert c.update(0.05) is False
    assert c.tick_count == 0
    assert c.update(0.05) is True
    assert c.tick_count == 1
    assert c.update(1.0) is True
    assert c.tick_count == 2
    assert c.grid.time == pytest.approx(1.1)
    assert c.update(0.0) is False


def test_post_tick_hooks_receive_coordinator():
    c = GridCoordinator()
    seen = []
    c.register_post_tick_hook(lambda coord: seen.append(coord.tick_count))
    c.tick()
    c.tick()
    assert seen == [1, 2]


# --------------------------------------------------------------------------- #
# Tick pipeline                                                                #
# --------------------------------------------------------------------------- #


def test_tick_refreshes_consumers_brownout_and_stability():
    c, g, d, factory, turret = _outpost()
    c.tick()
    assert c.consumers.get(factory).production_multiplier == 1.0
    assert c.get_brownout_state(d).tier is PowerTier.FULL
    assert c.get_stability(0).risk is RiskLevel.STABLE

    seen = []
    c.bus.subscribe(seen.append)
    c.grid.damage_generator(g, 10_000.0)
    c.tick()

    assert c.consumers.get(factory).production_multiplier == 0.5
    state = c.get_brownout_state(d)
    assert state.grid_ratio == 0.0
    assert np.isclose(state.effective_ratio, 25.0 / 150.0)
    assert state.tier is PowerTier.CRITICAL
    assert c.brownout.reserve(d).active
    assert c.get_stability(0).risk is RiskLevel.FAILING
    assert any(e.type is GridEventType.STABILITY_ALERT for e in seen)


def test_faction_report_contents():
    c, g, d, factory, turret = _outpost()
    c.tick()
    report = c.faction_report(0)
    assert report["generation"] == 200.0
    assert report["demand"] == 150.0
    assert report["risk"] == "STABLE"
    assert report["vulnerabilities"] == ["single_point_of_failure"]
    assert report["tiers"]["FULL"] == 1
    assert report["cascades"] == 0
    assert report["production_multiplier"] == 1.0
    assert report["redundancy"]["survives_largest_loss"] is False


def test_balance_load_uses_district_priorities():
    c = GridCoordinator()
    s = c.create_solar_plant(0)
    vip = c.create_district(0, 40.0, priority=DistrictPriority.CRITICAL)
    slum = c.create_district(0, 40.0, priority=DistrictPriority.LOW)
    c.create_power_line(s, vip)
    c.create_power_line(s, slum)
    allocation = c.balance_load(0)
    assert allocation[vip] == 40.0
    assert allocation[slum] == 10.0
    assert c.brownout.priority(vip) is DistrictPriority.CRITICAL


def test_add_consumer_rejects_unknown_district():
    c = GridCoordinator()
    assert c.add_consumer(0, ConsumerKind.RESEARCH, 42) == INVALID_ID
    assert c.add_consumer(0, ConsumerKind.RESEARCH) == 1


# --------------------------------------------------------------------------- #
# Reactive responder                                                           #
# --------------------------------------------------------------------------- #


def test_blackout_pauses_factories_and_restore_resumes():
    calls = []
    c = GridCoordinator(production_callback=lambda *args: calls.append(args))
    _, g, d, factory, turret = _outpost(c)
    c.tick()
    assert calls == []
    assert not c.grid.is_district_in_blackout(d)

    seen = []
    c.bus.subscribe(seen.append)
    c.grid.damage_generator(g, 10_000.0)
    assert calls == [(d, 0, 0.5)]
    assert c.income_multiplier(d) == 0.5
    assert c.responder.is_paused(factory)
    assert not c.responder.is_paused(turret)
    assert c.responder.paused_consumers() == [factory]
    paused = [e for e in seen if e.type is GridEventType.CONSUMER_PAUSED]
    assert [e.entity_id for e in paused] == [factory]

    c.grid.full_repair_generator(g)
    assert calls[-1] == (d, 0, 1.0)
    assert c.income_multiplier(d) == 1.0
    assert not c.consumers.get(factory).paused
    assert c.responder.paused_consumers() == []
    assert any(e.type is GridEventType.CONSUMER_RESUMED for e in seen)


def test_raised_demand_pauses_factories_on_next_tick():
    c = GridCoordinator()
    g = c.create_fusion_plant(0)
    d = c.create_district(0, 100.0)
    c.create_power_line(g, d)
    factory = c.add_consumer(0, ConsumerKind.FACTORY, d)
    c.tick()

    seen = []
    c.bus.subscribe(seen.append)
    c.grid.set_district_demand(d, 500.0)
    c.tick()
    assert any(e.type is GridEventType.DISTRICT_BLACKOUT and e.entity_id == d for e in seen)
    assert c.income_multiplier(d) == 0.5
    assert c.responder.is_paused(factory)


def test_district_dark_from_creation_pauses_factories():
    c = GridCoordinator()
    g = c.create_fusion_plant(0)
    d = c.create_district(0, 500.0)
    c.create_power_line(g, d)
    factory = c.add_consumer(0, ConsumerKind.FACTORY, d)
    c.tick()
    assert c.grid.is_district_in_blackout(d)
    assert c.income_multiplier(d) == 0.5
    assert c.responder.is_paused(factory)
    assert c.responder.paused_consumers() == [factory]


def test_infrastructure_log_is_bounded():
    c = GridCoordinator()
    for i in range(150):
        c.bus.publish(GridEvent(GridEventType.CASCADE_STARTED, entity_id=i))
    c.bus.publish(GridEvent(GridEventType.NETWORK_RECALCULATED))
    events = c.responder.recent_events()
    assert len(events) == 100
    assert events[0].entity_id == 50
    assert [e.entity_id for e in c.responder.recent_events(3)] == [147, 148, 149]
    c.responder.clear_log()
    assert c.responder.recent_events() == []


def test_removed_district_releases_consumers():
    c, g, d, factory, turret = _outpost()
    c.tick()
    c.grid.damage_generator(g, 10_000.0)
    assert c.responder.is_paused(factory)
    c.grid.remove_district(d)
    assert not c.responder.is_paused(factory)
    assert c.consumers.get(factory).district_id is None


def test_capture_moves_district_consumers():
    c, g, d, factory, turret = _outpost()
    c.tick()
    assert c.on_district_captured(d, 1)
    assert c.consumers.get(factory).faction == 1
    assert c.consumers.get(turret).faction == 1
    assert c.grid.get_district_info(d)["faction"] == 1
    assert c.on_district_captured(999, 1) is False


def test_resource_callback_can_be_swapped():
    c = GridCoordinator()
    c.set_resource_callback(lambda faction, cost: False)
    assert c.create_district(0, 10.0) == INVALID_ID
    c.set_resource_callback(None)
    assert c.create_district(0, 10.0) == 1


# --------------------------------------------------------------------------- #
# Persistence                                                                  #
# --------------------------------------------------------------------------- #


def test_coordinator_snapshot_round_trip():
    c, g, d, factory, turret = _outpost()
    c.set_tick_interval(50.0)
    c.tick()
    c.grid.damage_generator(g, 10_000.0)
    c.tick()

    restored = GridCoordinator.from_dict(c.to_dict())
    assert restored.tick_count == 2
    assert restored.tick_interval == pytest.approx(0.05)
    assert restored.brownout.priority(d) is DistrictPriority.HIGH
    assert restored.responder.is_paused(factory)
    assert restored.grid.is_district_in_blackout(d)
    assert restored.add_consumer(0, ConsumerKind.RESEARCH) == turret + 1
    assert restored.create_fusion_plant(0) == g + 1


# --------------------------------------------------------------------------- #
# Recorder, metrics, validation                                                #
# --------------------------------------------------------------------------- #


def test_recorder_and_metrics():
    c, g, d, factory, turret = _outpost()
    recorder = GridRecorder()
    c.register_post_tick_hook(recorder.record)
    for _ in range(4):
        c.tick()
    c.grid.damage_generator(g, 10_000.0)
    for _ in range(4):
        c.tick()

    records = recorder.records()
    assert len(recorder) == 8
    assert records[0]["tick"] == 1
    assert blackout_share(records, 0) == 0.5
    assert worst_risk(records, 0) is RiskLevel.FAILING
    assert risk_fraction(records, 0, RiskLevel.CRITICAL) == 0.5
    assert peak_cascades(records) == 1
    assert 0.0 < mean_stability(records, 0) < 1.0

    stats = summary_statistics(records)
    assert stats["n_ticks"] == 8
    assert stats["cascades_started"] == 1
    assert stats["factions"]["0"]["worst_risk"] == "FAILING"

    series = recorder.faction_series(0)
    assert series["generation"][:4] == [200.0] * 4
    assert series["generation"][-1] == 0.0
    assert list(recorder.to_dicts()[0]["factions"]) == ["0"]


def test_recorder_eviction_and_validation():
    with pytest.raises(ValueError):
        GridRecorder(max_records=0)
    c, g, d, factory, turret = _outpost()
    recorder = GridRecorder(max_records=3)
    c.register_post_tick_hook(recorder.record)
    for _ in range(5):
        c.tick()
    assert [r["tick"] for r in recorder.records()] == [3, 4, 5]
    assert summary_statistics([])["n_ticks"] == 0


def test_validation_passes_on_damaged_grid():
    c, g, d, factory, turret = _outpost()
    s = c.create_solar_plant(1)
    other = c.create_district(1, 30.0)
    c.create_power_line(s, other)
    c.create_power_line(s, d)
    c.tick()
    c.grid.damage_generator(g, 10_000.0)
    c.tick()
    assert validate_grid(c.grid) == []
