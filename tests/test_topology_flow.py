"""
Tests for connected-component rebuild and proportional distribution.
"""

import numpy as np

from powergrid_engine.core.flow import capped_allocation, proportional_allocation, recalculate_all
from powergrid_engine.core.generator import GeneratorKind
from powergrid_engine.core.grid_params import GridParams
from powergrid_engine.core.topology import TopologyBuilder


def _build(params=None):
    return TopologyBuilder(params or GridParams())


# --------------------------------------------------------------------------- #
# Topology                                                                     #
# --------------------------------------------------------------------------- #


def test_separate_stars_form_separate_networks():
    topo = _build()
    g1 = topo.add_generator(0, GeneratorKind.FUSION)
    g2 = topo.add_generator(0, GeneratorKind.FUSION)
    d1 = topo.add_district(0, 50.0)
    d2 = topo.add_district(0, 50.0)
    topo.add_line(g1.id, d1.id)
    topo.add_line(g2.id, d2.id)
    networks = topo.rebuild()
    assert len(networks) == 2
    assert topo.network_of_district(d1.id) is not topo.network_of_district(d2.id)


def test_shared_district_joins_generators():
    topo = _build()
    g1 = topo.add_generator(0, GeneratorKind.FUSION)
    g2 = topo.add_generator(0, GeneratorKind.SOLAR)
    shared = topo.add_district(0, 100.0)
    other = topo.add_district(0, 40.0)
    topo.add_line(g1.id, shared.id)
    topo.add_line(g2.id, shared.id)
    topo.add_line(g2.id, other.id)
    networks = topo.rebuild()
    assert len(networks) == 1
    assert sorted(networks[0].generator_ids) == [g1.id, g2.id]
    assert sorted(networks[0].district_ids) == [shared.id, other.id]
    assert len(networks[0].line_ids) == 3


def test_destroyed_line_severs_connectivity():
    topo = _build()
    g = topo.add_generator(0, GeneratorKind.FUSION)
    d = topo.add_district(0, 50.0)
    line = topo.add_line(g.id, d.id)
    topo.rebuild()
    assert topo.network_of_district(d.id) is not None
    line.apply_damage(line.max_health)
    topo.mark_dirty()
    topo.rebuild()
    assert topo.network_of_district(d.id) is None
    assert [x.id for x in topo.orphan_districts()] == [d.id]
    assert line.network_id == -1


def test_destroyed_generator_is_not_a_seed():
    topo = _build()
    g = topo.add_generator(0, GeneratorKind.FUSION)
    d = topo.add_district(0, 50.0)
    topo.add_line(g.id, d.id)
    g.apply_damage(10_000.0)
    networks = topo.rebuild()
    assert networks == []
    assert g.network_id == -1


def test_mixed_faction_network_tracks_every_faction():
    topo = _build()
    g = topo.add_generator(0, GeneratorKind.FUSION)
    home = topo.add_district(0, 60.0)
    foreign = topo.add_district(1, 40.0)
    topo.add_line(g.id, home.id)
    topo.add_line(g.id, foreign.id)
    recalculate_all(topo, topo.params)
    network = topo.network_of_district(foreign.id)
    assert network.faction == 0
    assert network.factions == {0, 1}
    assert network.mixed_faction
    assert network.faction_demand == {0: 60.0, 1: 40.0}
    assert network.faction_generation == {0: 200.0}


def test_add_line_with_unknown_endpoint_returns_none():
    topo = _build()
    g = topo.add_generator(0, GeneratorKind.FUSION)
    assert topo.add_line(g.id, 42) is None
    assert topo.lines == {}


def test_remove_generator_detaches_lines():
    topo = _build()
    g = topo.add_generator(0, GeneratorKind.FUSION)
    d = topo.add_district(0, 50.0)
    topo.add_line(g.id, d.id)
    assert topo.remove_generator(g.id)
    assert topo.lines == {}
    assert d.connected_line_ids == []
    assert not topo.remove_generator(g.id)


# --------------------------------------------------------------------------- #
# Flow                                                                         #
# --------------------------------------------------------------------------- #


def test_single_fusion_scenario():
    # 1 fusion (200) → 1 line (cap 100) → 1 district (demand 150)
    topo = _build()
    g = topo.add_generator(0, GeneratorKind.FUSION)
    d = topo.add_district(0, 150.0)
    line = topo.add_line(g.id, d.id, 100.0)
    recalculate_all(topo, topo.params)
    network = topo.network_of_district(d.id)
    assert network.generation == 200.0
    assert network.deliverable == 200.0
    assert np.isclose(d.current_power, 150.0)
    assert np.isclose(d.power_ratio, 1.0)
    assert not d.blackout
    # Unclamped: the single line nominally carries more than its capacity
    assert np.isclose(line.current_flow, 150.0)
    assert line.overloaded


def test_capacity_clamp_limits_district_to_line_capacity():
    params = GridParams(enforce_line_capacity=True)
    topo = _build(params)
    g = topo.add_generator(0, GeneratorKind.FUSION)
    d = topo.add_district(0, 150.0)
    line = topo.add_line(g.id, d.id, 100.0)
    recalculate_all(topo, params)
    assert np.isclose(d.current_power, 100.0)
    assert np.isclose(line.current_flow, 100.0)
    assert not line.overloaded
    assert not d.blackout


def test_capacity_clamp_redistributes_excess():
    params = GridParams(enforce_line_capacity=True)
    topo = _build(params)
    g = topo.add_generator(0, GeneratorKind.FUSION)
    narrow = topo.add_district(0, 100.0)
    wide = topo.add_district(0, 100.0)
    topo.add_line(g.id, narrow.id, 20.0)
    topo.add_line(g.id, wide.id, 500.0)
    recalculate_all(topo, params)
    assert np.isclose(narrow.current_power, 20.0)
    assert np.isclose(wide.current_power, 100.0)


def test_two_districts_full_supply():
    params = GridParams(solar_max_output=100.0)
    topo = _build(params)
    g = topo.add_generator(0, GeneratorKind.SOLAR)
    d30 = topo.add_district(0, 30.0)
    d70 = topo.add_district(0, 70.0)
    topo.add_line(g.id, d30.id)
    topo.add_line(g.id, d70.id)
    recalculate_all(topo, params)
    assert np.isclose(d30.current_power, 30.0)
    assert np.isclose(d70.current_power, 70.0)
    assert np.isclose(d30.power_ratio, 1.0)
    assert np.isclose(d70.power_ratio, 1.0)


def test_half_output_lands_exactly_on_blackout_boundary():
    params = GridParams(solar_max_output=100.0)
    topo = _build(params)
    g = topo.add_generator(0, GeneratorKind.SOLAR)
    d30 = topo.add_district(0, 30.0)
    d70 = topo.add_district(0, 70.0)
    topo.add_line(g.id, d30.id)
    topo.add_line(g.id, d70.id)
    g.set_daylight(0.5)
    recalculate_all(topo, params)
    assert d30.current_power == 15.0
    assert d70.current_power == 35.0
    assert d30.power_ratio == 0.5
    assert d70.power_ratio == 0.5
    assert not d30.blackout
    assert not d70.blackout


def test_allocation_never_exceeds_deliverable():
    topo = _build()
    gens = [topo.add_generator(0, GeneratorKind.SOLAR) for _ in range(3)]
    districts = [topo.add_district(0, demand) for demand in (40.0, 90.0, 120.0, 10.0)]
    for i, d in enumerate(districts):
        topo.add_line(gens[i % 3].id, d.id)
    topo.add_line(gens[0].id, districts[3].id)
    recalculate_all(topo, topo.params)
    for network in topo.networks:
        allocated = sum(topo.districts[d].current_power for d in network.district_ids)
        assert allocated <= network.deliverable + 1e-9


def test_allocation_split_evenly_across_active_lines():
    topo = _build()
    g1 = topo.add_generator(0, GeneratorKind.FUSION)
    g2 = topo.add_generator(0, GeneratorKind.FUSION)
    d = topo.add_district(0, 100.0)
    l1 = topo.add_line(g1.id, d.id)
    l2 = topo.add_line(g2.id, d.id)
    recalculate_all(topo, topo.params)
    assert np.isclose(l1.current_flow, 50.0)
    assert np.isclose(l2.current_flow, 50.0)


def test_recalculation_is_idempotent():
    topo = _build()
    g1 = topo.add_generator(0, GeneratorKind.FUSION)
    g2 = topo.add_generator(1, GeneratorKind.SOLAR)
    ds = [topo.add_district(0, 120.0), topo.add_district(1, 80.0), topo.add_district(1, 30.0)]
    topo.add_line(g1.id, ds[0].id)
    topo.add_line(g2.id, ds[1].id)
    topo.add_line(g2.id, ds[2].id)
    recalculate_all(topo, topo.params)
    partition = topo.partition()
    powers = [d.current_power for d in ds]
    topo.mark_dirty()
    recalculate_all(topo, topo.params)
    assert topo.partition() == partition
    assert [d.current_power for d in ds] == powers


def test_zero_demand_network_allocates_nothing():
    topo = _build()
    g = topo.add_generator(0, GeneratorKind.FUSION)
    d = topo.add_district(0, 0.0)
    line = topo.add_line(g.id, d.id)
    recalculate_all(topo, topo.params)
    assert d.current_power == 0.0
    assert line.current_flow == 0.0
    assert not d.blackout


def test_allocation_helpers():
    demands = np.array([10.0, 30.0])
    assert np.allclose(proportional_allocation(demands, 20.0), [5.0, 15.0])
    assert np.allclose(proportional_allocation(demands, 100.0), [10.0, 30.0])
    capped = capped_allocation(demands, np.array([2.0, 100.0]), 40.0)
    assert np.allclose(capped, [2.0, 30.0])
