"""
Tests for the leaf records: Generator, TransmissionLine, District, GridParams.
"""

import numpy as np
import pytest

from powergrid_engine.core.district import BlackoutTransition, District, is_blackout
from powergrid_engine.core.generator import Generator, GeneratorKind
from powergrid_engine.core.grid_params import GridParams
from powergrid_engine.core.ids import DistrictId, GeneratorId, IdAllocator, LineId
from powergrid_engine.core.line import TransmissionLine


def _fusion(params=None):
    return Generator.create(GeneratorId(1), 0, GeneratorKind.FUSION, (0.0, 0.0), params or GridParams())


def _solar(params=None):
    return Generator.create(GeneratorId(2), 0, GeneratorKind.SOLAR, (1.0, 1.0), params or GridParams())


# --------------------------------------------------------------------------- #
# Generator                                                                    #
# --------------------------------------------------------------------------- #


def test_generator_kind_parse_default():
    assert GeneratorKind.parse("Solar") is GeneratorKind.SOLAR
    assert GeneratorKind.parse("coal", default=GeneratorKind.FUSION) is GeneratorKind.FUSION
    with pytest.raises(ValueError):
        GeneratorKind.parse("coal")


def test_fusion_output_ignores_daylight():
    plant = _fusion()
    assert plant.current_output == 200.0
    assert plant.set_daylight(0.1) is False
    assert plant.current_output == 200.0


def test_solar_output_scales_with_daylight():
    plant = _solar()
    assert plant.current_output == 50.0
    assert plant.set_daylight(0.5) is True
    assert np.isclose(plant.current_output, 25.0)
    plant.set_daylight(3.0)
    assert plant.daylight_multiplier == 1.0


def test_generator_destroyed_iff_health_zero():
    plant = _fusion()
    assert plant.apply_damage(100.0) is False
    assert not plant.destroyed
    assert plant.current_output == 200.0
    assert plant.apply_damage(500.0) is True
    assert plant.destroyed
    assert plant.health == 0.0
    assert plant.current_output == 0.0
    # Further damage on a wreck is not a second destruction
    assert plant.apply_damage(10.0) is False


def test_generator_repair_brings_plant_back():
    plant = _solar()
    plant.set_daylight(0.4)
    plant.apply_damage(1000.0)
    assert plant.current_output == 0.0
    assert plant.apply_repair(1.0) is True
    assert np.isclose(plant.current_output, 20.0)
    assert plant.full_repair() is False
    assert plant.health == plant.max_health


def test_generator_from_dict_defaults_each_field():
    params = GridParams()
    plant = Generator.from_dict({"kind": "Solar"}, params)
    assert plant.kind is GeneratorKind.SOLAR
    assert plant.max_output == params.solar_max_output
    assert plant.health == params.solar_max_health
    assert plant.connected_line_ids == []

    fallback = Generator.from_dict({"kind": "antimatter", "health": 5.0}, params)
    assert fallback.kind is GeneratorKind.FUSION
    assert fallback.health == 5.0


# --------------------------------------------------------------------------- #
# Line                                                                         #
# --------------------------------------------------------------------------- #


def test_line_destruction_zeroes_flow():
    line = TransmissionLine.create(
        LineId(1), GeneratorId(1), DistrictId(1), 80.0, GridParams(), (0.0, 0.0), (3.0, 4.0)
    )
    assert line.length == 5.0
    line.set_flow(120.0)
    assert line.overloaded
    assert np.isclose(line.utilization, 1.5)
    assert line.apply_damage(line.max_health) is True
    assert line.current_flow == 0.0
    line.set_flow(30.0)
    assert line.current_flow == 0.0
    assert line.apply_repair(1.0) is True
    assert line.active


def test_line_from_dict_tolerates_missing_fields():
    line = TransmissionLine.from_dict({"id": 7})
    assert line.id == 7
    assert line.source_generator_id == -1
    assert line.capacity == GridParams().line_default_capacity


# --------------------------------------------------------------------------- #
# District                                                                     #
# --------------------------------------------------------------------------- #


def test_blackout_boundary_is_strict():
    assert is_blackout(100.0, 49.9)
    assert not is_blackout(100.0, 50.0)
    assert not is_blackout(0.0, 0.0)


def test_district_transitions_and_counter():
    district = District(id=DistrictId(1), owning_faction=0, demand=100.0, current_power=100.0)
    assert not district.blackout
    assert district.set_power(20.0) is BlackoutTransition.STARTED
    assert district.blackout_events == 1
    assert district.set_power(10.0) is BlackoutTransition.NONE
    assert district.set_power(60.0) is BlackoutTransition.ENDED
    district.set_demand(200.0)
    assert not district.blackout
    assert district.blackout_events == 1
    assert district.set_power(60.0) is BlackoutTransition.STARTED
    assert district.blackout_events == 2


def test_district_blackout_time_accumulates_only_while_dark():
    district = District(id=DistrictId(1), owning_faction=0, demand=100.0, current_power=100.0)
    district.accumulate(2.0)
    assert district.time_in_blackout == 0.0
    district.set_power(0.0)
    district.accumulate(1.5)
    district.accumulate(0.5)
    assert np.isclose(district.time_in_blackout, 2.0)


def test_district_zero_demand_ratio_is_one():
    district = District(id=DistrictId(1), owning_faction=0, demand=0.0)
    assert district.power_ratio == 1.0
    assert not district.blackout


# --------------------------------------------------------------------------- #
# Params and ids                                                               #
# --------------------------------------------------------------------------- #


def test_params_reject_bad_weights():
    with pytest.raises(ValueError):
        GridParams(w_reserve=0.5)


def test_params_reject_unordered_cascade_bands():
    with pytest.raises(ValueError):
        GridParams(cascade_full_below=0.8)


def test_tick_interval_floor():
    assert GridParams(tick_interval_ms=5.0).tick_interval_seconds == pytest.approx(0.016)
    assert GridParams().tick_interval_seconds == pytest.approx(0.1)


def test_id_allocator_peek_does_not_consume():
    ids = IdAllocator()
    assert ids.peek() == 1
    assert ids.peek() == 1
    assert ids.allocate() == 1
    ids.ensure_above(9)
    assert ids.allocate() == 10
