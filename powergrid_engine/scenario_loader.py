"""
scenario_loader.py — Grid scenario loader.

Loads YAML scenario files and turns them into a ready-to-tick
GridCoordinator plus a schedule of scripted events.

Scenario layout (every block optional, every field defaults independently):

    name: border_war
    ticks: 200
    tick_interval_ms: 100
    params:                       # sectioned (see _SECTION_MAP) or flat
      plants:   {fusion_max_output: 250}
      cascade:  {penalty_partial: 0.2}
      enforce_line_capacity: true
    plants:
      - {name: alpha, faction: 0, kind: fusion, position: [0, 0]}
    districts:
      - {name: core, faction: 0, demand: 150, priority: high}
    lines:
      - {name: a-core, from: alpha, to: core, capacity: 100}
    consumers:
      - {faction: 0, kind: factory, district: core, requirement: 25}
    events:
      - {tick: 20, action: damage, target: alpha, amount: 400}
      - {tick: 60, action: full_repair, target: alpha}
      - {tick: 80, action: capture, target: core, faction: 1}
      - {tick: 90, action: daylight, value: 0.3}
      - {tick: 95, action: demand, target: core, value: 220}

Public API:
    load_scenario(path)                 -> raw scenario dict
    build_grid_params(scenario)         -> GridParams
    build_scenario(scenario)            -> Scenario
    load_and_build(path)                -> Scenario
"""

from __future__ import annotations

import logging
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .core.grid_params import GridParams
from .core.ids import INVALID_ID
from .simulation.coordinator import GridCoordinator
from .systems.brownout import DistrictPriority
from .systems.consumption import ConsumerKind

logger = logging.getLogger("powergrid_engine.scenario_loader")


# ─────────────────────────────────────────────────────────────────────────── #
# YAML loading + validation                                                    #
# ─────────────────────────────────────────────────────────────────────────── #

def load_scenario(path: str) -> Dict[str, Any]:
    """Load and structurally validate a scenario YAML file."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Scenario not found: {p.resolve()}")

    with open(p, "r") as f:
        raw = yaml.safe_load(f)

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ValueError(f"Scenario {p.name} must be a mapping at top level.")

    for block in ("plants", "districts", "lines", "consumers", "events"):
        value = raw.get(block)
        if value is not None and not isinstance(value, list):
            raise ValueError(f"Scenario block '{block}' must be a list.")

    raw.setdefault("name", p.stem)
    return raw


# ─────────────────────────────────────────────────────────────────────────── #
# Scenario → GridParams                                                        #
# ─────────────────────────────────────────────────────────────────────────── #

# Maps each YAML section → {yaml_key: GridParams field name}
_SECTION_MAP: Dict[str, Dict[str, str]] = {
    "plants": {
        "solar_max_output":        "solar_max_output",
        "solar_max_health":        "solar_max_health",
        "fusion_max_output":       "fusion_max_output",
        "fusion_max_health":       "fusion_max_health",
        "default_daylight":        "default_daylight",
    },
    "lines": {
        "default_capacity":        "line_default_capacity",
        "max_health":              "line_max_health",
        "enforce_capacity":        "enforce_line_capacity",
    },
    "districts": {
        "blackout_threshold":      "blackout_threshold",
    },
    "cascade": {
        "partial_below":           "cascade_partial_below",
        "full_below":              "cascade_full_below",
        "critical_below":          "cascade_critical_below",
        "penalty_partial":         "penalty_partial",
        "penalty_full":            "penalty_full",
        "penalty_critical":        "penalty_critical",
    },
    "stability": {
        "w_reserve":               "w_reserve",
        "w_plant_health":          "w_plant_health",
        "w_coverage":              "w_coverage",
        "reserve_ratio_cap":       "reserve_ratio_cap",
        "risk_stable":             "risk_stable",
        "risk_warning":            "risk_warning",
        "risk_critical":           "risk_critical",
        "low_reserve_ratio":       "low_reserve_ratio",
        "hysteresis":              "stability_hysteresis",
    },
    "consumption": {
        "requirements":            "consumer_requirements",
        "powered_fraction":        "consumer_powered_fraction",
        "blackout_penalty":        "consumer_blackout_penalty",
    },
    "brownout": {
        "tier_full":               "tier_full",
        "tier_brownout":           "tier_brownout",
        "tier_blackout":           "tier_blackout",
        "brownout_min_multiplier": "brownout_min_multiplier",
        "blackout_multiplier":     "blackout_multiplier",
    },
    "reserves": {
        "capacity":                "reserve_capacity",
        "drain_rate":              "reserve_drain_rate",
        "recharge_rate":           "reserve_recharge_rate",
        "auto_activate":           "auto_activate_reserves",
    },
    "redundancy": {
        "generator_cap":           "redundancy_generator_cap",
        "w_excess":                "w_redundancy_excess",
        "w_generators":            "w_redundancy_generators",
    },
    "scheduling": {
        "tick_interval_ms":        "tick_interval_ms",
        "min_tick_interval_ms":    "min_tick_interval_ms",
        "event_log_size":          "event_log_size",
    },
    "costs": {
        "construction":            "construction_costs",
    },
}


def build_grid_params(scenario: Dict[str, Any]) -> GridParams:
    """
    Convert a scenario's ``params`` block to a GridParams instance.

    Sectioned keys are mapped through _SECTION_MAP; flat keys that name a
    GridParams field directly are also accepted.  Anything else is ignored
    with a warning.  Missing fields fall back to GridParams defaults.
    """
    block = scenario.get("params") or {}
    if not isinstance(block, dict):
        warnings.warn("Scenario 'params' block is not a mapping; using defaults.")
        return GridParams()

    valid_fields = set(GridParams.__dataclass_fields__.keys())
    kwargs: Dict[str, Any] = {}

    for key, value in block.items():
        if key in _SECTION_MAP and isinstance(value, dict):
            field_map = _SECTION_MAP[key]
            for yaml_key, yaml_value in value.items():
                if yaml_key in field_map:
                    kwargs[field_map[yaml_key]] = yaml_value
                else:
                    warnings.warn(f"Unknown key ignored in params.{key}: {yaml_key}")
        elif key in valid_fields:
            kwargs[key] = value
        else:
            warnings.warn(f"Unknown GridParams field ignored: {key}")

    return GridParams(**kwargs)


# ─────────────────────────────────────────────────────────────────────────── #
# Scenario → coordinator                                                       #
# ─────────────────────────────────────────────────────────────────────────── #

@dataclass
class Scenario:
    """A built scenario ready to run.

    Attributes:
        name:        Scenario name.
        coordinator: Fully populated coordinator.
        plants / lines / districts: name → id maps.
        events:      Scripted events sorted by tick.
        ticks:       Default run length.
    """

    name: str
    coordinator: GridCoordinator
    plants: Dict[str, int] = field(default_factory=dict)
    lines: Dict[str, int] = field(default_factory=dict)
    districts: Dict[str, int] = field(default_factory=dict)
    events: List[Dict[str, Any]] = field(default_factory=list)
    ticks: int = 100

    def events_at(self, tick: int) -> List[Dict[str, Any]]:
        return [e for e in self.events if int(e.get("tick", 0)) == tick]

    def apply_events(self, tick: int) -> int:
        """Apply every event scheduled for ``tick``.  Returns how many applied."""
        applied = 0
        for event in self.events_at(tick):
            if _apply_event(self, event):
                applied += 1
        return applied

    def run(self, ticks: Optional[int] = None) -> GridCoordinator:
        """Tick the coordinator, applying scripted events before each tick."""
        n = self.ticks if ticks is None else int(ticks)
        for tick in range(n):
            self.apply_events(tick)
            self.coordinator.tick()
        return self.coordinator


def _position(spec: Dict[str, Any]) -> tuple:
    pos = spec.get("position") or (0.0, 0.0)
    try:
        return (float(pos[0]), float(pos[1]))
    except (TypeError, IndexError, ValueError):
        warnings.warn(f"Malformed position {pos!r}; using origin.")
        return (0.0, 0.0)


def build_scenario(scenario: Dict[str, Any], params: Optional[GridParams] = None) -> Scenario:
    """Populate a coordinator from a loaded scenario dict."""
    params = params or build_grid_params(scenario)
    coordinator = GridCoordinator(params, tick_interval_ms=scenario.get("tick_interval_ms"))
    built = Scenario(
        name=str(scenario.get("name", "scenario")),
        coordinator=coordinator,
        ticks=int(scenario.get("ticks", 100)),
    )

    for i, spec in enumerate(scenario.get("plants") or []):
        name = str(spec.get("name", f"plant_{i}"))
        faction = int(spec.get("faction", 0))
        kind = str(spec.get("kind", "fusion")).lower()
        if kind == "solar":
            gid = coordinator.create_solar_plant(faction, _position(spec))
        else:
            if kind != "fusion":
                warnings.warn(f"Plant '{name}': unknown kind {kind!r}, building fusion.")
            gid = coordinator.create_fusion_plant(faction, _position(spec))
        if gid == INVALID_ID:
            continue
        if "health" in spec:
            generator = coordinator.grid.topology.get_generator(gid)
            generator.health = min(max(float(spec["health"]), 0.0), generator.max_health)
            generator.refresh_output()
        built.plants[name] = gid

    for i, spec in enumerate(scenario.get("districts") or []):
        name = str(spec.get("name", f"district_{i}"))
        did = coordinator.create_district(
            int(spec.get("faction", 0)),
            float(spec.get("demand", 0.0)),
            _position(spec),
            DistrictPriority.parse(spec.get("priority", "normal")),
        )
        if did != INVALID_ID:
            built.districts[name] = did

    for i, spec in enumerate(scenario.get("lines") or []):
        name = str(spec.get("name", f"line_{i}"))
        source, target = spec.get("from"), spec.get("to")
        if source not in built.plants or target not in built.districts:
            warnings.warn(f"Line '{name}': unknown endpoint {source!r} -> {target!r}; skipped.")
            continue
        capacity = spec.get("capacity")
        lid = coordinator.create_power_line(
            built.plants[source], built.districts[target],
            None if capacity is None else float(capacity),
        )
        if lid != INVALID_ID:
            built.lines[name] = lid

    for spec in scenario.get("consumers") or []:
        kind = ConsumerKind.parse(spec.get("kind", "factory"))
        if kind is None:
            warnings.warn(f"Consumer with unknown kind {spec.get('kind')!r} skipped.")
            continue
        district = spec.get("district")
        district_id = None
        if district is not None:
            if district not in built.districts:
                warnings.warn(f"Consumer references unknown district {district!r}; skipped.")
                continue
            district_id = built.districts[district]
        requirement = spec.get("requirement")
        coordinator.add_consumer(
            int(spec.get("faction", 0)),
            kind,
            district_id,
            None if requirement is None else float(requirement),
        )

    built.events = sorted(
        (dict(e) for e in scenario.get("events") or [] if isinstance(e, dict)),
        key=lambda e: int(e.get("tick", 0)),
    )
    logger.info(
        f"Scenario '{built.name}' built: {len(built.plants)} plants, "
        f"{len(built.lines)} lines, {len(built.districts)} districts, {len(built.events)} events"
    )
    return built


def load_and_build(path: str) -> Scenario:
    return build_scenario(load_scenario(path))


# ─────────────────────────────────────────────────────────────────────────── #
# Scripted events                                                              #
# ─────────────────────────────────────────────────────────────────────────── #

def _apply_event(scenario: Scenario, event: Dict[str, Any]) -> bool:
    grid = scenario.coordinator.grid
    action = str(event.get("action", "")).lower()
    target = event.get("target")

    if action == "daylight":
        scenario.coordinator.set_daylight_multiplier(float(event.get("value", 1.0)))
        return True

    if action in ("damage", "repair", "full_repair"):
        amount = float(event.get("amount", 0.0))
        if target in scenario.plants:
            gid = scenario.plants[target]
            if action == "damage":
                return grid.damage_generator(gid, amount)
            if action == "repair":
                return grid.repair_generator(gid, amount)
            return grid.full_repair_generator(gid)
        if target in scenario.lines:
            lid = scenario.lines[target]
            if action == "damage":
                return grid.damage_line(lid, amount)
            if action == "repair":
                return grid.repair_line(lid, amount)
            return grid.full_repair_line(lid)
        warnings.warn(f"Event '{action}' targets unknown plant/line {target!r}.")
        return False

    if action in ("capture", "demand"):
        if target not in scenario.districts:
            warnings.warn(f"Event '{action}' targets unknown district {target!r}.")
            return False
        did = scenario.districts[target]
        if action == "capture":
            return scenario.coordinator.on_district_captured(did, int(event.get("faction", 0)))
        return grid.set_district_demand(did, float(event.get("value", 0.0)))

    warnings.warn(f"Unknown scenario event action: {action!r}")
    return False
