"""
flow.py — Per-network power aggregation and proportional distribution.

For each connected Network:

  update_flow
      generation = Σ current_output of member generators
      demand     = Σ demand of member districts
      surplus    = generation − demand

  distribute
      demand ≤ 0         → every member district receives 0
      deliverable        = min(generation, Σ output of generators with ≥ 1 active line)
      served             = min(deliverable, demand)
      allocation_d       = served · demand_d / demand

Allocation is proportional to demand, not path-capacity-aware.  Each
district's allocation is then split evenly across its active lines for
bookkeeping, so a line's ``current_flow`` can exceed its ``capacity``.

When ``GridParams.enforce_line_capacity`` is on, a clamp-and-redistribute pass
replaces the plain proportional split: each district is capped at the summed
capacity of its active lines, the excess is re-offered proportionally to the
still-uncapped districts until nothing moves, and line flows are split in
proportion to line capacity.

Invariant: Σ allocations ≤ deliverable (to floating epsilon) in both modes.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Tuple

import numpy as np
from numpy.typing import NDArray

from .district import BlackoutTransition
from .grid_params import GridParams
from .ids import DistrictId, LineId
from .topology import Network, TopologyBuilder

logger = logging.getLogger("powergrid_engine.core.flow")

_EPS = 1e-9


# ─────────────────────────────────────────────────────────────────────────── #
# Aggregation                                                                  #
# ─────────────────────────────────────────────────────────────────────────── #

def update_flow(network: Network, topology: TopologyBuilder) -> Network:
    """Aggregate generation and demand for one network (in place)."""
    faction_generation: Dict[int, float] = {}
    faction_demand: Dict[int, float] = {}

    generation = 0.0
    for gid in network.generator_ids:
        generator = topology.generators[gid]
        output = generator.refresh_output()
        if generator.operational:
            generation += output
            faction_generation[generator.faction] = faction_generation.get(generator.faction, 0.0) + output

    demand = 0.0
    for did in network.district_ids:
        district = topology.districts[did]
        demand += district.demand
        faction_demand[district.owning_faction] = (
            faction_demand.get(district.owning_faction, 0.0) + district.demand
        )

    network.generation = generation
    network.demand = demand
    network.surplus = generation - demand
    network.faction_generation = faction_generation
    network.faction_demand = faction_demand
    return network


def deliverable_power(network: Network, topology: TopologyBuilder) -> float:
    """Generation reachable through at least one active line."""
    connected_output = 0.0
    for gid in network.generator_ids:
        generator = topology.generators[gid]
        if generator.destroyed:
            continue
        has_active_line = any(
            lid in topology.lines and topology.lines[lid].active
            for lid in generator.connected_line_ids
        )
        if has_active_line:
            connected_output += generator.current_output
    return min(network.generation, connected_output)


# ─────────────────────────────────────────────────────────────────────────── #
# Allocation math                                                              #
# ─────────────────────────────────────────────────────────────────────────── #

def proportional_allocation(
    demands: NDArray[np.float64],
    deliverable: float,
) -> NDArray[np.float64]:
    """allocation_i = min(deliverable, Σd) · d_i / Σd."""
    total = float(np.sum(demands))
    if total <= 0.0 or deliverable <= 0.0:
        return np.zeros_like(demands)
    served = min(deliverable, total)
    return served * demands / total


def capped_allocation(
    demands: NDArray[np.float64],
    caps: NDArray[np.float64],
    deliverable: float,
    max_rounds: int = 64,
) -> NDArray[np.float64]:
    """Proportional allocation with per-district caps (water-filling).

    Each district receives at most min(demand_i, cap_i).  Power a capped
    district cannot take is re-offered proportionally to the rest.
    """
    n = demands.shape[0]
    alloc = np.zeros(n, dtype=np.float64)
    limit = np.minimum(demands, caps)
    open_mask = limit > _EPS
    remaining = min(float(deliverable), float(np.sum(demands)))

    for _ in range(max_rounds):
        if remaining <= _EPS or not np.any(open_mask):
            break
        weights = np.where(open_mask, demands, 0.0)
        weight_total = float(np.sum(weights))
        if weight_total <= 0.0:
            break
        offer = remaining * weights / weight_total
        headroom = limit - alloc
        take = np.minimum(offer, headroom)
        alloc += take
        remaining -= float(np.sum(take))
        open_mask = (limit - alloc) > _EPS
    return alloc


# ─────────────────────────────────────────────────────────────────────────── #
# Distribution                                                                 #
# ─────────────────────────────────────────────────────────────────────────── #

def _active_network_lines(
    network: Network, topology: TopologyBuilder
) -> Dict[DistrictId, List[LineId]]:
    member_lines = set(network.line_ids)
    per_district: Dict[DistrictId, List[LineId]] = {}
    for did in network.district_ids:
        per_district[did] = [
            lid for lid in topology.districts[did].connected_line_ids
            if lid in member_lines and topology.lines[lid].active
        ]
    return per_district


def distribute(
    network: Network,
    topology: TopologyBuilder,
    params: GridParams,
) -> List[Tuple[DistrictId, BlackoutTransition]]:
    """Allocate deliverable power to member districts.

    Returns (district_id, transition) for every district whose blackout state
    changed.
    """
    transitions: List[Tuple[DistrictId, BlackoutTransition]] = []
    for lid in network.line_ids:
        topology.lines[lid].set_flow(0.0)

    if network.demand <= 0.0 or not network.district_ids:
        network.deliverable = deliverable_power(network, topology) if network.generator_ids else 0.0
        network.allocated = 0.0
        for did in network.district_ids:
            transition = topology.districts[did].set_power(0.0)
            if transition is not BlackoutTransition.NONE:
                transitions.append((did, transition))
        return transitions

    deliverable = deliverable_power(network, topology)
    network.deliverable = deliverable

    district_ids = list(network.district_ids)
    demands = np.array([topology.districts[d].demand for d in district_ids], dtype=np.float64)
    lines_by_district = _active_network_lines(network, topology)

    if params.enforce_line_capacity:
        caps = np.array(
            [sum(topology.lines[l].capacity for l in lines_by_district[d]) for d in district_ids],
            dtype=np.float64,
        )
        allocations = capped_allocation(demands, caps, deliverable)
    else:
        allocations = proportional_allocation(demands, deliverable)

    network.allocated = float(np.sum(allocations))

    for did, allocation in zip(district_ids, allocations):
        allocation = float(allocation)
        active_lines = lines_by_district[did]
        if active_lines:
            if params.enforce_line_capacity:
                cap_total = sum(topology.lines[l].capacity for l in active_lines)
                for lid in active_lines:
                    line = topology.lines[lid]
                    share = line.capacity / cap_total if cap_total > 0.0 else 1.0 / len(active_lines)
                    line.set_flow(allocation * share)
            else:
                share = allocation / len(active_lines)
                for lid in active_lines:
                    topology.lines[lid].set_flow(share)

        transition = topology.districts[did].set_power(allocation)
        if transition is not BlackoutTransition.NONE:
            transitions.append((did, transition))

    return transitions


def recalculate_network(
    network: Network,
    topology: TopologyBuilder,
    params: GridParams,
) -> List[Tuple[DistrictId, BlackoutTransition]]:
    """update_flow followed by distribute."""
    update_flow(network, topology)
    return distribute(network, topology, params)


def recalculate_all(
    topology: TopologyBuilder,
    params: GridParams,
) -> List[Tuple[DistrictId, BlackoutTransition]]:
    """Rebuild (if dirty), distribute every network and zero orphan districts."""
    if topology.dirty:
        topology.rebuild()

    transitions: List[Tuple[DistrictId, BlackoutTransition]] = []
    for network in topology.networks:
        transitions.extend(recalculate_network(network, topology, params))

    for district in topology.orphan_districts():
        transition = district.set_power(0.0)
        if transition is not BlackoutTransition.NONE:
            transitions.append((district.id, transition))
    for line in topology.lines.values():
        if line.network_id < 0:
            line.set_flow(0.0)
    for generator in topology.generators.values():
        generator.refresh_output()

    logger.debug(f"Flow recalculated over {len(topology.networks)} networks")
    return transitions
