"""
Grid invariant checks.

Each check inspects a PowerGridManager after recalculation and returns a list
of human-readable violations (empty list = pass).  Used by the ``validate``
CLI command after every tick of a scenario run.

Checks:
  1. Blackout flag ⇔ demand > 0 ∧ power < threshold · demand
  2. Σ district allocations ≤ deliverable generation, per network
  3. Destroyed plants and lines carry zero output / flow
  4. Every generator, line and district sits in at most one network
  5. Recalculation is idempotent (same partition, same allocations)
"""

from __future__ import annotations

from typing import Dict, List, Tuple

import numpy as np

from ..core.district import is_blackout
from ..simulation.grid_manager import PowerGridManager

_EPS = 1e-6


def check_blackout_flags(grid: PowerGridManager) -> List[str]:
    threshold = grid.params.blackout_threshold
    return [
        f"district {d.id}: blackout={d.blackout} but power={d.current_power:.4f} demand={d.demand:.4f}"
        for d in grid.topology.districts.values()
        if d.blackout != is_blackout(d.demand, d.current_power, threshold)
    ]


def check_allocation_bound(grid: PowerGridManager) -> List[str]:
    violations = []
    for network in grid.topology.networks:
        allocated = sum(grid.topology.districts[d].current_power for d in network.district_ids)
        if allocated > network.deliverable + _EPS:
            violations.append(
                f"network {network.id}: allocated {allocated:.4f} > deliverable {network.deliverable:.4f}"
            )
    return violations


def check_destroyed_inert(grid: PowerGridManager) -> List[str]:
    violations = [
        f"generator {g.id}: destroyed but output {g.current_output:.4f}"
        for g in grid.topology.generators.values()
        if g.destroyed and g.current_output != 0.0
    ]
    violations.extend(
        f"line {l.id}: destroyed but flow {l.current_flow:.4f}"
        for l in grid.topology.lines.values()
        if l.destroyed and l.current_flow != 0.0
    )
    return violations


def check_unique_membership(grid: PowerGridManager) -> List[str]:
    violations = []
    seen: Dict[Tuple[str, int], int] = {}
    for network in grid.topology.networks:
        members = (
            [("generator", int(g)) for g in network.generator_ids]
            + [("line", int(l)) for l in network.line_ids]
            + [("district", int(d)) for d in network.district_ids]
        )
        for key in members:
            if key in seen and seen[key] != network.id:
                violations.append(f"{key[0]} {key[1]} in networks {seen[key]} and {network.id}")
            seen[key] = network.id
    return violations


def check_idempotence(grid: PowerGridManager) -> List[str]:
    """Recalculate twice and compare partitions and allocations."""
    grid.recalculate()
    partition = grid.topology.partition()
    powers = np.array([d.current_power for d in grid.topology.districts.values()], dtype=np.float64)
    grid.recalculate()
    violations = []
    if grid.topology.partition() != partition:
        violations.append("network partition changed between consecutive recalculations")
    again = np.array([d.current_power for d in grid.topology.districts.values()], dtype=np.float64)
    if not np.allclose(powers, again, atol=_EPS):
        violations.append("district allocations changed between consecutive recalculations")
    return violations


def validate_grid(grid: PowerGridManager, include_idempotence: bool = True) -> List[str]:
    """Run every check; returns all violations found."""
    grid.ensure_current()
    violations: List[str] = []
    violations.extend(check_blackout_flags(grid))
    violations.extend(check_allocation_bound(grid))
    violations.extend(check_destroyed_inert(grid))
    violations.extend(check_unique_membership(grid))
    if include_idempotence:
        violations.extend(check_idempotence(grid))
    return violations
