"""
topology.py — Registries and connected-component rebuild for the power grid.

The TopologyBuilder exclusively owns every Generator, TransmissionLine and
District.  Any construction, destruction, repair or demolition marks the
topology dirty; ``rebuild()`` then discards all networks and recomputes them
from scratch with a breadth-first search:

  1. Seed a BFS at every operational generator not yet visited.
  2. From a generator, follow its active lines to their target districts.
  3. From a district, follow its other active lines back to their (operational)
     source generators.  Lines only ever join a generator to a district, so
     generators are never chained to generators directly.
  4. Everything reached forms one Network.

Districts that no BFS reaches are orphans: they belong to no network and will
receive zero power.  A full rebuild is O(G + L + D) and only runs when the
topology is dirty or on the scheduled tick, never per frame.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Iterable, List, Optional, Set, Tuple

from .district import District
from .generator import Generator, GeneratorKind
from .grid_params import GridParams
from .ids import DistrictId, GeneratorId, IdAllocator, LineId
from .line import TransmissionLine

logger = logging.getLogger("powergrid_engine.core.topology")


# ─────────────────────────────────────────────────────────────────────────── #
# Network (ephemeral)                                                          #
# ─────────────────────────────────────────────────────────────────────────── #

@dataclass
class Network:
    """One connected component, rebuilt on every recalculation.

    ``faction`` is the seed generator's faction.  Networks that span several
    factions additionally record every faction present in ``factions`` and
    keep per-faction generation/demand sub-totals.
    """

    id: int
    faction: int
    generator_ids: List[GeneratorId] = field(default_factory=list)
    line_ids: List[LineId] = field(default_factory=list)
    district_ids: List[DistrictId] = field(default_factory=list)
    factions: Set[int] = field(default_factory=set)

    # Filled in by the flow engine
    generation: float = 0.0
    demand: float = 0.0
    surplus: float = 0.0
    deliverable: float = 0.0
    allocated: float = 0.0
    faction_generation: Dict[int, float] = field(default_factory=dict)
    faction_demand: Dict[int, float] = field(default_factory=dict)

    @property
    def mixed_faction(self) -> bool:
        return len(self.factions) > 1

    def signature(self) -> Tuple[Tuple[int, ...], Tuple[int, ...], Tuple[int, ...]]:
        """Order-independent membership key, used to compare partitions."""
        return (
            tuple(sorted(int(g) for g in self.generator_ids)),
            tuple(sorted(int(l) for l in self.line_ids)),
            tuple(sorted(int(d) for d in self.district_ids)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "faction": self.faction,
            "factions": sorted(self.factions),
            "generators": [int(g) for g in self.generator_ids],
            "lines": [int(l) for l in self.line_ids],
            "districts": [int(d) for d in self.district_ids],
            "generation": self.generation,
            "demand": self.demand,
            "surplus": self.surplus,
            "deliverable": self.deliverable,
            "allocated": self.allocated,
        }


# ─────────────────────────────────────────────────────────────────────────── #
# Topology builder                                                             #
# ─────────────────────────────────────────────────────────────────────────── #

class TopologyBuilder:
    """Owns all leaf registries and rebuilds networks on demand.

    Unknown ids are tolerated everywhere: lookups return None and mutators
    return False, since entities can vanish between a query and an action.
    """

    def __init__(self, params: Optional[GridParams] = None) -> None:
        self.params: GridParams = params or GridParams()
        self.generators: Dict[GeneratorId, Generator] = {}
        self.lines: Dict[LineId, TransmissionLine] = {}
        self.districts: Dict[DistrictId, District] = {}

        self._generator_ids = IdAllocator()
        self._line_ids = IdAllocator()
        self._district_ids = IdAllocator()

        self._networks: List[Network] = []
        self._district_network: Dict[DistrictId, int] = {}
        self._generator_network: Dict[GeneratorId, int] = {}
        self._line_network: Dict[LineId, int] = {}
        self._dirty = True
        self.rebuild_count = 0

    # ------------------------------------------------------------------ #
    # Dirty flag                                                           #
    # ------------------------------------------------------------------ #

    @property
    def dirty(self) -> bool:
        return self._dirty

    def mark_dirty(self) -> None:
        self._dirty = True

    # ------------------------------------------------------------------ #
    # Id peeking (lets callers veto construction without consuming ids)   #
    # ------------------------------------------------------------------ #

    @property
    def next_generator_id(self) -> int:
        return self._generator_ids.peek()

    @property
    def next_line_id(self) -> int:
        return self._line_ids.peek()

    @property
    def next_district_id(self) -> int:
        return self._district_ids.peek()

    # ------------------------------------------------------------------ #
    # Construction                                                         #
    # ------------------------------------------------------------------ #

    def add_generator(
        self,
        faction: int,
        kind: GeneratorKind,
        position: Tuple[float, float] = (0.0, 0.0),
    ) -> Generator:
        gid = GeneratorId(self._generator_ids.allocate())
        generator = Generator.create(gid, faction, kind, position, self.params)
        self.generators[gid] = generator
        self._dirty = True
        logger.debug(f"Generator {gid} ({kind.value}) added for faction {faction}")
        return generator

    def add_district(
        self,
        faction: int,
        demand: float,
        position: Tuple[float, float] = (0.0, 0.0),
    ) -> District:
        did = DistrictId(self._district_ids.allocate())
        district = District(
            id=did,
            owning_faction=faction,
            demand=demand,
            position=(float(position[0]), float(position[1])),
            blackout_threshold=self.params.blackout_threshold,
        )
        # Unpowered until the first distribution decides its state
        district.blackout = False
        self.districts[did] = district
        self._dirty = True
        logger.debug(f"District {did} added for faction {faction} (demand={demand})")
        return district

    def can_connect(self, generator_id: int, district_id: int) -> bool:
        return generator_id in self.generators and district_id in self.districts

    def add_line(
        self,
        generator_id: GeneratorId,
        district_id: DistrictId,
        capacity: Optional[float] = None,
    ) -> Optional[TransmissionLine]:
        """Connect a generator to a district.  Returns None if either is unknown."""
        if not self.can_connect(generator_id, district_id):
            logger.warning(
                f"Cannot connect generator {generator_id} to district {district_id}: unknown endpoint"
            )
            return None
        generator = self.generators[generator_id]
        district = self.districts[district_id]
        lid = LineId(self._line_ids.allocate())
        line = TransmissionLine.create(
            lid,
            generator_id,
            district_id,
            self.params.line_default_capacity if capacity is None else capacity,
            self.params,
            start=generator.position,
            end=district.position,
        )
        self.lines[lid] = line
        generator.attach_line(lid)
        district.attach_line(lid)
        self._dirty = True
        return line

    # ------------------------------------------------------------------ #
    # Demolition                                                           #
    # ------------------------------------------------------------------ #

    def remove_line(self, line_id: LineId) -> bool:
        line = self.lines.pop(line_id, None)
        if line is None:
            return False
        generator = self.generators.get(line.source_generator_id)
        if generator is not None:
            generator.detach_line(line_id)
        district = self.districts.get(line.target_district_id)
        if district is not None:
            district.detach_line(line_id)
        self._dirty = True
        return True

    def remove_generator(self, generator_id: GeneratorId) -> bool:
        generator = self.generators.get(generator_id)
        if generator is None:
            return False
        for lid in list(generator.connected_line_ids):
            self.remove_line(lid)
        del self.generators[generator_id]
        self._dirty = True
        return True

    def remove_district(self, district_id: DistrictId) -> bool:
        district = self.districts.get(district_id)
        if district is None:
            return False
        for lid in list(district.connected_line_ids):
            self.remove_line(lid)
        del self.districts[district_id]
        self._dirty = True
        return True

    # ------------------------------------------------------------------ #
    # Lookup                                                               #
    # ------------------------------------------------------------------ #

    def get_generator(self, generator_id: int) -> Optional[Generator]:
        return self.generators.get(generator_id)

    def get_line(self, line_id: int) -> Optional[TransmissionLine]:
        return self.lines.get(line_id)

    def get_district(self, district_id: int) -> Optional[District]:
        return self.districts.get(district_id)

    def generators_of(self, faction: int) -> List[Generator]:
        return [g for g in self.generators.values() if g.faction == faction]

    def districts_of(self, faction: int) -> List[District]:
        return [d for d in self.districts.values() if d.owning_faction == faction]

    def factions(self) -> List[int]:
        """Every faction owning at least one generator or district."""
        found = {g.faction for g in self.generators.values()}
        found.update(d.owning_faction for d in self.districts.values())
        return sorted(found)

    # ------------------------------------------------------------------ #
    # Rebuild                                                              #
    # ------------------------------------------------------------------ #

    def rebuild(self) -> List[Network]:
        """Discard all networks and recompute connected components (BFS)."""
        self._networks = []
        self._district_network = {}
        self._generator_network = {}
        self._line_network = {}

        for generator in self.generators.values():
            generator.network_id = -1
        for line in self.lines.values():
            line.network_id = -1
        for district in self.districts.values():
            district.network_id = -1

        visited_generators: Set[GeneratorId] = set()
        visited_districts: Set[DistrictId] = set()

        # Deterministic seed order: ascending generator id
        for gid in sorted(self.generators):
            seed = self.generators[gid]
            if seed.destroyed or gid in visited_generators:
                continue
            network = Network(id=len(self._networks), faction=seed.faction)
            self._bfs(seed, network, visited_generators, visited_districts)
            self._networks.append(network)

        self._dirty = False
        self.rebuild_count += 1
        logger.debug(
            f"Topology rebuilt: {len(self._networks)} networks, "
            f"{len(self.districts) - len(self._district_network)} orphan districts"
        )
        return list(self._networks)

    def _bfs(
        self,
        seed: Generator,
        network: Network,
        visited_generators: Set[GeneratorId],
        visited_districts: Set[DistrictId],
    ) -> None:
        queue: Deque[Tuple[str, int]] = deque([("g", seed.id)])
        visited_generators.add(seed.id)
        seen_lines: Set[LineId] = set()

        while queue:
            node_kind, node_id = queue.popleft()

            if node_kind == "g":
                generator = self.generators[GeneratorId(node_id)]
                self._join(network, generator=generator)
                for lid in generator.connected_line_ids:
                    line = self.lines.get(lid)
                    if line is None or line.destroyed or lid in seen_lines:
                        continue
                    district = self.districts.get(line.target_district_id)
                    if district is None:
                        continue
                    seen_lines.add(lid)
                    self._join(network, line=line)
                    if district.id not in visited_districts:
                        visited_districts.add(district.id)
                        queue.append(("d", district.id))
            else:
                district = self.districts[DistrictId(node_id)]
                self._join(network, district=district)
                for lid in district.connected_line_ids:
                    line = self.lines.get(lid)
                    if line is None or line.destroyed or lid in seen_lines:
                        continue
                    generator = self.generators.get(line.source_generator_id)
                    if generator is None or generator.destroyed:
                        continue
                    seen_lines.add(lid)
                    self._join(network, line=line)
                    if generator.id not in visited_generators:
                        visited_generators.add(generator.id)
                        queue.append(("g", generator.id))

    def _join(
        self,
        network: Network,
        generator: Optional[Generator] = None,
        line: Optional[TransmissionLine] = None,
        district: Optional[District] = None,
    ) -> None:
        if generator is not None:
            generator.network_id = network.id
            network.generator_ids.append(generator.id)
            network.factions.add(generator.faction)
            self._generator_network[generator.id] = network.id
        if line is not None:
            line.network_id = network.id
            network.line_ids.append(line.id)
            self._line_network[line.id] = network.id
        if district is not None:
            district.network_id = network.id
            network.district_ids.append(district.id)
            network.factions.add(district.owning_faction)
            self._district_network[district.id] = network.id

    # ------------------------------------------------------------------ #
    # Network queries (valid as of the last rebuild)                       #
    # ------------------------------------------------------------------ #

    @property
    def networks(self) -> List[Network]:
        return list(self._networks)

    def network(self, network_id: int) -> Optional[Network]:
        if 0 <= network_id < len(self._networks):
            return self._networks[network_id]
        return None

    def network_of_district(self, district_id: int) -> Optional[Network]:
        nid = self._district_network.get(district_id)
        return None if nid is None else self._networks[nid]

    def network_of_generator(self, generator_id: int) -> Optional[Network]:
        nid = self._generator_network.get(generator_id)
        return None if nid is None else self._networks[nid]

    def network_of_line(self, line_id: int) -> Optional[Network]:
        nid = self._line_network.get(line_id)
        return None if nid is None else self._networks[nid]

    def orphan_districts(self) -> List[District]:
        return [d for did, d in self.districts.items() if did not in self._district_network]

    def districts_fed_by_generator(self, generator_id: int) -> List[DistrictId]:
        """Districts that shared a network with the generator at the last rebuild."""
        network = self.network_of_generator(generator_id)
        if network is not None:
            return list(network.district_ids)
        generator = self.generators.get(generator_id)
        if generator is None:
            return []
        return self._direct_targets(generator.connected_line_ids)

    def districts_fed_by_line(self, line_id: int) -> List[DistrictId]:
        """Districts that shared a network with the line at the last rebuild."""
        network = self.network_of_line(line_id)
        if network is not None:
            return list(network.district_ids)
        return self._direct_targets([line_id])

    def _direct_targets(self, line_ids: Iterable[int]) -> List[DistrictId]:
        targets: List[DistrictId] = []
        for lid in line_ids:
            line = self.lines.get(lid)
            if line is not None and line.target_district_id in self.districts:
                if line.target_district_id not in targets:
                    targets.append(line.target_district_id)
        return targets

    def partition(self) -> List[Tuple[Tuple[int, ...], Tuple[int, ...], Tuple[int, ...]]]:
        return sorted(n.signature() for n in self._networks)

    # ------------------------------------------------------------------ #
    # Persistence                                                          #
    # ------------------------------------------------------------------ #

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generators": [g.to_dict() for g in self.generators.values()],
            "lines": [l.to_dict() for l in self.lines.values()],
            "districts": [d.to_dict() for d in self.districts.values()],
            "next_generator_id": self._generator_ids.next_id,
            "next_line_id": self._line_ids.next_id,
            "next_district_id": self._district_ids.next_id,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], params: Optional[GridParams] = None) -> "TopologyBuilder":
        """Restore registries and id counters.  Dangling line references are dropped."""
        builder = cls(params)
        for gd in data.get("generators", []):
            generator = Generator.from_dict(gd, builder.params)
            generator.connected_line_ids = []
            builder.generators[generator.id] = generator
            builder._generator_ids.ensure_above(int(generator.id))
        for dd in data.get("districts", []):
            district = District.from_dict(dd, builder.params.blackout_threshold)
            district.connected_line_ids = []
            builder.districts[district.id] = district
            builder._district_ids.ensure_above(int(district.id))
        for ld in data.get("lines", []):
            line = TransmissionLine.from_dict(ld, builder.params)
            if not builder.can_connect(line.source_generator_id, line.target_district_id):
                logger.warning(f"Dropping line {line.id}: endpoint missing from snapshot")
                continue
            builder.lines[line.id] = line
            builder.generators[line.source_generator_id].attach_line(line.id)
            builder.districts[line.target_district_id].attach_line(line.id)
            builder._line_ids.ensure_above(int(line.id))

        for key, allocator in (
            ("next_generator_id", builder._generator_ids),
            ("next_line_id", builder._line_ids),
            ("next_district_id", builder._district_ids),
        ):
            if key in data:
                allocator.next_id = max(allocator.next_id, int(data[key]))

        builder._dirty = True
        return builder
