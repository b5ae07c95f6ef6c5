"""
powergrid_engine — faction-owned power grid for a real-time strategy simulation.

Generators feed transmission lines feed consumption districts.  Infrastructure
is destructible; the engine recomputes connectivity, distributes power
proportionally within each connected network, classifies cascading shortfalls,
throttles consumers and scores per-faction grid stability.

Quick start
-----------
    from powergrid_engine import GridCoordinator

    grid = GridCoordinator()
    plant = grid.create_fusion_plant(faction=0)
    district = grid.create_district(faction=0, demand=150.0)
    grid.create_power_line(plant, district, capacity=100.0)
    grid.tick()
    grid.grid.get_faction_status(0).ratio

Primary API
-----------
    GridCoordinator     — fixed-interval tick over every subsystem
    PowerGridManager    — id-based facade with cached faction status
    GridParams          — immutable tuning pack
    GridEventType       — notifications published on the event bus
"""

from __future__ import annotations

from .core.events import EventBus, GridEvent, GridEventType
from .core.grid_params import GridParams
from .core.ids import INVALID_ID
from .core.status import FactionPowerStatus
from .simulation.coordinator import GridCoordinator
from .simulation.grid_manager import PowerGridManager
from .simulation.reactive import InfrastructureResponder
from .systems.brownout import DistrictPriority, PowerTier
from .systems.cascade import CascadeSeverity
from .systems.consumption import ConsumerKind
from .systems.stability import RiskLevel

__version__ = "1.0.0"

__all__ = [
    "EventBus",
    "GridEvent",
    "GridEventType",
    "GridParams",
    "INVALID_ID",
    "FactionPowerStatus",
    "GridCoordinator",
    "PowerGridManager",
    "InfrastructureResponder",
    "DistrictPriority",
    "PowerTier",
    "CascadeSeverity",
    "ConsumerKind",
    "RiskLevel",
]
