"""Grid core: leaf entities, parameters, event channel, topology and flow."""

from .district import BlackoutTransition, District, is_blackout
from .events import EventBus, GridEvent, GridEventType
from .flow import distribute, recalculate_all, recalculate_network, update_flow
from .generator import Generator, GeneratorKind
from .grid_params import GridParams
from .ids import INVALID_ID, ConsumerId, DistrictId, GeneratorId, LineId
from .line import TransmissionLine
from .topology import Network, TopologyBuilder

__all__ = [
    "BlackoutTransition",
    "District",
    "is_blackout",
    "EventBus",
    "GridEvent",
    "GridEventType",
    "distribute",
    "recalculate_all",
    "recalculate_network",
    "update_flow",
    "Generator",
    "GeneratorKind",
    "GridParams",
    "INVALID_ID",
    "ConsumerId",
    "DistrictId",
    "GeneratorId",
    "LineId",
    "TransmissionLine",
    "Network",
    "TopologyBuilder",
]
