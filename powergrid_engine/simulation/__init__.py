"""Facade, fixed-interval coordinator and reactive glue."""

from .coordinator import GridCoordinator
from .grid_manager import PowerGridManager
from .reactive import InfrastructureResponder

__all__ = ["GridCoordinator", "PowerGridManager", "InfrastructureResponder"]
