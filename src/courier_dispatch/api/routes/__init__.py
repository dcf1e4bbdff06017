"""Route group exports."""

from . import dispatch, health, live_map, orders

__all__ = ["dispatch", "health", "live_map", "orders"]
