"""Live courier/client map polling."""

from .client import LiveSyncClient, SyncOutcome, SyncState
from .models import LiveMapPoint, LiveSnapshot, normalize_points
from .tracking import CourierRoute, RouteTracker

__all__ = [
    "CourierRoute",
    "LiveMapPoint",
    "LiveSnapshot",
    "LiveSyncClient",
    "RouteTracker",
    "SyncOutcome",
    "SyncState",
    "normalize_points",
]
