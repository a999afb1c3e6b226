"""
Pydantic-модели для обмена данными между компонентами.
"""

from ridetrack.shared.models.common import ErrorResponse, HealthStatus
from ridetrack.shared.models.heatmap_dto import HeatmapResponse, HeatmapSnapshot, HeatTile
from ridetrack.shared.models.location_dto import DriverPing, PingRequest, PingResponse, PingResult
from ridetrack.shared.models.ride_dto import RideFinished, RideLogRow, RideStats, RideSummaryRow

__all__ = [
    "ErrorResponse",
    "HealthStatus",
    "HeatTile",
    "HeatmapSnapshot",
    "HeatmapResponse",
    "DriverPing",
    "PingRequest",
    "PingResponse",
    "PingResult",
    "RideStats",
    "RideFinished",
    "RideLogRow",
    "RideSummaryRow",
]
