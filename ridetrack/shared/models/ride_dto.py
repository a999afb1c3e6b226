"""
Модели статистики поездки и строк журнала.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ridetrack.common.constants import RidePhase


class _CamelModel(BaseModel):
    """Трансляции наружу идут в camelCase."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


class RideStats(_CamelModel):
    """Трансляция статистики сессии."""
    phase: RidePhase
    idle: bool
    idle_seconds: int = 0
    pickup_seconds: int = 0
    ride_seconds: int = 0
    distance_meters: float = 0.0
    points: tuple[tuple[float, float], ...] = ()


class RideFinished(_CamelModel):
    """Трансляция завершённой поездки (один раз на поездку)."""
    ride_started_at: datetime
    ride_ended_at: datetime
    distance_meters: float
    points: tuple[tuple[float, float], ...] = ()


class RideLogRow(BaseModel):
    """Строка ride_logs."""
    phase: RidePhase
    lat: float | None = None
    lng: float | None = None
    speed: float = 0.0
    distance: float = 0.0
    duration: int = 0
    idle_time: int = 0
    created_at: datetime


class RideSummaryRow(BaseModel):
    """Строка ride_summaries."""
    ride_start_at: datetime
    ride_end_at: datetime
    distance: float
    start_lat: float | None = None
    start_lng: float | None = None
    end_lat: float | None = None
    end_lng: float | None = None

    @classmethod
    def from_finished(cls, finished: RideFinished) -> "RideSummaryRow":
        start = finished.points[0] if finished.points else (None, None)
        end = finished.points[-1] if finished.points else (None, None)
        return cls(
            ride_start_at=finished.ride_started_at,
            ride_end_at=finished.ride_ended_at,
            distance=finished.distance_meters,
            start_lat=start[0],
            start_lng=start[1],
            end_lat=end[0],
            end_lng=end[1],
        )
