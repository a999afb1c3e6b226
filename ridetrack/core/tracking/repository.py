"""
Репозиторий журнала поездок (ride_logs, ride_summaries).
"""

from __future__ import annotations

from typing import Protocol

from ridetrack.infra.database import DatabaseManager, wrap_storage_errors
from ridetrack.shared.models.ride_dto import RideLogRow, RideSummaryRow


class RideLogSink(Protocol):
    """Куда RideSession пишет строки журнала."""

    async def log_snapshot(self, row: RideLogRow) -> None: ...

    async def save_summary(self, row: RideSummaryRow) -> None: ...


class RideLogRepository:
    """Репозиторий журнала поездок."""

    def __init__(self, db: DatabaseManager, driver_id: str | None = None) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
            driver_id: Водитель, к которому относятся строки
        """
        self._db = db
        self._driver_id = driver_id

    @wrap_storage_errors
    async def log_snapshot(self, row: RideLogRow) -> None:
        """Сохраняет снимок фазы поездки."""
        await self._db.execute(
            """
            INSERT INTO ride_logs (
                driver_id, phase, lat, lng, speed, distance, duration, idle_time, created_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            """,
            self._driver_id,
            row.phase.value,
            row.lat,
            row.lng,
            row.speed,
            row.distance,
            row.duration,
            row.idle_time,
            row.created_at,
        )

    @wrap_storage_errors
    async def save_summary(self, row: RideSummaryRow) -> None:
        """Сохраняет итог завершённой поездки."""
        await self._db.execute(
            """
            INSERT INTO ride_summaries (
                driver_id, ride_start_at, ride_end_at, distance,
                start_lat, start_lng, end_lat, end_lng
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
            """,
            self._driver_id,
            row.ride_start_at,
            row.ride_end_at,
            row.distance,
            row.start_lat,
            row.start_lng,
            row.end_lat,
            row.end_lng,
        )
