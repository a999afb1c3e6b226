"""
Репозиторий ping-ов водителей (таблица driver_pings).
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator

from asyncpg import Connection, Record

from ridetrack.common.exceptions import StorageError
from ridetrack.infra.database import STORAGE_EXCEPTIONS, DatabaseManager, wrap_storage_errors
from ridetrack.shared.models.location_dto import DriverPing


def _row_to_ping(row: Record) -> DriverPing:
    return DriverPing(
        driver_id=row["driver_id"],
        lat=row["lat"],
        lng=row["lng"],
        accuracy=row["accuracy"],
        tile_key=row["tile_key"],
        inserted_at=row["inserted_at"],
    )


class PingRepository:
    """Репозиторий ping-ов."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    @asynccontextmanager
    async def locked(self, driver_id: str) -> AsyncGenerator[Connection, None]:
        """
        Транзакция с advisory lock водителя.

        Пока блок выполняется, другие вызовы для того же driver_id ждут,
        так что чтение последнего ping-а, решение и вставка атомарны.
        """
        try:
            async with self._db.transaction() as conn:
                await conn.execute("SELECT pg_advisory_xact_lock(hashtext($1))", driver_id)
                yield conn
        except STORAGE_EXCEPTIONS as e:
            raise StorageError(f"locked: {e}") from e

    @wrap_storage_errors
    async def get_latest(self, conn: Connection, driver_id: str) -> DriverPing | None:
        """Последний ping водителя."""
        row = await conn.fetchrow(
            """
            SELECT driver_id, lat, lng, accuracy, tile_key, inserted_at
            FROM driver_pings
            WHERE driver_id = $1
            ORDER BY inserted_at DESC
            LIMIT 1
            """,
            driver_id,
        )
        return _row_to_ping(row) if row is not None else None

    @wrap_storage_errors
    async def insert(self, conn: Connection, ping: DriverPing) -> None:
        await conn.execute(
            """
            INSERT INTO driver_pings (driver_id, lat, lng, accuracy, tile_key, inserted_at)
            VALUES ($1, $2, $3, $4, $5, $6)
            """,
            ping.driver_id,
            ping.lat,
            ping.lng,
            ping.accuracy,
            ping.tile_key,
            ping.inserted_at,
        )

    @wrap_storage_errors
    async def fetch_recent(self, since: datetime, limit: int = 5000) -> list[dict[str, Any]]:
        """
        Ping-и с inserted_at >= since, новые первыми.

        Returns:
            Список словарей driver_id, lat, lng, tile_key, inserted_at
        """
        rows = await self._db.fetch(
            """
            SELECT driver_id, lat, lng, tile_key, inserted_at
            FROM driver_pings
            WHERE inserted_at >= $1
            ORDER BY inserted_at DESC
            LIMIT $2
            """,
            since,
            limit,
        )
        return [dict(row) for row in rows]
