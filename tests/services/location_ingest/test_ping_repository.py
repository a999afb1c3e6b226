# tests/services/location_ingest/test_ping_repository.py
"""
Тесты репозитория ping-ов (SQL и трансляция ошибок).
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import asyncpg
import pytest

from ridetrack.common.exceptions import StorageError
from ridetrack.services.location_ingest.repository import PingRepository
from ridetrack.shared.models.location_dto import DriverPing

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def conn() -> MagicMock:
    connection = MagicMock()
    connection.execute = AsyncMock()
    connection.fetchrow = AsyncMock(return_value=None)
    return connection


@pytest.fixture
def db(conn, mock_db):
    @asynccontextmanager
    async def transaction():
        yield conn

    mock_db.transaction = transaction
    return mock_db


class TestPingRepository:

    @pytest.mark.asyncio
    async def test_locked_takes_driver_advisory_lock(self, db, conn) -> None:
        repo = PingRepository(db)

        async with repo.locked("drv_1") as locked_conn:
            assert locked_conn is conn

        query, driver_id = conn.execute.await_args.args
        assert "pg_advisory_xact_lock(hashtext($1))" in query
        assert driver_id == "drv_1"

    @pytest.mark.asyncio
    async def test_locked_translates_driver_errors(self, db, conn) -> None:
        conn.execute.side_effect = asyncpg.PostgresConnectionError("gone")
        repo = PingRepository(db)

        with pytest.raises(StorageError):
            async with repo.locked("drv_1"):
                pass

    @pytest.mark.asyncio
    async def test_get_latest(self, db, conn) -> None:
        conn.fetchrow.return_value = {
            "driver_id": "drv_1", "lat": 10.0, "lng": 20.0, "accuracy": None,
            "tile_key": "10,20", "inserted_at": T0,
        }

        latest = await PingRepository(db).get_latest(conn, "drv_1")

        assert latest == DriverPing(driver_id="drv_1", lat=10.0, lng=20.0, tile_key="10,20", inserted_at=T0)

    @pytest.mark.asyncio
    async def test_get_latest_none(self, db, conn) -> None:
        assert await PingRepository(db).get_latest(conn, "drv_1") is None

    @pytest.mark.asyncio
    async def test_insert(self, db, conn) -> None:
        ping = DriverPing(driver_id="drv_1", lat=10.0, lng=20.0, accuracy=4.0, tile_key="10,20", inserted_at=T0)

        await PingRepository(db).insert(conn, ping)

        query, *params = conn.execute.await_args.args
        assert "INSERT INTO driver_pings" in query
        assert params == ["drv_1", 10.0, 20.0, 4.0, "10,20", T0]

    @pytest.mark.asyncio
    async def test_fetch_recent_newest_first(self, db) -> None:
        db.fetch.return_value = [{"driver_id": "drv_1", "lat": 10.0, "lng": 20.0, "tile_key": "10,20", "inserted_at": T0}]

        rows = await PingRepository(db).fetch_recent(T0, limit=100)

        query, since, limit = db.fetch.await_args.args
        assert "ORDER BY inserted_at DESC" in query
        assert (since, limit) == (T0, 100)
        assert rows[0]["driver_id"] == "drv_1"

    @pytest.mark.asyncio
    async def test_fetch_recent_storage_error(self, db) -> None:
        db.fetch.side_effect = OSError("connection reset")

        with pytest.raises(StorageError):
            await PingRepository(db).fetch_recent(T0)
