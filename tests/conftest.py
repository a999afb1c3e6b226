# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import asyncio
import json
import os
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")

from ridetrack.common.constants import FeedbackKind
from ridetrack.common.exceptions import StorageError
from ridetrack.core.tracking.adapters import FeedbackSink
from ridetrack.shared.models.location_dto import DriverPing
from ridetrack.shared.models.ride_dto import RideLogRow, RideSummaryRow


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


# =============================================================================
# ЧАСЫ И ФЕЙКИ
# =============================================================================

class ManualClock:
    """Часы, которые двигаются только вручную."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, milliseconds: float = 0) -> datetime:
        self.now += timedelta(seconds=seconds, milliseconds=milliseconds)
        return self.now


class RecordingFeedback(FeedbackSink):
    """Запоминает поданные сигналы."""

    def __init__(self) -> None:
        self.signals: list[FeedbackKind] = []

    async def signal(self, kind: FeedbackKind) -> None:
        self.signals.append(kind)


class FakeRideLog:
    """Журнал поездок в памяти."""

    def __init__(self) -> None:
        self.rows: list[RideLogRow] = []
        self.summaries: list[RideSummaryRow] = []
        self.fail = False

    async def log_snapshot(self, row: RideLogRow) -> None:
        if self.fail:
            raise StorageError("ride_logs unavailable")
        self.rows.append(row)

    async def save_summary(self, row: RideSummaryRow) -> None:
        if self.fail:
            raise StorageError("ride_summaries unavailable")
        self.summaries.append(row)


class FakePingRepository:
    """
    PingRepository в памяти с поводительской блокировкой,
    повторяющей advisory lock.
    """

    def __init__(self) -> None:
        self.rows: list[DriverPing] = []
        self.fail = False
        self._locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @asynccontextmanager
    async def locked(self, driver_id: str):
        if self.fail:
            raise StorageError("driver_pings unavailable")
        async with self._locks[driver_id]:
            yield None

    async def get_latest(self, conn: Any, driver_id: str) -> DriverPing | None:
        await asyncio.sleep(0)
        own = [row for row in self.rows if row.driver_id == driver_id]
        return max(own, key=lambda row: row.inserted_at) if own else None

    async def insert(self, conn: Any, ping: DriverPing) -> None:
        await asyncio.sleep(0)
        self.rows.append(ping)

    async def fetch_recent(self, since: datetime, limit: int = 5000) -> list[dict[str, Any]]:
        if self.fail:
            raise StorageError("driver_pings unavailable")
        recent = sorted(
            (row for row in self.rows if row.inserted_at >= since),
            key=lambda row: row.inserted_at,
            reverse=True,
        )
        return [row.model_dump(exclude={"accuracy"}) for row in recent[:limit]]


class FakePubSub:
    """Подписка Redis в памяти: сообщения из publish_json попадают в очередь."""

    def __init__(self) -> None:
        self.channels: list[str] = []
        self.closed = False
        self._messages: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    def feed(self, channel: str, payload: dict[str, Any]) -> None:
        if channel in self.channels:
            self._messages.put_nowait({"type": "message", "channel": channel, "data": json.dumps(payload)})

    async def subscribe(self, *channels: str) -> None:
        self.channels.extend(channels)

    async def unsubscribe(self, *channels: str) -> None:
        self.channels.clear()

    async def aclose(self) -> None:
        self.closed = True

    async def get_message(self, ignore_subscribe_messages: bool = False, timeout: float = 0.0):
        try:
            return await asyncio.wait_for(self._messages.get(), timeout)
        except asyncio.TimeoutError:
            return None


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def feedback() -> RecordingFeedback:
    return RecordingFeedback()


@pytest.fixture
def ride_log() -> FakeRideLog:
    return FakeRideLog()


@pytest.fixture
def ping_repository() -> FakePingRepository:
    return FakePingRepository()


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def mock_redis() -> AsyncMock:
    """Мок RedisClient."""
    redis = AsyncMock()
    redis.make_channel = lambda name: f"ridetrack_test:{name}"
    pubsub = FakePubSub()

    async def publish_json(channel: str, payload: dict[str, Any]) -> int:
        pubsub.feed(redis.make_channel(channel), payload)
        return 1

    redis.publish_json = AsyncMock(side_effect=publish_json)
    redis.pubsub = MagicMock(return_value=pubsub)
    redis.fake_pubsub = pubsub
    return redis
