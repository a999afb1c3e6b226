# tests/core/tracking/test_background_tracker.py
"""
Тесты фонового трекера.
"""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from ridetrack.common.exceptions import RateLimitError
from ridetrack.core.tracking.adapters import QueuePositionSource
from ridetrack.core.tracking.background import BackgroundTracker, load_or_create_driver_id
from ridetrack.core.tracking.estimator import PositionEstimator
from ridetrack.core.tracking.location_store import LocationStore
from ridetrack.core.tracking.models import PositionFix
from ridetrack.shared.models.location_dto import PingResponse

T0 = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeMonotonic:
    def __init__(self) -> None:
        self.value = 100.0

    def __call__(self) -> float:
        return self.value


@pytest.fixture
def ingest() -> AsyncMock:
    client = AsyncMock()
    client.send_ping = AsyncMock(return_value=PingResponse(dedup=False, area_key="10,20"))
    return client


@pytest.fixture
def realtime() -> AsyncMock:
    channel = AsyncMock()
    channel.publish = AsyncMock(return_value=True)
    return channel


@pytest.fixture
def monotonic() -> FakeMonotonic:
    return FakeMonotonic()


@pytest.fixture
def tracker_parts(ingest, realtime, monotonic):
    source = QueuePositionSource()
    store = LocationStore()
    estimator = PositionEstimator()
    tracker = BackgroundTracker(
        source, "drv_test", store, estimator,
        ingest=ingest, realtime=realtime, interval_seconds=5.0, monotonic=monotonic,
    )
    return source, store, estimator, tracker


class TestBackgroundTracker:

    @pytest.mark.asyncio
    async def test_every_fix_recorded_locally(self, tracker_parts) -> None:
        source, store, estimator, tracker = tracker_parts
        await tracker.start()

        await source.push(PositionFix(10.0, 20.0, T0, accuracy=5.0))
        await source.push(PositionFix(10.001, 20.0, T0, accuracy=5.0))
        await tracker.drain()

        assert len(store.state()) == 2
        assert estimator.snapshot is not None

    @pytest.mark.asyncio
    async def test_network_send_throttled(self, tracker_parts, ingest, realtime, monotonic) -> None:
        source, _, _, tracker = tracker_parts
        await tracker.start()

        await source.push(PositionFix(10.0, 20.0, T0))
        monotonic.value += 1.0
        await source.push(PositionFix(10.001, 20.0, T0))
        monotonic.value += 4.5
        await source.push(PositionFix(10.002, 20.0, T0))
        await tracker.drain()

        assert ingest.send_ping.await_count == 2
        assert realtime.publish.await_count == 3
        assert ingest.send_ping.await_count == 3
        ingest.send_ping.assert_any_await("drv_test", 10.0, 20.0, None)
        realtime.publish.assert_any_await("drv_test", 10.002, 20.0)

    @pytest.mark.asyncio
    async def test_rate_limit_and_network_errors_are_not_fatal(self, tracker_parts, ingest, realtime, monotonic) -> None:
        source, _, _, tracker = tracker_parts
        ingest.send_ping.side_effect = [
            RateLimitError("rate limited", retry_after=1.0),
            httpx.ConnectError("refused"),
            ValueError("Expecting value: line 1 column 1"),
        ]
        await tracker.start()

        await source.push(PositionFix(10.0, 20.0, T0))
        monotonic.value += 10
        await source.push(PositionFix(10.001, 20.0, T0))
        monotonic.value += 10
        await source.push(PositionFix(10.002, 20.0, T0))
        await tracker.drain()

        # realtime публикуется независимо от ответа сервиса приёма
        assert realtime.publish.await_count == 3
        assert ingest.send_ping.await_count == 3

    @pytest.mark.asyncio
    async def test_non_finite_fix_ignored(self, tracker_parts, ingest) -> None:
        source, store, estimator, tracker = tracker_parts
        await tracker.start()

        await source.push(PositionFix(float("inf"), 20.0, T0))
        await tracker.drain()

        assert store.state() == ()
        assert estimator.snapshot is None
        ingest.send_ping.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_stop_unsubscribes(self, tracker_parts) -> None:
        source, store, _, tracker = tracker_parts
        await tracker.start()
        await tracker.start()
        assert source.active_watches == 1

        await tracker.stop()
        await source.push(PositionFix(10.0, 20.0, T0))

        assert not tracker.is_running
        assert store.state() == ()

    @pytest.mark.asyncio
    async def test_works_without_network(self, monotonic) -> None:
        source = QueuePositionSource()
        store = LocationStore()
        tracker = BackgroundTracker(source, "drv_test", store, PositionEstimator(), monotonic=monotonic)
        await tracker.start()

        await source.push(PositionFix(10.0, 20.0, T0))
        await tracker.stop()

        assert store.state() == ((10.0, 20.0),)


class TestDriverId:

    def test_created_once_and_reused(self, tmp_path) -> None:
        path = tmp_path / "data" / "driver_id"

        first = load_or_create_driver_id(path)
        second = load_or_create_driver_id(path)

        assert first == second
        assert first.startswith("drv_")
        assert len(first) == len("drv_") + 12

    def test_existing_value_kept(self, tmp_path) -> None:
        path = tmp_path / "driver_id"
        path.write_text("drv_custom\n", encoding="utf-8")

        assert load_or_create_driver_id(path) == "drv_custom"
