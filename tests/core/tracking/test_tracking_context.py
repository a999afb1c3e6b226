# tests/core/tracking/test_tracking_context.py
"""
Тесты контекста трекинга (сборка и разборка компонентов).
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from ridetrack.common.constants import RideCommand, RidePhase
from ridetrack.config.loader import Settings
from ridetrack.core.tracking.adapters import QueuePositionSource
import ridetrack.core.tracking.context as context_module
from ridetrack.core.tracking.context import TrackingContext
from ridetrack.core.tracking.models import PositionFix
from ridetrack.shared.models.location_dto import PingResponse


@pytest.fixture
def tracking_settings(tmp_path) -> Settings:
    base = Settings()
    tracking = base.tracking.model_copy(update={
        "PATH_STORE_FILE": str(tmp_path / "path.json"),
        "DRIVER_ID_FILE": str(tmp_path / "driver_id"),
    })
    return base.model_copy(update={"tracking": tracking})


@pytest.fixture
def ingest() -> AsyncMock:
    client = AsyncMock()
    client.send_ping = AsyncMock(return_value=PingResponse(dedup=False, area_key="10,20"))
    return client


@pytest.fixture
def context(tracking_settings, feedback, ride_log, mock_redis, ingest, clock) -> TrackingContext:
    return TrackingContext(
        tracking_settings,
        source=QueuePositionSource(),
        feedback=feedback,
        log_sink=ride_log,
        redis=mock_redis,
        ingest=ingest,
        clock=clock,
        run_loops=False,
    )


class TestTrackingContext:

    @pytest.mark.asyncio
    async def test_start_wires_components(self, context, tmp_path) -> None:
        async with context as ctx:
            assert ctx.is_started
            assert ctx.driver_id.startswith("drv_")
            assert (tmp_path / "driver_id").read_text(encoding="utf-8") == ctx.driver_id
            assert ctx.session.phase is RidePhase.IDLE
            assert ctx.background.is_running
            assert ctx.realtime is not None

        assert not context.is_started

    @pytest.mark.asyncio
    async def test_realtime_listener_collects_points(self, context, mock_redis, clock) -> None:
        received = asyncio.Event()

        async def on_update(points: list) -> None:
            received.set()

        async with context as ctx:
            assert mock_redis.fake_pubsub.channels == ["ridetrack_test:heatmap:realtime"]
            ctx.realtime.updates.subscribe(on_update)

            await ctx.source.push(PositionFix(10.0049, 20.0, clock(), accuracy=5.0))
            await ctx.background.drain()
            await asyncio.wait_for(received.wait(), timeout=2.0)

            points = ctx.realtime.points()
            assert [(p.driver_id, p.lat, p.lng) for p in points] == [(ctx.driver_id, 10.0, 20.0)]

        assert mock_redis.fake_pubsub.closed

    @pytest.mark.asyncio
    async def test_redis_unavailable_disables_realtime(self, tracking_settings, feedback, ride_log, ingest, monkeypatch) -> None:
        redis = AsyncMock()
        redis.connect.side_effect = RedisConnectionError("refused")
        monkeypatch.setattr(context_module, "RedisClient", lambda namespace: redis)

        ctx = TrackingContext(
            tracking_settings,
            source=QueuePositionSource(),
            feedback=feedback,
            log_sink=ride_log,
            ingest=ingest,
            run_loops=False,
        )
        async with ctx:
            assert ctx.realtime is None
            assert ctx.background.is_running

        redis.disconnect.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_fix_feeds_store_estimator_and_ingest(self, context, ingest, mock_redis, clock) -> None:
        async with context as ctx:
            await ctx.source.push(PositionFix(10.0, 20.0, clock(), accuracy=5.0))
            await ctx.background.drain()

            assert ctx.store.state() == ((10.0, 20.0),)
            assert ctx.current_position() == (10.0, 20.0)
            ingest.send_ping.assert_awaited_once()
            mock_redis.publish_json.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_ride_uses_last_known_position(self, context, clock) -> None:
        async with context as ctx:
            await ctx.source.push(PositionFix(10.0, 20.0, clock(), accuracy=5.0))
            await ctx.session.handle(RideCommand.START_RIDE)

            assert ctx.session.points == ((10.0, 20.0),)
            assert ctx.source.active_watches == 2

            clock.advance(seconds=5)
            await ctx.source.push(PositionFix(10.0005, 20.0, clock(), accuracy=5.0))
            assert len(ctx.session.points) == 2

            await ctx.session.handle(RideCommand.END_RIDE)
            assert ctx.source.active_watches == 1

    @pytest.mark.asyncio
    async def test_display_loop_stopped_with_context(self, context, clock) -> None:
        received: list[tuple[float, float]] = []

        async def sink(position: tuple[float, float]) -> None:
            received.append(position)

        async with context as ctx:
            await ctx.source.push(PositionFix(10.0, 20.0, clock(), accuracy=5.0))
            task = ctx.start_display_loop(sink)
            await asyncio.sleep(0.05)

        assert task.done()
        assert received[0] == (10.0, 20.0)

    @pytest.mark.asyncio
    async def test_stop_releases_source_and_clients(self, context, ingest) -> None:
        await context.start()
        source = context.source
        await context.stop()
        await context.stop()

        assert source.active_watches == 0
        ingest.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_path_restored_on_next_start(self, tracking_settings, feedback, ride_log, mock_redis, ingest, clock) -> None:
        def build() -> TrackingContext:
            return TrackingContext(
                tracking_settings,
                source=QueuePositionSource(),
                feedback=feedback,
                log_sink=ride_log,
                redis=mock_redis,
                ingest=ingest,
                clock=clock,
                run_loops=False,
            )

        async with build() as first:
            await first.source.push(PositionFix(10.0, 20.0, clock(), accuracy=5.0))
            await first.background.drain()
            driver_id = first.driver_id

        async with build() as second:
            assert second.store.state() == ((10.0, 20.0),)
            assert second.driver_id == driver_id
            assert second.current_position() == (10.0, 20.0)

    @pytest.mark.asyncio
    async def test_clock_loop_runs_when_enabled(self, tracking_settings, feedback, ride_log, mock_redis, ingest) -> None:
        ctx = TrackingContext(
            tracking_settings,
            source=QueuePositionSource(),
            feedback=feedback,
            log_sink=ride_log,
            redis=mock_redis,
            ingest=ingest,
        )
        await ctx.start()
        assert len(ctx._tasks) == 1
        await ctx.stop()
        assert ctx._tasks == []
