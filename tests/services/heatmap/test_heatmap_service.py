# tests/services/heatmap/test_heatmap_service.py
"""
Тесты агрегации тепловой карты.
"""

from __future__ import annotations

import math
from datetime import timedelta

import pytest

from ridetrack.common.exceptions import StorageError
from ridetrack.services.heatmap.service import HeatmapAggregator, aggregate_tiles
from ridetrack.services.utils.geo_utils import tile_key
from ridetrack.shared.models.location_dto import DriverPing


def add_ping(repo, clock, driver_id: str, lat: float, lng: float, age_seconds: float = 0) -> None:
    repo.rows.append(DriverPing(
        driver_id=driver_id,
        lat=lat,
        lng=lng,
        tile_key=tile_key(lat, lng),
        inserted_at=clock() - timedelta(seconds=age_seconds),
    ))


@pytest.fixture
def aggregator(ping_repository, clock) -> HeatmapAggregator:
    return HeatmapAggregator(ping_repository, clock=clock)


class TestAggregateTiles:

    def test_counts_distinct_drivers_with_latest_point(self) -> None:
        rows = [
            {"driver_id": "a", "lat": 10.0002, "lng": 20.0, "tile_key": "10,20"},
            {"driver_id": "b", "lat": 10.0004, "lng": 20.0002, "tile_key": "10,20"},
            {"driver_id": "c", "lat": 10.0, "lng": 20.0004, "tile_key": "10,20"},
            # старый ping водителя a в том же тайле
            {"driver_id": "a", "lat": 9.9999, "lng": 19.9999, "tile_key": "10,20"},
        ]

        tiles = aggregate_tiles(rows)

        assert len(tiles) == 1
        assert tiles[0].drivers == 3
        assert tiles[0].lat == pytest.approx((10.0002 + 10.0004 + 10.0) / 3)
        assert tiles[0].lng == pytest.approx((20.0 + 20.0002 + 20.0004) / 3)

    def test_driver_counted_in_each_tile_visited(self) -> None:
        rows = [
            {"driver_id": "a", "lat": 10.0, "lng": 20.0, "tile_key": "10,20"},
            {"driver_id": "a", "lat": 10.1, "lng": 20.0, "tile_key": "10.1,20"},
        ]

        assert {t.tile_key for t in aggregate_tiles(rows)} == {"10,20", "10.1,20"}

    def test_sorted_by_drivers_then_key(self) -> None:
        rows = [
            {"driver_id": "a", "lat": 10.1, "lng": 20.0},
            {"driver_id": "b", "lat": 10.0, "lng": 20.0},
            {"driver_id": "c", "lat": 10.0, "lng": 20.0},
            {"driver_id": "d", "lat": 10.05, "lng": 20.0},
        ]

        tiles = aggregate_tiles(rows)

        assert [t.tile_key for t in tiles] == ["10,20", "10.05,20", "10.1,20"]
        assert [t.drivers for t in tiles] == [2, 1, 1]

    def test_invalid_rows_skipped(self) -> None:
        rows = [
            {"driver_id": "a", "lat": math.nan, "lng": 20.0},
            {"driver_id": "", "lat": 10.0, "lng": 20.0},
            {"driver_id": "b", "lat": None, "lng": 20.0},
        ]

        assert aggregate_tiles(rows) == []


class TestHeatmapAggregator:

    @pytest.mark.asyncio
    async def test_snapshot_from_recent_pings(self, aggregator, ping_repository, clock) -> None:
        add_ping(ping_repository, clock, "a", 10.0002, 20.0, age_seconds=1)
        add_ping(ping_repository, clock, "b", 10.0004, 20.0002, age_seconds=2)
        add_ping(ping_repository, clock, "c", 10.0, 20.0004, age_seconds=3)
        add_ping(ping_repository, clock, "a", 9.9999, 19.9999, age_seconds=30)

        snapshot = await aggregator.get_snapshot(60)

        assert snapshot.window_seconds == 60
        assert len(snapshot.tiles) == 1
        assert snapshot.tiles[0].drivers == 3
        assert snapshot.tiles[0].lat == pytest.approx((10.0002 + 10.0004 + 10.0) / 3)

    @pytest.mark.asyncio
    async def test_old_pings_outside_window(self, aggregator, ping_repository, clock) -> None:
        add_ping(ping_repository, clock, "a", 10.0, 20.0, age_seconds=5)
        add_ping(ping_repository, clock, "b", 10.0, 20.0, age_seconds=50)

        snapshot = await aggregator.get_snapshot(10)

        assert snapshot.tiles[0].drivers == 1

    @pytest.mark.asyncio
    async def test_empty_window(self, aggregator) -> None:
        snapshot = await aggregator.get_snapshot()

        assert snapshot.tiles == []
        assert snapshot.window_seconds == 120

    @pytest.mark.asyncio
    async def test_storage_error_propagates(self, aggregator, ping_repository) -> None:
        ping_repository.fail = True

        with pytest.raises(StorageError):
            await aggregator.get_snapshot(60)

    @pytest.mark.parametrize(
        "requested,expected",
        [(None, 120), (5, 10), (10, 10), (45.7, 45), (600, 600), (3600, 600), (math.nan, 120), (math.inf, 120)],
    )
    def test_clamp_lookback(self, aggregator, requested, expected) -> None:
        assert aggregator.clamp_lookback(requested) == expected
