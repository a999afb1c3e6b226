"""
Агрегация тепловой карты.

Снимок вычисляется на каждый запрос из ping-ов за окно; кэша нет.
В каждом тайле считается число различных водителей, центроид берётся
по одной (самой свежей) точке каждого водителя.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Iterable

from ridetrack.common.constants import TypeMsg
from ridetrack.common.logger import log_info
from ridetrack.services.location_ingest.repository import PingRepository
from ridetrack.services.utils.geo_utils import DEFAULT_TILE_STEP, is_finite_coord, tile_key
from ridetrack.shared.models.heatmap_dto import HeatmapSnapshot, HeatTile


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def aggregate_tiles(rows: Iterable[dict[str, Any]], step: float = DEFAULT_TILE_STEP) -> list[HeatTile]:
    """
    Сворачивает строки ping-ов в тайлы.

    Строки должны идти от новых к старым: первая встреченная пара
    (tile_key, driver_id) представляет водителя в тайле. Строки с
    некорректными координатами пропускаются.
    """
    seen: set[tuple[str, str]] = set()
    sums: dict[str, list[float]] = {}

    for row in rows:
        lat, lng = row.get("lat"), row.get("lng")
        driver_id = row.get("driver_id")
        if not driver_id or not is_finite_coord(lat, lng):
            continue

        key = row.get("tile_key") or tile_key(lat, lng, step)
        if (key, driver_id) in seen:
            continue
        seen.add((key, driver_id))

        acc = sums.setdefault(key, [0.0, 0.0, 0])
        acc[0] += lat
        acc[1] += lng
        acc[2] += 1

    tiles = [
        HeatTile(tile_key=key, lat=lat_sum / count, lng=lng_sum / count, drivers=count)
        for key, (lat_sum, lng_sum, count) in sums.items()
    ]
    tiles.sort(key=lambda t: (-t.drivers, t.tile_key))
    return tiles


class HeatmapAggregator:
    """Только чтение; безопасен для одновременных запросов."""

    def __init__(
        self,
        repository: PingRepository,
        *,
        default_lookback: int = 120,
        min_lookback: int = 10,
        max_lookback: int = 600,
        row_limit: int = 5000,
        tile_step: float = DEFAULT_TILE_STEP,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._default_lookback = default_lookback
        self._min_lookback = min_lookback
        self._max_lookback = max_lookback
        self._row_limit = row_limit
        self._tile_step = tile_step
        self._clock = clock

    @classmethod
    def from_settings(cls, repository: PingRepository, heatmap, ingest, **kwargs: Any) -> "HeatmapAggregator":
        return cls(
            repository,
            default_lookback=heatmap.DEFAULT_LOOKBACK_SECONDS,
            min_lookback=heatmap.MIN_LOOKBACK_SECONDS,
            max_lookback=heatmap.MAX_LOOKBACK_SECONDS,
            row_limit=heatmap.ROW_LIMIT,
            tile_step=ingest.TILE_STEP_DEG,
            **kwargs,
        )

    def clamp_lookback(self, lookback_seconds: float | None) -> int:
        """Окно в секундах, ограниченное [min_lookback, max_lookback]."""
        if lookback_seconds is None or not math.isfinite(lookback_seconds):
            return self._default_lookback
        return int(min(max(lookback_seconds, self._min_lookback), self._max_lookback))

    async def get_snapshot(self, lookback_seconds: float | None = None) -> HeatmapSnapshot:
        """
        Тепловая карта за окно.

        Raises:
            StorageError: Хранилище недоступно
        """
        window = self.clamp_lookback(lookback_seconds)
        since = self._clock() - timedelta(seconds=window)

        rows = await self._repository.fetch_recent(since, self._row_limit)
        tiles = aggregate_tiles(rows, self._tile_step)

        await log_info(
            f"Heatmap: {len(rows)} строк → {len(tiles)} тайлов за {window} с",
            type_msg=TypeMsg.DEBUG,
        )
        return HeatmapSnapshot(tiles=tiles, window_seconds=window)
