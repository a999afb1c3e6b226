"""
Фоновый трекер: локальная запись каждого фикса и редкая отправка в сеть.

Каждый фикс сразу попадает в LocationStore и оценщик позиции. Не чаще
раза в BROADCAST_INTERVAL_SECONDS позиция уходит в сервис приёма ping-ов
и в realtime-канал; сетевой путь выполняется отдельной задачей и не
задерживает локальную запись.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from pathlib import Path
from typing import Callable

import httpx
from pydantic import ValidationError as PydanticValidationError

from ridetrack.common.constants import TypeMsg
from ridetrack.common.exceptions import RateLimitError, SensorError
from ridetrack.common.logger import log_debug, log_info, log_warning
from ridetrack.core.tracking.adapters import PositionSource
from ridetrack.core.tracking.estimator import PositionEstimator
from ridetrack.core.tracking.ingest_client import IngestClient
from ridetrack.core.tracking.location_store import LocationStore
from ridetrack.core.tracking.models import PositionFix
from ridetrack.services.realtime_heatmap.channel import RealtimeBroadcastChannel
from ridetrack.services.utils.geo_utils import is_finite_coord


def load_or_create_driver_id(path: Path) -> str:
    """Стабильный идентификатор установки; создаётся при первом запуске."""
    if path.exists():
        driver_id = path.read_text(encoding="utf-8").strip()
        if driver_id:
            return driver_id

    driver_id = f"drv_{uuid.uuid4().hex[:12]}"
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(driver_id, encoding="utf-8")
    return driver_id


class BackgroundTracker:
    """Подписчик источника геолокации вне сессии поездки."""

    def __init__(
        self,
        source: PositionSource,
        driver_id: str,
        store: LocationStore,
        estimator: PositionEstimator,
        *,
        ingest: IngestClient | None = None,
        realtime: RealtimeBroadcastChannel | None = None,
        interval_seconds: float = 5.0,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self.driver_id = driver_id
        self._store = store
        self._estimator = estimator
        self._ingest = ingest
        self._realtime = realtime
        self._interval = interval_seconds
        self._monotonic = monotonic

        self._watch_id: str | None = None
        self._last_sent: float | None = None
        self._pending: set[asyncio.Task] = set()

    @property
    def is_running(self) -> bool:
        return self._watch_id is not None

    async def start(self) -> None:
        if self._watch_id is not None:
            return
        self._watch_id = self._source.start_watch(self.on_fix, self.on_sensor_error)
        await log_info(f"Фоновый трекинг запущен для {self.driver_id}", type_msg=TypeMsg.INFO)

    async def stop(self) -> None:
        """Отписаться и дождаться отправок, которые уже начаты."""
        if self._watch_id is not None:
            self._source.stop_watch(self._watch_id)
            self._watch_id = None
        await self.drain()
        await log_info("Фоновый трекинг остановлен", type_msg=TypeMsg.INFO)

    async def drain(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    async def on_fix(self, fix: PositionFix) -> None:
        if not is_finite_coord(fix.latitude, fix.longitude):
            return
        self._estimator.update_fix(fix)
        await self._store.record(fix.point, fix.accuracy)

        now = self._monotonic()
        if self._last_sent is not None and now - self._last_sent < self._interval:
            return
        self._last_sent = now

        task = asyncio.create_task(self._send(fix))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def on_sensor_error(self, error: SensorError) -> None:
        await log_warning(f"Фоновый трекинг: ошибка источника геолокации: {error}")

    async def _send(self, fix: PositionFix) -> None:
        if self._ingest is not None:
            try:
                response = await self._ingest.send_ping(
                    self.driver_id, fix.latitude, fix.longitude, fix.accuracy,
                )
                await log_debug(f"Ping принят: tile={response.area_key} dedup={response.dedup}")
            except RateLimitError as e:
                await log_debug(f"Ping отклонён лимитом, повтор через {e.retry_after} с")
            except (httpx.HTTPError, PydanticValidationError, ValueError) as e:
                await log_warning(f"Ping не отправлен: {e}")

        if self._realtime is not None:
            await self._realtime.publish(self.driver_id, fix.latitude, fix.longitude)
