"""
Грубый realtime-канал позиций водителей.

Публикует позицию, округлённую до PRECISION_DEG (~1 км), в Redis канал
heatmap:realtime. Подписчики держат последнюю точку каждого водителя
с TTL и ограничением на количество. Это отображение, а не источник истины:
потеря сообщений допустима.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from redis.exceptions import RedisError

from ridetrack.common.constants import TypeMsg
from ridetrack.common.logger import log_debug, log_error, log_info, log_warning
from ridetrack.infra.event_bus import EventChannel
from ridetrack.infra.redis_client import RedisClient
from ridetrack.services.utils.geo_utils import coarsen, is_finite_coord


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class RealtimePoint:
    """Последняя грубая позиция водителя."""
    driver_id: str
    lat: float
    lng: float
    seen_at: datetime


class RealtimeBroadcastChannel:
    """
    Публикация и приём грубых позиций.

    Ответственности:
    - Округление и публикация своей позиции
    - Прослушивание канала и карта driver_id → последняя точка
    - Вытеснение по TTL и по лимиту точек
    """

    def __init__(
        self,
        redis: RedisClient,
        *,
        channel: str = "heatmap:realtime",
        precision_deg: float = 0.01,
        point_ttl_seconds: float = 15.0,
        max_points: int = 400,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._redis = redis
        self._channel = channel
        self._precision = precision_deg
        self._ttl = timedelta(seconds=point_ttl_seconds)
        self._max_points = max_points
        self._clock = clock

        self._points: dict[str, RealtimePoint] = {}
        self._pubsub = None
        self._task: asyncio.Task | None = None
        self._running = False

        self.updates: EventChannel[list[RealtimePoint]] = EventChannel("realtime.points")

    @classmethod
    def from_settings(cls, redis: RedisClient, realtime, **kwargs: Any) -> "RealtimeBroadcastChannel":
        return cls(
            redis,
            channel=realtime.CHANNEL,
            precision_deg=realtime.PRECISION_DEG,
            point_ttl_seconds=realtime.POINT_TTL_SECONDS,
            max_points=realtime.MAX_POINTS,
            **kwargs,
        )

    # =========================================================================
    # ПУБЛИКАЦИЯ
    # =========================================================================

    async def publish(self, driver_id: str, lat: float, lng: float) -> bool:
        """
        Публикует грубую позицию водителя.

        Returns:
            True если сообщение отправлено
        """
        if not is_finite_coord(lat, lng):
            return False

        coarse_lat, coarse_lng = coarsen(lat, lng, self._precision)
        payload = {
            "driver_id": driver_id,
            "lat": coarse_lat,
            "lng": coarse_lng,
            "ts": self._clock().isoformat(),
        }
        try:
            await self._redis.publish_json(self._channel, payload)
        except RedisError as e:
            await log_warning(f"Realtime публикация не удалась: {e}")
            return False
        return True

    # =========================================================================
    # ПОДПИСКА
    # =========================================================================

    async def start(self) -> None:
        """Подписаться на канал и запустить прослушивание."""
        if self._running:
            return

        pubsub = self._redis.pubsub()
        try:
            await pubsub.subscribe(self._redis.make_channel(self._channel))
        except (RedisError, OSError):
            await pubsub.aclose()
            raise
        self._pubsub = pubsub
        self._running = True
        self._task = asyncio.create_task(self._listen())

        await log_info(f"Подписка на realtime канал {self._channel}", type_msg=TypeMsg.INFO)

    async def stop(self) -> None:
        """Остановить прослушивание."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._pubsub:
            await self._pubsub.unsubscribe()
            await self._pubsub.aclose()
            self._pubsub = None

    async def _listen(self) -> None:
        while self._running:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
                if message is None:
                    continue

                await self._process_message(message)

            except asyncio.CancelledError:
                break
            except RedisError as e:
                await log_error(f"Ошибка realtime подписчика: {e}")
                await asyncio.sleep(1)

    async def _process_message(self, message: dict[str, Any]) -> None:
        if message.get("type") != "message":
            return

        data = message.get("data", "")
        if isinstance(data, bytes):
            data = data.decode("utf-8")

        try:
            payload = json.loads(data)
        except json.JSONDecodeError:
            await log_debug("Realtime: некорректное сообщение пропущено")
            return

        if self.receive(payload):
            await self.updates.publish(self.points())

    def receive(self, payload: dict[str, Any]) -> bool:
        """
        Учитывает сообщение канала.

        Returns:
            True если карта точек изменилась
        """
        driver_id = payload.get("driver_id")
        lat = payload.get("lat")
        lng = payload.get("lng")
        if not isinstance(driver_id, str) or not driver_id:
            return False
        if not isinstance(lat, (int, float)) or not isinstance(lng, (int, float)):
            return False
        if not is_finite_coord(lat, lng):
            return False

        self._points[driver_id] = RealtimePoint(driver_id, float(lat), float(lng), self._clock())
        self._evict()
        return True

    def points(self) -> list[RealtimePoint]:
        """Актуальные точки после вытеснения устаревших."""
        self._evict()
        return list(self._points.values())

    def _evict(self) -> None:
        cutoff = self._clock() - self._ttl
        self._points = {k: p for k, p in self._points.items() if p.seen_at >= cutoff}

        if len(self._points) > self._max_points:
            newest = sorted(self._points.values(), key=lambda p: p.seen_at, reverse=True)
            self._points = {p.driver_id: p for p in newest[: self._max_points]}
