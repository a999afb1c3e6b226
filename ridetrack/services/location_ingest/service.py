"""
Бизнес-логика приёма ping-ов позиции.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Callable

from ridetrack.common.constants import TypeMsg
from ridetrack.common.exceptions import RateLimitError, ValidationError
from ridetrack.common.logger import log_debug, log_info
from ridetrack.services.location_ingest.repository import PingRepository
from ridetrack.services.utils.geo_utils import DEFAULT_TILE_STEP, tile_key
from ridetrack.shared.models.location_dto import DriverPing, PingResult


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


class LocationIngestService:
    """
    Сервис приёма ping-ов водителей.

    Ответственности:
    - Валидация ping-а
    - Вычисление ключа тайла
    - Дедупликация (тот же тайл в пределах окна)
    - Ограничение частоты на водителя
    - Сохранение не более одной строки на вызов
    """

    def __init__(
        self,
        repository: PingRepository,
        *,
        tile_step: float = DEFAULT_TILE_STEP,
        dedup_window_seconds: float = 20.0,
        rate_limit_seconds: float = 2.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._repository = repository
        self._tile_step = tile_step
        self._dedup_window = dedup_window_seconds
        self._rate_limit = rate_limit_seconds
        self._clock = clock

        # Статистика
        self._accepted = 0
        self._deduped = 0
        self._rate_limited = 0

    @classmethod
    def from_settings(cls, repository: PingRepository, ingest, **kwargs: Any) -> "LocationIngestService":
        return cls(
            repository,
            tile_step=ingest.TILE_STEP_DEG,
            dedup_window_seconds=ingest.DEDUP_WINDOW_SECONDS,
            rate_limit_seconds=ingest.RATE_LIMIT_SECONDS,
            **kwargs,
        )

    @staticmethod
    def validate(driver_id: Any, lat: Any, lng: Any, accuracy: Any = None) -> None:
        """
        Проверяет ping.

        Raises:
            ValidationError: Пустой driver_id, координаты не числа или вне диапазона
        """
        if not isinstance(driver_id, str) or not driver_id:
            raise ValidationError("driver_id must be a non-empty string")
        if not _is_number(lat) or not -90 <= lat <= 90:
            raise ValidationError("lat must be a finite number in [-90, 90]")
        if not _is_number(lng) or not -180 <= lng <= 180:
            raise ValidationError("lng must be a finite number in [-180, 180]")
        if accuracy is not None and (not _is_number(accuracy) or accuracy < 0):
            raise ValidationError("accuracy must be a non-negative number")

    async def submit_ping(
        self,
        driver_id: str,
        lat: float,
        lng: float,
        accuracy: float | None = None,
    ) -> PingResult:
        """
        Принимает ping водителя.

        1. Валидация
        2. Ключ тайла
        3. Под блокировкой водителя: последний ping → дедупликация / лимит / вставка

        Raises:
            ValidationError: Некорректный ping
            RateLimitError: Предыдущий ping моложе RATE_LIMIT_SECONDS
            StorageError: Хранилище недоступно
        """
        self.validate(driver_id, lat, lng, accuracy)
        key = tile_key(lat, lng, self._tile_step)

        async with self._repository.locked(driver_id) as conn:
            now = self._clock()
            latest = await self._repository.get_latest(conn, driver_id)

            if latest is not None:
                age = (now - latest.inserted_at).total_seconds()

                if latest.tile_key == key and age < self._dedup_window:
                    self._deduped += 1
                    await log_debug(f"Ping {driver_id} в тайле {key} пропущен (dedup, {age:.1f} с)")
                    return PingResult(accepted=False, deduped=True, tile_key=key)

                if age < self._rate_limit:
                    self._rate_limited += 1
                    raise RateLimitError(
                        f"too many updates from {driver_id}",
                        retry_after=max(0.0, self._rate_limit - age),
                    )

            await self._repository.insert(conn, DriverPing(
                driver_id=driver_id,
                lat=lat,
                lng=lng,
                accuracy=accuracy,
                tile_key=key,
                inserted_at=now,
            ))

        self._accepted += 1
        await log_info(f"Ping {driver_id} сохранён в тайле {key}", type_msg=TypeMsg.DEBUG)
        return PingResult(accepted=True, deduped=False, tile_key=key)

    def get_stats(self) -> dict[str, int]:
        """Получить статистику сервиса."""
        return {
            "accepted": self._accepted,
            "deduped": self._deduped,
            "rate_limited": self._rate_limited,
        }
