"""
Сглаживание и экстраполяция позиции.

Рекурсивный фильтр с постоянным коэффициентом k = q / (q + r):
прогноз по скорости, затем коррекция к измерению. update() вызывается
при приходе фикса (редко, нерегулярно), predict() - из цикла анимации (~60 Гц).
"""

from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable

from ridetrack.core.tracking.models import PositionFix


@dataclass(frozen=True)
class PositionEstimate:
    """Неизменяемый снимок оценки: позиция, скорость (град/с), время фикса."""
    lat: float
    lng: float
    vel_lat: float
    vel_lng: float
    last_update_time: datetime | None = None

    @property
    def position(self) -> tuple[float, float]:
        return self.lat, self.lng


class PositionEstimator:
    """
    Оценщик позиции с единственным писателем.

    update() сериализуется блокировкой и публикует новый снимок целиком;
    predict() читает одну ссылку на снимок и не видит частично применённого
    обновления.
    """

    def __init__(self, process_noise: float = 1.0, measurement_noise: float = 4.0) -> None:
        if process_noise <= 0 or measurement_noise <= 0:
            raise ValueError("process_noise и measurement_noise должны быть > 0")
        self.process_noise = process_noise
        self.measurement_noise = measurement_noise
        self.gain = process_noise / (process_noise + measurement_noise)

        self._write_lock = threading.Lock()
        self._snapshot: PositionEstimate | None = None

    @property
    def snapshot(self) -> PositionEstimate | None:
        """Текущий опубликованный снимок (None до первого фикса)."""
        return self._snapshot

    def update(self, lat: float, lng: float, dt: float, timestamp: datetime | None = None) -> PositionEstimate | None:
        """
        Учесть новое измерение.

        Args:
            lat, lng: Измеренная позиция
            dt: Время с предыдущего фикса, секунды
            timestamp: Время фикса (для predict_at)

        Returns:
            Новый снимок; при dt <= 0 - прежний без изменений
        """
        with self._write_lock:
            prior = self._snapshot

            if prior is None:
                self._snapshot = PositionEstimate(lat, lng, 0.0, 0.0, timestamp)
                return self._snapshot

            # Скорость не определена при dt <= 0
            if dt <= 0:
                return prior

            k = self.gain

            pred_lat = prior.lat + prior.vel_lat * dt
            pred_lng = prior.lng + prior.vel_lng * dt

            new_lat = pred_lat + k * (lat - pred_lat)
            new_lng = pred_lng + k * (lng - pred_lng)

            measured_vel_lat = (lat - prior.lat) / dt
            measured_vel_lng = (lng - prior.lng) / dt

            self._snapshot = PositionEstimate(
                lat=new_lat,
                lng=new_lng,
                vel_lat=prior.vel_lat + k * (measured_vel_lat - prior.vel_lat),
                vel_lng=prior.vel_lng + k * (measured_vel_lng - prior.vel_lng),
                last_update_time=timestamp if timestamp is not None else prior.last_update_time,
            )
            return self._snapshot

    def update_fix(self, fix: PositionFix) -> PositionEstimate | None:
        """update() с dt, вычисленным по времени предыдущего фикса."""
        prior = self._snapshot
        if prior is None or prior.last_update_time is None:
            dt = 0.0
        else:
            dt = (fix.timestamp - prior.last_update_time).total_seconds()
        return self.update(fix.latitude, fix.longitude, dt, timestamp=fix.timestamp)

    def predict(self, dt: float) -> tuple[float, float] | None:
        """
        Экстраполяция позиции на dt секунд вперёд; состояние не меняется.
        predict(0) возвращает текущую сглаженную позицию.
        """
        snap = self._snapshot
        if snap is None:
            return None
        return snap.lat + snap.vel_lat * dt, snap.lng + snap.vel_lng * dt

    def predict_at(self, now: datetime, lag: timedelta = timedelta(milliseconds=500)) -> tuple[float, float] | None:
        """
        Экстраполяция на момент now - lag, но не раньше последнего фикса.
        """
        snap = self._snapshot
        if snap is None:
            return None
        if snap.last_update_time is None:
            return snap.position
        dt = max(0.0, ((now - lag) - snap.last_update_time).total_seconds())
        return snap.lat + snap.vel_lat * dt, snap.lng + snap.vel_lng * dt

    def reset(self) -> None:
        with self._write_lock:
            self._snapshot = None


DisplaySink = Callable[[tuple[float, float]], Awaitable[None]]


async def run_extrapolation_loop(
    estimator: PositionEstimator,
    sink: DisplaySink,
    clock: Callable[[], datetime],
    hz: int = 60,
    lag: timedelta = timedelta(milliseconds=500),
) -> None:
    """
    Цикл анимации: с фиксированной частотой отдаёт экстраполированную позицию
    в sink. Работает до отмены задачи; update() при этом не блокируется.
    """
    interval = 1.0 / hz
    while True:
        position = estimator.predict_at(clock(), lag)
        if position is not None:
            await sink(position)
        await asyncio.sleep(interval)
