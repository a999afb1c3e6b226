"""
Сессия поездки: конечный автомат фаз idle → toPickup → riding → idle.

Сессия копит дистанцию, время фаз и простой, пишет строки журнала и
публикует статистику в явные каналы stats и finished.

Состояние меняется синхронно до первого await в каждом обработчике,
поэтому команды, тики и фиксы, чередующиеся в одном event loop, всегда
видят согласованное состояние.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from ridetrack.common.constants import FeedbackKind, RideCommand, RidePhase, TypeMsg
from ridetrack.common.exceptions import SensorError, StaleFixError, StorageError
from ridetrack.common.logger import log_debug, log_error, log_info, log_warning
from ridetrack.core.tracking.adapters import FeedbackSink, PositionSource, safe_signal
from ridetrack.core.tracking.models import PositionFix
from ridetrack.core.tracking.repository import RideLogSink
from ridetrack.infra.event_bus import EventChannel
from ridetrack.services.utils.geo_utils import haversine_m, is_finite_coord
from ridetrack.shared.models.ride_dto import RideFinished, RideLogRow, RideStats, RideSummaryRow

Clock = Callable[[], datetime]
PositionProvider = Callable[[], tuple[float, float] | None]

_SECOND = timedelta(seconds=1)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def whole_seconds(delta: timedelta) -> int:
    """Целые секунды (floor), не меньше нуля."""
    return max(0, delta // _SECOND)


@dataclass(frozen=True)
class SessionConfig:
    """Пороги сессии поездки."""
    accuracy_ceiling_m: float = 50.0
    glitch_distance_m: float = 500.0
    idle_threshold: timedelta = timedelta(milliseconds=15000)

    @classmethod
    def from_settings(cls, tracking) -> "SessionConfig":
        return cls(
            accuracy_ceiling_m=tracking.RIDE_ACCURACY_CEILING_M,
            glitch_distance_m=tracking.GLITCH_DISTANCE_M,
            idle_threshold=timedelta(milliseconds=tracking.IDLE_THRESHOLD_MS),
        )


class RideSession:
    """
    Сессия поездки одного водителя.

    Таблица переходов:
        StartPickup:  idle → toPickup
        AbortPickup:  toPickup → idle
        StartRide:    idle | toPickup → riding
        EndRide:      riding → idle
    Остальные пары (команда, фаза) ничего не делают.
    """

    def __init__(
        self,
        source: PositionSource,
        feedback: FeedbackSink,
        log_sink: RideLogSink,
        *,
        clock: Clock = utc_now,
        position_provider: PositionProvider | None = None,
        config: SessionConfig | None = None,
    ) -> None:
        self._source = source
        self._feedback = feedback
        self._log_sink = log_sink
        self._clock = clock
        self._position_provider = position_provider
        self._config = config or SessionConfig()

        now = clock()
        self._phase = RidePhase.IDLE
        self._phase_entered_at = now
        self._pickup_started_at: datetime | None = None
        self._ride_started_at: datetime | None = None
        self._ride_ended_at: datetime | None = None

        self._distance_m = 0.0
        self._points: list[tuple[float, float]] = []
        self._last_fix_time: datetime | None = None
        self._last_speed = 0.0

        self._pickup_seconds = 0
        self._ride_seconds = 0

        self._idle_deadline: datetime | None = None
        self._idle_active = False
        self._idle_fired = False
        self._idle_seconds = 0
        self._arm_idle(now)

        self._watch_id: str | None = None
        self._last_stats: RideStats | None = None

        self.stats: EventChannel[RideStats] = EventChannel("ride.stats")
        self.finished: EventChannel[RideFinished] = EventChannel("ride.finished")

    # =========================================================================
    # СОСТОЯНИЕ
    # =========================================================================

    @property
    def phase(self) -> RidePhase:
        return self._phase

    @property
    def phase_entered_at(self) -> datetime:
        return self._phase_entered_at

    @property
    def pickup_started_at(self) -> datetime | None:
        return self._pickup_started_at

    @property
    def ride_started_at(self) -> datetime | None:
        return self._ride_started_at

    @property
    def ride_ended_at(self) -> datetime | None:
        return self._ride_ended_at

    @property
    def distance_m(self) -> float:
        return self._distance_m

    @property
    def points(self) -> tuple[tuple[float, float], ...]:
        return tuple(self._points)

    @property
    def idle_active(self) -> bool:
        return self._idle_active

    @property
    def idle_deadline(self) -> datetime | None:
        return self._idle_deadline

    @property
    def is_watching(self) -> bool:
        return self._watch_id is not None

    def snapshot(self) -> RideStats:
        """Текущая статистика сессии."""
        return RideStats(
            phase=self._phase,
            idle=self._idle_active,
            idle_seconds=self._idle_seconds,
            pickup_seconds=self._pickup_seconds,
            ride_seconds=self._ride_seconds,
            distance_meters=self._distance_m,
            points=tuple(self._points),
        )

    # =========================================================================
    # КОМАНДЫ
    # =========================================================================

    async def handle(self, command: RideCommand | str) -> bool:
        """
        Применяет команду.

        Returns:
            True если переход выполнен, False если команда недопустима в текущей фазе
        """
        command = RideCommand(command)
        transition = self._TRANSITIONS.get((self._phase, command))
        if transition is None:
            await log_debug(f"Команда {command.value} игнорируется в фазе {self._phase.value}")
            return False

        previous = self._phase
        await transition(self)
        await log_info(
            f"Поездка: {previous.value} → {self._phase.value} ({command.value})",
            type_msg=TypeMsg.INFO,
        )
        await self._publish_stats()
        return True

    async def _start_pickup(self) -> None:
        now = self._clock()
        self._phase = RidePhase.TO_PICKUP
        self._phase_entered_at = now
        self._pickup_started_at = now
        self._pickup_seconds = 0
        self._disarm_idle()

        await safe_signal(self._feedback, FeedbackKind.HEAVY)
        await self._write_log(self._phase_row(RidePhase.TO_PICKUP, now))

    async def _abort_pickup(self) -> None:
        now = self._clock()
        self._phase = RidePhase.IDLE
        self._phase_entered_at = now
        self._pickup_started_at = None
        self._pickup_seconds = 0
        self._arm_idle(now)

        await safe_signal(self._feedback, FeedbackKind.ERROR)
        await self._write_log(self._phase_row(RidePhase.IDLE, now))

    async def _start_ride(self) -> None:
        now = self._clock()
        self._phase = RidePhase.RIDING
        self._phase_entered_at = now
        self._ride_started_at = now
        self._ride_ended_at = None
        self._ride_seconds = 0
        self._pickup_started_at = None
        self._pickup_seconds = 0
        self._distance_m = 0.0
        self._points = []
        self._last_fix_time = None
        self._last_speed = 0.0
        self._disarm_idle()

        start = self._position_provider() if self._position_provider else None
        if start is not None and is_finite_coord(*start):
            self._points.append((start[0], start[1]))

        self._watch_id = self._source.start_watch(self.on_fix, self.on_sensor_error)

        await safe_signal(self._feedback, FeedbackKind.MEDIUM)

    async def _end_ride(self) -> None:
        now = self._clock()
        # Источник отписан до любого await: поздние фиксы сюда уже не придут
        self._stop_watch()

        started_at = self._ride_started_at or now
        self._phase = RidePhase.IDLE
        self._phase_entered_at = now
        self._ride_ended_at = now
        self._ride_seconds = whole_seconds(now - started_at)
        self._arm_idle(now)

        finished = RideFinished(
            ride_started_at=started_at,
            ride_ended_at=now,
            distance_meters=self._distance_m,
            points=tuple(self._points),
        )
        final_row = self._phase_row(
            RidePhase.IDLE, now, distance=self._distance_m, duration=self._ride_seconds,
        )

        await safe_signal(self._feedback, FeedbackKind.SUCCESS)
        await self.finished.publish(finished)
        await self._save_summary(RideSummaryRow.from_finished(finished))
        await self._write_log(final_row)

    _TRANSITIONS: dict[tuple[RidePhase, RideCommand], Callable[["RideSession"], Awaitable[None]]] = {
        (RidePhase.IDLE, RideCommand.START_PICKUP): _start_pickup,
        (RidePhase.TO_PICKUP, RideCommand.ABORT_PICKUP): _abort_pickup,
        (RidePhase.IDLE, RideCommand.START_RIDE): _start_ride,
        (RidePhase.TO_PICKUP, RideCommand.START_RIDE): _start_ride,
        (RidePhase.RIDING, RideCommand.END_RIDE): _end_ride,
    }

    # =========================================================================
    # ЧАСЫ
    # =========================================================================

    async def tick(self) -> RideStats:
        """
        Шаг часов (1 Гц): счётчики фаз и детектор простоя.

        Побочный эффект входа в простой (light + строка idle) срабатывает
        один раз за период простоя.
        """
        now = self._clock()
        fire_idle = False

        if self._phase is RidePhase.TO_PICKUP and self._pickup_started_at is not None:
            self._pickup_seconds = whole_seconds(now - self._pickup_started_at)
        elif self._phase is RidePhase.RIDING and self._ride_started_at is not None:
            self._ride_seconds = whole_seconds(now - self._ride_started_at)
        elif self._phase is RidePhase.IDLE:
            if self._idle_deadline is None:
                self._arm_idle(now)
            elif now >= self._idle_deadline:
                self._idle_active = True
                self._idle_seconds = whole_seconds(now - self._idle_deadline)
                if not self._idle_fired:
                    self._idle_fired = True
                    fire_idle = True

        if fire_idle:
            await log_info("Водитель в простое", type_msg=TypeMsg.DEBUG)
            await safe_signal(self._feedback, FeedbackKind.LIGHT)
            await self._write_log(self._phase_row(RidePhase.IDLE, now))

        return await self._publish_stats()

    async def run_clock(self, interval: float = 1.0) -> None:
        """Цикл часов; работает до отмены задачи."""
        while True:
            await self.tick()
            await asyncio.sleep(interval)

    def _arm_idle(self, now: datetime) -> None:
        self._idle_deadline = now + self._config.idle_threshold
        self._idle_active = False
        self._idle_fired = False
        self._idle_seconds = 0

    def _disarm_idle(self) -> None:
        self._idle_deadline = None
        self._idle_active = False
        self._idle_fired = False
        self._idle_seconds = 0

    # =========================================================================
    # ФИКСЫ
    # =========================================================================

    def _check_fix(self, fix: PositionFix) -> None:
        ceiling = self._config.accuracy_ceiling_m
        if fix.accuracy is not None and fix.accuracy > ceiling:
            raise StaleFixError(fix.accuracy, ceiling)

    async def on_fix(self, fix: PositionFix) -> None:
        """Обработчик фикса от источника геолокации."""
        if self._phase is not RidePhase.RIDING:
            return

        try:
            self._check_fix(fix)
        except StaleFixError as e:
            await log_debug(f"Фикс отброшен: {e}")
            return

        if not is_finite_coord(fix.latitude, fix.longitude):
            await log_debug("Фикс отброшен: некорректные координаты")
            return

        if self._last_fix_time is not None and fix.timestamp < self._last_fix_time:
            await log_debug(f"Фикс отброшен: устаревшее время {fix.timestamp.isoformat()}")
            return
        self._last_fix_time = fix.timestamp

        point = fix.point
        if self._points:
            leg = haversine_m(*self._points[-1], *point)
            if leg < self._config.glitch_distance_m:
                self._distance_m += leg
            else:
                await log_debug(f"Скачок {leg:.0f} м не учтён в дистанции")
        self._points.append(point)
        self._last_speed = fix.speed or 0.0

        now = self._clock()
        started_at = self._ride_started_at or now
        await self._write_log(RideLogRow(
            phase=RidePhase.RIDING,
            lat=point[0],
            lng=point[1],
            speed=self._last_speed,
            distance=self._distance_m,
            duration=whole_seconds(now - started_at),
            idle_time=0,
            created_at=now,
        ))
        await self._publish_stats()

    async def on_sensor_error(self, error: SensorError) -> None:
        await log_warning(f"Ошибка источника геолокации: {error}")

    def _stop_watch(self) -> None:
        if self._watch_id is not None:
            self._source.stop_watch(self._watch_id)
            self._watch_id = None

    async def close(self) -> None:
        """Отписывается от источника; состояние сессии не меняется."""
        self._stop_watch()

    # =========================================================================
    # ВЫХОДЫ
    # =========================================================================

    def _current_position(self) -> tuple[float, float] | None:
        if self._position_provider is not None:
            position = self._position_provider()
            if position is not None:
                return position
        return self._points[-1] if self._points else None

    def _phase_row(
        self,
        phase: RidePhase,
        now: datetime,
        *,
        distance: float = 0.0,
        duration: int = 0,
    ) -> RideLogRow:
        position = self._current_position()
        return RideLogRow(
            phase=phase,
            lat=position[0] if position else None,
            lng=position[1] if position else None,
            speed=0.0,
            distance=distance,
            duration=duration,
            idle_time=self._idle_seconds,
            created_at=now,
        )

    async def _publish_stats(self) -> RideStats:
        stats = self.snapshot()
        if stats != self._last_stats:
            self._last_stats = stats
            await self.stats.publish(stats)
        return stats

    async def _write_log(self, row: RideLogRow) -> None:
        try:
            await self._log_sink.log_snapshot(row)
        except StorageError as e:
            await log_error(f"Не удалось записать журнал поездки ({row.phase.value}): {e}")

    async def _save_summary(self, row: RideSummaryRow) -> None:
        try:
            await self._log_sink.save_summary(row)
        except StorageError as e:
            await log_error(f"Не удалось сохранить итог поездки: {e}")
