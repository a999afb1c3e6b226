"""
Контекст трекинга: создаётся при старте трекинга и разбирается при остановке.

Владеет адаптерами, оценщиком, сессией поездки, хранилищем пути,
фоновым трекером, realtime-каналом и HTTP-клиентом приёма ping-ов.
Глобальных экземпляров этих объектов нет.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from pathlib import Path

from redis.exceptions import RedisError

from ridetrack.common.constants import TypeMsg
from ridetrack.common.logger import log_info, log_warning
from ridetrack.config.loader import Settings, get_project_root
from ridetrack.core.tracking.adapters import FeedbackSink, PositionSource, select_adapters
from ridetrack.core.tracking.background import BackgroundTracker, load_or_create_driver_id
from ridetrack.core.tracking.estimator import PositionEstimator, run_extrapolation_loop
from ridetrack.core.tracking.ingest_client import IngestClient
from ridetrack.core.tracking.location_store import LocationStore
from ridetrack.core.tracking.repository import RideLogRepository, RideLogSink
from ridetrack.core.tracking.session import Clock, RideSession, SessionConfig, utc_now
from ridetrack.infra.database import DatabaseManager, close_db, init_db
from ridetrack.infra.redis_client import RedisClient
from ridetrack.services.realtime_heatmap.channel import RealtimeBroadcastChannel


class TrackingContext:
    """
    Явный контекст трекинга.

    Example:
        async with TrackingContext(settings) as ctx:
            await ctx.session.handle("StartRide")
    """

    def __init__(
        self,
        settings: Settings,
        *,
        source: PositionSource | None = None,
        feedback: FeedbackSink | None = None,
        log_sink: RideLogSink | None = None,
        redis: RedisClient | None = None,
        ingest: IngestClient | None = None,
        clock: Clock = utc_now,
        replay_file: Path | None = None,
        run_loops: bool = True,
    ) -> None:
        self._settings = settings
        self._source = source
        self._feedback = feedback
        self._log_sink = log_sink
        self._redis = redis
        self._ingest = ingest
        self._clock = clock
        self._replay_file = replay_file
        self._run_loops = run_loops

        self._owned_db: DatabaseManager | None = None
        self._owned_redis: RedisClient | None = None
        self._tasks: list[asyncio.Task] = []
        self._started = False

        self.estimator: PositionEstimator | None = None
        self.store: LocationStore | None = None
        self.session: RideSession | None = None
        self.background: BackgroundTracker | None = None
        self.realtime: RealtimeBroadcastChannel | None = None
        self.driver_id: str | None = None

    @property
    def source(self) -> PositionSource | None:
        return self._source

    @property
    def is_started(self) -> bool:
        return self._started

    def _resolve(self, relative: str) -> Path:
        path = Path(relative)
        return path if path.is_absolute() else get_project_root() / path

    async def start(self) -> "TrackingContext":
        if self._started:
            return self

        tracking = self._settings.tracking

        if self._source is None or self._feedback is None:
            replay_file = self._replay_file
            if replay_file is None and tracking.REPLAY_FILE:
                replay_file = self._resolve(tracking.REPLAY_FILE)
            source, feedback = select_adapters(
                tracking.POSITION_SOURCE, tracking.FEEDBACK, replay_file=replay_file,
            )
            self._source = self._source or source
            self._feedback = self._feedback or feedback

        self.driver_id = load_or_create_driver_id(self._resolve(tracking.DRIVER_ID_FILE))

        if self._log_sink is None:
            self._owned_db = DatabaseManager()
            await init_db(self._owned_db)
            self._log_sink = RideLogRepository(self._owned_db, driver_id=self.driver_id)

        self.estimator = PositionEstimator(tracking.PROCESS_NOISE, tracking.MEASUREMENT_NOISE)
        self.store = LocationStore(
            self._resolve(tracking.PATH_STORE_FILE),
            accuracy_ceiling_m=tracking.PATH_ACCURACY_CEILING_M,
            min_step_deg=tracking.PATH_MIN_STEP_DEG,
            max_points=tracking.PATH_MAX_POINTS,
        )
        await self.store.reload()

        await self._start_realtime()

        if self._ingest is None:
            self._ingest = IngestClient(tracking.INGEST_URL, timeout=tracking.INGEST_TIMEOUT_SECONDS)

        self.session = RideSession(
            self._source,
            self._feedback,
            self._log_sink,
            clock=self._clock,
            position_provider=self.current_position,
            config=SessionConfig.from_settings(tracking),
        )

        self.background = BackgroundTracker(
            self._source,
            self.driver_id,
            self.store,
            self.estimator,
            ingest=self._ingest,
            realtime=self.realtime,
            interval_seconds=tracking.BROADCAST_INTERVAL_SECONDS,
        )
        await self.background.start()

        if self._run_loops:
            self._tasks.append(asyncio.create_task(self.session.run_clock(tracking.CLOCK_TICK_SECONDS)))

        self._started = True
        await log_info(f"Трекинг запущен: driver_id={self.driver_id}", type_msg=TypeMsg.INFO)
        return self

    async def _start_realtime(self) -> None:
        redis = self._redis
        if redis is None:
            redis = RedisClient(namespace=self._settings.redis.REDIS_NAMESPACE)
            try:
                await redis.connect(self._settings.redis.url, self._settings.redis.REDIS_MAX_CONNECTIONS)
            except (RedisError, OSError) as e:
                await redis.disconnect()
                await log_warning(f"Realtime-канал отключён: Redis недоступен ({e})")
                return
            self._owned_redis = redis

        self.realtime = RealtimeBroadcastChannel.from_settings(
            redis, self._settings.realtime, clock=self._clock,
        )
        try:
            await self.realtime.start()
        except (RedisError, OSError) as e:
            # Публикация остаётся доступной, карта чужих точек пустая
            await log_warning(f"Realtime-подписка не запущена: {e}")

    def current_position(self) -> tuple[float, float] | None:
        """Последняя известная позиция: оценка, иначе последняя точка пути."""
        if self.estimator is not None:
            position = self.estimator.predict(0)
            if position is not None:
                return position
        if self.store is not None:
            return self.store.last_point
        return None

    def start_display_loop(self, sink) -> asyncio.Task:
        """Запускает цикл экстраполяции позиции для отображения."""
        tracking = self._settings.tracking
        task = asyncio.create_task(run_extrapolation_loop(
            self.estimator,
            sink,
            self._clock,
            hz=tracking.ANIMATION_HZ,
            lag=timedelta(milliseconds=tracking.REPLAY_LAG_MS),
        ))
        self._tasks.append(task)
        return task

    async def stop(self) -> None:
        if not self._started:
            return

        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

        if self.session is not None:
            await self.session.close()
        if self.background is not None:
            await self.background.stop()
        if self.realtime is not None:
            await self.realtime.stop()
        if self._ingest is not None:
            await self._ingest.close()
        if self._owned_redis is not None:
            await self._owned_redis.disconnect()
            self._owned_redis = None
        if self._owned_db is not None:
            await close_db(self._owned_db)
            self._owned_db = None

        self._started = False
        await log_info("Трекинг остановлен", type_msg=TypeMsg.INFO)

    async def __aenter__(self) -> "TrackingContext":
        return await self.start()

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()
