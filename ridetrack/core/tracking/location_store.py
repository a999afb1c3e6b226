"""
История пути водителя на устройстве.

Точки хуже 20 м отбрасываются, почти совпадающие с последней не
добавляются; хранятся последние PATH_MAX_POINTS точек. Путь сохраняется
в JSON-файл и переживает перезапуск.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

from ridetrack.common.constants import TypeMsg
from ridetrack.common.logger import log_error, log_info
from ridetrack.infra.event_bus import EventChannel
from ridetrack.services.utils.geo_utils import is_finite_coord

Point = tuple[float, float]


class LocationStore:
    """Хранилище пути с подписчиками."""

    def __init__(
        self,
        path_file: Path | None = None,
        *,
        accuracy_ceiling_m: float = 20.0,
        min_step_deg: float = 0.00001,
        max_points: int = 5000,
    ) -> None:
        self._path_file = path_file
        self._accuracy_ceiling_m = accuracy_ceiling_m
        self._min_step_deg = min_step_deg
        self._max_points = max_points
        self._path: list[Point] = []

        self.changes: EventChannel[tuple[Point, ...]] = EventChannel("location.path")

    def state(self) -> tuple[Point, ...]:
        """Копия текущего пути."""
        return tuple(self._path)

    @property
    def last_point(self) -> Point | None:
        return self._path[-1] if self._path else None

    def _accepts(self, point: Point, accuracy: float | None) -> bool:
        if not is_finite_coord(point[0], point[1]):
            return False
        if accuracy is not None and accuracy > self._accuracy_ceiling_m:
            return False
        if self._path:
            last = self._path[-1]
            moved = abs(last[0] - point[0]) > self._min_step_deg or abs(last[1] - point[1]) > self._min_step_deg
            if not moved:
                return False
        return True

    async def record(self, point: Point, accuracy: float | None = None) -> bool:
        """
        Добавляет точку в путь.

        Returns:
            True если точка добавлена
        """
        if not self._accepts(point, accuracy):
            return False

        self._path.append((float(point[0]), float(point[1])))
        if len(self._path) > self._max_points:
            del self._path[: len(self._path) - self._max_points]

        await self._persist()
        await self.changes.publish(self.state())
        return True

    async def clear(self) -> None:
        self._path = []
        await self._persist()
        await self.changes.publish(self.state())

    async def reload(self) -> tuple[Point, ...]:
        """Перечитывает путь из файла."""
        if self._path_file is None or not self._path_file.exists():
            self._path = []
            return self.state()

        try:
            raw = await asyncio.to_thread(self._path_file.read_text, encoding="utf-8")
            data = json.loads(raw)
        except (OSError, ValueError) as e:
            await log_error(f"Не удалось прочитать путь из {self._path_file}: {e}")
            self._path = []
            return self.state()

        self._path = [
            (float(item[0]), float(item[1]))
            for item in data
            if isinstance(item, (list, tuple)) and len(item) == 2 and is_finite_coord(item[0], item[1])
        ][-self._max_points:]

        await log_info(f"Путь загружен: {len(self._path)} точек", type_msg=TypeMsg.DEBUG)
        await self.changes.publish(self.state())
        return self.state()

    async def _persist(self) -> None:
        if self._path_file is None:
            return
        payload = json.dumps(self._path)
        try:
            await asyncio.to_thread(self._write, payload)
        except OSError as e:
            await log_error(f"Не удалось сохранить путь в {self._path_file}: {e}")

    def _write(self, payload: str) -> None:
        self._path_file.parent.mkdir(parents=True, exist_ok=True)
        self._path_file.write_text(payload, encoding="utf-8")
