"""
Интерфейсы возможностей устройства и их адаптеры.

Ядро зависит только от PositionSource (start_watch / stop_watch) и
FeedbackSink (signal). Конкретные адаптеры выбираются один раз при старте
через select_adapters().
"""

from __future__ import annotations

import asyncio
import csv
import itertools
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Awaitable, Callable, Iterable

from ridetrack.common.constants import FeedbackKind, TypeMsg
from ridetrack.common.exceptions import SensorError
from ridetrack.common.logger import log_error, log_info
from ridetrack.core.tracking.models import PositionFix

FixCallback = Callable[[PositionFix], Awaitable[None]]
ErrorCallback = Callable[[SensorError], Awaitable[None]]


# =============================================================================
# ИНТЕРФЕЙСЫ
# =============================================================================

class PositionSource(ABC):
    """Источник фиксов геолокации."""

    @abstractmethod
    def start_watch(self, on_fix: FixCallback, on_error: ErrorCallback | None = None) -> str:
        """Подписаться на фиксы. Возвращает идентификатор подписки."""

    @abstractmethod
    def stop_watch(self, watch_id: str) -> None:
        """
        Отписаться. После возврата callback-и этой подписки больше не вызываются.
        """


class FeedbackSink(ABC):
    """Тактильная обратная связь."""

    @abstractmethod
    async def signal(self, kind: FeedbackKind) -> None:
        """Подать сигнал заданного вида."""


# =============================================================================
# ИСТОЧНИКИ
# =============================================================================

@dataclass
class _Watcher:
    on_fix: FixCallback
    on_error: ErrorCallback | None


class QueuePositionSource(PositionSource):
    """
    Источник, в который фиксы проталкивает внешний производитель
    (мост к GPS устройства, WebSocket и т.п.).
    """

    def __init__(self) -> None:
        self._watchers: dict[str, _Watcher] = {}
        self._ids = itertools.count(1)

    @property
    def active_watches(self) -> int:
        return len(self._watchers)

    def start_watch(self, on_fix: FixCallback, on_error: ErrorCallback | None = None) -> str:
        watch_id = f"watch-{next(self._ids)}"
        self._watchers[watch_id] = _Watcher(on_fix, on_error)
        return watch_id

    def stop_watch(self, watch_id: str) -> None:
        self._watchers.pop(watch_id, None)

    async def push(self, fix: PositionFix) -> None:
        """Доставить фикс всем активным подписчикам."""
        for watch_id, watcher in list(self._watchers.items()):
            # Подписка могла быть снята предыдущим callback-ом
            if watch_id in self._watchers:
                await watcher.on_fix(fix)

    async def push_error(self, error: SensorError) -> None:
        """Сообщить подписчикам об ошибке датчика."""
        for watch_id, watcher in list(self._watchers.items()):
            if watch_id in self._watchers and watcher.on_error is not None:
                await watcher.on_error(error)


class ReplayPositionSource(QueuePositionSource):
    """
    Воспроизводит записанный трек (CSV: timestamp,lat,lng,accuracy,speed)
    с исходными интервалами, ускоренными в speedup раз.
    """

    def __init__(self, fixes: Iterable[PositionFix], speedup: float = 1.0) -> None:
        super().__init__()
        self._fixes = list(fixes)
        self._speedup = speedup

    @classmethod
    def from_csv(cls, path: Path, speedup: float = 1.0) -> "ReplayPositionSource":
        fixes: list[PositionFix] = []
        with open(path, "r", encoding="utf-8", newline="") as f:
            for row in csv.DictReader(f):
                fixes.append(PositionFix(
                    latitude=float(row["lat"]),
                    longitude=float(row["lng"]),
                    timestamp=datetime.fromisoformat(row["timestamp"]),
                    accuracy=float(row["accuracy"]) if row.get("accuracy") else None,
                    speed=float(row["speed"]) if row.get("speed") else None,
                ))
        return cls(fixes, speedup=speedup)

    async def replay(self) -> int:
        """Проиграть трек. Возвращает количество отданных фиксов."""
        previous: PositionFix | None = None
        for fix in self._fixes:
            if previous is not None:
                gap = (fix.timestamp - previous.timestamp).total_seconds() / self._speedup
                if gap > 0:
                    await asyncio.sleep(gap)
            await self.push(fix)
            previous = fix
        return len(self._fixes)


# =============================================================================
# ОБРАТНАЯ СВЯЗЬ
# =============================================================================

class LogFeedback(FeedbackSink):
    """Пишет сигналы в лог (серверные и headless-сборки)."""

    async def signal(self, kind: FeedbackKind) -> None:
        await log_info(f"Feedback: {kind.value}", type_msg=TypeMsg.DEBUG)


class NullFeedback(FeedbackSink):
    async def signal(self, kind: FeedbackKind) -> None:
        return None


# =============================================================================
# ВЫБОР АДАПТЕРОВ
# =============================================================================

def select_adapters(
    source_name: str,
    feedback_name: str,
    replay_file: Path | None = None,
) -> tuple[PositionSource, FeedbackSink]:
    """
    Выбирает адаптеры один раз при старте трекинга.

    Args:
        source_name: "queue" или "replay"
        feedback_name: "log" или "none"
        replay_file: CSV трека для источника "replay"
    """
    match source_name:
        case "queue":
            source: PositionSource = QueuePositionSource()
        case "replay":
            if replay_file is None:
                raise ValueError("Для источника replay нужен replay_file")
            source = ReplayPositionSource.from_csv(replay_file)
        case _:
            raise ValueError(f"Неизвестный источник геолокации: {source_name}")

    match feedback_name:
        case "log":
            feedback: FeedbackSink = LogFeedback()
        case "none":
            feedback = NullFeedback()
        case _:
            raise ValueError(f"Неизвестный адаптер обратной связи: {feedback_name}")

    return source, feedback


async def safe_signal(feedback: FeedbackSink, kind: FeedbackKind) -> None:
    """Сигнал, ошибка которого не влияет на вызывающий код."""
    try:
        await feedback.signal(kind)
    except Exception as e:
        await log_error(f"Ошибка обратной связи ({kind.value}): {e}")
