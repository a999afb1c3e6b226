"""
Внутрипроцессные каналы событий.

Каждый выход компонента (статистика поездки, завершение поездки, путь)
объявлен явным каналом; потребители подписываются сами.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Generic, TypeVar

from ridetrack.common.constants import TypeMsg
from ridetrack.common.logger import log_error, log_info

T = TypeVar("T")

EventHandler = Callable[[T], Awaitable[None]]


class EventChannel(Generic[T]):
    """
    Канал с подписчиками.

    Ошибка одного обработчика логируется и не мешает остальным.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._handlers: list[EventHandler] = []

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)

    def subscribe(self, handler: EventHandler) -> Callable[[], None]:
        """
        Подписывает обработчик.

        Returns:
            Функция отписки
        """
        self._handlers.append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers:
                self._handlers.remove(handler)

        return unsubscribe

    async def publish(self, event: T) -> None:
        """Доставляет событие всем текущим подписчикам."""
        for handler in list(self._handlers):
            try:
                await handler(event)
            except Exception as e:
                name = getattr(handler, "__name__", repr(handler))
                await log_error(f"Ошибка в обработчике {name} канала {self.name}: {e}")

        await log_info(
            f"Событие {self.name} доставлено {len(self._handlers)} подписчикам",
            type_msg=TypeMsg.DEBUG,
        )
