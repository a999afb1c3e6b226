"""
Иерархия исключений ridetrack.

ValidationError и RateLimitError - ошибки клиента, StorageError - ошибка
сервера. SensorError и StaleFixError не прерывают сессию поездки.
"""

from __future__ import annotations


class RideTrackError(Exception):
    """Базовое исключение проекта."""
    pass


class ValidationError(RideTrackError):
    """Некорректный или вне диапазона ping."""
    pass


class RateLimitError(RideTrackError):
    """Слишком частые обновления от одного водителя."""

    def __init__(self, message: str, retry_after: float) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class StorageError(RideTrackError):
    """Хранилище недоступно или вернуло ошибку."""
    pass


class SensorError(RideTrackError):
    """Источник геолокации сообщил об ошибке или таймауте."""
    pass


class StaleFixError(RideTrackError):
    """Точность фикса хуже допустимого порога."""

    def __init__(self, accuracy: float, ceiling: float) -> None:
        super().__init__(f"accuracy {accuracy} m exceeds ceiling {ceiling} m")
        self.accuracy = accuracy
        self.ceiling = ceiling
