"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class RidePhase(str, Enum):
    """Фазы поездки."""
    IDLE = "idle"
    TO_PICKUP = "toPickup"
    RIDING = "riding"


class RideCommand(str, Enum):
    """Команды, управляющие фазами поездки (без payload)."""
    START_PICKUP = "StartPickup"
    ABORT_PICKUP = "AbortPickup"
    START_RIDE = "StartRide"
    END_RIDE = "EndRide"


class FeedbackKind(str, Enum):
    """Виды тактильной обратной связи."""
    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"
    SUCCESS = "success"
    ERROR = "error"


# Радиус Земли в метрах (haversine)
EARTH_RADIUS_M = 6371000.0
