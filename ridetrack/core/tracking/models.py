"""
Модели трекинга на устройстве.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class PositionFix:
    """Один сырой фикс от источника геолокации."""
    latitude: float
    longitude: float
    timestamp: datetime
    accuracy: float | None = None  # метры
    speed: float | None = None  # м/с

    @property
    def point(self) -> tuple[float, float]:
        return self.latitude, self.longitude
