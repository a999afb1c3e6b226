"""
Модели приёма ping-ов водителей.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, StrictStr


class PingRequest(BaseModel):
    """
    Тело запроса на обновление позиции водителя.

    Координаты строгие: строки и bool не приводятся к числу.
    """
    driver_id: StrictStr = Field(..., min_length=1)
    lat: float = Field(..., strict=True, ge=-90, le=90, allow_inf_nan=False)
    lng: float = Field(..., strict=True, ge=-180, le=180, allow_inf_nan=False)
    accuracy: float | None = Field(default=None, strict=True, ge=0, allow_inf_nan=False)  # метры


class PingResponse(BaseModel):
    """Успешный ответ на ping."""
    ok: bool = True
    dedup: bool
    area_key: str


class PingResult(BaseModel):
    """Результат submit_ping."""
    accepted: bool
    deduped: bool
    tile_key: str


class DriverPing(BaseModel):
    """Сохранённая строка driver_pings."""
    driver_id: str
    lat: float
    lng: float
    accuracy: float | None = None
    tile_key: str
    inserted_at: datetime
