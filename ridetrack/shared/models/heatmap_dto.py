"""
Модели тепловой карты.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class HeatTile(BaseModel):
    """Агрегат одного тайла: центроид и число различных водителей."""
    tile_key: str
    lat: float
    lng: float
    drivers: int = Field(..., ge=1)


class HeatmapSnapshot(BaseModel):
    """Снимок тепловой карты за окно; вычисляется на каждый запрос."""
    tiles: list[HeatTile] = Field(default_factory=list)
    window_seconds: int


class HeatmapResponse(HeatmapSnapshot):
    """Ответ HTTP API тепловой карты."""
    ok: bool = True
