"""
Общие модели для всех сервисов.
"""

from __future__ import annotations

from pydantic import BaseModel


class HealthStatus(BaseModel):
    """Статус здоровья сервиса."""
    status: str
    service: str
    version: str
    database: bool | None = None


class ErrorResponse(BaseModel):
    """Тело ответа об ошибке."""
    ok: bool = False
    error: str
