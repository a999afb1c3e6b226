"""
FastAPI приложение приёма ping-ов позиции водителей.

Endpoints:
- POST /api/v1/location - сохранить ping (алиас POST /update_driver_location)
- GET /health - проверка здоровья
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from ridetrack.common.constants import TypeMsg
from ridetrack.common.logger import log_info, setup_logging
from ridetrack.config import settings
from ridetrack.infra.database import DatabaseManager, close_db, init_db
from ridetrack.services.location_ingest.repository import PingRepository
from ridetrack.services.location_ingest.routes import router
from ridetrack.services.location_ingest.service import LocationIngestService
from ridetrack.services.utils.error_handlers import register_exception_handlers
from ridetrack.shared.models.common import HealthStatus

SERVICE_NAME = "location_ingest"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Жизненный цикл приложения."""
    setup_logging()
    await log_info("Запуск Location Ingest...", type_msg=TypeMsg.INFO)

    db = DatabaseManager()
    await init_db(db)

    app.state.db = db
    app.state.ingest_service = LocationIngestService.from_settings(PingRepository(db), settings.ingest)

    yield

    await log_info("Остановка Location Ingest...", type_msg=TypeMsg.INFO)
    await close_db(db)


app = FastAPI(
    title="Location Ingest",
    description="Приём ping-ов позиции водителей с дедупликацией по тайлам.",
    version=settings.system.VERSION,
    lifespan=lifespan,
)

register_exception_handlers(app)
app.include_router(router)


@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check(request: Request) -> HealthStatus:
    """Проверка здоровья сервиса."""
    db = getattr(request.app.state, "db", None)
    return HealthStatus(
        status="healthy",
        service=SERVICE_NAME,
        version=settings.system.VERSION,
        database=await db.health_check() if db is not None else None,
    )
