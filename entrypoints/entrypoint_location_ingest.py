#!/usr/bin/env python3
"""
Entrypoint для Location Ingest.

Запуск:
    python entrypoints/entrypoint_location_ingest.py

Порт по умолчанию: 8090
"""

import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from ridetrack.config import settings


def main() -> None:
    """Запустить Location Ingest."""
    uvicorn.run(
        "ridetrack.services.location_ingest.app:app",
        host=settings.deployment.LOCATION_INGEST_HOST,
        port=settings.deployment.LOCATION_INGEST_PORT,
        reload=settings.system.DEBUG,
        log_level=settings.system.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
