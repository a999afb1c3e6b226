#!/usr/bin/env python3
"""
Entrypoint для Heatmap.

Запуск:
    python entrypoints/entrypoint_heatmap.py

Порт по умолчанию: 8091
"""

import sys
from pathlib import Path

# Добавляем корневую директорию проекта в путь
project_root = Path(__file__).parent.parent.resolve()
sys.path.insert(0, str(project_root))

import uvicorn

from ridetrack.config import settings


def main() -> None:
    """Запустить Heatmap."""
    uvicorn.run(
        "ridetrack.services.heatmap.app:app",
        host=settings.deployment.HEATMAP_HOST,
        port=settings.deployment.HEATMAP_PORT,
        reload=settings.system.DEBUG,
        log_level=settings.system.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    main()
