#!/usr/bin/env python3
"""
Главная точка входа ridetrack.
Запускает сервис приёма ping-ов, сервис тепловой карты или трекинг
устройства в зависимости от режима.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from ridetrack.common.constants import TypeMsg
from ridetrack.common.logger import log_error, log_info, setup_logging
from ridetrack.config import settings

VALID_MODES = ("location_ingest", "heatmap", "services", "tracking")

# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None
_running_tasks: list[asyncio.Task] = []


def setup_signal_handlers() -> None:
    """Настраивает обработчики сигналов для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        if _shutdown_event and not _shutdown_event.is_set():
            print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
            _shutdown_event.set()
            for task in _running_tasks:
                if not task.done():
                    task.cancel()

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


async def _serve(app_path: str, host: str, port: int, name: str) -> None:
    import uvicorn

    await log_info(f"Запуск {name} на порту {port}...", type_msg=TypeMsg.INFO)

    config = uvicorn.Config(
        app_path,
        host=host,
        port=port,
        reload=False,
        log_level="debug" if settings.system.DEBUG else "info",
    )
    server = uvicorn.Server(config)
    try:
        await server.serve()
    except asyncio.CancelledError:
        await log_info(f"{name}: graceful shutdown", type_msg=TypeMsg.DEBUG)
        await server.shutdown()


async def run_location_ingest() -> None:
    """Запускает Location Ingest (приём ping-ов)."""
    await _serve(
        "ridetrack.services.location_ingest.app:app",
        settings.deployment.LOCATION_INGEST_HOST,
        settings.deployment.LOCATION_INGEST_PORT,
        "Location Ingest",
    )


async def run_heatmap() -> None:
    """Запускает Heatmap (агрегация тайлов)."""
    await _serve(
        "ridetrack.services.heatmap.app:app",
        settings.deployment.HEATMAP_HOST,
        settings.deployment.HEATMAP_PORT,
        "Heatmap",
    )


async def run_tracking() -> None:
    """
    Запускает трекинг устройства до сигнала остановки.
    С источником replay проигрывает записанный трек.
    """
    from ridetrack.core.tracking.adapters import ReplayPositionSource
    from ridetrack.core.tracking.context import TrackingContext

    async with TrackingContext(settings) as ctx:
        if isinstance(ctx.source, ReplayPositionSource):
            count = await ctx.source.replay()
            await log_info(f"Трек проигран: {count} фиксов", type_msg=TypeMsg.INFO)

        if _shutdown_event is not None:
            await _shutdown_event.wait()
        else:
            await asyncio.Event().wait()


def resolve_mode(mode: str | None) -> str:
    if mode:
        return mode
    if len(sys.argv) > 1:
        return sys.argv[1]
    if settings.system.COMPONENT_MODE:
        return settings.system.COMPONENT_MODE
    return "services"


async def main(mode: str | None = None) -> None:
    """
    Главная функция запуска.

    Args:
        mode: location_ingest, heatmap, services (оба сервиса) или tracking.
              Если None, берётся из аргументов, затем из COMPONENT_MODE.
    """
    global _running_tasks

    setup_logging()
    setup_signal_handlers()

    mode = resolve_mode(mode)
    if mode not in VALID_MODES:
        await log_error(f"Неизвестный режим: {mode}. Допустимые: {', '.join(VALID_MODES)}")
        return

    await log_info(
        f"ridetrack v{settings.system.VERSION} - запуск в режиме '{mode}'",
        type_msg=TypeMsg.INFO,
    )

    runners = {
        "location_ingest": [run_location_ingest],
        "heatmap": [run_heatmap],
        "services": [run_location_ingest, run_heatmap],
        "tracking": [run_tracking],
    }[mode]

    _running_tasks = [asyncio.create_task(runner()) for runner in runners]
    try:
        await asyncio.gather(*_running_tasks)
    except asyncio.CancelledError:
        await log_info("Задача отменена, выполняется graceful shutdown", type_msg=TypeMsg.INFO)
    finally:
        for task in _running_tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*_running_tasks, return_exceptions=True)
        _running_tasks.clear()
        await log_info("Завершение работы", type_msg=TypeMsg.INFO)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nПолучен сигнал остановки, завершение работы...")
