"""
Модуль структурированного логирования.
JSON или цветной текстовый формат, ротация файлов по размеру, отдельный error.log.
"""

from __future__ import annotations

import inspect
import json
import logging
import os
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from ridetrack.common.constants import TypeMsg


DEFAULT_LOGGER = "ridetrack"

# Общие файловые хендлеры (один на процесс)
_FILE_HANDLER: logging.Handler | None = None
_ERROR_HANDLER: logging.Handler | None = None

_LOGGING_INITIALIZED: bool = False

_loggers: dict[str, logging.Logger] = {}


# =============================================================================
# ФОРМАТТЕРЫ
# =============================================================================

class JsonFormatter(logging.Formatter):
    """Форматтер для JSON логов."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if hasattr(record, "extra_data"):
            log_data["extra"] = record.extra_data

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ColoredFormatter(logging.Formatter):
    """Цветной форматтер для консоли."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    GRAY = "\033[90m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, self.GRAY)
        timestamp = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        caller_info = ""
        extra_data = getattr(record, "extra_data", None) or {}
        if extra_data.get("caller_function"):
            caller_info = (
                f" {self.GRAY}[{extra_data.get('caller_module')}."
                f"{extra_data.get('caller_function')}() "
                f"{extra_data.get('caller_file')}:{extra_data.get('caller_line')}]{self.RESET}"
            )

        message = f"{timestamp} {color}[{record.levelname}]{self.RESET}{caller_info} {record.getMessage()}"

        if record.exc_info:
            message += "\n" + self.formatException(record.exc_info)

        return message


class ArchivingFileHandler(RotatingFileHandler):
    """
    Пишет в фиксированный файл (например, ridetrack.log).
    При превышении размера текущий файл переименовывается с датой и временем.
    """

    def __init__(self, log_dir: str, max_bytes: int, logger_name: str = "app", encoding: str = "utf-8"):
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.logger_name = logger_name

        super().__init__(
            filename=str(self.log_dir / f"{logger_name}.log"),
            maxBytes=max_bytes,
            backupCount=0,
            encoding=encoding,
        )

    def doRollover(self) -> None:
        if self.stream:
            self.stream.close()
            self.stream = None

        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        archive_filename = self.log_dir / f"{self.logger_name}_{timestamp}.log"

        if os.path.exists(self.baseFilename):
            try:
                os.rename(self.baseFilename, archive_filename)
            except OSError:
                # Файл занят - продолжаем писать в текущий
                pass

        self.stream = self._open()


# =============================================================================
# ЛОГГЕР
# =============================================================================

def _logging_options() -> dict[str, Any]:
    """Читает настройки логирования; при ошибке конфигурации - значения по умолчанию."""
    options: dict[str, Any] = {
        "level": "DEBUG",
        "format": "colored",
        "to_file": False,
        "file_path": "logs/app.log",
        "max_bytes": 10485760,
    }
    try:
        from ridetrack.config import settings

        options["level"] = settings.logging.LOG_LEVEL
        options["format"] = settings.logging.LOG_FORMAT
        options["to_file"] = settings.logging.LOG_TO_FILE
        options["file_path"] = settings.logging.LOG_FILE_PATH
        options["max_bytes"] = settings.logging.LOG_MAX_BYTES
    except Exception:
        return options

    # Защита от MagicMock в тестах
    for key in ("level", "format", "file_path"):
        if not isinstance(options[key], str):
            options[key] = {"level": "DEBUG", "format": "colored", "file_path": "logs/app.log"}[key]
    if not isinstance(options["to_file"], bool):
        options["to_file"] = False
    if not isinstance(options["max_bytes"], int):
        options["max_bytes"] = 10485760
    return options


def _make_formatter(log_format: str) -> logging.Formatter:
    return JsonFormatter() if log_format == "json" else ColoredFormatter()


def setup_logging() -> None:
    """
    Инициализирует систему логирования.
    Идемпотентна - повторные вызовы ничего не делают.
    """
    global _LOGGING_INITIALIZED

    if _LOGGING_INITIALIZED:
        return
    _LOGGING_INITIALIZED = True

    get_logger(DEFAULT_LOGGER)

    logging.getLogger("asyncpg").setLevel(logging.WARNING)
    logging.getLogger("redis").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str = DEFAULT_LOGGER) -> logging.Logger:
    """
    Возвращает настроенный логгер (кэшируется по имени).

    Args:
        name: Имя логгера
    """
    if name in _loggers:
        return _loggers[name]

    options = _logging_options()

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, options["level"].upper(), logging.DEBUG))

    if logger.handlers:
        _loggers[name] = logger
        return logger

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(_make_formatter(options["format"]))
    logger.addHandler(console_handler)

    if options["to_file"]:
        global _FILE_HANDLER, _ERROR_HANDLER
        log_path = Path(options["file_path"])
        log_name = log_path.stem

        # SERVICE_NAME разделяет логи сервисов, запущенных из одного каталога
        service_name = os.getenv("SERVICE_NAME")
        if service_name:
            log_name = f"{log_name}_{service_name}"

        if _FILE_HANDLER is None:
            _FILE_HANDLER = ArchivingFileHandler(
                log_dir=str(log_path.parent),
                max_bytes=options["max_bytes"],
                logger_name=log_name,
            )
            _FILE_HANDLER.setFormatter(_make_formatter(options["format"]))

        if _ERROR_HANDLER is None:
            _ERROR_HANDLER = ArchivingFileHandler(
                log_dir=str(log_path.parent),
                max_bytes=options["max_bytes"],
                logger_name="error",
            )
            _ERROR_HANDLER.setLevel(logging.ERROR)
            _ERROR_HANDLER.setFormatter(_make_formatter(options["format"]))

        logger.addHandler(_FILE_HANDLER)
        logger.addHandler(_ERROR_HANDLER)

    logger.propagate = False

    _loggers[name] = logger
    return logger


# =============================================================================
# ВСПОМОГАТЕЛЬНЫЕ ФУНКЦИИ ЛОГИРОВАНИЯ
# =============================================================================

def _get_caller_info() -> dict[str, Any]:
    """
    Информация о коде, вызвавшем log_* (на два кадра выше по стеку).
    """
    frame = inspect.currentframe()
    try:
        caller_frame = frame.f_back.f_back if frame and frame.f_back else None
        if caller_frame is None:
            return {}

        module = inspect.getmodule(caller_frame)
        return {
            "caller_function": caller_frame.f_code.co_name,
            "caller_module": module.__name__ if module else "unknown",
            "caller_file": Path(caller_frame.f_code.co_filename).name,
            "caller_line": caller_frame.f_lineno,
        }
    except Exception:
        return {}
    finally:
        # Освобождаем ссылки на фреймы
        del frame


async def log_info(
    message: str,
    *,
    type_msg: TypeMsg = TypeMsg.INFO,
    logger_name: str = DEFAULT_LOGGER,
    extra: dict[str, Any] | None = None,
) -> None:
    """
    Асинхронное логирование с уровнем, заданным type_msg.

    Args:
        message: Сообщение
        type_msg: Уровень сообщения
        logger_name: Имя логгера
        extra: Дополнительные данные
    """
    logger = get_logger(logger_name)
    record_extra = {"extra_data": {**_get_caller_info(), **(extra or {})}}

    match type_msg:
        case TypeMsg.DEBUG:
            logger.debug(message, extra=record_extra)
        case TypeMsg.WARNING:
            logger.warning(message, extra=record_extra)
        case TypeMsg.ERROR:
            logger.error(message, extra=record_extra)
        case TypeMsg.CRITICAL:
            logger.critical(message, extra=record_extra)
        case _:
            logger.info(message, extra=record_extra)


async def log_debug(
    message: str,
    logger_name: str = DEFAULT_LOGGER,
    extra: dict[str, Any] | None = None,
) -> None:
    """Логирование DEBUG уровня."""
    await log_info(message, type_msg=TypeMsg.DEBUG, logger_name=logger_name, extra=extra)


async def log_warning(
    message: str,
    logger_name: str = DEFAULT_LOGGER,
    extra: dict[str, Any] | None = None,
) -> None:
    """Логирование WARNING уровня."""
    await log_info(message, type_msg=TypeMsg.WARNING, logger_name=logger_name, extra=extra)


async def log_error(
    message: str,
    logger_name: str = DEFAULT_LOGGER,
    extra: dict[str, Any] | None = None,
    exc_info: bool = False,
) -> None:
    """
    Логирование ERROR уровня.

    Args:
        message: Сообщение об ошибке
        logger_name: Имя логгера
        extra: Дополнительные данные
        exc_info: Включать ли трейсбек
    """
    logger = get_logger(logger_name)
    record_extra = {"extra_data": {**_get_caller_info(), **(extra or {})}}
    logger.error(message, extra=record_extra, exc_info=exc_info)
