"""
Менеджер базы данных PostgreSQL.
Пул соединений, транзакции, трансляция ошибок драйвера в StorageError.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from functools import wraps
from typing import Any, AsyncGenerator, Awaitable, Callable, TypeVar

import asyncpg
from asyncpg import Connection, Pool, Record

from ridetrack.common.constants import TypeMsg
from ridetrack.common.exceptions import StorageError
from ridetrack.common.logger import log_error, log_info, log_warning

T = TypeVar("T")

# Ошибки драйвера и сети, означающие недоступность хранилища
STORAGE_EXCEPTIONS: tuple[type[BaseException], ...] = (
    asyncpg.PostgresError,
    asyncpg.InterfaceError,
    ConnectionError,
    OSError,
    asyncio.TimeoutError,
)


def retry_on_connection_error(
    max_attempts: int = 3,
    delay: float = 1.0,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Повторяет подключение при сетевых ошибках.
    Используется только при старте; запросы не ретраятся.

    Args:
        max_attempts: Максимальное количество попыток
        delay: Базовая задержка между попытками (секунды)
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            last_error: Exception | None = None

            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except (
                    asyncpg.PostgresConnectionError,
                    asyncpg.InterfaceError,
                    ConnectionRefusedError,
                    OSError,
                ) as e:
                    last_error = e
                    if attempt < max_attempts:
                        await log_warning(f"Ошибка подключения к БД (попытка {attempt}/{max_attempts}): {e}")
                        await asyncio.sleep(delay * attempt)
                    else:
                        await log_error(f"Не удалось подключиться к БД после {max_attempts} попыток: {e}")

            raise StorageError(str(last_error)) from last_error

        return wrapper

    return decorator


def wrap_storage_errors(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
    """Переводит ошибки драйвера в StorageError без повторов."""
    @wraps(func)
    async def wrapper(*args: Any, **kwargs: Any) -> T:
        try:
            return await func(*args, **kwargs)
        except STORAGE_EXCEPTIONS as e:
            raise StorageError(f"{func.__name__}: {e}") from e

    return wrapper


class DatabaseManager:
    """
    Менеджер подключений к PostgreSQL.
    Создаётся в lifespan приложения и передаётся репозиториям явно.
    """

    def __init__(self) -> None:
        self._pool: Pool | None = None

    @property
    def pool(self) -> Pool:
        """Возвращает пул соединений."""
        if self._pool is None:
            raise RuntimeError("Пул соединений не инициализирован. Вызовите connect() сначала.")
        return self._pool

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    @retry_on_connection_error(max_attempts=3, delay=1.0)
    async def connect(
        self,
        dsn: str,
        min_size: int = 2,
        max_size: int = 10,
        command_timeout: int = 30,
    ) -> None:
        """
        Создаёт пул соединений к PostgreSQL.

        Args:
            dsn: DSN строка подключения
            min_size: Минимальный размер пула
            max_size: Максимальный размер пула
            command_timeout: Таймаут команд (секунды)
        """
        if self._pool is not None:
            return

        await log_info("Подключение к PostgreSQL...", type_msg=TypeMsg.INFO)

        self._pool = await asyncpg.create_pool(
            dsn=dsn,
            min_size=min_size,
            max_size=max_size,
            command_timeout=command_timeout,
        )

        await log_info("Подключение к PostgreSQL установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Закрывает пул соединений."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            await log_info("Соединение с PostgreSQL закрыто", type_msg=TypeMsg.INFO)

    @asynccontextmanager
    async def acquire(self) -> AsyncGenerator[Connection, None]:
        """
        Соединение из пула.

        Example:
            async with db.acquire() as conn:
                rows = await conn.fetch("SELECT * FROM driver_pings")
        """
        async with self.pool.acquire() as connection:
            yield connection

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[Connection, None]:
        """
        Соединение в транзакции: commit при успехе, rollback при ошибке.
        """
        async with self.pool.acquire() as connection:
            async with connection.transaction():
                yield connection

    async def execute(self, query: str, *args: Any) -> str:
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args: Any) -> list[Record]:
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> Record | None:
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any, column: int = 0) -> Any:
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args, column=column)

    async def health_check(self) -> bool:
        """
        Проверяет здоровье подключения к БД.

        Returns:
            True если подключение работает
        """
        try:
            return await self.fetchval("SELECT 1") == 1
        except Exception as e:
            await log_error(f"Health check PostgreSQL failed: {e}")
            return False


async def init_db(db: DatabaseManager) -> None:
    """
    Подключает менеджер к БД по настройкам и применяет схему.
    """
    from ridetrack.config import settings

    await db.connect(
        dsn=settings.database.dsn,
        min_size=settings.database.DB_MIN_POOL_SIZE,
        max_size=settings.database.DB_MAX_POOL_SIZE,
        command_timeout=settings.database.DB_COMMAND_TIMEOUT,
    )
    await log_info(
        f"PostgreSQL подключён: {settings.database.DB_HOST}:{settings.database.DB_PORT}/{settings.database.DB_NAME}",
        type_msg=TypeMsg.INFO,
    )

    await _init_schema(db)


async def _init_schema(db: DatabaseManager) -> None:
    """Применяет migrations/init.sql под advisory lock."""
    from ridetrack.config.loader import get_project_root

    schema_path = get_project_root() / "migrations" / "init.sql"
    if not schema_path.exists():
        await log_warning(f"Файл схемы БД не найден: {schema_path}")
        return

    with open(schema_path, "r", encoding="utf-8") as f:
        schema_sql = f.read()

    await log_info("Применение схемы БД...", type_msg=TypeMsg.INFO)

    # Advisory lock не даёт двум процессам применять схему одновременно
    async with db.transaction() as conn:
        await conn.execute("SELECT pg_advisory_xact_lock(723001)")
        await conn.execute(schema_sql)

    await log_info("Схема БД успешно применена", type_msg=TypeMsg.INFO)


async def close_db(db: DatabaseManager) -> None:
    """Закрывает подключение к базе данных."""
    await db.disconnect()
    await log_info("PostgreSQL отключён", type_msg=TypeMsg.INFO)
