"""
Клиент Redis для грубого realtime-канала.
Публикация и подписка Pub/Sub с пространством имён каналов.
"""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as redis
from redis.asyncio.client import PubSub

from ridetrack.common.constants import TypeMsg
from ridetrack.common.logger import log_error, log_info


class RedisClient:
    """
    Асинхронный клиент Redis.

    Создаётся явно (в lifespan или в TrackingContext) и передаётся
    потребителям; глобального экземпляра нет.
    """

    def __init__(self, namespace: str = "ridetrack") -> None:
        self._client: redis.Redis | None = None
        self._namespace = namespace

    @property
    def client(self) -> redis.Redis:
        """Возвращает клиент Redis."""
        if self._client is None:
            raise RuntimeError("Redis клиент не инициализирован. Вызовите connect() сначала.")
        return self._client

    def make_channel(self, name: str) -> str:
        """Добавляет namespace к имени канала."""
        return f"{self._namespace}:{name}"

    async def connect(self, url: str, max_connections: int = 20) -> None:
        """
        Подключается к Redis.

        Args:
            url: URL Redis
            max_connections: Максимальное количество соединений
        """
        if self._client is not None:
            return

        await log_info("Подключение к Redis...", type_msg=TypeMsg.INFO)

        self._client = redis.from_url(
            url,
            max_connections=max_connections,
            decode_responses=True,
        )
        await self._client.ping()

        await log_info("Подключение к Redis установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Закрывает соединение с Redis."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            await log_info("Соединение с Redis закрыто", type_msg=TypeMsg.INFO)

    # =========================================================================
    # PUB/SUB
    # =========================================================================

    async def publish_json(self, channel: str, payload: dict[str, Any]) -> int:
        """
        Публикует JSON в канал.

        Returns:
            Количество получателей
        """
        return await self.client.publish(
            self.make_channel(channel),
            json.dumps(payload, ensure_ascii=False),
        )

    def pubsub(self) -> PubSub:
        """Новый объект подписки."""
        return self.client.pubsub()

    async def health_check(self) -> bool:
        """
        Проверяет здоровье подключения к Redis.

        Returns:
            True если подключение работает
        """
        try:
            return await self.client.ping()
        except Exception as e:
            await log_error(f"Health check Redis failed: {e}")
            return False
