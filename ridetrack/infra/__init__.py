"""
Инфраструктурный слой.
Работа с внешними сервисами: PostgreSQL, Redis.
"""

from ridetrack.infra.database import DatabaseManager
from ridetrack.infra.redis_client import RedisClient

__all__ = [
    "DatabaseManager",
    "RedisClient",
]
