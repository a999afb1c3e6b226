"""
Загрузчик конфигурации проекта.
Единственный источник истины - config/config.json.
Хосты и секреты переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Путь к файлу конфигурации (можно переопределить через RIDETRACK_CONFIG)."""
    override = os.getenv("RIDETRACK_CONFIG")
    if override:
        return Path(override)
    return get_project_root() / "config" / "config.json"


def load_config_json(path: Path | None = None) -> dict[str, Any]:
    """Загружает config.json и возвращает словарь без ключей-комментариев."""
    config_path = path or get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        data = json.load(f)

    return {k: v for k, v in data.items() if not k.startswith("_comment_")}


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "ridetrack"
    VERSION: str = "0.3.0"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"
    COMPONENT_MODE: str = ""


class DeploymentSettings(BaseModel):
    """Хосты и порты HTTP-сервисов."""
    LOCATION_INGEST_HOST: str = "0.0.0.0"
    LOCATION_INGEST_PORT: int = 8090
    HEATMAP_HOST: str = "0.0.0.0"
    HEATMAP_PORT: int = 8091


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "colored"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/app.log"
    LOG_MAX_BYTES: int = 10485760

    @field_validator("LOG_FORMAT")
    @classmethod
    def check_format(cls, v: str) -> str:
        if v not in ("json", "colored"):
            raise ValueError(f"LOG_FORMAT должен быть json или colored, получено: {v}")
        return v


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "ridetrack"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 2
    DB_MAX_POOL_SIZE: int = 10
    DB_COMMAND_TIMEOUT: int = 30

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Берёт пароль из окружения, если не задан."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """DSN для asyncpg."""
        return f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"


class RedisSettings(BaseModel):
    """Настройки Redis."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "ridetrack"
    REDIS_MAX_CONNECTIONS: int = 20

    @field_validator("REDIS_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        if not v:
            return os.getenv("REDIS_PASSWORD", "")
        return v

    @property
    def url(self) -> str:
        """URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class TrackingSettings(BaseModel):
    """Параметры трекинга на устройстве водителя."""
    RIDE_ACCURACY_CEILING_M: float = 50.0
    PATH_ACCURACY_CEILING_M: float = 20.0
    GLITCH_DISTANCE_M: float = 500.0
    IDLE_THRESHOLD_MS: int = 15000
    CLOCK_TICK_SECONDS: float = 1.0
    PROCESS_NOISE: float = 1.0
    MEASUREMENT_NOISE: float = 4.0
    REPLAY_LAG_MS: int = 500
    ANIMATION_HZ: int = 60
    BROADCAST_INTERVAL_SECONDS: float = 5.0
    PATH_MAX_POINTS: int = 5000
    PATH_MIN_STEP_DEG: float = 0.00001
    PATH_STORE_FILE: str = "data/location_path.json"
    DRIVER_ID_FILE: str = "data/driver_id"
    POSITION_SOURCE: str = "queue"
    FEEDBACK: str = "log"
    REPLAY_FILE: str = ""
    INGEST_URL: str = "http://localhost:8090/api/v1/location"
    INGEST_TIMEOUT_SECONDS: float = 5.0

    @model_validator(mode="after")
    def check_noise(self) -> "TrackingSettings":
        if self.PROCESS_NOISE <= 0 or self.MEASUREMENT_NOISE <= 0:
            raise ValueError("PROCESS_NOISE и MEASUREMENT_NOISE должны быть > 0")
        return self


class IngestSettings(BaseModel):
    """Параметры приёма ping-ов."""
    TILE_STEP_DEG: float = 0.002
    DEDUP_WINDOW_SECONDS: float = 20.0
    RATE_LIMIT_SECONDS: float = 2.0


class HeatmapSettings(BaseModel):
    """Параметры агрегации тепловой карты."""
    DEFAULT_LOOKBACK_SECONDS: int = 120
    MIN_LOOKBACK_SECONDS: int = 10
    MAX_LOOKBACK_SECONDS: int = 600
    ROW_LIMIT: int = 5000


class RealtimeSettings(BaseModel):
    """Параметры грубого realtime-канала."""
    CHANNEL: str = "heatmap:realtime"
    PRECISION_DEG: float = 0.01
    POINT_TTL_SECONDS: float = 15.0
    MAX_POINTS: int = 400


# =============================================================================
# ГЛАВНЫЙ КЛАСС НАСТРОЕК
# =============================================================================

class Settings(BaseSettings):
    """
    Главный класс настроек приложения.
    Агрегирует все секции конфигурации.
    """
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    system: SystemSettings = Field(default_factory=SystemSettings)
    deployment: DeploymentSettings = Field(default_factory=DeploymentSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    ingest: IngestSettings = Field(default_factory=IngestSettings)
    heatmap: HeatmapSettings = Field(default_factory=HeatmapSettings)
    realtime: RealtimeSettings = Field(default_factory=RealtimeSettings)

    @classmethod
    def from_config_json(cls, path: Path | None = None) -> "Settings":
        """
        Создаёт Settings из config.json.
        Каждая секция читается из одноимённого объекта JSON;
        хосты и пароли переопределяются из окружения.
        """
        data = load_config_json(path)

        database = dict(data.get("database", {}))
        for key in ("DB_HOST", "DB_NAME", "DB_USER", "DB_PASSWORD"):
            if os.getenv(key):
                database[key] = os.environ[key]
        if os.getenv("DB_PORT"):
            database["DB_PORT"] = int(os.environ["DB_PORT"])

        redis = dict(data.get("redis", {}))
        for key in ("REDIS_HOST", "REDIS_PASSWORD"):
            if os.getenv(key):
                redis[key] = os.environ[key]
        if os.getenv("REDIS_PORT"):
            redis["REDIS_PORT"] = int(os.environ["REDIS_PORT"])

        system = dict(data.get("system", {}))
        if os.getenv("COMPONENT_MODE"):
            system["COMPONENT_MODE"] = os.environ["COMPONENT_MODE"]

        tracking = dict(data.get("tracking", {}))
        if os.getenv("INGEST_URL"):
            tracking["INGEST_URL"] = os.environ["INGEST_URL"]

        return cls(
            system=SystemSettings(**system),
            deployment=DeploymentSettings(**data.get("deployment", {})),
            logging=LoggingSettings(**data.get("logging", {})),
            database=DatabaseSettings(**database),
            redis=RedisSettings(**redis),
            tracking=TrackingSettings(**tracking),
            ingest=IngestSettings(**data.get("ingest", {})),
            heatmap=HeatmapSettings(**data.get("heatmap", {})),
            realtime=RealtimeSettings(**data.get("realtime", {})),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Перед чтением config.json подгружает .env из корня проекта.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


settings = get_settings()
