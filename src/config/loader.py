# src/config/loader.py
"""
Загрузчик конфигурации проекта.
Единственный источник истины — config/config.json.
Секретные данные переопределяются из переменных окружения.
"""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

if TYPE_CHECKING:
    from src.shared.models.tracking import HeartbeatConfig


# =============================================================================
# ОПРЕДЕЛЕНИЕ ПУТЕЙ
# =============================================================================

def get_project_root() -> Path:
    """Возвращает корневую директорию проекта."""
    return Path(__file__).parent.parent.parent


def get_config_path() -> Path:
    """Возвращает путь к файлу конфигурации."""
    return get_project_root() / "config" / "config.json"


def load_config_json(path: Path | None = None) -> dict[str, Any]:
    """Загружает config.json и возвращает словарь."""
    config_path = path or get_config_path()
    if not config_path.exists():
        raise FileNotFoundError(f"Файл конфигурации не найден: {config_path}")

    with open(config_path, "r", encoding="utf-8") as f:
        return json.load(f)


# =============================================================================
# PYDANTIC МОДЕЛИ КОНФИГУРАЦИИ
# =============================================================================

class SystemSettings(BaseModel):
    """Системные настройки."""
    PROJECT_NAME: str = "driver_tracking"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    LOG_LEVEL: str = "DEBUG"
    ENVIRONMENT: str = "development"
    COMPONENT_MODE: str = "all"


class DeploymentSettings(BaseModel):
    """Порты сервисов."""
    REALTIME_LOCATION_INGEST_HOST: str = "realtime_location_ingest"
    REALTIME_LOCATION_INGEST_PORT: int = 8090
    REALTIME_WS_GATEWAY_HOST: str = "realtime_ws_gateway"
    REALTIME_WS_GATEWAY_PORT: int = 8089


class LoggingSettings(BaseModel):
    """Настройки логирования."""
    LOG_LEVEL: str = "DEBUG"
    LOG_TO_FILE: bool = False
    LOG_FILE_PATH: str = "logs/tracking.log"
    LOG_FORMAT: str = "colored"
    LOG_MAX_BYTES: int = 10485760


class DatabaseSettings(BaseModel):
    """Настройки PostgreSQL."""
    DB_HOST: str = "localhost"
    DB_PORT: int = 5432
    DB_NAME: str = "driver_tracking"
    DB_USER: str = "postgres"
    DB_PASSWORD: str = ""
    DB_MIN_POOL_SIZE: int = 2
    DB_MAX_POOL_SIZE: int = 10
    DB_COMMAND_TIMEOUT: int = 30

    @field_validator("DB_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("DB_PASSWORD", "")
        return v

    @property
    def dsn(self) -> str:
        """Возвращает DSN для подключения к PostgreSQL."""
        return (
            f"postgresql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        )


class RedisSettings(BaseModel):
    """Настройки Redis (Pub/Sub для push-уведомлений)."""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""
    REDIS_NAMESPACE: str = "tracking"
    REDIS_MAX_CONNECTIONS: int = 50

    @field_validator("REDIS_PASSWORD", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает пароль из переменных окружения."""
        if not v:
            return os.getenv("REDIS_PASSWORD", "")
        return v

    @property
    def url(self) -> str:
        """Возвращает URL для подключения к Redis."""
        auth = f":{self.REDIS_PASSWORD}@" if self.REDIS_PASSWORD else ""
        return f"redis://{auth}{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"


class MapboxSettings(BaseModel):
    """Настройки Mapbox Directions API (расчёт ETA)."""
    MAPBOX_ACCESS_TOKEN: str = ""
    MAPBOX_PROFILE: str = "driving"
    MAPBOX_TIMEOUT: float = 10.0

    @field_validator("MAPBOX_ACCESS_TOKEN", mode="before")
    @classmethod
    def get_from_env(cls, v: str) -> str:
        """Получает токен из переменных окружения."""
        if not v:
            return os.getenv("MAPBOX_ACCESS_TOKEN", "")
        return v


class TrackingSettings(BaseModel):
    """Параметры публикации геолокации водителя (секунды и метры)."""
    FOREGROUND_INTERVAL: float = 5.0
    BACKGROUND_INTERVAL: float = 15.0
    MIN_DISTANCE_FILTER: float = 10.0
    MAX_DISTANCE_FILTER: float = 100.0
    MAX_ACCURACY_THRESHOLD: float = 50.0
    POSITION_TIMEOUT: float = 15.0
    MAX_RETRIES: int = 3
    RETRY_DELAY: float = 2.0
    SAFETY_NET_INTERVAL: float = 30.0

    def to_heartbeat_config(self) -> "HeartbeatConfig":
        """Собирает HeartbeatConfig из секции настроек."""
        from src.shared.models.tracking import HeartbeatConfig

        return HeartbeatConfig(
            foreground_interval=self.FOREGROUND_INTERVAL,
            background_interval=self.BACKGROUND_INTERVAL,
            min_distance_filter=self.MIN_DISTANCE_FILTER,
            max_distance_filter=self.MAX_DISTANCE_FILTER,
            max_accuracy_threshold=self.MAX_ACCURACY_THRESHOLD,
            position_timeout=self.POSITION_TIMEOUT,
            max_retries=self.MAX_RETRIES,
            retry_delay=self.RETRY_DELAY,
            safety_net_interval=self.SAFETY_NET_INTERVAL,
        )


class SyncSettings(BaseModel):
    """Параметры подписчика: polling-fallback и переподключение push."""
    POLL_INTERVAL_FLOOR: float = 5.0
    POLL_INTERVAL_CEILING: float = 30.0
    POLL_IDLE_FACTOR: float = 1.2
    POLL_ERROR_FACTOR: float = 1.5
    POLL_BATCH_LIMIT: int = 50
    PUSH_RECONNECT_DELAY: float = 5.0
    AGENT_NAME_TTL: float = 300.0

    @model_validator(mode="after")
    def check_bounds(self) -> "SyncSettings":
        """Проверяет границы интервала опроса."""
        if self.POLL_INTERVAL_FLOOR <= 0:
            raise ValueError("POLL_INTERVAL_FLOOR должен быть > 0")
        if self.POLL_INTERVAL_CEILING < self.POLL_INTERVAL_FLOOR:
            raise ValueError("POLL_INTERVAL_CEILING должен быть >= POLL_INTERVAL_FLOOR")
        if self.POLL_IDLE_FACTOR < 1 or self.POLL_ERROR_FACTOR < 1:
            raise ValueError("Множители backoff должны быть >= 1")
        return self


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
    mapbox: MapboxSettings = Field(default_factory=MapboxSettings)
    tracking: TrackingSettings = Field(default_factory=TrackingSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)

    @classmethod
    def from_config_json(cls, path: Path | None = None) -> "Settings":
        """
        Создаёт объект Settings из config.json.
        Секреты и адреса переопределяются из переменных окружения.
        """
        config_data = load_config_json(path)

        # Ключи с префиксом _comment_ пропускаются
        data = {k: v for k, v in config_data.items() if not k.startswith("_comment_")}

        def pick(model: type[BaseModel], env_keys: tuple[str, ...] = ()) -> dict[str, Any]:
            """Выбирает поля секции из плоского JSON, с приоритетом окружения."""
            values = {name: data[name] for name in model.model_fields if name in data}
            for key in env_keys:
                env_value = os.getenv(key)
                if env_value:
                    values[key] = env_value
            return values

        return cls(
            system=SystemSettings(**pick(SystemSettings, ("COMPONENT_MODE",))),
            deployment=DeploymentSettings(**pick(
                DeploymentSettings,
                ("REALTIME_LOCATION_INGEST_HOST", "REALTIME_WS_GATEWAY_HOST"),
            )),
            logging=LoggingSettings(**pick(LoggingSettings)),
            database=DatabaseSettings(**pick(DatabaseSettings, ("DB_HOST", "DB_PORT", "DB_PASSWORD"))),
            redis=RedisSettings(**pick(RedisSettings, ("REDIS_HOST", "REDIS_PORT", "REDIS_PASSWORD"))),
            mapbox=MapboxSettings(**pick(MapboxSettings, ("MAPBOX_ACCESS_TOKEN",))),
            tracking=TrackingSettings(**pick(TrackingSettings)),
            sync=SyncSettings(**pick(SyncSettings)),
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Возвращает синглтон настроек приложения.
    Использует кэширование для производительности.
    """
    from dotenv import load_dotenv

    env_path = get_project_root() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    return Settings.from_config_json()


# Экспорт синглтона для удобного импорта
settings = get_settings()
