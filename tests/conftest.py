# tests/conftest.py
"""
Общие фикстуры и настройки для тестов.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# Устанавливаем переменные окружения перед импортом модулей
os.environ.setdefault("DB_PASSWORD", "test_password")
os.environ.setdefault("REDIS_PASSWORD", "")
os.environ.setdefault("MAPBOX_ACCESS_TOKEN", "")

from src.shared.models.tracking import (  # noqa: E402
    AgentInfo,
    BookingInfo,
    Destination,
    HeartbeatConfig,
    Position,
)
from tests.fakes import (  # noqa: E402
    FakeBookings,
    FakePushChannel,
    FakeRouting,
    InMemoryPositionStore,
    ManualFrameClock,
    RecordingSink,
)


# =============================================================================
# ФИКСТУРЫ КОНФИГУРАЦИИ
# =============================================================================

@pytest.fixture(scope="session")
def project_root() -> Path:
    """Корневая директория проекта."""
    return Path(__file__).parent.parent


@pytest.fixture(scope="session")
def config_path(project_root: Path) -> Path:
    """Путь к файлу конфигурации."""
    return project_root / "config" / "config.json"


@pytest.fixture
def mock_config() -> dict[str, Any]:
    """Плоский config.json для тестов загрузчика."""
    return {
        "_comment_system": "Системные настройки",
        "PROJECT_NAME": "driver_tracking_test",
        "VERSION": "1.0.0-test",
        "DEBUG": True,
        "LOG_LEVEL": "DEBUG",
        "ENVIRONMENT": "test",
        "LOG_TO_FILE": False,
        "LOG_FORMAT": "colored",
        "REALTIME_LOCATION_INGEST_PORT": 9090,
        "REALTIME_WS_GATEWAY_PORT": 9089,
        "DB_HOST": "localhost",
        "DB_PORT": 5432,
        "DB_NAME": "driver_tracking_test",
        "DB_USER": "postgres",
        "REDIS_HOST": "localhost",
        "REDIS_PORT": 6379,
        "REDIS_DB": 1,
        "REDIS_NAMESPACE": "tracking_test",
        "MAPBOX_PROFILE": "driving-traffic",
        "FOREGROUND_INTERVAL": 4.0,
        "BACKGROUND_INTERVAL": 12.0,
        "MIN_DISTANCE_FILTER": 10.0,
        "MAX_DISTANCE_FILTER": 100.0,
        "POLL_INTERVAL_FLOOR": 5.0,
        "POLL_INTERVAL_CEILING": 30.0,
    }


@pytest.fixture
def temp_config_file(tmp_path: Path, mock_config: dict[str, Any]) -> Path:
    """Создаёт временный файл конфигурации."""
    config_file = tmp_path / "config.json"
    config_file.write_text(json.dumps(mock_config, ensure_ascii=False, indent=2))
    return config_file


@pytest.fixture
def fast_config() -> HeartbeatConfig:
    """Короткие интервалы для тестов с реальными таймерами."""
    return HeartbeatConfig(
        foreground_interval=0.02,
        background_interval=0.2,
        min_distance_filter=10.0,
        max_distance_filter=100.0,
        max_accuracy_threshold=50.0,
        max_retries=2,
        retry_delay=0.01,
        safety_net_interval=5.0,
    )


# =============================================================================
# ФИКСТУРЫ ИНФРАСТРУКТУРЫ (МОКИ)
# =============================================================================

@pytest.fixture
def mock_db() -> AsyncMock:
    """Мок менеджера базы данных."""
    db = AsyncMock()
    db.fetchrow = AsyncMock(return_value=None)
    db.fetch = AsyncMock(return_value=[])
    db.execute = AsyncMock(return_value="INSERT 0 1")
    db.fetchval = AsyncMock(return_value=None)
    return db


@pytest.fixture
def mock_redis() -> MagicMock:
    """Мок RedisClient."""
    redis = MagicMock()
    redis.is_connected = True
    redis.publish = AsyncMock(return_value=1)
    redis.channel = MagicMock(side_effect=lambda name: f"tracking:{name}")
    return redis


# =============================================================================
# ФИКСТУРЫ ФЕЙКОВ
# =============================================================================

@pytest.fixture
def store() -> InMemoryPositionStore:
    return InMemoryPositionStore()


@pytest.fixture
def push_channel() -> FakePushChannel:
    return FakePushChannel()


@pytest.fixture
def frame_clock() -> ManualFrameClock:
    return ManualFrameClock()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def bookings() -> FakeBookings:
    """Одно бронирование в поездке с точкой назначения."""
    fake = FakeBookings()
    fake.agents["driver-1"] = AgentInfo(id="driver-1", display_name="Иван")
    fake.bookings["booking-1"] = BookingInfo(
        id="booking-1",
        status="on_trip",
        destination=Destination(lat=50.40, lng=30.60, label="Аэропорт"),
        assigned_agent_id="driver-1",
        rider_display_name="Ольга",
    )
    return fake


@pytest.fixture
def routing() -> FakeRouting:
    return FakeRouting()


# =============================================================================
# ФИКСТУРЫ МОДЕЛЕЙ
# =============================================================================

@pytest.fixture
def base_position() -> Position:
    """Точка в центре Киева."""
    return Position(latitude=50.4501, longitude=30.5234, heading=45.0, speed=10.0, accuracy=5.0)
