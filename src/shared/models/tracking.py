# src/shared/models/tracking.py
"""
Модели трекинга водителя.

Используются публикатором (водитель), хранилищем позиций
и подписчиками (пассажир, диспетчер).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator

from src.common.constants import ConnectionStatus


def utc_now() -> datetime:
    """Текущее время в UTC (timezone-aware)."""
    return datetime.now(timezone.utc)


def _ensure_utc(value: datetime) -> datetime:
    """Naive datetime считаем UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# ПОЗИЦИЯ
# =============================================================================

class Position(BaseModel):
    """Одна фиксация координат с датчика."""
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    heading: Optional[float] = None  # градусы
    speed: Optional[float] = None  # м/с
    accuracy: Optional[float] = Field(default=None, ge=0)  # метры
    timestamp: datetime = Field(default_factory=utc_now)

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return _ensure_utc(v)


class HeartbeatConfig(BaseModel):
    """
    Параметры публикатора.

    Длительности в секундах, расстояния в метрах.
    """
    model_config = ConfigDict(frozen=True)

    foreground_interval: float = Field(default=5.0, gt=0)
    background_interval: float = Field(default=15.0, gt=0)
    min_distance_filter: float = Field(default=10.0, gt=0)
    max_distance_filter: float = Field(default=100.0, gt=0)
    max_accuracy_threshold: float = Field(default=50.0, gt=0)
    position_timeout: float = Field(default=15.0, gt=0)
    max_retries: int = Field(default=3, ge=0)
    retry_delay: float = Field(default=2.0, gt=0)
    safety_net_interval: float = Field(default=30.0, gt=0)

    @model_validator(mode="after")
    def check_distance_filters(self) -> "HeartbeatConfig":
        """min_distance_filter не может превышать max_distance_filter."""
        if self.min_distance_filter > self.max_distance_filter:
            raise ValueError("min_distance_filter должен быть <= max_distance_filter")
        return self


class TrackingState(BaseModel):
    """
    Наблюдаемое состояние публикатора.

    Изменяется только владельцем; наблюдатели получают копию.
    """
    is_tracking: bool = False
    is_background: bool = False
    last_update: Optional[datetime] = None
    update_count: int = 0
    error: Optional[str] = None
    # True для ошибок без повтора (например, отказ в доступе к геолокации)
    error_fatal: bool = False
    connection_status: ConnectionStatus = ConnectionStatus.DISCONNECTED

    @computed_field
    @property
    def is_waiting_for_location(self) -> bool:
        """Трекинг идёт, ошибок нет, но ни одной позиции ещё не отправлено."""
        return self.is_tracking and self.error is None and self.last_update is None


class TrackingSession(BaseModel):
    """Сессия публикации для одного бронирования."""
    booking_id: str
    agent_id: str
    booking_status: str
    config: HeartbeatConfig = Field(default_factory=HeartbeatConfig)
    started_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# СТРОКИ ХРАНИЛИЩА
# =============================================================================

class LocationRow(BaseModel):
    """Текущая позиция водителя (одна строка на водителя)."""
    agent_id: str
    booking_id: Optional[str] = None
    latitude: float
    longitude: float
    heading: Optional[float] = None
    speed: Optional[float] = None
    accuracy: Optional[float] = None
    updated_at: datetime
    is_active: bool = True

    @field_validator("updated_at")
    @classmethod
    def normalize_updated_at(cls, v: datetime) -> datetime:
        return _ensure_utc(v)

    @classmethod
    def from_position(cls, agent_id: str, booking_id: str, position: Position) -> "LocationRow":
        """Строит строку для upsert; updated_at — момент отправки."""
        return cls(
            agent_id=agent_id,
            booking_id=booking_id,
            latitude=position.latitude,
            longitude=position.longitude,
            heading=position.heading,
            speed=position.speed,
            accuracy=position.accuracy,
            updated_at=utc_now(),
            is_active=True,
        )


class RoutePoint(BaseModel):
    """Неизменяемая точка истории маршрута."""
    model_config = ConfigDict(frozen=True)

    booking_id: str
    agent_id: str
    latitude: float
    longitude: float
    heading: Optional[float] = None
    speed: Optional[float] = None
    recorded_at: datetime = Field(default_factory=utc_now)


# =============================================================================
# ВНЕШНИЕ СУЩНОСТИ (только чтение)
# =============================================================================

class Destination(BaseModel):
    """Точка назначения поездки."""
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float
    label: str = "Destination"


class BookingInfo(BaseModel):
    """Данные бронирования, нужные трекингу."""
    id: str
    status: str
    destination: Optional[Destination] = None
    assigned_agent_id: Optional[str] = None
    rider_display_name: Optional[str] = None


class AgentInfo(BaseModel):
    """Водитель."""
    id: str
    display_name: str


class EtaInfo(BaseModel):
    """Оценка времени прибытия."""
    model_config = ConfigDict(frozen=True)

    duration_seconds: float
    distance_meters: float
    humanized_duration: str
    humanized_distance: str


class EnrichedPosition(BaseModel):
    """Позиция с контекстом для потребителя. Неизменяема после доставки."""
    model_config = ConfigDict(frozen=True)

    agent_id: str
    booking_id: Optional[str] = None
    latitude: float
    longitude: float
    heading: Optional[float] = None
    speed: Optional[float] = None
    accuracy: Optional[float] = None
    timestamp: datetime
    agent_display_name: str = "Driver"
    rider_display_name: Optional[str] = None
    booking_status: Optional[str] = None
    destination: Optional[Destination] = None
    eta: Optional[EtaInfo] = None


# =============================================================================
# ОБЛАСТЬ ПОДПИСКИ
# =============================================================================

@dataclass(frozen=True)
class SubscriptionScope:
    """Одно бронирование либо все активные водители."""
    booking_id: Optional[str] = None

    @classmethod
    def booking(cls, booking_id: str) -> "SubscriptionScope":
        return cls(booking_id=booking_id)

    @classmethod
    def all_active(cls) -> "SubscriptionScope":
        return cls()

    @property
    def is_all_active(self) -> bool:
        return self.booking_id is None

    @property
    def channel_name(self) -> str:
        """Имя push-канала для области."""
        if self.booking_id is None:
            return "location:all"
        return f"location:booking:{self.booking_id}"
