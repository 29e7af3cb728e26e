# src/common/constants.py
"""
Общие константы и перечисления.
"""

from enum import Enum


class TypeMsg(str, Enum):
    """Типы сообщений для логирования."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class BookingStatus(str, Enum):
    """Статусы бронирования (поездки)."""
    PENDING = "pending"
    ASSIGNED = "assigned"
    ACCEPTED = "accepted"
    CONFIRMED = "confirmed"
    ON_TRIP = "on_trip"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ConnectionStatus(str, Enum):
    """Статус соединения трекинга."""
    CONNECTED = "connected"
    RECONNECTING = "reconnecting"
    DISCONNECTED = "disconnected"


# Статусы, при которых разрешена публикация геолокации
TRACKABLE_STATUSES: frozenset[str] = frozenset({
    BookingStatus.ACCEPTED.value,
    BookingStatus.CONFIRMED.value,
    BookingStatus.ON_TRIP.value,
})

# Активное движение: пишем историю маршрута и считаем ETA
ACTIVE_TRANSIT_STATUSES: frozenset[str] = frozenset({
    BookingStatus.ACCEPTED.value,
    BookingStatus.ON_TRIP.value,
})

# Бронирования, водители которых попадают в снимок "все активные"
ACTIVE_BOOKING_STATUSES: frozenset[str] = frozenset({
    BookingStatus.ASSIGNED.value,
    BookingStatus.ACCEPTED.value,
    BookingStatus.CONFIRMED.value,
    BookingStatus.ON_TRIP.value,
})


def status_value(status: str | Enum) -> str:
    """Строковое значение статуса (для Enum — .value)."""
    return status.value if isinstance(status, Enum) else status


def is_trackable_status(status: str | None) -> bool:
    """Проверяет, разрешён ли трекинг для статуса бронирования."""
    return status is not None and status_value(status) in TRACKABLE_STATUSES


def is_active_transit(status: str | None) -> bool:
    """Проверяет, находится ли поездка в активном движении."""
    return status is not None and status_value(status) in ACTIVE_TRANSIT_STATUSES
