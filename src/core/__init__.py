# src/core/__init__.py
"""
Доменный слой (Core Domain).
Трекинг водителя, бронирования и маршруты.
"""

from src.core.bookings import BookingRepository
from src.core.geo import RoutingService
from src.core.tracking import HeartbeatPublisher, MotionInterpolator, SyncSubscriber

__all__ = [
    "BookingRepository",
    "RoutingService",
    "HeartbeatPublisher",
    "MotionInterpolator",
    "SyncSubscriber",
]
