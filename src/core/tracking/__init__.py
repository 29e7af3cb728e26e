# src/core/tracking/__init__.py
"""
Трекинг водителя в реальном времени.

- HeartbeatPublisher: публикация позиции водителя
- SyncSubscriber: доставка позиций потребителям (push + polling)
- MotionInterpolator: плавное движение маркера
- RouteAccumulator: история маршрута поездки
"""

from src.core.tracking.capabilities import (
    AsyncioFrameClock,
    FrameClock,
    ManualForegroundState,
    PushedPositionSource,
    StaticForegroundState,
)
from src.core.tracking.enrichment import LocationEnricher
from src.core.tracking.errors import (
    LocationPermissionError,
    TrackingError,
    TransientNetworkError,
    TransientSensorError,
)
from src.core.tracking.heartbeat import HeartbeatPublisher
from src.core.tracking.interpolator import MotionInterpolator, ease_out_cubic
from src.core.tracking.position_filter import FilterDecision, PositionFilter
from src.core.tracking.route_history import RouteAccumulator, RouteStats
from src.core.tracking.store import ChangeEvent, ChangeKind, PositionStore, PushChannel, PushStatus
from src.core.tracking.sync import Delivery, DeliverySource, Subscription, SyncSubscriber

__all__ = [
    "AsyncioFrameClock",
    "FrameClock",
    "ManualForegroundState",
    "PushedPositionSource",
    "StaticForegroundState",
    "LocationEnricher",
    "LocationPermissionError",
    "TrackingError",
    "TransientNetworkError",
    "TransientSensorError",
    "HeartbeatPublisher",
    "MotionInterpolator",
    "ease_out_cubic",
    "FilterDecision",
    "PositionFilter",
    "RouteAccumulator",
    "RouteStats",
    "ChangeEvent",
    "ChangeKind",
    "PositionStore",
    "PushChannel",
    "PushStatus",
    "Delivery",
    "DeliverySource",
    "Subscription",
    "SyncSubscriber",
]
