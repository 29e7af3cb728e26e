# src/shared/models/__init__.py
"""
Общие DTO и Pydantic-модели для межсервисного взаимодействия.
"""

from src.shared.models.common import HealthStatus
from src.shared.models.tracking import (
    AgentInfo,
    BookingInfo,
    Destination,
    EnrichedPosition,
    EtaInfo,
    HeartbeatConfig,
    LocationRow,
    Position,
    RoutePoint,
    SubscriptionScope,
    TrackingSession,
    TrackingState,
)

__all__ = [
    # Common
    "HealthStatus",
    # Tracking
    "AgentInfo",
    "BookingInfo",
    "Destination",
    "EnrichedPosition",
    "EtaInfo",
    "HeartbeatConfig",
    "LocationRow",
    "Position",
    "RoutePoint",
    "SubscriptionScope",
    "TrackingSession",
    "TrackingState",
]
