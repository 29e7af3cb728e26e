# src/services/realtime_location/service.py
"""
Сессии публикации геолокации водителей.

Устройство водителя присылает фиксации и события по HTTP,
а HeartbeatPublisher на сервере фильтрует их и пишет в хранилище.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from src.common.constants import TypeMsg
from src.common.logger import log_info
from src.core.tracking.capabilities import ManualForegroundState, PushedPositionSource
from src.core.tracking.errors import LocationPermissionError, TrackingError, TransientSensorError
from src.core.tracking.heartbeat import HeartbeatPublisher
from src.core.tracking.route_history import RouteAccumulator
from src.core.tracking.store import PositionStore
from src.shared.models.tracking import HeartbeatConfig, Position, TrackingState


class SensorErrorKind(str, Enum):
    """Ошибки датчика, о которых сообщает устройство."""
    PERMISSION_DENIED = "permission_denied"
    POSITION_UNAVAILABLE = "position_unavailable"
    TIMEOUT = "timeout"


def sensor_error_from_kind(kind: SensorErrorKind, message: str | None = None) -> TrackingError:
    """Переводит код ошибки устройства в ошибку трекинга."""
    if kind is SensorErrorKind.PERMISSION_DENIED:
        return LocationPermissionError(message or "Location permission denied")
    return TransientSensorError(message or kind.value)


@dataclass
class DriverSession:
    """Публикатор водителя с его источниками."""
    publisher: HeartbeatPublisher
    source: PushedPositionSource
    foreground: ManualForegroundState


class SessionNotFoundError(LookupError):
    """Для водителя нет сессии трекинга."""


class TrackingSessionManager:
    """
    Один HeartbeatPublisher на водителя.

    Сессия остаётся в памяти после остановки, чтобы состояние
    (включая ошибку, из-за которой трекинг остановлен) можно было прочитать.
    """

    def __init__(
        self,
        store: PositionStore,
        config: HeartbeatConfig | None = None,
        route_accumulator: RouteAccumulator | None = None,
    ) -> None:
        self._store = store
        self._config = config or HeartbeatConfig()
        self._routes = route_accumulator or RouteAccumulator(store)
        self._sessions: dict[str, DriverSession] = {}

    @property
    def routes(self) -> RouteAccumulator:
        return self._routes

    @property
    def active_sessions(self) -> int:
        return sum(1 for s in self._sessions.values() if s.publisher.is_running)

    def get(self, agent_id: str) -> DriverSession:
        session = self._sessions.get(agent_id)
        if session is None:
            raise SessionNotFoundError(agent_id)
        return session

    def _get_or_create(self, agent_id: str) -> DriverSession:
        session = self._sessions.get(agent_id)
        if session is not None:
            return session

        source = PushedPositionSource()
        foreground = ManualForegroundState()
        publisher = HeartbeatPublisher(
            store=self._store,
            source=source,
            foreground=foreground,
            config=self._config,
            route_accumulator=self._routes,
        )
        session = DriverSession(publisher=publisher, source=source, foreground=foreground)
        self._sessions[agent_id] = session
        return session

    async def start(
        self,
        agent_id: str,
        booking_id: str,
        booking_status: str,
        is_background: bool = False,
    ) -> tuple[bool, TrackingState]:
        """
        Запускает трекинг водителя.

        Returns:
            (запущен ли трекинг, текущее состояние)
        """
        session = self._get_or_create(agent_id)
        if not session.publisher.is_running:
            await session.foreground.set_background(is_background)

        started = await session.publisher.start(booking_id, agent_id, booking_status)
        return started, session.publisher.get_state()

    async def push_fix(self, agent_id: str, position: Position) -> TrackingState:
        session = self.get(agent_id)
        await session.source.push_fix(position)
        return session.publisher.get_state()

    async def push_sensor_error(
        self,
        agent_id: str,
        kind: SensorErrorKind,
        message: str | None = None,
    ) -> TrackingState:
        session = self.get(agent_id)
        await session.source.push_error(sensor_error_from_kind(kind, message))
        return session.publisher.get_state()

    async def set_visibility(self, agent_id: str, is_background: bool) -> TrackingState:
        session = self.get(agent_id)
        await session.foreground.set_background(is_background)
        return session.publisher.get_state()

    async def update_booking_status(self, agent_id: str, status: str) -> TrackingState:
        session = self.get(agent_id)
        await session.publisher.update_booking_status(status)
        return session.publisher.get_state()

    async def stop(self, agent_id: str) -> TrackingState:
        session = self.get(agent_id)
        await session.publisher.stop()
        return session.publisher.get_state()

    def get_state(self, agent_id: str) -> TrackingState:
        return self.get(agent_id).publisher.get_state()

    async def close(self) -> None:
        """Останавливает все сессии (при остановке сервиса)."""
        if self._sessions:
            await log_info(f"Остановка {len(self._sessions)} сессий трекинга", type_msg=TypeMsg.INFO)
        for session in list(self._sessions.values()):
            await session.publisher.close()
        self._sessions.clear()
