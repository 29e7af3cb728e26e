# src/core/tracking/enrichment.py
"""
Обогащение строки позиции контекстом для потребителя:
имя водителя, данные бронирования, точка назначения, ETA.
"""

from __future__ import annotations

from time import monotonic
from typing import Optional, Protocol

from src.common.constants import is_active_transit
from src.common.logger import log_warning
from src.shared.models.tracking import (
    AgentInfo,
    BookingInfo,
    EnrichedPosition,
    EtaInfo,
    LocationRow,
)

DEFAULT_AGENT_NAME = "Driver"


class BookingLookup(Protocol):
    async def get_booking(self, booking_id: str) -> Optional[BookingInfo]: ...

    async def get_agent(self, agent_id: str) -> Optional[AgentInfo]: ...


class EtaProvider(Protocol):
    async def calculate_eta(
        self,
        origin_lat: float,
        origin_lng: float,
        dest_lat: float,
        dest_lng: float,
    ) -> Optional[EtaInfo]: ...


class LocationEnricher:
    """
    Собирает EnrichedPosition из строки хранилища.

    Ошибка любого поиска оставляет соответствующие поля пустыми:
    строка позиции никогда не теряется из-за обогащения.

    Имена водителей кэшируются на AGENT_NAME_TTL секунд; при переполнении
    вытесняются самые старые записи.
    """

    AGENT_NAME_TTL = 300.0  # 5 минут
    MAX_CACHED_AGENTS = 1000

    def __init__(
        self,
        bookings: BookingLookup,
        routing: EtaProvider | None = None,
        name_ttl: float = AGENT_NAME_TTL,
        max_cached_agents: int = MAX_CACHED_AGENTS,
    ) -> None:
        self._bookings = bookings
        self._routing = routing
        self._name_ttl = name_ttl
        self._max_cached_agents = max_cached_agents
        # agent_id -> (имя, момент истечения по monotonic())
        self._agent_names: dict[str, tuple[str, float]] = {}

    @property
    def cached_agents(self) -> int:
        return len(self._agent_names)

    async def enrich(self, row: LocationRow) -> EnrichedPosition:
        agent_name = await self._agent_name(row.agent_id)
        booking = await self._booking(row.booking_id) if row.booking_id else None

        destination = booking.destination if booking else None
        eta = None
        if booking is not None and destination is not None and is_active_transit(booking.status):
            eta = await self._eta(row, destination.lat, destination.lng)

        return EnrichedPosition(
            agent_id=row.agent_id,
            booking_id=row.booking_id,
            latitude=row.latitude,
            longitude=row.longitude,
            heading=row.heading,
            speed=row.speed,
            accuracy=row.accuracy,
            timestamp=row.updated_at,
            agent_display_name=agent_name,
            rider_display_name=booking.rider_display_name if booking else None,
            booking_status=booking.status if booking else None,
            destination=destination,
            eta=eta,
        )

    def forget_agent(self, agent_id: str) -> None:
        """Сбрасывает закэшированное имя водителя."""
        self._agent_names.pop(agent_id, None)

    async def _agent_name(self, agent_id: str) -> str:
        cached = self._agent_names.get(agent_id)
        if cached is not None:
            name, expires_at = cached
            if monotonic() < expires_at:
                return name
            del self._agent_names[agent_id]

        try:
            agent = await self._bookings.get_agent(agent_id)
        except Exception as e:
            await log_warning(f"Не удалось получить водителя {agent_id}: {e}")
            return DEFAULT_AGENT_NAME

        if agent is None or not agent.display_name:
            return DEFAULT_AGENT_NAME

        self._remember(agent_id, agent.display_name)
        return agent.display_name

    def _remember(self, agent_id: str, name: str) -> None:
        self._agent_names.pop(agent_id, None)
        while len(self._agent_names) >= self._max_cached_agents:
            del self._agent_names[next(iter(self._agent_names))]
        self._agent_names[agent_id] = (name, monotonic() + self._name_ttl)

    async def _booking(self, booking_id: str) -> Optional[BookingInfo]:
        try:
            return await self._bookings.get_booking(booking_id)
        except Exception as e:
            await log_warning(f"Не удалось получить бронирование {booking_id}: {e}")
            return None

    async def _eta(self, row: LocationRow, dest_lat: float, dest_lng: float) -> Optional[EtaInfo]:
        if self._routing is None:
            return None
        try:
            return await self._routing.calculate_eta(row.latitude, row.longitude, dest_lat, dest_lng)
        except Exception as e:
            await log_warning(f"Не удалось рассчитать ETA для водителя {row.agent_id}: {e}")
            return None
