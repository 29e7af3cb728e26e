# src/core/tracking/store.py
"""
Контракты хранилища позиций и push-канала.

Хранилище — шов между публикатором и подписчиками:
одна текущая строка на водителя + append-only история.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Optional

from src.shared.models.tracking import LocationRow, RoutePoint, SubscriptionScope


class ChangeKind(str, Enum):
    """Тип изменения строки."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class PushStatus(str, Enum):
    """Статус push-подписки."""
    SUBSCRIBED = "subscribed"
    ERROR = "error"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


@dataclass(frozen=True)
class ChangeEvent:
    """Уведомление об изменении текущей позиции."""
    kind: ChangeKind
    row: LocationRow


ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]
PushStatusHandler = Callable[[PushStatus], Awaitable[None]]


class PositionStore(ABC):
    """
    Хранилище позиций.

    Ошибки записи/чтения пробрасываются как TransientNetworkError —
    решение о повторе принимает вызывающий.
    """

    @abstractmethod
    async def upsert_current(self, row: LocationRow) -> None:
        """Last-writer-wins upsert текущей строки по agent_id."""

    @abstractmethod
    async def mark_inactive(self, agent_id: str) -> None:
        """Помечает текущую строку водителя неактивной."""

    @abstractmethod
    async def append_history(self, point: RoutePoint) -> None:
        """Добавляет неизменяемую точку истории маршрута."""

    @abstractmethod
    async def fetch_current_for_booking(self, booking_id: str) -> Optional[LocationRow]:
        """Активная текущая строка бронирования."""

    @abstractmethod
    async def fetch_current_for_agents(self, agent_ids: list[str]) -> list[LocationRow]:
        """Текущие строки набора водителей."""

    @abstractmethod
    async def fetch_updated_since(
        self,
        scope: SubscriptionScope,
        since: datetime,
        limit: int,
    ) -> list[LocationRow]:
        """Активные строки с updated_at > since, по возрастанию updated_at."""

    @abstractmethod
    async def fetch_history(self, booking_id: str) -> list[RoutePoint]:
        """История маршрута по возрастанию recorded_at."""


class PushSubscription(ABC):
    """Открытая push-подписка."""

    @abstractmethod
    async def close(self) -> None:
        """Закрывает подписку. Идемпотентно."""


class PushChannel(ABC):
    """Поток уведомлений об изменениях, фильтруемый по booking_id."""

    @abstractmethod
    async def subscribe(
        self,
        scope: SubscriptionScope,
        on_change: ChangeHandler,
        on_status: PushStatusHandler,
    ) -> PushSubscription:
        """Открывает подписку; статус сообщается через on_status."""
