# src/core/tracking/sync.py
"""
Подписчик на позиции водителей (пассажир, диспетчер).

Два независимых пути доставки:
- push: уведомления об изменениях из PushChannel
- poll: периодический опрос хранилища с адаптивным интервалом

Оба пути кладут строки в одну очередь; единственная задача-применитель
отбрасывает всё, что не новее high-water mark, обогащает и отдаёт
потребителю. Так поток для потребителя монотонен без блокировок.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional, Protocol

from src.common.constants import ConnectionStatus, TypeMsg
from src.common.logger import log_error, log_info, log_warning
from src.config.loader import SyncSettings
from src.core.tracking.capabilities import cancel_task, notify
from src.core.tracking.enrichment import LocationEnricher
from src.core.tracking.store import (
    ChangeEvent,
    ChangeKind,
    PositionStore,
    PushChannel,
    PushStatus,
    PushSubscription,
)
from src.shared.models.tracking import (
    BookingInfo,
    EnrichedPosition,
    LocationRow,
    SubscriptionScope,
    utc_now,
)

UpdateCallback = Callable[[EnrichedPosition], Any]
StatusCallback = Callable[[ConnectionStatus], Any]


class ActiveBookingLookup(Protocol):
    async def list_active_bookings(self) -> list[BookingInfo]: ...


class DeliverySource(str, Enum):
    """Откуда пришла строка."""
    SNAPSHOT = "snapshot"
    PUSH = "push"
    POLL = "poll"


@dataclass(frozen=True)
class Delivery:
    """Строка в очереди применения."""
    source: DeliverySource
    row: LocationRow


_PUSH_STATUS_MAP: dict[PushStatus, ConnectionStatus] = {
    PushStatus.SUBSCRIBED: ConnectionStatus.CONNECTED,
    PushStatus.ERROR: ConnectionStatus.RECONNECTING,
    PushStatus.TIMED_OUT: ConnectionStatus.RECONNECTING,
    PushStatus.CLOSED: ConnectionStatus.DISCONNECTED,
}


class PollBackoff:
    """Интервал опроса между floor и ceiling."""

    def __init__(self, config: SyncSettings) -> None:
        self._floor = config.POLL_INTERVAL_FLOOR
        self._ceiling = config.POLL_INTERVAL_CEILING
        self._idle_factor = config.POLL_IDLE_FACTOR
        self._error_factor = config.POLL_ERROR_FACTOR
        self.interval = self._floor

    def reset(self) -> None:
        self.interval = self._floor

    def on_empty(self) -> None:
        self.interval = min(self.interval * self._idle_factor, self._ceiling)

    def on_error(self) -> None:
        self.interval = min(self.interval * self._error_factor, self._ceiling)


class Subscription:
    """
    Открытая подписка на область (бронирование или все активные).

    unsubscribe() идемпотентен; после него ни один колбэк не вызывается.
    Поддерживает `async with`.
    """

    def __init__(
        self,
        scope: SubscriptionScope,
        on_update: UpdateCallback,
        on_status: StatusCallback | None,
        store: PositionStore,
        push_channel: PushChannel,
        enricher: LocationEnricher,
        bookings: ActiveBookingLookup | None,
        config: SyncSettings,
        on_closed: Callable[["Subscription"], None] | None = None,
    ) -> None:
        self.scope = scope
        self._on_update: UpdateCallback | None = on_update
        self._on_status: StatusCallback | None = on_status
        self._store = store
        self._push_channel = push_channel
        self._enricher = enricher
        self._bookings = bookings
        self._config = config
        self._on_closed = on_closed

        self._queue: asyncio.Queue[Delivery] = asyncio.Queue()
        self._backoff = PollBackoff(config)
        self._started_at = utc_now()
        self._high_water_mark: datetime | None = None
        self._status = ConnectionStatus.DISCONNECTED
        self._active = True

        self._push: PushSubscription | None = None
        self._apply_task: asyncio.Task | None = None
        self._poll_task: asyncio.Task | None = None
        self._bootstrap_task: asyncio.Task | None = None

    # =========================================================================
    # СОСТОЯНИЕ
    # =========================================================================

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def high_water_mark(self) -> datetime | None:
        return self._high_water_mark

    @property
    def poll_interval(self) -> float:
        return self._backoff.interval

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================================================================

    def start(self) -> None:
        self._apply_task = asyncio.create_task(self._apply_loop())
        self._bootstrap_task = asyncio.create_task(self._bootstrap())
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def unsubscribe(self) -> None:
        """Закрывает push-канал, отменяет опрос и применение."""
        if not self._active:
            return
        self._active = False
        self._on_update = None
        self._on_status = None

        await log_info("Отписка", type_msg=TypeMsg.DEBUG, extra={"scope": self.scope.channel_name})

        for task in (self._bootstrap_task, self._poll_task, self._apply_task):
            await cancel_task(task)

        if self._push is not None:
            push, self._push = self._push, None
            try:
                await push.close()
            except Exception as e:
                await log_warning(f"Ошибка закрытия push-подписки {self.scope.channel_name}: {e}")

        if self._on_closed is not None:
            self._on_closed(self)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.unsubscribe()

    async def _bootstrap(self) -> None:
        """Открывает push и загружает начальный снимок."""
        try:
            push = await self._push_channel.subscribe(self.scope, self._on_push_change, self._on_push_status)
        except Exception as e:
            await log_warning(f"Не удалось открыть push-подписку {self.scope.channel_name}: {e}")
            await self._set_status(ConnectionStatus.RECONNECTING)
        else:
            if not self._active:
                await push.close()
                return
            self._push = push

        try:
            rows = await self._fetch_snapshot()
        except Exception as e:
            # Опрос догонит пропущенное
            await log_warning(f"Не удалось загрузить снимок {self.scope.channel_name}: {e}")
            return

        for row in rows:
            self._enqueue(DeliverySource.SNAPSHOT, row)

    async def _fetch_snapshot(self) -> list[LocationRow]:
        if not self.scope.is_all_active:
            row = await self._store.fetch_current_for_booking(self.scope.booking_id)
            return [row] if row else []

        if self._bookings is None:
            return []

        bookings = await self._bookings.list_active_bookings()
        agent_ids = sorted({b.assigned_agent_id for b in bookings if b.assigned_agent_id})
        rows = await self._store.fetch_current_for_agents(agent_ids)
        return sorted(rows, key=lambda r: r.updated_at)

    # =========================================================================
    # PUSH
    # =========================================================================

    async def _on_push_change(self, event: ChangeEvent) -> None:
        if not self._active or event.kind is ChangeKind.DELETE:
            return
        self._backoff.reset()
        self._enqueue(DeliverySource.PUSH, event.row)

    async def _on_push_status(self, status: PushStatus) -> None:
        if not self._active:
            return
        if status is PushStatus.SUBSCRIBED:
            self._backoff.reset()
        await self._set_status(_PUSH_STATUS_MAP[status])

    # =========================================================================
    # POLL
    # =========================================================================

    async def _poll_loop(self) -> None:
        while self._active:
            await asyncio.sleep(self._backoff.interval)
            if not self._active:
                return
            await self._poll_once()

    async def _poll_once(self) -> None:
        since = self._high_water_mark or self._started_at
        try:
            rows = await self._store.fetch_updated_since(self.scope, since, self._config.POLL_BATCH_LIMIT)
        except Exception as e:
            self._backoff.on_error()
            await log_warning(
                f"Ошибка опроса {self.scope.channel_name}: {e}; следующий через {self._backoff.interval:.1f}с"
            )
            return

        if not self._active:
            return

        if not rows:
            self._backoff.on_empty()
            return

        await log_info(f"Опрос {self.scope.channel_name}: {len(rows)} обновлений", type_msg=TypeMsg.DEBUG)
        for row in rows:
            self._enqueue(DeliverySource.POLL, row)
        self._backoff.reset()
        await self._set_status(ConnectionStatus.CONNECTED)

    # =========================================================================
    # ПРИМЕНЕНИЕ
    # =========================================================================

    def _enqueue(self, source: DeliverySource, row: LocationRow) -> None:
        if self._active:
            self._queue.put_nowait(Delivery(source=source, row=row))

    async def _apply_loop(self) -> None:
        while self._active:
            delivery = await self._queue.get()
            await self._apply(delivery)

    async def _apply(self, delivery: Delivery) -> None:
        """Единственная точка, где двигается high-water mark."""
        if not self._active:
            return

        row = delivery.row
        if self._high_water_mark is not None and row.updated_at <= self._high_water_mark:
            return

        enriched = await self._enrich(row)
        if not self._active:
            return

        self._high_water_mark = row.updated_at
        if self._on_update is not None:
            await notify(self._on_update, enriched)

    async def _enrich(self, row: LocationRow) -> EnrichedPosition:
        try:
            return await self._enricher.enrich(row)
        except Exception as e:
            await log_error(f"Ошибка обогащения позиции {row.agent_id}: {e}", exc_info=True)
            return EnrichedPosition(
                agent_id=row.agent_id,
                booking_id=row.booking_id,
                latitude=row.latitude,
                longitude=row.longitude,
                heading=row.heading,
                speed=row.speed,
                accuracy=row.accuracy,
                timestamp=row.updated_at,
            )

    async def _set_status(self, status: ConnectionStatus) -> None:
        if status == self._status or not self._active:
            return
        self._status = status
        if self._on_status is not None:
            await notify(self._on_status, status)


class SyncSubscriber:
    """Фабрика подписок с общими зависимостями."""

    def __init__(
        self,
        store: PositionStore,
        push_channel: PushChannel,
        enricher: LocationEnricher,
        bookings: ActiveBookingLookup | None = None,
        config: SyncSettings | None = None,
    ) -> None:
        self._store = store
        self._push_channel = push_channel
        self._enricher = enricher
        self._bookings = bookings
        self._config = config or SyncSettings()
        self._subscriptions: set[Subscription] = set()

    @property
    def active_subscriptions(self) -> int:
        return len(self._subscriptions)

    async def subscribe(
        self,
        scope: SubscriptionScope,
        on_update: UpdateCallback,
        on_status: Optional[StatusCallback] = None,
    ) -> Subscription:
        """
        Открывает подписку. Снимок, push и опрос запускаются в фоне.

        Args:
            scope: SubscriptionScope.booking(id) или SubscriptionScope.all_active()
            on_update: Колбэк на каждую новую позицию
            on_status: Колбэк на смену статуса соединения
        """
        subscription = Subscription(
            scope,
            on_update,
            on_status,
            store=self._store,
            push_channel=self._push_channel,
            enricher=self._enricher,
            bookings=self._bookings,
            config=self._config,
            on_closed=self._subscriptions.discard,
        )
        self._subscriptions.add(subscription)
        subscription.start()

        await log_info("Новая подписка", type_msg=TypeMsg.DEBUG, extra={"scope": scope.channel_name})
        return subscription

    async def close(self) -> None:
        """Закрывает все открытые подписки."""
        for subscription in list(self._subscriptions):
            await subscription.unsubscribe()
