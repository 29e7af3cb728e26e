# src/core/tracking/push_channel.py
"""
Push-канал изменений позиций на Redis Pub/Sub.

Канал области: location:booking:{booking_id} или location:all
(с namespace клиента Redis).
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

from pydantic import ValidationError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info, log_warning
from src.core.tracking.capabilities import cancel_task
from src.core.tracking.store import (
    ChangeEvent,
    ChangeHandler,
    ChangeKind,
    PushChannel,
    PushStatus,
    PushStatusHandler,
    PushSubscription,
)
from src.infra.redis_client import RedisClient
from src.shared.models.tracking import LocationRow, SubscriptionScope


def decode_change(data: Any) -> ChangeEvent | None:
    """Разбирает сообщение Pub/Sub; None — сообщение не распознано."""
    if isinstance(data, bytes):
        data = data.decode("utf-8")
    try:
        payload = json.loads(data)
        return ChangeEvent(
            kind=ChangeKind(payload["kind"]),
            row=LocationRow.model_validate(payload["row"]),
        )
    except (TypeError, ValueError, KeyError, ValidationError):
        return None


class RedisPushSubscription(PushSubscription):
    """
    Подписка на один канал.

    Пока подписка открыта, соединение восстанавливается
    с фиксированной задержкой.
    """

    def __init__(
        self,
        redis: RedisClient,
        scope: SubscriptionScope,
        on_change: ChangeHandler,
        on_status: PushStatusHandler,
        reconnect_delay: float,
        poll_timeout: float = 1.0,
    ) -> None:
        self._redis = redis
        self._scope = scope
        self._on_change = on_change
        self._on_status = on_status
        self._reconnect_delay = reconnect_delay
        self._poll_timeout = poll_timeout
        self._closed = False
        self._task: asyncio.Task | None = None

    @property
    def channel(self) -> str:
        return self._redis.channel(self._scope.channel_name)

    def start(self) -> None:
        self._task = asyncio.create_task(self._run())

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        await cancel_task(self._task)
        self._task = None

        await self._on_status(PushStatus.CLOSED)

    async def _run(self) -> None:
        while not self._closed:
            pubsub = None
            try:
                pubsub = self._redis.pubsub()
                await pubsub.subscribe(self.channel)
                await log_info(f"Подписка на канал {self.channel}", type_msg=TypeMsg.DEBUG)
                await self._on_status(PushStatus.SUBSCRIBED)
                await self._listen(pubsub)
            except (RedisTimeoutError, asyncio.TimeoutError) as e:
                await log_warning(f"Таймаут push-канала {self.channel}: {e}")
                await self._on_status(PushStatus.TIMED_OUT)
            except (RedisError, OSError) as e:
                await log_warning(f"Ошибка push-канала {self.channel}: {e}")
                await self._on_status(PushStatus.ERROR)
            except Exception as e:
                await log_error(f"Сбой слушателя push-канала {self.channel}: {e}", exc_info=True)
                await self._on_status(PushStatus.ERROR)
            finally:
                if pubsub is not None:
                    await self._release(pubsub)

            if not self._closed:
                await asyncio.sleep(self._reconnect_delay)

    async def _listen(self, pubsub: Any) -> None:
        while not self._closed:
            message = await pubsub.get_message(
                ignore_subscribe_messages=True,
                timeout=self._poll_timeout,
            )
            if message is None or message.get("type") != "message":
                continue

            event = decode_change(message.get("data"))
            if event is None:
                await log_warning(f"Нераспознанное сообщение в канале {self.channel}")
                continue

            await self._on_change(event)

    async def _release(self, pubsub: Any) -> None:
        try:
            await pubsub.unsubscribe()
            await pubsub.aclose()
        except (RedisError, OSError) as e:
            await log_info(f"Закрытие PubSub {self.channel}: {e}", type_msg=TypeMsg.DEBUG)


class RedisPushChannel(PushChannel):
    """Фабрика подписок Redis Pub/Sub."""

    def __init__(self, redis: RedisClient, reconnect_delay: float = 5.0) -> None:
        self._redis = redis
        self._reconnect_delay = reconnect_delay

    async def subscribe(
        self,
        scope: SubscriptionScope,
        on_change: ChangeHandler,
        on_status: PushStatusHandler,
    ) -> PushSubscription:
        subscription = RedisPushSubscription(
            self._redis,
            scope,
            on_change,
            on_status,
            reconnect_delay=self._reconnect_delay,
        )
        subscription.start()
        return subscription
