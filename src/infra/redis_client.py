# src/infra/redis_client.py
"""
Клиент Redis для push-уведомлений об изменениях позиций (Pub/Sub).
"""

from __future__ import annotations

import json
from typing import Any

import redis.asyncio as redis
from redis.asyncio.client import PubSub

from src.common.logger import get_logger, log_error, log_info
from src.common.constants import TypeMsg

logger = get_logger("redis")


class RedisClient:
    """
    Асинхронный клиент Redis.
    Поддерживает:
    - Публикацию JSON-сообщений в каналы с namespace
    - Создание PubSub для подписчиков
    """

    _instance: RedisClient | None = None
    _client: redis.Redis | None = None

    def __new__(cls) -> RedisClient:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self) -> None:
        """Инициализация (вызывается только один раз благодаря Singleton)."""
        if hasattr(self, "_initialized"):
            return
        self._initialized = True
        self._client = None
        self._namespace = "tracking"

    @property
    def client(self) -> redis.Redis:
        """Возвращает клиент Redis."""
        if self._client is None:
            raise RuntimeError("Redis клиент не инициализирован. Вызовите connect() сначала.")
        return self._client

    @property
    def is_connected(self) -> bool:
        return self._client is not None

    def channel(self, name: str) -> str:
        """Добавляет namespace к имени канала."""
        return f"{self._namespace}:{name}"

    async def connect(
        self,
        url: str | None = None,
        max_connections: int = 50,
        namespace: str | None = None,
    ) -> None:
        """
        Подключается к Redis.

        Args:
            url: URL Redis (если None, берётся из конфига)
            max_connections: Максимальное количество соединений
            namespace: Префикс каналов
        """
        if self._client is not None:
            return

        if url is None:
            from src.config import settings
            url = settings.redis.url
            max_connections = settings.redis.REDIS_MAX_CONNECTIONS
            namespace = namespace or settings.redis.REDIS_NAMESPACE

        if namespace:
            self._namespace = namespace

        await log_info("Подключение к Redis...", type_msg=TypeMsg.INFO)

        self._client = redis.from_url(
            url,
            max_connections=max_connections,
            decode_responses=True,
        )

        # Проверяем подключение
        await self._client.ping()

        await log_info("Подключение к Redis установлено", type_msg=TypeMsg.INFO)

    async def disconnect(self) -> None:
        """Закрывает соединение с Redis."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            await log_info("Соединение с Redis закрыто", type_msg=TypeMsg.INFO)

    # =========================================================================
    # PUB/SUB
    # =========================================================================

    async def publish(self, channel: str, payload: dict[str, Any]) -> int:
        """
        Публикует JSON-сообщение.

        Args:
            channel: Имя канала без namespace
            payload: Данные сообщения

        Returns:
            Количество получателей
        """
        message = json.dumps(payload, ensure_ascii=False, default=str)
        return await self.client.publish(self.channel(channel), message)

    def pubsub(self) -> PubSub:
        """Создаёт PubSub-объект (отдельное соединение на подписчика)."""
        return self.client.pubsub(ignore_subscribe_messages=True)

    # =========================================================================
    # HEALTH CHECK
    # =========================================================================

    async def health_check(self) -> bool:
        """
        Проверяет здоровье подключения к Redis.

        Returns:
            True если подключение работает
        """
        try:
            return await self.client.ping()
        except Exception as e:
            await log_error(f"Health check Redis failed: {e}")
            return False


def get_redis() -> RedisClient:
    """
    Возвращает глобальный экземпляр RedisClient.

    Returns:
        RedisClient
    """
    return RedisClient()


async def init_redis() -> None:
    """
    Инициализирует подключение к Redis.
    Использует настройки из конфигурации.
    """
    from src.config import settings

    redis_client = get_redis()
    await redis_client.connect(
        url=settings.redis.url,
        max_connections=settings.redis.REDIS_MAX_CONNECTIONS,
        namespace=settings.redis.REDIS_NAMESPACE,
    )
    await log_info(
        f"Redis подключён: {settings.redis.REDIS_HOST}:{settings.redis.REDIS_PORT}/{settings.redis.REDIS_DB}",
        type_msg=TypeMsg.INFO,
    )


async def close_redis() -> None:
    """
    Закрывает подключение к Redis.
    """
    redis_client = get_redis()
    await redis_client.disconnect()
    await log_info("Redis отключён", type_msg=TypeMsg.INFO)
