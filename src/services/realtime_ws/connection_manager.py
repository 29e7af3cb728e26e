# src/services/realtime_ws/connection_manager.py
"""
Менеджер WebSocket соединений трекинга.
Каждое соединение связано с одной подпиской SyncSubscriber.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from src.common.constants import ConnectionStatus
from src.common.logger import log_warning
from src.shared.models.tracking import EnrichedPosition, SubscriptionScope, utc_now


@dataclass
class TrackingConnection:
    """Информация о соединении."""
    connection_id: int
    websocket: WebSocket
    scope: SubscriptionScope
    connected_at: datetime = field(default_factory=utc_now)
    messages_sent: int = 0


class ConnectionManager:
    """
    Менеджер соединений.

    Поддерживает:
    - Регистрацию соединений по области подписки
    - Отправку позиций и статусов клиенту
    - Статистику
    """

    def __init__(self) -> None:
        self._connections: dict[int, TrackingConnection] = {}
        self._ids = itertools.count(1)
        self._total_connections = 0
        self._total_messages_sent = 0

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    async def connect(self, websocket: WebSocket, scope: SubscriptionScope) -> TrackingConnection:
        """Принимает соединение и регистрирует его."""
        await websocket.accept()

        conn = TrackingConnection(connection_id=next(self._ids), websocket=websocket, scope=scope)
        self._connections[conn.connection_id] = conn
        self._total_connections += 1
        return conn

    def disconnect(self, conn: TrackingConnection) -> None:
        self._connections.pop(conn.connection_id, None)

    async def send_location(self, conn: TrackingConnection, position: EnrichedPosition) -> bool:
        return await self._send(conn, {"type": "location", "data": position.model_dump(mode="json")})

    async def send_status(self, conn: TrackingConnection, status: ConnectionStatus) -> bool:
        return await self._send(conn, {"type": "status", "status": status.value})

    async def send_personal(self, conn: TrackingConnection, message: dict[str, Any]) -> bool:
        return await self._send(conn, message)

    async def _send(self, conn: TrackingConnection, message: dict[str, Any]) -> bool:
        """
        Отправляет сообщение клиенту.

        Returns:
            False, если соединение уже закрыто или отправка не удалась
        """
        if conn.connection_id not in self._connections:
            return False
        if conn.websocket.client_state != WebSocketState.CONNECTED:
            return False

        try:
            await conn.websocket.send_json(message)
        except (RuntimeError, OSError) as e:
            # Клиент ушёл между проверкой и отправкой
            await log_warning(f"Не удалось отправить сообщение в соединение {conn.connection_id}: {e}")
            self.disconnect(conn)
            return False

        conn.messages_sent += 1
        self._total_messages_sent += 1
        return True

    def get_stats(self) -> dict[str, Any]:
        """Статистика соединений."""
        by_scope: dict[str, int] = {}
        for conn in self._connections.values():
            key = "all_active" if conn.scope.is_all_active else "booking"
            by_scope[key] = by_scope.get(key, 0) + 1

        return {
            "active_connections": len(self._connections),
            "total_connections_ever": self._total_connections,
            "total_messages_sent": self._total_messages_sent,
            "connections_by_scope": by_scope,
        }
