# src/services/realtime_ws/app.py
"""
FastAPI приложение для Realtime WebSocket Gateway.

WebSocket endpoints:
- /ws/tracking/{booking_id} — позиция водителя бронирования (пассажир)
- /ws/tracking — все активные водители (диспетчер)

Сообщения сервера:
- {"type": "location", "data": {...EnrichedPosition}}
- {"type": "status", "status": "connected|reconnecting|disconnected"}
- {"type": "pong"}

REST endpoints:
- GET /health — проверка здоровья
- GET /stats — статистика соединений
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from src.common.constants import ConnectionStatus
from src.common.logger import setup_logging
from src.core.tracking.sync import SyncSubscriber
from src.infra.database import get_db
from src.infra.redis_client import get_redis
from src.services.realtime_ws.connection_manager import ConnectionManager, TrackingConnection
from src.shared.models.common import HealthStatus
from src.shared.models.tracking import EnrichedPosition, SubscriptionScope

SERVICE_NAME = "realtime_ws_gateway"
SERVICE_VERSION = "1.0.0"


# === MODELS ===

class StatsResponse(BaseModel):
    """Статистика соединений."""
    active_connections: int
    total_connections_ever: int
    total_messages_sent: int
    connections_by_scope: dict[str, int]
    active_subscriptions: int


# === LIFESPAN ===

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Жизненный цикл приложения."""
    from src.config import settings
    from src.core.bookings.repository import BookingRepository
    from src.core.geo.service import RoutingService
    from src.core.tracking.enrichment import LocationEnricher
    from src.core.tracking.push_channel import RedisPushChannel
    from src.core.tracking.repository import PostgresPositionStore
    from src.infra.database import close_db, init_db
    from src.infra.redis_client import close_redis, init_redis

    setup_logging()
    await init_db(application_name=SERVICE_NAME)
    await init_redis()

    bookings = BookingRepository(get_db())
    routing = RoutingService()
    app.state.subscriber = SyncSubscriber(
        store=PostgresPositionStore(get_db(), get_redis()),
        push_channel=RedisPushChannel(get_redis(), reconnect_delay=settings.sync.PUSH_RECONNECT_DELAY),
        enricher=LocationEnricher(bookings, routing, name_ttl=settings.sync.AGENT_NAME_TTL),
        bookings=bookings,
        config=settings.sync,
    )

    yield

    await app.state.subscriber.close()
    await routing.close()
    await close_redis()
    await close_db()


# === APP ===

app = FastAPI(
    title="Realtime WebSocket Gateway",
    description="WebSocket сервис для live-tracking водителей.",
    version=SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

manager = ConnectionManager()


# === HEALTH CHECK ===

async def _dependency_status() -> dict[str, str]:
    return {
        "postgres": "healthy" if await get_db().health_check() else "unhealthy",
        "redis": "healthy" if await get_redis().health_check() else "unhealthy",
    }


@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check() -> HealthStatus:
    """Проверка здоровья сервиса."""
    subscriber: SyncSubscriber | None = getattr(app.state, "subscriber", None)
    deps = await _dependency_status()
    healthy = subscriber is not None and all(v == "healthy" for v in deps.values())

    return HealthStatus(
        status="healthy" if healthy else "degraded",
        service=SERVICE_NAME,
        version=SERVICE_VERSION,
        dependencies=deps,
    )


# === STATS ===

@app.get("/stats", response_model=StatsResponse, tags=["Stats"])
async def get_stats() -> StatsResponse:
    """Получить статистику соединений."""
    subscriber: SyncSubscriber | None = getattr(app.state, "subscriber", None)
    return StatsResponse(
        **manager.get_stats(),
        active_subscriptions=subscriber.active_subscriptions if subscriber else 0,
    )


# === WEBSOCKET ENDPOINTS ===

@app.websocket("/ws/tracking/{booking_id}")
async def websocket_booking(websocket: WebSocket, booking_id: str) -> None:
    """
    Позиция водителя одного бронирования.

    Входящие сообщения:
    - {"action": "ping"}
    """
    await _serve(websocket, SubscriptionScope.booking(booking_id))


@app.websocket("/ws/tracking")
async def websocket_all_active(websocket: WebSocket) -> None:
    """Все активные водители (карта диспетчера)."""
    await _serve(websocket, SubscriptionScope.all_active())


async def _serve(websocket: WebSocket, scope: SubscriptionScope) -> None:
    """Связывает соединение с подпиской до отключения клиента."""
    subscriber: SyncSubscriber = websocket.app.state.subscriber
    conn = await manager.connect(websocket, scope)

    async def on_update(position: EnrichedPosition) -> None:
        await manager.send_location(conn, position)

    async def on_status(status: ConnectionStatus) -> None:
        await manager.send_status(conn, status)

    subscription = await subscriber.subscribe(scope, on_update, on_status)
    try:
        async with subscription:
            while True:
                data = await websocket.receive_json()
                await _handle_client_message(conn, data)
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(conn)


async def _handle_client_message(conn: TrackingConnection, data: dict[str, Any]) -> None:
    """Обработать сообщение от клиента."""
    if data.get("action") == "ping":
        await manager.send_personal(conn, {"type": "pong"})


# === STARTUP ===

if __name__ == "__main__":
    import uvicorn
    from src.config import settings

    uvicorn.run(app, host="0.0.0.0", port=settings.deployment.REALTIME_WS_GATEWAY_PORT)
