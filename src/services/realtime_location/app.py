# src/services/realtime_location/app.py
"""
FastAPI приложение для Realtime Location Ingest.

Приём геолокации от устройства водителя и управление сессией трекинга.

Endpoints:
- POST /api/v1/tracking/{agent_id}/start - начать трекинг бронирования
- POST /api/v1/tracking/{agent_id}/fix - фиксация координат с устройства
- POST /api/v1/tracking/{agent_id}/sensor-error - ошибка датчика
- POST /api/v1/tracking/{agent_id}/visibility - приложение свёрнуто/развёрнуто
- POST /api/v1/tracking/{agent_id}/status - смена статуса бронирования
- POST /api/v1/tracking/{agent_id}/stop - остановить трекинг
- GET /api/v1/tracking/{agent_id}/state - состояние публикатора
- GET /api/v1/routes/{booking_id} - история маршрута
- GET /api/v1/routes/{booking_id}/geojson - маршрут GeoJSON
- GET /api/v1/routes/{booking_id}/stats - статистика маршрута
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from src.common.logger import log_error, setup_logging
from src.core.tracking.errors import TransientNetworkError
from src.infra.database import get_db
from src.infra.redis_client import get_redis
from src.services.realtime_location.service import (
    SensorErrorKind,
    SessionNotFoundError,
    TrackingSessionManager,
)
from src.shared.models.common import HealthStatus
from src.shared.models.tracking import Position, RoutePoint, TrackingState, utc_now

SERVICE_NAME = "realtime_location_ingest"
SERVICE_VERSION = "1.0.0"


# === MODELS ===

class StartTrackingRequest(BaseModel):
    """Запуск трекинга."""
    booking_id: str
    booking_status: str
    is_background: bool = False


class StartTrackingResponse(BaseModel):
    """Результат запуска."""
    started: bool
    state: TrackingState


class FixRequest(BaseModel):
    """Фиксация координат с устройства."""
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    heading: float | None = None
    speed: float | None = None  # м/с
    accuracy: float | None = Field(default=None, ge=0)  # метры
    timestamp: datetime | None = None

    def to_position(self) -> Position:
        return Position(
            latitude=self.latitude,
            longitude=self.longitude,
            heading=self.heading,
            speed=self.speed,
            accuracy=self.accuracy,
            timestamp=self.timestamp or utc_now(),
        )


class SensorErrorRequest(BaseModel):
    """Ошибка датчика на устройстве."""
    kind: SensorErrorKind
    message: str | None = None


class VisibilityRequest(BaseModel):
    """Видимость приложения водителя."""
    is_background: bool


class BookingStatusRequest(BaseModel):
    """Новый статус бронирования."""
    status: str


class RouteStatsResponse(BaseModel):
    """Статистика маршрута."""
    total_points: int
    start_time: datetime
    end_time: datetime
    duration_minutes: int


# === DEPENDENCIES ===

def get_manager(request: Request) -> TrackingSessionManager:
    """Менеджер сессий из состояния приложения."""
    manager = getattr(request.app.state, "manager", None)
    if manager is None:
        raise RuntimeError("Service not initialized")
    return manager


# === LIFESPAN ===

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Жизненный цикл приложения."""
    from src.config import settings
    from src.core.tracking.repository import PostgresPositionStore
    from src.infra.database import close_db, init_db
    from src.infra.redis_client import close_redis, init_redis

    setup_logging()
    await init_db(application_name=SERVICE_NAME)
    await init_redis()

    store = PostgresPositionStore(get_db(), get_redis())
    app.state.manager = TrackingSessionManager(store, settings.tracking.to_heartbeat_config())

    yield

    await app.state.manager.close()
    await close_redis()
    await close_db()


# === APP ===

app = FastAPI(
    title="Realtime Location Ingest",
    description="Приём геолокации водителей и публикация heartbeat.",
    version=SERVICE_VERSION,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)


# === HEALTH CHECK ===

async def _dependency_status() -> dict[str, str]:
    return {
        "postgres": "healthy" if await get_db().health_check() else "unhealthy",
        "redis": "healthy" if await get_redis().health_check() else "unhealthy",
    }


@app.get("/health", response_model=HealthStatus, tags=["Health"])
async def health_check(request: Request) -> HealthStatus:
    """Проверка здоровья сервиса."""
    manager: TrackingSessionManager | None = getattr(request.app.state, "manager", None)
    deps = await _dependency_status()
    healthy = manager is not None and all(v == "healthy" for v in deps.values())
    deps["active_sessions"] = str(manager.active_sessions if manager else 0)

    return HealthStatus(
        status="healthy" if healthy else "degraded",
        service=SERVICE_NAME,
        version=SERVICE_VERSION,
        dependencies=deps,
    )


# === TRACKING SESSION ===

@app.post(
    "/api/v1/tracking/{agent_id}/start",
    response_model=StartTrackingResponse,
    tags=["Tracking"],
    summary="Начать трекинг",
)
async def start_tracking(
    agent_id: str,
    body: StartTrackingRequest,
    manager: TrackingSessionManager = Depends(get_manager),
) -> StartTrackingResponse:
    """
    Начать публикацию геолокации для бронирования.

    `started=false`, если статус не отслеживается или водитель
    уже ведёт другое бронирование.
    """
    started, state = await manager.start(
        agent_id,
        body.booking_id,
        body.booking_status,
        is_background=body.is_background,
    )
    return StartTrackingResponse(started=started, state=state)


@app.post(
    "/api/v1/tracking/{agent_id}/fix",
    response_model=TrackingState,
    tags=["Tracking"],
    summary="Фиксация координат",
)
async def push_fix(
    agent_id: str,
    body: FixRequest,
    manager: TrackingSessionManager = Depends(get_manager),
) -> TrackingState:
    try:
        return await manager.push_fix(agent_id, body.to_position())
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Сессия трекинга не найдена")


@app.post(
    "/api/v1/tracking/{agent_id}/sensor-error",
    response_model=TrackingState,
    tags=["Tracking"],
    summary="Ошибка датчика",
)
async def push_sensor_error(
    agent_id: str,
    body: SensorErrorRequest,
    manager: TrackingSessionManager = Depends(get_manager),
) -> TrackingState:
    try:
        return await manager.push_sensor_error(agent_id, body.kind, body.message)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Сессия трекинга не найдена")


@app.post(
    "/api/v1/tracking/{agent_id}/visibility",
    response_model=TrackingState,
    tags=["Tracking"],
    summary="Видимость приложения",
)
async def set_visibility(
    agent_id: str,
    body: VisibilityRequest,
    manager: TrackingSessionManager = Depends(get_manager),
) -> TrackingState:
    try:
        return await manager.set_visibility(agent_id, body.is_background)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Сессия трекинга не найдена")


@app.post(
    "/api/v1/tracking/{agent_id}/status",
    response_model=TrackingState,
    tags=["Tracking"],
    summary="Статус бронирования",
)
async def update_booking_status(
    agent_id: str,
    body: BookingStatusRequest,
    manager: TrackingSessionManager = Depends(get_manager),
) -> TrackingState:
    """Статус вне отслеживаемых останавливает трекинг."""
    try:
        return await manager.update_booking_status(agent_id, body.status)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Сессия трекинга не найдена")


@app.post(
    "/api/v1/tracking/{agent_id}/stop",
    response_model=TrackingState,
    tags=["Tracking"],
    summary="Остановить трекинг",
)
async def stop_tracking(
    agent_id: str,
    manager: TrackingSessionManager = Depends(get_manager),
) -> TrackingState:
    try:
        return await manager.stop(agent_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Сессия трекинга не найдена")


@app.get(
    "/api/v1/tracking/{agent_id}/state",
    response_model=TrackingState,
    tags=["Tracking"],
    summary="Состояние трекинга",
)
async def get_state(
    agent_id: str,
    manager: TrackingSessionManager = Depends(get_manager),
) -> TrackingState:
    try:
        return manager.get_state(agent_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="Сессия трекинга не найдена")


# === ROUTE HISTORY ===

async def _route_call(booking_id: str, coro: Any) -> Any:
    try:
        return await coro
    except TransientNetworkError as e:
        await log_error(f"Ошибка чтения маршрута {booking_id}: {e}")
        raise HTTPException(status_code=503, detail="Хранилище маршрутов недоступно")


@app.get(
    "/api/v1/routes/{booking_id}",
    response_model=list[RoutePoint],
    tags=["Routes"],
    summary="История маршрута",
)
async def get_route_history(
    booking_id: str,
    manager: TrackingSessionManager = Depends(get_manager),
) -> list[RoutePoint]:
    return await _route_call(booking_id, manager.routes.get_history(booking_id))


@app.get(
    "/api/v1/routes/{booking_id}/geojson",
    tags=["Routes"],
    summary="Маршрут в GeoJSON",
    responses={404: {"description": "Недостаточно точек"}},
)
async def get_route_geojson(
    booking_id: str,
    manager: TrackingSessionManager = Depends(get_manager),
) -> dict[str, Any]:
    geojson = await _route_call(booking_id, manager.routes.get_route_geojson(booking_id))
    if geojson is None:
        raise HTTPException(status_code=404, detail="Недостаточно точек маршрута")
    return geojson


@app.get(
    "/api/v1/routes/{booking_id}/stats",
    response_model=RouteStatsResponse,
    tags=["Routes"],
    summary="Статистика маршрута",
    responses={404: {"description": "Маршрут не найден"}},
)
async def get_route_stats(
    booking_id: str,
    manager: TrackingSessionManager = Depends(get_manager),
) -> RouteStatsResponse:
    stats = await _route_call(booking_id, manager.routes.get_route_stats(booking_id))
    if stats is None:
        raise HTTPException(status_code=404, detail="Маршрут не найден")
    return RouteStatsResponse(
        total_points=stats.total_points,
        start_time=stats.start_time,
        end_time=stats.end_time,
        duration_minutes=stats.duration_minutes,
    )


# === STARTUP ===

if __name__ == "__main__":
    import uvicorn
    from src.config import settings

    uvicorn.run(app, host="0.0.0.0", port=settings.deployment.REALTIME_LOCATION_INGEST_PORT)
