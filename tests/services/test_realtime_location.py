# tests/services/test_realtime_location.py
"""
Тесты сервиса приёма геолокации: менеджер сессий и HTTP API.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
import pytest_asyncio

from src.common.constants import ConnectionStatus
from src.services.realtime_location.app import app
from src.services.realtime_location.service import (
    SensorErrorKind,
    SessionNotFoundError,
    TrackingSessionManager,
    sensor_error_from_kind,
)
from src.core.tracking.errors import LocationPermissionError, TransientSensorError
from src.shared.models.tracking import HeartbeatConfig, Position, RoutePoint
from tests.fakes import InMemoryPositionStore, wait_until


@pytest_asyncio.fixture
async def manager(store: InMemoryPositionStore, fast_config: HeartbeatConfig):
    session_manager = TrackingSessionManager(store, fast_config)
    yield session_manager
    await session_manager.close()


@pytest_asyncio.fixture
async def client(manager: TrackingSessionManager):
    app.state.manager = manager
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    del app.state.manager


def dependency(healthy: bool) -> MagicMock:
    component = MagicMock()
    component.health_check = AsyncMock(return_value=healthy)
    return component


def route_point(minutes: int, lat: float, lng: float) -> RoutePoint:
    return RoutePoint(
        booking_id="booking-1",
        agent_id="driver-1",
        latitude=lat,
        longitude=lng,
        recorded_at=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc) + timedelta(minutes=minutes),
    )


class TestSensorErrorFromKind:
    def test_permission_is_fatal(self) -> None:
        error = sensor_error_from_kind(SensorErrorKind.PERMISSION_DENIED)

        assert isinstance(error, LocationPermissionError)
        assert not error.retryable

    def test_timeout_is_transient(self) -> None:
        error = sensor_error_from_kind(SensorErrorKind.TIMEOUT, "no fix in 15s")

        assert isinstance(error, TransientSensorError)
        assert error.message == "no fix in 15s"


class TestTrackingSessionManager:
    """Тесты TrackingSessionManager."""

    @pytest.mark.asyncio
    async def test_start_untrackable_status(self, manager: TrackingSessionManager) -> None:
        started, state = await manager.start("driver-1", "booking-1", "pending")

        assert started is False
        assert state.is_tracking is False
        assert manager.active_sessions == 0

    @pytest.mark.asyncio
    async def test_fix_reaches_store_and_history(
        self, manager: TrackingSessionManager, store: InMemoryPositionStore, base_position: Position
    ) -> None:
        started, state = await manager.start("driver-1", "booking-1", "on_trip")
        assert started is True
        assert state.is_waiting_for_location

        await manager.push_fix("driver-1", base_position)
        await wait_until(lambda: len(store.upserts) >= 1)

        assert store.upserts[0].agent_id == "driver-1"
        assert store.upserts[0].booking_id == "booking-1"
        assert store.history[0].latitude == base_position.latitude
        state = manager.get_state("driver-1")
        assert state.update_count >= 1
        assert state.connection_status == ConnectionStatus.CONNECTED

    @pytest.mark.asyncio
    async def test_second_booking_rejected(self, manager: TrackingSessionManager) -> None:
        await manager.start("driver-1", "booking-1", "accepted")

        started, state = await manager.start("driver-1", "booking-2", "accepted")

        assert started is False
        assert state.is_tracking is True

    @pytest.mark.asyncio
    async def test_start_in_background(self, manager: TrackingSessionManager, fast_config: HeartbeatConfig) -> None:
        _, state = await manager.start("driver-1", "booking-1", "accepted", is_background=True)

        assert state.is_background is True
        assert manager.get("driver-1").publisher.heartbeat_interval == fast_config.background_interval

    @pytest.mark.asyncio
    async def test_visibility(self, manager: TrackingSessionManager, fast_config: HeartbeatConfig) -> None:
        await manager.start("driver-1", "booking-1", "accepted")

        state = await manager.set_visibility("driver-1", True)

        assert state.is_background is True
        assert manager.get("driver-1").publisher.heartbeat_interval == fast_config.background_interval

    @pytest.mark.asyncio
    async def test_permission_denied_stops_with_fatal_error(
        self, manager: TrackingSessionManager, store: InMemoryPositionStore
    ) -> None:
        await manager.start("driver-1", "booking-1", "accepted")

        state = await manager.push_sensor_error("driver-1", SensorErrorKind.PERMISSION_DENIED)

        assert state.is_tracking is False
        assert state.error == "Location permission denied"
        assert state.error_fatal is True
        assert store.inactive_marks == ["driver-1"]

    @pytest.mark.asyncio
    async def test_transient_error_reconnecting(self, manager: TrackingSessionManager) -> None:
        await manager.start("driver-1", "booking-1", "accepted")

        state = await manager.push_sensor_error("driver-1", SensorErrorKind.TIMEOUT)

        assert state.is_tracking is True
        assert state.connection_status == ConnectionStatus.RECONNECTING

    @pytest.mark.asyncio
    async def test_status_leaving_trackable_stops(
        self, manager: TrackingSessionManager, store: InMemoryPositionStore
    ) -> None:
        await manager.start("driver-1", "booking-1", "on_trip")

        state = await manager.update_booking_status("driver-1", "completed")

        assert state.is_tracking is False
        assert store.inactive_marks == ["driver-1"]

    @pytest.mark.asyncio
    async def test_stopped_session_is_readable_and_restartable(self, manager: TrackingSessionManager) -> None:
        await manager.start("driver-1", "booking-1", "accepted")

        state = await manager.stop("driver-1")
        assert state.is_tracking is False
        assert manager.get_state("driver-1").is_tracking is False

        started, _ = await manager.start("driver-1", "booking-2", "accepted")
        assert started is True

    @pytest.mark.asyncio
    async def test_unknown_agent(self, manager: TrackingSessionManager, base_position: Position) -> None:
        with pytest.raises(SessionNotFoundError):
            await manager.push_fix("driver-x", base_position)
        with pytest.raises(SessionNotFoundError):
            manager.get_state("driver-x")

    @pytest.mark.asyncio
    async def test_close_stops_everything(self, manager: TrackingSessionManager) -> None:
        await manager.start("driver-1", "booking-1", "accepted")
        await manager.start("driver-2", "booking-2", "accepted")
        assert manager.active_sessions == 2

        await manager.close()

        assert manager.active_sessions == 0
        with pytest.raises(SessionNotFoundError):
            manager.get("driver-1")


class TestLocationApi:
    """HTTP API сервиса."""

    @pytest.mark.asyncio
    async def test_health(self, client: httpx.AsyncClient) -> None:
        with patch("src.services.realtime_location.app.get_db", return_value=dependency(True)), \
                patch("src.services.realtime_location.app.get_redis", return_value=dependency(True)):
            response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "realtime_location_ingest"
        assert data["dependencies"] == {"postgres": "healthy", "redis": "healthy", "active_sessions": "0"}

    @pytest.mark.asyncio
    async def test_health_degraded_without_redis(self, client: httpx.AsyncClient) -> None:
        with patch("src.services.realtime_location.app.get_db", return_value=dependency(True)), \
                patch("src.services.realtime_location.app.get_redis", return_value=dependency(False)):
            response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
        assert response.json()["dependencies"]["redis"] == "unhealthy"

    @pytest.mark.asyncio
    async def test_tracking_flow(self, client: httpx.AsyncClient, store: InMemoryPositionStore) -> None:
        response = await client.post(
            "/api/v1/tracking/driver-1/start",
            json={"booking_id": "booking-1", "booking_status": "on_trip"},
        )
        assert response.status_code == 200
        assert response.json()["started"] is True
        assert response.json()["state"]["is_waiting_for_location"] is True

        response = await client.post(
            "/api/v1/tracking/driver-1/fix",
            json={"latitude": 50.4501, "longitude": 30.5234, "accuracy": 5.0, "speed": 8.0},
        )
        assert response.status_code == 200
        await wait_until(lambda: len(store.upserts) >= 1)

        response = await client.get("/api/v1/tracking/driver-1/state")
        assert response.json()["update_count"] >= 1
        assert response.json()["connection_status"] == "connected"

        response = await client.post("/api/v1/tracking/driver-1/stop")
        assert response.status_code == 200
        assert response.json()["is_tracking"] is False

    @pytest.mark.asyncio
    async def test_start_rejected_status(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/tracking/driver-1/start",
            json={"booking_id": "booking-1", "booking_status": "completed"},
        )

        assert response.status_code == 200
        assert response.json()["started"] is False

    @pytest.mark.asyncio
    async def test_sensor_error_and_visibility(self, client: httpx.AsyncClient) -> None:
        await client.post(
            "/api/v1/tracking/driver-1/start",
            json={"booking_id": "booking-1", "booking_status": "accepted"},
        )

        response = await client.post(
            "/api/v1/tracking/driver-1/sensor-error",
            json={"kind": "position_unavailable"},
        )
        assert response.json()["connection_status"] == "reconnecting"

        response = await client.post("/api/v1/tracking/driver-1/visibility", json={"is_background": True})
        assert response.json()["is_background"] is True

        response = await client.post("/api/v1/tracking/driver-1/status", json={"status": "cancelled"})
        assert response.json()["is_tracking"] is False

    @pytest.mark.asyncio
    async def test_unknown_agent_404(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/api/v1/tracking/driver-x/fix",
            json={"latitude": 50.0, "longitude": 30.0},
        )
        assert response.status_code == 404

        response = await client.get("/api/v1/tracking/driver-x/state")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_fix_422(self, client: httpx.AsyncClient) -> None:
        await client.post(
            "/api/v1/tracking/driver-1/start",
            json={"booking_id": "booking-1", "booking_status": "accepted"},
        )

        response = await client.post(
            "/api/v1/tracking/driver-1/fix",
            json={"latitude": 120.0, "longitude": 30.0},
        )
        assert response.status_code == 422

        response = await client.post(
            "/api/v1/tracking/driver-1/sensor-error",
            json={"kind": "overheated"},
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_route_endpoints(self, client: httpx.AsyncClient, store: InMemoryPositionStore) -> None:
        store.history = [route_point(0, 50.0, 30.0), route_point(12, 50.1, 30.1)]

        response = await client.get("/api/v1/routes/booking-1")
        assert [p["latitude"] for p in response.json()] == [50.0, 50.1]

        response = await client.get("/api/v1/routes/booking-1/geojson")
        assert response.json() == {"type": "LineString", "coordinates": [[30.0, 50.0], [30.1, 50.1]]}

        response = await client.get("/api/v1/routes/booking-1/stats")
        assert response.json()["total_points"] == 2
        assert response.json()["duration_minutes"] == 12

    @pytest.mark.asyncio
    async def test_route_not_found(self, client: httpx.AsyncClient, store: InMemoryPositionStore) -> None:
        store.history = [route_point(0, 50.0, 30.0)]

        assert (await client.get("/api/v1/routes/booking-1/geojson")).status_code == 404
        assert (await client.get("/api/v1/routes/booking-2/stats")).status_code == 404
        assert (await client.get("/api/v1/routes/booking-2")).json() == []

    @pytest.mark.asyncio
    async def test_route_store_unavailable_503(self, client: httpx.AsyncClient, store: InMemoryPositionStore) -> None:
        store.fail_reads = True

        response = await client.get("/api/v1/routes/booking-1")

        assert response.status_code == 503
