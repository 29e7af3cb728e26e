# src/core/tracking/route_history.py
"""
Накопитель истории маршрута для воспроизведения поездки.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from src.core.tracking.store import PositionStore
from src.shared.models.tracking import Position, RoutePoint, utc_now


@dataclass
class RouteStats:
    """Сводка по маршруту."""
    total_points: int
    start_time: datetime
    end_time: datetime
    duration_minutes: int


class RouteAccumulator:
    """
    Пишет и читает append-only историю маршрута.

    Запись идёт тем же путём, что и heartbeat публикатора,
    ошибки хранилища пробрасываются вызывающему.
    """

    def __init__(self, store: PositionStore) -> None:
        self._store = store

    async def record(self, booking_id: str, agent_id: str, position: Position) -> RoutePoint:
        """Добавляет точку маршрута."""
        point = RoutePoint(
            booking_id=booking_id,
            agent_id=agent_id,
            latitude=position.latitude,
            longitude=position.longitude,
            heading=position.heading,
            speed=position.speed,
            recorded_at=utc_now(),
        )
        await self._store.append_history(point)
        return point

    async def get_history(self, booking_id: str) -> list[RoutePoint]:
        """Точки маршрута бронирования в порядке записи."""
        return await self._store.fetch_history(booking_id)

    async def get_route_geojson(self, booking_id: str) -> Optional[dict[str, Any]]:
        """
        Маршрут как GeoJSON LineString.

        Returns:
            None, если точек меньше двух
        """
        points = await self.get_history(booking_id)
        if len(points) < 2:
            return None

        return {
            "type": "LineString",
            "coordinates": [[p.longitude, p.latitude] for p in points],
        }

    async def get_route_stats(self, booking_id: str) -> Optional[RouteStats]:
        """Статистика маршрута или None, если истории нет."""
        points = await self.get_history(booking_id)
        if not points:
            return None

        start_time = points[0].recorded_at
        end_time = points[-1].recorded_at
        return RouteStats(
            total_points=len(points),
            start_time=start_time,
            end_time=end_time,
            duration_minutes=round((end_time - start_time).total_seconds() / 60),
        )
