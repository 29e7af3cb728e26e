# src/core/tracking/repository.py
"""
Хранилище позиций на PostgreSQL с публикацией изменений в Redis.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from asyncpg import Record

from src.common.constants import TypeMsg
from src.common.logger import log_info, log_warning
from src.core.tracking.errors import TransientNetworkError
from src.core.tracking.store import ChangeKind, PositionStore
from src.infra.database import CONNECTION_ERRORS, DatabaseManager
from src.infra.redis_client import RedisClient
from src.shared.models.tracking import LocationRow, RoutePoint, SubscriptionScope

ALL_ACTIVE_CHANNEL = SubscriptionScope.all_active().channel_name

_LOCATION_COLUMNS = """
    driver_id, booking_id, latitude, longitude,
    heading, speed, accuracy, updated_at, is_active
"""


def encode_change(kind: ChangeKind, row: LocationRow) -> dict[str, Any]:
    """Сообщение Pub/Sub об изменении строки."""
    return {"kind": kind.value, "row": row.model_dump(mode="json")}


class PostgresPositionStore(PositionStore):
    """
    Текущие позиции (driver_locations) и история маршрутов (driver_route_history).

    После каждой записи текущей строки изменение публикуется в каналы
    location:booking:{booking_id} и location:all.
    """

    def __init__(self, db: DatabaseManager, redis: RedisClient | None = None) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
            redis: Клиент Redis для push-уведомлений (None — без публикации)
        """
        self._db = db
        self._redis = redis

    # =========================================================================
    # ЗАПИСЬ
    # =========================================================================

    async def upsert_current(self, row: LocationRow) -> None:
        try:
            record = await self._db.fetchrow(
                f"""
                INSERT INTO driver_locations (
                    driver_id, booking_id, latitude, longitude,
                    heading, speed, accuracy, updated_at, is_active
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                ON CONFLICT (driver_id) DO UPDATE SET
                    booking_id = EXCLUDED.booking_id,
                    latitude = EXCLUDED.latitude,
                    longitude = EXCLUDED.longitude,
                    heading = EXCLUDED.heading,
                    speed = EXCLUDED.speed,
                    accuracy = EXCLUDED.accuracy,
                    updated_at = EXCLUDED.updated_at,
                    is_active = EXCLUDED.is_active
                RETURNING {_LOCATION_COLUMNS}, (xmax = 0) AS inserted
                """,
                row.agent_id,
                row.booking_id,
                row.latitude,
                row.longitude,
                row.heading,
                row.speed,
                row.accuracy,
                row.updated_at,
                row.is_active,
            )
        except CONNECTION_ERRORS as e:
            raise TransientNetworkError(f"Не удалось сохранить позицию водителя {row.agent_id}: {e}") from e

        if record is None:
            return

        kind = ChangeKind.INSERT if record["inserted"] else ChangeKind.UPDATE
        await self._publish(kind, self._row_from_record(record))

    async def mark_inactive(self, agent_id: str) -> None:
        try:
            record = await self._db.fetchrow(
                f"""
                UPDATE driver_locations
                SET is_active = FALSE
                WHERE driver_id = $1
                RETURNING {_LOCATION_COLUMNS}
                """,
                agent_id,
            )
        except CONNECTION_ERRORS as e:
            raise TransientNetworkError(f"Не удалось деактивировать позицию водителя {agent_id}: {e}") from e

        if record is not None:
            await log_info(f"Позиция водителя {agent_id} помечена неактивной", type_msg=TypeMsg.DEBUG)
            await self._publish(ChangeKind.UPDATE, self._row_from_record(record))

    async def append_history(self, point: RoutePoint) -> None:
        try:
            await self._db.execute(
                """
                INSERT INTO driver_route_history (
                    booking_id, driver_id, latitude, longitude, heading, speed, recorded_at
                )
                VALUES ($1, $2, $3, $4, $5, $6, $7)
                """,
                point.booking_id,
                point.agent_id,
                point.latitude,
                point.longitude,
                point.heading,
                point.speed,
                point.recorded_at,
            )
        except CONNECTION_ERRORS as e:
            raise TransientNetworkError(f"Не удалось записать точку маршрута {point.booking_id}: {e}") from e

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    async def fetch_current_for_booking(self, booking_id: str) -> Optional[LocationRow]:
        try:
            record = await self._db.fetchrow(
                f"""
                SELECT {_LOCATION_COLUMNS}
                FROM driver_locations
                WHERE booking_id = $1 AND is_active = TRUE
                ORDER BY updated_at DESC
                LIMIT 1
                """,
                booking_id,
            )
        except CONNECTION_ERRORS as e:
            raise TransientNetworkError(f"Не удалось получить позицию бронирования {booking_id}: {e}") from e

        return self._row_from_record(record) if record else None

    async def fetch_current_for_agents(self, agent_ids: list[str]) -> list[LocationRow]:
        if not agent_ids:
            return []

        try:
            records = await self._db.fetch(
                f"""
                SELECT {_LOCATION_COLUMNS}
                FROM driver_locations
                WHERE driver_id = ANY($1::text[])
                ORDER BY updated_at ASC
                """,
                list(agent_ids),
            )
        except CONNECTION_ERRORS as e:
            raise TransientNetworkError(f"Не удалось получить позиции водителей: {e}") from e

        return [self._row_from_record(r) for r in records]

    async def fetch_updated_since(
        self,
        scope: SubscriptionScope,
        since: datetime,
        limit: int,
    ) -> list[LocationRow]:
        conditions = ["is_active = TRUE", "updated_at > $1"]
        args: list[Any] = [since]
        if not scope.is_all_active:
            conditions.append("booking_id = $2")
            args.append(scope.booking_id)
        args.append(limit)
        where = " AND ".join(conditions)

        try:
            records = await self._db.fetch(
                f"""
                SELECT {_LOCATION_COLUMNS}
                FROM driver_locations
                WHERE {where}
                ORDER BY updated_at ASC
                LIMIT ${len(args)}
                """,
                *args,
            )
        except CONNECTION_ERRORS as e:
            raise TransientNetworkError(f"Ошибка опроса позиций: {e}") from e

        return [self._row_from_record(r) for r in records]

    async def fetch_history(self, booking_id: str) -> list[RoutePoint]:
        try:
            records = await self._db.fetch(
                """
                SELECT booking_id, driver_id, latitude, longitude, heading, speed, recorded_at
                FROM driver_route_history
                WHERE booking_id = $1
                ORDER BY recorded_at ASC, id ASC
                """,
                booking_id,
            )
        except CONNECTION_ERRORS as e:
            raise TransientNetworkError(f"Не удалось получить историю маршрута {booking_id}: {e}") from e

        return [
            RoutePoint(
                booking_id=r["booking_id"],
                agent_id=r["driver_id"],
                latitude=r["latitude"],
                longitude=r["longitude"],
                heading=r["heading"],
                speed=r["speed"],
                recorded_at=r["recorded_at"],
            )
            for r in records
        ]

    # =========================================================================
    # ВСПОМОГАТЕЛЬНЫЕ
    # =========================================================================

    async def _publish(self, kind: ChangeKind, row: LocationRow) -> None:
        """
        Публикует изменение в Redis.

        Ошибка публикации не отменяет запись: подписчики догонят опросом.
        """
        if self._redis is None or not self._redis.is_connected:
            return

        payload = encode_change(kind, row)
        channels = [ALL_ACTIVE_CHANNEL]
        if row.booking_id:
            channels.insert(0, SubscriptionScope.booking(row.booking_id).channel_name)

        try:
            for channel in channels:
                await self._redis.publish(channel, payload)
        except Exception as e:
            await log_warning(f"Не удалось опубликовать изменение позиции {row.agent_id}: {e}")

    @staticmethod
    def _row_from_record(record: Record) -> LocationRow:
        return LocationRow(
            agent_id=record["driver_id"],
            booking_id=record["booking_id"],
            latitude=record["latitude"],
            longitude=record["longitude"],
            heading=record["heading"],
            speed=record["speed"],
            accuracy=record["accuracy"],
            updated_at=record["updated_at"],
            is_active=record["is_active"],
        )
