# src/core/bookings/repository.py
"""
Репозиторий бронирований и водителей (только чтение).
Нужен трекингу для обогащения позиций и снимка "все активные".
"""

from __future__ import annotations

from typing import Optional

from asyncpg import Record

from src.common.constants import ACTIVE_BOOKING_STATUSES
from src.common.logger import log_error
from src.infra.database import DatabaseManager
from src.shared.models.tracking import AgentInfo, BookingInfo, Destination


class BookingRepository:
    """Репозиторий бронирований."""

    def __init__(self, db: DatabaseManager) -> None:
        """
        Args:
            db: Менеджер базы данных (Dependency Injection)
        """
        self._db = db

    async def get_booking(self, booking_id: str) -> Optional[BookingInfo]:
        """
        Получает бронирование по ID.

        Returns:
            Бронирование или None (нет записи либо ошибка БД)
        """
        try:
            row = await self._db.fetchrow(
                """
                SELECT id, status, assigned_driver_id, customer_name,
                       dropoff_lat, dropoff_lng, dropoff_location
                FROM bookings
                WHERE id = $1
                """,
                booking_id,
            )
        except Exception as e:
            await log_error(f"Ошибка получения бронирования {booking_id}: {e}")
            return None

        if row is None:
            return None
        return self._row_to_booking(row)

    async def get_agent(self, agent_id: str) -> Optional[AgentInfo]:
        """Получает водителя по ID."""
        try:
            row = await self._db.fetchrow(
                "SELECT id, full_name FROM drivers WHERE id = $1",
                agent_id,
            )
        except Exception as e:
            await log_error(f"Ошибка получения водителя {agent_id}: {e}")
            return None

        if row is None:
            return None
        return AgentInfo(id=row["id"], display_name=row["full_name"] or "")

    async def list_active_bookings(self) -> list[BookingInfo]:
        """
        Бронирования в активных статусах с назначенным водителем.

        Returns:
            Список бронирований (пустой при ошибке)
        """
        try:
            rows = await self._db.fetch(
                """
                SELECT id, status, assigned_driver_id, customer_name,
                       dropoff_lat, dropoff_lng, dropoff_location
                FROM bookings
                WHERE status = ANY($1::text[])
                  AND assigned_driver_id IS NOT NULL
                """,
                sorted(ACTIVE_BOOKING_STATUSES),
            )
        except Exception as e:
            await log_error(f"Ошибка получения активных бронирований: {e}")
            return []

        return [self._row_to_booking(row) for row in rows]

    @staticmethod
    def _row_to_booking(row: Record) -> BookingInfo:
        destination = None
        if row["dropoff_lat"] is not None and row["dropoff_lng"] is not None:
            destination = Destination(
                lat=row["dropoff_lat"],
                lng=row["dropoff_lng"],
                label=row["dropoff_location"] or "Destination",
            )

        return BookingInfo(
            id=row["id"],
            status=row["status"],
            destination=destination,
            assigned_agent_id=row["assigned_driver_id"],
            rider_display_name=row["customer_name"],
        )
