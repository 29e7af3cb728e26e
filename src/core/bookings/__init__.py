# src/core/bookings/__init__.py
"""
Бронирования и водители (чтение для трекинга).
"""

from src.core.bookings.repository import BookingRepository

__all__ = [
    "BookingRepository",
]
