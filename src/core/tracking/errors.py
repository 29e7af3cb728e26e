# src/core/tracking/errors.py
"""
Иерархия ошибок трекинга.

Ни одна из них не пересекает публичную границу start/subscribe:
публикатор и подписчик переводят их в состояние и статус соединения.
"""

from __future__ import annotations


class TrackingError(Exception):
    """Базовая ошибка трекинга."""

    retryable: bool = True

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message or self.__class__.__name__


class LocationPermissionError(TrackingError):
    """Пользователь запретил доступ к геолокации. Фатально."""

    retryable = False

    def __init__(self, message: str = "Location permission denied") -> None:
        super().__init__(message)


class TransientSensorError(TrackingError):
    """Временный сбой датчика: таймаут, позиция недоступна."""


class TransientNetworkError(TrackingError):
    """Хранилище или канал недоступны. Повторяется бесконечно."""

