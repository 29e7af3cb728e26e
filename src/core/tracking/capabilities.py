# src/core/tracking/capabilities.py
"""
Платформенные возможности, от которых зависит трекинг.

- PositionSource: источник фиксаций координат (GPS-watch)
- ForegroundStateProvider: активно ли приложение водителя
- FrameClock: источник кадров для анимации маркера

Серверная реализация получает позиции и видимость через HTTP ingest,
а кадры отсчитывает таймером event loop.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Optional

from src.common.logger import log_error
from src.core.tracking.errors import TrackingError
from src.shared.models.tracking import Position

FixHandler = Callable[[Position], Awaitable[None]]
SensorErrorHandler = Callable[[TrackingError], Awaitable[None]]
VisibilityListener = Callable[[bool], Awaitable[None]]
FrameCallback = Callable[[float], None]
CancelFn = Callable[[], None]


async def cancel_task(task: Optional[asyncio.Task]) -> None:
    """
    Отменяет задачу и дожидается её завершения.

    Текущую задачу не трогаем: она завершится сама по флагу жизни.
    """
    if task is None or task.done() or task is asyncio.current_task():
        return
    task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass


async def notify(callback: Callable[..., Any], *args: Any) -> None:
    """
    Вызывает наблюдателя (sync или async).

    Исключения наблюдателя логируются и не распространяются дальше.
    """
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except Exception as e:
        await log_error(f"Ошибка в callback {getattr(callback, '__name__', callback)}: {e}", exc_info=True)


# =============================================================================
# ИСТОЧНИК ПОЗИЦИЙ
# =============================================================================

class PositionSource(ABC):
    """Долгоживущее наблюдение за геолокацией."""

    @abstractmethod
    def watch(self, on_fix: FixHandler, on_error: SensorErrorHandler) -> CancelFn:
        """
        Начинает наблюдение.

        Returns:
            Функция отмены наблюдения
        """


class PushedPositionSource(PositionSource):
    """
    Источник, в который фиксации приходят извне (HTTP ingest от устройства).

    Ошибки датчика не закрывают наблюдение: устройство может
    прислать новые фиксации после сбоя.
    """

    def __init__(self) -> None:
        self._watchers: dict[int, tuple[FixHandler, SensorErrorHandler]] = {}
        self._ids = itertools.count(1)

    @property
    def active_watches(self) -> int:
        """Количество открытых наблюдений."""
        return len(self._watchers)

    def watch(self, on_fix: FixHandler, on_error: SensorErrorHandler) -> CancelFn:
        watch_id = next(self._ids)
        self._watchers[watch_id] = (on_fix, on_error)

        def cancel() -> None:
            self._watchers.pop(watch_id, None)

        return cancel

    async def push_fix(self, position: Position) -> int:
        """Передаёт фиксацию наблюдателям. Возвращает число получателей."""
        watchers = list(self._watchers.values())
        for on_fix, _ in watchers:
            await on_fix(position)
        return len(watchers)

    async def push_error(self, error: TrackingError) -> int:
        """Передаёт ошибку датчика наблюдателям."""
        watchers = list(self._watchers.values())
        for _, on_error in watchers:
            await on_error(error)
        return len(watchers)


# =============================================================================
# ВИДИМОСТЬ ПРИЛОЖЕНИЯ
# =============================================================================

class ForegroundStateProvider(ABC):
    """Признак фонового режима и подписка на его изменения."""

    @property
    @abstractmethod
    def is_background(self) -> bool:
        """True, если приложение свернуто."""

    @abstractmethod
    def add_listener(self, listener: VisibilityListener) -> CancelFn:
        """Подписывает на изменения; возвращает функцию отписки."""


class StaticForegroundState(ForegroundStateProvider):
    """Всегда на переднем плане (серверные и встроенные клиенты)."""

    @property
    def is_background(self) -> bool:
        return False

    def add_listener(self, listener: VisibilityListener) -> CancelFn:
        return lambda: None


class ManualForegroundState(ForegroundStateProvider):
    """Видимость выставляется явно (например, из HTTP API устройства)."""

    def __init__(self, is_background: bool = False) -> None:
        self._is_background = is_background
        self._listeners: list[VisibilityListener] = []

    @property
    def is_background(self) -> bool:
        return self._is_background

    def add_listener(self, listener: VisibilityListener) -> CancelFn:
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def set_background(self, is_background: bool) -> None:
        """Меняет видимость; слушатели вызываются только при изменении."""
        if is_background == self._is_background:
            return
        self._is_background = is_background
        for listener in list(self._listeners):
            await listener(is_background)


# =============================================================================
# ИСТОЧНИК КАДРОВ
# =============================================================================

class FrameClock(ABC):
    """Аналог requestAnimationFrame."""

    @abstractmethod
    def now(self) -> float:
        """Монотонное время в секундах."""

    @abstractmethod
    def request_frame(self, callback: FrameCallback) -> int:
        """Планирует callback(timestamp) на следующий кадр."""

    @abstractmethod
    def cancel_frame(self, handle: int) -> None:
        """Отменяет запланированный кадр."""


class AsyncioFrameClock(FrameClock):
    """Кадры фиксированной частоты на таймерах event loop."""

    def __init__(self, fps: float = 60.0, loop: asyncio.AbstractEventLoop | None = None) -> None:
        if fps <= 0:
            raise ValueError("fps должен быть > 0")
        self._frame_interval = 1.0 / fps
        self._loop = loop
        self._handles: dict[int, asyncio.TimerHandle] = {}
        self._ids = itertools.count(1)

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def now(self) -> float:
        return self.loop.time()

    def request_frame(self, callback: FrameCallback) -> int:
        handle_id = next(self._ids)

        def fire() -> None:
            self._handles.pop(handle_id, None)
            callback(self.loop.time())

        self._handles[handle_id] = self.loop.call_later(self._frame_interval, fire)
        return handle_id

    def cancel_frame(self, handle: int) -> None:
        timer = self._handles.pop(handle, None)
        if timer is not None:
            timer.cancel()

