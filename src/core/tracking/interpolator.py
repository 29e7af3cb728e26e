# src/core/tracking/interpolator.py
"""
Плавное движение маркера водителя между дискретными обновлениями.
"""

from __future__ import annotations

from typing import Callable, Optional, Protocol

from src.core.tracking.capabilities import FrameClock
from src.services.utils.geo_utils import normalize_heading

Easing = Callable[[float], float]


def ease_out_cubic(t: float) -> float:
    """Быстрый старт, плавное торможение."""
    return 1 - (1 - t) ** 3


class PoseSink(Protocol):
    """Куда отрисовывается положение маркера."""

    def set_position(self, latitude: float, longitude: float) -> None: ...

    def set_rotation(self, heading: float) -> None: ...

    def remove(self) -> None: ...


class MotionInterpolator:
    """
    Анимирует маркер от текущей (интерполированной) позиции к цели.

    Новая цель во время анимации отменяет текущий кадр и начинает
    движение из той точки, где маркер находится сейчас.
    """

    def __init__(
        self,
        sink: PoseSink,
        clock: FrameClock,
        latitude: float,
        longitude: float,
        easing: Easing = ease_out_cubic,
    ) -> None:
        self._sink = sink
        self._clock = clock
        self._easing = easing
        self._latitude = latitude
        self._longitude = longitude
        self._rotation = 0.0
        self._frame: Optional[int] = None
        self._animation_id = 0
        self._removed = False

        self._sink.set_position(latitude, longitude)

    @property
    def position(self) -> tuple[float, float]:
        """Текущая отрисованная позиция (lat, lng)."""
        return self._latitude, self._longitude

    @property
    def rotation(self) -> float:
        return self._rotation

    @property
    def is_animating(self) -> bool:
        return self._frame is not None

    @property
    def is_removed(self) -> bool:
        return self._removed

    def animate_to(self, target_lat: float, target_lng: float, duration: float = 1.0) -> None:
        """
        Запускает анимацию к цели.

        Args:
            target_lat: Широта цели
            target_lng: Долгота цели
            duration: Длительность в секундах (<= 0 — мгновенный переход)
        """
        if self._removed:
            return

        self._cancel_frame()
        self._animation_id += 1

        if duration <= 0:
            self._render(target_lat, target_lng)
            return

        animation_id = self._animation_id
        start_lat, start_lng = self._latitude, self._longitude
        start_time = self._clock.now()

        def on_frame(timestamp: float) -> None:
            if self._removed or animation_id != self._animation_id:
                return

            progress = min(max((timestamp - start_time) / duration, 0.0), 1.0)
            eased = self._easing(progress)
            self._render(
                start_lat + (target_lat - start_lat) * eased,
                start_lng + (target_lng - start_lng) * eased,
            )

            if progress < 1:
                self._frame = self._clock.request_frame(on_frame)
            else:
                self._frame = None

        self._frame = self._clock.request_frame(on_frame)

    def set_rotation(self, heading: float) -> None:
        """Поворот применяется сразу, без анимации."""
        if self._removed:
            return
        self._rotation = normalize_heading(heading)
        self._sink.set_rotation(self._rotation)

    def remove(self) -> None:
        """Отменяет кадр и убирает маркер. Повторный вызов ничего не делает."""
        if self._removed:
            return
        self._cancel_frame()
        self._removed = True
        self._sink.remove()

    def _cancel_frame(self) -> None:
        if self._frame is not None:
            self._clock.cancel_frame(self._frame)
            self._frame = None

    def _render(self, latitude: float, longitude: float) -> None:
        self._latitude = latitude
        self._longitude = longitude
        self._sink.set_position(latitude, longitude)
