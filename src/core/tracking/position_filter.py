# src/core/tracking/position_filter.py
"""
Фильтр сырых фиксаций: точность и дистанция (jitter filter).
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from src.services.utils.geo_utils import calculate_distance
from src.shared.models.tracking import HeartbeatConfig, Position


class FilterDecision(str, Enum):
    """Решение фильтра по фиксации."""
    REJECT_ACCURACY = "reject_accuracy"
    RETAIN = "retain"
    TRANSMIT = "transmit"
    FORCE_TRANSMIT = "force_transmit"

    @property
    def should_transmit(self) -> bool:
        return self in (FilterDecision.TRANSMIT, FilterDecision.FORCE_TRANSMIT)


class PositionFilter:
    """
    Отсекает неточные фиксации и шум датчика.

    Дистанция считается от последней ОТПРАВЛЕННОЙ позиции,
    а не от последней принятой.
    """

    def __init__(self, config: HeartbeatConfig) -> None:
        self._config = config

    def is_accurate(self, position: Position) -> bool:
        """Фиксация без accuracy считается точной."""
        return position.accuracy is None or position.accuracy <= self._config.max_accuracy_threshold

    def evaluate(self, position: Position, last_sent: Optional[Position]) -> FilterDecision:
        """
        Классифицирует фиксацию.

        Args:
            position: Новая фиксация
            last_sent: Последняя отправленная позиция (None — ещё ничего не отправлено)
        """
        if not self.is_accurate(position):
            return FilterDecision.REJECT_ACCURACY

        if last_sent is None:
            return FilterDecision.TRANSMIT

        distance = self.distance_from(last_sent, position)

        # Страховка от "голодания" фильтра
        if distance >= self._config.max_distance_filter:
            return FilterDecision.FORCE_TRANSMIT
        if distance >= self._config.min_distance_filter:
            return FilterDecision.TRANSMIT
        return FilterDecision.RETAIN

    @staticmethod
    def distance_from(origin: Position, target: Position) -> float:
        """Расстояние между позициями в метрах."""
        return calculate_distance(origin.latitude, origin.longitude, target.latitude, target.longitude)
