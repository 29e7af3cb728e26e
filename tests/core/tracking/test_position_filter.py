# tests/core/tracking/test_position_filter.py
"""
Тесты фильтра фиксаций (точность и дистанция).
"""

import pytest

from src.core.tracking.position_filter import FilterDecision, PositionFilter
from src.shared.models.tracking import HeartbeatConfig, Position
from tests.fakes import offset_position


@pytest.fixture
def position_filter() -> PositionFilter:
    return PositionFilter(HeartbeatConfig(min_distance_filter=10.0, max_distance_filter=100.0,
                                          max_accuracy_threshold=50.0))


class TestAccuracy:
    """Отсев по точности."""

    def test_inaccurate_fix_rejected(self, position_filter: PositionFilter, base_position: Position) -> None:
        """accuracy=60м при пороге 50м отклоняется даже без предыдущей позиции."""
        fix = base_position.model_copy(update={"accuracy": 60.0})
        assert position_filter.evaluate(fix, None) is FilterDecision.REJECT_ACCURACY

    def test_threshold_is_inclusive(self, position_filter: PositionFilter, base_position: Position) -> None:
        fix = base_position.model_copy(update={"accuracy": 50.0})
        assert position_filter.evaluate(fix, None) is FilterDecision.TRANSMIT

    def test_missing_accuracy_is_accepted(self, position_filter: PositionFilter, base_position: Position) -> None:
        fix = base_position.model_copy(update={"accuracy": None})
        assert position_filter.is_accurate(fix)


class TestDistance:
    """Отсев по дистанции от последней отправленной позиции."""

    def test_first_fix_transmitted(self, position_filter: PositionFilter, base_position: Position) -> None:
        assert position_filter.evaluate(base_position, None) is FilterDecision.TRANSMIT

    @pytest.mark.parametrize(
        "meters, expected",
        [
            (3.0, FilterDecision.RETAIN),
            (9.5, FilterDecision.RETAIN),
            (10.5, FilterDecision.TRANSMIT),
            (60.0, FilterDecision.TRANSMIT),
            (100.5, FilterDecision.FORCE_TRANSMIT),
            (500.0, FilterDecision.FORCE_TRANSMIT),
        ],
    )
    def test_decision_by_distance(
        self,
        position_filter: PositionFilter,
        base_position: Position,
        meters: float,
        expected: FilterDecision,
    ) -> None:
        fix = offset_position(base_position, meters)
        assert position_filter.evaluate(fix, base_position) is expected

    def test_accuracy_checked_before_distance(self, position_filter: PositionFilter, base_position: Position) -> None:
        """Далёкая, но неточная фиксация всё равно отклоняется."""
        fix = offset_position(base_position, 500.0, accuracy=80.0)
        assert position_filter.evaluate(fix, base_position) is FilterDecision.REJECT_ACCURACY

    def test_distance_from(self, base_position: Position) -> None:
        fix = offset_position(base_position, 50.0)
        assert PositionFilter.distance_from(base_position, fix) == pytest.approx(50.0, rel=0.01)


class TestFilterDecision:
    """Свойства решения."""

    def test_should_transmit(self) -> None:
        assert FilterDecision.TRANSMIT.should_transmit
        assert FilterDecision.FORCE_TRANSMIT.should_transmit
        assert not FilterDecision.RETAIN.should_transmit
        assert not FilterDecision.REJECT_ACCURACY.should_transmit
