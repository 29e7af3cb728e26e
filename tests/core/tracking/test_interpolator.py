# tests/core/tracking/test_interpolator.py
"""
Тесты плавного движения маркера.
"""

from __future__ import annotations

import asyncio

import pytest

from src.core.tracking.capabilities import AsyncioFrameClock
from src.core.tracking.interpolator import MotionInterpolator, ease_out_cubic
from tests.fakes import ManualFrameClock, RecordingSink


def linear(t: float) -> float:
    return t


class TestEaseOutCubic:
    def test_bounds(self) -> None:
        assert ease_out_cubic(0.0) == 0.0
        assert ease_out_cubic(1.0) == 1.0

    def test_decelerates(self) -> None:
        assert ease_out_cubic(0.5) == pytest.approx(0.875)
        assert ease_out_cubic(0.25) - ease_out_cubic(0.0) > ease_out_cubic(1.0) - ease_out_cubic(0.75)


class TestMotionInterpolator:
    """Тесты MotionInterpolator."""

    def test_initial_position_rendered(self, sink: RecordingSink, frame_clock: ManualFrameClock) -> None:
        marker = MotionInterpolator(sink, frame_clock, 50.0, 30.0)

        assert sink.positions == [(50.0, 30.0)]
        assert marker.position == (50.0, 30.0)
        assert not marker.is_animating

    def test_animation_reaches_target(self, sink: RecordingSink, frame_clock: ManualFrameClock) -> None:
        marker = MotionInterpolator(sink, frame_clock, 50.0, 30.0, easing=linear)

        marker.animate_to(51.0, 31.0, duration=1.0)
        frame_clock.advance(0.5)
        assert marker.position == pytest.approx((50.5, 30.5))
        assert marker.is_animating

        frame_clock.advance(0.5)
        assert marker.position == pytest.approx((51.0, 31.0))
        assert not marker.is_animating
        assert frame_clock.pending == 0

    def test_retarget_starts_from_current_position(self, sink: RecordingSink, frame_clock: ManualFrameClock) -> None:
        """Новая цель посреди анимации: старая цель так и не отрисовывается."""
        marker = MotionInterpolator(sink, frame_clock, 0.0, 0.0, easing=linear)

        marker.animate_to(10.0, 10.0, duration=1.0)
        frame_clock.advance(0.5)
        midway = marker.position
        assert midway == pytest.approx((5.0, 5.0))

        marker.animate_to(0.0, 20.0, duration=1.0)
        frame_clock.advance(0.5)
        assert marker.position == pytest.approx((2.5, 12.5))
        frame_clock.advance(0.5)

        assert marker.position == pytest.approx((0.0, 20.0))
        assert (10.0, 10.0) not in sink.positions
        assert len(frame_clock.cancelled) == 1

    def test_zero_duration_jumps(self, sink: RecordingSink, frame_clock: ManualFrameClock) -> None:
        marker = MotionInterpolator(sink, frame_clock, 0.0, 0.0)

        marker.animate_to(1.0, 2.0, duration=0)

        assert marker.position == (1.0, 2.0)
        assert sink.positions[-1] == (1.0, 2.0)
        assert frame_clock.pending == 0

    def test_zero_duration_cancels_running_animation(
        self, sink: RecordingSink, frame_clock: ManualFrameClock
    ) -> None:
        marker = MotionInterpolator(sink, frame_clock, 0.0, 0.0, easing=linear)
        marker.animate_to(10.0, 10.0, duration=1.0)

        marker.animate_to(3.0, 3.0, duration=-1.0)
        frame_clock.advance(1.0)

        assert marker.position == (3.0, 3.0)
        assert not marker.is_animating

    def test_rotation_applied_immediately_and_normalized(
        self, sink: RecordingSink, frame_clock: ManualFrameClock
    ) -> None:
        marker = MotionInterpolator(sink, frame_clock, 0.0, 0.0)

        marker.set_rotation(370.0)
        assert marker.rotation == pytest.approx(10.0)
        marker.set_rotation(-90.0)

        assert marker.rotation == pytest.approx(270.0)
        assert sink.rotations == pytest.approx([10.0, 270.0])

    def test_remove_cancels_frame_and_is_idempotent(
        self, sink: RecordingSink, frame_clock: ManualFrameClock
    ) -> None:
        marker = MotionInterpolator(sink, frame_clock, 0.0, 0.0)
        marker.animate_to(1.0, 1.0)

        marker.remove()
        marker.remove()

        assert marker.is_removed
        assert sink.removed == 1
        assert frame_clock.pending == 0

    def test_no_rendering_after_remove(self, sink: RecordingSink, frame_clock: ManualFrameClock) -> None:
        marker = MotionInterpolator(sink, frame_clock, 0.0, 0.0)
        marker.remove()
        rendered = len(sink.positions)

        marker.animate_to(1.0, 1.0)
        marker.set_rotation(90.0)
        frame_clock.advance(1.0)

        assert len(sink.positions) == rendered
        assert sink.rotations == []


class TestAsyncioFrameClock:
    """Кадры на таймерах event loop."""

    def test_invalid_fps(self) -> None:
        with pytest.raises(ValueError):
            AsyncioFrameClock(fps=0)

    @pytest.mark.asyncio
    async def test_animation_on_real_clock(self, sink: RecordingSink) -> None:
        marker = MotionInterpolator(sink, AsyncioFrameClock(fps=100), 0.0, 0.0)

        marker.animate_to(1.0, 1.0, duration=0.05)
        await asyncio.sleep(0.2)

        assert marker.position == pytest.approx((1.0, 1.0))
        assert not marker.is_animating

    @pytest.mark.asyncio
    async def test_cancel_frame(self) -> None:
        clock = AsyncioFrameClock(fps=100)
        fired: list[float] = []

        handle = clock.request_frame(fired.append)
        clock.cancel_frame(handle)
        await asyncio.sleep(0.05)

        assert fired == []
