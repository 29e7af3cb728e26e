# tests/core/tracking/test_capabilities.py
"""
Тесты платформенных возможностей и вспомогательных функций задач.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.core.tracking.capabilities import (
    ManualForegroundState,
    PushedPositionSource,
    StaticForegroundState,
    cancel_task,
    notify,
)
from src.core.tracking.errors import TransientSensorError
from src.shared.models.tracking import Position


class TestCancelTask:
    @pytest.mark.asyncio
    async def test_cancels_running_task(self) -> None:
        task = asyncio.create_task(asyncio.sleep(10))

        await cancel_task(task)

        assert task.cancelled()

    @pytest.mark.asyncio
    async def test_none_and_done_tasks(self) -> None:
        done = asyncio.create_task(asyncio.sleep(0))
        await done

        await cancel_task(None)
        await cancel_task(done)

        assert not done.cancelled()

    @pytest.mark.asyncio
    async def test_current_task_not_cancelled(self) -> None:
        async def cancel_self() -> str:
            await cancel_task(asyncio.current_task())
            return "finished"

        assert await asyncio.create_task(cancel_self()) == "finished"


class TestNotify:
    @pytest.mark.asyncio
    async def test_sync_and_async_callbacks(self) -> None:
        sync_cb = MagicMock()
        async_cb = AsyncMock()

        await notify(sync_cb, 1)
        await notify(async_cb, 2)

        sync_cb.assert_called_once_with(1)
        async_cb.assert_awaited_once_with(2)

    @pytest.mark.asyncio
    async def test_callback_errors_swallowed(self) -> None:
        await notify(MagicMock(side_effect=RuntimeError("boom")))
        await notify(AsyncMock(side_effect=ValueError("boom")))


class TestPushedPositionSource:
    """Источник, в который фиксации приходят из ingest."""

    @pytest.mark.asyncio
    async def test_fix_and_error_fan_out(self, base_position: Position) -> None:
        source = PushedPositionSource()
        on_fix, on_error = AsyncMock(), AsyncMock()
        source.watch(on_fix, on_error)
        error = TransientSensorError("timeout")

        assert await source.push_fix(base_position) == 1
        assert await source.push_error(error) == 1

        on_fix.assert_awaited_once_with(base_position)
        on_error.assert_awaited_once_with(error)

    @pytest.mark.asyncio
    async def test_cancel_watch(self, base_position: Position) -> None:
        source = PushedPositionSource()
        on_fix = AsyncMock()
        cancel = source.watch(on_fix, AsyncMock())

        cancel()
        cancel()

        assert source.active_watches == 0
        assert await source.push_fix(base_position) == 0
        on_fix.assert_not_awaited()


class TestForegroundState:
    def test_static_is_foreground(self) -> None:
        state = StaticForegroundState()
        remove = state.add_listener(AsyncMock())

        assert state.is_background is False
        remove()

    @pytest.mark.asyncio
    async def test_manual_notifies_only_on_change(self) -> None:
        state = ManualForegroundState()
        listener = AsyncMock()
        remove = state.add_listener(listener)

        await state.set_background(False)
        await state.set_background(True)
        await state.set_background(True)
        remove()
        await state.set_background(False)

        listener.assert_awaited_once_with(True)
        assert state.is_background is False
