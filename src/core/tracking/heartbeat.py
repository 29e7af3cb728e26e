# src/core/tracking/heartbeat.py
"""
Публикатор геолокации водителя (heartbeat).

Обеспечивает:
- Непрерывное наблюдение за позицией (один watch на сессию)
- Фильтрацию по точности и дистанции
- Адаптивный интервал отправки (передний план / фон)
- Повтор при сбоях датчика и сети, страховочный таймер
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable

from src.common.constants import (
    ConnectionStatus,
    TypeMsg,
    is_active_transit,
    is_trackable_status,
    status_value,
)
from src.common.logger import log_error, log_info, log_warning
from src.core.tracking.capabilities import (
    CancelFn,
    ForegroundStateProvider,
    PositionSource,
    StaticForegroundState,
    cancel_task,
    notify,
)
from src.core.tracking.errors import LocationPermissionError, TrackingError, TransientSensorError
from src.core.tracking.position_filter import FilterDecision, PositionFilter
from src.core.tracking.route_history import RouteAccumulator
from src.core.tracking.store import PositionStore
from src.shared.models.tracking import (
    HeartbeatConfig,
    LocationRow,
    Position,
    TrackingSession,
    TrackingState,
    utc_now,
)

StateCallback = Callable[[TrackingState], Any]
LocationCallback = Callable[[Position], Any]

GPS_UNAVAILABLE = "GPS unavailable"
POSITION_TIMEOUT = "Position timeout"


class HeartbeatPublisher:
    """
    Публикатор позиции водителя для одного бронирования за раз.

    Создаётся явно и передаётся владельцу жизненного цикла
    (см. TrackingSessionManager) — без глобального синглтона.

    Таймеры сессии: heartbeat, страховочный (safety net), таймер
    перезапуска датчика и таймаут фиксации (position_timeout после
    последней фиксации). Все отменяются в stop(). Колбэки, пришедшие
    после stop(), игнорируются по номеру поколения сессии.
    """

    def __init__(
        self,
        store: PositionStore,
        source: PositionSource,
        foreground: ForegroundStateProvider | None = None,
        config: HeartbeatConfig | None = None,
        route_accumulator: RouteAccumulator | None = None,
    ) -> None:
        self._store = store
        self._source = source
        self._foreground = foreground or StaticForegroundState()
        self._config = config or HeartbeatConfig()
        self._routes = route_accumulator or RouteAccumulator(store)
        self._filter = PositionFilter(self._config)

        self._session: TrackingSession | None = None
        self._alive = False
        self._generation = 0

        self._cancel_watch: CancelFn | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._safety_net_task: asyncio.Task | None = None
        self._retry_task: asyncio.Task | None = None
        self._fix_timeout_task: asyncio.Task | None = None
        self._heartbeat_interval: float | None = None
        self._send_lock = asyncio.Lock()

        # Последняя позиция, прошедшая фильтр (её шлёт heartbeat)
        self._last_position: Position | None = None
        # Последняя успешно отправленная позиция (база для jitter filter)
        self._last_sent: Position | None = None
        # Последнее точное показание, даже если оно не прошло дистанцию
        self._latest_reading: Position | None = None
        self._update_count = 0
        self._retry_count = 0
        # Ошибка датчика, которую снимает только новая фиксация
        self._sensor_error: str | None = None
        self._terminal_error: str | None = None

        self._state_callbacks: list[StateCallback] = []
        self._location_callbacks: list[LocationCallback] = []
        self._state = TrackingState(is_background=self._foreground.is_background)

        self._remove_visibility_listener = self._foreground.add_listener(self._on_visibility_change)

    # =========================================================================
    # НАБЛЮДАТЕЛИ
    # =========================================================================

    async def on_state_change(self, callback: StateCallback) -> CancelFn:
        """
        Подписка на изменения состояния.
        Колбэк сразу вызывается с текущим состоянием.
        """
        self._state_callbacks.append(callback)
        await notify(callback, self.get_state())

        def remove() -> None:
            if callback in self._state_callbacks:
                self._state_callbacks.remove(callback)

        return remove

    def on_location_update(self, callback: LocationCallback) -> CancelFn:
        """Подписка на позиции, прошедшие фильтр."""
        self._location_callbacks.append(callback)

        def remove() -> None:
            if callback in self._location_callbacks:
                self._location_callbacks.remove(callback)

        return remove

    async def _update_state(self, **changes: Any) -> None:
        self._state = self._state.model_copy(update=changes)
        for callback in list(self._state_callbacks):
            await notify(callback, self.get_state())

    # =========================================================================
    # ЧТЕНИЕ
    # =========================================================================

    @property
    def config(self) -> HeartbeatConfig:
        return self._config

    @property
    def session(self) -> TrackingSession | None:
        return self._session.model_copy() if self._session else None

    @property
    def is_running(self) -> bool:
        return self._session is not None and self._alive

    @property
    def heartbeat_interval(self) -> float | None:
        """Интервал, с которым запланирован текущий heartbeat-таймер."""
        return self._heartbeat_interval

    def get_state(self) -> TrackingState:
        return self._state.model_copy()

    def get_current_position(self) -> Position | None:
        return self._last_position

    def get_latest_reading(self) -> Position | None:
        return self._latest_reading

    def _is_live(self, generation: int) -> bool:
        return self._alive and generation == self._generation

    def _interval_for(self, is_background: bool) -> float:
        if is_background:
            return self._config.background_interval
        return self._config.foreground_interval

    # =========================================================================
    # ЖИЗНЕННЫЙ ЦИКЛ
    # =========================================================================

    async def start(self, booking_id: str, agent_id: str, booking_status: str) -> bool:
        """
        Запускает трекинг бронирования.

        Returns:
            False, если статус не допускает трекинг или запуск не удался
        """
        if not is_trackable_status(booking_status):
            await log_warning(
                f"Трекинг не запущен: статус {booking_status} не отслеживается",
                extra={"booking_id": booking_id, "agent_id": agent_id},
            )
            return False

        if self._session is not None:
            if self._session.booking_id == booking_id and self._session.agent_id == agent_id:
                await self.update_booking_status(booking_status)
                return self.is_running
            await log_warning(
                f"Трекинг не запущен: уже идёт сессия бронирования {self._session.booking_id}",
                extra={"booking_id": booking_id, "agent_id": agent_id},
            )
            return False

        try:
            self._generation += 1
            generation = self._generation
            self._session = TrackingSession(
                booking_id=booking_id,
                agent_id=agent_id,
                booking_status=status_value(booking_status),
                config=self._config,
            )
            self._alive = True
            self._update_count = 0
            self._retry_count = 0
            self._sensor_error = None
            self._terminal_error = None
            self._last_position = None
            self._last_sent = None
            self._latest_reading = None

            await log_info(
                f"Старт трекинга: бронирование {booking_id}, водитель {agent_id}, статус {booking_status}",
                type_msg=TypeMsg.INFO,
            )

            is_background = self._foreground.is_background
            await self._update_state(
                is_tracking=True,
                is_background=is_background,
                last_update=None,
                update_count=0,
                error=None,
                error_fatal=False,
                connection_status=ConnectionStatus.CONNECTED,
            )

            self._start_watch(generation)
            self._schedule_heartbeat(generation, is_background, send_immediately=True)
            self._safety_net_task = asyncio.create_task(self._safety_net_loop(generation))
            return True
        except Exception as e:
            await log_error(f"Не удалось запустить трекинг {booking_id}: {e}", exc_info=True)
            await self._teardown(error=f"Tracking failed to start: {e}")
            return False

    async def stop(self) -> None:
        """Останавливает трекинг и помечает текущую строку неактивной. Идемпотентно."""
        await self._teardown(error=self._terminal_error)

    async def _teardown(self, error: str | None) -> None:
        session = self._session
        if session is None and not self._alive:
            return

        # Всё, что уже в полёте, станет no-op
        self._alive = False
        self._generation += 1
        self._session = None

        if self._cancel_watch is not None:
            self._cancel_watch()
            self._cancel_watch = None

        for task in (self._heartbeat_task, self._safety_net_task, self._retry_task, self._fix_timeout_task):
            await cancel_task(task)
        self._heartbeat_task = None
        self._safety_net_task = None
        self._retry_task = None
        self._fix_timeout_task = None
        self._heartbeat_interval = None

        if session is not None:
            await log_info(
                f"Остановка трекинга: бронирование {session.booking_id}, водитель {session.agent_id}",
                type_msg=TypeMsg.INFO,
            )
            try:
                await self._store.mark_inactive(session.agent_id)
            except Exception as e:
                await log_error(f"Не удалось пометить позицию водителя {session.agent_id} неактивной: {e}")

        self._last_position = None
        self._last_sent = None
        self._latest_reading = None
        self._update_count = 0
        self._retry_count = 0
        self._sensor_error = None

        await self._update_state(
            is_tracking=False,
            is_background=False,
            last_update=None,
            update_count=0,
            error=error,
            error_fatal=error is not None and error == self._terminal_error,
            connection_status=ConnectionStatus.DISCONNECTED,
        )

    async def update_booking_status(self, status: str) -> None:
        """Обновляет статус бронирования; при выходе из отслеживаемых — stop()."""
        if self._session is None:
            return

        await log_info(
            f"Статус бронирования {self._session.booking_id}: {status}",
            type_msg=TypeMsg.DEBUG,
        )
        self._session = self._session.model_copy(update={"booking_status": status_value(status)})

        if not is_trackable_status(status):
            await log_info("Статус больше не отслеживается, останавливаем трекинг", type_msg=TypeMsg.INFO)
            await self.stop()

    async def close(self) -> None:
        """Останавливает трекинг и отписывается от всех источников."""
        await self.stop()
        self._remove_visibility_listener()
        self._state_callbacks.clear()
        self._location_callbacks.clear()

    # =========================================================================
    # ДАТЧИК
    # =========================================================================

    def _start_watch(self, generation: int) -> None:
        """Открывает watch; предыдущий всегда закрывается первым."""
        if self._cancel_watch is not None:
            self._cancel_watch()
            self._cancel_watch = None

        async def on_fix(position: Position) -> None:
            await self._handle_fix(generation, position)

        async def on_error(error: TrackingError) -> None:
            await self._handle_sensor_error(generation, error)

        self._cancel_watch = self._source.watch(on_fix, on_error)

        # До первой фиксации ждём без таймаута ("waiting for location")
        if self._latest_reading is not None:
            self._arm_fix_timeout(generation)

    async def _handle_fix(self, generation: int, position: Position) -> None:
        if not self._is_live(generation):
            return

        reference = self._last_sent or self._last_position
        decision = self._filter.evaluate(position, reference)

        if decision is FilterDecision.REJECT_ACCURACY:
            await log_info(
                f"Пропуск неточной позиции: accuracy={position.accuracy}м",
                type_msg=TypeMsg.DEBUG,
            )
            return

        self._retry_count = 0
        self._sensor_error = None
        self._latest_reading = position
        self._arm_fix_timeout(generation)

        if not decision.should_transmit:
            return

        if decision is FilterDecision.FORCE_TRANSMIT:
            await log_info("Превышен max_distance_filter, принудительная отправка", type_msg=TypeMsg.DEBUG)

        self._last_position = position
        for callback in list(self._location_callbacks):
            await notify(callback, position)

    async def _handle_sensor_error(self, generation: int, error: TrackingError) -> None:
        if not self._is_live(generation):
            return

        if isinstance(error, LocationPermissionError) or not error.retryable:
            await log_error(f"Доступ к геолокации запрещён: {error.message}")
            self._terminal_error = error.message
            await self._update_state(error=error.message, error_fatal=True)
            await self.stop()
            return

        await log_warning(f"Ошибка GPS: {error.message}")
        self._sensor_error = error.message

        # Перезапуск уже запланирован — второй watch не создаём
        if self._retry_task is not None and not self._retry_task.done():
            return

        if self._retry_count < self._config.max_retries:
            self._retry_count += 1
            await log_info(
                f"Повтор GPS ({self._retry_count}/{self._config.max_retries})",
                type_msg=TypeMsg.INFO,
            )
            await self._update_state(connection_status=ConnectionStatus.RECONNECTING, error=error.message)
            self._retry_task = asyncio.create_task(self._restart_watch_later(generation))
        else:
            # Watch не закрываем: датчик может восстановиться сам
            self._sensor_error = GPS_UNAVAILABLE
            await self._update_state(error=GPS_UNAVAILABLE, connection_status=ConnectionStatus.DISCONNECTED)

    async def _restart_watch_later(self, generation: int) -> None:
        await asyncio.sleep(self._config.retry_delay)
        if not self._is_live(generation):
            return
        self._start_watch(generation)

    def _arm_fix_timeout(self, generation: int) -> None:
        """Перезапускает таймаут ожидания следующей фиксации."""
        if self._fix_timeout_task is not None and not self._fix_timeout_task.done():
            self._fix_timeout_task.cancel()
        self._fix_timeout_task = asyncio.create_task(self._fix_timeout(generation))

    async def _fix_timeout(self, generation: int) -> None:
        await asyncio.sleep(self._config.position_timeout)
        if not self._is_live(generation):
            return
        await log_warning(f"Нет фиксаций дольше {self._config.position_timeout}с")
        await self._handle_sensor_error(generation, TransientSensorError(POSITION_TIMEOUT))

    # =========================================================================
    # ВИДИМОСТЬ
    # =========================================================================

    async def _on_visibility_change(self, is_background: bool) -> None:
        if is_background == self._state.is_background:
            return

        await log_info(
            f"Видимость изменилась: {'фон' if is_background else 'передний план'}",
            type_msg=TypeMsg.DEBUG,
        )
        await self._update_state(is_background=is_background)

        if self.is_running:
            # Новый интервал действует со следующей отправки
            await cancel_task(self._heartbeat_task)
            self._schedule_heartbeat(self._generation, is_background, send_immediately=False)

    # =========================================================================
    # ТАЙМЕРЫ
    # =========================================================================

    def _schedule_heartbeat(self, generation: int, is_background: bool, send_immediately: bool) -> None:
        interval = self._interval_for(is_background)
        self._heartbeat_interval = interval
        self._heartbeat_task = asyncio.create_task(
            self._heartbeat_loop(generation, interval, send_immediately)
        )

    async def _heartbeat_loop(self, generation: int, interval: float, send_immediately: bool) -> None:
        if send_immediately:
            await self._send_heartbeat(generation)
        while self._is_live(generation):
            await asyncio.sleep(interval)
            if not self._is_live(generation):
                return
            await self._send_heartbeat(generation)

    async def _safety_net_loop(self, generation: int) -> None:
        """Повторная отправка, если обычный таймер заторможен или сеть лежит."""
        while self._is_live(generation):
            await asyncio.sleep(self._config.safety_net_interval)
            if not self._is_live(generation):
                return
            if self._state.connection_status != ConnectionStatus.CONNECTED and self._last_position is not None:
                await log_info("Сработал страховочный таймер, повторная отправка", type_msg=TypeMsg.DEBUG)
                await self._send_heartbeat(generation)

    async def _send_heartbeat(self, generation: int) -> None:
        """Отправляет последнюю известную позицию в хранилище."""
        async with self._send_lock:
            if not self._is_live(generation):
                return

            session = self._session
            position = self._last_position
            if session is None or position is None:
                await log_info("Heartbeat пропущен: позиции ещё нет", type_msg=TypeMsg.DEBUG)
                return

            try:
                await self._store.upsert_current(
                    LocationRow.from_position(session.agent_id, session.booking_id, position)
                )
            except Exception as e:
                if not self._is_live(generation):
                    return
                # Позицию не теряем: следующий heartbeat повторит
                await log_warning(f"Ошибка отправки heartbeat: {e}")
                await self._update_state(
                    connection_status=ConnectionStatus.RECONNECTING,
                    error=f"Network error: {e}",
                )
                return

            if is_active_transit(session.booking_status):
                try:
                    await self._routes.record(session.booking_id, session.agent_id, position)
                except Exception as e:
                    await log_warning(f"Не удалось записать точку маршрута: {e}")

            if not self._is_live(generation):
                return

            self._last_sent = position
            self._update_count += 1
            changes: dict[str, Any] = {"last_update": utc_now(), "update_count": self._update_count}
            if self._sensor_error is None:
                changes.update(connection_status=ConnectionStatus.CONNECTED, error=None, error_fatal=False)
            await self._update_state(**changes)
