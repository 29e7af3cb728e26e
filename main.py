#!/usr/bin/env python3
# main.py
"""
Главная точка входа сервисов трекинга водителя.

Запуск:
    python main.py location   — приём геолокации (HTTP)
    python main.py ws         — WebSocket gateway для подписчиков
    python main.py all        — оба сервиса в одном процессе

Без аргумента используется COMPONENT_MODE из config.json.
"""

from __future__ import annotations

import asyncio
import signal
import sys

from src.config import settings
from src.common.logger import setup_logging, log_info, log_error
from src.common.constants import TypeMsg


# Глобальный флаг для graceful shutdown
_shutdown_event: asyncio.Event | None = None


# Режим -> (модуль приложения, порт)
SERVICES: dict[str, tuple[str, int]] = {
    "location": (
        "src.services.realtime_location.app:app",
        settings.deployment.REALTIME_LOCATION_INGEST_PORT,
    ),
    "ws": (
        "src.services.realtime_ws.app:app",
        settings.deployment.REALTIME_WS_GATEWAY_PORT,
    ),
}


def setup_signal_handlers(servers: list) -> None:
    """Настраивает обработчики SIGINT/SIGTERM для graceful shutdown."""
    global _shutdown_event
    _shutdown_event = asyncio.Event()

    def signal_handler(sig: int) -> None:
        if _shutdown_event.is_set():
            return
        print(f"\nПолучен сигнал остановки (sig={sig}), завершаем работу...")
        _shutdown_event.set()
        for server in servers:
            server.should_exit = True

    try:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))
    except NotImplementedError:
        # Windows не поддерживает add_signal_handler
        signal.signal(signal.SIGINT, lambda s, f: signal_handler(s))
        signal.signal(signal.SIGTERM, lambda s, f: signal_handler(s))


def resolve_modes(mode: str) -> list[str]:
    """Список сервисов для режима запуска."""
    if mode == "all":
        return list(SERVICES)
    if mode not in SERVICES:
        raise ValueError(f"Неизвестный режим запуска: {mode}. Доступно: all, {', '.join(SERVICES)}")
    return [mode]


async def run(mode: str) -> None:
    """Запускает uvicorn-серверы выбранных сервисов."""
    import uvicorn

    servers = []
    for name in resolve_modes(mode):
        app_path, port = SERVICES[name]
        await log_info(f"Запуск сервиса {name} на порту {port}...", type_msg=TypeMsg.INFO)
        config = uvicorn.Config(
            app_path,
            host="0.0.0.0",
            port=port,
            log_level="debug" if settings.system.DEBUG else "info",
        )
        servers.append(uvicorn.Server(config))

    setup_signal_handlers(servers)
    await asyncio.gather(*(server.serve() for server in servers))
    await log_info("Все сервисы остановлены", type_msg=TypeMsg.INFO)


def main() -> None:
    setup_logging()
    mode = sys.argv[1] if len(sys.argv) > 1 else settings.system.COMPONENT_MODE

    try:
        asyncio.run(run(mode))
    except ValueError as e:
        asyncio.run(log_error(str(e)))
        sys.exit(2)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
