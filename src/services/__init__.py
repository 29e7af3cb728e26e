# src/services/__init__.py
"""
Микросервисы приложения.

Архитектура:
- Каждый сервис — независимый FastAPI-приложение
- PostgreSQL — хранилище позиций и истории маршрутов
- Redis Pub/Sub — push-уведомления об изменениях позиций

Сервисы:
- realtime_location: приём координат водителей (публикатор)
- realtime_ws: WebSocket для live-tracking (подписчики)
"""

__all__: list[str] = []
