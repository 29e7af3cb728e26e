# src/services/realtime_ws/__init__.py
"""
Realtime WebSocket Gateway — сервис для live-tracking.

Обеспечивает:
- WebSocket соединения для пассажиров и диспетчеров
- Доставку позиций водителя (push + polling-fallback)
- Уведомления о статусе соединения
"""
