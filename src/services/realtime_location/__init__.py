# src/services/realtime_location/__init__.py
"""
Realtime Location Ingest — сервис приёма геолокации водителей.

Обеспечивает:
- Приём фиксаций, ошибок датчика и видимости приложения (HTTP)
- Фильтрацию и heartbeat-публикацию в PostgreSQL
- Публикацию изменений в Redis Pub/Sub для подписчиков
- Историю маршрута поездки
"""
