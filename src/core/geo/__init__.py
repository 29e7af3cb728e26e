# src/core/geo/__init__.py
"""
Geo-сервис.
Расчёт ETA через Mapbox Directions API.
"""

from src.core.geo.service import RoutingService, humanize_distance, humanize_duration

__all__ = [
    "RoutingService",
    "humanize_distance",
    "humanize_duration",
]
