# src/core/geo/service.py
"""
Сервис маршрутов на Mapbox Directions API.
Используется для оценки времени прибытия (ETA) водителя.
"""

from __future__ import annotations

import math
from typing import Optional

import httpx

from src.common.constants import TypeMsg
from src.common.logger import log_error, log_info
from src.shared.models.tracking import EtaInfo


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def humanize_duration(seconds: float) -> str:
    """
    Длительность для отображения.

    Examples:
        45 -> "Less than 1 min", 600 -> "10 min", 3600 -> "1 hr", 5400 -> "1 hr 30 min"
    """
    if seconds < 60:
        return "Less than 1 min"

    minutes = _round_half_up(seconds / 60)
    if minutes < 60:
        return f"{minutes} min"

    hours, remaining = divmod(minutes, 60)
    if remaining == 0:
        return f"{hours} hr"
    return f"{hours} hr {remaining} min"


def humanize_distance(meters: float) -> str:
    """Расстояние для отображения: "850 m" или "2.4 km"."""
    if meters < 1000:
        return f"{_round_half_up(meters)} m"
    return f"{meters / 1000:.1f} km"


class RoutingService:
    """
    Расчёт ETA через Mapbox Directions.

    Любая ошибка (нет токена, HTTP, пустой ответ) даёт None:
    ETA — необязательное поле обогащения.
    """

    DIRECTIONS_URL = "https://api.mapbox.com/directions/v5/mapbox/{profile}/{coordinates}"

    def __init__(
        self,
        access_token: str | None = None,
        profile: str = "driving",
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """
        Args:
            access_token: Токен Mapbox (берётся из конфига если None)
            profile: Профиль маршрута (driving, driving-traffic, ...)
            timeout: Таймаут HTTP-запроса (секунды)
            client: Готовый HTTP клиент (для тестов)
        """
        if access_token is None:
            from src.config import settings
            access_token = settings.mapbox.MAPBOX_ACCESS_TOKEN
            profile = settings.mapbox.MAPBOX_PROFILE
            timeout = settings.mapbox.MAPBOX_TIMEOUT

        self._access_token = access_token
        self._profile = profile
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def close(self) -> None:
        """Закрывает HTTP клиент."""
        await self._client.aclose()

    async def calculate_eta(
        self,
        origin_lat: float,
        origin_lng: float,
        dest_lat: float,
        dest_lng: float,
    ) -> Optional[EtaInfo]:
        """
        Рассчитывает время и расстояние до точки назначения.

        Returns:
            EtaInfo или None
        """
        if not self._access_token:
            await log_error("Mapbox access token не настроен")
            return None

        # Mapbox ожидает "lng,lat;lng,lat"
        coordinates = f"{origin_lng},{origin_lat};{dest_lng},{dest_lat}"
        url = self.DIRECTIONS_URL.format(profile=self._profile, coordinates=coordinates)

        try:
            response = await self._client.get(
                url,
                params={"access_token": self._access_token, "overview": "false"},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            await log_error(f"Ошибка Mapbox Directions: {e}")
            return None

        routes = data.get("routes") or []
        if not routes:
            await log_info(
                f"Маршрут не найден: ({origin_lat},{origin_lng}) -> ({dest_lat},{dest_lng})",
                type_msg=TypeMsg.WARNING,
            )
            return None

        try:
            duration = float(routes[0]["duration"])
            distance = float(routes[0]["distance"])
        except (KeyError, TypeError, ValueError) as e:
            await log_error(f"Некорректный ответ Mapbox Directions: {e}")
            return None

        return EtaInfo(
            duration_seconds=duration,
            distance_meters=distance,
            humanized_duration=humanize_duration(duration),
            humanized_distance=humanize_distance(distance),
        )
