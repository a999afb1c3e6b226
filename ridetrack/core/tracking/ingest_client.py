"""
HTTP-клиент сервиса приёма ping-ов.
"""

from __future__ import annotations

import math

import httpx

from ridetrack.common.exceptions import RateLimitError
from ridetrack.shared.models.location_dto import PingRequest, PingResponse


def parse_retry_after(value: str | None) -> float:
    """Секунды из заголовка Retry-After; нечисловое значение даёт 0."""
    try:
        seconds = float(value or 0)
    except ValueError:
        return 0.0
    return seconds if math.isfinite(seconds) and seconds > 0 else 0.0


class IngestClient:
    """Отправляет ping водителя в LocationIngestService."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.http = httpx.AsyncClient(timeout=timeout, transport=transport)

    async def close(self) -> None:
        """Закрыть HTTP клиент."""
        await self.http.aclose()

    async def send_ping(
        self,
        driver_id: str,
        lat: float,
        lng: float,
        accuracy: float | None = None,
    ) -> PingResponse:
        """
        Отправляет ping.

        Raises:
            RateLimitError: Сервер ответил 429
            ValueError: Тело ответа не JSON
            httpx.HTTPError: Сетевая ошибка или иной неуспешный статус
        """
        request = PingRequest(driver_id=driver_id, lat=lat, lng=lng, accuracy=accuracy)
        response = await self.http.post(self.url, json=request.model_dump(exclude_none=True))

        if response.status_code == 429:
            raise RateLimitError("rate limited", retry_after=parse_retry_after(response.headers.get("Retry-After")))

        response.raise_for_status()
        return PingResponse.model_validate(response.json())
