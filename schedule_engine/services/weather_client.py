"""
Weather Client — near-term forecast from an external provider over httpx.

The provider (WeatherAPI.com's ``forecast.json``) is the only network
dependency of a solve. It is called once per solve and every failure mode
except one collapses to ``None``, which the risk model treats as "apply the
default risk": no key configured, connection errors, timeouts, 5xx responses
and unparseable payloads. The exception is a location the provider
explicitly cannot resolve, which is the caller's input problem and raises
``LocationNotFoundError``.
"""

import logging
from datetime import date
from typing import Optional

import httpx

from schedule_engine.config import Settings, get_settings
from schedule_engine.exceptions import LocationNotFoundError
from schedule_engine.models import DailyForecast
from schedule_engine.services.weather_risk import build_daily_forecast

logger = logging.getLogger(__name__)

# WeatherAPI.com error code for "No matching location found."
UNKNOWN_LOCATION_CODE = 1006


class WeatherClient:
    """
    Async forecast fetcher.

    ``transport`` lets tests plug in ``httpx.MockTransport`` so the real
    request/response path runs without a network.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings or get_settings()
        self._transport = transport

    @property
    def is_available(self) -> bool:
        """Check if a provider key is configured."""
        return bool(self.settings.weather_api_key)

    async def fetch_forecast(
        self, location: str, days: Optional[int] = None
    ) -> Optional[list[DailyForecast]]:
        if not self.is_available:
            logger.info("Weather API key not configured — returning None")
            return None

        params = {
            "key": self.settings.weather_api_key,
            "q": location,
            "days": days or self.settings.weather_forecast_days,
            "aqi": "no",
            "alerts": "no",
        }

        try:
            async with httpx.AsyncClient(
                base_url=self.settings.weather_api_base_url,
                timeout=self.settings.weather_timeout_seconds,
                transport=self._transport,
            ) as client:
                response = await client.get("/forecast.json", params=params)
        except httpx.TimeoutException:
            logger.warning(f"Weather forecast for '{location}' timed out")
            return None
        except httpx.HTTPError as e:
            logger.warning(f"Weather provider unreachable: {e}")
            return None

        if response.status_code == 400 and self._is_unknown_location(response):
            raise LocationNotFoundError(location)

        if response.is_error:
            logger.warning(
                f"Weather provider returned {response.status_code} for "
                f"'{location}'"
            )
            return None

        try:
            return self._parse_forecast(response.json())
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            logger.warning(f"Failed to parse weather forecast: {e}")
            return None

    @staticmethod
    def _is_unknown_location(response: httpx.Response) -> bool:
        try:
            body = response.json()
        except ValueError:
            return False
        error = body.get("error") if isinstance(body, dict) else None
        return isinstance(error, dict) and error.get("code") == UNKNOWN_LOCATION_CODE

    @staticmethod
    def _parse_forecast(payload: dict) -> list[DailyForecast]:
        days = []
        for item in payload["forecast"]["forecastday"]:
            day = item["day"]
            days.append(
                build_daily_forecast(
                    day=date.fromisoformat(item["date"]),
                    temp_high_f=float(day["maxtemp_f"]),
                    temp_low_f=float(day["mintemp_f"]),
                    precipitation_in=float(day.get("totalprecip_in", 0.0)),
                    wind_mph=float(day.get("maxwind_mph", 0.0)),
                    humidity=float(day.get("avghumidity", 50.0)),
                    conditions=(day.get("condition") or {}).get("text", ""),
                )
            )
        if not days:
            raise ValueError("Forecast payload contained no days")
        return days
