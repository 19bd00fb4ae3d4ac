"""
weather_tool.py - Current weather from the Open-Meteo API.

Network errors are returned as an `error` entry so the model can explain
them; anything unexpected propagates to the dispatcher.
"""

import logging
from typing import Any, Dict, Literal, Optional

import httpx

from relay_service.tools.base import BaseTool


logger = logging.getLogger(__name__)

GEOCODING_API_URL = "https://geocoding-api.open-meteo.com/v1/search"
WEATHER_API_URL = "https://api.open-meteo.com/v1/forecast"


class GetWeatherTool(BaseTool):
    """Get the current weather conditions for a location."""

    def __init__(
        self,
        connect_timeout: float = 2.0,
        read_timeout: float = 6.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__()
        self.timeout = httpx.Timeout(connect=connect_timeout, read=read_timeout, write=5.0, pool=5.0)
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _locate(self, client: httpx.AsyncClient, location: str) -> Dict[str, Any]:
        params = {"name": location, "count": 1, "language": "en", "format": "json"}
        response = await client.get(GEOCODING_API_URL, params=params)
        response.raise_for_status()
        results = response.json().get("results") or []
        if not results:
            return {"error": f"Location '{location}' not found."}
        first = results[0]
        return {
            "latitude": first["latitude"],
            "longitude": first["longitude"],
            "country": first.get("country", "N/A"),
            "name": first["name"],
        }

    async def run(
        self,
        location: str,
        unit: Literal["celsius", "fahrenheit"] = "celsius",
    ) -> Dict[str, Any]:
        """
        Get the current weather conditions for a location.
        Args:
            location: The city name.
            unit: The temperature unit (celsius or fahrenheit).
        Returns:
            Dictionary containing weather information.
        """
        if not location or not location.strip():
            return {"error": "location must not be empty"}
        unit = unit or "celsius"

        async with self._client() as client:
            try:
                place = await self._locate(client, location)
                if "error" in place:
                    return place

                params = {
                    "latitude": place["latitude"],
                    "longitude": place["longitude"],
                    "current_weather": "true",
                    "temperature_unit": unit,
                    "windspeed_unit": "kmh",
                }
                response = await client.get(WEATHER_API_URL, params=params)
                response.raise_for_status()
                current = response.json()["current_weather"]
            except httpx.HTTPError as e:
                logger.warning("Weather lookup failed for %r: %s", location, e)
                return {"error": f"Failed to fetch weather data: {e}"}
            except (KeyError, IndexError):
                return {"error": "Could not parse weather data from API response."}

        temp_unit = "°C" if unit == "celsius" else "°F"
        return {
            "location": place["name"],
            "country": place["country"],
            "temperature": f"{current['temperature']}{temp_unit}",
            "wind_speed": f"{current['windspeed']} km/h",
            "weather_code": current.get("weathercode"),
            "observed_at": current.get("time"),
        }
