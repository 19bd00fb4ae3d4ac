import httpx
import pytest

from relay_service.tools.weather_tool import GEOCODING_API_URL, WEATHER_API_URL, GetWeatherTool


def make_handler(geo_results, weather_status=200):
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        url = str(request.url)
        if url.startswith(GEOCODING_API_URL):
            return httpx.Response(200, json={"results": geo_results})
        if url.startswith(WEATHER_API_URL):
            if weather_status != 200:
                return httpx.Response(weather_status, json={"error": True})
            return httpx.Response(200, json={
                "current_weather": {"temperature": 11.5, "windspeed": 20.1, "weathercode": 3, "time": "2024-05-01T12:00"},
            })
        return httpx.Response(404)

    return handler, seen


DUBLIN = [{"name": "Dublin", "latitude": 53.33, "longitude": -6.25, "country": "Ireland"}]


class TestGetWeatherTool:
    @pytest.mark.asyncio
    async def test_success(self):
        handler, seen = make_handler(DUBLIN)
        tool = GetWeatherTool(transport=httpx.MockTransport(handler))
        result = await tool.run(location="Dublin")

        assert result == {
            "location": "Dublin",
            "country": "Ireland",
            "temperature": "11.5°C",
            "wind_speed": "20.1 km/h",
            "weather_code": 3,
            "observed_at": "2024-05-01T12:00",
        }
        assert seen[1].url.params["temperature_unit"] == "celsius"

    @pytest.mark.asyncio
    async def test_fahrenheit(self):
        handler, seen = make_handler(DUBLIN)
        tool = GetWeatherTool(transport=httpx.MockTransport(handler))
        result = await tool.run(location="Dublin", unit="fahrenheit")
        assert result["temperature"].endswith("°F")
        assert seen[1].url.params["temperature_unit"] == "fahrenheit"

    @pytest.mark.asyncio
    async def test_unknown_location(self):
        handler, _ = make_handler([])
        tool = GetWeatherTool(transport=httpx.MockTransport(handler))
        assert await tool.run(location="Atlantis") == {"error": "Location 'Atlantis' not found."}

    @pytest.mark.asyncio
    async def test_http_error_is_reported(self):
        handler, _ = make_handler(DUBLIN, weather_status=503)
        tool = GetWeatherTool(transport=httpx.MockTransport(handler))
        result = await tool.run(location="Dublin")
        assert result["error"].startswith("Failed to fetch weather data")

    @pytest.mark.asyncio
    async def test_empty_location(self):
        tool = GetWeatherTool(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        assert "error" in await tool.run(location="  ")

    def test_schema(self):
        schema = GetWeatherTool().schema
        assert schema["parameters"]["properties"]["location"]["type"] == "string"
        assert schema["parameters"]["properties"]["unit"]["enum"] == ["celsius", "fahrenheit"]
