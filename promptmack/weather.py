from typing import Any, Dict

from .vendor import VendorClient


class WeatherClient(VendorClient):
    """Open-Meteo forecasts; the public API needs no key."""

    vendor = "open-meteo"
    requires_key = False

    def __init__(self, base_url: str = "https://api.open-meteo.com/v1", **kwargs):
        super().__init__(None, base_url, **kwargs)

    async def forecast(self, latitude: float, longitude: float) -> Dict[str, Any]:
        params = {
            "latitude": latitude,
            "longitude": longitude,
            "current": "temperature_2m",
            "hourly": "temperature_2m",
            "daily": "sunrise,sunset",
            "timezone": "auto",
        }
        return await self._get("/forecast", params)
