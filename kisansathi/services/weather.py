import logging
from typing import Any, Dict, Optional

import httpx

from .. import config

logger = logging.getLogger(__name__)

DEFAULT_TEMP = 28
DEFAULT_CONDITION = "Clear"


class WeatherConfigError(RuntimeError):
    pass


class WeatherProviderError(RuntimeError):
    pass


def normalize_current_weather(data: Dict[str, Any]) -> Dict[str, Any]:
    """Reshape an OpenWeather current-weather payload for the mobile client."""
    main = data.get("main")
    main = main if isinstance(main, dict) else {}
    weather = data.get("weather")
    weather = weather if isinstance(weather, list) else []
    wind = data.get("wind")
    wind = wind if isinstance(wind, dict) else {}

    temp = main.get("temp")
    try:
        temp = round(float(temp)) if temp is not None else DEFAULT_TEMP
    except (TypeError, ValueError, OverflowError):
        temp = DEFAULT_TEMP

    condition = None
    if weather and isinstance(weather[0], dict):
        condition = weather[0].get("description")

    return {
        "location": data.get("name") or "Your Location",
        "name": data.get("name"),
        "temp": temp,
        "condition": condition or DEFAULT_CONDITION,
        "humidity": main.get("humidity"),
        "windSpeed": wind.get("speed"),
    }


def fetch_current_weather(lat: float, lon: float, transport: Optional[httpx.BaseTransport] = None) -> Dict[str, Any]:
    api_key = config.get_openweather_api_key()
    if not api_key:
        raise WeatherConfigError("OPENWEATHER_API_KEY not configured")

    params = {
        "lat": lat,
        "lon": lon,
        "units": "metric",
        "appid": api_key,
    }
    logger.info("Fetching weather from OpenWeather for lat=%s lon=%s", lat, lon)
    try:
        with httpx.Client(timeout=20.0, transport=transport) as client:
            resp = client.get(config.get_openweather_url(), params=params)
            if resp.status_code >= 400:
                logger.error("OpenWeather API error: %s %s", resp.status_code, resp.text[:300])
                raise WeatherProviderError(f"OpenWeather API returned {resp.status_code}")
            data = resp.json()
    except httpx.HTTPError as e:
        raise WeatherProviderError(f"Weather request failed: {e}") from e
    except ValueError as e:
        raise WeatherProviderError(f"Weather response was not JSON: {e}") from e

    if not isinstance(data, dict):
        raise WeatherProviderError("Weather response was not an object")
    report = normalize_current_weather(data)
    logger.info("Weather data received: %s %s", report["name"], report["temp"])
    return report
