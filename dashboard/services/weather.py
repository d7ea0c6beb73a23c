"""OpenWeatherMap client for the town's current conditions and 5-day forecast.

Needs OPENWEATHER_API_KEY (free tier is enough). Without it, or on any
upstream error, the widget gets a clearly marked fallback record.
"""

import logging
from collections import OrderedDict
from datetime import datetime
from zoneinfo import ZoneInfo

import httpx

from dashboard.config import Settings
from dashboard.errors import ProducerFailed
from dashboard.services.cache import TemporalCache, utc_now

logger = logging.getLogger(__name__)

OPENWEATHER_BASE = "https://api.openweathermap.org/data/2.5"

ICONS = {
    "01d": "☀️",
    "01n": "🌙",
    "02d": "⛅",
    "02n": "⛅",
    "03d": "☁️",
    "03n": "☁️",
    "04d": "☁️",
    "04n": "☁️",
    "09d": "🌧️",
    "09n": "🌧️",
    "10d": "🌦️",
    "10n": "🌧️",
    "11d": "⛈️",
    "11n": "⛈️",
    "13d": "❄️",
    "13n": "❄️",
    "50d": "🌫️",
    "50n": "🌫️",
}
DEFAULT_ICON = "⛅"


def weather_key(location: str) -> str:
    return f"weather_{location}_live"


def icon_for(code: str | None) -> str:
    return ICONS.get(code or "", DEFAULT_ICON)


def _day_label(index: int, day: datetime) -> str:
    if index == 0:
        return "Today"
    if index == 1:
        return "Tomorrow"
    return day.strftime("%a")


def process_forecast(entries: list[dict], tz: str, days: int = 5) -> list[dict]:
    """Collapse 3-hourly forecast entries into daily high/low, by the town's local date."""
    zone = ZoneInfo(tz)
    daily: OrderedDict = OrderedDict()
    for item in entries:
        when = datetime.fromtimestamp(item["dt"], tz=zone)
        bucket = daily.setdefault(when.date(), {"when": when, "temps": [], "icons": []})
        bucket["temps"].append(item["main"]["temp"])
        bucket["icons"].append(item["weather"][0]["icon"])

    forecast = []
    for index, bucket in enumerate(list(daily.values())[:days]):
        forecast.append(
            {
                "day": _day_label(index, bucket["when"]),
                "high": round(max(bucket["temps"])),
                "low": round(min(bucket["temps"])),
                "icon": icon_for(bucket["icons"][0]),
            }
        )
    return forecast


async def fetch_weather(client: httpx.AsyncClient, settings: Settings) -> dict:
    """Fetch live conditions. Raises ProducerFailed on any upstream problem."""
    if not settings.openweather_api_key:
        raise ProducerFailed("OPENWEATHER_API_KEY is not set")

    params = {
        "lat": settings.latitude,
        "lon": settings.longitude,
        "appid": settings.openweather_api_key,
        "units": "metric",
    }
    try:
        current_resp = await client.get(f"{OPENWEATHER_BASE}/weather", params=params)
        if current_resp.status_code == 401:
            raise ProducerFailed("OpenWeatherMap rejected the API key")
        current_resp.raise_for_status()
        forecast_resp = await client.get(f"{OPENWEATHER_BASE}/forecast", params=params)
        forecast_resp.raise_for_status()
        current = current_resp.json()
        forecast = forecast_resp.json()
    except httpx.HTTPError as e:
        raise ProducerFailed(f"OpenWeatherMap request failed: {e}") from e

    try:
        return {
            "current": {
                "temp": round(current["main"]["temp"]),
                "condition": current["weather"][0]["description"],
                "humidity": current["main"]["humidity"],
                # m/s -> km/h
                "windSpeed": round(current["wind"]["speed"] * 3.6),
                "icon": icon_for(current["weather"][0].get("icon")),
            },
            "forecast": process_forecast(forecast.get("list", []), settings.timezone),
            "lastUpdated": utc_now().isoformat(),
            "source": "openweathermap",
        }
    except (KeyError, IndexError, TypeError) as e:
        raise ProducerFailed(f"Unexpected OpenWeatherMap payload: {e!r}") from e


def fallback_weather() -> dict:
    return {
        "current": {
            "temp": 12,
            "condition": "Data temporarily unavailable",
            "humidity": 65,
            "windSpeed": 15,
            "icon": DEFAULT_ICON,
        },
        "forecast": [
            {"day": day, "high": 14, "low": 8, "icon": DEFAULT_ICON}
            for day in ("Today", "Tomorrow", "Day 3", "Day 4", "Day 5")
        ],
        "lastUpdated": utc_now().isoformat(),
        "source": "fallback",
        "error": "API temporarily unavailable",
    }


async def get_weather(
    cache: TemporalCache, client: httpx.AsyncClient, settings: Settings
) -> tuple[dict, bool]:
    """Current weather for the configured town (15 minute cache by default)."""
    return await cache.get_or_produce(
        weather_key(settings.location),
        settings.weather_ttl_seconds,
        lambda: fetch_weather(client, settings),
        fallback_weather,
    )
