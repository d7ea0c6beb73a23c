"""Centralized configuration: all env vars in one place."""

import os


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings:
    """Application settings loaded from environment variables."""

    def __init__(self):
        self.cors_origins: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
        self.git_sha: str = os.getenv("GIT_SHA", "unknown")
        self.environment: str = os.getenv("ENVIRONMENT", "local")

        # Town the dashboard serves
        self.location: str = os.getenv("DASHBOARD_LOCATION", "port_alberni")
        self.latitude: float = float(os.getenv("LATITUDE", "49.2334"))
        self.longitude: float = float(os.getenv("LONGITUDE", "-124.8039"))
        self.timezone: str = os.getenv("DASHBOARD_TIMEZONE", "America/Vancouver")

        # Upstream APIs
        self.openweather_api_key: str | None = os.getenv("OPENWEATHER_API_KEY")
        self.http_timeout_seconds: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))

        # Cache
        self.cache_database_url: str | None = os.getenv("CACHE_DATABASE_URL")
        self.cache_single_flight: bool = _env_bool("CACHE_SINGLE_FLIGHT")
        self.weather_ttl_seconds: int = int(os.getenv("WEATHER_TTL_SECONDS", str(15 * 60)))
        self.ferry_ttl_seconds: int = int(os.getenv("FERRY_TTL_SECONDS", str(30 * 60)))
        self.gas_prices_ttl_seconds: int = int(os.getenv("GAS_PRICES_TTL_SECONDS", str(6 * 60 * 60)))

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def validate(self) -> list[str]:
        """Return list of missing env vars that degrade live data."""
        required = ["OPENWEATHER_API_KEY", "CACHE_DATABASE_URL"]
        return [var for var in required if not getattr(self, var.lower())]


settings = Settings()
