"""BC Ferries sailings for the off-island routes Port Alberni residents use.

Source: the community-run capacity API at bcferriesapi.ca (no key).
"""

import logging
from datetime import datetime
from zoneinfo import ZoneInfo

import httpx

from dashboard.config import Settings
from dashboard.errors import ProducerFailed
from dashboard.services.cache import TemporalCache, utc_now

logger = logging.getLogger(__name__)

BC_FERRIES_API = "https://bcferriesapi.ca/v2/"
USER_AGENT = "PA-Daily-Dashboard/1.0"

TERMINALS = {
    "TSA": {"name": "Tsawwassen", "location": "Vancouver"},
    "SWB": {"name": "Swartz Bay", "location": "Victoria"},
    "HSB": {"name": "Horseshoe Bay", "location": "Vancouver"},
    "NAN": {"name": "Departure Bay", "location": "Nanaimo"},
    "DUK": {"name": "Duke Point", "location": "Nanaimo"},
    "LNG": {"name": "Langdale", "location": "Sunshine Coast"},
    "BOW": {"name": "Bowen Island", "location": "Bowen Island"},
    "FUL": {"name": "Fulford Harbour", "location": "Salt Spring Island"},
    "SGI": {"name": "Southern Gulf Islands", "location": "Gulf Islands"},
}

# Vancouver Island departure terminals
OFF_ISLAND_TERMINALS = {"NAN", "DUK", "SWB"}

# Off-island routes first, in order of use from Port Alberni
ROUTE_PRIORITY = ["NANHSB", "DUKTSA", "SWBTSA"]

BOARDING_WINDOW_MINUTES = 30


def local_now(tz: str) -> datetime:
    """Wall-clock time at the terminals; sailing times are published in local time."""
    return datetime.now(ZoneInfo(tz))


def ferry_key(location: str) -> str:
    return f"ferry_{location}_live"


def to_24h(value: str) -> str:
    """'7:00 am' -> '07:00'; already-24h strings pass through."""
    value = value.strip().lower()
    if not value.endswith(("am", "pm")):
        return value
    clock, period = value[:-2].strip(), value[-2:]
    hours, minutes = clock.split(":")
    hour = int(hours) % 12
    if period == "pm":
        hour += 12
    return f"{hour:02d}:{minutes}"


def sailing_status(departure: str, now: datetime) -> str:
    hours, minutes = departure.split(":")
    departure_minutes = int(hours) * 60 + int(minutes)
    current_minutes = now.hour * 60 + now.minute
    if departure_minutes < current_minutes - BOARDING_WINDOW_MINUTES:
        return "departed"
    if abs(departure_minutes - current_minutes) <= BOARDING_WINDOW_MINUTES:
        return "boarding"
    return "scheduled"


def process_routes(capacity_routes: list[dict], now: datetime) -> list[dict]:
    """Keep off-island routes with known terminals, most relevant first."""
    routes = []
    for route in capacity_routes:
        origin = TERMINALS.get(route.get("fromTerminalCode"))
        destination = TERMINALS.get(route.get("toTerminalCode"))
        if route.get("fromTerminalCode") not in OFF_ISLAND_TERMINALS:
            continue
        if not origin or not destination:
            logger.debug(
                "Skipping route with unknown terminal: %s -> %s",
                route.get("fromTerminalCode"),
                route.get("toTerminalCode"),
            )
            continue

        departures = []
        for sailing in route.get("sailings") or []:
            time_24h = to_24h(sailing["time"])
            departures.append(
                {
                    "time": time_24h,
                    "status": sailing_status(time_24h, now),
                    "vessel": sailing.get("vesselName") or "BC Ferry",
                }
            )

        code = route.get("routeCode", "")
        routes.append(
            {
                "id": code.lower(),
                "name": f"{origin['name']} → {destination['name']}",
                "from": f"{origin['location']} ({origin['name']})",
                "to": f"{destination['location']} ({destination['name']})",
                "departures": departures,
                "nextDeparture": next(
                    (d for d in departures if d["status"] == "scheduled"), None
                ),
            }
        )

    def priority(route: dict) -> int:
        code = route["id"].upper()
        return ROUTE_PRIORITY.index(code) if code in ROUTE_PRIORITY else len(ROUTE_PRIORITY)

    return sorted(routes, key=priority)


async def fetch_ferries(
    client: httpx.AsyncClient, tz: str = "America/Vancouver", now: datetime | None = None
) -> dict:
    """Fetch live sailings. Raises ProducerFailed when nothing usable comes back."""
    try:
        resp = await client.get(BC_FERRIES_API, headers={"User-Agent": USER_AGENT})
        resp.raise_for_status()
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        raise ProducerFailed(f"BC Ferries request failed: {e}") from e

    if not isinstance(data, dict):
        raise ProducerFailed("Unexpected BC Ferries payload")
    capacity_routes = data.get("capacityRoutes") or []
    logger.info("BC Ferries returned %d routes", len(capacity_routes))

    routes = process_routes(capacity_routes, now or local_now(tz))
    if not routes:
        raise ProducerFailed("No off-island routes in BC Ferries response")

    return {
        "routes": routes,
        "selectedRoute": routes[0]["id"],
        "alerts": [],
        "emergencyContact": "1-888-223-3779",
        "lastUpdated": utc_now().isoformat(),
        "source": "bc_ferries",
    }


def fallback_ferries() -> dict:
    routes = [
        {
            "id": code.lower(),
            "name": f"{TERMINALS[code[:3]]['name']} → {TERMINALS[code[3:]]['name']}",
            "from": f"{TERMINALS[code[:3]]['location']} ({TERMINALS[code[:3]]['name']})",
            "to": f"{TERMINALS[code[3:]]['location']} ({TERMINALS[code[3:]]['name']})",
            "departures": [],
            "nextDeparture": None,
        }
        for code in ROUTE_PRIORITY
    ]
    return {
        "routes": routes,
        "selectedRoute": routes[0]["id"],
        "alerts": ["Service information temporarily unavailable"],
        "emergencyContact": "1-888-223-3779",
        "notice": "Please check bcferries.com for current schedules",
        "lastUpdated": utc_now().isoformat(),
        "source": "fallback",
    }


async def get_ferries(
    cache: TemporalCache, client: httpx.AsyncClient, settings: Settings
) -> tuple[dict, bool]:
    """Ferry sailings for the configured town (30 minute cache by default)."""
    return await cache.get_or_produce(
        ferry_key(settings.location),
        settings.ferry_ttl_seconds,
        lambda: fetch_ferries(client, settings.timezone),
        fallback_ferries,
    )
