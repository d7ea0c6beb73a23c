"""Weekly pump prices for the town's gas stations.

Natural Resources Canada publishes a weekly CSV of average regular-gas
prices. Stations get the regional base price with small fixed offsets so the
widget can rank them; the provincial average is the fallback.
"""

import csv
import io
import logging

import httpx

from dashboard.config import Settings
from dashboard.errors import ProducerFailed
from dashboard.services.cache import TemporalCache, utc_now

logger = logging.getLogger(__name__)

NRCAN_PRICES_CSV = (
    "https://natural-resources.canada.ca/sites/nrcan/files/energy/"
    "energy-fuel-prices/canadianpumppricesall.csv"
)
USER_AGENT = "PA-Daily-Dashboard/1.0"

# cents per litre
BC_FALLBACK_PRICE = 164.9
PLAUSIBLE_PRICE = (100.0, 300.0)
REGION_NAMES = ("vancouver", "british columbia", "bc")

STATIONS = [
    {"id": "tseshaht-market", "name": "Tseshaht Market", "brand": "Independent",
     "address": "7581 Pacific Rim Hwy, Port Alberni, BC", "offset": -1.5},
    {"id": "chevron-johnston", "name": "Chevron & On the Run", "brand": "Chevron",
     "address": "4781 Johnston Rd, Port Alberni, BC", "offset": -0.5},
    {"id": "esso-circle-k", "name": "Esso & Circle K", "brand": "Esso",
     "address": "3955 Johnston Rd, Port Alberni, BC", "offset": 0.0},
    {"id": "petro-canada-river", "name": "Petro-Canada", "brand": "Petro-Canada",
     "address": "5101 River Rd, Port Alberni, BC", "offset": 0.0},
    {"id": "coop-johnston", "name": "CO-OP", "brand": "Co-op",
     "address": "4006 Johnston Rd, Port Alberni, BC", "offset": 0.0},
    {"id": "mobil-johnston", "name": "Mobil", "brand": "Mobil",
     "address": "3455 Johnston Rd, Port Alberni, BC", "offset": 0.5},
    {"id": "shell-johnston", "name": "Shell", "brand": "Shell",
     "address": "3690 Johnston Rd, Port Alberni, BC", "offset": 1.5},
]


def gas_prices_key(location: str) -> str:
    return f"gas_prices_{location}"


def build_station_report(base_price: float, source: str, data_date: str | None = None) -> dict:
    """Per-station prices (cheapest first) plus summary stats."""
    stations = [
        {
            "id": s["id"],
            "name": s["name"],
            "brand": s["brand"],
            "address": s["address"],
            "price": round(base_price + s["offset"], 1),
        }
        for s in STATIONS
    ]
    stations.sort(key=lambda s: s["price"])

    prices = [s["price"] for s in stations]
    price_range = round(max(prices) - min(prices), 1)
    if price_range > 2.0:
        alert = {"type": "good", "message": f"Save {price_range:.1f}¢/L by choosing the right station!"}
    else:
        alert = {"type": "info", "message": "Gas prices are fairly consistent across town."}

    return {
        "stations": stations,
        "averagePrice": round(sum(prices) / len(prices), 1),
        "cheapestStation": stations[0]["name"],
        "cheapestPrice": min(prices),
        "mostExpensivePrice": max(prices),
        "priceRange": price_range,
        "alert": alert,
        "dataDate": data_date or "Recent",
        "updateFrequency": "Weekly",
        "currency": "CAD",
        "unit": "cents per litre",
        "lastUpdated": utc_now().isoformat(),
        "source": source,
    }


def find_regional_price(csv_text: str) -> tuple[float, str | None] | None:
    """First plausible price on a BC row, with the row's date column if any."""
    low, high = PLAUSIBLE_PRICE
    for row in csv.reader(io.StringIO(csv_text)):
        if not row or not any(name in row[0].lower() for name in REGION_NAMES):
            continue
        for cell in row[1:6]:
            try:
                price = float(cell)
            except ValueError:
                continue
            if low < price < high:
                date = row[1].strip() if len(row) > 1 and row[1].strip() != cell else None
                return price, date
    return None


async def fetch_gas_prices(client: httpx.AsyncClient) -> dict:
    try:
        resp = await client.get(NRCAN_PRICES_CSV, headers={"User-Agent": USER_AGENT})
        resp.raise_for_status()
    except httpx.HTTPError as e:
        raise ProducerFailed(f"NRCan price download failed: {e}") from e

    found = find_regional_price(resp.text)
    if found is None:
        raise ProducerFailed("No BC price in NRCan data")
    price, data_date = found
    logger.info("NRCan BC price %.1f c/L (%s)", price, data_date or "undated")
    return build_station_report(price, "government_of_canada", data_date)


def fallback_gas_prices() -> dict:
    report = build_station_report(BC_FALLBACK_PRICE, "fallback")
    report["note"] = "Using BC provincial average pricing. Government data temporarily unavailable."
    return report


async def get_gas_prices(
    cache: TemporalCache, client: httpx.AsyncClient, settings: Settings
) -> tuple[dict, bool]:
    """Station prices for the configured town (6 hour cache by default)."""
    return await cache.get_or_produce(
        gas_prices_key(settings.location),
        settings.gas_prices_ttl_seconds,
        lambda: fetch_gas_prices(client),
        fallback_gas_prices,
    )
