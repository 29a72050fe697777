"""Distance helpers and postal code geocoding (Nominatim) for location context."""

import logging
import math
from dataclasses import dataclass
from functools import lru_cache

import httpx

from feed_engine.config import get_settings

logger = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0088


@dataclass
class GeoLocation:
    """Geocoded location result."""

    latitude: float
    longitude: float
    display_name: str


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in kilometres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def proximity_score(distance_km: float, radius_km: float) -> float:
    """Linear falloff: 1.0 at the user's location, 0 at (and beyond) the radius."""
    if radius_km <= 0:
        return 0.0
    return max(0.0, 1.0 - distance_km / radius_km)


@lru_cache(maxsize=1000)
def postal_code_to_coords(postal_code: str) -> GeoLocation | None:
    """
    Convert a postal code to lat/lon coordinates.

    Uses Nominatim (OpenStreetMap) with caching.
    Results are cached in-memory (up to 1000 entries).

    Args:
        postal_code: postal code in the configured country

    Returns:
        GeoLocation with lat/lon, or None if not found
    """
    postal_code = (postal_code or "").strip()
    if not postal_code or len(postal_code) > 10:
        return None

    settings = get_settings()
    try:
        resp = httpx.get(
            settings.nominatim_url,
            params={
                "postalcode": postal_code,
                "country": settings.geocode_country,
                "format": "json",
                "limit": 1,
            },
            headers={
                "User-Agent": "DiscoveryFeedEngine/1.0",
            },
            timeout=10,
        )
        resp.raise_for_status()
        results = resp.json()

        if results:
            result = results[0]
            return GeoLocation(
                latitude=float(result["lat"]),
                longitude=float(result["lon"]),
                display_name=result.get("display_name", ""),
            )

        logger.warning(f"No geocoding result for postal code: {postal_code}")
        return None

    except (httpx.HTTPError, ValueError, KeyError) as e:
        logger.error(f"Geocoding error for postal code {postal_code}: {e}")
        return None
