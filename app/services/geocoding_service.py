"""
Nominatim (OpenStreetMap) geocoding for meeting locations.

Only used when a booking is created without coordinates. Results are cached
in Redis; a failed lookup never blocks booking creation.
"""

import json
import logging
from typing import Optional

import httpx

from ..config import GEOCODE_CACHE_SECONDS, NOMINATIM_BASE_URL, NOMINATIM_USER_AGENT
from ..rate_limiter import get_redis_client

logger = logging.getLogger(__name__)


class NominatimGeocoder:
    def __init__(
        self,
        base_url: str = NOMINATIM_BASE_URL,
        user_agent: str = NOMINATIM_USER_AGENT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.transport = transport

    async def geocode(self, address: str) -> Optional[dict]:
        """
        Resolve a free-text address.

        Returns:
            Dict with lat, lon, place_id and display_name, or None if not found
        """
        address = (address or "").strip()
        if len(address) < 3:
            return None

        cache_key = f"nominatim:geocode:{address.lower()}"

        try:
            redis = get_redis_client()
            if redis:
                cached = redis.get(cache_key)
                if cached:
                    return json.loads(cached)
        except Exception as e:
            logger.warning(f"Redis cache read error: {e}")

        params = {"q": address, "format": "json", "limit": "1"}
        headers = {"User-Agent": self.user_agent}

        async with httpx.AsyncClient(transport=self.transport) as client:
            resp = await client.get(
                f"{self.base_url}/search", params=params, headers=headers, timeout=10.0
            )

        if resp.status_code >= 400:
            logger.warning(f"Nominatim API error {resp.status_code}: {resp.text[:200]}")
            return None

        results = resp.json()
        if not results:
            logger.info(f"📍 No geocoding result for address: {address}")
            return None

        item = results[0]
        location = {
            "lat": float(item["lat"]),
            "lon": float(item["lon"]),
            "place_id": str(item.get("place_id")) if item.get("place_id") is not None else None,
            "display_name": item.get("display_name"),
        }

        try:
            redis = get_redis_client()
            if redis:
                redis.setex(cache_key, GEOCODE_CACHE_SECONDS, json.dumps(location))
        except Exception as e:
            logger.warning(f"Redis cache write error: {e}")

        return location


def get_geocoder() -> NominatimGeocoder:
    """Dependency injection for the geocoder"""
    return NominatimGeocoder()
