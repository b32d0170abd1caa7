from __future__ import annotations

import logging
from typing import Optional

import requests

from .config import GeocodingConfig

LOGGER = logging.getLogger(__name__)

CITY_FIELDS = ("city", "town", "village", "municipality", "county")


class ReverseGeocoder:
    """Best-effort city names from a Nominatim-compatible ``/reverse`` endpoint."""

    def __init__(self, config: GeocodingConfig, session: Optional[requests.Session] = None):
        self.config = config
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": config.user_agent})

    def city_for(self, lat: float, lng: float) -> Optional[str]:
        """Return the city name at ``(lat, lng)``, or ``None`` on any failure."""
        url = f"{self.config.base_url.rstrip('/')}/reverse"
        params = {
            "format": "json",
            "lat": lat,
            "lon": lng,
            "zoom": 10,
            "addressdetails": 1,
        }
        try:
            response = self._session.get(url, params=params, timeout=self.config.timeout_s)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            LOGGER.warning("Reverse geocoding failed for %.5f, %.5f: %s", lat, lng, exc)
            return None

        address = payload.get("address") if isinstance(payload, dict) else None
        if not isinstance(address, dict):
            return None
        for field in CITY_FIELDS:
            value = address.get(field)
            if isinstance(value, str) and value.strip():
                return value.strip()
        return None
