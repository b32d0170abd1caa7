from __future__ import annotations

import logging
import math
import unicodedata
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Tuple

import geonamescache

from .schemas import GazetteerEntry, GazetteerMatch

LOGGER = logging.getLogger(__name__)

EARTH_RADIUS_KM = 6371.0088
DEFAULT_MATCH_RADIUS_KM = 200.0

# GeoNames table columns
NAME_COLUMN = 1
LAT_COLUMN = 4
LNG_COLUMN = 5
COUNTRY_COLUMN = 8
ADMIN_COLUMN = 10
MIN_COLUMNS = 6


def _normalize(text: str | None) -> str:
    if not text:
        return ""
    return unicodedata.normalize("NFC", text).strip().lower()


def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in kilometres on a mean-radius sphere."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    a = min(1.0, max(0.0, a))
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


class Gazetteer:
    """Named reference places indexed case-insensitively by name."""

    def __init__(self, entries: Iterable[GazetteerEntry] = ()) -> None:
        self._index: Dict[str, List[GazetteerEntry]] = {}
        count = 0
        for entry in entries:
            key = _normalize(entry.name)
            if not key:
                continue
            self._index.setdefault(key, []).append(entry)
            count += 1
        self._size = count

    def __len__(self) -> int:
        return self._size

    def candidates(self, name: str | None) -> List[GazetteerEntry]:
        return list(self._index.get(_normalize(name), ()))

    def resolve(
        self,
        name: str | None,
        approx_lat: float,
        approx_lng: float,
        max_distance_km: float = DEFAULT_MATCH_RADIUS_KM,
    ) -> GazetteerMatch:
        """Pick the same-named entry nearest to the approximate coordinate.

        The match is accepted only within ``max_distance_km``; otherwise the
        caller's own estimate comes back unchanged with ``matched=False``.
        """
        best: Optional[GazetteerEntry] = None
        best_distance = math.inf
        for entry in self._index.get(_normalize(name), ()):
            distance = haversine_km(approx_lat, approx_lng, entry.lat, entry.lng)
            if distance < best_distance:
                best, best_distance = entry, distance

        if best is None:
            return GazetteerMatch(lat=approx_lat, lng=approx_lng)
        if best_distance <= max_distance_km:
            return GazetteerMatch(
                lat=best.lat, lng=best.lng, matched=True, distance_km=best_distance, entry=best
            )
        LOGGER.debug(
            "Nearest %r is %.1f km away; keeping estimate (%.4f, %.4f)",
            name,
            best_distance,
            approx_lat,
            approx_lng,
        )
        return GazetteerMatch(lat=approx_lat, lng=approx_lng, distance_km=best_distance)

    @classmethod
    def from_geonamescache(cls) -> "Gazetteer":
        gc = geonamescache.GeonamesCache()
        entries = []
        for city in gc.get_cities().values():
            try:
                entries.append(
                    GazetteerEntry(
                        name=city["name"],
                        lat=float(city["latitude"]),
                        lng=float(city["longitude"]),
                        country_code=city.get("countrycode") or None,
                        admin_region=city.get("admin1code") or None,
                    )
                )
            except (KeyError, TypeError, ValueError):
                continue
        gazetteer = cls(entries)
        LOGGER.info("Indexed %d geonames cities", len(gazetteer))
        return gazetteer


def resolve(
    name: str | None,
    approx_lat: float,
    approx_lng: float,
    gazetteer: Gazetteer | None,
    max_distance_km: float = DEFAULT_MATCH_RADIUS_KM,
) -> Tuple[float, float, bool]:
    if gazetteer is None:
        return approx_lat, approx_lng, False
    match = gazetteer.resolve(name, approx_lat, approx_lng, max_distance_km)
    return match.lat, match.lng, match.matched


def parse_gazetteer_line(line: str) -> Optional[GazetteerEntry]:
    """Parse one tab-separated GeoNames row, or ``None`` if it is unusable."""
    cols = line.rstrip("\r\n").split("\t")
    if len(cols) < MIN_COLUMNS:
        return None
    name = cols[NAME_COLUMN].strip()
    lat = _parse_coordinate(cols[LAT_COLUMN])
    lng = _parse_coordinate(cols[LNG_COLUMN])
    if not name or lat is None or lng is None:
        return None
    return GazetteerEntry(
        name=name,
        lat=lat,
        lng=lng,
        country_code=_column(cols, COUNTRY_COLUMN),
        admin_region=_column(cols, ADMIN_COLUMN),
    )


def load_gazetteer(path: Path | str) -> Gazetteer:
    """Load a GeoNames-style table, skipping bad rows.

    A missing or unreadable file gives an empty gazetteer so resolution falls
    back to the caller's estimates.
    """
    entries: List[GazetteerEntry] = []
    skipped = 0
    try:
        with Path(path).expanduser().open("r", encoding="utf-8", errors="replace") as fh:
            for line in fh:
                if not line.strip():
                    continue
                entry = parse_gazetteer_line(line)
                if entry is None:
                    skipped += 1
                    continue
                entries.append(entry)
    except OSError as exc:
        LOGGER.warning("Gazetteer %s unavailable (%s); using averaged coordinates", path, exc)
        return Gazetteer()
    if skipped:
        LOGGER.debug("Skipped %d unusable gazetteer rows in %s", skipped, path)
    gazetteer = Gazetteer(entries)
    LOGGER.info("Indexed %d gazetteer entries from %s", len(gazetteer), path)
    return gazetteer


def _parse_coordinate(value: str) -> Optional[float]:
    value = value.strip()
    if not value:
        return None
    try:
        number = float(value)
    except ValueError:
        return None
    if not math.isfinite(number):
        return None
    return number


def _column(cols: List[str], idx: int) -> Optional[str]:
    if idx >= len(cols):
        return None
    return cols[idx].strip() or None
