from __future__ import annotations

import csv
import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from pydantic import ValidationError

from .schemas import Ping

LOGGER = logging.getLogger(__name__)

FIELDNAMES = ["timestamp", "lat", "lng", "accuracy", "city", "country"]
TIMESTAMP_PROPERTIES = ("timestamp", "time", "ts", "date")

Listener = Callable[[], None]


class PingStore:
    """Append-only TSV log of pings with change notifications.

    Subscribers are called after every successful append. ``subscribe``
    returns the matching unsubscribe callable.
    """

    def __init__(self, tsv_path: Path):
        self.tsv_path = Path(tsv_path)
        self._listeners: Dict[int, Listener] = {}
        self._next_token = 0

    def get_all(self) -> List[Ping]:
        """Read every ping in file order, skipping rows that do not parse."""
        if not self.tsv_path.exists():
            return []

        pings: List[Ping] = []
        with self.tsv_path.open("r", encoding="utf-8", errors="replace", newline="") as fh:
            reader = csv.DictReader(fh, delimiter="\t")
            for line_no, row in enumerate(reader, start=2):
                ping = _row_to_ping(row)
                if ping is None:
                    LOGGER.debug("Skipping unreadable ping on line %d of %s", line_no, self.tsv_path)
                    continue
                pings.append(ping)
        return pings

    def append(self, ping: Ping) -> None:
        self.extend([ping])

    def extend(self, pings: List[Ping]) -> int:
        """Append several pings and notify subscribers once."""
        if not pings:
            return 0
        self.tsv_path.parent.mkdir(parents=True, exist_ok=True)
        file_exists = self.tsv_path.exists()
        with self.tsv_path.open("a", encoding="utf-8", newline="") as fh:
            writer = csv.writer(fh, delimiter="\t")
            if not file_exists:
                writer.writerow(FIELDNAMES)
            for ping in pings:
                writer.writerow(_ping_to_row(ping))
        self._notify()
        return len(pings)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        token = self._next_token
        self._next_token += 1
        self._listeners[token] = listener

        def unsubscribe() -> None:
            self._listeners.pop(token, None)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners.values()):
            try:
                listener()
            except Exception:
                LOGGER.exception("Ping listener failed")


def load_geojson_pings(path: Path) -> List[Ping]:
    """Read Point features of a GeoJSON FeatureCollection as pings."""
    with Path(path).expanduser().open("r", encoding="utf-8") as handle:
        payload = json.load(handle)
    features = payload.get("features") if isinstance(payload, dict) else None
    if not isinstance(features, list):
        return []

    pings: List[Ping] = []
    for feature in features:
        ping = _feature_to_ping(feature)
        if ping is not None:
            pings.append(ping)
    LOGGER.info("Read %d pings from %s (%d features)", len(pings), path, len(features))
    return pings


def extract_timestamp(properties: Optional[dict]) -> Optional[int]:
    """First usable timestamp among the common property names, in epoch ms."""
    if not properties:
        return None
    for name in TIMESTAMP_PROPERTIES:
        value = properties.get(name)
        if value is None or isinstance(value, bool):
            continue
        number = _parse_float(str(value))
        if number is not None and number > 0:
            return int(number)
        parsed = _parse_datetime(str(value))
        if parsed is not None:
            return int(parsed.timestamp() * 1000)
    return None


def _feature_to_ping(feature: Any) -> Optional[Ping]:
    if not isinstance(feature, dict):
        return None
    geometry = feature.get("geometry") or {}
    coords = geometry.get("coordinates") if isinstance(geometry, dict) else None
    if not isinstance(coords, list) or len(coords) < 2:
        return None
    properties = feature.get("properties")
    if not isinstance(properties, dict):
        properties = {}
    try:
        return Ping(
            lng=coords[0],
            lat=coords[1],
            timestamp=extract_timestamp(properties),
            accuracy=_parse_float(str(properties.get("accuracy", ""))),
            city=_clean(properties.get("city")),
            country=_clean(properties.get("country")),
        )
    except ValidationError:
        return None


def _row_to_ping(row: Dict[str, Optional[str]]) -> Optional[Ping]:
    try:
        raw_ts = (row.get("timestamp") or "").strip()
        return Ping(
            timestamp=int(raw_ts) if raw_ts else None,
            lat=float(row["lat"]),
            lng=float(row["lng"]),
            accuracy=_parse_float(row.get("accuracy") or ""),
            city=_clean(row.get("city")),
            country=_clean(row.get("country")),
        )
    except (KeyError, TypeError, ValueError, ValidationError):
        return None


def _ping_to_row(ping: Ping) -> List[str]:
    return [
        "" if ping.timestamp is None else str(ping.timestamp),
        repr(ping.lat),
        repr(ping.lng),
        "" if ping.accuracy is None else repr(ping.accuracy),
        ping.city or "",
        ping.country or "",
    ]


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_float(value: str) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError:
        return None


def _parse_datetime(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
