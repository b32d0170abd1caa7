"""Run-length visit aggregation over a chronological ping sequence.

A visit is a maximal contiguous run of time-ordered pings attributed to the
same place. The pass is a fold: a small ``RunState`` record is threaded from
ping to ping, and per-place accumulators live in an arena addressed by index
that belongs to a single call of :func:`aggregate`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, Sequence, Set, Tuple, Union

from .countries import CountryResolver, resolve_country
from .gazetteer import DEFAULT_MATCH_RADIUS_KM, Gazetteer
from .schemas import UNKNOWN_COUNTRY, CitySummary, CountrySummary, Ping, VisitStatistics

LOGGER = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

CountrySource = Union[CountryResolver, Sequence[Tuple[Any, Optional[str]]], None]


def sort_pings(pings: Iterable[Ping]) -> List[Ping]:
    """Timestamp ascending, untimestamped pings last, ties by input order."""
    indexed = list(enumerate(pings))
    indexed.sort(
        key=lambda item: (
            item[1].timestamp is None,
            item[1].timestamp if item[1].timestamp is not None else 0,
            item[0],
        )
    )
    return [ping for _, ping in indexed]


def day_key(timestamp: Optional[int]) -> Optional[str]:
    """UTC calendar date (``YYYY-MM-DD``) of an epoch-millisecond timestamp."""
    if timestamp is None:
        return None
    try:
        return (EPOCH + timedelta(milliseconds=timestamp)).date().isoformat()
    except OverflowError:
        LOGGER.debug("Timestamp %s is outside the calendar range", timestamp)
        return None


@dataclass
class PlaceAccumulator:
    key: str
    visits: int = 0
    sum_lat: float = 0.0
    sum_lng: float = 0.0
    samples: int = 0
    last_ts: Optional[int] = None
    day_keys: Set[str] = field(default_factory=set)
    cities: Set[str] = field(default_factory=set)

    def observe(self, ping: Ping, day: Optional[str]) -> None:
        self.sum_lat += ping.lat
        self.sum_lng += ping.lng
        self.samples += 1
        if ping.timestamp is not None and (self.last_ts is None or ping.timestamp > self.last_ts):
            self.last_ts = ping.timestamp
        if day is not None:
            self.day_keys.add(day)


class PlaceArena:
    """Accumulators in first-seen order, looked up by place key."""

    def __init__(self) -> None:
        self.records: List[PlaceAccumulator] = []
        self._slots: Dict[str, int] = {}

    def slot(self, key: str) -> int:
        idx = self._slots.get(key)
        if idx is None:
            idx = len(self.records)
            self._slots[key] = idx
            self.records.append(PlaceAccumulator(key=key))
        return idx

    def __getitem__(self, idx: int) -> PlaceAccumulator:
        return self.records[idx]


class RunState(NamedTuple):
    last_city: Optional[str] = None
    last_country: Optional[str] = None


def ping_country(ping: Ping, countries: CountrySource) -> str:
    """The ping's own country, else the first containing polygon, else ``""``."""
    own = (ping.country or "").strip()
    if own:
        return own
    if countries is None:
        return ""
    if isinstance(countries, CountryResolver):
        return countries.resolve(ping.lat, ping.lng) or ""
    return resolve_country((ping.lng, ping.lat), countries) or ""


def step(
    state: RunState,
    ping: Ping,
    country: str,
    cities: PlaceArena,
    countries: PlaceArena,
) -> RunState:
    """Fold one ping into the arenas and return the next run state."""
    city = (ping.city or "").strip()
    day = day_key(ping.timestamp)

    last_city: Optional[str]
    if not city:
        # An unnamed ping means the previous city was left.
        last_city = None
    else:
        record = cities[cities.slot(city)]
        if city != state.last_city:
            record.visits += 1
        record.observe(ping, day)
        last_city = city

    country_key = country or UNKNOWN_COUNTRY
    record = countries[countries.slot(country_key)]
    if country_key != state.last_country:
        record.visits += 1
    record.observe(ping, day)
    if city:
        record.cities.add(city)

    return RunState(last_city=last_city, last_country=country_key)


def aggregate(
    pings: Iterable[Ping],
    countries: CountrySource = None,
    gazetteer: Optional[Gazetteer] = None,
    match_radius_km: float = DEFAULT_MATCH_RADIUS_KM,
) -> VisitStatistics:
    """Compute per-city and per-country visit summaries.

    ``pings`` may arrive in any order; they are sorted chronologically first.
    Rows are emitted in order of first appearance. Pings whose country cannot
    be determined take part in run tracking under ``"Unknown"`` but produce no
    country row.
    """
    ordered = sort_pings(pings)
    city_arena = PlaceArena()
    country_arena = PlaceArena()

    state = RunState()
    for ping in ordered:
        state = step(state, ping, ping_country(ping, countries), city_arena, country_arena)

    city_rows = [_city_summary(record, gazetteer, match_radius_km) for record in city_arena.records]
    country_rows = [
        _country_summary(record)
        for record in country_arena.records
        if record.key and record.key != UNKNOWN_COUNTRY
    ]
    unknown = sum(
        record.samples for record in country_arena.records if record.key == UNKNOWN_COUNTRY
    )
    if unknown:
        LOGGER.debug("%d of %d pings have no known country", unknown, len(ordered))

    return VisitStatistics(
        cities=city_rows,
        countries=country_rows,
        total_pings=len(ordered),
        distinct_cities=len(city_rows),
        distinct_countries=len(country_rows),
    )


def _city_summary(
    record: PlaceAccumulator, gazetteer: Optional[Gazetteer], match_radius_km: float
) -> CitySummary:
    avg_lat = record.sum_lat / record.samples
    avg_lng = record.sum_lng / record.samples
    lat, lng, matched = avg_lat, avg_lng, False
    if gazetteer is not None:
        match = gazetteer.resolve(record.key, avg_lat, avg_lng, match_radius_km)
        lat, lng, matched = match.lat, match.lng, match.matched
    return CitySummary(
        key=record.key,
        visits=record.visits,
        last_visited_ts=record.last_ts,
        days_present=len(record.day_keys),
        representative_lat=lat,
        representative_lng=lng,
        samples=record.samples,
        gazetteer_matched=matched,
    )


def _country_summary(record: PlaceAccumulator) -> CountrySummary:
    return CountrySummary(
        country=record.key,
        visits=record.visits,
        last_visited_ts=record.last_ts,
        days_present=len(record.day_keys),
        distinct_cities_visited=len(record.cities),
    )
