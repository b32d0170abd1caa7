from __future__ import annotations

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

UNKNOWN_COUNTRY = "Unknown"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class Ping(BaseModel):
    """One timestamped geolocation sample.

    ``timestamp`` is epoch milliseconds. ``None`` means the sample carries no
    time at all; it is never treated as 0.
    """

    model_config = ConfigDict(frozen=True)

    lat: float = Field(allow_inf_nan=False)
    lng: float = Field(allow_inf_nan=False)
    timestamp: Optional[int] = None
    accuracy: Optional[float] = None
    city: Optional[str] = None
    country: Optional[str] = None


class GazetteerEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    lat: float
    lng: float
    country_code: Optional[str] = None
    admin_region: Optional[str] = None


class GazetteerMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lng: float
    matched: bool = False
    distance_km: Optional[float] = None
    entry: Optional[GazetteerEntry] = None


class CitySummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    key: str
    visits: int = 0
    last_visited_ts: Optional[int] = None
    days_present: int = 0
    representative_lat: Optional[float] = None
    representative_lng: Optional[float] = None
    samples: int = 0
    gazetteer_matched: bool = False


class CountrySummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    country: str
    visits: int = 0
    last_visited_ts: Optional[int] = None
    days_present: int = 0
    distinct_cities_visited: int = 0


class VisitStatistics(BaseModel):
    """Result of one aggregation pass, handed to callers as a value object."""

    model_config = ConfigDict(frozen=True)

    cities: List[CitySummary] = Field(default_factory=list)
    countries: List[CountrySummary] = Field(default_factory=list)
    total_pings: int = 0
    distinct_cities: int = 0
    distinct_countries: int = 0
