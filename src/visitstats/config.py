from __future__ import annotations

from pathlib import Path
from typing import Optional

import yaml
from pydantic import BaseModel, Field

from .schemas import SortDirection


class DatabaseConfig(BaseModel):
    path: Path = Path("data/pings.tsv")


class GazetteerConfig(BaseModel):
    path: Optional[Path] = None
    use_bundled: bool = True
    match_radius_km: float = 200.0


class CountriesConfig(BaseModel):
    path: Optional[Path] = None
    simplify_tolerance: float = 0.0


class GeocodingConfig(BaseModel):
    enabled: bool = False
    base_url: str = "https://nominatim.openstreetmap.org"
    user_agent: str = "visitstats"
    timeout_s: float = 10.0


class StatisticsConfig(BaseModel):
    city_sort_key: str = "visits"
    city_sort_dir: SortDirection = SortDirection.DESC
    country_sort_key: str = "days_present"
    country_sort_dir: SortDirection = SortDirection.DESC


class AppConfig(BaseModel):
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    gazetteer: GazetteerConfig = Field(default_factory=GazetteerConfig)
    countries: CountriesConfig = Field(default_factory=CountriesConfig)
    geocoding: GeocodingConfig = Field(default_factory=GeocodingConfig)
    statistics: StatisticsConfig = Field(default_factory=StatisticsConfig)

    @classmethod
    def load(cls, path: Path) -> "AppConfig":
        with Path(path).expanduser().open("r", encoding="utf-8") as handle:
            raw = yaml.safe_load(handle)
        return cls.model_validate(raw or {})
