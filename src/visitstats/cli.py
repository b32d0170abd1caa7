from __future__ import annotations

import asyncio
import json
import locale
import logging
from pathlib import Path
from typing import Dict, List, Optional

import typer
from rich.console import Console
from rich.table import Table

from .config import AppConfig
from .countries import load_countries
from .gazetteer import Gazetteer, load_gazetteer
from .geocoding import ReverseGeocoder
from .persistence import PingStore, load_geojson_pings
from .projector import city_table_rows, country_table_rows, sort_rows
from .schemas import Ping, SortDirection
from .service import StatsService, build_loaders

app = typer.Typer(add_completion=False, help="visitstats command line interface")
console = Console()

LOGGER = logging.getLogger(__name__)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )


def _setup_locale() -> None:
    try:
        locale.setlocale(locale.LC_COLLATE, "")
    except locale.Error as exc:
        LOGGER.debug("Using default collation: %s", exc)


def _print_table(title: str, rows: List[Dict[str, str]], columns: List[str]) -> None:
    table = Table(title=title)
    for idx, column in enumerate(columns):
        table.add_column(column, justify="left" if idx == 0 else "right")
    for row in rows:
        table.add_row(*(row[column] for column in columns))
    console.print(table)


def _load_gazetteer(config: AppConfig) -> Optional[Gazetteer]:
    if config.gazetteer.path is not None:
        return load_gazetteer(config.gazetteer.path)
    if config.gazetteer.use_bundled:
        return Gazetteer.from_geonamescache()
    return None


@app.command("stats")
def stats(
    config_path: Path = typer.Option(..., exists=True, help="Path to YAML config"),
    city_sort: Optional[str] = typer.Option(None, help="Column to sort the city table by"),
    country_sort: Optional[str] = typer.Option(None, help="Column to sort the country table by"),
    ascending: Optional[bool] = typer.Option(None, "--asc/--desc", help="Sort direction for both tables"),
    json_path: Optional[Path] = typer.Option(None, "--json", help="Also write statistics as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Aggregate the ping log into per-country and per-city statistics."""
    _setup_logging(verbose)
    _setup_locale()
    config = AppConfig.load(config_path)
    direction = None if ascending is None else (SortDirection.ASC if ascending else SortDirection.DESC)

    store = PingStore(config.database.path)
    gazetteer_loader, countries_loader = build_loaders(config)
    service = StatsService(
        store,
        gazetteer_loader=gazetteer_loader,
        countries_loader=countries_loader,
        match_radius_km=config.gazetteer.match_radius_km,
    )
    result = asyncio.run(service.recompute())
    if result is None:
        raise typer.Exit(code=1)

    console.print(f"Total pins: {result.total_pings}")
    console.print(f"Distinct cities: {result.distinct_cities}")
    console.print(f"Distinct countries: {result.distinct_countries}")

    try:
        countries = sort_rows(
            result.countries,
            country_sort or config.statistics.country_sort_key,
            direction or config.statistics.country_sort_dir,
        )
        cities = sort_rows(
            result.cities,
            city_sort or config.statistics.city_sort_key,
            direction or config.statistics.city_sort_dir,
        )
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    _print_table(
        "Countries",
        country_table_rows(countries),
        ["Country", "Last visited", "Visits", "Days", "Cities visited"],
    )
    _print_table("Cities", city_table_rows(cities), ["City", "Last visited", "Visits", "Days"])

    if json_path is not None:
        json_path.parent.mkdir(parents=True, exist_ok=True)
        json_path.write_text(json.dumps(result.model_dump(), indent=2), encoding="utf-8")
        console.print(f"Wrote statistics to {json_path}")


@app.command("add-ping")
def add_ping(
    config_path: Path = typer.Option(..., exists=True, help="Path to YAML config"),
    lat: float = typer.Option(...),
    lng: float = typer.Option(...),
    timestamp: Optional[int] = typer.Option(None, help="Epoch milliseconds"),
    accuracy: Optional[float] = typer.Option(None),
    city: Optional[str] = typer.Option(None),
    country: Optional[str] = typer.Option(None),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Append one ping to the log, looking up its city when geocoding is enabled."""
    _setup_logging(verbose)
    config = AppConfig.load(config_path)

    if not city and config.geocoding.enabled:
        city = ReverseGeocoder(config.geocoding).city_for(lat, lng)
        if verbose:
            console.print(f"Reverse geocoded city: {city or 'none'}")

    ping = Ping(
        lat=lat,
        lng=lng,
        timestamp=timestamp,
        accuracy=accuracy,
        city=city or None,
        country=country or None,
    )
    PingStore(config.database.path).append(ping)
    console.print(f"Saved ping at {lat:.5f}, {lng:.5f}" + (f" ({ping.city})" if ping.city else ""))


@app.command("import-geojson")
def import_geojson(
    config_path: Path = typer.Option(..., exists=True, help="Path to YAML config"),
    geojson_path: Path = typer.Option(..., "--geojson", exists=True),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Append every Point feature of a GeoJSON FeatureCollection to the log."""
    _setup_logging(verbose)
    config = AppConfig.load(config_path)

    written = PingStore(config.database.path).extend(load_geojson_pings(geojson_path))
    console.print(f"Imported {written} pings from {geojson_path}.")


@app.command("resolve-city")
def resolve_city(
    name: str = typer.Argument(..., help="City name"),
    config_path: Path = typer.Option(..., exists=True, help="Path to YAML config"),
    lat: float = typer.Option(..., help="Approximate latitude"),
    lng: float = typer.Option(..., help="Approximate longitude"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Resolve a city name to gazetteer coordinates near an approximate point."""
    _setup_logging(verbose)
    config = AppConfig.load(config_path)

    gazetteer = _load_gazetteer(config) or Gazetteer()
    match = gazetteer.resolve(name, lat, lng, config.gazetteer.match_radius_km)
    if match.matched and match.entry is not None:
        console.print(
            f"{match.entry.name} ({match.entry.country_code or '?'}): "
            f"{match.lat:.5f}, {match.lng:.5f} ({match.distance_km:.1f} km away)"
        )
    else:
        console.print(f"No gazetteer match for {name}; keeping {lat:.5f}, {lng:.5f}")


@app.command("country")
def country(
    config_path: Path = typer.Option(..., exists=True, help="Path to YAML config"),
    lat: float = typer.Option(...),
    lng: float = typer.Option(...),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
) -> None:
    """Print the country containing a coordinate."""
    _setup_logging(verbose)
    config = AppConfig.load(config_path)

    resolver = load_countries(config.countries.path, config.countries.simplify_tolerance)
    console.print(resolver.resolve(lat, lng) or "Unknown")


if __name__ == "__main__":
    app()
