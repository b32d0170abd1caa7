"""Shared fixtures: a small GeoNames-style gazetteer, country polygons, config."""

import json

import pytest

from visitstats.schemas import Ping

# 2024-01-01T00:00:00Z in epoch milliseconds
JAN_1 = 1704067200000
HOUR = 3600 * 1000
DAY = 24 * HOUR

GAZETTEER_ROWS = [
    # id, name, asciiname, alternatenames, lat, lng, class, code, country, cc2, admin1
    ["4250542", "Springfield", "Springfield", "", "39.80172", "-89.64371", "P", "PPLA", "US", "", "IL"],
    ["2147497", "Springfield", "Springfield", "", "-27.65", "152.9", "P", "PPL", "AU", "", "04"],
    ["2988507", "Paris", "Paris", "", "48.85341", "2.3488", "P", "PPLC", "FR", "", "11"],
    ["4717560", "Paris", "Paris", "", "33.66094", "-95.55551", "P", "PPLA2", "US", "", "TX"],
    ["2950159", "Berlin", "Berlin", "", "52.52437", "13.41053", "P", "PPLC", "DE", "", "16"],
]


def square(x0, y0, x1, y1):
    return [[x0, y0], [x0, y1], [x1, y1], [x1, y0], [x0, y0]]


@pytest.fixture
def gazetteer_path(tmp_path):
    lines = ["\t".join(row) for row in GAZETTEER_ROWS]
    lines += [
        "too\tfew\tcolumns",
        "1\t\tNoName\t\t10.0\t10.0",
        "2\tBadLat\tBadLat\t\tnorth\t10.0",
        "3\tNanLat\tNanLat\t\tnan\t10.0",
    ]
    path = tmp_path / "cities.txt"
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return path


@pytest.fixture
def countries_geojson():
    return {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": {"NAME": "Squareland"},
                "geometry": {"type": "Polygon", "coordinates": [square(0, 0, 10, 10), square(4, 4, 6, 6)]},
            },
            {
                "type": "Feature",
                "properties": {"name": "Twinland"},
                "geometry": {
                    "type": "MultiPolygon",
                    "coordinates": [[square(20, 0, 30, 10)], [[[40, 0], [40, 10], [50, 10], [50, 0], [40, 0]]]],
                },
            },
            {
                "type": "Feature",
                "properties": {"ADMIN": "Shadowland"},
                "geometry": {"type": "Polygon", "coordinates": [square(0, 0, 10, 10)]},
            },
            {
                "type": "Feature",
                "properties": {"NAME": "Pointland"},
                "geometry": {"type": "Point", "coordinates": [60, 5]},
            },
            {
                "type": "Feature",
                "properties": {"NAME": "Brokenland"},
                "geometry": {"type": "Polygon", "coordinates": [[["x", "y"]]]},
            },
        ],
    }


@pytest.fixture
def countries_path(tmp_path, countries_geojson):
    path = tmp_path / "countries.geojson"
    path.write_text(json.dumps(countries_geojson), encoding="utf-8")
    return path


@pytest.fixture
def config_path(tmp_path, gazetteer_path, countries_path):
    path = tmp_path / "config.yaml"
    path.write_text(
        "\n".join(
            [
                "database:",
                f"  path: {tmp_path / 'data' / 'pings.tsv'}",
                "gazetteer:",
                f"  path: {gazetteer_path}",
                "  use_bundled: false",
                "countries:",
                f"  path: {countries_path}",
            ]
        )
        + "\n",
        encoding="utf-8",
    )
    return path


def ping(city=None, ts=None, lat=0.0, lng=0.0, country=None):
    return Ping(lat=lat, lng=lng, timestamp=ts, city=city, country=country)
