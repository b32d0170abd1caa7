from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from shapely.errors import GEOSException
from shapely.geometry import MultiPolygon, Polygon, shape

from .geometry import Bounds, Ring, bounds_contain, contains, extract_polygons, geometry_bounds, polygon_contains

LOGGER = logging.getLogger(__name__)

SUPPORTED_TYPES = {"Polygon", "MultiPolygon"}
NAME_PROPERTIES = ("NAME", "name", "ADMIN")


def resolve_country(
    point: Sequence[float], countries: Iterable[Tuple[Any, Optional[str]]]
) -> Optional[str]:
    """Return the name of the first geometry containing ``point`` (``(lng, lat)``).

    The search is first-match over the caller's order, so overlapping polygons
    (disputed territories) resolve to whichever comes first.
    """
    for geometry, name in countries:
        if contains(point, geometry):
            return name or None
    return None


@dataclass(frozen=True)
class CountryShape:
    name: str
    polygons: Tuple[Tuple[Ring, ...], ...]
    bounds: Bounds

    def contains(self, lng: float, lat: float) -> bool:
        if not bounds_contain(self.bounds, lng, lat):
            return False
        return any(polygon_contains(lng, lat, rings) for rings in self.polygons)


class CountryResolver:
    """Ordered country polygons with a bounding-box prefilter."""

    def __init__(self, shapes: Iterable[CountryShape] = ()) -> None:
        self.shapes: List[CountryShape] = list(shapes)

    def __len__(self) -> int:
        return len(self.shapes)

    def resolve(self, lat: float, lng: float) -> Optional[str]:
        for country in self.shapes:
            if country.contains(lng, lat):
                return country.name or None
        return None


def load_countries(
    source: Union[Path, str, Mapping[str, Any], None], simplify_tolerance: float = 0.0
) -> CountryResolver:
    """Build a resolver from a GeoJSON FeatureCollection path or mapping.

    Unreadable input yields an empty resolver rather than an error.
    """
    if source is None:
        return CountryResolver()
    if isinstance(source, Mapping):
        payload: Any = source
    else:
        try:
            with Path(source).expanduser().open("r", encoding="utf-8") as handle:
                payload = json.load(handle)
        except (OSError, ValueError) as exc:
            LOGGER.warning("Could not read country polygons from %s: %s", source, exc)
            return CountryResolver()

    if not isinstance(payload, Mapping) or payload.get("type") != "FeatureCollection":
        LOGGER.warning("Country polygons are not a GeoJSON FeatureCollection; ignoring")
        return CountryResolver()

    shapes: List[CountryShape] = []
    for feature in payload.get("features") or []:
        country = _build_shape(feature, simplify_tolerance)
        if country is not None:
            shapes.append(country)
    LOGGER.info("Loaded %d country polygons", len(shapes))
    return CountryResolver(shapes)


def feature_name(properties: Any) -> str:
    if not isinstance(properties, Mapping):
        return ""
    for key in NAME_PROPERTIES:
        value = properties.get(key)
        if value:
            return str(value).strip()
    return ""


def _build_shape(feature: Any, simplify_tolerance: float) -> Optional[CountryShape]:
    if not isinstance(feature, Mapping):
        return None
    geometry = feature.get("geometry")
    if not isinstance(geometry, Mapping) or geometry.get("type") not in SUPPORTED_TYPES:
        LOGGER.debug("Skipping feature without polygon geometry")
        return None
    name = feature_name(feature.get("properties"))
    try:
        geom = shape(geometry)
    except (GEOSException, ValueError, TypeError, KeyError, IndexError, AttributeError) as exc:
        LOGGER.debug("Skipping malformed geometry for %r: %s", name, exc)
        return None
    if simplify_tolerance:
        geom = geom.simplify(simplify_tolerance, preserve_topology=True)
    if not isinstance(geom, (Polygon, MultiPolygon)):
        LOGGER.debug("Skipping unsupported geometry type: %s", geom.geom_type)
        return None

    polygons = extract_polygons(geom)
    bounds = geometry_bounds(geom)
    if not polygons or bounds is None:
        return None
    return CountryShape(
        name=name,
        polygons=tuple(tuple(rings) for rings in polygons),
        bounds=bounds,
    )
