"""Point-in-polygon containment over GeoJSON-like and shapely geometries.

Containment is used as a soft filter: anything that cannot be read as a
Polygon or MultiPolygon simply contains nothing.
"""

from __future__ import annotations

import logging
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from shapely.geometry import MultiPolygon, Polygon

LOGGER = logging.getLogger(__name__)

Vertex = Tuple[float, float]
Ring = List[Vertex]
Bounds = Tuple[float, float, float, float]


def ring_contains(lng: float, lat: float, ring: Sequence[Vertex]) -> bool:
    """Crossing-number test of ``(lng, lat)`` against a closed or open ring."""
    inside = False
    count = len(ring)
    j = count - 1
    for i in range(count):
        xi, yi = ring[i]
        xj, yj = ring[j]
        # Horizontal edges fail the strict test, so the division below is safe.
        if (yi > lat) != (yj > lat) and lng < (xj - xi) * (lat - yi) / (yj - yi) + xi:
            inside = not inside
        j = i
    return inside


def polygon_contains(lng: float, lat: float, rings: Sequence[Sequence[Vertex]]) -> bool:
    """Inside the outer ring and outside every hole."""
    if not rings:
        return False
    if not ring_contains(lng, lat, rings[0]):
        return False
    for hole in rings[1:]:
        if ring_contains(lng, lat, hole):
            return False
    return True


def contains(point: Sequence[float], geometry: Any) -> bool:
    """Return whether ``point`` (``(lng, lat)``) lies inside ``geometry``.

    ``geometry`` may be a GeoJSON ``Polygon``/``MultiPolygon`` mapping, a
    ``Feature`` wrapping one, or a shapely ``Polygon``/``MultiPolygon``.
    """
    coords = _coerce_point(point)
    if coords is None:
        return False
    polygons = extract_polygons(geometry)
    if not polygons:
        return False
    lng, lat = coords
    return any(polygon_contains(lng, lat, rings) for rings in polygons)


def geometry_bounds(geometry: Any) -> Optional[Bounds]:
    """Bounding box of the outer rings as ``(min_lng, min_lat, max_lng, max_lat)``."""
    polygons = extract_polygons(geometry)
    if not polygons:
        return None
    vertices = [vertex for rings in polygons if rings for vertex in rings[0]]
    if not vertices:
        return None
    lngs = [vertex[0] for vertex in vertices]
    lats = [vertex[1] for vertex in vertices]
    return min(lngs), min(lats), max(lngs), max(lats)


def bounds_contain(bounds: Bounds, lng: float, lat: float) -> bool:
    min_lng, min_lat, max_lng, max_lat = bounds
    return min_lng <= lng <= max_lng and min_lat <= lat <= max_lat


def extract_polygons(geometry: Any) -> List[List[Ring]]:
    """Normalise ``geometry`` into a list of polygons, each a list of rings.

    Returns an empty list for malformed or unsupported geometries.
    """
    if isinstance(geometry, Polygon):
        return [_shapely_rings(geometry)]
    if isinstance(geometry, MultiPolygon):
        return [_shapely_rings(polygon) for polygon in geometry.geoms]
    if not isinstance(geometry, Mapping):
        return []
    if geometry.get("type") == "Feature":
        return extract_polygons(geometry.get("geometry"))

    geom_type = geometry.get("type")
    coordinates = geometry.get("coordinates")
    if not isinstance(coordinates, (list, tuple)) or not coordinates:
        return []
    if geom_type == "Polygon":
        rings = _coerce_polygon(coordinates)
        return [rings] if rings else []
    if geom_type == "MultiPolygon":
        polygons: List[List[Ring]] = []
        for member in coordinates:
            rings = _coerce_polygon(member)
            if rings is None:
                return []
            polygons.append(rings)
        return polygons
    LOGGER.debug("Unsupported geometry type: %s", geom_type)
    return []


def _shapely_rings(polygon: Polygon) -> List[Ring]:
    if polygon.is_empty:
        return []
    rings = [[(x, y) for x, y, *_ in polygon.exterior.coords]]
    for interior in polygon.interiors:
        rings.append([(x, y) for x, y, *_ in interior.coords])
    return rings


def _coerce_polygon(raw: Any) -> Optional[List[Ring]]:
    if not isinstance(raw, (list, tuple)) or not raw:
        return None
    rings: List[Ring] = []
    for raw_ring in raw:
        ring = _coerce_ring(raw_ring)
        if ring is None:
            return None
        rings.append(ring)
    return rings


def _coerce_ring(raw: Any) -> Optional[Ring]:
    if not isinstance(raw, (list, tuple)):
        return None
    ring: Ring = []
    for vertex in raw:
        coords = _coerce_point(vertex)
        if coords is None:
            return None
        ring.append(coords)
    return ring


def _coerce_point(raw: Any) -> Optional[Vertex]:
    if not isinstance(raw, (list, tuple)) or len(raw) < 2:
        return None
    try:
        return float(raw[0]), float(raw[1])
    except (TypeError, ValueError):
        return None
