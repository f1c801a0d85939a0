"""GeoJSON geometry helpers: map bounds, area and validity."""

import logging
import math
from typing import Any, Iterator, List, Optional, Tuple

from shapely.geometry import shape
from shapely.affinity import scale
from shapely.validation import make_valid

logger = logging.getLogger(__name__)

KM_PER_DEGREE_LAT = 110.574
KM_PER_DEGREE_LNG_EQUATOR = 111.320

Bounds = List[List[float]]


def _is_number(value: Any) -> bool:
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _is_sequence(value: Any) -> bool:
    return isinstance(value, (list, tuple))


def iter_positions(coordinates: Any) -> Iterator[Tuple[float, float]]:
    """
    Yield every (lng, lat) pair found in arbitrarily nested GeoJSON coordinates.

    A node is either a position (a sequence whose first two items are numbers)
    or a sequence of nodes. Anything else is skipped, so malformed leaves never
    raise and no geometry type needs its own branch.
    """
    if not _is_sequence(coordinates):
        return
    if len(coordinates) >= 2 and _is_number(coordinates[0]) and _is_number(coordinates[1]):
        yield coordinates[0], coordinates[1]
        return
    for child in coordinates:
        yield from iter_positions(child)


def _iter_geometry_positions(geometry: Any) -> Iterator[Tuple[float, float]]:
    if not isinstance(geometry, dict):
        return
    if "coordinates" in geometry:
        yield from iter_positions(geometry["coordinates"])
    # GeometryCollection members are walked the same way
    for member in geometry.get("geometries") or []:
        yield from _iter_geometry_positions(member)


def calculate_bounds(geometry: Any) -> Optional[Bounds]:
    """
    Compute the map bounds of a GeoJSON geometry.

    Args:
        geometry: GeoJSON geometry with [lng, lat] positions

    Returns:
        [[min_lat, min_lng], [max_lat, max_lng]] or None when the geometry has
        no usable coordinates. Longitudes are plain min/max; geometries crossing
        the antimeridian are not special-cased.
    """
    min_lat = min_lng = math.inf
    max_lat = max_lng = -math.inf
    found = False

    for lng, lat in _iter_geometry_positions(geometry):
        found = True
        min_lat = min(min_lat, lat)
        max_lat = max(max_lat, lat)
        min_lng = min(min_lng, lng)
        max_lng = max(max_lng, lng)

    if not found:
        return None

    return [[min_lat, min_lng], [max_lat, max_lng]]


def bounds_to_geometry(bounds: Bounds) -> dict:
    """Build a GeoJSON Polygon covering [[min_lat, min_lng], [max_lat, max_lng]]."""
    (min_lat, min_lng), (max_lat, max_lng) = bounds
    return {
        "type": "Polygon",
        "coordinates": [[
            [min_lng, min_lat],
            [max_lng, min_lat],
            [max_lng, max_lat],
            [min_lng, max_lat],
            [min_lng, min_lat],
        ]],
    }


def to_shape(geometry: Any):
    """Convert GeoJSON to a Shapely geometry, or None if it cannot be read."""
    if not isinstance(geometry, dict) or not geometry.get("type"):
        return None
    try:
        return shape(geometry)
    except Exception as e:
        logger.debug(f"Unreadable geometry of type {geometry.get('type')}: {str(e)}")
        return None


def geometry_area_km2(geometry: Any) -> float:
    """
    Approximate area in km² using an equirectangular projection centred on the
    geometry's mean latitude. Good enough to compare candidates for one city.
    """
    geom = to_shape(geometry)
    if geom is None or geom.is_empty:
        return 0.0

    if not geom.is_valid:
        geom = make_valid(geom)

    mean_lat = geom.centroid.y
    km_per_degree_lng = KM_PER_DEGREE_LNG_EQUATOR * math.cos(math.radians(mean_lat))

    projected = scale(geom, xfact=km_per_degree_lng, yfact=KM_PER_DEGREE_LAT, origin=(0, 0))
    return abs(projected.area)


def geometry_validity(geometry: Any) -> float:
    """
    Rate how usable a geometry is as a city boundary.

    Returns:
        0.0 for missing, empty or degenerate (zero-area, point) geometry,
        0.5 for open lines and invalid but non-empty polygons, 1.0 otherwise.
    """
    geom = to_shape(geometry)
    if geom is None or geom.is_empty:
        return 0.0

    if geom.geom_type in ("Polygon", "MultiPolygon"):
        if geom.area == 0:
            return 0.0
        return 1.0 if geom.is_valid else 0.5

    if geom.geom_type in ("LineString", "MultiLineString"):
        if geom.length == 0:
            return 0.0
        parts = geom.geoms if geom.geom_type == "MultiLineString" else [geom]
        return 1.0 if all(part.is_closed for part in parts) else 0.5

    if geom.geom_type == "GeometryCollection":
        return max((geometry_validity(member.__geo_interface__) for member in geom.geoms), default=0.0)

    # Points carry no extent
    return 0.0
