"""Parser turning Overpass JSON elements into GeoJSON boundary candidates."""

import logging
from typing import Any, Dict, List, Optional

from shapely.geometry import Point, Polygon

from cityboundary.schemas.boundary import OSMBoundary
from cityboundary.services.geometry import geometry_area_km2

logger = logging.getLogger(__name__)

Position = List[float]
Ring = List[Position]


def points_match(p1: Position, p2: Position, tolerance: float = 1e-7) -> bool:
    """Check if two [lon, lat] points are close enough to be considered the same."""
    return abs(p1[0] - p2[0]) < tolerance and abs(p1[1] - p2[1]) < tolerance


def _way_positions(nodes: Any) -> Ring:
    """Extract [lon, lat] positions from an Overpass `out geom` node list."""
    positions = []
    for node in nodes or []:
        if not isinstance(node, dict):
            continue
        lat, lon = node.get("lat"), node.get("lon")
        if isinstance(lat, (int, float)) and isinstance(lon, (int, float)):
            positions.append([lon, lat])
    return positions


def _find_connection(chain: Ring, segments: List[Ring]) -> Optional[int]:
    for i, seg in enumerate(segments):
        if (
            points_match(chain[-1], seg[0])
            or points_match(chain[-1], seg[-1])
            or points_match(chain[0], seg[-1])
            or points_match(chain[0], seg[0])
        ):
            return i
    return None


def _attach(chain: Ring, seg: Ring) -> Ring:
    if points_match(chain[-1], seg[0]):
        return chain + seg[1:]
    if points_match(chain[-1], seg[-1]):
        return chain + list(reversed(seg[:-1]))
    if points_match(chain[0], seg[-1]):
        return seg[:-1] + chain
    # chain[0] matches seg[0]
    return list(reversed(seg[1:])) + chain


def merge_rings(segments: List[Ring]) -> List[Ring]:
    """
    Stitch way segments into closed rings.

    Ways are connected if the end of one matches the start or end of another;
    segments are reversed as needed. Chains that cannot be closed are closed
    by repeating their first point. Rings with fewer than 4 positions are dropped.
    """
    remaining = [list(seg) for seg in segments if len(seg) >= 2]
    rings: List[Ring] = []

    while remaining:
        chain = remaining.pop(0)
        while not points_match(chain[0], chain[-1]):
            index = _find_connection(chain, remaining)
            if index is None:
                break
            chain = _attach(chain, remaining.pop(index))

        if not points_match(chain[0], chain[-1]):
            chain.append(list(chain[0]))
        if len(chain) >= 4:
            rings.append(chain)
        else:
            logger.debug(f"Dropping ring with only {len(chain)} points")

    return rings


class OSMBoundaryParser:
    """Parser for Overpass `out geom` JSON responses."""

    def way_to_geometry(self, way: Dict[str, Any]) -> Optional[dict]:
        """Closed ways become Polygons, open ways LineStrings."""
        positions = _way_positions(way.get("geometry"))
        if len(positions) < 2:
            return None

        if len(positions) >= 4 and points_match(positions[0], positions[-1]):
            return {"type": "Polygon", "coordinates": [positions]}

        return {"type": "LineString", "coordinates": positions}

    def relation_to_geometry(self, relation: Dict[str, Any]) -> Optional[dict]:
        """
        Build a Polygon or MultiPolygon from a relation's member ways.

        Outer (or role-less) ways are stitched into outer rings and inner ways
        into holes; each hole is attached to the outer ring containing it. When
        no member geometry is available the relation's bounds box is used.
        """
        outer_segments: List[Ring] = []
        inner_segments: List[Ring] = []

        for member in relation.get("members") or []:
            if not isinstance(member, dict) or member.get("type") != "way":
                continue
            positions = _way_positions(member.get("geometry"))
            if len(positions) < 2:
                continue
            role = member.get("role") or ""
            if role in ("outer", ""):
                outer_segments.append(positions)
            elif role == "inner":
                inner_segments.append(positions)

        outer_rings = merge_rings(outer_segments)
        if not outer_rings:
            return self._bounds_to_polygon(relation.get("bounds"))

        polygons: List[List[Ring]] = [[ring] for ring in outer_rings]
        shells = [Polygon(ring) for ring in outer_rings]

        for hole in merge_rings(inner_segments):
            probe = Point(hole[0])
            for shell, polygon in zip(shells, polygons):
                if shell.is_valid and shell.contains(probe):
                    polygon.append(hole)
                    break

        if len(polygons) == 1:
            return {"type": "Polygon", "coordinates": polygons[0]}
        return {"type": "MultiPolygon", "coordinates": polygons}

    @staticmethod
    def _bounds_to_polygon(bounds: Any) -> Optional[dict]:
        if not isinstance(bounds, dict):
            return None
        try:
            min_lat = float(bounds["minlat"])
            min_lon = float(bounds["minlon"])
            max_lat = float(bounds["maxlat"])
            max_lon = float(bounds["maxlon"])
        except (KeyError, TypeError, ValueError):
            return None
        return {
            "type": "Polygon",
            "coordinates": [[
                [min_lon, min_lat],
                [max_lon, min_lat],
                [max_lon, max_lat],
                [min_lon, max_lat],
                [min_lon, min_lat],
            ]],
        }

    def element_to_candidate(self, element: Dict[str, Any]) -> Optional[OSMBoundary]:
        """Convert one Overpass element into an unscored candidate."""
        element_type = element.get("type")
        tags = element.get("tags") or {}
        if element_type not in ("way", "relation") or not tags.get("name") or element.get("id") is None:
            return None

        if element_type == "way":
            geometry = self.way_to_geometry(element)
        else:
            geometry = self.relation_to_geometry(element)

        return OSMBoundary(
            osm_id=f"{element_type}/{element['id']}",
            osm_type=element_type,
            name=str(tags["name"]),
            admin_level=str(tags["admin_level"]) if tags.get("admin_level") is not None else None,
            boundary_type=tags.get("boundary") or "administrative",
            area=round(geometry_area_km2(geometry), 3) if geometry else None,
            geometry=geometry,
            tags=tags,
            score=0.0,
        )

    def parse_candidates(self, osm_data: Dict[str, Any]) -> List[OSMBoundary]:
        """
        Parse all named way/relation elements of an Overpass response.

        Duplicate elements (same type and id) are collapsed. Elements whose
        geometry cannot be built are still returned with geometry None so the
        scorer can reject them.
        """
        candidates: List[OSMBoundary] = []
        seen = set()

        for element in osm_data.get("elements") or []:
            if not isinstance(element, dict):
                continue
            try:
                candidate = self.element_to_candidate(element)
            except Exception as e:
                logger.warning(f"Skipping malformed OSM element {element.get('type')}/{element.get('id')}: {str(e)}")
                continue
            if candidate is None or candidate.osm_id in seen:
                continue
            seen.add(candidate.osm_id)
            candidates.append(candidate)

        logger.info(f"Parsed {len(candidates)} boundary candidates from {len(osm_data.get('elements') or [])} elements")
        return candidates
