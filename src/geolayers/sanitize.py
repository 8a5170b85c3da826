"""Pruning of invalid coordinates from arbitrary GeoJSON.

Every payload passes through here before a layer is built from it. A single
non-finite coordinate poisons bounds computation for the whole map, so
anything that cannot be drawn is dropped instead of repaired.
"""

from __future__ import annotations

import math
from typing import Any, Mapping

MIN_LINE_POINTS = 2
MIN_RING_POINTS = 4


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def coord_valid(coord: Any) -> bool:
    """True when `coord` is a position whose x and y are finite numbers."""
    return (
        isinstance(coord, (list, tuple))
        and len(coord) >= 2
        and _is_number(coord[0])
        and _is_number(coord[1])
    )


def _valid_points(coords: Any) -> list[Any]:
    if not isinstance(coords, (list, tuple)):
        return []
    return [c for c in coords if coord_valid(c)]


def _clean_line(coords: Any) -> list[Any] | None:
    points = _valid_points(coords)
    return points if len(points) >= MIN_LINE_POINTS else None


def _clean_polygon(rings: Any) -> list[list[Any]] | None:
    if not isinstance(rings, (list, tuple)):
        return None
    kept = [r for r in (_valid_points(ring) for ring in rings) if len(r) >= MIN_RING_POINTS]
    return kept or None


def _parts(coords: Any) -> list[Any]:
    return list(coords) if isinstance(coords, (list, tuple)) else []


def prune_geometry(geom: Any) -> dict[str, Any] | None:
    """Return a cleaned copy of a GeoJSON geometry, or None when nothing survives."""
    if not isinstance(geom, Mapping):
        return None
    geom_type = geom.get("type")
    coords = geom.get("coordinates")

    if geom_type == "Point":
        return {"type": "Point", "coordinates": coords} if coord_valid(coords) else None

    if geom_type == "MultiPoint":
        points = _valid_points(coords)
        return {"type": "MultiPoint", "coordinates": points} if points else None

    if geom_type == "LineString":
        line = _clean_line(coords)
        return {"type": "LineString", "coordinates": line} if line else None

    if geom_type == "MultiLineString":
        lines = [line for line in map(_clean_line, _parts(coords)) if line]
        return {"type": "MultiLineString", "coordinates": lines} if lines else None

    if geom_type == "Polygon":
        rings = _clean_polygon(coords)
        return {"type": "Polygon", "coordinates": rings} if rings else None

    if geom_type == "MultiPolygon":
        polygons = [poly for poly in map(_clean_polygon, _parts(coords)) if poly]
        return {"type": "MultiPolygon", "coordinates": polygons} if polygons else None

    if geom_type == "GeometryCollection":
        members = [g for g in map(prune_geometry, _parts(geom.get("geometries"))) if g]
        return {"type": "GeometryCollection", "geometries": members} if members else None

    return None


def _clean_feature(feature: Any) -> dict[str, Any] | None:
    if not isinstance(feature, Mapping):
        return None
    geometry = prune_geometry(feature.get("geometry"))
    if geometry is None:
        return None
    properties = feature.get("properties")
    out: dict[str, Any] = {
        "type": "Feature",
        "geometry": geometry,
        "properties": dict(properties) if isinstance(properties, Mapping) else {},
    }
    if "id" in feature:
        out["id"] = feature["id"]
    return out


def sanitize_geojson(obj: Any) -> dict[str, Any] | None:
    """Sanitize a FeatureCollection, Feature or bare geometry.

    A FeatureCollection always comes back as a collection, possibly empty.
    Features and bare geometries come back as None when nothing valid is left.
    """
    if not isinstance(obj, Mapping):
        return None
    obj_type = obj.get("type")
    if obj_type == "FeatureCollection":
        features = [f for f in map(_clean_feature, _parts(obj.get("features"))) if f]
        return {"type": "FeatureCollection", "features": features}
    if obj_type == "Feature":
        return _clean_feature(obj)
    return prune_geometry(obj)


def empty_collection() -> dict[str, Any]:
    return {"type": "FeatureCollection", "features": []}
