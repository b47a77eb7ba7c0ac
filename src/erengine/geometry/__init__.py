"""Geometry aggregation for spatial (patch) imports."""

from .aggregator import (
    GeometryInput,
    aggregate,
    aggregate_to_wkt,
    as_polygons,
    target_key,
    to_multipolygon,
    to_multipolygon_wkt,
    with_stored_geometries,
)

__all__ = [
    "GeometryInput",
    "aggregate",
    "aggregate_to_wkt",
    "as_polygons",
    "target_key",
    "to_multipolygon",
    "to_multipolygon_wkt",
    "with_stored_geometries",
]
