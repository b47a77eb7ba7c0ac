"""Geometry aggregation for patch imports.

Regroups the polygons of incoming patch records by their resolved target:
an existing entity id, or a synthetic ``new:<name>`` key for records that
seed a new patch. Grouping uses final decisions only; no name matching
happens here.
"""

from collections.abc import Iterable, Mapping
from typing import Any

from shapely import wkt
from shapely.errors import ShapelyError
from shapely.geometry import MultiPolygon, Polygon, shape
from shapely.geometry.base import BaseGeometry

from ..errors import GeometryError
from ..logging import get_context_logger
from ..models.base import RegistrySnapshot
from ..models.decisions import NEW_TARGET_PREFIX, Decision, DecisionAction

logger = get_context_logger(__name__)

# A shapely geometry, a GeoJSON geometry mapping or a WKT string
GeometryInput = BaseGeometry | Mapping[str, Any] | str


def target_key(decision: Decision) -> str | None:
    """Aggregation key for a decision, or None if it contributes no geometry.

    ``use_existing`` decisions group under their first target; one-to-many
    decisions therefore contribute their polygon exactly once.
    """
    if decision.action == DecisionAction.USE_EXISTING and decision.target_ids:
        return decision.target_ids[0]
    if decision.action == DecisionAction.CREATE_NEW:
        return decision.new_target_key
    return None


def aggregate(
    decisions: Iterable[Decision],
    geometry_by_record: Mapping[int, GeometryInput],
) -> dict[str, list[GeometryInput]]:
    """Group record geometries by resolved target.

    Args:
        decisions: Decisions of a patch batch, in record order
        geometry_by_record: Input geometry per record ordinal

    Returns:
        Mapping of target key to geometries; keys and geometries keep the
        order in which decisions are given. Pending and skipped records, and
        records without a geometry, are left out.
    """
    groups: dict[str, list[GeometryInput]] = {}
    excluded = 0

    for decision in decisions:
        geometry = geometry_by_record.get(decision.ordinal)
        if geometry is None:
            continue
        key = target_key(decision)
        if key is None:
            excluded += 1
            continue
        groups.setdefault(key, []).append(geometry)

    if excluded:
        logger.debug(f"{excluded} geometries belong to unresolved or skipped records")
    return groups


def with_stored_geometries(
    groups: Mapping[str, list[GeometryInput]],
    snapshot: RegistrySnapshot,
) -> dict[str, list[GeometryInput]]:
    """Put each existing patch's stored geometries ahead of its new ones.

    Groups keyed ``new:<name>`` and ids missing from the snapshot are
    returned unchanged.
    """
    merged: dict[str, list[GeometryInput]] = {}
    for key, geometries in groups.items():
        entity = None if key.startswith(NEW_TARGET_PREFIX) else snapshot.get(key)
        stored = list(entity.geometries) if entity else []
        merged[key] = [*stored, *geometries]
    return merged


def as_polygons(geometry: GeometryInput) -> list[Polygon]:
    """Flatten a polygon or multi-polygon (shapely, GeoJSON or WKT) into polygons."""
    if isinstance(geometry, str):
        try:
            geometry = wkt.loads(geometry)
        except (ValueError, ShapelyError) as e:
            raise GeometryError(f"invalid WKT geometry: {e}") from e
    elif not isinstance(geometry, BaseGeometry):
        try:
            geometry = shape(geometry)
        except (AttributeError, KeyError, TypeError, ValueError, ShapelyError) as e:
            raise GeometryError(f"invalid GeoJSON geometry: {e}") from e

    if isinstance(geometry, Polygon):
        return [geometry]
    if isinstance(geometry, MultiPolygon):
        return list(geometry.geoms)
    raise GeometryError(f"expected a polygon, got {geometry.geom_type}")


def to_multipolygon(geometries: Iterable[GeometryInput]) -> MultiPolygon:
    """Combine grouped geometries into one multi-polygon, preserving order."""
    polygons: list[Polygon] = []
    for geometry in geometries:
        polygons.extend(as_polygons(geometry))
    if not polygons:
        raise GeometryError("cannot build a multi-polygon from an empty group")
    return MultiPolygon(polygons)


def to_multipolygon_wkt(geometries: Iterable[GeometryInput]) -> str:
    """WKT of the combined multi-polygon, the registry's storage format."""
    return to_multipolygon(geometries).wkt


def aggregate_to_wkt(
    decisions: Iterable[Decision],
    geometry_by_record: Mapping[int, GeometryInput],
) -> dict[str, str]:
    """Aggregate and convert every group to multi-polygon WKT."""
    return {
        key: to_multipolygon_wkt(geometries)
        for key, geometries in aggregate(decisions, geometry_by_record).items()
    }
