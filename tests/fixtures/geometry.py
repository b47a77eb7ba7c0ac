"""Polygon fixtures for patch imports."""

import pytest
from shapely.geometry import Polygon


def square(x: float, y: float, size: float = 1.0) -> Polygon:
    """Axis-aligned square polygon with its lower-left corner at (x, y)."""
    return Polygon([(x, y), (x + size, y), (x + size, y + size), (x, y + size)])


@pytest.fixture
def north_zone_polygons() -> list[Polygon]:
    """Three disjoint polygons drawn for the same patch."""
    return [square(0, 0), square(2, 0), square(4, 0)]


@pytest.fixture
def geojson_square() -> dict:
    """A GeoJSON polygon mapping, as decoded from an upload."""
    return {
        "type": "Polygon",
        "coordinates": [[[10, 10], [11, 10], [11, 11], [10, 11], [10, 10]]],
    }
