"""Test fixtures for erengine tests.

Provides fixtures for:
- Sample registry entities and incoming records
- Patch polygons
- In-memory and SQLite-backed registries
"""

from .entities import *
from .geometry import *
from .registry import *
