"""
erengine - Entity Reconciliation Engine

Resolves externally-sourced records (employer rows from membership and
enterprise-agreement imports, patch boundaries from GeoJSON uploads) against
the authoritative registry: fuzzy matching, confidence tiering, human
override, duplicate merging and geometry aggregation.
"""

__version__ = "0.1.0"
