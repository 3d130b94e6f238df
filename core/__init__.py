"""
Core module for the Zone Lookup Engine.
Contains geometry types, the spatial index, containment testing and export.

Import the query service from core.query_service (it depends on loaders).
"""

from core.models import Coordinate, Zone, BoundingBox, IndexedZone, QueryResult
from core.spatial_index import SpatialIndex
from core.containment import ContainmentEngine, CheckResult, point_in_ring
from core.export import format_results, NOT_FOUND_MESSAGE
from core.config import ServiceSettings, get_settings

__all__ = [
    # Geometry types
    "Coordinate",
    "Zone",
    "BoundingBox",
    "IndexedZone",
    "QueryResult",
    # Lookup
    "SpatialIndex",
    "ContainmentEngine",
    "CheckResult",
    "point_in_ring",
    # Export
    "format_results",
    "NOT_FOUND_MESSAGE",
    # Settings
    "ServiceSettings",
    "get_settings",
]
