"""
Core data models for the Zone Lookup Engine.
"""

import math
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Sequence, Tuple

import numpy as np


# Rings with fewer vertices than this never report containment
MIN_RING_VERTICES = 4

DESCRIPTION_KEY = "description"


@dataclass(frozen=True)
class Coordinate:
    """A latitude/longitude pair in decimal degrees. No validation is applied."""
    latitude: float
    longitude: float

    def to_dict(self) -> Dict:
        return {"latitude": self.latitude, "longitude": self.longitude}


@dataclass(frozen=True)
class QueryResult:
    """
    The externally visible projection of a Zone.

    Carries the zone name and its attributes, but no boundary data.
    """
    zone_name: str
    attributes: Mapping[str, str]

    def __post_init__(self):
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    def to_dict(self) -> Dict:
        return {"zone_name": self.zone_name, "attributes": dict(self.attributes)}


@dataclass(frozen=True)
class Zone:
    """
    A named polygonal region with free-form attributes.

    The boundary is an ordered ring of coordinates. The first and last
    vertex may or may not coincide. Zones are never mutated after
    construction; a re-parse produces a new collection.
    """
    name: str
    attributes: Mapping[str, str] = field(default_factory=dict)
    boundary: Tuple[Coordinate, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))
        object.__setattr__(self, "boundary", tuple(self.boundary))

    def __eq__(self, other) -> bool:
        if not isinstance(other, Zone):
            return NotImplemented
        return (self.name == other.name
                and dict(self.attributes) == dict(other.attributes)
                and self.boundary == other.boundary)

    def __hash__(self) -> int:
        return hash((self.name, tuple(sorted(self.attributes.items())), self.boundary))

    @property
    def vertex_count(self) -> int:
        return len(self.boundary)

    @property
    def is_degenerate(self) -> bool:
        """True when the ring is too short to ever contain a point."""
        return len(self.boundary) < MIN_RING_VERTICES

    @property
    def description(self) -> str:
        return self.attributes.get(DESCRIPTION_KEY, "")

    def to_result(self) -> QueryResult:
        return QueryResult(zone_name=self.name, attributes=self.attributes)

    def to_dict(self) -> Dict:
        return {
            "name": self.name,
            "attributes": dict(self.attributes),
            "boundary": [c.to_dict() for c in self.boundary],
        }


@dataclass(frozen=True)
class BoundingBox:
    """
    Axis-aligned latitude/longitude envelope of a ring.

    The empty box (min = +inf, max = -inf) spans nothing and never
    contains a point.
    """
    min_lat: float
    min_lng: float
    max_lat: float
    max_lng: float

    @classmethod
    def from_ring(cls, ring: Sequence[Coordinate]) -> "BoundingBox":
        """Build the tight box enclosing every vertex of a ring."""
        if not ring:
            return cls.empty()
        points = np.array([(c.latitude, c.longitude) for c in ring], dtype=np.float64)
        mins = points.min(axis=0)
        maxs = points.max(axis=0)
        return cls(
            min_lat=float(mins[0]),
            min_lng=float(mins[1]),
            max_lat=float(maxs[0]),
            max_lng=float(maxs[1]),
        )

    @classmethod
    def empty(cls) -> "BoundingBox":
        return cls(math.inf, math.inf, -math.inf, -math.inf)

    @property
    def is_empty(self) -> bool:
        return self.min_lat > self.max_lat or self.min_lng > self.max_lng

    def contains(self, point: Coordinate) -> bool:
        """Inclusive on every edge."""
        return (self.min_lat <= point.latitude <= self.max_lat and
                self.min_lng <= point.longitude <= self.max_lng)

    def as_tuple(self) -> Tuple[float, float, float, float]:
        """Return (min_lat, min_lng, max_lat, max_lng)."""
        return (self.min_lat, self.min_lng, self.max_lat, self.max_lng)


@dataclass(frozen=True)
class IndexedZone:
    """A Zone paired with its precomputed bounding box."""
    zone: Zone
    bounding_box: BoundingBox

    @classmethod
    def from_zone(cls, zone: Zone) -> "IndexedZone":
        return cls(zone=zone, bounding_box=BoundingBox.from_ring(zone.boundary))


def coordinates_from_pairs(pairs: Iterable[Tuple[float, float]]) -> Tuple[Coordinate, ...]:
    """Build a ring from (latitude, longitude) pairs."""
    return tuple(Coordinate(lat, lng) for lat, lng in pairs)
