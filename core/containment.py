"""
Containment Engine - exact point-in-polygon testing.

Uses the even-odd (ray casting) rule over a ring of lat/lng vertices,
treating degrees as planar coordinates. No epsilon tolerance: a point
exactly on an edge or vertex lands wherever the formula puts it.

Each ring is tested on its own. An inner boundary is a separate zone and
is reported as its own match; it is not subtracted from the outer ring.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Sequence

from core.models import MIN_RING_VERTICES, Coordinate, QueryResult
from core.spatial_index import SpatialIndex

log = logging.getLogger(__name__)


def point_in_ring(point: Coordinate, ring: Sequence[Coordinate]) -> bool:
    """
    Even-odd ray casting test.

    Walks each edge (v[i], v[j]) with j = i - 1 (wrapping to the last
    vertex) and toggles on every crossing of the horizontal ray at the
    point's latitude. Rings shorter than four vertices always return False.
    """
    n = len(ring)
    if n < MIN_RING_VERTICES:
        return False

    lat = point.latitude
    lng = point.longitude
    inside = False

    j = n - 1
    for i in range(n):
        vi = ring[i]
        vj = ring[j]
        if ((vi.longitude > lng) != (vj.longitude > lng)) and (
            lat < vj.latitude + (lng - vj.longitude) * (vi.latitude - vj.latitude)
            / (vi.longitude - vj.longitude)
        ):
            inside = not inside
        j = i

    return inside


@dataclass
class CheckResult:
    """Matches for one point, plus the cost of finding them."""
    results: List[QueryResult] = field(default_factory=list)
    candidate_count: int = 0
    elapsed_ms: float = 0.0

    @property
    def found(self) -> bool:
        return bool(self.results)


class ContainmentEngine:
    """Narrows with the spatial index, then runs the exact ring test."""

    def __init__(self, index: SpatialIndex):
        self.index = index

    def check_point(self, point: Coordinate) -> CheckResult:
        start = time.perf_counter()

        candidates = self.index.query(point)
        results = [
            zone.to_result()
            for zone in candidates
            if point_in_ring(point, zone.boundary)
        ]

        elapsed_ms = (time.perf_counter() - start) * 1000
        log.debug(f"Narrowed {self.index.count()} zones to {len(candidates)} candidates, "
                  f"{len(results)} matches in {elapsed_ms:.2f} ms")

        return CheckResult(
            results=results,
            candidate_count=len(candidates),
            elapsed_ms=elapsed_ms,
        )
