"""
Spatial Index - bounding-box pre-filter for point queries.

A flat collection of (zone, bounding box) pairs. Box containment is
necessary but not sufficient for polygon containment, so every candidate
returned here still has to go through the exact ring test.
"""

import logging
from typing import Iterable, List, Optional

import numpy as np

from core.models import Coordinate, IndexedZone, Zone

log = logging.getLogger(__name__)


class SpatialIndex:
    """
    Insertion-ordered bounding-box index over zones.

    Boxes are mirrored into an (n, 4) numpy array so a query is a single
    vectorized mask. The array is rebuilt lazily after inserts.

    Usage:
        index = SpatialIndex.build(zones)
        candidates = index.query(Coordinate(39.74, -104.99))
    """

    def __init__(self):
        self._entries: List[IndexedZone] = []
        self._boxes: Optional[np.ndarray] = None

    @classmethod
    def build(cls, zones: Iterable[Zone]) -> "SpatialIndex":
        """Build a fresh index from an iterable of zones."""
        index = cls()
        for zone in zones:
            index.insert(zone)
        index._box_array()
        log.debug(f"Spatial index built with {index.count()} entries")
        return index

    def insert(self, zone: Zone) -> IndexedZone:
        """Compute the zone's bounding box and store the pair."""
        entry = IndexedZone.from_zone(zone)
        self._entries.append(entry)
        self._boxes = None
        return entry

    def _box_array(self) -> np.ndarray:
        if self._boxes is None:
            if self._entries:
                self._boxes = np.array(
                    [e.bounding_box.as_tuple() for e in self._entries],
                    dtype=np.float64,
                )
            else:
                self._boxes = np.empty((0, 4), dtype=np.float64)
        return self._boxes

    def query(self, point: Coordinate) -> List[Zone]:
        """
        Return every zone whose bounding box contains the point.

        Results keep insertion order. No further filtering is applied.
        """
        boxes = self._box_array()
        if boxes.shape[0] == 0:
            return []

        lat, lng = point.latitude, point.longitude
        mask = (
            (boxes[:, 0] <= lat) & (lat <= boxes[:, 2]) &
            (boxes[:, 1] <= lng) & (lng <= boxes[:, 3])
        )
        return [self._entries[i].zone for i in np.flatnonzero(mask)]

    def entries(self) -> List[IndexedZone]:
        return list(self._entries)

    def count(self) -> int:
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
