"""
KML Boundary Parser - streaming extraction of zones from KML documents.

Reads the document in chunks through an XML pull parser and walks the
start/end events with an explicit state object, so the whole document is
never held in memory. Each element is detached from its parent once its
end event has been handled.

Emission rules:
- outerBoundaryIs closes -> zone named after the Placemark
  (or "Outer Boundary <n>")
- innerBoundaryIs closes -> zone named "<Placemark> - Inner"
  (or "Inner Boundary <n>")
- a LinearRing directly under a Polygon, with no boundary wrapper,
  emits when its coordinates close (name or "Polygon <n>")
Rings with no usable coordinates are never emitted.
"""

import logging
import math
import os
import time
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO, Callable, Dict, Iterator, List, Optional, Union

from core.models import DESCRIPTION_KEY, Coordinate, Zone

log = logging.getLogger(__name__)

CHUNK_SIZE = 64 * 1024
PROGRESS_INTERVAL = 50

# Used for progress estimates when the document size cannot be determined
DEFAULT_EXPECTED_BYTES = 64 * 1024 * 1024

ProgressCallback = Callable[[float, int], None]
DocumentSource = Union[str, "os.PathLike[str]", BinaryIO]


# ═══════════════════════════════════════════════════════════════════════════
# ERRORS
# ═══════════════════════════════════════════════════════════════════════════
class DocumentLoadError(Exception):
    """A document could not be turned into zones. No zones are returned."""


class MalformedDocumentError(DocumentLoadError):
    """Structural parse failure: unbalanced tags, invalid markup, bad encoding."""

    def __init__(self, message: str, line: Optional[int] = None, column: Optional[int] = None):
        self.line = line
        self.column = column
        if line is not None:
            message = f"{message} (line {line}, column {column})"
        super().__init__(message)


class DocumentIOError(DocumentLoadError):
    """The document could not be read (missing file, permissions, network)."""


# ═══════════════════════════════════════════════════════════════════════════
# PARSER STATE
# ═══════════════════════════════════════════════════════════════════════════
class BoundaryContext(Enum):
    """Which boundary wrapper, if any, encloses the current ring."""
    NONE = "none"
    OUTER = "outer"
    INNER = "inner"


@dataclass
class _ParserState:
    in_placemark: bool = False
    in_polygon: bool = False
    boundary: BoundaryContext = BoundaryContext.NONE
    in_linear_ring: bool = False
    in_coordinates: bool = False
    in_extended_data: bool = False
    in_description: bool = False
    pending_key: str = ""

    name: str = ""
    description: str = ""
    attributes: Dict[str, str] = field(default_factory=dict)
    ring: List[Coordinate] = field(default_factory=list)

    zone_count: int = 0


def parse_coordinates(text: str) -> List[Coordinate]:
    """
    Parse a KML coordinate list into (lat, lng) coordinates.

    Tuples are whitespace separated, each "lng,lat[,alt]". Altitude is
    ignored. Tuples that don't yield two finite numbers are dropped.
    """
    coordinates = []
    for token in text.split():
        parts = [part for part in token.split(",") if part]
        if len(parts) < 2:
            log.debug(f"Dropping coordinate tuple {token!r}")
            continue
        try:
            longitude = float(parts[0])
            latitude = float(parts[1])
        except ValueError:
            log.debug(f"Dropping coordinate tuple {token!r}")
            continue
        if not (math.isfinite(longitude) and math.isfinite(latitude)):
            log.debug(f"Dropping non-finite coordinate tuple {token!r}")
            continue
        coordinates.append(Coordinate(latitude=latitude, longitude=longitude))
    return coordinates


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


# ═══════════════════════════════════════════════════════════════════════════
# PARSER
# ═══════════════════════════════════════════════════════════════════════════
class KMLBoundaryParser:
    """
    Event-driven KML parser that emits Zone values incrementally.

    Usage:
        parser = KMLBoundaryParser()
        zones = parser.parse("boundaries.kml", progress_callback=on_progress)
    """

    def __init__(
        self,
        progress_interval: int = PROGRESS_INTERVAL,
        chunk_size: int = CHUNK_SIZE,
        expected_total_bytes: Optional[int] = None,
    ):
        self.progress_interval = max(1, progress_interval)
        self.chunk_size = chunk_size
        self.expected_total_bytes = expected_total_bytes

    def parse(
        self,
        source: DocumentSource,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> List[Zone]:
        """
        Parse a whole document, all or nothing.

        Args:
            source: Path to a KML file, or a binary file-like object
            progress_callback: Called as (fraction, zones_found) every
                progress_interval zones

        Returns:
            Every zone in document order

        Raises:
            MalformedDocumentError: The markup is structurally invalid
            DocumentIOError: The document could not be read
        """
        start_time = time.time()
        zones = list(self.iter_zones(source, progress_callback))
        duration = time.time() - start_time
        log.info(f"Parsed KML document with {len(zones)} zones in {duration:.2f} seconds")
        return zones

    def iter_zones(
        self,
        source: DocumentSource,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> Iterator[Zone]:
        """
        Yield zones as their rings close.

        A failure raises mid-iteration; callers that need the
        all-or-nothing contract should use parse().
        """
        if hasattr(source, "read"):
            yield from self._iter_stream(source, _stream_size(source), progress_callback)
            return

        path = os.fspath(source)
        try:
            total = os.path.getsize(path)
            handle = open(path, "rb")
        except OSError as e:
            log.error(f"Could not open KML document {path}: {e}")
            raise DocumentIOError(f"Could not read {path}: {e}") from e

        with handle:
            log.info(f"Starting to parse KML file at: {path}")
            yield from self._iter_stream(handle, total, progress_callback)

    def _iter_stream(
        self,
        stream: BinaryIO,
        total_bytes: Optional[int],
        progress_callback: Optional[ProgressCallback],
    ) -> Iterator[Zone]:
        expected = total_bytes or self.expected_total_bytes or DEFAULT_EXPECTED_BYTES
        pull = ET.XMLPullParser(events=("start", "end"))
        state = _ParserState()
        open_elements: List[ET.Element] = []
        consumed = 0
        last_fraction = 0.0

        try:
            while True:
                try:
                    chunk = stream.read(self.chunk_size)
                except (OSError, ValueError) as e:
                    raise DocumentIOError(f"Read failed after {consumed} bytes: {e}") from e
                if not chunk:
                    pull.close()
                else:
                    consumed += len(chunk)
                    pull.feed(chunk)

                for zone in self._drain(pull, state, open_elements):
                    yield zone
                    if progress_callback and state.zone_count % self.progress_interval == 0:
                        fraction = max(last_fraction, min(1.0, consumed / expected))
                        last_fraction = fraction
                        progress_callback(fraction, state.zone_count)

                if not chunk:
                    break
        except ET.ParseError as e:
            line, column = getattr(e, "position", (None, None))
            log.error(f"KML parse error at line {line}, column {column}: {e}")
            raise MalformedDocumentError(f"Malformed KML document: {e}", line, column) from e
        except (LookupError, UnicodeError) as e:
            log.error(f"KML document could not be decoded: {e}")
            raise MalformedDocumentError(f"Undecodable KML document: {e}") from e

    def _drain(
        self,
        pull: ET.XMLPullParser,
        state: _ParserState,
        open_elements: List[ET.Element],
    ) -> Iterator[Zone]:
        for event, elem in pull.read_events():
            tag = _local_name(elem.tag)
            if event == "start":
                open_elements.append(elem)
                self._on_start(tag, elem, state)
                continue

            open_elements.pop()
            zone = self._on_end(tag, elem, state)

            # Handlers read everything they need at the end event, except
            # description, which collects the text of its inline children
            if open_elements and not state.in_description:
                open_elements[-1].remove(elem)

            if zone is not None:
                yield zone

    def _on_start(self, tag: str, elem: ET.Element, state: _ParserState) -> None:
        if tag == "Placemark":
            state.in_placemark = True
            state.name = ""
            state.description = ""
            state.attributes = {}
        elif tag == "Polygon":
            state.in_polygon = True
        elif tag == "outerBoundaryIs":
            state.boundary = BoundaryContext.OUTER
            state.ring = []
        elif tag == "innerBoundaryIs":
            state.boundary = BoundaryContext.INNER
            state.ring = []
        elif tag == "LinearRing":
            state.in_linear_ring = True
        elif tag == "coordinates":
            state.in_coordinates = True
        elif tag == "description":
            state.in_description = True
        elif tag == "ExtendedData":
            state.in_extended_data = True
        elif tag == "Data":
            key = elem.get("name")
            if key:
                state.pending_key = key

    def _on_end(self, tag: str, elem: ET.Element, state: _ParserState) -> Optional[Zone]:
        if tag == "Placemark":
            state.in_placemark = False
        elif tag == "Polygon":
            state.in_polygon = False
        elif tag == "outerBoundaryIs":
            state.boundary = BoundaryContext.NONE
            if state.ring:
                return self._emit(state, state.name or f"Outer Boundary {state.zone_count}")
        elif tag == "innerBoundaryIs":
            state.boundary = BoundaryContext.NONE
            if state.ring:
                name = f"{state.name} - Inner" if state.name else f"Inner Boundary {state.zone_count}"
                return self._emit(state, name)
        elif tag == "LinearRing":
            state.in_linear_ring = False
        elif tag == "coordinates":
            state.in_coordinates = False
            if state.in_linear_ring:
                state.ring = parse_coordinates("".join(elem.itertext()))
                elem.clear()
                if (state.boundary is BoundaryContext.NONE and state.in_polygon
                        and state.ring):
                    return self._emit(state, state.name or f"Polygon {state.zone_count}")
        elif tag == "ExtendedData":
            state.in_extended_data = False
        elif tag == "Data":
            state.pending_key = ""
        elif tag == "name":
            if state.in_placemark:
                state.name = elem.text or ""
        elif tag == "description":
            state.in_description = False
            if state.in_placemark:
                state.description = "".join(elem.itertext())
                if state.description:
                    state.attributes[DESCRIPTION_KEY] = state.description
        elif tag == "value":
            if state.pending_key and state.in_extended_data:
                state.attributes[state.pending_key] = elem.text or ""
        return None

    def _emit(self, state: _ParserState, name: str) -> Zone:
        zone = Zone(name=name, attributes=state.attributes, boundary=state.ring)
        state.zone_count += 1
        return zone


def _stream_size(stream) -> Optional[int]:
    """Remaining bytes in a seekable stream, or None."""
    try:
        if not stream.seekable():
            return None
        position = stream.tell()
        end = stream.seek(0, os.SEEK_END)
        stream.seek(position)
        return max(0, end - position)
    except (AttributeError, OSError, ValueError):
        return None


def parse_kml_file(
    source: DocumentSource,
    progress_callback: Optional[ProgressCallback] = None,
) -> List[Zone]:
    """Parse a KML document with default settings."""
    return KMLBoundaryParser().parse(source, progress_callback)
