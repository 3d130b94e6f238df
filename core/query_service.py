"""
Query Service - stateful facade over loading and point queries.

Owns the current zone collection and spatial index and runs the two units
of work off the caller's thread:

1. Loading (fetch + parse + index build) on the "zone-load" worker
2. Point checks on the "zone-query" worker

State machine:
    IDLE/READY --load--> LOADING --success--> READY
    LOADING --failure--> IDLE, or READY if an earlier load succeeded
    READY --query--> QUERYING --done--> READY

A load while LOADING or QUERYING, and a query while LOADING or QUERYING,
is rejected immediately rather than queued. The zones and their index are
published together as one immutable snapshot, swapped only after the new
one is fully built, so a query always sees a complete pair.

Callbacks run on the worker threads; callers that drive a UI should hop
back to their own thread. For a given load, every progress notification
is delivered before the completion notification.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, List, Optional, Tuple

from core.config import ServiceSettings, get_settings
from core.containment import ContainmentEngine
from core.export import format_results
from core.models import Coordinate, QueryResult, Zone
from core.spatial_index import SpatialIndex
from loaders.kml import DocumentLoadError, DocumentSource, KMLBoundaryParser
from loaders.remote import DocumentFetcher, is_remote

log = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
# STATUS
# ═══════════════════════════════════════════════════════════════════════════
class ServiceState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    QUERYING = "querying"


class LoadStatus:
    """Outcome of a load request."""
    SUCCESS = "success"        # Zones parsed, indexed and published
    FAILED = "failed"          # Document unreadable or malformed
    REJECTED = "rejected"      # Another load or query was in flight
    CANCELLED = "cancelled"    # Caller abandoned before choosing a document


class QueryStatus:
    """Outcome of a point query."""
    FOUND = "found"            # At least one zone contains the point
    NOT_FOUND = "not_found"    # Zones loaded, none contain the point
    NOT_LOADED = "not_loaded"  # Nothing has been loaded yet
    REJECTED = "rejected"      # A load or another query was in flight


@dataclass
class LoadResult:
    status: str
    zone_count: int = 0
    index_count: int = 0
    elapsed_seconds: float = 0.0
    message: str = ""
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == LoadStatus.SUCCESS


@dataclass
class QueryOutcome:
    status: str
    results: List[QueryResult] = field(default_factory=list)
    candidate_count: int = 0
    elapsed_ms: float = 0.0
    message: str = ""


@dataclass(frozen=True)
class _Snapshot:
    zones: Tuple[Zone, ...]
    index: SpatialIndex


ProgressHandler = Callable[[float, int], None]


def _completed(value) -> Future:
    future = Future()
    future.set_result(value)
    return future


# ═══════════════════════════════════════════════════════════════════════════
# QUERY SERVICE
# ═══════════════════════════════════════════════════════════════════════════
class QueryService:
    """
    Loads zone documents and answers point-containment queries.

    Usage:
        with QueryService(on_progress=show_progress) as service:
            service.load("boundaries.kml").result()
            outcome = service.query(Coordinate(39.7392, -104.9903)).result()
            print(service.format_report(outcome.results))
    """

    def __init__(
        self,
        settings: Optional[ServiceSettings] = None,
        parser: Optional[KMLBoundaryParser] = None,
        fetcher: Optional[DocumentFetcher] = None,
        on_progress: Optional[ProgressHandler] = None,
        on_load_complete: Optional[Callable[[LoadResult], None]] = None,
        on_query_complete: Optional[Callable[[QueryOutcome], None]] = None,
    ):
        self.settings = settings or get_settings()
        self.parser = parser or KMLBoundaryParser(
            progress_interval=self.settings.progress_interval,
            chunk_size=self.settings.chunk_size,
            expected_total_bytes=self.settings.expected_total_bytes,
        )
        self.fetcher = fetcher or DocumentFetcher(
            cache_dir=self.settings.cache_dir,
            timeout=self.settings.fetch_timeout_seconds,
            retries=self.settings.fetch_retries,
        )
        self.on_progress = on_progress
        self.on_load_complete = on_load_complete
        self.on_query_complete = on_query_complete

        self._lock = threading.RLock()
        self._state = ServiceState.IDLE
        self._snapshot: Optional[_Snapshot] = None

        self._load_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="zone-load")
        self._query_executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="zone-query")

        self.status_message = "Ready to load KML"
        self.loading_progress = 0.0
        self.zones_found = 0

    # ───────────────────────────────────────────────────────────────────────
    # Properties
    # ───────────────────────────────────────────────────────────────────────
    @property
    def state(self) -> ServiceState:
        with self._lock:
            return self._state

    @property
    def zones(self) -> Tuple[Zone, ...]:
        snapshot = self._snapshot
        return snapshot.zones if snapshot else ()

    @property
    def zone_count(self) -> int:
        return len(self.zones)

    @property
    def index_count(self) -> int:
        snapshot = self._snapshot
        return snapshot.index.count() if snapshot else 0

    # ───────────────────────────────────────────────────────────────────────
    # Loading
    # ───────────────────────────────────────────────────────────────────────
    def load(self, source: DocumentSource) -> "Future[LoadResult]":
        """
        Parse a KML document (path, URL or binary stream) and publish its zones.

        Returns a future for the LoadResult. A rejected request returns an
        already-completed future.
        """
        label = source if isinstance(source, str) else getattr(source, "name", "stream")
        return self._start_load(label, lambda progress: self._parse(source, progress))

    def load_zones(self, zones: Iterable[Zone]) -> "Future[LoadResult]":
        """Publish an in-memory zone collection through the same load path."""
        zones = list(zones)
        return self._start_load("in-memory zones", lambda progress: zones)

    def cancelled_load(self) -> LoadResult:
        """Report a load the caller abandoned before choosing a document."""
        result = LoadResult(status=LoadStatus.CANCELLED, message="KML file selection cancelled")
        self.status_message = result.message
        log.info(result.message)
        self._notify(self.on_load_complete, result)
        return result

    def _start_load(self, label, producer) -> "Future[LoadResult]":
        with self._lock:
            if self._state in (ServiceState.LOADING, ServiceState.QUERYING):
                result = LoadResult(
                    status=LoadStatus.REJECTED,
                    message=f"Cannot load while {self._state.value}",
                )
                log.warning(f"Load of {label} rejected: service is {self._state.value}")
                return _completed(result)
            self._state = ServiceState.LOADING

        self.loading_progress = 0.0
        self.zones_found = 0
        self.status_message = "Starting KML loading..."
        log.info(f"Loading zones from {label}")
        return self._load_executor.submit(self._run_load, label, producer)

    def _parse(self, source: DocumentSource, progress: ProgressHandler) -> List[Zone]:
        if is_remote(source):
            source = self.fetcher.fetch(source)
        return self.parser.parse(source, progress)

    def _run_load(self, label, producer) -> LoadResult:
        start_time = time.time()
        try:
            zones = producer(self._handle_progress)

            self.status_message = "Building spatial index..."
            index = SpatialIndex.build(zones)
            snapshot = _Snapshot(zones=tuple(zones), index=index)
        except DocumentLoadError as e:
            result = self._finish_failed_load(label, str(e), start_time)
        except Exception as e:
            log.exception(f"Unexpected error loading {label}")
            result = self._finish_failed_load(label, f"Unexpected error: {e}", start_time)
        else:
            elapsed = time.time() - start_time
            with self._lock:
                self._snapshot = snapshot
                self._state = ServiceState.READY
            result = LoadResult(
                status=LoadStatus.SUCCESS,
                zone_count=len(snapshot.zones),
                index_count=index.count(),
                elapsed_seconds=elapsed,
                message=(f"Loaded {len(snapshot.zones)} shapes in {elapsed:.2f} seconds. "
                         f"Spatial index built with {index.count()} entries."),
            )
            self.loading_progress = 1.0
            self.zones_found = result.zone_count
            log.info(f"KML loaded: {result.zone_count} shapes, index: {result.index_count} entries")

        self.status_message = result.message
        self._notify(self.on_load_complete, result)
        return result

    def _finish_failed_load(self, label, reason: str, start_time: float) -> LoadResult:
        with self._lock:
            self._state = ServiceState.READY if self._snapshot else ServiceState.IDLE
            kept = len(self._snapshot.zones) if self._snapshot else 0
        log.error(f"Failed to load {label}: {reason}")
        message = f"Failed to load KML: {reason}"
        if kept:
            message += f" (keeping {kept} previously loaded shapes)"
        return LoadResult(
            status=LoadStatus.FAILED,
            zone_count=kept,
            elapsed_seconds=time.time() - start_time,
            message=message,
            error=reason,
        )

    def _handle_progress(self, fraction: float, count: int) -> None:
        self.loading_progress = fraction
        self.zones_found = count
        self.status_message = f"Loading KML... {count} shapes found"
        self._notify(self.on_progress, fraction, count)

    # ───────────────────────────────────────────────────────────────────────
    # Querying
    # ───────────────────────────────────────────────────────────────────────
    def query(self, point: Coordinate) -> "Future[QueryOutcome]":
        """
        Find every loaded zone containing the point.

        Returns a future for the QueryOutcome. Rejections and the
        nothing-loaded case return an already-completed future.
        """
        with self._lock:
            if self._state in (ServiceState.LOADING, ServiceState.QUERYING):
                outcome = QueryOutcome(
                    status=QueryStatus.REJECTED,
                    message=f"Cannot check a point while {self._state.value}",
                )
                log.warning(f"Query rejected: service is {self._state.value}")
                return _completed(outcome)

            snapshot = self._snapshot
            if snapshot is None or not snapshot.zones:
                return _completed(QueryOutcome(
                    status=QueryStatus.NOT_LOADED,
                    message="No zones loaded. Load a KML file first.",
                ))
            self._state = ServiceState.QUERYING

        self.status_message = "Checking point location..."
        return self._query_executor.submit(self._run_query, point, snapshot)

    def _run_query(self, point: Coordinate, snapshot: _Snapshot) -> QueryOutcome:
        try:
            check = ContainmentEngine(snapshot.index).check_point(point)
        finally:
            with self._lock:
                self._state = ServiceState.READY

        elapsed = int(check.elapsed_ms)
        if check.found:
            status = QueryStatus.FOUND
            message = f"Found point in {len(check.results)} polygons. Check took {elapsed} ms."
        else:
            status = QueryStatus.NOT_FOUND
            message = f"Point is not in any polygon. Check took {elapsed} ms."

        log.info(f"Narrowed down from {len(snapshot.zones)} shapes to "
                 f"{check.candidate_count} potential matches; {message}")
        for result in check.results:
            log.debug(f"- In zone: {result.zone_name}")

        outcome = QueryOutcome(
            status=status,
            results=check.results,
            candidate_count=check.candidate_count,
            elapsed_ms=check.elapsed_ms,
            message=message,
        )
        self.status_message = message
        self._notify(self.on_query_complete, outcome)
        return outcome

    # ───────────────────────────────────────────────────────────────────────
    # Export & lifecycle
    # ───────────────────────────────────────────────────────────────────────
    def format_report(self, results: Iterable[QueryResult]) -> str:
        return format_results(results, sort_keys=self.settings.sort_export_keys)

    def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Block until work submitted so far has finished."""
        self._load_executor.submit(lambda: None).result(timeout)
        self._query_executor.submit(lambda: None).result(timeout)

    def shutdown(self, wait: bool = True) -> None:
        self._load_executor.shutdown(wait=wait)
        self._query_executor.shutdown(wait=wait)

    def __enter__(self) -> "QueryService":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def _notify(self, callback, *args) -> None:
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            log.exception("Status callback raised")
