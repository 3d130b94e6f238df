"""
Zone Lookup - command-line entry point.

Loads a KML boundary document (local path or URL), checks a point against
every zone and prints the plain-text report.
"""

import argparse
import dataclasses
import logging
import sys
from typing import List, Optional

from core.config import get_settings
from core.models import Coordinate
from core.query_service import LoadStatus, QueryService
from core.sample_data import get_sample_zones

# Denver
DEFAULT_LAT = 39.7392
DEFAULT_LON = -104.9903


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Find which KML zones contain a point")
    parser.add_argument("document", nargs="?", help="KML file path or http(s) URL")
    parser.add_argument("--lat", type=float, default=DEFAULT_LAT, help="Latitude in decimal degrees")
    parser.add_argument("--lon", type=float, default=DEFAULT_LON, help="Longitude in decimal degrees")
    parser.add_argument("--sample", action="store_true", help="Use the built-in San Francisco sample zones")
    parser.add_argument("--sorted", action="store_true", help="Print attributes in sorted key order")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s │ %(name)-20s │ %(levelname)-8s │ %(message)s',
        datefmt='%H:%M:%S',
    )

    settings = get_settings()
    if args.sorted:
        settings = dataclasses.replace(settings, sort_export_keys=True)

    def show_progress(fraction: float, count: int) -> None:
        print(f"   -> {count} shapes found ({fraction:.0%})")

    with QueryService(settings=settings, on_progress=show_progress) as service:
        # 1. Load zones
        if args.sample:
            print("1. Loading built-in sample zones...")
            load_result = service.load_zones(get_sample_zones()).result()
        elif args.document:
            print(f"1. Loading KML document {args.document}...")
            load_result = service.load(args.document).result()
        else:
            load_result = service.cancelled_load()

        print(f"   {load_result.message}")
        if load_result.status != LoadStatus.SUCCESS:
            return 1

        # 2. Check the point
        point = Coordinate(args.lat, args.lon)
        print(f"2. Checking point {point.latitude}, {point.longitude}...")
        outcome = service.query(point).result()
        print(f"   {outcome.message}")

        # 3. Report
        print("\n=== ZONE REPORT ===\n")
        print(service.format_report(outcome.results))

    return 0


if __name__ == "__main__":
    sys.exit(main())
