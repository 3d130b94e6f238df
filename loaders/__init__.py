"""
Document loaders for the Zone Lookup Engine.

Includes:
- KML boundary parsing (streaming)
- Remote document download (HTTP with retries)
"""

from loaders.kml import (
    KMLBoundaryParser,
    parse_kml_file,
    parse_coordinates,
    DocumentLoadError,
    MalformedDocumentError,
    DocumentIOError,
)
from loaders.remote import DocumentFetcher, get_document_fetcher, is_remote

__all__ = [
    # Parsing
    "KMLBoundaryParser",
    "parse_kml_file",
    "parse_coordinates",
    # Errors
    "DocumentLoadError",
    "MalformedDocumentError",
    "DocumentIOError",
    # Remote
    "DocumentFetcher",
    "get_document_fetcher",
    "is_remote",
]
