"""
Remote KML documents - download over HTTP(S) into a local cache.

Only fetches documents for parsing; no geocoding or address lookup.
"""

import hashlib
import logging
import os
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from loaders.kml import DocumentIOError

log = logging.getLogger(__name__)


def is_remote(source) -> bool:
    """True for http:// and https:// URLs."""
    return isinstance(source, str) and source.lower().startswith(("http://", "https://"))


class DocumentFetcher:
    """
    Downloads KML documents with retries and a file cache.

    Usage:
        fetcher = DocumentFetcher(cache_dir="kml_cache")
        path = fetcher.fetch("https://example.org/boundaries.kml")
    """

    def __init__(
        self,
        cache_dir: str = "kml_cache",
        timeout: float = 30.0,
        retries: int = 3,
    ):
        self.cache_dir = Path(cache_dir)
        self.timeout = timeout
        self.retries = max(1, retries)
        self.session = requests.Session()

    def cache_path(self, url: str) -> Path:
        """Local file a URL downloads to."""
        digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:12]
        basename = os.path.basename(urlparse(url).path) or "document.kml"
        return self.cache_dir / f"{digest}_{basename}"

    def fetch(self, url: str, refresh: bool = False) -> Path:
        """
        Download a document unless it is already cached.

        Args:
            url: http(s) URL of the KML document
            refresh: Download again even if a cached copy exists

        Returns:
            Path of the local copy

        Raises:
            DocumentIOError: The download failed after all retries
        """
        target = self.cache_path(url)
        if target.exists() and not refresh:
            log.info(f"Using cached KML document {target}")
            return target

        retryer = Retrying(
            stop=stop_after_attempt(self.retries),
            wait=wait_exponential(multiplier=1, min=1, max=5),
            retry=retry_if_exception_type(requests.RequestException),
            reraise=True,
        )
        try:
            retryer(self._download, url, target)
        except requests.RequestException as e:
            log.error(f"KML download failed for {url}: {e}")
            raise DocumentIOError(f"Could not download {url}: {e}") from e
        except OSError as e:
            log.error(f"Could not write {target}: {e}")
            raise DocumentIOError(f"Could not write {target}: {e}") from e

        return target

    def _download(self, url: str, target: Path) -> None:
        log.info(f"Downloading KML document {url}")
        response = self.session.get(url, stream=True, timeout=self.timeout)
        response.raise_for_status()

        target.parent.mkdir(parents=True, exist_ok=True)
        partial = target.with_name(target.name + ".part")
        downloaded = 0
        with open(partial, "wb") as f:
            for chunk in response.iter_content(chunk_size=8192):
                if chunk:
                    f.write(chunk)
                    downloaded += len(chunk)
        os.replace(partial, target)
        log.info(f"Downloaded {downloaded} bytes to {target}")


# Singleton
_fetcher: Optional[DocumentFetcher] = None


def get_document_fetcher() -> DocumentFetcher:
    """Get singleton document fetcher configured from service settings."""
    global _fetcher
    if _fetcher is None:
        from core.config import get_settings
        settings = get_settings()
        _fetcher = DocumentFetcher(
            cache_dir=settings.cache_dir,
            timeout=settings.fetch_timeout_seconds,
            retries=settings.fetch_retries,
        )
    return _fetcher
