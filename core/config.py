"""
Service settings.

Every value has an explicit meaning. Defaults can be overridden from
ZONE_LOOKUP_* environment variables.
"""

import logging
import os
from dataclasses import dataclass, asdict, fields
from typing import Dict, Optional

log = logging.getLogger(__name__)

ENV_PREFIX = "ZONE_LOOKUP_"


@dataclass
class ServiceSettings:
    """All configurable settings for loading and querying zones."""

    # Parsing
    progress_interval: int = 50
    """Fire a progress notification every time this many zones have been emitted."""

    chunk_size: int = 64 * 1024
    """Bytes read from the document per parser feed."""

    expected_total_bytes: Optional[int] = None
    """Size used for progress estimates when the document size is unknown."""

    # Remote documents
    fetch_timeout_seconds: float = 30.0
    """HTTP timeout when downloading a remote KML document."""

    fetch_retries: int = 3
    """Attempts made for a remote download before giving up."""

    cache_dir: str = "kml_cache"
    """Directory remote documents are downloaded into."""

    # Export
    sort_export_keys: bool = False
    """If True, report attributes in sorted key order."""

    def to_dict(self) -> Dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict) -> "ServiceSettings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_env(cls) -> "ServiceSettings":
        """Build settings from defaults overridden by environment variables."""
        settings = cls()
        for f in fields(cls):
            raw = os.getenv(ENV_PREFIX + f.name.upper())
            if raw is None or raw == "":
                continue
            try:
                setattr(settings, f.name, _coerce(f.name, raw, getattr(settings, f.name)))
            except ValueError:
                log.warning(f"Ignoring invalid {ENV_PREFIX}{f.name.upper()}={raw!r}")
        return settings


def _coerce(name: str, raw: str, default):
    if isinstance(default, bool):
        return raw.strip().lower() in ("1", "true", "yes", "on")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    if name == "expected_total_bytes":
        return int(raw)
    return raw


# Singleton
_settings: Optional[ServiceSettings] = None


def get_settings() -> ServiceSettings:
    """Get singleton settings, read from the environment on first use."""
    global _settings
    if _settings is None:
        _settings = ServiceSettings.from_env()
    return _settings
