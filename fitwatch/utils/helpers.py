"""
Helper utilities for FitWatch.

Common functions used across domains.
"""

import hashlib
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


def fingerprint_bytes(data: bytes) -> str:
    """Generate SHA256 hex digest of raw file content."""
    return hashlib.sha256(data).hexdigest()


def now_utc() -> datetime:
    """Get current timestamp as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_iso(ts: Optional[datetime]) -> Optional[str]:
    """
    Serialise a datetime for storage.

    Naive datetimes are assumed to be UTC so that stored strings sort
    chronologically.
    """
    if ts is None:
        return None
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat()


def parse_iso_timestamp(ts_str: Optional[str]) -> Optional[datetime]:
    """Parse ISO timestamp string to datetime."""
    if not ts_str:
        return None
    return datetime.fromisoformat(ts_str.replace('Z', '+00:00'))


def expand_root(root) -> Path:
    """Expand a leading ``~`` and make the path absolute."""
    return Path(root).expanduser().absolute()


def normalise_path(path) -> str:
    """Return the absolute path string used as a discovery key."""
    return str(Path(path).expanduser().absolute())


def has_suffix(name: str, suffix: str) -> bool:
    """Case-insensitive extension check (``suffix`` includes the dot)."""
    return Path(name).suffix.lower() == suffix.lower()


_DATE_PREFIX = re.compile(r'^\d{4}-\d{2}-\d{2}[_-]?')


def activity_name_from_filename(filename: str) -> Optional[str]:
    """
    Derive a human-readable activity name from a file name.

    Examples:
        "2025-02-23_Hudayriyat_Ascend.fit" -> "Hudayriyat Ascend"
        "2025-02-23_.fit" -> None
        "activity.fit" -> "activity"

    Returns:
        Name or None when only a date remains
    """
    stem = Path(filename).stem
    name = _DATE_PREFIX.sub('', stem)

    if not name or name == '_':
        return None

    name = name.replace('_', ' ').replace('-', ' ')
    name = ' '.join(name.split())

    return name or None


def format_bytes(bytes_count: int) -> str:
    """Format bytes as human-readable string."""
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0
    return f"{bytes_count:.1f} PB"
