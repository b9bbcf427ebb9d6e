"""Utility functions for blobmesh."""

from pathlib import Path
from typing import Optional
import mimetypes
import time

from .constants import DEFAULT_CONTENT_TYPE


def humanize_size(size: float) -> str:
    """Convert bytes to human-readable format."""
    for unit in ["B", "KB", "MB", "GB"]:
        if size < 1024.:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"


def humanize_timestamp(epoch: float, now: Optional[float] = None) -> str:
    """Convert a Unix timestamp to human-readable relative time.

    Examples:
        now - 30    -> "just now"
        now - 7200  -> "2 hours ago"
    """
    now = time.time() if now is None else now
    seconds = now - epoch

    if seconds < 60:
        return "just now"
    elif seconds < 3600:
        minutes = int(seconds / 60)
        return f"{minutes} minute{'s' if minutes != 1 else ''} ago"
    elif seconds < 86400:
        hours = int(seconds / 3600)
        return f"{hours} hour{'s' if hours != 1 else ''} ago"
    elif seconds < 2592000:  # Less than 30 days
        days = int(seconds / 86400)
        return f"{days} day{'s' if days != 1 else ''} ago"
    elif seconds < 31536000:
        months = int(seconds / 2592000)
        return f"{months} month{'s' if months != 1 else ''} ago"
    else:
        years = int(seconds / 31536000)
        return f"{years} year{'s' if years != 1 else ''} ago"


def short_hash(content_hash: str, length: int = 12) -> str:
    """Truncate a content hash for display."""
    return content_hash[:length]


def guess_content_type(path: Path) -> str:
    """Content type for an upload, from the file extension."""
    content_type, _ = mimetypes.guess_type(path.name)
    return content_type or DEFAULT_CONTENT_TYPE
