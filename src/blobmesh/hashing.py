"""Hashing utilities for content-addressed blobs.

A blob's identity is the lowercase hex sha-256 of its bytes. This module
computes that digest for in-memory data and files, validates candidate
hashes, and recovers a hash from a blob URL.
"""

from pathlib import Path
from typing import Optional
from urllib.parse import urlparse
import hashlib
import re

from .errors import DigestMismatchError, InvalidHashError

_HEX64 = re.compile(r"^[0-9a-f]{64}$")
_HEX64_ANYWHERE = re.compile(r"[0-9a-fA-F]{64}")


def compute_digest(data: bytes) -> str:
    """Compute the sha-256 content hash of ``data`` (64 lowercase hex chars)."""
    return hashlib.sha256(data).hexdigest()


def compute_file_digest(path: Path) -> str:
    """Compute the sha-256 content hash of a file, streaming in chunks."""
    sha256 = hashlib.sha256()
    with path.open("rb") as f:
        for chunk in iter(lambda: f.read(8192), b""):
            sha256.update(chunk)
    return sha256.hexdigest()


def is_content_hash(value: str) -> bool:
    """True if ``value`` is a lowercase 64 character hex digest."""
    return bool(_HEX64.match(value))


def normalize_hash(value: str) -> str:
    """Validate a content hash and return it lower-cased.

    Raises:
        InvalidHashError: If value is not 64 hex characters
    """
    candidate = value.strip().lower()
    if not is_content_hash(candidate):
        raise InvalidHashError(value)
    return candidate


def extract_hash(url: str) -> Optional[str]:
    """Extract the content hash from a blob URL.

    The hash is the last path segment with any extension removed, e.g.
    ``https://cdn.example/<hash>.png``. Case is normalized to lowercase.
    Falls back to the last 64-hex run anywhere in the path for servers that
    nest the hash in a longer segment.

    Returns:
        The lowercase hash, or None if the URL carries no hash
    """
    path = urlparse(url).path
    segment = path.rstrip("/").rsplit("/", 1)[-1]
    stem = segment.split(".", 1)[0].lower()
    if is_content_hash(stem):
        return stem

    matches = _HEX64_ANYWHERE.findall(path)
    if matches:
        return matches[-1].lower()
    return None


def url_extension(url: str) -> str:
    """File extension of the URL's last path segment, including the dot."""
    segment = urlparse(url).path.rsplit("/", 1)[-1]
    match = re.search(r"\.[A-Za-z0-9]+$", segment)
    return match.group(0) if match else ""


def verify_digest(data: bytes, expected: str, source: str) -> str:
    """Check ``data`` against ``expected`` and return the digest.

    Raises:
        DigestMismatchError: If the bytes hash to something else
    """
    actual = compute_digest(data)
    if actual != expected:
        raise DigestMismatchError(source, expected, actual)
    return actual


__all__ = [
    "compute_digest",
    "compute_file_digest",
    "extract_hash",
    "is_content_hash",
    "normalize_hash",
    "url_extension",
    "verify_digest",
]
