"""Stable API for blobmesh operations.

This module provides a minimal, stable, synchronous surface for external
tools (scripts, backup jobs) that want to replicate blobs without touching
the engine's async internals.

Each call loads settings, builds an engine, runs one operation with
``asyncio.run`` and closes the HTTP client. Endpoints come from settings
unless passed explicitly.

Example:
    >>> from blobmesh.api import upload_file
    >>> result = upload_file("photo.jpg")
    >>> print(result.content_hash, result.succeeded)
"""

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, TypeVar, Union

from .config import Settings, load_settings
from .engine import BlobTransferEngine
from .errors import ConfigError
from .models import NoEndpoints, UploadResponse
from .service_types import (
    AvailabilityReport,
    DeleteResult,
    FallbackListResult,
    FallbackUploadResult,
    FetchedBlob,
    ListingResult,
    MirrorResult,
    UploadAllResult,
)
from .utils import guess_content_type

T = TypeVar("T")


def _run(settings: Optional[Settings], operation: Callable[[BlobTransferEngine, Settings], Awaitable[T]]) -> T:
    settings = settings or load_settings()

    async def main() -> T:
        async with BlobTransferEngine.from_settings(settings) as engine:
            return await operation(engine, settings)

    return asyncio.run(main())


def _endpoints(settings: Settings, endpoints: Optional[List[str]]) -> List[str]:
    return list(endpoints) if endpoints else settings.endpoints


def _identity(settings: Settings, identity: Optional[str]) -> str:
    identity = identity or settings.identity
    if not identity:
        raise ConfigError("No identity given. Pass one or set identity in ~/.blobmesh/config.yaml (or BLOBMESH_IDENTITY).")
    return identity


def upload_file(
    path: Union[str, Path],
    mode: str = "all",
    endpoints: Optional[List[str]] = None,
    settings: Optional[Settings] = None,
) -> Union[UploadAllResult, FallbackUploadResult, NoEndpoints]:
    """Upload a file to every endpoint (``mode="all"``) or the first that accepts it.

    Raises:
        ValueError: If mode is not "all" or "fallback"
        AllEndpointsFailedError: If no endpoint accepted the file
    """
    if mode not in ("all", "fallback"):
        raise ValueError(f"mode must be 'all' or 'fallback', got {mode!r}")
    path = Path(path)
    data = path.read_bytes()
    content_type = guess_content_type(path)

    async def op(engine: BlobTransferEngine, s: Settings):
        if mode == "fallback":
            return await engine.upload_with_fallback(
                data, _endpoints(s, endpoints), s.identity_method, content_type=content_type
            )
        return await engine.upload_to_all(
            data, _endpoints(s, endpoints), s.identity_method, content_type=content_type, filename=path.name
        )

    return _run(settings, op)


def list_blobs(
    identity: Optional[str] = None,
    fallback: bool = False,
    endpoints: Optional[List[str]] = None,
    settings: Optional[Settings] = None,
) -> Union[ListingResult, FallbackListResult, NoEndpoints]:
    """List an identity's blobs, merged across endpoints."""

    async def op(engine: BlobTransferEngine, s: Settings):
        who = _identity(s, identity)
        if fallback:
            return await engine.list_with_fallback(who, _endpoints(s, endpoints), s.identity_method)
        return await engine.list_from_all(who, _endpoints(s, endpoints), s.identity_method)

    return _run(settings, op)


def delete_blob(
    content_hash: str,
    endpoints: Optional[List[str]] = None,
    settings: Optional[Settings] = None,
) -> Union[DeleteResult, NoEndpoints]:
    """Delete a blob from every endpoint."""

    async def op(engine: BlobTransferEngine, s: Settings):
        return await engine.delete_everywhere(content_hash, _endpoints(s, endpoints), s.identity_method)

    return _run(settings, op)


def mirror_blob(
    url: str,
    target: Optional[str] = None,
    endpoints: Optional[List[str]] = None,
    settings: Optional[Settings] = None,
) -> Union[MirrorResult, UploadResponse, NoEndpoints]:
    """Copy a blob from ``url`` to every other endpoint, or only to ``target``."""

    async def op(engine: BlobTransferEngine, s: Settings):
        if target:
            return await engine.mirror_to_endpoint(url, target, s.identity_method)
        return await engine.mirror_to_all(url, _endpoints(s, endpoints), s.identity_method)

    return _run(settings, op)


def probe_blob(
    content_hash: str,
    endpoints: Optional[List[str]] = None,
    settings: Optional[Settings] = None,
) -> Union[AvailabilityReport, NoEndpoints]:
    """Report which endpoints hold a blob."""

    async def op(engine: BlobTransferEngine, s: Settings):
        return await engine.probe_availability(content_hash, _endpoints(s, endpoints))

    return _run(settings, op)


def fetch_blob(
    url: str,
    endpoints: Optional[List[str]] = None,
    settings: Optional[Settings] = None,
) -> FetchedBlob:
    """Download a blob, falling back to other endpoints holding the same hash."""

    async def op(engine: BlobTransferEngine, s: Settings):
        return await engine.fetch_with_fallback(url, _endpoints(s, endpoints))

    return _run(settings, op)
