"""Result types returned by engine operations."""

from typing import Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from .models import BlobDescriptor, EndpointOutcome, UploadResponse


class UploadAllResult(BaseModel):
    """Result of uploading one blob to every endpoint."""
    content_hash: str
    primary: UploadResponse
    primary_endpoint: str
    outcomes: List[EndpointOutcome]       # one per endpoint, sorted by URL
    descriptor: BlobDescriptor

    @property
    def succeeded(self) -> List[str]:
        return [o.endpoint for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> List[EndpointOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def fully_replicated(self) -> bool:
        return not self.failed


class FallbackUploadResult(BaseModel):
    """Result of a primary-first upload."""
    result: UploadResponse
    endpoint: str
    attempts: List[EndpointOutcome]       # in attempt (rank) order


class DeleteResult(BaseModel):
    """Result of deleting a blob everywhere."""
    content_hash: str
    deleted: List[str] = Field(default_factory=list)
    not_found: List[str] = Field(default_factory=list)
    outcomes: List[EndpointOutcome] = Field(default_factory=list)

    @property
    def already_absent(self) -> bool:
        """No endpoint held the blob (idempotent repeat delete)."""
        return not self.deleted and bool(self.not_found)


class MirrorResult(BaseModel):
    """Result of copying a blob from a source URL to other endpoints."""
    content_hash: str
    source_url: str
    source_origin: str
    excluded: List[str] = Field(default_factory=list)   # same origin as source
    relayed: List[str] = Field(default_factory=list)    # received bytes via upload
    outcomes: List[EndpointOutcome] = Field(default_factory=list)
    results: Dict[str, UploadResponse] = Field(default_factory=dict)

    @property
    def has_targets(self) -> bool:
        return bool(self.outcomes)

    @property
    def succeeded(self) -> List[str]:
        return [o.endpoint for o in self.outcomes if o.succeeded]

    @property
    def failed(self) -> List[EndpointOutcome]:
        return [o for o in self.outcomes if not o.succeeded]


class AvailabilityReport(BaseModel):
    """Per-endpoint presence of one blob."""
    content_hash: str
    available: List[str] = Field(default_factory=list)
    unavailable: List[str] = Field(default_factory=list)
    errors: Dict[str, str] = Field(default_factory=dict)

    def repair_targets(self) -> List[str]:
        """Endpoints confirmed to lack the blob.

        Endpoints in ``errors`` are excluded: an indeterminate probe is not
        evidence of absence and must not trigger a mirror.
        """
        return list(self.unavailable)


class ListingResult(BaseModel):
    """Merged listing from every endpoint."""
    identity: str
    blobs: List[BlobDescriptor] = Field(default_factory=list)
    listing_failed: List[EndpointOutcome] = Field(default_factory=list)
    queried: List[str] = Field(default_factory=list)


class FallbackListResult(BaseModel):
    """Listing from the first endpoint that answered."""
    identity: str
    endpoint: str
    blobs: List[BlobDescriptor] = Field(default_factory=list)
    attempts: List[EndpointOutcome] = Field(default_factory=list)


class FetchedBlob(BaseModel):
    """Blob bytes retrieved with fallback."""
    content_hash: str
    url: str
    data: bytes
    mime_type: Optional[str] = None
    attempts: List[EndpointOutcome] = Field(default_factory=list)


class OutcomeCallback(Protocol):
    """Progress reporting interface for fan-out operations."""

    def on_endpoint_start(self, endpoint: str) -> None:
        """Called when a call to an endpoint starts."""
        ...

    def on_endpoint_complete(self, outcome: EndpointOutcome) -> None:
        """Called when a call to an endpoint settles."""
        ...
