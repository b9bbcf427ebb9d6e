"""Core data models for blobmesh.

Content Addressing Across Untrusted Endpoints:
----------------------------------------------
Endpoints never coordinate with each other. What makes "the same blob on
different endpoints" resolvable is the content hash: it is immutable, it is
the primary key everywhere, and every per-endpoint observation is recorded
as an ``EndpointOutcome`` attached to the blob's descriptor.

Endpoint lists are immutable snapshots. Any reordering or removal produces a
new ``EndpointList``, so an in-flight fan-out never sees a torn list.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterator, List, Optional, Tuple
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .errors import ErrorCategory, category_of
from .hashing import normalize_hash


# ============= Endpoints =============

DEFAULT_PORTS = {"http": 80, "https": 443}


def origin_of(url: str) -> str:
    """Lower-cased ``scheme://host[:port]`` of a URL.

    Userinfo is dropped and so is the scheme's default port, so
    ``https://a.test:443/x`` and ``https://a.test`` share an origin.
    """
    parsed = urlparse(url.strip())
    scheme = parsed.scheme.lower()
    host = parsed.hostname or ""
    if ":" in host:
        host = f"[{host}]"  # IPv6 literal
    try:
        port = parsed.port
    except ValueError:
        port = None
    if port is None or port == DEFAULT_PORTS.get(scheme):
        return f"{scheme}://{host}"
    return f"{scheme}://{host}:{port}"


class Endpoint(BaseModel):
    """One storage endpoint. Identity is the normalized URL."""
    model_config = ConfigDict(frozen=True)

    url: str
    display_name: str = ""

    @model_validator(mode="before")
    @classmethod
    def default_display_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("display_name"):
            data = dict(data)
            url = data.get("url", "")
            data["display_name"] = urlparse(url).hostname or url
        return data

    @property
    def origin(self) -> str:
        return origin_of(self.url)


@dataclass(frozen=True)
class EndpointList:
    """Ordered, deduplicated endpoints; rank 0 is the primary."""

    endpoints: Tuple[Endpoint, ...]

    def __iter__(self) -> Iterator[Endpoint]:
        return iter(self.endpoints)

    def __len__(self) -> int:
        return len(self.endpoints)

    def __getitem__(self, rank: int) -> Endpoint:
        return self.endpoints[rank]

    @property
    def primary(self) -> Endpoint:
        return self.endpoints[0]

    @property
    def urls(self) -> List[str]:
        return [e.url for e in self.endpoints]

    def sorted_urls(self) -> List[str]:
        return sorted(self.urls)

    def get(self, url: str) -> Optional[Endpoint]:
        for endpoint in self.endpoints:
            if endpoint.url == url:
                return endpoint
        return None

    def without_origin(self, origin: str) -> "EndpointList":
        """New list without endpoints whose origin equals ``origin``."""
        origin = origin.lower()
        return EndpointList(endpoints=tuple(e for e in self.endpoints if e.origin != origin))


class NoEndpoints:
    """No endpoints configured.

    Not an error: zero endpoints is a valid transient state (onboarding not
    finished). Engine operations return this value and callers branch on it.
    """
    category = ErrorCategory.CONFIGURATION

    def __init__(self, reason: str = "No endpoints configured"):
        self.reason = reason

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return f"NoEndpoints({self.reason!r})"


NO_ENDPOINTS = NoEndpoints()


# ============= Outcomes =============

class EndpointOutcome(BaseModel):
    """Result of one operation against one endpoint."""

    endpoint: str
    display_name: str = ""
    succeeded: bool
    error: Optional[str] = None
    category: Optional[ErrorCategory] = None

    @classmethod
    def success(cls, endpoint: Endpoint) -> "EndpointOutcome":
        return cls(endpoint=endpoint.url, display_name=endpoint.display_name, succeeded=True)

    @classmethod
    def failure(cls, endpoint: Endpoint, error: BaseException) -> "EndpointOutcome":
        return cls(
            endpoint=endpoint.url,
            display_name=endpoint.display_name,
            succeeded=False,
            error=str(error) or type(error).__name__,
            category=category_of(error),
        )


def sort_outcomes(outcomes: List[EndpointOutcome]) -> List[EndpointOutcome]:
    """Sort by endpoint URL so results don't depend on completion order."""
    return sorted(outcomes, key=lambda o: o.endpoint)


class AvailabilityStatus(str, Enum):
    """Whether an endpoint holds a blob."""
    AVAILABLE = "available"
    UNAVAILABLE = "unavailable"  # confirmed absent
    ERROR = "error"              # indeterminate


# ============= Blobs =============

class BlobDescriptor(BaseModel):
    """A blob and the endpoints it was seen on.

    Accepts the server-native listing shape (``sha256``, ``type``,
    ``uploaded``, ``metadata.filename``) as well as field names.
    """
    model_config = ConfigDict(populate_by_name=True)

    content_hash: str
    size: int = 0
    mime_type: str = "application/octet-stream"
    created_at: int = 0  # unknown upload time sorts last
    url: Optional[str] = None
    filename: Optional[str] = None
    availability: List[EndpointOutcome] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def from_server_shape(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        renames = {
            "sha256": "content_hash",
            "contentHash": "content_hash",
            "type": "mime_type",
            "mimeType": "mime_type",
            "uploaded": "created_at",
            "created": "created_at",
            "createdAt": "created_at",
        }
        for wire, field in renames.items():
            if wire in data and field not in data:
                data[field] = data.pop(wire)
        metadata = data.pop("metadata", None)
        if isinstance(metadata, dict) and not data.get("filename"):
            data["filename"] = metadata.get("filename")
        if data.get("mime_type") is None:
            data.pop("mime_type", None)
        return data

    @field_validator("content_hash")
    @classmethod
    def validate_hash(cls, v: str) -> str:
        return normalize_hash(v)

    @property
    def available_on(self) -> List[str]:
        return [o.endpoint for o in self.availability if o.succeeded]


class UploadResponse(BaseModel):
    """2xx body of an upload or mirror."""
    model_config = ConfigDict(populate_by_name=True)

    content_hash: str
    size: int = 0
    mime_type: str = "application/octet-stream"
    url: str = ""
    message: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def from_server_shape(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        for wire, field in (("sha256", "content_hash"), ("contentHash", "content_hash"), ("type", "mime_type")):
            if wire in data and field not in data:
                data[field] = data.pop(wire)
        if data.get("mime_type") is None:
            data.pop("mime_type", None)
        return data

    @field_validator("content_hash")
    @classmethod
    def validate_hash(cls, v: str) -> str:
        return normalize_hash(v)


# ============= Authorization =============

class AuthAction(str, Enum):
    """Actions a token can authorize."""
    UPLOAD = "upload"
    LIST = "list"
    DELETE = "delete"

    @property
    def binds_hash(self) -> bool:
        return self in (AuthAction.UPLOAD, AuthAction.DELETE)


class AuthToken(BaseModel):
    """A signed, time-boxed, action-scoped credential.

    ``payload`` is opaque (base-64 encoded signed event); only ``expires_at``
    is read by the engine.
    """
    model_config = ConfigDict(frozen=True)

    action: AuthAction
    content_hash: Optional[str] = None
    expires_at: int
    payload: str

    def authorization(self, scheme: str) -> str:
        """Value of the Authorization header."""
        return f"{scheme} {self.payload}"

    def is_fresh(self, now: float, safety_margin: float) -> bool:
        return now < self.expires_at - safety_margin
