"""Endpoint list normalization.

The caller owns the ordered endpoint list. Each engine call normalizes it
into an immutable ``EndpointList`` snapshot; rank is the position of the
first occurrence of each URL.
"""

from typing import Any, Iterable, List, Optional, Union
from urllib.parse import urlparse

from .errors import InvalidEndpointError
from .models import NO_ENDPOINTS, Endpoint, EndpointList, NoEndpoints, origin_of

RawEndpoint = Union[str, Endpoint, dict]


def normalize_url(url: str) -> str:
    """Trim whitespace and trailing slashes."""
    return url.strip().rstrip("/")


def validate_endpoint_url(url: str) -> str:
    """Validate a normalized endpoint URL.

    Raises:
        InvalidEndpointError: If the scheme is not http(s) or the host is missing
    """
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise InvalidEndpointError(url, "scheme must be http or https")
    if not parsed.hostname:
        raise InvalidEndpointError(url, "missing host")
    if parsed.query or parsed.fragment:
        raise InvalidEndpointError(url, "must not carry a query or fragment")
    return url


def _coerce(raw: Any) -> Optional[Endpoint]:
    if isinstance(raw, Endpoint):
        url, name = raw.url, raw.display_name
    elif isinstance(raw, dict):
        url = raw.get("url") or ""
        name = raw.get("displayName") or raw.get("display_name") or ""
    elif isinstance(raw, str):
        url, name = raw, ""
    else:
        raise InvalidEndpointError(repr(raw), "expected a URL string or mapping")

    url = normalize_url(url)
    if not url:
        return None
    validate_endpoint_url(url)
    return Endpoint(url=url, display_name=name)


def normalize(raw: Optional[Iterable[RawEndpoint]]) -> Union[EndpointList, NoEndpoints]:
    """Normalize a raw endpoint list.

    Blank entries are skipped and later duplicates dropped, so every URL
    keeps the rank of its first occurrence.

    Returns:
        The ``EndpointList``, or ``NO_ENDPOINTS`` if nothing remains
    """
    seen = set()
    endpoints: List[Endpoint] = []
    for entry in raw or ():
        endpoint = _coerce(entry)
        if endpoint is None or endpoint.url in seen:
            continue
        seen.add(endpoint.url)
        endpoints.append(endpoint)

    if not endpoints:
        return NO_ENDPOINTS
    return EndpointList(endpoints=tuple(endpoints))


def parse_endpoint_env(value: str) -> List[str]:
    """Split a comma separated endpoint list (``BLOBMESH_ENDPOINTS``)."""
    return [part for part in (p.strip() for p in value.split(",")) if part]
