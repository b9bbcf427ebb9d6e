"""Merge per-endpoint listings into one descriptor per blob.

The content hash is the merge key. Per-endpoint fields (availability) are
unioned; blob-level fields come from the last listing that reported the
blob. Merging already merged output yields the same result.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional

from .models import BlobDescriptor, EndpointOutcome, sort_outcomes


@dataclass
class MergeResult:
    """Merged listing plus the endpoints that failed to list."""
    blobs: List[BlobDescriptor] = field(default_factory=list)
    listing_failed: List[EndpointOutcome] = field(default_factory=list)


def _listing_outcome(endpoint: str, display_names: Mapping[str, str]) -> EndpointOutcome:
    return EndpointOutcome(endpoint=endpoint, display_name=display_names.get(endpoint, ""), succeeded=True)


def merge(
    blobs_by_endpoint: Mapping[str, Iterable[BlobDescriptor]],
    failures: Optional[Iterable[EndpointOutcome]] = None,
    display_names: Optional[Mapping[str, str]] = None,
) -> MergeResult:
    """Merge listings keyed by endpoint URL.

    Args:
        blobs_by_endpoint: Descriptors each endpoint returned
        failures: Outcomes of endpoints that could not be listed; they never
            appear in any blob's availability
        display_names: Optional display name per endpoint URL

    Returns:
        Blobs ordered newest first (ties by hash), availability sorted by URL
    """
    display_names = display_names or {}
    merged: Dict[str, BlobDescriptor] = {}
    availability: Dict[str, Dict[str, EndpointOutcome]] = {}

    for endpoint in sorted(blobs_by_endpoint):
        for blob in blobs_by_endpoint[endpoint]:
            seen = availability.setdefault(blob.content_hash, {})
            for outcome in blob.availability:
                seen[outcome.endpoint] = outcome
            seen[endpoint] = _listing_outcome(endpoint, display_names)
            merged[blob.content_hash] = blob

    failed = sort_outcomes(list(failures or []))
    failed_urls = {o.endpoint for o in failed}

    blobs = []
    for content_hash, blob in merged.items():
        outcomes = [o for url, o in availability[content_hash].items() if url not in failed_urls]
        blobs.append(blob.model_copy(update={"availability": sort_outcomes(outcomes)}))

    blobs.sort(key=lambda b: (-b.created_at, b.content_hash))
    return MergeResult(blobs=blobs, listing_failed=failed)
