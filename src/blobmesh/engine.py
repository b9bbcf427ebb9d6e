"""Multi-endpoint blob replication engine.

Every operation takes the caller's endpoint list, normalizes it into a
snapshot and then either fans out to all endpoints concurrently or walks
them in rank order. Per-endpoint failures are recorded as outcomes; only
"every endpoint failed" is raised, as ``AllEndpointsFailedError``.

Fan-out:
    One task per endpoint, joined with ``asyncio.wait``. When a deadline
    fires, pending tasks are cancelled and recorded as
    ``DeadlineExceededError`` outcomes; settled outcomes are kept.

Fallback:
    Strict rank order, first success wins. The deadline bounds the whole
    walk; endpoints not reached in time are recorded as deadline failures.

Rank is the only ordering signal. Outcome lists returned from fan-outs are
sorted by endpoint URL so results never depend on completion order.
"""

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, Iterable, List, Optional, Set, Tuple, TypeVar, Union

import httpx

from .aggregate import merge
from .auth import AuthTokenCache, TokenIssuer, UnconfiguredIssuer, get_token_issuer
from .coalesce import RequestCoalescer, create_request_key
from .config import Settings
from .constants import MIRROR_UNSUPPORTED_STATUSES
from .endpoints import RawEndpoint, normalize, origin_of
from .errors import (
    AllEndpointsFailedError,
    AuthError,
    ConfigError,
    DeadlineExceededError,
    DigestMismatchError,
    EndpointError,
    InvalidEndpointError,
    NotFoundError,
    ValidationError,
)
from .hashing import compute_digest, extract_hash, normalize_hash, url_extension, verify_digest
from .models import (
    AuthAction,
    AuthToken,
    BlobDescriptor,
    Endpoint,
    EndpointList,
    EndpointOutcome,
    NoEndpoints,
    UploadResponse,
    sort_outcomes,
)
from .retry import RetryPolicy
from .service_types import (
    AvailabilityReport,
    DeleteResult,
    FallbackListResult,
    FallbackUploadResult,
    FetchedBlob,
    ListingResult,
    MirrorResult,
    OutcomeCallback,
    UploadAllResult,
)
from .transport import EndpointClient

logger = logging.getLogger(__name__)

T = TypeVar("T")

Endpoints = Iterable[RawEndpoint]


@dataclass
class Attempt(Generic[T]):
    """Settled call against one endpoint."""
    endpoint: Endpoint
    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    def outcome(self) -> EndpointOutcome:
        if self.error is None:
            return EndpointOutcome.success(self.endpoint)
        return EndpointOutcome.failure(self.endpoint, self.error)


class SourceBytes:
    """Source blob bytes shared by every target of one mirror operation.

    The first caller fetches and verifies; later callers reuse the bytes.
    A permanent failure (bad digest, 4xx) is kept and re-raised; a
    retryable one is not, so a retried copy fetches again.
    """

    def __init__(self, client: EndpointClient, url: str, content_hash: str):
        self.client = client
        self.url = url
        self.content_hash = content_hash
        self.fetch_count = 0
        self._lock = asyncio.Lock()
        self._result: Optional[Tuple[bytes, Optional[str]]] = None
        self._error: Optional[BaseException] = None

    async def get(self) -> Tuple[bytes, Optional[str]]:
        async with self._lock:
            if self._error is not None:
                raise self._error
            if self._result is None:
                self.fetch_count += 1
                try:
                    data, content_type = await self.client.fetch(self.url)
                    verify_digest(data, self.content_hash, self.url)
                except (EndpointError, DigestMismatchError) as e:
                    # Transient failures are left for the next attempt to refetch
                    if not e.retryable:
                        self._error = e
                    raise
                self._result = (data, content_type)
            return self._result


def _check_hash(response: UploadResponse, expected: str, endpoint: str) -> UploadResponse:
    if response.content_hash != expected:
        raise DigestMismatchError(endpoint, expected, response.content_hash)
    return response


def _log_failures(operation: str, attempts: List[Attempt]) -> None:
    for attempt in attempts:
        if not attempt.succeeded:
            logger.warning(f"{operation} failed on {attempt.endpoint.url}: {attempt.error}")


def _last_error(attempts: List[Attempt]) -> Optional[BaseException]:
    errors = [a.error for a in attempts if a.error is not None]
    return errors[-1] if errors else None


class BlobTransferEngine:
    """Replicate and retrieve content-addressed blobs across endpoints.

    Args:
        client: Per-endpoint HTTP transport
        token_cache: Authorization token cache
        coalescer: Request coalescer for listings (created when omitted)
        retry: Retry policy wrapping each per-endpoint call
        settings: Settings used for defaults
        clock: Wall clock for descriptor timestamps
    """

    def __init__(
        self,
        client: EndpointClient,
        token_cache: AuthTokenCache,
        coalescer: Optional[RequestCoalescer] = None,
        retry: Optional[RetryPolicy] = None,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings or Settings()
        self.client = client
        self.tokens = token_cache
        self.coalescer = coalescer or RequestCoalescer(default_ttl=self.settings.coalesce_ttl)
        self.retry = retry or RetryPolicy(self.settings.retry.to_options())
        self._clock = clock

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        issuer: Optional[TokenIssuer] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> "BlobTransferEngine":
        """Build an engine with every collaborator configured from settings.

        Without a configured credential issuer the engine still serves
        unauthenticated operations (probe, fetch); authenticated ones raise
        the ``ConfigError`` when they need a token.
        """
        if issuer is None:
            try:
                issuer = get_token_issuer(settings)
            except ConfigError as e:
                issuer = UnconfiguredIssuer(e)

        client = EndpointClient(
            http_client,
            timeout=settings.timeout,
            connect_timeout=settings.connect_timeout,
            auth_scheme=settings.auth_scheme,
            reason_header=settings.reason_header,
        )
        tokens = AuthTokenCache(
            issuer,
            safety_margin=settings.token_safety_margin,
            sweep_interval=settings.token_sweep_interval,
        )
        return cls(client, tokens, settings=settings)

    async def __aenter__(self) -> "BlobTransferEngine":
        self.tokens.start_sweeper()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.tokens.close()
        await self.client.aclose()

    # ============= Execution helpers =============

    async def _token(self, action: AuthAction, identity_method: str, content_hash: Optional[str] = None) -> AuthToken:
        return await self.tokens.get_or_create(action, identity_method, content_hash)

    async def _attempt(
        self,
        endpoint: Endpoint,
        call: Callable[[Endpoint], Awaitable[T]],
        context: str,
        callback: Optional[OutcomeCallback] = None,
    ) -> Attempt[T]:
        if callback:
            callback.on_endpoint_start(endpoint.url)
        result = await self.retry.execute(lambda: call(endpoint), context=f"{context} on {endpoint.url}")
        attempt: Attempt[T] = Attempt(endpoint=endpoint, value=result.value, error=result.error)
        if isinstance(attempt.error, AuthError) and attempt.error.status_code is not None:
            # Endpoint rejected the token; mint a fresh one next time
            self.tokens.invalidate()
        if callback:
            callback.on_endpoint_complete(attempt.outcome())
        return attempt

    async def _fan_out(
        self,
        endpoints: EndpointList,
        call: Callable[[Endpoint], Awaitable[T]],
        context: str,
        deadline: Optional[float] = None,
        callback: Optional[OutcomeCallback] = None,
    ) -> List[Attempt[T]]:
        """Call every endpoint concurrently. Returns attempts in rank order."""
        tasks = [
            asyncio.ensure_future(self._attempt(endpoint, call, context, callback))
            for endpoint in endpoints
        ]
        try:
            _, pending = await asyncio.wait(tasks, timeout=deadline)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        attempts: List[Attempt[T]] = []
        for endpoint, task in zip(endpoints, tasks):
            if task in pending:
                attempt: Attempt[T] = Attempt(endpoint=endpoint, error=DeadlineExceededError(endpoint.url, deadline))
                if callback:
                    callback.on_endpoint_complete(attempt.outcome())
                attempts.append(attempt)
            else:
                attempts.append(task.result())
        return attempts

    async def _sequential(
        self,
        endpoints: EndpointList,
        call: Callable[[Endpoint], Awaitable[T]],
        context: str,
        deadline: Optional[float] = None,
        callback: Optional[OutcomeCallback] = None,
    ) -> Tuple[Optional[Attempt[T]], List[Attempt[T]]]:
        """Try endpoints in rank order until one succeeds.

        Returns:
            The winning attempt (or None) and every attempt in order
        """
        loop = asyncio.get_running_loop()
        expires = None if deadline is None else loop.time() + deadline
        attempts: List[Attempt[T]] = []
        timed_out = False

        for endpoint in endpoints:
            remaining = None if expires is None else expires - loop.time()
            if timed_out or (remaining is not None and remaining <= 0):
                attempt: Attempt[T] = Attempt(endpoint=endpoint, error=DeadlineExceededError(endpoint.url, deadline))
            else:
                try:
                    attempt = await asyncio.wait_for(self._attempt(endpoint, call, context, callback), remaining)
                except asyncio.TimeoutError:
                    timed_out = True
                    attempt = Attempt(endpoint=endpoint, error=DeadlineExceededError(endpoint.url, deadline))
            attempts.append(attempt)
            if attempt.succeeded:
                return attempt, attempts
            logger.warning(f"{context} failed on {endpoint.url}: {attempt.error}; trying next endpoint")
        return None, attempts

    # ============= Upload =============

    async def upload_to_all(
        self,
        data: bytes,
        endpoints: Endpoints,
        identity_method: str,
        content_type: Optional[str] = None,
        filename: Optional[str] = None,
        deadline: Optional[float] = None,
        callback: Optional[OutcomeCallback] = None,
    ) -> Union[UploadAllResult, NoEndpoints]:
        """Upload one blob to every endpoint concurrently.

        Partial success is success. The primary result is the first
        successful response in rank order.

        Raises:
            AllEndpointsFailedError: If no endpoint accepted the blob
        """
        snapshot = normalize(endpoints)
        if isinstance(snapshot, NoEndpoints):
            return snapshot

        content_hash = compute_digest(data)
        token = await self._token(AuthAction.UPLOAD, identity_method, content_hash)

        async def upload(endpoint: Endpoint) -> UploadResponse:
            response = await self.client.upload(endpoint.url, data, token, content_type)
            return _check_hash(response, content_hash, endpoint.url)

        attempts = await self._fan_out(snapshot, upload, "Upload", deadline, callback)
        outcomes = sort_outcomes([a.outcome() for a in attempts])
        succeeded = [a for a in attempts if a.succeeded]
        _log_failures("Upload", attempts)

        if not succeeded:
            raise AllEndpointsFailedError("Upload", outcomes) from _last_error(attempts)

        primary = succeeded[0]
        response = primary.value
        assert response is not None
        logger.info(
            f"Upload of {content_hash[:12]} complete: "
            f"{len(succeeded)} succeeded, {len(attempts) - len(succeeded)} failed"
        )
        descriptor = BlobDescriptor(
            content_hash=content_hash,
            size=len(data),
            mime_type=content_type or response.mime_type,
            created_at=int(self._clock()),
            url=response.url or None,
            filename=filename,
            availability=outcomes,
        )
        return UploadAllResult(
            content_hash=content_hash,
            primary=response,
            primary_endpoint=primary.endpoint.url,
            outcomes=outcomes,
            descriptor=descriptor,
        )

    async def upload_with_fallback(
        self,
        data: bytes,
        endpoints: Endpoints,
        identity_method: str,
        content_type: Optional[str] = None,
        deadline: Optional[float] = None,
        callback: Optional[OutcomeCallback] = None,
    ) -> Union[FallbackUploadResult, NoEndpoints]:
        """Upload to the primary endpoint, falling back in rank order.

        Raises:
            AllEndpointsFailedError: With the ordered attempt list
        """
        snapshot = normalize(endpoints)
        if isinstance(snapshot, NoEndpoints):
            return snapshot

        content_hash = compute_digest(data)
        token = await self._token(AuthAction.UPLOAD, identity_method, content_hash)

        async def upload(endpoint: Endpoint) -> UploadResponse:
            response = await self.client.upload(endpoint.url, data, token, content_type)
            return _check_hash(response, content_hash, endpoint.url)

        winner, attempts = await self._sequential(snapshot, upload, "Upload", deadline, callback)
        outcomes = [a.outcome() for a in attempts]
        if winner is None:
            raise AllEndpointsFailedError("Upload", outcomes) from _last_error(attempts)

        assert winner.value is not None
        logger.info(f"Upload of {content_hash[:12]} stored on {winner.endpoint.url} (attempt {len(attempts)})")
        return FallbackUploadResult(result=winner.value, endpoint=winner.endpoint.url, attempts=outcomes)

    # ============= Delete =============

    async def delete_everywhere(
        self,
        content_hash: str,
        endpoints: Endpoints,
        identity_method: str,
        deadline: Optional[float] = None,
        callback: Optional[OutcomeCallback] = None,
    ) -> Union[DeleteResult, NoEndpoints]:
        """Delete a blob from every endpoint concurrently.

        An endpoint answering 404 no longer holds the blob, which is the goal
        of the operation, so it is recorded as ``not_found`` rather than as a
        failure.

        Raises:
            InvalidHashError: If ``content_hash`` is malformed
            AllEndpointsFailedError: If nothing was deleted and at least one
                endpoint failed for a reason other than not-found
        """
        content_hash = normalize_hash(content_hash)
        snapshot = normalize(endpoints)
        if isinstance(snapshot, NoEndpoints):
            return snapshot

        token = await self._token(AuthAction.DELETE, identity_method, content_hash)

        async def delete(endpoint: Endpoint) -> bool:
            try:
                await self.client.delete(endpoint.url, content_hash, token)
            except NotFoundError:
                return False
            return True

        attempts = await self._fan_out(snapshot, delete, "Delete", deadline, callback)
        deleted = sorted(a.endpoint.url for a in attempts if a.succeeded and a.value)
        not_found = sorted(a.endpoint.url for a in attempts if a.succeeded and not a.value)
        failures = [a for a in attempts if not a.succeeded]
        outcomes = sort_outcomes([a.outcome() for a in attempts])
        _log_failures("Delete", attempts)

        if not deleted and failures:
            raise AllEndpointsFailedError("Delete", outcomes) from _last_error(attempts)

        logger.info(
            f"Delete of {content_hash[:12]}: {len(deleted)} deleted, "
            f"{len(not_found)} not found, {len(failures)} failed"
        )
        return DeleteResult(content_hash=content_hash, deleted=deleted, not_found=not_found, outcomes=outcomes)

    # ============= Mirror =============

    def _mirror_call(
        self,
        source_url: str,
        content_hash: str,
        token: AuthToken,
        source: SourceBytes,
        relayed: Set[str],
    ) -> Callable[[Endpoint], Awaitable[UploadResponse]]:
        """Ask an endpoint to pull the blob, relaying bytes if it cannot."""

        async def copy(endpoint: Endpoint) -> UploadResponse:
            try:
                response = await self.client.mirror(endpoint.url, source_url, token)
                return _check_hash(response, content_hash, endpoint.url)
            except EndpointError as e:
                if e.status_code not in MIRROR_UNSUPPORTED_STATUSES:
                    raise
                logger.info(f"{endpoint.url} does not support mirroring ({e.status_code}); relaying bytes")

            data, content_type = await source.get()
            response = await self.client.upload(endpoint.url, data, token, content_type)
            response = _check_hash(response, content_hash, endpoint.url)
            relayed.add(endpoint.url)
            return response

        return copy

    def _source_hash(self, source_url: str) -> str:
        content_hash = extract_hash(source_url)
        if content_hash is None:
            raise ValidationError(f"No content hash found in URL: {source_url}")
        return content_hash

    async def mirror_to_all(
        self,
        source_url: str,
        endpoints: Endpoints,
        identity_method: str,
        deadline: Optional[float] = None,
        callback: Optional[OutcomeCallback] = None,
    ) -> Union[MirrorResult, NoEndpoints]:
        """Copy a blob from ``source_url`` to every endpoint of another origin.

        Endpoints sharing the source's origin are excluded, whatever their
        rank. With no targets left the result has ``excluded`` set and no
        outcomes, and nothing is sent over the network.

        Raises:
            ValidationError: If the URL carries no content hash
            AllEndpointsFailedError: If every target failed
        """
        content_hash = self._source_hash(source_url)
        snapshot = normalize(endpoints)
        if isinstance(snapshot, NoEndpoints):
            return snapshot

        source_origin = origin_of(source_url)
        targets = snapshot.without_origin(source_origin)
        excluded = sorted(e.url for e in snapshot if e.origin == source_origin)
        if not len(targets):
            logger.info(f"No mirror targets for {source_url}: every endpoint shares its origin")
            return MirrorResult(
                content_hash=content_hash,
                source_url=source_url,
                source_origin=source_origin,
                excluded=excluded,
            )

        token = await self._token(AuthAction.UPLOAD, identity_method, content_hash)
        source = SourceBytes(self.client, source_url, content_hash)
        relayed: Set[str] = set()
        copy = self._mirror_call(source_url, content_hash, token, source, relayed)

        attempts = await self._fan_out(targets, copy, "Mirror", deadline, callback)
        outcomes = sort_outcomes([a.outcome() for a in attempts])
        _log_failures("Mirror", attempts)
        if not any(a.succeeded for a in attempts):
            raise AllEndpointsFailedError("Mirror", outcomes) from _last_error(attempts)

        results = {a.endpoint.url: a.value for a in attempts if a.succeeded and a.value is not None}
        logger.info(f"Mirror of {content_hash[:12]} complete: {len(results)}/{len(attempts)} endpoints")
        return MirrorResult(
            content_hash=content_hash,
            source_url=source_url,
            source_origin=source_origin,
            excluded=excluded,
            relayed=sorted(relayed),
            outcomes=outcomes,
            results=results,
        )

    async def mirror_to_endpoint(
        self,
        source_url: str,
        target: RawEndpoint,
        identity_method: str,
    ) -> UploadResponse:
        """Copy a blob from ``source_url`` to a single endpoint.

        Raises:
            ValidationError: If the URL has no hash or the target shares the
                source's origin
            EndpointError: If the copy fails after retries
        """
        content_hash = self._source_hash(source_url)
        snapshot = normalize([target])
        if isinstance(snapshot, NoEndpoints):
            raise InvalidEndpointError(str(target), "empty endpoint URL")

        endpoint = snapshot.primary
        if endpoint.origin == origin_of(source_url):
            raise ValidationError(f"Cannot mirror {source_url} onto its own server {endpoint.url}")

        token = await self._token(AuthAction.UPLOAD, identity_method, content_hash)
        source = SourceBytes(self.client, source_url, content_hash)
        copy = self._mirror_call(source_url, content_hash, token, source, set())
        return await self.retry.run(lambda: copy(endpoint), context=f"Mirror on {endpoint.url}")

    # ============= Probe =============

    async def probe_availability(
        self,
        content_hash: str,
        endpoints: Endpoints,
        deadline: Optional[float] = None,
        callback: Optional[OutcomeCallback] = None,
    ) -> Union[AvailabilityReport, NoEndpoints]:
        """Check which endpoints hold a blob.

        404 means unavailable. Any other failure is indeterminate and goes
        to ``errors``; it is never reported as unavailable.
        """
        content_hash = normalize_hash(content_hash)
        snapshot = normalize(endpoints)
        if isinstance(snapshot, NoEndpoints):
            return snapshot

        async def head(endpoint: Endpoint) -> bool:
            return await self.client.head(endpoint.url, content_hash)

        attempts = await self._fan_out(snapshot, head, "Probe", deadline, callback)
        report = AvailabilityReport(content_hash=content_hash)
        for attempt in sorted(attempts, key=lambda a: a.endpoint.url):
            if not attempt.succeeded:
                report.errors[attempt.endpoint.url] = str(attempt.error) or type(attempt.error).__name__
            elif attempt.value:
                report.available.append(attempt.endpoint.url)
            else:
                report.unavailable.append(attempt.endpoint.url)

        logger.info(
            f"Probe of {content_hash[:12]}: {len(report.available)} available, "
            f"{len(report.unavailable)} unavailable, {len(report.errors)} indeterminate"
        )
        return report

    # ============= List =============

    async def list_from_all(
        self,
        identity: str,
        endpoints: Endpoints,
        identity_method: str,
        deadline: Optional[float] = None,
    ) -> Union[ListingResult, NoEndpoints]:
        """List an identity's blobs on every endpoint and merge the results.

        Concurrent identical calls (same identity, method and endpoint set)
        share one fan-out.

        Raises:
            AllEndpointsFailedError: If no endpoint could be listed
        """
        snapshot = normalize(endpoints)
        if isinstance(snapshot, NoEndpoints):
            return snapshot

        key = create_request_key(["list", identity, identity_method, json.dumps(snapshot.sorted_urls())])
        return await self.coalescer.dedupe(
            key, lambda: self._list_all(identity, snapshot, identity_method, deadline)
        )

    async def _list_all(
        self,
        identity: str,
        snapshot: EndpointList,
        identity_method: str,
        deadline: Optional[float],
    ) -> ListingResult:
        token = await self._token(AuthAction.LIST, identity_method)

        async def list_blobs(endpoint: Endpoint) -> List[BlobDescriptor]:
            return await self.client.list_blobs(endpoint.url, identity, token)

        attempts = await self._fan_out(snapshot, list_blobs, "List", deadline)
        _log_failures("List", attempts)
        failures = [a.outcome() for a in attempts if not a.succeeded]
        if len(failures) == len(attempts):
            raise AllEndpointsFailedError("List", sort_outcomes(failures)) from _last_error(attempts)

        merged = merge(
            {a.endpoint.url: a.value or [] for a in attempts if a.succeeded},
            failures=failures,
            display_names={e.url: e.display_name for e in snapshot},
        )
        logger.info(f"Listed {len(merged.blobs)} blobs for {identity} from {len(attempts) - len(failures)} endpoints")
        return ListingResult(
            identity=identity,
            blobs=merged.blobs,
            listing_failed=merged.listing_failed,
            queried=snapshot.sorted_urls(),
        )

    async def list_with_fallback(
        self,
        identity: str,
        endpoints: Endpoints,
        identity_method: str,
        deadline: Optional[float] = None,
    ) -> Union[FallbackListResult, NoEndpoints]:
        """List from the first endpoint, in rank order, that answers.

        Raises:
            AllEndpointsFailedError: With the ordered attempt list
        """
        snapshot = normalize(endpoints)
        if isinstance(snapshot, NoEndpoints):
            return snapshot

        token = await self._token(AuthAction.LIST, identity_method)

        async def list_blobs(endpoint: Endpoint) -> List[BlobDescriptor]:
            return await self.client.list_blobs(endpoint.url, identity, token)

        winner, attempts = await self._sequential(snapshot, list_blobs, "List", deadline)
        outcomes = [a.outcome() for a in attempts]
        if winner is None:
            raise AllEndpointsFailedError("List", outcomes) from _last_error(attempts)

        source = winner.endpoint
        merged = merge({source.url: winner.value or []}, display_names={source.url: source.display_name})
        return FallbackListResult(identity=identity, endpoint=source.url, blobs=merged.blobs, attempts=outcomes)

    # ============= Fetch =============

    async def fetch_with_fallback(
        self,
        url: str,
        endpoints: Optional[Endpoints] = None,
        deadline: Optional[float] = None,
    ) -> FetchedBlob:
        """Download a blob, falling back to the same hash on other endpoints.

        Tries ``url`` first, then ``{endpoint}/{hash}{ext}`` in rank order.
        A body only counts if it hashes to the hash in the URL.

        Raises:
            ValidationError: If the URL carries no content hash
            AllEndpointsFailedError: If no candidate produced the blob
        """
        content_hash = self._source_hash(url)
        extension = url_extension(url)

        candidates = [Endpoint(url=url)]
        snapshot = normalize(endpoints or [])
        if isinstance(snapshot, EndpointList):
            for endpoint in snapshot:
                candidate = f"{endpoint.url}/{content_hash}{extension}"
                if candidate != url:
                    candidates.append(Endpoint(url=candidate, display_name=endpoint.display_name))

        async def fetch(candidate: Endpoint) -> Tuple[bytes, Optional[str]]:
            data, content_type = await self.client.fetch(candidate.url)
            verify_digest(data, content_hash, candidate.url)
            return data, content_type

        winner, attempts = await self._sequential(
            EndpointList(endpoints=tuple(candidates)), fetch, "Fetch", deadline
        )
        outcomes = [a.outcome() for a in attempts]
        if winner is None:
            raise AllEndpointsFailedError("Fetch", outcomes) from _last_error(attempts)

        assert winner.value is not None
        data, content_type = winner.value
        return FetchedBlob(
            content_hash=content_hash,
            url=winner.endpoint.url,
            data=data,
            mime_type=content_type,
            attempts=outcomes,
        )
