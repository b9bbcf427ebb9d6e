"""Shared test fixtures and utilities.

Endpoints are simulated by ``FakeServer`` instances behind one
``httpx.MockTransport``; requests are routed by host name, so
``https://a.test`` and ``https://b.test`` are independent servers.
"""

import asyncio
import hashlib
import json
import re
import time
from typing import Dict, List, Optional, Tuple

import httpx
import pytest

from blobmesh.auth import AuthTokenCache
from blobmesh.coalesce import RequestCoalescer
from blobmesh.config import Settings
from blobmesh.engine import BlobTransferEngine
from blobmesh.models import AuthAction, AuthToken
from blobmesh.retry import RetryOptions, RetryPolicy
from blobmesh.transport import EndpointClient

_HASH_PATH = re.compile(r"^/([0-9a-f]{64})(\.[A-Za-z0-9]+)?$")

UPLOADED_AT = 1700000000


def sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


class FakeServer:
    """In-memory blob server.

    Attributes:
        status: If set, every request answers with this status
        reason: X-Reason header sent with ``status``
        down: Raise a connection error for every request
        delay: Seconds to wait before answering
        mirror_status: Status answered to ``PUT /mirror`` (None = supported)
    """

    def __init__(self, network: "FakeNetwork", base: str):
        self.network = network
        self.base = base
        self.blobs: Dict[str, bytes] = {}
        self.types: Dict[str, str] = {}
        self.uploaded: Dict[str, int] = {}
        self.requests: List[Tuple[str, str]] = []
        self.headers: List[httpx.Headers] = []
        self.status: Optional[int] = None
        self.reason: Optional[str] = None
        self.down = False
        self.delay = 0.0
        self.mirror_status: Optional[int] = None

    def put(self, data: bytes, content_type: str = "image/png", uploaded: int = UPLOADED_AT) -> str:
        content_hash = sha256(data)
        self.blobs[content_hash] = data
        self.types[content_hash] = content_type
        self.uploaded[content_hash] = uploaded
        return content_hash

    def count(self, method: str, path: Optional[str] = None) -> int:
        return sum(1 for m, p in self.requests if m == method and (path is None or p == path))

    def _descriptor(self, content_hash: str) -> dict:
        return {
            "sha256": content_hash,
            "size": len(self.blobs[content_hash]),
            "type": self.types.get(content_hash, "application/octet-stream"),
            "url": f"{self.base}/{content_hash}",
            "uploaded": self.uploaded.get(content_hash, UPLOADED_AT),
        }

    async def handle(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        self.requests.append((method, path))
        self.headers.append(request.headers)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.down:
            raise httpx.ConnectError("Connection refused", request=request)
        if self.status is not None:
            headers = {"X-Reason": self.reason} if self.reason else {}
            return httpx.Response(self.status, headers=headers, text="server says no")

        if method == "PUT" and path == "/upload":
            content_hash = self.put(request.content, request.headers.get("content-type", ""), int(time.time()))
            return httpx.Response(200, json=self._descriptor(content_hash))

        if method == "PUT" and path == "/mirror":
            if self.mirror_status is not None:
                return httpx.Response(self.mirror_status, text="mirror not supported")
            url = json.loads(request.content)["url"]
            data = self.network.lookup(url)
            if data is None:
                return httpx.Response(502, headers={"X-Reason": "source unreachable"})
            content_hash = self.put(data)
            return httpx.Response(200, json=self._descriptor(content_hash))

        if method == "GET" and path.startswith("/list/"):
            return httpx.Response(200, json=[self._descriptor(h) for h in sorted(self.blobs)])

        match = _HASH_PATH.match(path)
        if match:
            content_hash = match.group(1)
            present = content_hash in self.blobs
            if method == "DELETE":
                if not present:
                    return httpx.Response(404, headers={"X-Reason": "blob not found"})
                del self.blobs[content_hash]
                return httpx.Response(200)
            if method == "HEAD":
                return httpx.Response(200 if present else 404)
            if method == "GET":
                if not present:
                    return httpx.Response(404)
                return httpx.Response(
                    200, content=self.blobs[content_hash], headers={"Content-Type": self.types[content_hash]}
                )

        return httpx.Response(404, text=f"no route for {method} {path}")


class FakeNetwork:
    """Routes requests to fake servers by host."""

    def __init__(self):
        self.servers: Dict[str, FakeServer] = {}

    def add(self, base: str) -> FakeServer:
        server = FakeServer(self, base)
        self.servers[httpx.URL(base).host] = server
        return server

    def lookup(self, url: str) -> Optional[bytes]:
        server = self.servers.get(httpx.URL(url).host)
        match = _HASH_PATH.match(httpx.URL(url).path)
        if server is None or match is None or server.down:
            return None
        return server.blobs.get(match.group(1))

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        server = self.servers.get(request.url.host)
        if server is None:
            raise httpx.ConnectError(f"Unknown host {request.url.host}", request=request)
        return await server.handle(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class FakeIssuer:
    """Token issuer that counts how often it was asked to sign."""

    def __init__(self, lifetime: int = 300, clock=time.time, delay: float = 0.0):
        self.lifetime = lifetime
        self.clock = clock
        self.delay = delay
        self.calls: List[Tuple[AuthAction, str, Optional[str]]] = []

    async def issue(self, action, identity_method, content_hash=None) -> AuthToken:
        self.calls.append((action, identity_method, content_hash))
        if self.delay:
            await asyncio.sleep(self.delay)
        return AuthToken(
            action=action,
            content_hash=content_hash,
            expires_at=int(self.clock()) + self.lifetime,
            payload=f"token-{len(self.calls)}",
        )


class RecordingSleep:
    """Stand-in for ``asyncio.sleep`` that records delays without waiting."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def servers(network):
    """Three servers in rank order: a (primary), b, c."""
    return [network.add(f"https://{name}.test") for name in ("a", "b", "c")]


@pytest.fixture
def endpoint_urls(servers):
    return [s.base for s in servers]


@pytest.fixture
def issuer():
    return FakeIssuer()


@pytest.fixture
def make_engine(network, issuer):
    """Factory for engines wired to the fake network.

    Retries default to a single attempt so failure tests stay fast.
    """

    def _make(max_attempts: int = 1, sleep=None, coalescer: Optional[RequestCoalescer] = None):
        retry = RetryPolicy(
            RetryOptions(max_attempts=max_attempts, base_delay=0.01, jitter=False),
            sleep=sleep or RecordingSleep(),
        )
        return BlobTransferEngine(
            EndpointClient(network.client()),
            AuthTokenCache(issuer),
            coalescer=coalescer,
            retry=retry,
            settings=Settings(),
        )

    return _make


@pytest.fixture
def engine(make_engine):
    return make_engine()
