"""HTTP wire contract for a single endpoint.

``EndpointClient`` speaks the blob-server protocol against one base URL at
a time and turns every non-2xx response into a typed ``EndpointError``.
It does not retry, fan out or cache; the engine does that.

Error detail comes from the ``X-Reason`` header when the server sets it,
otherwise from the response body.
"""

import json
import logging
from typing import Dict, List, Optional, Tuple

import httpx

from .constants import (
    AUTH_SCHEME,
    CONNECT_TIMEOUT_SECONDS,
    DEFAULT_CONTENT_TYPE,
    REASON_HEADER,
    REQUEST_TIMEOUT_SECONDS,
)
from .errors import InvalidHashError, NetworkError, NotFoundError, ServerError, error_for_status
from .models import AuthToken, BlobDescriptor, UploadResponse

logger = logging.getLogger(__name__)

# Longest body excerpt kept in an error message
MAX_REASON_LENGTH = 200


class EndpointClient:
    """Async client for blob-server endpoints.

    One instance is shared by every endpoint of an operation; the base URL
    is passed per call.

    Args:
        client: Injected ``httpx.AsyncClient`` (tests pass one built on
            ``httpx.MockTransport``). Created on demand when omitted.
        timeout: Per-request timeout in seconds
        connect_timeout: Connection timeout in seconds
        auth_scheme: Scheme prefix of the Authorization header
        reason_header: Response header carrying the error reason
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        connect_timeout: float = CONNECT_TIMEOUT_SECONDS,
        auth_scheme: str = AUTH_SCHEME,
        reason_header: str = REASON_HEADER,
    ):
        self.timeout = httpx.Timeout(timeout, connect=connect_timeout)
        self.auth_scheme = auth_scheme
        self.reason_header = reason_header
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)

    async def __aenter__(self) -> "EndpointClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ----- plumbing -----

    def _auth_headers(self, token: Optional[AuthToken]) -> Dict[str, str]:
        if token is None:
            return {}
        return {"Authorization": token.authorization(self.auth_scheme)}

    def _reason(self, response: httpx.Response) -> str:
        reason = response.headers.get(self.reason_header)
        if reason:
            return reason
        try:
            text = response.text.strip()
        except UnicodeDecodeError:
            return ""
        return text[:MAX_REASON_LENGTH]

    async def _request(
        self,
        method: str,
        url: str,
        endpoint: str,
        action: str,
        **kwargs,
    ) -> httpx.Response:
        """Send one request and raise a typed error for non-2xx responses."""
        logger.debug(f"{method} {url}")
        try:
            response = await self._client.request(method, url, timeout=self.timeout, **kwargs)
        except httpx.TimeoutException as e:
            raise NetworkError(f"{action} timed out: {type(e).__name__}", endpoint=endpoint)
        except httpx.TransportError as e:
            raise NetworkError(f"{action} failed: {str(e) or type(e).__name__}", endpoint=endpoint)

        if not response.is_success:
            reason = self._reason(response)
            message = f"{action} failed: {response.status_code}"
            if reason:
                message += f" - {reason}"
            raise error_for_status(response.status_code, message, endpoint=endpoint)
        return response

    def _json(self, response: httpx.Response, endpoint: str, action: str):
        try:
            return response.json()
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ServerError(f"{action} returned an invalid JSON body: {e}", endpoint=endpoint)

    # ----- operations -----

    async def upload(
        self,
        endpoint: str,
        data: bytes,
        token: AuthToken,
        content_type: Optional[str] = None,
    ) -> UploadResponse:
        """``PUT {endpoint}/upload`` with the raw bytes."""
        headers = self._auth_headers(token)
        headers["Content-Type"] = content_type or DEFAULT_CONTENT_TYPE
        headers["Content-Length"] = str(len(data))
        response = await self._request(
            "PUT", f"{endpoint}/upload", endpoint, "Upload", content=data, headers=headers
        )
        return UploadResponse.model_validate(self._json(response, endpoint, "Upload"))

    async def list_blobs(self, endpoint: str, identity: str, token: AuthToken) -> List[BlobDescriptor]:
        """``GET {endpoint}/list/{identity}``.

        Entries that are not valid blob descriptors are skipped.
        """
        response = await self._request(
            "GET", f"{endpoint}/list/{identity}", endpoint, "List", headers=self._auth_headers(token)
        )
        body = self._json(response, endpoint, "List")
        if not isinstance(body, list):
            raise ServerError("List returned a non-array body", endpoint=endpoint)

        blobs = []
        for entry in body:
            try:
                blobs.append(BlobDescriptor.model_validate(entry))
            except (ValueError, InvalidHashError) as e:
                logger.warning(f"Skipping malformed listing entry from {endpoint}: {e}")
        return blobs

    async def delete(self, endpoint: str, content_hash: str, token: AuthToken) -> None:
        """``DELETE {endpoint}/{hash}``. Raises ``NotFoundError`` on 404."""
        await self._request(
            "DELETE", f"{endpoint}/{content_hash}", endpoint, "Delete", headers=self._auth_headers(token)
        )

    async def mirror(self, endpoint: str, source_url: str, token: AuthToken) -> UploadResponse:
        """``PUT {endpoint}/mirror`` asking the endpoint to pull ``source_url``."""
        response = await self._request(
            "PUT",
            f"{endpoint}/mirror",
            endpoint,
            "Mirror",
            json={"url": source_url},
            headers=self._auth_headers(token),
        )
        return UploadResponse.model_validate(self._json(response, endpoint, "Mirror"))

    async def head(self, endpoint: str, content_hash: str) -> bool:
        """``HEAD {endpoint}/{hash}``.

        Returns:
            True if the endpoint holds the blob, False on 404

        Raises:
            EndpointError: For any other status or a network failure
        """
        try:
            await self._request("HEAD", f"{endpoint}/{content_hash}", endpoint, "Probe")
        except NotFoundError:
            return False
        return True

    async def fetch(self, url: str, endpoint: Optional[str] = None) -> Tuple[bytes, Optional[str]]:
        """``GET`` a blob URL and return its bytes and content type."""
        response = await self._request("GET", url, endpoint or url, "Fetch")
        return response.content, response.headers.get("Content-Type")
