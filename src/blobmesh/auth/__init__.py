"""Authorization token issuers.

Signing is not done here. Tokens are minted by an external credential
issuer; this module builds the unsigned authorization event, hands it to
the issuer, and wraps what comes back in an ``AuthToken``. The engine only
ever reads the token's expiration.

Issuers:
- ``CommandTokenIssuer``: pipes the unsigned event to an external signer
  command (stdin JSON in, signed JSON out).
- ``StaticTokenIssuer``: a pre-signed token from the environment, for CI and
  scripted use.
"""

import asyncio
import base64
import binascii
import json
import os
import shlex
import subprocess
import time
from typing import Any, Dict, Optional, Protocol, TYPE_CHECKING

from ..constants import AUTH_EVENT_KIND, TOKEN_LIFETIME_SECONDS
from ..errors import AuthError, ConfigError
from ..models import AuthAction, AuthToken
from .cache import AuthTokenCache

if TYPE_CHECKING:
    from ..config import Settings

# Used when a signed event carries no expiration tag
FALLBACK_LIFETIME_SECONDS = 270


class TokenIssuer(Protocol):
    """External credential issuer."""

    async def issue(
        self,
        action: AuthAction,
        identity_method: str,
        content_hash: Optional[str] = None,
    ) -> AuthToken:
        ...


def build_auth_event(
    action: AuthAction,
    content_hash: Optional[str] = None,
    now: Optional[int] = None,
    lifetime: int = TOKEN_LIFETIME_SECONDS,
    content: Optional[str] = None,
) -> Dict[str, Any]:
    """Build the unsigned authorization event for ``action``.

    The hash is only bound for upload and delete; list tokens are not
    hash-scoped.
    """
    now = int(time.time()) if now is None else now
    tags = [
        ["t", action.value],
        ["expiration", str(now + lifetime)],
    ]
    if content_hash and action.binds_hash:
        tags.append(["x", content_hash])
    return {
        "kind": AUTH_EVENT_KIND,
        "content": content or f"{action.value.capitalize()} request",
        "tags": tags,
        "created_at": now,
    }


def encode_token(event: Dict[str, Any]) -> str:
    """Encode a signed event as the opaque Authorization payload."""
    return base64.b64encode(json.dumps(event, separators=(",", ":")).encode("utf-8")).decode("ascii")


def decode_token(payload: str) -> Dict[str, Any]:
    """Decode an Authorization payload back into the event."""
    try:
        return json.loads(base64.b64decode(payload, validate=True))
    except (binascii.Error, ValueError) as e:
        raise AuthError(f"Malformed authorization token: {e}")


def token_expiration(event: Dict[str, Any]) -> int:
    """Read the expiration timestamp of a signed event."""
    for tag in event.get("tags", []):
        if len(tag) >= 2 and tag[0] == "expiration":
            try:
                return int(tag[1])
            except ValueError:
                raise AuthError(f"Invalid expiration tag in token: {tag[1]!r}")
    created = int(event.get("created_at") or time.time())
    return created + FALLBACK_LIFETIME_SECONDS


def token_from_event(
    event: Dict[str, Any],
    action: AuthAction,
    content_hash: Optional[str] = None,
) -> AuthToken:
    """Wrap a signed event in an ``AuthToken``."""
    return AuthToken(
        action=action,
        content_hash=content_hash if action.binds_hash else None,
        expires_at=token_expiration(event),
        payload=encode_token(event),
    )


class CommandTokenIssuer:
    """Sign authorization events with an external signer command.

    The command receives the unsigned event as JSON on stdin together with
    ``BLOBMESH_IDENTITY_METHOD`` in its environment, and must print the
    signed event as JSON on stdout.
    """

    def __init__(self, command: str, lifetime: int = TOKEN_LIFETIME_SECONDS):
        self.command = command
        self.lifetime = lifetime

    async def issue(
        self,
        action: AuthAction,
        identity_method: str,
        content_hash: Optional[str] = None,
    ) -> AuthToken:
        unsigned = build_auth_event(action, content_hash, lifetime=self.lifetime)
        signed = await asyncio.to_thread(self._sign, unsigned, identity_method)
        return token_from_event(signed, action, content_hash)

    def _sign(self, unsigned: Dict[str, Any], identity_method: str) -> Dict[str, Any]:
        """Run the signer command and parse its output.

        Raises:
            AuthError: If the signer fails or prints something unusable
        """
        env = dict(os.environ, BLOBMESH_IDENTITY_METHOD=identity_method)
        try:
            result = subprocess.run(
                shlex.split(self.command),
                input=json.dumps(unsigned),
                capture_output=True,
                text=True,
                check=False,  # Handle errors manually for better diagnostics
                env=env,
            )
        except OSError as e:
            raise AuthError(f"Cannot run signer command '{self.command}': {e}")

        if result.returncode != 0:
            error_msg = result.stderr.strip() or result.stdout.strip()
            raise AuthError(
                f"Signer command failed (exit {result.returncode}).\n"
                f"Error: {error_msg}"
            )

        if not result.stdout.strip():
            raise AuthError(
                f"Signer command returned empty output.\n"
                f"stderr: {result.stderr}"
            )

        try:
            signed = json.loads(result.stdout)
        except json.JSONDecodeError as e:
            raise AuthError(
                f"Failed to parse signer output.\n"
                f"Parse error: {e}\n"
                f"stdout: {result.stdout[:200]}"
            )

        if not isinstance(signed, dict) or "sig" not in signed:
            raise AuthError("Signer output is not a signed event (missing 'sig')")
        return signed


class StaticTokenIssuer:
    """Serve one pre-signed token regardless of action.

    Endpoints decide whether the token's scope fits the request; a mismatch
    surfaces as an authentication failure from the endpoint.
    """

    def __init__(self, payload: str):
        self.payload = payload.strip()
        self._event = decode_token(self.payload)

    async def issue(
        self,
        action: AuthAction,
        identity_method: str,
        content_hash: Optional[str] = None,
    ) -> AuthToken:
        return AuthToken(
            action=action,
            content_hash=content_hash if action.binds_hash else None,
            expires_at=token_expiration(self._event),
            payload=self.payload,
        )


class UnconfiguredIssuer:
    """Stand-in when no issuer is configured; raises the original error on use."""

    def __init__(self, error: ConfigError):
        self.error = error

    async def issue(
        self,
        action: AuthAction,
        identity_method: str,
        content_hash: Optional[str] = None,
    ) -> AuthToken:
        raise self.error


def get_token_issuer(settings: "Settings") -> TokenIssuer:
    """Get the token issuer for standalone CLI use.

    Resolution order: ``BLOBMESH_AUTH_TOKEN`` > configured signer command.

    Raises:
        ConfigError: If neither is available
    """
    static = os.environ.get("BLOBMESH_AUTH_TOKEN")
    if static:
        return StaticTokenIssuer(static)

    if settings.signer_command:
        return CommandTokenIssuer(settings.signer_command, lifetime=settings.token_lifetime)

    raise ConfigError(
        "No credential issuer configured.\n"
        "Set signer_command in ~/.blobmesh/config.yaml (or BLOBMESH_SIGNER),\n"
        "or export a pre-signed token as BLOBMESH_AUTH_TOKEN."
    )


__all__ = [
    "AuthTokenCache",
    "CommandTokenIssuer",
    "StaticTokenIssuer",
    "TokenIssuer",
    "UnconfiguredIssuer",
    "build_auth_event",
    "decode_token",
    "encode_token",
    "get_token_issuer",
    "token_expiration",
    "token_from_event",
]
