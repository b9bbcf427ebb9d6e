"""Cache of short-lived, action-scoped authorization tokens.

Tokens are reused until ``expires_at - safety_margin`` so a token is never
sent moments before it expires. Lookup-time eviction is authoritative; the
background sweeper only bounds memory.
"""

import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Tuple, TYPE_CHECKING

from ..constants import TOKEN_SAFETY_MARGIN_SECONDS, TOKEN_SWEEP_INTERVAL_SECONDS
from ..models import AuthAction, AuthToken

if TYPE_CHECKING:
    from . import TokenIssuer

logger = logging.getLogger(__name__)

CacheKey = Tuple[str, str, str]


def cache_key(action: AuthAction, identity_method: str, content_hash: Optional[str]) -> CacheKey:
    """Key a token by action, identity method and bound hash (or ``none``)."""
    bound = content_hash if (content_hash and action.binds_hash) else "none"
    return (action.value, identity_method, bound)


class AuthTokenCache:
    """Mint tokens through an issuer and reuse them until near expiry.

    Concurrent misses on the same key mint exactly once; different keys
    never wait on each other.

    Args:
        issuer: External credential issuer
        clock: Wall clock in epoch seconds (tokens expire in epoch time)
        safety_margin: Seconds before expiry at which a token is refreshed
        sweep_interval: Seconds between background sweeps
    """

    def __init__(
        self,
        issuer: "TokenIssuer",
        clock: Callable[[], float] = time.time,
        safety_margin: float = TOKEN_SAFETY_MARGIN_SECONDS,
        sweep_interval: float = TOKEN_SWEEP_INTERVAL_SECONDS,
    ):
        self.issuer = issuer
        self._clock = clock
        self.safety_margin = safety_margin
        self.sweep_interval = sweep_interval
        self._tokens: Dict[CacheKey, AuthToken] = {}
        self._locks: Dict[CacheKey, asyncio.Lock] = {}
        self._sweeper: Optional[asyncio.Task] = None
        self.issued_count = 0

    def __len__(self) -> int:
        return len(self._tokens)

    def _fresh(self, key: CacheKey) -> Optional[AuthToken]:
        token = self._tokens.get(key)
        if token is None:
            return None
        if token.is_fresh(self._clock(), self.safety_margin):
            return token
        del self._tokens[key]
        return None

    async def get_or_create(
        self,
        action: AuthAction,
        identity_method: str,
        content_hash: Optional[str] = None,
    ) -> AuthToken:
        """Return a cached token for the key or mint a new one."""
        key = cache_key(action, identity_method, content_hash)
        token = self._fresh(key)
        if token is not None:
            return token

        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            # Another waiter may have minted while we waited for the lock
            token = self._fresh(key)
            if token is not None:
                return token

            bound = content_hash if action.binds_hash else None
            logger.debug(f"Minting {action.value} token for {identity_method} ({bound or 'unbound'})")
            token = await self.issuer.issue(action, identity_method, bound)
            self.issued_count += 1
            self._tokens[key] = token
            return token

    def _drop_idle_locks(self) -> None:
        """Forget locks that guard no token and have no waiter."""
        idle = [k for k, lock in self._locks.items() if k not in self._tokens and not lock.locked()]
        for key in idle:
            del self._locks[key]

    def invalidate(self, action: Optional[AuthAction] = None) -> int:
        """Drop cached tokens (all, or only those for ``action``)."""
        stale = [k for k in self._tokens if action is None or k[0] == action.value]
        for key in stale:
            del self._tokens[key]
        self._drop_idle_locks()
        return len(stale)

    def sweep(self) -> int:
        """Remove entries past their cache expiry. Returns the number removed."""
        now = self._clock()
        expired = [k for k, t in self._tokens.items() if not t.is_fresh(now, self.safety_margin)]
        for key in expired:
            del self._tokens[key]
        self._drop_idle_locks()
        if expired:
            logger.debug(f"Swept {len(expired)} expired tokens")
        return len(expired)

    def start_sweeper(self) -> None:
        """Run ``sweep`` every ``sweep_interval`` seconds until ``close``."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval)
            self.sweep()

    async def close(self) -> None:
        """Stop the background sweeper."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
