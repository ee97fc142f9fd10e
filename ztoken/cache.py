"""
ztoken Role Token Cache.

Keeps the role tokens a service has already obtained so that repeated
requests for the same (principal, provider domain, role) do not go back to
the authority while the token is still comfortably valid.

Two flavours share the same policy:
- RoleTokenCache for threaded callers
- AsyncRoleTokenCache for asyncio callers

Both make sure at most one exchange per key is in flight; concurrent callers
for that key wait for its result instead of issuing their own request.
"""

import asyncio
import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, NamedTuple, Optional

from ztoken.config import REFRESH_RATIO, SERVE_STALE
from ztoken.errors import ExchangeError
from ztoken.role_token import RoleToken

logger = logging.getLogger(__name__)


class CacheKey(NamedTuple):
    """Identifies one role grant: who is asking, and for which provider role."""

    domain: str
    service: str
    provider_domain: str
    role: str

    def __str__(self) -> str:
        return f"{self.domain}.{self.service}:{self.provider_domain}:{self.role}"


@dataclass
class CacheEntry:
    """A cached role token with metadata."""

    key: CacheKey
    token: RoleToken
    fetched_at: float
    hits: int = 0


@dataclass(frozen=True)
class RefreshPolicy:
    """
    Decides when a cached token is due for a refresh.

    Attributes:
        ratio: Refresh once the remaining lifetime drops below this share of
               the token's total lifetime.
        min_seconds: Fixed threshold in seconds; overrides ratio when set.
    """

    ratio: float = REFRESH_RATIO
    min_seconds: Optional[float] = None

    def __post_init__(self):
        if not 0 <= self.ratio < 1:
            raise ValueError(f"Refresh ratio must be in [0, 1), got {self.ratio}")
        if self.min_seconds is not None and self.min_seconds < 0:
            raise ValueError("min_seconds must not be negative")

    def threshold(self, token: RoleToken) -> float:
        if self.min_seconds is not None:
            return self.min_seconds
        return token.lifetime * self.ratio

    def needs_refresh(self, token: RoleToken, now: float) -> bool:
        return token.is_expired(now) or token.remaining_lifetime(now) < self.threshold(token)


class _CacheState:
    """Entry bookkeeping and failure policy shared by both cache flavours."""

    def __init__(
        self,
        policy: Optional[RefreshPolicy] = None,
        serve_stale: bool = SERVE_STALE,
        clock: Callable[[], float] = time.time,
    ):
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._policy = policy or RefreshPolicy()
        self._serve_stale = serve_stale
        self._clock = clock
        self._stats = {
            "hits": 0,
            "misses": 0,
            "refreshes": 0,
            "fetches": 0,
            "failures": 0,
            "stale_served": 0,
            "coalesced": 0,
        }

    @property
    def policy(self) -> RefreshPolicy:
        return self._policy

    def _lookup(self, key: CacheKey, now: float) -> Optional[RoleToken]:
        """Return the cached token if it is not due for refresh."""
        entry = self._entries.get(key)
        if entry is None:
            self._stats["misses"] += 1
            logger.debug(f"Role token cache miss: {key}")
            return None

        if self._policy.needs_refresh(entry.token, now):
            self._stats["refreshes"] += 1
            logger.debug(
                f"Role token for {key} due for refresh "
                f"({entry.token.remaining_lifetime(now):.0f}s left)"
            )
            return None

        entry.hits += 1
        self._stats["hits"] += 1
        return entry.token

    def _store(self, key: CacheKey, token: RoleToken) -> None:
        self._entries[key] = CacheEntry(key=key, token=token, fetched_at=self._clock())
        logger.info(f"Cached role token for {key} (expires {token.expiry_time})")

    def _on_failure(self, key: CacheKey, error: Exception) -> Optional[RoleToken]:
        """
        Apply the failure policy; return a token to serve instead, if any.

        Denials are never masked by a cached grant, and failures themselves
        are never cached.
        """
        self._stats["failures"] += 1
        now = self._clock()
        entry = self._entries.get(key)

        if isinstance(error, ExchangeError) and error.forbidden:
            if entry is not None:
                del self._entries[key]
                logger.warning(f"Role token for {key} denied by authority, evicted cached token")
            return None

        if entry is not None and entry.token.is_expired(now):
            del self._entries[key]
            return None

        if entry is not None and self._serve_stale and getattr(error, "retryable", False):
            self._stats["stale_served"] += 1
            logger.warning(
                f"Role token refresh for {key} failed ({error}); "
                f"serving cached token valid for {entry.token.remaining_lifetime(now):.0f}s"
            )
            return entry.token

        return None

    def _get_valid(self, key: CacheKey) -> Optional[RoleToken]:
        entry = self._entries.get(key)
        if entry is None or entry.token.is_expired(self._clock()):
            return None
        return entry.token

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    @property
    def stats(self) -> Dict[str, int]:
        """Return cache statistics."""
        return {**self._stats, "size": len(self._entries)}

    @property
    def hit_ratio(self) -> float:
        """Return cache hit ratio."""
        total = self._stats["hits"] + self._stats["misses"] + self._stats["refreshes"]
        return self._stats["hits"] / total if total > 0 else 0.0


class RoleTokenCache(_CacheState):
    """
    Thread-safe in-process role token cache.

    Example:
        >>> cache = RoleTokenCache(policy=RefreshPolicy(ratio=0.2))
        >>> key = CacheKey("media", "storage", "sports", "readers")
        >>> token = cache.get_or_fetch(key, lambda: client.fetch_role_token(ntoken, "sports", "readers"))
    """

    def __init__(
        self,
        policy: Optional[RefreshPolicy] = None,
        serve_stale: bool = SERVE_STALE,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize the cache.

        Args:
            policy: When cached tokens are refreshed (default: 20% of lifetime left).
            serve_stale: Serve a still-valid token when a refresh fails with a
                         retryable error.
            clock: Time source, in unix seconds.
        """
        super().__init__(policy=policy, serve_stale=serve_stale, clock=clock)
        self._lock = threading.Lock()
        self._inflight: Dict[CacheKey, Future] = {}

    def get_or_fetch(
        self,
        key: CacheKey,
        fetch_fn: Callable[[], RoleToken],
        timeout: Optional[float] = None,
    ) -> RoleToken:
        """
        Return a cached token for key, fetching a new one when needed.

        Args:
            key: The cache key.
            fetch_fn: Performs the exchange; called at most once per key at a time.
            timeout: Seconds to wait for an exchange started by another caller.
                     The exchange itself keeps running and still fills the cache.

        Returns:
            The role token.

        Raises:
            ExchangeError, ValidationError: When no usable token can be provided.
            concurrent.futures.TimeoutError: When waiting timed out.
        """
        with self._lock:
            token = self._lookup(key, self._clock())
            if token is not None:
                return token

            future = self._inflight.get(key)
            leader = future is None
            if leader:
                future = Future()
                self._inflight[key] = future
            else:
                self._stats["coalesced"] += 1

        if not leader:
            logger.debug(f"Waiting for in-flight role token exchange: {key}")
            return future.result(timeout=timeout)

        # The key leaves _inflight before waiters wake, so later callers start a new exchange
        try:
            token = self._fetch(key, fetch_fn)
        except BaseException as e:
            self._release(key)
            future.set_exception(e)
            raise
        self._release(key)
        future.set_result(token)
        return token

    def _release(self, key: CacheKey) -> None:
        with self._lock:
            self._inflight.pop(key, None)

    def _fetch(self, key: CacheKey, fetch_fn: Callable[[], RoleToken]) -> RoleToken:
        with self._lock:
            self._stats["fetches"] += 1

        try:
            token = fetch_fn()
        except Exception as e:
            with self._lock:
                fallback = self._on_failure(key, e)
            if fallback is None:
                raise
            return fallback

        with self._lock:
            self._store(key, token)
        return token

    def get(self, key: CacheKey) -> Optional[RoleToken]:
        """Return the cached token if it has not expired, without fetching."""
        with self._lock:
            return self._get_valid(key)

    def invalidate(self, key: CacheKey) -> bool:
        """Drop a cached token. Returns True if one was cached."""
        with self._lock:
            return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        """Drop all cached tokens."""
        with self._lock:
            self._entries.clear()


class AsyncRoleTokenCache(_CacheState):
    """
    Role token cache for asyncio callers.

    The exchange runs in its own task, so a caller that gives up waiting
    (timeout or cancellation) does not abort it.

    Example:
        >>> cache = AsyncRoleTokenCache()
        >>> token = await cache.get_or_fetch(key, lambda: client.fetch_role_token(ntoken, "sports", "readers"))
    """

    def __init__(
        self,
        policy: Optional[RefreshPolicy] = None,
        serve_stale: bool = SERVE_STALE,
        clock: Callable[[], float] = time.time,
    ):
        super().__init__(policy=policy, serve_stale=serve_stale, clock=clock)
        self._lock = asyncio.Lock()
        self._inflight: Dict[CacheKey, asyncio.Task] = {}

    async def get_or_fetch(
        self,
        key: CacheKey,
        fetch_fn: Callable[[], Awaitable[RoleToken]],
        timeout: Optional[float] = None,
    ) -> RoleToken:
        """
        Return a cached token for key, fetching a new one when needed.

        Args:
            key: The cache key.
            fetch_fn: Returns an awaitable performing the exchange.
            timeout: Seconds this caller is willing to wait.

        Raises:
            ExchangeError, ValidationError: When no usable token can be provided.
            asyncio.TimeoutError: When waiting timed out.
        """
        async with self._lock:
            token = self._lookup(key, self._clock())
            if token is not None:
                return token

            task = self._inflight.get(key)
            if task is None:
                task = asyncio.ensure_future(self._fetch(key, fetch_fn))
                self._inflight[key] = task
                task.add_done_callback(lambda t, k=key: self._exchange_done(k, t))
            else:
                self._stats["coalesced"] += 1
                logger.debug(f"Waiting for in-flight role token exchange: {key}")

        if timeout is None:
            return await asyncio.shield(task)
        return await asyncio.wait_for(asyncio.shield(task), timeout)

    async def _fetch(self, key: CacheKey, fetch_fn: Callable[[], Awaitable[RoleToken]]) -> RoleToken:
        self._stats["fetches"] += 1
        try:
            token = await fetch_fn()
        except Exception as e:
            fallback = self._on_failure(key, e)
            if fallback is None:
                raise
            return fallback
        else:
            self._store(key, token)
            return token
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]

    def _exchange_done(self, key: CacheKey, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Retrieve the exception so abandoned exchanges do not log as unhandled
        if not task.cancelled():
            task.exception()

    async def get(self, key: CacheKey) -> Optional[RoleToken]:
        """Return the cached token if it has not expired, without fetching."""
        async with self._lock:
            return self._get_valid(key)

    async def invalidate(self, key: CacheKey) -> bool:
        """Drop a cached token. Returns True if one was cached."""
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def clear(self) -> None:
        """Drop all cached tokens."""
        async with self._lock:
            self._entries.clear()
