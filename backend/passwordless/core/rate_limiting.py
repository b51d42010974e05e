"""Rate limiting: per-client endpoint limits and per-identity link quotas.

Two layers:

1. slowapi `limiter`: coarse per-client limits on the HTTP endpoints,
   keyed on the session subject when signed in, otherwise the client IP.
2. `MagicLinkRateLimiter`: the per-identity quota consulted before a link
   is minted. Keyed on the case-folded email so casing tricks cannot reset
   it. Counts live in an injectable `RequestCounterStore`.

Soft limit: the issuer checks the quota, then runs its eligibility gates,
then increments. Concurrent requests for the same email can each pass the
check before any of them increments, so the count may briefly exceed the
maximum by the number of in-flight requests.

Usage in routers:
    from passwordless.core.rate_limiting import limiter

    @router.post("/magic-link")
    @limiter.limit(settings.rate_limit_magic_link_request)
    async def request_magic_link(request: Request, ...):
        ...
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from fastapi import Request, Response
from limits.storage import Storage, storage_from_string
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from passwordless.core.auth import decode_session_token
from passwordless.core.config import settings
from passwordless.core.responses import ErrorDetail, ErrorResponse
from passwordless.models.user import normalize_email

logger = logging.getLogger(__name__)


# ===================================================================
# Per-client endpoint limits (slowapi)
# ===================================================================


def _rate_limit_key_func(request: Request) -> str:
    """Get rate limit key from request.

    Key format:
    - Valid session cookie: "user:{sub}"
    - No/invalid cookie: "unauth:{ip}"

    Args:
        request: The incoming request.

    Returns:
        Rate limit key string.
    """
    user_id = decode_session_token(request.cookies.get(settings.auth_cookie_name))
    if user_id is not None:
        return f"user:{user_id}"
    return f"unauth:{get_remote_address(request)}"


# Per-client endpoint limits, in process memory
limiter = Limiter(
    key_func=_rate_limit_key_func,
    enabled=settings.rate_limit_enabled,
)


def rate_limit_exceeded_handler(
    _request: Request,
    exc: RateLimitExceeded,
) -> Response:
    """Render a slowapi rejection as a 429 error envelope.

    Retry-After is the length of the violated window in seconds, or 60
    when the limit object is unavailable.
    """
    try:
        retry_after = str(exc.limit.limit.get_expiry())
    except AttributeError:
        retry_after = "60"

    body = ErrorResponse(
        error=ErrorDetail(
            code="RATE_LIMITED", message=f"Rate limit exceeded: {exc.detail}"
        )
    )
    return JSONResponse(
        status_code=429,
        content=body.model_dump(),
        headers={"Retry-After": retry_after},
    )


# ===================================================================
# Counting stores
# ===================================================================


class RequestCounterStore(ABC):
    """Keyed request counters that expire on their own.

    Expiry is evaluated lazily on access; there is no background sweeper.
    Implementations must make each single call atomic.
    """

    @abstractmethod
    def get(self, key: str) -> int:
        """Return the live count for key, or 0 if absent or expired."""
        ...

    @abstractmethod
    def increment(self, key: str, expiry: timedelta) -> int:
        """Add one to the count for key and return the new count.

        Args:
            key: Counter key.
            expiry: Window length the counter stays alive for.
        """
        ...

    @abstractmethod
    def expire(self, key: str) -> None:
        """Drop the counter for key immediately."""
        ...

    @abstractmethod
    def clear(self) -> None:
        """Drop every counter (for testing)."""
        ...


@dataclass
class _Counter:
    count: int
    expires_at: datetime


class MemoryCounterStore(RequestCounterStore):
    """In-process counter store for single-instance deployments.

    Every increment refreshes the expiry to now + window, so a counter
    only disappears after a full window with no further increments.

    Args:
        clock: Returns the current UTC time. Injectable for tests.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._entries: dict[str, _Counter] = {}
        self._lock = threading.Lock()
        self._clock = clock or (lambda: datetime.now(UTC))

    def _live_entry(self, key: str, now: datetime) -> _Counter | None:
        entry = self._entries.get(key)
        if entry is not None and entry.expires_at <= now:
            del self._entries[key]
            return None
        return entry

    def get(self, key: str) -> int:
        with self._lock:
            entry = self._live_entry(key, self._clock())
            return entry.count if entry is not None else 0

    def increment(self, key: str, expiry: timedelta) -> int:
        with self._lock:
            now = self._clock()
            entry = self._live_entry(key, now)
            count = (entry.count if entry is not None else 0) + 1
            self._entries[key] = _Counter(count=count, expires_at=now + expiry)
            return count

    def expire(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


class LimitsCounterStore(RequestCounterStore):
    """Counter store backed by a `limits` storage (memory, Redis, Memcached).

    Shares counters across instances when pointed at a networked backend.
    The backend sets the expiry on the first increment of a window and does
    not refresh it, so this store behaves as a fixed window.

    Args:
        storage: A `limits` storage instance.
    """

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    @classmethod
    def from_url(cls, url: str) -> "LimitsCounterStore":
        """Build from a storage URI such as "redis://localhost:6379/0"."""
        return cls(storage_from_string(url))

    def get(self, key: str) -> int:
        return int(self._storage.get(key))

    def increment(self, key: str, expiry: timedelta) -> int:
        return int(self._storage.incr(key, int(expiry.total_seconds())))

    def expire(self, key: str) -> None:
        self._storage.clear(key)

    def clear(self) -> None:
        self._storage.reset()


# ===================================================================
# Per-identity magic link quota
# ===================================================================


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a quota check.

    Attributes:
        allowed: False when the identity is throttled.
        count: Requests already counted in the current window.
        retry_after_minutes: Window length, used as the retry hint.
    """

    allowed: bool
    count: int
    retry_after_minutes: int

    @property
    def message(self) -> str | None:
        """Human-readable retry hint for throttled decisions."""
        if self.allowed:
            return None
        return (
            f"Too many requests. Please try again in "
            f"{self.retry_after_minutes} minutes."
        )


class MagicLinkRateLimiter:
    """Per-email quota on magic link requests.

    Args:
        store: Shared counter store.
        max_requests: Requests allowed per window.
        window: Window length.
    """

    KEY_PREFIX = "magiclink:request:"

    def __init__(
        self,
        store: RequestCounterStore,
        *,
        max_requests: int,
        window: timedelta,
    ) -> None:
        self._store = store
        self._max_requests = max_requests
        self._window = window

    @property
    def window_minutes(self) -> int:
        return int(self._window.total_seconds() // 60)

    @staticmethod
    def normalize_identity(identity: str) -> str:
        """Match the user lookup key: "A@X.com " and "a@x.com" share a counter."""
        return normalize_email(identity)

    def key_for(self, identity: str) -> str:
        return f"{self.KEY_PREFIX}{self.normalize_identity(identity)}"

    def _decision(self, count: int) -> RateLimitDecision:
        return RateLimitDecision(
            allowed=count < self._max_requests,
            count=count,
            retry_after_minutes=self.window_minutes,
        )

    def check(self, identity: str) -> RateLimitDecision:
        """Check the quota without consuming it."""
        return self._decision(self._store.get(self.key_for(identity)))

    def increment(self, identity: str) -> int:
        """Consume one request from the quota.

        Returns:
            The new count for the current window.
        """
        return self._store.increment(self.key_for(identity), self._window)

    def check_and_increment(self, identity: str) -> RateLimitDecision:
        """Check the quota and consume one request if allowed.

        Throttled decisions leave the counter untouched.
        """
        decision = self.check(identity)
        if not decision.allowed:
            return decision
        count = self.increment(identity)
        return RateLimitDecision(
            allowed=True,
            count=count,
            retry_after_minutes=self.window_minutes,
        )


# Singleton store for the application
_counter_store: RequestCounterStore | None = None


def get_counter_store() -> RequestCounterStore:
    """Get or create the counter store singleton.

    Returns:
        MemoryCounterStore when MAGIC_LINK_RATE_LIMIT_STORAGE_URL is empty,
        otherwise a LimitsCounterStore for that URI.
    """
    global _counter_store
    if _counter_store is None:
        url = settings.magic_link_rate_limit_storage_url
        if url:
            logger.info("Using shared magic link counter storage")
            _counter_store = LimitsCounterStore.from_url(url)
        else:
            _counter_store = MemoryCounterStore()
    return _counter_store


def reset_counter_store() -> None:
    """Reset the counter store singleton (for testing)."""
    global _counter_store
    if _counter_store is not None:
        _counter_store.clear()
    _counter_store = None


def get_magic_link_rate_limiter() -> MagicLinkRateLimiter:
    """Build the quota limiter from settings over the shared store."""
    return MagicLinkRateLimiter(
        get_counter_store(),
        max_requests=settings.magic_link_max_requests_per_window,
        window=timedelta(minutes=settings.magic_link_rate_limit_window_minutes),
    )
