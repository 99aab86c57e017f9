"""
frontend/license.py
Client-side license cache for the Rentdesk dashboard.

Every protected page needs the account's license snapshot, and Streamlit
reruns the whole script on each interaction. Calling /license-verify on
every rerun would hammer the backend, so the snapshot is cached per session:

- LicenseCache: holds {snapshot, fetched_at} under CACHE_KEY and re-fetches
  once the entry is TTL seconds old (or when skip_cache=True)
- LicenseRefresher: daemon thread that force-refreshes every TTL seconds,
  independent of page activity
- init_license_context / get_license / teardown_license_context: the
  per-session provider used by app.py (created at login, torn down at logout)

Failure policy is fail-closed: if the backend cannot be reached or answers
with an error, the caller gets a snapshot with is_valid=False and
can_edit=False. That snapshot is never cached, so the next read retries.

This module has no Streamlit import; the cache works on any dict-like store
and takes an injectable clock so tests can drive it deterministically.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, MutableMapping, Optional

try:
    from frontend.config import IS_DEV, LICENSE_CACHE_TTL_SECONDS
except ModuleNotFoundError:
    from config import IS_DEV, LICENSE_CACHE_TTL_SECONDS


CACHE_KEY = "license_check"

# Session-state keys owned by the provider
CONTEXT_CACHE_KEY = "license_cache"
CONTEXT_REFRESHER_KEY = "license_refresher"


class LicenseFetchError(Exception):
    """The verification call failed (timeout, connection error, 5xx, bad body)."""


class LicenseUnauthenticated(LicenseFetchError):
    """The backend rejected the session token (401)."""


@dataclass(frozen=True)
class LicenseSnapshot:
    is_valid: bool
    is_trial: bool
    days_remaining: Optional[int]
    can_edit: bool
    expires_at: Optional[str] = None
    authenticated: bool = True

    @classmethod
    def from_payload(cls, data: Any) -> "LicenseSnapshot":
        """
        Build a snapshot from a /license-verify response body.

        Raises:
            ValueError: if the body does not have the expected shape
        """
        if not isinstance(data, dict):
            raise ValueError("license payload must be an object")

        valid = data.get("valid")
        if not isinstance(valid, bool):
            raise ValueError("license payload missing 'valid'")

        days = data.get("days_remaining")
        if days is not None and (isinstance(days, bool) or not isinstance(days, int)):
            raise ValueError("'days_remaining' must be an integer or null")

        expires_at = data.get("expires_at")
        if expires_at is not None and not isinstance(expires_at, str):
            raise ValueError("'expires_at' must be a string or null")

        return cls(
            is_valid=valid,
            is_trial=bool(data.get("is_trial", False)) and valid,
            days_remaining=days,
            can_edit=bool(data.get("can_edit", valid)) and valid,
            expires_at=expires_at,
        )

    @classmethod
    def fail_closed(cls) -> "LicenseSnapshot":
        return cls(is_valid=False, is_trial=False, days_remaining=None, can_edit=False)

    @classmethod
    def unauthenticated(cls) -> "LicenseSnapshot":
        return cls(is_valid=False, is_trial=False, days_remaining=None, can_edit=False,
                   authenticated=False)


class LicenseCache:
    """
    TTL cache in front of a license fetch function.

    States (see state()):
        "loading" - nothing cached yet, next get() calls the backend
        "cached"  - entry younger than ttl, get() returns it without a call
        "stale"   - entry at least ttl old, next get() calls the backend

    Args:
        store: dict-like holding the entry under `key`
        fetch: zero-arg callable returning a LicenseSnapshot; raises
               LicenseFetchError / LicenseUnauthenticated on failure
        clock: returns seconds (time.time in production)
        ttl: entry lifetime in seconds
    """

    def __init__(
        self,
        store: MutableMapping[str, Any],
        fetch: Callable[[], LicenseSnapshot],
        clock: Callable[[], float] = time.time,
        ttl: float = LICENSE_CACHE_TTL_SECONDS,
        key: str = CACHE_KEY,
    ):
        self.store = store
        self.fetch = fetch
        self.clock = clock
        self.ttl = ttl
        self.key = key
        self._lock = threading.Lock()

    def _is_fresh(self, entry: Optional[Dict[str, Any]]) -> bool:
        if not entry:
            return False
        return (self.clock() - entry["fetched_at"]) < self.ttl

    def state(self) -> str:
        with self._lock:
            entry = self.store.get(self.key)
            if not entry:
                return "loading"
            return "cached" if self._is_fresh(entry) else "stale"

    def peek(self) -> Optional[LicenseSnapshot]:
        """Cached snapshot regardless of age, without calling the backend."""
        with self._lock:
            entry = self.store.get(self.key)
            return entry["snapshot"] if entry else None

    def invalidate(self) -> None:
        with self._lock:
            self.store.pop(self.key, None)

    def get(self, skip_cache: bool = False) -> LicenseSnapshot:
        """
        Current license snapshot.

        Returns the cached entry while it is fresh unless skip_cache is set;
        otherwise calls fetch() and caches the result.
        """
        if not skip_cache:
            with self._lock:
                entry = self.store.get(self.key)
                if self._is_fresh(entry):
                    return entry["snapshot"]

        try:
            snapshot = self.fetch()
        except LicenseUnauthenticated:
            if IS_DEV:
                print("[LICENSE] Verification rejected the session (401), clearing cache")
            self.invalidate()
            return LicenseSnapshot.unauthenticated()
        except LicenseFetchError as e:
            # Dropped so the next read retries instead of serving a stale grant
            print(f"[LICENSE] Verification failed, failing closed: {e}")
            self.invalidate()
            return LicenseSnapshot.fail_closed()

        with self._lock:
            self.store[self.key] = {"snapshot": snapshot, "fetched_at": self.clock()}

        if IS_DEV:
            print(f"[LICENSE] Snapshot refreshed: valid={snapshot.is_valid}, "
                  f"trial={snapshot.is_trial}, days={snapshot.days_remaining}")
        return snapshot


class LicenseRefresher:
    """
    Background timer that force-refreshes a LicenseCache every `interval` seconds.

    The thread is a daemon and must be stopped when the owning session ends
    (teardown_license_context does this on logout). It also exits by itself
    once the backend rejects the session token, which covers closed tabs and
    expired tokens where no logout ever runs.

    Args:
        cache: LicenseCache to refresh
        interval: seconds between refreshes (defaults to the cache TTL)
    """

    def __init__(
        self,
        cache: LicenseCache,
        interval: Optional[float] = None,
    ):
        self.cache = cache
        self.interval = cache.ttl if interval is None else interval
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.refresh_count = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run(self) -> None:
        # wait() returns True once stop() is called
        while not self._stop.wait(self.interval):
            snapshot = self.cache.get(skip_cache=True)
            self.refresh_count += 1
            if not snapshot.authenticated:
                # Token expired or revoked
                print("[LICENSE] Session rejected, stopping background refresh")
                self._stop.set()
                return

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="license-refresher", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        self._stop.set()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        self._thread = None


# ---------------------------------------------------------
# Per-session provider
# ---------------------------------------------------------
def init_license_context(
    ss: MutableMapping[str, Any],
    fetch: Callable[[], LicenseSnapshot],
    ttl: float = LICENSE_CACHE_TTL_SECONDS,
    clock: Callable[[], float] = time.time,
    start_refresher: bool = True,
) -> LicenseCache:
    """
    Create the session's cache and refresher once. Idempotent across reruns.

    The cache entry lives in its own dict (stored in ss) so the refresher
    thread never writes to Streamlit's session state directly.
    """
    cache = ss.get(CONTEXT_CACHE_KEY)
    if cache is not None:
        return cache

    cache = LicenseCache({}, fetch, clock=clock, ttl=ttl)
    ss[CONTEXT_CACHE_KEY] = cache

    if start_refresher:
        refresher = LicenseRefresher(cache, interval=ttl)
        refresher.start()
        ss[CONTEXT_REFRESHER_KEY] = refresher

    return cache


def get_license(ss: MutableMapping[str, Any], skip_cache: bool = False) -> Optional[LicenseSnapshot]:
    """Current snapshot for the session, or None when no context exists (logged out)."""
    cache = ss.get(CONTEXT_CACHE_KEY)
    if cache is None:
        return None
    return cache.get(skip_cache=skip_cache)


def teardown_license_context(ss: MutableMapping[str, Any]) -> None:
    """Stop the refresher and drop the cached entry. Safe to call repeatedly."""
    refresher = ss.pop(CONTEXT_REFRESHER_KEY, None)
    if refresher is not None:
        refresher.stop()

    cache = ss.pop(CONTEXT_CACHE_KEY, None)
    if cache is not None:
        cache.invalidate()
