# frontend/test_license_cache.py
# Unit tests for the client-side license cache, refresher and provider

import sys
import time
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from frontend.license import (
    CACHE_KEY,
    CONTEXT_CACHE_KEY,
    CONTEXT_REFRESHER_KEY,
    LicenseCache,
    LicenseFetchError,
    LicenseRefresher,
    LicenseSnapshot,
    LicenseUnauthenticated,
    get_license,
    init_license_context,
    teardown_license_context,
)


TTL = 600

VALID = LicenseSnapshot(is_valid=True, is_trial=False, days_remaining=40, can_edit=True,
                        expires_at="2026-04-10T12:00:00+00:00")
TRIAL = LicenseSnapshot(is_valid=True, is_trial=True, days_remaining=5, can_edit=True,
                        expires_at="2026-03-06T12:00:00+00:00")


class FakeClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class FakeFetch:
    """Returns queued results in order; exceptions in the queue are raised."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def __call__(self):
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def make_cache(*results, store=None):
    clock = FakeClock()
    fetch = FakeFetch(*results)
    cache = LicenseCache({} if store is None else store, fetch, clock=clock, ttl=TTL)
    return cache, fetch, clock


# ============================================================================
# Test: Freshness
# ============================================================================

def test_first_read_fetches_and_caches():
    store = {}
    cache, fetch, clock = make_cache(VALID, store=store)

    assert cache.state() == "loading"
    assert cache.get() == VALID
    assert fetch.calls == 1
    assert cache.state() == "cached"
    assert store[CACHE_KEY]["snapshot"] == VALID
    assert store[CACHE_KEY]["fetched_at"] == clock.now


def test_read_just_before_ttl_uses_cache():
    cache, fetch, clock = make_cache(VALID)
    cache.get()

    clock.advance(TTL - 1)
    cache.get()

    assert fetch.calls == 1


def test_read_just_after_ttl_fetches():
    cache, fetch, clock = make_cache(VALID, TRIAL)
    cache.get()

    clock.advance(TTL + 1)
    assert cache.state() == "stale"
    snap = cache.get()

    assert fetch.calls == 2
    assert snap == TRIAL


def test_entry_is_stale_exactly_at_ttl():
    cache, fetch, clock = make_cache(VALID)
    cache.get()

    clock.advance(TTL)

    assert cache.state() == "stale"


def test_skip_cache_always_fetches():
    cache, fetch, clock = make_cache(VALID, TRIAL)
    cache.get()

    snap = cache.get(skip_cache=True)

    assert fetch.calls == 2
    assert snap == TRIAL
    assert cache.peek() == TRIAL


# ============================================================================
# Test: Fail-closed
# ============================================================================

@pytest.mark.parametrize("error", [
    LicenseFetchError("timed out after 5s"),
    LicenseFetchError("HTTP 500"),
    LicenseFetchError("ConnectionError"),
])
def test_fetch_failure_fails_closed(error):
    cache, fetch, clock = make_cache(error)

    snap = cache.get()

    assert snap.is_valid is False
    assert snap.can_edit is False
    assert snap.is_trial is False
    assert snap.days_remaining is None
    assert snap.authenticated is True


def test_fail_closed_snapshot_is_not_cached():
    cache, fetch, clock = make_cache(LicenseFetchError("HTTP 503"), VALID)

    cache.get()
    assert cache.state() == "loading"

    # No clock movement needed: the failure left nothing to serve
    assert cache.get() == VALID
    assert fetch.calls == 2


def test_failed_forced_refresh_drops_previous_entry():
    cache, fetch, clock = make_cache(VALID, LicenseFetchError("HTTP 500"), VALID)
    cache.get()

    snap = cache.get(skip_cache=True)

    assert snap == LicenseSnapshot.fail_closed()
    assert cache.state() == "loading"
    assert cache.get() == VALID
    assert fetch.calls == 3


def test_unauthenticated_clears_cache():
    cache, fetch, clock = make_cache(VALID, LicenseUnauthenticated("session rejected"))
    cache.get()

    snap = cache.get(skip_cache=True)

    assert snap.authenticated is False
    assert snap.is_valid is False
    assert cache.peek() is None


# ============================================================================
# Test: Snapshot parsing
# ============================================================================

def test_from_payload():
    snap = LicenseSnapshot.from_payload({
        "valid": True,
        "expires_at": "2026-03-06T12:00:00+00:00",
        "is_trial": True,
        "days_remaining": 5,
        "can_edit": True,
    })

    assert snap == TRIAL


def test_from_payload_perpetual():
    snap = LicenseSnapshot.from_payload({
        "valid": True, "expires_at": None, "is_trial": False, "days_remaining": None, "can_edit": True,
    })

    assert snap.is_valid is True
    assert snap.days_remaining is None


def test_from_payload_invalid_never_grants_edit():
    snap = LicenseSnapshot.from_payload({"valid": False, "can_edit": True, "is_trial": True})

    assert snap.can_edit is False
    assert snap.is_trial is False


@pytest.mark.parametrize("payload", [
    None,
    [],
    {},
    {"valid": "yes"},
    {"valid": True, "days_remaining": "5"},
    {"valid": True, "expires_at": 123},
])
def test_from_payload_rejects_malformed(payload):
    with pytest.raises(ValueError):
        LicenseSnapshot.from_payload(payload)


# ============================================================================
# Test: Refresher
# ============================================================================

def _wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return False


def test_refresher_fetches_without_reads():
    fetch = FakeFetch(VALID)
    cache = LicenseCache({}, fetch, ttl=TTL)
    refresher = LicenseRefresher(cache, interval=0.01)

    refresher.start()
    try:
        assert _wait_for(lambda: refresher.refresh_count >= 2)
    finally:
        refresher.stop()

    assert fetch.calls >= 2
    assert cache.peek() == VALID


def test_refresher_stop_ends_thread():
    fetch = FakeFetch(VALID)
    cache = LicenseCache({}, fetch, ttl=TTL)
    refresher = LicenseRefresher(cache, interval=0.01)

    refresher.start()
    assert _wait_for(lambda: refresher.refresh_count >= 1)
    refresher.stop()

    assert refresher.running is False
    calls = fetch.calls
    time.sleep(0.05)
    assert fetch.calls == calls


def test_refresher_exits_after_session_rejected():
    fetch = FakeFetch(LicenseUnauthenticated("session rejected"))
    cache = LicenseCache({}, fetch, ttl=TTL)
    refresher = LicenseRefresher(cache, interval=0.01)

    refresher.start()
    try:
        assert _wait_for(lambda: not refresher.running)
    finally:
        refresher.stop()

    assert fetch.calls == 1
    time.sleep(0.05)
    assert fetch.calls == 1


def test_refresher_keeps_polling_through_fetch_errors():
    fetch = FakeFetch(LicenseFetchError("timeout"), LicenseFetchError("timeout"), VALID)
    cache = LicenseCache({}, fetch, ttl=TTL)
    refresher = LicenseRefresher(cache, interval=0.01)

    refresher.start()
    try:
        assert _wait_for(lambda: cache.peek() == VALID)
        assert refresher.running is True
    finally:
        refresher.stop()


def test_refresher_interval_defaults_to_ttl():
    cache = LicenseCache({}, FakeFetch(VALID), ttl=TTL)

    assert LicenseRefresher(cache).interval == TTL


# ============================================================================
# Test: Provider
# ============================================================================

def test_init_license_context_is_idempotent():
    ss = {}
    first = init_license_context(ss, FakeFetch(VALID), start_refresher=False)
    second = init_license_context(ss, FakeFetch(TRIAL), start_refresher=False)

    assert first is second
    assert get_license(ss) == VALID


def test_get_license_without_context_is_none():
    assert get_license({}) is None


def test_teardown_stops_refresher_and_drops_cache():
    ss = {}
    fetch = FakeFetch(VALID)
    cache = init_license_context(ss, fetch, ttl=0.01)
    refresher = ss[CONTEXT_REFRESHER_KEY]
    assert _wait_for(lambda: refresher.refresh_count >= 1)

    teardown_license_context(ss)

    assert CONTEXT_CACHE_KEY not in ss
    assert CONTEXT_REFRESHER_KEY not in ss
    assert refresher.running is False
    assert cache.peek() is None
    assert get_license(ss) is None


def test_teardown_without_context_is_noop():
    ss = {}
    teardown_license_context(ss)
    teardown_license_context(ss)

    assert ss == {}
