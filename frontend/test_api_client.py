# frontend/test_api_client.py
# Unit tests for license verification over HTTP (requests is stubbed out)

import sys
from pathlib import Path

import pytest
import requests

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from frontend import api_client
from frontend.api_client import fetch_license_status, make_license_fetcher
from frontend.license import LicenseFetchError, LicenseUnauthenticated


BASE = "http://backend.test"


class FakeResponse:
    def __init__(self, status_code, body=None):
        self.status_code = status_code
        self._body = body

    def json(self):
        if self._body is None:
            raise ValueError("no body")
        return self._body


@pytest.fixture
def post(monkeypatch):
    """Replace requests.post; set `post.response` or `post.error` per test."""
    class _Post:
        response = FakeResponse(200, {"valid": True, "expires_at": None, "is_trial": False,
                                      "days_remaining": None, "can_edit": True})
        error = None
        calls = []

        def __call__(self, url, headers=None, timeout=None, **kwargs):
            self.calls.append({"url": url, "headers": headers, "timeout": timeout})
            if self.error is not None:
                raise self.error
            return self.response

    fake = _Post()
    fake.calls = []
    monkeypatch.setattr(api_client.requests, "post", fake)
    return fake


def test_fetch_sends_bearer_and_timeout(post):
    snap = fetch_license_status("tok123", base_url=BASE, timeout=5)

    assert snap.is_valid is True
    assert post.calls[0]["url"] == f"{BASE}/license-verify"
    assert post.calls[0]["headers"]["Authorization"] == "Bearer tok123"
    assert post.calls[0]["timeout"] == 5


def test_fetch_without_token_is_unauthenticated(post):
    with pytest.raises(LicenseUnauthenticated):
        fetch_license_status(None, base_url=BASE)

    assert post.calls == []


def test_fetch_401_is_unauthenticated(post):
    post.response = FakeResponse(401, {"detail": "Invalid token"})

    with pytest.raises(LicenseUnauthenticated):
        fetch_license_status("tok", base_url=BASE)


@pytest.mark.parametrize("status", [404, 500, 503])
def test_fetch_error_status_raises(post, status):
    post.response = FakeResponse(status, {"detail": "boom"})

    with pytest.raises(LicenseFetchError):
        fetch_license_status("tok", base_url=BASE)


@pytest.mark.parametrize("error", [
    requests.exceptions.Timeout(),
    requests.exceptions.ConnectionError(),
])
def test_fetch_network_errors_raise(post, error):
    post.error = error

    with pytest.raises(LicenseFetchError) as exc:
        fetch_license_status("tok", base_url=BASE)

    assert not isinstance(exc.value, LicenseUnauthenticated)


def test_fetch_malformed_body_raises(post):
    post.response = FakeResponse(200, {"unexpected": True})

    with pytest.raises(LicenseFetchError):
        fetch_license_status("tok", base_url=BASE)


def test_fetch_non_json_body_raises(post):
    post.response = FakeResponse(200, None)

    with pytest.raises(LicenseFetchError):
        fetch_license_status("tok", base_url=BASE)


def test_make_license_fetcher_binds_token(post):
    fetch = make_license_fetcher("bound", base_url=BASE)

    fetch()

    assert post.calls[0]["headers"]["Authorization"] == "Bearer bound"
