"""
frontend/api_client.py
Centralized API client for all backend requests.

This module ensures:
1. All API calls automatically attach Authorization header when authenticated
2. Consistent error handling for 401 (session expiry)
3. Centralized API base URL configuration (dev/staging/prod)
4. License verification is a plain requests call with a bounded timeout,
   safe to run from the background refresher thread
"""

import time
from typing import Any, Callable, Dict, List, Optional, Literal
import requests
import streamlit as st

# Import config (robust fallback for different run contexts)
try:
    from frontend.config import get_api_base_url, IS_DEV, LICENSE_VERIFY_TIMEOUT
except ModuleNotFoundError:
    from config import get_api_base_url, IS_DEV, LICENSE_VERIFY_TIMEOUT

try:
    from frontend.auth import get_auth_header, clear_auth
    from frontend.license import LicenseFetchError, LicenseSnapshot, LicenseUnauthenticated
except ModuleNotFoundError:
    from auth import get_auth_header, clear_auth
    from license import LicenseFetchError, LicenseSnapshot, LicenseUnauthenticated


__all__ = [
    "api_request",
    "get_api_base_url",
    "fetch_license_status",
    "make_license_fetcher",
    "fetch_plans",
    "create_checkout",
    "check_payment_status",
]

PUBLIC_PATHS = ("/auth/login", "/auth/register", "/plans", "/health")


def is_public_endpoint(path: str) -> bool:
    """Public endpoints don't get an Authorization header."""
    return path in PUBLIC_PATHS


def api_request(
    method: Literal["GET", "POST"],
    path: str,
    json: Optional[Dict[str, Any]] = None,
    params: Optional[Dict[str, Any]] = None,
    timeout: int = 20,
) -> Optional[requests.Response]:
    """
    Make an API request with automatic auth header attachment and error handling.

    - Attaches Authorization: Bearer <token> for protected endpoints
    - 401 on a protected endpoint clears auth and sends the user to Login
    - Connection errors and timeouts show a message and return None

    Security:
    - Never logs or prints tokens/auth headers

    Returns:
        Response object, or None on connection error / expired session

    Raises:
        Does NOT raise exceptions - returns None on error and shows user-facing message
    """
    try:
        base_url = get_api_base_url()
    except RuntimeError as e:
        st.error(f"⚙️ Configuration error: {str(e)}")
        return None

    url = f"{base_url}{path}"
    headers = {"Accept": "application/json"}

    if not is_public_endpoint(path):
        auth_headers = get_auth_header()
        if not auth_headers:
            st.error("🔒 Authentication required. Please log in.")
            return None
        headers.update(auth_headers)

    try:
        if method == "GET":
            resp = requests.get(url, headers=headers, params=params, timeout=timeout)
        elif method == "POST":
            resp = requests.post(url, json=json, headers=headers, params=params, timeout=timeout)
        else:
            raise ValueError(f"Unsupported HTTP method: {method}")

        if resp.status_code == 401 and not is_public_endpoint(path):
            if IS_DEV:
                print(f"[API] ❌ 401 on {path}, session expired")
            _handle_session_expired()
            return None

        _update_backend_status("ok")
        return resp

    except requests.exceptions.Timeout:
        if IS_DEV:
            print(f"[API] Timeout on {method} {path}")
        st.error(f"⏱️ Request timed out after {timeout}s. Please try again.")
        _update_backend_status("timeout")
        return None

    except requests.exceptions.ConnectionError:
        if IS_DEV:
            print(f"[API] Connection error on {method} {path}")
        st.error(f"🔌 Cannot connect to backend at {base_url}. Please check your connection.")
        _update_backend_status("connection_error")
        return None

    except requests.exceptions.RequestException as e:
        error_msg = str(e)
        if "bearer" in error_msg.lower() or "authorization" in error_msg.lower():
            error_msg = "Authentication error (details hidden for security)"
        if IS_DEV:
            print(f"[API] Unexpected error on {method} {path}: {error_msg}")
        st.error(f"❌ Unexpected error: {error_msg[:100]}")
        _update_backend_status("error")
        return None


def error_detail(resp: requests.Response) -> str:
    """Best-effort `detail` from a FastAPI error body."""
    try:
        body = resp.json()
    except ValueError:
        return f"HTTP {resp.status_code}"
    if isinstance(body, dict) and body.get("detail"):
        return str(body["detail"])
    return f"HTTP {resp.status_code}"


# ---------------------------------------------------------
# License verification
# ---------------------------------------------------------
def fetch_license_status(
    token: Optional[str],
    base_url: Optional[str] = None,
    timeout: float = LICENSE_VERIFY_TIMEOUT,
) -> LicenseSnapshot:
    """
    Call POST /license-verify and parse the snapshot.

    No Streamlit calls: this runs on the refresher thread too.

    Raises:
        LicenseUnauthenticated: no token, or backend answered 401
        LicenseFetchError: timeout, connection error, non-200, or malformed body
    """
    if not token:
        raise LicenseUnauthenticated("no session token")

    if base_url is None:
        try:
            base_url = get_api_base_url()
        except RuntimeError as e:
            raise LicenseFetchError(str(e))

    try:
        resp = requests.post(
            f"{base_url}/license-verify",
            headers={"Accept": "application/json", "Authorization": f"Bearer {token}"},
            timeout=timeout,
        )
    except requests.exceptions.Timeout:
        raise LicenseFetchError(f"timed out after {timeout}s")
    except requests.exceptions.RequestException as e:
        raise LicenseFetchError(type(e).__name__)

    if resp.status_code == 401:
        raise LicenseUnauthenticated("session rejected")
    if resp.status_code != 200:
        raise LicenseFetchError(f"HTTP {resp.status_code}")

    try:
        return LicenseSnapshot.from_payload(resp.json())
    except ValueError as e:
        raise LicenseFetchError(f"malformed response: {e}")


def make_license_fetcher(token: Optional[str], base_url: Optional[str] = None) -> Callable[[], LicenseSnapshot]:
    """Bind the session token so the cache can call fetch() with no arguments."""
    if base_url is None:
        try:
            base_url = get_api_base_url()
        except RuntimeError:
            base_url = None

    def _fetch() -> LicenseSnapshot:
        return fetch_license_status(token, base_url=base_url)

    return _fetch


# ---------------------------------------------------------
# Plans & checkout
# ---------------------------------------------------------
def fetch_plans() -> List[Dict[str, Any]]:
    resp = api_request("GET", "/plans")
    if resp is None or resp.status_code != 200:
        return []
    return resp.json().get("plans", [])


def create_checkout(plan_id: str) -> Optional[Dict[str, Any]]:
    """Start a checkout session. Returns {sessionId, providerLink, plan} or None."""
    resp = api_request("POST", "/checkout-session", json={"planId": plan_id})
    if resp is None:
        return None
    if resp.status_code != 200:
        st.error(f"❌ Could not start checkout: {error_detail(resp)}")
        return None
    return resp.json()


def check_payment_status(session_id: str) -> Optional[Dict[str, Any]]:
    resp = api_request("GET", "/check-payment-status", params={"sessionId": session_id})
    if resp is None:
        return None
    if resp.status_code != 200:
        st.error(f"❌ Could not check payment: {error_detail(resp)}")
        return None
    return resp.json()


def _handle_session_expired() -> None:
    """Clear auth and send the user back to Login."""
    st.warning("🔒 Your session has expired. Please log in again.")
    clear_auth()
    st.session_state["nav_page"] = "Login"
    st.rerun()


def _update_backend_status(status: str) -> None:
    """
    Track backend connection health in session state.

    Args:
        status: "ok", "timeout", "connection_error", "error"
    """
    ss = st.session_state
    ss["_backend_status"] = status
    ss["_backend_last_ping_time"] = time.time()
