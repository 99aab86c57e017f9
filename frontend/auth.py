"""
frontend/auth.py
Centralized authentication state for the Rentdesk dashboard.

Streamlit reruns the script top to bottom on every interaction, so auth
state must live in st.session_state and be initialized at the top of each
rerun. This module is the single writer of those keys:

- init_auth_state(): call at the top of main(); idempotent
- set_auth(): store token + user after login/register
- clear_auth(): logout or session expiry; also tears down the license cache
- is_authenticated() / get_auth_header() / require_auth()
"""

from typing import Optional, Dict, Any
import streamlit as st

try:
    from frontend.license import teardown_license_context
except ModuleNotFoundError:
    from license import teardown_license_context


def init_auth_state() -> None:
    """
    Initialize authentication-related session state keys.

    MUST be called at the top of main() so the keys exist on every rerun.
    """
    ss = st.session_state

    ss.setdefault("auth_token", None)
    ss.setdefault("current_user", None)
    ss.setdefault("is_authenticated", False)
    ss.setdefault("account_id", None)

    # Keep the flag in sync with token presence
    if ss["auth_token"] and not ss["is_authenticated"]:
        ss["is_authenticated"] = True
    elif not ss["auth_token"] and ss["is_authenticated"]:
        ss["is_authenticated"] = False


def set_auth(auth_token: str, current_user: Dict[str, Any]) -> None:
    """
    Set authentication state after a successful login or register.

    Args:
        auth_token: JWT access token (Bearer token for API calls)
        current_user: user object from backend (id, email, account_id)
    """
    ss = st.session_state

    # A new login must never see the previous account's license
    teardown_license_context(ss)

    ss["auth_token"] = auth_token
    ss["current_user"] = current_user
    ss["is_authenticated"] = True
    if isinstance(current_user, dict):
        ss["account_id"] = current_user.get("account_id")


def clear_auth() -> None:
    """Clear all authentication state. Safe to call multiple times."""
    ss = st.session_state

    teardown_license_context(ss)

    ss["auth_token"] = None
    ss["current_user"] = None
    ss["is_authenticated"] = False
    ss["account_id"] = None


def is_authenticated() -> bool:
    return bool(st.session_state.get("auth_token"))


def get_current_user() -> Optional[Dict[str, Any]]:
    return st.session_state.get("current_user")


def get_auth_header() -> Dict[str, str]:
    """
    Authorization header dict for API requests.

    Returns:
        {"Authorization": "Bearer <token>"} if authenticated, {} otherwise
    """
    token = st.session_state.get("auth_token")
    if token:
        return {"Authorization": f"Bearer {token}"}
    return {}


def require_auth(redirect_to_login: bool = True) -> bool:
    """
    Guard for protected pages.

    Usage at top of page render functions:
        if not require_auth():
            return
    """
    if not is_authenticated():
        st.warning("⚠️ You must be logged in to access this page.")

        if redirect_to_login:
            st.session_state["nav_page"] = "Login"

        if st.button("Go to Login", type="primary"):
            st.session_state["nav_page"] = "Login"
            st.rerun()

        return False

    return True
