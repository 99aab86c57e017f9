# frontend/app.py
# Rentdesk – rental dashboard: license status, plans and checkout
#
# Run from repo root: streamlit run frontend/app.py
# Or from frontend folder: streamlit run app.py

from __future__ import annotations

from typing import Any, Dict

import streamlit as st

# Import environment config (robust fallback for different run contexts)
try:
    from frontend.config import ENABLE_DEBUG_UI, ENV, IS_DEV, LICENSE_CACHE_TTL_SECONDS
except ModuleNotFoundError:
    from config import ENABLE_DEBUG_UI, ENV, IS_DEV, LICENSE_CACHE_TTL_SECONDS

try:
    from frontend.auth import (
        init_auth_state, set_auth, clear_auth, is_authenticated, require_auth, get_current_user
    )
    from frontend.api_client import (
        api_request, error_detail, fetch_plans, create_checkout, check_payment_status,
        make_license_fetcher,
    )
    from frontend.license import init_license_context, get_license, CONTEXT_CACHE_KEY
    from frontend.license_gate import (
        AccessView, decide_access, format_money, render_license_banner, require_edit_access
    )
except ModuleNotFoundError:
    from auth import (
        init_auth_state, set_auth, clear_auth, is_authenticated, require_auth, get_current_user
    )
    from api_client import (
        api_request, error_detail, fetch_plans, create_checkout, check_payment_status,
        make_license_fetcher,
    )
    from license import init_license_context, get_license, CONTEXT_CACHE_KEY
    from license_gate import (
        AccessView, decide_access, format_money, render_license_banner, require_edit_access
    )


st.set_page_config(page_title="Rentdesk", page_icon="🏠", layout="wide")

PAGES = ["Dashboard", "Plans"]


def init_state() -> None:
    ss = st.session_state

    # Auth keys first so every page sees them on this rerun
    init_auth_state()

    # Navigation - default is chosen in main() from auth state
    ss.setdefault("nav_page", None)

    # Checkout in progress: {"sessionId", "providerLink", "plan"}
    ss.setdefault("checkout", None)
    ss.setdefault("checkout_status", None)

    ss.setdefault("_backend_status", "unknown")


init_state()

ss = st.session_state


def go_to(page: str) -> None:
    """Navigation helper: set nav_page and rerun."""
    st.session_state["nav_page"] = page
    st.rerun()


# --------------------------------------------------------------------
# License context
# --------------------------------------------------------------------
def ensure_license_context() -> None:
    """Create this session's license cache + refresher once, after login."""
    if is_authenticated() and CONTEXT_CACHE_KEY not in ss:
        init_license_context(ss, make_license_fetcher(ss.get("auth_token")))


def current_access(skip_cache: bool = False):
    snapshot = get_license(ss, skip_cache=skip_cache) if is_authenticated() else None
    decision = decide_access(is_authenticated(), snapshot)

    if decision.view == AccessView.REDIRECT_LOGIN and is_authenticated():
        # Backend rejected the token: drop the session
        st.warning("🔒 Your session has expired. Please log in again.")
        clear_auth()
        go_to("Login")

    return snapshot, decision


# --------------------------------------------------------------------
# Sidebar
# --------------------------------------------------------------------
def render_sidebar() -> None:
    with st.sidebar:
        st.title("🏠 Rentdesk")

        if not is_authenticated():
            st.caption("Not logged in")
            return

        user = get_current_user() or {}
        st.caption(f"Logged in as {user.get('email', 'unknown')}")

        current = ss.get("nav_page")
        index = PAGES.index(current) if current in PAGES else 0
        target = st.radio("Navigate", PAGES, index=index, key="nav_radio")
        if target != current:
            ss["nav_page"] = target

        st.divider()
        if st.button("Log out"):
            clear_auth()
            ss["checkout"] = None
            ss["checkout_status"] = None
            go_to("Login")

        if ENABLE_DEBUG_UI:
            with st.expander("🧪 DEV"):
                st.text(f"env: {ENV}")
                cache = ss.get(CONTEXT_CACHE_KEY)
                st.text(f"license cache: {cache.state() if cache else 'none'}")
                st.text(f"ttl: {LICENSE_CACHE_TTL_SECONDS}s")


# --------------------------------------------------------------------
# Pages
# --------------------------------------------------------------------
def render_login() -> None:
    st.header("Login")

    with st.form("login_form"):
        email = st.text_input("Email", key="login_email")
        password = st.text_input("Password", type="password", key="login_password")
        submitted = st.form_submit_button("Login")

    if submitted:
        if not email or not password:
            st.error("Please enter email and password.")
            return
        resp = api_request("POST", "/auth/login", json={"email": email, "password": password}, timeout=10)
        if resp is None:
            return
        if resp.status_code != 200:
            st.error(f"Login failed: {error_detail(resp)}")
            return
        _complete_login(resp.json())

    st.divider()
    st.subheader("Start your free trial")

    with st.form("register_form"):
        reg_email = st.text_input("Email", key="register_email")
        reg_password = st.text_input("Password", type="password", key="register_password")
        reg_account_name = st.text_input("Agency name", key="register_account_name")
        reg_submitted = st.form_submit_button("Register")

    if reg_submitted:
        if not reg_email or not reg_password or not reg_account_name:
            st.error("Please fill in all registration fields.")
            return
        resp = api_request(
            "POST",
            "/auth/register",
            json={"email": reg_email, "password": reg_password, "account_name": reg_account_name},
            timeout=10,
        )
        if resp is None:
            return
        if resp.status_code != 200:
            st.error(f"Registration failed: {error_detail(resp)}")
            return
        _complete_login(resp.json())


def _complete_login(data: Dict[str, Any]) -> None:
    token = data.get("access_token")
    if not token:
        st.error("Login failed: incomplete session data.")
        return
    set_auth(token, data.get("user", {}))
    if IS_DEV:
        print(f"[AUTH] Logged in account_id={ss.get('account_id')}")
    go_to("Dashboard")


def render_dashboard() -> None:
    if not require_auth():
        return

    snapshot, decision = current_access()
    st.header("Dashboard")
    render_license_banner(decision)

    is_valid = bool(snapshot and snapshot.is_valid)
    days = snapshot.days_remaining if snapshot else None
    if is_valid and days is None:
        days_label = "Unlimited"
    else:
        days_label = str(max(days, 0)) if days is not None else "-"

    mode = {
        AccessView.TRIAL_ADVISORY: "Trial",
        AccessView.READ_ONLY: "Read-only",
    }.get(decision.view, "Full")

    col1, col2, col3 = st.columns(3)
    with col1:
        st.metric("License", "Active" if is_valid else "Inactive")
    with col2:
        st.metric("Days remaining", days_label)
    with col3:
        st.metric("Mode", mode)

    if snapshot and snapshot.expires_at:
        st.caption(f"Expires at {snapshot.expires_at}")

    if st.button("🔄 Re-check license"):
        current_access(skip_cache=True)
        st.rerun()

    st.divider()
    st.subheader("Edit check")
    st.caption("Property management lives in the main Rentdesk app; this form only "
               "checks whether the current license allows edits. Nothing is saved.")
    with st.form("edit_check"):
        name = st.text_input("Property name")
        submitted = st.form_submit_button("Check edit access", disabled=not decision.can_edit)
    if submitted and require_edit_access(decision):
        st.success(f"Edits allowed: '{name}' could be saved under the current license.")


def render_plans() -> None:
    if not require_auth():
        return

    _, decision = current_access()
    st.header("Plans")
    render_license_banner(decision)

    plans = fetch_plans()
    if not plans:
        st.info("No plans available right now.")
        return

    cols = st.columns(len(plans))
    for col, plan in zip(cols, plans):
        with col:
            st.subheader(plan.get("name", plan.get("id")))
            st.write(f"**{format_money(plan.get('price_cents'))}**")
            st.caption(f"{plan.get('days_duration')} days of access")
            if st.button("Choose", key=f"choose_{plan.get('id')}"):
                session = create_checkout(plan["id"])
                if session:
                    ss["checkout"] = session
                    ss["checkout_status"] = "created"
                    st.rerun()

    render_checkout_status()


def render_checkout_status() -> None:
    checkout = ss.get("checkout")
    if not checkout:
        return

    st.divider()
    plan = checkout.get("plan", {})
    st.subheader(f"Checkout: {plan.get('name', '')}")
    st.link_button("Pay with provider", checkout["providerLink"])
    st.caption(f"Session {checkout['sessionId']}")

    if st.button("I've paid - check status"):
        result = check_payment_status(checkout["sessionId"])
        if result:
            ss["checkout_status"] = result.get("status")
            if result.get("status") == "paid":
                # New expiration must show up without waiting for the TTL
                get_license(ss, skip_cache=True)

    status = ss.get("checkout_status")
    if status == "paid":
        st.success("✅ Payment confirmed. Your license has been extended.")
        ss["checkout"] = None
    elif status == "failed":
        st.error("❌ Payment failed. Please try again.")
    elif status == "expired":
        st.warning("⌛ This checkout session expired. Choose a plan again.")
        ss["checkout"] = None
    else:
        st.info("Waiting for payment confirmation...")


def main() -> None:
    init_auth_state()
    ensure_license_context()

    if not ss.get("nav_page"):
        ss["nav_page"] = "Dashboard" if is_authenticated() else "Login"

    # Never logs tokens or emails
    print(f"[ROUTING] page={ss.get('nav_page')} | token_present={bool(ss.get('auth_token'))}")

    render_sidebar()

    nav_page = ss.get("nav_page", "Login")
    if nav_page == "Login" or not is_authenticated():
        render_login()
    elif nav_page == "Dashboard":
        render_dashboard()
    elif nav_page == "Plans":
        render_plans()
    else:
        ss["nav_page"] = "Login"
        render_login()


if __name__ == "__main__":
    main()
