"""
frontend/license_gate.py
Access gate: turns the current license snapshot into one of four views.

    REDIRECT_LOGIN  - not authenticated
    READ_ONLY       - license invalid/expired: data visible, edits blocked
    TRIAL_ADVISORY  - valid trial: banner with days remaining (urgent <= 3 days)
    FULL_ACCESS     - valid paid license: no banner
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

import streamlit as st

try:
    from frontend.config import TRIAL_URGENT_DAYS
    from frontend.license import LicenseSnapshot
except ModuleNotFoundError:
    from config import TRIAL_URGENT_DAYS
    from license import LicenseSnapshot


class AccessView(str, Enum):
    REDIRECT_LOGIN = "redirect_login"
    READ_ONLY = "read_only"
    TRIAL_ADVISORY = "trial_advisory"
    FULL_ACCESS = "full_access"


@dataclass(frozen=True)
class AccessDecision:
    view: AccessView
    can_edit: bool
    days_remaining: Optional[int] = None
    urgent: bool = False


def decide_access(
    authenticated: bool,
    snapshot: Optional[LicenseSnapshot],
    urgent_days: int = TRIAL_URGENT_DAYS,
) -> AccessDecision:
    """Pick the view for this render. A missing snapshot is treated as invalid."""
    if not authenticated or (snapshot is not None and not snapshot.authenticated):
        return AccessDecision(view=AccessView.REDIRECT_LOGIN, can_edit=False)

    if snapshot is None or not snapshot.is_valid:
        return AccessDecision(view=AccessView.READ_ONLY, can_edit=False)

    if snapshot.is_trial:
        days = snapshot.days_remaining
        return AccessDecision(
            view=AccessView.TRIAL_ADVISORY,
            can_edit=snapshot.can_edit,
            days_remaining=days,
            urgent=days is not None and days <= urgent_days,
        )

    return AccessDecision(view=AccessView.FULL_ACCESS, can_edit=snapshot.can_edit)


def trial_message(decision: AccessDecision) -> str:
    days = decision.days_remaining
    if days is None:
        label = "Trial period"
    else:
        label = f"Trial period - {days} {'day' if days == 1 else 'days'} remaining"
    if decision.urgent:
        return f"{label}. Your trial is ending! Choose a plan to keep editing."
    return f"{label}. Explore every feature while it lasts."


def format_money(cents: Optional[int]) -> str:
    """Plan price in cents as Brazilian reais, e.g. 123456 -> "R$ 1.234,56"."""
    if cents is None:
        return "N/A"
    sign = "-" if cents < 0 else ""
    reais, centavos = divmod(abs(int(cents)), 100)
    thousands = f"{reais:,}".replace(",", ".")
    return f"{sign}R$ {thousands},{centavos:02d}"


def render_license_banner(decision: AccessDecision) -> None:
    """Render the banner for a decision. FULL_ACCESS renders nothing."""
    if decision.view == AccessView.READ_ONLY:
        st.error(
            "🔒 **Read-only mode** - your license has expired. "
            "You can view your data but cannot make changes."
        )
        if st.button("Renew license", key="banner_renew", type="primary"):
            st.session_state["nav_page"] = "Plans"
            st.rerun()

    elif decision.view == AccessView.TRIAL_ADVISORY:
        if decision.urgent:
            st.warning(f"⚠️ {trial_message(decision)}")
        else:
            st.info(f"🕒 {trial_message(decision)}")
        if st.button("See plans", key="banner_plans"):
            st.session_state["nav_page"] = "Plans"
            st.rerun()


def require_edit_access(decision: AccessDecision) -> bool:
    """
    Guard for write actions.

    Usage:
        if not require_edit_access(decision):
            return
    """
    if decision.can_edit:
        return True
    st.warning("✋ Editing is disabled while your license is inactive.")
    return False
