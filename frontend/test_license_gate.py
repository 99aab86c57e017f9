# frontend/test_license_gate.py
# Unit tests for the access gate (view selection + banners)

import sys
from pathlib import Path

import pytest

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from frontend import license_gate
from frontend.license import LicenseSnapshot
from frontend.license_gate import (
    AccessView,
    decide_access,
    format_money,
    render_license_banner,
    require_edit_access,
    trial_message,
)


def snap(is_valid=True, is_trial=False, days=None, can_edit=None):
    return LicenseSnapshot(
        is_valid=is_valid,
        is_trial=is_trial,
        days_remaining=days,
        can_edit=is_valid if can_edit is None else can_edit,
    )


class FakeStreamlit:
    """Records banner calls instead of rendering."""

    def __init__(self):
        self.calls = []
        self.session_state = {}

    def error(self, msg):
        self.calls.append(("error", msg))

    def warning(self, msg):
        self.calls.append(("warning", msg))

    def info(self, msg):
        self.calls.append(("info", msg))

    def button(self, label, **kwargs):
        self.calls.append(("button", label))
        return False

    def rerun(self):
        raise AssertionError("unexpected rerun")


@pytest.fixture
def fake_st(monkeypatch):
    fake = FakeStreamlit()
    monkeypatch.setattr(license_gate, "st", fake)
    return fake


# ============================================================================
# Test: View selection
# ============================================================================

def test_unauthenticated_redirects():
    decision = decide_access(False, snap())

    assert decision.view == AccessView.REDIRECT_LOGIN
    assert decision.can_edit is False


def test_rejected_session_redirects():
    decision = decide_access(True, LicenseSnapshot.unauthenticated())

    assert decision.view == AccessView.REDIRECT_LOGIN


def test_invalid_license_is_read_only():
    decision = decide_access(True, snap(is_valid=False, days=-3))

    assert decision.view == AccessView.READ_ONLY
    assert decision.can_edit is False


def test_fail_closed_snapshot_is_read_only():
    decision = decide_access(True, LicenseSnapshot.fail_closed())

    assert decision.view == AccessView.READ_ONLY
    assert decision.can_edit is False


def test_missing_snapshot_is_read_only():
    assert decide_access(True, None).view == AccessView.READ_ONLY


def test_valid_trial_is_advisory():
    decision = decide_access(True, snap(is_trial=True, days=10))

    assert decision.view == AccessView.TRIAL_ADVISORY
    assert decision.can_edit is True
    assert decision.days_remaining == 10
    assert decision.urgent is False


@pytest.mark.parametrize("days,urgent", [(1, True), (3, True), (4, False), (14, False)])
def test_trial_urgency_threshold(days, urgent):
    decision = decide_access(True, snap(is_trial=True, days=days))

    assert decision.urgent is urgent


def test_valid_paid_is_full_access():
    decision = decide_access(True, snap(days=200))

    assert decision.view == AccessView.FULL_ACCESS
    assert decision.can_edit is True


def test_perpetual_is_full_access():
    decision = decide_access(True, snap(days=None))

    assert decision.view == AccessView.FULL_ACCESS


# ============================================================================
# Test: Banners
# ============================================================================

def test_trial_message_pluralization():
    one = decide_access(True, snap(is_trial=True, days=1))
    many = decide_access(True, snap(is_trial=True, days=7))

    assert "1 day remaining" in trial_message(one)
    assert "7 days remaining" in trial_message(many)
    assert "ending" in trial_message(one)
    assert "ending" not in trial_message(many)


def test_full_access_renders_nothing(fake_st):
    render_license_banner(decide_access(True, snap(days=200)))

    assert fake_st.calls == []


def test_read_only_renders_error_banner(fake_st):
    render_license_banner(decide_access(True, snap(is_valid=False)))

    kinds = [kind for kind, _ in fake_st.calls]
    assert kinds[0] == "error"
    assert "Read-only" in fake_st.calls[0][1]
    assert ("button", "Renew license") in fake_st.calls


def test_urgent_trial_renders_warning(fake_st):
    render_license_banner(decide_access(True, snap(is_trial=True, days=2)))

    assert fake_st.calls[0][0] == "warning"


def test_calm_trial_renders_info(fake_st):
    render_license_banner(decide_access(True, snap(is_trial=True, days=9)))

    assert fake_st.calls[0][0] == "info"


def test_require_edit_access(fake_st):
    assert require_edit_access(decide_access(True, snap(days=200))) is True
    assert fake_st.calls == []

    assert require_edit_access(decide_access(True, snap(is_valid=False))) is False
    assert fake_st.calls[0][0] == "warning"


@pytest.mark.parametrize("cents,text", [
    (None, "N/A"),
    (0, "R$ 0,00"),
    (4990, "R$ 49,90"),
    (123456, "R$ 1.234,56"),
    (123456789, "R$ 1.234.567,89"),
])
def test_format_money_uses_brazilian_separators(cents, text):
    assert format_money(cents) == text
