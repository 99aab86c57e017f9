"""
backend/test_licensing.py

Tests for license evaluation and verification.

Tests verify:
1. Perpetual licenses (no expiration) are always valid
2. Expired licenses are invalid and read-only
3. Trial is inferred from the remaining days when no explicit flag is stored
4. An explicit trial flag overrides the inference
5. verify_license reads the store and fails on a missing entitlement
"""

from datetime import datetime, timedelta, timezone

import pytest

from backend.errors import AccountNotFound
from backend.licensing import days_remaining, evaluate_license, verify_license


# Same instant as the conftest `now` fixture
NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ============================================================================
# Test: Perpetual
# ============================================================================

@pytest.mark.parametrize("offset_days", [-3650, -1, 0, 1, 3650])
def test_no_expiration_is_always_valid(offset_days):
    snap = evaluate_license(NOW + timedelta(days=offset_days), None)

    assert snap.is_valid is True
    assert snap.can_edit is True
    assert snap.is_trial is False
    assert snap.days_remaining is None


# ============================================================================
# Test: Expired
# ============================================================================

@pytest.mark.parametrize("ago", [
    timedelta(seconds=1),
    timedelta(hours=23),
    timedelta(days=1),
    timedelta(days=400),
])
def test_past_expiration_is_invalid(ago):
    snap = evaluate_license(NOW, NOW - ago)

    assert snap.is_valid is False
    assert snap.can_edit is False
    assert snap.is_trial is False


def test_expiring_exactly_now_is_invalid():
    snap = evaluate_license(NOW, NOW)

    assert snap.days_remaining == 0
    assert snap.is_valid is False
    assert snap.can_edit is False


def test_expired_ignores_explicit_trial_flag():
    snap = evaluate_license(NOW, NOW - timedelta(days=2), is_trial=True)

    assert snap.is_trial is False


# ============================================================================
# Test: Day rounding
# ============================================================================

def test_partial_day_counts_as_full_day():
    assert days_remaining(NOW, NOW + timedelta(hours=1)) == 1
    assert days_remaining(NOW, NOW + timedelta(days=4, hours=1)) == 5
    assert days_remaining(NOW, NOW + timedelta(days=5)) == 5


def test_days_remaining_negative_after_expiry():
    assert days_remaining(NOW, NOW - timedelta(days=2)) == -2


# ============================================================================
# Test: Trial window
# ============================================================================

@pytest.mark.parametrize("days", [1, 5, 13, 14])
def test_inside_trial_window_is_trial(days):
    snap = evaluate_license(NOW, NOW + timedelta(days=days))

    assert snap.is_valid is True
    assert snap.is_trial is True
    assert snap.days_remaining == days


@pytest.mark.parametrize("days", [15, 30, 365])
def test_outside_trial_window_is_not_trial(days):
    snap = evaluate_license(NOW, NOW + timedelta(days=days))

    assert snap.is_valid is True
    assert snap.is_trial is False
    assert snap.can_edit is True


def test_trial_window_is_configurable():
    snap = evaluate_license(NOW, NOW + timedelta(days=20), trial_window_days=30)

    assert snap.is_trial is True


def test_explicit_paid_flag_is_not_trial_near_expiry():
    """A paid license with 5 days left is not a trial."""
    snap = evaluate_license(NOW, NOW + timedelta(days=5), is_trial=False)

    assert snap.is_valid is True
    assert snap.is_trial is False


def test_explicit_trial_flag_far_from_expiry():
    snap = evaluate_license(NOW, NOW + timedelta(days=40), is_trial=True)

    assert snap.is_trial is True


# ============================================================================
# Test: Response shape
# ============================================================================

def test_snapshot_response_shape():
    expires = NOW + timedelta(days=5)
    data = evaluate_license(NOW, expires).to_response()

    assert data == {
        "valid": True,
        "expires_at": "2026-03-06T12:00:00+00:00",
        "is_trial": True,
        "days_remaining": 5,
        "can_edit": True,
    }


# ============================================================================
# Test: verify_license
# ============================================================================

def test_verify_reads_entitlement(conn, make_account):
    account_id, _ = make_account(expires_at=NOW + timedelta(days=5))

    snap = verify_license(conn, account_id, NOW)

    assert snap.is_valid is True
    assert snap.is_trial is True
    assert snap.days_remaining == 5


def test_verify_expired_account(conn, make_account):
    account_id, _ = make_account(expires_at=NOW - timedelta(days=1))

    snap = verify_license(conn, account_id, NOW)

    assert snap.is_valid is False
    assert snap.can_edit is False


@pytest.mark.parametrize("stored_flag,expected", [
    (None, True),   # legacy row: inferred from the remaining days
    (True, True),   # signup trial
    (False, False), # paid account close to renewal
])
def test_verify_five_days_left_by_trial_flag(conn, make_account, stored_flag, expected):
    account_id, _ = make_account(expires_at=NOW + timedelta(days=5), is_trial=stored_flag)

    snap = verify_license(conn, account_id, NOW)

    assert snap.is_valid is True
    assert snap.days_remaining == 5
    assert snap.is_trial is expected


def test_verify_missing_entitlement_raises(conn, make_account):
    account_id, _ = make_account(with_entitlement=False)

    with pytest.raises(AccountNotFound):
        verify_license(conn, account_id, NOW)
