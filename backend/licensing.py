"""
backend/licensing.py

License evaluation for Rentdesk accounts.

This module centralizes the logic for:
- Evaluating an entitlement at a point in time (pure, no I/O)
- Loading an account's entitlement and producing the snapshot the
  /license-verify endpoint returns

Key principles:
- expires_at = None means perpetual/legacy access (always valid)
- Expired licenses are read-only (can_edit follows is_valid)
- Snapshots are derived on every call and never stored

Source of truth: entitlements table (see license_store.py)
"""

from __future__ import annotations

import math
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

try:
    from backend.config import LICENSE_TRIAL_WINDOW_DAYS, IS_DEV
    from backend.errors import AccountNotFound
    from backend.license_store import get_entitlement, to_iso
except ModuleNotFoundError:
    from config import LICENSE_TRIAL_WINDOW_DAYS, IS_DEV
    from errors import AccountNotFound
    from license_store import get_entitlement, to_iso


ONE_DAY = timedelta(days=1)


def utcnow() -> datetime:
    """Current instant as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


# ============================================================================
# Snapshot
# ============================================================================

@dataclass(frozen=True)
class LicenseSnapshot:
    """
    Result of evaluating an entitlement at one instant.

    Derived, never persisted. The client caches it for a few minutes
    but the backend recomputes it on every verification.
    """
    is_valid: bool
    is_trial: bool
    days_remaining: Optional[int]
    can_edit: bool
    expires_at: Optional[datetime] = None

    def to_response(self) -> Dict[str, Any]:
        """Wire shape of the /license-verify response."""
        return {
            "valid": self.is_valid,
            "expires_at": to_iso(self.expires_at),
            "is_trial": self.is_trial,
            "days_remaining": self.days_remaining,
            "can_edit": self.can_edit,
        }


# ============================================================================
# Evaluation
# ============================================================================

def days_remaining(now: datetime, expires_at: datetime) -> int:
    """
    Whole days left until expires_at, rounding a partial day up.

    Negative once the license has lapsed; 0 when it expires exactly now.
    """
    return math.ceil((expires_at - now) / ONE_DAY)


def evaluate_license(
    now: datetime,
    expires_at: Optional[datetime],
    is_trial: Optional[bool] = None,
    trial_window_days: int = LICENSE_TRIAL_WINDOW_DAYS,
) -> LicenseSnapshot:
    """
    Evaluate an entitlement at instant `now`.

    Rules:
    - No expiration: valid, editable, not a trial, no countdown
    - Otherwise days_remaining = ceil((expires_at - now) / 1 day)
      and the license is valid only while expires_at >= now and
      days_remaining > 0
    - is_trial uses the explicit flag when the entitlement has one,
      otherwise it is inferred from days_remaining <= trial_window_days
    - can_edit == is_valid (expired accounts are read-only)

    Args:
        now: Current instant (timezone-aware)
        expires_at: Entitlement expiration, or None for perpetual access
        is_trial: Explicit trial flag from the entitlement, if set
        trial_window_days: Threshold for inferring a trial

    Returns:
        LicenseSnapshot
    """
    if expires_at is None:
        return LicenseSnapshot(
            is_valid=True,
            is_trial=False,
            days_remaining=None,
            can_edit=True,
            expires_at=None,
        )

    remaining = days_remaining(now, expires_at)
    is_valid = expires_at >= now and remaining > 0

    if is_trial is None:
        trial = is_valid and remaining <= trial_window_days
    else:
        trial = is_valid and bool(is_trial)

    return LicenseSnapshot(
        is_valid=is_valid,
        is_trial=trial,
        days_remaining=remaining,
        can_edit=is_valid,
        expires_at=expires_at,
    )


# ============================================================================
# Verification
# ============================================================================

def verify_license(conn: sqlite3.Connection, account_id: int, now: datetime) -> LicenseSnapshot:
    """
    Load an account's entitlement and evaluate it at `now`.

    Read-only: safe to call repeatedly and concurrently.

    Raises:
        AccountNotFound: The account has no entitlement row. Every account
            gets one at signup, so this is a data integrity problem.
    """
    entitlement = get_entitlement(conn, account_id)
    if entitlement is None:
        print(f"[LICENSE] No entitlement record for account_id={account_id}")
        raise AccountNotFound(f"No license record for account {account_id}")

    snapshot = evaluate_license(now, entitlement.expires_at, entitlement.is_trial)

    if IS_DEV:
        print(f"[LICENSE] Verified: account_id={account_id}, valid={snapshot.is_valid}, "
              f"trial={snapshot.is_trial}, days_remaining={snapshot.days_remaining}")

    return snapshot
