"""
backend/checkout.py

Plan catalog and checkout sessions.

A checkout session records a purchase intent (account + plan) before the user
is redirected to the payment provider. Sessions are created here in status
"created"; "paid"/"failed" are reported by the provider through the payment
webhook. A "created" session past its own expires_at is reported as
"expired" on read, without rewriting the row.
"""

from __future__ import annotations

import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

try:
    from backend.config import CHECKOUT_SESSION_HOURS, IS_DEV
    from backend.errors import Forbidden, InvalidPayload, PlanNotFound, SessionNotFound
    from backend.license_store import get_entitlement, parse_instant, to_iso
except ModuleNotFoundError:
    from config import CHECKOUT_SESSION_HOURS, IS_DEV
    from errors import Forbidden, InvalidPayload, PlanNotFound, SessionNotFound
    from license_store import get_entitlement, parse_instant, to_iso


class CheckoutStatus(str, Enum):
    created = "created"
    paid = "paid"
    failed = "failed"
    expired = "expired"


# Statuses the payment provider may report through the webhook
PROVIDER_STATUSES = {CheckoutStatus.paid.value, CheckoutStatus.failed.value}


@dataclass(frozen=True)
class BillingPlan:
    id: str
    name: str
    price_cents: int
    days_duration: int
    provider: str
    provider_link: str

    def summary(self) -> Dict[str, Any]:
        """Plan fields the client shows on the checkout page."""
        return {
            "id": self.id,
            "name": self.name,
            "price_cents": self.price_cents,
            "days_duration": self.days_duration,
        }


@dataclass
class CheckoutSession:
    id: str
    account_id: int
    plan_id: str
    status: str
    created_at: datetime
    expires_at: datetime

    def effective_status(self, now: datetime) -> str:
        if self.status == CheckoutStatus.created.value and now > self.expires_at:
            return CheckoutStatus.expired.value
        return self.status


def _row_to_plan(row: sqlite3.Row) -> BillingPlan:
    return BillingPlan(
        id=row["id"],
        name=row["name"],
        price_cents=row["price_cents"],
        days_duration=row["days_duration"],
        provider=row["provider"],
        provider_link=row["provider_link"],
    )


def _row_to_session(row: sqlite3.Row) -> CheckoutSession:
    return CheckoutSession(
        id=row["id"],
        account_id=row["account_id"],
        plan_id=row["plan_id"],
        status=row["status"],
        created_at=parse_instant(row["created_at"]),
        expires_at=parse_instant(row["expires_at"]),
    )


# ============================================================================
# Plan catalog
# ============================================================================

def list_plans(conn: sqlite3.Connection) -> List[BillingPlan]:
    rows = conn.execute(
        "SELECT * FROM billing_plans ORDER BY days_duration, price_cents"
    ).fetchall()
    return [_row_to_plan(row) for row in rows]


def get_plan(conn: sqlite3.Connection, plan_id: str) -> Optional[BillingPlan]:
    row = conn.execute("SELECT * FROM billing_plans WHERE id = ?", (plan_id,)).fetchone()
    return _row_to_plan(row) if row else None


# ============================================================================
# Sessions
# ============================================================================

def create_checkout_session(
    conn: sqlite3.Connection,
    account_id: int,
    plan_id: Optional[str],
    now: datetime,
) -> Tuple[CheckoutSession, BillingPlan]:
    """
    Record a new purchase attempt for (account, plan).

    Every call creates a new session; repeated purchases of the same plan
    are separate attempts.

    Raises:
        InvalidPayload: plan_id missing or blank
        PlanNotFound: plan_id is not in the catalog (no row is written)
    """
    if not plan_id or not str(plan_id).strip():
        raise InvalidPayload("Missing planId")

    plan = get_plan(conn, str(plan_id).strip())
    if plan is None:
        print(f"[CHECKOUT] Plan not found: plan_id={plan_id!r}")
        raise PlanNotFound()

    session = CheckoutSession(
        id=str(uuid.uuid4()),
        account_id=account_id,
        plan_id=plan.id,
        status=CheckoutStatus.created.value,
        created_at=now,
        expires_at=now + timedelta(hours=CHECKOUT_SESSION_HOURS),
    )
    conn.execute(
        """
        INSERT INTO checkout_sessions (id, account_id, plan_id, status, created_at, expires_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (session.id, account_id, plan.id, session.status, to_iso(session.created_at), to_iso(session.expires_at)),
    )

    print(f"[CHECKOUT] Session created: session_id={session.id}, account_id={account_id}, plan_id={plan.id}")
    return session, plan


def get_checkout_session(conn: sqlite3.Connection, session_id: str) -> Optional[CheckoutSession]:
    row = conn.execute("SELECT * FROM checkout_sessions WHERE id = ?", (session_id,)).fetchone()
    return _row_to_session(row) if row else None


def require_owned_session(conn: sqlite3.Connection, account_id: int, session_id: str) -> CheckoutSession:
    """
    Fetch a session and enforce that it belongs to account_id.

    Raises:
        SessionNotFound: no such session
        Forbidden: session belongs to another account
    """
    session = get_checkout_session(conn, session_id)
    if session is None:
        raise SessionNotFound()
    if session.account_id != account_id:
        print(f"[SECURITY] Checkout session access denied: session_id={session_id}, account_id={account_id}")
        raise Forbidden()
    return session


def get_payment_status(
    conn: sqlite3.Connection,
    account_id: int,
    session_id: Optional[str],
    now: datetime,
) -> Dict[str, Any]:
    """
    Read-only status lookup for a checkout session owned by the caller.

    Once the session is paid the response carries the account's new license
    expiration so the client can refresh without another round trip.
    """
    if not session_id:
        raise InvalidPayload("Missing sessionId parameter")

    session = require_owned_session(conn, account_id, session_id)
    status = session.effective_status(now)

    expires_at = None
    if status == CheckoutStatus.paid.value:
        entitlement = get_entitlement(conn, account_id)
        if entitlement is not None:
            expires_at = to_iso(entitlement.expires_at)

    if IS_DEV:
        print(f"[CHECKOUT] Status: session_id={session_id}, status={status}")

    return {
        "status": status,
        "expires_at": expires_at,
        "created_at": to_iso(session.created_at),
        "plan_id": session.plan_id,
    }


def mark_session_status(
    conn: sqlite3.Connection,
    account_id: int,
    session_id: str,
    status: str,
) -> bool:
    """
    Record a provider-reported status on a session owned by account_id.

    Returns:
        True if a session was updated
    """
    if status not in PROVIDER_STATUSES:
        raise InvalidPayload(f"Unsupported session status: {status}")
    cur = conn.execute(
        "UPDATE checkout_sessions SET status = ? WHERE id = ? AND account_id = ?",
        (status, session_id, account_id),
    )
    return cur.rowcount > 0
