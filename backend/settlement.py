"""
backend/settlement.py

Payment settlement: extend an account's license when the payment provider
confirms a payment.

Rules:
- The extension base is max(current expires_at, now): time already paid for
  is never lost, and a lapsed license restarts from now
- expires_at never moves backwards
- A settlement carrying a payment_id that was already applied for the same
  account is a no-op and returns the stored result, because providers
  redeliver webhooks on timeouts and errors
- The read-modify-write runs under SQLite's write lock (BEGIN IMMEDIATE) so
  concurrent settlements for one account both apply
- A "failed" event only marks its checkout session failed; a paid session
  is never moved back to failed

This is the only code path that writes entitlements.expires_at.
"""

from __future__ import annotations

import math
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

try:
    from backend.checkout import PROVIDER_STATUSES, CheckoutStatus, get_checkout_session, mark_session_status
    from backend.errors import AccountNotFound, InvalidPayload, SessionNotFound, StoreFailure
    from backend.license_store import (
        find_payment,
        get_entitlement,
        record_settlement,
        to_iso,
        write_transaction,
    )
except ModuleNotFoundError:
    from checkout import PROVIDER_STATUSES, CheckoutStatus, get_checkout_session, mark_session_status
    from errors import AccountNotFound, InvalidPayload, SessionNotFound, StoreFailure
    from license_store import (
        find_payment,
        get_entitlement,
        record_settlement,
        to_iso,
        write_transaction,
    )


@dataclass(frozen=True)
class SettlementRequest:
    """Validated webhook payload."""
    account_id: int
    days_to_add: int
    payment_id: Optional[str] = None
    payment_method: Optional[str] = None
    amount_cents: Optional[int] = None
    session_id: Optional[str] = None
    status: str = CheckoutStatus.paid.value


@dataclass(frozen=True)
class SettlementResult:
    new_expiration: Optional[datetime]
    previous_expiration: Optional[datetime]
    applied: bool  # False when the payment_id had already been applied
    message: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        default = "License extended successfully" if self.applied else "Event already processed"
        return {
            "success": True,
            "new_expiration": to_iso(self.new_expiration),
            "applied": self.applied,
            "message": self.message or default,
        }


# ============================================================================
# Payload validation
# ============================================================================

# Upper bounds keep values inside SQLite's INTEGER range and datetime's year 9999
MAX_ACCOUNT_ID = 2**63 - 1
MAX_DAYS_TO_ADD = 36500
MAX_AMOUNT_CENTS = 2**63 - 1


def _positive_int(value: Any, field: str, upper: int) -> int:
    # bool is an int subclass; True must not read as "1 day"
    if isinstance(value, bool):
        raise InvalidPayload(f"Invalid {field}")
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int) or value <= 0 or value > upper:
        raise InvalidPayload(f"Invalid {field}")
    return value


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_settlement_payload(payload: Any) -> SettlementRequest:
    """
    Validate a payment webhook body.

    Expected: {user_id, days_to_add, payment_method?, payment_id?, amount?,
    session_id?, status?} where user_id is the account id and amount is in
    cents. status defaults to "paid"; a "failed" event needs only user_id and
    session_id.

    Raises:
        InvalidPayload: missing/non-positive user_id or days_to_add, bad amount
            or unknown status
    """
    if not isinstance(payload, dict):
        raise InvalidPayload("Payload must be a JSON object")

    status = str(payload.get("status") or CheckoutStatus.paid.value).strip().lower()
    if status not in PROVIDER_STATUSES:
        raise InvalidPayload("Invalid status")

    if status == CheckoutStatus.failed.value:
        session_id = _optional_str(payload.get("session_id"))
        if payload.get("user_id") in (None, "") or session_id is None:
            raise InvalidPayload("Missing user_id or session_id")
        return SettlementRequest(
            account_id=_positive_int(payload.get("user_id"), "user_id", MAX_ACCOUNT_ID),
            days_to_add=0,  # failures never extend the license
            payment_id=_optional_str(payload.get("payment_id")),
            payment_method=_optional_str(payload.get("payment_method")),
            session_id=session_id,
            status=status,
        )

    if payload.get("user_id") in (None, "") or payload.get("days_to_add") in (None, ""):
        raise InvalidPayload("Missing user_id or days_to_add")

    account_id = _positive_int(payload.get("user_id"), "user_id", MAX_ACCOUNT_ID)
    days_to_add = _positive_int(payload.get("days_to_add"), "days_to_add", MAX_DAYS_TO_ADD)

    amount = payload.get("amount")
    if amount is not None:
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise InvalidPayload("Invalid amount")
        # json.loads accepts NaN and Infinity
        if isinstance(amount, float) and not math.isfinite(amount):
            raise InvalidPayload("Invalid amount")
        if amount < 0 or amount > MAX_AMOUNT_CENTS:
            raise InvalidPayload("Invalid amount")
        amount = int(round(amount))

    return SettlementRequest(
        account_id=account_id,
        days_to_add=days_to_add,
        payment_id=_optional_str(payload.get("payment_id")),
        payment_method=_optional_str(payload.get("payment_method")),
        amount_cents=amount,
        session_id=_optional_str(payload.get("session_id")),
    )


# ============================================================================
# Settlement
# ============================================================================

def compute_new_expiration(current: Optional[datetime], now: datetime, days_to_add: int) -> datetime:
    """
    new = max(current or now, now) + days_to_add days.

    Raises:
        InvalidPayload: the result would fall past datetime.max
    """
    base = current if current is not None and current > now else now
    try:
        return base + timedelta(days=days_to_add)
    except OverflowError:
        raise InvalidPayload("Invalid days_to_add")


def apply_settlement(
    conn: sqlite3.Connection,
    account_id: int,
    days_to_add: int,
    now: datetime,
    payment_id: Optional[str] = None,
    payment_method: Optional[str] = None,
    amount_cents: Optional[int] = None,
    session_id: Optional[str] = None,
    source: str = "webhook",
) -> SettlementResult:
    """
    Extend an account's license by days_to_add days.

    Args:
        conn: Autocommit SQLite connection (see backend/db.py)
        account_id: Account to credit
        days_to_add: Positive number of days
        now: Current instant
        payment_id: Provider's payment/event id, used as the dedup key
        session_id: Checkout session this payment settles, marked "paid"

    Returns:
        SettlementResult (applied=False for an already-seen payment_id)

    Raises:
        InvalidPayload: days_to_add outside 1..MAX_DAYS_TO_ADD, or the new
            expiration would overflow
        AccountNotFound: no entitlement row for the account (or an out-of-range id)
        StoreFailure: database error (transaction rolled back)
    """
    if (isinstance(days_to_add, bool) or not isinstance(days_to_add, int)
            or days_to_add <= 0 or days_to_add > MAX_DAYS_TO_ADD):
        raise InvalidPayload("Invalid days_to_add")
    if isinstance(account_id, bool) or not isinstance(account_id, int) or not 0 < account_id <= MAX_ACCOUNT_ID:
        raise AccountNotFound()

    try:
        with write_transaction(conn):
            entitlement = get_entitlement(conn, account_id)
            if entitlement is None:
                print(f"[WEBHOOK] Account not found: account_id={account_id}")
                raise AccountNotFound()

            if payment_id:
                existing = find_payment(conn, account_id, payment_id)
                if existing is not None:
                    print(f"[WEBHOOK] Event already processed: account_id={account_id}, payment_id={payment_id}")
                    return SettlementResult(
                        new_expiration=existing.new_expiration,
                        previous_expiration=existing.previous_expiration,
                        applied=False,
                    )
            else:
                print(f"[WEBHOOK] Settlement without payment_id for account_id={account_id}; cannot deduplicate")

            previous = entitlement.expires_at
            new_expiration = compute_new_expiration(previous, now, days_to_add)

            record_settlement(
                conn,
                account_id=account_id,
                previous_expiration=previous,
                new_expiration=new_expiration,
                days_added=days_to_add,
                now=now,
                payment_id=payment_id,
                payment_method=payment_method,
                amount_cents=amount_cents,
                session_id=session_id,
                source=source,
            )

            if session_id and not mark_session_status(conn, account_id, session_id, CheckoutStatus.paid.value):
                print(f"[WEBHOOK] Checkout session {session_id} not found for account_id={account_id}")

    except sqlite3.IntegrityError:
        # Same payment_id committed by a concurrent delivery
        existing = find_payment(conn, account_id, payment_id) if payment_id else None
        if existing is None:
            raise StoreFailure("Failed to update license")
        return SettlementResult(
            new_expiration=existing.new_expiration,
            previous_expiration=existing.previous_expiration,
            applied=False,
        )
    except sqlite3.Error as e:
        print(f"[WEBHOOK] Store error for account_id={account_id}: {type(e).__name__}: {e}")
        raise StoreFailure("Failed to update license")

    print(f"[WEBHOOK] License extended: account_id={account_id}, "
          f"old={to_iso(previous)}, new={to_iso(new_expiration)}, days_added={days_to_add}")

    return SettlementResult(
        new_expiration=new_expiration,
        previous_expiration=previous,
        applied=True,
    )


def record_payment_failure(
    conn: sqlite3.Connection,
    account_id: int,
    session_id: str,
    payment_id: Optional[str] = None,
) -> SettlementResult:
    """
    Mark a checkout session "failed" after the provider reports a declined payment.

    The license is left untouched. A session that is already paid stays paid,
    so a late failure event cannot undo a settlement.

    Raises:
        AccountNotFound: no entitlement row for the account
        SessionNotFound: unknown session, or one owned by another account
        StoreFailure: database error (transaction rolled back)
    """
    if isinstance(account_id, bool) or not isinstance(account_id, int) or not 0 < account_id <= MAX_ACCOUNT_ID:
        raise AccountNotFound()

    try:
        with write_transaction(conn):
            entitlement = get_entitlement(conn, account_id)
            if entitlement is None:
                print(f"[WEBHOOK] Account not found: account_id={account_id}")
                raise AccountNotFound()

            session = get_checkout_session(conn, session_id)
            if session is None or session.account_id != account_id:
                print(f"[WEBHOOK] Checkout session {session_id} not found for account_id={account_id}")
                raise SessionNotFound()

            if session.status == CheckoutStatus.paid.value:
                print(f"[WEBHOOK] Ignoring failure for paid session {session_id}, payment_id={payment_id}")
            else:
                mark_session_status(conn, account_id, session_id, CheckoutStatus.failed.value)
                print(f"[WEBHOOK] Payment failed: account_id={account_id}, session_id={session_id}, "
                      f"payment_id={payment_id}")
    except sqlite3.Error as e:
        print(f"[WEBHOOK] Store error for account_id={account_id}: {type(e).__name__}: {e}")
        raise StoreFailure("Failed to record payment status")

    return SettlementResult(
        new_expiration=entitlement.expires_at,
        previous_expiration=entitlement.expires_at,
        applied=False,
        message="Payment failure recorded",
    )


def settle_payload(conn: sqlite3.Connection, payload: Any, now: datetime) -> SettlementResult:
    """Validate a webhook body and apply it (or record the provider's failure)."""
    req = parse_settlement_payload(payload)
    if req.status == CheckoutStatus.failed.value:
        return record_payment_failure(conn, req.account_id, req.session_id, payment_id=req.payment_id)
    return apply_settlement(
        conn,
        account_id=req.account_id,
        days_to_add=req.days_to_add,
        now=now,
        payment_id=req.payment_id,
        payment_method=req.payment_method,
        amount_cents=req.amount_cents,
        session_id=req.session_id,
    )
