"""
backend/license_store.py

Entitlement store for Rentdesk accounts (SQLite).

Every account owns exactly one row in `entitlements`. The settlement handler
is the only writer of `expires_at`; it goes through write_transaction() so
concurrent read-modify-write cycles on the same account serialize.

Tables used here (created by backend/migrate.py):
- entitlements   (account_id, expires_at, is_trial, updated_at)
- payments       (settlement ledger, UNIQUE(account_id, payment_id))
- license_audit  (one row per applied settlement)
"""

from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Generator, List, Optional


# ============================================================================
# Instant helpers
# ============================================================================

def to_iso(value: Optional[datetime]) -> Optional[str]:
    """Serialize an instant as ISO-8601 UTC, or None."""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_instant(value: Any) -> Optional[datetime]:
    """
    Parse a stored instant back into an aware UTC datetime.

    Accepts ISO strings with or without offset (naive values are UTC),
    a trailing "Z", or an existing datetime.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _parse_flag(value: Any) -> Optional[bool]:
    if value is None:
        return None
    return bool(value)


# ============================================================================
# Records
# ============================================================================

@dataclass
class Entitlement:
    """Persisted license state for one account."""
    account_id: int
    expires_at: Optional[datetime] = None  # None = perpetual
    is_trial: Optional[bool] = None  # None = unknown, infer from remaining days
    updated_at: Optional[str] = None


@dataclass
class PaymentRecord:
    """One applied settlement from the payments ledger."""
    id: int
    account_id: int
    payment_id: Optional[str]
    days_added: int
    previous_expiration: Optional[datetime]
    new_expiration: datetime
    payment_method: Optional[str] = None
    amount_cents: Optional[int] = None
    session_id: Optional[str] = None
    created_at: Optional[str] = None


def _row_to_payment(row: sqlite3.Row) -> PaymentRecord:
    return PaymentRecord(
        id=row["id"],
        account_id=row["account_id"],
        payment_id=row["payment_id"],
        days_added=row["days_added"],
        previous_expiration=parse_instant(row["previous_expiration"]),
        new_expiration=parse_instant(row["new_expiration"]),
        payment_method=row["payment_method"],
        amount_cents=row["amount_cents"],
        session_id=row["session_id"],
        created_at=row["created_at"],
    )


# ============================================================================
# Transactions
# ============================================================================

@contextmanager
def write_transaction(conn: sqlite3.Connection) -> Generator[sqlite3.Connection, None, None]:
    """
    Run a block inside BEGIN IMMEDIATE ... COMMIT.

    BEGIN IMMEDIATE takes SQLite's write lock up front, so two writers that
    both read-then-update the same entitlement cannot interleave. The
    connection must be in autocommit mode (isolation_level=None).
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    else:
        conn.execute("COMMIT")


# ============================================================================
# Entitlement queries
# ============================================================================

def get_entitlement(conn: sqlite3.Connection, account_id: int) -> Optional[Entitlement]:
    """
    Fetch the entitlement for an account.

    Returns:
        Entitlement, or None when the account has no license row
    """
    row = conn.execute(
        """
        SELECT account_id, expires_at, is_trial, updated_at
        FROM entitlements
        WHERE account_id = ?
        """,
        (account_id,),
    ).fetchone()

    if not row:
        return None

    return Entitlement(
        account_id=row["account_id"],
        expires_at=parse_instant(row["expires_at"]),
        is_trial=_parse_flag(row["is_trial"]),
        updated_at=row["updated_at"],
    )


def create_entitlement(
    conn: sqlite3.Connection,
    account_id: int,
    expires_at: Optional[datetime],
    now: datetime,
    is_trial: Optional[bool] = None,
) -> Entitlement:
    """Insert the entitlement row for a newly created account."""
    trial_value = None if is_trial is None else int(is_trial)
    conn.execute(
        """
        INSERT INTO entitlements (account_id, expires_at, is_trial, updated_at)
        VALUES (?, ?, ?, ?)
        """,
        (account_id, to_iso(expires_at), trial_value, to_iso(now)),
    )
    return Entitlement(
        account_id=account_id,
        expires_at=expires_at,
        is_trial=is_trial,
        updated_at=to_iso(now),
    )


def list_entitlements(conn: sqlite3.Connection) -> List[Dict[str, Any]]:
    """All accounts with their license state (admin listing)."""
    rows = conn.execute(
        """
        SELECT a.id AS account_id, a.name, e.expires_at, e.is_trial, e.updated_at
        FROM accounts a
        LEFT JOIN entitlements e ON e.account_id = a.id
        ORDER BY a.id
        """
    ).fetchall()
    return [dict(row) for row in rows]


# ============================================================================
# Settlement ledger
# ============================================================================

def find_payment(conn: sqlite3.Connection, account_id: int, payment_id: str) -> Optional[PaymentRecord]:
    """Look up an applied settlement by its dedup key."""
    row = conn.execute(
        "SELECT * FROM payments WHERE account_id = ? AND payment_id = ?",
        (account_id, payment_id),
    ).fetchone()
    return _row_to_payment(row) if row else None


def list_payments(conn: sqlite3.Connection, account_id: int) -> List[PaymentRecord]:
    rows = conn.execute(
        "SELECT * FROM payments WHERE account_id = ? ORDER BY id",
        (account_id,),
    ).fetchall()
    return [_row_to_payment(row) for row in rows]


def record_settlement(
    conn: sqlite3.Connection,
    account_id: int,
    previous_expiration: Optional[datetime],
    new_expiration: datetime,
    days_added: int,
    now: datetime,
    payment_id: Optional[str] = None,
    payment_method: Optional[str] = None,
    amount_cents: Optional[int] = None,
    session_id: Optional[str] = None,
    source: str = "webhook",
) -> int:
    """
    Persist one settlement: move expires_at forward, clear the trial flag,
    append to the payments ledger and the audit log.

    Must be called inside write_transaction().

    Returns:
        The ledger row id of the new payment
    """
    now_iso = to_iso(now)
    conn.execute(
        """
        UPDATE entitlements
        SET expires_at = ?, is_trial = 0, updated_at = ?
        WHERE account_id = ?
        """,
        (to_iso(new_expiration), now_iso, account_id),
    )

    cur = conn.execute(
        """
        INSERT INTO payments (
            account_id, payment_id, days_added, amount_cents, payment_method,
            session_id, previous_expiration, new_expiration, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            account_id, payment_id, days_added, amount_cents, payment_method,
            session_id, to_iso(previous_expiration), to_iso(new_expiration), now_iso,
        ),
    )
    ledger_id = cur.lastrowid

    conn.execute(
        """
        INSERT INTO license_audit (
            account_id, previous_expiration, new_expiration, source, ref_payment_id, created_at
        ) VALUES (?, ?, ?, ?, ?, ?)
        """,
        (account_id, to_iso(previous_expiration), to_iso(new_expiration), source, ledger_id, now_iso),
    )
    return ledger_id


def list_audit(conn: sqlite3.Connection, account_id: int) -> List[Dict[str, Any]]:
    rows = conn.execute(
        "SELECT * FROM license_audit WHERE account_id = ? ORDER BY id",
        (account_id,),
    ).fetchall()
    return [dict(row) for row in rows]
