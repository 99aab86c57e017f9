"""
Shared fixtures for backend tests: a migrated temporary SQLite database,
a fixed clock, and an account factory.
"""

import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from backend.db import connect
from backend.license_store import create_entitlement, to_iso
from backend.migrate import run_migrations


NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def db_path(tmp_path):
    """Path to a freshly migrated database file."""
    path = str(tmp_path / "rentdesk_test.db")
    conn = connect(path)
    run_migrations(conn)
    conn.close()
    return path


@pytest.fixture
def conn(db_path):
    c = connect(db_path)
    yield c
    c.close()


@pytest.fixture
def make_account(db_path):
    """
    Factory creating an account + user (+ entitlement unless disabled).

    Usage:
        account_id, user_id = make_account(expires_at=NOW + timedelta(days=5))
    """
    counter = {"n": 0}

    def _make(expires_at=None, is_trial=None, with_entitlement=True, email=None):
        counter["n"] += 1
        c = connect(db_path)
        try:
            cur = c.execute(
                "INSERT INTO accounts (name, created_at) VALUES (?, ?)",
                (f"Imobiliaria {counter['n']}", to_iso(NOW - timedelta(days=30))),
            )
            account_id = cur.lastrowid
            cur = c.execute(
                "INSERT INTO users (email, password_hash, account_id, created_at) VALUES (?, ?, ?, ?)",
                (email or f"owner{counter['n']}@example.com", "x$y", account_id, to_iso(NOW)),
            )
            user_id = cur.lastrowid
            if with_entitlement:
                create_entitlement(c, account_id, expires_at=expires_at, now=NOW, is_trial=is_trial)
        finally:
            c.close()
        return account_id, user_id

    return _make
