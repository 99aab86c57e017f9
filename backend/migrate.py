# backend/migrate.py
# Database migrations for the licensing backend (SQLite)
# Run: python -m backend.migrate

import sqlite3
import sys
from pathlib import Path

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from backend.db import get_db_connection


# Default plan catalog. provider_link is the payment provider's hosted
# checkout page for the plan.
DEFAULT_PLANS = [
    {
        "id": "monthly",
        "name": "Mensal",
        "price_cents": 4990,
        "days_duration": 30,
        "provider": "cakto",
        "provider_link": "https://pay.cakto.com.br/rentdesk-monthly",
    },
    {
        "id": "quarterly",
        "name": "Trimestral",
        "price_cents": 13490,
        "days_duration": 90,
        "provider": "cakto",
        "provider_link": "https://pay.cakto.com.br/rentdesk-quarterly",
    },
    {
        "id": "yearly",
        "name": "Anual",
        "price_cents": 47900,
        "days_duration": 365,
        "provider": "cakto",
        "provider_link": "https://pay.cakto.com.br/rentdesk-yearly",
    },
]


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS accounts (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        email TEXT UNIQUE NOT NULL,
        password_hash TEXT NOT NULL,
        account_id INTEGER NOT NULL REFERENCES accounts(id),
        is_active INTEGER NOT NULL DEFAULT 1,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS entitlements (
        account_id INTEGER PRIMARY KEY REFERENCES accounts(id),
        expires_at TEXT,
        is_trial INTEGER,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS billing_plans (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        price_cents INTEGER NOT NULL,
        days_duration INTEGER NOT NULL DEFAULT 30,
        provider TEXT NOT NULL DEFAULT 'cakto',
        provider_link TEXT NOT NULL,
        created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS checkout_sessions (
        id TEXT PRIMARY KEY,
        account_id INTEGER NOT NULL REFERENCES accounts(id),
        plan_id TEXT NOT NULL REFERENCES billing_plans(id),
        status TEXT NOT NULL DEFAULT 'created',
        created_at TEXT NOT NULL,
        expires_at TEXT NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_checkout_sessions_account ON checkout_sessions(account_id)",
    """
    CREATE TABLE IF NOT EXISTS payments (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        account_id INTEGER NOT NULL REFERENCES accounts(id),
        payment_id TEXT,
        days_added INTEGER NOT NULL,
        amount_cents INTEGER,
        payment_method TEXT,
        session_id TEXT,
        previous_expiration TEXT,
        new_expiration TEXT NOT NULL,
        created_at TEXT NOT NULL,
        UNIQUE(account_id, payment_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS license_audit (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        account_id INTEGER NOT NULL REFERENCES accounts(id),
        previous_expiration TEXT,
        new_expiration TEXT,
        source TEXT NOT NULL,
        ref_payment_id INTEGER REFERENCES payments(id),
        created_at TEXT NOT NULL
    )
    """,
]


def run_migrations(conn: sqlite3.Connection, seed_plans: bool = True) -> None:
    """
    Create tables and indexes if missing, then seed the plan catalog.
    Idempotent: safe to run on every startup.
    """
    for statement in SCHEMA:
        conn.execute(statement)

    if seed_plans:
        for plan in DEFAULT_PLANS:
            conn.execute(
                """
                INSERT OR IGNORE INTO billing_plans (id, name, price_cents, days_duration, provider, provider_link)
                VALUES (:id, :name, :price_cents, :days_duration, :provider, :provider_link)
                """,
                plan,
            )


def main() -> None:
    print("[MIGRATE] Starting database migrations...")
    with get_db_connection() as conn:
        run_migrations(conn)
    print("[MIGRATE] All migrations complete!")


if __name__ == "__main__":
    main()
