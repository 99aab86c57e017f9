# backend/config.py
# Environment-aware configuration for the Rentdesk licensing backend

import os
from typing import Literal

# Environment detection
ENV: Literal["dev", "staging", "prod"] = os.environ.get("ENV", "dev")  # type: ignore
IS_DEV = (ENV == "dev")
IS_STAGING = (ENV == "staging")
IS_PROD = (ENV == "prod")

# JWT configuration
SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")
ALGORITHM = "HS256"

# Token lifetimes
ACCESS_TOKEN_MINUTES = int(os.environ.get("ACCESS_TOKEN_MINUTES", "60"))

# Database configuration (path is relative to backend/ unless absolute)
DATABASE_PATH = os.environ.get("DATABASE_PATH", "rentdesk.db")

# Licensing
# Accounts with this many days or fewer left are shown as "trial" when the
# entitlement carries no explicit trial flag.
LICENSE_TRIAL_WINDOW_DAYS = int(os.environ.get("LICENSE_TRIAL_WINDOW_DAYS", "14"))
# Length of the trial provisioned at signup
SIGNUP_TRIAL_DAYS = int(os.environ.get("SIGNUP_TRIAL_DAYS", "14"))
# Checkout sessions left in "created" longer than this are reported as expired
CHECKOUT_SESSION_HOURS = int(os.environ.get("CHECKOUT_SESSION_HOURS", "24"))

# Shared secret the payment provider sends in X-Webhook-Secret
WEBHOOK_SECRET = os.environ.get("WEBHOOK_SECRET", "").strip()

# CORS origins (expand for staging/prod)
CORS_ORIGINS = [
    "http://localhost:8501",  # Streamlit default
    "http://127.0.0.1:8501",
]

if IS_STAGING or IS_PROD:
    extra_origins = os.environ.get("CORS_ORIGINS", "")
    if extra_origins:
        CORS_ORIGINS.extend(o.strip() for o in extra_origins.split(",") if o.strip())

print(f"[CONFIG] Environment: {ENV}")
print(f"[CONFIG] Database: SQLite ({DATABASE_PATH})")
print(f"[CONFIG] Access token: {ACCESS_TOKEN_MINUTES} minutes")
print(f"[CONFIG] Trial window: {LICENSE_TRIAL_WINDOW_DAYS} days")
print(f"[CONFIG] Webhook secret: {'configured' if WEBHOOK_SECRET else 'NOT configured'}")
