"""
backend/dependencies.py

Reusable FastAPI dependencies for the licensing endpoints.
"""

from __future__ import annotations

import hmac
from datetime import datetime
from typing import Optional

from fastapi import Header, HTTPException

try:
    from backend.config import IS_DEV
    from backend.licensing import utcnow
    from backend import config
except ModuleNotFoundError:
    from config import IS_DEV
    from licensing import utcnow
    import config


def get_now() -> datetime:
    """
    Current instant for request handlers.

    All expiry math goes through this dependency so tests can pin the clock:
        app.dependency_overrides[get_now] = lambda: fixed_instant
    """
    return utcnow()


def require_webhook_secret(
    x_webhook_secret: Optional[str] = Header(default=None),
) -> None:
    """
    Trust check for server-to-server payment webhooks.

    The provider sends the shared secret in X-Webhook-Secret. Without a
    configured secret the webhook is only accepted in dev.

    Raises:
        HTTPException(401): Secret missing or wrong
        HTTPException(503): No secret configured outside dev
    """
    expected = config.WEBHOOK_SECRET
    if not expected:
        if IS_DEV:
            print("[WEBHOOK] WEBHOOK_SECRET not set - accepting unauthenticated webhook (DEV only)")
            return
        print("[WEBHOOK] WEBHOOK_SECRET not configured - rejecting webhook")
        raise HTTPException(status_code=503, detail="Webhook not configured")

    if not x_webhook_secret or not hmac.compare_digest(x_webhook_secret.encode(), expected.encode()):
        print("[WEBHOOK] Rejected webhook with missing or invalid secret")
        raise HTTPException(status_code=401, detail="Invalid webhook secret")
