# ---------------------------------------------------------
# backend/main.py
# Rentdesk - Licensing Backend
#
# Run: uvicorn backend.main:app --reload (from repo root)
#
# - FastAPI + SQLite
# - /license-verify        : evaluate the caller's license
# - /checkout-session      : start a plan purchase
# - /check-payment-status  : poll a checkout session
# - /payment-webhook       : payment provider settles a payment
# ---------------------------------------------------------

from __future__ import annotations

import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware

# Import local modules (robust fallback for different run contexts)
try:
    from backend.auth_context import (
        AuthContext,
        create_access_token,
        hash_password,
        require_auth_context,
        verify_password,
    )
    from backend.checkout import create_checkout_session, get_payment_status, list_plans
    from backend.config import CORS_ORIGINS, IS_DEV, IS_PROD, SIGNUP_TRIAL_DAYS
    from backend.db import get_db, get_db_connection
    from backend.dependencies import get_now, require_webhook_secret
    from backend.errors import AccountNotFound, LicenseError, to_http
    from backend.license_store import create_entitlement, list_entitlements, to_iso, write_transaction
    from backend.licensing import verify_license
    from backend.migrate import run_migrations
    from backend.models import (
        CheckoutSessionResponse,
        LicenseVerifyResponse,
        LoginRequest,
        PaymentStatusResponse,
        PlanListResponse,
        RegisterRequest,
        TokenResponse,
        WebhookResponse,
    )
    from backend.settlement import settle_payload
except ModuleNotFoundError:
    from auth_context import (
        AuthContext,
        create_access_token,
        hash_password,
        require_auth_context,
        verify_password,
    )
    from checkout import create_checkout_session, get_payment_status, list_plans
    from config import CORS_ORIGINS, IS_DEV, IS_PROD, SIGNUP_TRIAL_DAYS
    from db import get_db, get_db_connection
    from dependencies import get_now, require_webhook_secret
    from errors import AccountNotFound, LicenseError, to_http
    from license_store import create_entitlement, list_entitlements, to_iso, write_transaction
    from licensing import verify_license
    from migrate import run_migrations
    from models import (
        CheckoutSessionResponse,
        LicenseVerifyResponse,
        LoginRequest,
        PaymentStatusResponse,
        PlanListResponse,
        RegisterRequest,
        TokenResponse,
        WebhookResponse,
    )
    from settlement import settle_payload


@asynccontextmanager
async def lifespan(app: FastAPI):
    with get_db_connection() as conn:
        run_migrations(conn)
    print("[STARTUP] Database ready")
    yield


app = FastAPI(title="Rentdesk Licensing Backend", version="0.1", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS if IS_PROD else ["*"],  # Restrict origins in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# API ENDPOINT CLASSIFICATION & SECURITY MODEL
# ============================================================================
#
# [PUBLIC]
#   • /health, /auth/register, /auth/login, /plans
#
# [AUTH_ONLY] - Bearer token resolved by require_auth_context()
#   • /license-verify        - read-only license snapshot
#   • /checkout-session      - create a purchase attempt for the caller
#   • /check-payment-status  - only sessions owned by the caller (404 otherwise)
#
# [SERVER_TO_SERVER] - X-Webhook-Secret, never called by the client
#   • /payment-webhook       - the only writer of license expiration
#
# [DEV_ONLY]
#   • /admin/licenses        - list license state for all accounts
#
# ============================================================================

@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


# ---------------------------------------------------------
# Auth
# ---------------------------------------------------------
@app.post("/auth/register", response_model=TokenResponse)
def register(
    req: RegisterRequest,
    conn: sqlite3.Connection = Depends(get_db),
    now: datetime = Depends(get_now),
):
    email_norm = req.email.strip().lower()
    trial_expires = now + timedelta(days=SIGNUP_TRIAL_DAYS)

    try:
        with write_transaction(conn):
            cur = conn.execute(
                "INSERT INTO accounts (name, created_at) VALUES (?, ?)",
                (req.account_name, to_iso(now)),
            )
            account_id = cur.lastrowid
            cur = conn.execute(
                "INSERT INTO users (email, password_hash, account_id, created_at) VALUES (?, ?, ?, ?)",
                (email_norm, hash_password(req.password), account_id, to_iso(now)),
            )
            user_id = cur.lastrowid
            create_entitlement(conn, account_id, expires_at=trial_expires, now=now, is_trial=True)
    except sqlite3.IntegrityError as e:
        print(f"[REGISTER] IntegrityError: {e}")
        raise HTTPException(status_code=400, detail="Email already registered")

    print(f"[REGISTER] Account created: account_id={account_id}, user_id={user_id}, "
          f"trial_until={to_iso(trial_expires)}")

    access_token = create_access_token({"sub": str(user_id), "account_id": account_id})
    return TokenResponse(
        access_token=access_token,
        user={"id": user_id, "email": email_norm, "account_id": account_id},
    )


@app.post("/auth/login", response_model=TokenResponse)
def login(req: LoginRequest, conn: sqlite3.Connection = Depends(get_db)):
    email_norm = req.email.strip().lower()
    row = conn.execute(
        "SELECT id, email, password_hash, account_id, is_active FROM users WHERE email = ?",
        (email_norm,),
    ).fetchone()

    if not row or not verify_password(req.password, row["password_hash"]):
        print("[LOGIN] Invalid credentials")
        raise HTTPException(status_code=401, detail="Invalid credentials")

    if not row["is_active"]:
        raise HTTPException(status_code=401, detail="Account inactive")

    access_token = create_access_token({"sub": str(row["id"]), "account_id": row["account_id"]})
    print(f"[LOGIN] user_id={row['id']}, account_id={row['account_id']}")
    return TokenResponse(
        access_token=access_token,
        user={"id": row["id"], "email": row["email"], "account_id": row["account_id"]},
    )


# ---------------------------------------------------------
# License verification
# ---------------------------------------------------------
@app.post("/license-verify", response_model=LicenseVerifyResponse)
def license_verify(
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """
    Evaluate the caller's license at the current instant.

    Side-effect free; the client caches the result for a few minutes.
    """
    try:
        snapshot = verify_license(conn, ctx.account_id, now)
    except AccountNotFound:
        # Every account gets a license row at signup
        raise HTTPException(status_code=500, detail="License record missing - this is a server error")
    except sqlite3.Error as e:
        print(f"[LICENSE] Store error: {type(e).__name__}: {e}")
        raise HTTPException(status_code=500, detail="License store unavailable")

    return snapshot.to_response()


# ---------------------------------------------------------
# Plans & checkout
# ---------------------------------------------------------
@app.get("/plans", response_model=PlanListResponse)
def get_plans(conn: sqlite3.Connection = Depends(get_db)):
    plans = []
    for plan in list_plans(conn):
        item = plan.summary()
        item["provider"] = plan.provider
        item["provider_link"] = plan.provider_link
        plans.append(item)
    return {"plans": plans}


@app.post("/checkout-session", response_model=CheckoutSessionResponse)
def checkout_session(
    payload: Optional[Dict[str, Any]] = Body(default=None),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_db),
    now: datetime = Depends(get_now),
):
    plan_id = (payload or {}).get("planId")
    try:
        session, plan = create_checkout_session(conn, ctx.account_id, plan_id, now)
    except LicenseError as e:
        raise to_http(e)

    return {
        "sessionId": session.id,
        "providerLink": plan.provider_link,
        "plan": plan.summary(),
    }


@app.get("/check-payment-status", response_model=PaymentStatusResponse)
def check_payment_status(
    session_id: Optional[str] = Query(default=None, alias="sessionId"),
    ctx: AuthContext = Depends(require_auth_context),
    conn: sqlite3.Connection = Depends(get_db),
    now: datetime = Depends(get_now),
):
    try:
        return get_payment_status(conn, ctx.account_id, session_id, now)
    except LicenseError as e:
        raise to_http(e)


# ---------------------------------------------------------
# Payment webhook
# ---------------------------------------------------------
@app.post(
    "/payment-webhook",
    response_model=WebhookResponse,
    dependencies=[Depends(require_webhook_secret)],
)
async def payment_webhook(
    request: Request,
    conn: sqlite3.Connection = Depends(get_db),
    now: datetime = Depends(get_now),
):
    """
    Extend a license after the payment provider confirms a payment.

    Errors are returned to the provider so its retry policy redelivers;
    redelivery is safe because settlements are deduplicated by payment_id.
    """
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid JSON body")

    if IS_DEV:
        # Never echo the full body; it may carry provider data
        print(f"[WEBHOOK] Received: user_id={payload.get('user_id') if isinstance(payload, dict) else None}, "
              f"payment_id={payload.get('payment_id') if isinstance(payload, dict) else None}")

    try:
        result = await run_in_threadpool(settle_payload, conn, payload, now)
    except LicenseError as e:
        raise to_http(e)

    return result.to_response()


# ---------------------------------------------------------
# Admin (dev-only)
# ---------------------------------------------------------
@app.get("/admin/licenses")
def admin_list_licenses(conn: sqlite3.Connection = Depends(get_db)):
    if not IS_DEV:
        raise HTTPException(status_code=403, detail="Admin endpoints only available in dev")
    return {"licenses": list_entitlements(conn)}
