"""
backend/auth_context.py

Authentication primitives for FastAPI dependency injection.

Contains:
- AuthContext: Immutable identity derived from the bearer token
- require_auth_context: FastAPI dependency for auth enforcement
- create_access_token / verify_token: JWT helpers
- hash_password / verify_password: credential helpers

This module MUST NOT import backend.main to avoid circular dependencies.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import sqlite3
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel

try:
    from backend.config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_MINUTES, IS_DEV
    from backend.db import get_db
except ModuleNotFoundError:
    from config import SECRET_KEY, ALGORITHM, ACCESS_TOKEN_MINUTES, IS_DEV
    from db import get_db

# auto_error=False so a missing header is a 401 from us, not FastAPI's default
security = HTTPBearer(auto_error=False)

PBKDF2_ITERATIONS = 200_000


# ---------------------------------------------------------
# Passwords
# ---------------------------------------------------------
def hash_password(password: str) -> str:
    """Salted PBKDF2-SHA256, stored as "salt$hexdigest"."""
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return f"{salt}${digest.hex()}"


def verify_password(password: str, password_hash: str) -> bool:
    try:
        salt, expected = password_hash.split("$", 1)
    except ValueError:
        return False
    digest = hashlib.pbkdf2_hmac("sha256", password.encode(), salt.encode(), PBKDF2_ITERATIONS)
    return hmac.compare_digest(digest.hex(), expected)


# ---------------------------------------------------------
# JWT Tokens
# ---------------------------------------------------------
def create_access_token(data: dict, minutes: int = ACCESS_TOKEN_MINUTES) -> str:
    payload = dict(data)
    payload["exp"] = datetime.now(timezone.utc) + timedelta(minutes=minutes)
    return jwt.encode(payload, SECRET_KEY, algorithm=ALGORITHM)


def verify_token(token: str) -> dict:
    """
    Verify JWT access token and return decoded payload.

    Raises:
        HTTPException(401): If token is expired or invalid
    """
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")


# ---------------------------------------------------------
# AuthContext
# ---------------------------------------------------------
class AuthContext(BaseModel):
    """
    Identity resolved from the bearer token.
    This is the ONLY source of truth for account_id in protected endpoints.
    Never trust account_id/user_id from request bodies or query params.
    """
    user_id: int
    account_id: int
    email: str


def resolve_token(conn: sqlite3.Connection, token: str) -> AuthContext:
    """
    Resolve a bearer token to the user and account it belongs to.

    Raises:
        HTTPException(401): invalid/expired token, unknown or inactive user
    """
    payload = verify_token(token)
    user_id = payload.get("sub")

    if not user_id:
        print("[AUTH] Missing user_id in token payload")
        raise HTTPException(status_code=401, detail="Invalid token payload")

    user_row = conn.execute(
        "SELECT id, email, account_id, is_active FROM users WHERE id = ?",
        (user_id,),
    ).fetchone()

    if not user_row:
        print(f"[AUTH] User not found: user_id={user_id}")
        raise HTTPException(status_code=401, detail="User not found")

    if not user_row["is_active"] or not user_row["account_id"]:
        print(f"[AUTH] Inactive user or no account: user_id={user_id}")
        raise HTTPException(status_code=401, detail="Account inactive")

    ctx = AuthContext(
        user_id=user_row["id"],
        account_id=user_row["account_id"],
        email=user_row["email"],
    )

    if IS_DEV:
        print(f"[AUTH] Authenticated: user_id={ctx.user_id}, account_id={ctx.account_id}")

    return ctx


def require_auth_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    conn: sqlite3.Connection = Depends(get_db),
) -> AuthContext:
    """
    FastAPI dependency for protected endpoints.

    Usage:
        @app.post("/license-verify")
        def license_verify(ctx: AuthContext = Depends(require_auth_context)):
            ...

    Raises:
        HTTPException(401): Missing header, invalid token, or unknown user
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return resolve_token(conn, credentials.credentials)
