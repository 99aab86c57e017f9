"""
backend/errors.py

Error taxonomy for the licensing subsystem.

Domain code raises these; route handlers in main.py translate them into
HTTPException with the matching status code (auth_context.py raises its 401s
directly, as FastAPI dependencies do). 404 and 400 errors are terminal
for the request. StoreFailure is transient and the
caller (client cache or payment provider) is expected to retry.
"""

from __future__ import annotations

from fastapi import HTTPException


class LicenseError(Exception):
    """Base class for licensing errors. Subclasses set status_code."""
    status_code = 500
    default_detail = "Internal server error"

    def __init__(self, detail: str = ""):
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class Forbidden(LicenseError):
    # Rendered as 404 so foreign session ids look the same as unknown ones
    status_code = 404
    default_detail = "Session not found"


class NotFound(LicenseError):
    status_code = 404
    default_detail = "Not found"


class AccountNotFound(NotFound):
    default_detail = "User not found"


class PlanNotFound(NotFound):
    default_detail = "Plan not found"


class SessionNotFound(NotFound):
    default_detail = "Session not found"


class InvalidPayload(LicenseError):
    status_code = 400
    default_detail = "Invalid payload"


class StoreFailure(LicenseError):
    status_code = 500
    default_detail = "License store unavailable"


def to_http(exc: LicenseError) -> HTTPException:
    """Convert a licensing error into the HTTPException FastAPI renders."""
    return HTTPException(status_code=exc.status_code, detail=exc.detail)
