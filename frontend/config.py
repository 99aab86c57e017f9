# frontend/config.py
# Environment-aware configuration for the Rentdesk dashboard

import os
from typing import Literal

# Environment detection - normalize to lowercase
_raw_env = os.environ.get("ENV", "production").lower()
ENV: Literal["local", "staging", "production"] = _raw_env if _raw_env in ("local", "staging", "production") else "production"  # type: ignore

IS_LOCAL = (ENV == "local")
IS_STAGING = (ENV == "staging")
IS_PROD = (ENV == "production")
IS_DEV = IS_LOCAL


def validate_api_url(url: str, env: str) -> None:
    """
    Validate API base URL according to environment security rules.

    Raises:
        ValueError: If URL violates security constraints for the environment
    """
    if not url:
        raise ValueError("API base URL cannot be empty")

    # Production/staging must use HTTPS and never localhost
    if env in ("staging", "production"):
        if not url.startswith("https://"):
            raise ValueError(f"Production/staging must use HTTPS. Got: {url}")
        if "127.0.0.1" in url or "localhost" in url:
            raise ValueError(f"Production/staging cannot use localhost URLs. Got: {url}")


def get_api_base_url() -> str:
    """
    Backend base URL: BACKEND_URL, else http://127.0.0.1:8000 when ENV == "local".

    Raises:
        RuntimeError: If production/staging environment has no configured URL
    """
    backend_url = os.environ.get("BACKEND_URL", "").strip()
    if backend_url:
        url = backend_url.rstrip("/")
        validate_api_url(url, ENV)
        return url

    if ENV == "local":
        return "http://127.0.0.1:8000"

    raise RuntimeError(
        f"Backend URL not configured for {ENV.upper()} environment. "
        f"Set BACKEND_URL (HTTPS) for the licensing backend."
    )


try:
    BACKEND_URL = get_api_base_url()
except RuntimeError as e:
    print(f"[CONFIG] CRITICAL: {e}")
    BACKEND_URL = ""  # Will cause errors on API calls, which is correct behavior

# License cache: how long a verification result is reused, and how often
# the background refresher re-checks regardless of page activity
LICENSE_CACHE_TTL_SECONDS = int(os.environ.get("LICENSE_CACHE_TTL_SECONDS", "600"))
# Upper bound on one /license-verify call; a timeout counts as "not licensed"
LICENSE_VERIFY_TIMEOUT = int(os.environ.get("LICENSE_VERIFY_TIMEOUT", "5"))
# Trial banner turns urgent at this many days left
TRIAL_URGENT_DAYS = int(os.environ.get("TRIAL_URGENT_DAYS", "3"))

ENABLE_DEBUG_UI = IS_DEV

print(f"[CONFIG] Environment: {ENV}")
print(f"[CONFIG] Backend URL: {BACKEND_URL}")
print(f"[CONFIG] License cache TTL: {LICENSE_CACHE_TTL_SECONDS}s")
