"""
Smoke Test for the License Flow - Trial, Checkout, Webhook Settlement

Tests:
1. Register a new account (starts a 14-day trial)
2. /license-verify reports a valid trial
3. Create a checkout session for the monthly plan
4. Deliver the provider webhook; license is extended
5. /check-payment-status reports the session as paid
6. Redeliver the same webhook (same payment_id); nothing changes
7. A second account cannot read the first account's session (404)

Run: python smoke_test_license_flow.py

Requirements:
- Backend running on localhost:8000 (ENV=local)
- WEBHOOK_SECRET exported with the same value as the backend (or unset in local)
"""

import os
import sys
import time
from typing import Optional, Dict, Any

import requests

BASE_URL = os.environ.get("BACKEND_URL", "http://localhost:8000").rstrip("/")
WEBHOOK_SECRET = os.environ.get("WEBHOOK_SECRET", "")


class TestResult:
    def __init__(self):
        self.passed = 0
        self.failed = 0

    def check(self, ok: bool, name: str, detail: str = ""):
        if ok:
            self.passed += 1
            print(f"✅ PASS: {name}")
        else:
            self.failed += 1
            print(f"❌ FAIL: {name}")
        if detail:
            print(f"  └─ {detail}")
        return ok

    def summary(self):
        print("\n" + "=" * 60)
        print(f"SMOKE TEST SUMMARY: {self.passed} passed, {self.failed} failed")
        print("=" * 60)
        return self.failed == 0


def register(email: str, account_name: str) -> Optional[Dict[str, Any]]:
    resp = requests.post(f"{BASE_URL}/auth/register", json={
        "email": email,
        "password": "password123",
        "account_name": account_name,
    }, timeout=10)
    if resp.status_code != 200:
        return None
    data = resp.json()
    return {
        "token": data["access_token"],
        "account_id": data["user"]["account_id"],
        "headers": {"Authorization": f"Bearer {data['access_token']}"},
    }


def verify(user: Dict[str, Any]) -> Dict[str, Any]:
    resp = requests.post(f"{BASE_URL}/license-verify", headers=user["headers"], timeout=10)
    resp.raise_for_status()
    return resp.json()


def deliver_webhook(payload: Dict[str, Any]) -> requests.Response:
    headers = {"X-Webhook-Secret": WEBHOOK_SECRET} if WEBHOOK_SECRET else {}
    return requests.post(f"{BASE_URL}/payment-webhook", json=payload, headers=headers, timeout=10)


def main():
    result = TestResult()
    suffix = int(time.time())

    print("=" * 60)
    print("SMOKE TEST: License flow")
    print("=" * 60)

    user = register(f"smoke_a_{suffix}@test.com", "Smoke A")
    other = register(f"smoke_b_{suffix}@test.com", "Smoke B")
    if not result.check(bool(user and other), "Register", "two fresh accounts"):
        result.summary()
        return 1

    lic = verify(user)
    result.check(lic["valid"] and lic["is_trial"] and lic["days_remaining"] == 14,
                 "Trial license", f"{lic}")

    resp = requests.post(f"{BASE_URL}/checkout-session", json={"planId": "monthly"},
                         headers=user["headers"], timeout=10)
    if not result.check(resp.status_code == 200, "Checkout session", f"HTTP {resp.status_code}"):
        result.summary()
        return 1
    session = resp.json()

    payload = {
        "user_id": user["account_id"],
        "days_to_add": session["plan"]["days_duration"],
        "payment_method": "pix",
        "payment_id": f"smoke_{suffix}",
        "amount": session["plan"]["price_cents"],
        "session_id": session["sessionId"],
    }
    resp = deliver_webhook(payload)
    first = resp.json() if resp.status_code == 200 else {}
    result.check(resp.status_code == 200 and first.get("applied") is True,
                 "Webhook settlement", f"HTTP {resp.status_code} {first}")

    lic = verify(user)
    result.check(lic["valid"] and not lic["is_trial"] and lic["days_remaining"] == 44,
                 "License extended", f"{lic}")

    resp = requests.get(f"{BASE_URL}/check-payment-status", params={"sessionId": session["sessionId"]},
                        headers=user["headers"], timeout=10)
    result.check(resp.status_code == 200 and resp.json().get("status") == "paid",
                 "Payment status", f"HTTP {resp.status_code}")

    resp = deliver_webhook(payload)
    again = resp.json() if resp.status_code == 200 else {}
    result.check(resp.status_code == 200 and again.get("applied") is False
                 and again.get("new_expiration") == first.get("new_expiration"),
                 "Duplicate delivery", f"{again}")

    resp = requests.get(f"{BASE_URL}/check-payment-status", params={"sessionId": session["sessionId"]},
                        headers=other["headers"], timeout=10)
    result.check(resp.status_code == 404, "Session isolation", f"HTTP {resp.status_code}")

    return 0 if result.summary() else 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\nTest interrupted by user")
        sys.exit(1)
    except requests.exceptions.RequestException as e:
        print(f"\n\n❌ ERROR: {e}")
        sys.exit(1)
