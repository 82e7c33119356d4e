"""
End-to-end smoke run against a local API in sandbox gateway mode.

    BASE_URL=http://127.0.0.1:8080 python scripts/smoke_checkout.py

Creates a payment, waits for the poller to settle it, follows the redirect
return, then checks the unlock edge fires exactly once and a download grant
is issued. Optionally posts a signed webhook replay when
GATEWAY_WEBHOOK_SECRET is set.
"""
import os
import sys
import time

import requests

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from _webhook_signing import canonical_json_bytes, pawapay_signature_header  # noqa: E402
from security import create_access_token  # noqa: E402
from services.redaction import mask_phone  # noqa: E402


def die(message, code=1):
    print(message)
    sys.exit(code)


def step(message):
    print("\n==> " + message)


def request(method, url, headers=None, json_body=None, data=None, allow_failure=False, allow_redirects=True):
    try:
        resp = requests.request(
            method,
            url,
            headers=headers,
            json=json_body,
            data=data,
            allow_redirects=allow_redirects,
            timeout=30,
        )
    except requests.RequestException as exc:
        die("Request failed: %s" % exc)
    if resp.status_code >= 400 and not allow_failure:
        print("HTTP %s %s" % (resp.status_code, resp.reason))
        print(resp.text)
        sys.exit(1)
    return resp


def auth_headers(token):
    return {"Authorization": "Bearer %s" % token}


def wait_for_terminal(base_url, headers, deposit_id, timeout_s):
    deadline = time.time() + timeout_s
    while time.time() < deadline:
        resp = request("GET", base_url + "/v1/checkout/payments/" + deposit_id, headers=headers)
        status = resp.json().get("status")
        print("status=%s" % status)
        if status in ("completed", "failed", "timed_out"):
            return resp.json()
        time.sleep(2)
    die("Payment %s did not settle within %ss" % (deposit_id, timeout_s))


def main():
    base_url = os.getenv("BASE_URL", "http://127.0.0.1:8080").rstrip("/")
    phone = os.getenv("SMOKE_PHONE", "+243990000001")
    plan = os.getenv("SMOKE_PLAN", "pro")
    timeout_s = int(os.getenv("SMOKE_TIMEOUT_SECONDS", "60"))
    secret = os.getenv("GATEWAY_WEBHOOK_SECRET", "")

    token = os.getenv("SMOKE_TOKEN") or create_access_token("smoke-" + str(int(time.time())))
    headers = auth_headers(token)

    step("Health")
    print(request("GET", base_url + "/health").json())

    step("Plans")
    plans = request("GET", base_url + "/v1/checkout/plans").json()
    prices = {p["plan"]: p["amount"] for p in plans.get("plans", [])}
    if plan not in prices:
        die("Unknown plan %s (have %s)" % (plan, sorted(prices)))

    step("Create payment plan=%s phone=%s" % (plan, mask_phone(phone)))
    created = request(
        "POST",
        base_url + "/v1/checkout/payments",
        headers=headers,
        json_body={"plan": plan, "amount": prices[plan], "phone": phone},
    ).json()
    deposit_id = created["deposit_id"]
    print("deposit_id=%s status=%s" % (deposit_id, created["status"]))

    step("Resume returns the same intent")
    resumed = request(
        "POST",
        base_url + "/v1/checkout/payments",
        headers=headers,
        json_body={"plan": plan, "amount": prices[plan], "phone": phone},
    )
    if resumed.json().get("deposit_id") != deposit_id:
        die("Expected resume of %s, got %s" % (deposit_id, resumed.text))

    step("Wait for settlement")
    final = wait_for_terminal(base_url, headers, deposit_id, timeout_s)
    if final["status"] != "completed":
        die("Payment ended as %s: %s" % (final["status"], final.get("failure_reason")))

    step("Redirect return")
    resp = request(
        "GET",
        base_url + "/v1/checkout/return?depositId=%s&payment=success" % deposit_id,
        headers=headers,
        allow_redirects=False,
    )
    if resp.status_code != 303:
        die("Expected 303 from return, got %s" % resp.status_code)
    print("location=%s" % resp.headers.get("location"))

    step("Unlock fires once")
    first = request("GET", base_url + "/v1/checkout/unlock", headers=headers).json()
    second = request("GET", base_url + "/v1/checkout/unlock", headers=headers).json()
    if not first.get("unlocked") or not first.get("just_completed"):
        die("Expected unlock edge on first read: %s" % first)
    if second.get("just_completed"):
        die("Unlock edge fired twice: %s" % second)

    step("Download grant")
    grant = request("POST", base_url + "/v1/checkout/download", headers=headers).json()
    print("grant expires_at=%s reference=%s" % (grant.get("expires_at"), grant.get("reference")))

    if secret:
        step("Signed webhook replay is ignored")
        body = canonical_json_bytes({"depositId": deposit_id, "status": "COMPLETED"})
        wh_headers = pawapay_signature_header(secret, body)
        wh_headers["Content-Type"] = "application/json"
        ack = request("POST", base_url + "/v1/webhooks/pawapay", headers=wh_headers, data=body).json()
        if ack.get("applied"):
            die("Replay should not apply: %s" % ack)
        print(ack)

    step("Clear session")
    print(request("DELETE", base_url + "/v1/checkout/session", headers=headers).json())
    print("\nSmoke OK")


if __name__ == "__main__":
    main()
