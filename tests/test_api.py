from conftest import ADMIN_EMAIL, KEY_SECRET
from security import payment_signature

SIGNUP = {
    "email": "Maya@Example.com",
    "password": "s3cret-pass",
    "name": "Maya",
    "phone": "+91 98765 43210",
    "address": "12 Mill Road",
}


def test_root_and_health(client):
    assert client.get("/").json()["status"] == "ok"
    assert client.get("/healthz").json() == {"ok": True}


def test_signup_then_login_requires_otp(client):
    resp = client.post("/api/auth/signup", json=SIGNUP)
    assert resp.status_code == 200
    body = resp.json()
    assert body["requires_otp"] is True
    assert "token" not in body

    login = {"email": SIGNUP["email"], "password": SIGNUP["password"]}
    assert client.post("/api/auth/login", json=login).status_code == 403

    resp = client.post("/api/auth/verify-otp", json={"email": "maya@example.com", "code": body["dev_otp"]})
    assert resp.status_code == 200
    assert resp.json()["user"]["email_verified"] is True

    resp = client.post("/api/auth/login", json=login)
    assert resp.status_code == 200
    user = resp.json()["user"]
    assert set(user) == {"id", "email", "name", "phone", "address", "is_admin", "email_verified", "phone_verified"}
    assert "password_hash" not in user


def test_signup_errors(client):
    assert client.post("/api/auth/signup", json={**SIGNUP, "address": ""}).status_code == 400
    assert client.post("/api/auth/signup", json=SIGNUP).status_code == 200
    resp = client.post("/api/auth/signup", json={**SIGNUP, "email": "MAYA@example.com"})
    assert resp.status_code == 409
    assert resp.json() == {"detail": "Email already registered"}


def test_malformed_body_is_a_bad_request(client):
    resp = client.post("/api/auth/login", content=b"{not json", headers={"Content-Type": "application/json"})
    assert resp.status_code == 400


def test_login_failures(client, auth_headers):
    auth_headers()
    resp = client.post("/api/auth/login", json={"email": "maya@example.com", "password": "nope"})
    assert resp.status_code == 401
    resp = client.post("/api/auth/login", json={"email": "ghost@example.com", "password": "nope"})
    assert resp.status_code == 401
    assert client.post("/api/auth/login", json={"email": "maya@example.com"}).status_code == 400


def test_admin_password_login_is_forbidden(client, admin_headers):
    resp = client.post("/api/auth/login", json={"email": ADMIN_EMAIL, "password": "whatever"})
    assert resp.status_code == 403


def test_otp_endpoints(client):
    assert client.post("/api/auth/request-otp", json={"email": "ghost@example.com"}).status_code == 404
    assert client.post("/api/auth/request-otp", json={}).status_code == 400

    code = client.post("/api/auth/signup", json=SIGNUP).json()["dev_otp"]
    for _ in range(5):
        resp = client.post("/api/auth/verify-otp", json={"email": "maya@example.com", "code": "000000"})
        assert resp.status_code == 401
    resp = client.post("/api/auth/verify-otp", json={"email": "maya@example.com", "code": code})
    assert resp.status_code == 429

    resp = client.post("/api/auth/request-otp", json={"email": "maya@example.com"})
    assert resp.status_code == 200
    resp = client.post("/api/auth/verify-otp", json={"email": "maya@example.com", "code": resp.json()["dev_otp"]})
    assert resp.status_code == 200


def test_me_logout_and_profile(client, auth_headers):
    headers = auth_headers()
    resp = client.get("/api/auth/me", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["user"]["email"] == "maya@example.com"

    resp = client.post("/api/auth/update-profile", headers=headers,
                       json={"name": "Maya K", "phone": "022 555 0101", "address": "7 Dock Street"})
    assert resp.status_code == 200
    assert resp.json()["user"]["phone"] == "0225550101"
    assert client.get("/api/auth/me", headers=headers).json()["user"]["name"] == "Maya K"

    assert client.post("/api/auth/logout", headers=headers).status_code == 200
    assert client.get("/api/auth/me", headers=headers).status_code == 401
    assert client.get("/api/auth/me").status_code == 401


def test_is_admin_email_and_check_user(client, auth_headers):
    assert client.post("/api/auth/is-admin-email", json={"email": ADMIN_EMAIL.upper()}).json() == {"is_admin": True}
    assert client.post("/api/auth/is-admin-email", json={"email": "maya@example.com"}).json() == {"is_admin": False}

    auth_headers()
    resp = client.post("/api/auth/check-user", json={"email": "maya@example.com", "phone": "919876543210"})
    assert resp.json() == {"exists": True, "email_verified": True}
    assert client.post("/api/auth/check-user", json={"email": "maya@example.com"}).status_code == 400


def test_payment_flow_over_http(client, auth_headers, provider, db):
    headers = auth_headers()
    order_id = client.post("/api/orders", data={"total": "250"}, headers=headers).json()["order_id"]

    resp = client.post("/api/payments/razorpay/create", json={"order_id": order_id}, headers=headers)
    assert resp.status_code == 200
    intent = resp.json()
    assert intent["amount"] == 25000
    assert intent["currency"] == "INR"
    again = client.post("/api/payments/razorpay/create", json={"order_id": order_id}, headers=headers).json()
    assert again["provider_order_id"] == intent["provider_order_id"]

    verify = {
        "order_id": order_id,
        "razorpay_order_id": intent["provider_order_id"],
        "razorpay_payment_id": "pay_777",
        "razorpay_signature": "0" * 64,
    }
    assert client.post("/api/payments/razorpay/verify", json=verify, headers=headers).status_code == 401

    verify["razorpay_signature"] = payment_signature(KEY_SECRET, intent["provider_order_id"], "pay_777")
    resp = client.post("/api/payments/razorpay/verify", json=verify, headers=headers)
    assert resp.status_code == 200
    assert db["order"].find_one({})["payment_status"] == "paid"


def test_payment_endpoints_status_codes(client, auth_headers, settings):
    assert client.post("/api/payments/razorpay/create", json={"order_id": "x"}).status_code == 401

    headers = auth_headers()
    free = client.post("/api/orders", data={"total": "0"}, headers=headers).json()["order_id"]
    resp = client.post("/api/payments/razorpay/create", json={"order_id": free}, headers=headers)
    assert resp.status_code == 400
    assert "does not require payment" in resp.json()["detail"]

    resp = client.post("/api/payments/razorpay/create", json={"order_id": "5f1d7f0b2c3a4b5c6d7e8f90"}, headers=headers)
    assert resp.status_code == 404

    settings.razorpay_key_secret = ""
    resp = client.post("/api/payments/razorpay/create", json={"order_id": free}, headers=headers)
    assert resp.status_code == 501


def test_otp_requests_are_throttled_per_client(client, auth_headers):
    auth_headers()
    for _ in range(5):
        assert client.post("/api/auth/request-otp", json={"email": "maya@example.com"}).status_code == 200
    resp = client.post("/api/auth/request-otp", json={"email": "maya@example.com"})
    assert resp.status_code == 429
    assert resp.json() == {"detail": "Too many OTP requests. Please wait and try again."}

    # other routes keep their own budget
    assert client.post("/api/auth/is-admin-email", json={"email": "maya@example.com"}).status_code == 200
    assert client.get("/healthz").status_code == 200


def test_order_placement_is_throttled(client, auth_headers):
    headers = auth_headers()
    for _ in range(10):
        assert client.post("/api/orders", data={"total": "10"}, headers=headers).status_code == 200
    resp = client.post("/api/orders", data={"total": "10"}, headers=headers)
    assert resp.status_code == 429
    assert "Too many order requests" in resp.json()["detail"]
