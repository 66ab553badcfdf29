import os

# No real MongoDB during tests; every handler gets the in-memory database below.
os.environ["DATABASE_URL"] = ""

import mongomock
import pytest
from fastapi.testclient import TestClient

import identity
import main
import orders
from config import Settings, get_settings
from database import ensure_indexes, get_db
from payments import PaymentProvider

ADMIN_EMAIL = "owner@printshop.test"
KEY_ID = "rzp_test_key"
KEY_SECRET = "rzp_test_secret"


class FakeProvider(PaymentProvider):
    key_id = KEY_ID

    def __init__(self, amount_delta=0, fail=False):
        self.calls = []
        self.amount_delta = amount_delta
        self.fail = fail

    def create_order(self, amount, currency, receipt):
        self.calls.append({"amount": amount, "currency": currency, "receipt": receipt})
        if self.fail:
            raise ConnectionError("gateway unreachable")
        return {"id": f"order_fake_{len(self.calls)}", "amount": amount + self.amount_delta, "currency": currency}


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        database_url="",
        environment="development",
        admin_email=ADMIN_EMAIL,
        razorpay_key_id=KEY_ID,
        razorpay_key_secret=KEY_SECRET,
        smtp_host="",
        business_email="orders@printshop.test",
        upload_dir=str(tmp_path / "uploads"),
        bcrypt_rounds=4,
    )


@pytest.fixture
def db():
    database = mongomock.MongoClient(tz_aware=True)["printshop_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    sent = []

    def record(settings, to, subject, html, attachments=None):
        sent.append({"to": to, "subject": subject, "html": html, "attachments": attachments or []})
        return True

    monkeypatch.setattr(identity, "send_email", record)
    monkeypatch.setattr(orders, "send_email", record)
    return sent


@pytest.fixture
def client(db, settings, provider):
    # request counters live in process memory and would leak between tests
    main.limiter.reset()
    main.app.dependency_overrides[get_db] = lambda: db
    main.app.dependency_overrides[get_settings] = lambda: settings
    main.app.dependency_overrides[main.get_payment_provider] = lambda: provider
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


@pytest.fixture
def verified_user(db, settings):
    """Factory: a signed-up and OTP-verified customer; returns its session snapshot."""
    def make(email="maya@example.com", password="s3cret-pass", name="Maya", phone="+91 98765 43210"):
        result = identity.signup(db, settings, email, password, name, phone, "12 Mill Road")
        return identity.verify_otp(db, settings, email, result["dev_otp"])
    return make


@pytest.fixture
def auth_headers(client):
    """Factory: sign up and verify through the API, returning Authorization headers."""
    def make(email="maya@example.com", password="s3cret-pass"):
        resp = client.post("/api/auth/signup", json={
            "email": email,
            "password": password,
            "name": "Maya",
            "phone": "+91 98765 43210",
            "address": "12 Mill Road",
        })
        assert resp.status_code == 200
        resp = client.post("/api/auth/verify-otp", json={"email": email, "code": resp.json()["dev_otp"]})
        assert resp.status_code == 200
        return {"Authorization": resp.json()["token"]}
    return make


@pytest.fixture
def admin_headers(client):
    resp = client.post("/api/auth/request-otp", json={"email": ADMIN_EMAIL})
    assert resp.status_code == 200
    resp = client.post("/api/auth/verify-otp", json={"email": ADMIN_EMAIL, "code": resp.json()["dev_otp"]})
    assert resp.status_code == 200
    assert resp.json()["user"]["is_admin"] is True
    return {"Authorization": f"Bearer {resp.json()['token']}"}
