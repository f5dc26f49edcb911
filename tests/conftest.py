"""
Pytest configuration for the payment core.

Provides fixtures for:
- A fresh file-backed SQLite database per test
- A fake Paystack API behind httpx.MockTransport
- A FastAPI TestClient with db, gateway and settings overridden
- Bearer tokens and webhook signatures
"""
from __future__ import annotations

import json
import os
import tempfile
import time
from decimal import Decimal
from typing import Callable, Optional
from urllib.parse import unquote

# Must be set before coursepay is imported: the module-level engine reads it
_TMP_DIR = tempfile.mkdtemp(prefix="coursepay-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP_DIR, 'app.db')}")
os.environ.setdefault("LOG_DIR", os.path.join(_TMP_DIR, "logs"))

import httpx
import jwt
import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from coursepay.config import Settings, get_settings
from coursepay.database import build_engine, get_db, init_db
from coursepay.main import app
from coursepay.models.payment import ContentType, PaymentRecord
from coursepay.routes.payment import get_gateway_client
from coursepay.services.gateway_client import PaystackClient
from coursepay.services.payment_ledger import PaymentLedger
from coursepay.utils.hashing import hmac_sha512_hex

PAYSTACK_SECRET = "sk_test_4f1c2d"
JWT_SECRET = "jwt-test-secret-with-enough-length-for-hs256"
GATEWAY_BASE_URL = "https://api.paystack.test"


class FakePaystack:
    """In-memory Paystack transaction API for httpx.MockTransport.

    Initialized transactions start ``abandoned`` like real checkouts; tests
    move them with ``settle``.
    """

    def __init__(self) -> None:
        self.transactions: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.initialize_response: Optional[httpx.Response] = None
        self.verify_response: Optional[httpx.Response] = None
        self.fail_with: Optional[type[httpx.HTTPError]] = None

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with is not None:
            raise self.fail_with("simulated gateway failure", request=request)

        path = request.url.path
        if request.method == "POST" and path == "/transaction/initialize":
            if self.initialize_response is not None:
                return self.initialize_response
            body = json.loads(request.content)
            reference = body["reference"]
            self.transactions.setdefault(reference, {
                "reference": reference,
                "status": "abandoned",
                "amount": body["amount"],
                "currency": body["currency"],
            })
            return httpx.Response(200, json={
                "status": True,
                "message": "Authorization URL created",
                "data": {
                    "authorization_url": f"https://checkout.paystack.test/{reference[-6:]}",
                    "access_code": f"ac_{reference[-6:]}",
                    "reference": reference,
                },
            })

        if request.method == "GET" and path.startswith("/transaction/verify/"):
            if self.verify_response is not None:
                return self.verify_response
            reference = unquote(path.rsplit("/", 1)[1])
            transaction = self.transactions.get(reference)
            if transaction is None:
                return httpx.Response(400, json={"status": False, "message": "Transaction reference not found"})
            return httpx.Response(200, json={
                "status": True,
                "message": "Verification successful",
                "data": dict(transaction),
            })

        return httpx.Response(404, json={"status": False, "message": "Not found"})

    def settle(self, payment: PaymentRecord, status: str = "success", amount: Optional[int] = None,
               currency: Optional[str] = None) -> dict:
        """Record the gateway-side outcome for a payment's reference."""
        data = {
            "reference": payment.reference,
            "status": status,
            "amount": amount if amount is not None else int(Decimal(str(payment.amount)) * 100),
            "currency": currency or payment.currency,
        }
        self.transactions[payment.reference] = data
        return data

    def calls(self, prefix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.startswith(prefix)]


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    return Settings(
        DATABASE_URL=f"sqlite:///{tmp_path / 'test.db'}",
        PAYSTACK_SECRET_KEY=PAYSTACK_SECRET,
        PAYSTACK_BASE_URL=GATEWAY_BASE_URL,
        GATEWAY_TIMEOUT_SECONDS=2.0,
        AUTH_JWT_SECRET=JWT_SECRET,
        CALLBACK_BASE_URL="https://learn.example.com",
        LOG_DIR=str(tmp_path / "logs"),
    )


@pytest.fixture
def engine(test_settings):
    engine = build_engine(test_settings.DATABASE_URL, timeout=30.0)
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_paystack() -> FakePaystack:
    return FakePaystack()


@pytest.fixture
def gateway(fake_paystack, test_settings):
    client = PaystackClient.from_settings(test_settings, transport=httpx.MockTransport(fake_paystack.handle))
    yield client
    client.close()


@pytest.fixture
def make_payment(db) -> Callable[..., PaymentRecord]:
    """Create and commit a pending payment directly through the ledger."""

    def _make(user_id="user-1", content_id="course-1", content_type=ContentType.COURSE,
              amount=5000, currency="KES") -> PaymentRecord:
        payment = PaymentLedger(db).create(user_id, content_id, content_type, amount, currency)
        db.commit()
        return payment

    return _make


@pytest.fixture
def make_token() -> Callable[..., str]:
    def _make(user_id="user-1", role="authenticated", email="buyer@example.com",
              expires_in=3600, secret=JWT_SECRET, audience="authenticated") -> str:
        claims = {"sub": user_id, "role": role, "email": email, "exp": int(time.time()) + expires_in}
        if audience:
            claims["aud"] = audience
        return jwt.encode(claims, secret, algorithm="HS256")

    return _make


@pytest.fixture
def auth_headers(make_token) -> Callable[..., dict]:
    def _headers(user_id="user-1", role="authenticated") -> dict:
        return {"Authorization": f"Bearer {make_token(user_id=user_id, role=role)}"}

    return _headers


@pytest.fixture
def sign() -> Callable[[bytes], str]:
    def _sign(raw_body: bytes, secret: str = PAYSTACK_SECRET) -> str:
        return hmac_sha512_hex(raw_body, secret)

    return _sign


@pytest.fixture
def webhook_body() -> Callable[..., bytes]:
    def _body(payment: PaymentRecord, event: str = "charge.success", status: str = "success",
              amount: Optional[int] = None, currency: Optional[str] = None) -> bytes:
        envelope = {
            "event": event,
            "data": {
                "id": 302961,
                "reference": payment.reference,
                "status": status,
                "amount": amount if amount is not None else int(Decimal(str(payment.amount)) * 100),
                "currency": currency or payment.currency,
                "channel": "card",
                "customer": {"email": "buyer@example.com"},
            },
        }
        return json.dumps(envelope).encode("utf-8")

    return _body


@pytest.fixture
def client(session_factory, gateway, test_settings):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_gateway_client] = lambda: gateway
    app.dependency_overrides[get_settings] = lambda: test_settings
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
