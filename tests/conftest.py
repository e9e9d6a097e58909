import base64
import hashlib
import hmac
import json
import pathlib
import sys
import threading
import time
import zlib
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.x509.oid import NameOID
from fastapi.testclient import TestClient

# Ensure repository root is importable when pytest is invoked from other directories
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from paybridge.config import Settings
from paybridge.domain.accounts.models import Account, GenericFields, LegacyFields
from paybridge.domain.accounts.store import AccountStore
from paybridge.main import create_app
from paybridge.services.payments.reconciler import WebhookReconciler
from paybridge.services.payments.registry import ProviderRegistry


class InMemoryAccountStore(AccountStore):
    """AccountStore kept in a dict; mirrors the conditional write of the Supabase store."""

    def __init__(self, accounts: Optional[list[Account]] = None):
        self.accounts: dict[str, Account] = {a.id: a for a in (accounts or [])}
        self.writes: list[tuple[str, str]] = []
        self.fail_on: set[str] = set()

    def add(self, account: Account) -> Account:
        self.accounts[account.id] = account
        return account

    def _check(self, account_id: str, op: str) -> None:
        if account_id in self.fail_on:
            raise RuntimeError(f"write failed for {account_id}")
        self.writes.append((op, account_id))

    def get_account(self, account_id):
        account = self.accounts.get(account_id)
        return account.model_copy(deep=True) if account else None

    def get_account_by_provider_customer_id(self, provider, customer_id):
        for account in self.accounts.values():
            g = account.generic
            if g.payment_provider == provider and g.payment_customer_id == customer_id:
                return account.model_copy(deep=True)
            if provider == "card" and account.legacy.stripe_customer_id == customer_id:
                return account.model_copy(deep=True)
        return None

    def get_account_by_provider_subscription_id(self, provider, subscription_id):
        for account in self.accounts.values():
            g = account.generic
            if g.payment_provider == provider and g.payment_subscription_id == subscription_id:
                return account.model_copy(deep=True)
        return None

    def update_account_subscription(
        self,
        account_id: str,
        generic: GenericFields,
        occurred_at: Optional[datetime] = None,
        legacy: Optional[LegacyFields] = None,
    ) -> bool:
        account = self.accounts.get(account_id)
        if account is None:
            return False
        if occurred_at is not None and account.subscription_updated_at is not None:
            if account.subscription_updated_at > occurred_at:
                return False
        self._check(account_id, "update_account_subscription")
        account.generic = account.generic.model_copy(update=generic.model_dump(exclude_unset=True))
        if legacy is not None:
            account.legacy = legacy.model_copy()
        if occurred_at is not None:
            account.subscription_updated_at = occurred_at
        return True

    def link_billing_identity(self, account_id, provider, customer_id):
        self._check(account_id, "link_billing_identity")
        account = self.accounts[account_id]
        account.generic = account.generic.model_copy(
            update={"payment_provider": provider, "payment_customer_id": customer_id}
        )
        if provider == "card":
            account.legacy = account.legacy.model_copy(update={"stripe_customer_id": customer_id})

    def list_accounts_by_provider(self, provider):
        return [a.model_copy(deep=True) for a in self.accounts.values() if a.generic.payment_provider == provider]

    def list_accounts_with_legacy_customer(self):
        return [a.model_copy(deep=True) for a in self.accounts.values() if a.legacy.stripe_customer_id]

    def set_generic_fields(self, account_id, generic):
        self._check(account_id, "set_generic_fields")
        account = self.accounts[account_id]
        account.generic = account.generic.model_copy(update=generic.model_dump(exclude_unset=True))

    def set_legacy_fields(self, account_id, legacy):
        self._check(account_id, "set_legacy_fields")
        self.accounts[account_id].legacy = legacy.model_copy()


STRIPE_WEBHOOK_SECRET = "whsec_test_secret"
PAYPAL_WEBHOOK_ID = "WH-TEST-123"


@pytest.fixture
def settings():
    return Settings(
        default_payment_provider="card",
        base_url="https://app.example.com",
        http_timeout_sec=5,
        stripe_secret_key="sk_test_123",
        stripe_webhook_secret=STRIPE_WEBHOOK_SECRET,
        stripe_trial_days=14,
        paypal_client_id="paypal-client",
        paypal_client_secret="paypal-secret",
        paypal_webhook_id=PAYPAL_WEBHOOK_ID,
        paypal_env="sandbox",
        paypal_brand_name="Paybridge",
    )


@pytest.fixture
def store():
    return InMemoryAccountStore()


@pytest.fixture
def registry(store, settings):
    return ProviderRegistry(store=store, settings_loader=lambda: settings)


@pytest.fixture
def reconciler(registry, store, settings):
    return WebhookReconciler(registry, store, settings_loader=lambda: settings)


@pytest.fixture
def app_instance(store, registry, settings):
    return create_app(store=store, registry=registry, settings_loader=lambda: settings)


@pytest.fixture
def client(app_instance):
    with TestClient(app_instance) as c:
        yield c


def stripe_headers(payload: bytes, secret: str = STRIPE_WEBHOOK_SECRET, timestamp: Optional[int] = None) -> dict:
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode("utf-8") + payload
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return {"Stripe-Signature": f"t={timestamp},v1={signature}"}


PAYPAL_CERT_URL = "https://api.sandbox.paypal.com/v1/notifications/certs/CERT-TEST"


class PayPalSigner:
    """Self-signed RSA certificate standing in for PayPal's message-verification cert."""

    def __init__(self, valid_for: timedelta = timedelta(days=1)):
        self.key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "messageverificationcerts.paypal.com")])
        now = datetime.now(timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(self.key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now - timedelta(days=1))
            .not_valid_after(now + valid_for)
            .sign(self.key, hashes.SHA256())
        )
        self.cert_pem = cert.public_bytes(serialization.Encoding.PEM)
        self.loaded_urls: list[str] = []

    def load(self, url: str) -> bytes:
        self.loaded_urls.append(url)
        return self.cert_pem

    def headers(self, body: bytes, webhook_id: str = PAYPAL_WEBHOOK_ID, transmission_id: str = "tx-1") -> dict:
        transmission_time = "2024-05-01T10:00:00Z"
        crc = zlib.crc32(body) & 0xFFFFFFFF
        message = f"{transmission_id}|{transmission_time}|{webhook_id}|{crc}".encode("utf-8")
        signature = self.key.sign(message, padding.PKCS1v15(), hashes.SHA256())
        return {
            "PAYPAL-TRANSMISSION-ID": transmission_id,
            "PAYPAL-TRANSMISSION-TIME": transmission_time,
            "PAYPAL-TRANSMISSION-SIG": base64.b64encode(signature).decode("ascii"),
            "PAYPAL-CERT-URL": PAYPAL_CERT_URL,
            "PAYPAL-AUTH-ALGO": "SHA256withRSA",
        }


class FakeResponse:
    def __init__(self, status_code: int = 200, payload=None, reason: str = "OK"):
        self.status_code = status_code
        self.reason = reason
        self._payload = payload
        self.content = b"" if payload is None else json.dumps(payload).encode("utf-8")
        self.text = self.content.decode("utf-8")
        self.headers = {"content-type": "application/json"}

    def json(self):
        return self._payload


class FakePayPalHttp:
    """Stands in for requests.Session: answers by (method, path) and records calls."""

    def __init__(self, routes: Optional[dict] = None):
        self.routes = dict(routes or {})
        self.calls: list[dict] = []
        self.threads: list[threading.Thread] = []
        self.token_requests = 0

    def post(self, url, **kwargs):
        self.token_requests += 1
        return FakeResponse(200, {"access_token": "A21-token", "expires_in": 3600})

    def request(self, method, url, **kwargs):
        path = url.split(".paypal.com", 1)[1]
        self.threads.append(threading.current_thread())
        self.calls.append({"method": method, "path": path, **kwargs})
        answer = self.routes.get((method, path))
        if answer is None:
            return FakeResponse(404, {"name": "RESOURCE_NOT_FOUND"}, reason="Not Found")
        if isinstance(answer, Exception):
            raise answer
        status, payload = answer
        return FakeResponse(status, payload)


@pytest.fixture(scope="session")
def paypal_signer():
    return PayPalSigner()


@pytest.fixture
def paypal_http():
    return FakePayPalHttp()
