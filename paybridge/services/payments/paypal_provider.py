import base64
import json
import logging
import time
import zlib
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Callable, Mapping, Optional
from urllib.parse import quote, urlparse

import requests
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding

from paybridge.config import Settings, must_env
from paybridge.domain.accounts.models import Account
from paybridge.domain.accounts.store import AccountStore
from paybridge.services.payments.errors import (
    InvalidAccount,
    InvalidPayload,
    NoBillingIdentity,
    RemoteRejected,
    RemoteUnavailable,
)
from paybridge.services.payments.models import (
    CheckoutResult,
    Price,
    Product,
    SubscriptionChangeRecord,
    WebhookEvent,
    WebhookOutcome,
)
from paybridge.services.payments.provider import PaymentProvider
from paybridge.services.payments.status_mapping import normalize_status
from paybridge.services.payments.subscription_sync import apply_subscription_change

logger = logging.getLogger(__name__)

SUBSCRIPTION_EVENTS = (
    "BILLING.SUBSCRIPTION.ACTIVATED",
    "BILLING.SUBSCRIPTION.UPDATED",
    "BILLING.SUBSCRIPTION.CANCELLED",
    "BILLING.SUBSCRIPTION.SUSPENDED",
    "BILLING.SUBSCRIPTION.EXPIRED",
)
SIGNATURE_HEADERS = (
    "paypal-transmission-id",
    "paypal-transmission-time",
    "paypal-transmission-sig",
    "paypal-cert-url",
    "paypal-auth-algo",
)
ZERO_DECIMAL_CURRENCIES = frozenset({"HUF", "JPY", "TWD"})
_DAYS_PER_UNIT = {"DAY": 1, "WEEK": 7, "MONTH": 30, "YEAR": 365}
_TOKEN_EXPIRY_SKEW_SEC = 60


def to_minor_units(value: Any, currency: str) -> int:
    """PayPal sends decimal strings ("9.99"); round half-up to the minor unit."""
    try:
        amount = Decimal(str(value if value not in (None, "") else "0"))
    except InvalidOperation:
        return 0
    exponent = 0 if (currency or "").upper() in ZERO_DECIMAL_CURRENCIES else 2
    minor = (amount * (10 ** exponent)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return max(int(minor), 0)


def _parse_iso(value: Any) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _is_paypal_cert_url(url: str) -> bool:
    parsed = urlparse(url or "")
    host = (parsed.hostname or "").lower()
    return parsed.scheme == "https" and (host == "paypal.com" or host.endswith(".paypal.com"))


class PayPalPaymentProvider(PaymentProvider):
    """Wallet processor backed by the PayPal Subscriptions REST API."""

    name = "wallet"

    def __init__(
        self,
        settings: Settings,
        store: Optional[AccountStore] = None,
        session: Optional[requests.Session] = None,
        cert_loader: Optional[Callable[[str], bytes]] = None,
    ):
        self.settings = settings
        self.store = store
        self.base_url = settings.paypal_api_base
        self.http = session or requests.Session()
        self._cert_loader = cert_loader or self._download_certificate
        self._cert_cache: dict[str, x509.Certificate] = {}
        self._access_token: Optional[str] = None
        self._access_token_expires_at = 0.0

    # ---- transport ----------------------------------------------------------

    def _get_access_token(self) -> str:
        if self._access_token and time.monotonic() < self._access_token_expires_at:
            return self._access_token

        must_env("PAYPAL_CLIENT_ID", self.settings.paypal_client_id)
        must_env("PAYPAL_CLIENT_SECRET", self.settings.paypal_client_secret)
        try:
            r = self.http.post(
                f"{self.base_url}/v1/oauth2/token",
                auth=(self.settings.paypal_client_id, self.settings.paypal_client_secret),
                data={"grant_type": "client_credentials"},
                headers={"Accept": "application/json"},
                timeout=self.settings.http_timeout_sec,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise RemoteUnavailable(f"PayPal token request failed: {exc}") from exc

        if r.status_code >= 300:
            raise RemoteRejected(f"PayPal token request rejected: {r.status_code} {r.reason}")

        data = r.json() or {}
        token = (data.get("access_token") or "").strip()
        if not token:
            raise RemoteRejected("PayPal token response without access_token")

        expires_in = int(data.get("expires_in") or 0)
        self._access_token = token
        self._access_token_expires_at = time.monotonic() + max(expires_in - _TOKEN_EXPIRY_SKEW_SEC, 0)
        return token

    def _request(self, method: str, path: str, *, json_body: Any = None, params: dict | None = None,
                 extra_headers: dict | None = None) -> dict:
        headers = {
            "Authorization": f"Bearer {self._get_access_token()}",
            "Content-Type": "application/json",
            **(extra_headers or {}),
        }
        try:
            r = self.http.request(
                method,
                f"{self.base_url}{path}",
                headers=headers,
                json=json_body,
                params=params,
                timeout=self.settings.http_timeout_sec,
            )
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise RemoteUnavailable(f"PayPal {method} {path} failed: {exc}") from exc

        if r.status_code >= 500:
            raise RemoteUnavailable(f"PayPal {method} {path} failed: {r.status_code} {r.reason}")
        if r.status_code >= 300:
            raise RemoteRejected(f"PayPal {method} {path} rejected: {r.status_code} {r.reason}")
        if r.status_code == 204 or not (r.content and r.content.strip()):
            return {}
        return r.json() or {}

    def get_plan_details(self, plan_id: str) -> dict:
        return self._request("GET", f"/v1/billing/plans/{quote(plan_id, safe='')}")

    def get_subscription_details(self, subscription_id: str) -> dict:
        return self._request("GET", f"/v1/billing/subscriptions/{quote(subscription_id, safe='')}")

    # ---- checkout / portal --------------------------------------------------

    async def create_checkout_session(self, account: Optional[Account], price_id: str, actor_id: Optional[str]) -> str:
        if account is None or not (actor_id or "").strip():
            raise InvalidAccount(redirect_to=f"/sign-up?redirect=checkout&priceId={price_id}")

        base = self.settings.base_url
        subscription_data = {
            "plan_id": price_id,
            "custom_id": account.id,
            "application_context": {
                "brand_name": self.settings.paypal_brand_name,
                "locale": "en-US",
                "shipping_preference": "NO_SHIPPING",
                "user_action": "SUBSCRIBE_NOW",
                "payment_method": {
                    "payer_selected": "PAYPAL",
                    "payee_preferred": "IMMEDIATE_PAYMENT_REQUIRED",
                },
                "return_url": f"{base}/api/wallet/checkout",
                "cancel_url": f"{base}/pricing",
            },
        }

        minute_bucket = datetime.now(timezone.utc).strftime("%Y%m%d%H%M")
        subscription = await self._run_in_executor(
            self._request,
            "POST",
            "/v1/billing/subscriptions",
            json_body=subscription_data,
            extra_headers={"PayPal-Request-Id": f"sub_{account.id}_{price_id}_{minute_bucket}"},
        )

        for link in subscription.get("links") or []:
            if link.get("rel") == "approve" and link.get("href"):
                return link["href"]
        raise RemoteRejected("No approval URL found in PayPal response")

    async def create_customer_portal_session(self, account: Account) -> str:
        customer_id = account.generic.payment_customer_id if account.generic.payment_provider == self.name else None
        if not customer_id:
            raise NoBillingIdentity(account.id)

        # PayPal has no hosted self-service portal; point at our own billing page
        return (
            f"{self.settings.base_url}/dashboard/billing"
            f"?provider={self.name}&customerId={quote(customer_id, safe='')}"
        )

    # ---- catalog ------------------------------------------------------------

    async def get_products(self) -> list[Product]:
        data = await self._run_in_executor(self._request, "GET", "/v1/catalogs/products", params={"page_size": 20})
        return [
            Product(id=p["id"], name=p.get("name") or "", description=p.get("description") or None)
            for p in (data.get("products") or [])
            if p.get("id")
        ]

    async def get_prices(self) -> list[Price]:
        return await self._run_in_executor(self._list_prices)

    def _list_prices(self) -> list[Price]:
        data = self._request("GET", "/v1/billing/plans", params={"page_size": 20})
        prices: list[Price] = []
        for plan in data.get("plans") or []:
            if not plan.get("id"):
                continue
            if "billing_cycles" not in plan:
                plan = self.get_plan_details(plan["id"])
            prices.append(self._plan_to_price(plan))
        return prices

    @staticmethod
    def _plan_to_price(plan: dict) -> Price:
        cycles = plan.get("billing_cycles") or []
        regular = next((c for c in cycles if c.get("tenure_type") == "REGULAR"), None) or {}
        trial = next((c for c in cycles if c.get("tenure_type") == "TRIAL"), None)

        fixed_price = ((regular.get("pricing_scheme") or {}).get("fixed_price")) or {}
        currency = (fixed_price.get("currency_code") or "USD").upper()
        interval_unit = ((regular.get("frequency") or {}).get("interval_unit") or "").lower() or None

        trial_days = None
        if trial:
            freq = trial.get("frequency") or {}
            per_unit = _DAYS_PER_UNIT.get((freq.get("interval_unit") or "DAY").upper(), 1)
            trial_days = int(freq.get("interval_count") or 0) * per_unit

        return Price(
            id=plan["id"],
            product_id=plan.get("product_id") or "",
            unit_amount=to_minor_units(fixed_price.get("value"), currency),
            currency=currency.lower(),
            interval=interval_unit,
            trial_period_days=trial_days,
        )

    # ---- webhooks -----------------------------------------------------------

    def _download_certificate(self, cert_url: str) -> bytes:
        r = requests.get(cert_url, timeout=self.settings.http_timeout_sec)
        r.raise_for_status()
        return r.content

    def _certificate(self, cert_url: str) -> x509.Certificate:
        cert = self._cert_cache.get(cert_url)
        if cert is None:
            cert = x509.load_pem_x509_certificate(self._cert_loader(cert_url))
            self._cert_cache[cert_url] = cert
        return cert

    def verify_webhook_signature(self, raw_payload: bytes, headers: Mapping[str, str], secret: str) -> bool:
        """
        Offline PayPal verification: the transmission signature is SHA256withRSA over
        "<transmission_id>|<transmission_time>|<webhook_id>|<crc32(body)>", checked
        against the certificate PayPal names in paypal-cert-url. `secret` is the webhook id.
        """
        try:
            lowered = {k.lower(): v for k, v in (headers or {}).items()}
            if not secret or any(not lowered.get(h) for h in SIGNATURE_HEADERS):
                logger.warning("[paypal] missing signature headers or webhook id")
                return False

            if lowered["paypal-auth-algo"].strip().upper() != "SHA256WITHRSA":
                logger.warning("[paypal] unsupported auth algo %s", lowered["paypal-auth-algo"])
                return False

            cert_url = lowered["paypal-cert-url"].strip()
            if not _is_paypal_cert_url(cert_url):
                logger.warning("[paypal] refusing certificate from %s", cert_url)
                return False

            cert = self._certificate(cert_url)
            now = datetime.now(timezone.utc)
            if not (cert.not_valid_before_utc <= now <= cert.not_valid_after_utc):
                logger.warning("[paypal] certificate %s outside validity window", cert_url)
                return False

            crc = zlib.crc32(bytes(raw_payload)) & 0xFFFFFFFF
            message = f"{lowered['paypal-transmission-id']}|{lowered['paypal-transmission-time']}|{secret}|{crc}"
            signature = base64.b64decode(lowered["paypal-transmission-sig"], validate=True)
            cert.public_key().verify(signature, message.encode("utf-8"), padding.PKCS1v15(), hashes.SHA256())
            return True
        except Exception as exc:
            logger.warning("[paypal] webhook signature verification failed: %s", exc)
            return False

    def parse_webhook_event(self, raw_payload: bytes) -> WebhookEvent:
        try:
            payload = json.loads(raw_payload)
        except (TypeError, ValueError) as exc:
            raise InvalidPayload(f"Invalid JSON payload: {exc}") from exc
        if not isinstance(payload, dict):
            raise InvalidPayload("Webhook payload is not an object")

        event_type = (payload.get("event_type") or "").strip()
        if not event_type:
            raise InvalidPayload("Missing event_type")

        return WebhookEvent(
            type=event_type,
            resource=payload.get("resource") or {},
            id=payload.get("id"),
            created_at=_parse_iso(payload.get("create_time")),
        )

    async def handle_webhook(self, event: WebhookEvent) -> WebhookOutcome:
        if event.type in SUBSCRIPTION_EVENTS:
            return await self.handle_subscription_change(event.resource, occurred_at=event.created_at)
        logger.info("[paypal] unhandled webhook event type %s", event.type)
        return WebhookOutcome.IGNORED

    def to_change_record(self, subscription: dict, occurred_at: Optional[datetime] = None) -> SubscriptionChangeRecord:
        subscription_id = (subscription.get("id") or "").strip()
        if not subscription_id:
            raise InvalidPayload("Subscription resource without id")

        product_id = None
        plan_name = None
        plan_id = (subscription.get("plan_id") or "").strip()
        if plan_id:
            try:
                plan = self.get_plan_details(plan_id)
                product_id = plan.get("product_id")
                plan_name = plan.get("name")
            except (RemoteRejected, RemoteUnavailable) as exc:
                logger.warning("[paypal] plan %s lookup failed, product left unchanged: %s", plan_id, exc)

        subscriber = subscription.get("subscriber") or {}
        return SubscriptionChangeRecord(
            provider=self.name,
            provider_subscription_id=subscription_id,
            provider_customer_id=(subscriber.get("payer_id") or "").strip() or None,
            provider_product_id=product_id,
            plan_name=plan_name,
            status=normalize_status(self.name, subscription.get("status")),
            account_external_id=(subscription.get("custom_id") or "").strip() or None,
            occurred_at=occurred_at or _parse_iso(subscription.get("update_time")) or datetime.now(timezone.utc),
        )

    async def handle_subscription_change(self, raw: dict[str, Any], occurred_at=None) -> WebhookOutcome:
        if self.store is None:
            raise RuntimeError("PayPalPaymentProvider has no account store")
        return await self._run_in_executor(self._apply_subscription, raw, occurred_at)

    def _apply_subscription(self, raw: dict[str, Any], occurred_at=None) -> WebhookOutcome:
        record = self.to_change_record(raw, occurred_at=occurred_at)
        return apply_subscription_change(self.store, record)

    async def retrieve_checkout(self, identifier: str) -> CheckoutResult:
        return await self._run_in_executor(self._retrieve_checkout, identifier)

    def _retrieve_checkout(self, identifier: str) -> CheckoutResult:
        subscription = self.get_subscription_details(identifier)
        if not subscription.get("plan_id"):
            raise InvalidPayload("No plan found for this subscription.")

        account_id = (subscription.get("custom_id") or "").strip()
        if not account_id:
            raise InvalidPayload("No account id found in subscription's custom_id.")

        record = self.to_change_record(subscription)
        if not record.provider_product_id:
            raise InvalidPayload("No product ID found for this subscription.")

        subscriber = subscription.get("subscriber") or {}
        customer_id = (
            (subscriber.get("payer_id") or "").strip()
            or (subscriber.get("email_address") or "").strip()
            or record.provider_subscription_id
        )
        record = record.model_copy(update={"provider_customer_id": customer_id})
        return CheckoutResult(provider=self.name, account_external_id=account_id, customer_id=customer_id, record=record)
