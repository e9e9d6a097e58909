import json
import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping, Optional

import stripe

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
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
)
SIGNATURE_TOLERANCE_SEC = 300


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a key from a dict or a StripeObject."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    try:
        value = obj[key]
    except (KeyError, TypeError, AttributeError):
        value = getattr(obj, key, default)
    return default if value is None else value


def _id_of(obj: Any) -> Optional[str]:
    """Stripe references are either an id string or an expanded object."""
    if obj is None:
        return None
    if isinstance(obj, str):
        return obj.strip() or None
    return (_field(obj, "id") or "").strip() or None


def _ts_to_datetime(ts: Any) -> Optional[datetime]:
    if not ts:
        return None
    try:
        return datetime.fromtimestamp(int(ts), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError):
        return None


def _minor_units(price: Any) -> int:
    amount = _field(price, "unit_amount")
    if amount is not None:
        return max(int(amount), 0)
    decimal_amount = _field(price, "unit_amount_decimal")
    if decimal_amount is None:
        return 0
    return max(int(Decimal(str(decimal_amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP)), 0)


class StripePaymentProvider(PaymentProvider):
    """Card processor backed by the Stripe API."""

    name = "card"

    def __init__(self, settings: Settings, store: Optional[AccountStore] = None):
        self.settings = settings
        self.store = store
        self.api_key = settings.stripe_secret_key
        self._portal_configuration_id: Optional[str] = None
        stripe.default_http_client = stripe.RequestsClient(timeout=settings.http_timeout_sec)

    def _call(self, fn, *args, **kwargs):
        must_env("STRIPE_SECRET_KEY", self.api_key)
        try:
            return fn(*args, api_key=self.api_key, **kwargs)
        except stripe.APIConnectionError as exc:
            raise RemoteUnavailable(f"Stripe unreachable: {exc}") from exc
        except stripe.StripeError as exc:
            raise RemoteRejected(f"Stripe rejected request: {exc}") from exc

    def _customer_id(self, account: Account) -> Optional[str]:
        if account.generic.payment_provider == self.name and account.generic.payment_customer_id:
            return account.generic.payment_customer_id
        return account.legacy.stripe_customer_id or None

    def _product_id(self, account: Account) -> Optional[str]:
        if account.generic.payment_provider == self.name and account.generic.payment_product_id:
            return account.generic.payment_product_id
        return account.legacy.stripe_product_id or None

    async def create_checkout_session(self, account: Optional[Account], price_id: str, actor_id: Optional[str]) -> str:
        if account is None or not (actor_id or "").strip():
            raise InvalidAccount(redirect_to=f"/sign-up?redirect=checkout&priceId={price_id}")

        base = self.settings.base_url
        session_create_payload: dict[str, Any] = {
            "mode": "subscription",
            "payment_method_types": ["card"],
            "line_items": [{"price": price_id, "quantity": 1}],
            "success_url": f"{base}/api/card/checkout?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{base}/pricing",
            "client_reference_id": account.id,
            "allow_promotion_codes": True,
            "metadata": {"account_id": account.id, "actor_id": str(actor_id)},
            "subscription_data": {
                "trial_period_days": self.settings.stripe_trial_days,
                "metadata": {"account_id": account.id},
            },
        }
        existing_customer_id = self._customer_id(account)
        if existing_customer_id:
            session_create_payload["customer"] = existing_customer_id

        # one session per account/price per minute
        minute_bucket = datetime.now(timezone.utc).strftime("%Y%m%d%H%M")
        idem_key = f"checkout:{account.id}:{price_id}:{minute_bucket}"

        session = await self._run_in_executor(
            self._call, stripe.checkout.Session.create, idempotency_key=idem_key, **session_create_payload
        )
        checkout_url = _field(session, "url")
        if not checkout_url:
            raise RemoteRejected("Stripe session created but missing session.url")
        return checkout_url

    def _ensure_portal_configuration(self, product_id: Optional[str]) -> str:
        if self._portal_configuration_id:
            return self._portal_configuration_id

        configurations = self._call(stripe.billing_portal.Configuration.list, limit=1)
        existing = _field(configurations, "data") or []
        if existing:
            self._portal_configuration_id = _id_of(existing[0])
            return self._portal_configuration_id

        if not product_id:
            raise RemoteRejected("No billing portal configuration and no product to build one from")

        product = self._call(stripe.Product.retrieve, product_id)
        if not _field(product, "active", False):
            raise RemoteRejected("Account's product is not active in Stripe")

        prices = _field(self._call(stripe.Price.list, product=product_id, active=True), "data") or []
        if not prices:
            raise RemoteRejected("No active prices found for the account's product")

        configuration = self._call(
            stripe.billing_portal.Configuration.create,
            business_profile={"headline": "Manage your subscription"},
            features={
                "subscription_update": {
                    "enabled": True,
                    "default_allowed_updates": ["price", "quantity", "promotion_code"],
                    "proration_behavior": "create_prorations",
                    "products": [{"product": product_id, "prices": [_id_of(p) for p in prices]}],
                },
                "subscription_cancel": {
                    "enabled": True,
                    "mode": "at_period_end",
                    "cancellation_reason": {
                        "enabled": True,
                        "options": ["too_expensive", "missing_features", "switched_service", "unused", "other"],
                    },
                },
                "payment_method_update": {"enabled": True},
            },
        )
        self._portal_configuration_id = _id_of(configuration)
        return self._portal_configuration_id

    async def create_customer_portal_session(self, account: Account) -> str:
        customer_id = self._customer_id(account)
        if not customer_id:
            raise NoBillingIdentity(account.id)

        configuration_id = await self._run_in_executor(self._ensure_portal_configuration, self._product_id(account))
        session = await self._run_in_executor(
            self._call,
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=f"{self.settings.base_url}/dashboard",
            configuration=configuration_id,
        )
        url = _field(session, "url")
        if not url:
            raise RemoteRejected("Stripe portal session missing url")
        return url

    async def get_products(self) -> list[Product]:
        products = await self._run_in_executor(
            self._call, stripe.Product.list, active=True, expand=["data.default_price"]
        )
        return [
            Product(
                id=_id_of(p),
                name=_field(p, "name", ""),
                description=_field(p, "description") or None,
                default_price_id=_id_of(_field(p, "default_price")),
            )
            for p in (_field(products, "data") or [])
        ]

    async def get_prices(self) -> list[Price]:
        prices = await self._run_in_executor(
            self._call, stripe.Price.list, active=True, type="recurring", expand=["data.product"]
        )
        out: list[Price] = []
        for p in _field(prices, "data") or []:
            recurring = _field(p, "recurring") or {}
            out.append(
                Price(
                    id=_id_of(p),
                    product_id=_id_of(_field(p, "product")),
                    unit_amount=_minor_units(p),
                    currency=(_field(p, "currency") or "usd").lower(),
                    interval=_field(recurring, "interval"),
                    trial_period_days=_field(recurring, "trial_period_days"),
                )
            )
        return out

    def verify_webhook_signature(self, raw_payload: bytes, headers: Mapping[str, str], secret: str) -> bool:
        if not secret:
            logger.warning("[stripe] webhook secret not configured, rejecting delivery")
            return False
        try:
            lowered = {k.lower(): v for k, v in (headers or {}).items()}
            signature = lowered.get("stripe-signature") or ""
            payload = raw_payload.decode("utf-8") if isinstance(raw_payload, (bytes, bytearray)) else raw_payload
            stripe.WebhookSignature.verify_header(payload, signature, secret, tolerance=SIGNATURE_TOLERANCE_SEC)
            return True
        except Exception as exc:
            logger.warning("[stripe] webhook signature verification failed: %s", exc)
            return False

    def parse_webhook_event(self, raw_payload: bytes) -> WebhookEvent:
        try:
            payload = json.loads(raw_payload)
        except (TypeError, ValueError) as exc:
            raise InvalidPayload(f"Invalid JSON payload: {exc}") from exc
        if not isinstance(payload, dict):
            raise InvalidPayload("Webhook payload is not an object")

        event_type = (payload.get("type") or "").strip()
        if not event_type:
            raise InvalidPayload("Missing event type")

        return WebhookEvent(
            type=event_type,
            resource=((payload.get("data") or {}).get("object") or {}),
            id=payload.get("id"),
            created_at=_ts_to_datetime(payload.get("created")),
        )

    async def handle_webhook(self, event: WebhookEvent) -> WebhookOutcome:
        if event.type in SUBSCRIPTION_EVENTS:
            return await self.handle_subscription_change(event.resource, occurred_at=event.created_at)
        logger.info("[stripe] unhandled event type %s", event.type)
        return WebhookOutcome.IGNORED

    def _plan_name(self, product: Any) -> Optional[str]:
        if product is None or isinstance(product, str):
            product_id = _id_of(product)
            if not product_id:
                return None
            try:
                product = self._call(stripe.Product.retrieve, product_id)
            except (RemoteRejected, RemoteUnavailable) as exc:
                logger.warning("[stripe] product %s lookup failed, plan name left empty: %s", product_id, exc)
                return None
        return _field(product, "name")

    def to_change_record(self, subscription: Any, occurred_at: Optional[datetime] = None) -> SubscriptionChangeRecord:
        subscription_id = _id_of(subscription)
        if not subscription_id:
            raise InvalidPayload("Subscription payload without id")

        items = _field(_field(subscription, "items"), "data") or []
        price = (_field(items[0], "price") or _field(items[0], "plan")) if items else None
        product = _field(price, "product")
        status = normalize_status(self.name, _field(subscription, "status"))
        metadata = _field(subscription, "metadata") or {}

        return SubscriptionChangeRecord(
            provider=self.name,
            provider_subscription_id=subscription_id,
            provider_customer_id=_id_of(_field(subscription, "customer")),
            provider_product_id=_id_of(product),
            plan_name=self._plan_name(product) if product is not None else None,
            status=status,
            account_external_id=(_field(metadata, "account_id") or "").strip() or None,
            occurred_at=occurred_at or datetime.now(timezone.utc),
        )

    async def handle_subscription_change(self, raw: dict[str, Any], occurred_at=None) -> WebhookOutcome:
        if self.store is None:
            raise RuntimeError("StripePaymentProvider has no account store")
        return await self._run_in_executor(self._apply_subscription, raw, occurred_at)

    def _apply_subscription(self, raw: dict[str, Any], occurred_at=None) -> WebhookOutcome:
        record = self.to_change_record(raw, occurred_at=occurred_at)
        return apply_subscription_change(self.store, record)

    async def retrieve_checkout(self, identifier: str) -> CheckoutResult:
        return await self._run_in_executor(self._retrieve_checkout, identifier)

    def _retrieve_checkout(self, identifier: str) -> CheckoutResult:
        session = self._call(
            stripe.checkout.Session.retrieve,
            identifier,
            expand=["customer", "subscription", "subscription.items.data.price.product"],
        )
        customer_id = _id_of(_field(session, "customer"))
        if not customer_id:
            raise InvalidPayload("Invalid customer data from Stripe.")

        subscription = _field(session, "subscription")
        if not _id_of(subscription):
            raise InvalidPayload("No subscription found for this session.")
        if isinstance(subscription, str):
            subscription = self._call(stripe.Subscription.retrieve, subscription, expand=["items.data.price.product"])

        account_id = (_field(session, "client_reference_id") or "").strip()
        if not account_id:
            raise InvalidPayload("No account id found in session's client_reference_id.")

        record = self.to_change_record(subscription).model_copy(
            update={"account_external_id": account_id, "provider_customer_id": customer_id}
        )
        return CheckoutResult(provider=self.name, account_external_id=account_id, customer_id=customer_id, record=record)
