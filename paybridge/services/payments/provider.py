import asyncio
from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional

from paybridge.domain.accounts.models import Account
from paybridge.services.payments.models import (
    CheckoutResult,
    Price,
    Product,
    WebhookEvent,
    WebhookOutcome,
)


async def run_in_executor(func, *args, **kwargs):
    """Run a blocking SDK, HTTP or store call on the default executor."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: func(*args, **kwargs))


class PaymentProvider(ABC):
    """Payment provider interface used by the checkout, portal and webhook flows."""

    name: str = ""

    @abstractmethod
    async def create_checkout_session(self, account: Optional[Account], price_id: str, actor_id: Optional[str]) -> str:
        """Start a hosted checkout and return the URL to redirect to."""
        raise NotImplementedError

    @abstractmethod
    async def create_customer_portal_session(self, account: Account) -> str:
        """Return the self-service billing portal URL for an account."""
        raise NotImplementedError

    @abstractmethod
    async def handle_webhook(self, event: WebhookEvent) -> WebhookOutcome:
        """Dispatch a verified event; unknown types are a logged no-op."""
        raise NotImplementedError

    @abstractmethod
    async def get_products(self) -> list[Product]:
        raise NotImplementedError

    @abstractmethod
    async def get_prices(self) -> list[Price]:
        raise NotImplementedError

    @abstractmethod
    async def handle_subscription_change(self, raw: dict[str, Any], occurred_at=None) -> WebhookOutcome:
        """Normalize a native subscription payload and apply it."""
        raise NotImplementedError

    @abstractmethod
    def verify_webhook_signature(self, raw_payload: bytes, headers: Mapping[str, str], secret: str) -> bool:
        """Check authenticity of a raw delivery. Never raises."""
        raise NotImplementedError

    @abstractmethod
    def parse_webhook_event(self, raw_payload: bytes) -> WebhookEvent:
        """Turn an already verified raw body into a WebhookEvent."""
        raise NotImplementedError

    @abstractmethod
    async def retrieve_checkout(self, identifier: str) -> CheckoutResult:
        """Resolve the id handed back on the checkout return URL."""
        raise NotImplementedError

    def get_provider_name(self) -> str:
        return self.name

    async def _run_in_executor(self, func, *args, **kwargs):
        return await run_in_executor(func, *args, **kwargs)
