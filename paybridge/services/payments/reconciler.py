import logging
from typing import Callable, Mapping

from paybridge.config import Settings, load_settings
from paybridge.domain.accounts.store import AccountStore
from paybridge.services.payments.errors import SignatureInvalid
from paybridge.services.payments.models import SubscriptionChangeRecord, WebhookOutcome
from paybridge.services.payments.provider import run_in_executor
from paybridge.services.payments.registry import ProviderRegistry, canonical_provider_name
from paybridge.services.payments.subscription_sync import apply_subscription_change

logger = logging.getLogger(__name__)


class WebhookReconciler:
    """
    Turns one raw webhook delivery into at most one account update.

    unverified -> rejected (SignatureInvalid, sender retries)
    verified   -> ignored (unknown event type)
               -> dropped (no correlation id / no matching account)
               -> stale   (older than what the row already holds)
               -> applied
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        store: AccountStore,
        settings_loader: Callable[[], Settings] = load_settings,
    ):
        self.registry = registry
        self.store = store
        self._settings_loader = settings_loader

    async def receive(self, provider_name: str, raw_payload: bytes, headers: Mapping[str, str]) -> WebhookOutcome:
        # the provider comes from the endpoint the delivery hit, never from the body
        provider = self.registry.get_provider(provider_name)
        secret = self._settings_loader().webhook_secret_for(canonical_provider_name(provider_name))

        # may download the signing certificate on first use
        verified = await run_in_executor(provider.verify_webhook_signature, raw_payload, headers, secret)
        if not verified:
            logger.warning("[webhook] %s signature verification failed", provider.get_provider_name())
            raise SignatureInvalid("Webhook signature verification failed.")

        event = provider.parse_webhook_event(raw_payload)
        outcome = await provider.handle_webhook(event)
        logger.info(
            "[webhook] %s event=%s id=%s -> %s",
            provider.get_provider_name(),
            event.type,
            event.id,
            outcome.value,
        )
        return outcome

    def apply(self, record: SubscriptionChangeRecord) -> WebhookOutcome:
        return apply_subscription_change(self.store, record)
