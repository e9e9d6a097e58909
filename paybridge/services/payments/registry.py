import logging
import threading
from typing import Callable, Optional

from paybridge.config import Settings, load_settings
from paybridge.domain.accounts.store import AccountStore
from paybridge.services.payments.errors import UnsupportedProvider
from paybridge.services.payments.paypal_provider import PayPalPaymentProvider
from paybridge.services.payments.provider import PaymentProvider
from paybridge.services.payments.stripe_provider import StripePaymentProvider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[Settings, Optional[AccountStore]], PaymentProvider]

DEFAULT_FACTORIES: dict[str, ProviderFactory] = {
    "card": StripePaymentProvider,
    "wallet": PayPalPaymentProvider,
}
PROVIDER_ALIASES = {"stripe": "card", "paypal": "wallet"}
FALLBACK_PROVIDER = "card"


def canonical_provider_name(name: str | None) -> str:
    key = (name or "").strip().lower()
    return PROVIDER_ALIASES.get(key, key)


class ProviderRegistry:
    """
    Hands out one adapter per provider name, built on first use and reused after.

    Built once at process start and passed to whoever needs it; `clear()` exists for
    test isolation and credential rotation only.
    """

    def __init__(
        self,
        store: Optional[AccountStore] = None,
        factories: Optional[dict[str, ProviderFactory]] = None,
        settings_loader: Callable[[], Settings] = load_settings,
    ):
        self.store = store
        self._factories = dict(factories or DEFAULT_FACTORIES)
        self._settings_loader = settings_loader
        self._instances: dict[str, PaymentProvider] = {}
        self._lock = threading.Lock()

    def supported_providers(self) -> list[str]:
        return list(self._factories)

    def is_supported(self, name: str | None) -> bool:
        return canonical_provider_name(name) in self._factories

    def get_provider(self, name: str | None) -> PaymentProvider:
        key = canonical_provider_name(name)
        instance = self._instances.get(key)
        if instance is not None:
            return instance

        factory = self._factories.get(key)
        if factory is None:
            raise UnsupportedProvider(name or "")

        with self._lock:
            instance = self._instances.get(key)
            if instance is None:
                instance = factory(self._settings_loader(), self.store)
                self._instances[key] = instance
                logger.info("[billing] payment provider %s initialised", key)
        return instance

    def get_default_provider(self) -> PaymentProvider:
        name = self._settings_loader().default_payment_provider or FALLBACK_PROVIDER
        return self.get_provider(name)

    def clear(self) -> None:
        with self._lock:
            self._instances.clear()
