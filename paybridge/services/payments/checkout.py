import logging
from typing import Optional

from paybridge.domain.accounts.models import Account
from paybridge.domain.accounts.store import AccountStore
from paybridge.services.payments.errors import InvalidAccount
from paybridge.services.payments.models import Price, Product, WebhookOutcome
from paybridge.services.payments.provider import PaymentProvider, run_in_executor
from paybridge.services.payments.registry import ProviderRegistry
from paybridge.services.payments.subscription_sync import apply_subscription_change

logger = logging.getLogger(__name__)


class CheckoutOrchestrator:
    """
    Starts remote checkout / portal flows. Nothing here writes subscription state:
    that happens when the provider reports back (webhook or checkout return).
    """

    def __init__(self, registry: ProviderRegistry, store: AccountStore):
        self.registry = registry
        self.store = store

    def _provider(self, name: Optional[str], account: Optional[Account] = None) -> PaymentProvider:
        if name:
            return self.registry.get_provider(name)
        if account is not None and self.registry.is_supported(account.generic.payment_provider):
            return self.registry.get_provider(account.generic.payment_provider)
        return self.registry.get_default_provider()

    async def start_checkout(
        self,
        account: Optional[Account],
        price_id: str,
        actor_id: Optional[str],
        provider: Optional[str] = None,
    ) -> str:
        adapter = self.registry.get_provider(provider) if provider else self.registry.get_default_provider()
        return await adapter.create_checkout_session(account, price_id, actor_id)

    async def open_portal(self, account: Account, provider: Optional[str] = None) -> str:
        adapter = self._provider(provider, account)
        return await adapter.create_customer_portal_session(account)

    async def complete_checkout(self, provider: str, identifier: str) -> Account:
        """
        Checkout return: ask the provider what happened and apply the subscription
        through the shared write path. The record carries the customer id, so an
        applied record links the billing identity in the same row update. Only when
        it does not land (a newer delivery already won) is the link written alone.
        """
        adapter = self.registry.get_provider(provider)
        result = await adapter.retrieve_checkout(identifier)

        account = await run_in_executor(self.store.get_account, result.account_external_id)
        if account is None:
            raise InvalidAccount(redirect_to="/sign-up", message=f"Account {result.account_external_id} not found")

        outcome = await run_in_executor(apply_subscription_change, self.store, result.record)
        if outcome is not WebhookOutcome.APPLIED:
            logger.info("[billing] checkout return for account %s: %s", account.id, outcome.value)
            await run_in_executor(self.store.link_billing_identity, account.id, result.provider, result.customer_id)

        return await run_in_executor(self.store.get_account, account.id) or account

    async def list_products(self, provider: Optional[str] = None) -> list[Product]:
        return await self._provider(provider).get_products()

    async def list_prices(self, provider: Optional[str] = None) -> list[Price]:
        return await self._provider(provider).get_prices()
