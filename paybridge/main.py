import logging
from typing import Callable, Optional

from fastapi import FastAPI

from paybridge.config import Settings, load_settings

from paybridge.api.routers import billing, migrate, webhooks
from paybridge.domain.accounts.store import AccountStore
from paybridge.infra.supabase.account_repo import SupabaseAccountStore
from paybridge.services.payments.checkout import CheckoutOrchestrator
from paybridge.services.payments.reconciler import WebhookReconciler
from paybridge.services.payments.registry import ProviderRegistry

logger = logging.getLogger("uvicorn.error")


def create_app(
    store: Optional[AccountStore] = None,
    registry: Optional[ProviderRegistry] = None,
    settings_loader: Callable[[], Settings] = load_settings,
) -> FastAPI:
    store = store or SupabaseAccountStore()
    registry = registry or ProviderRegistry(store=store, settings_loader=settings_loader)

    app = FastAPI(title="Paybridge Billing API", version="1.0.0")
    app.state.account_store = store
    app.state.provider_registry = registry
    app.state.checkout_orchestrator = CheckoutOrchestrator(registry, store)
    app.state.webhook_reconciler = WebhookReconciler(registry, store, settings_loader=settings_loader)

    app.include_router(billing.router)
    app.include_router(webhooks.router)
    app.include_router(migrate.router)

    logger.info("payment providers: %s", ", ".join(registry.supported_providers()))
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("paybridge.main:app", host="0.0.0.0", port=8000, reload=False)
