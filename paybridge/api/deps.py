from fastapi import Request

from paybridge.domain.accounts.store import AccountStore
from paybridge.services.payments.checkout import CheckoutOrchestrator
from paybridge.services.payments.reconciler import WebhookReconciler
from paybridge.services.payments.registry import ProviderRegistry


def get_store(request: Request) -> AccountStore:
    return request.app.state.account_store


def get_registry(request: Request) -> ProviderRegistry:
    return request.app.state.provider_registry


def get_orchestrator(request: Request) -> CheckoutOrchestrator:
    return request.app.state.checkout_orchestrator


def get_reconciler(request: Request) -> WebhookReconciler:
    return request.app.state.webhook_reconciler


def request_headers(request: Request) -> dict[str, str]:
    # Starlette already lower-cases header names
    return {k: v for k, v in request.headers.items()}
