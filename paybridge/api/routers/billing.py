import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, RedirectResponse

from paybridge.api.deps import get_orchestrator, get_store
from paybridge.api.schemas.billing import (
    BillingCheckoutIn,
    BillingCheckoutOut,
    BillingPortalIn,
    BillingPortalOut,
)
from paybridge.domain.accounts.store import AccountStore
from paybridge.services.payments.checkout import CheckoutOrchestrator
from paybridge.services.payments.errors import (
    InvalidAccount,
    NoBillingIdentity,
    PaymentError,
    RemoteRejected,
    RemoteUnavailable,
    UnsupportedProvider,
)
from paybridge.services.payments.provider import run_in_executor

logger = logging.getLogger("uvicorn.error")

router = APIRouter()


def _error_status(exc: PaymentError) -> int:
    if isinstance(exc, UnsupportedProvider):
        return 404
    if isinstance(exc, RemoteUnavailable):
        return 503
    if isinstance(exc, RemoteRejected):
        return 502
    return 400


def _error_response(exc: PaymentError, model) -> JSONResponse:
    body = model(ok=False, error=str(exc))
    return JSONResponse(status_code=_error_status(exc), content=body.model_dump())


@router.post("/api/billing/checkout", response_model=BillingCheckoutOut)
async def api_billing_checkout(
    payload: BillingCheckoutIn,
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
    store: AccountStore = Depends(get_store),
):
    account = await run_in_executor(store.get_account, payload.account_id) if payload.account_id else None
    try:
        url = await orchestrator.start_checkout(account, payload.price_id, payload.actor_id, provider=payload.provider)
    except InvalidAccount as exc:
        return BillingCheckoutOut(ok=False, error=str(exc), redirect_url=exc.redirect_to)
    except PaymentError as exc:
        logger.warning("checkout failed for account %s: %s", payload.account_id, exc)
        return _error_response(exc, BillingCheckoutOut)
    return BillingCheckoutOut(ok=True, checkout_url=url)


@router.post("/api/billing/portal", response_model=BillingPortalOut)
async def api_billing_portal(
    payload: BillingPortalIn,
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
    store: AccountStore = Depends(get_store),
):
    account = await run_in_executor(store.get_account, payload.account_id)
    if account is None:
        return JSONResponse(
            status_code=404,
            content=BillingPortalOut(ok=False, error=f"Account {payload.account_id} not found").model_dump(),
        )
    try:
        url = await orchestrator.open_portal(account, provider=payload.provider)
    except NoBillingIdentity as exc:
        return BillingPortalOut(ok=False, error=str(exc), redirect_url=exc.redirect_to)
    except PaymentError as exc:
        logger.warning("portal failed for account %s: %s", account.id, exc)
        return _error_response(exc, BillingPortalOut)
    return BillingPortalOut(ok=True, portal_url=url)


@router.get("/api/billing/products")
async def api_billing_products(
    provider: Optional[str] = None,
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    try:
        products = await orchestrator.list_products(provider)
    except PaymentError as exc:
        return JSONResponse(status_code=_error_status(exc), content={"ok": False, "error": str(exc)})
    return {"ok": True, "products": [p.model_dump() for p in products]}


@router.get("/api/billing/prices")
async def api_billing_prices(
    provider: Optional[str] = None,
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    try:
        prices = await orchestrator.list_prices(provider)
    except PaymentError as exc:
        return JSONResponse(status_code=_error_status(exc), content={"ok": False, "error": str(exc)})
    return {"ok": True, "prices": [p.model_dump() for p in prices]}


@router.get("/api/{provider}/checkout")
async def api_checkout_return(
    provider: str,
    session_id: Optional[str] = None,
    subscription_id: Optional[str] = None,
    token: Optional[str] = None,
    orchestrator: CheckoutOrchestrator = Depends(get_orchestrator),
):
    # card returns session_id; wallet returns subscription_id (older flows only token)
    identifier = (session_id or subscription_id or token or "").strip()
    if not identifier:
        return RedirectResponse(url="/pricing", status_code=303)

    try:
        account = await orchestrator.complete_checkout(provider, identifier)
    except PaymentError as exc:
        logger.error("Error handling %s checkout return: %s", provider, exc)
        return RedirectResponse(url="/error", status_code=303)

    logger.info("checkout completed for account %s via %s", account.id, provider)
    return RedirectResponse(url="/dashboard", status_code=303)
