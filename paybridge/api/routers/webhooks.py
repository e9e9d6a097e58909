import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from paybridge.api.deps import get_reconciler, request_headers
from paybridge.services.payments.errors import InvalidPayload, SignatureInvalid, UnsupportedProvider
from paybridge.services.payments.reconciler import WebhookReconciler

logger = logging.getLogger("uvicorn.error")

router = APIRouter()


@router.post("/api/{provider}/webhook")
async def api_provider_webhook(
    provider: str,
    request: Request,
    reconciler: WebhookReconciler = Depends(get_reconciler),
):
    # body stays raw bytes until the signature has been checked
    raw_body = await request.body()

    try:
        outcome = await reconciler.receive(provider, raw_body, request_headers(request))
    except UnsupportedProvider as exc:
        return JSONResponse(status_code=404, content={"ok": False, "error": str(exc)})
    except SignatureInvalid as exc:
        return JSONResponse(status_code=400, content={"ok": False, "error": str(exc)})
    except InvalidPayload as exc:
        logger.warning("%s webhook payload rejected: %s", provider, exc)
        return JSONResponse(status_code=400, content={"ok": False, "error": f"Invalid event payload: {exc}"})
    except Exception:
        logger.exception("%s webhook processing failed", provider)
        return JSONResponse(status_code=500, content={"ok": False, "error": "Webhook processing failed."})

    return {"ok": True, "received": True, "status": outcome.value}
