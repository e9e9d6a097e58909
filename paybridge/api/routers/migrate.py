import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from paybridge.api.deps import get_store
from paybridge.api.schemas.billing import MigrateIn, MigrateOut
from paybridge.domain.accounts.store import AccountStore
from paybridge.domain.migration import service as migration_service
from paybridge.services.payments.errors import MigrationAborted

logger = logging.getLogger("uvicorn.error")

router = APIRouter()


@router.post("/api/migrate", response_model=MigrateOut)
def api_migrate(payload: MigrateIn, store: AccountStore = Depends(get_store)):
    try:
        report = migration_service.run(store, payload.operation)
    except MigrationAborted as exc:
        logger.error("payment data %s aborted: %s", payload.operation, exc)
        return JSONResponse(
            status_code=500,
            content=MigrateOut(
                ok=False,
                error=str(exc),
                operation=exc.operation,
                processed=exc.processed,
            ).model_dump(),
        )
    return MigrateOut(**report.as_dict())
