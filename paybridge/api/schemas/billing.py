from typing import Literal, Optional

from pydantic import BaseModel, Field


class BillingCheckoutIn(BaseModel):
    """
    Start a subscription checkout.
    - account_id: the account that will own the subscription
    - actor_id: the signed-in user acting for that account
    """

    price_id: str = Field(..., description="Provider price / plan id")
    account_id: Optional[str] = Field(None, description="Account id")
    actor_id: Optional[str] = Field(None, description="Acting user id")
    provider: Optional[str] = Field(None, description="card | wallet; defaults to DEFAULT_PAYMENT_PROVIDER")


class BillingCheckoutOut(BaseModel):
    ok: bool = True
    error: Optional[str] = None
    checkout_url: Optional[str] = None
    redirect_url: Optional[str] = None


class BillingPortalIn(BaseModel):
    account_id: str = Field(..., description="Account id")
    provider: Optional[str] = Field(None, description="Overrides the account's provider")


class BillingPortalOut(BaseModel):
    ok: bool = True
    error: Optional[str] = None
    portal_url: Optional[str] = None
    redirect_url: Optional[str] = None


class MigrateIn(BaseModel):
    operation: Literal["migrate", "rollback", "validate"]


class MigrateOut(BaseModel):
    ok: bool = True
    error: Optional[str] = None
    operation: Optional[str] = None
    processed: int = 0
    inconsistent_account_ids: list[str] = Field(default_factory=list)
