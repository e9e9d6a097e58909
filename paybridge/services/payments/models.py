from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    CANCELED = "canceled"
    SUSPENDED = "suspended"
    UNPAID = "unpaid"
    UNKNOWN = "unknown"


TERMINAL_STATUSES = frozenset(
    {SubscriptionStatus.CANCELED, SubscriptionStatus.SUSPENDED, SubscriptionStatus.UNPAID}
)


class WebhookOutcome(str, Enum):
    APPLIED = "applied"
    IGNORED = "ignored"
    DROPPED = "dropped"
    STALE = "stale"


class Product(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    default_price_id: Optional[str] = None


class Price(BaseModel):
    id: str
    product_id: str
    unit_amount: int = Field(..., ge=0, description="Amount in the minor currency unit")
    currency: str
    interval: Optional[str] = None
    trial_period_days: Optional[int] = None


class WebhookEvent(BaseModel):
    """Provider-native event after signature verification: `{type, resource}`."""

    type: str
    resource: dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None
    created_at: Optional[datetime] = None


class SubscriptionChangeRecord(BaseModel):
    """
    Provider-agnostic subscription change built from one webhook delivery.
    Never persisted itself; only its effect on the account row is.
    """

    provider: str
    provider_subscription_id: str
    status: SubscriptionStatus
    occurred_at: datetime
    account_external_id: Optional[str] = None
    provider_customer_id: Optional[str] = None
    provider_product_id: Optional[str] = None
    plan_name: Optional[str] = None


class CheckoutResult(BaseModel):
    """What the checkout-return endpoint learns from the provider."""

    provider: str
    account_external_id: str
    customer_id: str
    record: SubscriptionChangeRecord
