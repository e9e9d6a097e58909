from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

GENERIC_COLUMNS = (
    "payment_provider",
    "payment_customer_id",
    "payment_subscription_id",
    "payment_product_id",
    "plan_name",
    "subscription_status",
)
LEGACY_COLUMNS = ("stripe_customer_id", "stripe_subscription_id", "stripe_product_id")


class GenericFields(BaseModel):
    payment_provider: Optional[str] = None
    payment_customer_id: Optional[str] = None
    payment_subscription_id: Optional[str] = None
    payment_product_id: Optional[str] = None
    plan_name: Optional[str] = None
    subscription_status: Optional[str] = None

    def triple(self) -> tuple[Optional[str], Optional[str], Optional[str]]:
        return (self.payment_customer_id, self.payment_subscription_id, self.payment_product_id)


class LegacyFields(BaseModel):
    """Card-processor columns kept until every account is migrated."""

    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    stripe_product_id: Optional[str] = None

    def triple(self) -> tuple[Optional[str], Optional[str], Optional[str]]:
        return (self.stripe_customer_id, self.stripe_subscription_id, self.stripe_product_id)


class Account(BaseModel):
    id: str
    name: Optional[str] = None
    generic: GenericFields = Field(default_factory=GenericFields)
    legacy: LegacyFields = Field(default_factory=LegacyFields)
    subscription_updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "Account":
        return cls(
            id=str(row.get("id")),
            name=row.get("name"),
            generic=GenericFields(**{k: row.get(k) for k in GENERIC_COLUMNS}),
            legacy=LegacyFields(**{k: row.get(k) for k in LEGACY_COLUMNS}),
            subscription_updated_at=row.get("subscription_updated_at"),
        )
