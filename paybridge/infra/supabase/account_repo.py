from datetime import datetime
from typing import Optional

from paybridge.domain.accounts.models import Account, GenericFields, LegacyFields
from paybridge.domain.accounts.store import AccountStore
from paybridge.infra.supabase import client

ACCOUNTS_TABLE = "accounts"


class SupabaseAccountStore(AccountStore):
    """AccountStore over PostgREST. Single-row PATCHes give per-account atomicity."""

    def __init__(self, table: str = ACCOUNTS_TABLE):
        self.table = table

    def _url(self) -> str:
        return client.sb_rest_url(self.table)

    def _select_one(self, params: dict) -> Optional[Account]:
        rows = client.sb_get_json(self._url(), params={"select": "*", "limit": "1", **params})
        return Account.from_row(rows[0]) if rows else None

    def _select_many(self, params: dict) -> list[Account]:
        rows = client.sb_get_json(self._url(), params={"select": "*", "order": "id.asc", **params})
        return [Account.from_row(r) for r in rows]

    def _patch(self, account_id: str, payload: dict, extra_filters: dict | None = None) -> list:
        params = {"id": f"eq.{account_id}", **(extra_filters or {})}
        payload = {**payload, "updated_at": client.utc_now_iso()}
        return client.sb_patch_json(self._url(), payload, params=params, prefer="return=representation")

    def get_account(self, account_id: str) -> Optional[Account]:
        if not account_id:
            return None
        return self._select_one({"id": f"eq.{account_id}"})

    def get_account_by_provider_customer_id(self, provider: str, customer_id: str) -> Optional[Account]:
        if not customer_id:
            return None
        if provider == "card":
            # accounts not migrated yet only carry the legacy column
            quoted = client.quote_filter_value(customer_id)
            return self._select_one({
                "or": f"(and(payment_provider.eq.card,payment_customer_id.eq.{quoted}),stripe_customer_id.eq.{quoted})",
            })
        return self._select_one({
            "payment_provider": f"eq.{provider}",
            "payment_customer_id": f"eq.{customer_id}",
        })

    def get_account_by_provider_subscription_id(self, provider: str, subscription_id: str) -> Optional[Account]:
        if not subscription_id:
            return None
        return self._select_one({
            "payment_provider": f"eq.{provider}",
            "payment_subscription_id": f"eq.{subscription_id}",
        })

    def update_account_subscription(
        self,
        account_id: str,
        generic: GenericFields,
        occurred_at: Optional[datetime] = None,
        legacy: Optional[LegacyFields] = None,
    ) -> bool:
        payload = generic.model_dump(exclude_unset=True)
        if legacy is not None:
            payload.update(legacy.model_dump())
        extra = None
        if occurred_at is not None:
            stamp = client.to_iso(occurred_at)
            payload["subscription_updated_at"] = stamp
            extra = {"or": f"(subscription_updated_at.is.null,subscription_updated_at.lte.{stamp})"}
        rows = self._patch(account_id, payload, extra)
        return bool(rows)

    def link_billing_identity(self, account_id: str, provider: str, customer_id: str) -> None:
        payload = {"payment_provider": provider, "payment_customer_id": customer_id}
        if provider == "card":
            payload["stripe_customer_id"] = customer_id
        self._patch(account_id, payload)

    def list_accounts_by_provider(self, provider: str) -> list[Account]:
        return self._select_many({"payment_provider": f"eq.{provider}"})

    def list_accounts_with_legacy_customer(self) -> list[Account]:
        accounts = self._select_many({"stripe_customer_id": "not.is.null"})
        return [a for a in accounts if (a.legacy.stripe_customer_id or "").strip()]

    def set_generic_fields(self, account_id: str, generic: GenericFields) -> None:
        self._patch(account_id, generic.model_dump(exclude_unset=True))

    def set_legacy_fields(self, account_id: str, legacy: LegacyFields) -> None:
        self._patch(account_id, legacy.model_dump())
