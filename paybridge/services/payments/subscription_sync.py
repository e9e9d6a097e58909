import logging
from typing import Optional

from paybridge.domain.accounts.models import Account, GenericFields, LegacyFields
from paybridge.domain.accounts.store import AccountStore
from paybridge.services.payments.models import (
    TERMINAL_STATUSES,
    SubscriptionChangeRecord,
    WebhookOutcome,
)

logger = logging.getLogger(__name__)


def resolve_account(store: AccountStore, record: SubscriptionChangeRecord) -> Optional[Account]:
    """Explicit correlation id first, then provider customer id, then subscription id."""
    if record.account_external_id:
        account = store.get_account(record.account_external_id)
        if account:
            return account
    if record.provider_customer_id:
        account = store.get_account_by_provider_customer_id(record.provider, record.provider_customer_id)
        if account:
            return account
    return store.get_account_by_provider_subscription_id(record.provider, record.provider_subscription_id)


def _generic_fields_for(record: SubscriptionChangeRecord, account: Account) -> GenericFields:
    customer_id = (
        record.provider_customer_id
        or (account.generic.payment_customer_id if account.generic.payment_provider == record.provider else None)
        or (account.legacy.stripe_customer_id if record.provider == "card" else None)
    )

    if record.status in TERMINAL_STATUSES:
        return GenericFields(
            payment_provider=record.provider,
            payment_customer_id=customer_id,
            payment_subscription_id=None,
            payment_product_id=None,
            plan_name=None,
            subscription_status=record.status.value,
        )

    # active/trialing/unknown: write what the event tells us; a product or plan the
    # provider lookup could not resolve keeps its stored value
    fields = GenericFields(
        payment_provider=record.provider,
        payment_customer_id=customer_id,
        payment_subscription_id=record.provider_subscription_id,
        subscription_status=record.status.value,
    )
    if record.provider_product_id:
        fields.payment_product_id = record.provider_product_id
    if record.plan_name:
        fields.plan_name = record.plan_name
    return fields


def _legacy_mirror(generic: GenericFields, account: Account) -> LegacyFields:
    data = generic.model_dump(exclude_unset=True)
    return LegacyFields(
        stripe_customer_id=generic.payment_customer_id,
        stripe_subscription_id=data.get("payment_subscription_id", account.legacy.stripe_subscription_id),
        stripe_product_id=data.get("payment_product_id", account.legacy.stripe_product_id),
    )


def apply_subscription_change(store: AccountStore, record: SubscriptionChangeRecord) -> WebhookOutcome:
    """
    Write one SubscriptionChangeRecord onto its account.

    Re-applying the same record converges to the same row (last-write-wins on
    `occurred_at`, ties accepted). Card accounts get their legacy columns written in
    the same update so both representations stay equal while migration is ongoing.
    """
    if not (record.account_external_id or record.provider_customer_id):
        logger.error(
            "[billing] %s subscription %s carries no account correlation id, dropped",
            record.provider,
            record.provider_subscription_id,
        )
        return WebhookOutcome.DROPPED

    account = resolve_account(store, record)
    if account is None:
        logger.error(
            "[billing] no account for %s customer=%s account=%s subscription=%s, dropped",
            record.provider,
            record.provider_customer_id,
            record.account_external_id,
            record.provider_subscription_id,
        )
        return WebhookOutcome.DROPPED

    generic = _generic_fields_for(record, account)
    legacy = _legacy_mirror(generic, account) if record.provider == "card" else None

    written = store.update_account_subscription(
        account.id,
        generic,
        occurred_at=record.occurred_at,
        legacy=legacy,
    )
    if not written:
        logger.info(
            "[billing] stale %s delivery for account %s (occurred_at=%s), skipped",
            record.provider,
            account.id,
            record.occurred_at.isoformat(),
        )
        return WebhookOutcome.STALE

    logger.info(
        "[billing] account %s -> %s/%s status=%s",
        account.id,
        record.provider,
        generic.payment_subscription_id,
        record.status.value,
    )
    return WebhookOutcome.APPLIED
