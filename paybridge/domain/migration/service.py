"""
Move card-processor subscription data between the legacy stripe_* columns and the
generic payment_* columns.

All three operations are safe to re-run. migrate and rollback abort on the first
failing row with MigrationAborted carrying how many rows were already done; the
rows before it stay written and a re-run picks up from there.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable

from paybridge.domain.accounts.models import Account, GenericFields, LegacyFields
from paybridge.domain.accounts.store import AccountStore
from paybridge.services.payments.errors import MigrationAborted

logger = logging.getLogger(__name__)

CARD_PROVIDER = "card"
OPERATIONS = ("migrate", "rollback", "validate")


@dataclass
class MigrationReport:
    operation: str
    processed: int = 0
    inconsistent_account_ids: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.inconsistent_account_ids

    def as_dict(self) -> dict:
        return {
            "operation": self.operation,
            "processed": self.processed,
            "inconsistent_account_ids": list(self.inconsistent_account_ids),
            "ok": self.ok,
        }


def _load(operation: str, loader: Callable[[], list[Account]]) -> list[Account]:
    try:
        return loader()
    except Exception as exc:
        raise MigrationAborted(operation, 0, exc) from exc


def _run_batch(operation: str, accounts: list[Account], write: Callable[[Account], None]) -> MigrationReport:
    report = MigrationReport(operation=operation)
    for account in accounts:
        try:
            write(account)
        except Exception as exc:
            logger.error("[%s] account %s failed after %d row(s): %s", operation, account.id, report.processed, exc)
            raise MigrationAborted(operation, report.processed, exc) from exc
        report.processed += 1
        logger.info("[%s] account %s (%s)", operation, account.id, account.name or "-")
    return report


def migrate(store: AccountStore) -> MigrationReport:
    """Copy the legacy card triple into the generic fields and tag the provider."""
    accounts = []
    for account in _load("migrate", store.list_accounts_with_legacy_customer):
        provider = account.generic.payment_provider
        if provider and provider != CARD_PROVIDER:
            # legacy columns are only mirrored for card, so these are stale
            logger.info("[migrate] account %s belongs to %s, skipped", account.id, provider)
            continue
        accounts.append(account)
    logger.info("[migrate] %d account(s) carry a legacy card customer id", len(accounts))

    def write(account: Account) -> None:
        store.set_generic_fields(
            account.id,
            GenericFields(
                payment_provider=CARD_PROVIDER,
                payment_customer_id=account.legacy.stripe_customer_id,
                payment_subscription_id=account.legacy.stripe_subscription_id,
                payment_product_id=account.legacy.stripe_product_id,
            ),
        )

    return _run_batch("migrate", accounts, write)


def rollback(store: AccountStore) -> MigrationReport:
    """Copy the generic triple back into the legacy card columns."""
    accounts = _load("rollback", lambda: store.list_accounts_by_provider(CARD_PROVIDER))
    logger.info("[rollback] %d card account(s)", len(accounts))

    def write(account: Account) -> None:
        store.set_legacy_fields(
            account.id,
            LegacyFields(
                stripe_customer_id=account.generic.payment_customer_id,
                stripe_subscription_id=account.generic.payment_subscription_id,
                stripe_product_id=account.generic.payment_product_id,
            ),
        )

    return _run_batch("rollback", accounts, write)


def validate(store: AccountStore) -> MigrationReport:
    """Report every card account whose legacy and generic triples differ. Read-only."""
    report = MigrationReport(operation="validate")
    for account in _load("validate", lambda: store.list_accounts_by_provider(CARD_PROVIDER)):
        report.processed += 1
        if account.legacy.triple() != account.generic.triple():
            report.inconsistent_account_ids.append(account.id)
            logger.warning("[validate] account %s (%s) is inconsistent", account.id, account.name or "-")

    if report.ok:
        logger.info("[validate] %d card account(s) consistent", report.processed)
    else:
        logger.warning("[validate] %d inconsistent account(s)", len(report.inconsistent_account_ids))
    return report


def run(store: AccountStore, operation: str) -> MigrationReport:
    if operation == "migrate":
        return migrate(store)
    if operation == "rollback":
        return rollback(store)
    if operation == "validate":
        return validate(store)
    raise ValueError(f"Invalid operation: {operation}")
