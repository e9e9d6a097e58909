from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional

from paybridge.domain.accounts.models import Account, GenericFields, LegacyFields


class AccountStore(ABC):
    """
    Storage boundary for account subscription fields.
    Every operation is atomic for a single account row.
    """

    @abstractmethod
    def get_account(self, account_id: str) -> Optional[Account]:
        raise NotImplementedError

    @abstractmethod
    def get_account_by_provider_customer_id(self, provider: str, customer_id: str) -> Optional[Account]:
        raise NotImplementedError

    @abstractmethod
    def get_account_by_provider_subscription_id(self, provider: str, subscription_id: str) -> Optional[Account]:
        raise NotImplementedError

    @abstractmethod
    def update_account_subscription(
        self,
        account_id: str,
        generic: GenericFields,
        occurred_at: Optional[datetime] = None,
        legacy: Optional[LegacyFields] = None,
    ) -> bool:
        """
        Write the subscription part of the generic fields, plus `legacy` when given,
        as one row update.

        When `occurred_at` is given the write is conditional: it only lands if the
        row's `subscription_updated_at` is empty or not newer than `occurred_at`.
        Returns False when the condition rejected the write.
        """
        raise NotImplementedError

    @abstractmethod
    def link_billing_identity(self, account_id: str, provider: str, customer_id: str) -> None:
        """Set payment_provider and payment_customer_id; card also writes stripe_customer_id."""
        raise NotImplementedError

    @abstractmethod
    def list_accounts_by_provider(self, provider: str) -> list[Account]:
        raise NotImplementedError

    @abstractmethod
    def list_accounts_with_legacy_customer(self) -> list[Account]:
        raise NotImplementedError

    @abstractmethod
    def set_generic_fields(self, account_id: str, generic: GenericFields) -> None:
        raise NotImplementedError

    @abstractmethod
    def set_legacy_fields(self, account_id: str, legacy: LegacyFields) -> None:
        raise NotImplementedError
