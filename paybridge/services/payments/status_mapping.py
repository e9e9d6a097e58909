import logging

from paybridge.services.payments.models import SubscriptionStatus

logger = logging.getLogger(__name__)

_STRIPE_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.TRIALING,
    "canceled": SubscriptionStatus.CANCELED,
    "unpaid": SubscriptionStatus.UNPAID,
    "incomplete_expired": SubscriptionStatus.CANCELED,
    "paused": SubscriptionStatus.SUSPENDED,
}

_PAYPAL_STATUS_MAP = {
    "active": SubscriptionStatus.ACTIVE,
    "cancelled": SubscriptionStatus.CANCELED,
    "canceled": SubscriptionStatus.CANCELED,
    "suspended": SubscriptionStatus.SUSPENDED,
    "expired": SubscriptionStatus.CANCELED,
}

_STATUS_MAPS = {
    "card": _STRIPE_STATUS_MAP,
    "wallet": _PAYPAL_STATUS_MAP,
}


def normalize_status(provider: str, native_status: str | None) -> SubscriptionStatus:
    """
    Map a provider's native subscription status onto SubscriptionStatus.
    Unmapped values become UNKNOWN so the rest of the record can still be applied.
    """
    key = (native_status or "").strip().lower()
    status = _STATUS_MAPS.get(provider, {}).get(key)
    if status is None:
        logger.info("unmapped %s subscription status %r -> unknown", provider, native_status)
        return SubscriptionStatus.UNKNOWN
    return status
