from paybridge.services.payments.paypal_provider import PayPalPaymentProvider
from paybridge.services.payments.provider import PaymentProvider
from paybridge.services.payments.registry import ProviderRegistry
from paybridge.services.payments.stripe_provider import StripePaymentProvider

__all__ = [
    "PaymentProvider",
    "StripePaymentProvider",
    "PayPalPaymentProvider",
    "ProviderRegistry",
]
