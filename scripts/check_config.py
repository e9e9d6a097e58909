# scripts/check_config.py
# usage: python scripts/check_config.py
import logging
import sys

from paybridge.config import Settings, load_settings, must_env
from paybridge.services.payments.registry import DEFAULT_FACTORIES, canonical_provider_name

PROVIDER_CREDENTIALS = {
    "card": (
        ("STRIPE_SECRET_KEY", "stripe_secret_key"),
        ("STRIPE_WEBHOOK_SECRET", "stripe_webhook_secret"),
    ),
    "wallet": (
        ("PAYPAL_CLIENT_ID", "paypal_client_id"),
        ("PAYPAL_CLIENT_SECRET", "paypal_client_secret"),
        ("PAYPAL_WEBHOOK_ID", "paypal_webhook_id"),
    ),
}


def check(settings: Settings) -> list[str]:
    """Return one message per configuration problem; empty means the config is usable."""
    problems: list[str] = []

    if not settings.base_url.startswith(("http://", "https://")):
        problems.append(f"BASE_URL must start with http:// or https:// (got {settings.base_url!r})")

    provider = canonical_provider_name(settings.default_payment_provider)
    if provider not in DEFAULT_FACTORIES:
        problems.append(f"DEFAULT_PAYMENT_PROVIDER {settings.default_payment_provider!r} is not supported")
        return problems

    for env_name, attr in PROVIDER_CREDENTIALS[provider]:
        try:
            must_env(env_name, getattr(settings, attr))
        except RuntimeError as exc:
            problems.append(f"{exc} (needed by {provider})")
    return problems


def main(settings=None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    settings = settings or load_settings()

    problems = check(settings)
    for problem in problems:
        logging.error("%s", problem)
    if problems:
        return 1

    logging.info(
        "configuration ok: default provider %s, base url %s",
        canonical_provider_name(settings.default_payment_provider),
        settings.base_url,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
