import os
from dataclasses import dataclass

from dotenv import load_dotenv

load_dotenv()

PAYPAL_API_BASES = {
    "live": "https://api-m.paypal.com",
    "sandbox": "https://api-m.sandbox.paypal.com",
}


def must_env(name: str, value: str):
    if not value:
        raise RuntimeError(f"Missing required env: {name}")


def _env(name: str, default: str = "") -> str:
    return (os.getenv(name) or default).strip()


@dataclass(frozen=True)
class Settings:
    default_payment_provider: str
    base_url: str
    http_timeout_sec: float

    stripe_secret_key: str
    stripe_webhook_secret: str
    stripe_trial_days: int

    paypal_client_id: str
    paypal_client_secret: str
    paypal_webhook_id: str
    paypal_env: str
    paypal_brand_name: str

    @property
    def paypal_api_base(self) -> str:
        return PAYPAL_API_BASES.get(self.paypal_env, PAYPAL_API_BASES["sandbox"])

    def webhook_secret_for(self, provider: str) -> str:
        if provider == "card":
            return self.stripe_webhook_secret
        if provider == "wallet":
            return self.paypal_webhook_id
        return ""


def load_settings() -> Settings:
    """Read settings from the environment at call time (tests patch env freely)."""
    return Settings(
        default_payment_provider=_env("DEFAULT_PAYMENT_PROVIDER", "card").lower() or "card",
        base_url=_env("BASE_URL", "http://localhost:3000").rstrip("/"),
        http_timeout_sec=float(_env("PAYMENT_HTTP_TIMEOUT_SEC", "15")),
        stripe_secret_key=_env("STRIPE_SECRET_KEY"),
        stripe_webhook_secret=_env("STRIPE_WEBHOOK_SECRET"),
        stripe_trial_days=int(_env("STRIPE_TRIAL_DAYS", "14")),
        paypal_client_id=_env("PAYPAL_CLIENT_ID"),
        paypal_client_secret=_env("PAYPAL_CLIENT_SECRET"),
        paypal_webhook_id=_env("PAYPAL_WEBHOOK_ID"),
        paypal_env=_env("PAYPAL_ENV", "sandbox").lower(),
        paypal_brand_name=_env("PAYPAL_BRAND_NAME", "Paybridge"),
    )
