from dataclasses import replace

from scripts.check_config import check, main


def test_complete_card_config_passes(settings):
    assert check(settings) == []
    assert main(settings=settings) == 0


def test_missing_card_credentials_are_listed(settings):
    broken = replace(settings, stripe_secret_key="", stripe_webhook_secret="")

    problems = check(broken)

    assert len(problems) == 2
    assert "STRIPE_SECRET_KEY" in problems[0]
    assert "STRIPE_WEBHOOK_SECRET" in problems[1]
    assert main(settings=broken) == 1


def test_wallet_default_checks_paypal_credentials_only(settings):
    wallet = replace(settings, default_payment_provider="paypal", stripe_secret_key="", paypal_client_secret="")

    problems = check(wallet)

    assert len(problems) == 1
    assert "PAYPAL_CLIENT_SECRET" in problems[0]


def test_bad_base_url_and_unknown_provider(settings):
    problems = check(replace(settings, base_url="app.example.com", default_payment_provider="crypto"))

    assert any("BASE_URL" in p for p in problems)
    assert any("DEFAULT_PAYMENT_PROVIDER" in p for p in problems)
