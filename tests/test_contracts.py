import importlib
import json

import stripe

from conftest import stripe_headers
from paybridge.domain.accounts.models import Account, LegacyFields

EXPECTED_PATHS = {
    "/api/{provider}/webhook",
    "/api/{provider}/checkout",
    "/api/billing/checkout",
    "/api/billing/portal",
    "/api/billing/products",
    "/api/billing/prices",
    "/api/migrate",
}


def test_import_app():
    module = importlib.import_module("paybridge.main")
    assert hasattr(module, "app")


def test_routes_exist(app_instance):
    paths = {route.path for route in app_instance.routes}
    for expected in EXPECTED_PATHS:
        assert expected in paths


def _subscription_event(status="active") -> bytes:
    return json.dumps({
        "id": "evt_1",
        "type": "customer.subscription.updated",
        "created": 1714557600,
        "data": {"object": {
            "id": "sub_1",
            "customer": "cus_1",
            "status": status,
            "items": {"data": [{"price": {"id": "price_1", "product": {"id": "prod_1", "name": "Pro"}}}]},
        }},
    }).encode()


def test_webhook_applies_signed_delivery(client, store):
    store.add(Account(id="acc_1", legacy=LegacyFields(stripe_customer_id="cus_1")))
    body = _subscription_event()

    response = client.post("/api/card/webhook", content=body, headers=stripe_headers(body))

    assert response.status_code == 200
    assert response.json() == {"ok": True, "received": True, "status": "applied"}
    assert store.get_account("acc_1").generic.payment_subscription_id == "sub_1"


def test_webhook_rejects_bad_signature(client, store):
    store.add(Account(id="acc_1", legacy=LegacyFields(stripe_customer_id="cus_1")))
    body = _subscription_event()
    headers = stripe_headers(body, secret="whsec_not_ours")

    response = client.post("/api/card/webhook", content=body, headers=headers)

    assert response.status_code == 400
    assert response.json()["ok"] is False
    assert store.writes == []


def test_webhook_malformed_body_is_400(client):
    body = b"[1, 2"
    response = client.post("/api/card/webhook", content=body, headers=stripe_headers(body))
    assert response.status_code == 400


def test_webhook_unknown_provider_is_404(client):
    response = client.post("/api/crypto/webhook", content=b"{}")
    assert response.status_code == 404


def test_webhook_unknown_event_is_acknowledged(client):
    body = json.dumps({"id": "evt_2", "type": "invoice.created", "data": {"object": {}}}).encode()
    response = client.post("/api/card/webhook", content=body, headers=stripe_headers(body))
    assert response.status_code == 200
    assert response.json()["status"] == "ignored"


def test_checkout_without_account_returns_redirect(client):
    response = client.post("/api/billing/checkout", json={"price_id": "price_1"})
    assert response.status_code == 200
    payload = response.json()
    assert payload["ok"] is False
    assert payload["redirect_url"] == "/sign-up?redirect=checkout&priceId=price_1"


def test_checkout_returns_session_url(client, store, monkeypatch):
    store.add(Account(id="acc_1"))
    monkeypatch.setattr(stripe.checkout.Session, "create", lambda **kw: {"url": "https://checkout.stripe.test/cs"})

    response = client.post(
        "/api/billing/checkout",
        json={"price_id": "price_1", "account_id": "acc_1", "actor_id": "user_1"},
    )

    assert response.status_code == 200
    assert response.json()["checkout_url"] == "https://checkout.stripe.test/cs"


def test_checkout_provider_outage_is_503(client, store, monkeypatch):
    store.add(Account(id="acc_1"))

    def unreachable(**kwargs):
        raise stripe.APIConnectionError("timeout")

    monkeypatch.setattr(stripe.checkout.Session, "create", unreachable)
    response = client.post(
        "/api/billing/checkout",
        json={"price_id": "price_1", "account_id": "acc_1", "actor_id": "user_1", "provider": "card"},
    )
    assert response.status_code == 503


def test_checkout_unsupported_provider_is_404(client, store):
    store.add(Account(id="acc_1"))
    response = client.post(
        "/api/billing/checkout",
        json={"price_id": "price_1", "account_id": "acc_1", "actor_id": "user_1", "provider": "crypto"},
    )
    assert response.status_code == 404


def test_portal_without_identity_redirects_to_pricing(client, store):
    store.add(Account(id="acc_1"))
    response = client.post("/api/billing/portal", json={"account_id": "acc_1"})
    assert response.status_code == 200
    assert response.json()["redirect_url"] == "/pricing"

    assert client.post("/api/billing/portal", json={"account_id": "missing"}).status_code == 404


def test_prices_outage_is_503(client, monkeypatch):
    def unreachable(**kwargs):
        raise stripe.APIConnectionError("timeout")

    monkeypatch.setattr(stripe.Price, "list", unreachable)
    response = client.get("/api/billing/prices")
    assert response.status_code == 503
    assert response.json()["ok"] is False


def test_checkout_return_without_identifier_goes_to_pricing(client):
    response = client.get("/api/card/checkout", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/pricing"


def test_checkout_return_failure_goes_to_error(client, monkeypatch):
    def broken(sid, **kwargs):
        raise stripe.APIConnectionError("down")

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", broken)
    response = client.get("/api/card/checkout?session_id=cs_1", follow_redirects=False)
    assert response.status_code == 303
    assert response.headers["location"] == "/error"


def test_migrate_endpoint(client, store):
    store.add(Account(id="acc_1", legacy=LegacyFields(stripe_customer_id="cus_1")))

    migrated = client.post("/api/migrate", json={"operation": "migrate"})
    validated = client.post("/api/migrate", json={"operation": "validate"})

    assert migrated.json()["processed"] == 1
    assert validated.json() == {
        "ok": True,
        "error": None,
        "operation": "validate",
        "processed": 1,
        "inconsistent_account_ids": [],
    }
    assert client.post("/api/migrate", json={"operation": "drop"}).status_code == 422


def test_migrate_abort_is_500(client, store):
    store.add(Account(id="acc_1", legacy=LegacyFields(stripe_customer_id="cus_1")))
    store.fail_on.add("acc_1")

    response = client.post("/api/migrate", json={"operation": "migrate"})

    assert response.status_code == 500
    assert response.json()["processed"] == 0
