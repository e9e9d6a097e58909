from datetime import datetime, timezone

import pytest

from conftest import FakeResponse
from paybridge.domain.accounts.models import GenericFields, LegacyFields
from paybridge.infra.supabase import client as sb_client
from paybridge.infra.supabase.account_repo import SupabaseAccountStore

ROW = {
    "id": "acc_1",
    "name": "Acme",
    "payment_provider": "card",
    "payment_customer_id": "cus_1",
    "payment_subscription_id": "sub_1",
    "payment_product_id": "prod_1",
    "plan_name": "Pro",
    "subscription_status": "active",
    "stripe_customer_id": "cus_1",
    "stripe_subscription_id": "sub_1",
    "stripe_product_id": "prod_1",
    "subscription_updated_at": "2024-05-01T10:00:00+00:00",
}


@pytest.fixture
def calls(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://db.example.supabase.co")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-key")
    recorded = {"get": [], "patch": [], "patch_rows": [ROW]}

    def fake_get(url, headers=None, params=None, timeout=None):
        recorded["get"].append({"url": url, "params": params})
        return FakeResponse(200, [ROW])

    def fake_patch(url, headers=None, params=None, json=None, timeout=None):
        recorded["patch"].append({"url": url, "params": params, "json": json, "headers": headers})
        return FakeResponse(200, recorded["patch_rows"])

    monkeypatch.setattr(sb_client.requests, "get", fake_get)
    monkeypatch.setattr(sb_client.requests, "patch", fake_patch)
    return recorded


def test_account_from_row(calls):
    account = SupabaseAccountStore().get_account("acc_1")

    assert account.generic.triple() == ("cus_1", "sub_1", "prod_1")
    assert account.legacy.triple() == ("cus_1", "sub_1", "prod_1")
    assert account.subscription_updated_at == datetime(2024, 5, 1, 10, tzinfo=timezone.utc)
    assert calls["get"][0]["url"] == "https://db.example.supabase.co/rest/v1/accounts"
    assert calls["get"][0]["params"]["id"] == "eq.acc_1"


def test_card_customer_lookup_includes_legacy_column(calls):
    SupabaseAccountStore().get_account_by_provider_customer_id("card", "cus_1")
    assert calls["get"][0]["params"]["or"] == (
        '(and(payment_provider.eq.card,payment_customer_id.eq."cus_1"),stripe_customer_id.eq."cus_1")'
    )

    SupabaseAccountStore().get_account_by_provider_customer_id("wallet", "PAYER1")
    params = calls["get"][1]["params"]
    assert params["payment_provider"] == "eq.wallet"
    assert "or" not in params


def test_customer_id_cannot_break_out_of_or_filter(calls):
    SupabaseAccountStore().get_account_by_provider_customer_id("card", 'x),id.neq.0,(a"b\\')
    quoted = '"x),id.neq.0,(a\\"b\\\\"'
    assert calls["get"][0]["params"]["or"] == (
        f"(and(payment_provider.eq.card,payment_customer_id.eq.{quoted}),stripe_customer_id.eq.{quoted})"
    )


def test_card_link_writes_legacy_customer_in_same_patch(calls):
    SupabaseAccountStore().link_billing_identity("acc_1", "card", "cus_9")
    SupabaseAccountStore().link_billing_identity("acc_2", "wallet", "PAYER1")

    assert len(calls["patch"]) == 2
    card, wallet = (p["json"] for p in calls["patch"])
    assert (card["payment_customer_id"], card["stripe_customer_id"]) == ("cus_9", "cus_9")
    assert wallet["payment_customer_id"] == "PAYER1"
    assert "stripe_customer_id" not in wallet


def test_conditional_subscription_update(calls):
    occurred_at = datetime(2024, 5, 2, 8, tzinfo=timezone.utc)
    written = SupabaseAccountStore().update_account_subscription(
        "acc_1",
        GenericFields(payment_provider="card", payment_subscription_id="sub_2", subscription_status="active"),
        occurred_at=occurred_at,
        legacy=LegacyFields(stripe_customer_id="cus_1", stripe_subscription_id="sub_2", stripe_product_id="prod_1"),
    )

    assert written
    patch = calls["patch"][0]
    assert patch["params"]["id"] == "eq.acc_1"
    assert patch["params"]["or"] == (
        "(subscription_updated_at.is.null,subscription_updated_at.lte.2024-05-02T08:00:00+00:00)"
    )
    assert patch["headers"]["Prefer"] == "return=representation"
    body = patch["json"]
    assert body["payment_subscription_id"] == "sub_2"
    assert body["stripe_subscription_id"] == "sub_2"
    assert body["subscription_updated_at"] == "2024-05-02T08:00:00+00:00"
    assert "payment_customer_id" not in body
    assert "updated_at" in body


def test_rejected_conditional_update_returns_false(calls):
    calls["patch_rows"] = []
    written = SupabaseAccountStore().update_account_subscription(
        "acc_1",
        GenericFields(subscription_status="canceled"),
        occurred_at=datetime(2020, 1, 1, tzinfo=timezone.utc),
    )
    assert written is False


def test_missing_env_fails_fast(monkeypatch):
    monkeypatch.delenv("SUPABASE_URL", raising=False)
    with pytest.raises(RuntimeError, match="SUPABASE_URL"):
        SupabaseAccountStore().get_account("acc_1")
