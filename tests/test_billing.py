"""Tests for membership mapping, Stripe customer sync and billing endpoints."""

from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest
import stripe

from billing import (
    BillingError,
    create_checkout_url,
    get_subscription_summary,
    handle_webhook_event,
    manage_subscription_status_change,
    membership_for_status,
    update_stripe_customer,
)
from customers import create_customer, get_customer_by_user_id
from tests.conftest import auth_headers


def subscription(status="active", sub_id="sub_1", customer="cus_1", product="prod_pro"):
    return {
        "id": sub_id,
        "status": status,
        "customer": customer,
        "cancel_at_period_end": False,
        "items": {"data": [{"price": {"product": product}, "current_period_end": 1767225600}]},
        "default_payment_method": {
            "card": {"brand": "visa", "last4": "4242", "exp_month": 4, "exp_year": 2030},
        },
    }


@pytest.fixture
def fake_stripe(monkeypatch):
    state = {"subscription": subscription(), "membership": "pro"}
    retrieve_sub = MagicMock(side_effect=lambda sub_id, **kw: dict(state["subscription"], id=sub_id))
    retrieve_product = MagicMock(side_effect=lambda prod_id, **kw: {"id": prod_id, "metadata": {"membership": state["membership"]}})
    monkeypatch.setattr(stripe.Subscription, "retrieve", retrieve_sub)
    monkeypatch.setattr(stripe.Product, "retrieve", retrieve_product)
    state["retrieve_subscription"] = retrieve_sub
    return state


@pytest.mark.parametrize("status, expected", [
    ("active", "pro"),
    ("trialing", "pro"),
    ("canceled", "free"),
    ("incomplete", "free"),
    ("incomplete_expired", "free"),
    ("past_due", "free"),
    ("paused", "free"),
    ("unpaid", "free"),
    ("something_new", "free"),
])
def test_membership_for_status(status, expected):
    assert membership_for_status(status, "pro") == expected


def test_checkout_url_tags_user():
    url = create_checkout_url("user_1", "https://buy.stripe.com/test_pro?prefilled_email=a%40b.c")
    query = parse_qs(urlparse(url).query)

    assert url.startswith("https://buy.stripe.com/test_pro?")
    assert query["client_reference_id"] == ["user_1"]
    assert query["prefilled_email"] == ["a@b.c"]


def test_checkout_url_replaces_existing_reference():
    url = create_checkout_url("user_1", "https://buy.stripe.com/x?client_reference_id=someone")
    assert parse_qs(urlparse(url).query)["client_reference_id"] == ["user_1"]


@pytest.mark.parametrize("link", [None, "", "not a url"])
def test_checkout_url_requires_link(link):
    with pytest.raises(BillingError):
        create_checkout_url("user_1", link)


def test_update_stripe_customer_creates_profile(mongo_db, fake_stripe):
    result = update_stripe_customer(mongo_db, "user_1", "sub_1", "cus_1")

    assert result["stripe_customer_id"] == "cus_1"
    assert result["stripe_subscription_id"] == "sub_1"
    assert result["membership"] == "free"
    fake_stripe["retrieve_subscription"].assert_called_with("sub_1", expand=["default_payment_method"])


def test_update_stripe_customer_requires_ids(mongo_db, fake_stripe):
    with pytest.raises(BillingError, match="Missing required parameters"):
        update_stripe_customer(mongo_db, "user_1", "", "cus_1")


def test_status_change_upgrades_and_downgrades(mongo_db, fake_stripe):
    create_customer(mongo_db, "user_1")
    mongo_db.customer.update_one({"user_id": "user_1"}, {"$set": {"stripe_customer_id": "cus_1"}})

    assert manage_subscription_status_change(mongo_db, "sub_1", "cus_1", "prod_pro") == "pro"
    assert get_customer_by_user_id(mongo_db, "user_1")["membership"] == "pro"

    fake_stripe["subscription"] = subscription(status="past_due")
    assert manage_subscription_status_change(mongo_db, "sub_1", "cus_1", "prod_pro") == "free"
    assert get_customer_by_user_id(mongo_db, "user_1")["membership"] == "free"


def test_status_change_rejects_bad_product_metadata(mongo_db, fake_stripe):
    fake_stripe["membership"] = "gold"
    with pytest.raises(BillingError, match="Invalid or missing membership"):
        manage_subscription_status_change(mongo_db, "sub_1", "cus_1", "prod_pro")


def test_status_change_for_unknown_customer(mongo_db, fake_stripe):
    with pytest.raises(BillingError):
        manage_subscription_status_change(mongo_db, "sub_1", "cus_unknown", "prod_pro")


def test_checkout_completed_event(mongo_db, fake_stripe):
    event = {
        "type": "checkout.session.completed",
        "data": {"object": {
            "mode": "subscription",
            "client_reference_id": "user_1",
            "customer": "cus_1",
            "subscription": "sub_1",
        }},
    }

    result = handle_webhook_event(mongo_db, event)

    assert result == {"handled": True, "type": "checkout.session.completed", "membership": "pro"}
    customer = get_customer_by_user_id(mongo_db, "user_1")
    assert customer["membership"] == "pro"
    assert customer["stripe_customer_id"] == "cus_1"


def test_subscription_deleted_event(mongo_db, fake_stripe):
    mongo_db.customer.insert_one({"user_id": "user_1", "membership": "pro", "stripe_customer_id": "cus_1"})
    fake_stripe["subscription"] = subscription(status="canceled")
    event = {"type": "customer.subscription.deleted", "data": {"object": subscription(status="canceled")}}

    result = handle_webhook_event(mongo_db, event)

    assert result["membership"] == "free"
    assert get_customer_by_user_id(mongo_db, "user_1")["membership"] == "free"


def test_other_events_are_ignored(mongo_db, fake_stripe):
    result = handle_webhook_event(mongo_db, {"type": "invoice.paid", "data": {"object": {}}})
    assert result == {"handled": False, "type": "invoice.paid"}


def test_subscription_summary(mongo_db, fake_stripe, test_settings):
    mongo_db.customer.insert_one({"user_id": "user_1", "membership": "pro", "stripe_subscription_id": "sub_1"})

    summary = get_subscription_summary(mongo_db, "user_1", test_settings)

    assert summary == {
        "status": "active",
        "cancel_at_period_end": False,
        "current_period_end": 1767225600,
        "payment_method": {"brand": "visa", "last4": "4242", "exp_month": 4, "exp_year": 2030},
    }


def test_subscription_summary_without_subscription(mongo_db, test_settings):
    create_customer(mongo_db, "user_1")
    assert get_subscription_summary(mongo_db, "user_1", test_settings) is None


# -----------------------------
# Endpoints
# -----------------------------

def test_checkout_endpoint_uses_pro_link(client):
    body = client.post("/api/billing/checkout", headers=auth_headers()).json()
    assert body["url"] == "https://buy.stripe.com/test_pro?client_reference_id=user_1"


def test_checkout_endpoint_ignores_caller_supplied_link(client):
    body = client.post(
        "/api/billing/checkout",
        json={"payment_link": "https://evil.example.com/pay"},
        headers=auth_headers(),
    ).json()
    assert body["url"] == "https://buy.stripe.com/test_pro?client_reference_id=user_1"


def test_checkout_endpoint_without_configured_link(client, test_settings):
    test_settings.stripe_payment_link_pro = None
    resp = client.post("/api/billing/checkout", headers=auth_headers())
    assert resp.status_code == 400


def test_portal_requires_stripe_customer(client):
    resp = client.post("/api/billing/portal", headers=auth_headers())
    assert resp.status_code == 404


def test_portal_session(client, mongo_db, monkeypatch):
    mongo_db.customer.insert_one({"user_id": "user_1", "membership": "pro", "stripe_customer_id": "cus_1"})
    create = MagicMock(return_value={"url": "https://billing.stripe.com/session/abc"})
    monkeypatch.setattr(stripe.billing_portal.Session, "create", create)

    body = client.post("/api/billing/portal", headers=auth_headers()).json()

    assert body == {"url": "https://billing.stripe.com/session/abc"}
    create.assert_called_once_with(customer="cus_1", return_url="https://journal.example.com/dashboard/billing")


def test_billing_summary_for_new_user(client):
    body = client.get("/api/billing", headers=auth_headers()).json()

    assert body["customer"]["membership"] == "free"
    assert body["subscription"] is None
    assert body["can_upgrade"] is True


def test_webhook_rejects_bad_signature(client):
    resp = client.post(
        "/api/stripe/webhook",
        content=b'{"type": "checkout.session.completed"}',
        headers={"stripe-signature": "t=1,v1=bad"},
    )
    assert resp.status_code == 400


def test_webhook_requires_signature(client):
    resp = client.post("/api/stripe/webhook", content=b"{}")
    assert resp.status_code == 400


def test_webhook_applies_verified_event(client, mongo_db, fake_stripe, monkeypatch):
    event = {
        "type": "checkout.session.completed",
        "data": {"object": {
            "mode": "subscription",
            "client_reference_id": "user_1",
            "customer": "cus_1",
            "subscription": "sub_1",
        }},
    }
    monkeypatch.setattr(stripe.Webhook, "construct_event", MagicMock(return_value=event))

    resp = client.post("/api/stripe/webhook", content=b"{}", headers={"stripe-signature": "t=1,v1=ok"})

    assert resp.status_code == 200
    assert resp.json()["membership"] == "pro"
    assert get_customer_by_user_id(mongo_db, "user_1")["membership"] == "pro"
