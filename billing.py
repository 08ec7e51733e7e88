"""
Stripe billing.

Upgrades go through a Stripe payment link tagged with the user id
(`client_reference_id`). Stripe then reports checkout and subscription
changes to the webhook, which stores the Stripe ids on the customer profile
and maps the subscription status to a membership tier. The tier a product
grants is read from its `membership` metadata.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

import stripe
from pymongo.database import Database

from customers import (
    create_customer,
    get_customer_by_user_id,
    update_customer_by_stripe_customer_id,
    update_customer_by_user_id,
)
from settings import Settings

logger = logging.getLogger(__name__)

MEMBERSHIPS = ("free", "pro")
ENTITLED_STATUSES = ("active", "trialing")
SUBSCRIPTION_EVENTS = (
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
)


class BillingError(Exception):
    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def _field(obj: Any, key: str, default: Any = None) -> Any:
    """Read a key from a Stripe object or a plain dict."""
    if obj is None:
        return default
    try:
        value = obj[key]
    except (KeyError, TypeError, IndexError):
        return getattr(obj, key, default)
    return default if value is None else value


def configure_stripe(settings: Settings) -> None:
    if not settings.stripe_secret_key:
        raise BillingError("Stripe is not configured", status_code=503)
    stripe.api_key = settings.stripe_secret_key


def membership_for_status(status: str, membership: str) -> str:
    """Active and trialing subscriptions keep the product's tier; anything else is free."""
    if status in ENTITLED_STATUSES:
        return membership
    return "free"


def create_checkout_url(user_id: str, payment_link_url: Optional[str]) -> str:
    if not user_id:
        raise BillingError("User must be authenticated", status_code=401)
    if not payment_link_url:
        raise BillingError("Payment link URL is required")

    parsed = urlparse(payment_link_url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise BillingError("Payment link URL is invalid")
    query = [(k, v) for k, v in parse_qsl(parsed.query, keep_blank_values=True) if k != "client_reference_id"]
    query.append(("client_reference_id", user_id))
    return urlunparse(parsed._replace(query=urlencode(query)))


def open_billing_portal(db: Database, user_id: str, settings: Settings) -> str:
    """Create a Billing Portal session and return its URL."""
    customer = get_customer_by_user_id(db, user_id)
    if not customer or not customer.get("stripe_customer_id"):
        raise BillingError("No Stripe customer found for this user. Complete a checkout first.", status_code=404)

    configure_stripe(settings)
    return_url = f"{settings.app_url.rstrip('/')}/dashboard/billing"
    try:
        session = stripe.billing_portal.Session.create(
            customer=customer["stripe_customer_id"],
            return_url=return_url,
        )
    except stripe.StripeError as e:
        logger.error("Error opening billing portal for %s: %s", user_id, e)
        raise BillingError("Failed to open billing portal", status_code=502)
    return _field(session, "url")


def _get_subscription(subscription_id: str) -> Any:
    return stripe.Subscription.retrieve(subscription_id, expand=["default_payment_method"])


def update_stripe_customer(db: Database, user_id: str, subscription_id: str, customer_id: str) -> Dict[str, Any]:
    """Link a completed checkout's Stripe customer and subscription to the user."""
    if not user_id or not subscription_id or not customer_id:
        raise BillingError("Missing required parameters for update_stripe_customer")

    try:
        subscription = _get_subscription(subscription_id)
    except stripe.StripeError as e:
        logger.error("Error retrieving subscription %s: %s", subscription_id, e)
        raise BillingError("Failed to update Stripe customer", status_code=502)

    if get_customer_by_user_id(db, user_id) is None:
        create_customer(db, user_id)

    result = update_customer_by_user_id(db, user_id, {
        "stripe_customer_id": customer_id,
        "stripe_subscription_id": _field(subscription, "id", subscription_id),
    })
    if result is None:
        raise BillingError("Failed to update customer profile", status_code=500)
    logger.info("Linked Stripe customer %s to %s", customer_id, user_id)
    return result


def manage_subscription_status_change(db: Database, subscription_id: str, customer_id: str, product_id: str) -> str:
    """Store the membership a subscription currently grants and return it."""
    if not subscription_id or not customer_id or not product_id:
        raise BillingError("Missing required parameters for manage_subscription_status_change")

    try:
        subscription = _get_subscription(subscription_id)
        product = stripe.Product.retrieve(product_id)
    except stripe.StripeError as e:
        logger.error("Error retrieving subscription %s / product %s: %s", subscription_id, product_id, e)
        raise BillingError("Failed to update subscription status", status_code=502)

    membership = _field(_field(product, "metadata"), "membership")
    if membership not in MEMBERSHIPS:
        raise BillingError(f"Invalid or missing membership type in product metadata: {membership}")

    status = _field(subscription, "status")
    membership_status = membership_for_status(status, membership)

    result = update_customer_by_stripe_customer_id(db, customer_id, {
        "stripe_subscription_id": _field(subscription, "id", subscription_id),
        "membership": membership_status,
    })
    if result is None:
        raise BillingError("Failed to update subscription status", status_code=404)
    logger.info("Customer %s is now %s (subscription %s)", customer_id, membership_status, status)
    return membership_status


def _first_item(subscription: Any) -> Any:
    items = _field(_field(subscription, "items"), "data") or []
    return items[0] if items else None


def _product_id(subscription: Any) -> Optional[str]:
    product = _field(_field(_first_item(subscription), "price"), "product")
    if product is None or isinstance(product, str):
        return product
    return _field(product, "id")


def get_subscription_summary(db: Database, user_id: str, settings: Settings) -> Optional[Dict[str, Any]]:
    customer = get_customer_by_user_id(db, user_id)
    if not customer or not customer.get("stripe_subscription_id"):
        return None

    configure_stripe(settings)
    try:
        subscription = _get_subscription(customer["stripe_subscription_id"])
    except stripe.StripeError as e:
        logger.error("Error loading subscription summary for %s: %s", user_id, e)
        return None

    # newer API versions report the period on the subscription item
    period_end = _field(subscription, "current_period_end") or _field(_first_item(subscription), "current_period_end")

    payment_method = None
    pm = _field(subscription, "default_payment_method")
    card = _field(pm, "card") if pm is not None and not isinstance(pm, str) else None
    if card is not None:
        payment_method = {
            "brand": _field(card, "brand"),
            "last4": _field(card, "last4"),
            "exp_month": _field(card, "exp_month"),
            "exp_year": _field(card, "exp_year"),
        }

    return {
        "status": _field(subscription, "status"),
        "cancel_at_period_end": bool(_field(subscription, "cancel_at_period_end", False)),
        "current_period_end": period_end,
        "payment_method": payment_method,
    }


def construct_event(payload: bytes, sig_header: Optional[str], settings: Settings) -> Any:
    if not settings.stripe_webhook_secret:
        raise BillingError("Stripe webhook secret is not configured", status_code=503)
    if not sig_header:
        raise BillingError("Missing Stripe-Signature header")
    try:
        return stripe.Webhook.construct_event(payload, sig_header, settings.stripe_webhook_secret)
    except ValueError:
        raise BillingError("Invalid payload")
    except stripe.SignatureVerificationError:
        raise BillingError("Invalid signature")


def handle_webhook_event(db: Database, event: Any) -> Dict[str, Any]:
    """Apply a verified Stripe event. Unhandled event types are acknowledged and ignored."""
    event_type = _field(event, "type")
    obj = _field(_field(event, "data"), "object")

    if event_type == "checkout.session.completed":
        if _field(obj, "mode") != "subscription":
            return {"handled": False, "type": event_type}
        subscription_id = _field(obj, "subscription")
        customer_id = _field(obj, "customer")
        update_stripe_customer(db, _field(obj, "client_reference_id"), subscription_id, customer_id)

        try:
            product_id = _product_id(_get_subscription(subscription_id))
        except stripe.StripeError as e:
            logger.error("Error retrieving subscription %s: %s", subscription_id, e)
            raise BillingError("Failed to update subscription status", status_code=502)
        membership = manage_subscription_status_change(db, subscription_id, customer_id, product_id)
        return {"handled": True, "type": event_type, "membership": membership}

    if event_type in SUBSCRIPTION_EVENTS:
        membership = manage_subscription_status_change(
            db, _field(obj, "id"), _field(obj, "customer"), _product_id(obj)
        )
        return {"handled": True, "type": event_type, "membership": membership}

    logger.debug("Ignoring Stripe event %s", event_type)
    return {"handled": False, "type": event_type}
