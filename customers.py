"""Customer profiles: membership tier and the linked Stripe ids."""

import logging
from typing import Any, Dict, Optional

from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from database import utc_now
from schemas import Customer

logger = logging.getLogger(__name__)


def get_customer_by_user_id(db: Database, user_id: str) -> Optional[Dict[str, Any]]:
    return db.customer.find_one({"user_id": user_id})


def create_customer(db: Database, user_id: str) -> Dict[str, Any]:
    """Create a free-tier profile. Returns the existing one if a concurrent request won."""
    now = utc_now()
    doc = Customer(user_id=user_id, created_at=now, updated_at=now).model_dump()
    try:
        db.customer.insert_one(doc)
    except DuplicateKeyError:
        return get_customer_by_user_id(db, user_id)
    logger.info("Provisioned free customer profile for %s", user_id)
    return doc


def get_or_create_customer(db: Database, user_id: str) -> Dict[str, Any]:
    customer = get_customer_by_user_id(db, user_id)
    if customer is None:
        customer = create_customer(db, user_id)
    return customer


def update_customer_by_user_id(db: Database, user_id: str, changes: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    changes = dict(changes, updated_at=utc_now())
    return db.customer.find_one_and_update(
        {"user_id": user_id},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )


def update_customer_by_stripe_customer_id(
    db: Database, customer_id: str, changes: Dict[str, Any]
) -> Optional[Dict[str, Any]]:
    changes = dict(changes, updated_at=utc_now())
    return db.customer.find_one_and_update(
        {"stripe_customer_id": customer_id},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )


def public_customer(doc: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "user_id": doc["user_id"],
        "membership": doc.get("membership") or "free",
        "stripe_customer_id": doc.get("stripe_customer_id"),
        "has_subscription": bool(doc.get("stripe_subscription_id")),
    }
