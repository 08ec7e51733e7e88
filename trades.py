"""Trade documents, always scoped to the owning user."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

from database import to_naive_utc, to_object_id, utc_now
from schemas import Trade, TradeUpdate

logger = logging.getLogger(__name__)


class TradeNotFound(LookupError):
    pass


def _date_filter(start: Optional[datetime], end: Optional[datetime]) -> Dict[str, Any]:
    date_filter: Dict[str, Any] = {}
    if start is not None:
        date_filter["$gte"] = to_naive_utc(start)
    if end is not None:
        date_filter["$lte"] = to_naive_utc(end)
    return date_filter


def _query(user_id: str, start: Optional[datetime], end: Optional[datetime]) -> Dict[str, Any]:
    q: Dict[str, Any] = {"user_id": user_id}
    date_filter = _date_filter(start, end)
    if date_filter:
        q["created_at"] = date_filter
    return q


def find_trades(
    db: Database,
    user_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    newest_first: bool = True,
    limit: int = 0,
    skip: int = 0,
) -> List[Dict[str, Any]]:
    q = _query(user_id, start, end)
    cursor = db.trade.find(q).sort("created_at", DESCENDING if newest_first else ASCENDING)
    if skip:
        cursor = cursor.skip(skip)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def count_trades(
    db: Database,
    user_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> int:
    return db.trade.count_documents(_query(user_id, start, end))


def create_trade(db: Database, user_id: str, payload: Trade) -> Dict[str, Any]:
    data = payload.model_dump()
    now = utc_now()
    data["user_id"] = user_id
    data["created_at"] = now
    data["updated_at"] = now

    result = db.trade.insert_one(data)
    logger.info("Created trade %s (%s) for %s", result.inserted_id, data["symbol"], user_id)
    return data


def get_trade(db: Database, user_id: str, trade_id: str) -> Dict[str, Any]:
    doc = db.trade.find_one({"_id": to_object_id(trade_id), "user_id": user_id})
    if not doc:
        raise TradeNotFound(trade_id)
    return doc


def update_trade(db: Database, user_id: str, trade_id: str, payload: TradeUpdate) -> Dict[str, Any]:
    changes = payload.model_dump(exclude_unset=True)
    # symbol is required on the document
    if changes.get("symbol", "") is None:
        changes.pop("symbol")
    changes["updated_at"] = utc_now()

    doc = db.trade.find_one_and_update(
        {"_id": to_object_id(trade_id), "user_id": user_id},
        {"$set": changes},
        return_document=ReturnDocument.AFTER,
    )
    if not doc:
        raise TradeNotFound(trade_id)
    return doc


def delete_trade(db: Database, user_id: str, trade_id: str) -> None:
    res = db.trade.delete_one({"_id": to_object_id(trade_id), "user_id": user_id})
    if res.deleted_count == 0:
        raise TradeNotFound(trade_id)
    logger.info("Deleted trade %s for %s", trade_id, user_id)
