import logging
from contextlib import asynccontextmanager
from datetime import datetime
from functools import lru_cache
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, File, HTTPException, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pymongo.database import Database
from starlette.concurrency import run_in_threadpool

import database
from auth import get_current_customer, get_current_user_id, require_pro
from billing import (
    BillingError,
    configure_stripe,
    construct_event,
    create_checkout_url,
    get_subscription_summary,
    handle_webhook_event,
    open_billing_portal,
)
from calendar_grid import CalendarView, build_month_grid, build_range, calendar_window, month_grid_bounds
from customers import public_customer
from database import InvalidId, get_db, serialize, to_naive_utc, utc_now
from extraction import extract_trade_from_image
from overview import OverviewRange, build_overview, range_start
from schemas import ExtractRequest, Trade, TradeUpdate
from settings import Settings, get_settings
from storage import ScreenshotStorage, StorageError
from trades import TradeNotFound, count_trades, create_trade, delete_trade, find_trades, get_trade, update_trade

settings = get_settings()

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes(database.db)
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set; API will answer 'Database not configured'")
    yield


app = FastAPI(title="Trading Journal API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -----------------------------
# Error mapping
# -----------------------------

@app.exception_handler(InvalidId)
async def invalid_id_handler(request: Request, exc: InvalidId):
    return JSONResponse(status_code=400, content={"detail": "Invalid id"})


@app.exception_handler(TradeNotFound)
async def trade_not_found_handler(request: Request, exc: TradeNotFound):
    return JSONResponse(status_code=404, content={"detail": "Trade not found"})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


@app.exception_handler(BillingError)
async def billing_error_handler(request: Request, exc: BillingError):
    return JSONResponse(status_code=exc.status_code, content={"detail": str(exc)})


# -----------------------------
# Dependencies
# -----------------------------

@lru_cache()
def get_storage() -> ScreenshotStorage:
    return ScreenshotStorage.from_settings(get_settings())


def get_optional_storage() -> Optional[ScreenshotStorage]:
    try:
        return get_storage()
    except StorageError:
        return None


def parse_anchor(anchor: Optional[datetime] = Query(None, description="ISO datetime inside the period to show")) -> datetime:
    return to_naive_utc(anchor) if anchor is not None else utc_now()


# -----------------------------
# Health / Test
# -----------------------------

@app.get("/")
def read_root():
    return {"message": "Trading Journal Backend Running"}


@app.get("/test")
def test_database():
    """Test endpoint to check if database is available and accessible"""
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": None,
        "database_name": None,
        "connection_status": "Not Connected",
        "collections": []
    }

    db = database.db
    try:
        if db is not None:
            response["database"] = "✅ Available"
            response["database_name"] = db.name if hasattr(db, 'name') else "✅ Connected"
            response["connection_status"] = "Connected"
            try:
                collections = db.list_collection_names()
                response["collections"] = collections[:10]
                response["database"] = "✅ Connected & Working"
            except Exception as e:
                response["database"] = f"⚠️  Connected but Error: {str(e)[:50]}"
        else:
            response["database"] = "⚠️  Available but not initialized"

    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:50]}"

    response["database_url"] = "✅ Set" if settings.database_url else "❌ Not Set"
    response["database_name"] = "✅ Set" if settings.database_name else "❌ Not Set"

    return response


# -----------------------------
# Profile
# -----------------------------

@app.get("/api/me")
def read_me(customer: Dict[str, Any] = Depends(get_current_customer)):
    return public_customer(customer)


# -----------------------------
# Trades CRUD
# -----------------------------

@app.get("/api/trades")
def list_trades(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(200, ge=1, le=1000),
    skip: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
):
    rows = find_trades(db, user_id, start=start, end=end, limit=limit, skip=skip)
    items = [serialize(d) for d in rows]
    total = count_trades(db, user_id, start=start, end=end)
    return {"items": items, "total": total}


@app.post("/api/trades", status_code=201)
def create_trade_endpoint(
    payload: Trade,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
):
    doc = create_trade(db, user_id, payload)
    return serialize(doc)


@app.get("/api/trades/{trade_id}")
def get_trade_endpoint(
    trade_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
    storage: Optional[ScreenshotStorage] = Depends(get_optional_storage),
):
    doc = serialize(get_trade(db, user_id, trade_id))
    url = doc.get("screenshot_url")
    doc["screenshot_signed_url"] = storage.resolve_signed_url(url) if storage else url
    return doc


@app.put("/api/trades/{trade_id}")
def update_trade_endpoint(
    trade_id: str,
    payload: TradeUpdate,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
):
    return serialize(update_trade(db, user_id, trade_id, payload))


@app.delete("/api/trades/{trade_id}")
def delete_trade_endpoint(
    trade_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
):
    delete_trade(db, user_id, trade_id)
    return {"ok": True}


# -----------------------------
# Screenshots / Extraction
# -----------------------------

@app.post("/api/screenshots", status_code=201)
def upload_screenshot(
    file: Optional[UploadFile] = File(None),
    user_id: str = Depends(get_current_user_id),
    storage: ScreenshotStorage = Depends(get_storage),
):
    if file is None:
        raise HTTPException(status_code=400, detail="No file uploaded")
    content = file.file.read()
    if not content:
        raise HTTPException(status_code=400, detail="No file uploaded")
    return storage.upload_screenshot(user_id, file.filename, content, file.content_type)


@app.post("/api/extract")
def extract_screenshot(
    payload: ExtractRequest,
    customer: Dict[str, Any] = Depends(require_pro),
    settings: Settings = Depends(get_settings),
):
    extracted = extract_trade_from_image(payload.image_url, settings)
    if extracted is None:
        return {"extracted": None, "draft": None}
    draft = extracted.to_trade_draft()
    draft["screenshot_url"] = payload.image_url
    return {"extracted": extracted.model_dump(), "draft": draft}


# -----------------------------
# Analytics
# -----------------------------

@app.get("/api/overview")
def overview(
    range_: OverviewRange = Query(OverviewRange.LAST_30_DAYS, alias="range"),
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
):
    start = range_start(range_, utc_now())
    rows = find_trades(db, user_id, start=start)
    return build_overview(rows, range_)


@app.get("/api/calendar")
def calendar_range(
    view: CalendarView = CalendarView.MONTH,
    anchor: datetime = Depends(parse_anchor),
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
):
    start, end = calendar_window(view, anchor)
    rows = find_trades(db, user_id, start=start, end=end, newest_first=False)
    return build_range(view, anchor, rows)


@app.get("/api/calendar/month")
def calendar_month(
    anchor: datetime = Depends(parse_anchor),
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
):
    grid_start, grid_end = month_grid_bounds(anchor)
    rows = find_trades(db, user_id, start=grid_start, end=grid_end, newest_first=False)
    return build_month_grid(anchor, rows)


# -----------------------------
# Billing
# -----------------------------

@app.get("/api/billing")
def billing_summary(
    customer: Dict[str, Any] = Depends(get_current_customer),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    summary = None
    if customer.get("stripe_subscription_id"):
        summary = get_subscription_summary(db, customer["user_id"], settings)
    return {
        "customer": public_customer(customer),
        "subscription": summary,
        "can_upgrade": bool(settings.stripe_payment_link_pro),
    }


@app.post("/api/billing/checkout")
def billing_checkout(
    user_id: str = Depends(get_current_user_id),
    settings: Settings = Depends(get_settings),
):
    return {"url": create_checkout_url(user_id, settings.stripe_payment_link_pro)}


@app.post("/api/billing/portal")
def billing_portal(
    user_id: str = Depends(get_current_user_id),
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    return {"url": open_billing_portal(db, user_id, settings)}


@app.post("/api/stripe/webhook")
async def stripe_webhook(
    request: Request,
    db: Database = Depends(get_db),
    settings: Settings = Depends(get_settings),
):
    payload = await request.body()
    event = construct_event(payload, request.headers.get("stripe-signature"), settings)
    configure_stripe(settings)
    result = await run_in_threadpool(handle_webhook_event, db, event)
    return {"received": True, **result}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
