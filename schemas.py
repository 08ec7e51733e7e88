"""
Database Schemas for Trading Journal

Each document model here represents a MongoDB collection. The collection
name is the lowercase of the class name (e.g., Trade -> "trade").
Request-only models live alongside them.
"""

import math

from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import Any, Dict, List, Literal, Optional
from datetime import datetime

Membership = Literal["free", "pro"]


def clean_number_list(value: Any) -> Optional[List[float]]:
    """Drop null/blank entries from a numeric list; empty or non-list -> None.

    Raises ValueError for entries that are not finite numbers.
    """
    if not isinstance(value, (list, tuple)):
        return None
    cleaned: List[float] = []
    for v in value:
        if v is None or isinstance(v, bool):
            continue
        if isinstance(v, str):
            v = v.strip()
            if not v:
                continue
        elif not isinstance(v, (int, float)):
            raise ValueError(f"expected a number, got {type(v).__name__}")
        n = float(v)
        if not math.isfinite(n):
            raise ValueError("numbers must be finite")
        cleaned.append(n)
    return cleaned or None


# ==========================
# Core Collections
# ==========================

class TradeFields(BaseModel):
    """Fields shared by trade creation and partial updates."""
    model_config = ConfigDict(allow_inf_nan=False)

    timeframe: Optional[str] = Field(None, description="Chart timeframe, e.g., H1, M15")
    position: Optional[str] = Field(None, description="Raw side label, e.g., buy/sell")
    position_sizes: Optional[List[float]] = Field(None, description="Size of each fill")
    total_position_size: Optional[float] = Field(None, description="Total position size (lots)")
    entry_prices: Optional[List[float]] = Field(None, description="Price of each entry")
    stop_loss: Optional[float] = Field(None, description="Stop loss price")
    take_profit: Optional[List[float]] = Field(None, description="Take profit targets")
    trade_direction: Optional[str] = Field(None, description="Bias, e.g., bullish/bearish")
    additional_notes: Optional[str] = Field(None, description="Free-form notes")
    observation: Optional[str] = Field(None, description="What the chart showed")
    profit_loss: Optional[float] = Field(None, description="Realized P/L in account currency")
    pips: Optional[int] = Field(None, description="Result in pips")
    screenshot_url: Optional[str] = Field(None, description="Storage key or signed URL of the screenshot")

    @field_validator("position_sizes", "entry_prices", "take_profit", mode="before")
    @classmethod
    def _numeric_lists(cls, v: Any) -> Optional[List[float]]:
        if v is None:
            return None
        if isinstance(v, (int, float, str)) and not isinstance(v, bool):
            v = [v]
        return clean_number_list(v)


class Trade(TradeFields):
    """
    Trading journal entry
    Collection: trade
    """
    symbol: str = Field(..., min_length=1, description="Ticker or instrument symbol, e.g., XAUUSD, BTCUSDT")

    @field_validator("symbol")
    @classmethod
    def _symbol(cls, v: str) -> str:
        v = v.strip().upper()
        if not v:
            raise ValueError("symbol must not be blank")
        return v


class TradeUpdate(TradeFields):
    """Partial update; only fields sent by the client are written."""
    symbol: Optional[str] = Field(None, min_length=1)

    @field_validator("symbol")
    @classmethod
    def _symbol(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip().upper()
        if not v:
            raise ValueError("symbol must not be blank")
        return v


class Customer(BaseModel):
    """
    Subscription profile of a user
    Collection: customer
    """
    user_id: str
    membership: Membership = "free"
    stripe_customer_id: Optional[str] = None
    stripe_subscription_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


# ==========================
# Extraction
# ==========================

class ExtractedTrade(BaseModel):
    """Canonical trade fields read from a screenshot."""
    symbol: Optional[str] = None
    direction: Optional[Literal["long", "short"]] = None
    entry: Optional[float] = None
    entry_list: List[float] = Field(default_factory=list)
    stop: Optional[float] = None
    targets: List[float] = Field(default_factory=list)
    lots: Optional[float] = None
    timeframe: Optional[str] = None
    additional_notes: Optional[str] = None
    observation: Optional[str] = None
    position_sizes: List[float] = Field(default_factory=list)

    def to_trade_draft(self) -> Dict[str, Any]:
        """Prefill values for the journal form, keyed like `Trade`."""
        entries = self.entry_list or ([self.entry] if self.entry is not None else [])
        return {
            "symbol": self.symbol.upper() if self.symbol else None,
            "timeframe": self.timeframe,
            "position": {"long": "buy", "short": "sell"}.get(self.direction or ""),
            "trade_direction": {"long": "bullish", "short": "bearish"}.get(self.direction or ""),
            "position_sizes": self.position_sizes or None,
            "total_position_size": self.lots,
            "entry_prices": entries or None,
            "stop_loss": self.stop,
            "take_profit": self.targets or None,
            "additional_notes": self.additional_notes,
            "observation": self.observation,
        }


class ExtractRequest(BaseModel):
    image_url: str = Field(..., min_length=1, description="Signed URL of the uploaded screenshot")

