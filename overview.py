"""
Performance overview aggregation.

Trades are filtered to an overview range and rolled up in memory: headline
KPIs, an equity curve, P/L per day and per-instrument / per-timeframe tables.
A trade counts as closed once it has a realized P/L; winners are closed
trades with P/L above zero.
"""

from collections import OrderedDict
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional


class OverviewRange(str, Enum):
    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    MONTH = "month"
    YTD = "ytd"
    ALL = "all"


INSTRUMENT_TABLE_SIZE = 5


def range_start(range_: OverviewRange, now: datetime) -> Optional[datetime]:
    """Earliest `created_at` included in the range, or None for all-time."""
    range_ = OverviewRange(range_)
    if range_ is OverviewRange.LAST_7_DAYS:
        return now - timedelta(days=7)
    if range_ is OverviewRange.LAST_30_DAYS:
        return now - timedelta(days=30)
    if range_ is OverviewRange.MONTH:
        return datetime(now.year, now.month, 1, tzinfo=now.tzinfo)
    if range_ is OverviewRange.YTD:
        return datetime(now.year, 1, 1, tzinfo=now.tzinfo)
    return None


def _pl(trade: Dict[str, Any]) -> Optional[float]:
    value = trade.get("profit_loss")
    if value is None:
        return None
    return float(value)


def _is_closed(trade: Dict[str, Any]) -> bool:
    return trade.get("profit_loss") is not None


def _rollup(rows: Iterable[Dict[str, Any]], field: str, label: str) -> List[Dict[str, Any]]:
    groups: Dict[str, Dict[str, Any]] = OrderedDict()
    for t in rows:
        key = t.get(field) or "-"
        agg = groups.setdefault(key, {"trades": 0, "closed": 0, "wins": 0, "pl": 0.0})
        agg["trades"] += 1
        pl = _pl(t)
        if pl is not None:
            agg["closed"] += 1
            agg["pl"] += pl
            if pl > 0:
                agg["wins"] += 1

    table = [
        {
            label: key,
            "trades": a["trades"],
            "win_rate": round(a["wins"] / a["closed"] * 100, 1) if a["closed"] else 0,
            "total_pl": round(a["pl"], 2),
        }
        for key, a in groups.items()
    ]
    table.sort(key=lambda r: r["total_pl"], reverse=True)
    return table


def build_overview(rows: List[Dict[str, Any]], range_: OverviewRange) -> Dict[str, Any]:
    """Aggregate already range-filtered trades into the overview payload."""
    closed = [t for t in rows if _is_closed(t)]

    # KPIs
    total_pl = sum(_pl(t) for t in closed)
    winners = sum(1 for t in closed if _pl(t) > 0)
    win_rate = (winners / len(closed) * 100) if closed else 0
    avg_pl = (total_pl / len(closed)) if closed else 0

    # Equity curve (cumulative P/L over time)
    equity_curve: List[Dict[str, Any]] = []
    cum = 0.0
    for t in sorted(closed, key=lambda r: r["created_at"]):
        cum += _pl(t)
        equity_curve.append({"date": t["created_at"].isoformat(), "value": round(cum, 2)})

    # Profit by day
    by_day: Dict[str, float] = {}
    for t in closed:
        day_key = t["created_at"].date().isoformat()
        by_day[day_key] = by_day.get(day_key, 0.0) + _pl(t)
    profit_by_day = [{"date": d, "value": round(v, 2)} for d, v in sorted(by_day.items())]

    return {
        "range": OverviewRange(range_).value,
        "kpis": {
            "total_pl": round(total_pl, 2),
            "win_rate": round(win_rate, 1),
            "trades_count": len(rows),
            "avg_pl": round(avg_pl, 2),
        },
        "equity_curve": equity_curve,
        "profit_by_day": profit_by_day,
        "instrument_table": _rollup(rows, "symbol", "symbol")[:INSTRUMENT_TABLE_SIZE],
        "timeframe_table": _rollup(rows, "timeframe", "timeframe"),
    }
