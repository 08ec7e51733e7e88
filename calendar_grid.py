"""Calendar windows (day / week / month grid) with Monday-start weeks."""

from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Any, Dict, List, Tuple

CHIPS_PER_DAY = 3


class CalendarView(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


def start_of_day(d: datetime) -> datetime:
    return datetime.combine(d.date(), time.min)


def end_of_day(d: datetime) -> datetime:
    return datetime.combine(d.date(), time.max)


def start_of_week(d: datetime) -> datetime:
    # weekday(): Monday == 0
    return start_of_day(d - timedelta(days=d.weekday()))


def end_of_week(d: datetime) -> datetime:
    return end_of_day(start_of_week(d) + timedelta(days=6))


def month_grid_bounds(anchor: datetime) -> Tuple[datetime, datetime]:
    first = datetime(anchor.year, anchor.month, 1)
    if anchor.month == 12:
        next_first = datetime(anchor.year + 1, 1, 1)
    else:
        next_first = datetime(anchor.year, anchor.month + 1, 1)
    last = next_first - timedelta(days=1)
    return start_of_week(first), end_of_week(last)


def calendar_window(view: CalendarView, anchor: datetime) -> Tuple[datetime, datetime]:
    view = CalendarView(view)
    if view is CalendarView.DAY:
        return start_of_day(anchor), end_of_day(anchor)
    if view is CalendarView.WEEK:
        return start_of_week(anchor), end_of_week(anchor)
    return month_grid_bounds(anchor)


def trade_chip(trade: Dict[str, Any]) -> Dict[str, Any]:
    pl = trade.get("profit_loss")
    return {
        "id": str(trade["_id"]),
        "created_at": trade["created_at"].isoformat(),
        "symbol": trade.get("symbol"),
        "position": trade.get("position"),
        "profit_loss": float(pl) if pl is not None else None,
        "timeframe": trade.get("timeframe"),
    }


def build_range(view: CalendarView, anchor: datetime, rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Payload for a day/week/month listing. `rows` must already be windowed."""
    start, end = calendar_window(view, anchor)
    return {
        "view": CalendarView(view).value,
        "start": start.isoformat(),
        "end": end.isoformat(),
        "anchor": anchor.isoformat(),
        "trades": [trade_chip(r) for r in sorted(rows, key=lambda r: r["created_at"])],
    }


def build_month_grid(anchor: datetime, rows: List[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Lay trades out on a month grid.

    The grid runs from the Monday on or before the 1st to the Sunday on or
    after the last day, so it always holds whole weeks. Each cell shows at
    most CHIPS_PER_DAY trades (earliest first) and counts the rest in `more`.
    """
    grid_start, grid_end = month_grid_bounds(anchor)

    by_day: Dict[date, List[Dict[str, Any]]] = {}
    for r in sorted(rows, key=lambda r: r["created_at"]):
        by_day.setdefault(r["created_at"].date(), []).append(r)

    cells: List[Dict[str, Any]] = []
    day = grid_start.date()
    while day <= grid_end.date():
        rows_for_day = by_day.get(day, [])
        chips = [trade_chip(r) for r in rows_for_day[:CHIPS_PER_DAY]]
        cells.append({
            "date": day.isoformat(),
            "in_month": day.month == anchor.month,
            "chips": chips,
            "more": max(0, len(rows_for_day) - len(chips)),
        })
        day += timedelta(days=1)

    return {
        "anchor": anchor.isoformat(),
        "grid_start": grid_start.isoformat(),
        "grid_end": grid_end.isoformat(),
        "month": anchor.month,
        "year": anchor.year,
        "cells": cells,
    }
