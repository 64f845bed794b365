"""
Aggregated totals for the current day and week, used by the command line
client and the dashboard header.
"""
import sqlite3
from collections import defaultdict
from datetime import date, datetime, timedelta

from fastapi import APIRouter, Depends, HTTPException, Query

from timetracker import settings
from timetracker.db import get_db
from timetracker.timeutil import day_bounds, get_zone, week_bounds

router = APIRouter(prefix="/api/entries/summary", tags=["summary"])


def _check_zone(tz_name: str) -> None:
    try:
        get_zone(tz_name)
    except ValueError as e:
        raise HTTPException(400, str(e)) from e


def _today(tz_name: str) -> date:
    return datetime.now(get_zone(tz_name)).date()


def _load(conn: sqlite3.Connection, start_ts: int, end_ts: int) -> list[sqlite3.Row]:
    return conn.execute(
        """
        SELECT date_ts, duration, source FROM time_entries
        WHERE date_ts >= ? AND date_ts < ?
        ORDER BY date_ts
        """,
        (start_ts, end_ts),
    ).fetchall()


def _by_source(rows: list[sqlite3.Row]) -> dict[str, float]:
    totals: dict[str, float] = defaultdict(float)
    for row in rows:
        totals[row["source"]] += row["duration"]
    return {source: round(hours, 2) for source, hours in totals.items()}


@router.get("/today", summary="Total hours for the current day")
def summary_today(
    tz: str = Query(settings.DEFAULT_TIMEZONE, description="IANA timezone of the caller"),
    conn: sqlite3.Connection = Depends(get_db),  # noqa: B008
):
    _check_zone(tz)
    day = _today(tz)
    rows = _load(conn, *day_bounds(day, tz))

    return {
        "date": day.isoformat(),
        "total_hours": round(sum(row["duration"] for row in rows), 2),
        "by_source": _by_source(rows),
        "entry_count": len(rows),
    }


@router.get("/week", summary="Totals for the current Monday-Sunday week")
def summary_week(
    tz: str = Query(settings.DEFAULT_TIMEZONE, description="IANA timezone of the caller"),
    conn: sqlite3.Connection = Depends(get_db),  # noqa: B008
):
    _check_zone(tz)
    monday, sunday = week_bounds(_today(tz))
    start_ts, _ = day_bounds(monday, tz)
    _, end_ts = day_bounds(sunday, tz)
    rows = _load(conn, start_ts, end_ts)

    zone = get_zone(tz)
    by_day: dict[date, float] = defaultdict(float)
    for row in rows:
        by_day[datetime.fromtimestamp(row["date_ts"], zone).date()] += row["duration"]

    days = [monday + timedelta(days=offset) for offset in range(7)]
    daily = [
        {"date": day.isoformat(), "day_name": day.strftime("%a"), "hours": round(by_day[day], 2)}
        for day in days
    ]

    return {
        "week_start": monday.isoformat(),
        "week_end": sunday.isoformat(),
        "total_hours": round(sum(row["duration"] for row in rows), 2),
        "daily": daily,
        "by_source": _by_source(rows),
        "entry_count": len(rows),
    }
