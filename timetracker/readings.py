"""
Meter reading rules.

Meter values only ever grow, so for one meter the readings ordered by date
must be non-decreasing. Consumption is never stored; it is derived from the
difference between consecutive readings whenever it is asked for.
"""
import math
import re
import sqlite3
from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Any

BULK_LINE = re.compile(r"^\s*(\d{1,2}\.\d{1,2}\.\d{4})\s*[,;\t]\s*(.+?)\s*$")


class ReadingOrderError(ValueError):
    """A reading would break the non-decreasing order of a meter's values."""

    def __init__(self, message: str, details: dict[str, Any]):
        super().__init__(message)
        self.message = message
        self.details = details


@dataclass
class BulkReading:
    reading_date: date
    value: float


def check_monotonic(
    conn: sqlite3.Connection,
    meter_id: str,
    reading_date: str,
    value: float,
    exclude_id: str | None = None,
) -> None:
    """
    Raises ReadingOrderError if `value` on `reading_date` is lower than the
    meter's previous reading or higher than its next one. `exclude_id` skips
    the reading being edited.
    """
    previous = conn.execute(
        """
        SELECT reading_date, value FROM meter_readings
        WHERE meter_id = ? AND reading_date < ? AND id != ?
        ORDER BY reading_date DESC LIMIT 1
        """,
        (meter_id, reading_date, exclude_id or ""),
    ).fetchone()

    if previous is not None and value < previous[1]:
        raise ReadingOrderError(
            "This reading is lower than your last one. Meter values can only increase.",
            {
                "previous_value": previous[1],
                "previous_date": previous[0],
                "attempted_value": value,
            },
        )

    following = conn.execute(
        """
        SELECT reading_date, value FROM meter_readings
        WHERE meter_id = ? AND reading_date > ? AND id != ?
        ORDER BY reading_date ASC LIMIT 1
        """,
        (meter_id, reading_date, exclude_id or ""),
    ).fetchone()

    if following is not None and value > following[1]:
        raise ReadingOrderError(
            "This reading is higher than a later one. Meter values must increase over time.",
            {
                "next_value": following[1],
                "next_date": following[0],
                "attempted_value": value,
            },
        )


def with_consumption(readings: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Adds `consumption` to readings that are already sorted by date ascending."""
    result = []
    previous_value = None
    for reading in readings:
        consumption = None if previous_value is None else reading["value"] - previous_value
        result.append({**reading, "consumption": consumption})
        previous_value = reading["value"]
    return result


def _next_month(day: date) -> date:
    return date(day.year + day.month // 12, day.month % 12 + 1, 1)


def monthly_consumption(readings_by_meter: dict[str, list[tuple[date, float]]]) -> list[dict[str, Any]]:
    """
    Sums consumption per calendar month across meters.

    Each interval between two consecutive readings is spread evenly over its
    days, so a reading taken on the 10th splits that interval between the
    months it spans.
    """
    totals: dict[tuple[int, int], float] = defaultdict(float)

    for readings in readings_by_meter.values():
        ordered = sorted(readings)
        for (start, start_value), (end, end_value) in zip(ordered, ordered[1:]):
            days = (end - start).days
            if days <= 0:
                continue
            delta = end_value - start_value
            cursor = start
            while cursor < end:
                segment_end = min(_next_month(cursor), end)
                totals[(cursor.year, cursor.month)] += delta * (segment_end - cursor).days / days
                cursor = segment_end

    return [
        {"year": year, "month": month, "consumption": round(total, 3)}
        for (year, month), total in sorted(totals.items())
    ]


def parse_value(text: str) -> float | None:
    """
    Parses German and plain number formats: ``2.694,41``, ``2694,41``,
    ``2.389`` (thousands separator) and ``2694.41``.
    """
    cleaned = text.strip()
    if "," in cleaned:
        cleaned = cleaned.replace(".", "").replace(",", ".")
    elif re.search(r"\.\d{3}$", cleaned):
        cleaned = cleaned.replace(".", "")
    try:
        number = float(cleaned)
    except ValueError:
        return None
    return number if math.isfinite(number) and number >= 0 else None


def parse_german_date(text: str) -> date | None:
    try:
        day, month, year = (int(part) for part in text.strip().split("."))
        return date(year, month, day)
    except ValueError:
        return None


def parse_bulk_text(text: str) -> tuple[list[BulkReading], list[dict[str, Any]]]:
    """Parses pasted ``DD.MM.YYYY, value`` lines into readings and per-line errors."""
    rows: list[BulkReading] = []
    errors: list[dict[str, Any]] = []

    for line_no, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue

        match = BULK_LINE.match(line)
        if not match:
            errors.append({"line": line_no, "text": line.strip(), "error": "Invalid format"})
            continue

        date_text, value_text = match.groups()
        reading_date = parse_german_date(date_text)
        if reading_date is None:
            errors.append({"line": line_no, "text": date_text, "error": "Invalid date"})
            continue

        value = parse_value(value_text)
        if value is None:
            errors.append({"line": line_no, "text": value_text, "error": "Invalid value"})
            continue

        rows.append(BulkReading(reading_date, value))

    return rows, errors


def validate_bulk(
    existing: list[tuple[date, float]], new: list[BulkReading]
) -> tuple[list[BulkReading], int]:
    """
    Splits `new` into readings to create and a count of skipped ones (dates that
    already have a reading, or repeat within the batch), then checks that the
    merged series stays non-decreasing.
    """
    taken = {reading_date for reading_date, _ in existing}
    to_create: list[BulkReading] = []
    skipped = 0
    for reading in new:
        if reading.reading_date in taken:
            skipped += 1
            continue
        taken.add(reading.reading_date)
        to_create.append(reading)

    merged = sorted(existing + [(r.reading_date, r.value) for r in to_create])
    for (prev_date, prev_value), (cur_date, cur_value) in zip(merged, merged[1:]):
        if cur_value < prev_value:
            raise ReadingOrderError(
                f"Reading on {cur_date.isoformat()} ({cur_value}) is lower than the reading "
                f"on {prev_date.isoformat()} ({prev_value}). Meter values can only increase.",
                {
                    "previous_date": prev_date.isoformat(),
                    "previous_value": prev_value,
                    "date": cur_date.isoformat(),
                    "attempted_value": cur_value,
                },
            )

    return to_create, skipped
