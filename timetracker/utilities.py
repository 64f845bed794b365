"""
Utility meters: properties, their meters (electricity, gas, hot water) and
the dated meter readings taken from them.
"""
import logging
import sqlite3
import time
import uuid
from datetime import date
from pathlib import Path
from typing import Literal

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile
from fastapi.responses import FileResponse
from pydantic import BaseModel, Field

from timetracker import settings
from timetracker.db import get_db
from timetracker.readings import (
    BulkReading,
    ReadingOrderError,
    check_monotonic,
    monthly_consumption,
    parse_bulk_text,
    validate_bulk,
    with_consumption,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/utilities", tags=["utilities"])
uploads_router = APIRouter(prefix="/api/uploads", tags=["utilities"])

MeterType = Literal["STROM", "GAS", "WASSER_WARM"]

DEFAULT_UNITS = {"STROM": "kWh", "GAS": "m³", "WASSER_WARM": "m³"}

PHOTO_TYPES = {"image/jpeg": ".jpg", "image/png": ".png", "image/webp": ".webp"}
PHOTO_SUBDIR = "meter-photos"

NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%fZ','now')"


# -------------------------------------------------
# Pydantic models
# -------------------------------------------------
class PropertyCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    address: str | None = Field(None, max_length=200)
    moved_in: date | None = None
    moved_out: date | None = None


class PropertyUpdate(BaseModel):
    name: str | None = Field(None, min_length=1, max_length=100)
    address: str | None = Field(None, max_length=200)
    moved_in: date | None = None
    moved_out: date | None = None


class MeterCreate(BaseModel):
    property_id: str
    type: MeterType
    name: str = Field(..., min_length=1, max_length=100)
    unit: str = Field(..., min_length=1)
    location: str | None = Field(None, max_length=200)


class MeterUpdate(BaseModel):
    property_id: str | None = None
    type: MeterType | None = None
    name: str | None = Field(None, min_length=1, max_length=100)
    unit: str | None = Field(None, min_length=1)
    location: str | None = Field(None, max_length=200)


class ReadingCreate(BaseModel):
    meter_id: str
    reading_date: date
    value: float = Field(..., ge=0, allow_inf_nan=False)
    notes: str | None = Field(None, max_length=500)


class ReadingUpdate(BaseModel):
    reading_date: date | None = None
    value: float | None = Field(None, ge=0, allow_inf_nan=False)
    notes: str | None = Field(None, max_length=500)


class BulkReadingIn(BaseModel):
    reading_date: date
    value: float = Field(..., ge=0, allow_inf_nan=False)


class BulkReadingsRequest(BaseModel):
    readings: list[BulkReadingIn] | None = None
    text: str | None = None


# -------------------------------------------------
# Helpers
# -------------------------------------------------
def _get_or_404(conn: sqlite3.Connection, table: str, row_id: str, label: str) -> dict:
    row = conn.execute(f"SELECT * FROM {table} WHERE id = ?", (row_id,)).fetchone()
    if row is None:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return dict(row)


def _update_row(conn: sqlite3.Connection, table: str, row_id: str, changes: dict, touch: bool = True) -> None:
    if not changes and not touch:
        return
    assignments = [f"{column} = ?" for column in changes]
    if touch:
        assignments.append(f"updated_at = {NOW_SQL}")
    conn.execute(
        f"UPDATE {table} SET {', '.join(assignments)} WHERE id = ?",
        (*[_to_db(value) for value in changes.values()], row_id),
    )


def _changes(body: BaseModel, nullable: tuple[str, ...] = ()) -> dict:
    """Fields sent in the body; an explicit null only clears nullable columns."""
    return {
        column: value
        for column, value in body.model_dump(exclude_unset=True).items()
        if value is not None or column in nullable
    }


def _to_db(value):
    return value.isoformat() if isinstance(value, date) else value


def _invalid_reading(e: ReadingOrderError) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={"error": "Invalid reading", "message": e.message, "details": e.details},
    )


def _date_taken(conn: sqlite3.Connection, meter_id: str, reading_date: str, exclude_id: str = "") -> bool:
    row = conn.execute(
        "SELECT 1 FROM meter_readings WHERE meter_id = ? AND reading_date = ? AND id != ?",
        (meter_id, reading_date, exclude_id),
    ).fetchone()
    return row is not None


def photo_dir() -> Path:
    return Path(settings.UPLOAD_DIR) / PHOTO_SUBDIR


# -------------------------------------------------
# Properties
# -------------------------------------------------
@router.get("/properties", summary="List properties")
def list_properties(conn: sqlite3.Connection = Depends(get_db)):  # noqa: B008
    rows = conn.execute(
        """
        SELECT p.*, COUNT(m.id) AS meter_count
        FROM properties p
        LEFT JOIN meters m ON m.property_id = p.id AND m.deleted_at IS NULL
        GROUP BY p.id
        ORDER BY p.created_at, p.rowid
        """
    ).fetchall()
    return [dict(row) for row in rows]


@router.post("/properties", status_code=201, summary="Create a property")
def create_property(
    body: PropertyCreate, conn: sqlite3.Connection = Depends(get_db)  # noqa: B008
):
    property_id = str(uuid.uuid4())
    conn.execute(
        "INSERT INTO properties (id, name, address, moved_in, moved_out) VALUES (?, ?, ?, ?, ?)",
        (property_id, body.name, body.address, _to_db(body.moved_in), _to_db(body.moved_out)),
    )
    conn.commit()
    return _get_or_404(conn, "properties", property_id, "Property")


@router.put("/properties/{property_id}", summary="Update a property")
def update_property(
    property_id: str, body: PropertyUpdate, conn: sqlite3.Connection = Depends(get_db)  # noqa: B008
):
    _get_or_404(conn, "properties", property_id, "Property")
    _update_row(conn, "properties", property_id, _changes(body, ("address", "moved_in", "moved_out")))
    conn.commit()
    return _get_or_404(conn, "properties", property_id, "Property")


@router.delete("/properties/{property_id}", status_code=204, summary="Delete a property")
def delete_property(
    property_id: str, conn: sqlite3.Connection = Depends(get_db)  # noqa: B008
):
    """Refused while any meter, archived or not, still belongs to the property."""
    _get_or_404(conn, "properties", property_id, "Property")
    meters = conn.execute("SELECT COUNT(*) FROM meters WHERE property_id = ?", (property_id,)).fetchone()[0]
    if meters:
        raise HTTPException(status_code=409, detail=f"Property still has {meters} meter(s)")

    conn.execute("DELETE FROM properties WHERE id = ?", (property_id,))
    conn.commit()
    return Response(status_code=204)


# -------------------------------------------------
# Meters
# -------------------------------------------------
@router.get("/meters", summary="List meters with their reading counts")
def list_meters(
    include_archived: bool = False,
    property_id: str | None = None,
    conn: sqlite3.Connection = Depends(get_db),  # noqa: B008
):
    clauses, params = [], []
    if not include_archived:
        clauses.append("m.deleted_at IS NULL")
    if property_id:
        clauses.append("m.property_id = ?")
        params.append(property_id)
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

    rows = conn.execute(
        f"""
        SELECT m.*, COUNT(r.id) AS readings_count
        FROM meters m
        LEFT JOIN meter_readings r ON r.meter_id = m.id
        {where}
        GROUP BY m.id
        ORDER BY m.created_at DESC, m.rowid DESC
        """,
        params,
    ).fetchall()
    return [dict(row) for row in rows]


@router.post("/meters", status_code=201, summary="Create a meter")
def create_meter(body: MeterCreate, conn: sqlite3.Connection = Depends(get_db)):  # noqa: B008
    _get_or_404(conn, "properties", body.property_id, "Property")
    meter_id = str(uuid.uuid4())
    conn.execute(
        "INSERT INTO meters (id, property_id, type, name, unit, location) VALUES (?, ?, ?, ?, ?, ?)",
        (meter_id, body.property_id, body.type, body.name, body.unit, body.location),
    )
    conn.commit()
    return _get_or_404(conn, "meters", meter_id, "Meter")


@router.put("/meters/{meter_id}", summary="Update a meter")
def update_meter(
    meter_id: str, body: MeterUpdate, conn: sqlite3.Connection = Depends(get_db)  # noqa: B008
):
    _get_or_404(conn, "meters", meter_id, "Meter")
    changes = _changes(body, ("location",))
    if changes.get("property_id"):
        _get_or_404(conn, "properties", changes["property_id"], "Property")
    _update_row(conn, "meters", meter_id, changes)
    conn.commit()
    return _get_or_404(conn, "meters", meter_id, "Meter")


@router.delete("/meters/{meter_id}", status_code=204, summary="Archive a meter")
def archive_meter(meter_id: str, conn: sqlite3.Connection = Depends(get_db)):  # noqa: B008
    _get_or_404(conn, "meters", meter_id, "Meter")
    conn.execute(f"UPDATE meters SET deleted_at = {NOW_SQL} WHERE id = ?", (meter_id,))
    conn.commit()
    return Response(status_code=204)


@router.patch("/meters/{meter_id}/restore", summary="Restore an archived meter")
def restore_meter(meter_id: str, conn: sqlite3.Connection = Depends(get_db)):  # noqa: B008
    _get_or_404(conn, "meters", meter_id, "Meter")
    conn.execute("UPDATE meters SET deleted_at = NULL WHERE id = ?", (meter_id,))
    conn.commit()
    return _get_or_404(conn, "meters", meter_id, "Meter")


# -------------------------------------------------
# Readings
# -------------------------------------------------
@router.get("/meters/{meter_id}/readings", summary="List a meter's readings with consumption")
def list_readings(meter_id: str, conn: sqlite3.Connection = Depends(get_db)):  # noqa: B008
    meter = _get_or_404(conn, "meters", meter_id, "Meter")
    rows = conn.execute(
        """
        SELECT id, reading_date, value, photo_path, notes, created_at
        FROM meter_readings
        WHERE meter_id = ?
        ORDER BY reading_date ASC
        """,
        (meter_id,),
    ).fetchall()
    return [{**reading, "unit": meter["unit"]} for reading in with_consumption([dict(r) for r in rows])]


@router.post("/readings", status_code=201, summary="Record a meter reading")
def create_reading(body: ReadingCreate, conn: sqlite3.Connection = Depends(get_db)):  # noqa: B008
    _get_or_404(conn, "meters", body.meter_id, "Meter")
    reading_date = body.reading_date.isoformat()

    if _date_taken(conn, body.meter_id, reading_date):
        raise HTTPException(status_code=409, detail=f"A reading for {reading_date} already exists")

    try:
        check_monotonic(conn, body.meter_id, reading_date, body.value)
    except ReadingOrderError as e:
        raise _invalid_reading(e) from e

    reading_id = str(uuid.uuid4())
    try:
        conn.execute(
            "INSERT INTO meter_readings (id, meter_id, reading_date, value, notes) VALUES (?, ?, ?, ?, ?)",
            (reading_id, body.meter_id, reading_date, body.value, body.notes),
        )
    except sqlite3.IntegrityError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    conn.commit()
    return _get_or_404(conn, "meter_readings", reading_id, "Reading")


@router.put("/readings/{reading_id}", summary="Update a meter reading")
def update_reading(
    reading_id: str, body: ReadingUpdate, conn: sqlite3.Connection = Depends(get_db)  # noqa: B008
):
    """
    The order check is repeated only when the value or the date changes, and
    the reading being edited is left out of it.
    """
    current = _get_or_404(conn, "meter_readings", reading_id, "Reading")
    changes = _changes(body, ("notes",))

    new_date = _to_db(changes.get("reading_date") or current["reading_date"])
    new_value = changes["value"] if changes.get("value") is not None else current["value"]

    if new_date != current["reading_date"] or new_value != current["value"]:
        if _date_taken(conn, current["meter_id"], new_date, exclude_id=reading_id):
            raise HTTPException(status_code=409, detail=f"A reading for {new_date} already exists")
        try:
            check_monotonic(conn, current["meter_id"], new_date, new_value, exclude_id=reading_id)
        except ReadingOrderError as e:
            raise _invalid_reading(e) from e

    try:
        _update_row(conn, "meter_readings", reading_id, changes, touch=False)
    except sqlite3.IntegrityError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    conn.commit()
    return _get_or_404(conn, "meter_readings", reading_id, "Reading")


@router.delete("/readings/{reading_id}", status_code=204, summary="Delete a meter reading")
def delete_reading(reading_id: str, conn: sqlite3.Connection = Depends(get_db)):  # noqa: B008
    cur = conn.execute("DELETE FROM meter_readings WHERE id = ?", (reading_id,))
    if cur.rowcount == 0:
        raise HTTPException(status_code=404, detail="Reading not found")
    conn.commit()
    return Response(status_code=204)


@router.post("/meters/{meter_id}/readings/bulk", summary="Import many readings at once")
def bulk_create_readings(
    meter_id: str, body: BulkReadingsRequest, conn: sqlite3.Connection = Depends(get_db)  # noqa: B008
):
    """
    Accepts either a `readings` list or pasted `text` with one
    ``DD.MM.YYYY, value`` pair per line. Dates that already have a reading
    are skipped; the whole batch is refused if it would break the order.
    """
    _get_or_404(conn, "meters", meter_id, "Meter")

    errors = []
    if body.readings is not None:
        new = [BulkReading(r.reading_date, r.value) for r in body.readings]
    elif body.text is not None:
        new, errors = parse_bulk_text(body.text)
    else:
        raise HTTPException(status_code=400, detail="Provide either readings or text")

    existing = [
        (date.fromisoformat(row["reading_date"]), row["value"])
        for row in conn.execute(
            "SELECT reading_date, value FROM meter_readings WHERE meter_id = ?", (meter_id,)
        ).fetchall()
    ]

    try:
        to_create, skipped = validate_bulk(existing, new)
    except ReadingOrderError as e:
        raise _invalid_reading(e) from e

    with conn:
        conn.executemany(
            "INSERT INTO meter_readings (id, meter_id, reading_date, value) VALUES (?, ?, ?, ?)",
            [(str(uuid.uuid4()), meter_id, r.reading_date.isoformat(), r.value) for r in to_create],
        )

    logger.info(f"Bulk import for meter {meter_id}: {len(to_create)} created, {skipped} skipped")
    return {"created": len(to_create), "skipped": skipped, "errors": errors}


@router.post("/readings/{reading_id}/photo", summary="Attach a photo to a reading")
async def upload_reading_photo(
    reading_id: str,
    file: UploadFile = File(...),  # noqa: B008
    conn: sqlite3.Connection = Depends(get_db),  # noqa: B008
):
    _get_or_404(conn, "meter_readings", reading_id, "Reading")

    if file.content_type not in PHOTO_TYPES:
        raise HTTPException(status_code=400, detail="Only JPEG, PNG, and WebP images are allowed")

    filename = f"{reading_id}-{int(time.time() * 1000)}{PHOTO_TYPES[file.content_type]}"
    target = photo_dir() / filename
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_bytes(await file.read())

    photo_path = f"/uploads/{PHOTO_SUBDIR}/{filename}"
    conn.execute("UPDATE meter_readings SET photo_path = ? WHERE id = ?", (photo_path, reading_id))
    conn.commit()
    logger.info(f"Stored photo for reading {reading_id} at {target}")
    return {"photo_path": photo_path}


@uploads_router.get("/meter-photos/{filename}", summary="Download a reading photo")
def get_reading_photo(filename: str):
    if Path(filename).name != filename or filename.startswith("."):
        raise HTTPException(status_code=400, detail="Invalid filename")

    path = photo_dir() / filename
    if not path.is_file():
        raise HTTPException(status_code=404, detail="Photo not found")
    return FileResponse(path)


# -------------------------------------------------
# Consumption
# -------------------------------------------------
@router.get("/consumption/monthly", summary="Monthly consumption for one meter type")
def get_monthly_consumption(
    type: MeterType = Query(...),  # noqa: A002
    property_id: str | None = None,
    conn: sqlite3.Connection = Depends(get_db),  # noqa: B008
):
    params: list = [type]
    property_clause = ""
    if property_id:
        property_clause = "AND m.property_id = ?"
        params.append(property_id)

    rows = conn.execute(
        f"""
        SELECT m.id AS meter_id, m.unit, r.reading_date, r.value
        FROM meters m
        JOIN meter_readings r ON r.meter_id = m.id
        WHERE m.type = ? AND m.deleted_at IS NULL {property_clause}
        ORDER BY r.reading_date
        """,
        params,
    ).fetchall()

    readings_by_meter: dict[str, list[tuple[date, float]]] = {}
    for row in rows:
        readings_by_meter.setdefault(row["meter_id"], []).append(
            (date.fromisoformat(row["reading_date"]), row["value"])
        )

    unit = rows[0]["unit"] if rows else DEFAULT_UNITS[type]
    return {"type": type, "unit": unit, "data": monthly_consumption(readings_by_meter)}
