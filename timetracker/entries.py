import logging
import re
import sqlite3
import uuid
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile
from pydantic import BaseModel, Field, model_validator

from timetracker import settings
from timetracker.db import get_db
from timetracker.importers import detect_importer
from timetracker.providers import upsert_time_entries
from timetracker.timeutil import (
    calculate_duration,
    dt_to_iso_and_ts,
    epoch_from_dt,
    generate_manual_external_id,
    local_to_utc,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["entries"])

DATE_PATTERN = r"^\d{4}-\d{2}-\d{2}$"
TIME_PATTERN = r"^\d{2}:\d{2}$"

ENTRY_COLUMNS = """
    id, source, external_id, date, duration, project, description,
    start_time, end_time, created_at
"""


# -------------------------------------------------
# Pydantic models
# -------------------------------------------------
class TimeEntry(BaseModel):
    id: str
    source: str
    external_id: str
    date: str  # ISO-8601 Z
    duration: float  # hours
    project: str | None
    description: str | None
    start_time: str | None = None
    end_time: str | None = None
    created_at: str


class ManualEntryCreate(BaseModel):
    date: str = Field(..., pattern=DATE_PATTERN, description="Local date, YYYY-MM-DD")
    start_time: str = Field(..., pattern=TIME_PATTERN, description="Local time, HH:MM")
    end_time: str = Field(..., pattern=TIME_PATTERN, description="Local time, HH:MM")
    description: str | None = None
    project: str | None = None
    timezone: str | None = Field(None, description="IANA zone, e.g. 'Asia/Seoul'")

    @model_validator(mode="after")
    def end_after_start(self):
        if calculate_duration(self.start_time, self.end_time) <= 0:
            raise ValueError("End time must be after start time")
        return self


class EntryUpdate(BaseModel):
    date: str
    duration: float = Field(..., ge=0)
    project: str | None = None
    description: str | None = None
    source: str
    start_time: str | None = Field(None, pattern=TIME_PATTERN)
    end_time: str | None = Field(None, pattern=TIME_PATTERN)
    timezone: str | None = None


class ProjectSummary(BaseModel):
    name: str
    total_hours: float
    entry_count: int


class ImportResponse(BaseModel):
    message: str
    imported: int
    errors: list[str]


# -------------------------------------------------
# Helpers
# -------------------------------------------------
def _parse_entry_date(value: str) -> datetime:
    """A bare YYYY-MM-DD is midnight UTC; naive datetimes are taken as UTC."""
    if re.match(DATE_PATTERN, value):
        return datetime.fromisoformat(value).replace(tzinfo=UTC)
    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return dt if dt.tzinfo else dt.replace(tzinfo=UTC)


def fetch_entry(conn: sqlite3.Connection, entry_id: str) -> dict | None:
    row = conn.execute(f"SELECT {ENTRY_COLUMNS} FROM time_entries WHERE id = ?", (entry_id,)).fetchone()
    return dict(row) if row else None


def fetch_entries_between(conn: sqlite3.Connection, start_ts: int, end_ts: int) -> list[dict]:
    rows = conn.execute(
        f"""
        SELECT {ENTRY_COLUMNS} FROM time_entries
        WHERE date_ts >= ?   -- inclusive
          AND date_ts <  ?   -- exclusive
        ORDER BY date_ts
        """,
        (start_ts, end_ts),
    ).fetchall()
    return [dict(row) for row in rows]


def window_from_query(start_iso: datetime, end_iso: datetime) -> tuple[int, int]:
    try:
        start_ts, end_ts = epoch_from_dt(start_iso), epoch_from_dt(end_iso)
    except ValueError as e:
        raise HTTPException(400, str(e)) from e
    if start_ts >= end_ts:
        raise HTTPException(400, "start_iso must be < end_iso")
    return start_ts, end_ts


# -------------------------------------------------
# Routes
# -------------------------------------------------
@router.get(
    "/entries",
    response_model=list[TimeEntry],
    summary="Get time entries within a UTC datetime window",
    description="""
Returns all entries whose `date` falls within `[start_iso, end_iso)`.

Both bounds must be full ISO 8601 datetimes **with timezone**, e.g.
`2025-06-12T04:00:00Z`. Clients convert local day boundaries to UTC before
calling, so adjacent windows never overlap.
""",
)
def list_entries(
    start_iso: datetime = Query(..., description="Inclusive ISO 8601 datetime"),  # noqa: B008
    end_iso: datetime = Query(..., description="Exclusive ISO 8601 datetime"),  # noqa: B008
    conn: sqlite3.Connection = Depends(get_db),  # noqa: B008
):
    start_ts, end_ts = window_from_query(start_iso, end_iso)
    return fetch_entries_between(conn, start_ts, end_ts)


@router.get("/stats", response_model=list[TimeEntry], summary="Get all entries, newest first")
def get_stats(conn: sqlite3.Connection = Depends(get_db)):  # noqa: B008
    rows = conn.execute(f"SELECT {ENTRY_COLUMNS} FROM time_entries ORDER BY date_ts DESC").fetchall()
    return [dict(row) for row in rows]


@router.post("/entries", response_model=TimeEntry, status_code=201, summary="Create a manual entry")
def create_entry(
    body: ManualEntryCreate, conn: sqlite3.Connection = Depends(get_db)  # noqa: B008
):
    """
    The start is given as local wall-clock time in `timezone` and stored in
    UTC; the duration is derived from start and end time.
    """
    try:
        start = local_to_utc(body.date, body.start_time, body.timezone or settings.DEFAULT_TIMEZONE)
    except ValueError as e:
        raise HTTPException(400, str(e)) from e

    date_iso, date_ts = dt_to_iso_and_ts(start)
    entry_id = str(uuid.uuid4())
    conn.execute(
        """
        INSERT INTO time_entries (
            id, source, external_id, date, date_ts, duration,
            project, description, start_time, end_time
        )
        VALUES (?,?,?,?,?,?,?,?,?,?)
        """,
        (
            entry_id,
            "MANUAL",
            generate_manual_external_id(),
            date_iso,
            date_ts,
            calculate_duration(body.start_time, body.end_time),
            body.project or None,
            body.description or None,
            body.start_time,
            body.end_time,
        ),
    )
    conn.commit()
    return fetch_entry(conn, entry_id)


@router.put("/entries/{entry_id}", response_model=TimeEntry, summary="Update an entry")
def update_entry(
    entry_id: str, body: EntryUpdate, conn: sqlite3.Connection = Depends(get_db)  # noqa: B008
):
    if fetch_entry(conn, entry_id) is None:
        raise HTTPException(status_code=404, detail="Entry not found")

    duration = body.duration
    try:
        if body.source == "MANUAL" and body.start_time and body.end_time:
            # Manual entries are edited as local times; recompute from them.
            duration = calculate_duration(body.start_time, body.end_time)
            if duration <= 0:
                raise HTTPException(400, "End time must be after start time")
            entry_date = local_to_utc(
                body.date[:10], body.start_time, body.timezone or settings.DEFAULT_TIMEZONE
            )
        else:
            entry_date = _parse_entry_date(body.date)
    except ValueError as e:
        raise HTTPException(400, str(e)) from e

    date_iso, date_ts = dt_to_iso_and_ts(entry_date)
    conn.execute(
        """
        UPDATE time_entries
        SET date = ?, date_ts = ?, duration = ?, project = ?, description = ?,
            source = ?, start_time = ?, end_time = ?
        WHERE id = ?
        """,
        (
            date_iso,
            date_ts,
            duration,
            body.project,
            body.description,
            body.source,
            body.start_time,
            body.end_time,
            entry_id,
        ),
    )
    conn.commit()
    return fetch_entry(conn, entry_id)


@router.delete("/entries/{entry_id}", summary="Delete an entry")
def delete_entry(
    entry_id: str, conn: sqlite3.Connection = Depends(get_db)  # noqa: B008
) -> dict[str, bool]:
    cur = conn.execute("DELETE FROM time_entries WHERE id = ?", (entry_id,))
    if cur.rowcount == 0:
        raise HTTPException(status_code=404, detail="Entry not found")
    conn.commit()
    return {"success": True}


@router.get("/projects", response_model=list[str], summary="Get all unique project names")
def get_projects(conn: sqlite3.Connection = Depends(get_db)):  # noqa: B008
    rows = conn.execute(
        "SELECT DISTINCT project FROM time_entries WHERE project IS NOT NULL ORDER BY project"
    ).fetchall()
    return [row[0] for row in rows]


@router.get(
    "/projects/unique",
    response_model=list[ProjectSummary],
    summary="Get unique project names with hours and entry counts",
)
def get_projects_with_context(conn: sqlite3.Connection = Depends(get_db)):  # noqa: B008
    rows = conn.execute(
        """
        SELECT project AS name, SUM(duration) AS total_hours, COUNT(*) AS entry_count
        FROM time_entries
        WHERE project IS NOT NULL
        GROUP BY project
        ORDER BY project
        """
    ).fetchall()
    return [dict(row) for row in rows]


@router.post("/upload", response_model=ImportResponse, summary="Import a Toggl or Tempo CSV export")
async def upload_csv(
    file: UploadFile = File(...),  # noqa: B008
    timezone: str | None = Form(None),  # noqa: B008
    conn: sqlite3.Connection = Depends(get_db),  # noqa: B008
):
    try:
        content = (await file.read()).decode("utf-8")
    except UnicodeDecodeError as e:
        raise HTTPException(400, "File must be UTF-8 encoded CSV") from e

    try:
        importer = detect_importer(file.filename or "", content, timezone or settings.DEFAULT_TIMEZONE)
    except ValueError as e:
        raise HTTPException(400, str(e)) from e

    if importer is None:
        raise HTTPException(
            400,
            'Unknown CSV format. Please rename file to include "toggl" or ensure Tempo format.',
        )

    result = importer.parse(content)
    if result.errors:
        logger.error(f"CSV import of {file.filename} reported errors: {result.errors}")

    count = upsert_time_entries(conn, result.source, result.entries)
    conn.commit()
    logger.info(f"Imported {count} {result.source} entries from {file.filename}")

    return {"message": "Import successful", "imported": count, "errors": result.errors}
