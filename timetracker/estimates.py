import logging
import sqlite3
import uuid

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field

from timetracker.db import get_db

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/estimates", tags=["estimates"])


# -------------------------------------------------
# Pydantic models
# -------------------------------------------------
class EstimateProject(BaseModel):
    id: str
    estimate_id: str
    project_name: str


class Estimate(BaseModel):
    id: str
    client_name: str
    name: str
    estimated_hours: float
    notes: str | None
    created_at: str
    updated_at: str
    projects: list[EstimateProject] = []
    actual_hours: float
    percentage: float
    status: str  # green | yellow | red


class EstimateCreate(BaseModel):
    client_name: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1)
    estimated_hours: float = Field(..., gt=0)
    notes: str | None = None
    projects: list[str] = Field(..., min_length=1)


class EstimateUpdate(BaseModel):
    client_name: str | None = Field(None, min_length=1)
    name: str | None = Field(None, min_length=1)
    estimated_hours: float | None = Field(None, gt=0)
    notes: str | None = None
    projects: list[str] | None = Field(None, min_length=1)


# -------------------------------------------------
# Helpers
# -------------------------------------------------
def budget_status(percentage: float) -> str:
    if percentage < 75:
        return "green"
    if percentage < 100:
        return "yellow"
    return "red"


def _replace_projects(conn: sqlite3.Connection, estimate_id: str, projects: list[str]) -> None:
    conn.execute("DELETE FROM estimate_projects WHERE estimate_id = ?", (estimate_id,))
    conn.executemany(
        "INSERT OR IGNORE INTO estimate_projects (id, estimate_id, project_name) VALUES (?, ?, ?)",
        [(str(uuid.uuid4()), estimate_id, name) for name in projects],
    )


def load_estimate(conn: sqlite3.Connection, estimate_id: str) -> dict | None:
    row = conn.execute("SELECT * FROM project_estimates WHERE id = ?", (estimate_id,)).fetchone()
    if row is None:
        return None

    estimate = dict(row)
    projects = conn.execute(
        "SELECT id, estimate_id, project_name FROM estimate_projects WHERE estimate_id = ? ORDER BY project_name",
        (estimate_id,),
    ).fetchall()
    estimate["projects"] = [dict(p) for p in projects]

    actual = conn.execute(
        """
        SELECT COALESCE(SUM(t.duration), 0)
        FROM time_entries t
        WHERE t.project IN (SELECT project_name FROM estimate_projects WHERE estimate_id = ?)
        """,
        (estimate_id,),
    ).fetchone()[0]

    percentage = actual * 100 / estimate["estimated_hours"] if estimate["estimated_hours"] > 0 else 0
    estimate["actual_hours"] = actual
    estimate["percentage"] = percentage
    estimate["status"] = budget_status(percentage)
    return estimate


# -------------------------------------------------
# Routes
# -------------------------------------------------
@router.get("", response_model=list[Estimate], summary="List estimates with hours spent so far")
def list_estimates(conn: sqlite3.Connection = Depends(get_db)):  # noqa: B008
    ids = conn.execute("SELECT id FROM project_estimates ORDER BY created_at DESC, rowid DESC").fetchall()
    return [load_estimate(conn, row["id"]) for row in ids]


@router.post("", response_model=Estimate, status_code=201, summary="Create an estimate")
def create_estimate(
    body: EstimateCreate, conn: sqlite3.Connection = Depends(get_db)  # noqa: B008
):
    estimate_id = str(uuid.uuid4())
    with conn:
        conn.execute(
            """
            INSERT INTO project_estimates (id, client_name, name, estimated_hours, notes)
            VALUES (?, ?, ?, ?, ?)
            """,
            (estimate_id, body.client_name, body.name, body.estimated_hours, body.notes),
        )
        _replace_projects(conn, estimate_id, body.projects)

    logger.info(f"Created estimate {estimate_id} for {body.client_name}")
    return load_estimate(conn, estimate_id)


@router.put("/{estimate_id}", response_model=Estimate, summary="Update an estimate")
def update_estimate(
    estimate_id: str, body: EstimateUpdate, conn: sqlite3.Connection = Depends(get_db)  # noqa: B008
):
    """
    Only the fields present in the body change. A `projects` list replaces
    every linked project in the same transaction.
    """
    if load_estimate(conn, estimate_id) is None:
        raise HTTPException(status_code=404, detail="Estimate not found")

    changes = {
        column: value
        for column, value in body.model_dump(exclude_unset=True, exclude={"projects"}).items()
        if value is not None or column == "notes"
    }
    with conn:
        if changes:
            assignments = ", ".join(f"{column} = ?" for column in changes)
            conn.execute(
                f"""
                UPDATE project_estimates
                SET {assignments}, updated_at = strftime('%Y-%m-%dT%H:%M:%fZ','now')
                WHERE id = ?
                """,
                (*changes.values(), estimate_id),
            )
        if body.projects is not None:
            _replace_projects(conn, estimate_id, body.projects)

    return load_estimate(conn, estimate_id)


@router.delete("/{estimate_id}", status_code=204, summary="Delete an estimate")
def delete_estimate(
    estimate_id: str, conn: sqlite3.Connection = Depends(get_db)  # noqa: B008
):
    cur = conn.execute("DELETE FROM project_estimates WHERE id = ?", (estimate_id,))
    if cur.rowcount == 0:
        raise HTTPException(status_code=404, detail="Estimate not found")
    conn.commit()
    return Response(status_code=204)
