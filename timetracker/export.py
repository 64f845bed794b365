"""
Report downloads: a PDF rendered with reportlab from entries the client has
already selected, and a CSV of all entries in a time window.
"""
import csv
import html
import io
import logging
import sqlite3
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, ConfigDict, Field
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_RIGHT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from timetracker import settings
from timetracker.db import get_db
from timetracker.entries import fetch_entries_between, window_from_query
from timetracker.timeutil import get_zone

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/export", tags=["export"])

CSV_HEADER = ["Date", "Hours", "Source", "Description", "Project"]
FORMULA_PREFIXES = ("=", "+", "-", "@")


class ExportEntry(BaseModel):
    date: datetime
    duration: float
    source: str
    project: str | None = None
    description: str | None = None


class DateRange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    start: str = Field(..., alias="from")
    end: str = Field(..., alias="to")


class PdfExportRequest(BaseModel):
    entries: list[ExportEntry] = Field(..., min_length=1)
    date_range: DateRange
    total_hours: float
    timezone: str | None = None


def _day(value: str) -> str:
    return value.split("T")[0]


def _german_date(value: str) -> str:
    return datetime.fromisoformat(_day(value)).strftime("%d.%m.%Y")


def render_pdf(body: PdfExportRequest) -> bytes:
    zone = get_zone(body.timezone or settings.DEFAULT_TIMEZONE)

    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf,
        pagesize=A4,
        rightMargin=15 * mm,
        leftMargin=15 * mm,
        topMargin=15 * mm,
        bottomMargin=15 * mm,
        title="Time Tracking Report",
    )
    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle(name="Cell", parent=styles["Normal"], fontSize=8, leading=10))
    styles.add(ParagraphStyle(name="CellRight", parent=styles["Cell"], alignment=TA_RIGHT))
    styles.add(
        ParagraphStyle(name="Footer", parent=styles["Normal"], fontSize=7, textColor=colors.grey, alignment=TA_CENTER)
    )
    story = []

    story.append(Paragraph("Time Tracking Report", styles["Title"]))
    period = f"{_german_date(body.date_range.start)} - {_german_date(body.date_range.end)}"
    story.append(Paragraph(f"Period: {period}", styles["Normal"]))
    story.append(Spacer(1, 8))

    summary = Table(
        [["Total hours:", f"{body.total_hours:.2f}", "Entries:", str(len(body.entries))]],
        colWidths=[30 * mm, 30 * mm, 25 * mm, 25 * mm],
    )
    summary.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, -1), colors.whitesmoke),
                ("FONTNAME", (1, 0), (1, 0), "Helvetica-Bold"),
                ("FONTNAME", (3, 0), (3, 0), "Helvetica-Bold"),
                ("ALIGN", (0, 0), (-1, -1), "LEFT"),
            ]
        )
    )
    story.append(summary)
    story.append(Spacer(1, 12))

    data = [["Date", "Source", "Project", "Description", "Hours"]]
    for entry in body.entries:
        when = entry.date.astimezone(zone) if entry.date.tzinfo else entry.date
        data.append(
            [
                when.strftime("%d.%m.%Y %H:%M"),
                entry.source,
                Paragraph(html.escape(entry.project or ""), styles["Cell"]),
                Paragraph(html.escape(entry.description or ""), styles["Cell"]),
                Paragraph(f"{entry.duration:.2f}", styles["CellRight"]),
            ]
        )

    table = Table(data, colWidths=[30 * mm, 20 * mm, 45 * mm, 70 * mm, 15 * mm], repeatRows=1)
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#333333")),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("FONTSIZE", (0, 0), (-1, -1), 8),
                ("VALIGN", (0, 0), (-1, -1), "TOP"),
                ("ALIGN", (-1, 0), (-1, -1), "RIGHT"),
                ("ROWBACKGROUNDS", (0, 1), (-1, -1), [colors.white, colors.HexColor("#f9f9f9")]),
                ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.lightgrey),
            ]
        )
    )
    story.append(table)
    story.append(Spacer(1, 16))

    generated = datetime.now(zone).strftime("%d.%m.%Y %H:%M:%S")
    story.append(Paragraph(f"Generated on {generated}", styles["Footer"]))

    doc.build(story)
    return buf.getvalue()


def sanitize_cell(value) -> str:
    """Prefix cells a spreadsheet would read as a formula."""
    text = "" if value is None else str(value)
    return f"'{text}" if text.startswith(FORMULA_PREFIXES) else text


@router.post("/pdf", summary="Render the given entries as a PDF report")
def export_pdf(body: PdfExportRequest):
    try:
        pdf = render_pdf(body)
    except ValueError as e:
        raise HTTPException(400, str(e)) from e
    except Exception as e:
        logger.error(f"PDF generation failed: {e}", exc_info=True)
        raise HTTPException(500, "Failed to generate PDF report") from e

    filename = f"timetracker-{_day(body.date_range.start)}-to-{_day(body.date_range.end)}.pdf"
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/csv", summary="Download entries in a UTC window as CSV")
def export_csv(
    start_iso: datetime = Query(..., description="Inclusive ISO 8601 datetime"),  # noqa: B008
    end_iso: datetime = Query(..., description="Exclusive ISO 8601 datetime"),  # noqa: B008
    conn: sqlite3.Connection = Depends(get_db),  # noqa: B008
):
    start_ts, end_ts = window_from_query(start_iso, end_iso)
    entries = fetch_entries_between(conn, start_ts, end_ts)

    out = io.StringIO()
    writer = csv.writer(out)
    writer.writerow(CSV_HEADER)
    for entry in entries:
        writer.writerow(
            [
                entry["date"],
                f"{entry['duration']:.2f}",
                sanitize_cell(entry["source"]),
                sanitize_cell(entry["description"]),
                sanitize_cell(entry["project"]),
            ]
        )

    filename = f"timetracker-{start_iso.date().isoformat()}-to-{end_iso.date().isoformat()}.csv"
    return Response(
        content=out.getvalue(),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
