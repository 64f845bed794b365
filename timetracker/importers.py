"""
CSV importers for Toggl detailed reports and Tempo timesheet exports.
"""
import csv
import hashlib
import io
import logging
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime

from timetracker.providers import RawTimeEntry
from timetracker.timeutil import get_zone

logger = logging.getLogger(__name__)


@dataclass
class ImportResult:
    source: str
    entries: list[RawTimeEntry] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)


def content_external_id(source: str, entry: RawTimeEntry) -> str:
    """Stable id for rows that come without one, so re-imports update in place."""
    key = "|".join(
        [
            entry.date.astimezone(UTC).isoformat(),
            f"{entry.duration:.4f}",
            entry.project or "",
            entry.description or "",
        ]
    )
    return f"CSV_{source}_{hashlib.sha1(key.encode('utf-8')).hexdigest()[:16]}"


def _parse_duration(value: str) -> float | None:
    """Decimal hours ("1.25") or a clock duration ("01:15:00")."""
    value = (value or "").strip()
    if not value:
        return None
    if ":" in value:
        parts = value.split(":")
        if len(parts) not in (2, 3) or not all(p.isdigit() for p in parts):
            return None
        hours, minutes, *rest = (int(p) for p in parts)
        seconds = rest[0] if rest else 0
        return hours + minutes / 60 + seconds / 3600
    try:
        hours = float(value)
    except ValueError:
        return None
    return hours if math.isfinite(hours) else None


class TogglCsvImporter:
    source = "TOGGL"

    def __init__(self, timezone: str | None = None):
        self.zone = get_zone(timezone)

    def parse(self, content: str) -> ImportResult:
        result = ImportResult(self.source)
        content = content.lstrip("\ufeff").strip()

        try:
            rows = list(csv.DictReader(io.StringIO(content), skipinitialspace=True))
        except csv.Error as e:
            result.errors.append(f"Failed to parse Toggl CSV: {e}")
            return result

        logger.info(f"[TOGGL CSV] {len(rows)} rows found")

        for line_no, row in enumerate(rows, start=2):
            date_str = (row.get("Start date") or "").strip()
            if not date_str:
                continue

            time_str = (row.get("Start time") or "").strip() or "00:00:00"
            try:
                start = datetime.fromisoformat(f"{date_str}T{time_str}")
            except ValueError:
                result.errors.append(f"Line {line_no}: invalid start '{date_str} {time_str}'")
                continue

            duration = _parse_duration(row.get("Duration", ""))
            if not duration:
                continue

            entry = RawTimeEntry(
                external_id="",
                date=start.replace(tzinfo=self.zone),
                duration=duration,
                project=(row.get("Project") or "").strip() or "No Project",
                description=(row.get("Description") or "").strip(),
            )
            entry.external_id = content_external_id(self.source, entry)
            result.entries.append(entry)

        return result


class TempoCsvImporter:
    """
    Tempo's timesheet export is a matrix: one row per issue, one column per
    day (headers like ``01/Dec/25``), cells holding decimal hours.
    """

    source = "TEMPO"

    def parse(self, content: str) -> ImportResult:
        result = ImportResult(self.source)

        try:
            rows = [
                [cell.strip() for cell in row]
                for row in csv.reader(io.StringIO(content.lstrip("\ufeff")))
                if any(cell.strip() for cell in row)
            ]
        except csv.Error as e:
            result.errors.append(f"Failed to parse Tempo CSV: {e}")
            return result

        if len(rows) < 2:
            result.errors.append("Tempo CSV is too short")
            return result

        date_columns: dict[int, datetime] = {}
        for index, header in enumerate(rows[0]):
            if "/" not in header:
                continue
            try:
                date_columns[index] = datetime.strptime(header, "%d/%b/%y").replace(tzinfo=UTC)
            except ValueError:
                continue

        for row in rows[1:]:
            if "Total" in row[:2]:
                continue
            if len(row) < 3:
                continue

            issue, key = row[1], row[2]
            for index, day in date_columns.items():
                if index >= len(row) or not row[index]:
                    continue
                try:
                    hours = float(row[index])
                    if not math.isfinite(hours):
                        raise ValueError(row[index])
                except ValueError:
                    result.errors.append(f"{key}: invalid hours '{row[index]}' on {day:%Y-%m-%d}")
                    continue
                if hours <= 0:
                    continue

                result.entries.append(
                    RawTimeEntry(
                        external_id=f"{key}_{day:%Y-%m-%d}",
                        date=day,
                        duration=hours,
                        project=key,
                        description=issue,
                    )
                )

        return result


def detect_importer(filename: str, content: str, timezone: str | None = None):
    """Picks an importer from the file name or header, or None if unknown."""
    if "toggl" in filename.lower():
        return TogglCsvImporter(timezone)

    header = content.lstrip("\ufeff").splitlines()[0] if content.strip() else ""
    if "Issue,Key" in header.replace(", ", ","):
        return TempoCsvImporter()

    return None
