"""
Shared machinery for time-tracking providers (Toggl, Tempo).

A provider fetches raw rows from its API, optionally through a short-lived
JSON file cache, normalizes them into `RawTimeEntry` objects and upserts
them into `time_entries` keyed by (source, external_id).
"""
import json
import logging
import sqlite3
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any

from timetracker import settings
from timetracker.db import create_connection
from timetracker.timeutil import dt_to_iso_and_ts, months_ago

logger = logging.getLogger(__name__)

CACHE_DURATION_SECONDS = 10 * 60

UPSERT_SQL = """
INSERT INTO time_entries (
    id, source, external_id, date, date_ts, duration, project, description
)
VALUES (?,?,?,?,?,?,?,?)
ON CONFLICT(source, external_id) DO UPDATE SET
    date        = excluded.date,
    date_ts     = excluded.date_ts,
    duration    = excluded.duration,
    project     = excluded.project,
    description = excluded.description;
"""


class ProviderError(Exception):
    """Raised when a provider API rejects a request or is misconfigured."""


@dataclass
class RawTimeEntry:
    external_id: str
    date: datetime  # timezone-aware
    duration: float  # hours
    project: str | None = None
    description: str | None = None


@dataclass
class SyncOptions:
    force_refresh: bool = False
    custom_start: str | None = None
    custom_end: str | None = None

    @property
    def is_custom(self) -> bool:
        return bool(self.custom_start) and bool(self.custom_end)


@dataclass
class SyncResult:
    count: int
    cached: bool
    message: str
    skipped: int = 0
    extra: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "count": self.count,
            "skipped": self.skipped,
            "cached": self.cached,
            "message": self.message,
            **self.extra,
        }


def upsert_time_entries(conn: sqlite3.Connection, source: str, entries: list[RawTimeEntry]) -> int:
    """Insert or update entries by (source, external_id). Caller commits."""
    count = 0
    for entry in entries:
        date_iso, date_ts = dt_to_iso_and_ts(entry.date)
        conn.execute(
            UPSERT_SQL,
            (
                str(uuid.uuid4()),
                source,
                entry.external_id,
                date_iso,
                date_ts,
                entry.duration,
                entry.project or None,
                entry.description or None,
            ),
        )
        count += 1
    return count


class BaseProvider:
    """Template for a provider; subclasses supply the API specifics."""

    name: str = ""

    def __init__(self, cache_dir: str | Path | None = None):
        cache_dir = Path(cache_dir or settings.CACHE_DIR)
        self.cache_file = cache_dir / f"{self.name.lower()}_cache.json"

    # --- provider specifics ---

    def validate(self) -> bool:
        raise NotImplementedError

    def fetch_from_api(self, start_date: str, end_date: str) -> list[dict[str, Any]]:
        raise NotImplementedError

    def transform_entry(self, raw: dict[str, Any]) -> RawTimeEntry:
        raise NotImplementedError

    def keep(self, raw: dict[str, Any]) -> bool:
        """Whether a raw row should be stored at all."""
        return True

    def reset_stats(self) -> None:
        """Clear per-sync counters before transforming."""

    def extra_result(self) -> dict[str, Any]:
        return {}

    # --- shared flow ---

    def sync(self, options: SyncOptions | None = None) -> SyncResult:
        options = options or SyncOptions()
        logger.info(
            f"[{self.name}] Sync requested: force={options.force_refresh}, "
            f"start={options.custom_start}, end={options.custom_end}"
        )

        raw_entries: list[dict[str, Any]] | None = None
        used_cache = False

        if not options.force_refresh and not options.is_custom:
            raw_entries = self.read_cache()
            used_cache = raw_entries is not None

        if raw_entries is None:
            start, end = self.date_range(options.custom_start, options.custom_end)
            logger.info(f"[{self.name}] Fetching fresh data from API for {start} to {end}")
            raw_entries = self.fetch_from_api(start, end)
            if options.is_custom:
                logger.info(f"[{self.name}] Custom sync - skipping cache write")
            else:
                self.write_cache(raw_entries)

        self.reset_stats()
        kept = [raw for raw in raw_entries if self.keep(raw)]
        skipped = len(raw_entries) - len(kept)
        entries = [self.transform_entry(raw) for raw in kept]
        count = self.upsert_entries(entries)

        return SyncResult(
            count=count,
            skipped=skipped,
            cached=used_cache,
            message="Loaded from cache" if used_cache else f"Fetched fresh data from {self.name} API",
            extra=self.extra_result(),
        )

    def date_range(self, custom_start: str | None = None, custom_end: str | None = None) -> tuple[str, str]:
        """Custom range if both ends are given, else three months ago until tomorrow."""
        if custom_start and custom_end:
            return custom_start, custom_end

        today = date.today()
        start = months_ago(today, 3)
        end = today + timedelta(days=1)
        return start.strftime("%Y-%m-%d"), end.strftime("%Y-%m-%d")

    def read_cache(self) -> list[dict[str, Any]] | None:
        if not self.cache_file.exists():
            return None

        age = time.time() - self.cache_file.stat().st_mtime
        if age >= CACHE_DURATION_SECONDS:
            return None

        logger.info(f"[{self.name}] Using cached data from {self.cache_file}")
        return json.loads(self.cache_file.read_text(encoding="utf-8"))

    def write_cache(self, data: list[dict[str, Any]]) -> None:
        logger.info(f"[{self.name}] Writing {len(data)} entries to cache: {self.cache_file}")
        self.cache_file.parent.mkdir(parents=True, exist_ok=True)
        self.cache_file.write_text(json.dumps(data, indent=2), encoding="utf-8")

    def upsert_entries(self, entries: list[RawTimeEntry]) -> int:
        logger.info(f"[{self.name} DB] Processing {len(entries)} entries...")
        conn = create_connection()
        try:
            with conn:
                count = upsert_time_entries(conn, self.name, entries)
        finally:
            conn.close()
        logger.info(f"[{self.name} DB] Upserted {count} entries.")
        return count

    def entry_stats(self) -> dict[str, Any]:
        """Stored entry count and the newest `created_at` for this source."""
        return source_stats(self.name)


def source_stats(source: str) -> dict[str, Any]:
    conn = create_connection()
    try:
        row = conn.execute(
            "SELECT COUNT(*), MAX(created_at) FROM time_entries WHERE source = ?",
            (source,),
        ).fetchone()
    finally:
        conn.close()
    return {"entry_count": row[0], "last_sync": row[1]}
