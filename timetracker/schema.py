"""
Centralized database schema and initialization.
"""
from timetracker.db import create_connection

SCHEMA = """
CREATE TABLE IF NOT EXISTS time_entries (
    id            TEXT PRIMARY KEY,       -- uuid4
    source        TEXT NOT NULL,          -- TOGGL | TEMPO | MANUAL
    external_id   TEXT NOT NULL,
    date          TEXT NOT NULL,          -- ISO-8601 in UTC (...Z)
    date_ts       INTEGER NOT NULL,       -- epoch-seconds UTC
    duration      REAL NOT NULL,          -- hours
    project       TEXT,
    description   TEXT,
    start_time    TEXT,                   -- HH:MM, manual entries only
    end_time      TEXT,
    created_at    TEXT NOT NULL
                   DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ','now')),
    created_at_ts INTEGER NOT NULL
                   DEFAULT (CAST(strftime('%s','now') AS INTEGER)),
    UNIQUE (source, external_id)
);

CREATE INDEX IF NOT EXISTS idx_time_entries_date_ts ON time_entries(date_ts);
CREATE INDEX IF NOT EXISTS idx_time_entries_project ON time_entries(project);

CREATE TABLE IF NOT EXISTS project_estimates (
    id              TEXT PRIMARY KEY,
    client_name     TEXT NOT NULL,
    name            TEXT NOT NULL,
    estimated_hours REAL NOT NULL,
    notes           TEXT,
    created_at      TEXT NOT NULL
                     DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ','now')),
    updated_at      TEXT NOT NULL
                     DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ','now'))
);

CREATE TABLE IF NOT EXISTS estimate_projects (
    id           TEXT PRIMARY KEY,
    estimate_id  TEXT NOT NULL,
    project_name TEXT NOT NULL,
    UNIQUE (estimate_id, project_name),
    FOREIGN KEY (estimate_id) REFERENCES project_estimates(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_estimate_projects_name ON estimate_projects(project_name);

CREATE TABLE IF NOT EXISTS properties (
    id         TEXT PRIMARY KEY,
    name       TEXT NOT NULL,
    address    TEXT,
    moved_in   TEXT,                      -- YYYY-MM-DD
    moved_out  TEXT,
    created_at TEXT NOT NULL
                DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ','now')),
    updated_at TEXT NOT NULL
                DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ','now'))
);

CREATE TABLE IF NOT EXISTS meters (
    id          TEXT PRIMARY KEY,
    property_id TEXT NOT NULL,
    type        TEXT NOT NULL CHECK (type IN ('STROM', 'GAS', 'WASSER_WARM')),
    name        TEXT NOT NULL,
    unit        TEXT NOT NULL,
    location    TEXT,
    deleted_at  TEXT,                     -- soft delete
    created_at  TEXT NOT NULL
                 DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ','now')),
    updated_at  TEXT NOT NULL
                 DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ','now')),
    FOREIGN KEY (property_id) REFERENCES properties(id) ON DELETE RESTRICT
);

CREATE INDEX IF NOT EXISTS idx_meters_type ON meters(type);
CREATE INDEX IF NOT EXISTS idx_meters_property_id ON meters(property_id);

CREATE TABLE IF NOT EXISTS meter_readings (
    id           TEXT PRIMARY KEY,
    meter_id     TEXT NOT NULL,
    reading_date TEXT NOT NULL,           -- YYYY-MM-DD
    value        REAL NOT NULL,
    photo_path   TEXT,
    notes        TEXT,
    created_at   TEXT NOT NULL
                  DEFAULT (strftime('%Y-%m-%dT%H:%M:%fZ','now')),
    UNIQUE (meter_id, reading_date),
    FOREIGN KEY (meter_id) REFERENCES meters(id) ON DELETE RESTRICT
);

-- Readings of one meter never decrease over time. The API checks this first
-- and answers with a readable error; these triggers are the last line.
CREATE TRIGGER IF NOT EXISTS meter_readings_monotonic_insert
BEFORE INSERT ON meter_readings
BEGIN
    SELECT RAISE(ABORT, 'meter reading must be >= previous reading')
    WHERE EXISTS (
        SELECT 1 FROM meter_readings
        WHERE meter_id = NEW.meter_id
          AND reading_date < NEW.reading_date
          AND value > NEW.value
    );
    SELECT RAISE(ABORT, 'meter reading must be <= next reading')
    WHERE EXISTS (
        SELECT 1 FROM meter_readings
        WHERE meter_id = NEW.meter_id
          AND reading_date > NEW.reading_date
          AND value < NEW.value
    );
END;

CREATE TRIGGER IF NOT EXISTS meter_readings_monotonic_update
BEFORE UPDATE OF reading_date, value ON meter_readings
BEGIN
    SELECT RAISE(ABORT, 'meter reading must be >= previous reading')
    WHERE EXISTS (
        SELECT 1 FROM meter_readings
        WHERE meter_id = NEW.meter_id
          AND id != NEW.id
          AND reading_date < NEW.reading_date
          AND value > NEW.value
    );
    SELECT RAISE(ABORT, 'meter reading must be <= next reading')
    WHERE EXISTS (
        SELECT 1 FROM meter_readings
        WHERE meter_id = NEW.meter_id
          AND id != NEW.id
          AND reading_date > NEW.reading_date
          AND value < NEW.value
    );
END;
"""


def init_database():
    """Initializes the database using the centralized schema."""
    with create_connection() as conn:
        conn.executescript(SCHEMA)
        conn.commit()
