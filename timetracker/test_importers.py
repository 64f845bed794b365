from datetime import UTC, datetime

import pytest

from timetracker.importers import (
    TempoCsvImporter,
    TogglCsvImporter,
    _parse_duration,
    content_external_id,
    detect_importer,
)

TOGGL_CSV = (
    "\ufeffUser,Email,Client,Project,Task,Description,Billable,Start date,Start time,End date,End time,Duration\n"
    "Me,me@example.com,,Website,,Fix header,No,2025-01-15,09:00:00,2025-01-15,10:30:00,01:30:00\n"
    "Me,me@example.com,,,,Lunch walk,No,2025-01-15,12:00:00,2025-01-15,12:00:00,00:00:00\n"
    "Me,me@example.com,,Website,,No date,No,,,,,01:00:00\n"
    "Me,me@example.com,,Website,,Bad date,No,2025-13-45,09:00:00,,,01:00:00\n"
)

TEMPO_CSV = (
    ",Issue,Key,Logged,01/Dec/25,02/Dec/25,03/Dec/25\n"
    "Story,Implement login,ABC-1,4.5,2.5,,2\n"
    "Bug,Fix crash,ABC-7,1,0,1,x\n"
    ",Total,,5.5,2.5,1,2\n"
)


@pytest.mark.parametrize(
    "value, expected",
    [
        ("1.25", 1.25),
        ("01:30:00", 1.5),
        ("0:45", 0.75),
        ("", None),
        ("abc", None),
        ("1:xx", None),
        ("nan", None),
        ("inf", None),
    ],
)
def test_parse_duration(value, expected):
    assert _parse_duration(value) == expected


def test_toggl_csv_import():
    result = TogglCsvImporter("Europe/Berlin").parse(TOGGL_CSV)

    assert len(result.entries) == 1
    entry = result.entries[0]
    assert entry.date.astimezone(UTC) == datetime(2025, 1, 15, 8, 0, tzinfo=UTC)
    assert entry.duration == 1.5
    assert entry.project == "Website"
    assert entry.description == "Fix header"
    assert entry.external_id.startswith("CSV_TOGGL_")
    assert result.errors == ["Line 5: invalid start '2025-13-45 09:00:00'"]


def test_toggl_external_id_is_stable():
    first = TogglCsvImporter("UTC").parse(TOGGL_CSV).entries[0]
    second = TogglCsvImporter("UTC").parse(TOGGL_CSV).entries[0]
    assert first.external_id == second.external_id
    assert content_external_id("TOGGL", first) == first.external_id


def test_toggl_unknown_timezone():
    with pytest.raises(ValueError, match="Unknown timezone"):
        TogglCsvImporter("Not/AZone")


def test_tempo_csv_import():
    result = TempoCsvImporter().parse(TEMPO_CSV)

    assert [(e.external_id, e.duration, e.project, e.description) for e in result.entries] == [
        ("ABC-1_2025-12-01", 2.5, "ABC-1", "Implement login"),
        ("ABC-1_2025-12-03", 2.0, "ABC-1", "Implement login"),
        ("ABC-7_2025-12-02", 1.0, "ABC-7", "Fix crash"),
    ]
    assert result.entries[0].date == datetime(2025, 12, 1, tzinfo=UTC)
    assert result.errors == ["ABC-7: invalid hours 'x' on 2025-12-03"]


def test_tempo_csv_rejects_non_finite_hours():
    content = (
        ",Issue,Key,Logged,01/Dec/25,02/Dec/25,03/Dec/25\n"
        "Story,Implement login,ABC-1,1,nan,inf,1\n"
    )

    result = TempoCsvImporter().parse(content)

    assert [e.external_id for e in result.entries] == ["ABC-1_2025-12-03"]
    assert result.errors == [
        "ABC-1: invalid hours 'nan' on 2025-12-01",
        "ABC-1: invalid hours 'inf' on 2025-12-02",
    ]


def test_tempo_csv_too_short():
    assert TempoCsvImporter().parse(",Issue,Key\n").errors == ["Tempo CSV is too short"]


def test_detect_importer():
    assert isinstance(detect_importer("Toggl_Track_export.csv", "anything"), TogglCsvImporter)
    assert isinstance(detect_importer("timesheet.csv", TEMPO_CSV), TempoCsvImporter)
    assert detect_importer("export.csv", "a,b,c\n") is None
    assert detect_importer("export.csv", "") is None
