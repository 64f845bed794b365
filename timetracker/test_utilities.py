import sqlite3
from pathlib import Path

import pytest
from fastapi import HTTPException

from timetracker import settings
from timetracker.utilities import get_reading_photo


@pytest.fixture
def property_id(client):
    response = client.post("/api/utilities/properties", json={"name": "Meine Wohnung", "moved_in": "2024-04-01"})
    assert response.status_code == 201
    return response.json()["id"]


@pytest.fixture
def meter_id(client, property_id):
    response = client.post(
        "/api/utilities/meters",
        json={"property_id": property_id, "type": "STROM", "name": "Hauptzähler", "unit": "kWh"},
    )
    assert response.status_code == 201
    return response.json()["id"]


def _reading(client, meter_id, reading_date, value, **extra):
    return client.post(
        "/api/utilities/readings",
        json={"meter_id": meter_id, "reading_date": reading_date, "value": value, **extra},
    )


# ===================================================================
# Properties
# ===================================================================
def test_property_crud(client):
    created = client.post("/api/utilities/properties", json={"name": "Altbau", "address": "Hauptstr. 1"}).json()
    assert created["address"] == "Hauptstr. 1"

    updated = client.put(f"/api/utilities/properties/{created['id']}", json={"moved_out": "2025-06-30"}).json()
    assert updated["moved_out"] == "2025-06-30"
    assert updated["name"] == "Altbau"

    listed = client.get("/api/utilities/properties").json()
    assert [(p["name"], p["meter_count"]) for p in listed] == [("Altbau", 0)]

    assert client.delete(f"/api/utilities/properties/{created['id']}").status_code == 204
    assert client.get("/api/utilities/properties").json() == []


def test_property_with_meters_cannot_be_deleted(client, property_id, meter_id):
    client.delete(f"/api/utilities/meters/{meter_id}")  # archived meters still count

    response = client.delete(f"/api/utilities/properties/{property_id}")

    assert response.status_code == 409


def test_update_missing_property(client):
    assert client.put("/api/utilities/properties/nope", json={"name": "x"}).status_code == 404


# ===================================================================
# Meters
# ===================================================================
def test_create_meter_requires_existing_property(client):
    response = client.post(
        "/api/utilities/meters",
        json={"property_id": "missing", "type": "GAS", "name": "Gas", "unit": "m³"},
    )
    assert response.status_code == 404


@pytest.mark.parametrize(
    "overrides",
    [{"type": "OIL"}, {"name": ""}, {"name": "x" * 101}, {"location": "y" * 201}, {"unit": ""}],
)
def test_create_meter_validation(client, property_id, overrides):
    payload = {"property_id": property_id, "type": "GAS", "name": "Gas", "unit": "m³", **overrides}
    assert client.post("/api/utilities/meters", json=payload).status_code == 422


def test_archive_and_restore_meter(client, meter_id):
    assert client.delete(f"/api/utilities/meters/{meter_id}").status_code == 204
    assert client.get("/api/utilities/meters").json() == []

    archived = client.get("/api/utilities/meters", params={"include_archived": "true"}).json()
    assert archived[0]["deleted_at"] is not None

    restored = client.patch(f"/api/utilities/meters/{meter_id}/restore").json()
    assert restored["deleted_at"] is None
    assert len(client.get("/api/utilities/meters").json()) == 1


def test_list_meters_filters_by_property_and_counts_readings(client, property_id, meter_id):
    other = client.post("/api/utilities/properties", json={"name": "Ferienhaus"}).json()["id"]
    client.post(
        "/api/utilities/meters",
        json={"property_id": other, "type": "GAS", "name": "Gas", "unit": "m³"},
    )
    _reading(client, meter_id, "2025-01-01", 100)
    _reading(client, meter_id, "2025-02-01", 150)

    meters = client.get("/api/utilities/meters", params={"property_id": property_id}).json()

    assert len(meters) == 1
    assert meters[0]["id"] == meter_id
    assert meters[0]["readings_count"] == 2


def test_update_meter(client, meter_id):
    response = client.put(f"/api/utilities/meters/{meter_id}", json={"location": "Keller"})
    assert response.status_code == 200
    assert response.json()["location"] == "Keller"
    assert response.json()["name"] == "Hauptzähler"


# ===================================================================
# Readings
# ===================================================================
def test_readings_with_consumption(client, meter_id):
    _reading(client, meter_id, "2025-03-01", 180.5, notes="after vacation")
    _reading(client, meter_id, "2025-01-01", 100)
    _reading(client, meter_id, "2025-02-01", 150)

    readings = client.get(f"/api/utilities/meters/{meter_id}/readings").json()

    assert [r["reading_date"] for r in readings] == ["2025-01-01", "2025-02-01", "2025-03-01"]
    assert [r["consumption"] for r in readings] == [None, 50, 30.5]
    assert {r["unit"] for r in readings} == {"kWh"}
    assert readings[2]["notes"] == "after vacation"


def test_reading_lower_than_previous_is_rejected(client, meter_id):
    _reading(client, meter_id, "2025-01-01", 100)

    response = _reading(client, meter_id, "2025-02-01", 99)

    assert response.status_code == 400
    detail = response.json()["detail"]
    assert detail["error"] == "Invalid reading"
    assert detail["details"] == {
        "previous_value": 100,
        "previous_date": "2025-01-01",
        "attempted_value": 99,
    }


def test_reading_higher_than_next_is_rejected(client, meter_id):
    _reading(client, meter_id, "2025-01-01", 100)
    _reading(client, meter_id, "2025-03-01", 200)

    response = _reading(client, meter_id, "2025-02-01", 250)

    assert response.status_code == 400
    assert response.json()["detail"]["details"]["next_date"] == "2025-03-01"


def test_reading_between_neighbours_is_accepted(client, meter_id):
    _reading(client, meter_id, "2025-01-01", 100)
    _reading(client, meter_id, "2025-03-01", 200)
    assert _reading(client, meter_id, "2025-02-01", 150).status_code == 201


def test_duplicate_reading_date(client, meter_id):
    _reading(client, meter_id, "2025-01-01", 100)
    assert _reading(client, meter_id, "2025-01-01", 120).status_code == 409


@pytest.mark.parametrize("payload", [{"value": -1}, {"notes": "n" * 501}, {"reading_date": "01.01.2025"}])
def test_reading_validation(client, meter_id, payload):
    body = {"meter_id": meter_id, "reading_date": "2025-01-01", "value": 1, **payload}
    assert client.post("/api/utilities/readings", json=body).status_code == 422


def test_update_reading_rechecks_order_excluding_itself(client, meter_id):
    _reading(client, meter_id, "2025-01-01", 100)
    middle = _reading(client, meter_id, "2025-02-01", 150).json()
    _reading(client, meter_id, "2025-03-01", 200)

    ok = client.put(f"/api/utilities/readings/{middle['id']}", json={"value": 190})
    assert ok.status_code == 200
    assert ok.json()["value"] == 190

    too_high = client.put(f"/api/utilities/readings/{middle['id']}", json={"value": 201})
    assert too_high.status_code == 400


def test_update_reading_notes_only(client, meter_id):
    reading = _reading(client, meter_id, "2025-01-01", 100).json()
    response = client.put(f"/api/utilities/readings/{reading['id']}", json={"notes": "checked"})
    assert response.json()["notes"] == "checked"


def test_delete_reading(client, meter_id):
    reading = _reading(client, meter_id, "2025-01-01", 100).json()
    assert client.delete(f"/api/utilities/readings/{reading['id']}").status_code == 204
    assert client.delete(f"/api/utilities/readings/{reading['id']}").status_code == 404


def test_database_refuses_decreasing_reading(test_db, client, meter_id):
    _reading(client, meter_id, "2025-01-01", 100)
    with pytest.raises(sqlite3.IntegrityError, match="previous reading"):
        test_db.execute(
            "INSERT INTO meter_readings (id, meter_id, reading_date, value) VALUES ('x', ?, '2025-02-01', 50)",
            (meter_id,),
        )


def test_database_refuses_reading_above_later_one(test_db, client, meter_id):
    _reading(client, meter_id, "2025-03-01", 100)
    with pytest.raises(sqlite3.IntegrityError, match="next reading"):
        test_db.execute(
            "INSERT INTO meter_readings (id, meter_id, reading_date, value) VALUES ('x', ?, '2025-02-01', 150)",
            (meter_id,),
        )


def test_database_refuses_update_breaking_order(test_db, client, meter_id):
    _reading(client, meter_id, "2025-01-01", 100)
    middle = _reading(client, meter_id, "2025-02-01", 120).json()
    _reading(client, meter_id, "2025-03-01", 140)

    with pytest.raises(sqlite3.IntegrityError, match="previous reading"):
        test_db.execute("UPDATE meter_readings SET value = 90 WHERE id = ?", (middle["id"],))
    with pytest.raises(sqlite3.IntegrityError, match="next reading"):
        test_db.execute("UPDATE meter_readings SET value = 160 WHERE id = ?", (middle["id"],))

    # Rewriting a reading with a value between its neighbours is fine
    test_db.execute("UPDATE meter_readings SET value = 130 WHERE id = ?", (middle["id"],))


# ===================================================================
# Bulk import
# ===================================================================
def test_bulk_import_from_text(client, meter_id):
    _reading(client, meter_id, "2025-01-01", 2000)
    text = "01.01.2025, 2000\n01.02.2025; 2.389\n01.03.2025\t2.694,41\nnot a reading\n"

    response = client.post(f"/api/utilities/meters/{meter_id}/readings/bulk", json={"text": text})

    assert response.status_code == 200
    body = response.json()
    assert body["created"] == 2
    assert body["skipped"] == 1
    assert body["errors"] == [{"line": 4, "text": "not a reading", "error": "Invalid format"}]

    values = [r["value"] for r in client.get(f"/api/utilities/meters/{meter_id}/readings").json()]
    assert values == [2000, 2389, 2694.41]


def test_bulk_import_rejects_decreasing_series(client, meter_id):
    response = client.post(
        f"/api/utilities/meters/{meter_id}/readings/bulk",
        json={"readings": [{"reading_date": "2025-01-01", "value": 10}, {"reading_date": "2025-02-01", "value": 5}]},
    )

    assert response.status_code == 400
    assert client.get(f"/api/utilities/meters/{meter_id}/readings").json() == []


def test_bulk_import_needs_input(client, meter_id):
    assert client.post(f"/api/utilities/meters/{meter_id}/readings/bulk", json={}).status_code == 400


# ===================================================================
# Photos
# ===================================================================
def test_photo_upload_and_download(client, meter_id):
    reading = _reading(client, meter_id, "2025-01-01", 100).json()

    response = client.post(
        f"/api/utilities/readings/{reading['id']}/photo",
        files={"file": ("meter.png", b"\x89PNG fake image", "image/png")},
    )

    assert response.status_code == 200
    photo_path = response.json()["photo_path"]
    assert photo_path.startswith(f"/uploads/meter-photos/{reading['id']}-")
    assert photo_path.endswith(".png")

    stored = Path(settings.UPLOAD_DIR) / "meter-photos" / Path(photo_path).name
    assert stored.read_bytes() == b"\x89PNG fake image"

    download = client.get(f"/api{photo_path}")
    assert download.status_code == 200
    assert download.content == b"\x89PNG fake image"


def test_photo_upload_rejects_other_types(client, meter_id):
    reading = _reading(client, meter_id, "2025-01-01", 100).json()
    response = client.post(
        f"/api/utilities/readings/{reading['id']}/photo",
        files={"file": ("meter.gif", b"GIF89a", "image/gif")},
    )
    assert response.status_code == 400


def test_missing_photo(client):
    assert client.get("/api/uploads/meter-photos/nothing.png").status_code == 404


def test_photo_download_rejects_hidden_files(client):
    hidden = Path(settings.UPLOAD_DIR) / "meter-photos" / ".hidden"
    hidden.parent.mkdir(parents=True)
    hidden.write_text("secret")

    response = client.get("/api/uploads/meter-photos/.hidden")

    assert response.status_code == 400
    assert response.json()["detail"] == "Invalid filename"


@pytest.mark.parametrize("filename", ["..", "../settings.py", "sub/evil.png", ".env"])
def test_get_reading_photo_rejects_unsafe_names(filename):
    with pytest.raises(HTTPException) as exc_info:
        get_reading_photo(filename)
    assert exc_info.value.status_code == 400


# ===================================================================
# Monthly consumption
# ===================================================================
def test_monthly_consumption(client, property_id, meter_id):
    for reading_date, value in [("2025-01-01", 100), ("2025-02-01", 131), ("2025-03-01", 159), ("2025-03-16", 174)]:
        _reading(client, meter_id, reading_date, value)

    # Gas readings must not leak into the electricity totals
    gas = client.post(
        "/api/utilities/meters",
        json={"property_id": property_id, "type": "GAS", "name": "Gas", "unit": "m³"},
    ).json()["id"]
    _reading(client, gas, "2025-01-01", 0)
    _reading(client, gas, "2025-02-01", 500)

    body = client.get("/api/utilities/consumption/monthly", params={"type": "STROM"}).json()

    assert body["unit"] == "kWh"
    assert body["data"] == [
        {"year": 2025, "month": 1, "consumption": 31.0},
        {"year": 2025, "month": 2, "consumption": 28.0},
        {"year": 2025, "month": 3, "consumption": 15.0},
    ]


def test_monthly_consumption_ignores_archived_meters(client, meter_id):
    _reading(client, meter_id, "2025-01-01", 100)
    _reading(client, meter_id, "2025-02-01", 131)
    client.delete(f"/api/utilities/meters/{meter_id}")

    body = client.get("/api/utilities/consumption/monthly", params={"type": "STROM"}).json()

    assert body == {"type": "STROM", "unit": "kWh", "data": []}
