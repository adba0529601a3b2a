from datetime import date, timedelta

from .conftest import client


def future_monday(weeks_ahead=4):
    today = date.today()
    return today - timedelta(days=today.weekday()) + timedelta(weeks=weeks_ahead)


def book(client, user, instrument_id=1, day=None, slot="morning", purpose=None):
    return client.post(
        "/api/reservations",
        json={
            "instrument_id": instrument_id,
            "user": user,
            "date": (day or future_monday()).isoformat(),
            "time_slot": slot,
            "purpose": purpose,
        },
    )


def test_default_instruments_are_seeded(client):
    resp = client.get("/api/instruments")
    assert resp.status_code == 200
    names = [i["name"] for i in resp.json()]
    assert names == [
        "Electron Microscope",
        "X-ray Diffractometer",
        "Atomic Force Microscope",
        "Raman Spectrometer",
    ]


def test_booking_conflict(client):
    first = book(client, "Alice", purpose="TEM session")
    assert first.status_code == 201, first.text
    assert first.json()["user"] == "Alice"

    conflict = book(client, "Bob")
    assert conflict.status_code == 409
    assert conflict.json() == {
        "detail": "slot already booked",
        "level": "error",
        "dismiss_after_ms": 3000,
    }

    listed = client.get("/api/reservations").json()
    assert [r["user"] for r in listed] == ["Alice"]


def test_validation_errors_use_message_payload(client):
    blank = book(client, "   ")
    assert blank.status_code == 422
    assert blank.json()["detail"] == "user name is required"
    assert blank.json()["dismiss_after_ms"] == 3000

    unknown = book(client, "Alice", instrument_id=999)
    assert unknown.status_code == 422

    nameless = client.post("/api/instruments", json={"name": " "})
    assert nameless.status_code == 422
    assert nameless.json()["detail"] == "instrument name is required"


def test_bad_time_slot_is_rejected_by_schema(client):
    resp = client.post(
        "/api/reservations",
        json={
            "instrument_id": 1,
            "user": "Alice",
            "date": future_monday().isoformat(),
            "time_slot": "night",
        },
    )
    assert resp.status_code == 422


def test_edit_reservation_keeps_slot(client):
    reservation_id = book(client, "Alice").json()["id"]

    patched = client.patch(f"/api/reservations/{reservation_id}", json={"user": "Carol"})
    assert patched.status_code == 200
    assert patched.json()["user"] == "Carol"

    replaced = client.put(
        f"/api/reservations/{reservation_id}",
        json={
            "instrument_id": 1,
            "user": "Carol",
            "date": future_monday().isoformat(),
            "time_slot": "evening",
            "purpose": "XRD run",
        },
    )
    assert replaced.status_code == 200
    assert replaced.json()["time_slot"] == "evening"
    assert client.get(f"/api/reservations/{reservation_id}").json()["purpose"] == "XRD run"


def test_missing_records_return_404(client):
    assert client.get("/api/reservations/1").status_code == 404
    assert client.patch("/api/reservations/1", json={"user": "X"}).status_code == 404
    assert client.delete("/api/reservations/1").status_code == 404
    assert client.get("/api/instruments/999").status_code == 404
    assert client.delete("/api/instruments/999").status_code == 404


def test_lookup_and_delete_reservation(client):
    monday = future_monday()
    reservation_id = book(client, "Alice", instrument_id=2, day=monday, slot="afternoon").json()["id"]

    params = {"instrument_id": 2, "date": monday.isoformat(), "time_slot": "afternoon"}
    found = client.get("/api/reservations/lookup", params=params)
    assert found.status_code == 200
    assert found.json()["id"] == reservation_id

    assert client.delete(f"/api/reservations/{reservation_id}").status_code == 204
    assert client.get("/api/reservations/lookup", params=params).status_code == 404


def test_instrument_crud_and_referential_block(client):
    created = client.post(
        "/api/instruments",
        json={"name": "NMR Spectrometer", "location": "Lab C-301"},
    )
    assert created.status_code == 201
    instrument_id = created.json()["id"]

    patched = client.patch(f"/api/instruments/{instrument_id}", json={"description": "600 MHz"})
    assert patched.json()["description"] == "600 MHz"

    replaced = client.put(
        f"/api/instruments/{instrument_id}",
        json={"name": "NMR", "description": "", "location": "Lab C-302"},
    )
    assert replaced.json()["location"] == "Lab C-302"

    reservation_id = book(client, "Alice", instrument_id=instrument_id).json()["id"]
    blocked = client.delete(f"/api/instruments/{instrument_id}")
    assert blocked.status_code == 409
    assert "still has reservations" in blocked.json()["detail"]

    client.delete(f"/api/reservations/{reservation_id}")
    assert client.delete(f"/api/instruments/{instrument_id}").status_code == 204
    assert client.get(f"/api/instruments/{instrument_id}").status_code == 404


def test_filters_and_history(client):
    monday = future_monday()
    book(client, "Alice", instrument_id=1, day=monday)
    book(client, "Bob", instrument_id=1, day=monday + timedelta(days=7))
    book(client, "Carol", instrument_id=3, day=monday + timedelta(days=2))

    by_instrument = client.get("/api/reservations", params={"instrument_id": 3}).json()
    assert [r["user"] for r in by_instrument] == ["Carol"]

    history = client.get(
        "/api/reservations/history",
        params={"instrument_id": 1, "date_from": monday.isoformat()},
    ).json()
    assert [r["user"] for r in history] == ["Bob", "Alice"]


def test_calendar_grid(client):
    monday = future_monday()
    book(client, "Alice", instrument_id=1, day=monday, slot="morning")
    book(client, "Bob", instrument_id=4, day=monday + timedelta(days=9), slot="evening")

    resp = client.get("/api/calendar", params={"today": (monday + timedelta(days=3)).isoformat()})
    assert resp.status_code == 200
    grid = resp.json()
    assert grid["week_start"] == monday.isoformat()
    assert len(grid["weeks"]) == 2
    cells = [cell for week in grid["weeks"] for row in week["rows"] for cell in row["cells"]]
    assert len(cells) == 42

    first_cell = grid["weeks"][0]["rows"][0]["cells"][0]
    assert first_cell["entries"][0]["instrument_name"] == "Electron Microscope"
    evening = grid["weeks"][1]["rows"][2]["cells"][2]
    assert evening["entries"][0]["user"] == "Bob"

    filtered = client.get(
        "/api/calendar",
        params={"today": monday.isoformat(), "instrument_id": 4, "weeks": 1},
    ).json()
    assert len(filtered["weeks"]) == 1
    assert all(not c["entries"] for row in filtered["weeks"][0]["rows"] for c in row["cells"])

    assert client.get("/api/calendar", params={"weeks": 0}).status_code == 422


def test_status_and_conflicts(client):
    book(client, "Alice")
    status = client.get("/api/status").json()
    assert status["state"] == "connected"
    assert status["instruments"] == 4
    assert status["reservations"] == 1

    assert client.get("/api/reservations/conflicts").json() == []


def test_metrics_endpoint(client):
    client.get("/api/instruments")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "request_count" in resp.text


def test_not_found_uses_message_payload(client):
    missing = client.get("/api/reservations/1")
    assert missing.status_code == 404
    assert missing.json() == {
        "detail": "reservation 1 not found",
        "level": "error",
        "dismiss_after_ms": 3000,
    }

    instrument = client.get("/api/instruments/999")
    assert instrument.json()["detail"] == "instrument 999 not found"
    assert instrument.json()["dismiss_after_ms"] == 3000

    open_slot = client.get(
        "/api/reservations/lookup",
        params={"instrument_id": 1, "date": future_monday().isoformat(), "time_slot": "morning"},
    )
    assert open_slot.status_code == 404
    assert open_slot.json()["detail"] == "slot is open"
    assert open_slot.json()["level"] == "error"
