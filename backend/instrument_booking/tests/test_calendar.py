"""Tests for the calendar projection."""

# purpose: validate week alignment, grid shape and entry joins of the calendar projector
# status: active

from datetime import date, datetime, timezone

import pytest

from instrument_booking import schemas
from instrument_booking.services import calendar

NOW = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)

INSTRUMENTS = [
    schemas.Instrument(id=1, name="Electron Microscope", location="Lab A-101"),
    schemas.Instrument(id=2, name="X-ray Diffractometer", location="Lab A-102"),
]


def reservation(id, instrument_id, user, day, slot, purpose=None):
    return schemas.Reservation(
        id=id,
        instrument_id=instrument_id,
        user=user,
        date=day,
        time_slot=slot,
        purpose=purpose,
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.mark.parametrize(
    "today,expected",
    [
        (date(2024, 6, 3), date(2024, 6, 3)),
        (date(2024, 6, 5), date(2024, 6, 3)),
        (date(2024, 6, 9), date(2024, 6, 3)),
        (date(2024, 6, 10), date(2024, 6, 10)),
    ],
)
def test_week_start_is_monday_of_current_week(today, expected):
    assert calendar.week_start_for(today) == expected


def test_week_offset_moves_whole_weeks():
    assert calendar.week_start_for(date(2024, 6, 5), week_offset=1) == date(2024, 6, 10)
    assert calendar.week_start_for(date(2024, 6, 5), week_offset=-1) == date(2024, 5, 27)


def test_two_week_grid_has_42_cells():
    grid = calendar.project([], INSTRUMENTS, date(2024, 6, 3))
    assert len(grid.weeks) == 2
    assert len(grid.cells()) == 42
    assert grid.days[0] == date(2024, 6, 3)
    assert grid.days[-1] == date(2024, 6, 16)
    first = grid.weeks[0]
    assert [row.time_slot for row in first.rows] == ["morning", "afternoon", "evening"]
    assert first.start == date(2024, 6, 3)
    assert first.end == date(2024, 6, 9)
    assert grid.weeks[1].start == date(2024, 6, 10)
    assert all(cell.is_open for cell in grid.cells())


def test_reservations_land_in_their_cells():
    reservations = [
        reservation(10, 1, "Alice", date(2024, 6, 3), "morning", "TEM session"),
        reservation(11, 2, "Bob", date(2024, 6, 12), "evening"),
        reservation(12, 1, "Dan", date(2024, 6, 30), "morning"),
    ]
    grid = calendar.project(reservations, INSTRUMENTS, date(2024, 6, 3))

    monday_morning = grid.weeks[0].rows[0].cells[0]
    assert [e.user for e in monday_morning.entries] == ["Alice"]
    assert monday_morning.entries[0].instrument_name == "Electron Microscope"
    assert monday_morning.entries[0].purpose == "TEM session"

    wednesday_evening = grid.weeks[1].rows[2].cells[2]
    assert wednesday_evening.date == date(2024, 6, 12)
    assert [e.reservation_id for e in wednesday_evening.entries] == [11]

    placed = [entry.reservation_id for cell in grid.cells() for entry in cell.entries]
    assert sorted(placed) == [10, 11]


def test_shared_cell_entries_are_ordered_by_instrument():
    reservations = [
        reservation(20, 2, "Bob", date(2024, 6, 4), "afternoon"),
        reservation(21, 1, "Alice", date(2024, 6, 4), "afternoon"),
    ]
    grid = calendar.project(reservations, INSTRUMENTS, date(2024, 6, 3))
    cell = grid.weeks[0].rows[1].cells[1]
    assert [e.instrument_id for e in cell.entries] == [1, 2]


def test_missing_instrument_is_rendered_as_unknown():
    reservations = [reservation(30, 99, "Eve", date(2024, 6, 5), "morning")]
    grid = calendar.project(reservations, INSTRUMENTS, date(2024, 6, 3))
    cell = grid.weeks[0].rows[0].cells[2]
    assert cell.entries[0].instrument_name == calendar.UNKNOWN_INSTRUMENT


def test_instrument_filter_hides_other_instruments():
    reservations = [
        reservation(40, 1, "Alice", date(2024, 6, 3), "morning"),
        reservation(41, 2, "Bob", date(2024, 6, 3), "morning"),
    ]
    grid = calendar.project(reservations, INSTRUMENTS, date(2024, 6, 3), instrument_id=2)
    assert grid.instrument_id == 2
    assert [e.user for e in grid.weeks[0].rows[0].cells[0].entries] == ["Bob"]


def test_projection_is_deterministic():
    reservations = [
        reservation(50, 1, "Alice", date(2024, 6, 3), "morning"),
        reservation(51, 2, "Bob", date(2024, 6, 3), "morning"),
    ]
    first = calendar.project(reservations, INSTRUMENTS, date(2024, 6, 3))
    second = calendar.project(list(reversed(reservations)), INSTRUMENTS, date(2024, 6, 3))
    assert first == second


def test_custom_week_count():
    grid = calendar.project([], INSTRUMENTS, date(2024, 6, 3), week_count=3)
    assert len(grid.cells()) == 63


def test_invalid_arguments_are_rejected():
    with pytest.raises(ValueError):
        calendar.project([], INSTRUMENTS, date(2024, 6, 4))
    with pytest.raises(ValueError):
        calendar.project([], INSTRUMENTS, date(2024, 6, 3), week_count=0)


def test_render_text_lists_every_week():
    reservations = [reservation(60, 1, "Alice", date(2024, 6, 3), "morning")]
    text = calendar.render_text(calendar.project(reservations, INSTRUMENTS, date(2024, 6, 3)))
    assert "Week of 2024-06-03 - 2024-06-09" in text
    assert "Week of 2024-06-10 - 2024-06-16" in text
    assert "Electron Microscope:Alice"[:18] in text
    assert "open" in text


def test_local_today_in_utc():
    assert calendar.local_today("UTC") == datetime.now(timezone.utc).date()
