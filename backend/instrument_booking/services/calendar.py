"""Two-week calendar projection over the flat reservation set."""

from __future__ import annotations

import os
from datetime import date, datetime, timedelta, timezone
from typing import Iterable
from zoneinfo import ZoneInfo

from .. import schemas

# purpose: derive a deterministic time-slot x weekday grid from reservation snapshots
# status: active
# inputs: reservation and instrument snapshots, Monday week start, week count, optional instrument filter
# outputs: CalendarGrid with one CalendarWeek per requested week

BOOKING_TIMEZONE = os.getenv("BOOKING_TIMEZONE", "UTC")
DEFAULT_WEEK_COUNT = int(os.getenv("BOOKING_WEEKS", "2"))
DAYS_PER_WEEK = 7
UNKNOWN_INSTRUMENT = "Unknown instrument"


def local_today(tz_name: str | None = None) -> date:
    """Calendar date of "now" in the booking timezone."""

    name = tz_name or BOOKING_TIMEZONE
    tz = timezone.utc if name.upper() == "UTC" else ZoneInfo(name)
    return datetime.now(tz).date()


def week_start_for(today: date, week_offset: int = 0) -> date:
    """Monday of the week containing ``today``, shifted by ``week_offset`` weeks."""

    # Monday is day 0, so a Sunday maps back six days
    return today - timedelta(days=today.weekday()) + timedelta(weeks=week_offset)


def project(
    reservations: Iterable[schemas.Reservation],
    instruments: Iterable[schemas.Instrument],
    week_start: date,
    week_count: int = DEFAULT_WEEK_COUNT,
    instrument_id: int | None = None,
) -> schemas.CalendarGrid:
    if week_count < 1:
        raise ValueError("week_count must be at least 1")
    if week_start.weekday() != 0:
        raise ValueError(f"week_start {week_start.isoformat()} is not a Monday")

    names = {instrument.id: instrument.name for instrument in instruments}
    by_slot: dict[tuple[date, str], list[schemas.Reservation]] = {}
    for reservation in reservations:
        if instrument_id is not None and reservation.instrument_id != instrument_id:
            continue
        by_slot.setdefault((reservation.date, reservation.time_slot), []).append(reservation)

    weeks = []
    for index in range(week_count):
        start = week_start + timedelta(weeks=index)
        days = [start + timedelta(days=offset) for offset in range(DAYS_PER_WEEK)]
        rows = [
            schemas.CalendarRow(
                time_slot=time_slot,
                cells=[
                    schemas.CalendarCell(
                        date=day,
                        time_slot=time_slot,
                        entries=_entries(by_slot.get((day, time_slot), []), names),
                    )
                    for day in days
                ],
            )
            for time_slot in schemas.TIME_SLOTS
        ]
        weeks.append(
            schemas.CalendarWeek(index=index, start=start, end=days[-1], days=days, rows=rows)
        )
    return schemas.CalendarGrid(week_start=week_start, instrument_id=instrument_id, weeks=weeks)


def _entries(
    reservations: list[schemas.Reservation],
    names: dict[int, str],
) -> list[schemas.CalendarEntry]:
    ordered = sorted(reservations, key=lambda reservation: (reservation.instrument_id, reservation.id))
    return [
        schemas.CalendarEntry(
            reservation_id=reservation.id,
            instrument_id=reservation.instrument_id,
            instrument_name=names.get(reservation.instrument_id, UNKNOWN_INSTRUMENT),
            user=reservation.user,
            purpose=reservation.purpose,
        )
        for reservation in ordered
    ]


def render_text(grid: schemas.CalendarGrid) -> str:
    """Plain-text rendering of a grid, one table per week."""

    lines: list[str] = []
    for week in grid.weeks:
        lines.append(f"Week of {week.start.isoformat()} - {week.end.isoformat()}")
        header = ["slot".ljust(10)] + [day.strftime("%a %m/%d").ljust(18) for day in week.days]
        lines.append(" ".join(header))
        for row in week.rows:
            cells = [row.time_slot.ljust(10)]
            for cell in row.cells:
                text = ", ".join(f"{e.instrument_name}:{e.user}" for e in cell.entries) or "open"
                cells.append(text[:18].ljust(18))
            lines.append(" ".join(cells))
        lines.append("")
    return "\n".join(lines)
