"""CLI utilities for administering instruments and inspecting bookings."""

# purpose: give administrators terminal access to the registry, history and calendar
# status: active
# depends_on: instrument_booking.booking, instrument_booking.database

import asyncio
import json
from datetime import date
from typing import Any, Awaitable, Callable, Optional

import typer

from .. import pubsub
from ..booking import BookingSystem
from ..database import Base, engine
from ..services import calendar

app = typer.Typer(help="Instrument booking maintenance commands")


def _run(action: Callable[[BookingSystem], Awaitable[Any]]) -> Any:
    """Run ``action`` against a freshly loaded, non-live booking system."""

    async def runner() -> Any:
        booking = BookingSystem()
        await booking.start(live=False)
        try:
            return await action(booking)
        finally:
            await pubsub.close_redis()

    Base.metadata.create_all(bind=engine)
    return asyncio.run(runner())


def _parse_date(value: Optional[str], option: str) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise typer.BadParameter(f"{option} must be YYYY-MM-DD") from exc


@app.command("seed-instruments")
def seed_instruments_command() -> None:
    seeded = _run(lambda booking: booking.registry.seed_defaults())
    typer.echo(json.dumps({"seeded": [instrument.name for instrument in seeded]}))


@app.command("list-instruments")
def list_instruments_command() -> None:
    instruments = _run(lambda booking: booking.registry.list())
    for instrument in instruments:
        typer.echo(f"{instrument.id}\t{instrument.name}\t{instrument.location}")


@app.command("history")
def history_command(
    instrument_id: Optional[int] = typer.Option(None, help="Only this instrument"),
    date_from: Optional[str] = typer.Option(None, "--from", help="Earliest date (YYYY-MM-DD)"),
    date_to: Optional[str] = typer.Option(None, "--to", help="Latest date (YYYY-MM-DD)"),
) -> None:
    start = _parse_date(date_from, "--from")
    end = _parse_date(date_to, "--to")
    records = _run(
        lambda booking: booking.reservations.history(
            instrument_id=instrument_id, date_from=start, date_to=end
        )
    )
    for record in records:
        typer.echo(json.dumps(record.model_dump(mode="json")))


@app.command("calendar")
def calendar_command(
    today: Optional[str] = typer.Option(None, help="Reference date (YYYY-MM-DD)"),
    weeks: int = typer.Option(calendar.DEFAULT_WEEK_COUNT, min=1, max=8),
    instrument_id: Optional[int] = typer.Option(None, help="Only this instrument"),
) -> None:
    reference = _parse_date(today, "--today")
    grid = _run(
        lambda booking: booking.calendar(
            today=reference, week_count=weeks, instrument_id=instrument_id
        )
    )
    typer.echo(calendar.render_text(grid))


@app.command("double-bookings")
def double_bookings_command() -> None:
    async def collect(booking: BookingSystem):
        await booking.reservations.refresh()
        return booking.reservations.double_bookings()

    found = _run(collect)
    typer.echo(json.dumps([item.model_dump(mode="json") for item in found]))
    if found:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
