"""Pydantic schemas for instruments, reservations, and calendar projections."""

from __future__ import annotations

import datetime as dt
from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

TimeSlot = Literal["morning", "afternoon", "evening"]
TIME_SLOTS: tuple[str, ...] = ("morning", "afternoon", "evening")


class InstrumentCreate(BaseModel):
    name: str
    description: str = ""
    location: str = ""


class InstrumentUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None


class Instrument(BaseModel):
    id: int
    name: str
    description: str = ""
    location: str = ""

    model_config = ConfigDict(from_attributes=True, frozen=True)


class ReservationCreate(BaseModel):
    instrument_id: int
    user: str
    date: date
    time_slot: TimeSlot
    purpose: Optional[str] = None


class ReservationUpdate(BaseModel):
    instrument_id: Optional[int] = None
    user: Optional[str] = None
    date: Optional[dt.date] = None
    time_slot: Optional[TimeSlot] = None
    purpose: Optional[str] = None


class Reservation(BaseModel):
    id: int
    instrument_id: int
    user: str
    date: date
    time_slot: TimeSlot
    purpose: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @property
    def slot_key(self) -> tuple[int, date, str]:
        return (self.instrument_id, self.date, self.time_slot)


class CalendarEntry(BaseModel):
    reservation_id: int
    instrument_id: int
    instrument_name: str
    user: str
    purpose: Optional[str] = None


class CalendarCell(BaseModel):
    date: date
    time_slot: TimeSlot
    entries: list[CalendarEntry] = Field(default_factory=list)

    @property
    def is_open(self) -> bool:
        return not self.entries


class CalendarRow(BaseModel):
    time_slot: TimeSlot
    cells: list[CalendarCell] = Field(default_factory=list)


class CalendarWeek(BaseModel):
    index: int
    start: date
    end: date
    days: list[date]
    rows: list[CalendarRow]


class CalendarGrid(BaseModel):
    week_start: date
    instrument_id: Optional[int] = None
    weeks: list[CalendarWeek] = Field(default_factory=list)

    @property
    def days(self) -> list[date]:
        return [day for week in self.weeks for day in week.days]

    def cells(self) -> list[CalendarCell]:
        return [cell for week in self.weeks for row in week.rows for cell in row.cells]


class DoubleBooking(BaseModel):
    instrument_id: int
    date: date
    time_slot: TimeSlot
    reservation_ids: list[int]


class ConnectionStatus(BaseModel):
    state: Literal["connected", "degraded"]
    last_synced_at: Optional[datetime] = None
    instruments: int = 0
    reservations: int = 0


class UserMessage(BaseModel):
    detail: str
    level: Literal["info", "success", "error"] = "error"
    dismiss_after_ms: int = 3000
