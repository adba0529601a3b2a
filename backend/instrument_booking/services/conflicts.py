"""Stateless accept/reject decisions for reservation candidates."""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from typing import Collection, Iterable, Literal, Protocol, Union

from .. import schemas

# purpose: decide whether a candidate booking may be written given a snapshot
# status: active
# inputs: candidate slot fields, optional id to exclude, reservation snapshot, known instrument ids
# outputs: Accept or Reject(reason, code)

SLOT_TAKEN_REASON = "slot already booked"

RejectCode = Literal["invalid_user", "unknown_instrument", "slot_taken"]


class Candidate(Protocol):
    instrument_id: int
    user: str
    date: date
    time_slot: str


@dataclass(frozen=True, slots=True)
class Accept:
    accepted: bool = True


@dataclass(frozen=True, slots=True)
class Reject:
    reason: str
    code: RejectCode
    conflicting_id: int | None = None
    accepted: bool = False


Decision = Union[Accept, Reject]


def evaluate(
    candidate: Candidate,
    excluding_id: int | None,
    snapshot: Iterable[schemas.Reservation],
    instrument_ids: Collection[int],
) -> Decision:
    """Accept the candidate unless it is malformed or its slot is held by another id."""

    if not (candidate.user or "").strip():
        return Reject("user name is required", "invalid_user")
    if candidate.instrument_id not in instrument_ids:
        return Reject(f"instrument {candidate.instrument_id} does not exist", "unknown_instrument")
    for existing in snapshot:
        if existing.id == excluding_id:
            continue
        if (
            existing.instrument_id == candidate.instrument_id
            and existing.date == candidate.date
            and existing.time_slot == candidate.time_slot
        ):
            return Reject(SLOT_TAKEN_REASON, "slot_taken", conflicting_id=existing.id)
    return Accept()


def find_double_bookings(snapshot: Iterable[schemas.Reservation]) -> list[schemas.DoubleBooking]:
    """Report every slot held by more than one reservation."""

    # only reachable when two processes accept the same slot from stale snapshots
    held: dict[tuple[int, date, str], list[int]] = defaultdict(list)
    for reservation in snapshot:
        held[reservation.slot_key].append(reservation.id)
    return [
        schemas.DoubleBooking(
            instrument_id=instrument_id,
            date=slot_date,
            time_slot=time_slot,
            reservation_ids=sorted(ids),
        )
        for (instrument_id, slot_date, time_slot), ids in sorted(held.items())
        if len(ids) > 1
    ]
