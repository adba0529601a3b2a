"""Reservation store: conflict-checked writes over the reservations collection."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone

from prometheus_client import Counter

from .. import schemas
from ..errors import ConflictError, NotFoundError, ValidationError
from ..storage import StorageBackend
from . import conflicts
from .collection import CachedCollection, ConnectionMonitor, EditTarget, next_id
from .registry import InstrumentRegistry

# purpose: single source of truth for reservation records in this process
# status: active
# depends_on: instrument_booking.services.conflicts, instrument_booking.services.registry
# related_docs: DESIGN.md

logger = logging.getLogger(__name__)

BOOKING_DECISIONS = Counter(
    "booking_decisions_total", "Conflict engine outcomes", ["operation", "outcome"]
)


class ReservationStore(CachedCollection[schemas.Reservation]):
    """Reservation records keyed by id.

    Every create/update runs the conflict engine against this process's most
    recent snapshot and writes while holding the lock shared with the
    instrument registry, so check-then-write never interleaves with another
    local mutation. Other processes are only reconciled through broadcast
    snapshots; two processes holding the same stale snapshot can both accept
    the same slot.
    """

    collection = "reservations"
    schema = schemas.Reservation

    def __init__(
        self,
        storage: StorageBackend,
        registry: InstrumentRegistry,
        *,
        monitor: ConnectionMonitor | None = None,
    ) -> None:
        super().__init__(storage, monitor=monitor or registry.monitor)
        self.registry = registry
        self.lock = registry.lock

    def references(self, instrument_id: int) -> bool:
        return any(r.instrument_id == instrument_id for r in self._cache.values())

    def get(self, reservation_id: int) -> schemas.Reservation | None:
        return self._cache.get(reservation_id)

    async def all(self) -> list[schemas.Reservation]:
        return await self.refresh()

    async def by_instrument(self, instrument_id: int) -> list[schemas.Reservation]:
        return [r for r in await self.all() if r.instrument_id == instrument_id]

    async def find_by_key(
        self,
        instrument_id: int,
        slot_date: date,
        time_slot: str,
    ) -> schemas.Reservation | None:
        for reservation in await self.all():
            if reservation.slot_key == (instrument_id, slot_date, time_slot):
                return reservation
        return None

    async def history(
        self,
        *,
        instrument_id: int | None = None,
        date_from: date | None = None,
        date_to: date | None = None,
    ) -> list[schemas.Reservation]:
        """Reservations matching the filters, most recent date first."""

        records = await self.all()
        if instrument_id is not None:
            records = [r for r in records if r.instrument_id == instrument_id]
        if date_from is not None:
            records = [r for r in records if r.date >= date_from]
        if date_to is not None:
            records = [r for r in records if r.date <= date_to]
        return sorted(records, key=lambda r: (r.date, r.id), reverse=True)

    async def create(self, candidate: schemas.ReservationCreate) -> int:
        async with self.lock:
            await self._reload()
            self._check(candidate, None, "create")
            now = datetime.now(timezone.utc)
            record = schemas.Reservation(
                id=next_id(),
                instrument_id=candidate.instrument_id,
                user=candidate.user.strip(),
                date=candidate.date,
                time_slot=candidate.time_slot,
                purpose=_clean_purpose(candidate.purpose),
                created_at=now,
                updated_at=now,
            )
            await self._write(record)
        logger.info(
            "reservation %s created for instrument %s on %s %s",
            record.id,
            record.instrument_id,
            record.date.isoformat(),
            record.time_slot,
        )
        return record.id

    async def update(self, reservation_id: int, fields: schemas.ReservationUpdate) -> schemas.Reservation:
        changes = fields.model_dump(exclude_unset=True)
        for key in ("instrument_id", "user", "date", "time_slot"):
            if key in changes and changes[key] is None:
                del changes[key]
        async with self.lock:
            await self._reload()
            current = self._cache.get(reservation_id)
            if current is None:
                raise NotFoundError(f"reservation {reservation_id} not found")
            candidate = current.model_copy(update=changes)
            self._check(candidate, reservation_id, "update")
            record = candidate.model_copy(
                update={
                    "user": candidate.user.strip(),
                    "purpose": _clean_purpose(candidate.purpose),
                    "updated_at": datetime.now(timezone.utc),
                }
            )
            await self._write(record)
        logger.info("reservation %s updated", reservation_id)
        return record

    async def delete(self, reservation_id: int) -> None:
        async with self.lock:
            await self._reload()
            if reservation_id not in self._cache:
                raise NotFoundError(f"reservation {reservation_id} not found")
            await self._delete(reservation_id)
        logger.info("reservation %s deleted", reservation_id)

    async def save(
        self,
        fields: schemas.ReservationCreate,
        edit_target: EditTarget | None = None,
    ) -> schemas.Reservation:
        """Create or edit a reservation; the editing identity is passed explicitly."""

        if edit_target is None:
            reservation_id = await self.create(fields)
            return self._cache[reservation_id]
        return await self.update(
            edit_target.record_id,
            schemas.ReservationUpdate(**fields.model_dump()),
        )

    def double_bookings(self) -> list[schemas.DoubleBooking]:
        return conflicts.find_double_bookings(self._cache.values())

    async def _reload(self) -> None:
        # the local snapshot may lag behind this process's own broadcasts
        await self.registry.refresh()
        await self.refresh()

    def _check(self, candidate: conflicts.Candidate, excluding_id: int | None, operation: str) -> None:
        decision = conflicts.evaluate(
            candidate,
            excluding_id,
            self._cache.values(),
            self.registry.ids(),
        )
        if isinstance(decision, conflicts.Accept):
            BOOKING_DECISIONS.labels(operation, "accepted").inc()
            return
        BOOKING_DECISIONS.labels(operation, decision.code).inc()
        logger.info("%s rejected: %s", operation, decision.reason)
        if decision.code == "slot_taken":
            raise ConflictError(decision.reason)
        raise ValidationError(decision.reason)


def _clean_purpose(purpose: str | None) -> str | None:
    if purpose is None:
        return None
    return purpose.strip() or None
