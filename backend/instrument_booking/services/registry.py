"""Instrument registry with referential-integrity guarded removal."""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from .. import schemas
from ..errors import NotFoundError, ReferentialIntegrityError, ValidationError
from ..storage import StorageBackend
from .collection import CachedCollection, ConnectionMonitor, EditTarget, next_id

if TYPE_CHECKING:
    from .reservations import ReservationStore

# purpose: administer bookable instruments and supply identity to conflict checks
# status: active
# depends_on: instrument_booking.services.reservations (referential check on removal)

logger = logging.getLogger(__name__)

DEFAULT_INSTRUMENTS: tuple[schemas.Instrument, ...] = (
    schemas.Instrument(
        id=1,
        name="Electron Microscope",
        description="High-resolution electron microscope for materials analysis",
        location="Lab A-101",
    ),
    schemas.Instrument(
        id=2,
        name="X-ray Diffractometer",
        description="Crystal structure analysis",
        location="Lab A-102",
    ),
    schemas.Instrument(
        id=3,
        name="Atomic Force Microscope",
        description="Surface topography analysis",
        location="Lab A-103",
    ),
    schemas.Instrument(
        id=4,
        name="Raman Spectrometer",
        description="Molecular vibration spectroscopy",
        location="Lab B-201",
    ),
)


class InstrumentRegistry(CachedCollection[schemas.Instrument]):
    collection = "instruments"
    schema = schemas.Instrument

    def __init__(
        self,
        storage: StorageBackend,
        *,
        lock: asyncio.Lock | None = None,
        monitor: ConnectionMonitor | None = None,
    ) -> None:
        super().__init__(storage, monitor=monitor)
        self.lock = lock or asyncio.Lock()
        self._reservations: ReservationStore | None = None

    def bind_reservations(self, store: "ReservationStore") -> None:
        self._reservations = store

    def ids(self) -> set[int]:
        return set(self._cache)

    def get(self, instrument_id: int) -> schemas.Instrument | None:
        return self._cache.get(instrument_id)

    async def list(self) -> list[schemas.Instrument]:
        return await self.refresh()

    async def add(self, instrument: schemas.InstrumentCreate) -> int:
        name = _require_name(instrument.name)
        record = schemas.Instrument(
            id=next_id(),
            name=name,
            description=instrument.description.strip(),
            location=instrument.location.strip(),
        )
        async with self.lock:
            await self._write(record)
        logger.info("instrument %s added (%s)", record.id, record.name)
        return record.id

    async def update(self, instrument_id: int, fields: schemas.InstrumentUpdate) -> schemas.Instrument:
        changes = fields.model_dump(exclude_unset=True, exclude_none=True)
        if "name" in changes:
            changes["name"] = _require_name(changes["name"])
        for key in ("description", "location"):
            if key in changes:
                changes[key] = changes[key].strip()
        async with self.lock:
            await self.refresh()
            current = self._cache.get(instrument_id)
            if current is None:
                raise NotFoundError(f"instrument {instrument_id} not found")
            record = current.model_copy(update=changes)
            await self._write(record)
        logger.info("instrument %s updated", instrument_id)
        return record

    async def remove(self, instrument_id: int) -> None:
        async with self.lock:
            await self.refresh()
            if self._reservations is not None:
                await self._reservations.refresh()
            if instrument_id not in self._cache:
                raise NotFoundError(f"instrument {instrument_id} not found")
            if self._reservations is not None and self._reservations.references(instrument_id):
                raise ReferentialIntegrityError(
                    "cannot delete an instrument that still has reservations"
                )
            await self._delete(instrument_id)
        logger.info("instrument %s removed", instrument_id)

    async def save(
        self,
        fields: schemas.InstrumentCreate,
        edit_target: EditTarget | None = None,
    ) -> schemas.Instrument:
        """Create or edit an instrument; the editing identity is passed explicitly."""

        if edit_target is None:
            instrument_id = await self.add(fields)
            return self._cache[instrument_id]
        return await self.update(
            edit_target.record_id,
            schemas.InstrumentUpdate(**fields.model_dump()),
        )

    async def seed_defaults(self) -> list[schemas.Instrument]:
        """Write the default catalogue when no instruments exist yet."""

        existing = await self.refresh()
        if existing or self.monitor.degraded:
            return []
        async with self.lock:
            for instrument in DEFAULT_INSTRUMENTS:
                await self._write(instrument)
        logger.info("seeded %d default instruments", len(DEFAULT_INSTRUMENTS))
        return list(DEFAULT_INSTRUMENTS)


def _require_name(name: str) -> str:
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("instrument name is required")
    return cleaned
