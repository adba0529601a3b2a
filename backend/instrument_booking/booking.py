"""Wiring of storage, registry, reservation store and synchronization for one process."""

from __future__ import annotations

import asyncio
import logging

from fastapi import Request

from . import schemas
from .services import calendar
from .services.collection import ConnectionMonitor
from .services.registry import InstrumentRegistry
from .services.reservations import ReservationStore
from .storage import StorageBackend
from .sync import Subscription, SyncLayer

# purpose: own the per-process booking components and their snapshot subscriptions
# status: active
# depends_on: instrument_booking.services, instrument_booking.sync

logger = logging.getLogger(__name__)


class BookingSystem:
    def __init__(self, storage: StorageBackend | None = None) -> None:
        self.storage = storage or StorageBackend()
        self.monitor = ConnectionMonitor()
        self.lock = asyncio.Lock()
        self.registry = InstrumentRegistry(self.storage, lock=self.lock, monitor=self.monitor)
        self.reservations = ReservationStore(self.storage, self.registry, monitor=self.monitor)
        self.registry.bind_reservations(self.reservations)
        self.sync = SyncLayer(self.storage, monitor=self.monitor)
        self._subscriptions: list[Subscription] = []

    async def start(self, *, seed_defaults: bool = False, live: bool = True) -> None:
        """Load both collections and, when ``live``, follow broadcast snapshots."""

        if seed_defaults:
            await self.registry.seed_defaults()
        await self.registry.refresh()
        await self.reservations.refresh()
        if live:
            self._subscriptions = [
                self.sync.subscribe("instruments", self.registry),
                self.sync.subscribe("reservations", self.reservations),
            ]
        logger.info(
            "booking system started with %d instruments and %d reservations",
            len(self.registry.snapshot()),
            len(self.reservations.snapshot()),
        )

    async def stop(self) -> None:
        for subscription in self._subscriptions:
            await subscription.unsubscribe()
        self._subscriptions = []

    def status(self) -> schemas.ConnectionStatus:
        return schemas.ConnectionStatus(
            state=self.monitor.state,
            last_synced_at=self.monitor.last_synced_at,
            instruments=len(self.registry.snapshot()),
            reservations=len(self.reservations.snapshot()),
        )

    async def calendar(
        self,
        *,
        today=None,
        week_count: int = calendar.DEFAULT_WEEK_COUNT,
        instrument_id: int | None = None,
    ) -> schemas.CalendarGrid:
        reservations = await self.reservations.all()
        instruments = await self.registry.list()
        return calendar.project(
            reservations,
            instruments,
            calendar.week_start_for(today or calendar.local_today()),
            week_count,
            instrument_id,
        )


def get_booking(request: Request) -> BookingSystem:
    return request.app.state.booking
