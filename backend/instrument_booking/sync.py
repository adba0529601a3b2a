"""Synchronization layer: snapshot streams, observer subscriptions, live calendar views."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from datetime import date
from typing import Any, Protocol

from . import schemas
from .pubsub import SnapshotStream
from .services import calendar, conflicts
from .services.collection import ConnectionMonitor
from .storage import StorageBackend

# purpose: propagate full-snapshot replacements from storage to every observer
# status: active
# depends_on: instrument_booking.storage, instrument_booking.pubsub
# related_docs: DESIGN.md

logger = logging.getLogger(__name__)


class SnapshotObserver(Protocol):
    def apply_snapshot(self, snapshot: dict[str, Any] | None) -> None: ...


class Subscription:
    """Handle for one observer pumped from one snapshot stream.

    Owned by whoever called ``SyncLayer.subscribe``; ``unsubscribe`` stops the
    pump and releases the channel. Nothing else keeps a reference to it.
    """

    def __init__(self, stream: SnapshotStream, observer: SnapshotObserver) -> None:
        self.stream = stream
        self.observer = observer
        self._task: asyncio.Task | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "Subscription":
        self._task = asyncio.create_task(self._pump(), name=f"sync:{self.stream.collection}")
        self._task.add_done_callback(self._report)
        return self

    def _report(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "snapshot stream for %s stopped: %s", self.stream.collection, task.exception()
            )

    async def _pump(self) -> None:
        async for snapshot in self.stream:
            self.observer.apply_snapshot(snapshot)

    async def unsubscribe(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            with suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        await self.stream.unsubscribe()


class SyncLayer:
    """Push fan-out of full snapshots from the storage backend.

    Streams survive backend and channel outages: they report to ``monitor``
    and resubscribe with backoff starting at ``retry_delay`` seconds.
    """

    def __init__(
        self,
        storage: StorageBackend,
        *,
        monitor: ConnectionMonitor | None = None,
        retry_delay: float = 0.5,
    ) -> None:
        self.storage = storage
        self.monitor = monitor
        self.retry_delay = retry_delay

    def stream(self, collection: str) -> SnapshotStream:
        """Lazy, infinite stream of full ``collection`` snapshots, current value first."""

        options: dict[str, Any] = {"retry_delay": self.retry_delay}
        if self.monitor is not None:
            options["on_error"] = lambda exc: self.monitor.mark_degraded()
            options["on_recover"] = self.monitor.mark_ok
        return self.storage.subscribe(collection, **options)

    def subscribe(self, collection: str, observer: SnapshotObserver) -> Subscription:
        logger.debug("subscribing %s to %s", type(observer).__name__, collection)
        return Subscription(self.stream(collection), observer).start()


class _CollectionSink:
    def __init__(self, view: "LiveCalendar", collection: str) -> None:
        self.view = view
        self.collection = collection

    def apply_snapshot(self, snapshot: dict[str, Any] | None) -> None:
        self.view.apply(self.collection, snapshot)


class LiveCalendar:
    """Observer that keeps the last instrument/reservation snapshots and re-projects.

    Each received snapshot replaces the cached copy wholesale (last snapshot
    wins); ``grid`` is recomputed from the caches after every change.
    """

    def __init__(
        self,
        *,
        today: date | None = None,
        week_count: int = calendar.DEFAULT_WEEK_COUNT,
        instrument_id: int | None = None,
    ) -> None:
        self.today = today
        self.week_count = week_count
        self.instrument_id = instrument_id
        self.instruments: list[schemas.Instrument] = []
        self.reservations: list[schemas.Reservation] = []
        self.version = 0
        self.grid: schemas.CalendarGrid = self.project()
        self.changed = asyncio.Event()

    def sink(self, collection: str) -> _CollectionSink:
        return _CollectionSink(self, collection)

    def apply(self, collection: str, snapshot: dict[str, Any] | None) -> None:
        values = list((snapshot or {}).values())
        if collection == "instruments":
            self.instruments = [schemas.Instrument.model_validate(v) for v in values]
        elif collection == "reservations":
            self.reservations = [schemas.Reservation.model_validate(v) for v in values]
        else:
            raise ValueError(f"unknown collection '{collection}'")
        self.grid = self.project()
        self.version += 1
        self.changed.set()

    def project(self) -> schemas.CalendarGrid:
        today = self.today or calendar.local_today()
        return calendar.project(
            self.reservations,
            self.instruments,
            calendar.week_start_for(today),
            self.week_count,
            self.instrument_id,
        )

    def double_bookings(self) -> list[schemas.DoubleBooking]:
        return conflicts.find_double_bookings(self.reservations)

    async def wait_for_change(self) -> schemas.CalendarGrid:
        await self.changed.wait()
        self.changed.clear()
        return self.grid

    def attach(self, sync: SyncLayer) -> list[Subscription]:
        return [
            sync.subscribe("instruments", self.sink("instruments")),
            sync.subscribe("reservations", self.sink("reservations")),
        ]
