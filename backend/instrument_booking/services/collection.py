"""Local snapshot caches shared by the registry and the reservation store."""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Generic, Iterable, TypeVar

from pydantic import BaseModel

from ..errors import BroadcastUnavailableError, StorageUnavailableError
from ..storage import StorageBackend

# purpose: hold the most recent snapshot of one collection and track backend reachability
# status: active
# depends_on: instrument_booking.storage

logger = logging.getLogger(__name__)

RecordT = TypeVar("RecordT", bound=BaseModel)

_id_lock = threading.Lock()
_last_id = 0


@dataclass(frozen=True, slots=True)
class EditTarget:
    """Identity of the record an edit flow is changing."""

    record_id: int


def next_id() -> int:
    """Millisecond-clock id, strictly increasing within this process."""

    global _last_id
    with _id_lock:
        _last_id = max(int(time.time() * 1000), _last_id + 1)
        return _last_id


class ConnectionMonitor:
    """Degraded-connectivity indicator fed by every storage round trip."""

    def __init__(self) -> None:
        self.state = "connected"
        self.last_synced_at: datetime | None = None

    @property
    def degraded(self) -> bool:
        return self.state == "degraded"

    def mark_ok(self) -> None:
        if self.state != "connected":
            logger.info("storage backend reachable again")
        self.state = "connected"
        self.last_synced_at = datetime.now(timezone.utc)

    def mark_degraded(self) -> None:
        if self.state != "degraded":
            logger.warning("storage backend unreachable, serving cached snapshots")
        self.state = "degraded"


class CachedCollection(Generic[RecordT]):
    """Most recent full snapshot of one storage collection.

    The cache is only ever replaced wholesale: by a storage read, by a
    broadcast snapshot (``apply_snapshot``), or by this process's own writes.
    """

    collection: str
    schema: type[RecordT]

    def __init__(
        self,
        storage: StorageBackend,
        *,
        monitor: ConnectionMonitor | None = None,
    ) -> None:
        self.storage = storage
        self.monitor = monitor or ConnectionMonitor()
        self._cache: dict[int, RecordT] = {}

    def apply_snapshot(self, snapshot: dict[str, Any] | None) -> None:
        """Replace the local cache with a broadcast snapshot (last one wins)."""

        self._cache = self._parse(snapshot)

    def snapshot(self) -> list[RecordT]:
        return [self._cache[key] for key in sorted(self._cache)]

    async def refresh(self) -> list[RecordT]:
        """Reload from storage; fall back to the stale cache when unreachable."""

        try:
            raw = await self.storage.read(self.collection)
        except StorageUnavailableError:
            self.monitor.mark_degraded()
            return self.snapshot()
        self.monitor.mark_ok()
        self.apply_snapshot(raw)
        return self.snapshot()

    async def _write(self, record: RecordT) -> None:
        try:
            await self.storage.write(f"{self.collection}/{record.id}", record.model_dump(mode="json"))
        except BroadcastUnavailableError:
            # committed; other processes pick it up on their next refresh
            self.monitor.mark_degraded()
        except StorageUnavailableError:
            self.monitor.mark_degraded()
            raise
        else:
            self.monitor.mark_ok()
        self._cache = {**self._cache, record.id: record}

    async def _delete(self, record_id: int) -> None:
        try:
            await self.storage.delete(f"{self.collection}/{record_id}")
        except BroadcastUnavailableError:
            self.monitor.mark_degraded()
        except StorageUnavailableError:
            self.monitor.mark_degraded()
            raise
        else:
            self.monitor.mark_ok()
        self._cache = {key: value for key, value in self._cache.items() if key != record_id}

    def _parse(self, snapshot: dict[str, Any] | None) -> dict[int, RecordT]:
        items: Iterable[Any] = (snapshot or {}).values()
        records = (self.schema.model_validate(item) for item in items)
        return {record.id: record for record in records}
