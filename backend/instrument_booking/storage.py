"""Path-addressed storage backend for the booking collections."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import timezone
from typing import Any, Iterator

from pydantic import BaseModel
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from . import models, pubsub, schemas
from .database import SessionLocal
from .errors import BroadcastUnavailableError, NotFoundError, StorageUnavailableError

# purpose: hierarchical key-path store ("reservations/<id>", "instruments/<id>") with change broadcast
# status: active
# depends_on: instrument_booking.models, instrument_booking.pubsub
# related_docs: DESIGN.md

logger = logging.getLogger(__name__)

_COLLECTIONS: dict[str, tuple[type, type[BaseModel]]] = {
    "instruments": (models.Instrument, schemas.Instrument),
    "reservations": (models.Reservation, schemas.Reservation),
}
COLLECTIONS: tuple[str, ...] = tuple(_COLLECTIONS)
_UNAVAILABLE = (OperationalError, InterfaceError)


def split_path(path: str) -> tuple[str, int | None]:
    """Split ``collection/<id>`` into its parts, validating both."""

    parts = [part for part in path.strip("/").split("/") if part]
    if not parts or parts[0] not in _COLLECTIONS or len(parts) > 2:
        raise NotFoundError(f"unknown storage path '{path}'")
    if len(parts) == 1:
        return parts[0], None
    try:
        return parts[0], int(parts[1])
    except ValueError as exc:
        raise NotFoundError(f"unknown storage path '{path}'") from exc


def _to_record(row: Any, schema: type[BaseModel]) -> dict[str, Any]:
    record = schema.model_validate(row)
    payload = record.model_dump(mode="json")
    for key in ("created_at", "updated_at"):
        value = getattr(record, key, None)
        if value is not None and value.tzinfo is None:
            payload[key] = value.replace(tzinfo=timezone.utc).isoformat()
    return payload


class StorageBackend:
    """Read, write, delete and subscribe to values addressed by key path.

    Collection paths (``reservations``) resolve to a mapping of stringified id
    to record; record paths (``reservations/<id>``) resolve to one record or
    ``None``. Every write or delete broadcasts the full collection value; a
    committed change whose broadcast fails raises ``BroadcastUnavailableError``.
    """

    def __init__(self, session_factory: sessionmaker | None = None) -> None:
        self.session_factory = session_factory or SessionLocal

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self.session_factory()
        try:
            yield db
        except _UNAVAILABLE as exc:
            db.rollback()
            logger.warning("storage backend unreachable: %s", exc)
            raise StorageUnavailableError("storage backend unavailable") from exc
        finally:
            db.close()

    def _read_collection(self, db: Session, collection: str) -> dict[str, dict[str, Any]]:
        model, schema = _COLLECTIONS[collection]
        rows = db.query(model).order_by(model.id.asc()).all()
        return {str(row.id): _to_record(row, schema) for row in rows}

    async def read(self, path: str) -> Any | None:
        collection, record_id = split_path(path)
        model, schema = _COLLECTIONS[collection]
        with self._session() as db:
            if record_id is None:
                return self._read_collection(db, collection)
            row = db.get(model, record_id)
            return _to_record(row, schema) if row is not None else None

    async def write(self, path: str, value: Any) -> None:
        collection, record_id = split_path(path)
        model, schema = _COLLECTIONS[collection]
        with self._session() as db:
            if record_id is None:
                db.query(model).delete()
                for key, item in (value or {}).items():
                    record = schema.model_validate({**item, "id": int(key)})
                    db.add(model(**record.model_dump()))
            else:
                record = schema.model_validate({**value, "id": record_id})
                db.merge(model(**record.model_dump()))
            db.commit()
            snapshot = self._read_collection(db, collection)
        logger.debug("wrote %s", path)
        await self._broadcast(collection, snapshot)

    async def delete(self, path: str) -> None:
        collection, record_id = split_path(path)
        model, _ = _COLLECTIONS[collection]
        with self._session() as db:
            query = db.query(model)
            if record_id is not None:
                query = query.filter(model.id == record_id)
            query.delete()
            db.commit()
            snapshot = self._read_collection(db, collection)
        logger.debug("deleted %s", path)
        await self._broadcast(collection, snapshot)

    def subscribe(self, path: str, **options: Any) -> pubsub.SnapshotStream:
        """Return a stream of the full value at ``path``, current value first.

        ``options`` are passed to ``SnapshotStream`` (retry delays, error hooks).
        """

        collection, record_id = split_path(path)

        def select(snapshot: dict[str, Any]) -> Any:
            if record_id is None:
                return snapshot
            return snapshot.get(str(record_id))

        return pubsub.SnapshotStream(
            collection, initial=lambda: self.read(path), select=select, **options
        )

    async def _broadcast(self, collection: str, snapshot: dict[str, Any]) -> None:
        try:
            await pubsub.publish_snapshot(collection, snapshot)
        except (RedisConnectionError, RedisTimeoutError, OSError) as exc:
            logger.warning("snapshot broadcast for %s failed: %s", collection, exc)
            raise BroadcastUnavailableError(
                f"{collection} saved but the change could not be broadcast"
            ) from exc
