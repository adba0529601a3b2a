"""Error taxonomy shared by the booking services."""

from __future__ import annotations

# purpose: typed failures raised by registry, store and storage operations
# status: active
# related_docs: DESIGN.md


class BookingError(RuntimeError):
    """Base error for booking operations."""

    status_code = 400


class ValidationError(BookingError):
    """Raised when a request is malformed (blank user, unknown instrument)."""

    status_code = 422


class ConflictError(BookingError):
    """Raised when the requested slot is already booked."""

    status_code = 409


class ReferentialIntegrityError(BookingError):
    """Raised when deleting an instrument that reservations still reference."""

    status_code = 409


class NotFoundError(BookingError):
    """Raised when an instrument or reservation cannot be located."""

    status_code = 404


class StorageUnavailableError(BookingError):
    """Raised when the storage backend or the broadcast channel is unreachable."""

    status_code = 503


class BroadcastUnavailableError(StorageUnavailableError):
    """Raised when a change was committed but its snapshot could not be broadcast."""
