from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, Date, DateTime, Index, String, Text

from .database import Base

# purpose: persisted layout of the two top-level booking collections
# status: active
# related_docs: DESIGN.md


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Instrument(Base):
    __tablename__ = "instruments"
    id = Column(BigInteger, primary_key=True, autoincrement=False)
    name = Column(String, nullable=False)
    description = Column(Text, default="")
    location = Column(String, default="")


class Reservation(Base):
    __tablename__ = "reservations"
    id = Column(BigInteger, primary_key=True, autoincrement=False)
    # no foreign key and no unique slot constraint: referential and slot
    # checks are enforced by the booking services against their snapshots
    instrument_id = Column(BigInteger, nullable=False)
    user = Column(String, nullable=False)
    date = Column(Date, nullable=False)
    time_slot = Column(String, nullable=False)
    purpose = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        Index("ix_reservations_slot", "instrument_id", "date", "time_slot"),
    )
