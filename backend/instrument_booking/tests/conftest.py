import os
os.environ["TESTING"] = "1"
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("BOOKING_TIMEZONE", "UTC")
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

import sys
from pathlib import Path

sys.path.append(str(Path(__file__).resolve().parents[2]))

from instrument_booking import pubsub
from instrument_booking.booking import BookingSystem
from instrument_booking.database import Base, engine, make_engine
from instrument_booking.main import app
from instrument_booking.storage import StorageBackend

Base.metadata.drop_all(bind=engine)
Base.metadata.create_all(bind=engine)


@pytest.fixture(autouse=True)
def fresh_redis():
    pubsub.reset_redis()
    yield
    pubsub.reset_redis()


@pytest.fixture
def client():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def session_factory(tmp_path):
    test_engine = make_engine(f"sqlite:///{tmp_path / 'booking.db'}")
    Base.metadata.create_all(bind=test_engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=test_engine)
    test_engine.dispose()


@pytest.fixture
def unreachable_factory(tmp_path):
    # the parent directory never exists, so every connection attempt fails
    broken = create_engine(f"sqlite:///{tmp_path / 'missing' / 'booking.db'}")
    yield sessionmaker(autocommit=False, autoflush=False, bind=broken)
    broken.dispose()


@pytest.fixture
def storage(session_factory):
    return StorageBackend(session_factory)


@pytest_asyncio.fixture
async def booking(storage):
    system = BookingSystem(storage)
    await system.start(live=False)
    yield system
    await system.stop()


@pytest_asyncio.fixture
async def seeded(storage):
    system = BookingSystem(storage)
    await system.start(seed_defaults=True, live=False)
    yield system
    await system.stop()
