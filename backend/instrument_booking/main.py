import asyncio
from contextlib import asynccontextmanager
import json
import logging
import os
import time
from typing import Any, Coroutine

from fastapi import FastAPI, WebSocket, WebSocketDisconnect, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.exc import OperationalError

from . import schemas
from .booking import BookingSystem
from .database import Base, engine
from .errors import BookingError
from .routes import instruments, reservations, calendar
from .services import calendar as projector
from .storage import COLLECTIONS, StorageBackend
from .sync import LiveCalendar

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

dsn = os.getenv("SENTRY_DSN")
if dsn:
    sentry_sdk.init(dsn=dsn, integrations=[FastApiIntegration()])

REQUEST_COUNT = Counter("request_count", "Total requests", ["method", "endpoint"])
REQUEST_LATENCY = Histogram(
    "request_latency_seconds", "Request latency", ["endpoint"]
)

SEED_DEFAULT_INSTRUMENTS = os.getenv("SEED_DEFAULT_INSTRUMENTS", "1") == "1"
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        Base.metadata.create_all(bind=engine)
    except OperationalError as exc:
        # start anyway; reads are served degraded until the backend is reachable
        logger.warning("could not prepare storage tables: %s", exc)
    booking = BookingSystem(StorageBackend())
    await booking.start(seed_defaults=SEED_DEFAULT_INSTRUMENTS)
    app.state.booking = booking
    try:
        yield
    finally:
        await booking.stop()


app = FastAPI(title="Instrument Booking API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, lambda r, e: Response("Too Many Requests", status_code=429))
if os.getenv("TESTING") != "1":
    app.add_middleware(SlowAPIMiddleware)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    logger.info("%s %s -> %s: %s", request.method, request.url.path, type(exc).__name__, exc)
    message = schemas.UserMessage(detail=str(exc), level="error")
    return JSONResponse(status_code=exc.status_code, content=message.model_dump())


@app.middleware("http")
async def record_metrics(request: Request, call_next):
    start = time.time()
    response = await call_next(request)
    endpoint = request.url.path
    REQUEST_COUNT.labels(request.method, endpoint).inc()
    REQUEST_LATENCY.labels(endpoint).observe(time.time() - start)
    return response

@app.get("/metrics")
def metrics():
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)

app.include_router(instruments.router)
app.include_router(reservations.router)
app.include_router(calendar.router)


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def serve_until_disconnect(websocket: WebSocket, sender: Coroutine[Any, Any, None]) -> None:
    """Run ``sender`` until it finishes or the client goes away, whichever is first."""

    tasks = [
        asyncio.create_task(sender),
        asyncio.create_task(_wait_for_disconnect(websocket)),
    ]
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    for task in done:
        exc = None if task.cancelled() else task.exception()
        if exc is not None and not isinstance(exc, WebSocketDisconnect):
            raise exc


@app.websocket("/ws/calendar")
async def calendar_websocket(websocket: WebSocket, weeks: int = projector.DEFAULT_WEEK_COUNT, instrument_id: int | None = None):
    await websocket.accept()
    booking: BookingSystem = websocket.app.state.booking
    view = LiveCalendar(week_count=weeks, instrument_id=instrument_id)
    subscriptions = view.attach(booking.sync)

    async def push_grids() -> None:
        while True:
            grid = await view.wait_for_change()
            await websocket.send_text(json.dumps({
                "type": "calendar",
                "version": view.version,
                "grid": grid.model_dump(mode="json"),
                "double_bookings": [d.model_dump(mode="json") for d in view.double_bookings()],
            }))

    try:
        await serve_until_disconnect(websocket, push_grids())
    finally:
        for subscription in subscriptions:
            await subscription.unsubscribe()


@app.websocket("/ws/{collection}")
async def snapshot_websocket(websocket: WebSocket, collection: str):
    if collection not in COLLECTIONS:
        await websocket.close(code=1008)
        return
    booking: BookingSystem = websocket.app.state.booking
    await websocket.accept()
    stream = booking.sync.stream(collection)

    async def push_snapshots() -> None:
        async for snapshot in stream:
            await websocket.send_text(json.dumps({"type": "snapshot", "collection": collection, "value": snapshot}))

    try:
        await serve_until_disconnect(websocket, push_snapshots())
    finally:
        await stream.unsubscribe()
