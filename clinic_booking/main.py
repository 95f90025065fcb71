import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.orm import sessionmaker

from . import config
from .api import admin_router, router
from .booking_service import BookingAdmissionController
from .calendar_bridge import CalendarBridge, GoogleCalendarBridge
from .calendar_sync import CalendarSyncWorker
from .config import SchedulingPolicy
from .database import init_db, make_engine, make_session_factory
from .errors import BookingError
from .locks import DateLockRegistry

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


def build_calendar_bridge() -> Optional[CalendarBridge]:
    if not config.google_calendar_configured():
        logger.info("ℹ️ Google Calendar not configured, bookings will not be synced")
        return None
    return GoogleCalendarBridge(
        client_id=config.GOOGLE_CLIENT_ID,
        client_secret=config.GOOGLE_CLIENT_SECRET,
        refresh_token=config.GOOGLE_REFRESH_TOKEN,
        calendar_id=config.GOOGLE_CALENDAR_ID,
        timezone=config.CLINIC_TIMEZONE,
        timeout=config.CALENDAR_SYNC_TIMEOUT_SECONDS,
    )


def create_app(
    session_factory: sessionmaker,
    policy: Optional[SchedulingPolicy] = None,
    calendar_sync: Optional[CalendarSyncWorker] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    policy = policy or SchedulingPolicy.from_env()
    locks = calendar_sync.locks if calendar_sync is not None else DateLockRegistry()
    controller = BookingAdmissionController(
        session_factory, policy, locks=locks, calendar_sync=calendar_sync, clock=clock
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Application starting up...")
        init_db(session_factory.kw["bind"])
        yield
        logger.info("Application shutting down...")
        if calendar_sync is not None:
            calendar_sync.shutdown()

    app = FastAPI(title="Clinic Booking API", version="1.0.0", lifespan=lifespan)
    app.state.session_factory = session_factory
    app.state.controller = controller

    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError):
        return JSONResponse(status_code=exc.status_code, content={"success": False, "message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        errors = [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]
        message = errors[0]["msg"] if errors else "Invalid request"
        return JSONResponse(status_code=422, content={"success": False, "message": message, "errors": errors})

    @app.get("/health")
    def health_check():
        return {"status": "healthy"}

    app.include_router(router)
    app.include_router(admin_router)
    return app


def build_app_from_env() -> FastAPI:
    session_factory = make_session_factory(make_engine(config.DATABASE_URL))
    policy = SchedulingPolicy.from_env()
    bridge = build_calendar_bridge()
    calendar_sync = None
    if bridge is not None:
        calendar_sync = CalendarSyncWorker(
            session_factory,
            bridge,
            locks=DateLockRegistry(),
            max_retries=config.CALENDAR_SYNC_MAX_RETRIES,
            backoff_seconds=config.CALENDAR_SYNC_BACKOFF_SECONDS,
        )
    return create_app(session_factory, policy, calendar_sync)


# Built on demand: uvicorn clinic_booking.main:build_app_from_env --factory
if __name__ == "__main__":
    import uvicorn

    uvicorn.run("clinic_booking.main:build_app_from_env", factory=True, host="0.0.0.0", port=8000)
