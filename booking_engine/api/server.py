"""FastAPI server for the booking engine.

Features:
- Public booking page endpoints (availability, booking, business info)
- Staff endpoints behind the shared access key
- Reminder scheduler started/stopped with the app lifespan
- Global exception handling mapped to ErrorResponse
- Structured logging with per-request ids
"""
from contextlib import asynccontextmanager
from datetime import date
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from booking_engine import __version__, config
from booking_engine.api.dependencies import get_engine, require_staff
from booking_engine.api.models import (
    AppointmentCreate,
    BookingRequest,
    ClientCreate,
    ClientUpdate,
    ErrorResponse,
    SlotCreate,
    SlotGenerateRequest,
)
from booking_engine.auth import AccessGate
from booking_engine.availability import TimeFilter, TimeOfDay
from booking_engine.engine import BookingEngine
from booking_engine.errors import (
    BookingError,
    InvalidService,
    InvalidTransition,
    NotFoundError,
    PersistenceFailure,
    SlotUnavailable,
)
from booking_engine.logging_config import RequestIDMiddleware, get_logger, setup_structured_logging
from booking_engine.models import Appointment, BusinessInfo
from booking_engine.storage import CLIENTS, TIME_SLOTS
from booking_engine.store import WriteResult

logger = get_logger(__name__)

ERROR_STATUS = [
    (NotFoundError, status.HTTP_404_NOT_FOUND, "Not Found"),
    (SlotUnavailable, status.HTTP_409_CONFLICT, "Slot Unavailable"),
    (InvalidTransition, status.HTTP_409_CONFLICT, "Invalid Transition"),
    (InvalidService, status.HTTP_422_UNPROCESSABLE_ENTITY, "Invalid Service"),
    (PersistenceFailure, status.HTTP_503_SERVICE_UNAVAILABLE, "Storage Unavailable"),
]


def _error(status_code: int, error: str, detail: Optional[str], code: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail, code=code).model_dump()
    )


def _written(result: WriteResult, **payload: Any) -> Dict[str, Any]:
    """Response body for a mutation; durable=False means memory-only."""
    return {**payload, "durable": result.durable}


def _appointment_view(engine: BookingEngine, appointment: Appointment) -> Dict[str, Any]:
    view = appointment.to_record()
    slot = engine.store.get(TIME_SLOTS, appointment.time_slot_id)
    client = engine.store.get(CLIENTS, appointment.client_id)
    view["slot"] = slot.to_record() if slot else None
    view["clientName"] = client.name if client else None
    return view


def create_app(
    engine: Optional[BookingEngine] = None,
    settings: Optional[config.Settings] = None,
    gate: Optional[AccessGate] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        engine: Pre-built engine (tests); built from settings when omitted
        settings: Runtime settings (default: load_settings())
        gate: Staff access gate (default: from settings.access_key_hash)

    Returns:
        Configured FastAPI app
    """
    settings = settings or config.load_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Lifespan context manager for startup/shutdown logic."""
        setup_structured_logging(settings.log_level)
        logger.info("booking_api_starting", storage_url=settings.storage_url)

        if app.state.engine is None:
            try:
                app.state.engine = BookingEngine.from_settings(settings).initialize()
            except Exception as e:
                logger.error("engine_initialization_failed", error=str(e))
                raise

        reminders = app.state.engine.reminders
        if settings.reminders_enabled:
            reminders.start()

        yield

        await reminders.stop()
        logger.info("booking_api_stopped")

    app = FastAPI(
        title="Booking Engine API",
        description="Availability, booking and reminders for a single-service business",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc"
    )
    app.state.engine = engine
    app.state.gate = gate or AccessGate(settings.access_key_hash)
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )
    app.add_middleware(RequestIDMiddleware)

    _register_exception_handlers(app)
    _register_public_routes(app)
    _register_staff_routes(app)
    return app


def _register_exception_handlers(app: FastAPI):
    @app.exception_handler(BookingError)
    async def booking_error_handler(request: Request, exc: BookingError):
        for error_type, status_code, title in ERROR_STATUS:
            if isinstance(exc, error_type):
                if status_code >= 500:
                    logger.error("booking_error", code=exc.code, error=str(exc))
                return _error(status_code, title, str(exc), exc.code)
        return _error(status.HTTP_400_BAD_REQUEST, "Booking Error", str(exc), exc.code)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        code = "UNAUTHORIZED" if exc.status_code == status.HTTP_401_UNAUTHORIZED else "HTTP_ERROR"
        response = _error(exc.status_code, "Request Failed", str(exc.detail), code)
        if exc.headers:
            response.headers.update(exc.headers)
        return response

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        """Handle Pydantic validation errors consistently."""
        logger.warning("validation_error", errors=str(exc.errors()))
        return _error(
            status.HTTP_422_UNPROCESSABLE_ENTITY,
            "Validation Error",
            str(exc.errors()),
            "VALIDATION_ERROR"
        )

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, exc: ValueError):
        return _error(status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation Error", str(exc), "VALIDATION_ERROR")

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all handler for unexpected exceptions."""
        logger.error("unexpected_error", error=str(exc), exc_info=True)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "Internal Server Error",
            "An unexpected error occurred. Please try again later.",
            "INTERNAL_ERROR"
        )


def _register_public_routes(app: FastAPI):
    @app.get("/health", tags=["Health"])
    async def health_check(engine: BookingEngine = Depends(get_engine)):
        """Health check endpoint for load balancers."""
        return {
            "status": "healthy",
            "service": "booking-engine-api",
            "version": __version__,
            "remindersRunning": engine.reminders.running
        }

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API info."""
        return {
            "message": "Booking Engine API",
            "docs": "/docs",
            "health": "/health"
        }

    @app.get("/business", tags=["Public"])
    def get_business(engine: BookingEngine = Depends(get_engine)):
        info = engine.business_info
        return {
            **info.to_record(),
            "services": [s.model_dump() for s in engine.catalog.active()],
        }

    @app.get("/slots/available", tags=["Public"])
    def list_available_slots(
        date: Optional[date] = None,
        time_of_day: TimeOfDay = TimeOfDay.ANY,
        days: Optional[int] = Query(None, ge=1),
        engine: BookingEngine = Depends(get_engine)
    ):
        """Slots a client may book now, optionally for one day, time of day or the next N days."""
        time_filter = TimeFilter()
        slots = time_filter.filter_by_time_of_day(engine.available_slots(on=date), time_of_day)
        if days is not None:
            slots = time_filter.limit_to_next_days(slots, max_days=days)
        return [s.to_record() for s in slots]

    @app.post("/bookings", tags=["Public"], status_code=status.HTTP_201_CREATED)
    def create_booking(request: BookingRequest, engine: BookingEngine = Depends(get_engine)):
        """
        Public booking: register the client and reserve the slot.

        Raises:
            404: Unknown slot
            409: Slot already taken or already started
            422: Validation error or unknown service
        """
        result = engine.book(
            request.name,
            request.phone,
            request.time_slot_id,
            request.service,
            email=request.email,
            notes=request.notes,
        )
        booking = result.value
        return _written(
            result,
            client=booking.client.to_record(),
            appointment=_appointment_view(engine, booking.appointment)
        )


def _register_staff_routes(app: FastAPI):
    staff = [Depends(require_staff)]

    # ---------------------------------------------------------------- business

    @app.put("/business", tags=["Business"], dependencies=staff)
    def update_business(info: BusinessInfo, engine: BookingEngine = Depends(get_engine)):
        result = engine.update_business_info(info)
        return _written(result, business=result.value.to_record())

    @app.get("/business/share-link", tags=["Business"], dependencies=staff)
    def get_share_link(request: Request, engine: BookingEngine = Depends(get_engine)):
        link = engine.share_link(request.app.state.settings.public_base_url)
        return {"link": link}

    # ----------------------------------------------------------------- clients

    @app.get("/clients", tags=["Clients"], dependencies=staff)
    def list_clients(engine: BookingEngine = Depends(get_engine)):
        return [c.to_record() for c in engine.store.clients]

    @app.post("/clients", tags=["Clients"], dependencies=staff, status_code=status.HTTP_201_CREATED)
    def create_client(body: ClientCreate, engine: BookingEngine = Depends(get_engine)):
        result = engine.add_client(body.name, body.phone, email=body.email, notes=body.notes)
        return _written(result, client=result.value.to_record())

    @app.get("/clients/{client_id}", tags=["Clients"], dependencies=staff)
    def get_client(client_id: str, engine: BookingEngine = Depends(get_engine)):
        return engine.get_client(client_id).to_record()

    @app.patch("/clients/{client_id}", tags=["Clients"], dependencies=staff)
    def update_client(client_id: str, body: ClientUpdate, engine: BookingEngine = Depends(get_engine)):
        result = engine.update_client(client_id, **body.model_dump(exclude_unset=True))
        return _written(result, client=result.value.to_record())

    @app.delete("/clients/{client_id}", tags=["Clients"], dependencies=staff)
    def delete_client(client_id: str, engine: BookingEngine = Depends(get_engine)):
        result = engine.delete_client(client_id)
        return _written(result, deleted=client_id)

    @app.get("/clients/{client_id}/appointments", tags=["Clients"], dependencies=staff)
    def list_client_appointments(client_id: str, engine: BookingEngine = Depends(get_engine)):
        engine.get_client(client_id)
        return [_appointment_view(engine, a) for a in engine.appointments_by_client(client_id)]

    # ------------------------------------------------------------------- slots

    @app.get("/slots", tags=["Slots"], dependencies=staff)
    def list_slots(date: Optional[date] = None, engine: BookingEngine = Depends(get_engine)):
        """Every slot (booked or not) in date/time order."""
        slots = sorted(engine.store.time_slots, key=lambda s: s.sort_key)
        if date is not None:
            slots = [s for s in slots if s.date == date]
        return [s.to_record() for s in slots]

    @app.post("/slots", tags=["Slots"], dependencies=staff, status_code=status.HTTP_201_CREATED)
    def create_slot(body: SlotCreate, engine: BookingEngine = Depends(get_engine)):
        result = engine.add_slot(body.date, body.start_time, body.end_time)
        return _written(result, slot=result.value.to_record())

    @app.post("/slots/generate", tags=["Slots"], dependencies=staff, status_code=status.HTTP_201_CREATED)
    def generate_slots(body: SlotGenerateRequest, engine: BookingEngine = Depends(get_engine)):
        result = engine.generate_slots(body.start_date, body.end_date, body.operating_hours())
        return _written(result, created=len(result.value), slots=[s.to_record() for s in result.value])

    @app.delete("/slots/{slot_id}", tags=["Slots"], dependencies=staff)
    def delete_slot(slot_id: str, engine: BookingEngine = Depends(get_engine)):
        result = engine.delete_slot(slot_id)
        return _written(result, deleted=slot_id)

    @app.get("/slots/{slot_id}/next", tags=["Slots"], dependencies=staff)
    def get_next_slot(slot_id: str, engine: BookingEngine = Depends(get_engine)):
        """Contiguous successor of a slot, or null."""
        successor = engine.find_next_slot(slot_id)
        return successor.to_record() if successor else None

    # ------------------------------------------------------------ appointments

    @app.get("/appointments", tags=["Appointments"], dependencies=staff)
    def list_appointments(
        client_id: Optional[str] = None,
        date: Optional[date] = None,
        upcoming: bool = False,
        engine: BookingEngine = Depends(get_engine)
    ):
        """
        List appointments.

        Filters combine: upcoming=true keeps scheduled appointments that have
        not started yet, soonest first.
        """
        if upcoming:
            appointments: List[Appointment] = engine.upcoming_appointments()
        else:
            appointments = list(engine.store.appointments)
        if client_id is not None:
            appointments = [a for a in appointments if a.client_id == client_id]
        if date is not None:
            on_date = {a.id for a in engine.appointments_by_date(date)}
            appointments = [a for a in appointments if a.id in on_date]
        return [_appointment_view(engine, a) for a in appointments]

    @app.post("/appointments", tags=["Appointments"], dependencies=staff, status_code=status.HTTP_201_CREATED)
    def create_appointment(body: AppointmentCreate, engine: BookingEngine = Depends(get_engine)):
        result = engine.create_appointment(body.client_id, body.time_slot_id, body.service)
        return _written(result, appointment=_appointment_view(engine, result.value))

    @app.get("/appointments/{appointment_id}", tags=["Appointments"], dependencies=staff)
    def get_appointment(appointment_id: str, engine: BookingEngine = Depends(get_engine)):
        return _appointment_view(engine, engine.get_appointment(appointment_id))

    @app.post("/appointments/{appointment_id}/complete", tags=["Appointments"], dependencies=staff)
    def complete_appointment(appointment_id: str, engine: BookingEngine = Depends(get_engine)):
        result = engine.complete(appointment_id)
        return _written(result, appointment=_appointment_view(engine, result.value))

    @app.post("/appointments/{appointment_id}/cancel", tags=["Appointments"], dependencies=staff)
    def cancel_appointment(appointment_id: str, engine: BookingEngine = Depends(get_engine)):
        result = engine.cancel(appointment_id)
        return _written(result, appointment=_appointment_view(engine, result.value))

    @app.delete("/appointments/{appointment_id}", tags=["Appointments"], dependencies=staff)
    def delete_appointment(appointment_id: str, engine: BookingEngine = Depends(get_engine)):
        result = engine.purge(appointment_id)
        return _written(result, deleted=appointment_id)

    @app.get("/agenda/{day}", tags=["Appointments"], dependencies=staff)
    def get_agenda(day: date, engine: BookingEngine = Depends(get_engine)):
        """Scheduled appointments for one day, by start time."""
        return [_appointment_view(engine, a) for a in engine.agenda(day)]

    # ------------------------------------------------------------------- admin

    @app.post("/reminders/sweep", tags=["Admin"], dependencies=staff)
    def run_reminder_sweep(engine: BookingEngine = Depends(get_engine)):
        """Run one reminder pass now."""
        notices = engine.reminders.sweep()
        return {"sent": [n.model_dump(mode="json") for n in notices]}

    @app.post("/admin/reset", tags=["Admin"], dependencies=staff)
    def reset_store(engine: BookingEngine = Depends(get_engine)):
        result = engine.reset()
        return _written(result, reset=True)
