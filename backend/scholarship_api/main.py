"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the scholarship interview
scheduling backend. Controllers are intentionally thin: they check roles,
accept requests, delegate to services, and wrap results in the
`{"success", "message", "data"}` envelope.

Endpoints implemented:
- POST/GET /interview/slots, GET/PUT/DELETE /interview/slots/{id}
- GET /interview/availability
- POST /interview/book
- GET /interview/bookings, GET/PUT/DELETE /interview/bookings/{id}
- POST /interview/bookings/{id}/reschedule|confirm|checkin|checkout|reminder-sent
- GET /interview/statistics
- GET /interview/events
"""

import json
import logging
import os
import time
import uuid
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlmodel import Session
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import services
from .auth import (
    ROLE_ADMIN,
    ROLE_INTERVIEWER,
    ROLE_OFFICER,
    ROLE_STUDENT,
    Identity,
    get_current_identity,
    require_roles,
)
from .config import settings
from .database import create_db_and_tables, get_session
from .errors import SchedulingError
from .schemas import BookIn, BookingUpdateIn, CancelIn, Page, RescheduleIn, SlotCreateIn, SlotUpdateIn
from .utils.observability import read_events
from .utils.rate_limit import SlidingWindowLimiter
from .utils.timeranges import parse_date

app = FastAPI(title="Scholarship Interview Scheduling API")
logger = logging.getLogger("scholarship_api.api")
if not logger.handlers:
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
_booking_rate_limiter = SlidingWindowLimiter()

officers = require_roles(ROLE_OFFICER, ROLE_ADMIN)
staff = require_roles(ROLE_OFFICER, ROLE_ADMIN, ROLE_INTERVIEWER)
students = require_roles(ROLE_STUDENT)

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()

_HTTP_ERROR_KINDS = {401: "unauthorized", 403: "forbidden", 404: "not_found", 429: "rate_limited"}


def _log_request(level: int, message: str, request: Request, **fields):
    payload = {
        "request_id": getattr(request.state, "request_id", None),
        "path": request.url.path,
        "method": request.method,
        "client": request.client.host if request.client else "unknown",
        **fields,
    }
    logger.log(level, "%s %s", message, json.dumps(payload, ensure_ascii=True))


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    try:
        response: Response = await call_next(request)
    except Exception:
        if request.url.path.startswith("/interview"):
            elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
            _log_request(logging.ERROR, "request_failed", request, duration_ms=elapsed_ms)
        raise
    response.headers["X-Request-ID"] = req_id
    if request.url.path.startswith("/interview"):
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        _log_request(logging.INFO, "request_done", request,
                     status_code=response.status_code, duration_ms=elapsed_ms)
    return response


def _error(status_code: int, kind: str, message: str, headers: dict = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "error": kind, "message": message},
        headers=headers,
    )


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    if exc.status_code >= 500:
        _log_request(logging.ERROR, "scheduling_failure", request, error=exc.kind, detail=exc.message)
    return _error(exc.status_code, exc.kind, exc.message)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    first = exc.errors()[0] if exc.errors() else {}
    where = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{where}: {first.get('msg', 'invalid request')}" if where else first.get("msg", "invalid request")
    return _error(400, "invalid_input", message)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    kind = _HTTP_ERROR_KINDS.get(exc.status_code, "http_error")
    return _error(exc.status_code, kind, str(exc.detail), headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled_error %s", json.dumps(
        {"request_id": getattr(request.state, "request_id", None), "path": request.url.path},
        ensure_ascii=True,
    ))
    return _error(500, "internal_error", "internal server error")


def _ok(data, message: str = "ok", status_code: int = 200, **extra):
    body = {"success": True, "message": message, "data": data, **extra}
    if status_code == 200:
        return body
    return JSONResponse(status_code=status_code, content=body)


def _page(page: int, limit: Optional[int]) -> Page:
    return Page(page=page, limit=min(limit or settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE))


def _optional_date(value: Optional[str], field: str):
    return parse_date(value, field) if value else None


def _enforce_booking_rate_limit(identity: Identity = Depends(students)) -> Identity:
    allowed, retry_after = _booking_rate_limiter.allow(
        f"book:{identity.user_id}",
        settings.BOOKING_RATE_LIMIT_PER_MIN,
        settings.BOOKING_RATE_LIMIT_WINDOW_SECONDS,
    )
    if not allowed:
        raise HTTPException(
            status_code=429,
            detail=f"rate limit exceeded; retry after {retry_after}s",
            headers={"Retry-After": str(retry_after)},
        )
    return identity


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}


# Slots

@app.post("/interview/slots", status_code=201)
def create_slot(payload: SlotCreateIn, db: Session = Depends(get_session), identity: Identity = Depends(officers)):
    svc = services.SlotService(db)
    slot = svc.create_slot(payload, created_by=identity.user_id)
    return _ok(svc.present([slot])[0], "interview slot created", status_code=201)


@app.get("/interview/slots")
def list_slots(
    scholarship_id: Optional[int] = None,
    interviewer_id: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    is_available: Optional[bool] = None,
    slot_type: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_session),
    identity: Identity = Depends(staff),
):
    filters = {
        "scholarship_id": scholarship_id,
        "interviewer_id": interviewer_id,
        "date_from": _optional_date(date_from, "date_from"),
        "date_to": _optional_date(date_to, "date_to"),
        "is_available": is_available,
        "slot_type": slot_type,
    }
    requested = _page(page, limit)
    svc = services.SlotService(db)
    slots, total = svc.list_slots(filters, requested)
    echoed = {k: v.isoformat() if hasattr(v, "isoformat") else v for k, v in filters.items() if v is not None}
    return _ok(svc.present(slots), "interview slots retrieved", meta=requested.meta(total), filters=echoed)


@app.get("/interview/slots/{slot_id}")
def get_slot(slot_id: int, db: Session = Depends(get_session), identity: Identity = Depends(staff)):
    svc = services.SlotService(db)
    return _ok(svc.present([svc.get_slot(slot_id)])[0], "interview slot retrieved")


@app.put("/interview/slots/{slot_id}")
def update_slot(slot_id: int, payload: SlotUpdateIn, db: Session = Depends(get_session), identity: Identity = Depends(officers)):
    svc = services.SlotService(db)
    slot = svc.update_slot(slot_id, payload.changes())
    return _ok(svc.present([slot])[0], "interview slot updated")


@app.delete("/interview/slots/{slot_id}")
def delete_slot(slot_id: int, db: Session = Depends(get_session), identity: Identity = Depends(officers)):
    services.SlotService(db).delete_slot(slot_id)
    return _ok({"id": slot_id}, "interview slot deleted")


# Availability and statistics

@app.get("/interview/availability")
def availability(
    scholarship_id: Optional[int] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    db: Session = Depends(get_session),
    identity: Identity = Depends(get_current_identity),
):
    days = services.AvailabilityService(db).get_availability(scholarship_id, date_from, date_to)
    return _ok(days, "availability retrieved")


@app.get("/interview/statistics")
def statistics(
    scholarship_id: Optional[int] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    db: Session = Depends(get_session),
    identity: Identity = Depends(officers),
):
    stats = services.StatisticsService(db).get_statistics(scholarship_id, date_from, date_to)
    return _ok(stats, "interview statistics retrieved")


@app.get("/interview/events")
def interview_events(limit: int = Query(100, ge=1, le=1000), identity: Identity = Depends(officers)):
    """Recent scheduling events from the JSONL audit sink."""
    return _ok(read_events(limit), "interview events retrieved")


# Bookings

@app.post("/interview/book", status_code=201)
def book(payload: BookIn, db: Session = Depends(get_session), identity: Identity = Depends(_enforce_booking_rate_limit)):
    svc = services.BookingService(db)
    booking = svc.create_booking(identity.user_id, payload.slot_id, payload.student_notes)
    return _ok(svc.present_one(booking), "interview booked", status_code=201)


@app.get("/interview/bookings")
def list_bookings(
    scholarship_id: Optional[int] = None,
    status: Optional[str] = None,
    slot_id: Optional[int] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_session),
    identity: Identity = Depends(get_current_identity),
):
    svc = services.BookingService(db)
    filters = {
        "scholarship_id": scholarship_id,
        "status": status,
        "slot_id": slot_id,
        "date_from": _optional_date(date_from, "date_from"),
        "date_to": _optional_date(date_to, "date_to"),
    }
    if not identity.is_staff:
        filters["student_id"] = svc.resolve_student_id(identity.user_id)
    requested = _page(page, limit)
    pairs, total = svc.list_bookings(filters, requested)
    echoed = {k: v.isoformat() if hasattr(v, "isoformat") else v for k, v in filters.items() if v is not None}
    return _ok(svc.present(pairs), "interview bookings retrieved", meta=requested.meta(total), filters=echoed)


def _owned_booking(svc: services.BookingService, booking_id: int, identity: Identity):
    booking = svc.get_booking(booking_id)
    svc.ensure_access(booking, identity.user_id, identity.is_staff)
    return booking


@app.get("/interview/bookings/{booking_id}")
def get_booking(booking_id: int, db: Session = Depends(get_session), identity: Identity = Depends(get_current_identity)):
    svc = services.BookingService(db)
    return _ok(svc.present_one(_owned_booking(svc, booking_id, identity)), "interview booking retrieved")


@app.put("/interview/bookings/{booking_id}")
def update_booking(booking_id: int, payload: BookingUpdateIn, db: Session = Depends(get_session), identity: Identity = Depends(officers)):
    svc = services.BookingService(db)
    booking = svc.update_booking(booking_id, payload.changes())
    return _ok(svc.present_one(booking), "interview booking updated")


@app.delete("/interview/bookings/{booking_id}")
def cancel_booking(
    booking_id: int,
    payload: Optional[CancelIn] = None,
    db: Session = Depends(get_session),
    identity: Identity = Depends(get_current_identity),
):
    svc = services.BookingService(db)
    _owned_booking(svc, booking_id, identity)
    booking = svc.cancel(booking_id, payload.cancellation_reason if payload else "")
    return _ok(svc.present_one(booking), "interview booking cancelled")


@app.post("/interview/bookings/{booking_id}/reschedule")
def reschedule_booking(booking_id: int, payload: RescheduleIn, db: Session = Depends(get_session), identity: Identity = Depends(get_current_identity)):
    svc = services.BookingService(db)
    _owned_booking(svc, booking_id, identity)
    booking = services.RescheduleCoordinator(db).reschedule(booking_id, payload.new_slot_id, payload.reason)
    return _ok(svc.present_one(booking), "interview booking rescheduled")


@app.post("/interview/bookings/{booking_id}/confirm")
def confirm_booking(booking_id: int, db: Session = Depends(get_session), identity: Identity = Depends(get_current_identity)):
    svc = services.BookingService(db)
    _owned_booking(svc, booking_id, identity)
    return _ok(svc.present_one(svc.confirm(booking_id)), "interview booking confirmed")


@app.post("/interview/bookings/{booking_id}/checkin")
def check_in(booking_id: int, db: Session = Depends(get_session), identity: Identity = Depends(staff)):
    svc = services.BookingService(db)
    return _ok(svc.present_one(svc.check_in(booking_id)), "checked in")


@app.post("/interview/bookings/{booking_id}/checkout")
def check_out(booking_id: int, db: Session = Depends(get_session), identity: Identity = Depends(staff)):
    svc = services.BookingService(db)
    return _ok(svc.present_one(svc.check_out(booking_id)), "checked out")


@app.post("/interview/bookings/{booking_id}/reminder-sent")
def reminder_sent(booking_id: int, db: Session = Depends(get_session), identity: Identity = Depends(officers)):
    svc = services.BookingService(db)
    return _ok(svc.present_one(svc.mark_reminder_sent(booking_id)), "reminder recorded")
