from datetime import date, datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from .booking_service import BookingAdmissionController
from .booking_store import BookingStore
from .errors import ValidationError
from .models import BOOKING_STATUSES, SYNC_STATUSES
from .schedule_store import ScheduleStore
from .scheduler import generate_slots
from .schemas import (
    AdminBookingListResponse,
    AdminBookingOut,
    AdminBookingResponse,
    BookingListResponse,
    BookingOut,
    BookingRequest,
    BookingResponse,
    BookingStatusUpdate,
    RescheduleRequest,
    ScheduleRuleIn,
    ScheduleRuleListResponse,
    ScheduleRuleOut,
    ScheduleRuleResponse,
    ScheduleRuleUpdate,
    ServiceCreate,
    ServiceListResponse,
    ServiceOut,
    ServiceResponse,
    ServiceUpdate,
    SlotsResponse,
    SuccessResponse,
    TimeSlot,
)
from .service_catalog import ServiceCatalog

router = APIRouter(prefix="/api")
admin_router = APIRouter(prefix="/api/admin", tags=["admin"])


# Dependency for DB session
def get_db(request: Request):
    db = request.app.state.session_factory()
    try:
        yield db
    finally:
        db.close()


def get_controller(request: Request) -> BookingAdmissionController:
    return request.app.state.controller


def parse_date(raw: str) -> date:
    """Accept YYYY-MM-DD, a quoted date, or a full ISO datetime (date part)."""
    raw = raw.strip()
    if (raw.startswith('"') and raw.endswith('"')) or (raw.startswith("'") and raw.endswith("'")):
        raw = raw[1:-1]

    try:
        return datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(raw.replace("Z", "+00:00")).date()
    except ValueError:
        raise ValidationError("date must be YYYY-MM-DD or ISO format")


@router.get("/services", response_model=ServiceListResponse)
def list_services(db: Session = Depends(get_db)):
    """Active services offered to patients."""
    services = ServiceCatalog(db).list(active_only=True)
    return ServiceListResponse(services=[ServiceOut.model_validate(s) for s in services])


@router.get("/booking/slots", response_model=SlotsResponse)
def available_slots(
    date: str,
    service_id: int = Query(..., alias="serviceId"),
    db: Session = Depends(get_db),
    controller: BookingAdmissionController = Depends(get_controller),
):
    day = parse_date(date)
    service = ServiceCatalog(db).get_active(service_id)
    slots = generate_slots(db, day, service_id, controller.policy, now=controller.now())

    return SlotsResponse(
        date=day.isoformat(),
        service_id=service.id,
        service_name=service.name,
        duration_minutes=service.duration_minutes,
        available_slots=[TimeSlot(**s.as_dict()) for s in slots],
    )


@router.post("/booking", response_model=BookingResponse, status_code=201)
def book(req: BookingRequest, controller: BookingAdmissionController = Depends(get_controller)):
    booking = controller.create_booking(
        req.service_id,
        req.booking_date,
        req.booking_time,
        req.patient_info,
        payment_method=req.payment_method,
        payment_reference=req.payment_reference,
    )
    return BookingResponse(message="Booking created successfully", booking=BookingOut.model_validate(booking))


@router.get("/booking/reference/{reference}", response_model=BookingResponse)
def get_booking_by_reference(reference: str, controller: BookingAdmissionController = Depends(get_controller)):
    """Look up a booking by the reference printed on the patient's confirmation."""
    booking = controller.get_booking_by_reference(reference)
    return BookingResponse(booking=BookingOut.model_validate(booking))


@router.get("/booking/{booking_id}", response_model=BookingResponse)
def get_booking(booking_id: int, controller: BookingAdmissionController = Depends(get_controller)):
    booking = controller.get_booking(booking_id)
    return BookingResponse(booking=BookingOut.model_validate(booking))


@router.post("/booking/{booking_id}/cancel", response_model=SuccessResponse)
def cancel_booking(booking_id: int, controller: BookingAdmissionController = Depends(get_controller)):
    controller.cancel_booking(booking_id)
    return SuccessResponse(message="Booking cancelled")


@router.post("/booking/{booking_id}/reschedule", response_model=BookingResponse)
def reschedule_booking(
    booking_id: int,
    req: RescheduleRequest,
    controller: BookingAdmissionController = Depends(get_controller),
):
    booking = controller.reschedule_booking(booking_id, req.booking_date, req.booking_time)
    return BookingResponse(
        message="Booking rescheduled successfully", booking=BookingOut.model_validate(booking)
    )


@router.get("/patient/bookings", response_model=BookingListResponse)
def patient_bookings(email: str, db: Session = Depends(get_db)):
    if not email.strip():
        raise ValidationError("Email is required")
    bookings = BookingStore(db).for_patient(email)
    return BookingListResponse(bookings=[BookingOut.model_validate(b) for b in bookings])


# Admin console. Authentication and authorization sit in front of these routes.


@admin_router.get("/services", response_model=ServiceListResponse)
def admin_list_services(db: Session = Depends(get_db)):
    services = ServiceCatalog(db).list(active_only=False)
    return ServiceListResponse(services=[ServiceOut.model_validate(s) for s in services])


@admin_router.post("/services", response_model=ServiceResponse, status_code=201)
def admin_create_service(payload: ServiceCreate, db: Session = Depends(get_db)):
    service = ServiceCatalog(db).create(
        name=payload.name,
        duration_minutes=payload.duration_minutes,
        price=payload.price,
        category=payload.category,
        description=payload.description,
    )
    db.commit()
    return ServiceResponse(service=ServiceOut.model_validate(service))


@admin_router.put("/services/{service_id}", response_model=ServiceResponse)
def admin_update_service(service_id: int, payload: ServiceUpdate, db: Session = Depends(get_db)):
    changes = payload.model_dump(exclude_unset=True)
    # null only clears the free-text fields
    changes = {k: v for k, v in changes.items() if v is not None or k in ("description", "category")}
    service = ServiceCatalog(db).update(service_id, **changes)
    db.commit()
    return ServiceResponse(service=ServiceOut.model_validate(service))


@admin_router.get("/schedule", response_model=ScheduleRuleListResponse)
def admin_list_schedule(db: Session = Depends(get_db)):
    rules = ScheduleStore(db).list_rules()
    return ScheduleRuleListResponse(rules=[ScheduleRuleOut.model_validate(r) for r in rules])


@admin_router.post("/schedule", response_model=ScheduleRuleResponse, status_code=201)
def admin_add_schedule_rule(payload: ScheduleRuleIn, db: Session = Depends(get_db)):
    rule = ScheduleStore(db).add_rule(**payload.model_dump())
    db.commit()
    return ScheduleRuleResponse(rule=ScheduleRuleOut.model_validate(rule))


@admin_router.put("/schedule/{rule_id}", response_model=ScheduleRuleResponse)
def admin_update_schedule_rule(rule_id: int, payload: ScheduleRuleUpdate, db: Session = Depends(get_db)):
    rule = ScheduleStore(db).update_rule(rule_id, **payload.model_dump(exclude_unset=True))
    db.commit()
    return ScheduleRuleResponse(rule=ScheduleRuleOut.model_validate(rule))


@admin_router.delete("/schedule/{rule_id}", response_model=SuccessResponse)
def admin_delete_schedule_rule(rule_id: int, db: Session = Depends(get_db)):
    ScheduleStore(db).delete_rule(rule_id)
    db.commit()
    return SuccessResponse(message="Schedule rule deleted")


@admin_router.get("/bookings", response_model=AdminBookingListResponse)
def admin_list_bookings(
    status: Optional[str] = None,
    date_from: Optional[str] = Query(None, alias="dateFrom"),
    date_to: Optional[str] = Query(None, alias="dateTo"),
    sync_status: Optional[str] = Query(None, alias="syncStatus"),
    email: Optional[str] = None,
    db: Session = Depends(get_db),
):
    """Bookings for staff. ``syncStatus=failed`` lists calendar follow-ups."""
    if status and status not in BOOKING_STATUSES:
        raise ValidationError(f"status must be one of {', '.join(BOOKING_STATUSES)}")
    if sync_status and sync_status not in SYNC_STATUSES:
        raise ValidationError(f"syncStatus must be one of {', '.join(SYNC_STATUSES)}")

    bookings = BookingStore(db).search(
        status=status,
        date_from=parse_date(date_from) if date_from else None,
        date_to=parse_date(date_to) if date_to else None,
        sync_status=sync_status,
        email=email,
    )
    return AdminBookingListResponse(bookings=[AdminBookingOut.model_validate(b) for b in bookings])


@admin_router.patch("/bookings/{booking_id}/status", response_model=AdminBookingResponse)
def admin_update_booking_status(
    booking_id: int,
    payload: BookingStatusUpdate,
    controller: BookingAdmissionController = Depends(get_controller),
):
    booking = controller.update_status(booking_id, payload.status)
    return AdminBookingResponse(
        message=f"Booking status updated to {booking.status}",
        booking=AdminBookingOut.model_validate(booking),
    )


@admin_router.post("/bookings/{booking_id}/calendar-sync", response_model=AdminBookingResponse, status_code=202)
def admin_resync_calendar(booking_id: int, controller: BookingAdmissionController = Depends(get_controller)):
    booking = controller.resync_calendar(booking_id)
    return AdminBookingResponse(
        message="Calendar sync scheduled", booking=AdminBookingOut.model_validate(booking)
    )
