"""Appointment endpoints."""

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies import DatabaseSession, Ledger, Notifier, PaymentGateway
from app.schemas.appointments import (
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentRefundResponse,
    AppointmentResponse,
    AppointmentStatus,
    BookingRequest,
    BookingResponse,
    CancelRequest,
    RescheduleRequest,
    to_response,
)
from app.services.appointment_service import AppointmentService
from app.services.booking_service import BookingService
from app.services.cancellation_service import CancellationService
from app.services.reschedule_service import RescheduleService

router = APIRouter()


@router.post(
    "/",
    response_model=BookingResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["Appointments"],
    summary="Book a paid appointment",
)
async def book_appointment(
    data: BookingRequest,
    db: DatabaseSession,
    gateway: PaymentGateway,
) -> BookingResponse:
    """
    Book an appointment and create its payment intent.

    The appointment stays pending until the payment gateway reports the
    payment through the webhook.

    Args:
        data: Booking request
        db: Database session
        gateway: Payment gateway

    Returns:
        Pending appointment, client secret and price split
    """
    service = BookingService(db, gateway)
    return await service.book(data)


@router.get(
    "/",
    response_model=AppointmentListResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="List appointments",
)
async def list_appointments(
    db: DatabaseSession,
    status_filter: AppointmentStatus | None = Query(None, alias="status"),
    doctor_id: UUID | None = Query(None),
    patient_id: UUID | None = Query(None),
    upcoming: bool = Query(False, description="Only future pending, confirmed or rescheduled"),
    from_date: datetime | None = Query(None),
    to_date: datetime | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
) -> AppointmentListResponse:
    """
    List appointments with filtering.

    Args:
        db: Database session
        status_filter: Filter by status
        doctor_id: Filter by doctor ID
        patient_id: Filter by patient ID
        upcoming: Only upcoming appointments
        from_date: Filter by start date
        to_date: Filter by end date
        page: Page number
        page_size: Items per page

    Returns:
        Paginated list of appointments
    """
    filters = AppointmentFilters(
        status=status_filter,
        doctor_id=doctor_id,
        patient_id=patient_id,
        upcoming=upcoming,
        from_date=from_date,
        to_date=to_date,
        page=page,
        page_size=page_size,
    )

    service = AppointmentService(db)
    return await service.list_appointments(filters)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Get appointment by ID",
)
async def get_appointment(
    appointment_id: UUID,
    db: DatabaseSession,
) -> AppointmentResponse:
    """
    Get a specific appointment.

    Args:
        appointment_id: Appointment ID
        db: Database session

    Returns:
        Appointment details
    """
    service = AppointmentService(db)
    return to_response(await service.get(appointment_id))


@router.post(
    "/{appointment_id}/cancel",
    response_model=AppointmentRefundResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: UUID,
    data: CancelRequest,
    db: DatabaseSession,
    gateway: PaymentGateway,
    ledger: Ledger,
) -> AppointmentRefundResponse:
    """
    Cancel an appointment and refund according to the refund policy.

    Args:
        appointment_id: Appointment ID
        data: Reason and who cancelled
        db: Database session
        gateway: Payment gateway
        ledger: Ledger client

    Returns:
        Cancelled appointment and refund details
    """
    service = CancellationService(db, gateway, ledger)
    return await service.cancel(appointment_id, data.reason, data.cancelled_by)


@router.post(
    "/{appointment_id}/reschedule",
    response_model=AppointmentRefundResponse,
    status_code=status.HTTP_200_OK,
    tags=["Appointments"],
    summary="Reschedule appointment",
)
async def reschedule_appointment(
    appointment_id: UUID,
    data: RescheduleRequest,
    db: DatabaseSession,
    gateway: PaymentGateway,
    notifier: Notifier,
) -> AppointmentRefundResponse:
    """
    Move an appointment to a new time.

    Args:
        appointment_id: Appointment ID
        data: New start time
        db: Database session
        gateway: Payment gateway
        notifier: Push notification service

    Returns:
        Rescheduled appointment and refund details
    """
    service = RescheduleService(db, gateway, notifier)
    return await service.reschedule(appointment_id, data.new_date_time)
