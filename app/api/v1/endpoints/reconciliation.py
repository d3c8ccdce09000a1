"""Reconciliation endpoints, protected by the admin secret."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from app.dependencies import AdminAccess, DatabaseSession, Ledger, PaymentGateway
from app.schemas.appointments import AppointmentResponse
from app.schemas.reconciliation import PaymentIntentRetryResponse, ReconciliationReport
from app.services.reconciliation_service import ReconciliationService

router = APIRouter(dependencies=[AdminAccess])


@router.get(
    "/",
    response_model=ReconciliationReport,
    status_code=status.HTTP_200_OK,
    tags=["Reconciliation"],
    summary="List bookings and ledger records needing attention",
)
async def reconciliation_report(
    db: DatabaseSession,
    gateway: PaymentGateway,
    ledger: Ledger,
    older_than_minutes: int = Query(15, ge=0, description="Minimum age of orphaned bookings"),
) -> ReconciliationReport:
    """
    Report orphaned bookings and failed ledger recordings.

    Args:
        db: Database session
        gateway: Payment gateway
        ledger: Ledger client
        older_than_minutes: Minimum age of pending bookings without payment intent

    Returns:
        Reconciliation report
    """
    service = ReconciliationService(db, gateway, ledger)
    return await service.report(older_than_minutes)


@router.post(
    "/appointments/{appointment_id}/payment-intent",
    response_model=PaymentIntentRetryResponse,
    status_code=status.HTTP_200_OK,
    tags=["Reconciliation"],
    summary="Retry payment intent of an orphaned booking",
)
async def retry_payment_intent(
    appointment_id: UUID,
    db: DatabaseSession,
    gateway: PaymentGateway,
    ledger: Ledger,
) -> PaymentIntentRetryResponse:
    """Request the payment intent of an orphaned booking again."""
    service = ReconciliationService(db, gateway, ledger)
    return await service.retry_payment_intent(appointment_id)


@router.post(
    "/appointments/{appointment_id}/ledger",
    response_model=AppointmentResponse,
    status_code=status.HTTP_200_OK,
    tags=["Reconciliation"],
    summary="Retry ledger recording",
)
async def retry_ledger_recording(
    appointment_id: UUID,
    db: DatabaseSession,
    gateway: PaymentGateway,
    ledger: Ledger,
) -> AppointmentResponse:
    """Re-run ledger recording for a confirmed appointment."""
    service = ReconciliationService(db, gateway, ledger)
    return await service.retry_ledger_recording(appointment_id)
