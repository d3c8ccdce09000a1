"""Reconciliation of bookings and ledger records left behind by failed side effects."""

from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import InvalidStateTransitionException, NotFoundException
from app.core.ledger_client import LedgerClient
from app.core.lifecycle import PAID_STATUSES
from app.core.payment_gateway import StripePaymentGateway
from app.schemas.appointments import AppointmentResponse, AppointmentStatus, to_response
from app.schemas.reconciliation import PaymentIntentRetryResponse, ReconciliationReport
from app.services.appointment_service import AppointmentService
from app.services.booking_service import BookingService
from app.services.confirmation_service import LedgerRecorder
from app.services.doctor_service import DoctorService

logger = structlog.get_logger(__name__)


class ReconciliationService:
    """Lists and retries appointments whose external side effects failed."""

    def __init__(self, db: AsyncSession, gateway: StripePaymentGateway, ledger: LedgerClient):
        """Initialize service with database session and external clients."""
        self.db = db
        self.appointments = AppointmentService(db)
        self.bookings = BookingService(db, gateway)
        self.recorder = LedgerRecorder(ledger)

    async def report(self, older_than_minutes: int = 15) -> ReconciliationReport:
        """Collect orphaned bookings and ledger failures."""
        orphaned = await self.appointments.list_orphaned_bookings(older_than_minutes)
        failures = await self.appointments.list_ledger_failures()

        return ReconciliationReport(
            orphaned_bookings=[to_response(row) for row in orphaned],
            ledger_failures=[to_response(row) for row in failures],
        )

    async def retry_payment_intent(self, appointment_id: UUID) -> PaymentIntentRetryResponse:
        """
        Request the payment intent of an orphaned booking again.

        Raises:
            NotFoundException: If appointment or doctor not found
            InvalidStateTransitionException: If the booking is no longer pending
                or already has an intent
            PaymentGatewayException: If the gateway fails again
        """
        appointment = await self.appointments.get(appointment_id)

        if appointment["status"] != AppointmentStatus.PENDING.value:
            raise InvalidStateTransitionException(
                f"Appointment is {appointment['status']}, only pending bookings need a payment intent"
            )
        if appointment["payment_intent_id"]:
            raise InvalidStateTransitionException("Appointment already has a payment intent")

        doctor = await DoctorService.get_doctor_by_id(self.db, appointment["doctor_id"])
        if doctor is None:
            raise NotFoundException("Doctor not found")

        await self.db.commit()

        logger.info("payment_intent_retry", appointment_id=str(appointment_id))
        updated, client_secret = await self.bookings.request_payment_intent(appointment, doctor)

        return PaymentIntentRetryResponse(
            appointment=to_response(updated),
            client_secret=client_secret,
        )

    async def retry_ledger_recording(self, appointment_id: UUID) -> AppointmentResponse:
        """
        Re-run ledger recording for a paid appointment.

        Raises:
            NotFoundException: If appointment not found
            InvalidStateTransitionException: If the appointment is not paid
                or is already recorded
        """
        appointment = await self.appointments.get(appointment_id)

        if AppointmentStatus(appointment["status"]) not in PAID_STATUSES:
            raise InvalidStateTransitionException(
                f"Appointment is {appointment['status']}, only paid appointments are recorded"
            )
        if appointment["ledger_transaction_ref"]:
            raise InvalidStateTransitionException("Appointment is already recorded on the ledger")

        appointment = await self.appointments.record_side_effects(
            appointment_id,
            ledger_retry_count=appointment["ledger_retry_count"] + 1,
        )
        await self.db.commit()

        updated = await self.recorder.record(self.db, appointment)
        await self.db.commit()

        logger.info(
            "ledger_recording_retried",
            appointment_id=str(appointment_id),
            retry_count=updated["ledger_retry_count"],
            recorded=not updated["ledger_recording_failed"],
        )
        return to_response(updated)
