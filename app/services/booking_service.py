"""Booking intake: validates a request, persists a pending appointment and requests payment."""

from datetime import UTC, datetime, timedelta

import structlog
from sqlalchemy import insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import PaymentGatewayException, SlotConflictException
from app.core.payment_gateway import StripePaymentGateway
from app.core.policies import FeeBreakdown, calculate_price
from app.models.appointments import appointments
from app.schemas.appointments import (
    AppointmentStatus,
    BookingRequest,
    BookingResponse,
    FeesResponse,
    to_response,
)
from app.schemas.audit import AuditAction, AuditOutcome, AuditResourceType
from app.services.appointment_service import AppointmentService
from app.services.audit_service import AuditService
from app.services.availability_service import AvailabilityService
from app.services.doctor_service import DoctorService
from app.services.patient_service import PatientService

logger = structlog.get_logger(__name__)


def fees_of(appointment: dict) -> FeeBreakdown:
    """Read the stored price split of an appointment."""
    return FeeBreakdown(
        total=appointment["price_cents"],
        platform_fee=appointment["platform_fee_cents"],
        doctor_payout=appointment["doctor_payout_cents"],
    )


class BookingService:
    """Service for booking paid consultations."""

    def __init__(self, db: AsyncSession, gateway: StripePaymentGateway):
        """Initialize service with database session and payment gateway."""
        self.db = db
        self.gateway = gateway

    async def book(self, request: BookingRequest, now: datetime | None = None) -> BookingResponse:
        """
        Book an appointment and create its payment intent.

        The doctor row stays locked from the eligibility check until the
        pending appointment is committed, so concurrent bookings for the same
        doctor are checked one after another. The payment gateway is only
        called after that commit.

        Args:
            request: Booking request
            now: Current time, injectable for tests

        Returns:
            Appointment, client secret and price split

        Raises:
            DoctorNotEligibleException: If doctor cannot accept bookings
            NotFoundException: If the given patient does not exist
            ValidationException: If the time is outside the booking horizon
            SlotConflictException: If the slot is taken
            PaymentGatewayException: If the payment intent cannot be created
        """
        start = request.appointment_time.astimezone(UTC)
        AvailabilityService.validate_window(start, now)

        doctor = await DoctorService.get_bookable_doctor(self.db, request.doctor_id)
        patient = await PatientService.resolve_patient(
            self.db, request.patient_id, request.patient_info
        )

        await AvailabilityService(self.db).validate(
            doctor["id"], start, request.duration_minutes
        )

        fees = calculate_price(doctor["hourly_rate_cents"], request.duration_minutes)

        created_at = datetime.now(UTC)
        try:
            result = await self.db.execute(
                insert(appointments)
                .values(
                    doctor_id=doctor["id"],
                    patient_id=patient["id"],
                    appointment_at=start,
                    duration_minutes=request.duration_minutes,
                    ends_at=start + timedelta(minutes=request.duration_minutes),
                    status=AppointmentStatus.PENDING.value,
                    price_cents=fees.total,
                    platform_fee_cents=fees.platform_fee,
                    doctor_payout_cents=fees.doctor_payout,
                    created_at=created_at,
                    updated_at=created_at,
                )
                .returning(appointments)
            )
        except IntegrityError as e:
            # Exclusion constraint backstop for the availability check
            await self.db.rollback()
            raise SlotConflictException() from e

        appointment = dict(result.mappings().one())

        await AuditService.record(
            self.db,
            action=AuditAction.APPOINTMENT_BOOKED,
            resource_type=AuditResourceType.APPOINTMENT,
            outcome=AuditOutcome.SUCCESS,
            resource_id=appointment["id"],
            actor_id=patient["id"],
            details={
                "doctor_id": str(doctor["id"]),
                "appointment_at": start.isoformat(),
                "duration_minutes": request.duration_minutes,
                "total": fees.total,
            },
        )
        await self.db.commit()

        logger.info(
            "appointment_booked",
            appointment_id=str(appointment["id"]),
            doctor_id=str(doctor["id"]),
            patient_id=str(patient["id"]),
            total=fees.total,
        )

        appointment, client_secret = await self.request_payment_intent(appointment, doctor)

        return BookingResponse(
            appointment=to_response(appointment),
            client_secret=client_secret,
            fees=FeesResponse(
                total=fees.total,
                platform_fee=fees.platform_fee,
                doctor_payout=fees.doctor_payout,
            ),
        )

    async def request_payment_intent(
        self,
        appointment: dict,
        doctor: dict,
    ) -> tuple[dict, str | None]:
        """
        Create the payment intent of a pending appointment and store its id.

        The idempotency key depends only on the appointment id, so retrying an
        orphaned booking returns the intent the gateway may already hold.

        Returns:
            Updated appointment row and the intent's client secret

        Raises:
            PaymentGatewayException: After recording the failure on the
                appointment and in the audit log
        """
        appointment_service = AppointmentService(self.db)

        metadata = {
            "appointment_id": str(appointment["id"]),
            "doctor_id": str(appointment["doctor_id"]),
            "patient_id": str(appointment["patient_id"]) if appointment["patient_id"] else "",
        }

        try:
            intent = await self.gateway.create_payment_intent(
                fees=fees_of(appointment),
                metadata=metadata,
                idempotency_key=f"payment-intent:{appointment['id']}",
                payout_account_id=doctor["payout_account_id"],
            )
        except PaymentGatewayException as e:
            logger.error(
                "payment_intent_failed",
                appointment_id=str(appointment["id"]),
                gateway_code=e.gateway_code,
                error=e.message,
            )
            await appointment_service.record_side_effects(appointment["id"], payment_error=e.message)
            await AuditService.record(
                self.db,
                action=AuditAction.PAYMENT_INTENT_CREATED,
                resource_type=AuditResourceType.PAYMENT,
                outcome=AuditOutcome.FAILURE,
                resource_id=appointment["id"],
                details={"gateway_code": e.gateway_code},
                error_message=e.message,
            )
            await self.db.commit()
            raise

        updated = await appointment_service.record_side_effects(
            appointment["id"],
            payment_intent_id=intent.id,
            payment_error=None,
        )
        await AuditService.record(
            self.db,
            action=AuditAction.PAYMENT_INTENT_CREATED,
            resource_type=AuditResourceType.PAYMENT,
            outcome=AuditOutcome.SUCCESS,
            resource_id=appointment["id"],
            details={"payment_intent_id": intent.id, "split": intent.split},
        )
        await self.db.commit()

        logger.info(
            "payment_intent_created",
            appointment_id=str(appointment["id"]),
            payment_intent_id=intent.id,
            split=intent.split,
        )

        return updated, intent.client_secret
