"""Reschedule workflow."""

from datetime import UTC, datetime, timedelta
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotificationError, SlotConflictException
from app.core.lifecycle import ensure_transition, rescheduled_status
from app.core.payment_gateway import StripePaymentGateway
from app.schemas.appointments import AppointmentRefundResponse, to_response
from app.schemas.audit import AuditAction, AuditOutcome, AuditResourceType
from app.services.appointment_service import AppointmentService
from app.services.audit_service import AuditService
from app.services.availability_service import AvailabilityService
from app.services.doctor_service import DoctorService
from app.services.notification_service import NotificationService
from app.services.refund_service import RefundService

logger = structlog.get_logger(__name__)


class RescheduleService:
    """Service for moving appointments to a new time."""

    def __init__(
        self,
        db: AsyncSession,
        gateway: StripePaymentGateway,
        notifier: NotificationService,
    ):
        """Initialize service with database session, payment gateway and notifier."""
        self.db = db
        self.refunds = RefundService(db, gateway)
        self.notifier = notifier

    async def reschedule(
        self,
        appointment_id: UUID,
        new_date_time: datetime,
        now: datetime | None = None,
    ) -> AppointmentRefundResponse:
        """
        Move an appointment to ``new_date_time``.

        The refund is quoted against the original time. Unpaid bookings are
        moved but stay pending. The doctor row is locked before the
        appointment row, the same order booking uses.

        Raises:
            NotFoundException: If appointment not found
            InvalidStateTransitionException: If the appointment cannot be moved
            ValidationException: If the new time is outside the booking horizon
            SlotConflictException: If the new slot is taken
            ConcurrencyConflictException: If a concurrent workflow won the race
        """
        now = now or datetime.now(UTC)
        new_start = new_date_time.astimezone(UTC)
        appointment_service = AppointmentService(self.db)

        appointment = await appointment_service.get(appointment_id)
        ensure_transition(appointment["status"], rescheduled_status(appointment["status"]))
        AvailabilityService.validate_window(new_start, now)

        await DoctorService.get_doctor_by_id(self.db, appointment["doctor_id"], for_update=True)
        appointment = await appointment_service.get(appointment_id, for_update=True)
        target = rescheduled_status(appointment["status"])

        await AvailabilityService(self.db).validate(
            appointment["doctor_id"],
            new_start,
            appointment["duration_minutes"],
            exclude_appointment_id=appointment_id,
        )

        quote = self.refunds.quote(appointment, now)
        previous_start = appointment["appointment_at"]

        try:
            rescheduled = await appointment_service.transition(
                appointment,
                target,
                appointment_at=new_start,
                ends_at=new_start + timedelta(minutes=appointment["duration_minutes"]),
            )
        except IntegrityError as e:
            await self.db.rollback()
            raise SlotConflictException() from e

        await AuditService.record(
            self.db,
            action=AuditAction.APPOINTMENT_RESCHEDULED,
            resource_type=AuditResourceType.APPOINTMENT,
            outcome=AuditOutcome.SUCCESS,
            resource_id=appointment_id,
            actor_id=appointment["patient_id"],
            details={
                "previous_status": appointment["status"],
                "previous_time": previous_start.isoformat(),
                "new_time": new_start.isoformat(),
                "refund_amount": quote.amount,
                "refund_percentage": quote.percentage,
            },
        )
        await self.db.commit()

        logger.info(
            "appointment_rescheduled",
            appointment_id=str(appointment_id),
            previous_time=previous_start.isoformat(),
            new_time=new_start.isoformat(),
        )

        rescheduled, refund = await self.refunds.issue(
            rescheduled,
            quote,
            idempotency_key=f"refund:reschedule:{appointment_id}:{rescheduled['version']}",
        )

        if rescheduled["patient_id"]:
            try:
                await self.notifier.notify_rescheduled(
                    patient_id=rescheduled["patient_id"],
                    appointment_id=appointment_id,
                    previous_time=previous_start,
                    new_time=new_start,
                )
            except NotificationError as e:
                logger.warning(
                    "reschedule_notification_failed",
                    appointment_id=str(appointment_id),
                    error=str(e),
                )

        return AppointmentRefundResponse(appointment=to_response(rescheduled), refund=refund)
