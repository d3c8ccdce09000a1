"""
Payment confirmation saga.

Runs after the webhook has been acknowledged:

1. load the appointment named in the payment metadata; a payment for an
   appointment cancelled in the meantime is refunded
2. provision a video room (best-effort)
3. compare-and-set ``pending -> confirmed`` and audit the payment
4. record the appointment on the ledger (best-effort)

Steps 2 and 4 never undo the confirmation. Their failures are stored on the
appointment and in the audit log for reconciliation.
"""

from datetime import UTC, datetime
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.core.exceptions import (
    ConcurrencyConflictException,
    DataIntegrityError,
    LedgerError,
    VideoProvisioningError,
)
from app.core.ledger_client import LedgerClient
from app.core.payment_gateway import StripePaymentGateway
from app.core.video_provider import VideoProvider
from app.schemas.appointments import AppointmentStatus
from app.schemas.audit import AuditAction, AuditOutcome, AuditResourceType
from app.schemas.common import PLACEHOLDER_LEDGER_ADDRESS
from app.schemas.webhooks import PaymentObject
from app.services.appointment_service import AppointmentService
from app.services.audit_service import AuditService
from app.services.doctor_service import DoctorService
from app.services.patient_service import PatientService
from app.services.refund_service import RefundService

logger = structlog.get_logger(__name__)

DOCTOR_NOT_ON_LEDGER = "doctor not registered on ledger"
LATE_PAYMENT = "Payment received for a cancelled appointment"


def to_timestamp_ms(value: datetime) -> int:
    """Convert an aware datetime to epoch milliseconds."""
    return int(value.timestamp() * 1000)


class LedgerRecorder:
    """Records confirmed appointments on the ledger and stores the outcome."""

    def __init__(self, ledger: LedgerClient):
        """Initialize recorder with ledger client."""
        self.ledger = ledger

    async def record(self, db: AsyncSession, appointment: dict) -> dict:
        """
        Record an appointment on the ledger, best-effort.

        Ownership goes to the patient's wallet, or to the placeholder address
        when the patient has none. The caller owns the commit.

        Returns:
            Updated appointment row
        """
        appointment_service = AppointmentService(db)
        doctor = await DoctorService.get_doctor_by_id(db, appointment["doctor_id"])
        patient = None
        if appointment["patient_id"]:
            patient = await PatientService.get_patient_by_id(db, appointment["patient_id"])

        owner = (patient or {}).get("ledger_address") or PLACEHOLDER_LEDGER_ADDRESS

        try:
            if not doctor or not doctor["ledger_profile_id"] or not doctor["ledger_address"]:
                raise LedgerError(DOCTOR_NOT_ON_LEDGER)

            receipt = await self.ledger.record_appointment(
                appointment_id=appointment["id"],
                doctor_address=doctor["ledger_address"],
                patient_address=owner,
                appointment_timestamp_ms=to_timestamp_ms(appointment["appointment_at"]),
                price_cents=appointment["price_cents"],
            )
        except LedgerError as e:
            logger.warning(
                "ledger_recording_failed",
                appointment_id=str(appointment["id"]),
                error=str(e),
            )
            updated = await appointment_service.record_side_effects(
                appointment["id"],
                ledger_recording_failed=True,
                ledger_error_message=str(e),
                ledger_error_at=datetime.now(UTC),
            )
            await AuditService.record(
                db,
                action=AuditAction.LEDGER_RECORDED,
                resource_type=AuditResourceType.LEDGER,
                outcome=AuditOutcome.FAILURE,
                resource_id=appointment["id"],
                details={"owner_address": owner},
                error_message=str(e),
            )
            return updated

        updated = await appointment_service.record_side_effects(
            appointment["id"],
            ledger_transaction_ref=receipt.digest,
            ledger_owner_address=owner,
            ledger_recording_failed=False,
            ledger_error_message=None,
            ledger_error_at=None,
        )
        await AuditService.record(
            db,
            action=AuditAction.LEDGER_RECORDED,
            resource_type=AuditResourceType.LEDGER,
            outcome=AuditOutcome.SUCCESS,
            resource_id=appointment["id"],
            details={
                "transaction_reference": receipt.digest,
                "owner_address": owner,
                "placeholder_owner": owner == PLACEHOLDER_LEDGER_ADDRESS,
            },
        )
        logger.info(
            "ledger_recorded",
            appointment_id=str(appointment["id"]),
            digest=receipt.digest,
        )
        return updated


class ConfirmationService:
    """Confirms paid appointments outside the webhook request."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        video: VideoProvider,
        ledger: LedgerClient,
        gateway: StripePaymentGateway,
    ):
        """Initialize saga with its own session factory and external clients."""
        self.session_factory = session_factory
        self.video = video
        self.recorder = LedgerRecorder(ledger)
        self.gateway = gateway

    async def confirm(self, payment: PaymentObject, event_id: str | None = None) -> bool:
        """
        Run the saga for a successful payment.

        A payment for an appointment that was cancelled before it could be
        confirmed is refunded in full.

        Returns:
            True if this run confirmed the appointment, False if it was a
            no-op (already processed, lost a race, cancelled, or bad data)
        """
        appointment_id = payment.metadata.appointment_id

        async with self.session_factory() as db:
            try:
                appointment = await self._load(db, appointment_id)
            except DataIntegrityError as e:
                logger.error(
                    "payment_event_data_integrity_error",
                    event_id=event_id,
                    payment_intent_id=payment.id,
                    error=str(e),
                )
                await AuditService.record(
                    db,
                    action=AuditAction.PAYMENT_PROCESSED,
                    resource_type=AuditResourceType.PAYMENT,
                    outcome=AuditOutcome.FAILURE,
                    resource_id=appointment_id,
                    details={"event_id": event_id, "payment_intent_id": payment.id},
                    error_message=str(e),
                )
                await db.commit()
                return False

            # End the read transaction before calling out
            await db.commit()

            if appointment["status"] == AppointmentStatus.CANCELLED.value:
                await self._refund_late_payment(db, appointment, payment, event_id)
                return False

            if appointment["status"] != AppointmentStatus.PENDING.value:
                logger.info(
                    "payment_already_processed",
                    appointment_id=str(appointment["id"]),
                    status=appointment["status"],
                    event_id=event_id,
                )
                return False

            video_values, video_error = await self._provision_video(appointment["id"])

            extra_values = dict(video_values)
            if not appointment["payment_intent_id"]:
                extra_values["payment_intent_id"] = payment.id

            try:
                confirmed = await AppointmentService(db).transition(
                    appointment,
                    AppointmentStatus.CONFIRMED,
                    payment_error=None,
                    **extra_values,
                )
            except ConcurrencyConflictException:
                await db.rollback()
                logger.info(
                    "confirmation_lost_race",
                    appointment_id=str(appointment["id"]),
                    event_id=event_id,
                )
                await self._release_video(db, appointment["id"], video_values, video_error)

                current = await AppointmentService(db).find(appointment["id"])
                await db.commit()
                if current and current["status"] == AppointmentStatus.CANCELLED.value:
                    await self._refund_late_payment(db, current, payment, event_id)
                return False

            await AuditService.record(
                db,
                action=AuditAction.VIDEO_SESSION_PROVISIONED,
                resource_type=AuditResourceType.VIDEO_SESSION,
                outcome=AuditOutcome.FAILURE if video_error else AuditOutcome.SUCCESS,
                resource_id=appointment["id"],
                details=video_values or None,
                error_message=video_error,
            )
            await AuditService.record(
                db,
                action=AuditAction.PAYMENT_PROCESSED,
                resource_type=AuditResourceType.PAYMENT,
                outcome=AuditOutcome.SUCCESS,
                resource_id=appointment["id"],
                actor_id=appointment["patient_id"],
                details={
                    "event_id": event_id,
                    "payment_intent_id": payment.id,
                    "amount": payment.amount,
                    "video_provisioned": video_error is None,
                },
            )
            await db.commit()

            logger.info(
                "appointment_confirmed",
                appointment_id=str(appointment["id"]),
                event_id=event_id,
                video_provisioned=video_error is None,
            )

            await self.recorder.record(db, confirmed)
            await db.commit()

        return True

    async def _load(self, db: AsyncSession, appointment_id: UUID | None) -> dict:
        if appointment_id is None:
            raise DataIntegrityError("Payment metadata has no appointment id")

        appointment = await AppointmentService(db).find(appointment_id)
        if appointment is None:
            raise DataIntegrityError(f"Appointment {appointment_id} does not exist")
        return appointment

    async def _provision_video(self, appointment_id: UUID) -> tuple[dict, str | None]:
        try:
            session = await self.video.create_room(appointment_id)
        except VideoProvisioningError as e:
            logger.warning(
                "video_provisioning_failed",
                appointment_id=str(appointment_id),
                error=str(e),
            )
            return {}, str(e)

        return {"video_room_name": session.room_name, "video_room_sid": session.room_sid}, None

    async def _release_video(
        self,
        db: AsyncSession,
        appointment_id: UUID,
        video_values: dict,
        video_error: str | None,
    ) -> None:
        """Audit a room provisioned for a confirmation that did not happen, and close it."""
        await AuditService.record(
            db,
            action=AuditAction.VIDEO_SESSION_PROVISIONED,
            resource_type=AuditResourceType.VIDEO_SESSION,
            outcome=AuditOutcome.FAILURE if video_error else AuditOutcome.SUCCESS,
            resource_id=appointment_id,
            details=video_values or None,
            error_message=video_error,
        )

        if video_values:
            close_error = None
            try:
                await self.video.close_room(video_values["video_room_sid"])
            except VideoProvisioningError as e:
                close_error = str(e)
                logger.warning(
                    "video_room_close_failed",
                    appointment_id=str(appointment_id),
                    error=close_error,
                )

            await AuditService.record(
                db,
                action=AuditAction.VIDEO_SESSION_CLOSED,
                resource_type=AuditResourceType.VIDEO_SESSION,
                outcome=AuditOutcome.FAILURE if close_error else AuditOutcome.SUCCESS,
                resource_id=appointment_id,
                details=video_values,
                error_message=close_error,
            )

        await db.commit()

    async def _refund_late_payment(
        self,
        db: AsyncSession,
        appointment: dict,
        payment: PaymentObject,
        event_id: str | None,
    ) -> None:
        """
        Return a payment that was captured after its appointment was cancelled.

        Appointments that already have a ``payment_processed`` entry were
        either confirmed before their cancellation or refunded by an earlier
        delivery; the event is a redelivery and nothing happens.
        """
        handled = await AuditService.count(
            db, AuditAction.PAYMENT_PROCESSED, resource_id=appointment["id"]
        )
        if handled:
            await db.commit()
            logger.info(
                "payment_already_processed",
                appointment_id=str(appointment["id"]),
                status=appointment["status"],
                event_id=event_id,
            )
            return

        logger.warning(
            "payment_received_for_cancelled_appointment",
            appointment_id=str(appointment["id"]),
            payment_intent_id=payment.id,
            event_id=event_id,
        )

        if not appointment["payment_intent_id"]:
            appointment = await AppointmentService(db).record_side_effects(
                appointment["id"], payment_intent_id=payment.id
            )
        await db.commit()

        _, refund = await RefundService(db, self.gateway).refund_late_payment(
            appointment, payment.id
        )

        await AuditService.record(
            db,
            action=AuditAction.PAYMENT_PROCESSED,
            resource_type=AuditResourceType.PAYMENT,
            outcome=AuditOutcome.FAILURE,
            resource_id=appointment["id"],
            actor_id=appointment["patient_id"],
            details={
                "event_id": event_id,
                "payment_intent_id": payment.id,
                "amount": payment.amount,
                "refund_amount": refund.amount,
                "refund_reference": refund.refund_reference,
            },
            error_message=LATE_PAYMENT,
        )
        await db.commit()
