"""Payment gateway webhook handling."""

from datetime import UTC, datetime
from functools import partial

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import BadRequestException, ConcurrencyConflictException
from app.core.payment_gateway import StripePaymentGateway, StripeWebhookVerifier
from app.core.redis_client import WebhookEventRegistry
from app.core.tasks import SagaSupervisor
from app.schemas.appointments import AppointmentStatus
from app.schemas.audit import AuditAction, AuditOutcome, AuditResourceType
from app.schemas.webhooks import PaymentEvent, PaymentEventKind, PaymentObject, WebhookAck
from app.services.appointment_service import AppointmentService
from app.services.audit_service import AuditService
from app.services.confirmation_service import ConfirmationService
from app.services.refund_service import RefundService

logger = structlog.get_logger(__name__)

PAYMENT_FAILED_REASON = "payment_failed"


class WebhookService:
    """
    Verifies gateway events and dispatches them.

    Success events are acknowledged immediately and confirmed by a supervised
    background saga. Failure events are applied inline since they only touch
    the database.
    """

    def __init__(
        self,
        db: AsyncSession,
        verifier: StripeWebhookVerifier,
        registry: WebhookEventRegistry,
        supervisor: SagaSupervisor,
        confirmation: ConfirmationService,
        gateway: StripePaymentGateway,
    ):
        """Initialize handler with its collaborators."""
        self.db = db
        self.refunds = RefundService(db, gateway)
        self.verifier = verifier
        self.registry = registry
        self.supervisor = supervisor
        self.confirmation = confirmation

    async def handle(self, payload: bytes, signature: str | None) -> WebhookAck:
        """
        Handle one webhook delivery.

        Args:
            payload: Raw request body
            signature: Signature header value

        Returns:
            Acknowledgement for the gateway

        Raises:
            WebhookSignatureException: If the signature is missing or invalid
            BadRequestException: If the payload is malformed
        """
        event = self.verifier.verify(payload, signature)
        kind = event.kind

        if kind is PaymentEventKind.IGNORED:
            logger.info("webhook_event_ignored", event_id=event.id, event_type=event.type)
            return WebhookAck()

        payment = self._payment_of(event)

        if not self.registry.claim(event.id):
            logger.info(
                "webhook_event_duplicate",
                event_id=event.id,
                event_type=event.type,
                state=self.registry.state(event.id),
            )
            return WebhookAck(duplicate=True)

        logger.info("webhook_event_received", event_id=event.id, event_type=event.type)

        if kind is PaymentEventKind.SUCCEEDED:
            self._dispatch_confirmation(event, payment)
            return WebhookAck()

        try:
            await self._handle_payment_failed(event, payment)
        except Exception:
            self.registry.release(event.id)
            raise

        self.registry.mark_completed(event.id)
        return WebhookAck()

    @staticmethod
    def _payment_of(event: PaymentEvent) -> PaymentObject:
        try:
            return event.payment()
        except ValidationError as e:
            raise BadRequestException("Invalid webhook payload") from e

    def _dispatch_confirmation(self, event: PaymentEvent, payment: PaymentObject) -> None:
        self.supervisor.spawn(
            f"confirm-payment-{event.id}",
            self.confirmation.confirm(payment, event_id=event.id),
            on_complete=partial(self._settle, event.id),
        )

    def _settle(self, event_id: str, succeeded: bool) -> None:
        """Mark the event done, or free it for the gateway's redelivery."""
        if succeeded:
            self.registry.mark_completed(event_id)
        else:
            self.registry.release(event_id)

    async def _handle_payment_failed(self, event: PaymentEvent, payment: PaymentObject) -> None:
        appointment_id = payment.metadata.appointment_id
        appointment_service = AppointmentService(self.db)

        appointment = None
        if appointment_id is not None:
            appointment = await appointment_service.find(appointment_id, for_update=True)

        if appointment is None:
            logger.error(
                "payment_event_data_integrity_error",
                event_id=event.id,
                payment_intent_id=payment.id,
                appointment_id=str(appointment_id) if appointment_id else None,
            )
            await AuditService.record(
                self.db,
                action=AuditAction.PAYMENT_FAILED,
                resource_type=AuditResourceType.PAYMENT,
                outcome=AuditOutcome.FAILURE,
                resource_id=appointment_id,
                details={"event_id": event.id, "payment_intent_id": payment.id},
                error_message="Appointment referenced by payment does not exist",
            )
            await self.db.commit()
            return

        if appointment["status"] != AppointmentStatus.PENDING.value:
            logger.info(
                "payment_failure_ignored",
                appointment_id=str(appointment["id"]),
                status=appointment["status"],
                event_id=event.id,
            )
            await self.db.commit()
            return

        gateway_error = (event.data.object.get("last_payment_error") or {}).get("message")

        try:
            cancelled = await appointment_service.transition(
                appointment,
                AppointmentStatus.CANCELLED,
                cancellation_reason=PAYMENT_FAILED_REASON,
                cancelled_by="system",
                cancelled_at=datetime.now(UTC),
                payment_error=gateway_error or PAYMENT_FAILED_REASON,
            )
        except ConcurrencyConflictException:
            await self.db.rollback()
            logger.info("payment_failure_lost_race", appointment_id=str(appointment["id"]))
            return

        await AuditService.record(
            self.db,
            action=AuditAction.PAYMENT_FAILED,
            resource_type=AuditResourceType.PAYMENT,
            outcome=AuditOutcome.SUCCESS,
            resource_id=appointment["id"],
            details={"event_id": event.id, "payment_intent_id": payment.id},
            error_message=gateway_error,
        )
        await self.db.commit()

        logger.info(
            "appointment_cancelled_payment_failed",
            appointment_id=str(appointment["id"]),
            event_id=event.id,
        )

        # A failed intent stays chargeable until it is cancelled
        await self.refunds.void_payment_intent(cancelled)
