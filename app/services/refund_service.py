"""Refunds and voided payment intents shared by the appointment workflows."""

from datetime import UTC, datetime

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import PaymentGatewayException
from app.core.lifecycle import PAID_STATUSES
from app.core.payment_gateway import StripePaymentGateway
from app.core.policies import REFUND_POLICY, RefundQuote
from app.schemas.appointments import AppointmentStatus, RefundDetails
from app.schemas.audit import AuditAction, AuditOutcome, AuditResourceType
from app.services.appointment_service import AppointmentService
from app.services.audit_service import AuditService

logger = structlog.get_logger(__name__)


class RefundService:
    """Computes refunds from ``REFUND_POLICY`` and issues them through the gateway."""

    def __init__(self, db: AsyncSession, gateway: StripePaymentGateway):
        """Initialize service with database session and payment gateway."""
        self.db = db
        self.gateway = gateway

    @staticmethod
    def quote(appointment: dict, now: datetime | None = None) -> RefundQuote:
        """
        Quote the refund for an appointment at ``now``.

        Only captured payments are refundable, and the amount is capped so the
        cumulative refund never exceeds the price.
        """
        now = now or datetime.now(UTC)
        quote = REFUND_POLICY.quote(appointment["price_cents"], appointment["appointment_at"], now)

        if (
            AppointmentStatus(appointment["status"]) not in PAID_STATUSES
            or not appointment["payment_intent_id"]
        ):
            return RefundQuote(
                amount=0,
                percentage=0,
                hours_until_appointment=quote.hours_until_appointment,
            )

        remaining = appointment["price_cents"] - appointment["refund_amount_cents"]
        if quote.amount > remaining:
            return RefundQuote(
                amount=max(remaining, 0),
                percentage=quote.percentage,
                hours_until_appointment=quote.hours_until_appointment,
            )

        return quote

    async def issue(
        self,
        appointment: dict,
        quote: RefundQuote,
        idempotency_key: str,
    ) -> tuple[dict, RefundDetails]:
        """
        Issue a quoted refund, best-effort.

        A gateway failure is stored on the appointment and audited instead of
        being raised. Commits its own writes.

        Returns:
            Updated appointment row and the refund details for the response
        """
        if quote.amount <= 0:
            return appointment, RefundDetails(amount=0, percentage=quote.percentage)

        appointment_service = AppointmentService(self.db)

        try:
            refund = await self.gateway.create_refund(
                payment_intent_id=appointment["payment_intent_id"],
                amount=quote.amount,
                idempotency_key=idempotency_key,
            )
        except PaymentGatewayException as e:
            logger.error(
                "refund_failed",
                appointment_id=str(appointment["id"]),
                amount=quote.amount,
                error=e.message,
            )
            updated = await appointment_service.record_side_effects(
                appointment["id"], refund_error=e.message
            )
            await AuditService.record(
                self.db,
                action=AuditAction.REFUND_ISSUED,
                resource_type=AuditResourceType.REFUND,
                outcome=AuditOutcome.FAILURE,
                resource_id=appointment["id"],
                details={"amount": quote.amount, "percentage": quote.percentage},
                error_message=e.message,
            )
            await self.db.commit()
            return updated, RefundDetails(amount=0, percentage=quote.percentage)

        updated = await appointment_service.record_side_effects(
            appointment["id"],
            refund_amount_cents=appointment["refund_amount_cents"] + quote.amount,
            refund_reference=refund.id,
            refund_error=None,
        )
        await AuditService.record(
            self.db,
            action=AuditAction.REFUND_ISSUED,
            resource_type=AuditResourceType.REFUND,
            outcome=AuditOutcome.SUCCESS,
            resource_id=appointment["id"],
            details={
                "amount": quote.amount,
                "percentage": quote.percentage,
                "refund_reference": refund.id,
            },
        )
        await self.db.commit()

        logger.info(
            "refund_issued",
            appointment_id=str(appointment["id"]),
            amount=quote.amount,
            refund_reference=refund.id,
        )

        return updated, RefundDetails(
            amount=quote.amount,
            percentage=quote.percentage,
            refund_reference=refund.id,
        )

    async def refund_late_payment(
        self,
        appointment: dict,
        payment_intent_id: str,
    ) -> tuple[dict, RefundDetails]:
        """
        Refund a payment captured after its appointment was cancelled.

        Everything not yet refunded goes back to the patient, whatever the
        policy tier.
        """
        now = datetime.now(UTC)
        quote = RefundQuote(
            amount=max(appointment["price_cents"] - appointment["refund_amount_cents"], 0),
            percentage=100,
            hours_until_appointment=(appointment["appointment_at"] - now).total_seconds() / 3600,
        )
        return await self.issue(
            {**appointment, "payment_intent_id": payment_intent_id},
            quote,
            idempotency_key=f"refund:late-payment:{appointment['id']}",
        )

    async def void_payment_intent(self, appointment: dict) -> bool:
        """
        Cancel the payment intent of an unpaid booking, best-effort.

        A refusal is logged and audited; a payment that still goes through
        is refunded by the confirmation saga. Commits its own writes.

        Returns:
            True if the gateway cancelled the intent
        """
        intent_id = appointment["payment_intent_id"]
        if not intent_id:
            return False

        try:
            intent_status = await self.gateway.cancel_payment_intent(
                intent_id,
                idempotency_key=f"payment-intent:{appointment['id']}:cancel",
            )
        except PaymentGatewayException as e:
            logger.warning(
                "payment_intent_cancel_failed",
                appointment_id=str(appointment["id"]),
                payment_intent_id=intent_id,
                error=e.message,
            )
            await AuditService.record(
                self.db,
                action=AuditAction.PAYMENT_INTENT_CANCELLED,
                resource_type=AuditResourceType.PAYMENT,
                outcome=AuditOutcome.FAILURE,
                resource_id=appointment["id"],
                details={"payment_intent_id": intent_id, "gateway_code": e.gateway_code},
                error_message=e.message,
            )
            await self.db.commit()
            return False

        await AuditService.record(
            self.db,
            action=AuditAction.PAYMENT_INTENT_CANCELLED,
            resource_type=AuditResourceType.PAYMENT,
            outcome=AuditOutcome.SUCCESS,
            resource_id=appointment["id"],
            details={"payment_intent_id": intent_id, "status": intent_status},
        )
        await self.db.commit()

        logger.info(
            "payment_intent_cancelled",
            appointment_id=str(appointment["id"]),
            payment_intent_id=intent_id,
        )
        return True
