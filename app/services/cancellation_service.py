"""Cancellation and refund workflow."""

from datetime import UTC, datetime
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import LedgerError
from app.core.ledger_client import LedgerClient
from app.core.payment_gateway import StripePaymentGateway
from app.schemas.appointments import AppointmentRefundResponse, AppointmentStatus, to_response
from app.schemas.audit import AuditAction, AuditOutcome, AuditResourceType
from app.services.appointment_service import AppointmentService
from app.services.audit_service import AuditService
from app.services.refund_service import RefundService

logger = structlog.get_logger(__name__)


class CancellationService:
    """Service for cancelling appointments."""

    def __init__(self, db: AsyncSession, gateway: StripePaymentGateway, ledger: LedgerClient):
        """Initialize service with database session, payment gateway and ledger client."""
        self.db = db
        self.refunds = RefundService(db, gateway)
        self.ledger = ledger

    async def cancel(
        self,
        appointment_id: UUID,
        reason: str,
        cancelled_by: str,
        now: datetime | None = None,
    ) -> AppointmentRefundResponse:
        """
        Cancel an appointment and refund what the policy allows.

        The cancellation is committed before the refund and the ledger record
        are attempted; neither can undo it. An unpaid booking has its payment
        intent cancelled instead.

        Raises:
            NotFoundException: If appointment not found
            InvalidStateTransitionException: If already cancelled or completed
            ConcurrencyConflictException: If a concurrent workflow won the race
        """
        now = now or datetime.now(UTC)
        appointment_service = AppointmentService(self.db)

        appointment = await appointment_service.get(appointment_id, for_update=True)
        quote = self.refunds.quote(appointment, now)

        cancelled = await appointment_service.transition(
            appointment,
            AppointmentStatus.CANCELLED,
            cancellation_reason=reason,
            cancelled_by=cancelled_by,
            cancelled_at=now,
        )
        await AuditService.record(
            self.db,
            action=AuditAction.APPOINTMENT_CANCELLED,
            resource_type=AuditResourceType.APPOINTMENT,
            outcome=AuditOutcome.SUCCESS,
            resource_id=appointment_id,
            actor_id=cancelled_by,
            details={
                "reason": reason,
                "previous_status": appointment["status"],
                "refund_amount": quote.amount,
                "refund_percentage": quote.percentage,
                "hours_until_appointment": round(quote.hours_until_appointment, 2),
            },
        )
        await self.db.commit()

        logger.info(
            "appointment_cancelled",
            appointment_id=str(appointment_id),
            cancelled_by=cancelled_by,
            refund_amount=quote.amount,
        )

        if appointment["status"] == AppointmentStatus.PENDING.value:
            await self.refunds.void_payment_intent(cancelled)

        cancelled, refund = await self.refunds.issue(
            cancelled, quote, idempotency_key=f"refund:cancel:{appointment_id}"
        )

        if cancelled["ledger_transaction_ref"]:
            cancelled = await self._record_on_ledger(cancelled, refund.amount)

        return AppointmentRefundResponse(appointment=to_response(cancelled), refund=refund)

    async def _record_on_ledger(self, appointment: dict, refund_cents: int) -> dict:
        appointment_service = AppointmentService(self.db)

        try:
            receipt = await self.ledger.record_cancellation(appointment["id"], refund_cents)
        except LedgerError as e:
            logger.warning(
                "ledger_cancellation_failed",
                appointment_id=str(appointment["id"]),
                error=str(e),
            )
            await AuditService.record(
                self.db,
                action=AuditAction.LEDGER_CANCELLATION_RECORDED,
                resource_type=AuditResourceType.LEDGER,
                outcome=AuditOutcome.FAILURE,
                resource_id=appointment["id"],
                error_message=str(e),
            )
            await self.db.commit()
            return appointment

        updated = await appointment_service.record_side_effects(
            appointment["id"], ledger_cancellation_ref=receipt.digest
        )
        await AuditService.record(
            self.db,
            action=AuditAction.LEDGER_CANCELLATION_RECORDED,
            resource_type=AuditResourceType.LEDGER,
            outcome=AuditOutcome.SUCCESS,
            resource_id=appointment["id"],
            details={"transaction_reference": receipt.digest, "refund_amount": refund_cents},
        )
        await self.db.commit()
        return updated
