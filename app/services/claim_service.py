"""Claim workflow: move ledger records from the placeholder identity to a patient's wallet."""

from datetime import UTC, datetime
from uuid import UUID

import structlog
from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import LedgerError, NotFoundException, WalletNotLinkedException
from app.core.ledger_client import LedgerClient
from app.models.appointments import appointments
from app.schemas.appointments import AppointmentStatus
from app.schemas.audit import AuditAction, AuditOutcome, AuditResourceType
from app.schemas.claims import (
    ClaimableAppointment,
    ClaimableAppointmentsResponse,
    ClaimResponse,
    ClaimResult,
)
from app.schemas.common import PLACEHOLDER_LEDGER_ADDRESS
from app.services.appointment_service import AppointmentService
from app.services.audit_service import AuditService
from app.services.confirmation_service import DOCTOR_NOT_ON_LEDGER, to_timestamp_ms
from app.services.doctor_service import DoctorService
from app.services.patient_service import PatientService

logger = structlog.get_logger(__name__)


def ineligibility_reason(appointment: dict) -> str | None:
    """Why an appointment cannot be claimed, or None if it can."""
    if appointment["status"] != AppointmentStatus.CONFIRMED.value:
        return f"Appointment is {appointment['status']}, only confirmed appointments can be claimed"
    if not appointment["ledger_transaction_ref"]:
        return "Appointment was never recorded on the ledger"
    if appointment["ledger_owner_address"] != PLACEHOLDER_LEDGER_ADDRESS:
        return "Appointment is already owned by a wallet"
    return None


class ClaimService:
    """Service for claiming placeholder-owned ledger records."""

    def __init__(self, db: AsyncSession, ledger: LedgerClient):
        """Initialize service with database session and ledger client."""
        self.db = db
        self.ledger = ledger

    async def _get_patient(self, patient_id: UUID) -> dict:
        patient = await PatientService.get_patient_by_id(self.db, patient_id)
        if patient is None:
            raise NotFoundException("Patient not found")
        return patient

    async def _placeholder_owned(self, patient_id: UUID) -> list[dict]:
        result = await self.db.execute(
            select(appointments)
            .where(
                and_(
                    appointments.c.patient_id == patient_id,
                    appointments.c.status == AppointmentStatus.CONFIRMED.value,
                    appointments.c.ledger_transaction_ref.is_not(None),
                    appointments.c.ledger_owner_address == PLACEHOLDER_LEDGER_ADDRESS,
                )
            )
            .order_by(appointments.c.appointment_at)
        )
        return [dict(row) for row in result.mappings().all()]

    async def list_claimable(self, patient_id: UUID) -> ClaimableAppointmentsResponse:
        """
        List appointments a patient can claim.

        Raises:
            NotFoundException: If patient not found
        """
        patient = await self._get_patient(patient_id)
        rows = await self._placeholder_owned(patient_id)

        return ClaimableAppointmentsResponse(
            wallet_connected=bool(patient["ledger_address"]),
            ledger_address=patient["ledger_address"],
            claimable=len(rows),
            appointments=[
                ClaimableAppointment(
                    id=row["id"],
                    doctor_id=row["doctor_id"],
                    appointment_at=row["appointment_at"],
                    duration_minutes=row["duration_minutes"],
                    price_cents=row["price_cents"],
                    ledger_transaction_ref=row["ledger_transaction_ref"],
                )
                for row in rows
            ],
        )

    async def claim(
        self,
        patient_id: UUID,
        appointment_ids: list[UUID] | None = None,
    ) -> ClaimResponse:
        """
        Transfer placeholder-owned records to the patient's wallet.

        Each appointment is processed on its own; a failure is reported in
        its result and does not stop the batch.

        Args:
            patient_id: Patient ID
            appointment_ids: Specific appointments, or None for all claimable

        Returns:
            Per-appointment results

        Raises:
            NotFoundException: If patient not found
            WalletNotLinkedException: If the patient has no wallet address
        """
        patient = await self._get_patient(patient_id)
        wallet = patient["ledger_address"]
        if not wallet:
            raise WalletNotLinkedException()

        if appointment_ids is None:
            candidates = await self._placeholder_owned(patient_id)
            results = [await self._claim_one(row, wallet) for row in candidates]
        else:
            appointment_service = AppointmentService(self.db)
            results = []
            # dict.fromkeys keeps request order while dropping duplicates
            for appointment_id in dict.fromkeys(appointment_ids):
                row = await appointment_service.find(appointment_id)
                if row is None or row["patient_id"] != patient_id:
                    results.append(
                        ClaimResult(
                            appointment_id=appointment_id,
                            success=False,
                            error="Appointment not found",
                        )
                    )
                    continue

                reason = ineligibility_reason(row)
                if reason:
                    results.append(
                        ClaimResult(appointment_id=appointment_id, success=False, error=reason)
                    )
                    continue

                results.append(await self._claim_one(row, wallet))

        claimed = sum(1 for result in results if result.success)
        logger.info(
            "appointments_claimed",
            patient_id=str(patient_id),
            claimed=claimed,
            total=len(results),
        )
        return ClaimResponse(claimed=claimed, total=len(results), results=results)

    async def _claim_one(self, appointment: dict, wallet: str) -> ClaimResult:
        doctor = await DoctorService.get_doctor_by_id(self.db, appointment["doctor_id"])

        try:
            if not doctor or not doctor["ledger_address"]:
                raise LedgerError(DOCTOR_NOT_ON_LEDGER)

            receipt = await self.ledger.claim_appointment(
                appointment_id=appointment["id"],
                patient_address=wallet,
                doctor_address=doctor["ledger_address"],
                appointment_timestamp_ms=to_timestamp_ms(appointment["appointment_at"]),
                price_cents=appointment["price_cents"],
            )
        except LedgerError as e:
            logger.warning(
                "appointment_claim_failed",
                appointment_id=str(appointment["id"]),
                error=str(e),
            )
            await AuditService.record(
                self.db,
                action=AuditAction.APPOINTMENT_CLAIMED,
                resource_type=AuditResourceType.LEDGER,
                outcome=AuditOutcome.FAILURE,
                resource_id=appointment["id"],
                actor_id=appointment["patient_id"],
                details={"wallet": wallet},
                error_message=str(e),
            )
            await self.db.commit()
            return ClaimResult(appointment_id=appointment["id"], success=False, error=str(e))

        await AppointmentService(self.db).record_side_effects(
            appointment["id"],
            ledger_owner_address=wallet,
            ledger_claim_ref=receipt.digest,
            ledger_claimed_at=datetime.now(UTC),
        )
        await AuditService.record(
            self.db,
            action=AuditAction.APPOINTMENT_CLAIMED,
            resource_type=AuditResourceType.LEDGER,
            outcome=AuditOutcome.SUCCESS,
            resource_id=appointment["id"],
            actor_id=appointment["patient_id"],
            details={"wallet": wallet, "transaction_reference": receipt.digest},
        )
        await self.db.commit()

        return ClaimResult(
            appointment_id=appointment["id"],
            success=True,
            transaction_reference=receipt.digest,
        )
