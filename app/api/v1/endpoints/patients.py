"""Patient ledger claim endpoints."""

from uuid import UUID

from fastapi import APIRouter, status

from app.dependencies import DatabaseSession, Ledger
from app.schemas.claims import ClaimableAppointmentsResponse, ClaimRequest, ClaimResponse
from app.services.claim_service import ClaimService

router = APIRouter()


@router.post(
    "/{patient_id}/claim-appointments",
    response_model=ClaimResponse,
    status_code=status.HTTP_200_OK,
    tags=["Patients"],
    summary="Claim ledger records",
)
async def claim_appointments(
    patient_id: UUID,
    db: DatabaseSession,
    ledger: Ledger,
    data: ClaimRequest | None = None,
) -> ClaimResponse:
    """
    Transfer placeholder-owned ledger records to the patient's wallet.

    Args:
        patient_id: Patient ID
        db: Database session
        ledger: Ledger client
        data: Optional list of appointment IDs; all claimable when omitted

    Returns:
        Per-appointment claim results
    """
    service = ClaimService(db, ledger)
    appointment_ids = data.appointment_ids if data else None
    return await service.claim(patient_id, appointment_ids)


@router.get(
    "/{patient_id}/claimable-appointments",
    response_model=ClaimableAppointmentsResponse,
    status_code=status.HTTP_200_OK,
    tags=["Patients"],
    summary="List claimable appointments",
)
async def list_claimable_appointments(
    patient_id: UUID,
    db: DatabaseSession,
    ledger: Ledger,
) -> ClaimableAppointmentsResponse:
    """List confirmed appointments still owned by the placeholder identity."""
    service = ClaimService(db, ledger)
    return await service.list_claimable(patient_id)
