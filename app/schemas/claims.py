"""Claim workflow schemas."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from app.schemas.common import LedgerAddress, Money


class ClaimRequest(BaseModel):
    """Schema for claiming ledger records."""

    appointment_ids: list[UUID] | None = Field(None, max_length=100)


class ClaimResult(BaseModel):
    """Outcome for one appointment."""

    appointment_id: UUID
    success: bool
    transaction_reference: str | None = None
    error: str | None = None


class ClaimResponse(BaseModel):
    """Per-appointment claim results."""

    claimed: int
    total: int
    results: list[ClaimResult]


class ClaimableAppointment(BaseModel):
    """Appointment whose ledger record can be transferred to the patient."""

    id: UUID
    doctor_id: UUID
    appointment_at: datetime
    duration_minutes: int
    price_cents: Money
    ledger_transaction_ref: str


class ClaimableAppointmentsResponse(BaseModel):
    """Claimable appointments and the patient's wallet state."""

    wallet_connected: bool
    ledger_address: LedgerAddress | None
    claimable: int
    appointments: list[ClaimableAppointment]
