"""Reconciliation schemas."""

from pydantic import BaseModel

from app.schemas.appointments import AppointmentResponse


class ReconciliationReport(BaseModel):
    """Appointments whose side effects need attention."""

    orphaned_bookings: list[AppointmentResponse]
    ledger_failures: list[AppointmentResponse]


class PaymentIntentRetryResponse(BaseModel):
    """Result of re-requesting a payment intent for an orphaned booking."""

    appointment: AppointmentResponse
    client_secret: str | None
