"""Appointment schemas for request/response validation."""

from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator

from app.schemas.common import Money


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    PENDING = "pending"
    CONFIRMED = "confirmed"
    RESCHEDULED = "rescheduled"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


def _require_timezone(value: datetime) -> datetime:
    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("Datetime must include a timezone offset")
    return value


class PatientInfo(BaseModel):
    """Inline patient profile supplied with a booking."""

    email: EmailStr
    full_name: str = Field(..., min_length=1, max_length=200)
    phone: str | None = Field(None, min_length=7, max_length=20)
    date_of_birth: date | None = None

    @field_validator("full_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        """Strip surrounding whitespace from the name."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("Full name must not be blank")
        return stripped

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v: str | None) -> str | None:
        """Validate phone number format."""
        if v is None:
            return v
        # Remove common separators
        cleaned = (
            v.replace("-", "").replace(" ", "").replace("(", "").replace(")", "").replace("+", "")
        )
        if not cleaned.isdigit():
            raise ValueError("Phone number must contain only digits and separators")
        if len(cleaned) < 7:
            raise ValueError("Phone number must have at least 7 digits")
        return v


class BookingRequest(BaseModel):
    """Schema for booking a paid consultation."""

    doctor_id: UUID
    patient_id: UUID | None = None
    patient_info: PatientInfo | None = None
    appointment_time: datetime
    duration_minutes: int = Field(default=30, ge=15, le=240)

    @field_validator("appointment_time")
    @classmethod
    def validate_timezone(cls, v: datetime) -> datetime:
        """Reject naive datetimes."""
        return _require_timezone(v)

    @model_validator(mode="after")
    def require_patient(self) -> "BookingRequest":
        """Either an existing patient id or an inline profile is required."""
        if self.patient_id is None and self.patient_info is None:
            raise ValueError("Patient ID or patient info is required")
        return self


class FeesResponse(BaseModel):
    """Price split returned to the booking caller."""

    total: Money
    platform_fee: Money
    doctor_payout: Money


class AppointmentResponse(BaseModel):
    """Schema for appointment response."""

    id: UUID
    doctor_id: UUID
    patient_id: UUID | None
    appointment_at: datetime
    duration_minutes: int
    ends_at: datetime
    status: AppointmentStatus
    price_cents: Money
    platform_fee_cents: Money
    doctor_payout_cents: Money
    payment_intent_id: str | None = None
    payment_error: str | None = None
    video_room_name: str | None = None
    video_room_sid: str | None = None
    ledger_transaction_ref: str | None = None
    ledger_owner_address: str | None = None
    ledger_recording_failed: bool = False
    ledger_error_message: str | None = None
    ledger_error_at: datetime | None = None
    ledger_retry_count: int = 0
    ledger_cancellation_ref: str | None = None
    ledger_claim_ref: str | None = None
    ledger_claimed_at: datetime | None = None
    cancellation_reason: str | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None
    refund_amount_cents: Money = 0
    refund_reference: str | None = None
    refund_error: str | None = None
    version: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    """Schema returned after a booking has a payment intent."""

    appointment: AppointmentResponse
    client_secret: str | None
    fees: FeesResponse


class CancelRequest(BaseModel):
    """Schema for cancelling an appointment."""

    reason: str = Field(..., min_length=1, max_length=500)
    cancelled_by: str = Field(..., min_length=1, max_length=100)


class RescheduleRequest(BaseModel):
    """Schema for rescheduling an appointment."""

    new_date_time: datetime

    @field_validator("new_date_time")
    @classmethod
    def validate_timezone(cls, v: datetime) -> datetime:
        """Reject naive datetimes."""
        return _require_timezone(v)


class RefundDetails(BaseModel):
    """Refund computed and issued for a cancellation or reschedule."""

    amount: Money
    percentage: int = Field(..., ge=0, le=100)
    refund_reference: str | None = None


class AppointmentRefundResponse(BaseModel):
    """Appointment plus the refund applied to it."""

    appointment: AppointmentResponse
    refund: RefundDetails


class AppointmentListResponse(BaseModel):
    """Schema for paginated appointment list response."""

    total: int
    page: int
    page_size: int
    items: list[AppointmentResponse]


class AppointmentFilters(BaseModel):
    """Schema for appointment filtering."""

    status: AppointmentStatus | None = None
    doctor_id: UUID | None = None
    patient_id: UUID | None = None
    upcoming: bool = False
    from_date: datetime | None = None
    to_date: datetime | None = None
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


def to_response(row: Any) -> AppointmentResponse:
    """Build a response model from a row mapping."""
    return AppointmentResponse.model_validate(dict(row))
