"""Appointments table model using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    ForeignKey,
    Index,
    Integer,
    Table,
    Text,
    Uuid,
    func,
    text,
)

from app.models.base import UTCDateTime, metadata

# Appointments table
appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Ownership / references
    Column("doctor_id", Uuid, ForeignKey("doctors.id"), nullable=False),
    Column("patient_id", Uuid, ForeignKey("patients.id"), nullable=True),
    # Scheduling
    Column("appointment_at", UTCDateTime, nullable=False),
    Column("duration_minutes", Integer, nullable=False, server_default=text("30")),
    Column("ends_at", UTCDateTime, nullable=False),
    # Status management
    Column("status", Text, nullable=False, server_default="pending"),
    # Money, integer cents, fixed at creation
    Column("price_cents", Integer, nullable=False),
    Column("platform_fee_cents", Integer, nullable=False),
    Column("doctor_payout_cents", Integer, nullable=False),
    # Payment gateway
    Column("payment_intent_id", Text, nullable=True, unique=True),
    Column("payment_error", Text, nullable=True),
    # Video provider
    Column("video_room_name", Text, nullable=True),
    Column("video_room_sid", Text, nullable=True),
    # Ledger
    Column("ledger_transaction_ref", Text, nullable=True),
    Column("ledger_owner_address", Text, nullable=True),
    Column("ledger_recording_failed", Boolean, nullable=False, server_default=text("false")),
    Column("ledger_error_message", Text, nullable=True),
    Column("ledger_error_at", UTCDateTime, nullable=True),
    Column("ledger_retry_count", Integer, nullable=False, server_default=text("0")),
    Column("ledger_cancellation_ref", Text, nullable=True),
    Column("ledger_claim_ref", Text, nullable=True),
    Column("ledger_claimed_at", UTCDateTime, nullable=True),
    # Cancellation / refund
    Column("cancellation_reason", Text, nullable=True),
    Column("cancelled_by", Text, nullable=True),
    Column("cancelled_at", UTCDateTime, nullable=True),
    Column("refund_amount_cents", Integer, nullable=False, server_default=text("0")),
    Column("refund_reference", Text, nullable=True),
    Column("refund_error", Text, nullable=True),
    # Encrypted clinical note, opaque here
    Column("notes", Text, nullable=True),
    # Optimistic concurrency
    Column("version", Integer, nullable=False, server_default=text("1")),
    # Audit fields
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    Column("updated_at", UTCDateTime, nullable=False, server_default=func.now()),
    # Constraints
    CheckConstraint(
        "status IN ('pending', 'confirmed', 'rescheduled', 'cancelled', 'completed', 'no_show')",
        name="appointments_status_check",
    ),
    CheckConstraint(
        "price_cents = platform_fee_cents + doctor_payout_cents",
        name="appointments_price_split_check",
    ),
    CheckConstraint("refund_amount_cents <= price_cents", name="appointments_refund_cap_check"),
    Index("ix_appointments_doctor_window", "doctor_id", "appointment_at", "ends_at"),
    Index("ix_appointments_patient_status", "patient_id", "status"),
)
