"""Audit log enumerations and schemas."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel


class AuditOutcome(str, Enum):
    """Outcome of an audited action."""

    SUCCESS = "success"
    FAILURE = "failure"
    PENDING = "pending"


class AuditAction(str, Enum):
    """Side-effecting actions recorded in the audit log."""

    APPOINTMENT_BOOKED = "appointment_booked"
    PAYMENT_INTENT_CREATED = "payment_intent_created"
    PAYMENT_INTENT_CANCELLED = "payment_intent_cancelled"
    PAYMENT_PROCESSED = "payment_processed"
    PAYMENT_FAILED = "payment_failed"
    VIDEO_SESSION_PROVISIONED = "video_session_provisioned"
    VIDEO_SESSION_CLOSED = "video_session_closed"
    LEDGER_RECORDED = "ledger_recorded"
    APPOINTMENT_CANCELLED = "appointment_cancelled"
    REFUND_ISSUED = "refund_issued"
    LEDGER_CANCELLATION_RECORDED = "ledger_cancellation_recorded"
    APPOINTMENT_RESCHEDULED = "appointment_rescheduled"
    APPOINTMENT_CLAIMED = "appointment_claimed"


class AuditResourceType(str, Enum):
    """Kinds of audited resources."""

    APPOINTMENT = "appointment"
    PAYMENT = "payment"
    REFUND = "refund"
    VIDEO_SESSION = "video_session"
    LEDGER = "ledger"


class AuditLogResponse(BaseModel):
    """Audit log entry."""

    id: UUID
    actor_id: str | None
    action: str
    resource_type: str
    resource_id: UUID | None
    outcome: AuditOutcome
    details: dict[str, Any] | None
    error_message: str | None
    created_at: datetime

    model_config = {"from_attributes": True}
