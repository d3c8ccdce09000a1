"""Payment gateway webhook payloads."""

from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.schemas.common import Money


class PaymentEventKind(str, Enum):
    """How the orchestrator reacts to an incoming gateway event."""

    SUCCEEDED = "succeeded"
    FAILED = "failed"
    IGNORED = "ignored"


# Gateway-native event names and their generic aliases
EVENT_KINDS: dict[str, PaymentEventKind] = {
    "payment_intent.succeeded": PaymentEventKind.SUCCEEDED,
    "payment.succeeded": PaymentEventKind.SUCCEEDED,
    "payment_intent.payment_failed": PaymentEventKind.FAILED,
    "payment.failed": PaymentEventKind.FAILED,
}


class PaymentMetadata(BaseModel):
    """Metadata attached to the payment intent at booking time."""

    model_config = ConfigDict(extra="allow")

    appointment_id: UUID | None = None
    doctor_id: UUID | None = None
    patient_id: UUID | None = None

    @field_validator("appointment_id", "doctor_id", "patient_id", mode="before")
    @classmethod
    def blank_to_none(cls, v: Any) -> Any:
        """Gateways send empty strings for unset metadata keys."""
        if v == "":
            return None
        return v


class PaymentObject(BaseModel):
    """The ``data.object`` of a payment event."""

    model_config = ConfigDict(extra="allow")

    id: str
    amount: Money = 0
    metadata: PaymentMetadata = Field(default_factory=PaymentMetadata)


class PaymentEventData(BaseModel):
    """The ``data`` member of an event envelope."""

    model_config = ConfigDict(extra="allow")

    object: dict[str, Any]


class PaymentEvent(BaseModel):
    """Gateway event envelope."""

    model_config = ConfigDict(extra="allow")

    id: str
    type: str
    data: PaymentEventData

    @property
    def kind(self) -> PaymentEventKind:
        """Classify the event type."""
        return EVENT_KINDS.get(self.type, PaymentEventKind.IGNORED)

    def payment(self) -> PaymentObject:
        """Parse ``data.object`` as a payment object."""
        return PaymentObject.model_validate(self.data.object)


class WebhookAck(BaseModel):
    """Acknowledgement returned to the gateway."""

    received: bool = True
    duplicate: bool = False
