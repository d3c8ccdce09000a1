"""Payment gateway webhook endpoint."""

from typing import Annotated

from fastapi import APIRouter, Header, Request, status

from app.dependencies import (
    DatabaseSession,
    EventRegistry,
    Ledger,
    PaymentGateway,
    SessionFactory,
    Supervisor,
    Video,
    WebhookVerifier,
)
from app.schemas.webhooks import WebhookAck
from app.services.confirmation_service import ConfirmationService
from app.services.webhook_service import WebhookService

router = APIRouter()


@router.post(
    "/payments",
    response_model=WebhookAck,
    status_code=status.HTTP_200_OK,
    tags=["Webhooks"],
    summary="Receive payment gateway events",
)
async def receive_payment_event(
    request: Request,
    db: DatabaseSession,
    verifier: WebhookVerifier,
    registry: EventRegistry,
    supervisor: Supervisor,
    session_factory: SessionFactory,
    video: Video,
    ledger: Ledger,
    gateway: PaymentGateway,
    stripe_signature: Annotated[str | None, Header(alias="Stripe-Signature")] = None,
) -> WebhookAck:
    """
    Verify and dispatch a payment event.

    The signature is checked against the raw body, so the body is read
    before any parsing. Confirmation work runs after the response.
    """
    payload = await request.body()

    service = WebhookService(
        db=db,
        verifier=verifier,
        registry=registry,
        supervisor=supervisor,
        confirmation=ConfirmationService(session_factory, video, ledger, gateway),
        gateway=gateway,
    )
    return await service.handle(payload, stripe_signature)
