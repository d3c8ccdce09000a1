"""Stripe payment gateway client."""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import stripe
import structlog

from app.config import settings
from app.core.exceptions import BadRequestException, PaymentGatewayException, WebhookSignatureException
from app.core.policies import FeeBreakdown
from app.schemas.webhooks import PaymentEvent

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class PaymentIntentResult:
    """Payment intent created for a booking."""

    id: str
    client_secret: str | None
    split: bool


@dataclass(frozen=True)
class RefundResult:
    """Refund issued against a payment intent."""

    id: str
    amount: int
    status: str | None


class StripePaymentGateway:
    """
    Stateless wrapper around the Stripe API.

    The API key is passed on every call instead of being set on the module,
    so several gateways (and test fakes) can coexist in one process.
    """

    TRANSFER_CAPABILITY_ERROR = "insufficient_capabilities_for_transfer"

    def __init__(
        self,
        api_key: str,
        currency: str = "usd",
        timeout: float | None = None,
    ):
        """Initialize gateway with API key, currency and per-call timeout."""
        self.api_key = api_key
        self.currency = currency
        self.timeout = timeout or settings.external_call_timeout_seconds

    async def _call(self, operation: Callable[..., Any], *args: Any, **params: Any) -> Any:
        """Run a blocking Stripe call in a worker thread with a timeout."""
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(operation, *args, api_key=self.api_key, **params),
                timeout=self.timeout,
            )
        except TimeoutError as e:
            raise PaymentGatewayException("Payment gateway timed out") from e
        except stripe.StripeError as e:
            raise PaymentGatewayException(
                e.user_message or str(e) or "Payment gateway error",
                gateway_code=e.code,
            ) from e

    async def create_payment_intent(
        self,
        fees: FeeBreakdown,
        metadata: dict[str, str],
        idempotency_key: str,
        payout_account_id: str | None = None,
    ) -> PaymentIntentResult:
        """
        Create a payment intent for a booking.

        With a payout account the intent routes the doctor's share to the
        connected account and keeps the platform fee. Without one, or when the
        account cannot receive transfers yet, a plain intent is created and
        the payout is settled manually.

        Args:
            fees: Price split of the appointment
            metadata: Metadata echoed back in webhook events
            idempotency_key: Key derived from the appointment id
            payout_account_id: Doctor's connected account, if any

        Returns:
            Created payment intent

        Raises:
            PaymentGatewayException: If the gateway rejects the request
        """
        base_params: dict[str, Any] = {
            "amount": fees.total,
            "currency": self.currency,
            "automatic_payment_methods": {"enabled": True},
        }

        if payout_account_id:
            try:
                intent = await self._call(
                    stripe.PaymentIntent.create,
                    **base_params,
                    metadata=metadata,
                    application_fee_amount=fees.platform_fee,
                    transfer_data={"destination": payout_account_id},
                    idempotency_key=f"{idempotency_key}:split",
                )
                return PaymentIntentResult(
                    id=intent["id"], client_secret=intent.get("client_secret"), split=True
                )
            except PaymentGatewayException as e:
                if e.gateway_code != self.TRANSFER_CAPABILITY_ERROR:
                    raise
                logger.info(
                    "payout_account_not_ready_using_plain_intent",
                    appointment_id=metadata.get("appointment_id"),
                    payout_account_id=payout_account_id,
                )

        intent = await self._call(
            stripe.PaymentIntent.create,
            **base_params,
            metadata={**metadata, "note": "manual payout required"},
            idempotency_key=f"{idempotency_key}:plain",
        )
        return PaymentIntentResult(
            id=intent["id"], client_secret=intent.get("client_secret"), split=False
        )

    async def create_refund(
        self,
        payment_intent_id: str,
        amount: int,
        idempotency_key: str,
        reason: str = "requested_by_customer",
    ) -> RefundResult:
        """
        Refund part or all of a captured payment.

        Raises:
            PaymentGatewayException: If the gateway rejects the refund
        """
        refund = await self._call(
            stripe.Refund.create,
            payment_intent=payment_intent_id,
            amount=amount,
            reason=reason,
            idempotency_key=idempotency_key,
        )
        return RefundResult(id=refund["id"], amount=refund.get("amount", amount), status=refund.get("status"))

    async def cancel_payment_intent(
        self,
        payment_intent_id: str,
        idempotency_key: str,
        reason: str = "abandoned",
    ) -> str | None:
        """
        Cancel an unpaid payment intent so it can no longer be charged.

        Returns:
            Status reported by the gateway

        Raises:
            PaymentGatewayException: If the gateway refuses, e.g. the intent
                already succeeded
        """
        intent = await self._call(
            stripe.PaymentIntent.cancel,
            payment_intent_id,
            cancellation_reason=reason,
            idempotency_key=idempotency_key,
        )
        return intent.get("status")


class StripeWebhookVerifier:
    """Authenticates webhook deliveries with the endpoint's signing secret."""

    def __init__(self, webhook_secret: str, tolerance: int | None = None):
        """Initialize verifier with signing secret and timestamp tolerance."""
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance or settings.stripe_webhook_tolerance_seconds

    def verify(self, payload: bytes, signature: str | None) -> PaymentEvent:
        """
        Verify signature and parse the event envelope.

        Args:
            payload: Raw request body
            signature: Value of the ``Stripe-Signature`` header

        Returns:
            Parsed payment event

        Raises:
            WebhookSignatureException: If signature is missing or invalid
            BadRequestException: If the payload is not a valid event
        """
        if not signature:
            raise WebhookSignatureException("No signature provided")

        if not self.webhook_secret:
            raise WebhookSignatureException("Webhook signing secret is not configured")

        try:
            stripe.Webhook.construct_event(
                payload, signature, self.webhook_secret, tolerance=self.tolerance
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureException("Invalid signature") from e
        except ValueError as e:
            raise BadRequestException("Invalid webhook payload") from e

        try:
            return PaymentEvent.model_validate_json(payload)
        except ValueError as e:
            raise BadRequestException("Invalid webhook payload") from e
