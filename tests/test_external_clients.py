"""Tests for the payment gateway, webhook verifier and video provider clients."""

from uuid import uuid4

import httpx
import pytest
import stripe

from app.core.exceptions import (
    BadRequestException,
    PaymentGatewayException,
    VideoProvisioningError,
    WebhookSignatureException,
)
from app.core.payment_gateway import StripePaymentGateway, StripeWebhookVerifier
from app.core.policies import FeeBreakdown
from app.core.video_provider import VideoProvider
from app.schemas.webhooks import PaymentEventKind
from tests.conftest import WEBHOOK_SECRET, payment_event, sign_payload

FEES = FeeBreakdown(total=7500, platform_fee=900, doctor_payout=6600)


@pytest.fixture
def intent_calls(monkeypatch):
    calls: list[dict] = []

    def create(**params):
        calls.append(params)
        return {"id": f"pi_{len(calls)}", "client_secret": f"secret_{len(calls)}"}

    monkeypatch.setattr(stripe.PaymentIntent, "create", create)
    return calls


@pytest.mark.asyncio
async def test_split_payment_intent(intent_calls):
    """With a payout account the doctor's share is routed to it."""
    gateway = StripePaymentGateway(api_key="sk_test")

    intent = await gateway.create_payment_intent(
        fees=FEES,
        metadata={"appointment_id": "a1"},
        idempotency_key="payment-intent:a1",
        payout_account_id="acct_doctor",
    )

    assert intent.split is True
    params = intent_calls[0]
    assert params["amount"] == 7500
    assert params["application_fee_amount"] == 900
    assert params["transfer_data"] == {"destination": "acct_doctor"}
    assert params["idempotency_key"] == "payment-intent:a1:split"
    assert params["api_key"] == "sk_test"


@pytest.mark.asyncio
async def test_falls_back_to_plain_intent(monkeypatch):
    """An account that cannot receive transfers yet gets a plain intent."""
    calls: list[dict] = []

    def create(**params):
        calls.append(params)
        if "transfer_data" in params:
            raise stripe.InvalidRequestError(
                "Destination cannot receive transfers",
                param="transfer_data[destination]",
                code="insufficient_capabilities_for_transfer",
            )
        return {"id": "pi_plain", "client_secret": "secret_plain"}

    monkeypatch.setattr(stripe.PaymentIntent, "create", create)
    gateway = StripePaymentGateway(api_key="sk_test")

    intent = await gateway.create_payment_intent(
        fees=FEES,
        metadata={"appointment_id": "a1"},
        idempotency_key="payment-intent:a1",
        payout_account_id="acct_new",
    )

    assert intent.id == "pi_plain"
    assert intent.split is False
    assert calls[1]["idempotency_key"] == "payment-intent:a1:plain"
    assert calls[1]["metadata"]["note"] == "manual payout required"
    assert "application_fee_amount" not in calls[1]


@pytest.mark.asyncio
async def test_gateway_errors_are_wrapped(monkeypatch):
    """Other gateway errors surface as PaymentGatewayException."""

    def create(**params):
        raise stripe.InvalidRequestError("Invalid currency", param="currency", code="invalid")

    monkeypatch.setattr(stripe.PaymentIntent, "create", create)
    gateway = StripePaymentGateway(api_key="sk_test")

    with pytest.raises(PaymentGatewayException) as exc_info:
        await gateway.create_payment_intent(
            fees=FEES,
            metadata={},
            idempotency_key="payment-intent:a1",
            payout_account_id="acct_doctor",
        )

    assert exc_info.value.gateway_code == "invalid"
    assert exc_info.value.status_code == 502


@pytest.mark.asyncio
async def test_create_refund(monkeypatch):
    """Refunds carry the caller's idempotency key."""
    calls: list[dict] = []

    def create(**params):
        calls.append(params)
        return {"id": "re_1", "amount": params["amount"], "status": "succeeded"}

    monkeypatch.setattr(stripe.Refund, "create", create)
    gateway = StripePaymentGateway(api_key="sk_test")

    refund = await gateway.create_refund("pi_1", 3750, idempotency_key="refund:cancel:a1")

    assert refund.id == "re_1"
    assert refund.amount == 3750
    assert calls[0]["payment_intent"] == "pi_1"
    assert calls[0]["idempotency_key"] == "refund:cancel:a1"


def test_verifier_parses_signed_event():
    """A correctly signed payload is parsed and classified."""
    appointment_id = uuid4()
    payload = payment_event("payment_intent.succeeded", appointment_id, event_id="evt_1")
    verifier = StripeWebhookVerifier(WEBHOOK_SECRET)

    event = verifier.verify(payload.encode(), sign_payload(payload))

    assert event.id == "evt_1"
    assert event.kind is PaymentEventKind.SUCCEEDED
    assert event.payment().metadata.appointment_id == appointment_id


def test_verifier_rejects_tampered_payload():
    """Changing the body after signing invalidates the signature."""
    payload = payment_event("payment_intent.succeeded", uuid4())
    signature = sign_payload(payload)
    verifier = StripeWebhookVerifier(WEBHOOK_SECRET)

    with pytest.raises(WebhookSignatureException):
        verifier.verify(payload.replace("7500", "1").encode(), signature)


def test_verifier_rejects_non_json():
    """A signed body that is not JSON is a bad request."""
    payload = "not json"
    verifier = StripeWebhookVerifier(WEBHOOK_SECRET)

    with pytest.raises(BadRequestException):
        verifier.verify(payload.encode(), sign_payload(payload))


def test_event_kind_aliases():
    """Generic event names map onto the same kinds."""
    verifier = StripeWebhookVerifier(WEBHOOK_SECRET)

    for event_type, kind in [
        ("payment.succeeded", PaymentEventKind.SUCCEEDED),
        ("payment.failed", PaymentEventKind.FAILED),
        ("payment_intent.payment_failed", PaymentEventKind.FAILED),
        ("charge.refunded", PaymentEventKind.IGNORED),
    ]:
        payload = payment_event(event_type, uuid4())
        assert verifier.verify(payload.encode(), sign_payload(payload)).kind is kind


def video_provider(handler) -> VideoProvider:
    return VideoProvider(
        base_url="https://video.test",
        api_key_sid="SK123",
        api_key_secret="secret",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_video_room_created():
    """Rooms are named after the appointment and limited to two participants."""
    appointment_id = uuid4()
    forms: list[bytes] = []

    def handler(request: httpx.Request) -> httpx.Response:
        forms.append(request.content)
        return httpx.Response(201, json={"sid": "RM1", "unique_name": str(appointment_id)})

    provider = video_provider(handler)
    session = await provider.create_room(appointment_id)
    await provider.close()

    assert session.room_name == str(appointment_id)
    assert session.room_sid == "RM1"
    assert b"MaxParticipants=2" in forms[0]


@pytest.mark.asyncio
async def test_video_room_already_exists():
    """A repeated create returns the existing room."""
    appointment_id = uuid4()

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "POST":
            return httpx.Response(400, json={"code": 53113, "message": "Room exists"})
        assert request.url.path == f"/v1/Rooms/{appointment_id}"
        return httpx.Response(200, json={"sid": "RM_existing", "unique_name": str(appointment_id)})

    provider = video_provider(handler)
    session = await provider.create_room(appointment_id)
    await provider.close()

    assert session.room_sid == "RM_existing"


@pytest.mark.asyncio
async def test_video_provider_failure():
    """Provider errors become VideoProvisioningError."""

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    provider = video_provider(handler)

    with pytest.raises(VideoProvisioningError, match="503"):
        await provider.create_room(uuid4())
    await provider.close()


@pytest.mark.asyncio
async def test_video_room_closed():
    """Closing a room marks it completed."""
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"sid": "RM1", "status": "completed"})

    provider = video_provider(handler)
    await provider.close_room("RM1")
    await provider.close()

    assert requests[0].url.path == "/v1/Rooms/RM1"
    assert requests[0].content == b"Status=completed"


@pytest.mark.asyncio
async def test_cancel_payment_intent(monkeypatch):
    """Unpaid intents are cancelled by id with the caller's idempotency key."""
    calls: list[tuple] = []

    def cancel(intent, **params):
        calls.append((intent, params))
        return {"id": intent, "status": "canceled"}

    monkeypatch.setattr(stripe.PaymentIntent, "cancel", cancel)
    gateway = StripePaymentGateway(api_key="sk_test")

    status = await gateway.cancel_payment_intent("pi_1", idempotency_key="payment-intent:a1:cancel")

    assert status == "canceled"
    intent, params = calls[0]
    assert intent == "pi_1"
    assert params["cancellation_reason"] == "abandoned"
    assert params["idempotency_key"] == "payment-intent:a1:cancel"
    assert params["api_key"] == "sk_test"


@pytest.mark.asyncio
async def test_cancel_succeeded_intent_is_wrapped(monkeypatch):
    """Cancelling an intent that was already paid surfaces as a gateway error."""

    def cancel(intent, **params):
        raise stripe.InvalidRequestError(
            "This PaymentIntent's status is succeeded",
            param="intent",
            code="payment_intent_unexpected_state",
        )

    monkeypatch.setattr(stripe.PaymentIntent, "cancel", cancel)
    gateway = StripePaymentGateway(api_key="sk_test")

    with pytest.raises(PaymentGatewayException) as exc_info:
        await gateway.cancel_payment_intent("pi_1", idempotency_key="payment-intent:a1:cancel")

    assert exc_info.value.gateway_code == "payment_intent_unexpected_state"
