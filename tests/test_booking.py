"""Tests for booking intake."""

import asyncio
from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from httpx import AsyncClient
from sqlalchemy import Insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import (
    PaymentGatewayException,
    SlotConflictException,
    ValidationException,
)
from app.models.appointments import appointments
from app.schemas.appointments import BookingRequest
from app.schemas.audit import AuditAction
from app.services.audit_service import AuditService
from app.services.booking_service import BookingService
from app.services.patient_service import PatientService
from tests.conftest import (
    IS_POSTGRES,
    FakePaymentGateway,
    TestSessionLocal,
    create_appointment,
    create_doctor,
    create_patient,
)


def booking_payload(doctor_id, starts_in: timedelta = timedelta(days=2), **overrides) -> dict:
    start = (datetime.now(UTC) + starts_in).replace(microsecond=0)
    payload = {
        "doctor_id": str(doctor_id),
        "patient_info": {
            "email": "john.doe@example.com",
            "full_name": "John Doe",
            "phone": "+1234567890",
        },
        "appointment_time": start.isoformat(),
        "duration_minutes": 30,
    }
    payload.update(overrides)
    return payload


@pytest.mark.asyncio
async def test_book_appointment(
    client: AsyncClient,
    db_session: AsyncSession,
    gateway: FakePaymentGateway,
) -> None:
    """Booking creates a pending appointment with a split payment intent."""
    doctor = await create_doctor(db_session)

    response = await client.post("/api/v1/appointments/", json=booking_payload(doctor["id"]))

    assert response.status_code == 201
    data = response.json()
    appointment = data["appointment"]
    assert appointment["status"] == "pending"
    assert appointment["price_cents"] == 7500
    assert appointment["platform_fee_cents"] == 900
    assert appointment["doctor_payout_cents"] == 6600
    assert appointment["payment_intent_id"] == "pi_test_1"
    assert appointment["version"] == 1
    assert data["client_secret"] == "pi_test_1_secret"
    assert data["fees"] == {"total": 7500, "platform_fee": 900, "doctor_payout": 6600}

    intent = gateway.intents[0]
    assert intent["idempotency_key"] == f"payment-intent:{appointment['id']}"
    assert intent["payout_account_id"] == "acct_test_doctor"
    assert intent["metadata"]["appointment_id"] == appointment["id"]
    assert intent["metadata"]["doctor_id"] == str(doctor["id"])

    assert await AuditService.count(db_session, AuditAction.APPOINTMENT_BOOKED) == 1
    assert await AuditService.count(db_session, AuditAction.PAYMENT_INTENT_CREATED) == 1


@pytest.mark.asyncio
async def test_book_reuses_patient_by_email(
    client: AsyncClient,
    db_session: AsyncSession,
) -> None:
    """An inline profile with a known email resolves to the existing patient."""
    doctor = await create_doctor(db_session)
    patient = await create_patient(db_session, email="returning@example.com")

    payload = booking_payload(doctor["id"])
    payload["patient_info"]["email"] = "Returning@Example.com"
    response = await client.post("/api/v1/appointments/", json=payload)

    assert response.status_code == 201
    assert response.json()["appointment"]["patient_id"] == str(patient["id"])


@pytest.mark.asyncio
async def test_book_with_unknown_patient_id(
    client: AsyncClient,
    db_session: AsyncSession,
) -> None:
    """An explicit patient id must exist."""
    doctor = await create_doctor(db_session)

    payload = booking_payload(doctor["id"], patient_id=str(uuid4()))
    del payload["patient_info"]
    response = await client.post("/api/v1/appointments/", json=payload)

    assert response.status_code == 404
    assert response.json()["message"] == "Patient not found"


@pytest.mark.asyncio
async def test_book_unknown_doctor(client: AsyncClient, db_session: AsyncSession) -> None:
    """Booking an unknown doctor returns 404."""
    response = await client.post("/api/v1/appointments/", json=booking_payload(uuid4()))

    assert response.status_code == 404
    assert response.json()["code"] == "doctor_not_eligible"


@pytest.mark.asyncio
async def test_book_unverified_doctor(
    client: AsyncClient,
    db_session: AsyncSession,
    gateway: FakePaymentGateway,
) -> None:
    """Unverified doctors cannot be booked."""
    doctor = await create_doctor(db_session, is_verified=False)

    response = await client.post("/api/v1/appointments/", json=booking_payload(doctor["id"]))

    assert response.status_code == 409
    assert response.json()["message"] == "Doctor not verified yet"
    assert gateway.intents == []


@pytest.mark.asyncio
async def test_book_in_the_past(client: AsyncClient, db_session: AsyncSession) -> None:
    """Start times in the past are rejected."""
    doctor = await create_doctor(db_session)

    response = await client.post(
        "/api/v1/appointments/",
        json=booking_payload(doctor["id"], starts_in=timedelta(hours=-1)),
    )

    assert response.status_code == 422
    assert response.json()["message"] == "Cannot book appointments in the past"


@pytest.mark.asyncio
async def test_book_beyond_horizon(client: AsyncClient, db_session: AsyncSession) -> None:
    """Start times beyond the booking horizon are rejected."""
    doctor = await create_doctor(db_session)

    response = await client.post(
        "/api/v1/appointments/",
        json=booking_payload(doctor["id"], starts_in=timedelta(days=120)),
    )

    assert response.status_code == 422
    assert "days in advance" in response.json()["message"]


@pytest.mark.asyncio
async def test_book_requires_patient(client: AsyncClient, db_session: AsyncSession) -> None:
    """Either patient id or patient info is required."""
    payload = booking_payload(uuid4())
    del payload["patient_info"]

    response = await client.post("/api/v1/appointments/", json=payload)

    assert response.status_code == 422
    assert response.json()["code"] == "validation_error"


@pytest.mark.asyncio
async def test_book_rejects_naive_datetime(client: AsyncClient, db_session: AsyncSession) -> None:
    """Appointment times must carry a timezone offset."""
    payload = booking_payload(uuid4())
    payload["appointment_time"] = "2030-01-01T10:00:00"

    response = await client.post("/api/v1/appointments/", json=payload)

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "validation_error"
    assert "timezone" in body["details"][0]["msg"]


@pytest.mark.asyncio
async def test_book_rejects_blank_patient_name(client: AsyncClient, db_session: AsyncSession) -> None:
    """Custom field validators are reported as validation errors."""
    payload = booking_payload(uuid4())
    payload["patient_info"]["full_name"] = "   "

    response = await client.post("/api/v1/appointments/", json=payload)

    assert response.status_code == 422
    body = response.json()
    assert body["code"] == "validation_error"
    assert body["details"][0]["loc"][-1] == "full_name"


@pytest.mark.asyncio
async def test_double_booking_rejected(
    client: AsyncClient,
    db_session: AsyncSession,
    gateway: FakePaymentGateway,
) -> None:
    """An overlapping window for the same doctor is a slot conflict."""
    doctor = await create_doctor(db_session)
    patient = await create_patient(db_session)
    existing = await create_appointment(db_session, doctor, patient)

    overlapping = existing["appointment_at"] + timedelta(minutes=15)
    payload = booking_payload(doctor["id"], appointment_time=overlapping.isoformat())
    response = await client.post("/api/v1/appointments/", json=payload)

    assert response.status_code == 409
    assert response.json()["code"] == "slot_conflict"
    assert gateway.intents == []


@pytest.mark.asyncio
async def test_adjacent_slots_do_not_conflict(
    client: AsyncClient,
    db_session: AsyncSession,
) -> None:
    """A booking may start exactly when the previous one ends."""
    doctor = await create_doctor(db_session)
    patient = await create_patient(db_session)
    existing = await create_appointment(db_session, doctor, patient)

    payload = booking_payload(doctor["id"], appointment_time=existing["ends_at"].isoformat())
    response = await client.post("/api/v1/appointments/", json=payload)

    assert response.status_code == 201


@pytest.mark.asyncio
async def test_cancelled_slot_can_be_rebooked(
    client: AsyncClient,
    db_session: AsyncSession,
) -> None:
    """Cancelled appointments free their window."""
    doctor = await create_doctor(db_session)
    patient = await create_patient(db_session)
    existing = await create_appointment(db_session, doctor, patient, status="cancelled")

    payload = booking_payload(
        doctor["id"], appointment_time=existing["appointment_at"].isoformat()
    )
    response = await client.post("/api/v1/appointments/", json=payload)

    assert response.status_code == 201


@pytest.mark.asyncio
async def test_payment_intent_failure_leaves_orphan(
    client: AsyncClient,
    db_session: AsyncSession,
    gateway: FakePaymentGateway,
    admin_headers: dict,
) -> None:
    """A gateway failure keeps the pending booking and records the error."""
    doctor = await create_doctor(db_session)
    gateway.fail_intents_with = PaymentGatewayException("Card network unavailable")

    response = await client.post("/api/v1/appointments/", json=booking_payload(doctor["id"]))

    assert response.status_code == 502
    assert response.json()["code"] == "payment_gateway_error"

    listing = (
        await client.get("/api/v1/appointments/", params={"doctor_id": str(doctor["id"])})
    ).json()
    assert listing["total"] == 1
    orphan = listing["items"][0]
    assert orphan["status"] == "pending"
    assert orphan["payment_intent_id"] is None
    assert orphan["payment_error"] == "Card network unavailable"

    report = await client.get(
        "/api/v1/reconciliation/",
        params={"older_than_minutes": 0},
        headers=admin_headers,
    )
    assert [item["id"] for item in report.json()["orphaned_bookings"]] == [orphan["id"]]


@pytest.mark.asyncio
async def test_plain_intent_without_payout_account(
    client: AsyncClient,
    db_session: AsyncSession,
    gateway: FakePaymentGateway,
) -> None:
    """Doctors without a payout account still get bookings, settled manually."""
    doctor = await create_doctor(db_session, payout_account_id=None)

    response = await client.post("/api/v1/appointments/", json=booking_payload(doctor["id"]))

    assert response.status_code == 201
    assert gateway.intents[0]["payout_account_id"] is None


@pytest.mark.asyncio
async def test_list_appointments_filters(client: AsyncClient, db_session: AsyncSession) -> None:
    """Listing filters by status and upcoming window."""
    doctor = await create_doctor(db_session)
    patient = await create_patient(db_session)
    await create_appointment(db_session, doctor, patient, starts_in=timedelta(days=1))
    await create_appointment(
        db_session, doctor, patient, starts_in=timedelta(days=3), status="cancelled"
    )
    await create_appointment(
        db_session, doctor, patient, starts_in=timedelta(days=-1), status="completed"
    )

    confirmed = (await client.get("/api/v1/appointments/", params={"status": "confirmed"})).json()
    assert confirmed["total"] == 1

    upcoming = (await client.get("/api/v1/appointments/", params={"upcoming": "true"})).json()
    assert upcoming["total"] == 1
    assert upcoming["items"][0]["status"] == "confirmed"

    paged = (await client.get("/api/v1/appointments/", params={"page_size": 2})).json()
    assert paged["total"] == 3
    assert len(paged["items"]) == 2


@pytest.mark.asyncio
async def test_get_appointment_not_found(client: AsyncClient, db_session: AsyncSession) -> None:
    """Unknown appointment ids return 404."""
    response = await client.get(f"/api/v1/appointments/{uuid4()}")

    assert response.status_code == 404
    assert response.json()["message"] == "Appointment not found"


@pytest.mark.asyncio
@pytest.mark.skipif(not IS_POSTGRES, reason="row locks need PostgreSQL")
async def test_concurrent_bookings_for_same_slot(db_session: AsyncSession) -> None:
    """Of two simultaneous bookings for one window exactly one succeeds."""
    doctor = await create_doctor(db_session)
    start = datetime.now(UTC) + timedelta(days=2)

    async def attempt(email: str):
        request = BookingRequest(
            doctor_id=doctor["id"],
            patient_info={"email": email, "full_name": "Concurrent Patient"},
            appointment_time=start,
        )
        async with TestSessionLocal() as session:
            return await BookingService(session, FakePaymentGateway()).book(request)

    results = await asyncio.gather(
        attempt("first@example.com"),
        attempt("second@example.com"),
        return_exceptions=True,
    )

    conflicts = [r for r in results if isinstance(r, SlotConflictException)]
    bookings = [r for r in results if not isinstance(r, Exception)]
    assert len(conflicts) == 1
    assert len(bookings) == 1


@pytest.mark.asyncio
async def test_resolve_patient_requires_id_or_info(db_session: AsyncSession) -> None:
    """Calling the service without any patient reference is a validation error."""
    with pytest.raises(ValidationException) as exc_info:
        await PatientService.resolve_patient(db_session, None, None)

    assert exc_info.value.message == "Patient ID or patient info is required"
    assert exc_info.value.status_code == 422


@pytest.mark.asyncio
async def test_overlap_constraint_violation_is_slot_conflict(
    db_session: AsyncSession,
    gateway: FakePaymentGateway,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """An insert rejected by the overlap constraint is reported as a slot conflict."""
    doctor = await create_doctor(db_session)
    execute = db_session.execute

    async def reject_appointment_insert(statement, *args, **kwargs):
        if isinstance(statement, Insert) and statement.table is appointments:
            raise IntegrityError(
                "INSERT INTO appointments", {}, Exception("appointments_no_overlap")
            )
        return await execute(statement, *args, **kwargs)

    monkeypatch.setattr(db_session, "execute", reject_appointment_insert)

    request = BookingRequest(
        doctor_id=doctor["id"],
        patient_info={"email": "late@example.com", "full_name": "Late Patient"},
        appointment_time=datetime.now(UTC) + timedelta(days=2),
    )

    with pytest.raises(SlotConflictException):
        await BookingService(db_session, gateway).book(request)

    assert gateway.intents == []
