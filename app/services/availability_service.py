"""Doctor availability validation."""

from datetime import UTC, datetime, timedelta
from uuid import UUID

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import SlotConflictException, ValidationException
from app.models.appointments import appointments
from app.schemas.appointments import AppointmentStatus


class AvailabilityService:
    """
    Checks a requested window against the doctor's existing appointments.

    Callers must hold the doctor's row lock (see
    ``DoctorService.get_bookable_doctor``) in the same transaction that
    inserts or moves the appointment; the check alone is not enough to
    prevent double booking.
    """

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    @staticmethod
    def validate_window(start: datetime, now: datetime | None = None) -> None:
        """
        Validate the requested start time against booking horizon rules.

        Raises:
            ValidationException: If the time is in the past or too far ahead
        """
        now = now or datetime.now(UTC)

        if start <= now:
            raise ValidationException("Cannot book appointments in the past")

        if start > now + timedelta(days=settings.booking_max_advance_days):
            raise ValidationException(
                f"Cannot book appointments more than {settings.booking_max_advance_days} days in advance"
            )

    async def find_conflicts(
        self,
        doctor_id: UUID,
        start: datetime,
        duration_minutes: int,
        exclude_appointment_id: UUID | None = None,
    ) -> list[UUID]:
        """
        Find non-cancelled appointments overlapping ``[start, start + duration)``.

        Returns:
            IDs of conflicting appointments
        """
        end = start + timedelta(minutes=duration_minutes)
        conditions = [
            appointments.c.doctor_id == doctor_id,
            appointments.c.status != AppointmentStatus.CANCELLED.value,
            appointments.c.appointment_at < end,
            appointments.c.ends_at > start,
        ]
        if exclude_appointment_id is not None:
            conditions.append(appointments.c.id != exclude_appointment_id)

        result = await self.db.execute(select(appointments.c.id).where(and_(*conditions)))
        return list(result.scalars().all())

    async def validate(
        self,
        doctor_id: UUID,
        start: datetime,
        duration_minutes: int,
        exclude_appointment_id: UUID | None = None,
    ) -> None:
        """
        Ensure the doctor is free for the requested window.

        Raises:
            SlotConflictException: If the window overlaps another appointment
        """
        conflicts = await self.find_conflicts(
            doctor_id, start, duration_minutes, exclude_appointment_id
        )
        if conflicts:
            raise SlotConflictException()
