"""Doctor lookups used by the booking and settlement workflows."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import DoctorNotEligibleException
from app.models.doctors import doctors


class DoctorService:
    """Service for doctor reads."""

    @staticmethod
    async def get_doctor_by_id(
        db: AsyncSession,
        doctor_id: UUID,
        for_update: bool = False,
    ) -> dict | None:
        """
        Get doctor by ID.

        Args:
            db: Database session
            doctor_id: Doctor ID
            for_update: Lock the doctor row for the rest of the transaction.
                Bookings for one doctor serialize on this lock.

        Returns:
            Doctor row or None
        """
        query = select(doctors).where(doctors.c.id == doctor_id)
        if for_update:
            query = query.with_for_update()

        result = await db.execute(query)
        doctor = result.mappings().first()
        return dict(doctor) if doctor else None

    @classmethod
    async def get_bookable_doctor(cls, db: AsyncSession, doctor_id: UUID) -> dict:
        """
        Get and lock a doctor who can accept bookings.

        Raises:
            DoctorNotEligibleException: If doctor is missing, unverified, or
                lacks a payout account where one is required
        """
        doctor = await cls.get_doctor_by_id(db, doctor_id, for_update=True)

        if doctor is None:
            raise DoctorNotEligibleException("Doctor not found", status_code=404)

        if not doctor["is_verified"]:
            raise DoctorNotEligibleException("Doctor not verified yet")

        if settings.require_payout_account and not doctor["payout_account_id"]:
            raise DoctorNotEligibleException("Doctor has not connected a payout account")

        return doctor
