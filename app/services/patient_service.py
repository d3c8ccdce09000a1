"""Patient lookups and inline patient creation."""

from datetime import UTC, datetime
from uuid import UUID

import structlog
from sqlalchemy import func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundException, ValidationException
from app.models.patients import patients
from app.schemas.appointments import PatientInfo

logger = structlog.get_logger(__name__)


class PatientService:
    """Service for patient records."""

    @staticmethod
    async def get_patient_by_id(db: AsyncSession, patient_id: UUID) -> dict | None:
        """Get patient by ID."""
        result = await db.execute(select(patients).where(patients.c.id == patient_id))
        patient = result.mappings().first()
        return dict(patient) if patient else None

    @staticmethod
    async def get_patient_by_email(db: AsyncSession, email: str) -> dict | None:
        """Get patient by email, case-insensitively."""
        result = await db.execute(
            select(patients).where(func.lower(patients.c.email) == email.lower())
        )
        patient = result.mappings().first()
        return dict(patient) if patient else None

    @classmethod
    async def resolve_patient(
        cls,
        db: AsyncSession,
        patient_id: UUID | None,
        patient_info: PatientInfo | None,
    ) -> dict:
        """
        Resolve the patient of a booking.

        An explicit id wins; otherwise the inline profile is matched by email
        and a new patient is created when none exists. The insert joins the
        caller's transaction.

        Raises:
            NotFoundException: If an explicit patient id does not exist
            ValidationException: If neither id nor profile is given
        """
        if patient_id is not None:
            patient = await cls.get_patient_by_id(db, patient_id)
            if patient is None:
                raise NotFoundException("Patient not found")
            return patient

        if patient_info is None:
            raise ValidationException("Patient ID or patient info is required")

        existing = await cls.get_patient_by_email(db, patient_info.email)
        if existing:
            return existing

        now = datetime.now(UTC)
        result = await db.execute(
            insert(patients)
            .values(
                email=patient_info.email.lower(),
                full_name=patient_info.full_name,
                phone=patient_info.phone,
                date_of_birth=patient_info.date_of_birth,
                created_at=now,
                updated_at=now,
            )
            .returning(patients)
        )
        patient = dict(result.mappings().one())
        logger.info("patient_created", patient_id=str(patient["id"]))
        return patient
