"""Appointment persistence: reads, status transitions and side-effect fields."""

from datetime import UTC, datetime, timedelta
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ConcurrencyConflictException, NotFoundException
from app.core.lifecycle import ACTIVE_STATUSES, PAID_STATUSES, ensure_transition
from app.models.appointments import appointments
from app.schemas.appointments import (
    AppointmentFilters,
    AppointmentListResponse,
    AppointmentStatus,
    to_response,
)


class AppointmentService:
    """Service for reading and mutating appointment rows."""

    def __init__(self, db: AsyncSession):
        """Initialize service with database session."""
        self.db = db

    async def find(self, appointment_id: UUID, for_update: bool = False) -> dict | None:
        """
        Load an appointment row.

        Args:
            appointment_id: Appointment ID
            for_update: Lock the row until the current transaction ends

        Returns:
            Row as a dict, or None
        """
        stmt = select(appointments).where(appointments.c.id == appointment_id)
        if for_update:
            stmt = stmt.with_for_update()

        result = await self.db.execute(stmt)
        row = result.mappings().first()
        return dict(row) if row else None

    async def get(self, appointment_id: UUID, for_update: bool = False) -> dict:
        """
        Load an appointment row or fail.

        Raises:
            NotFoundException: If appointment not found
        """
        appointment = await self.find(appointment_id, for_update=for_update)
        if appointment is None:
            raise NotFoundException("Appointment not found")
        return appointment

    async def list_appointments(self, filters: AppointmentFilters) -> AppointmentListResponse:
        """
        List appointments with filtering and pagination.

        Args:
            filters: Filter and pagination parameters

        Returns:
            Paginated list of appointments
        """
        conditions = []

        if filters.status:
            conditions.append(appointments.c.status == filters.status.value)

        if filters.upcoming:
            conditions.append(appointments.c.status.in_([s.value for s in ACTIVE_STATUSES]))
            conditions.append(appointments.c.appointment_at >= datetime.now(UTC))

        if filters.doctor_id:
            conditions.append(appointments.c.doctor_id == filters.doctor_id)

        if filters.patient_id:
            conditions.append(appointments.c.patient_id == filters.patient_id)

        if filters.from_date:
            conditions.append(appointments.c.appointment_at >= filters.from_date)

        if filters.to_date:
            conditions.append(appointments.c.appointment_at <= filters.to_date)

        where = and_(*conditions) if conditions else None

        count_stmt = select(func.count()).select_from(appointments)
        if where is not None:
            count_stmt = count_stmt.where(where)
        total = (await self.db.execute(count_stmt)).scalar() or 0

        offset = (filters.page - 1) * filters.page_size
        stmt = select(appointments)
        if where is not None:
            stmt = stmt.where(where)
        stmt = (
            stmt.order_by(appointments.c.appointment_at.asc())
            .limit(filters.page_size)
            .offset(offset)
        )

        result = await self.db.execute(stmt)
        items = [to_response(row) for row in result.mappings().all()]

        return AppointmentListResponse(
            total=total,
            page=filters.page,
            page_size=filters.page_size,
            items=items,
        )

    async def transition(
        self,
        appointment: dict,
        target: AppointmentStatus,
        **values: Any,
    ) -> dict:
        """
        Move an appointment to ``target`` status with compare-and-set.

        The update only applies if the row still has the version that was
        read, so two workflows racing on the same appointment cannot both
        win. The caller owns the commit.

        Args:
            appointment: Row previously read
            target: New status
            values: Additional columns to set

        Returns:
            Updated row

        Raises:
            InvalidStateTransitionException: If the transition is not allowed
            ConcurrencyConflictException: If the row changed since it was read
        """
        ensure_transition(appointment["status"], target)

        stmt = (
            update(appointments)
            .where(
                and_(
                    appointments.c.id == appointment["id"],
                    appointments.c.version == appointment["version"],
                )
            )
            .values(
                status=target.value,
                version=appointments.c.version + 1,
                updated_at=datetime.now(UTC),
                **values,
            )
            .returning(appointments)
        )

        result = await self.db.execute(stmt)
        row = result.mappings().first()
        if row is None:
            raise ConcurrencyConflictException()
        return dict(row)

    async def record_side_effects(self, appointment_id: UUID, **values: Any) -> dict:
        """
        Persist references produced by external calls.

        Does not touch status or version, so it never conflicts with a
        concurrent transition. The caller owns the commit.
        """
        stmt = (
            update(appointments)
            .where(appointments.c.id == appointment_id)
            .values(updated_at=datetime.now(UTC), **values)
            .returning(appointments)
        )
        result = await self.db.execute(stmt)
        row = result.mappings().first()
        if row is None:
            raise NotFoundException("Appointment not found")
        return dict(row)

    async def list_orphaned_bookings(self, older_than_minutes: int = 15) -> list[dict]:
        """Pending bookings that never obtained a payment intent."""
        cutoff = datetime.now(UTC) - timedelta(minutes=older_than_minutes)
        result = await self.db.execute(
            select(appointments)
            .where(
                and_(
                    appointments.c.status == AppointmentStatus.PENDING.value,
                    appointments.c.payment_intent_id.is_(None),
                    appointments.c.created_at <= cutoff,
                )
            )
            .order_by(appointments.c.created_at)
        )
        return [dict(row) for row in result.mappings().all()]

    async def list_ledger_failures(self) -> list[dict]:
        """Paid appointments whose ledger record is missing."""
        result = await self.db.execute(
            select(appointments)
            .where(
                and_(
                    appointments.c.status.in_([s.value for s in PAID_STATUSES]),
                    appointments.c.ledger_recording_failed.is_(True),
                )
            )
            .order_by(appointments.c.ledger_error_at)
        )
        return [dict(row) for row in result.mappings().all()]
