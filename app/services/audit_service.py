"""Audit trail service."""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_logs import audit_logs
from app.schemas.audit import AuditAction, AuditOutcome, AuditResourceType

logger = structlog.get_logger(__name__)


class AuditService:
    """Append-only audit log writer."""

    @staticmethod
    async def record(
        db: AsyncSession,
        action: AuditAction,
        resource_type: AuditResourceType,
        outcome: AuditOutcome,
        resource_id: UUID | None = None,
        actor_id: str | UUID | None = None,
        details: dict[str, Any] | None = None,
        error_message: str | None = None,
    ) -> None:
        """
        Append an audit entry to the current transaction.

        The entry is committed together with the state change it describes,
        so the caller owns the commit.

        Args:
            db: Database session
            action: Audited action
            resource_type: Kind of resource acted on
            outcome: Success, failure or pending
            resource_id: Appointment (or other resource) id
            actor_id: Who triggered the action, if known
            details: Free-form JSON details
            error_message: Failure reason
        """
        await db.execute(
            insert(audit_logs).values(
                actor_id=str(actor_id) if actor_id is not None else None,
                action=action.value,
                resource_type=resource_type.value,
                resource_id=resource_id,
                outcome=outcome.value,
                details=details,
                error_message=error_message,
                created_at=datetime.now(UTC),
            )
        )

        logger.info(
            "audit_recorded",
            action=action.value,
            outcome=outcome.value,
            resource_id=str(resource_id) if resource_id else None,
        )

    @staticmethod
    async def list_for_resource(db: AsyncSession, resource_id: UUID) -> list[dict]:
        """Get the audit trail of a resource, oldest first."""
        result = await db.execute(
            select(audit_logs)
            .where(audit_logs.c.resource_id == resource_id)
            .order_by(audit_logs.c.created_at)
        )
        return [dict(row) for row in result.mappings().all()]

    @staticmethod
    async def count(
        db: AsyncSession,
        action: AuditAction,
        resource_id: UUID | None = None,
        outcome: AuditOutcome | None = None,
    ) -> int:
        """Count entries for an action, optionally for one resource and outcome."""
        stmt = select(func.count()).select_from(audit_logs).where(audit_logs.c.action == action.value)
        if resource_id is not None:
            stmt = stmt.where(audit_logs.c.resource_id == resource_id)
        if outcome is not None:
            stmt = stmt.where(audit_logs.c.outcome == outcome.value)
        result = await db.execute(stmt)
        return result.scalar() or 0
