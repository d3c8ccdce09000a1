"""Audit log table. Rows are only ever inserted."""

from uuid import uuid4

from sqlalchemy import JSON, CheckConstraint, Column, Index, Table, Text, Uuid, func

from app.models.base import UTCDateTime, metadata

audit_logs = Table(
    "audit_logs",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("actor_id", Text, nullable=True),
    Column("action", Text, nullable=False),
    Column("resource_type", Text, nullable=False),
    Column("resource_id", Uuid, nullable=True),
    Column("outcome", Text, nullable=False),
    Column("details", JSON, nullable=True),
    Column("error_message", Text, nullable=True),
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    CheckConstraint(
        "outcome IN ('success', 'failure', 'pending')",
        name="audit_logs_outcome_check",
    ),
    Index("ix_audit_logs_resource", "resource_type", "resource_id"),
    Index("ix_audit_logs_action", "action"),
)
