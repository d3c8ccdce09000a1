"""Create doctors, patients, appointments and audit_logs tables.

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    """Upgrade database schema."""
    op.execute('CREATE EXTENSION IF NOT EXISTS "pgcrypto"')
    # Needed for the uuid equality part of the overlap exclusion constraint
    op.execute('CREATE EXTENSION IF NOT EXISTS "btree_gist"')

    op.create_table(
        "doctors",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.Text(), nullable=False),
        sa.Column("specialty", sa.String(length=200), nullable=True),
        sa.Column("is_verified", sa.Boolean(), server_default=sa.text("false"), nullable=False),
        sa.Column("hourly_rate_cents", sa.Integer(), nullable=False),
        sa.Column("payout_account_id", sa.Text(), nullable=True),
        sa.Column("ledger_address", sa.Text(), nullable=True),
        sa.Column("ledger_profile_id", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("hourly_rate_cents >= 0", name="doctors_hourly_rate_check"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="doctors_email_key"),
    )
    op.create_index("ix_doctors_is_verified", "doctors", ["is_verified"])

    op.create_table(
        "patients",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("full_name", sa.Text(), nullable=False),
        sa.Column("phone", sa.String(length=20), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("ledger_address", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email", name="patients_email_key"),
    )
    op.create_index("ix_patients_email", "patients", ["email"])

    op.create_table(
        "appointments",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("doctor_id", postgresql.UUID(), nullable=False),
        sa.Column("patient_id", postgresql.UUID(), nullable=True),
        sa.Column("appointment_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), server_default=sa.text("30"), nullable=False),
        sa.Column("ends_at", postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("status", sa.Text(), server_default="pending", nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("platform_fee_cents", sa.Integer(), nullable=False),
        sa.Column("doctor_payout_cents", sa.Integer(), nullable=False),
        sa.Column("payment_intent_id", sa.Text(), nullable=True),
        sa.Column("payment_error", sa.Text(), nullable=True),
        sa.Column("video_room_name", sa.Text(), nullable=True),
        sa.Column("video_room_sid", sa.Text(), nullable=True),
        sa.Column("ledger_transaction_ref", sa.Text(), nullable=True),
        sa.Column("ledger_owner_address", sa.Text(), nullable=True),
        sa.Column(
            "ledger_recording_failed", sa.Boolean(), server_default=sa.text("false"), nullable=False
        ),
        sa.Column("ledger_error_message", sa.Text(), nullable=True),
        sa.Column("ledger_error_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("ledger_retry_count", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("ledger_cancellation_ref", sa.Text(), nullable=True),
        sa.Column("ledger_claim_ref", sa.Text(), nullable=True),
        sa.Column("ledger_claimed_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("cancelled_by", sa.Text(), nullable=True),
        sa.Column("cancelled_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("refund_amount_cents", sa.Integer(), server_default=sa.text("0"), nullable=False),
        sa.Column("refund_reference", sa.Text(), nullable=True),
        sa.Column("refund_error", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("version", sa.Integer(), server_default=sa.text("1"), nullable=False),
        *_timestamps(),
        sa.CheckConstraint(
            "status IN ('pending', 'confirmed', 'rescheduled', 'cancelled', 'completed', 'no_show')",
            name="appointments_status_check",
        ),
        sa.CheckConstraint(
            "price_cents = platform_fee_cents + doctor_payout_cents",
            name="appointments_price_split_check",
        ),
        sa.CheckConstraint(
            "refund_amount_cents <= price_cents", name="appointments_refund_cap_check"
        ),
        sa.CheckConstraint("ends_at > appointment_at", name="appointments_window_check"),
        sa.ForeignKeyConstraint(
            ["doctor_id"], ["doctors.id"], name="fk_appointments_doctor_id"
        ),
        sa.ForeignKeyConstraint(
            ["patient_id"], ["patients.id"], name="fk_appointments_patient_id"
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("payment_intent_id", name="appointments_payment_intent_id_key"),
    )
    op.create_index(
        "ix_appointments_doctor_window",
        "appointments",
        ["doctor_id", "appointment_at", "ends_at"],
    )
    op.create_index("ix_appointments_patient_status", "appointments", ["patient_id", "status"])

    # No two non-cancelled appointments of a doctor may overlap
    op.execute(
        """
        ALTER TABLE appointments
        ADD CONSTRAINT appointments_no_overlap
        EXCLUDE USING gist (
            doctor_id WITH =,
            tstzrange(appointment_at, ends_at, '[)') WITH &&
        )
        WHERE (status <> 'cancelled')
        """
    )

    op.create_table(
        "audit_logs",
        sa.Column(
            "id", postgresql.UUID(), server_default=sa.text("gen_random_uuid()"), nullable=False
        ),
        sa.Column("actor_id", sa.Text(), nullable=True),
        sa.Column("action", sa.Text(), nullable=False),
        sa.Column("resource_type", sa.Text(), nullable=False),
        sa.Column("resource_id", postgresql.UUID(), nullable=True),
        sa.Column("outcome", sa.Text(), nullable=False),
        sa.Column("details", postgresql.JSONB(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.CheckConstraint(
            "outcome IN ('success', 'failure', 'pending')",
            name="audit_logs_outcome_check",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_resource", "audit_logs", ["resource_type", "resource_id"])
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"])

    # Audit entries are append-only
    op.execute(
        """
        CREATE OR REPLACE FUNCTION audit_logs_reject_mutation()
        RETURNS TRIGGER AS $$
        BEGIN
            RAISE EXCEPTION 'audit_logs is append-only';
        END;
        $$ LANGUAGE plpgsql;
        """
    )
    op.execute(
        """
        CREATE TRIGGER audit_logs_append_only
        BEFORE UPDATE OR DELETE ON audit_logs
        FOR EACH ROW EXECUTE FUNCTION audit_logs_reject_mutation();
        """
    )


def downgrade() -> None:
    """Downgrade database schema."""
    op.execute("DROP TRIGGER IF EXISTS audit_logs_append_only ON audit_logs")
    op.execute("DROP FUNCTION IF EXISTS audit_logs_reject_mutation()")
    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_resource", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.execute("ALTER TABLE appointments DROP CONSTRAINT IF EXISTS appointments_no_overlap")
    op.drop_index("ix_appointments_patient_status", table_name="appointments")
    op.drop_index("ix_appointments_doctor_window", table_name="appointments")
    op.drop_table("appointments")

    op.drop_index("ix_patients_email", table_name="patients")
    op.drop_table("patients")

    op.drop_index("ix_doctors_is_verified", table_name="doctors")
    op.drop_table("doctors")
