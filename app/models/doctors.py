"""Doctor model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import Boolean, Column, Integer, String, Table, Text, Uuid, func, text

from app.models.base import UTCDateTime, metadata

doctors = Table(
    "doctors",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("email", String(320), nullable=False, unique=True),
    Column("full_name", Text, nullable=False),
    Column("specialty", String(200)),
    # Verification is performed by an external credential check
    Column("is_verified", Boolean, nullable=False, server_default=text("false"), index=True),
    Column("hourly_rate_cents", Integer, nullable=False),
    # Payment gateway connected account for split payouts
    Column("payout_account_id", Text, nullable=True),
    # Ledger identity
    Column("ledger_address", Text, nullable=True),
    Column("ledger_profile_id", Text, nullable=True),
    # Metadata
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    Column("updated_at", UTCDateTime, nullable=False, server_default=func.now()),
)
