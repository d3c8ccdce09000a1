"""Database models."""

from app.models.appointments import appointments
from app.models.audit_logs import audit_logs
from app.models.base import metadata
from app.models.doctors import doctors
from app.models.patients import patients

__all__ = [
    "appointments",
    "audit_logs",
    "doctors",
    "metadata",
    "patients",
]
