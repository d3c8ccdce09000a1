"""Appointment status state machine."""

from app.core.exceptions import InvalidStateTransitionException
from app.schemas.appointments import AppointmentStatus

TERMINAL_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED})

# Statuses that still occupy the doctor's calendar and show as upcoming
ACTIVE_STATUSES = frozenset(
    {
        AppointmentStatus.PENDING,
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.RESCHEDULED,
    }
)

# Statuses in which the payment has been captured by the gateway
PAID_STATUSES = frozenset(
    {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.RESCHEDULED,
        AppointmentStatus.NO_SHOW,
    }
)

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    # A moved booking stays pending until its payment is confirmed
    AppointmentStatus.PENDING: frozenset(
        {AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {
            AppointmentStatus.COMPLETED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.RESCHEDULED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.RESCHEDULED: frozenset(
        {
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.COMPLETED,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.RESCHEDULED,
            AppointmentStatus.NO_SHOW,
        }
    ),
    AppointmentStatus.NO_SHOW: frozenset(
        {AppointmentStatus.CANCELLED, AppointmentStatus.RESCHEDULED}
    ),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.COMPLETED: frozenset(),
}


def is_terminal(status: AppointmentStatus | str) -> bool:
    """Check whether no further transition is allowed."""
    return AppointmentStatus(status) in TERMINAL_STATUSES


def can_transition(current: AppointmentStatus | str, target: AppointmentStatus | str) -> bool:
    """Check whether ``current -> target`` is a legal transition."""
    return AppointmentStatus(target) in ALLOWED_TRANSITIONS[AppointmentStatus(current)]


def ensure_transition(current: AppointmentStatus | str, target: AppointmentStatus | str) -> None:
    """
    Validate a status transition.

    Raises:
        InvalidStateTransitionException: If the transition is not allowed
    """
    current_status = AppointmentStatus(current)
    target_status = AppointmentStatus(target)

    if current_status in TERMINAL_STATUSES:
        raise InvalidStateTransitionException(
            f"Appointment is already {current_status.value}"
        )

    if not can_transition(current_status, target_status):
        raise InvalidStateTransitionException(
            f"Cannot move appointment from {current_status.value} to {target_status.value}"
        )


def rescheduled_status(current: AppointmentStatus | str) -> AppointmentStatus:
    """
    Status an appointment takes when it is moved to a new time.

    Unpaid bookings keep ``pending`` so the payment confirmation still applies
    to them; everything else becomes ``rescheduled``.
    """
    if AppointmentStatus(current) is AppointmentStatus.PENDING:
        return AppointmentStatus.PENDING
    return AppointmentStatus.RESCHEDULED
